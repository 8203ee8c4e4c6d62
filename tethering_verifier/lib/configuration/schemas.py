from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from tethering_verifier import constants


class HarnessTimeouts(BaseModel):
    event_timeout_ms: int = Field(default=constants.TIMEOUT_MS, gt=0)
    dhcp_timeout_ms: int = Field(default=constants.TIMEOUT_MS, gt=0)
    router_advertisement_timeout_ms: int = Field(
        default=constants.ROUTER_ADVERTISEMENT_TIMEOUT_MS, gt=0
    )
    lease_tolerance_s: int = Field(default=constants.LEASE_TOLERANCE_S, ge=0)


class HarnessDhcp(BaseModel):
    hostname: str = Field(default=constants.DHCP_HOSTNAME)
    requested_options: list[int] = Field(
        default_factory=lambda: list(constants.DHCP_REQUESTED_OPTIONS)
    )

    @field_validator("hostname")
    def hostname_not_blank(cls, v):  # noqa: N805
        if not v.strip():
            raise ValueError("hostname must not be blank")
        return v

    @field_validator("requested_options")
    def options_in_range(cls, v):  # noqa: N805
        for code in v:
            if not 0 < code < 255:
                raise ValueError(f"DHCP option code out of range: {code}")
        return v


class HarnessSession(BaseModel):
    # Set when the harness is driven over a network link, which tethering the
    # physical Ethernet interface would cut off
    control_over_network: bool = False


class HarnessConfig(BaseModel):
    Timeouts: HarnessTimeouts = Field(default_factory=HarnessTimeouts)
    Dhcp: HarnessDhcp = Field(default_factory=HarnessDhcp)
    Session: HarnessSession = Field(default_factory=HarnessSession)
