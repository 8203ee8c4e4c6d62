from enum import Enum, IntEnum
from ipaddress import IPv4Interface, IPv6Interface, IPv6Network, ip_interface
from typing import FrozenSet, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from tethering_verifier.constants import (
    IFA_F_DADFAILED,
    IFA_F_DEPRECATED,
    IFA_F_OPTIMISTIC,
    IFA_F_TENTATIVE,
    RT_SCOPE_UNIVERSE,
)
from tethering_verifier.exceptions import InvalidConfigurationError

IPV6_ULA_NETWORK = IPv6Network("fc00::/7")


class TetheringType(IntEnum):
    """Downstream link types the tethering service knows about"""

    WIFI = 0
    USB = 1
    BLUETOOTH = 2
    WIFI_P2P = 3
    NCM = 4
    ETHERNET = 5


class ConnectivityScope(IntEnum):
    GLOBAL = 1
    LOCAL = 2


class InterfaceState(Enum):
    """Operating states a downstream interface can be reported in"""

    TETHERED = "tethered"
    LOCAL_ONLY = "local_only"


class TetheringInterface(BaseModel):
    """Identifies one downstream link for the lifetime of a scenario"""

    model_config = ConfigDict(frozen=True)

    tethering_type: TetheringType
    interface: str

    def __str__(self):
        return f"{self.tethering_type.name}:{self.interface}"


InterfaceStateSet = FrozenSet[TetheringInterface]


class LinkAddress(BaseModel):
    """An address on an interface plus the kernel's flags and scope for it"""

    model_config = ConfigDict(frozen=True)

    address: Union[IPv4Interface, IPv6Interface]
    flags: int = 0
    scope: int = RT_SCOPE_UNIVERSE
    preferred_lifetime: Optional[int] = Field(None, description="Seconds, None if infinite")
    valid_lifetime: Optional[int] = Field(None, description="Seconds, None if infinite")
    expiration_time: Optional[float] = Field(
        None, description="time.monotonic() value at which the address expires"
    )

    @classmethod
    def parse(cls, value: Union[str, IPv4Interface, IPv6Interface], **kwargs) -> "LinkAddress":
        return cls(address=ip_interface(value), **kwargs)

    @property
    def is_ipv4(self) -> bool:
        return self.address.version == 4

    @property
    def is_ipv6(self) -> bool:
        return self.address.version == 6

    @property
    def prefix_length(self) -> int:
        return self.address.network.prefixlen

    @property
    def is_ipv6_ula(self) -> bool:
        return self.is_ipv6 and self.address.ip in IPV6_ULA_NETWORK

    @property
    def is_preferred(self) -> bool:
        return self.preferred_lifetime is None or self.preferred_lifetime > 0

    @property
    def is_global_preferred(self) -> bool:
        """Whether this address would be picked for traffic beyond the link"""
        if self.scope != RT_SCOPE_UNIVERSE or self.is_ipv6_ula or not self.is_preferred:
            return False
        if self.flags & (IFA_F_DADFAILED | IFA_F_DEPRECATED):
            return False
        return not (self.flags & IFA_F_TENTATIVE) or bool(self.flags & IFA_F_OPTIMISTIC)

    def is_same_address_as(self, other: "LinkAddress") -> bool:
        return self.address == other.address

    def __str__(self):
        return f"{self.address} flags {self.flags:#x} scope {self.scope}"


class AddressInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: LinkAddress
    hostname: Optional[str] = None


class TetheredClient(BaseModel):
    """A client the tethering service reports as connected"""

    model_config = ConfigDict(frozen=True)

    mac_address: str
    tethering_type: TetheringType
    addresses: list[AddressInfo] = Field(default_factory=list)


class Network(BaseModel):
    """Opaque handle for an upstream network"""

    model_config = ConfigDict(frozen=True)

    net_id: int

    def __str__(self):
        return str(self.net_id)


def _to_link_address(value, name: str) -> LinkAddress:
    if value is None:
        raise InvalidConfigurationError(f"Static {name} address must be set")
    if isinstance(value, LinkAddress):
        return value
    try:
        return LinkAddress.parse(value)
    except ValueError as e:
        raise InvalidConfigurationError(f"Invalid static {name} address {value!r}: {e}")


class TetheringRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    tethering_type: TetheringType = TetheringType.ETHERNET
    connectivity_scope: ConnectivityScope = ConnectivityScope.GLOBAL
    static_local_address: Optional[LinkAddress] = None
    static_client_address: Optional[LinkAddress] = None

    @classmethod
    def with_static_ipv4(
        cls,
        local,
        client,
        tethering_type: TetheringType = TetheringType.ETHERNET,
    ) -> "TetheringRequest":
        """
        Request fixed server and client addresses. Both must be IPv4 in the
        same subnet with the same prefix length, and must differ.
        """
        local_addr = _to_link_address(local, "local")
        client_addr = _to_link_address(client, "client")

        if not local_addr.is_ipv4 or not client_addr.is_ipv4:
            raise InvalidConfigurationError(
                f"Static addresses must be IPv4: {local_addr.address}, {client_addr.address}"
            )
        if local_addr.prefix_length != client_addr.prefix_length:
            raise InvalidConfigurationError(
                f"Prefix lengths differ: {local_addr.address}, {client_addr.address}"
            )
        if client_addr.address.ip not in local_addr.address.network:
            raise InvalidConfigurationError(
                f"{client_addr.address} is not in the subnet of {local_addr.address}"
            )
        if local_addr.address.ip == client_addr.address.ip:
            raise InvalidConfigurationError(
                f"Local and client addresses are both {local_addr.address.ip}"
            )

        return cls(
            tethering_type=tethering_type,
            static_local_address=local_addr,
            static_client_address=client_addr,
        )


class Events:
    """Notifications delivered by the tethering service to a registered listener"""

    class TetheredInterfacesChanged(BaseModel):
        interfaces: FrozenSet[TetheringInterface]

    class LocalOnlyInterfacesChanged(BaseModel):
        interfaces: FrozenSet[TetheringInterface]

    class LegacyTetheredInterfacesChanged(BaseModel):
        """Plain interface name list. A listener must never receive this."""

        interfaces: list[str]

    class LegacyLocalOnlyInterfacesChanged(BaseModel):
        """Plain interface name list. A listener must never receive this."""

        interfaces: list[str]

    class ClientsChanged(BaseModel):
        clients: list[TetheredClient]

    class UpstreamChanged(BaseModel):
        network: Optional[Network] = None

    class TetheringError(BaseModel):
        interface: str
        error: int


TetheringEvent = Union[
    Events.TetheredInterfacesChanged,
    Events.LocalOnlyInterfacesChanged,
    Events.LegacyTetheredInterfacesChanged,
    Events.LegacyLocalOnlyInterfacesChanged,
    Events.ClientsChanged,
    Events.UpstreamChanged,
    Events.TetheringError,
]
