from enum import IntEnum
from ipaddress import IPv4Address, IPv4Interface, IPv4Network
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether
from scapy.utils import mac2str

from tethering_verifier.constants import (
    DHCP_CLIENT_PORT,
    DHCP_REQUESTED_OPTIONS,
    DHCP_SERVER_PORT,
    ETHER_BROADCAST,
)
from tethering_verifier.lib.packets.structs import mac_to_str


BOOTREQUEST = 1
BOOTREPLY = 2


class DhcpMessageType(IntEnum):
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8


class DhcpMessage(BaseModel):
    """The parts of a captured DHCP frame the client driver looks at"""

    model_config = ConfigDict(frozen=True)

    op: int
    xid: int
    client_mac: str
    your_ip: IPv4Address
    server_ip: IPv4Address
    message_type: Optional[int] = None
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def server_id(self) -> Optional[IPv4Address]:
        value = self.options.get("server_id")
        return IPv4Address(value) if value else None

    @property
    def lease_time(self) -> Optional[int]:
        return self.options.get("lease_time")

    @property
    def prefix_length(self) -> Optional[int]:
        mask = self.options.get("subnet_mask")
        if not mask:
            return None
        return IPv4Network(f"0.0.0.0/{mask}").prefixlen

    @property
    def hostname(self) -> Optional[str]:
        value = self.options.get("hostname")
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value


class LeaseResult(BaseModel):
    """A lease handed out by the DHCP server under test"""

    model_config = ConfigDict(frozen=True)

    ip_address: IPv4Interface
    lease_duration: int = Field(..., description="Lease time in seconds")
    hostname: Optional[str] = None
    client_mac: str
    server_address: Optional[IPv4Address] = None


def normalize_mac(client_mac) -> str:
    """Lower case colon separated form of a MAC given as text or 6 bytes"""
    if isinstance(client_mac, (bytes, bytearray)):
        if len(client_mac) != 6:
            raise ValueError(f"MAC address must be 6 bytes, got {len(client_mac)}")
        return mac_to_str(bytes(client_mac))
    # Accept short forms like 1:2:3:4:5:6
    return ":".join(f"{int(part, 16):02x}" for part in str(client_mac).split(":"))


def _client_frame(client_mac: str, xid: int, options: list) -> bytes:
    pkt = (
        Ether(src=client_mac, dst=ETHER_BROADCAST)
        / IP(src="0.0.0.0", dst="255.255.255.255")
        / UDP(sport=DHCP_CLIENT_PORT, dport=DHCP_SERVER_PORT)
        / BOOTP(op=BOOTREQUEST, chaddr=mac2str(client_mac), xid=xid)
        / DHCP(options=options + ["end"])
    )
    return bytes(pkt)


def build_discover(
    client_mac,
    xid: int,
    hostname: Optional[str] = None,
    requested_options: Sequence[int] = DHCP_REQUESTED_OPTIONS,
) -> bytes:
    options = [
        ("message-type", int(DhcpMessageType.DISCOVER)),
        ("param_req_list", list(requested_options)),
    ]
    if hostname:
        options.append(("hostname", hostname.encode()))
    return _client_frame(normalize_mac(client_mac), xid, options)


def build_request(
    client_mac,
    xid: int,
    requested_ip: IPv4Address,
    server_id: Optional[IPv4Address],
    hostname: Optional[str] = None,
    requested_options: Sequence[int] = DHCP_REQUESTED_OPTIONS,
) -> bytes:
    options = [
        ("message-type", int(DhcpMessageType.REQUEST)),
        ("requested_addr", str(requested_ip)),
    ]
    if server_id is not None:
        options.append(("server_id", str(server_id)))
    options.append(("param_req_list", list(requested_options)))
    if hostname:
        options.append(("hostname", hostname.encode()))
    return _client_frame(normalize_mac(client_mac), xid, options)


def _options_to_dict(raw_options) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for option in raw_options:
        # "end" and "pad" come through as bare strings
        if not isinstance(option, tuple) or not option:
            continue
        name, *values = option
        options[name] = values[0] if len(values) == 1 else tuple(values)
    return options


def parse_dhcp_frame(frame: bytes) -> Optional[DhcpMessage]:
    """Decode a captured Ethernet frame, or return None if it is not DHCP"""
    pkt = Ether(frame)
    if BOOTP not in pkt or DHCP not in pkt:
        return None

    bootp = pkt[BOOTP]
    options = _options_to_dict(pkt[DHCP].options)
    message_type = options.get("message-type")
    return DhcpMessage(
        op=bootp.op,
        xid=bootp.xid,
        client_mac=mac_to_str(bytes(bootp.chaddr)[:6]),
        your_ip=IPv4Address(bootp.yiaddr),
        server_ip=IPv4Address(bootp.siaddr),
        message_type=int(message_type) if message_type is not None else None,
        options=options,
    )
