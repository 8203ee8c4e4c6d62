"""
Packets Module

Raw link-layer tooling for driving a tethered downstream link:
- TapPacketReader: queues frames read from a link descriptor on the handler thread
- structs: fixed layout Ethernet, IPv6 and ICMPv6 headers
- dhcp: DHCP client frames built and decoded with scapy
- TetheringTester: runs a DHCP exchange as a fake downstream client
"""

from .dhcp import DhcpMessage, DhcpMessageType, LeaseResult
from .packet_reader import TapPacketReader, make_packet_reader
from .structs import EthernetHeader, Icmpv6Header, Ipv6Header, is_router_advertisement
from .tethering_tester import TetheringTester, random_mac

__all__ = [
    "DhcpMessage",
    "DhcpMessageType",
    "LeaseResult",
    "TapPacketReader",
    "make_packet_reader",
    "EthernetHeader",
    "Ipv6Header",
    "Icmpv6Header",
    "is_router_advertisement",
    "TetheringTester",
    "random_mac",
]
