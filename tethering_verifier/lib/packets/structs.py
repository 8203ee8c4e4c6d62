"""
Fixed layout link-layer headers.

Each header decodes from a buffer at a cursor position and returns the cursor
advanced by exactly the header length. Only the fields needed to classify
captured frames are decoded; anything past the headers is left alone.
"""
import struct
from ipaddress import IPv6Address
from typing import ClassVar, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from tethering_verifier.constants import (
    ETHER_TYPE_IPV6,
    ICMPV6_ROUTER_ADVERTISEMENT,
    IPPROTO_ICMPV6,
)
from tethering_verifier.exceptions import MalformedHeaderError

Buffer = Union[bytes, bytearray, memoryview]


def mac_to_str(raw: bytes) -> str:
    return ":".join(f"{b:02x}" for b in raw)


def mac_to_bytes(mac: str) -> bytes:
    parts = mac.split(":")
    if len(parts) != 6:
        raise ValueError(f"Not a MAC address: {mac!r}")
    return bytes(int(part, 16) for part in parts)


class Header(BaseModel):
    model_config = ConfigDict(frozen=True)

    LAYER: ClassVar[str] = ""
    FORMAT: ClassVar[struct.Struct]

    @classmethod
    def length(cls) -> int:
        return cls.FORMAT.size

    @classmethod
    def _unpack(cls, buf: Buffer, offset: int) -> tuple:
        available = len(buf) - offset
        if offset < 0 or available < cls.FORMAT.size:
            raise MalformedHeaderError(cls.LAYER, offset, cls.FORMAT.size, max(available, 0))
        return cls.FORMAT.unpack_from(buf, offset)

    @classmethod
    def parse(cls, buf: Buffer, offset: int = 0) -> Tuple["Header", int]:
        raise NotImplementedError

    def encode(self) -> bytes:
        raise NotImplementedError


class EthernetHeader(Header):
    LAYER: ClassVar[str] = "ethernet"
    FORMAT: ClassVar[struct.Struct] = struct.Struct("!6s6sH")

    dst_mac: str
    src_mac: str
    ether_type: int = Field(ge=0, le=0xFFFF)

    @classmethod
    def parse(cls, buf: Buffer, offset: int = 0) -> Tuple["EthernetHeader", int]:
        dst, src, ether_type = cls._unpack(buf, offset)
        header = cls(dst_mac=mac_to_str(dst), src_mac=mac_to_str(src), ether_type=ether_type)
        return header, offset + cls.FORMAT.size

    def encode(self) -> bytes:
        return self.FORMAT.pack(
            mac_to_bytes(self.dst_mac), mac_to_bytes(self.src_mac), self.ether_type
        )


class Ipv6Header(Header):
    LAYER: ClassVar[str] = "ipv6"
    FORMAT: ClassVar[struct.Struct] = struct.Struct("!IHBB16s16s")

    # Version, traffic class and flow label share the first 32 bit word
    vtf: int = 0x60000000
    payload_length: int = Field(ge=0, le=0xFFFF)
    next_header: int = Field(ge=0, le=0xFF)
    hop_limit: int = Field(default=255, ge=0, le=0xFF)
    src_ip: IPv6Address
    dst_ip: IPv6Address

    @property
    def version(self) -> int:
        return self.vtf >> 28

    @classmethod
    def parse(cls, buf: Buffer, offset: int = 0) -> Tuple["Ipv6Header", int]:
        vtf, payload_length, next_header, hop_limit, src, dst = cls._unpack(buf, offset)
        header = cls(
            vtf=vtf,
            payload_length=payload_length,
            next_header=next_header,
            hop_limit=hop_limit,
            src_ip=IPv6Address(src),
            dst_ip=IPv6Address(dst),
        )
        return header, offset + cls.FORMAT.size

    def encode(self) -> bytes:
        return self.FORMAT.pack(
            self.vtf,
            self.payload_length,
            self.next_header,
            self.hop_limit,
            self.src_ip.packed,
            self.dst_ip.packed,
        )


class Icmpv6Header(Header):
    LAYER: ClassVar[str] = "icmpv6"
    FORMAT: ClassVar[struct.Struct] = struct.Struct("!BBH")

    type: int = Field(ge=0, le=0xFF)
    code: int = Field(default=0, ge=0, le=0xFF)
    checksum: int = Field(default=0, ge=0, le=0xFFFF)

    @classmethod
    def parse(cls, buf: Buffer, offset: int = 0) -> Tuple["Icmpv6Header", int]:
        icmp_type, code, checksum = cls._unpack(buf, offset)
        return cls(type=icmp_type, code=code, checksum=checksum), offset + cls.FORMAT.size

    def encode(self) -> bytes:
        return self.FORMAT.pack(self.type, self.code, self.checksum)


def is_router_advertisement(frame: Optional[Buffer]) -> bool:
    """
    True iff the frame is Ethernet carrying IPv6 carrying an ICMPv6 router
    advertisement. Headers are only decoded as far as needed, so a truncated
    frame raises MalformedHeaderError only while it still could be an RA.
    """
    if not frame:
        return False

    eth, offset = EthernetHeader.parse(frame, 0)
    if eth.ether_type != ETHER_TYPE_IPV6:
        return False

    ipv6, offset = Ipv6Header.parse(frame, offset)
    if ipv6.next_header != IPPROTO_ICMPV6:
        return False

    icmpv6, _ = Icmpv6Header.parse(frame, offset)
    return icmpv6.type == ICMPV6_ROUTER_ADVERTISEMENT
