import logging
import random
import time
from ipaddress import IPv4Interface
from typing import Callable, List, Optional

from tethering_verifier.exceptions import DhcpNakError, WaitTimeoutError
from tethering_verifier.lib.configuration.schemas import HarnessConfig
from tethering_verifier.lib.packets import dhcp
from tethering_verifier.lib.packets.dhcp import DhcpMessage, DhcpMessageType, LeaseResult
from tethering_verifier.lib.packets.packet_reader import TapPacketReader
from tethering_verifier.lib.packets.structs import is_router_advertisement


def random_mac() -> bytes:
    """A random locally administered unicast MAC address"""
    mac = bytearray(random.getrandbits(8) for _ in range(6))
    mac[0] = (mac[0] & 0xFC) | 0x02
    return bytes(mac)


class TetheringTester:
    """
    Plays the part of a downstream client on a tethered link.

    Only one DHCP exchange may run on a reader at a time: frames that do not
    belong to the running exchange are popped and thrown away.
    """

    def __init__(self, reader: TapPacketReader, config: Optional[HarnessConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.reader = reader
        self.config = config or HarnessConfig()

    def run_dhcp(self, client_mac, timeout_ms: Optional[float] = None) -> LeaseResult:
        """
        Run DISCOVER, OFFER, REQUEST, ACK for client_mac.

        Both round trips share a single deadline, so a slow OFFER leaves less
        time for the ACK. Raises WaitTimeoutError when the deadline passes.
        """
        timeout_ms = self.config.Timeouts.dhcp_timeout_ms if timeout_ms is None else timeout_ms
        hostname = self.config.Dhcp.hostname
        requested_options = self.config.Dhcp.requested_options
        mac = dhcp.normalize_mac(client_mac)
        xid = random.getrandbits(32)
        deadline = time.monotonic() + timeout_ms / 1000

        self.logger.info(f"Starting DHCP for {mac} (xid {xid:#010x})")
        self.reader.send_response(
            dhcp.build_discover(mac, xid, hostname=hostname, requested_options=requested_options)
        )
        offer = self._wait_for_reply(mac, xid, DhcpMessageType.OFFER, deadline, timeout_ms)
        self.logger.debug(f"Got OFFER of {offer.your_ip} from {offer.server_id}")

        self.reader.send_response(
            dhcp.build_request(
                mac,
                xid,
                requested_ip=offer.your_ip,
                server_id=offer.server_id,
                hostname=hostname,
                requested_options=requested_options,
            )
        )
        ack = self._wait_for_reply(mac, xid, DhcpMessageType.ACK, deadline, timeout_ms)

        prefix_length = ack.prefix_length or offer.prefix_length or 32
        lease = LeaseResult(
            ip_address=IPv4Interface(f"{ack.your_ip}/{prefix_length}"),
            lease_duration=ack.lease_time if ack.lease_time is not None else 0,
            hostname=hostname,
            client_mac=mac,
            server_address=ack.server_id or offer.server_id,
        )
        self.logger.info(
            f"DHCP for {mac} got {lease.ip_address} for {lease.lease_duration}s"
        )
        return lease

    def _wait_for_reply(
        self,
        mac: str,
        xid: int,
        expected: DhcpMessageType,
        deadline: float,
        timeout_ms: float,
    ) -> DhcpMessage:
        found: List[DhcpMessage] = []

        def matches(frame: bytes) -> bool:
            message = dhcp.parse_dhcp_frame(frame)
            if message is None or message.op != dhcp.BOOTREPLY:
                return False
            if message.xid != xid or message.client_mac != mac:
                return False
            if message.message_type == DhcpMessageType.NAK:
                raise DhcpNakError(f"DHCP NAK for {mac} (xid {xid:#010x}): {message.options}")
            if message.message_type != expected:
                return False
            found.append(message)
            return True

        if self._pop_until(matches, deadline) is None:
            raise WaitTimeoutError(
                f"No DHCP {expected.name} for {mac} within {timeout_ms}ms", timeout_ms
            )
        return found[0]

    def _pop_until(self, predicate: Callable[[bytes], bool], deadline: float) -> Optional[bytes]:
        """Pop frames until one satisfies predicate or the deadline passes"""
        while True:
            remaining_ms = (deadline - time.monotonic()) * 1000
            if remaining_ms <= 0:
                return None
            frame = self.reader.pop_packet(remaining_ms)
            if frame is None:
                # Reader closed and drained, or nothing arrived in time
                if self.reader.closed:
                    return None
                continue
            if predicate(frame):
                return frame
            self.logger.debug(f"Discarding unrelated frame of {len(frame)} bytes")

    def expect_router_advertisement(self, timeout_ms: float) -> bytes:
        """Wait for a router advertisement, discarding everything else"""
        frame = self._pop_until(is_router_advertisement, time.monotonic() + timeout_ms / 1000)
        if frame is None:
            raise WaitTimeoutError(
                f"Did not receive router advertisement within {timeout_ms}ms", timeout_ms
            )
        return frame
