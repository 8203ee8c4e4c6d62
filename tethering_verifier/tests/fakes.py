"""
In-process stand-ins for the platform collaborators.

A FakeTapLink is a SOCK_SEQPACKET socketpair: the harness reads and writes
one end as if it were a tap descriptor, and a FakeDhcpServer serves the other
end with frames built by scapy.
"""
import logging
import socket
import threading
import time
from ipaddress import IPv4Interface
from typing import Callable, Dict, List, Optional

from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.inet6 import ICMPv6ND_RA, IPv6
from scapy.layers.l2 import Ether
from scapy.utils import mac2str

from tethering_verifier.exceptions import InvalidConfigurationError
from tethering_verifier.lib.packets.dhcp import DhcpMessageType, parse_dhcp_frame
from tethering_verifier.lib.tethering.domain import (
    AddressInfo,
    ConnectivityScope,
    LinkAddress,
    Network,
    TetheredClient,
    TetheringInterface,
    TetheringRequest,
    TetheringType,
)

logger = logging.getLogger(__name__)

SERVER_MAC = "02:00:00:00:00:01"
MTU = 1500


class FakeTapLink:
    _counter = 0

    def __init__(self, interface_name: Optional[str] = None):
        FakeTapLink._counter += 1
        self.interface_name = interface_name or f"testtap{FakeTapLink._counter}"
        self.harness_sock, self.peer_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        self.closed = False

    def fileno(self) -> int:
        return self.harness_sock.fileno()

    def inject(self, frame: bytes) -> None:
        """Deliver a frame to the harness side"""
        self.peer_sock.send(frame)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.peer_sock.close()
        self.harness_sock.close()


def router_advertisement(src_mac: str = SERVER_MAC) -> bytes:
    pkt = (
        Ether(src=src_mac, dst="33:33:00:00:00:01")
        / IPv6(src="fe80::1", dst="ff02::1")
        / ICMPv6ND_RA()
    )
    return bytes(pkt)


def unrelated_ipv4_frame(src_mac: str = SERVER_MAC) -> bytes:
    pkt = Ether(src=src_mac, dst="ff:ff:ff:ff:ff:ff") / IP(src="192.0.2.9", dst="192.0.2.15") / UDP(
        sport=5353, dport=5353
    )
    return bytes(pkt)


def dhcp_reply(
    message_type: DhcpMessageType,
    client_mac: str,
    xid: int,
    your_ip: IPv4Interface,
    server_ip: IPv4Interface,
    lease_time: int,
) -> bytes:
    pkt = (
        Ether(src=SERVER_MAC, dst=client_mac)
        / IP(src=str(server_ip.ip), dst="255.255.255.255")
        / UDP(sport=67, dport=68)
        / BOOTP(
            op=2,
            xid=xid,
            yiaddr=str(your_ip.ip),
            siaddr=str(server_ip.ip),
            chaddr=mac2str(client_mac),
        )
        / DHCP(
            options=[
                ("message-type", int(message_type)),
                ("server_id", str(server_ip.ip)),
                ("lease_time", lease_time),
                ("subnet_mask", str(your_ip.netmask)),
                "end",
            ]
        )
    )
    return bytes(pkt)


class FakeDhcpServer(threading.Thread):
    """
    Serves leases on the peer end of a FakeTapLink, one per pool address.
    DISCOVERs from new clients once the pool is used up are ignored.
    """

    def __init__(
        self,
        link: FakeTapLink,
        server_address: IPv4Interface,
        client_addresses: List[IPv4Interface],
        lease_time: int = 3600,
        on_lease: Optional[Callable[[str, IPv4Interface, int, Optional[str]], None]] = None,
        send_noise: bool = False,
    ):
        super().__init__(name="FakeDhcpServer", daemon=True)
        self.link = link
        self.server_address = server_address
        self.pool = list(client_addresses)
        self.lease_time = lease_time
        self.on_lease = on_lease
        self.send_noise = send_noise

        self.offers: Dict[str, IPv4Interface] = {}
        self.leases: Dict[str, IPv4Interface] = {}
        self.received: List[bytes] = []
        self._stopping = threading.Event()

    def stop(self) -> None:
        self._stopping.set()
        self.join(2)

    def run(self):
        self.link.peer_sock.settimeout(0.05)
        while not self._stopping.is_set():
            try:
                frame = self.link.peer_sock.recv(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            if not frame:
                return
            self.received.append(frame)
            try:
                self._handle(frame)
            except OSError:
                return

    def _send(self, frame: bytes) -> None:
        self.link.peer_sock.send(frame)

    def _handle(self, frame: bytes) -> None:
        message = parse_dhcp_frame(frame)
        if message is None or message.op != 1:
            return
        mac = message.client_mac

        if message.message_type == DhcpMessageType.DISCOVER:
            address = self.leases.get(mac) or self.offers.get(mac)
            if address is None:
                if len(self.leases) + len(self.offers) >= len(self.pool):
                    logger.debug(f"No lease capacity left for {mac}")
                    return
                address = self.pool[len(self.leases) + len(self.offers)]
                self.offers[mac] = address
            if self.send_noise:
                self._send(unrelated_ipv4_frame())
                self._send(router_advertisement())
                self._send(
                    dhcp_reply(
                        DhcpMessageType.OFFER,
                        mac,
                        (message.xid + 1) & 0xFFFFFFFF,
                        address,
                        self.server_address,
                        self.lease_time,
                    )
                )
            self._send(
                dhcp_reply(
                    DhcpMessageType.OFFER, mac, message.xid, address, self.server_address, self.lease_time
                )
            )
        elif message.message_type == DhcpMessageType.REQUEST:
            address = self.offers.pop(mac, None) or self.leases.get(mac)
            if address is None or str(address.ip) != message.options.get("requested_addr"):
                return
            # The lease is committed before the client can see the ACK
            self.leases[mac] = address
            if self.on_lease is not None:
                self.on_lease(mac, address, self.lease_time, message.hostname)
            self._send(
                dhcp_reply(
                    DhcpMessageType.ACK, mac, message.xid, address, self.server_address, self.lease_time
                )
            )


class FakeTetheredInterfaceRequest:
    def __init__(self, manager: "FakeEthernetManager"):
        self.manager = manager
        self.released = False

    def release(self) -> None:
        self.released = True
        self.manager.request = None


class FakeEthernetManager:
    def __init__(self, available: bool = False):
        self.available = available
        self.include_test_interfaces = False
        self.link: Optional[FakeTapLink] = None
        self.request: Optional[FakeTetheredInterfaceRequest] = None
        self._executor = None
        self._callback = None
        self._notified = False

    def is_available(self) -> bool:
        return self.available

    def set_include_test_interfaces(self, include: bool) -> None:
        self.include_test_interfaces = include
        self._maybe_notify()

    def request_tethered_interface(self, executor, callback):
        self._executor = executor
        self._callback = callback
        self.request = FakeTetheredInterfaceRequest(self)
        self._maybe_notify()
        return self.request

    def attach(self, link: FakeTapLink) -> None:
        self.link = link
        self._maybe_notify()

    def _maybe_notify(self) -> None:
        if self._notified or self._callback is None:
            return
        if self.available:
            self._notified = True
            self._executor(
                self._callback.on_available, self.link.interface_name if self.link else "eth0"
            )
        elif self.include_test_interfaces and self.link is not None:
            self._notified = True
            self._executor(self._callback.on_available, self.link.interface_name)


class FakeLinkProvisioner:
    def __init__(self, ethernet_manager: FakeEthernetManager):
        self.ethernet_manager = ethernet_manager
        self.links: List[FakeTapLink] = []

    def create_tap_interface(self) -> FakeTapLink:
        link = FakeTapLink()
        self.links.append(link)
        self.ethernet_manager.attach(link)
        return link


class FakeAddressInspector:
    def __init__(self):
        self.addresses: Dict[str, List[LinkAddress]] = {}
        self.mtu = MTU

    def get_interface_addresses(self, interface: str) -> List[LinkAddress]:
        return list(self.addresses.get(interface, []))

    def get_mtu(self, interface: str) -> int:
        return self.mtu


class FakeUpstream:
    def __init__(self, net_id: int = 100):
        self.network = Network(net_id=net_id)
        self.torn_down = False

    def teardown(self) -> None:
        self.torn_down = True


class FakeUpstreamProvisioner:
    def __init__(self, service: "FakeTetheringService"):
        self.service = service
        self.created: List[FakeUpstream] = []

    def create_test_network(self, addresses, timeout_ms):
        upstream = FakeUpstream()
        self.created.append(upstream)
        self.service.upstream = upstream.network
        return upstream


class FakeTetheringService:
    """
    Behaves like the tethering service for one Ethernet downstream: serves one
    DHCP lease, reports state snapshots twice to exercise edge detection, and
    sends a router advertisement on local-only links.
    """

    DEFAULT_SERVER = IPv4Interface("192.168.42.1/24")
    DEFAULT_CLIENT = IPv4Interface("192.168.42.42/24")

    def __init__(
        self,
        ethernet_manager: FakeEthernetManager,
        address_inspector: FakeAddressInspector,
        lease_time: int = 3600,
        send_noise: bool = False,
    ):
        self.ethernet_manager = ethernet_manager
        self.address_inspector = address_inspector
        self.lease_time = lease_time
        self.send_noise = send_noise
        self.supported = True
        self.prefer_test_networks = False
        self.upstream: Optional[Network] = None

        self.callbacks: list = []
        self.dhcp_server: Optional[FakeDhcpServer] = None
        self.active: Optional[TetheringInterface] = None
        self.active_scope: Optional[ConnectivityScope] = None
        self.start_requests: List[TetheringRequest] = []
        self.stop_count = 0

    def is_tethering_supported(self) -> bool:
        return self.supported

    def set_prefer_test_networks(self, prefer: bool) -> None:
        self.prefer_test_networks = prefer

    def register_tethering_event_callback(self, executor, callback) -> None:
        self.callbacks.append((executor, callback))

    def unregister_tethering_event_callback(self, callback) -> None:
        self.callbacks = [(e, c) for e, c in self.callbacks if c is not callback]

    def _broadcast(self, method: str, *args) -> None:
        for executor, callback in list(self.callbacks):
            executor(getattr(callback, method), *args)

    def _snapshot(self, scope: ConnectivityScope, interfaces) -> None:
        method = (
            "on_local_only_interfaces_changed"
            if scope == ConnectivityScope.LOCAL
            else "on_tethered_interfaces_changed"
        )
        self._broadcast(method, frozenset(interfaces))

    def start_tethering(self, request: TetheringRequest, executor, callback) -> None:
        for addr in (request.static_local_address, request.static_client_address):
            if addr is not None and not addr.is_ipv4:
                raise InvalidConfigurationError(f"Not an IPv4 address: {addr}")
        self.start_requests.append(request)

        link = self.ethernet_manager.link
        if link is None:
            executor(callback.on_tethering_failed, 11)
            return

        server = self.DEFAULT_SERVER
        client = self.DEFAULT_CLIENT
        if request.static_local_address is not None:
            server = request.static_local_address.address
            client = request.static_client_address.address

        identity = TetheringInterface(
            tethering_type=TetheringType.ETHERNET, interface=link.interface_name
        )
        addresses = [LinkAddress(address=server)]
        if request.connectivity_scope == ConnectivityScope.LOCAL:
            addresses += [
                LinkAddress.parse("fd00:1234::1/64"),
                LinkAddress.parse("fe80::1/64", scope=253),
            ]
        self.address_inspector.addresses[link.interface_name] = addresses

        self.dhcp_server = FakeDhcpServer(
            link,
            server,
            [client],
            lease_time=self.lease_time,
            on_lease=self._on_lease,
            send_noise=self.send_noise,
        )
        self.dhcp_server.start()

        self.active = identity
        self.active_scope = request.connectivity_scope
        executor(callback.on_tethering_started)
        self._snapshot(request.connectivity_scope, {identity})
        self._snapshot(request.connectivity_scope, {identity})
        if self.upstream is not None and request.connectivity_scope == ConnectivityScope.GLOBAL:
            self._broadcast("on_upstream_changed", self.upstream)
        if request.connectivity_scope == ConnectivityScope.LOCAL:
            link.inject(unrelated_ipv4_frame())
            link.inject(router_advertisement())

    def _on_lease(self, mac: str, address: IPv4Interface, lease_time: int, hostname) -> None:
        client = TetheredClient(
            mac_address=mac,
            tethering_type=TetheringType.ETHERNET,
            addresses=[
                AddressInfo(
                    address=LinkAddress(
                        address=address, expiration_time=time.monotonic() + lease_time
                    ),
                    hostname=hostname,
                )
            ],
        )
        self._broadcast("on_clients_changed", [client])

    def stop_tethering(self, tethering_type) -> None:
        self.stop_count += 1
        if self.dhcp_server is not None:
            self.dhcp_server.stop()
            self.dhcp_server = None
        if self.active is not None:
            self._snapshot(self.active_scope, set())
            self.active = None
