import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from tethering_verifier.exceptions import (
    InvalidConfigurationError,
    ScenarioAssertionError,
    ScenarioSkipped,
    WaitTimeoutError,
)
from tethering_verifier.lib.configuration.harness_config_file import load_harness_config
from tethering_verifier.lib.configuration.schemas import HarnessConfig
from tethering_verifier.lib.handler_thread import HandlerThread
from tethering_verifier.lib.network_control.interface_addresses import IPRouteAddressInspector
from tethering_verifier.lib.packets.dhcp import LeaseResult
from tethering_verifier.lib.packets.packet_reader import TapPacketReader, make_packet_reader
from tethering_verifier.lib.packets.tethering_tester import TetheringTester, random_mac
from tethering_verifier.lib.tethering.domain import (
    ConnectivityScope,
    LinkAddress,
    TetheredClient,
    TetheringRequest,
    TetheringType,
)
from tethering_verifier.lib.tethering.event_tracker import TetheringEventTracker
from tethering_verifier.lib.tethering.interface_requester import TetheredInterfaceRequester
from tethering_verifier.lib.tethering.service import (
    AddressInspector,
    DownstreamLink,
    EthernetManager,
    LinkProvisioner,
    StartTetheringCallback,
    TetheringService,
    UpstreamProvisioner,
    UpstreamTestNetwork,
)

TEST_IP4_ADDR = LinkAddress.parse("10.0.0.1/8")
TEST_IP6_ADDR = LinkAddress.parse("2001:db8:1::101/64")

STATIC_LOCAL_ADDR = "192.0.2.3/28"
STATIC_CLIENT_ADDR = "192.0.2.2/28"
STATIC_CLIENT_MAC = "01:02:03:04:05:06"
SECOND_CLIENT_MAC = "0a:0b:0c:0d:0e:0f"

INVALID_STATIC_IPV4_PAIRS: List[Tuple[Optional[str], Optional[str]]] = [
    (None, None),
    ("2001:db8::1/64", "2001:db8:2::/64"),
    ("192.0.2.2/28", "2001:db8:2::/28"),
    ("2001:db8:2::/28", "192.0.2.2/28"),
    ("192.0.2.2/28", None),
    (None, "192.0.2.2/28"),
    ("192.0.2.3/27", "192.0.2.2/28"),
]


@dataclass
class TetheringContext:
    """The platform collaborators a scenario runs against"""

    tethering_service: TetheringService
    ethernet_manager: EthernetManager
    link_provisioner: LinkProvisioner
    address_inspector: AddressInspector = field(default_factory=IPRouteAddressInspector)
    upstream_provisioner: Optional[UpstreamProvisioner] = None


class _FailOnStartCallback(StartTetheringCallback):
    def __init__(self, tracker: TetheringEventTracker):
        self.tracker = tracker

    def on_tethering_failed(self, result_code: int) -> None:
        self.tracker.abort(
            ScenarioAssertionError(f"Unexpectedly got on_tethering_failed ({result_code})")
        )


class EthernetTetheringScenario:
    """
    End to end checks of Ethernet tethering over a tap interface.

    Use as a context manager, or call set_up() and tear_down() around one of
    the run_* methods. tear_down() always tries every cleanup step so a failed
    run does not leave the interface tethered for the next one.
    """

    def __init__(self, context: TetheringContext, config: Optional[HarnessConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.context = context
        self.config = config or load_harness_config()
        self.timeout_ms = self.config.Timeouts.event_timeout_ms

        self.handler: Optional[HandlerThread] = None
        self.requester: Optional[TetheredInterfaceRequester] = None
        self.downstream: Optional[DownstreamLink] = None
        self.reader: Optional[TapPacketReader] = None
        self.tracker: Optional[TetheringEventTracker] = None
        self.upstream: Optional[UpstreamTestNetwork] = None

    @property
    def service(self) -> TetheringService:
        return self.context.tethering_service

    @property
    def ethernet_manager(self) -> EthernetManager:
        return self.context.ethernet_manager

    def __enter__(self):
        self.set_up()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.tear_down()
        return False

    def set_up(self) -> None:
        if not self.service.is_tethering_supported():
            raise ScenarioSkipped("Tethering is not supported")
        self.handler = HandlerThread(type(self).__name__)
        self.handler.start()
        self.requester = TetheredInterfaceRequester(self.handler, self.ethernet_manager)

    def tear_down(self) -> None:
        errors: List[Exception] = []

        def step(name: str, fn: Callable[[], None]) -> None:
            try:
                fn()
            except Exception as e:
                self.logger.exception(f"Teardown step '{name}' failed: {e}")
                errors.append(e)

        step("clear test network preference", lambda: self.service.set_prefer_test_networks(False))
        if self.upstream is not None:
            step("tear down upstream", self.upstream.teardown)
            self.upstream = None

        step("stop tethering", lambda: self.service.stop_tethering(TetheringType.ETHERNET))
        if self.tracker is not None:
            step("await untethered", self.tracker.await_interface_untethered)
            step("unregister tracker", self.tracker.unregister)
            self.tracker = None

        if self.reader is not None and self.handler is not None:
            step("stop reader", lambda reader=self.reader: self.handler.post(reader.stop))
            self.reader = None
        if self.handler is not None:
            step("quit handler", lambda: self.handler.quit_safely(self.timeout_ms))
        if self.requester is not None:
            step("release interface request", self.requester.release)
        step(
            "exclude test interfaces",
            lambda: self.ethernet_manager.set_include_test_interfaces(False),
        )
        step("delete test interface", self._maybe_delete_test_interface)

        if errors:
            raise errors[0]

    def _maybe_delete_test_interface(self) -> None:
        if self.downstream is not None:
            name = self.downstream.interface_name
            self.downstream.close()
            self.downstream = None
            self.logger.debug(f"Deleted test interface {name}")

    def _assume_no_physical_ethernet(self) -> None:
        # These scenarios manipulate packets, which a real link would disturb
        if self.ethernet_manager.is_available():
            raise ScenarioSkipped("A physical Ethernet interface is connected")

    def _create_test_interface(self) -> DownstreamLink:
        self.downstream = self.context.link_provisioner.create_tap_interface()
        self.logger.debug(f"Created test interface {self.downstream.interface_name}")
        return self.downstream

    def _expect_requested_interface(self, iface: str) -> None:
        if iface != self.downstream.interface_name:
            raise ScenarioAssertionError(
                f"TetheredInterfaceCallback for unexpected interface: expected "
                f"{self.downstream.interface_name}, got {iface}"
            )

    def _get_mtu(self, iface: str) -> int:
        return self.context.address_inspector.get_mtu(iface)

    def _make_packet_reader(self, link: DownstreamLink, mtu: Optional[int] = None) -> TapPacketReader:
        if mtu is None:
            mtu = self._get_mtu(link.interface_name)
        self.reader = make_packet_reader(self.handler, link.fileno(), mtu, self.timeout_ms)
        return self.reader

    def enable_ethernet_tethering(
        self, iface: str, request: Optional[TetheringRequest] = None
    ) -> TetheringEventTracker:
        """Register a tracker, start tethering and wait for the requested state"""
        if request is None:
            request = TetheringRequest(tethering_type=TetheringType.ETHERNET)

        tracker = TetheringEventTracker(self.service, iface, timeout_ms=self.timeout_ms)
        tracker.register(self.handler.post)
        # Owned by the scenario from here on, so tear_down unregisters it
        self.tracker = tracker
        self.logger.debug("Starting Ethernet tethering")
        try:
            self.service.start_tethering(request, self.handler.post, _FailOnStartCallback(tracker))
        except InvalidConfigurationError:
            tracker.unregister()
            self.tracker = None
            raise

        if request.connectivity_scope == ConnectivityScope.GLOBAL:
            tracker.await_interface_tethered()
        elif request.connectivity_scope == ConnectivityScope.LOCAL:
            tracker.await_interface_local_only()
        else:
            raise ScenarioAssertionError(
                f"Unexpected connectivity scope requested: {request.connectivity_scope}"
            )
        return tracker

    def run_virtual_ethernet_already_exists(self) -> None:
        self._assume_no_physical_ethernet()

        link = self._create_test_interface()
        # Read the MTU now: once test interfaces are included the interface is
        # put in client mode and loses its addresses
        mtu = self._get_mtu(link.interface_name)

        self.logger.debug("Including test interfaces")
        self.ethernet_manager.set_include_test_interfaces(True)

        iface = self.requester.get_interface(self.timeout_ms)
        self._expect_requested_interface(iface)
        self.check_virtual_ethernet(link, mtu)

    def run_virtual_ethernet(self) -> None:
        self._assume_no_physical_ethernet()

        future_iface = self.requester.request_interface()
        self.ethernet_manager.set_include_test_interfaces(True)
        link = self._create_test_interface()

        try:
            iface = future_iface.result(timeout=self.timeout_ms / 1000)
        except concurrent.futures.TimeoutError:
            raise WaitTimeoutError(
                f"No tethered interface available after {self.timeout_ms}ms", self.timeout_ms
            )
        self._expect_requested_interface(iface)
        self.check_virtual_ethernet(link, self._get_mtu(link.interface_name))

    def check_virtual_ethernet(self, link: DownstreamLink, mtu: int) -> None:
        reader = self._make_packet_reader(link, mtu)
        self.enable_ethernet_tethering(link.interface_name)
        self.check_tethered_client_callbacks(reader)

    def check_tethered_client_callbacks(self, reader: TapPacketReader) -> None:
        client_mac = random_mac()
        tester = TetheringTester(reader, self.config)
        lease = tester.run_dhcp(client_mac)

        clients = self.tracker.await_client_connected()
        if len(clients) != 1:
            raise ScenarioAssertionError(f"Expected exactly one client, got {clients}")
        self.check_client_record(clients[0], lease)

    def check_client_record(self, client: TetheredClient, lease: LeaseResult) -> None:
        """Compare a reported client with the lease the DHCP exchange produced"""
        if client.mac_address.lower() != lease.client_mac:
            raise ScenarioAssertionError(
                f"Client MAC {client.mac_address} does not match {lease.client_mac}"
            )
        if client.tethering_type != TetheringType.ETHERNET:
            raise ScenarioAssertionError(f"Unexpected tethering type {client.tethering_type}")
        if len(client.addresses) != 1:
            raise ScenarioAssertionError(f"Expected one address, got {client.addresses}")

        info = client.addresses[0]
        if info.hostname != self.config.Dhcp.hostname:
            raise ScenarioAssertionError(
                f"Hostname {info.hostname!r} does not match {self.config.Dhcp.hostname!r}"
            )
        self.assert_link_address_matches(LinkAddress(address=lease.ip_address), info.address)

        if info.address.expiration_time is None:
            raise ScenarioAssertionError(f"Address {info.address} has no expiration time")
        actual_lease_duration = info.address.expiration_time - time.monotonic()
        tolerance = self.config.Timeouts.lease_tolerance_s
        if abs(lease.lease_duration - actual_lease_duration) >= tolerance:
            raise ScenarioAssertionError(
                f"IP address should have lifetime of {lease.lease_duration}, "
                f"got {actual_lease_duration:.0f}"
            )

    @staticmethod
    def assert_link_address_matches(expected: LinkAddress, actual: LinkAddress) -> None:
        """Compare everything except deprecation and expiry times"""
        if not expected.is_same_address_as(actual):
            raise ScenarioAssertionError(
                f"LinkAddresses do not match. expected: {expected} actual: {actual}"
            )
        if expected.flags != actual.flags:
            raise ScenarioAssertionError(f"LinkAddress flags do not match: {expected} {actual}")
        if expected.scope != actual.scope:
            raise ScenarioAssertionError(f"LinkAddress scope does not match: {expected} {actual}")

    def assert_invalid_static_ipv4_request(
        self, iface: str, local: Optional[str], client: Optional[str]
    ) -> None:
        try:
            self.enable_ethernet_tethering(iface, TetheringRequest.with_static_ipv4(local, client))
        except InvalidConfigurationError as e:
            self.logger.debug(f"Rejected static IPv4 configuration {local}, {client}: {e}")
            return
        raise ScenarioAssertionError(
            f"Unexpectedly accepted invalid IPv4 configuration: {local}, {client}"
        )

    def assert_interface_has_ip_address(self, iface: str, expected: str) -> None:
        expected_addr = LinkAddress.parse(expected)
        addresses = self.context.address_inspector.get_interface_addresses(iface)
        if any(addr.address == expected_addr.address for addr in addresses):
            return
        raise ScenarioAssertionError(
            f"Expected {iface} to have IP address {expected}, found "
            f"{[str(a.address) for a in addresses]}"
        )

    def run_static_ipv4(self) -> LeaseResult:
        self._assume_no_physical_ethernet()

        self.ethernet_manager.set_include_test_interfaces(True)
        link = self._create_test_interface()
        iface = self.requester.get_interface(self.timeout_ms)
        self._expect_requested_interface(iface)

        for local, client in INVALID_STATIC_IPV4_PAIRS:
            self.assert_invalid_static_ipv4_request(iface, local, client)

        tracker = self.enable_ethernet_tethering(
            iface, TetheringRequest.with_static_ipv4(STATIC_LOCAL_ADDR, STATIC_CLIENT_ADDR)
        )
        tracker.await_interface_tethered()
        self.assert_interface_has_ip_address(iface, STATIC_LOCAL_ADDR)

        reader = self._make_packet_reader(link)
        tester = TetheringTester(reader, self.config)
        lease = tester.run_dhcp(STATIC_CLIENT_MAC)
        if lease.ip_address != LinkAddress.parse(STATIC_CLIENT_ADDR).address:
            raise ScenarioAssertionError(
                f"Expected lease for {STATIC_CLIENT_ADDR}, got {lease.ip_address}"
            )

        try:
            second = tester.run_dhcp(SECOND_CLIENT_MAC)
        except WaitTimeoutError:
            self.logger.debug("Second client got no lease, as expected")
        else:
            raise ScenarioAssertionError(
                f"Only one client should get an IP address, {SECOND_CLIENT_MAC} got {second.ip_address}"
            )
        return lease

    def expect_local_only_addresses(self, iface: str) -> None:
        addresses = self.context.address_inspector.get_interface_addresses(iface)

        found_ipv6_ula = False
        for addr in addresses:
            if addr.is_ipv6_ula:
                found_ipv6_ula = True
            if addr.is_ipv6 and addr.is_global_preferred:
                raise ScenarioAssertionError(
                    f"Found global IPv6 address on local-only interface: "
                    f"{[str(a) for a in addresses]}"
                )
        if not found_ipv6_ula:
            raise ScenarioAssertionError(f"Did not find IPv6 ULA on local-only interface {iface}")

    def run_local_only(self) -> None:
        self._assume_no_physical_ethernet()

        self.ethernet_manager.set_include_test_interfaces(True)
        link = self._create_test_interface()
        iface = self.requester.get_interface(self.timeout_ms)
        self._expect_requested_interface(iface)

        request = TetheringRequest(
            tethering_type=TetheringType.ETHERNET,
            connectivity_scope=ConnectivityScope.LOCAL,
        )
        tracker = self.enable_ethernet_tethering(iface, request)
        tracker.await_interface_local_only()

        # The tap interface buffers frames until the reader starts, so a reader
        # created after tethering started still sees the first advertisement
        reader = self._make_packet_reader(link)
        TetheringTester(reader, self.config).expect_router_advertisement(
            self.config.Timeouts.router_advertisement_timeout_ms
        )
        self.expect_local_only_addresses(iface)

    def run_physical_ethernet(self) -> None:
        if not self.ethernet_manager.is_available():
            raise ScenarioSkipped("No physical Ethernet interface is connected")
        if self.config.Session.control_over_network:
            raise ScenarioSkipped("Control session runs over the network")

        iface = self.requester.get_interface(self.timeout_ms)
        # Without a real client on the far end, starting is all that can be checked
        self.enable_ethernet_tethering(iface)

    def run_test_network_upstream(self) -> None:
        self._assume_no_physical_ethernet()
        if self.context.upstream_provisioner is None:
            raise ScenarioSkipped("No upstream provisioner available")

        # The tracker only reports the first upstream, so the test network has
        # to exist and be preferred before tethering starts
        self.service.set_prefer_test_networks(True)
        self.upstream = self.context.upstream_provisioner.create_test_network(
            [TEST_IP4_ADDR, TEST_IP6_ADDR], self.timeout_ms
        )

        link = self._create_test_interface()
        self.ethernet_manager.set_include_test_interfaces(True)
        iface = self.requester.get_interface(self.timeout_ms)
        self._expect_requested_interface(iface)

        tracker = self.enable_ethernet_tethering(link.interface_name)
        upstream = tracker.await_first_upstream_connected()
        if upstream != self.upstream.network:
            raise ScenarioAssertionError(
                f"on_upstream_changed for unexpected network: expected "
                f"{self.upstream.network}, got {upstream}"
            )
        self._make_packet_reader(link)
