"""
Interfaces of the platform collaborators the harness drives, and the adapter
that turns tethering service callbacks into Events messages.
"""
from typing import Callable, Iterable, List, Optional, Protocol, runtime_checkable

from .domain import (
    Events,
    LinkAddress,
    Network,
    TetheredClient,
    TetheringEvent,
    TetheringInterface,
    TetheringRequest,
    TetheringType,
)

Executor = Callable[..., None]


class StartTetheringCallback:
    """Receives the outcome of a start_tethering call"""

    def on_tethering_started(self) -> None:
        pass

    def on_tethering_failed(self, result_code: int) -> None:
        pass


class TetheringEventCallback(Protocol):
    def on_tethered_interfaces_changed(self, interfaces) -> None: ...

    def on_local_only_interfaces_changed(self, interfaces) -> None: ...

    def on_clients_changed(self, clients: Iterable[TetheredClient]) -> None: ...

    def on_upstream_changed(self, network: Optional[Network]) -> None: ...

    def on_error(self, interface: str, error: int) -> None: ...


@runtime_checkable
class TetheringService(Protocol):
    """The tethering subsystem under test"""

    def is_tethering_supported(self) -> bool: ...

    def start_tethering(
        self, request: TetheringRequest, executor: Executor, callback: StartTetheringCallback
    ) -> None: ...

    def stop_tethering(self, tethering_type: TetheringType) -> None: ...

    def register_tethering_event_callback(
        self, executor: Executor, callback: TetheringEventCallback
    ) -> None: ...

    def unregister_tethering_event_callback(self, callback: TetheringEventCallback) -> None: ...

    def set_prefer_test_networks(self, prefer: bool) -> None: ...


class TetheredInterfaceCallback(Protocol):
    def on_available(self, interface: str) -> None: ...

    def on_unavailable(self) -> None: ...


class TetheredInterfaceRequest(Protocol):
    def release(self) -> None: ...


@runtime_checkable
class EthernetManager(Protocol):
    """Finds the Ethernet interface that tethering should use"""

    def is_available(self) -> bool: ...

    def set_include_test_interfaces(self, include: bool) -> None: ...

    def request_tethered_interface(
        self, executor: Executor, callback: TetheredInterfaceCallback
    ) -> TetheredInterfaceRequest: ...


class DownstreamLink(Protocol):
    """A provisioned tap interface, read and written through its descriptor"""

    interface_name: str

    def fileno(self) -> int: ...

    def close(self) -> None: ...


class LinkProvisioner(Protocol):
    def create_tap_interface(self) -> DownstreamLink: ...


class UpstreamTestNetwork(Protocol):
    network: Network

    def teardown(self) -> None: ...


class UpstreamProvisioner(Protocol):
    def create_test_network(
        self, addresses: List[LinkAddress], timeout_ms: float
    ) -> UpstreamTestNetwork: ...


class AddressInspector(Protocol):
    def get_interface_addresses(self, interface: str) -> List[LinkAddress]: ...

    def get_mtu(self, interface: str) -> int: ...


class TetheringEventListener:
    """
    Registered with the tethering service in place of the tracker. Every
    callback becomes one Events message handed to the sink, in the order the
    service delivered them.
    """

    def __init__(self, sink: Callable[[TetheringEvent], None]):
        self.sink = sink

    @staticmethod
    def _is_legacy(interfaces) -> bool:
        return any(isinstance(item, str) for item in interfaces)

    def on_tethered_interfaces_changed(self, interfaces) -> None:
        interfaces = list(interfaces)
        if self._is_legacy(interfaces):
            self.sink(Events.LegacyTetheredInterfacesChanged(interfaces=interfaces))
        else:
            self.sink(Events.TetheredInterfacesChanged(interfaces=frozenset(interfaces)))

    def on_local_only_interfaces_changed(self, interfaces) -> None:
        interfaces = list(interfaces)
        if self._is_legacy(interfaces):
            self.sink(Events.LegacyLocalOnlyInterfacesChanged(interfaces=interfaces))
        else:
            self.sink(Events.LocalOnlyInterfacesChanged(interfaces=frozenset(interfaces)))

    def on_clients_changed(self, clients: Iterable[TetheredClient]) -> None:
        self.sink(Events.ClientsChanged(clients=list(clients)))

    def on_upstream_changed(self, network: Optional[Network]) -> None:
        self.sink(Events.UpstreamChanged(network=network))

    def on_error(self, interface: str, error: int) -> None:
        self.sink(Events.TetheringError(interface=interface, error=error))


__all__ = [
    "AddressInspector",
    "DownstreamLink",
    "EthernetManager",
    "Executor",
    "LinkProvisioner",
    "StartTetheringCallback",
    "UpstreamTestNetwork",
    "TetheredInterfaceCallback",
    "TetheredInterfaceRequest",
    "TetheringEventCallback",
    "TetheringEventListener",
    "TetheringInterface",
    "TetheringService",
    "UpstreamProvisioner",
]
