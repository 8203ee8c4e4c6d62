import logging
import threading
from typing import Dict, List, Optional, Tuple

from tethering_verifier.constants import TIMEOUT_MS
from tethering_verifier.exceptions import (
    ProtocolViolationError,
    TetheringVerifierError,
    WaitTimeoutError,
)

from .domain import (
    Events,
    InterfaceState,
    InterfaceStateSet,
    Network,
    TetheredClient,
    TetheringEvent,
    TetheringInterface,
    TetheringType,
)
from .service import Executor, TetheringEventListener, TetheringService


class Gate:
    """A one-shot signal. Firing it again has no effect."""

    def __init__(self, name: str):
        self.name = name
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    @property
    def fired(self) -> bool:
        return self._event.is_set() and self._error is None

    def fire(self) -> bool:
        """Returns True only for the call that actually fired the gate"""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def abort(self, error: BaseException) -> None:
        """Release waiters with an error, unless the gate already fired"""
        with self._lock:
            if self._event.is_set():
                return
            self._error = error
            self._event.set()

    def wait(self, timeout_ms: float) -> bool:
        if not self._event.wait(timeout_ms / 1000):
            return False
        if self._error is not None:
            raise self._error
        return True


class StateTransitionLatch:
    """Edge detection for one interface in one operating state"""

    def __init__(self, identity: TetheringInterface, state: InterfaceState):
        self.identity = identity
        self.state = state
        self.entered = Gate(f"{identity} entered {state.value}")
        self.left = Gate(f"{identity} left {state.value}")
        self.present = False

    def update(self, snapshot: InterfaceStateSet) -> Optional[str]:
        """Feed a full snapshot. Returns "entered" or "left" when a gate fires."""
        present = self.identity in snapshot
        if present == self.present:
            return None
        self.present = present
        if present:
            return "entered" if self.entered.fire() else None
        if self.entered.fired and self.left.fire():
            return "left"
        return None


class TetheringEventTracker:
    """
    Listens to the tethering service on behalf of one downstream interface and
    turns its snapshots into gates a scenario can wait on.

    Notifications are handled on the thread the registration executor runs
    them on. Waits happen on the scenario thread.
    """

    def __init__(
        self,
        service: TetheringService,
        interface: str,
        tethering_type: TetheringType = TetheringType.ETHERNET,
        timeout_ms: float = TIMEOUT_MS,
    ):
        self.logger = logging.getLogger(__name__)
        self.service = service
        self.identity = TetheringInterface(tethering_type=tethering_type, interface=interface)
        self.timeout_ms = timeout_ms
        self.logger.info(f"Initializing {__name__} for {self.identity}")

        self.latches: Dict[InterfaceState, StateTransitionLatch] = {
            state: StateTransitionLatch(self.identity, state) for state in InterfaceState
        }
        self.client_connected = Gate("client connected")
        self.upstream_connected = Gate("upstream connected")
        self.transitions: List[Tuple[InterfaceState, str]] = []

        self._lock = threading.Lock()
        self._clients: List[TetheredClient] = []
        self._upstream: Optional[Network] = None
        self._failure: Optional[TetheringVerifierError] = None
        self._unregistered = threading.Event()
        self.listener = TetheringEventListener(self.handle)

    @property
    def unregistered(self) -> bool:
        return self._unregistered.is_set()

    def register(self, executor: Executor) -> None:
        self.service.register_tethering_event_callback(executor, self.listener)

    def unregister(self) -> None:
        # The service may still deliver callbacks queued before it saw this
        self._unregistered.set()
        self.service.unregister_tethering_event_callback(self.listener)
        self.logger.debug(f"Unregistered tracker for {self.identity}")

    def handle(self, event: TetheringEvent) -> None:
        if self._unregistered.is_set():
            self.logger.debug(f"Ignoring stale {type(event).__name__} after unregister")
            return

        if isinstance(event, Events.TetheredInterfacesChanged):
            self._update_state(InterfaceState.TETHERED, event.interfaces)
        elif isinstance(event, Events.LocalOnlyInterfacesChanged):
            self._update_state(InterfaceState.LOCAL_ONLY, event.interfaces)
        elif isinstance(event, Events.ClientsChanged):
            self._update_clients(event.clients)
        elif isinstance(event, Events.UpstreamChanged):
            self._update_upstream(event.network)
        elif isinstance(
            event, (Events.LegacyTetheredInterfacesChanged, Events.LegacyLocalOnlyInterfacesChanged)
        ):
            self._fail(
                ProtocolViolationError(
                    f"Got {type(event).__name__}({event.interfaces}); "
                    "only interface set notifications may be delivered"
                )
            )
        elif isinstance(event, Events.TetheringError):
            self._fail(
                ProtocolViolationError(
                    f"Tethering error {event.error} on interface {event.interface}"
                )
            )
        else:
            self._fail(ProtocolViolationError(f"Unknown tethering event {event!r}"))

    def abort(self, error: TetheringVerifierError) -> None:
        """Record a fatal error and release every waiter with it"""
        self.logger.error(str(error))
        with self._lock:
            if self._failure is None:
                self._failure = error
        for gate in self._gates():
            gate.abort(error)

    def _fail(self, error: ProtocolViolationError) -> None:
        self.abort(error)
        raise error

    def _gates(self) -> List[Gate]:
        gates = [self.client_connected, self.upstream_connected]
        for latch in self.latches.values():
            gates.extend([latch.entered, latch.left])
        return gates

    def _update_state(self, state: InterfaceState, snapshot: InterfaceStateSet) -> None:
        edge = self.latches[state].update(snapshot)
        if edge is None:
            return
        self.transitions.append((state, edge))
        self.logger.info(f"{self.identity} {edge} {state.value}: {sorted(map(str, snapshot))}")

    def _update_clients(self, clients: List[TetheredClient]) -> None:
        self.logger.debug(f"Got clients changed: {clients}")
        with self._lock:
            self._clients = list(clients)
        if clients:
            self.client_connected.fire()

    def _update_upstream(self, network: Optional[Network]) -> None:
        self.logger.debug(f"Got upstream changed: {network}")
        with self._lock:
            self._upstream = network
        if network is not None:
            self.upstream_connected.fire()

    def check_failure(self) -> None:
        with self._lock:
            if self._failure is not None:
                raise self._failure

    def _await(self, gate: Gate, message: str, timeout_ms: Optional[float]) -> None:
        self.check_failure()
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        if not gate.wait(timeout_ms):
            raise WaitTimeoutError(f"{message} after {timeout_ms}ms", timeout_ms)

    def was_entered(self, state: InterfaceState) -> bool:
        return self.latches[state].entered.fired

    def await_entered(self, state: InterfaceState, timeout_ms: Optional[float] = None) -> None:
        self._await(self.latches[state].entered, f"{self.identity} not {state.value}", timeout_ms)

    def await_left(self, state: InterfaceState, timeout_ms: Optional[float] = None) -> None:
        self._await(
            self.latches[state].left, f"{self.identity} still {state.value}", timeout_ms
        )

    def await_interface_tethered(self, timeout_ms: Optional[float] = None) -> None:
        self.await_entered(InterfaceState.TETHERED, timeout_ms)

    def await_interface_local_only(self, timeout_ms: Optional[float] = None) -> None:
        self.await_entered(InterfaceState.LOCAL_ONLY, timeout_ms)

    def await_interface_untethered(self, timeout_ms: Optional[float] = None) -> None:
        """
        Wait for the interface to leave whichever state it entered. Returns at
        once if it never entered one, so a failed start does not block teardown.
        """
        tethered = self.was_entered(InterfaceState.TETHERED)
        local_only = self.was_entered(InterfaceState.LOCAL_ONLY)
        if tethered and local_only:
            raise ProtocolViolationError(f"{self.identity} was both tethered and local-only")
        if tethered:
            self.await_left(InterfaceState.TETHERED, timeout_ms)
        elif local_only:
            self.await_left(InterfaceState.LOCAL_ONLY, timeout_ms)

    def await_client_connected(self, timeout_ms: Optional[float] = None) -> List[TetheredClient]:
        self._await(self.client_connected, "Did not receive client connected callback", timeout_ms)
        with self._lock:
            return list(self._clients)

    def await_first_upstream_connected(self, timeout_ms: Optional[float] = None) -> Network:
        self._await(
            self.upstream_connected, "Did not receive upstream connected callback", timeout_ms
        )
        with self._lock:
            return self._upstream

    @property
    def clients(self) -> List[TetheredClient]:
        with self._lock:
            return list(self._clients)

    @property
    def upstream(self) -> Optional[Network]:
        with self._lock:
            return self._upstream
