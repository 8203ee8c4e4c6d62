"""
Tethering Module

Models and listeners for the tethering service under test:
- TetheringEventTracker: edge-triggered gates over interface state snapshots
- TetheringEventListener: adapts service callbacks into Events messages
- TetheredInterfaceRequester: obtains the downstream Ethernet interface
- domain: identities, requests, client records and event messages
"""

from .domain import (
    ConnectivityScope,
    Events,
    InterfaceState,
    LinkAddress,
    Network,
    TetheredClient,
    TetheringInterface,
    TetheringRequest,
    TetheringType,
)
from .event_tracker import Gate, StateTransitionLatch, TetheringEventTracker
from .interface_requester import TetheredInterfaceRequester
from .service import StartTetheringCallback, TetheringEventListener

__all__ = [
    "ConnectivityScope",
    "Events",
    "InterfaceState",
    "LinkAddress",
    "Network",
    "TetheredClient",
    "TetheringInterface",
    "TetheringRequest",
    "TetheringType",
    "Gate",
    "StateTransitionLatch",
    "TetheringEventTracker",
    "TetheredInterfaceRequester",
    "StartTetheringCallback",
    "TetheringEventListener",
]
