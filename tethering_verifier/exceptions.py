from typing import Optional


class TetheringVerifierError(Exception):
    """Base class for every error raised by the harness"""


class WaitTimeoutError(TetheringVerifierError, TimeoutError):
    """An expected asynchronous event did not happen within its timeout"""

    def __init__(self, message: str, timeout_ms: Optional[float] = None):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class MalformedHeaderError(TetheringVerifierError, ValueError):
    """A captured frame is too short to hold the header expected at a given layer"""

    def __init__(self, layer: str, offset: int, needed: int, available: int):
        super().__init__(
            f"Cannot decode {layer} header at offset {offset}: "
            f"need {needed} bytes, {available} available"
        )
        self.layer = layer
        self.offset = offset
        self.needed = needed
        self.available = available


class ProtocolViolationError(TetheringVerifierError):
    """The tethering service delivered a notification it must never deliver"""


class InvalidConfigurationError(TetheringVerifierError, ValueError):
    """A requested static address configuration contradicts itself"""


class DhcpNakError(TetheringVerifierError):
    """The DHCP server refused the request for our transaction"""


class InterfaceNotFoundError(TetheringVerifierError, LookupError):
    pass


class ScenarioAssertionError(TetheringVerifierError, AssertionError):
    """A scenario observed a value other than the one it expected"""


class ScenarioSkipped(TetheringVerifierError):
    """The device cannot run this scenario, for example a physical link is plugged in"""
