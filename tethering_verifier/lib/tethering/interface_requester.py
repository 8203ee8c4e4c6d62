import concurrent.futures
import logging
from typing import Optional

from tethering_verifier.constants import TIMEOUT_MS
from tethering_verifier.exceptions import WaitTimeoutError
from tethering_verifier.lib.handler_thread import HandlerThread

from .service import EthernetManager, TetheredInterfaceRequest


class TetheredInterfaceRequester:
    """Asks the Ethernet manager for the interface tethering should use"""

    def __init__(self, handler: HandlerThread, ethernet_manager: EthernetManager):
        self.logger = logging.getLogger(__name__)
        self.handler = handler
        self.ethernet_manager = ethernet_manager

        self.request: Optional[TetheredInterfaceRequest] = None
        self.future: concurrent.futures.Future = concurrent.futures.Future()

    def on_available(self, interface: str) -> None:
        self.logger.debug(f"Ethernet interface available: {interface}")
        if not self.future.done():
            self.future.set_result(interface)

    def on_unavailable(self) -> None:
        if not self.future.done():
            self.future.set_exception(RuntimeError("on_unavailable received"))

    def request_interface(self) -> concurrent.futures.Future:
        if self.request is not None:
            raise RuntimeError("BUG: more than one tethered interface request")
        self.logger.debug("Requesting tethered interface")
        self.request = self.ethernet_manager.request_tethered_interface(self.handler.post, self)
        return self.future

    def get_interface(self, timeout_ms: float = TIMEOUT_MS) -> str:
        future = self.request_interface()
        try:
            return future.result(timeout=timeout_ms / 1000)
        except concurrent.futures.TimeoutError:
            raise WaitTimeoutError(
                f"No tethered interface available after {timeout_ms}ms", timeout_ms
            )

    def release(self) -> None:
        if self.request is None:
            return
        if not self.future.done():
            self.future.set_exception(RuntimeError("Request already released"))
        self.request.release()
        self.request = None
