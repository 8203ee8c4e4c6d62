import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Callable, Optional

from tethering_verifier.exceptions import WaitTimeoutError


class HandlerThread(threading.Thread):
    """
    A worker thread that owns an asyncio event loop.

    Everything posted to it runs on that one thread, in posting order, so the
    packet reader and tethering callbacks never race each other. Other threads
    only interact with it through post(), run_sync() and wait_for_idle().
    """

    def __init__(self, name: str = "HandlerThread"):
        super().__init__(name=name, daemon=True)
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Initializing {__name__} ({name})")

        self.loop = asyncio.new_event_loop()
        self._ready = threading.Event()

    def run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._ready.set)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()
            self.logger.debug(f"{self.name} loop closed")

    def start(self):
        super().start()
        self._ready.wait()

    @property
    def running(self) -> bool:
        return self.is_alive() and self.loop.is_running()

    def is_current_thread(self) -> bool:
        return threading.current_thread() is self

    def post(self, fn: Callable, *args) -> None:
        """Queue fn(*args) to run on the handler thread"""
        self.loop.call_soon_threadsafe(fn, *args)

    def run_sync(self, fn: Callable[[], Any], timeout_ms: float) -> Any:
        """Run fn on the handler thread and return its result to the caller"""
        if self.is_current_thread():
            return fn()

        future: concurrent.futures.Future = concurrent.futures.Future()

        def runner():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn())
            except BaseException as e:
                future.set_exception(e)

        self.post(runner)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise WaitTimeoutError(
                f"{self.name} did not run task within {timeout_ms}ms", timeout_ms
            )

    def wait_for_idle(self, timeout_ms: float) -> None:
        """Block until everything posted before this call has run"""
        self.run_sync(lambda: None, timeout_ms)

    def quit_safely(self, timeout_ms: Optional[float] = None) -> None:
        """Let already posted work finish, then stop the loop and join"""
        if not self.is_alive():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        if not self.is_current_thread():
            self.join(None if timeout_ms is None else timeout_ms / 1000)
