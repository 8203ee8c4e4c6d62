import collections
import logging
import os
import threading
import time
from typing import Deque, Optional

from tethering_verifier.constants import TIMEOUT_MS
from tethering_verifier.lib.handler_thread import HandlerThread


class TapPacketReader:
    """
    Reads frames from a raw link descriptor on the handler thread and queues
    them for the scenario thread.

    Frames are kept in arrival order in an unbounded queue. pop_packet() is the
    only way frames leave the queue, and each popped frame belongs to the
    caller.
    """

    def __init__(self, handler: HandlerThread, fd: int, mtu: int, owns_fd: bool = False):
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Initializing {__name__} on fd {fd} (mtu {mtu})")

        self.handler = handler
        self.fd = fd
        self.mtu = mtu
        self.owns_fd = owns_fd

        self._frames: Deque[bytes] = collections.deque()
        self._cond = threading.Condition()
        self._reading = False
        self._closed = False
        self.received_count = 0

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def start(self):
        """Begin reading. Must run on the handler thread."""
        if self._reading or self._closed:
            return
        self.handler.loop.add_reader(self.fd, self._handle_readable)
        self._reading = True
        self.logger.debug(f"Reader started on fd {self.fd}")

    def stop(self):
        """Stop reading and wake any waiter. Must run on the handler thread."""
        self._stop_reading()
        if self.owns_fd:
            try:
                os.close(self.fd)
            except OSError as e:
                self.logger.warning(f"Error closing fd {self.fd}: {e}")
        self.logger.debug(
            f"Reader stopped on fd {self.fd} after {self.received_count} frames"
        )

    def _stop_reading(self):
        if self._reading:
            self.handler.loop.remove_reader(self.fd)
            self._reading = False
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _handle_readable(self):
        try:
            frame = os.read(self.fd, self.mtu)
        except BlockingIOError:
            return
        except OSError as e:
            self.logger.error(f"Read error on fd {self.fd}, closing reader: {e}")
            self._stop_reading()
            return

        if not frame:
            self.logger.info(f"End of stream on fd {self.fd}, closing reader")
            self._stop_reading()
            return

        with self._cond:
            self._frames.append(frame)
            self.received_count += 1
            self._cond.notify()

    def pop_packet(self, timeout_ms: float = TIMEOUT_MS) -> Optional[bytes]:
        """
        Remove and return the oldest frame, waiting up to timeout_ms for one.
        Returns None on timeout, or once the reader is closed and drained.
        """
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000
        with self._cond:
            while not self._frames:
                if self._closed:
                    return None
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            return self._frames.popleft()

    def send_response(self, frame: bytes) -> None:
        """Inject a frame into the link, as if a client had sent it"""
        written = os.write(self.fd, frame)
        if written != len(frame):
            raise OSError(f"Short write on fd {self.fd}: {written} of {len(frame)} bytes")


def make_packet_reader(
    handler: HandlerThread, fd: int, mtu: int, timeout_ms: float = TIMEOUT_MS, owns_fd: bool = False
) -> TapPacketReader:
    """Create a reader, start it on the handler and wait until it is reading"""
    reader = TapPacketReader(handler, fd, mtu, owns_fd=owns_fd)
    handler.post(reader.start)
    handler.wait_for_idle(timeout_ms)
    return reader
