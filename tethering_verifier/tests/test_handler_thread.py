import threading
import time

import pytest

from tethering_verifier.exceptions import WaitTimeoutError
from tethering_verifier.lib.handler_thread import HandlerThread


def test_posted_work_runs_in_order_on_handler_thread(handler):
    seen = []

    for i in range(10):
        handler.post(lambda i=i: seen.append((i, threading.current_thread().name)))
    handler.wait_for_idle(1000)

    assert [i for i, _ in seen] == list(range(10))
    assert {name for _, name in seen} == {"TestHandler"}


def test_run_sync_returns_result_and_propagates_errors(handler):
    assert handler.run_sync(lambda: 41 + 1, 1000) == 42

    def boom():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        handler.run_sync(boom, 1000)


def test_run_sync_on_handler_thread_runs_inline(handler):
    assert handler.run_sync(lambda: handler.run_sync(handler.is_current_thread, 10), 1000)


def test_run_sync_times_out(handler):
    handler.post(time.sleep, 0.3)

    with pytest.raises(WaitTimeoutError) as exc_info:
        handler.run_sync(lambda: None, 20)

    assert exc_info.value.timeout_ms == 20


def test_quit_safely_finishes_posted_work():
    thread = HandlerThread("QuitHandler")
    thread.start()
    assert thread.running
    seen = []

    thread.post(time.sleep, 0.05)
    thread.post(seen.append, "done")
    thread.quit_safely(2000)

    assert seen == ["done"]
    assert not thread.is_alive()
    # Quitting twice is harmless
    thread.quit_safely(100)
