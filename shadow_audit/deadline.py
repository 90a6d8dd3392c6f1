"""Bounded-wait wrapper for a single blocking Graph call."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable


def call_with_deadline(fn: Callable[..., Any], *args: Any, timeout: float) -> Any:
    """
    Run fn(*args) and return its result, or raise TimeoutError after `timeout` seconds.

    The call runs on a throw-away daemon thread so a hung request blocks
    neither the scan nor interpreter exit. On timeout the thread is abandoned,
    not cancelled; its result is discarded whenever it finishes.
    """
    future: Future = Future()

    def worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except BaseException as exc:
            future.set_exception(exc)

    threading.Thread(target=worker, name="graph-deadline", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise TimeoutError(f"call did not complete within {timeout:g}s") from None
