from __future__ import annotations

import atexit
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from lifesim.domain.errors import RemoteTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT_S = 8.0

_EXECUTOR: Optional[ThreadPoolExecutor] = None
_EXECUTOR_LOCK = threading.Lock()


def _executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            _EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="lifesim-remote")
        return _EXECUTOR


def shutdown_remote_calls(*, wait: bool = False) -> None:
    """Stop the worker pool. A later call starts a fresh one."""

    global _EXECUTOR
    with _EXECUTOR_LOCK:
        executor, _EXECUTOR = _EXECUTOR, None
    if executor is not None:
        executor.shutdown(wait=wait, cancel_futures=True)


atexit.register(shutdown_remote_calls)


def call_timeout_seconds() -> float:
    return max(0.0, float(os.getenv("LIFESIM_CALL_TIMEOUT_S", str(DEFAULT_CALL_TIMEOUT_S))))


def call_with_timeout(func: Callable[[], T], *, timeout: Optional[float] = None, label: str = "remote call") -> T:
    """Race ``func`` against a timer.

    The call is not cancelled on timeout; its result is simply discarded.
    A timeout of 0 runs the call inline.
    """

    seconds = call_timeout_seconds() if timeout is None else max(0.0, float(timeout))
    if seconds <= 0:
        return func()
    future = _executor().submit(func)
    try:
        return future.result(timeout=seconds)
    except FutureTimeout as exc:
        logger.warning("Remote call timed out", extra={"label": label, "timeout_s": seconds})
        raise RemoteTimeoutError(f"{label} timed out after {seconds:.1f}s") from exc
