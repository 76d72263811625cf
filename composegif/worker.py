"""
Background preview scheduling with cooperative cancellation.

Long-running operations (loading, flattening) accept a
:class:`CancelToken` and poll it between iterations.  The
:class:`PreviewScheduler` keeps at most one live task per *target* (a
preview pane, a layer slot, ...): submitting new work for a target
cancels the previous token, and results of superseded tasks are dropped.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from composegif.exceptions import OperationCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """Thread-safe cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation was cancelled.")


class PreviewScheduler:
    """Run work on a thread pool, keeping only the newest task per target.

    Callbacks run on the worker thread.  ``on_result`` receives the
    function's return value; ``on_error`` receives the exception.  Neither
    is called for a task that was superseded or cancelled, and once
    :meth:`submit` or :meth:`cancel` returns, no callback of an earlier
    task for that target runs.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers,
                                        thread_name_prefix="composegif-preview")
        self._lock = threading.Lock()
        self._delivery = threading.RLock()
        self._active: dict[Hashable, CancelToken] = {}

    def submit(
        self,
        target: Hashable,
        fn: Callable[..., Any],
        *args: Any,
        on_result: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Future:
        """Schedule ``fn(*args, cancel=token)`` for *target*."""
        token = CancelToken()
        with self._lock:
            previous = self._active.get(target)
            if previous is not None:
                previous.cancel()
                logger.debug("Superseded preview task for %r.", target)
            self._active[target] = token
        # Wait out a callback that passed its check before the cancel.
        with self._delivery:
            pass

        def report(exc: BaseException) -> None:
            if on_error is not None:
                on_error(exc)
            else:
                logger.warning("Preview task for %r failed: %s", target, exc)

        def run() -> Any:
            try:
                try:
                    result = fn(*args, cancel=token)
                except OperationCancelled:
                    logger.debug("Preview task for %r cancelled.", target)
                    return None
                except Exception as exc:
                    self._deliver(target, token, report, exc)
                    raise
                if on_result is not None:
                    self._deliver(target, token, on_result, result)
                return result
            finally:
                self._release(target, token)

        return self._pool.submit(run)

    def cancel(self, target: Hashable) -> None:
        with self._lock:
            token = self._active.pop(target, None)
        if token is not None:
            token.cancel()
        with self._delivery:
            pass

    def shutdown(self, wait: bool = True) -> None:
        """Cancel every task and stop the pool."""
        with self._lock:
            tokens = list(self._active.values())
            self._active.clear()
        for token in tokens:
            token.cancel()
        self._pool.shutdown(wait=wait)

    def _deliver(self, target: Hashable, token: CancelToken,
                 callback: Callable[[Any], None], value: Any) -> bool:
        with self._delivery:
            if not self._is_current(target, token) or token.cancelled:
                return False
            callback(value)
            return True

    def _is_current(self, target: Hashable, token: CancelToken) -> bool:
        with self._lock:
            return self._active.get(target) is token and not token.cancelled

    def _release(self, target: Hashable, token: CancelToken) -> None:
        with self._lock:
            if self._active.get(target) is token:
                del self._active[target]
