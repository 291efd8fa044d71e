"""Time-bounded execution of blocking gateway calls."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

from lesson_reminders.domain.errors import NotificationTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BoundedCaller:
    """Run callables on a small worker pool and stop waiting after a timeout.

    A call that times out keeps running on its worker thread; the caller
    gets a NotificationTimeoutError and moves on.
    """

    def __init__(self, timeout_seconds: float, max_workers: int = 4) -> None:
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gateway")

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        future = self._executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.warning("Gateway call %s timed out after %ss", getattr(func, "__name__", func), self.timeout_seconds)
            raise NotificationTimeoutError(
                f"{getattr(func, '__name__', 'call')} exceeded {self.timeout_seconds}s"
            ) from exc

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
