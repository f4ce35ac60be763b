"""Ordered fan-out/fan-in over repositories with per-item failure isolation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

from .errors import ConvoyAbort

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_POLL_INTERVAL = 0.1


class CancelToken:
    """A one-shot cancellation signal shared by a command invocation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self.is_set():
            raise ConvoyAbort()


def run_ordered(
    operation: Callable[[T], R],
    items: Sequence[T],
    *,
    on_error: Callable[[T, Exception], R],
    max_workers: int = 8,
    sequential: bool = False,
    cancel: CancelToken | None = None,
) -> list[R]:
    """Apply ``operation`` to every item concurrently.

    ``results[i]`` always belongs to ``items[i]`` regardless of completion
    order. An exception from one item is turned into a result by
    ``on_error`` and never affects its siblings. If ``cancel`` fires, pending
    work is abandoned and ConvoyAbort is raised.
    """

    def guarded(item: T) -> R:
        try:
            return operation(item)
        except ConvoyAbort:
            raise
        except Exception as e:
            logger.warning("%s failed: %s", item, e)
            return on_error(item, e)

    if sequential or len(items) <= 1:
        results = []
        for item in items:
            if cancel is not None:
                cancel.raise_if_cancelled()
            results.append(guarded(item))
        if cancel is not None:
            cancel.raise_if_cancelled()
        return results

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures: list[Future] = [executor.submit(guarded, item) for item in items]
        pending = set(futures)
        while pending:
            if cancel is not None and cancel.is_set():
                raise ConvoyAbort()
            _, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
        if cancel is not None:
            cancel.raise_if_cancelled()
        return [future.result() for future in futures]
    finally:
        cancelled = cancel is not None and cancel.is_set()
        executor.shutdown(wait=not cancelled, cancel_futures=cancelled)
