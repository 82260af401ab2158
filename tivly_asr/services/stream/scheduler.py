"""Coalescing flush scheduler.

Items are appended to a queue and applied in batches: a flush is scheduled
one frame ahead on the event loop and, when it fires, runs at most once per
``min_interval``. A flush that fires too early reschedules itself instead of
dropping the batch. Every flush drains the whole queue in arrival order.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class CoalescingScheduler:
    """Batches rapid updates into at most one flush per interval.

    The queue has a single writer (the owning event loop) and is fully
    drained on every flush.

    Args:
        flush: Called with the drained batch (a non-empty list).
        min_interval: Minimum seconds between two non-forced flushes.
        frame_delay: Delay before a scheduled flush fires (one frame).
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        flush: Callable[[list[Any]], None],
        min_interval: float = 0.1,
        frame_delay: float = 1 / 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._flush = flush
        self._min_interval = min_interval
        self._frame_delay = frame_delay
        self._clock = clock
        self._queue: list[Any] = []
        self._handle: asyncio.TimerHandle | None = None
        self._last_flush_at = -math.inf

    @property
    def pending(self) -> int:
        """Number of queued items awaiting a flush."""
        return len(self._queue)

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def enqueue(self, item: Any) -> None:
        """Queue an item and make sure a flush is scheduled."""
        self._queue.append(item)
        self.schedule()

    def schedule(self) -> None:
        """Schedule a frame-aligned flush unless one is already pending."""
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._frame_delay, self._on_frame)

    def flush_now(self) -> None:
        """Flush synchronously, ignoring the interval gate."""
        self._cancel_handle()
        self._run(force=True)

    def cancel(self) -> None:
        """Drop any pending flush and queued items."""
        self._cancel_handle()
        self._queue = []

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_frame(self) -> None:
        self._handle = None
        self._run(force=False)

    def _run(self, force: bool) -> None:
        now = self._clock()
        if not force and now - self._last_flush_at < self._min_interval:
            self.schedule()
            return

        self._last_flush_at = now
        batch, self._queue = self._queue, []
        if not batch:
            return
        logger.debug("Flushing %d queued update(s)", len(batch))
        self._flush(batch)
