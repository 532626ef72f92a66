"""Deduplicating, rate-limited async work queue of pod identities.

Guarantees:
- An identity is pending at most once: repeated enqueues before it is
  dequeued collapse into a single entry.
- An identity is processed by at most one worker at a time. Enqueues that
  arrive while it is being processed are held back and released by
  :meth:`ReconcileQueue.mark_done` / :meth:`ReconcileQueue.mark_done_and_retry`.
- Failed items come back after a delay of
  ``max(base * 2**failures capped at max_delay, token bucket wait)`` and are
  dropped once they have been requeued ``max_retries`` times.
- After :meth:`ReconcileQueue.shutdown` no dequeue succeeds and retries that
  have not fired yet are abandoned.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from sidecar_terminator.models.pods import PodIdentity
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import (
    queue_adds_total,
    queue_depth,
    queue_drops_total,
    queue_retries_total,
    queue_retry_delay_seconds,
)

_log = get_logger("controller.queue")

_DEFAULT_BASE_DELAY_S: float = 0.005
_DEFAULT_MAX_DELAY_S: float = 1000.0
_DEFAULT_QPS: float = 10.0
_DEFAULT_BURST: int = 100
_DEFAULT_MAX_RETRIES: int = 15


class ItemExponentialBackoff:
    """Per-item exponential back-off: ``base * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = _DEFAULT_BASE_DELAY_S, max_delay: float = _DEFAULT_MAX_DELAY_S) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Any, int] = {}

    def when(self, item: Any) -> float:
        exp = self._failures.get(item, 0)
        self._failures[item] = exp + 1
        # 2**64 already dwarfs any sane ceiling
        delay = self._base_delay * (2.0 ** min(exp, 64))
        return min(delay, self._max_delay)

    def num_requeues(self, item: Any) -> int:
        return self._failures.get(item, 0)

    def forget(self, item: Any) -> None:
        self._failures.pop(item, None)


class TokenBucket:
    """Overall rate limit shared by every item: ``qps`` refill, ``burst`` capacity."""

    def __init__(
        self,
        qps: float = _DEFAULT_QPS,
        burst: int = _DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._qps = qps
        self._burst = float(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def reserve(self) -> float:
        """Take one token and return how long the caller must wait for it."""
        now = self._clock()
        self._tokens = min(self._burst, self._tokens + (now - self._last) * self._qps)
        self._last = now
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._qps


class RateLimiter:
    """Combines per-item back-off with the overall bucket; the longer delay wins."""

    def __init__(
        self,
        backoff: ItemExponentialBackoff | None = None,
        bucket: TokenBucket | None = None,
    ) -> None:
        self._backoff = backoff or ItemExponentialBackoff()
        self._bucket = bucket or TokenBucket()

    def when(self, item: Any) -> float:
        return max(self._backoff.when(item), self._bucket.reserve())

    def num_requeues(self, item: Any) -> int:
        return self._backoff.num_requeues(item)

    def forget(self, item: Any) -> None:
        self._backoff.forget(item)


class ReconcileQueue:
    """Work queue of :class:`PodIdentity` keys shared by all reconcile workers.

    Lifecycle::

        queue = ReconcileQueue()
        queue.enqueue(PodIdentity("default", "job-abc12"))
        identity, ok = await queue.dequeue()
        try:
            await reconcile(identity)
        except Exception:
            queue.mark_done_and_retry(identity)
        else:
            queue.mark_done(identity)
        queue.shutdown()
    """

    def __init__(self, rate_limiter: RateLimiter | None = None, max_retries: int = _DEFAULT_MAX_RETRIES) -> None:
        self._rate_limiter = rate_limiter or RateLimiter()
        self._max_retries = max_retries

        self._queue: deque[Any] = deque()
        # Items that need processing: pending in _queue, or held back while processing
        self._dirty: set[Any] = set()
        self._processing: set[Any] = set()

        self._waiters: deque[asyncio.Future[None]] = deque()
        self._delayed: dict[Any, tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def enqueue(self, identity: PodIdentity) -> None:
        """Mark *identity* as needing reconciliation."""
        if self._shutting_down:
            return
        if identity in self._dirty:
            return
        self._dirty.add(identity)
        if identity in self._processing:
            # Released by mark_done once the in-flight worker finishes
            return
        self._queue.append(identity)
        queue_adds_total.inc()
        queue_depth.set(len(self._queue))
        self._wakeup_one()

    async def dequeue(self) -> tuple[PodIdentity | None, bool]:
        """Wait for the next identity.

        Returns ``(identity, True)``, or ``(None, False)`` once the queue is
        shutting down.
        """
        while not self._queue and not self._shutting_down:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            except asyncio.CancelledError:
                if waiter.done() and not waiter.cancelled():
                    # Hand our wake-up to somebody else
                    self._wakeup_one()
                raise
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

        if self._shutting_down:
            return None, False

        identity = self._queue.popleft()
        self._processing.add(identity)
        self._dirty.discard(identity)
        queue_depth.set(len(self._queue))
        return identity, True

    def mark_done(self, identity: Any) -> None:
        """Finish processing *identity* successfully; forget its retry history."""
        self._rate_limiter.forget(identity)
        self._done(identity)

    def mark_done_and_retry(self, identity: Any) -> bool:
        """Finish processing *identity* and schedule it again after back-off.

        Returns False when the retry ceiling was reached and the item was
        dropped instead.
        """
        self._done(identity)
        requeues = self._rate_limiter.num_requeues(identity)
        if requeues >= self._max_retries:
            self._rate_limiter.forget(identity)
            queue_drops_total.inc()
            _log.warning("work_item_dropped", pod=str(identity), retries=requeues)
            return False

        delay = self._rate_limiter.when(identity)
        queue_retries_total.inc()
        queue_retry_delay_seconds.observe(delay)
        _log.debug("work_item_requeued", pod=str(identity), retries=requeues + 1, delay_s=delay)
        self.enqueue_after(identity, delay)
        return True

    def enqueue_after(self, identity: PodIdentity, delay: float) -> None:
        """Enqueue *identity* once *delay* seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.enqueue(identity)
            return

        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay
        existing = self._delayed.get(identity)
        if existing is not None:
            if existing[0] <= ready_at:
                return
            existing[1].cancel()
        handle = loop.call_at(ready_at, self._fire_delayed, identity)
        self._delayed[identity] = (ready_at, handle)

    def shutdown(self) -> None:
        """Stop handing out work; wake all waiting workers."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for _ready_at, handle in self._delayed.values():
            handle.cancel()
        abandoned = len(self._delayed)
        self._delayed.clear()
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
        _log.info("queue_shutdown", pending=len(self._queue), abandoned_retries=abandoned)

    def num_requeues(self, identity: PodIdentity) -> int:
        return self._rate_limiter.num_requeues(identity)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def __len__(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _done(self, identity: Any) -> None:
        self._processing.discard(identity)
        if identity in self._dirty and not self._shutting_down:
            self._queue.append(identity)
            queue_depth.set(len(self._queue))
            self._wakeup_one()

    def _fire_delayed(self, identity: PodIdentity) -> None:
        self._delayed.pop(identity, None)
        self.enqueue(identity)

    def _wakeup_one(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
