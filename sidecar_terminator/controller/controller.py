"""Worker pool driving the reconcile queue.

Lifecycle::

    controller = Controller(queue, reconciler, pods)
    task = asyncio.create_task(controller.run(workers=2))
    ...
    controller.stop()   # or task.cancel()
    await task          # returns once every worker has exited

Each worker loops ``dequeue -> reconcile -> mark_done | mark_done_and_retry``.
The queue is the only mutual exclusion between workers: it never hands the
same pod to two workers at once.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from sidecar_terminator.models.pods import PodIdentity
from sidecar_terminator.notifications.recorder import EVENT_TYPE_WARNING, EventRecorder
from sidecar_terminator.observability.logging import get_logger

if TYPE_CHECKING:
    from sidecar_terminator.cache.pod_store import PodStore
    from sidecar_terminator.controller.queue import ReconcileQueue
    from sidecar_terminator.controller.reconciler import Reconciler

_DEFAULT_CACHE_SYNC_TIMEOUT_S: float = 60.0
_WORKER_RESTART_DELAY_S: float = 1.0

REASON_RETRIES_EXHAUSTED = "SidecarTerminationFailed"


class Controller:
    """Owns the worker tasks; the queue and store are injected."""

    def __init__(
        self,
        queue: ReconcileQueue,
        reconciler: Reconciler,
        pods: PodStore,
        recorder: EventRecorder | None = None,
        cache_sync_timeout: float = _DEFAULT_CACHE_SYNC_TIMEOUT_S,
    ) -> None:
        self._queue = queue
        self._reconciler = reconciler
        self._pods = pods
        self._recorder = recorder or EventRecorder()
        self._cache_sync_timeout = cache_sync_timeout
        self._stop_requested = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []
        self._log = get_logger("controller")

    async def run(self, workers: int) -> None:
        """Start *workers* workers and block until stopped or cancelled.

        Raises CacheSyncError if the pod store does not sync in time; nothing
        has been started at that point.
        """
        self._log.info("controller_starting", sidecars=sorted(self._reconciler.sidecars))
        self._log.info("waiting_for_cache_sync", timeout_s=self._cache_sync_timeout)
        await self._pods.wait_for_sync(self._cache_sync_timeout)

        self._log.info("starting_workers", count=workers)
        self._workers = [
            asyncio.create_task(self._run_worker(i), name=f"reconcile-worker-{i}") for i in range(max(1, workers))
        ]
        self._log.info("workers_started")

        try:
            await self._stop_requested.wait()
        finally:
            self._log.info("shutting_down_workers")
            self._queue.shutdown()
            # Shield so a cancelled run() still lets workers finish their item
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(asyncio.gather(*self._workers, return_exceptions=True))
            self._workers = []
            self._log.info("workers_stopped")

    def stop(self) -> None:
        """Request shutdown; safe to call more than once."""
        self._stop_requested.set()

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _run_worker(self, worker_id: int) -> None:
        """Process items until the queue shuts down, restarting after crashes."""
        log = self._log.bind(worker_id=worker_id)
        log.debug("worker_started")
        while True:
            try:
                while await self.process_next_work_item():
                    pass
                break
            except asyncio.CancelledError:
                break
            except Exception as exc:
                log.error("worker_crashed", error=str(exc), exc_info=True)
                await asyncio.sleep(_WORKER_RESTART_DELAY_S)
        log.debug("worker_stopped")

    async def process_next_work_item(self) -> bool:
        """Handle one queue item; returns False once the queue shuts down."""
        item, ok = await self._queue.dequeue()
        if not ok:
            return False

        if not isinstance(item, PodIdentity):
            # Never valid, so never retried
            self._queue.mark_done(item)
            self._log.error("invalid_work_item", item=repr(item))
            return True

        try:
            await self._reconciler.reconcile(item)
        except Exception as exc:
            self._handle_failure(item, exc)
            return True

        self._queue.mark_done(item)
        self._log.info("successfully_synced", pod=item.key)
        return True

    def _handle_failure(self, identity: PodIdentity, exc: Exception) -> None:
        retries = self._queue.num_requeues(identity)
        requeued = self._queue.mark_done_and_retry(identity)
        if requeued:
            self._log.warning(
                "sync_failed_requeuing",
                pod=identity.key,
                error=str(exc),
                error_type=type(exc).__name__,
                retries=retries + 1,
            )
            return
        self._log.error(
            "sync_failed_giving_up",
            pod=identity.key,
            error=str(exc),
            error_type=type(exc).__name__,
            retries=retries,
        )
        self._recorder.event(
            identity,
            EVENT_TYPE_WARNING,
            REASON_RETRIES_EXHAUSTED,
            f"Giving up after {retries} retries: {exc}",
        )

    @property
    def workers(self) -> list[asyncio.Task[Any]]:
        return list(self._workers)
