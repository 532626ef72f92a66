"""Resumable list/watch loop over a Kubernetes collection.

The loop lists the collection whenever it has no resourceVersion to resume
from (first start, 410 Gone, or three failures in a row) and otherwise
reopens the watch where the previous stream stopped. BOOKMARK events keep
the resourceVersion fresh on quiet collections. Failures sleep on a doubling
delay between 1 s and 60 s that resets after every successful list.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import (
    watcher_backoff_seconds,
    watcher_errors_total,
    watcher_events_total,
    watcher_reconnects_total,
    watcher_relistings_total,
)

_RETRY_FLOOR_S: float = 1.0
_RETRY_CEILING_S: float = 60.0
_FAILURES_BEFORE_RELIST: int = 3
_WATCH_TIMEOUT_S: int = 300


class _RetryDelay:
    """Doubling delay between failed attempts."""

    def __init__(self, floor: float = _RETRY_FLOOR_S, ceiling: float = _RETRY_CEILING_S) -> None:
        self._floor = floor
        self._ceiling = ceiling
        self._next = floor

    def next(self) -> float:
        delay = self._next
        self._next = min(delay * 2, self._ceiling)
        return delay

    def reset(self) -> None:
        self._next = self._floor


class ListWatcher(ABC):
    """Keeps one collection in sync through list + watch.

    Subclasses supply the API list function and two callbacks: one for a
    complete listing, one for each ADDED / MODIFIED / DELETED event.

    Args:
        api: kubernetes_asyncio API object owning the list function.
        namespace: namespace to watch; empty for the whole cluster.
        name: label for logs and metrics.
    """

    def __init__(self, api: Any, namespace: str = "", name: str = "base") -> None:
        self._api = api
        self._namespace = namespace
        self._name = name
        self._log = get_logger("watcher", watcher=name)

        self._resource_version = ""
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._failures = 0
        self._delays = _RetryDelay()

    async def start(self) -> None:
        """Run the loop in a background task; no-op if it is already running."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"{self._name}-watch")
        self._log.info("watch_started", namespace=self._namespace or "*")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to unwind."""
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._log.info("watch_stopped")

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        """API function used both for listing and for ``Watch.stream``."""

    @abstractmethod
    async def _handle_listing(self, items: Sequence[Any]) -> None:
        """Receive every item of a fresh listing."""

    @abstractmethod
    async def _handle_event(self, event_type: str, obj: Any, raw: dict[str, Any]) -> None:
        """Receive one ADDED / MODIFIED / DELETED event (model and raw dict)."""

    def _list_kwargs(self) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        while self._running:
            try:
                if not self._resource_version:
                    await self._relist()
                await self._run_watch()
            except asyncio.CancelledError:
                return
            except Exception as exc:
                if not self._running:
                    return
                await self._recover(exc)

    async def _relist(self) -> None:
        watcher_relistings_total.labels(watcher=self._name).inc()
        listing = await self._list_func()(**self._list_kwargs(), watch=False)
        items = list(getattr(listing, "items", None) or [])
        rv = str(getattr(getattr(listing, "metadata", None), "resource_version", "") or "")

        await self._handle_listing(items)
        self._resource_version = rv
        self._failures = 0
        self._delays.reset()
        self._log.info("relist_complete", items=len(items), resource_version=rv)

    async def _run_watch(self) -> None:
        params: dict[str, Any] = {
            **self._list_kwargs(),
            "allow_watch_bookmarks": True,
            "timeout_seconds": _WATCH_TIMEOUT_S,
        }
        if self._resource_version:
            params["resource_version"] = self._resource_version

        stream = watch.Watch()
        try:
            async for event in stream.stream(self._list_func(), **params):
                if not self._running or not await self._consume(event):
                    return
            # Server closed the stream after timeout_seconds
            watcher_reconnects_total.labels(watcher=self._name, reason="stream_end").inc()
            self._log.debug("watch_stream_ended", resource_version=self._resource_version)
        finally:
            await stream.close()

    async def _consume(self, event: dict[str, Any]) -> bool:
        """Apply one stream event; False means the stream must be reopened."""
        event_type: str = event.get("type", "")
        raw = event.get("raw_object")
        if not isinstance(raw, dict):
            raw = {}
        obj = event.get("object")

        if event_type == "ERROR":
            code = raw.get("code")
            watcher_errors_total.labels(watcher=self._name, status_code=str(code)).inc()
            self._log.warning("watch_error_event", code=code, message=raw.get("message", ""))
            if code == 410:
                self._expire("410")
            return False

        rv = _extract_rv(None if event_type == "BOOKMARK" else obj, raw)
        if rv:
            self._resource_version = rv
        if event_type == "BOOKMARK":
            return True

        watcher_events_total.labels(watcher=self._name, event_type=event_type).inc()
        await self._handle_event(event_type, obj, raw)
        self._failures = 0
        return True

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _recover(self, exc: Exception) -> None:
        """Decide how to resume after *exc* broke the list or the watch."""
        status = exc.status if isinstance(exc, ApiException) else None
        label = "unexpected" if status is None else str(status)
        watcher_errors_total.labels(watcher=self._name, status_code=label).inc()

        if status == 410:
            self._expire("410")
            return

        self._failures += 1
        if status is None:
            self._log.error("watch_unexpected_error", error=str(exc), failures=self._failures, exc_info=True)
        else:
            self._log.warning("watch_api_error", status=status, reason=exc.reason, failures=self._failures)
        watcher_reconnects_total.labels(watcher=self._name, reason=label).inc()
        if self._failures >= _FAILURES_BEFORE_RELIST:
            self._resource_version = ""
        await self._backoff(label)

    def _expire(self, reason: str) -> None:
        """Forget the resourceVersion so the next iteration relists."""
        self._log.warning("resource_version_expired", reason=reason)
        watcher_reconnects_total.labels(watcher=self._name, reason=reason).inc()
        self._resource_version = ""

    async def _backoff(self, reason: str) -> None:
        delay = self._delays.next()
        self._log.debug("watch_backoff", reason=reason, delay_s=delay)
        watcher_backoff_seconds.labels(watcher=self._name).observe(delay)
        await asyncio.sleep(delay)


def _extract_rv(obj: Any, raw: dict[str, Any]) -> str:
    """resourceVersion of an event object, preferring the deserialized model."""
    metadata = getattr(obj, "metadata", None)
    rv = getattr(metadata, "resource_version", None) if metadata is not None else None
    if not rv:
        raw_meta = raw.get("metadata")
        rv = raw_meta.get("resourceVersion") if isinstance(raw_meta, dict) else None
    return str(rv) if rv else ""
