"""Pod list/watch source.

Keeps the :class:`~sidecar_terminator.cache.pod_store.PodStore` current and
translates every change into a :data:`~sidecar_terminator.models.pods.PodEvent`
for the registered handlers (normally the event filter).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from sidecar_terminator.cache.pod_store import PodStore
from sidecar_terminator.collector.watcher import ListWatcher
from sidecar_terminator.models.pods import (
    Added,
    Deleted,
    DeletedTombstone,
    KubeObject,
    PodEvent,
    Updated,
)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

PodEventHandler = Callable[[PodEvent], Coroutine[Any, Any, object]]


class PodWatcher(ListWatcher):
    """Watches pods and feeds the store plus :data:`PodEvent` handlers.

    Event translation:
    - ADDED / MODIFIED of an unknown pod -> ``Added``
    - ADDED / MODIFIED of a known pod    -> ``Updated(old, new)``
    - DELETED                            -> ``Deleted``
    - relist: known pods -> ``Updated``, new pods -> ``Added``, pods missing
      from the listing -> ``DeletedTombstone``

    The store is updated before handlers run, so a handler looking the pod up
    sees the state carried by the event.

    Usage::

        v1 = kubernetes_asyncio.client.CoreV1Api()
        watcher = PodWatcher(v1, store)
        watcher.add_handler(event_filter)
        await watcher.start()
    """

    def __init__(self, api: Any, store: PodStore, namespace: str = "") -> None:
        super().__init__(api, namespace=namespace, name="pod")
        self._store = store
        self._handlers: list[PodEventHandler] = []

    def add_handler(self, handler: PodEventHandler) -> None:
        """Register an async callback receiving every :data:`PodEvent`."""
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # ListWatcher implementation
    # ------------------------------------------------------------------

    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        if self._namespace:
            return self._api.list_namespaced_pod  # type: ignore[no-any-return]
        return self._api.list_pod_for_all_namespaces  # type: ignore[no-any-return]

    def _list_kwargs(self) -> dict[str, Any]:
        if self._namespace:
            return {"namespace": self._namespace}
        return {}

    async def _handle_listing(self, items: Sequence[Any]) -> None:
        pods = [KubeObject(obj=item) for item in items]
        previous = {pod.identity(): self._store.peek(pod.identity()) for pod in pods}
        removed = self._store.replace(pods)

        events: list[PodEvent] = []
        for pod in pods:
            old = previous[pod.identity()]
            events.append(Added(pod) if old is None else Updated(old, pod))
        for key, last_known in removed.items():
            events.append(DeletedTombstone(key=key, last_known=last_known))

        for event in events:
            await self._dispatch(event)

    async def _handle_event(self, event_type: str, obj: Any, raw: dict[str, Any]) -> None:
        pod = KubeObject(obj=obj, raw=raw)
        if not pod.get_name():
            self._log.debug("event_without_name", event_type=event_type)
            return

        if event_type in ("ADDED", "MODIFIED"):
            old = self._store.upsert(pod)
            await self._dispatch(Added(pod) if old is None else Updated(old, pod))
        elif event_type == "DELETED":
            self._store.remove(pod.identity())
            await self._dispatch(Deleted(pod))
        else:
            self._log.debug("unhandled_event_type", event_type=event_type)

    async def _dispatch(self, event: PodEvent) -> None:
        if not self._handlers:
            return
        results = await asyncio.gather(*(h(event) for h in self._handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._log.error(
                    "pod_event_handler_failed",
                    event=type(event).__name__,
                    error=str(result),
                    error_type=type(result).__name__,
                )
