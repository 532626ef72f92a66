"""In-memory pod lister backed by the pod watch stream.

The :class:`~sidecar_terminator.collector.pod_watcher.PodWatcher` is the only
writer. Reconcile workers and the event filter read from it concurrently;
nothing they get back is mutated.

Readiness
---------
The store starts unsynced. The watcher calls :meth:`replace` with the result
of its first list call, which marks the store synced; workers must not start
before then, otherwise every lookup would miss.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from sidecar_terminator.models.pods import KubeObject, PodIdentity
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import pod_store_pods


class PodNotFoundError(LookupError):
    """Raised when a pod is not (or no longer) present in the store."""

    def __init__(self, identity: PodIdentity) -> None:
        super().__init__(f'pod "{identity.key}" not found')
        self.identity = identity


class CacheSyncError(RuntimeError):
    """Raised when the store never completed its initial list."""


class PodStore:
    """Pods keyed by :class:`PodIdentity`.

    Example::

        store = PodStore()
        removed = store.replace(listed_pods)
        pod = store.get("default", "job-abc12")
    """

    def __init__(self) -> None:
        self._log = get_logger("cache.pods")
        self._pods: dict[PodIdentity, KubeObject] = {}
        self._synced = asyncio.Event()

    # ------------------------------------------------------------------
    # Write interface (watcher only)
    # ------------------------------------------------------------------

    def replace(self, pods: Iterable[KubeObject]) -> dict[PodIdentity, KubeObject]:
        """Swap in a full listing and mark the store synced.

        Returns the pods that were present before but are missing from the
        listing, so the caller can report them as deleted.
        """
        fresh = {pod.identity(): pod for pod in pods}
        removed = {key: pod for key, pod in self._pods.items() if key not in fresh}
        self._pods = fresh
        pod_store_pods.set(len(self._pods))
        if not self._synced.is_set():
            self._synced.set()
            self._log.info("pod_store_synced", pods=len(self._pods))
        return removed

    def upsert(self, pod: KubeObject) -> KubeObject | None:
        """Insert or replace *pod*; returns the previous version if any."""
        key = pod.identity()
        previous = self._pods.get(key)
        self._pods[key] = pod
        pod_store_pods.set(len(self._pods))
        return previous

    def remove(self, identity: PodIdentity) -> KubeObject | None:
        removed = self._pods.pop(identity, None)
        pod_store_pods.set(len(self._pods))
        return removed

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get(self, namespace: str, name: str) -> KubeObject:
        """Return the current pod.

        Raises PodNotFoundError if the pod is unknown.
        """
        identity = PodIdentity(namespace=namespace, name=name)
        pod = self._pods.get(identity)
        if pod is None:
            raise PodNotFoundError(identity)
        return pod

    def peek(self, identity: PodIdentity) -> KubeObject | None:
        """Like :meth:`get` but returns None for unknown pods."""
        return self._pods.get(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._pods

    def __len__(self) -> int:
        return len(self._pods)

    @property
    def synced(self) -> bool:
        return self._synced.is_set()

    async def wait_for_sync(self, timeout: float) -> None:
        """Block until the first listing has landed.

        Raises CacheSyncError after *timeout* seconds.
        """
        try:
            async with asyncio.timeout(timeout):
                await self._synced.wait()
        except TimeoutError as exc:
            raise CacheSyncError(f"pod store did not sync within {timeout:.0f}s") from exc
