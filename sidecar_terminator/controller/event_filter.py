"""Admit watch events for running Job pods into the reconcile queue.

Everything that is not a running pod controlled by the tracked workload kind
is discarded without error. Deletes are accepted and ignored: a deleted pod
simply stops being a reconcile target.
"""

from __future__ import annotations

from typing import Protocol

from sidecar_terminator.cache.pod_store import PodNotFoundError, PodStore
from sidecar_terminator.models.pods import (
    Added,
    Deleted,
    DeletedTombstone,
    ObjectMeta,
    PodEvent,
    PodIdentity,
    Updated,
    get_controller_of,
)
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import filter_decisions_total

_RUNNING_PHASE = "Running"


class _Enqueuer(Protocol):
    def enqueue(self, identity: PodIdentity) -> None: ...


class EventFilter:
    """Turns :data:`PodEvent` notifications into queue keys.

    Args:
        queue: anything with an ``enqueue(PodIdentity)`` method.
        pods: the pod store used to confirm the pod exists and is running.
        workload_kind: owner kind whose pods are tracked (``Job``).
    """

    def __init__(self, queue: _Enqueuer, pods: PodStore, workload_kind: str = "Job") -> None:
        self._queue = queue
        self._pods = pods
        self._workload_kind = workload_kind
        self._log = get_logger("controller.filter")

    async def __call__(self, event: PodEvent) -> PodIdentity | None:
        """Async adapter so the filter can be registered as a watcher handler."""
        return self.handle(event)

    def handle(self, event: PodEvent) -> PodIdentity | None:
        """Process one event; returns the enqueued identity, if any."""
        if isinstance(event, Added):
            return self.admit(event.obj)
        if isinstance(event, Updated):
            if event.old.get_resource_version() == event.new.get_resource_version():
                # Periodic resync replays; two versions always differ in RV
                self._discard("unchanged", event.new)
                return None
            return self.admit(event.new)
        if isinstance(event, Deleted):
            self._discard("deleted", event.obj)
            return None
        if isinstance(event, DeletedTombstone):
            self._log.debug("recovered_deleted_object", pod=event.key.key)
            self._discard("deleted", event.last_known)
            return None
        self._log.error("unknown_event_type", event_type=type(event).__name__)
        return None

    def admit(self, obj: ObjectMeta) -> PodIdentity | None:
        """Enqueue the pod behind *obj* if it is a running workload pod."""
        owner = get_controller_of(obj)
        if owner is None:
            self._discard("no_controller", obj)
            return None
        if owner.kind != self._workload_kind:
            self._discard("foreign_owner", obj, owner_kind=owner.kind)
            return None

        try:
            pod = self._pods.get(obj.get_namespace(), obj.get_name())
        except PodNotFoundError:
            self._discard("orphan", obj, owner=owner.name)
            return None

        phase = pod.get_phase()
        if phase != _RUNNING_PHASE:
            self._discard("not_running", obj, phase=phase)
            return None

        identity = pod.identity()
        self._queue.enqueue(identity)
        filter_decisions_total.labels(decision="enqueued").inc()
        self._log.debug("pod_enqueued", pod=identity.key, owner=owner.name)
        return identity

    def _discard(self, reason: str, obj: ObjectMeta, **context: object) -> None:
        filter_decisions_total.labels(decision=reason).inc()
        self._log.debug(
            "event_discarded",
            reason=reason,
            object=f"{obj.get_namespace()}/{obj.get_name()}",
            **context,
        )
