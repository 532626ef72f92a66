"""Fire-and-forget Kubernetes Event recording.

Events are written through ``CoreV1Api.create_namespaced_event`` on a
background task so that reconcile workers never wait on the API server for
audit output. Failures are logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

from sidecar_terminator.models.pods import PodIdentity
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import recorded_events_total

COMPONENT_NAME = "terminate-sidecar-job-controller"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

REASON_SYNCED = "Synced"
MESSAGE_SYNCED = "Pod synced successfully"
REASON_SIDECARS_TERMINATED = "SidecarsTerminated"


class EventRecorder:
    """Writes core/v1 Events about pods.

    Args:
        api: a ``CoreV1Api`` instance. ``None`` disables recording.
        component: ``source.component`` stamped on every event.
    """

    def __init__(self, api: Any = None, component: str = COMPONENT_NAME) -> None:
        self._api = api
        self._component = component
        self._pending: set[asyncio.Task[None]] = set()
        self._log = get_logger("notifications.recorder")

    @property
    def enabled(self) -> bool:
        return self._api is not None

    def event(self, pod: PodIdentity, event_type: str, reason: str, message: str) -> None:
        """Schedule an Event for *pod*; returns immediately."""
        if self._api is None:
            return
        task = asyncio.create_task(self._send(pod, event_type, reason, message), name=f"event-{pod.key}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        """Wait for events that are still being written."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _send(self, pod: PodIdentity, event_type: str, reason: str, message: str) -> None:
        body = _build_event(pod, event_type, reason, message, self._component)
        try:
            await self._api.create_namespaced_event(namespace=pod.namespace or "default", body=body)
        except Exception as exc:
            recorded_events_total.labels(reason=reason, success="false").inc()
            self._log.debug("event_record_failed", pod=pod.key, reason=reason, error=str(exc))
            return
        recorded_events_total.labels(reason=reason, success="true").inc()


def _build_event(
    pod: PodIdentity,
    event_type: str,
    reason: str,
    message: str,
    component: str,
) -> dict[str, Any]:
    """Build a core/v1 Event body for the pod."""
    now = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": f"{pod.name}.{uuid.uuid4().hex[:16]}",
            "namespace": pod.namespace or "default",
        },
        "involvedObject": {
            "apiVersion": "v1",
            "kind": "Pod",
            "namespace": pod.namespace,
            "name": pod.name,
        },
        "type": event_type,
        "reason": reason,
        "message": message,
        "source": {"component": component},
        "firstTimestamp": now,
        "lastTimestamp": now,
        "count": 1,
    }
