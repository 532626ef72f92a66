"""Evaluate one pod and terminate its sidecars when the main work is done."""

from __future__ import annotations

import time
from collections.abc import Set
from enum import StrEnum
from typing import TYPE_CHECKING

from sidecar_terminator.cache.pod_store import PodNotFoundError
from sidecar_terminator.controller.classifier import classify_containers
from sidecar_terminator.controller.decision import shutdown_due
from sidecar_terminator.models.pods import DEFAULT_SIDECARS, PodIdentity
from sidecar_terminator.notifications.recorder import (
    EVENT_TYPE_NORMAL,
    MESSAGE_SYNCED,
    REASON_SIDECARS_TERMINATED,
    REASON_SYNCED,
    EventRecorder,
)
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import reconcile_duration_seconds, reconcile_total

if TYPE_CHECKING:
    from sidecar_terminator.cache.pod_store import PodStore
    from sidecar_terminator.controller.terminator import SidecarTerminator


class ReconcileOutcome(StrEnum):
    """Successful reconcile results. Failures are raised instead."""

    NOT_FOUND = "not_found"
    NOT_DUE = "not_due"
    TERMINATED = "terminated"


class Reconciler:
    """Re-reads a pod from the store and acts on its current state.

    The queue only says *which* pod to look at; the container state always
    comes from the store at the moment of reconciliation, so a stale or
    duplicated enqueue can only cause redundant work.
    """

    def __init__(
        self,
        pods: PodStore,
        terminator: SidecarTerminator,
        sidecars: Set[str] = DEFAULT_SIDECARS,
        recorder: EventRecorder | None = None,
    ) -> None:
        self._pods = pods
        self._terminator = terminator
        self._sidecars = frozenset(sidecars)
        self._recorder = recorder or EventRecorder()
        self._log = get_logger("controller.reconciler")

    @property
    def sidecars(self) -> frozenset[str]:
        return self._sidecars

    async def reconcile(self, identity: PodIdentity) -> ReconcileOutcome:
        """Reconcile *identity*.

        Returns the outcome on success. Any exception other than a missing pod
        is transient and should be retried by the caller.
        """
        started = time.monotonic()
        log = self._log.bind(pod=identity.key)
        try:
            try:
                pod = self._pods.get(identity.namespace, identity.name)
            except PodNotFoundError:
                log.info("pod_gone_skipping")
                reconcile_total.labels(outcome=ReconcileOutcome.NOT_FOUND.value).inc()
                return ReconcileOutcome.NOT_FOUND

            states = classify_containers(pod.container_observations())
            log.debug(
                "container_states",
                all=sorted(states.all),
                running=sorted(states.running),
                completed=sorted(states.completed),
                unaccounted=sorted(states.unaccounted),
                sidecars=sorted(self._sidecars),
            )

            outcome = ReconcileOutcome.NOT_DUE
            if shutdown_due(states, self._sidecars):
                log.info("sidecar_shutdown_due", sidecars=sorted(self._sidecars))
                result = await self._terminator.terminate(identity, self._sidecars)
                outcome = ReconcileOutcome.TERMINATED
                self._recorder.event(
                    identity,
                    EVENT_TYPE_NORMAL,
                    REASON_SIDECARS_TERMINATED,
                    f"Sent SIGTERM to sidecar container(s): {', '.join(sorted(result.signaled)) or 'none running'}",
                )

            self._recorder.event(identity, EVENT_TYPE_NORMAL, REASON_SYNCED, MESSAGE_SYNCED)
            reconcile_total.labels(outcome=outcome.value).inc()
            return outcome
        except Exception:
            reconcile_total.labels(outcome="error").inc()
            raise
        finally:
            reconcile_duration_seconds.observe(time.monotonic() - started)
