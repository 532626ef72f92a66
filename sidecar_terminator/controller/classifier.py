"""Partition a pod's container observations into running/completed sets."""

from __future__ import annotations

from collections.abc import Iterable

from sidecar_terminator.models.pods import COMPLETED_REASONS, ContainerObservation, ContainerStateSets


def classify_containers(observations: Iterable[ContainerObservation]) -> ContainerStateSets:
    """Build :class:`ContainerStateSets` from *observations*.

    A ready container is running. A container that is not ready and whose
    last termination reason is in ``COMPLETED_REASONS`` is completed. Any
    other container only shows up in ``all``, which defers the shutdown
    decision until its state settles.
    """
    all_names: set[str] = set()
    running: set[str] = set()
    completed: set[str] = set()

    for obs in observations:
        all_names.add(obs.name)
        if obs.ready:
            running.add(obs.name)
        elif obs.termination_reason in COMPLETED_REASONS:
            completed.add(obs.name)

    # Duplicate names with conflicting states keep the running entry only
    completed -= running

    return ContainerStateSets(
        all=frozenset(all_names),
        running=frozenset(running),
        completed=frozenset(completed),
    )
