"""Decide whether a pod's sidecars should be told to shut down."""

from __future__ import annotations

from collections.abc import Set

from sidecar_terminator.models.pods import ContainerStateSets


def shutdown_due(states: ContainerStateSets, sidecars: Set[str]) -> bool:
    """Return True when only the sidecars are left running.

    Requires every known container to be either running or completed, and the
    running set to equal *sidecars* exactly. A subset check is not enough: a
    dead sidecar next to an unfinished main container must not fire.

    An empty sidecar set never fires, and neither does a pod in which no
    container has completed yet (nothing has finished, so there is no main
    workload to wait on).
    """
    if not sidecars:
        return False
    if not states.completed:
        return False
    if states.running | states.completed != states.all:
        return False
    return states.running == frozenset(sidecars)
