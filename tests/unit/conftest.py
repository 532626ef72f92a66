"""Shared fixtures for unit tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from sidecar_terminator.cache.pod_store import PodStore
from sidecar_terminator.models.pods import KubeObject

# (name, ready, terminated reason | None, waiting reason | None)
ContainerSpec = tuple[str, bool, str | None] | tuple[str, bool, str | None, str | None]

MAIN_DONE_SIDECAR_RUNNING: tuple[ContainerSpec, ...] = (
    ("main", False, "Completed"),
    ("istio-proxy", True, None),
)


def build_pod(
    name: str = "job-abc12",
    namespace: str = "default",
    phase: str = "Running",
    owner_kind: str | None = "Job",
    owner_is_controller: bool = True,
    containers: Sequence[ContainerSpec] = MAIN_DONE_SIDECAR_RUNNING,
    resource_version: str = "100",
) -> KubeObject:
    """Build a pod as it arrives in a watch event's ``raw_object``."""
    statuses: list[dict[str, Any]] = []
    for spec in containers:
        cname, ready, terminated = spec[0], spec[1], spec[2]
        waiting = spec[3] if len(spec) > 3 else None
        state: dict[str, Any] = {}
        if terminated is not None:
            state["terminated"] = {"reason": terminated, "exitCode": 0 if terminated == "Completed" else 1}
        elif waiting is not None:
            state["waiting"] = {"reason": waiting}
        elif ready:
            state["running"] = {"startedAt": "2026-10-17T10:00:00Z"}
        statuses.append({"name": cname, "ready": ready, "state": state})

    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "resourceVersion": resource_version,
    }
    if owner_kind is not None:
        metadata["ownerReferences"] = [
            {
                "apiVersion": "batch/v1",
                "kind": owner_kind,
                "name": f"{name.rsplit('-', 1)[0]}",
                "uid": "7b0f4c1e-0000-4000-8000-000000000001",
                "controller": owner_is_controller,
            }
        ]

    raw = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": metadata,
        "status": {"phase": phase, "containerStatuses": statuses},
    }
    return KubeObject(raw=raw)


@pytest.fixture
def make_pod() -> Callable[..., KubeObject]:
    return build_pod


@pytest.fixture
def pod_store() -> PodStore:
    store = PodStore()
    store.replace([])
    return store
