"""Pod, container and watch-event data structures.

The controller never holds a pod's state across the work queue: only the
:class:`PodIdentity` travels, and container observations are rebuilt from the
pod store at reconcile time.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Termination reasons that count as a cleanly finished container
COMPLETED_REASONS: frozenset[str] = frozenset({"Completed", "Error"})

DEFAULT_SIDECARS: frozenset[str] = frozenset({"istio-proxy"})


@dataclass(frozen=True, order=True)
class PodIdentity:
    """(namespace, name) key of a pod in the work queue."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        """``namespace/name``, or just ``name`` for cluster-scoped objects."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class OwnerReference:
    """Owner of a Kubernetes object; ``controller`` marks the managing owner."""

    kind: str
    name: str
    controller: bool = False


@dataclass(frozen=True)
class ContainerObservation:
    """Last-known status of one container."""

    name: str
    ready: bool
    termination_reason: str | None = None


@dataclass(frozen=True)
class ContainerStateSets:
    """Container names partitioned by state.

    ``running`` and ``completed`` are disjoint subsets of ``all``. Anything in
    ``all`` but in neither is unaccounted for (waiting, crash-looping, ...).
    """

    all: frozenset[str] = field(default_factory=frozenset)
    running: frozenset[str] = field(default_factory=frozenset)
    completed: frozenset[str] = field(default_factory=frozenset)

    @property
    def unaccounted(self) -> frozenset[str]:
        return self.all - self.running - self.completed


# ---------------------------------------------------------------------------
# Object metadata capability
# ---------------------------------------------------------------------------


@runtime_checkable
class ObjectMeta(Protocol):
    """The only metadata the event filter needs from a watched object."""

    def get_owner_references(self) -> Sequence[OwnerReference]: ...

    def get_namespace(self) -> str: ...

    def get_name(self) -> str: ...


class KubeObject:
    """:class:`ObjectMeta` adapter over a kubernetes_asyncio model or a raw dict.

    Watch streams hand out deserialized models (``V1Pod``) alongside the raw
    JSON dict; either one is enough to build the adapter.
    """

    __slots__ = ("_obj", "_raw")

    def __init__(self, obj: Any = None, raw: dict[str, Any] | None = None) -> None:
        self._obj = obj
        self._raw = raw if isinstance(raw, dict) else {}

    @property
    def obj(self) -> Any:
        return self._obj

    @property
    def raw(self) -> dict[str, Any]:
        return self._raw

    # -- ObjectMeta -------------------------------------------------------

    def get_namespace(self) -> str:
        return self._meta_field("namespace", "namespace")

    def get_name(self) -> str:
        return self._meta_field("name", "name")

    def get_owner_references(self) -> list[OwnerReference]:
        refs: list[OwnerReference] = []
        metadata = _model_metadata(self._obj)
        if metadata is not None and getattr(metadata, "owner_references", None):
            for ref in metadata.owner_references:
                refs.append(
                    OwnerReference(
                        kind=str(getattr(ref, "kind", "") or ""),
                        name=str(getattr(ref, "name", "") or ""),
                        controller=bool(getattr(ref, "controller", False)),
                    )
                )
            return refs

        raw_meta = self._raw.get("metadata", {})
        if isinstance(raw_meta, dict):
            for ref in raw_meta.get("ownerReferences", None) or []:
                if not isinstance(ref, dict):
                    continue
                refs.append(
                    OwnerReference(
                        kind=str(ref.get("kind", "")),
                        name=str(ref.get("name", "")),
                        controller=bool(ref.get("controller", False)),
                    )
                )
        return refs

    # -- extras -----------------------------------------------------------

    def get_resource_version(self) -> str:
        return self._meta_field("resource_version", "resourceVersion")

    def get_phase(self) -> str:
        status = getattr(self._obj, "status", None) if self._obj is not None else None
        if status is not None:
            phase = getattr(status, "phase", None)
            if phase:
                return str(phase)
        raw_status = self._raw.get("status", {})
        if isinstance(raw_status, dict):
            return str(raw_status.get("phase", "") or "")
        return ""

    def identity(self) -> PodIdentity:
        return PodIdentity(namespace=self.get_namespace(), name=self.get_name())

    def container_observations(self) -> list[ContainerObservation]:
        """Observations for every entry in ``status.containerStatuses``."""
        status = getattr(self._obj, "status", None) if self._obj is not None else None
        if status is not None and getattr(status, "container_statuses", None) is not None:
            return [_observation_from_model(cs) for cs in status.container_statuses]

        raw_status = self._raw.get("status", {})
        if not isinstance(raw_status, dict):
            return []
        statuses = raw_status.get("containerStatuses", None) or []
        return [_observation_from_dict(cs) for cs in statuses if isinstance(cs, dict)]

    def _meta_field(self, attr: str, key: str) -> str:
        metadata = _model_metadata(self._obj)
        if metadata is not None:
            value = getattr(metadata, attr, None)
            if value:
                return str(value)
        raw_meta = self._raw.get("metadata", {})
        if isinstance(raw_meta, dict):
            return str(raw_meta.get(key, "") or "")
        return ""

    def __repr__(self) -> str:
        return f"KubeObject({self.get_namespace()}/{self.get_name()}@{self.get_resource_version()})"


def get_controller_of(obj: ObjectMeta) -> OwnerReference | None:
    """Return the controlling owner reference of *obj*, if any."""
    for ref in obj.get_owner_references():
        if ref.controller:
            return ref
    return None


def _model_metadata(obj: Any) -> Any:
    if obj is None:
        return None
    return getattr(obj, "metadata", None)


def _observation_from_model(cs: Any) -> ContainerObservation:
    reason: str | None = None
    state = getattr(cs, "state", None)
    terminated = getattr(state, "terminated", None) if state is not None else None
    if terminated is not None:
        reason = getattr(terminated, "reason", None)
    return ContainerObservation(name=str(cs.name), ready=bool(cs.ready), termination_reason=reason)


def _observation_from_dict(cs: dict[str, Any]) -> ContainerObservation:
    reason: str | None = None
    state = cs.get("state") or {}
    terminated = state.get("terminated") if isinstance(state, dict) else None
    if isinstance(terminated, dict):
        reason = terminated.get("reason")
    return ContainerObservation(
        name=str(cs.get("name", "")),
        ready=bool(cs.get("ready", False)),
        termination_reason=reason,
    )


# ---------------------------------------------------------------------------
# Watch events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Added:
    obj: KubeObject


@dataclass(frozen=True)
class Updated:
    old: KubeObject
    new: KubeObject


@dataclass(frozen=True)
class Deleted:
    obj: KubeObject


@dataclass(frozen=True)
class DeletedTombstone:
    """A delete observed only as a disappearance during relist."""

    key: PodIdentity
    last_known: KubeObject


PodEvent = Added | Updated | Deleted | DeletedTombstone
