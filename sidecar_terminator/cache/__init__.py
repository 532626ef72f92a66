"""In-memory pod lister cache."""

from sidecar_terminator.cache.pod_store import CacheSyncError, PodNotFoundError, PodStore

__all__ = ["CacheSyncError", "PodNotFoundError", "PodStore"]
