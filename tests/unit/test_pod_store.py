"""Tests for sidecar_terminator.cache.pod_store."""

from __future__ import annotations

import asyncio

import pytest

from sidecar_terminator.cache.pod_store import CacheSyncError, PodNotFoundError, PodStore
from sidecar_terminator.models.pods import PodIdentity


class TestPodStore:
    def test_starts_unsynced_and_empty(self) -> None:
        store = PodStore()
        assert store.synced is False
        assert len(store) == 0

    def test_replace_marks_synced(self, make_pod) -> None:
        store = PodStore()
        store.replace([make_pod(name="job-a1"), make_pod(name="job-b2")])
        assert store.synced is True
        assert len(store) == 2

    def test_replace_returns_removed_pods(self, make_pod) -> None:
        store = PodStore()
        store.replace([make_pod(name="job-a1"), make_pod(name="job-b2")])

        removed = store.replace([make_pod(name="job-b2")])

        assert set(removed) == {PodIdentity("default", "job-a1")}
        assert PodIdentity("default", "job-a1") not in store

    def test_get_returns_current_version(self, pod_store, make_pod) -> None:
        pod_store.upsert(make_pod(resource_version="1"))
        previous = pod_store.upsert(make_pod(resource_version="2"))

        assert previous is not None and previous.get_resource_version() == "1"
        assert pod_store.get("default", "job-abc12").get_resource_version() == "2"

    def test_get_unknown_raises(self, pod_store) -> None:
        with pytest.raises(PodNotFoundError) as err:
            pod_store.get("default", "missing")
        assert err.value.identity == PodIdentity("default", "missing")
        assert isinstance(err.value, LookupError)

    def test_same_name_in_other_namespace_is_distinct(self, pod_store, make_pod) -> None:
        pod_store.upsert(make_pod(namespace="a"))
        with pytest.raises(PodNotFoundError):
            pod_store.get("b", "job-abc12")

    def test_remove(self, pod_store, make_pod) -> None:
        pod = make_pod()
        pod_store.upsert(pod)
        assert pod_store.remove(pod.identity()) is pod
        assert pod_store.peek(pod.identity()) is None
        assert pod_store.remove(pod.identity()) is None


class TestWaitForSync:
    @pytest.mark.asyncio
    async def test_returns_once_replaced(self, make_pod) -> None:
        store = PodStore()
        waiter = asyncio.create_task(store.wait_for_sync(timeout=1.0))
        await asyncio.sleep(0)
        assert not waiter.done()

        store.replace([make_pod()])
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_times_out(self) -> None:
        with pytest.raises(CacheSyncError, match="did not sync"):
            await PodStore().wait_for_sync(timeout=0.01)

    @pytest.mark.asyncio
    async def test_empty_listing_still_counts_as_synced(self) -> None:
        store = PodStore()
        store.replace([])
        await store.wait_for_sync(timeout=0.01)
