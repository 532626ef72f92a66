"""Deliver SIGTERM to PID 1 of sidecar containers via the pod exec subresource.

Every container is attempted independently and concurrently; one failure
never prevents the others from being signalled. A container (or pod) that
is already gone is reported as ``GONE`` rather than as a failure, since
there is nothing left to stop and retrying cannot change that.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import aiohttp
from kubernetes_asyncio.client.exceptions import ApiException

from sidecar_terminator.models.pods import PodIdentity
from sidecar_terminator.observability.logging import get_logger
from sidecar_terminator.observability.metrics import sidecar_signals_total

TERMINATE_COMMAND: tuple[str, ...] = ("sh", "-c", "kill -s TERM 1")

_DEFAULT_EXEC_TIMEOUT_S: float = 30.0

# Fragments of API error bodies meaning the target container does not exist
_GONE_MARKERS: tuple[str, ...] = ("not found", "is not valid for pod", "container not running")


class SignalOutcome(StrEnum):
    """Per-container result of a termination attempt that did not fail."""

    SIGNALED = "signaled"
    GONE = "gone"


@dataclass(frozen=True)
class TerminationResult:
    """Outcome of a termination call in which no container failed."""

    pod: PodIdentity
    outcomes: dict[str, SignalOutcome] = field(default_factory=dict)

    @property
    def signaled(self) -> frozenset[str]:
        return frozenset(c for c, o in self.outcomes.items() if o is SignalOutcome.SIGNALED)

    @property
    def gone(self) -> frozenset[str]:
        return frozenset(c for c, o in self.outcomes.items() if o is SignalOutcome.GONE)


class TerminationError(Exception):
    """One or more sidecar containers could not be signalled.

    ``failures`` maps each failed container to its error; ``outcomes`` holds
    the containers that were handled.
    """

    def __init__(
        self,
        pod: PodIdentity,
        failures: dict[str, Exception],
        outcomes: dict[str, SignalOutcome] | None = None,
    ) -> None:
        detail = "; ".join(f"{name}: {_describe(exc)}" for name, exc in sorted(failures.items()))
        super().__init__(f"failed to signal {len(failures)} container(s) in pod {pod.key}: {detail}")
        self.pod = pod
        self.failures = failures
        self.outcomes = outcomes or {}


class SidecarTerminator:
    """Runs ``kill -s TERM 1`` inside each given container of a pod.

    Args:
        exec_api: a ``CoreV1Api`` bound to a websocket-capable ``ApiClient``
            (``kubernetes_asyncio.stream.WsApiClient``). Created lazily when
            omitted.
        timeout: seconds allowed per exec call.
    """

    def __init__(self, exec_api: Any = None, timeout: float = _DEFAULT_EXEC_TIMEOUT_S) -> None:
        self._api = exec_api
        self._owns_api = exec_api is None
        self._timeout = timeout
        self._log = get_logger("controller.terminator")

    async def terminate(self, pod: PodIdentity, containers: Iterable[str]) -> TerminationResult:
        """Signal every container in *containers*.

        Raises TerminationError after all containers were attempted if any of
        them failed.
        """
        names = sorted(set(containers))
        if not names:
            return TerminationResult(pod=pod)

        results = await asyncio.gather(*(self._signal_one(pod, name) for name in names))

        outcomes: dict[str, SignalOutcome] = {}
        failures: dict[str, Exception] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, Exception):
                failures[name] = result
            else:
                outcomes[name] = result

        if failures:
            raise TerminationError(pod, failures, outcomes)
        return TerminationResult(pod=pod, outcomes=outcomes)

    async def stop(self) -> None:
        """Close the websocket API client if this terminator created it."""
        if self._owns_api and self._api is not None:
            await self._api.api_client.close()
            self._api = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _signal_one(self, pod: PodIdentity, container: str) -> SignalOutcome | Exception:
        log = self._log.bind(pod=pod.key, container=container)
        log.info("sending_shutdown_signal", command=" ".join(TERMINATE_COMMAND))
        try:
            async with asyncio.timeout(self._timeout):
                output = await self._exec_api().connect_get_namespaced_pod_exec(
                    name=pod.name,
                    namespace=pod.namespace,
                    container=container,
                    command=list(TERMINATE_COMMAND),
                    stderr=True,
                    stdin=False,
                    stdout=True,
                    tty=False,
                )
        except Exception as exc:
            if _is_container_gone(exc):
                sidecar_signals_total.labels(result=SignalOutcome.GONE.value).inc()
                log.info("sidecar_already_gone", error=_describe(exc))
                return SignalOutcome.GONE
            sidecar_signals_total.labels(result="failed").inc()
            log.warning("sidecar_signal_failed", error=_describe(exc), error_type=type(exc).__name__)
            return exc

        sidecar_signals_total.labels(result=SignalOutcome.SIGNALED.value).inc()
        if output:
            log.debug("exec_output", output=str(output)[:500])
        return SignalOutcome.SIGNALED

    def _exec_api(self) -> Any:
        if self._api is None:
            from kubernetes_asyncio import client as k8s_client
            from kubernetes_asyncio.stream import WsApiClient

            self._api = k8s_client.CoreV1Api(api_client=WsApiClient())
        return self._api


def _is_container_gone(exc: Exception) -> bool:
    """True for API errors saying the pod or container no longer exists.

    Exec runs over a websocket upgrade. When the API server refuses the
    upgrade, aiohttp raises ``WSServerHandshakeError`` carrying only the
    status; the body naming the container is discarded. The exec endpoint
    answers 400 exactly when the container is missing, invalid for the pod
    or not running, so a rejected handshake with 400 counts as gone.
    """
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status in (400, 404)
    if not isinstance(exc, ApiException):
        return False
    if exc.status == 404:
        return True
    if exc.status != 400:
        return False
    text = f"{exc.reason or ''} {exc.body or ''}".lower()
    return "container" in text and any(marker in text for marker in _GONE_MARKERS)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiException):
        return f"({exc.status}) {exc.reason}"
    if isinstance(exc, aiohttp.ClientResponseError):
        return f"({exc.status}) {exc.message}"
    if isinstance(exc, TimeoutError):
        return "exec timed out"
    return str(exc) or type(exc).__name__
