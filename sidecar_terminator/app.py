"""Application bootstrap for sidecar-terminator.

Brings the controller up one component at a time and tears it down in
reverse. Startup order: config → logging → K8s client → metrics → pod store → queue
              → terminator/recorder → reconciler → filter → watcher
              → controller

Shutdown stops the watcher first so no new work arrives, lets the controller
finish in-flight items, then flushes events and closes API clients. Each
stop step is guarded independently.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from typing import TYPE_CHECKING, Any

from sidecar_terminator.cache.pod_store import CacheSyncError
from sidecar_terminator.config import load_config
from sidecar_terminator.models.config import ControllerConfig
from sidecar_terminator.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from sidecar_terminator.cache.pod_store import PodStore
    from sidecar_terminator.collector.pod_watcher import PodWatcher
    from sidecar_terminator.controller.controller import Controller
    from sidecar_terminator.controller.queue import ReconcileQueue
    from sidecar_terminator.controller.terminator import SidecarTerminator
    from sidecar_terminator.notifications.recorder import EventRecorder

_SHUTDOWN_GRACE_SECONDS = 30


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class SidecarTerminatorApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``stop()`` is safe on an app that was never started or already stopped.

    Args:
        workers: overrides ``SIDECAR_TERMINATOR_WORKERS`` when given.
        log_level: overrides ``SIDECAR_TERMINATOR_LOG_LEVEL`` when given.
    """

    def __init__(self, workers: int | None = None, log_level: str | None = None) -> None:
        self.config: ControllerConfig | None = None
        self._workers_override = workers
        self._log_level_override = log_level

        self._api_client: Any = None
        self._store: PodStore | None = None
        self._queue: ReconcileQueue | None = None
        self._watcher: PodWatcher | None = None
        self._controller: Controller | None = None
        self._terminator: SidecarTerminator | None = None
        self._recorder: EventRecorder | None = None
        self._controller_task: asyncio.Task[None] | None = None

        self._running = False
        self._stop_requested = False
        self._log: FilteringBoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = self._apply_overrides(load_config())
        except ValueError as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("sidecar-terminator starting", version=_package_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Metrics endpoint -----------------------------------------
        self._start_metrics()

        # --- 5. Reconciliation engine ------------------------------------
        self._build_engine()

        # --- 6. Pod watcher ----------------------------------------------
        await self._start_watcher()

        # --- 7. Controller workers ---------------------------------------
        assert self._controller is not None
        self._running = True
        if self._stop_requested:
            # A signal arrived while starting; wait() returns at once
            self._log.info("stop requested during startup, controller not started")
            return
        self._controller_task = asyncio.create_task(
            self._controller.run(self.config.workers),
            name="controller",
        )

        self._log.info(
            "sidecar-terminator started",
            workers=self.config.workers,
            sidecars=sorted(self.config.sidecars),
            workload_kind=self.config.workload_kind,
            namespace=self.config.namespace or "*",
        )

    def _apply_overrides(self, config: ControllerConfig) -> ControllerConfig:
        if self._workers_override is not None:
            config = dataclasses.replace(config, workers=max(1, self._workers_override))
        if self._log_level_override is not None:
            config = dataclasses.replace(config, log=dataclasses.replace(config.log, level=self._log_level_override))
        return config

    async def _start_k8s_client(self) -> None:
        """Load cluster credentials and build the shared API client.

        The in-cluster service account is tried first; outside a cluster the
        local kubeconfig is used.
        """
        assert self._log is not None
        import kubernetes_asyncio.config as k8s_config
        from kubernetes_asyncio import client as k8s_client

        source = "in-cluster"
        try:
            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
            except k8s_config.ConfigException:
                source = "kubeconfig"
                await k8s_config.load_kube_config()
            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc
        self._log.info("kubernetes credentials loaded", source=source)

    def _start_metrics(self) -> None:
        """Serve Prometheus metrics. Non-fatal: the controller runs without them."""
        assert self._log is not None
        assert self.config is not None
        if not self.config.metrics.enabled:
            self._log.info("metrics endpoint disabled")
            return
        from sidecar_terminator.observability.metrics import serve_metrics

        try:
            serve_metrics(self.config.metrics.port)
            self._log.info("metrics endpoint started", port=self.config.metrics.port)
        except OSError as exc:
            self._log.warning("metrics endpoint failed to start", port=self.config.metrics.port, error=str(exc))

    def _build_engine(self) -> None:
        """Construct store, queue, terminator, recorder, reconciler and controller."""
        assert self._log is not None
        assert self.config is not None
        try:
            from kubernetes_asyncio import client as k8s_client

            from sidecar_terminator.cache.pod_store import PodStore
            from sidecar_terminator.controller.controller import Controller
            from sidecar_terminator.controller.queue import (
                ItemExponentialBackoff,
                RateLimiter,
                ReconcileQueue,
                TokenBucket,
            )
            from sidecar_terminator.controller.reconciler import Reconciler
            from sidecar_terminator.controller.terminator import SidecarTerminator
            from sidecar_terminator.notifications.recorder import EventRecorder

            qcfg = self.config.queue
            queue = ReconcileQueue(
                rate_limiter=RateLimiter(
                    backoff=ItemExponentialBackoff(qcfg.base_delay_seconds, qcfg.max_delay_seconds),
                    bucket=TokenBucket(qcfg.qps, qcfg.burst),
                ),
                max_retries=qcfg.max_retries,
            )
            store = PodStore()
            recorder = EventRecorder(
                k8s_client.CoreV1Api(self._api_client) if self.config.events_enabled else None,
            )
            terminator = SidecarTerminator(timeout=self.config.exec_timeout_seconds)
            reconciler = Reconciler(store, terminator, sidecars=self.config.sidecars, recorder=recorder)

            self._store = store
            self._queue = queue
            self._recorder = recorder
            self._terminator = terminator
            self._controller = Controller(
                queue,
                reconciler,
                store,
                recorder=recorder,
                cache_sync_timeout=self.config.cache_sync_timeout_seconds,
            )
            self._log.info("reconciliation engine built", events_enabled=recorder.enabled)
        except Exception as exc:
            raise _ComponentError("engine", exc) from exc

    async def _start_watcher(self) -> None:
        """Start the pod list/watch loop and route its events through the filter."""
        assert self._log is not None
        assert self.config is not None
        assert self._store is not None
        assert self._queue is not None
        try:
            from kubernetes_asyncio import client as k8s_client

            from sidecar_terminator.collector.pod_watcher import PodWatcher
            from sidecar_terminator.controller.event_filter import EventFilter

            event_filter = EventFilter(self._queue, self._store, workload_kind=self.config.workload_kind)
            watcher = PodWatcher(k8s_client.CoreV1Api(self._api_client), self._store, namespace=self.config.namespace)
            watcher.add_handler(event_filter)
            await watcher.start()
            self._watcher = watcher
        except Exception as exc:
            raise _ComponentError("watcher", exc) from exc

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def wait(self) -> None:
        """Block until the controller exits.

        Raises _ComponentError if the controller could not start (e.g. the
        pod cache never synced).
        """
        if self._controller_task is None:
            return
        try:
            await self._controller_task
        except CacheSyncError as exc:
            raise _ComponentError("controller", exc) from exc

    def request_stop(self) -> None:
        """Ask the controller to shut down; ``wait()`` returns once it has.

        Before the controller exists the request is remembered and honoured
        at the end of ``start()``.
        """
        self._stop_requested = True
        if self._controller is not None:
            self._controller.stop()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("sidecar-terminator shutting down")
        self._running = False

        await self._stop_component("watcher", self._watcher)
        self._watcher = None

        if self._controller is not None:
            self._controller.stop()
        if self._controller_task is not None and not self._controller_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._controller_task), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("controller stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
                self._controller_task.cancel()
            except Exception as exc:
                log.error("controller exited with an error", error=str(exc))
        self._controller_task = None

        await self._stop_component("recorder", self._recorder)
        await self._stop_component("terminator", self._terminator)
        await self._close_k8s_client()

        log.info("sidecar-terminator stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Await ``component.stop()`` within the grace period; errors are logged only."""
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        log = self._log or get_logger("app")
        try:
            async with asyncio.timeout(_SHUTDOWN_GRACE_SECONDS):
                result = stop_fn()
                if asyncio.iscoroutine(result):
                    await result
        except TimeoutError:
            log.warning("stop exceeded grace period", component=name, grace_s=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("stop failed", component=name, error=str(exc), error_type=type(exc).__name__)

    async def _close_k8s_client(self) -> None:
        client, self._api_client = self._api_client, None
        if client is None:
            return
        try:
            await client.close()
        except Exception as exc:
            (self._log or get_logger("app")).debug("api client close failed", error=str(exc))


def _package_version() -> str:
    from sidecar_terminator import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(workers: int | None = None, log_level: str | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = SidecarTerminatorApp(workers=workers, log_level=log_level)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_stop)

    try:
        await app.start()
        await app.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()
