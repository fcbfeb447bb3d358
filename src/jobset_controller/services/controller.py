"""Background controller that keeps every JobSet reconciled."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import weakref
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from jobset_controller.core.config import Settings, get_settings
from jobset_controller.core.errors import ConflictError
from jobset_controller.core.telemetry import resync_span, set_counts
from jobset_controller.services.k8s_store import K8sJobSetStore, get_k8s_jobset_store
from jobset_controller.services.reconciler import (
    JobSetReconciler,
    ReconcileResult,
)

if TYPE_CHECKING:
    from jobset_controller.models.jobset import JobSet

logger = logging.getLogger(__name__)


@dataclass
class ControllerMetrics:
    """Metrics from a resync cycle."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    jobsets_checked: int = 0
    jobsets_reconciled: int = 0
    jobs_created: int = 0
    jobs_deleted: int = 0
    requeued: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class JobSetController:
    """Schedules reconciliation passes for all JobSets.

    Every ``resync_interval_seconds`` all JobSets are listed and reconciled.
    Passes for different JobSets run concurrently (bounded by
    ``max_concurrent_reconciles``); passes for the same JobSet never overlap.
    A pass that asks to be requeued (pending TTL, stale status write) is run
    again after the requested delay.

    Example:
        ```python
        controller = JobSetController()
        await controller.start()  # Start background reconciliation
        # ... application runs ...
        await controller.stop()   # Stop on shutdown
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        reconciler: JobSetReconciler | None = None,
        store: K8sJobSetStore | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            settings: Application settings (uses default if not provided)
            reconciler: Optional JobSetReconciler instance
            store: Optional K8sJobSetStore instance
        """
        self.settings = settings or get_settings()
        self._store = store
        self._reconciler = reconciler
        self._task: asyncio.Task | None = None
        self._running = False
        # Entries live only while a pass holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_reconciles)
        self._requeue_tasks: dict[str, asyncio.Task] = {}
        self._last_run_metrics: ControllerMetrics | None = None

    @property
    def store(self) -> K8sJobSetStore:
        """Get the store instance."""
        if self._store is None:
            self._store = get_k8s_jobset_store()
        return self._store

    @property
    def reconciler(self) -> JobSetReconciler:
        """Get the reconciler instance."""
        if self._reconciler is None:
            self._reconciler = JobSetReconciler(store=self.store)
        return self._reconciler

    @property
    def is_running(self) -> bool:
        """Check if the controller is running."""
        return self._running and self._task is not None

    @property
    def pending_requeues(self) -> list[str]:
        """Keys of JobSets waiting for a scheduled pass."""
        return sorted(self._requeue_tasks)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult | None:
        """Run one pass for a JobSet, serialized with other passes over it.

        A stale status write is retried after ``conflict_requeue_seconds``.

        Returns:
            The pass result, or None if the pass hit a conflict
        """
        key = f"{namespace}/{name}"
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock, self._semaphore:
            try:
                result = await asyncio.to_thread(self.reconciler.reconcile, namespace, name)
            except ConflictError as e:
                logger.info("Conflict reconciling JobSet %s, retrying: %s", key, e)
                self._schedule_requeue(
                    namespace,
                    name,
                    timedelta(seconds=self.settings.conflict_requeue_seconds),
                )
                return None

        if result.requeue_after is not None:
            self._schedule_requeue(namespace, name, result.requeue_after)
        return result

    def _schedule_requeue(self, namespace: str, name: str, delay: timedelta) -> None:
        key = f"{namespace}/{name}"
        existing = self._requeue_tasks.pop(key, None)
        if existing is not None:
            existing.cancel()
        self._requeue_tasks[key] = asyncio.create_task(self._requeue_after(namespace, name, delay))
        logger.debug("Requeued JobSet %s in %s", key, delay)

    async def _requeue_after(self, namespace: str, name: str, delay: timedelta) -> None:
        key = f"{namespace}/{name}"
        try:
            await asyncio.sleep(delay.total_seconds())
        except asyncio.CancelledError:
            return
        if self._requeue_tasks.get(key) is asyncio.current_task():
            del self._requeue_tasks[key]
        try:
            await self.reconcile(namespace, name)
        except Exception as e:
            logger.error(f"Error reconciling requeued JobSet {key}: {e}")

    async def run_resync_cycle(self) -> ControllerMetrics:
        """Reconcile every JobSet once.

        Returns:
            ControllerMetrics with statistics about the cycle
        """
        start_time = datetime.now(UTC)
        metrics = ControllerMetrics(timestamp=start_time)

        with resync_span() as span:
            jobsets = await asyncio.to_thread(self.store.list_jobsets)
            metrics.jobsets_checked = len(jobsets)

            results = await asyncio.gather(
                *(self.reconcile(js.namespace, js.name) for js in jobsets),
                return_exceptions=True,
            )
            self._collect_results(metrics, jobsets, results)
            set_counts(
                span,
                checked=metrics.jobsets_checked,
                reconciled=metrics.jobsets_reconciled,
                created_jobs=metrics.jobs_created,
                deleted_jobs=metrics.jobs_deleted,
                errors=len(metrics.errors),
            )

        metrics.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
        self._last_run_metrics = metrics

        logger.info(
            f"Resync cycle complete: "
            f"reconciled {metrics.jobsets_reconciled}/{metrics.jobsets_checked} JobSets, "
            f"created {metrics.jobs_created} jobs, deleted {metrics.jobs_deleted} jobs, "
            f"duration {metrics.duration_seconds:.2f}s"
        )
        return metrics

    @staticmethod
    def _collect_results(
        metrics: ControllerMetrics,
        jobsets: list[JobSet],
        results: list[ReconcileResult | None | BaseException],
    ) -> None:
        for js, result in zip(jobsets, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(f"Failed to reconcile JobSet {js.namespace}/{js.name}: {result}")
                metrics.errors.append(f"{js.namespace}/{js.name}: {result}")
                continue
            if result is None:
                metrics.requeued += 1
                continue
            metrics.jobsets_reconciled += 1
            metrics.jobs_created += result.created_jobs
            metrics.jobs_deleted += result.deleted_jobs
            if result.requeue_after is not None:
                metrics.requeued += 1

    def get_last_metrics(self) -> ControllerMetrics | None:
        """Get metrics from the last resync cycle.

        Returns:
            Last ControllerMetrics or None if no cycle has run
        """
        return self._last_run_metrics

    async def _run_loop(self) -> None:
        """Background loop that resyncs all JobSets at configured intervals."""
        interval = self.settings.resync_interval_seconds
        logger.info(f"JobSet controller started, resyncing every {interval} seconds")

        while self._running:
            try:
                await self.run_resync_cycle()
            except Exception as e:
                logger.error(f"Error in JobSet resync cycle: {e}")

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

        logger.info("JobSet controller stopped")

    async def start(self) -> None:
        """Start the background controller.

        Does nothing if the controller is disabled in settings or already running.
        """
        if not self.settings.controller_enabled:
            logger.info("JobSet controller is disabled in settings")
            return

        if self._running:
            logger.warning("JobSet controller is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("JobSet controller background task created")

    async def stop(self) -> None:
        """Stop the background controller and drop scheduled requeues."""
        if not self._running:
            return

        self._running = False

        for task in self._requeue_tasks.values():
            task.cancel()
        self._requeue_tasks.clear()

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        logger.info("JobSet controller stopped")


# Global controller instance
_jobset_controller: JobSetController | None = None


def get_jobset_controller() -> JobSetController:
    """Get the global JobSetController instance."""
    global _jobset_controller
    if _jobset_controller is None:
        _jobset_controller = JobSetController()
    return _jobset_controller
