"""Tests for the background JobSetController."""

import asyncio
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from jobset_controller.core.config import Settings
from jobset_controller.core.errors import ConflictError, StoreError
from jobset_controller.services.controller import ControllerMetrics, JobSetController
from jobset_controller.services.reconciler import JobSetReconciler, ReconcileResult


@pytest.fixture
def settings():
    """Create test settings with fast intervals."""
    return Settings(
        otel_enabled=False,
        controller_enabled=True,
        resync_interval_seconds=1,  # Fast interval for tests
        max_concurrent_reconciles=4,
        conflict_requeue_seconds=0.05,
    )


@pytest.fixture
def mock_reconciler():
    """Create a JobSetReconciler stand-in that always succeeds."""
    reconciler = MagicMock(spec=JobSetReconciler)
    reconciler.reconcile.return_value = ReconcileResult()
    return reconciler


@pytest.fixture
def controller(settings, mock_reconciler, mock_store):
    """Create a JobSetController with mocked collaborators."""
    return JobSetController(settings=settings, reconciler=mock_reconciler, store=mock_store)


class TestResyncCycle:
    """Tests for a full resync over all JobSets."""

    @pytest.mark.asyncio
    async def test_empty_cluster(self, controller: JobSetController):
        """Test a resync with no JobSets."""
        metrics = await controller.run_resync_cycle()

        assert isinstance(metrics, ControllerMetrics)
        assert metrics.jobsets_checked == 0
        assert metrics.jobsets_reconciled == 0
        assert metrics.errors == []
        assert controller.get_last_metrics() is metrics

    @pytest.mark.asyncio
    async def test_reconciles_every_jobset(
        self, controller: JobSetController, mock_store, mock_reconciler, make_jobset
    ):
        """Test that every listed JobSet is reconciled and counted."""
        mock_store.list_jobsets.return_value = [make_jobset(name="a"), make_jobset(name="b")]
        mock_reconciler.reconcile.return_value = ReconcileResult(
            created_jobs=2, deleted_jobs=1, status_updated=True
        )

        metrics = await controller.run_resync_cycle()

        assert metrics.jobsets_checked == 2
        assert metrics.jobsets_reconciled == 2
        assert metrics.jobs_created == 4
        assert metrics.jobs_deleted == 2
        reconciled = sorted(call.args for call in mock_reconciler.reconcile.call_args_list)
        assert reconciled == [("default", "a"), ("default", "b")]

    @pytest.mark.asyncio
    async def test_errors_are_collected(
        self, controller: JobSetController, mock_store, mock_reconciler, make_jobset
    ):
        """Test that one failing JobSet does not stop the others."""
        mock_store.list_jobsets.return_value = [make_jobset(name="bad"), make_jobset(name="ok")]

        def reconcile(namespace, name):
            if name == "bad":
                raise StoreError("api down")
            return ReconcileResult(created_jobs=1)

        mock_reconciler.reconcile.side_effect = reconcile

        metrics = await controller.run_resync_cycle()

        assert metrics.jobsets_reconciled == 1
        assert metrics.jobs_created == 1
        assert len(metrics.errors) == 1
        assert "default/bad" in metrics.errors[0]


class TestRequeue:
    """Tests for delayed requeues."""

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, controller: JobSetController, mock_reconciler):
        """Test that a stale status write schedules another pass."""
        mock_reconciler.reconcile.side_effect = [ConflictError("stale"), ReconcileResult()]

        result = await controller.reconcile("default", "js")

        assert result is None
        assert controller.pending_requeues == ["default/js"]

        await asyncio.sleep(0.2)

        assert mock_reconciler.reconcile.call_count == 2
        assert controller.pending_requeues == []

    @pytest.mark.asyncio
    async def test_requeue_after(self, controller: JobSetController, mock_reconciler):
        """Test that a requested requeue runs the pass again after the delay."""
        mock_reconciler.reconcile.side_effect = [
            ReconcileResult(requeue_after=timedelta(milliseconds=50)),
            ReconcileResult(),
        ]

        await controller.reconcile("default", "js")
        assert mock_reconciler.reconcile.call_count == 1

        await asyncio.sleep(0.2)

        assert mock_reconciler.reconcile.call_count == 2
        assert controller.pending_requeues == []

    @pytest.mark.asyncio
    async def test_newer_requeue_replaces_older(
        self, controller: JobSetController, mock_reconciler
    ):
        """Test that only the latest requeue of a JobSet is kept."""
        mock_reconciler.reconcile.return_value = ReconcileResult(
            requeue_after=timedelta(seconds=30)
        )

        await controller.start()
        await controller.reconcile("default", "js")
        first = controller._requeue_tasks["default/js"]
        await controller.reconcile("default", "js")
        await asyncio.sleep(0.01)

        assert controller.pending_requeues == ["default/js"]
        assert first.cancelled() or first.done()

        await controller.stop()
        assert controller.pending_requeues == []


class TestConcurrency:
    """Tests for serialization of passes."""

    @staticmethod
    def _tracking_reconcile():
        lock = threading.Lock()
        state = {"active": 0, "max_active": 0}

        def reconcile(namespace, name):
            with lock:
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return ReconcileResult()

        return reconcile, state

    @pytest.mark.asyncio
    async def test_same_jobset_is_serialized(
        self, controller: JobSetController, mock_reconciler
    ):
        """Test that passes over one JobSet never overlap."""
        reconcile, state = self._tracking_reconcile()
        mock_reconciler.reconcile.side_effect = reconcile

        await asyncio.gather(*(controller.reconcile("default", "js") for _ in range(3)))

        assert mock_reconciler.reconcile.call_count == 3
        assert state["max_active"] == 1

    @pytest.mark.asyncio
    async def test_different_jobsets_run_concurrently(
        self, controller: JobSetController, mock_reconciler
    ):
        """Test that passes over different JobSets overlap."""
        reconcile, state = self._tracking_reconcile()
        mock_reconciler.reconcile.side_effect = reconcile

        await asyncio.gather(
            controller.reconcile("default", "a"),
            controller.reconcile("default", "b"),
        )

        assert state["max_active"] == 2

    @pytest.mark.asyncio
    async def test_locks_are_dropped_after_passes(
        self, controller: JobSetController, mock_reconciler
    ):
        """Test that per-JobSet locks do not outlive the passes using them."""
        await controller.reconcile("default", "a")
        await controller.reconcile("default", "b")

        assert "default/a" not in controller._locks
        assert len(controller._locks) == 0


class TestControllerLifecycle:
    """Tests for starting and stopping the controller."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, controller: JobSetController):
        """Test that the controller starts and stops its loop."""
        assert controller.is_running is False

        await controller.start()
        assert controller.is_running is True

        await controller.stop()
        assert controller.is_running is False

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, controller: JobSetController):
        """Test that starting a running controller keeps one loop."""
        await controller.start()
        task = controller._task
        await controller.start()

        assert controller._task is task
        await controller.stop()

    @pytest.mark.asyncio
    async def test_disabled_controller_does_not_start(self, mock_reconciler, mock_store):
        """Test that a disabled controller never starts its loop."""
        controller = JobSetController(
            settings=Settings(otel_enabled=False, controller_enabled=False),
            reconciler=mock_reconciler,
            store=mock_store,
        )

        await controller.start()

        assert controller.is_running is False

    @pytest.mark.asyncio
    async def test_loop_runs_resync(self, controller: JobSetController, mock_store):
        """Test that the background loop resyncs on start."""
        await controller.start()
        await asyncio.sleep(0.1)
        await controller.stop()

        mock_store.list_jobsets.assert_called()
        assert controller.get_last_metrics() is not None

    @pytest.mark.asyncio
    async def test_loop_survives_listing_errors(self, controller: JobSetController, mock_store):
        """Test that a failing resync does not stop the loop."""
        mock_store.list_jobsets.side_effect = StoreError("api down")

        await controller.start()
        await asyncio.sleep(0.1)

        assert controller.is_running is True
        await controller.stop()
