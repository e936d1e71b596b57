"""Tests for the kopf handlers in main.py."""

import threading
from unittest.mock import patch

import kopf
import pytest

from noobaa_operator import crd, main
from noobaa_operator.errors import PersistentError, TransientError
from noobaa_operator.reconcile import ReconcileResult


class TestNooBaaHandler:
    """Tests for mapping reconcile outcomes onto kopf."""

    def test_success(self):
        with patch.object(main, "run_reconcile", return_value=ReconcileResult.done()) as run:
            assert main.noobaa_handler(name="mystore", namespace="storage") is None
        run.assert_called_once_with("storage", "mystore")

    def test_transient_is_retried(self):
        result = ReconcileResult(True, 2, TransientError("core pod port not ready yet"))
        with patch.object(main, "run_reconcile", return_value=result):
            with pytest.raises(kopf.TemporaryError) as exc_info:
                main.noobaa_handler(name="mystore", namespace="storage")
        assert exc_info.value.delay == 2

    def test_persistent_is_not_retried(self):
        result = ReconcileResult(False, 0, PersistentError("invalid reference format"))
        with patch.object(main, "run_reconcile", return_value=result):
            with pytest.raises(kopf.PermanentError):
                main.noobaa_handler(name="mystore", namespace="storage")

    def test_timer_never_raises(self):
        result = ReconcileResult(True, 2, TransientError("later"))
        with patch.object(main, "run_reconcile", return_value=result):
            main.noobaa_timer(
                name="mystore",
                namespace="storage",
                meta={"generation": 1},
                status={"phase": "Creating"},
            )

    def test_timer_skips_rejected_generation(self):
        with patch.object(main, "run_reconcile") as run:
            main.noobaa_timer(
                name="mystore",
                namespace="storage",
                meta={"generation": 3},
                status={"phase": crd.PHASE_REJECTED, "observedGeneration": 3},
            )
        run.assert_not_called()

    def test_timer_retries_rejected_after_spec_change(self):
        stopped = threading.Event()
        with patch.object(main, "run_reconcile", return_value=ReconcileResult.done()) as run:
            main.noobaa_timer(
                name="mystore",
                namespace="storage",
                meta={"generation": 4},
                status={"phase": crd.PHASE_REJECTED, "observedGeneration": 3},
                stopped=stopped,
            )
        run.assert_called_once_with("storage", "mystore", stopped=stopped)


class TestRunReconcile:
    """Tests for wiring a reconcile pass."""

    def test_uses_given_cluster(self):
        from conftest import FakeCluster

        result = main.run_reconcile("storage", "missing", cluster=FakeCluster())

        assert result == ReconcileResult.done()

    def test_stopped_flag_cancels_pass(self, cluster):
        stopped = threading.Event()
        stopped.set()

        result = main.run_reconcile("storage", "mystore", cluster=cluster, stopped=stopped)

        assert result.requeue is True
        assert cluster.writes == []
