"""
Unit tests for the upgrade state machine.
"""

import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock
from environments import UpgradeEnvironment
from errors import UPDATE_FAILURE, CreateError, CutoverError, NotFoundError
from models import (
    UPDATE_SCHEDULE_LABEL,
    HealthReport,
    OutcomeStatus,
    UpgradeRequest,
    WorkloadRef,
    WorkloadSpec,
)
from upgrader import WorkloadUpgrader

OLD = WorkloadRef(id="old0000000000000", name="agent")
NEW = WorkloadRef(id="new0000000000000", name="agent-update")


def make_environment(image="agent:1.0", labels=None, up_to_date=False):
    env = MagicMock(spec=UpgradeEnvironment)
    env.name = "fake"
    env.oracle = MagicMock()
    env.oracle.ensure_image.return_value = up_to_date
    env.locate.return_value = OLD
    env.snapshot.return_value = WorkloadSpec(
        name="agent", image=image, env=["A=1"], labels=dict(labels or {})
    )
    env.create.return_value = NEW
    env.observe_health.return_value = HealthReport(healthy=True, status="healthy")
    env.commit.return_value = WorkloadRef(id=NEW.id, name="agent")
    return env


class TestWorkloadUpgrader(unittest.TestCase):
    """Test WorkloadUpgrader transitions."""

    def test_already_up_to_date(self):
        """Test the same image reported up to date is a no-op."""
        env = make_environment(image="agent:1.0", up_to_date=True)

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:1.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.UP_TO_DATE)
        self.assertTrue(outcome.succeeded)
        env.create.assert_not_called()
        env.cutover.assert_not_called()
        env.rollback.assert_not_called()

    def test_same_image_not_up_to_date_is_replaced(self):
        """Test a refreshed image with the same tag is still rolled out."""
        env = make_environment(image="agent:latest", up_to_date=False)

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:latest", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.COMMITTED)
        env.create.assert_called_once()

    def test_schedule_token_short_circuits(self):
        """Test a workload already stamped by this schedule is not touched."""
        env = make_environment(labels={UPDATE_SCHEDULE_LABEL: "7"})

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="7"))

        self.assertEqual(outcome.status, OutcomeStatus.UP_TO_DATE)
        env.oracle.ensure_image.assert_not_called()
        env.create.assert_not_called()

    def test_committed(self):
        """Test the success path."""
        env = make_environment()

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.COMMITTED)
        self.assertEqual(outcome.workload.name, "agent")
        self.assertEqual(outcome.image, "agent:2.0")
        self.assertIsNotNone(outcome.duration_seconds)
        env.cutover.assert_called_once()
        env.commit.assert_called_once_with(OLD, NEW)
        env.rollback.assert_not_called()

        old, spec, derived = env.create.call_args.args
        self.assertEqual(old, OLD)
        self.assertEqual(spec.image, "agent:1.0")
        self.assertEqual(derived.image, "agent:2.0")
        self.assertEqual(derived.env, ["A=1", "UPDATE_ID=1"])

    def test_locate_failure_mutates_nothing(self):
        """Test a locate failure aborts before any change."""
        env = make_environment()
        env.locate.side_effect = NotFoundError("unable to find workload")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.FAILED)
        self.assertFalse(outcome.rolled_back)
        env.create.assert_not_called()
        env.cutover.assert_not_called()
        env.rollback.assert_not_called()

    def test_pull_failure_mutates_nothing(self):
        """Test an image failure aborts before any change."""
        env = make_environment()
        env.oracle.ensure_image.side_effect = RuntimeError("pull failed")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.FAILED)
        env.create.assert_not_called()
        env.rollback.assert_not_called()

    def test_create_failure_with_partial_workload(self):
        """Test a partial create hands the new workload to rollback."""
        env = make_environment()
        env.create.side_effect = CreateError("network join failed", workload=NEW)

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.FAILED)
        self.assertEqual(outcome.reason, UPDATE_FAILURE)
        env.rollback.assert_called_once_with(OLD, NEW)
        env.cutover.assert_not_called()

    def test_cutover_failure_rolls_back(self):
        """Test a cutover failure restores the original."""
        env = make_environment()
        env.cutover.side_effect = CutoverError("unable to stop old container")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.reason, UPDATE_FAILURE)
        self.assertTrue(outcome.rolled_back)
        env.rollback.assert_called_once_with(OLD, NEW)
        env.observe_health.assert_not_called()

    def test_unhealthy_rolls_back(self):
        """Test an unhealthy successor is rolled back."""
        env = make_environment()
        env.observe_health.return_value = HealthReport(healthy=False, status="unhealthy")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.FAILED)
        self.assertEqual(outcome.workload, OLD)
        env.rollback.assert_called_once_with(OLD, NEW)
        env.commit.assert_not_called()

    def test_health_read_error_rolls_back(self):
        """Test a transport error while reading health rolls back."""
        env = make_environment()
        env.observe_health.side_effect = RuntimeError("inspect failed")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.reason, UPDATE_FAILURE)
        env.rollback.assert_called_once_with(OLD, NEW)

    def test_rollback_errors_keep_canonical_failure(self):
        """Test rollback sub-failures do not change the reported failure."""
        env = make_environment()
        env.observe_health.return_value = HealthReport(healthy=False, status="unhealthy")
        env.rollback.side_effect = RuntimeError("restart failed")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.reason, UPDATE_FAILURE)

    def test_commit_error_still_succeeds(self):
        """Test post-commit errors keep the successful outcome."""
        env = make_environment()
        env.commit.side_effect = RuntimeError("rename failed")

        outcome = WorkloadUpgrader(env).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertEqual(outcome.status, OutcomeStatus.COMMITTED)
        self.assertEqual(outcome.workload, NEW)

    def test_injected_logger(self):
        """Test milestones go to the injected logger."""
        env = make_environment()
        log = MagicMock()

        WorkloadUpgrader(env, logger=log).run(UpgradeRequest(image="agent:2.0", schedule_id="1"))

        self.assertTrue(log.info.called)

    def test_report_exported(self):
        """Test the JSON report."""
        env = make_environment()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "report.json")

            WorkloadUpgrader(env, report_file=path).run(
                UpgradeRequest(image="agent:2.0", schedule_id="1")
            )

            with open(path) as f:
                report = json.load(f)

        self.assertEqual(report["status"], "committed")
        self.assertEqual(report["environment"], "fake")
        self.assertEqual(report["workload"]["name"], "agent")
        self.assertFalse(report["rolled_back"])

    def test_format_duration(self):
        """Test duration formatting."""
        upgrader = WorkloadUpgrader(make_environment())
        self.assertEqual(upgrader._format_duration(42.0), "42.0s")
        self.assertEqual(upgrader._format_duration(125.0), "2m 5s")
        self.assertEqual(upgrader._format_duration(3725.0), "1h 2m 5s")


if __name__ == "__main__":
    unittest.main()
