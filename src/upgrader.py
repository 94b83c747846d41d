"""
Replace-and-verify upgrade of a single workload.

One state machine drives every environment:

    locate -> image check -> create -> cutover -> health -> commit | rollback

Nothing is mutated before ``create``; from there on any failure restores the
original workload and the run reports the single canonical failure.
"""

import json
import logging
import time
from datetime import datetime
from typing import Optional

from environments import UpgradeEnvironment
from errors import UPDATE_FAILURE, CreateError
from models import (
    UPDATE_SCHEDULE_LABEL,
    OutcomeStatus,
    UpgradeOutcome,
    UpgradeRequest,
    WorkloadRef,
)
from transform import transform

logger = logging.getLogger(__name__)


class WorkloadUpgrader:
    """Drives an ``UpgradeEnvironment`` through one upgrade run."""

    def __init__(
        self,
        environment: UpgradeEnvironment,
        logger: Optional[logging.Logger] = None,
        report_file: Optional[str] = None,
    ):
        """
        Initialize the upgrader.

        Args:
            environment: Platform primitives for the target workload
            logger: Logger receiving the run's milestones (defaults to the module logger)
            report_file: Optional path of a JSON report written after the run
        """
        self.env = environment
        self.log = logger or logging.getLogger(__name__)
        self.report_file = report_file

        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None

    def run(self, request: UpgradeRequest) -> UpgradeOutcome:
        """
        Execute one upgrade run.

        Never raises for platform errors; they are mapped to the outcome.

        Args:
            request: Target image, update ID and optional config mutator

        Returns:
            UpgradeOutcome
        """
        self.run_start_time = time.time()

        self.log.info("=" * 70)
        self.log.info(f"Portainer Updater ({self.env.name})")
        self.log.info("=" * 70)
        self.log.info(f"Image: {request.image}")
        self.log.info(f"Schedule ID: {request.schedule_id}")
        self.log.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self.log.info("=" * 70)

        outcome = self._upgrade(request)

        self.run_end_time = time.time()
        outcome.image = request.image
        outcome.start_time = self.run_start_time
        outcome.end_time = self.run_end_time
        outcome.duration_seconds = self.run_end_time - self.run_start_time

        self._print_report(outcome)
        if self.report_file:
            self._export_results_json(outcome)

        return outcome

    def _upgrade(self, request: UpgradeRequest) -> UpgradeOutcome:
        env = self.env

        # Nothing below mutates the platform until create
        try:
            old = env.locate()
        except Exception as e:
            self.log.error(f"Unable to locate workload: {e}")
            return UpgradeOutcome(OutcomeStatus.FAILED, reason=str(e))

        self.log.info(f"Workload found ({old.kind}={old.name}, id={old.short_id})")

        try:
            spec = env.snapshot(old)
        except Exception as e:
            self.log.error(f"Unable to inspect workload {old.name}: {e}")
            return UpgradeOutcome(OutcomeStatus.FAILED, workload=old, reason=str(e))

        if spec.labels.get(UPDATE_SCHEDULE_LABEL) == request.schedule_id:
            self.log.info(
                f"Workload already updated by this schedule (scheduleId={request.schedule_id})"
            )
            return UpgradeOutcome(OutcomeStatus.UP_TO_DATE, workload=old)

        try:
            up_to_date = env.oracle.ensure_image(request.image)
        except Exception as e:
            self.log.error(f"Unable to obtain image {request.image}: {e}")
            return UpgradeOutcome(OutcomeStatus.FAILED, workload=old, reason=str(e))

        if spec.image == request.image and up_to_date:
            self.log.info(f"Image is already up to date, shutting down (image={request.image})")
            return UpgradeOutcome(OutcomeStatus.UP_TO_DATE, workload=old)

        derived = transform(spec, request)

        self.log.info(f"Creating successor (image={derived.image})")
        try:
            new = env.create(old, spec, derived)
        except CreateError as e:
            self.log.error(f"Unable to create successor: {e}")
            return self._rollback(old, e.workload)
        except Exception as e:
            self.log.error(f"Unable to create successor: {e}")
            return self._rollback(old, None)

        self.log.info(f"Cutting over to successor ({new.kind}={new.name}, id={new.short_id})")
        try:
            env.cutover(old, new, derived)
        except Exception as e:
            self.log.error(f"Cutover failed: {e}")
            return self._rollback(old, new)

        try:
            report = env.observe_health(new)
        except Exception as e:
            self.log.error(f"Unable to read successor health: {e}")
            return self._rollback(old, new)

        if not report.healthy:
            reason = "timed out" if report.timed_out else f"status={report.status}"
            self.log.error(f"Successor is not healthy ({reason}, detail={report.detail})")
            return self._rollback(old, new)

        try:
            final = env.commit(old, new)
        except Exception as e:
            # The successor is live; leftovers are the operator's to clean
            self.log.error(f"Unable to finalize update: {e}")
            final = new

        self.log.info(f"Update process completed ({final.kind}={final.name}, image={request.image})")
        return UpgradeOutcome(OutcomeStatus.COMMITTED, workload=final)

    def _rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> UpgradeOutcome:
        self.log.warning(f"Rolling back to original workload ({old.kind}={old.name})")
        try:
            self.env.rollback(old, new)
        except Exception as e:
            self.log.error(f"Rollback did not complete, manual intervention required: {e}")

        return UpgradeOutcome(
            OutcomeStatus.FAILED,
            workload=old,
            reason=UPDATE_FAILURE,
            rolled_back=True,
        )

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = seconds % 60
            return f"{mins}m {secs:.0f}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            secs = seconds % 60
            return f"{hours}h {mins}m {secs:.0f}s"

    def _print_report(self, outcome: UpgradeOutcome):
        """Print the run's timing and status."""
        self.log.info("")
        self.log.info("=" * 70)
        self.log.info("UPDATE REPORT")
        self.log.info("=" * 70)
        self.log.info(
            f"Start time:      {datetime.fromtimestamp(outcome.start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        self.log.info(
            f"End time:        {datetime.fromtimestamp(outcome.end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        self.log.info(f"Total duration:  {self._format_duration(outcome.duration_seconds)}")
        self.log.info(f"Environment:     {self.env.name}")
        self.log.info(f"Status:          {outcome.status.value}")
        if outcome.workload is not None:
            self.log.info(f"Workload:        {outcome.workload.name} ({outcome.workload.short_id})")
        self.log.info(f"Image:           {outcome.image}")
        if outcome.status is OutcomeStatus.FAILED:
            self.log.info(f"Rolled back:     {'Yes' if outcome.rolled_back else 'No'}")
            self.log.info(f"Error:           {outcome.reason or 'Unknown'}")
        self.log.info("=" * 70)

    def _export_results_json(self, outcome: UpgradeOutcome):
        """Export the run's result to the report file."""
        workload = outcome.workload
        report = {
            "environment": self.env.name,
            "status": outcome.status.value,
            "image": outcome.image,
            "workload": (
                {"id": workload.id, "name": workload.name, "kind": workload.kind}
                if workload
                else None
            ),
            "start_time": datetime.fromtimestamp(outcome.start_time).isoformat(),
            "end_time": datetime.fromtimestamp(outcome.end_time).isoformat(),
            "duration_seconds": outcome.duration_seconds,
            "error_message": outcome.reason,
            "rolled_back": outcome.rolled_back,
        }

        try:
            with open(self.report_file, "w") as f:
                json.dump(report, f, indent=2)
        except OSError as e:
            self.log.error(f"Unable to write report to {self.report_file}: {e}")
            return
        self.log.info(f"Detailed report exported to: {self.report_file}")
