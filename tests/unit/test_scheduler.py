"""
Unit tests for the scheduler module.

Tests verify scheduler creation, job wiring, startup execution, repeated
runs over a refreshed snapshot and signal handler registration without
starting the blocking loop.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from apscheduler.triggers.cron import CronTrigger

from br_audit.domain.models import AuditReport
from br_audit.railway import ErrorCode, Result
from br_audit.scheduler import JOB_ID, ScheduledAudit, create_scheduler, cron_trigger


def _audit_fn(result: Result[AuditReport] | None = None) -> MagicMock:
    return MagicMock(return_value=Result.success(AuditReport()) if result is None else result)


class TestCreateScheduler:
    """Verify scheduler factory configuration."""

    def test_creates_scheduler_with_job(self) -> None:
        """
        GIVEN an audit function
        WHEN create_scheduler is called
        THEN the returned scheduler has exactly one job configured.
        """
        scheduler = create_scheduler(_audit_fn(), cron="0 */12 * * *", run_on_startup=False)

        jobs = scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].id == JOB_ID

    def test_uses_cron_trigger(self) -> None:
        scheduler = create_scheduler(_audit_fn(), cron="0 2 * * 1", run_on_startup=False)

        job = scheduler.get_jobs()[0]
        assert isinstance(job.trigger, CronTrigger)

    def test_run_on_startup_executes_audit_immediately(self) -> None:
        audit_fn = _audit_fn()
        create_scheduler(audit_fn, run_on_startup=True)

        audit_fn.assert_called_once()

    def test_run_on_startup_false_does_not_execute(self) -> None:
        audit_fn = _audit_fn()
        create_scheduler(audit_fn, run_on_startup=False)

        audit_fn.assert_not_called()

    def test_startup_handles_audit_failure(self) -> None:
        """
        GIVEN an audit that returns Failure
        WHEN run_on_startup executes
        THEN the scheduler is still created (no crash).
        """
        audit_fn = _audit_fn(Result.failure(ErrorCode.IO_ERROR, "ct log missing"))
        scheduler = create_scheduler(audit_fn, run_on_startup=True)

        audit_fn.assert_called_once()
        assert len(scheduler.get_jobs()) == 1

    def test_startup_survives_crashing_audit(self) -> None:
        """
        GIVEN an audit function that raises
        WHEN run_on_startup executes
        THEN the exception is contained by the execution context.
        """
        audit_fn = MagicMock(side_effect=RuntimeError("boom"))
        create_scheduler(audit_fn, run_on_startup=True)

        audit_fn.assert_called_once()

    def test_registers_signal_handlers(self) -> None:
        with patch("br_audit.scheduler.signal.signal") as mock_signal:
            create_scheduler(_audit_fn(), run_on_startup=False)

        registered = {call.args[0] for call in mock_signal.call_args_list}
        assert len(registered) == 2

    def test_job_name_carries_cron(self) -> None:
        scheduler = create_scheduler(_audit_fn(), cron="30 1 * * *", run_on_startup=False)

        assert scheduler.get_jobs()[0].name == "Baseline Requirements audit (30 1 * * *)"


class TestScheduledAudit:
    """Each call re-audits the snapshot as it is on disk at that moment."""

    def test_each_call_reruns_the_audit(self) -> None:
        """
        GIVEN a snapshot that grows between two scheduled runs
        WHEN the job fires twice
        THEN the audit runs twice and the newer report is kept.
        """
        first = AuditReport(entries_read=10)
        second = AuditReport(entries_read=25)
        audit_fn = MagicMock(side_effect=[Result.success(first), Result.success(second)])
        job = ScheduledAudit(audit_fn)

        job()
        job()

        assert audit_fn.call_count == 2
        assert job.runs == 2
        assert job.last_report is second

    def test_failed_run_keeps_previous_report(self) -> None:
        report = AuditReport(entries_read=10)
        audit_fn = MagicMock(
            side_effect=[
                Result.success(report),
                Result.failure(ErrorCode.IO_ERROR, "snapshot being replaced"),
            ]
        )
        job = ScheduledAudit(audit_fn)

        job()
        job()

        assert job.runs == 2
        assert job.last_report is report

    def test_scheduled_job_is_the_audit_runner(self) -> None:
        audit_fn = _audit_fn()
        scheduler = create_scheduler(audit_fn, run_on_startup=False)

        scheduler.get_jobs()[0].func()

        audit_fn.assert_called_once()


def test_cron_trigger_maps_five_fields() -> None:
    trigger = cron_trigger("15 4 1 6 *")

    fields = {f.name: str(f) for f in trigger.fields}
    assert fields["minute"] == "15"
    assert fields["hour"] == "4"
    assert fields["day"] == "1"
    assert fields["month"] == "6"
