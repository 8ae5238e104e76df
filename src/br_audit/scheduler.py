"""
Scheduler — periodic re-audit of the configured CT log snapshot.

Infrastructure layer — uses APScheduler (3.x) with a standard 5-field cron
expression. The snapshot file is expected to be refreshed between runs by
whatever fetches it; every run audits the file as it is at that moment and
replaces the previous report in each sink.

A ScheduledAudit instance is the job: it keeps the last successful report
so each run can log how much the snapshot moved since the one before.
SIGINT/SIGTERM stop the scheduler.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from br_audit.domain.models import AuditReport
from br_audit.railway import LoggingExecutionContext, Result

log = structlog.get_logger()

JOB_ID = "br_audit_run"


def log_audit_outcome(result: Result[AuditReport]) -> None:
    if result.is_success():
        report = result.value()
        log.info(
            "scheduler.job_completed",
            certificates_audited=report.certificates_audited,
            violating=len(report.violating_summaries),
            issuer_buckets=len(report.reputations),
        )
    else:
        log.error("scheduler.job_failed", failure=str(result.error()))


class ScheduledAudit:
    """
    One audit run per call, wrapped in a LoggingExecutionContext.

    A failed run keeps the previous report as the comparison point for
    the next one.
    """

    def __init__(self, audit_fn: Callable[[], Result[AuditReport]]) -> None:
        self._audit_fn = audit_fn
        self._ctx = LoggingExecutionContext(operation="BaselineRequirementsAudit")
        self.runs = 0
        self.last_report: AuditReport | None = None

    def __call__(self) -> None:
        self.runs += 1
        result = self._ctx.execute(self._audit_fn)
        log_audit_outcome(result)
        if result.is_success():
            self._log_snapshot_change(result.value())
            self.last_report = result.value()

    def _log_snapshot_change(self, report: AuditReport) -> None:
        previous = self.last_report
        if previous is None:
            return
        log.info(
            "scheduler.snapshot_change",
            run=self.runs,
            entries_read=report.entries_read,
            entries_delta=report.entries_read - previous.entries_read,
            violating_delta=len(report.violating_summaries) - len(previous.violating_summaries),
        )


def cron_trigger(cron: str) -> CronTrigger:
    """Build a trigger from "minute hour day-of-month month day-of-week"."""
    minute, hour, dom, month, dow = cron.split()
    return CronTrigger(minute=minute, hour=hour, day=dom, month=month, day_of_week=dow)


def create_scheduler(
    audit_fn: Callable[[], Result[AuditReport]],
    cron: str = "0 3 * * *",
    run_on_startup: bool = True,
) -> BlockingScheduler:
    """
    Create a BlockingScheduler that re-audits the snapshot on a cron schedule.

    Args:
        audit_fn: Zero-argument callable returning Result[AuditReport] (the wired audit).
        cron: Standard 5-field cron expression.
        run_on_startup: If True, audit once before the scheduler starts.

    Returns:
        The scheduler, not yet started.
    """
    job = ScheduledAudit(audit_fn)
    scheduler = BlockingScheduler()
    scheduler.add_job(
        job,
        trigger=cron_trigger(cron),
        id=JOB_ID,
        name=f"Baseline Requirements audit ({cron})",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run", cron=cron)
        job()

    _register_shutdown_signals(scheduler)
    return scheduler


def _register_shutdown_signals(scheduler: BlockingScheduler) -> None:
    def _shutdown(signum: int, frame: object) -> None:
        log.info("scheduler.shutdown_requested", signal=signal.Signals(signum).name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _shutdown)
