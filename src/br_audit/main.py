"""
Application entry point — wires dependencies and runs the audit.

Composition root: creates concrete adapters, injects them into the
pipeline and either runs it once or hands it to the cron scheduler.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Load the trust list and popularity ranking, create the sinks
  4. Wire the audit (partial application with ports)
  5. Run once, or create and start the scheduler
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from functools import partial
from pathlib import Path

import structlog

from br_audit import __version__
from br_audit.adapters.ct_entries import CtEntriesFile
from br_audit.adapters.json_report import JsonReportWriter
from br_audit.adapters.popularity import CsvPopularityRanker, load_popularity_ranking
from br_audit.adapters.repository import PsycopgAuditRepository
from br_audit.adapters.root_store import load_trusted_issuers
from br_audit.adapters.x509_decoder import CryptographyCertificateDecoder
from br_audit.config import AppSettings
from br_audit.domain.models import AuditReport
from br_audit.domain.ports import AuditReportSink, PopularityOracle
from br_audit.pipeline import AuditOptions, run_audit
from br_audit.railway import LoggingExecutionContext, Result
from br_audit.scheduler import create_scheduler, log_audit_outcome

type AuditJob = Callable[[], Result[AuditReport]]


def configure_structlog(log_level: str = "INFO") -> None:
    """Configure structlog for colored, human-readable console output."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _load_oracle(path: Path | None) -> Result[PopularityOracle]:
    """Without a ranking file every lookup misses, so no certificate gets a reputation."""
    if path is None:
        structlog.get_logger().info("popularity.disabled")
        return Result.success(CsvPopularityRanker({}))
    return load_popularity_ranking(path)


def _create_sinks(settings: AppSettings) -> Result[list[AuditReportSink]]:
    sinks: list[Result[AuditReportSink]] = []
    if settings.output.json_file is not None:
        sinks.append(Result.success(JsonReportWriter(settings.output.json_file)))
    if settings.database is not None:
        repository = PsycopgAuditRepository(
            dsn=settings.database.get_dsn(),
            connect_attempts=settings.database.connect_attempts,
        )
        sinks.append(repository.ensure_schema().map(lambda _: repository))
    return Result.all_of(sinks)


def _audit_options(settings: AppSettings) -> AuditOptions:
    return AuditOptions(
        workers=settings.audit.workers,
        max_entries=settings.audit.max_entries,
        issued_after=settings.audit.issued_after_utc(),
        skip_expired=settings.audit.skip_expired,
    )


def build_audit_job(settings: AppSettings) -> Result[AuditJob]:
    """
    Load the static inputs and return the wired, zero-argument audit.

    The trust list, ranking and sinks are prepared once; each call of the
    returned job re-reads the CT log.
    """
    return load_trusted_issuers(settings.sources.root_ca_file).flat_map(
        lambda trusted: _load_oracle(settings.sources.popularity_file).flat_map(
            lambda oracle: _create_sinks(settings).map(
                lambda sinks: partial(
                    run_audit,
                    source=CtEntriesFile(settings.sources.ct_log),
                    decoder=CryptographyCertificateDecoder(),
                    trusted_issuers=trusted,
                    oracle=oracle,
                    sinks=sinks,
                    options=_audit_options(settings),
                )
            )
        )
    )


def main() -> None:
    """Wire dependencies, then audit once or launch the scheduled audit."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        ct_log=str(settings.sources.ct_log),
        scheduled=settings.scheduler.enabled,
    )

    job = build_audit_job(settings)
    if job.is_failure():
        log.error("app.wiring_failed", failure=str(job.error()))
        sys.exit(1)

    if not settings.scheduler.enabled:
        result = LoggingExecutionContext(operation="BaselineRequirementsAudit").execute(
            job.value()
        )
        log_audit_outcome(result)
        sys.exit(0 if result.is_success() else 1)

    scheduler = create_scheduler(
        audit_fn=job.value(),
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )
    log.info("app.scheduler_starting", cron=settings.scheduler.cron)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
