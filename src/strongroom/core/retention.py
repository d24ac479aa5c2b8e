# Core Module - Audit Retention Scheduler
#
# Daily background sweep that prunes audit entries older than the configured
# retention window. Runs under an APScheduler BackgroundScheduler with a UTC
# cron trigger, plus a one-shot catch-up run at start-up so a sweep missed
# while the process was down is applied on the next start.
#
# The sweep itself is AuditLog.cleanup(): batched and idempotent, so an
# interrupted run simply resumes on the next trigger.

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .audit_log import AuditLog
from .exceptions import VaultError
from .settings import SettingsStore

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "audit_retention_daily"
CATCHUP_JOB_ID = "audit_retention_catchup"


@dataclass
class RetentionReport:
    """Outcome of one retention sweep."""
    retention_days: int = 0
    removed: int = 0
    started: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "retention_days": self.retention_days,
            "removed": self.removed,
            "started": self.started,
            "finished": self.finished,
            "error": self.error,
        }


class RetentionScheduler:
    """Schedules AuditLog.cleanup() against the current retention setting.

    Usage::

        sched = RetentionScheduler(audit_log, settings_store)
        sched.start()        # daily sweep + immediate catch-up
        sched.run_now()      # one sweep, synchronously
        sched.stop()
    """

    def __init__(
        self,
        audit_log: AuditLog,
        settings: SettingsStore,
        schedule_hour: int = 3,
        schedule_minute: int = 0,
    ):
        self._audit = audit_log
        self._settings = settings
        self._schedule_hour = schedule_hour
        self._schedule_minute = schedule_minute

        self._scheduler: Optional[BackgroundScheduler] = None
        self._run_lock = threading.Lock()
        self._last_report: Optional[RetentionReport] = None

    # ── Scheduling ───────────────────────────────────────────────────

    def start(self, catch_up: bool = True) -> None:
        """Start the daily sweep. Calling twice is a no-op."""
        if self._scheduler is not None:
            return

        self._scheduler = BackgroundScheduler(daemon=True)
        trigger = CronTrigger(
            hour=self._schedule_hour,
            minute=self._schedule_minute,
            timezone="UTC",
        )
        self._scheduler.add_job(
            self._scheduled_run,
            trigger=trigger,
            id=DAILY_JOB_ID,
            name="Daily audit log retention sweep",
            replace_existing=True,
        )
        if catch_up:
            # No trigger: runs once as soon as the scheduler starts
            self._scheduler.add_job(
                self._scheduled_run,
                id=CATCHUP_JOB_ID,
                name="Start-up audit log retention catch-up",
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info(
            "Retention scheduler started: daily at %02d:%02d UTC",
            self._schedule_hour,
            self._schedule_minute,
        )

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Retention scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ── Sweep ────────────────────────────────────────────────────────

    def run_now(self) -> RetentionReport:
        """Run one sweep with the retention window currently configured.

        Overlapping calls are serialized. Errors propagate to the caller.
        """
        with self._run_lock:
            report = RetentionReport()
            try:
                report.retention_days = self._settings.load().audit_log_retention_days
                report.removed = self._audit.cleanup(report.retention_days)
            except VaultError as exc:
                report.error = exc.kind
                raise
            finally:
                report.finished = datetime.now(timezone.utc).isoformat()
                self._last_report = report

        if report.retention_days == 0:
            logger.debug("Audit retention disabled (0 days); nothing pruned")
        return report

    def _scheduled_run(self) -> None:
        try:
            self.run_now()
        except VaultError as exc:
            logger.error("Scheduled audit retention sweep failed: %s", exc.message)

    # ── Status ───────────────────────────────────────────────────────

    def get_last_report(self) -> Optional[Dict[str, Any]]:
        if self._last_report is None:
            return None
        return self._last_report.to_dict()

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "schedule": f"{self._schedule_hour:02d}:{self._schedule_minute:02d} UTC",
            "last_report": self.get_last_report(),
        }
