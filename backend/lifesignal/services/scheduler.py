"""
Background Job Scheduler for Life Signal.

Runs the escalation scan on a fixed interval using APScheduler.

Job failures are counted per job over a 24h window; once the threshold
is reached a critical log line is emitted on every further failure and
/health reports the job as alerting. The scan job is never paused; it
keeps firing on its interval and the alert clears on the next success.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lifesignal.core.config import Settings
from lifesignal.services.escalation_scan import EscalationScanner


# Configure logging
logger = logging.getLogger(__name__)

ESCALATION_SCAN_JOB_ID = "escalation_scan"


# ==========================================
# Job Failure Monitor
# ==========================================

class JobFailureMonitor:
    """
    Monitor job failures and raise a critical alert once the threshold is reached.
    """

    def __init__(self, failure_threshold: int = 2):
        self.failure_threshold = failure_threshold
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.alerting_jobs: set = set()

    def record_success(self, job_id: str) -> None:
        """Record job success - reset failure count and clear the alert."""
        self.failed_jobs[job_id] = []
        self.alerting_jobs.discard(job_id)

    def record_failure(self, job_id: str, error: str, now: Optional[datetime] = None) -> bool:
        """
        Record job failure and alert if threshold exceeded.

        Returns True if the job is now alerting.
        """
        now = now or datetime.now(timezone.utc)

        self.failed_jobs[job_id].append(now)

        # Keep only failures from last 24 hours
        cutoff = now - timedelta(hours=24)
        self.failed_jobs[job_id] = [
            t for t in self.failed_jobs[job_id] if t > cutoff
        ]

        failure_count = len(self.failed_jobs[job_id])

        if failure_count >= self.failure_threshold:
            logger.critical(
                f"CRITICAL: Job {job_id} failed {failure_count} times in 24h. "
                f"Last error: {error}. Job keeps running on its interval."
            )
            self.alerting_jobs.add(job_id)
            return True

        return False

    def get_status(self) -> Dict[str, Any]:
        """Get current failure status for all jobs."""
        return {
            job_id: {
                "failure_count": len(failures),
                "last_failure": failures[-1].isoformat() if failures else None,
                "is_alerting": job_id in self.alerting_jobs
            }
            for job_id, failures in self.failed_jobs.items()
        }


class LifeSignalScheduler:
    """
    Background job scheduler for Life Signal.

    Owns the APScheduler instance and the failure monitor. Only one
    process should run it (see `run_scheduler`).
    """

    def __init__(self, scanner: EscalationScanner, settings: Settings):
        self.scanner = scanner
        self.settings = settings
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.job_monitor = JobFailureMonitor(
            failure_threshold=settings.job_failure_alert_threshold
        )

        # Job configuration
        self.jobs_config = {
            ESCALATION_SCAN_JOB_ID: {
                "trigger": IntervalTrigger(minutes=settings.scan_interval_minutes),
                "description": "Scan monitored users for missed check-ins and escalate"
            }
        }

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,  # Never overlap two scans
            'misfire_grace_time': 60
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.settings.scheduler_timezone
        )

    def start(self) -> None:
        """Start the scheduler with the escalation scan job."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()

        self.scheduler.add_job(
            self.run_escalation_scan,
            self.jobs_config[ESCALATION_SCAN_JOB_ID]["trigger"],
            id=ESCALATION_SCAN_JOB_ID,
            name="Escalation Scan",
            replace_existing=True
        )

        self.scheduler.start()
        self.is_running = True
        logger.info("Life Signal scheduler started")

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: Next run at {job.next_run_time}")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Life Signal scheduler stopped")

    def get_jobs_status(self) -> list:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def get_health_status(self) -> Dict[str, Any]:
        """Scheduler status and job failure information for /health."""
        failed_jobs = self.job_monitor.get_status()
        has_failures = any(
            info["failure_count"] > 0
            for info in failed_jobs.values()
        )

        return {
            "status": "degraded" if has_failures else "healthy",
            "is_running": self.is_running,
            "jobs": self.get_jobs_status(),
            "failures": failed_jobs,
            "alerting_jobs": list(self.job_monitor.alerting_jobs)
        }

    # ==========================================
    # JOBS
    # ==========================================

    async def run_escalation_scan(self) -> Dict[str, Any]:
        """
        Timer entry point for the escalation scan.

        Failures are recorded with the monitor and re-raised so APScheduler
        logs them too; the next firing runs as scheduled.
        """
        job_id = ESCALATION_SCAN_JOB_ID
        start_time = datetime.now(timezone.utc)

        try:
            summary = await self.scanner.run()
        except Exception as e:
            logger.error(f"Escalation scan failed: {e}", exc_info=True)
            self.job_monitor.record_failure(job_id, str(e))
            raise

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Escalation scan job completed in {elapsed:.2f}s: "
            f"{len(summary.processed)} users updated, "
            f"{summary.telnyx_calls_queued} calls queued"
        )
        self.job_monitor.record_success(job_id)
        return summary.to_dict()
