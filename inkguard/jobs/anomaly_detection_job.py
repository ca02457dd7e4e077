"""
Anomaly Detection Job.
Runs the security event anomaly scan on a fixed interval.

A tick that finds the previous run still in progress is skipped, not queued.
Across worker replicas a Redis lease keeps runs single-instance per interval.
Each scan is cancelled after the run timeout and the lease TTL is longer than
that timeout, so a lease never expires under a live run.

Every run publishes its metrics to Redis so the API process, which never runs
the job itself, can report detector health.
"""

import asyncio
import json
import uuid
from datetime import UTC, datetime, timedelta

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.services.redis_client import FastRedisClient, fast_redis
from inkguard.services.security.anomaly_detector import AnomalyDetector, anomaly_detector

logger = get_logger(__name__)

# Job configuration
JOB_INTERVAL_MINUTES = settings.ANOMALY_INTERVAL_MINUTES
RUN_TIMEOUT_SECONDS = settings.ANOMALY_RUN_TIMEOUT_SECONDS
LEASE_KEY = "jobs:anomaly_detection:lease"
LEASE_SLACK_SECONDS = 30
LAST_RUN_KEY = "jobs:anomaly_detection:last_run"
LAST_RUN_TTL_SECONDS = 24 * 60 * 60


class AnomalyDetectionMetrics:
    """Metrics tracking for one detection run."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.events_analyzed = 0
        self.events_dropped = 0
        self.alerts_raised = 0
        self.alerts_persisted = 0
        self.alert_types: list[str] = []
        self.total_duration_seconds = 0.0

    def record_scan(self, result):
        self.events_analyzed = result.events_analyzed
        self.events_dropped = result.events_dropped
        self.alerts_raised = len(result.alerts)
        self.alerts_persisted = result.alerts_persisted
        self.alert_types = [alert.alert_type for alert in result.alerts]

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "anomaly_detection",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "events_analyzed": self.events_analyzed,
            "events_dropped": self.events_dropped,
            "alerts_raised": self.alerts_raised,
            "alerts_persisted": self.alerts_persisted,
            "alert_types": self.alert_types,
        }


class AnomalyDetectionJob:
    """Single-instance wrapper around AnomalyDetector.scan()."""

    def __init__(
        self,
        detector: AnomalyDetector | None = None,
        redis_client: FastRedisClient | None = None,
        interval_minutes: int = JOB_INTERVAL_MINUTES,
        run_timeout_seconds: int = RUN_TIMEOUT_SECONDS,
    ):
        self.detector = detector or anomaly_detector
        self.redis = redis_client or fast_redis
        self.interval_minutes = interval_minutes
        self.run_timeout_seconds = run_timeout_seconds
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.runs_skipped = 0
        self.job_metrics = AnomalyDetectionMetrics()
        self._owner = str(uuid.uuid4())

    @property
    def lease_ttl_seconds(self) -> int:
        return self.run_timeout_seconds + LEASE_SLACK_SECONDS

    async def run_once(self) -> dict:
        """
        Run a single detection pass.

        Returns:
            Dict: Job metrics, or a skipped marker. Never raises; failures are
            logged and the next run proceeds independently.
        """
        if self.is_running:
            self.runs_skipped += 1
            logger.warning("Anomaly detection already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        lease = None
        try:
            lease = await self.redis.acquire_lease(
                LEASE_KEY, self._owner, ttl_s=self.lease_ttl_seconds
            )
            if lease is False:
                self.runs_skipped += 1
                logger.info("Anomaly detection running on another worker, skipping")
                return {"skipped": True, "reason": "lease_held"}
            if lease is None:
                # Redis down: detection is an observability job, run anyway
                logger.warning("Anomaly detection lease unavailable, running without it")

            self.job_metrics.reset()
            result = await asyncio.wait_for(
                self.detector.scan(), timeout=self.run_timeout_seconds
            )
            self.job_metrics.record_scan(result)
            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.job_metrics.to_dict()
            logger.info("Anomaly detection completed", **metrics)

        except Exception as e:
            logger.error("Anomaly detection failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            metrics["job_error"] = str(e) or type(e).__name__

        finally:
            if lease:
                await self.redis.release_lease(LEASE_KEY, self._owner)
            self.is_running = False

        await self._publish_last_run(metrics)
        return metrics

    async def _publish_last_run(self, metrics: dict) -> None:
        record = {**metrics, "finished_at": datetime.now(UTC).isoformat()}
        stored = await self.redis.set_with_ttl(
            LAST_RUN_KEY, json.dumps(record), ttl_s=LAST_RUN_TTL_SECONDS
        )
        if not stored:
            logger.warning("Could not publish anomaly detection run metrics")

    async def last_run(self) -> dict | None:
        """Most recent run published by any worker, or None."""
        raw = await self.redis.get(LAST_RUN_KEY)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Unreadable anomaly detection run record", key=LAST_RUN_KEY)
            return None

    async def health_check(self) -> dict:
        """Healthy only when a worker finished a clean run within 2x the interval."""
        last_run = await self.last_run()
        health_status = {
            "service": "anomaly_detection_job",
            "interval_minutes": self.interval_minutes,
            "last_run_time": last_run["finished_at"] if last_run else None,
            "last_run_metrics": last_run,
        }
        if last_run is None:
            health_status.update(healthy=False, is_overdue=True, warning="No run recorded")
            return health_status

        age = datetime.now(UTC) - datetime.fromisoformat(last_run["finished_at"])
        is_overdue = age > timedelta(minutes=self.interval_minutes * 2)
        failed = "job_error" in last_run

        health_status.update(healthy=not (is_overdue or failed), is_overdue=is_overdue)
        if is_overdue:
            health_status["warning"] = f"Job overdue by {age.total_seconds() / 60:.1f} minutes"
        elif failed:
            health_status["warning"] = f"Last run failed: {last_run['job_error']}"
        return health_status


# Singleton instance for application use
anomaly_detection_job = AnomalyDetectionJob()


async def run_anomaly_detection_job() -> dict:
    """Run a single iteration of the anomaly detection job."""
    return await anomaly_detection_job.run_once()


async def start_anomaly_detection_scheduler(job: AnomalyDetectionJob | None = None):
    """
    Fire the detection job every interval.

    Each tick starts the run as a task and goes back to sleep, so a slow run
    makes the next tick hit the is_running guard and skip.
    """
    job = job or anomaly_detection_job
    interval_seconds = job.interval_minutes * 60
    logger.info("Starting anomaly detection scheduler", interval_minutes=job.interval_minutes)

    pending: set[asyncio.Task] = set()
    loop = asyncio.get_running_loop()

    while True:
        tick_started = loop.time()

        task = asyncio.create_task(job.run_once())
        pending.add(task)
        task.add_done_callback(pending.discard)

        await asyncio.sleep(max(0.0, interval_seconds - (loop.time() - tick_started)))
