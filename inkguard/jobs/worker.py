"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from inkguard.config import settings
from inkguard.db.pool import db_pool
from inkguard.infrastructure.observability.logging import get_logger, setup_logging
from inkguard.jobs.anomaly_detection_job import (
    run_anomaly_detection_job,
    start_anomaly_detection_scheduler,
)
from inkguard.jobs.disposable_domains_job import (
    run_disposable_domains_update,
    start_disposable_domains_scheduler,
)
from inkguard.services.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "anomaly_detection": start_anomaly_detection_scheduler,
    "anomaly_detection_once": run_anomaly_detection_job,
    "disposable_domains": start_disposable_domains_scheduler,
    "disposable_domains_update": run_disposable_domains_update,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "anomaly_detection").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


async def _run_with_resources(job_name: str) -> None:
    await db_pool.initialize()
    await fast_redis.initialize()
    try:
        await run_worker(job_name)
    finally:
        await fast_redis.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(_run_with_resources(job_name))


if __name__ == "__main__":
    main()
