# inkguard/main.py
"""
inkguard API: portfolio access checks, identity trigger webhooks and health.

Startup opens the database pool and Redis, loads the disposable domain
snapshot and starts its periodic refresh. Shutdown unwinds in reverse.
"""

import asyncio
import time
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request

from inkguard.config import settings
from inkguard.db.pool import db_pool
from inkguard.infrastructure.observability.logging import get_logger, setup_logging
from inkguard.jobs.disposable_domains_job import start_disposable_domains_refresher
from inkguard.middleware import RequestContextMiddleware
from inkguard.routes import health, identity, portfolio, triggers
from inkguard.services.identity.disposable_domains import disposable_domain_registry
from inkguard.services.redis_client import fast_redis

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    async with AsyncExitStack() as resources:
        await db_pool.initialize()
        resources.push_async_callback(db_pool.close)

        await fast_redis.initialize()
        resources.push_async_callback(fast_redis.close)

        # Seed list stays active when the config store has no document yet
        await disposable_domain_registry.refresh()
        refresher = asyncio.create_task(start_disposable_domains_refresher())
        resources.push_async_callback(_cancel, refresher)

        logger.info("Application ready", disposable_domains=disposable_domain_registry.status())
        yield
        logger.info("Application shutting down")

    logger.info("Application stopped")


app = FastAPI(
    title="inkguard",
    description="Identity integrity, portfolio authorization and security monitoring",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(portfolio.router)
app.include_router(identity.router)
app.include_router(triggers.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
        request_id=getattr(request.state, "request_id", None),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
