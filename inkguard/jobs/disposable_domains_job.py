"""
Disposable Email Domains Job.
Daily writer for the dynamic disposable domain list in the configuration
store, plus the in-process refresher used by API workers.
"""

import asyncio
import json
from datetime import UTC, datetime, time, timedelta

import httpx

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.services.identity.disposable_domains import (
    SEED_DISPOSABLE_DOMAINS,
    DisposableDomainRegistry,
    disposable_domain_registry,
)
from inkguard.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

# Job configuration
DAILY_RUN_AT = time(hour=2, tzinfo=UTC)  # 02:00 UTC
SOURCE_TIMEOUT_SECONDS = 15.0

CURATED_DISPOSABLE_DOMAINS = SEED_DISPOSABLE_DOMAINS | {
    "guerrillamailblock.com",
    "tempr.email",
    "dispostable.com",
    "fakeinbox.com",
    "spamgourmet.com",
}


class DisposableDomainsJobError(Exception):
    """Raised when the disposable domain list could not be published."""


def parse_domain_list(text: str) -> set[str]:
    """One domain per line; blank lines and '#' comments are ignored."""
    domains = set()
    for line in text.splitlines():
        entry = line.split("#", 1)[0].strip().lower()
        if entry and "." in entry:
            domains.add(entry)
    return domains


async def fetch_source_domains(url: str) -> set[str]:
    async with httpx.AsyncClient(timeout=SOURCE_TIMEOUT_SECONDS) as client:
        response = await client.get(url)
        response.raise_for_status()
    return parse_domain_list(response.text)


async def update_disposable_email_domains(
    redis_client: FastRedisClient | None = None,
    registry: DisposableDomainRegistry | None = None,
    source_url: str | None = None,
) -> dict:
    """
    Publish the latest disposable domain list and reload the local registry.

    Falls back to the curated list when no source is configured or the
    source cannot be fetched.

    Raises:
        DisposableDomainsJobError: If the list could not be written
    """
    redis_client = redis_client or fast_redis
    registry = registry or disposable_domain_registry
    source_url = source_url if source_url is not None else settings.DISPOSABLE_DOMAINS_SOURCE_URL

    domains = set(CURATED_DISPOSABLE_DOMAINS)
    source = "curated_list"

    if source_url:
        try:
            fetched = await fetch_source_domains(source_url)
            if fetched:
                domains |= fetched
                source = "automated_update"
        except httpx.HTTPError as e:
            logger.warning(
                "Disposable domain source unavailable, using curated list",
                source_url=source_url,
                error=str(e),
            )

    last_updated = datetime.now(UTC).isoformat()
    document = {
        "domains": sorted(domains),
        "last_updated": last_updated,
        "source": source,
    }

    written = await redis_client.set_with_ttl(registry.config_key, json.dumps(document))
    if not written:
        raise DisposableDomainsJobError("Failed to write disposable domain list")

    registry.install(frozenset(domains), last_updated=last_updated)

    logger.info("Disposable email domains list updated", domain_count=len(domains), source=source)
    return {"domain_count": len(domains), "source": source, "last_updated": last_updated}


def seconds_until_next_run(now: datetime, run_at: time = DAILY_RUN_AT) -> float:
    next_run = datetime.combine(now.date(), run_at)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def start_disposable_domains_scheduler():
    """Run the writer every day at 02:00 UTC."""
    logger.info("Starting disposable domains scheduler", run_at=DAILY_RUN_AT.isoformat())

    while True:
        await asyncio.sleep(seconds_until_next_run(datetime.now(UTC)))
        try:
            await update_disposable_email_domains()
        except Exception as e:
            logger.error(
                "Failed to update disposable email list",
                error=str(e),
                error_type=type(e).__name__,
            )


async def run_disposable_domains_update():
    """Worker entry point for a one-off publish."""
    await update_disposable_email_domains()


async def start_disposable_domains_refresher(registry: DisposableDomainRegistry | None = None):
    """Reload the in-process registry from the configuration store periodically."""
    registry = registry or disposable_domain_registry
    interval_seconds = settings.DISPOSABLE_DOMAINS_REFRESH_MINUTES * 60

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await registry.refresh()
        except Exception as e:
            logger.error("Disposable domain refresh failed", error=str(e))
