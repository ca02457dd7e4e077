"""
Disposable email domain registry.

Process-wide blacklist made of a static seed list plus a dynamic list kept
in the Redis configuration store. The dynamic part is loaded at startup and
refreshed on a schedule; validation calls only ever read the in-memory
snapshot, so no lookup hits Redis on the request path.
"""

import json
from datetime import UTC, datetime

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

SEED_DISPOSABLE_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "guerrillamail.com",
        "tempmail.org",
        "yopmail.com",
        "mailinator.com",
        "throwaway.email",
        "temp-mail.org",
        "getnada.com",
        "sharklasers.com",
        "maildrop.cc",
    }
)


class DisposableDomainRegistry:
    """In-memory snapshot of seed ∪ dynamic disposable domains."""

    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        config_key: str | None = None,
        seed: frozenset[str] = SEED_DISPOSABLE_DOMAINS,
    ):
        self.redis = redis_client or fast_redis
        self.config_key = config_key or settings.DISPOSABLE_DOMAINS_CONFIG_KEY
        self.seed = frozenset(domain.lower() for domain in seed)
        self._dynamic: frozenset[str] = frozenset()
        self.last_loaded_at: datetime | None = None
        self.last_updated: str | None = None

    @property
    def domains(self) -> frozenset[str]:
        return self.seed | self._dynamic

    def contains(self, domain: str) -> bool:
        return domain.lower() in self.seed or domain.lower() in self._dynamic

    async def refresh(self) -> bool:
        """
        Reload the dynamic list from the configuration store.

        Keeps the previous snapshot when the store is unreachable or the
        document is malformed.

        Returns:
            True if a new snapshot was installed
        """
        raw = await self.redis.get(self.config_key)
        if raw is None:
            logger.info("No dynamic disposable domain list found", config_key=self.config_key)
            return False

        try:
            document = json.loads(raw)
            domains = frozenset(str(domain).strip().lower() for domain in document["domains"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Malformed disposable domain document, keeping previous snapshot",
                config_key=self.config_key,
                error=str(e),
            )
            return False

        self.install(domains, last_updated=document.get("last_updated"))
        return True

    def install(self, domains: frozenset[str], last_updated: str | None = None) -> None:
        """Swap in a new dynamic snapshot."""
        self._dynamic = frozenset(domain for domain in domains if domain)
        self.last_loaded_at = datetime.now(UTC)
        self.last_updated = last_updated
        logger.info(
            "Disposable domain list loaded",
            dynamic_count=len(self._dynamic),
            total_count=len(self.domains),
            last_updated=last_updated,
        )

    def status(self) -> dict:
        return {
            "seed_count": len(self.seed),
            "dynamic_count": len(self._dynamic),
            "last_loaded_at": self.last_loaded_at.isoformat() if self.last_loaded_at else None,
            "last_updated": self.last_updated,
        }


# Process-wide registry
disposable_domain_registry = DisposableDomainRegistry()
