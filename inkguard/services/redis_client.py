# inkguard/services/redis_client.py
"""
Async Redis client for the configuration store and job leases.

Every call degrades instead of raising: reads return None, writes return
False and acquire_lease returns None when Redis cannot be reached, so the
callers decide whether an outage matters.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 10
SOCKET_TIMEOUT_SECONDS = 5

# Delete the lease only while it still belongs to the caller
RELEASE_LEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class FastRedisClient:
    """Pooled redis.asyncio client, created lazily on first use."""

    def __init__(self):
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        self.pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=MAX_CONNECTIONS,
            socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
            socket_timeout=SOCKET_TIMEOUT_SECONDS,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except Exception as e:
            logger.error("Redis connection failed", error=str(e))
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info("Redis client initialized", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False

    async def _client(self) -> redis.Redis:
        if not self._initialized:
            await self.initialize()
        return self.client

    async def ping(self) -> bool:
        try:
            return bool(await (await self._client()).ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            return await (await self._client()).get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key, error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """SET, with an expiry when ttl_s is given."""
        try:
            return bool(await (await self._client()).set(key, value, ex=ttl_s))
        except Exception as e:
            logger.error("Redis SET failed", key=key, error=str(e))
            return False

    async def acquire_lease(self, key: str, owner: str, ttl_s: int) -> bool | None:
        """
        Take a lease with SET NX EX.

        Returns True when acquired, False when another owner holds it and
        None when Redis could not be reached.
        """
        try:
            return bool(await (await self._client()).set(key, owner, nx=True, ex=ttl_s))
        except Exception as e:
            logger.error("Redis lease acquire failed", key=key, error=str(e))
            return None

    async def release_lease(self, key: str, owner: str) -> bool:
        try:
            client = await self._client()
            return bool(await client.eval(RELEASE_LEASE_SCRIPT, 1, key, owner))
        except Exception as e:
            logger.error("Redis lease release failed", key=key, error=str(e))
            return False


fast_redis = FastRedisClient()
