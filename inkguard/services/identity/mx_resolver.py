"""
MX record lookups for email domains.

Any failure (NXDOMAIN, no answer, timeout, resolver error) is reported as
"no MX record". Lookups are never retried on the request path.
"""

import dns.asyncresolver
import dns.exception

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MxResolver:
    """Thin async wrapper around dnspython with a hard lookup lifetime."""

    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds or settings.MX_LOOKUP_TIMEOUT_SECONDS
        self._resolver: dns.asyncresolver.Resolver | None = None

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
        return self._resolver

    async def has_mx_record(self, domain: str) -> bool:
        if not domain:
            return False

        try:
            answer = await self._get_resolver().resolve(
                domain, "MX", lifetime=self.timeout_seconds
            )
            return len(answer) > 0
        except dns.exception.Timeout:
            logger.warning("MX lookup timed out", domain=domain, timeout=self.timeout_seconds)
            return False
        except Exception as e:
            logger.warning(
                "MX record verification failed",
                domain=domain,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


mx_resolver = MxResolver()
