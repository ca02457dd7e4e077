# inkguard/services/identity/email_change_service.py
"""
Email-Change Rate Limiter.

Limits how often one identity may change its email using a sliding 24-hour
counter stored per identity. The counter read, index claim and counter write
run inside a transaction holding a per-identity lock, so two concurrent
changes can never both observe a stale counter.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import psycopg

from inkguard.config import settings
from inkguard.db.helpers import DatabaseError
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.identity_domain import EmailChangeRecord
from inkguard.repositories.identity_repository import (
    EmailChangeRepository,
    email_change_repository,
)
from inkguard.services.identity.email_rules import mask_email
from inkguard.services.identity.validation_service import (
    IdentityValidationService,
    identity_validation_service,
)

logger = get_logger(__name__)


class RateLimitExceeded(Exception):
    """Raised when an identity has used up its email changes for the window."""

    user_message = "Too many email changes in 24 hours. Please try again later."

    def __init__(self, identity_id: str, used: int, limit: int, retry_after: datetime):
        super().__init__(f"Email change limit exceeded: {used}/{limit}")
        self.identity_id = identity_id
        self.used = used
        self.limit = limit
        self.retry_after = retry_after
        self.is_recoverable = True


class ChangeStoreUnavailable(Exception):
    """The change counter could not be read, locked or written."""

    code = "store_unavailable"
    user_message = "Email change could not be processed right now, try again later"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EmailChangeService:
    """Rate-limited, validated email changes with a masked audit trail."""

    def __init__(
        self,
        repository: EmailChangeRepository | None = None,
        validator: IdentityValidationService | None = None,
        limit: int | None = None,
        window: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository or email_change_repository
        self.validator = validator or identity_validation_service
        self.limit = limit or settings.EMAIL_CHANGE_LIMIT
        self.window = window or timedelta(hours=settings.EMAIL_CHANGE_WINDOW_HOURS)
        self.clock = clock

    def is_limited(self, record: EmailChangeRecord | None, now: datetime) -> bool:
        return (
            record is not None
            and record.is_within_window(now, self.window)
            and record.change_count >= self.limit
        )

    def _ensure_allowed(self, identity_id: str, record: EmailChangeRecord | None) -> None:
        if not self.is_limited(record, self.clock()):
            return
        logger.warning(
            "Email change rate limit exceeded",
            identity_id=identity_id,
            used=record.change_count,
            limit=self.limit,
        )
        raise RateLimitExceeded(
            identity_id,
            used=record.change_count,
            limit=self.limit,
            retry_after=record.last_change + self.window,
        )

    async def check_and_record_change(
        self, identity_id: str, previous_email: str, new_email: str
    ) -> EmailChangeRecord:
        """
        Gate and record one email change.

        The read-only checks, MX lookup included, run before the lock is
        taken. Inside the lock the limit is checked again, then the index
        claim, the counter and the audit row commit in one transaction.

        Args:
            identity_id: Identity changing its email
            previous_email: Email before the change
            new_email: Requested email

        Returns:
            The persisted change record

        Raises:
            RateLimitExceeded: Limit reached inside the window, nothing written
            EmailValidationError: new_email failed the validation pipeline
            ChangeStoreUnavailable: The counter store could not be reached
        """
        try:
            self._ensure_allowed(identity_id, await self.repository.get(identity_id))
            await self.validator.screen(identity_id, new_email)

            async with self.repository.locked(identity_id) as conn:
                record = await self.repository.get(identity_id, connection=conn)
                self._ensure_allowed(identity_id, record)

                await self.validator.register(identity_id, new_email, connection=conn)

                now = self.clock()
                change_count = record.next_count(now, self.window) if record else 1
                updated = EmailChangeRecord(
                    identity_id=identity_id,
                    change_count=change_count,
                    last_change=now,
                    previous_email_masked=mask_email(previous_email),
                    new_email_masked=mask_email(new_email),
                )
                await self.repository.save(updated, connection=conn)
                await self.repository.append_audit(updated, connection=conn)
        except (DatabaseError, psycopg.Error, RuntimeError) as e:
            logger.error(
                "Email change store unavailable",
                identity_id=identity_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ChangeStoreUnavailable(str(e)) from e

        logger.info(
            "Email change recorded",
            identity_id=identity_id,
            previous_email=updated.previous_email_masked,
            new_email=updated.new_email_masked,
            change_count=change_count,
            limit=self.limit,
        )
        return updated


email_change_service = EmailChangeService()
