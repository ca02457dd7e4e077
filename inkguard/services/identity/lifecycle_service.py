"""
Identity lifecycle handlers.

Identity documents are created and edited by the application layer before
this service sees them, so validation here is create-then-validate-then-
rollback rather than one transaction:

- created: validate and index the email, delete the identity on failure
- email changed: rate-limit and validate the new email, drop the old index
  entry on success, restore the previous email and release the new entry on
  failure
"""

from inkguard.db.helpers import DatabaseError
from inkguard.infrastructure.audit import SecurityEventLog, security_event_log
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.identity_domain import EmailChangeRecord, EmailIndexEntry
from inkguard.repositories.identity_repository import (
    EmailIndexRepository,
    IdentityRepository,
    email_index_repository,
    identity_repository,
)
from inkguard.services.identity.email_change_service import (
    EmailChangeService,
    RateLimitExceeded,
    email_change_service,
)
from inkguard.services.identity.email_rules import mask_email, normalize_email
from inkguard.services.identity.validation_service import (
    EmailValidationError,
    IdentityValidationService,
    identity_validation_service,
)

logger = get_logger(__name__)


class IdentityLifecycleService:
    """Entry points for the identity created / email changed triggers."""

    def __init__(
        self,
        validator: IdentityValidationService | None = None,
        change_service: EmailChangeService | None = None,
        identities: IdentityRepository | None = None,
        email_index: EmailIndexRepository | None = None,
        event_log: SecurityEventLog | None = None,
    ):
        self.validator = validator or identity_validation_service
        self.change_service = change_service or email_change_service
        self.identities = identities or identity_repository
        self.email_index = email_index or email_index_repository
        self.event_log = event_log or security_event_log

    async def handle_identity_created(self, identity_id: str, email: str) -> EmailIndexEntry:
        """
        Validate a freshly created identity's email.

        Raises:
            EmailValidationError: The identity has been deleted
        """
        masked = mask_email(email)

        try:
            entry = await self.validator.validate_and_register(identity_id, email)
        except EmailValidationError as e:
            logger.error(
                "User email validation failed",
                identity_id=identity_id,
                email=masked,
                reason=e.code,
            )
            await self._delete_identity(identity_id)
            await self.event_log.record(
                "identity_validation_failed",
                severity="medium",
                subject_id=identity_id,
                resource_ref=f"identity:{identity_id}",
                metadata={"reason": e.code, "email": masked},
            )
            raise

        await self._store_normalized(identity_id, entry.email_normalized)
        await self.event_log.record(
            "user_created",
            subject_id=identity_id,
            resource_ref=f"identity:{identity_id}",
            metadata={"email": masked},
        )
        logger.info("User email validation completed", identity_id=identity_id, email=masked)
        return entry

    async def handle_email_change(
        self, identity_id: str, previous_email: str, new_email: str
    ) -> EmailChangeRecord | None:
        """
        Gate an email change that the application layer already applied.

        Returns:
            The change record, or None when the email did not actually change

        Raises:
            RateLimitExceeded, EmailValidationError: The change was reverted
        """
        if previous_email == new_email:
            return None

        previous_normalized = normalize_email(previous_email)
        new_normalized = normalize_email(new_email)

        try:
            record = await self.change_service.check_and_record_change(
                identity_id, previous_email, new_email
            )
        except Exception as e:
            reason = getattr(e, "code", None) or (
                "rate_limited" if isinstance(e, RateLimitExceeded) else "internal_error"
            )
            logger.error(
                "Email update failed",
                identity_id=identity_id,
                previous_email=mask_email(previous_email),
                new_email=mask_email(new_email),
                reason=reason,
                error_type=type(e).__name__,
            )
            await self._revert_email_change(
                identity_id, previous_email, previous_normalized, new_normalized
            )
            await self.event_log.record(
                "email_change_rejected",
                severity="medium",
                subject_id=identity_id,
                resource_ref=f"identity:{identity_id}",
                metadata={"reason": reason},
            )
            raise

        if previous_normalized != new_normalized:
            await self._release_previous(identity_id, previous_normalized)
        await self._store_normalized(identity_id, new_normalized)

        await self.event_log.record(
            "email_changed",
            subject_id=identity_id,
            resource_ref=f"identity:{identity_id}",
            metadata={
                "previous_email": record.previous_email_masked,
                "new_email": record.new_email_masked,
                "change_count": record.change_count,
            },
        )
        logger.info(
            "Email update completed",
            identity_id=identity_id,
            previous_email=record.previous_email_masked,
            new_email=record.new_email_masked,
        )
        return record

    async def _delete_identity(self, identity_id: str) -> None:
        try:
            await self.identities.delete_identity(identity_id)
            await self.email_index.release_all_for_identity(identity_id)
        except (DatabaseError, RuntimeError) as e:
            logger.error(
                "CRITICAL: Compensating identity delete failed",
                identity_id=identity_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _revert_email_change(
        self,
        identity_id: str,
        previous_email: str,
        previous_normalized: str,
        new_normalized: str,
    ) -> None:
        try:
            await self.identities.set_email(identity_id, previous_email, previous_normalized)
            if new_normalized != previous_normalized:
                # Only removes the entry while this identity owns it
                await self.email_index.release(new_normalized, identity_id)
        except (DatabaseError, RuntimeError) as e:
            logger.error(
                "CRITICAL: Email change revert failed",
                identity_id=identity_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _release_previous(self, identity_id: str, previous_normalized: str) -> None:
        try:
            await self.email_index.release(previous_normalized, identity_id)
        except (DatabaseError, RuntimeError) as e:
            # The change is committed; the stale entry needs manual cleanup
            logger.error(
                "CRITICAL: Failed to release previous email index entry",
                identity_id=identity_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _store_normalized(self, identity_id: str, email_normalized: str) -> None:
        try:
            await self.identities.set_normalized(identity_id, email_normalized)
        except (DatabaseError, RuntimeError) as e:
            logger.warning(
                "Failed to store normalized email on identity",
                identity_id=identity_id,
                error=str(e),
            )


identity_lifecycle_service = IdentityLifecycleService()
