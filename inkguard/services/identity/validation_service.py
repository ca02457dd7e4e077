"""
Identity Validation Pipeline.

Gates identity creation and email changes. Checks run strictly in order and
stop at the first failure:

    1. format            4. role-based local part
    2. disposable domain 5. MX record
    3. dangerous domain  6-7. duplicate check + index claim (atomic)

Steps 1-5 are read-only. The index is only written once every earlier check
has passed. Every failure is fail-closed and surfaces as EmailValidationError
carrying a coarse, user-safe message; details stay in the logs.
"""

import psycopg

from inkguard.db.helpers import DatabaseError
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.identity_domain import EmailIndexEntry
from inkguard.repositories.identity_repository import (
    EmailIndexRepository,
    email_index_repository,
)
from inkguard.services.identity.disposable_domains import (
    DisposableDomainRegistry,
    disposable_domain_registry,
)
from inkguard.services.identity.email_rules import (
    get_domain,
    is_dangerous_domain,
    is_role_based_email,
    is_valid_email_format,
    mask_email,
    normalize_email,
)
from inkguard.services.identity.mx_resolver import MxResolver, mx_resolver

logger = get_logger(__name__)

USER_MESSAGES = {
    "invalid_format": "Invalid email format",
    "disposable_domain": "Disposable email addresses are not allowed",
    "dangerous_domain": "Domain is blacklisted for security reasons",
    "role_based": "Role-based email addresses are not allowed",
    "no_mx_record": "Email domain does not have valid MX record",
    "duplicate": "Email already registered",
    "index_unavailable": "Email could not be verified right now, try again later",
}


class EmailValidationError(Exception):
    """Raised when an email fails any pipeline check."""

    def __init__(self, code: str, detail: str | None = None):
        self.code = code
        self.user_message = USER_MESSAGES.get(code, "Email address rejected")
        super().__init__(detail or self.user_message)


class IdentityValidationService:
    """
    Runs the validation pipeline and claims the email index entry.

    Collaborators are injectable; defaults are the process-wide singletons.
    """

    def __init__(
        self,
        index_repository: EmailIndexRepository | None = None,
        disposable_registry: DisposableDomainRegistry | None = None,
        resolver: MxResolver | None = None,
    ):
        self.index_repository = index_repository or email_index_repository
        self.disposable_registry = disposable_registry or disposable_domain_registry
        self.resolver = resolver or mx_resolver

    async def check(self, email: str) -> None:
        """
        Read-only checks (steps 1-5).

        Raises:
            EmailValidationError: On the first failing check
        """
        if not is_valid_email_format(email):
            raise EmailValidationError("invalid_format")

        domain = get_domain(email)

        if self.disposable_registry.contains(domain):
            raise EmailValidationError("disposable_domain", f"Disposable domain: {domain}")

        if is_dangerous_domain(email):
            raise EmailValidationError("dangerous_domain", f"Dangerous domain: {domain}")

        if is_role_based_email(email):
            raise EmailValidationError("role_based")

        if not await self.resolver.has_mx_record(domain):
            raise EmailValidationError("no_mx_record", f"No MX record for {domain}")

    async def screen(self, identity_id: str, email: str) -> None:
        """Run steps 1-5, logging the rejection reason before re-raising."""
        try:
            await self.check(email)
        except EmailValidationError as e:
            logger.info(
                "Email rejected by validation pipeline",
                identity_id=identity_id,
                email=mask_email(email),
                reason=e.code,
            )
            raise

    async def register(
        self,
        identity_id: str,
        email: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> EmailIndexEntry:
        """
        Claim an already screened email for identity_id (steps 6-7).

        Pass connection to make the claim part of the caller's transaction.
        """
        normalized = normalize_email(email)
        masked = mask_email(email)

        try:
            entry = await self.index_repository.claim(
                normalized, identity_id, masked, connection=connection
            )
        except (DatabaseError, RuntimeError) as e:
            logger.error(
                "Email index claim failed",
                identity_id=identity_id,
                email=masked,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmailValidationError("index_unavailable", str(e)) from e

        if entry is None:
            logger.info(
                "Email rejected as duplicate",
                identity_id=identity_id,
                email=masked,
                reason="duplicate",
            )
            raise EmailValidationError("duplicate")

        logger.info("Email validated and indexed", identity_id=identity_id, email=masked)
        return entry

    async def validate_and_register(self, identity_id: str, email: str) -> EmailIndexEntry:
        """
        Validate an email and claim it for identity_id in the email index.

        Args:
            identity_id: Identity that wants to own the address
            email: Raw email as entered

        Returns:
            The claimed index entry

        Raises:
            EmailValidationError: If any check fails or the address is owned
                by a different identity
        """
        await self.screen(identity_id, email)
        return await self.register(identity_id, email)


identity_validation_service = IdentityValidationService()
