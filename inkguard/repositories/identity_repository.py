"""
Repository helpers for identities, the email index and email change records.

The email index is the only place email uniqueness is enforced. Claims are a
single conditional upsert so two concurrent registrations of the same
normalized address cannot both succeed.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import psycopg

from inkguard.db.helpers import execute_query, fetch_one
from inkguard.db.pool import get_db_transaction
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.identity_domain import EmailChangeRecord, EmailIndexEntry

logger = get_logger(__name__)


class EmailIndexRepository:
    """Persistence for the normalized email -> identity index."""

    async def claim(
        self,
        email_normalized: str,
        identity_id: str,
        masked_email: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> EmailIndexEntry | None:
        """
        Insert or refresh the entry for this identity.

        Returns None when the address is already owned by another identity.
        The ownership check and the write happen in one statement.
        """
        query = """
            INSERT INTO email_index (email_normalized, identity_id, masked_email, created_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (email_normalized)
            DO UPDATE SET masked_email = EXCLUDED.masked_email
            WHERE email_index.identity_id = EXCLUDED.identity_id
            RETURNING email_normalized, identity_id, masked_email, created_at
        """
        row = await fetch_one(
            query,
            (email_normalized, identity_id, masked_email, datetime.now(UTC)),
            connection=connection,
        )
        return EmailIndexEntry(**row) if row else None

    async def release(self, email_normalized: str, identity_id: str) -> int:
        """Remove the entry, but only while it is still owned by identity_id."""
        query = """
            DELETE FROM email_index
            WHERE email_normalized = %s AND identity_id = %s
        """
        return await execute_query(query, (email_normalized, identity_id))

    async def release_all_for_identity(self, identity_id: str) -> int:
        query = "DELETE FROM email_index WHERE identity_id = %s"
        return await execute_query(query, (identity_id,))


class IdentityRepository:
    """Writes against the identities table used for compensating actions."""

    async def delete_identity(self, identity_id: str) -> int:
        query = "DELETE FROM identities WHERE id = %s"
        deleted = await execute_query(query, (identity_id,))
        logger.info("Identity deleted", identity_id=identity_id, deleted=deleted)
        return deleted

    async def set_email(self, identity_id: str, email: str, email_normalized: str | None) -> int:
        query = """
            UPDATE identities
            SET email = %s, email_normalized = %s, updated_at = NOW()
            WHERE id = %s
        """
        return await execute_query(query, (email, email_normalized, identity_id))

    async def set_normalized(self, identity_id: str, email_normalized: str) -> int:
        query = """
            UPDATE identities
            SET email_normalized = %s, updated_at = NOW()
            WHERE id = %s
        """
        return await execute_query(query, (email_normalized, identity_id))


class EmailChangeRepository:
    """Email change counters and their append-only audit trail."""

    @asynccontextmanager
    async def locked(self, identity_id: str) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Open a transaction holding a per-identity advisory lock.

        Concurrent changes for the same identity queue on the lock; other
        identities are unaffected. The lock is released on commit/rollback.
        """
        async with await get_db_transaction() as conn:
            await conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))",
                (f"email_change:{identity_id}",),
            )
            yield conn

    async def get(
        self, identity_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> EmailChangeRecord | None:
        query = """
            SELECT identity_id, change_count, last_change,
                   previous_email_masked, new_email_masked
            FROM email_changes
            WHERE identity_id = %s
        """
        row = await fetch_one(query, (identity_id,), connection=connection)
        return EmailChangeRecord(**row) if row else None

    async def save(
        self, record: EmailChangeRecord, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        query = """
            INSERT INTO email_changes (
                identity_id, change_count, last_change,
                previous_email_masked, new_email_masked
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (identity_id)
            DO UPDATE SET
                change_count = EXCLUDED.change_count,
                last_change = EXCLUDED.last_change,
                previous_email_masked = EXCLUDED.previous_email_masked,
                new_email_masked = EXCLUDED.new_email_masked
        """
        await execute_query(
            query,
            (
                record.identity_id,
                record.change_count,
                record.last_change,
                record.previous_email_masked,
                record.new_email_masked,
            ),
            connection=connection,
        )

    async def append_audit(
        self, record: EmailChangeRecord, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        query = """
            INSERT INTO email_change_audit (
                identity_id, previous_email_masked, new_email_masked, change_count, created_at
            ) VALUES (%s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                record.identity_id,
                record.previous_email_masked,
                record.new_email_masked,
                record.change_count,
                record.last_change,
            ),
            connection=connection,
        )


email_index_repository = EmailIndexRepository()
identity_repository = IdentityRepository()
email_change_repository = EmailChangeRepository()
