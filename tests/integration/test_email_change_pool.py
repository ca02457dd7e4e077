"""
Email changes against the real repositories and a bounded connection pool.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest
from psycopg_pool import PoolTimeout

from inkguard.db import pool as pool_module
from inkguard.repositories.identity_repository import EmailChangeRepository, EmailIndexRepository
from inkguard.services.identity.email_change_service import EmailChangeService
from inkguard.services.identity.validation_service import IdentityValidationService


class FakeCursor:
    def __init__(self, row=None, rowcount: int = 1):
        self.row = row
        self.rowcount = rowcount

    async def fetchone(self):
        return self.row

    async def fetchall(self):
        return [self.row] if self.row else []


class FakeConnection:
    def __init__(self, database: "FakeDatabase", number: int):
        self.database = database
        self.number = number

    async def execute(self, query: str, params: tuple = ()):
        self.database.statements.append((self.number, " ".join(query.split())))
        return self.database.run(query, params)


class FakeDatabase:
    def __init__(self):
        self.email_index: dict[str, dict] = {}
        self.email_changes: dict[str, dict] = {}
        self.audit: list[tuple] = []
        self.statements: list[tuple[int, str]] = []

    def run(self, query: str, params: tuple) -> FakeCursor:
        if "INSERT INTO email_index" in query:
            email_normalized, identity_id, masked_email, created_at = params
            existing = self.email_index.get(email_normalized)
            if existing and existing["identity_id"] != identity_id:
                return FakeCursor(None, rowcount=0)
            row = {
                "email_normalized": email_normalized,
                "identity_id": identity_id,
                "masked_email": masked_email,
                "created_at": existing["created_at"] if existing else created_at,
            }
            self.email_index[email_normalized] = row
            return FakeCursor(row)
        if "FROM email_changes" in query:
            return FakeCursor(self.email_changes.get(params[0]))
        if "INSERT INTO email_changes" in query:
            keys = (
                "identity_id",
                "change_count",
                "last_change",
                "previous_email_masked",
                "new_email_masked",
            )
            self.email_changes[params[0]] = dict(zip(keys, params, strict=True))
            return FakeCursor()
        if "INSERT INTO email_change_audit" in query:
            self.audit.append(params)
            return FakeCursor()
        return FakeCursor()


class BoundedPool:
    """Hands out at most max_size connections, timing out like psycopg_pool."""

    def __init__(self, database: FakeDatabase, max_size: int, timeout: float = 0.5):
        self.database = database
        self.timeout = timeout
        self._slots = asyncio.Semaphore(max_size)
        self._borrowed = 0
        self.in_use = 0
        self.peak_in_use = 0

    @asynccontextmanager
    async def connection(self):
        try:
            await asyncio.wait_for(self._slots.acquire(), self.timeout)
        except TimeoutError as e:
            raise PoolTimeout(f"couldn't get a connection after {self.timeout} sec") from e
        self._borrowed += 1
        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        try:
            yield FakeConnection(self.database, self._borrowed)
        finally:
            self.in_use -= 1
            self._slots.release()

    @asynccontextmanager
    async def transaction(self):
        async with self.connection() as conn:
            yield conn


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def make_service(database, disposable_registry, resolver, monkeypatch):
    def _make(max_size: int) -> tuple[EmailChangeService, BoundedPool]:
        bounded = BoundedPool(database, max_size=max_size)
        monkeypatch.setattr(pool_module, "db_pool", bounded)
        validator = IdentityValidationService(
            index_repository=EmailIndexRepository(),
            disposable_registry=disposable_registry,
            resolver=resolver,
        )
        return EmailChangeService(repository=EmailChangeRepository(), validator=validator), bounded

    return _make


@pytest.mark.asyncio
async def test_change_fits_in_a_single_connection(make_service, database):
    service, bounded = make_service(max_size=1)

    record = await service.check_and_record_change(
        "user-0", "old@example.com", "new@example.com"
    )

    assert record.change_count == 1
    assert database.email_index["new@example.com"]["identity_id"] == "user-0"
    assert bounded.peak_in_use == 1


@pytest.mark.asyncio
async def test_concurrent_changes_for_different_identities_share_the_pool(make_service, database):
    service, bounded = make_service(max_size=2)

    records = await asyncio.gather(
        *(
            service.check_and_record_change(
                f"user-{i}", f"old{i}@example.com", f"new{i}@example.com"
            )
            for i in range(4)
        )
    )

    assert [record.change_count for record in records] == [1, 1, 1, 1]
    assert len(database.audit) == 4
    assert bounded.peak_in_use <= 2


@pytest.mark.asyncio
async def test_claim_runs_on_the_locked_connection(make_service, database):
    service, _ = make_service(max_size=2)

    await service.check_and_record_change("user-0", "old@example.com", "new@example.com")

    def connection_for(fragment: str) -> int:
        return next(number for number, query in database.statements if fragment in query)

    locked = connection_for("pg_advisory_xact_lock")
    assert connection_for("INSERT INTO email_index") == locked
    assert connection_for("INSERT INTO email_changes") == locked


@pytest.mark.asyncio
async def test_mx_lookup_happens_before_the_lock(make_service, database, resolver):
    service, _ = make_service(max_size=1)
    seen_statements = []

    async def has_mx_record(domain: str) -> bool:
        seen_statements.extend(query for _, query in database.statements)
        return True

    resolver.has_mx_record = has_mx_record

    await service.check_and_record_change("user-0", "old@example.com", "new@example.com")

    assert not any("pg_advisory_xact_lock" in query for query in seen_statements)
