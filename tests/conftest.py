import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import pytest

from inkguard.auth.verify import auth_dependency
from inkguard.db.helpers import DatabaseError
from inkguard.infrastructure.audit import SecurityEventLog
from inkguard.models.domain.identity_domain import EmailIndexEntry
from inkguard.repositories.relationship_repository import StorageUnavailable
from inkguard.services.identity.disposable_domains import DisposableDomainRegistry
from inkguard.services.identity.email_change_service import EmailChangeService
from inkguard.services.identity.lifecycle_service import IdentityLifecycleService
from inkguard.services.identity.validation_service import IdentityValidationService


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.available = True

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if not self.available:
            return False
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        if not self.available:
            return None
        return self.store.get(key)

    async def ping(self) -> bool:
        return self.available

    async def acquire_lease(self, key: str, owner: str, ttl_s: int) -> bool | None:
        if not self.available:
            return None
        if key in self.store:
            return False
        self.store[key] = owner
        return True

    async def release_lease(self, key: str, owner: str) -> bool:
        if not self.available or self.store.get(key) != owner:
            return False
        del self.store[key]
        return True


class FakeEmailIndexRepository:
    def __init__(self):
        self.entries: dict[str, EmailIndexEntry] = {}
        self.fail = False

    async def claim(
        self, email_normalized: str, identity_id: str, masked_email: str, *, connection=None
    ) -> EmailIndexEntry | None:
        if self.fail:
            raise DatabaseError("connection refused", "claim")
        existing = self.entries.get(email_normalized)
        if existing is not None and existing.identity_id != identity_id:
            return None
        entry = EmailIndexEntry(
            email_normalized=email_normalized,
            identity_id=identity_id,
            masked_email=masked_email,
            created_at=existing.created_at if existing else datetime.now(UTC),
        )
        self.entries[email_normalized] = entry
        return entry

    async def release(self, email_normalized: str, identity_id: str) -> int:
        existing = self.entries.get(email_normalized)
        if existing is None or existing.identity_id != identity_id:
            return 0
        del self.entries[email_normalized]
        return 1

    async def release_all_for_identity(self, identity_id: str) -> int:
        owned = [key for key, entry in self.entries.items() if entry.identity_id == identity_id]
        for key in owned:
            del self.entries[key]
        return len(owned)


class FakeIdentityRepository:
    def __init__(self):
        self.identities: dict[str, dict] = {}
        self.deleted: list[str] = []

    async def delete_identity(self, identity_id: str) -> int:
        self.deleted.append(identity_id)
        return 1 if self.identities.pop(identity_id, None) is not None else 0

    async def set_email(self, identity_id: str, email: str, email_normalized: str | None) -> int:
        self.identities[identity_id] = {"email": email, "email_normalized": email_normalized}
        return 1

    async def set_normalized(self, identity_id: str, email_normalized: str) -> int:
        self.identities.setdefault(identity_id, {})["email_normalized"] = email_normalized
        return 1


class FakeEmailChangeRepository:
    def __init__(self):
        self.records = {}
        self.audit = []
        self._locks: dict[str, asyncio.Lock] = {}
        self.unavailable = False

    @asynccontextmanager
    async def locked(self, identity_id: str):
        if self.unavailable:
            raise RuntimeError("Database pool is not available")
        lock = self._locks.setdefault(identity_id, asyncio.Lock())
        async with lock:
            yield None

    async def get(self, identity_id: str, *, connection=None):
        return self.records.get(identity_id)

    async def save(self, record, *, connection=None) -> None:
        self.records[record.identity_id] = record

    async def append_audit(self, record, *, connection=None) -> None:
        self.audit.append(record)


class FakeResolver:
    def __init__(self, no_mx: set[str] | None = None):
        self.no_mx = no_mx or set()
        self.calls: list[str] = []

    async def has_mx_record(self, domain: str) -> bool:
        self.calls.append(domain)
        return domain not in self.no_mx


class FakeRelationshipRepository:
    def __init__(self):
        self.matching_history = {}
        self.inquiries = {}
        self.bookings = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def _lookup(self, name: str, table: dict, customer_id: str, artist_id: str):
        self.calls.append(name)
        if name in self.failing:
            raise StorageUnavailable(f"{name} lookup failed", lookup=name)
        return table.get((customer_id, artist_id))

    async def get_matching_history(self, customer_id: str, artist_id: str):
        return await self._lookup("matching_history", self.matching_history, customer_id, artist_id)

    async def get_inquiry(self, customer_id: str, artist_id: str):
        return await self._lookup("inquiry", self.inquiries, customer_id, artist_id)

    async def get_confirmed_booking(self, customer_id: str, artist_id: str):
        return await self._lookup("confirmed_booking", self.bookings, customer_id, artist_id)


class FakeSecurityEventRepository:
    def __init__(self):
        self.events = []
        self.alerts = []
        self.fail_writes = False

    async def insert_event(self, event) -> str:
        if self.fail_writes:
            raise DatabaseError("insert failed", "insert_event")
        self.events.append(event)
        return f"event-{len(self.events)}"

    async def insert_alert(self, alert) -> str:
        if self.fail_writes:
            raise DatabaseError("insert failed", "insert_alert")
        self.alerts.append(alert)
        return f"alert-{len(self.alerts)}"

    async def fetch_events_since(self, since, limit: int):
        recent = [event for event in self.events if event.timestamp >= since]
        recent.sort(key=lambda event: event.timestamp, reverse=True)
        return recent[:limit]

    async def count_events_since(self, since) -> int:
        return sum(1 for event in self.events if event.timestamp >= since)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def email_index():
    return FakeEmailIndexRepository()


@pytest.fixture
def identities():
    return FakeIdentityRepository()


@pytest.fixture
def change_repository():
    return FakeEmailChangeRepository()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def relationships():
    return FakeRelationshipRepository()


@pytest.fixture
def event_repository():
    return FakeSecurityEventRepository()


@pytest.fixture
def event_log(event_repository):
    return SecurityEventLog(repository=event_repository)


@pytest.fixture
def disposable_registry(fake_redis):
    return DisposableDomainRegistry(redis_client=fake_redis, config_key="test:disposable")


@pytest.fixture
def validator(email_index, disposable_registry, resolver):
    return IdentityValidationService(
        index_repository=email_index,
        disposable_registry=disposable_registry,
        resolver=resolver,
    )


@pytest.fixture
def change_service(change_repository, validator):
    return EmailChangeService(repository=change_repository, validator=validator)


@pytest.fixture
def lifecycle(validator, change_service, identities, email_index, event_log):
    return IdentityLifecycleService(
        validator=validator,
        change_service=change_service,
        identities=identities,
        email_index=email_index,
        event_log=event_log,
    )
