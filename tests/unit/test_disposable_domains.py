import json
from datetime import UTC, datetime

import httpx
import pytest

from inkguard.jobs import disposable_domains_job
from inkguard.jobs.disposable_domains_job import (
    CURATED_DISPOSABLE_DOMAINS,
    DisposableDomainsJobError,
    parse_domain_list,
    seconds_until_next_run,
    update_disposable_email_domains,
)


@pytest.mark.asyncio
async def test_registry_keeps_seed_when_store_empty(disposable_registry):
    assert await disposable_registry.refresh() is False
    assert disposable_registry.contains("Mailinator.com") is True
    assert disposable_registry.contains("example.com") is False


@pytest.mark.asyncio
async def test_registry_loads_dynamic_list(disposable_registry, fake_redis):
    fake_redis.store["test:disposable"] = json.dumps(
        {"domains": ["Burner.Example", "trash.example"], "last_updated": "2026-03-01T02:00:00+00:00"}
    )

    assert await disposable_registry.refresh() is True
    assert disposable_registry.contains("burner.example") is True
    assert disposable_registry.status()["dynamic_count"] == 2


@pytest.mark.asyncio
async def test_malformed_document_keeps_previous_snapshot(disposable_registry, fake_redis):
    disposable_registry.install(frozenset({"old.example"}))
    fake_redis.store["test:disposable"] = "{not json"

    assert await disposable_registry.refresh() is False
    assert disposable_registry.contains("old.example") is True


def test_parse_domain_list_skips_comments():
    text = "# header\nBurner.Example\n\ntrash.example  # inline\nnot-a-domain\n"

    assert parse_domain_list(text) == {"burner.example", "trash.example"}


@pytest.mark.asyncio
async def test_update_without_source_publishes_curated(disposable_registry, fake_redis):
    result = await update_disposable_email_domains(
        redis_client=fake_redis, registry=disposable_registry, source_url=""
    )

    document = json.loads(fake_redis.store["test:disposable"])
    assert result["source"] == "curated_list"
    assert document["domains"] == sorted(CURATED_DISPOSABLE_DOMAINS)
    assert disposable_registry.contains("dispostable.com") is True


@pytest.mark.asyncio
async def test_update_merges_source_domains(disposable_registry, fake_redis, monkeypatch):
    async def fake_fetch(url):
        return {"fresh-burner.example"}

    monkeypatch.setattr(disposable_domains_job, "fetch_source_domains", fake_fetch)

    result = await update_disposable_email_domains(
        redis_client=fake_redis, registry=disposable_registry, source_url="https://lists.example/d.txt"
    )

    assert result["source"] == "automated_update"
    assert result["domain_count"] == len(CURATED_DISPOSABLE_DOMAINS) + 1
    assert disposable_registry.contains("fresh-burner.example") is True


@pytest.mark.asyncio
async def test_update_falls_back_when_source_fails(disposable_registry, fake_redis, monkeypatch):
    async def failing_fetch(url):
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(disposable_domains_job, "fetch_source_domains", failing_fetch)

    result = await update_disposable_email_domains(
        redis_client=fake_redis, registry=disposable_registry, source_url="https://lists.example/d.txt"
    )

    assert result["source"] == "curated_list"


@pytest.mark.asyncio
async def test_update_raises_when_store_write_fails(disposable_registry, fake_redis):
    fake_redis.available = False

    with pytest.raises(DisposableDomainsJobError):
        await update_disposable_email_domains(
            redis_client=fake_redis, registry=disposable_registry, source_url=""
        )


def test_next_run_is_two_am_utc():
    assert seconds_until_next_run(datetime(2026, 3, 1, 1, 0, tzinfo=UTC)) == 3600
    assert seconds_until_next_run(datetime(2026, 3, 1, 2, 0, tzinfo=UTC)) == 24 * 3600
