"""
Tests for the identity validation pipeline.
"""

import pytest

from inkguard.services.identity.validation_service import EmailValidationError


async def _rejection(validator, identity_id, email) -> str:
    with pytest.raises(EmailValidationError) as exc_info:
        await validator.validate_and_register(identity_id, email)
    return exc_info.value.code


@pytest.mark.asyncio
async def test_valid_email_is_indexed(validator, email_index):
    entry = await validator.validate_and_register("user-1", "Jane.Doe+ink@gmail.com")

    assert entry.email_normalized == "janedoe@gmail.com"
    assert entry.identity_id == "user-1"
    assert entry.masked_email == "Ja" + "*" * 10 + "@gmail.com"
    assert "janedoe@gmail.com" in email_index.entries


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("email", "code"),
    [
        ("not-an-email", "invalid_format"),
        ("someone@mailinator.com", "disposable_domain"),
        ("someone@phishing-site.net", "dangerous_domain"),
        ("someone@cheap.tk", "dangerous_domain"),
        ("support@example.com", "role_based"),
    ],
)
async def test_rejections_write_nothing(validator, email_index, resolver, email, code):
    assert await _rejection(validator, "user-1", email) == code
    assert email_index.entries == {}
    assert resolver.calls == []


@pytest.mark.asyncio
async def test_disposable_checked_before_role(validator):
    # Fails both rules; the earlier check wins
    assert await _rejection(validator, "user-1", "admin@yopmail.com") == "disposable_domain"


@pytest.mark.asyncio
async def test_missing_mx_record(validator, resolver, email_index):
    resolver.no_mx.add("nowhere-mail.com")

    assert await _rejection(validator, "user-1", "jane@nowhere-mail.com") == "no_mx_record"
    assert resolver.calls == ["nowhere-mail.com"]
    assert email_index.entries == {}


@pytest.mark.asyncio
async def test_dynamic_disposable_domain(validator, disposable_registry):
    disposable_registry.install(frozenset({"burner.example"}))

    assert await _rejection(validator, "user-1", "jane@burner.example") == "disposable_domain"


@pytest.mark.asyncio
async def test_duplicate_after_normalization(validator, email_index):
    await validator.validate_and_register("user-1", "johndoe@gmail.com")

    error_code = await _rejection(validator, "user-2", "john.doe+spam@gmail.com")

    assert error_code == "duplicate"
    assert email_index.entries["johndoe@gmail.com"].identity_id == "user-1"


@pytest.mark.asyncio
async def test_same_identity_can_reclaim(validator):
    await validator.validate_and_register("user-1", "jane@example.com")
    entry = await validator.validate_and_register("user-1", "Jane@Example.com")

    assert entry.identity_id == "user-1"


@pytest.mark.asyncio
async def test_index_unavailable_is_fail_closed(validator, email_index):
    email_index.fail = True

    assert await _rejection(validator, "user-1", "jane@example.com") == "index_unavailable"


def test_user_messages_are_coarse():
    error = EmailValidationError("no_mx_record", "No MX record for secret-domain.com")

    assert error.user_message == "Email domain does not have valid MX record"
    assert "secret-domain" not in error.user_message
