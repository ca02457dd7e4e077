"""
Pure email checks used by the identity validation pipeline.

Nothing in here touches the network or the database: format, dangerous
domain and role checks, per-provider normalization and masking.
"""

import re
from collections.abc import Callable

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
EMAIL_MIN_LENGTH = 5
EMAIL_MAX_LENGTH = 254

DANGEROUS_DOMAINS = frozenset(
    {
        "spam-domain.com",
        "phishing-site.net",
        "malware-host.org",
        "blocked-domain.biz",
        "fake-bank.ml",
        "scam-site.ga",
    }
)

# Free TLDs with a history of abuse
ABUSED_TLDS = frozenset({"tk", "ml", "ga", "cf"})

ROLE_LOCAL_PARTS = frozenset(
    {
        "admin",
        "administrator",
        "info",
        "support",
        "contact",
        "sales",
        "marketing",
        "webmaster",
        "postmaster",
        "noreply",
        "no-reply",
        "help",
        "service",
        "office",
        "team",
    }
)

MASK_CHAR = "*"
MASK_VISIBLE_CHARS = 2

Normalizer = Callable[[str], str]


def split_email(email: str) -> tuple[str, str]:
    """Split into (local_part, domain). Domain is empty when there is no '@'."""
    local_part, _, domain = email.rpartition("@")
    if not _:
        return email, ""
    return local_part, domain


def get_domain(email: str) -> str:
    return split_email(email)[1].lower()


def is_valid_email_format(email: str | None) -> bool:
    if not email:
        return False
    return (
        bool(EMAIL_PATTERN.match(email))
        and EMAIL_MIN_LENGTH <= len(email) <= EMAIL_MAX_LENGTH
        and ".." not in email
        and not email.startswith(".")
        and ".@" not in email
        and "@." not in email
    )


def is_dangerous_domain(email: str) -> bool:
    domain = get_domain(email)
    tld = domain.rsplit(".", 1)[-1]
    return domain in DANGEROUS_DOMAINS or tld in ABUSED_TLDS


def is_role_based_email(email: str) -> bool:
    local_part, _ = split_email(email)
    return local_part.lower() in ROLE_LOCAL_PARTS


def _gmail_normalizer(local_part: str) -> str:
    # Gmail ignores +tags and dots in the local part
    return local_part.split("+", 1)[0].replace(".", "")


_NORMALIZERS: dict[str, Normalizer] = {
    "gmail.com": _gmail_normalizer,
}


def register_normalizer(domain: str, normalizer: Normalizer) -> None:
    """Install a local-part normalizer for one provider domain."""
    _NORMALIZERS[domain.lower()] = normalizer


def unregister_normalizer(domain: str) -> None:
    _NORMALIZERS.pop(domain.lower(), None)


def normalize_email(email: str) -> str:
    """
    Canonical form used as the email index key.

    Case-folds the whole address, then applies the provider-specific
    local-part rule for the domain if one is registered. Idempotent.
    """
    lowered = email.strip().lower()
    local_part, domain = split_email(lowered)
    normalizer = _NORMALIZERS.get(domain)
    if normalizer is None:
        return lowered
    return f"{normalizer(local_part)}@{domain}"


def mask_email(email: str | None) -> str:
    """
    Mask an email for logs and audit rows: ab****@example.com.

    Local parts of two characters or fewer are left as-is.
    """
    if not email:
        return ""
    local_part, domain = split_email(email)
    if len(local_part) > MASK_VISIBLE_CHARS:
        local_part = local_part[:MASK_VISIBLE_CHARS] + MASK_CHAR * (
            len(local_part) - MASK_VISIBLE_CHARS
        )
    return f"{local_part}@{domain}" if domain else local_part
