# inkguard/models/api/trigger_request.py
from typing import Any

from pydantic import BaseModel, Field


class IdentityCreatedRequest(BaseModel):
    """Sent by the application layer after an identity document is created."""

    identity_id: str = Field(..., min_length=1)
    email: str


class EmailChangedRequest(BaseModel):
    """Sent after the application layer applied an email change."""

    identity_id: str = Field(..., min_length=1)
    previous_email: str
    new_email: str


class FileFinalizedRequest(BaseModel):
    """Object storage finalize notification."""

    name: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    content_type: str | None = None
    bucket: str | None = None


class DocumentWrittenRequest(BaseModel):
    """Document write notification (create/update/delete)."""

    collection: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    actor_id: str | None = None


class VerifyDomainRequest(BaseModel):
    email: str
