# inkguard/models/api/security_response.py
from datetime import datetime

from pydantic import BaseModel, Field


class PortfolioAccessResponse(BaseModel):
    """Only the boolean is exposed; denial reasons stay server-side."""

    artist_id: str
    can_view: bool


class VerifyDomainResponse(BaseModel):
    valid: bool
    email: str = Field(..., description="Masked email")
    timestamp: datetime


class TriggerResponse(BaseModel):
    ok: bool
    reason: str | None = None
    recorded_events: list[str] | None = None
