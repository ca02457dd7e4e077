# inkguard/routes/triggers.py
"""
Internal trigger webhooks.

The application layer and object storage notify these endpoints after
identity writes, email changes, file uploads and document writes. Every
request body is signed with HMAC-SHA256 using the shared internal secret.
"""

import hashlib
import hmac
from typing import TypeVar

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.api.security_response import TriggerResponse
from inkguard.models.api.trigger_request import (
    DocumentWrittenRequest,
    EmailChangedRequest,
    FileFinalizedRequest,
    IdentityCreatedRequest,
)
from inkguard.services.identity.email_change_service import (
    ChangeStoreUnavailable,
    RateLimitExceeded,
)
from inkguard.services.identity.lifecycle_service import identity_lifecycle_service
from inkguard.services.identity.validation_service import EmailValidationError
from inkguard.services.security.storage_monitor import storage_monitor

logger = get_logger(__name__)

router = APIRouter(prefix="/internal/triggers", tags=["triggers"])

SIGNATURE_HEADER = "x-inkguard-signature"
WEBHOOK_SECRET = settings.INTERNAL_WEBHOOK_SECRET

ModelT = TypeVar("ModelT", bound=BaseModel)


def verify_signature(raw: bytes, signature: str | None) -> None:
    if not WEBHOOK_SECRET:
        raise HTTPException(status_code=401, detail="Webhook secret not configured")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")
    mac = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(mac, signature):
        raise HTTPException(status_code=401, detail="Invalid signature")


async def _signed_body(request: Request, model: type[ModelT]) -> ModelT:
    raw = await request.body()
    verify_signature(raw, request.headers.get(SIGNATURE_HEADER))
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e


def _validation_rejected(e: EmailValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"ok": False, "reason": e.code, "message": e.user_message},
    )


def _rate_limited(e: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"ok": False, "reason": "rate_limited", "message": e.user_message},
        headers={"Retry-After": e.retry_after.strftime("%a, %d %b %Y %H:%M:%S GMT")},
    )


def _store_unavailable(e: ChangeStoreUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"ok": False, "reason": e.code, "message": e.user_message},
    )


@router.post("/identity-created", response_model=TriggerResponse)
async def identity_created(request: Request):
    body = await _signed_body(request, IdentityCreatedRequest)
    try:
        await identity_lifecycle_service.handle_identity_created(body.identity_id, body.email)
    except EmailValidationError as e:
        return _validation_rejected(e)
    return TriggerResponse(ok=True)


@router.post("/email-changed", response_model=TriggerResponse)
async def email_changed(request: Request):
    body = await _signed_body(request, EmailChangedRequest)
    try:
        record = await identity_lifecycle_service.handle_email_change(
            body.identity_id, body.previous_email, body.new_email
        )
    except EmailValidationError as e:
        return _validation_rejected(e)
    except RateLimitExceeded as e:
        return _rate_limited(e)
    except ChangeStoreUnavailable as e:
        return _store_unavailable(e)

    if record is None:
        return TriggerResponse(ok=True, reason="unchanged")
    return TriggerResponse(ok=True)


@router.post("/file-finalized", response_model=TriggerResponse)
async def file_finalized(request: Request):
    body = await _signed_body(request, FileFinalizedRequest)
    recorded = await storage_monitor.handle_file_finalized(
        body.name, body.size, content_type=body.content_type, bucket=body.bucket
    )
    return TriggerResponse(ok=True, recorded_events=recorded)


@router.post("/document-written", response_model=TriggerResponse)
async def document_written(request: Request):
    body = await _signed_body(request, DocumentWrittenRequest)
    recorded = await storage_monitor.handle_document_written(
        body.collection,
        body.document_id,
        body.before,
        body.after,
        actor_id=body.actor_id,
    )
    return TriggerResponse(ok=True, recorded_events=recorded)
