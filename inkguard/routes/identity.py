from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from inkguard.auth.verify import auth_dependency
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.api.security_response import VerifyDomainResponse
from inkguard.models.api.trigger_request import VerifyDomainRequest
from inkguard.services.identity.email_rules import get_domain, is_valid_email_format, mask_email
from inkguard.services.identity.mx_resolver import mx_resolver

logger = get_logger(__name__)

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post("/verify-domain", response_model=VerifyDomainResponse)
async def verify_email_domain(
    body: VerifyDomainRequest,
    claims: dict = Depends(auth_dependency),
) -> VerifyDomainResponse:
    """MX check for an email's domain, for pre-registration feedback."""
    valid = is_valid_email_format(body.email) and await mx_resolver.has_mx_record(
        get_domain(body.email)
    )

    logger.info(
        "Email domain verification",
        user_id=claims.get("sub"),
        email=mask_email(body.email),
        valid=valid,
    )
    return VerifyDomainResponse(
        valid=valid,
        email=mask_email(body.email),
        timestamp=datetime.now(UTC),
    )
