from fastapi import APIRouter, Depends, Request

from inkguard.auth.verify import auth_dependency
from inkguard.middleware.request_context import request_metadata
from inkguard.models.api.security_response import PortfolioAccessResponse
from inkguard.services.security.access_monitor import portfolio_access_monitor

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


@router.get("/{artist_id}/access", response_model=PortfolioAccessResponse)
async def portfolio_access(
    artist_id: str,
    request: Request,
    claims: dict = Depends(auth_dependency),
) -> PortfolioAccessResponse:
    """
    Can the caller view this artist's portfolio?

    Denials caused by a backend outage look identical to ordinary denials.
    """
    decision = await portfolio_access_monitor.handle_access_requested(
        claims.get("sub"),
        artist_id,
        metadata=request_metadata(request),
    )
    return PortfolioAccessResponse(artist_id=artist_id, can_view=decision.granted)
