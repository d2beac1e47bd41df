"""Session health endpoint polled by clients to drive keepalive and expiry prompts."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.v1.deps import get_bearer_token, get_clock, get_token_service
from app.core.clock import Clock
from app.core.config import Settings, get_settings
from app.schemas.session import SessionHealthResponse
from app.services.session_health import SessionHealthConfig, get_session_health
from app.services.token_service import TokenService

router = APIRouter()


@router.get("/health", response_model=SessionHealthResponse)
def session_health(
    token: Annotated[str | None, Depends(get_bearer_token)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> SessionHealthResponse:
    """
    Public endpoint: a missing or invalid token is reported, not rejected.
    nearExpiration turns true inside SESSION_WARNING_THRESHOLD_SEC of expiry.
    """
    health = get_session_health(
        token, token_service, SessionHealthConfig.from_settings(settings), clock()
    )
    return SessionHealthResponse(**health)
