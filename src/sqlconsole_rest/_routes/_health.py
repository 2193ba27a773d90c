"""Health check routes."""

import time

from fastapi import APIRouter, Depends

from .._config import Settings
from .._errors import utc_timestamp
from .._models import HealthResponse
from ._execute import get_settings

router = APIRouter(tags=["health"])

_STARTED = time.monotonic()


@router.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """Health check endpoint; never touches the warehouse."""
    return HealthResponse(
        status="healthy",
        timestamp=utc_timestamp(),
        uptime=round(time.monotonic() - _STARTED, 3),
        environment=settings.app_env,
        service="sqlconsole-rest",
        snowflake_account=settings.snowflake_account or "Not configured",
        snowflake_host=settings.snowflake_host or "Not configured",
    )
