"""Connection info route."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .._config import Settings
from .._credentials import AmbientCredentials, ExecutionMode, ExecutionRequest, read_session_token
from .._errors import InternalExecutionError, WarehouseError, utc_timestamp
from .._executor import QueryExecutor
from .._models import InfoResponse
from ._execute import get_executor, get_settings

router = APIRouter(tags=["info"])

CONNECTION_INFO_SQL = (
    "SELECT CURRENT_USER() AS USER, CURRENT_ROLE() AS ROLE, CURRENT_DATABASE() AS DATABASE, "
    "CURRENT_SCHEMA() AS SCHEMA, CURRENT_WAREHOUSE() AS WAREHOUSE"
)


def get_service_ambient(settings: Settings = Depends(get_settings)) -> AmbientCredentials:
    """Owner credentials only; runs in the threadpool like the execute route's."""
    return AmbientCredentials(
        settings=settings,
        session_token=read_session_token(settings.snowflake_token_path),
    )


@router.get("/info", response_model=InfoResponse)
async def info(
    executor: QueryExecutor = Depends(get_executor),
    ambient: AmbientCredentials = Depends(get_service_ambient),
):
    """Report the identity the service connects as with owner's rights."""
    try:
        outcome = await executor.execute(
            ExecutionRequest(sql=CONNECTION_INFO_SQL, requested_mode=ExecutionMode.OWNER),
            ambient,
        )
    except (WarehouseError, InternalExecutionError) as exc:
        return JSONResponse(
            status_code=500,
            content={"connected": False, "error": str(exc), "timestamp": utc_timestamp()},
        )

    return InfoResponse(
        connected=True,
        connectionInfo=outcome.rows[0] if outcome.rows else None,
        timestamp=utc_timestamp(),
    )
