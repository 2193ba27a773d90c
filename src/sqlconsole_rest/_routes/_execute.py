"""SQL execution routes."""

from fastapi import APIRouter, Depends, Request

from .._config import Settings
from .._credentials import AmbientCredentials, ExecutionMode, ExecutionRequest, ambient_from_request
from .._errors import QueryValidationError
from .._executor import ExecutionOutcome, QueryExecutor
from .._models import ColumnMetadata, ErrorResponse, ExecuteMetadata, ExecuteRequest, ExecuteResponse

router = APIRouter(tags=["execute"])

# Dependency placeholders - overridden by the app factory
_executor: QueryExecutor | None = None
_settings: Settings | None = None


def get_executor() -> QueryExecutor:
    """Get the query executor instance."""
    if _executor is None:
        raise RuntimeError("QueryExecutor not initialized")
    return _executor


def get_settings() -> Settings:
    """Get the service settings."""
    if _settings is None:
        raise RuntimeError("Settings not initialized")
    return _settings


def get_ambient(request: Request, settings: Settings = Depends(get_settings)) -> AmbientCredentials:
    """Credentials for one request.

    A plain function so FastAPI runs it in the threadpool and the token file
    read stays off the event loop.
    """
    return ambient_from_request(request, settings)


def _note(outcome: ExecutionOutcome) -> str:
    if outcome.resolution.mode is ExecutionMode.CALLER:
        return f"Query executed with caller's rights as user: {outcome.ingress_user}"
    return "Query executed with owner's rights using service account"


def to_response(outcome: ExecutionOutcome) -> ExecuteResponse:
    """Shape an execution outcome for the console."""
    return ExecuteResponse(
        data=outcome.rows,
        columns=outcome.column_names,
        rowCount=outcome.row_count,
        metadata=ExecuteMetadata(
            sqlText=outcome.sql_text,
            statementId=outcome.statement_id,
            executionMode=outcome.resolution.mode.value,
            ingressUser=outcome.ingress_user,
            hasIngressToken=outcome.has_ingress_token,
            columns=[
                ColumnMetadata(
                    name=c.name,
                    type=c.type,
                    nullable=c.nullable,
                    scale=c.scale,
                    precision=c.precision,
                )
                for c in outcome.columns
            ],
            note=_note(outcome),
            executionTimeMs=outcome.duration_ms,
            connectConfirmed=outcome.connect_confirmed,
            warnings=outcome.warnings,
        ),
    )


@router.post(
    "/execute",
    response_model=ExecuteResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def execute(
    body: ExecuteRequest,
    executor: QueryExecutor = Depends(get_executor),
    ambient: AmbientCredentials = Depends(get_ambient),
) -> ExecuteResponse:
    """Execute one SQL statement with owner's or caller's rights."""
    if body.query is None:
        raise QueryValidationError("SQL query is required and must be a string")

    requested = ExecutionMode.CALLER if body.useCallersRights else ExecutionMode.OWNER
    outcome = await executor.execute(
        ExecutionRequest(sql=body.query, requested_mode=requested),
        ambient,
    )
    return to_response(outcome)
