"""Exception types and their HTTP error responses."""

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ._credentials import ExecutionMode
from ._logging import get_logger

log = get_logger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SqlConsoleError(Exception):
    """Base exception for sqlconsole_rest."""


class QueryValidationError(SqlConsoleError):
    """The request was rejected before any warehouse call."""


class WarehouseError(SqlConsoleError):
    """The warehouse rejected the connection or the statement."""

    def __init__(
        self,
        message: str,
        execution_mode: ExecutionMode,
        code: int | str | None = None,
        sql_state: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.execution_mode = execution_mode
        self.code = code
        self.sql_state = sql_state


class QueryTimeoutError(WarehouseError):
    """The statement did not finish within the execution ceiling."""


class InternalExecutionError(SqlConsoleError):
    """Unexpected failure while resolving or executing a request."""

    def __init__(self, execution_mode: ExecutionMode):
        super().__init__("Internal server error")
        self.execution_mode = execution_mode


def register_error_handlers(app: FastAPI) -> None:
    """Register the JSON error shapes on the application."""

    @app.exception_handler(QueryValidationError)
    async def validation_error(request: Request, exc: QueryValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "timestamp": utc_timestamp()},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "SQL query is required and must be a string", "timestamp": utc_timestamp()},
        )

    @app.exception_handler(WarehouseError)
    async def warehouse_error(request: Request, exc: WarehouseError) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={
                "error": exc.message,
                "sqlState": exc.sql_state,
                "code": exc.code,
                "timestamp": utc_timestamp(),
                "executionMode": exc.execution_mode.value,
            },
        )

    @app.exception_handler(InternalExecutionError)
    async def internal_error(request: Request, exc: InternalExecutionError) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "timestamp": utc_timestamp(),
                "executionMode": exc.execution_mode.value,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            content = {
                "error": "Endpoint not found",
                "path": request.url.path,
                "timestamp": utc_timestamp(),
            }
        else:
            content = {"error": exc.detail, "timestamp": utc_timestamp()}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.error("unhandled_error", error_type=type(exc).__name__, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "timestamp": utc_timestamp()},
        )
