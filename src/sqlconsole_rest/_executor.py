"""Run one SQL statement under the identity resolved for a request."""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog
from snowflake.connector.constants import FIELD_ID_TO_NAME
from sqlalchemy import Connection
from sqlalchemy.exc import DBAPIError

from ._config import Settings
from ._connections import EngineFactory, SnowflakeEngineFactory, cancel_running, open_connection, release
from ._credentials import (
    AmbientCredentials,
    ExecutionRequest,
    IdentityKind,
    ModeResolution,
    build_descriptor,
    resolve_mode,
)
from ._errors import InternalExecutionError, QueryTimeoutError, QueryValidationError, WarehouseError
from ._logging import get_logger


# Send statements without a parameter collection so "%" is never treated as a placeholder
_VERBATIM = {"no_parameters": True}


@dataclass
class ColumnDescriptor:
    name: str
    type: str | None
    nullable: bool | None
    scale: int | None
    precision: int | None


@dataclass
class ExecutionOutcome:
    """What ran, under which identity, and what came back."""

    resolution: ModeResolution
    sql_text: str
    rows: list[dict[str, Any]]
    columns: list[ColumnDescriptor]
    statement_id: str | None
    duration_ms: float
    ingress_user: str | None
    has_ingress_token: bool
    connect_confirmed: bool = True
    warnings: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass
class _StatementResult:
    rows: list[dict[str, Any]]
    columns: list[ColumnDescriptor]
    statement_id: str | None


def _type_name(type_code: Any) -> str | None:
    if isinstance(type_code, int):
        name = FIELD_ID_TO_NAME.get(type_code)
        return name.lower() if name else None
    return None


def _describe(description) -> list[ColumnDescriptor]:
    # DB-API order: name, type_code, display_size, internal_size, precision, scale, null_ok
    return [
        ColumnDescriptor(
            name=d[0],
            type=_type_name(d[1]),
            nullable=d[6],
            scale=d[5],
            precision=d[4],
        )
        for d in description or []
    ]


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _run_statement(connection: Connection, sql: str) -> _StatementResult:
    result = connection.exec_driver_sql(sql, execution_options=_VERBATIM)
    cursor = result.context.cursor
    statement_id = getattr(cursor, "sfqid", None)

    if not result.returns_rows:
        return _StatementResult(rows=[], columns=[], statement_id=statement_id)

    columns = _describe(cursor.description)
    names = [c.name for c in columns]
    rows = [
        {name: _normalize_value(value) for name, value in zip(names, row)}
        for row in result.fetchall()
    ]
    return _StatementResult(rows=rows, columns=columns, statement_id=statement_id)


def _tag_session(connection: Connection, tag: str) -> None:
    connection.exec_driver_sql(f"ALTER SESSION SET QUERY_TAG = '{tag}'", execution_options=_VERBATIM)


class QueryExecutor:
    """Resolve the execution identity for a request and run its statement.

    One engine and one connection per call; both are released on every exit
    path once a connection has been attempted.
    """

    def __init__(
        self,
        settings: Settings,
        engine_factory: EngineFactory | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._settings = settings
        self._engine_factory = engine_factory or SnowflakeEngineFactory(settings)
        self._log = logger or get_logger(__name__)

    @staticmethod
    async def _abandon(statement: asyncio.Future, connection: Connection, log) -> None:
        """Cancel an overdue statement and wait until its thread lets go of the connection."""
        log.warning("statement_ceiling_reached")
        try:
            cancelled = await asyncio.to_thread(cancel_running, connection)
        except Exception as exc:
            log.warning("statement_cancel_failed", error_type=type(exc).__name__)
        else:
            log.info("statement_cancel_requested", server_cancel=cancelled)

        try:
            await statement
        except Exception as exc:
            log.info("abandoned_statement_ended", error_type=type(exc).__name__)

    async def execute(self, request: ExecutionRequest, ambient: AmbientCredentials) -> ExecutionOutcome:
        if not isinstance(request.sql, str) or not request.sql.strip():
            raise QueryValidationError("SQL query cannot be empty")

        resolution = resolve_mode(request.requested_mode, ambient.impersonation_token)
        mode = resolution.mode
        log = self._log.bind(
            requested_mode=request.requested_mode.value,
            execution_mode=mode.value,
            has_ingress_token=ambient.has_impersonation_token,
            has_session_token=ambient.session_token is not None,
        )
        warnings: list[str] = []

        if resolution.downgraded:
            log.info("callers_rights_downgraded")
            warnings.append(
                "Caller's rights requested but no ingress user token was forwarded; "
                "executed with owner's rights"
            )

        try:
            descriptor = build_descriptor(ambient, resolution)
            engine = self._engine_factory(descriptor)
        except Exception as exc:
            log.error("connection_setup_failed", error_type=type(exc).__name__)
            raise InternalExecutionError(mode) from exc

        log = log.bind(identity_kind=descriptor.identity_kind.value)
        if (
            resolution is ModeResolution.CALLER_GRANTED
            and descriptor.identity_kind is not IdentityKind.TOKEN_IMPERSONATION
        ):
            log.warning("impersonation_not_applied")
            warnings.append(
                "No platform session token available; the ingress user token could not be "
                f"attached and the connection used {descriptor.identity_kind.value} authentication"
            )

        connection = None
        started = time.perf_counter()
        try:
            connection, confirmed = await open_connection(
                engine, self._settings.connect_timeout_seconds, log
            )
            if not confirmed:
                warnings.append("Connection was not confirmed within the connect ceiling")

            try:
                await asyncio.to_thread(_tag_session, connection, resolution.session_tag)
            except DBAPIError as exc:
                log.warning("session_tag_failed", error=str(exc.orig))
                warnings.append(f"Session tag '{resolution.session_tag}' could not be applied")
                try:
                    await asyncio.to_thread(connection.rollback)
                except DBAPIError as reset_exc:
                    log.warning("session_reset_failed", error=str(reset_exc.orig))

            started = time.perf_counter()
            ceiling = self._settings.statement_timeout_seconds
            statement = asyncio.ensure_future(
                asyncio.to_thread(_run_statement, connection, request.sql)
            )
            done, _ = await asyncio.wait({statement}, timeout=ceiling)
            if statement not in done:
                await self._abandon(statement, connection, log)
                raise QueryTimeoutError(
                    f"Statement did not complete within {ceiling} seconds",
                    execution_mode=mode,
                )
            result = statement.result()
        except DBAPIError as exc:
            orig = exc.orig
            message = getattr(orig, "msg", None) or str(orig)
            log.error(
                "statement_failed",
                code=getattr(orig, "errno", None),
                sql_state=getattr(orig, "sqlstate", None),
                connected=connection is not None,
            )
            raise WarehouseError(
                message,
                execution_mode=mode,
                code=getattr(orig, "errno", None),
                sql_state=getattr(orig, "sqlstate", None),
            ) from exc
        except WarehouseError:
            log.error("statement_timeout")
            raise
        except Exception as exc:
            log.error("execution_failed", error_type=type(exc).__name__)
            raise InternalExecutionError(mode) from exc
        finally:
            await asyncio.to_thread(release, connection, engine)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        log.info(
            "statement_completed",
            row_count=len(result.rows),
            statement_id=result.statement_id,
            duration_ms=duration_ms,
            connect_confirmed=confirmed,
        )
        return ExecutionOutcome(
            resolution=resolution,
            sql_text=request.sql,
            rows=result.rows,
            columns=result.columns,
            statement_id=result.statement_id,
            duration_ms=duration_ms,
            ingress_user=ambient.ingress_user,
            has_ingress_token=ambient.has_impersonation_token,
            connect_confirmed=confirmed,
            warnings=warnings,
        )
