"""Warehouse engines built from per-request connection descriptors."""

import asyncio
import math
from typing import Any, Callable

import structlog
from cryptography.hazmat.primitives import serialization
from snowflake.sqlalchemy import URL
from sqlalchemy import Connection, Engine, create_engine
from sqlalchemy.pool import NullPool

from ._config import Settings
from ._credentials import ConnectionDescriptor, IdentityKind

EngineFactory = Callable[[ConnectionDescriptor], Engine]


def snowflake_url(descriptor: ConnectionDescriptor) -> str:
    """Build the snowflake dialect URL; credentials travel in connect args."""
    params: dict[str, Any] = {
        "account": descriptor.account or "",
        "database": descriptor.database,
        "schema": descriptor.schema,
    }
    if descriptor.user:
        params["user"] = descriptor.user
    if descriptor.warehouse:
        params["warehouse"] = descriptor.warehouse
    if descriptor.role:
        params["role"] = descriptor.role
    return URL(**params)


def _der_private_key(pem: str) -> bytes:
    key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    return key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def snowflake_connect_args(
    descriptor: ConnectionDescriptor,
    login_timeout: int,
    statement_timeout: float,
) -> dict[str, Any]:
    """Driver keyword arguments for the descriptor's identity kind."""
    args: dict[str, Any] = {
        "login_timeout": login_timeout,
        "session_parameters": {"STATEMENT_TIMEOUT_IN_SECONDS": max(1, math.ceil(statement_timeout))},
    }
    kind = descriptor.identity_kind

    if kind in (IdentityKind.TOKEN, IdentityKind.TOKEN_IMPERSONATION):
        args["host"] = descriptor.host
        args["authenticator"] = "oauth"
        args["token"] = descriptor.identity_material
    elif kind is IdentityKind.PASSWORD:
        args["password"] = descriptor.identity_material
    elif kind is IdentityKind.KEY_PAIR:
        args["authenticator"] = "SNOWFLAKE_JWT"
        args["private_key"] = _der_private_key(descriptor.identity_material)
    else:
        args["authenticator"] = "snowflake"
    return args


class SnowflakeEngineFactory:
    """Create a single-use, unpooled engine for one connection descriptor."""

    def __init__(self, settings: Settings):
        self._login_timeout = settings.login_timeout_seconds
        self._statement_timeout = settings.statement_timeout_seconds

    def __call__(self, descriptor: ConnectionDescriptor) -> Engine:
        return create_engine(
            snowflake_url(descriptor),
            connect_args=snowflake_connect_args(
                descriptor, self._login_timeout, self._statement_timeout
            ),
            poolclass=NullPool,
        )


async def open_connection(
    engine: Engine,
    timeout: float,
    log: structlog.stdlib.BoundLogger,
) -> tuple[Connection, bool]:
    """Connect, waiting at most ``timeout`` seconds for confirmation.

    Returns the connection and whether the driver confirmed it within the
    ceiling. An unconfirmed connect is logged and the caller proceeds; the
    driver's own login timeout still bounds the remaining wait.
    """
    pending = asyncio.ensure_future(asyncio.to_thread(engine.connect))
    done, _ = await asyncio.wait({pending}, timeout=timeout)
    if pending in done:
        return pending.result(), True

    log.warning("connect_unconfirmed", ceiling_seconds=timeout)
    return await pending, False


def release(connection: Connection | None, engine: Engine) -> None:
    """Close the connection and dispose of its engine."""
    try:
        if connection is not None:
            connection.close()
    finally:
        engine.dispose()


def cancel_running(connection: Connection) -> bool:
    """Ask the warehouse to abort the statements running in this session.

    Issued from a second cursor on the driver connection, which the snowflake
    connector allows while another thread is blocked in ``execute``. Returns
    ``False`` when the driver exposes no session to cancel.
    """
    raw = connection.connection.dbapi_connection
    session_id = getattr(raw, "session_id", None)
    if session_id is None:
        return False

    cursor = raw.cursor()
    try:
        cursor.execute(f"SELECT SYSTEM$CANCEL_ALL_QUERIES({int(session_id)})")
    finally:
        cursor.close()
    return True
