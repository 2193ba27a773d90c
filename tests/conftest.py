"""Shared fixtures: settings with a platform token file and SQLite-backed engines."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from sqlconsole_rest import Settings
from sqlconsole_rest._credentials import ConnectionDescriptor


class RecordingEngineFactory:
    """Hands out in-memory SQLite engines and records how they were used."""

    def __init__(self):
        self.descriptors: list[ConnectionDescriptor] = []
        self.statements: list[str] = []
        self.checkouts = 0
        self.checkins = 0

    def __call__(self, descriptor: ConnectionDescriptor):
        self.descriptors.append(descriptor)
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        event.listen(engine, "checkout", self._on_checkout)
        event.listen(engine, "checkin", self._on_checkin)
        event.listen(engine, "before_cursor_execute", self._on_execute)
        return engine

    def _on_checkout(self, dbapi_connection, connection_record, connection_proxy):
        self.checkouts += 1

    def _on_checkin(self, dbapi_connection, connection_record):
        self.checkins += 1

    def _on_execute(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)


def make_settings(tmp_path, token: str | None = "svc-session-token", **overrides) -> Settings:
    token_file = tmp_path / "token"
    if token is not None:
        token_file.write_text(token + "\n")
    values = dict(
        snowflake_account="myorg-myacct",
        snowflake_host="myorg-myacct.snowflakecomputing.com",
        snowflake_warehouse="COMPUTE_WH",
        snowflake_role="APP_ROLE",
        snowflake_username=None,
        snowflake_password=None,
        snowflake_private_key=None,
        snowflake_token_path=str(token_file),
        connect_timeout_seconds=5.0,
        statement_timeout_seconds=10.0,
        log_json=False,
        cors_origins=[],
        api_prefix="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def mock_engine(connection: MagicMock | None = None) -> MagicMock:
    """Engine whose connect() hands back ``connection``."""
    engine = MagicMock()
    engine.connect.return_value = connection or MagicMock()
    return engine


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def engine_factory() -> RecordingEngineFactory:
    return RecordingEngineFactory()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
