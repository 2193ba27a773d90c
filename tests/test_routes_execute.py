"""Tests for the SQL execution route."""

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from snowflake.connector.errors import ProgrammingError as SnowflakeProgrammingError
from sqlalchemy.exc import ProgrammingError

from sqlconsole_rest import create_app
from sqlconsole_rest._credentials import INGRESS_TOKEN_HEADER, INGRESS_USER_HEADER, IdentityKind

from conftest import make_settings, mock_engine


@pytest.fixture
def client(settings, engine_factory) -> TestClient:
    return TestClient(create_app(settings, engine_factory=engine_factory))


def test_owner_rights_without_header(client, engine_factory):
    response = client.post("/execute", json={"query": "SELECT 1", "useCallersRights": False})

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == [{"1": 1}]
    assert body["columns"] == ["1"]
    assert body["rowCount"] == 1
    meta = body["metadata"]
    assert meta["executionMode"] == "owner's_rights"
    assert meta["hasIngressToken"] is False
    assert meta["ingressUser"] is None
    assert meta["sqlText"] == "SELECT 1"
    assert meta["note"] == "Query executed with owner's rights using service account"
    assert meta["columns"][0]["name"] == "1"
    assert engine_factory.descriptors[0].identity_kind is IdentityKind.TOKEN


def test_callers_rights_with_header(client, engine_factory):
    response = client.post(
        "/execute",
        json={"query": "SELECT 1", "useCallersRights": True},
        headers={INGRESS_USER_HEADER: "JDOE", INGRESS_TOKEN_HEADER: "user-token"},
    )

    assert response.status_code == 200
    meta = response.json()["metadata"]
    assert meta["executionMode"] == "caller's_rights"
    assert meta["hasIngressToken"] is True
    assert meta["ingressUser"] == "JDOE"
    assert meta["note"] == "Query executed with caller's rights as user: JDOE"
    assert engine_factory.descriptors[0].identity_material == "svc-session-token.user-token"


def test_callers_rights_without_header_downgrades(client):
    response = client.post("/execute", json={"query": "SELECT 1", "useCallersRights": True})

    assert response.status_code == 200
    meta = response.json()["metadata"]
    assert meta["executionMode"] == "owner's_rights"
    assert meta["hasIngressToken"] is False
    assert any("owner's rights" in w for w in meta["warnings"])


def test_header_without_request_stays_owner(client):
    response = client.post(
        "/execute",
        json={"query": "SELECT 1"},
        headers={INGRESS_USER_HEADER: "JDOE", INGRESS_TOKEN_HEADER: "user-token"},
    )

    assert response.status_code == 200
    meta = response.json()["metadata"]
    assert meta["executionMode"] == "owner's_rights"
    assert meta["hasIngressToken"] is True


@pytest.mark.parametrize(
    "payload",
    [{"query": "   "}, {"query": ""}, {}, {"query": None}, {"query": 42}],
)
def test_invalid_query_rejected(client, engine_factory, payload):
    response = client.post("/execute", json=payload)

    assert response.status_code == 400
    assert "error" in response.json()
    assert "timestamp" in response.json()
    assert engine_factory.descriptors == []


def test_statement_error_returns_500(client, engine_factory):
    response = client.post("/execute", json={"query": "SELECT * FROM missing_table"})

    assert response.status_code == 500
    body = response.json()
    assert "missing_table" in body["error"]
    assert body["executionMode"] == "owner's_rights"
    assert "timestamp" in body
    assert engine_factory.checkins == 1


def test_permission_denied_surfaces_native_error(settings):
    orig = SnowflakeProgrammingError(
        msg="Insufficient privileges to operate on table 'SECRET'",
        errno=3001,
        sqlstate="42501",
    )
    connection = MagicMock()
    connection.exec_driver_sql.side_effect = [
        MagicMock(),
        ProgrammingError("SELECT * FROM SECRET", None, orig),
    ]
    engine = mock_engine(connection)
    client = TestClient(create_app(settings, engine_factory=lambda descriptor: engine))

    response = client.post(
        "/execute",
        json={"query": "SELECT * FROM SECRET", "useCallersRights": True},
        headers={INGRESS_TOKEN_HEADER: "user-token"},
    )

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == orig.msg
    assert body["code"] == 3001
    assert body["sqlState"] == "42501"
    assert body["executionMode"] == "caller's_rights"
    assert "user-token" not in response.text
    connection.close.assert_called_once()
    engine.dispose.assert_called_once()


def test_internal_error_hides_credentials(settings):
    def broken_factory(descriptor):
        raise RuntimeError(f"cannot use {descriptor.identity_material}")

    client = TestClient(create_app(settings, engine_factory=broken_factory))

    response = client.post("/execute", json={"query": "SELECT 1"})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert "svc-session-token" not in response.text


def test_api_prefix(tmp_path, engine_factory):
    app = create_app(make_settings(tmp_path, api_prefix="/api"), engine_factory=engine_factory)
    client = TestClient(app)

    assert client.post("/api/execute", json={"query": "SELECT 1"}).status_code == 200
    assert client.post("/execute", json={"query": "SELECT 1"}).status_code == 404


@pytest.mark.anyio
async def test_requests_are_independent(settings, engine_factory):
    app = create_app(settings, engine_factory=engine_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        owner = await client.post("/execute", json={"query": "SELECT 1 AS a"})
        caller = await client.post(
            "/execute",
            json={"query": "SELECT 2 AS b", "useCallersRights": True},
            headers={INGRESS_TOKEN_HEADER: "user-token"},
        )

    assert owner.json()["metadata"]["executionMode"] == "owner's_rights"
    assert caller.json()["metadata"]["executionMode"] == "caller's_rights"
    assert owner.json()["data"] == [{"a": 1}]
    assert caller.json()["data"] == [{"b": 2}]
    assert engine_factory.checkouts == engine_factory.checkins == 2


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_token_file_read_off_event_loop(monkeypatch, client):
    from sqlconsole_rest import _credentials

    reads: list[bool] = []
    real_read = _credentials.read_session_token

    def recording_read(path):
        reads.append(_on_event_loop())
        return real_read(path)

    monkeypatch.setattr(_credentials, "read_session_token", recording_read)

    response = client.post("/execute", json={"query": "SELECT 1"})

    assert response.status_code == 200
    assert reads == [False]
