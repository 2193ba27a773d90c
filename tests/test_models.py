"""Tests for Pydantic models."""

from sqlconsole_rest._credentials import ModeResolution
from sqlconsole_rest._executor import ColumnDescriptor, ExecutionOutcome
from sqlconsole_rest._models import ErrorResponse, ExecuteRequest
from sqlconsole_rest._routes._execute import to_response


def test_execute_request_defaults():
    req = ExecuteRequest(query="SELECT 1")
    assert req.query == "SELECT 1"
    assert req.useCallersRights is False


def test_execute_request_without_query():
    req = ExecuteRequest()
    assert req.query is None


def outcome(resolution: ModeResolution, ingress_user=None) -> ExecutionOutcome:
    return ExecutionOutcome(
        resolution=resolution,
        sql_text="SELECT ID FROM T",
        rows=[{"ID": 1}, {"ID": 2}],
        columns=[ColumnDescriptor(name="ID", type="fixed", nullable=False, scale=0, precision=38)],
        statement_id="01b2",
        duration_ms=12.5,
        ingress_user=ingress_user,
        has_ingress_token=resolution is ModeResolution.CALLER_GRANTED,
    )


def test_to_response_owner():
    resp = to_response(outcome(ModeResolution.OWNER_EXPLICIT))
    assert resp.data == [{"ID": 1}, {"ID": 2}]
    assert resp.columns == ["ID"]
    assert resp.rowCount == 2
    assert resp.metadata.executionMode == "owner's_rights"
    assert resp.metadata.statementId == "01b2"
    assert resp.metadata.columns[0].precision == 38
    assert resp.metadata.executionTimeMs == 12.5


def test_to_response_caller():
    resp = to_response(outcome(ModeResolution.CALLER_GRANTED, ingress_user="JDOE"))
    assert resp.metadata.executionMode == "caller's_rights"
    assert resp.metadata.hasIngressToken is True
    assert "JDOE" in resp.metadata.note


def test_error_response():
    resp = ErrorResponse(error="bad query", code=1003, sqlState="42000", timestamp="2026-01-01T00:00:00Z")
    assert resp.error == "bad query"
    assert resp.executionMode is None
