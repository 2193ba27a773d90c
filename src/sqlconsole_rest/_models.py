"""Pydantic request/response models."""

from typing import Any

from pydantic import BaseModel


# === Requests ===


class ExecuteRequest(BaseModel):
    """Request body for SQL execution."""

    query: str | None = None
    useCallersRights: bool = False


# === Responses ===


class ColumnMetadata(BaseModel):
    """Warehouse metadata for one result column."""

    name: str
    type: str | None = None
    nullable: bool | None = None
    scale: int | None = None
    precision: int | None = None


class ExecuteMetadata(BaseModel):
    """How and as whom the statement ran."""

    sqlText: str
    statementId: str | None
    executionMode: str
    ingressUser: str | None
    hasIngressToken: bool
    columns: list[ColumnMetadata]
    note: str
    executionTimeMs: float
    connectConfirmed: bool
    warnings: list[str] = []


class ExecuteResponse(BaseModel):
    """Response for SQL execution."""

    data: list[dict[str, Any]]
    columns: list[str]
    rowCount: int
    metadata: ExecuteMetadata


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime: float
    environment: str
    service: str
    snowflake_account: str
    snowflake_host: str


class InfoResponse(BaseModel):
    connected: bool
    connectionInfo: dict[str, Any] | None = None
    timestamp: str


# === Errors ===


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    sqlState: str | None = None
    code: int | str | None = None
    timestamp: str
    executionMode: str | None = None
