"""Execution-mode resolution and per-request connection identity."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from fastapi import Request

from ._config import Settings

INGRESS_USER_HEADER = "Sf-Context-Current-User"
INGRESS_TOKEN_HEADER = "Sf-Context-Current-User-Token"

TOKEN_SEPARATOR = "."


class ExecutionMode(str, Enum):
    """Identity a statement runs under."""

    OWNER = "owner's_rights"
    CALLER = "caller's_rights"


class ModeResolution(Enum):
    """Outcome of matching the requested mode against the available credentials."""

    OWNER_EXPLICIT = "owner_explicit"
    CALLER_GRANTED = "caller_granted"
    CALLER_DOWNGRADED = "caller_downgraded"

    @property
    def mode(self) -> ExecutionMode:
        if self is ModeResolution.CALLER_GRANTED:
            return ExecutionMode.CALLER
        return ExecutionMode.OWNER

    @property
    def session_tag(self) -> str:
        if self.mode is ExecutionMode.CALLER:
            return "CALLERS_RIGHTS_EXECUTION"
        return "OWNERS_RIGHTS_EXECUTION"

    @property
    def downgraded(self) -> bool:
        return self is ModeResolution.CALLER_DOWNGRADED


def resolve_mode(requested: ExecutionMode, impersonation_token: str | None) -> ModeResolution:
    """Caller's rights are granted only when requested and a token was forwarded."""
    if requested is not ExecutionMode.CALLER:
        return ModeResolution.OWNER_EXPLICIT
    if impersonation_token:
        return ModeResolution.CALLER_GRANTED
    return ModeResolution.CALLER_DOWNGRADED


class IdentityKind(str, Enum):
    TOKEN = "token"
    TOKEN_IMPERSONATION = "token+impersonation"
    PASSWORD = "password"
    KEY_PAIR = "key-pair"
    DEFAULT = "default"


@dataclass(frozen=True)
class CompositeToken:
    """Service session token combined with a forwarded user token."""

    base: str
    impersonation: str

    def __post_init__(self):
        if not self.base:
            raise ValueError("Composite token requires a non-empty base token")
        if not self.impersonation:
            raise ValueError("Composite token requires a non-empty impersonation token")

    @property
    def value(self) -> str:
        return f"{self.base}{TOKEN_SEPARATOR}{self.impersonation}"

    def __repr__(self) -> str:
        return "CompositeToken(<redacted>)"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything needed to open one warehouse connection for one request."""

    account: str | None
    host: str | None
    database: str
    schema: str
    warehouse: str | None
    role: str | None
    identity_kind: IdentityKind
    identity_material: str | None = field(default=None, repr=False)
    user: str | None = None

    def __post_init__(self):
        needs_material = self.identity_kind is not IdentityKind.DEFAULT
        if needs_material and not self.identity_material:
            raise ValueError(f"Identity kind '{self.identity_kind.value}' requires credential material")
        if not needs_material and self.identity_material:
            raise ValueError("Default identity must not carry credential material")


@dataclass(frozen=True)
class ExecutionRequest:
    sql: str
    requested_mode: ExecutionMode = ExecutionMode.OWNER


@dataclass(frozen=True)
class AmbientCredentials:
    """Credential material surrounding a single request."""

    settings: Settings
    session_token: str | None = field(default=None, repr=False)
    impersonation_token: str | None = field(default=None, repr=False)
    ingress_user: str | None = None

    @property
    def has_impersonation_token(self) -> bool:
        return bool(self.impersonation_token)

    @property
    def token_path_usable(self) -> bool:
        s = self.settings
        return bool(self.session_token and s.snowflake_host and s.snowflake_account)


def read_session_token(path: str | Path) -> str | None:
    """Read the platform-issued session token; ``None`` when absent or empty."""
    try:
        token = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return token or None


def ambient_from_request(request: Request, settings: Settings) -> AmbientCredentials:
    """Collect the session token and the ingress headers for one request."""
    return AmbientCredentials(
        settings=settings,
        session_token=read_session_token(settings.snowflake_token_path),
        impersonation_token=request.headers.get(INGRESS_TOKEN_HEADER) or None,
        ingress_user=request.headers.get(INGRESS_USER_HEADER) or None,
    )


def build_descriptor(ambient: AmbientCredentials, resolution: ModeResolution) -> ConnectionDescriptor:
    """Pick the identity to present to the warehouse.

    The platform token path wins when it is usable; otherwise a configured
    password, then a private key, then the driver's default authenticator.
    Only the token path can carry an impersonation token.
    """
    s = ambient.settings
    common = dict(
        database=s.snowflake_database,
        schema=s.snowflake_schema,
        warehouse=s.snowflake_warehouse,
        role=s.snowflake_role,
    )

    if ambient.token_path_usable:
        if resolution is ModeResolution.CALLER_GRANTED:
            kind = IdentityKind.TOKEN_IMPERSONATION
            material = CompositeToken(ambient.session_token, ambient.impersonation_token).value
        else:
            kind = IdentityKind.TOKEN
            material = ambient.session_token
        return ConnectionDescriptor(
            account=s.snowflake_account,
            host=s.snowflake_host,
            identity_kind=kind,
            identity_material=material,
            **common,
        )

    if s.snowflake_password:
        kind, material = IdentityKind.PASSWORD, s.snowflake_password
    elif s.private_key_pem:
        kind, material = IdentityKind.KEY_PAIR, s.private_key_pem
    else:
        kind, material = IdentityKind.DEFAULT, None

    return ConnectionDescriptor(
        account=s.snowflake_account,
        host=None,
        user=s.snowflake_username,
        identity_kind=kind,
        identity_material=material,
        **common,
    )
