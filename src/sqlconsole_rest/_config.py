"""Service configuration read from the environment."""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOKEN_PATH = "/snowflake/session/token"


class Settings(BaseSettings):
    """Static connection parameters and service options.

    Field names map to upper-case environment variables (``SNOWFLAKE_ACCOUNT``,
    ``CONNECT_TIMEOUT_SECONDS``, ...). Nothing here is ever taken from a request.
    """

    snowflake_account: str | None = None
    snowflake_host: str | None = None
    snowflake_database: str = "SQL_QUERY_APP_DB"
    snowflake_schema: str = "PUBLIC"
    snowflake_warehouse: str | None = None
    snowflake_role: str | None = None

    # Fallback identities when no platform session token is available
    snowflake_username: str | None = None
    snowflake_password: str | None = None
    snowflake_private_key: str | None = None

    snowflake_token_path: str = DEFAULT_TOKEN_PATH

    connect_timeout_seconds: float = 5.0
    login_timeout_seconds: int = 60
    statement_timeout_seconds: float = 120.0

    app_env: str = "development"
    log_level: str = "INFO"
    log_json: bool = True
    cors_origins: list[str] = []
    api_prefix: str = ""
    max_body_bytes: int = 10 * 1024 * 1024
    host: str = "0.0.0.0"
    port: int = 3001

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def private_key_pem(self) -> str | None:
        """Private key with escaped newlines restored, as env files often carry it."""
        if not self.snowflake_private_key:
            return None
        return self.snowflake_private_key.replace("\\n", "\n")
