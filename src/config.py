"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that reads from
environment variables (and a local .env file when present).

Two groups of settings live here:
- Server settings (MCP_HOST, MCP_PORT, MCP_LOG_LEVEL, ...) controlling how the
  MCP server binds and logs.
- Upstream credentials (ISDA_USERNAME, ISDA_PASSWORD, ISDA_API_BASE_URL) used by
  the ISDA Soil API client. These keep their unprefixed names so the same
  environment works for the server and for scripts/soil_lookup.py.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Server fields use the MCP_ prefix (`port` reads from MCP_PORT). The ISDA
    fields are bound to explicit aliases instead of the prefix.
    """

    # --- Server settings ---

    # "0.0.0.0" listens on all interfaces, required inside containers.
    host: str = "0.0.0.0"

    port: int = 3002

    # Maps to Python's logging levels ("debug", "info", "warning", ...).
    log_level: str = "info"

    # Comma-separated list of origins allowed by CORS, "*" for any.
    allowed_origins: str = "*"

    # Upper bound, in seconds, for every call made to the ISDA Soil API.
    request_timeout: float = 30.0

    # --- ISDA Soil API settings ---

    isda_username: str = Field(default="", validation_alias="ISDA_USERNAME")
    isda_password: str = Field(default="", validation_alias="ISDA_PASSWORD")
    isda_api_base_url: str = Field(
        default="https://api.isda-africa.com", validation_alias="ISDA_API_BASE_URL"
    )

    model_config = {
        "env_prefix": "MCP_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        # The .env file may carry variables for other tools.
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def credentials_configured(self) -> bool:
        """True when both ISDA credentials are set."""
        return bool(self.isda_username and self.isda_password)

    @property
    def origins(self) -> list[str]:
        """Allowed CORS origins as a list."""
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return origins or ["*"]


# Singleton instance: import this from other modules.
settings = Settings()
