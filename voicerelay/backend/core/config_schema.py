"""
Configuration Schemas.

Pydantic models defining the expected structure of each YAML config file.
Used by AppConfig to validate configuration at load time. If a YAML file
has missing keys, wrong types, or unknown fields, a clear ValidationError
is raised at startup instead of a cryptic KeyError deep in application code.

Each top-level class corresponds to one file in config/settings/:
    ApplicationSchema  → application.yaml
    RealtimeSchema     → realtime.yaml
    LoggingSchema      → logging.yaml
    FeaturesSchema     → features.yaml
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _StrictBase(BaseModel):
    """Base with extra='forbid' so unknown YAML keys are caught immediately."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# application.yaml
# =============================================================================


class ServerSchema(_StrictBase):
    host: str
    port: int


class CorsSchema(_StrictBase):
    origins: list[str]


class StaticSchema(_StrictBase):
    directory: str
    mount_path: str


class ApplicationSchema(_StrictBase):
    name: str
    version: str
    description: str
    environment: str
    debug: bool
    docs_enabled: bool
    server: ServerSchema
    cors: CorsSchema
    static: StaticSchema


# =============================================================================
# realtime.yaml
# =============================================================================


class UpstreamSchema(_StrictBase):
    base_url: str
    model: str
    beta_header: str
    open_timeout_seconds: float
    close_timeout_seconds: float
    max_message_bytes: int | None = Field(default=None)

    @field_validator("base_url")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        return value.rstrip("?")


class ClientSocketSchema(_StrictBase):
    path: str
    url: str


class SessionSchema(_StrictBase):
    modalities: list[str]
    voice: str
    instructions: str


class RealtimeSchema(_StrictBase):
    upstream: UpstreamSchema
    client: ClientSocketSchema
    session: SessionSchema


# =============================================================================
# logging.yaml
# =============================================================================


class ConsoleHandlerSchema(_StrictBase):
    enabled: bool


class FileHandlerSchema(_StrictBase):
    enabled: bool
    path: str
    max_bytes: int
    backup_count: int


class HandlersSchema(_StrictBase):
    console: ConsoleHandlerSchema
    file: FileHandlerSchema


class LoggingSchema(_StrictBase):
    level: str
    format: str
    handlers: HandlersSchema


# =============================================================================
# features.yaml
# =============================================================================


class FeaturesSchema(_StrictBase):
    static_files_enabled: bool
    startup_checks_enabled: bool
