"""
Configuration.

Two sources, both rooted at the directory holding the .project_root marker:

    config/.env               OPENAI_API_KEY (the process environment wins)
    config/settings/*.yaml    everything else, one schema per file

    application.yaml   identity, HTTP server, CORS, static client page
    realtime.yaml      upstream realtime API, client socket, session defaults
    logging.yaml       level, format, handlers
    features.yaml      feature flags
"""

from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import yaml
from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from voicerelay.backend.core.config_schema import (
    ApplicationSchema,
    FeaturesSchema,
    LoggingSchema,
    RealtimeSchema,
)

PROJECT_MARKER = ".project_root"

# AppConfig attribute -> (schema, file under config/settings/)
SECTIONS: dict[str, tuple[type[BaseModel], str]] = {
    "application": (ApplicationSchema, "application.yaml"),
    "realtime": (RealtimeSchema, "realtime.yaml"),
    "logging": (LoggingSchema, "logging.yaml"),
    "features": (FeaturesSchema, "features.yaml"),
}


def find_project_root() -> Path:
    """Walk up from the working directory to the .project_root marker."""
    for directory in (Path.cwd(), *Path.cwd().parents):
        if (directory / PROJECT_MARKER).exists():
            return directory
    raise RuntimeError("Project root not found. Ensure .project_root file exists.")


def load_yaml_config(filename: str) -> dict[str, Any]:
    """
    Read one file from config/settings/.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    config_path = find_project_root() / "config" / "settings" / filename
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


class Settings(BaseSettings):
    """Secrets. Only the upstream API key today."""

    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


def _load_validated(schema_cls: type[BaseModel], filename: str) -> Any:
    raw = load_yaml_config(filename)
    try:
        return schema_cls(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {filename}:\n{e}") from e


class AppConfig:
    """
    All YAML settings, validated once at construction.

    Raises:
        FileNotFoundError: If a settings file is missing
        ValueError: If a settings file does not match its schema
    """

    application: ApplicationSchema
    realtime: RealtimeSchema
    logging: LoggingSchema
    features: FeaturesSchema

    def __init__(self) -> None:
        for name, (schema_cls, filename) in SECTIONS.items():
            setattr(self, name, _load_validated(schema_cls, filename))


@lru_cache
def get_settings() -> Settings:
    """Secrets, with config/.env applied when it exists."""
    env_path = find_project_root() / "config" / ".env"
    if env_path.is_file():
        return Settings(_env_file=str(env_path))
    return Settings()


@lru_cache
def get_app_config() -> AppConfig:
    return AppConfig()


def get_upstream_url() -> str:
    """Upstream socket URL: base_url with the model as a query parameter."""
    upstream = get_app_config().realtime.upstream
    return f"{upstream.base_url}?{urlencode({'model': upstream.model})}"


def get_server_base_url() -> tuple[str, float]:
    """
    HTTP base URL of the relay server, for clients probing /health.

    Returns:
        Tuple of (base_url, timeout_seconds).
    """
    app_config = get_app_config()
    server = app_config.application.server
    timeout = float(app_config.realtime.upstream.open_timeout_seconds)
    return f"http://{server.host}:{server.port}", timeout
