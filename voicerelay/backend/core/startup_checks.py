"""
Startup Validation.

Checks configuration invariants before the application accepts traffic.
If any check fails, the application refuses to start with a clear error
message.

Called during FastAPI lifespan initialization.
"""

from urllib.parse import urlparse

from voicerelay.backend.core.config import get_app_config, get_settings, get_upstream_url
from voicerelay.backend.core.logging import get_logger

logger = get_logger(__name__)


class StartupCheckError(RuntimeError):
    """Raised when a startup check fails."""


def run_startup_checks() -> None:
    """
    Validate configuration invariants at startup.

    Raises:
        StartupCheckError: If any check fails
    """
    app_config = get_app_config()
    settings = get_settings()
    environment = app_config.application.environment
    is_production = environment == "production"

    errors: list[str] = []

    _check_upstream(errors)
    _check_api_key(settings, is_production, errors)
    _check_production_safety(app_config, is_production, errors)

    if errors:
        for error in errors:
            logger.error("Startup check failed", extra={"check": error})
        raise StartupCheckError(
            f"Startup blocked: {len(errors)} check(s) failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    logger.info(
        "Startup checks passed",
        extra={"environment": environment, "checks_run": 3},
    )


def _check_upstream(errors: list[str]) -> None:
    """The upstream URL must be a websocket URL."""
    scheme = urlparse(get_upstream_url()).scheme
    if scheme not in ("ws", "wss"):
        errors.append(f"realtime upstream base_url must use ws:// or wss://, got '{scheme}'")


def _check_api_key(settings, is_production: bool, errors: list[str]) -> None:
    """Missing key blocks production; elsewhere sessions fail with an error event."""
    if settings.openai_api_key:
        return
    if is_production:
        errors.append("OPENAI_API_KEY is empty")
    else:
        logger.warning("OPENAI_API_KEY is empty, relay sessions will fail")


def _check_production_safety(app_config, is_production: bool, errors: list[str]) -> None:
    """Validate production environment safety constraints."""
    if not is_production:
        return

    app = app_config.application
    if app.debug:
        errors.append("debug is true in production environment")

    if app.docs_enabled:
        errors.append("docs_enabled is true in production environment")

    localhost_origins = [o for o in app.cors.origins if "localhost" in o]
    if localhost_origins:
        errors.append(
            f"CORS origins contain localhost in production: {localhost_origins}"
        )
