"""
Health Check Endpoints.

Provides liveness, readiness, and detailed health checks.

Endpoints:
- /health: Liveness check (process running)
- /health/ready: Readiness check (upstream credentials and URL configured)
- /health/detailed: Application info, upstream settings, active sessions
"""

from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter

from voicerelay.backend.core.config import get_app_config, get_settings, get_upstream_url
from voicerelay.backend.core.exceptions import ServiceUnavailableError
from voicerelay.backend.core.logging import get_logger
from voicerelay.backend.core.utils import utc_now
from voicerelay.backend.services.relay import active_session_count

router = APIRouter()
logger = get_logger(__name__)


def check_api_key() -> dict[str, Any]:
    """Check that the upstream API key is configured."""
    if get_settings().openai_api_key:
        return {"status": "healthy"}
    return {"status": "unhealthy", "error": "OPENAI_API_KEY is not configured"}


def check_upstream_url() -> dict[str, Any]:
    """Check that the upstream URL is a websocket URL."""
    url = get_upstream_url()
    scheme = urlparse(url).scheme
    if scheme in ("ws", "wss"):
        return {"status": "healthy", "url": url}
    return {"status": "unhealthy", "error": f"Unsupported upstream scheme: {scheme or 'none'}"}


def run_checks() -> dict[str, dict[str, Any]]:
    return {
        "api_key": check_api_key(),
        "upstream_url": check_upstream_url(),
    }


@router.get("/health")
async def health_check() -> dict[str, str]:
    """
    Liveness check.

    Returns 200 if the process is running. No dependency checks.
    """
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check() -> dict[str, Any]:
    """
    Readiness check.

    Returns 503 if the relay could not open an upstream socket because
    of missing or invalid configuration. Does not contact the upstream API.
    """
    checks = run_checks()
    unhealthy = [name for name, check in checks.items() if check["status"] != "healthy"]

    if unhealthy:
        logger.warning("Readiness check failed", extra={"unhealthy": unhealthy})
        raise ServiceUnavailableError(
            "Relay is not ready",
            details={"checks": checks, "timestamp": utc_now().isoformat()},
        )

    return {
        "status": "healthy",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health_check() -> dict[str, Any]:
    """Detailed health check for debugging."""
    app_config = get_app_config()
    app_settings = app_config.application
    realtime = app_config.realtime

    checks = run_checks()
    overall = "healthy" if all(c["status"] == "healthy" for c in checks.values()) else "unhealthy"

    return {
        "status": overall,
        "application": {
            "name": app_settings.name,
            "env": app_settings.environment,
            "debug": app_settings.debug,
            "version": app_settings.version,
        },
        "upstream": {
            "url": get_upstream_url(),
            "beta_header": realtime.upstream.beta_header,
            "open_timeout_seconds": realtime.upstream.open_timeout_seconds,
        },
        "client_socket_path": realtime.client.path,
        "active_sessions": active_session_count(),
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }
