"""
Upstream Realtime API Connector.

Opens the outbound WebSocket to the realtime speech API. One connector
call produces one socket; there is no pooling and no retry.
"""

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from voicerelay.backend.core.config import get_app_config, get_settings, get_upstream_url
from voicerelay.backend.core.exceptions import UpstreamConnectionError
from voicerelay.backend.core.logging import get_logger, log_with_source

logger = get_logger(__name__)


def build_upstream_headers(api_key: str, beta_header: str) -> dict[str, str]:
    """Headers required by the realtime API handshake."""
    return {
        "Authorization": f"Bearer {api_key}",
        "OpenAI-Beta": beta_header,
    }


class UpstreamConnector:
    """
    Factory for upstream realtime API sockets.

    Usage:
        connector = UpstreamConnector.from_config()
        upstream = await connector.connect()
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        beta_header: str = "realtime=v1",
        open_timeout: float = 10.0,
        close_timeout: float = 5.0,
        max_size: int | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.beta_header = beta_header
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.max_size = max_size

    @classmethod
    def from_config(cls) -> "UpstreamConnector":
        """Build a connector from realtime.yaml and the OPENAI_API_KEY secret."""
        upstream = get_app_config().realtime.upstream
        return cls(
            url=get_upstream_url(),
            api_key=get_settings().openai_api_key,
            beta_header=upstream.beta_header,
            open_timeout=upstream.open_timeout_seconds,
            close_timeout=upstream.close_timeout_seconds,
            max_size=upstream.max_message_bytes,
        )

    async def connect(self) -> ClientConnection:
        """
        Open the upstream socket.

        Raises:
            UpstreamConnectionError: If the key is missing or the handshake fails
        """
        if not self.api_key:
            raise UpstreamConnectionError(details="OPENAI_API_KEY is not configured")

        log_with_source(logger, "upstream", "debug", "Opening upstream socket", url=self.url)

        try:
            upstream = await connect(
                self.url,
                additional_headers=build_upstream_headers(self.api_key, self.beta_header),
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                max_size=self.max_size,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise UpstreamConnectionError(details=str(e) or type(e).__name__) from e

        log_with_source(logger, "upstream", "info", "Connected to realtime API", url=self.url)
        return upstream
