"""
Realtime Relay Service.

Pairs one client WebSocket with one upstream realtime API socket for the
lifetime of a session and copies frames between them.

Rules:
- Client frames must be JSON. Valid frames are forwarded verbatim as text;
  invalid ones are answered with an ``error`` event and dropped.
- Upstream frames are forwarded to the client as text.
- Upstream failure sends the client one ``error`` event and closes it.
- Either side closing closes the other. Nothing is retried or buffered.
"""

import asyncio
import json
from typing import Any

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from voicerelay.backend.core.exceptions import (
    InvalidClientMessageError,
    UpstreamConnectionError,
)
from voicerelay.backend.core.logging import get_logger, log_with_source
from voicerelay.backend.core.utils import new_session_id
from voicerelay.backend.schemas.events import ErrorEvent, event_type
from voicerelay.backend.services.upstream import UpstreamConnector

logger = get_logger(__name__)

UPSTREAM_FAILURE_MESSAGE = UpstreamConnectionError().message

_active_sessions: set[str] = set()


def active_session_count() -> int:
    """Number of relay sessions currently paired."""
    return len(_active_sessions)


def decode_client_frame(text: str | None, data: bytes | None) -> tuple[str, Any]:
    """
    Validate a client frame.

    Text frames are forwarded unchanged. Binary frames are decoded as UTF-8.

    Returns:
        Tuple of (text to forward upstream, decoded event)

    Raises:
        InvalidClientMessageError: If the frame is not a JSON document
    """
    if text is None:
        if data is None:
            raise InvalidClientMessageError("Empty frame")
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidClientMessageError(str(e)) from e

    try:
        event = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidClientMessageError(str(e)) from e
    return text, event


def decode_upstream_frame(message: str | bytes) -> str:
    """Upstream frames always reach the client as text."""
    if isinstance(message, bytes):
        return message.decode("utf-8", errors="replace")
    return message


class RealtimeRelay:
    """
    One relay session: a client socket paired with an upstream socket.

    The client socket must already be accepted. ``run`` returns once both
    sockets are closed.
    """

    def __init__(
        self,
        client: WebSocket,
        connector: UpstreamConnector,
        session_id: str | None = None,
    ) -> None:
        self.client = client
        self.connector = connector
        self.session_id = session_id or new_session_id()
        self.upstream: ClientConnection | None = None
        self.frames_from_client = 0
        self.frames_from_upstream = 0

    async def run(self) -> None:
        with structlog.contextvars.bound_contextvars(session_id=self.session_id, source="web"):
            log_with_source(logger, "web", "info", "Client connected")
            _active_sessions.add(self.session_id)
            try:
                await self._run()
            finally:
                _active_sessions.discard(self.session_id)
                log_with_source(
                    logger,
                    "web",
                    "info",
                    "Relay session ended",
                    frames_from_client=self.frames_from_client,
                    frames_from_upstream=self.frames_from_upstream,
                )

    async def _run(self) -> None:
        try:
            self.upstream = await self.connector.connect()
        except UpstreamConnectionError as e:
            log_with_source(
                logger, "upstream", "error", "Upstream connection failed", details=e.details,
            )
            await self.send_error(e.message, e.details)
            await self.close_client()
            return

        upstream = self.upstream
        client_task = asyncio.create_task(self._pump_client(upstream), name=f"relay-client-{self.session_id}")
        upstream_task = asyncio.create_task(self._pump_upstream(upstream), name=f"relay-upstream-{self.session_id}")

        try:
            done, pending = await asyncio.wait(
                {client_task, upstream_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                # Surface unexpected pump failures in the log, not to the client.
                exc = task.exception()
                if exc is not None:
                    logger.error(
                        "Relay pump failed",
                        extra={"task": task.get_name(), "error_type": type(exc).__name__, "error": str(exc)},
                    )
        finally:
            await self.close_upstream()
            await self.close_client()

    async def _pump_client(self, upstream: ClientConnection) -> None:
        """Client -> upstream until the client disconnects or upstream goes away."""
        while True:
            message = await self.client.receive()
            if message["type"] == "websocket.disconnect":
                log_with_source(
                    logger, "web", "info", "Client disconnected", code=message.get("code"),
                )
                return

            try:
                payload, event = decode_client_frame(message.get("text"), message.get("bytes"))
            except InvalidClientMessageError as e:
                log_with_source(
                    logger, "web", "warning", "Error parsing message from client", details=e.reason,
                )
                await self.send_error(e.message, e.reason)
                continue

            try:
                await upstream.send(payload)
            except ConnectionClosedError as e:
                await self._report_upstream_error(e)
                return
            except ConnectionClosed:
                log_with_source(logger, "upstream", "info", "Realtime API connection closed")
                return
            self.frames_from_client += 1
            logger.debug("Forwarded client event", extra={"event_type": event_type(event)})

    async def _pump_upstream(self, upstream: ClientConnection) -> None:
        """Upstream -> client until upstream closes or the client goes away."""
        try:
            async for message in upstream:
                if not await self.send_to_client(decode_upstream_frame(message)):
                    return
                self.frames_from_upstream += 1
        except ConnectionClosedError as e:
            await self._report_upstream_error(e)
            return
        log_with_source(logger, "upstream", "info", "Realtime API connection closed")

    async def _report_upstream_error(self, error: ConnectionClosedError) -> None:
        log_with_source(logger, "upstream", "error", "Realtime API socket error", error=str(error))
        await self.send_error(UPSTREAM_FAILURE_MESSAGE, str(error))

    async def send_to_client(self, text: str) -> bool:
        """Send text to the client. Returns False once the client is gone."""
        if self.client.application_state != WebSocketState.CONNECTED:
            return False
        try:
            await self.client.send_text(text)
        except (WebSocketDisconnect, RuntimeError, OSError):
            return False
        return True

    async def send_error(self, message: str, details: str | None = None) -> bool:
        return await self.send_to_client(ErrorEvent.build(message, details).to_json())

    async def close_client(self) -> None:
        if (
            self.client.application_state == WebSocketState.CONNECTED
            and self.client.client_state == WebSocketState.CONNECTED
        ):
            try:
                await self.client.close()
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug("Client already gone on close", extra={"error_type": type(e).__name__})

    async def close_upstream(self) -> None:
        if self.upstream is not None:
            await self.upstream.close()
