"""
Unit Tests for the Realtime Relay Service.

Both sockets are replaced by in-memory stand-ins; the relay's frame
copying, error events and shutdown are exercised end to end.
"""

import asyncio
import json

import pytest
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from voicerelay.backend.core.exceptions import InvalidClientMessageError, UpstreamConnectionError
from voicerelay.backend.services.relay import (
    UPSTREAM_FAILURE_MESSAGE,
    RealtimeRelay,
    active_session_count,
    decode_client_frame,
    decode_upstream_frame,
)

RESPONSE_CREATE = '{"type": "response.create", "response": {"modalities": ["text", "audio"]}}'


def text_frame(text):
    return {"type": "websocket.receive", "text": text}


def bytes_frame(data):
    return {"type": "websocket.receive", "bytes": data}


DISCONNECT = {"type": "websocket.disconnect", "code": 1000}


async def run_relay(relay: RealtimeRelay) -> None:
    await asyncio.wait_for(relay.run(), timeout=2)


# =============================================================================
# Frame decoding
# =============================================================================


class TestDecodeClientFrame:
    """Tests for decode_client_frame."""

    def test_text_frame_is_forwarded_unchanged(self):
        text = '{ "type" : "response.create" }'

        payload, event = decode_client_frame(text, None)

        assert payload == text
        assert event == {"type": "response.create"}

    def test_binary_frame_is_decoded_as_utf8(self):
        payload, event = decode_client_frame(None, b'{"type": "error"}')

        assert payload == '{"type": "error"}'
        assert event["type"] == "error"

    def test_non_object_json_is_accepted(self):
        payload, event = decode_client_frame("[1, 2]", None)
        assert event == [1, 2]

    def test_invalid_json_raises(self):
        with pytest.raises(InvalidClientMessageError) as exc_info:
            decode_client_frame("not json", None)

        assert exc_info.value.message == "Invalid JSON format sent to server."
        assert exc_info.value.reason

    def test_invalid_utf8_raises(self):
        with pytest.raises(InvalidClientMessageError):
            decode_client_frame(None, b"\xff\xfe")

    def test_empty_frame_raises(self):
        with pytest.raises(InvalidClientMessageError, match="Invalid JSON"):
            decode_client_frame(None, None)


class TestDecodeUpstreamFrame:
    """Tests for decode_upstream_frame."""

    def test_text_passes_through(self):
        assert decode_upstream_frame('{"type": "x"}') == '{"type": "x"}'

    def test_bytes_become_text(self):
        assert decode_upstream_frame(b'{"type": "x"}') == '{"type": "x"}'

    def test_invalid_bytes_are_replaced(self):
        assert decode_upstream_frame(b"\xff") == "�"


# =============================================================================
# Relay sessions
# =============================================================================


class TestClientToUpstream:
    """Frames flowing from the client socket to the realtime API."""

    @pytest.mark.asyncio
    async def test_forwards_text_verbatim(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory()
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([text_frame(RESPONSE_CREATE), DISCONNECT])

        relay = RealtimeRelay(client, mock_connector)
        await run_relay(relay)

        assert upstream.sent == [RESPONSE_CREATE]
        assert relay.frames_from_client == 1

    @pytest.mark.asyncio
    async def test_forwards_binary_as_text(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory()
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([bytes_frame(RESPONSE_CREATE.encode()), DISCONNECT])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert upstream.sent == [RESPONSE_CREATE]

    @pytest.mark.asyncio
    async def test_preserves_order(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory()
        mock_connector.connect.return_value = upstream
        frames = [json.dumps({"type": "conversation.item.create", "n": i}) for i in range(5)]
        client = client_socket_factory([text_frame(f) for f in frames] + [DISCONNECT])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert upstream.sent == frames

    @pytest.mark.asyncio
    async def test_invalid_json_answered_with_error_and_session_continues(
        self, client_socket_factory, mock_connector, fake_upstream_factory
    ):
        upstream = fake_upstream_factory()
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([text_frame("not json"), text_frame(RESPONSE_CREATE), DISCONNECT])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert upstream.sent == [RESPONSE_CREATE]
        assert len(client.sent) == 1
        error = json.loads(client.sent[0])
        assert error["type"] == "error"
        assert error["error"]["message"] == "Invalid JSON format sent to server."
        assert error["error"]["details"]

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory()
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([DISCONNECT])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert upstream.closed is True

    @pytest.mark.asyncio
    async def test_send_error_reported_to_client(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory(send_fails_with=ConnectionClosedError(None, None))
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([text_frame(RESPONSE_CREATE)])

        relay = RealtimeRelay(client, mock_connector)
        await run_relay(relay)

        assert len(client.sent) == 1
        error = json.loads(client.sent[0])
        assert error["type"] == "error"
        assert error["error"]["message"] == UPSTREAM_FAILURE_MESSAGE
        assert error["error"]["details"]
        assert relay.frames_from_client == 0
        assert client.closed is True
        assert upstream.closed is True

    @pytest.mark.asyncio
    async def test_send_after_normal_close_ends_quietly(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory(send_fails_with=ConnectionClosedOK(None, None))
        mock_connector.connect.return_value = upstream
        client = client_socket_factory([text_frame(RESPONSE_CREATE)])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert client.sent == []
        assert client.closed is True


class TestUpstreamToClient:
    """Frames flowing from the realtime API to the client socket."""

    @pytest.mark.asyncio
    async def test_forwards_frames_as_text(self, client_socket_factory, mock_connector, fake_upstream_factory, sample_events):
        frames = [
            json.dumps(sample_events["audio_delta"]),
            json.dumps(sample_events["audio_done"]).encode(),
        ]
        upstream = fake_upstream_factory(frames=frames, close_after_frames=True)
        mock_connector.connect.return_value = upstream
        client = client_socket_factory()

        relay = RealtimeRelay(client, mock_connector)
        await run_relay(relay)

        assert client.sent == [frames[0], frames[1].decode()]
        assert relay.frames_from_upstream == 2

    @pytest.mark.asyncio
    async def test_upstream_close_closes_client(self, client_socket_factory, mock_connector, fake_upstream_factory):
        mock_connector.connect.return_value = fake_upstream_factory(close_after_frames=True)
        client = client_socket_factory()

        await run_relay(RealtimeRelay(client, mock_connector))

        assert client.closed is True
        assert client.sent == []

    @pytest.mark.asyncio
    async def test_upstream_error_reported_to_client(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory(
            frames=['{"type": "session.created"}'],
            fail_with=ConnectionClosedError(None, None),
        )
        mock_connector.connect.return_value = upstream
        client = client_socket_factory()

        await run_relay(RealtimeRelay(client, mock_connector))

        assert client.sent[0] == '{"type": "session.created"}'
        error = json.loads(client.sent[1])
        assert error["error"]["message"] == UPSTREAM_FAILURE_MESSAGE
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_stops_when_client_gone(self, client_socket_factory, mock_connector, fake_upstream_factory):
        upstream = fake_upstream_factory(frames=['{"type": "a"}', '{"type": "b"}'])
        mock_connector.connect.return_value = upstream
        client = client_socket_factory()
        client.application_state = WebSocketState.DISCONNECTED

        relay = RealtimeRelay(client, mock_connector)
        await run_relay(relay)

        assert client.sent == []
        assert relay.frames_from_upstream == 0
        assert upstream.closed is True


class TestUpstreamConnectFailure:
    """Upstream socket that never opens."""

    @pytest.mark.asyncio
    async def test_sends_error_event_and_closes_client(self, client_socket_factory, mock_connector):
        mock_connector.connect.side_effect = UpstreamConnectionError(details="connection refused")
        client = client_socket_factory([text_frame(RESPONSE_CREATE)])

        await run_relay(RealtimeRelay(client, mock_connector))

        assert len(client.sent) == 1
        error = json.loads(client.sent[0])
        assert error == {
            "type": "error",
            "error": {
                "message": "Failed to connect to OpenAI Realtime API.",
                "details": "connection refused",
            },
        }
        assert client.closed is True


class TestSessionTracking:
    """Tests for active session bookkeeping."""

    @pytest.mark.asyncio
    async def test_session_counted_while_running(self, client_socket_factory, mock_connector, fake_upstream_factory):
        seen = []

        async def connect():
            seen.append(active_session_count())
            return fake_upstream_factory(close_after_frames=True)

        mock_connector.connect.side_effect = connect
        baseline = active_session_count()

        await run_relay(RealtimeRelay(client_socket_factory(), mock_connector, session_id="abc"))

        assert seen == [baseline + 1]
        assert active_session_count() == baseline

    def test_generates_session_id(self, client_socket_factory, mock_connector):
        first = RealtimeRelay(client_socket_factory(), mock_connector)
        second = RealtimeRelay(client_socket_factory(), mock_connector)

        assert len(first.session_id) == 12
        assert first.session_id != second.session_id
