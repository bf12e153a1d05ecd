"""
Realtime Event Schemas.

The event vocabulary is dictated by the upstream realtime API. The relay
forwards events without looking inside them; these models only describe
the events that this project constructs itself.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

RESPONSE_CREATE = "response.create"
CONVERSATION_ITEM_CREATE = "conversation.item.create"
CONVERSATION_ITEM_CREATED = "conversation.item.created"
RESPONSE_AUDIO_DELTA = "response.audio.delta"
RESPONSE_AUDIO_DONE = "response.audio.done"
RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
ERROR = "error"

DEFAULT_MODALITIES = ["text", "audio"]


class ErrorBody(BaseModel):
    message: str
    details: str | None = None


class ErrorEvent(BaseModel):
    """The single error event surfaced to clients."""

    type: Literal["error"] = ERROR
    error: ErrorBody

    @classmethod
    def build(cls, message: str, details: str | None = None) -> "ErrorEvent":
        return cls(error=ErrorBody(message=message, details=details))

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ResponseOptions(BaseModel):
    modalities: list[str] = Field(default_factory=lambda: list(DEFAULT_MODALITIES))
    voice: str | None = None
    instructions: str | None = None


class ResponseCreateEvent(BaseModel):
    """Asks the upstream API to produce a response."""

    type: Literal["response.create"] = RESPONSE_CREATE
    response: ResponseOptions = Field(default_factory=ResponseOptions)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class InputAudioContent(BaseModel):
    type: Literal["input_audio"] = "input_audio"
    audio: str


class UserAudioItem(BaseModel):
    type: Literal["message"] = "message"
    role: Literal["user"] = "user"
    content: list[InputAudioContent]


class ConversationItemCreateEvent(BaseModel):
    """Adds a user audio message to the upstream conversation."""

    type: Literal["conversation.item.create"] = CONVERSATION_ITEM_CREATE
    item: UserAudioItem

    @classmethod
    def from_audio(cls, audio_b64: str) -> "ConversationItemCreateEvent":
        return cls(item=UserAudioItem(content=[InputAudioContent(audio=audio_b64)]))

    def to_json(self) -> str:
        return self.model_dump_json()


def event_type(event: Any) -> str | None:
    """Return the ``type`` field of a decoded event, if it has one."""
    if isinstance(event, dict):
        value = event.get("type")
        return value if isinstance(value, str) else None
    return None
