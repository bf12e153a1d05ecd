# Pydantic schemas package
from voicerelay.backend.schemas.base import (
    ErrorDetail,
    ErrorResponse,
    ResponseMetadata,
)
from voicerelay.backend.schemas.events import (
    ConversationItemCreateEvent,
    ErrorEvent,
    ResponseCreateEvent,
)

__all__ = [
    "ConversationItemCreateEvent",
    "ErrorDetail",
    "ErrorEvent",
    "ErrorResponse",
    "ResponseCreateEvent",
    "ResponseMetadata",
]
