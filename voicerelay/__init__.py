"""
Realtime Voice Relay.

- backend/: FastAPI relay between browser clients and the realtime speech API
- client/: Audio pipeline, conversation state and socket client used by the TUI
"""

__version__ = "0.1.0"
