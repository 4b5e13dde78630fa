"""
Transport channels.

- ResponseChannel: abstract sink for session events
- CollectingChannel: in-memory channel for request/response transports
- PairingWebServer: FastAPI server (HTTP endpoints + WebSocket stream)
"""

from .base import ChannelEvent, ResponseChannel, CollectingChannel

__all__ = [
    "ChannelEvent",
    "ResponseChannel",
    "CollectingChannel",
]
