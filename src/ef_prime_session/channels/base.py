"""
Base Response Channel

Abstract sink for the events a pairing session reports back to its caller.
Transports (HTTP, WebSocket) provide concrete channels.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ChannelEvent:
    """Event names a session can emit"""
    STATUS = "status"
    PAIRING_CODE = "pairing-code"
    SUCCESS = "success"
    ERROR = "error"

    TERMINAL = (SUCCESS, ERROR)


class ResponseChannel(ABC):
    """
    Base class for response channels.

    A channel receives named events with a JSON-serializable payload. It may
    outlive the transport it writes to, so emit() implementations should
    tolerate a closed connection.
    """

    def __init__(self, channel_id: str):
        self.channel_id = channel_id

    @abstractmethod
    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver one event to the caller"""
        pass

    async def status(self, message: str) -> None:
        await self.emit(ChannelEvent.STATUS, {"message": message})

    async def pairing_code(self, code: str) -> None:
        await self.emit(ChannelEvent.PAIRING_CODE, {"code": code})

    async def success(self, message: str) -> None:
        await self.emit(ChannelEvent.SUCCESS, {"message": message})

    async def error(self, message: str) -> None:
        await self.emit(ChannelEvent.ERROR, {"message": message})


@dataclass
class RecordedEvent:
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)


class CollectingChannel(ResponseChannel):
    """
    Channel that records events in memory.

    Used by request/response transports, which read the outcome once the
    pairing call returns.
    """

    def __init__(self, channel_id: str = "http"):
        super().__init__(channel_id)
        self.events: List[RecordedEvent] = []

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append(RecordedEvent(event, dict(payload)))

    def last(self, event: str) -> Optional[RecordedEvent]:
        for recorded in reversed(self.events):
            if recorded.event == event:
                return recorded
        return None

    @property
    def error_message(self) -> Optional[str]:
        recorded = self.last(ChannelEvent.ERROR)
        return recorded.payload.get("message") if recorded else None

    @property
    def names(self) -> List[str]:
        return [recorded.event for recorded in self.events]
