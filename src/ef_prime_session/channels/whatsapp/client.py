"""
WhatsApp Protocol Client

Interface the pairing lifecycle consumes. The production implementation is
the pyaileys adapter in pyaileys_client.py, loaded only by the default factory.

Architecture:
    PairingLifecycle <-> ProtocolClient <-> pyaileys <-> WhatsApp Web

The lifecycle never touches pyaileys directly. Tests substitute any object
with the same shape as ProtocolClient.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


CONNECTION_UPDATE = "connection.update"
CREDS_UPDATE = "creds.update"

USER_JID_SUFFIX = "@s.whatsapp.net"


class DisconnectReason(IntEnum):
    """Close status codes reported by the protocol client (Baileys numbering)"""
    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


_REASON_NAMES = {
    DisconnectReason.LOGGED_OUT: "logged_out",
    DisconnectReason.FORBIDDEN: "forbidden",
    DisconnectReason.CONNECTION_LOST: "connection_lost",
    DisconnectReason.MULTIDEVICE_MISMATCH: "multidevice_mismatch",
    DisconnectReason.CONNECTION_CLOSED: "connection_closed",
    DisconnectReason.CONNECTION_REPLACED: "replaced",
    DisconnectReason.BAD_SESSION: "bad_session",
    DisconnectReason.UNAVAILABLE_SERVICE: "unavailable_service",
    DisconnectReason.RESTART_REQUIRED: "restart_required",
}


def reason_name(status_code: Optional[int]) -> str:
    """Map a close status code to a stable reason name."""
    if status_code is None:
        return "unknown"
    try:
        return _REASON_NAMES[DisconnectReason(status_code)]
    except ValueError:
        return f"status_{status_code}"


def user_jid(phone_digits: str) -> str:
    """Personal chat JID for a digits-only phone number."""
    return f"{phone_digits}{USER_JID_SUFFIX}"


@dataclass
class ConnectionUpdate:
    """A connection state change emitted on CONNECTION_UPDATE."""
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    status_code: Optional[int] = None
    error: Optional[str] = None
    qr: Optional[str] = None

    @property
    def reason(self) -> str:
        return reason_name(self.status_code)


@dataclass
class ClientOptions:
    """Options a protocol client is created with."""
    workspace: Path
    browser: Tuple[str, ...] = ("EF-PRIME-MD", "Chrome", "1.0.0")
    version: Optional[List[int]] = None
    print_qr_in_terminal: bool = False
    log_level: str = "silent"
    extra: Dict[str, Any] = field(default_factory=dict)


class ProtocolClient(Protocol):
    """What the lifecycle needs from a WhatsApp protocol client."""

    @property
    def registered(self) -> bool: ...

    def on(self, event: str, handler: Callable[[Any], Awaitable[None]]) -> None: ...

    def remove_all_listeners(self) -> None: ...

    async def connect(self) -> None: ...

    async def save_creds(self) -> None: ...

    async def request_pairing_code(self, phone_number: str) -> str: ...

    async def send_message(self, jid: str, content: Dict[str, Any]) -> Any: ...

    async def end(self) -> None: ...


ClientFactory = Callable[[ClientOptions], Awaitable[ProtocolClient]]


def _silence_library_logger(level: str) -> None:
    """Apply the requested log level to the protocol library's own logger."""
    library_logger = logging.getLogger("pyaileys")
    if level == "silent":
        library_logger.setLevel(logging.CRITICAL + 1)
        library_logger.propagate = False
    else:
        library_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))


async def create_pyaileys_client(options: ClientOptions) -> ProtocolClient:
    """Default ClientFactory: open the multi-file auth store and build a client."""
    from .pyaileys_client import open_client

    _silence_library_logger(options.log_level)

    client = await open_client(options)
    logger.debug(
        f"Created protocol client for {options.workspace} "
        f"(identity={'/'.join(options.browser)})"
    )
    return client
