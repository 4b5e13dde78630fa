"""
pyaileys Adapter

ProtocolClient over pyaileys.WhatsAppClient. pyaileys reports a close as a
bare connection update carrying an exception (or nothing, when it restarts
on its own), so the adapter records the stanzas that explain a close and
turns them into DisconnectReason codes.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pyaileys import WhatsAppClient
from pyaileys.exceptions import AuthError, HandshakeError, TransportError
from pyaileys.socket_config import SocketConfig

from .client import CONNECTION_UPDATE, ClientOptions, ConnectionUpdate, DisconnectReason
from .link_code import LinkCodePairing

logger = logging.getLogger(__name__)


STREAM_ERROR_TEXT = re.compile(r"stream error (\d+)")


def _child_tag(stanza: Any) -> Optional[str]:
    content = getattr(stanza, "content", None)
    if isinstance(content, list) and content:
        return getattr(content[0], "tag", None)
    return None


def stream_error_code(stanza: Any) -> int:
    """Status code carried by a stream:error or failure stanza."""
    attrs = getattr(stanza, "attrs", {}) or {}
    raw = attrs.get("code") or attrs.get("reason")
    if raw and raw.isdigit():
        return int(raw)
    if _child_tag(stanza) == "conflict":
        return DisconnectReason.CONNECTION_REPLACED
    return DisconnectReason.BAD_SESSION


def exception_code(error: BaseException) -> int:
    """Status code for the exception pyaileys closed the socket with."""
    if isinstance(error, TransportError):
        match = STREAM_ERROR_TEXT.search(str(error))
        if match:
            return int(match.group(1))
        return DisconnectReason.CONNECTION_CLOSED
    if isinstance(error, (HandshakeError, AuthError)):
        return DisconnectReason.BAD_SESSION
    return DisconnectReason.CONNECTION_LOST


class PyaileysClient:
    """
    ProtocolClient backed by pyaileys.WhatsAppClient.

    Credentials live in the workspace folder as a multi-file auth store
    (creds.json plus key files), which pyaileys loads and saves itself.
    """

    def __init__(self, client: Any, auth_state: Any, options: ClientOptions):
        self._client = client
        self._auth_state = auth_state
        self.options = options
        self._listeners: List[Tuple[str, Callable]] = []
        self._detached = False

        self._stream_error: Optional[int] = None
        self._close_code: Optional[int] = None
        self._paired = False

        self._link_code = LinkCodePairing(client.socket, auth_state.creds, options.browser)

        self._subscribe("stanza.stream:error", self._record_stream_error)
        self._subscribe("stanza.failure", self._record_stream_error)
        self._subscribe("stanza.notification", self._link_code.handle_notification)
        # Registered ahead of any lifecycle handler so the close code is ready
        self._subscribe(CONNECTION_UPDATE, self._track_connection)

    @property
    def registered(self) -> bool:
        return bool(getattr(self._auth_state.creds, "registered", False))

    def on(self, event: str, handler: Callable[[Any], Awaitable[None]]) -> None:
        async def dispatch(payload: Any) -> None:
            if self._detached:
                return
            if event == CONNECTION_UPDATE:
                payload = self._translate_update(payload)
            await handler(payload)

        self._subscribe(event, dispatch)

    def _subscribe(self, event: str, listener: Callable) -> None:
        self._listeners.append((event, listener))
        self._client.on(event, listener)

    def remove_all_listeners(self) -> None:
        self._detached = True
        events = self._client.socket.events
        for event, listener in self._listeners:
            events.off(event, listener)
        self._listeners.clear()

    async def connect(self) -> None:
        await self._client.connect()

    async def save_creds(self) -> None:
        await self._auth_state.save_creds()

    async def request_pairing_code(self, phone_number: str) -> str:
        return await self._link_code.request(phone_number)

    async def send_message(self, jid: str, content: Dict[str, Any]) -> Any:
        return await self._client.send_text(jid, content["text"])

    async def end(self) -> None:
        self.remove_all_listeners()
        await self._client.disconnect()

    async def _record_stream_error(self, stanza: Any) -> None:
        self._stream_error = stream_error_code(stanza)
        logger.debug(f"Server reported stream error {self._stream_error}")

    async def _track_connection(self, update: Any) -> None:
        if getattr(update, "is_new_login", None):
            self._paired = True
        elif getattr(update, "connection", None) == "open":
            self._paired = False
        if getattr(update, "connection", None) == "close":
            self._close_code = self._close_status(getattr(update, "last_disconnect", None))
            self._stream_error = None

    def _close_status(self, last_disconnect: Optional[BaseException]) -> Optional[int]:
        if self._stream_error is not None:
            return self._stream_error
        if last_disconnect is not None:
            return exception_code(last_disconnect)
        # pyaileys restarts the socket without an error after pair-success
        if self._paired:
            return DisconnectReason.RESTART_REQUIRED
        return None

    def _translate_update(self, update: Any) -> ConnectionUpdate:
        """Convert a pyaileys ConnectionUpdate into ours."""
        connection = getattr(update, "connection", None)
        last_disconnect = getattr(update, "last_disconnect", None)
        return ConnectionUpdate(
            connection=connection,
            status_code=self._close_code if connection == "close" else None,
            error=str(last_disconnect) if last_disconnect else None,
            qr=getattr(update, "qr", None),
        )


def socket_config(options: ClientOptions) -> SocketConfig:
    """pyaileys socket settings for the configured browser identity and version."""
    config = SocketConfig(browser=(options.browser[0], options.browser[1]))
    if options.version:
        config.version = tuple(options.version)
    return config


async def open_client(options: ClientOptions) -> PyaileysClient:
    client, auth_state = await WhatsAppClient.from_auth_folder(
        str(options.workspace), socket=socket_config(options)
    )
    return PyaileysClient(client, auth_state, options)
