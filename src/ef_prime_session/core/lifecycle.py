"""
Pairing Session Lifecycle

Drives one protocol client per session from creation through pairing-code
issuance to connection open/close, exports the credentials on success, sends
the derived session id to the user, and releases everything on every exit
path.

State machine:

    created --(code requested)--> code_requested
    created | code_requested --(open)--> connected
    created | code_requested --(close, suppressed reason)--> closed
    created | code_requested --(close, other reason)--> failed
    connected --(export + delivery ok)--> completed
    connected --(export or delivery error)--> failed

Any forced release of a live session (janitor, disconnect, shutdown) moves
it to closed.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from ..channels.base import ChannelEvent, ResponseChannel
from ..channels.whatsapp.client import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    ClientFactory,
    ClientOptions,
    ConnectionUpdate,
    user_jid,
)
from ..config.schema import GatewayConfig
from ..integrations.paste import PasteClient, paste_id_from_url
from ..errors import (
    ConnectionClosedError,
    DeliveryError,
    ExportError,
    GatewayError,
    InvalidInput,
    PairingCodeError,
)
from .messages import format_pairing_code, make_session_identifier, render_instructions
from .session import PairingSession, SessionRegistry, SessionState

logger = logging.getLogger(__name__)


PHONE_NUMBER_PATTERN = re.compile(r"[0-9]+")

_TRANSITIONS = {
    SessionState.CREATED: {
        SessionState.CODE_REQUESTED,
        SessionState.CONNECTED,
        SessionState.CLOSED,
        SessionState.FAILED,
    },
    SessionState.CODE_REQUESTED: {
        SessionState.CONNECTED,
        SessionState.CLOSED,
        SessionState.FAILED,
    },
    SessionState.CONNECTED: {
        SessionState.COMPLETED,
        SessionState.CLOSED,
        SessionState.FAILED,
    },
    SessionState.COMPLETED: set(),
    SessionState.FAILED: set(),
    SessionState.CLOSED: set(),
}


def validate_phone_number(phone_number: Any) -> str:
    """
    Return the phone number if it is a non-empty string of ASCII digits.

    Raises:
        InvalidInput: For anything else
    """
    if not isinstance(phone_number, str) or not PHONE_NUMBER_PATTERN.fullmatch(phone_number):
        raise InvalidInput("Phone number must contain digits only (country code included)")
    return phone_number


class PairingLifecycle:
    """
    Session lifecycle controller.

    One instance serves every session in the process; per-session state lives
    on the PairingSession and in the channel map, never on the controller.
    """

    def __init__(
        self,
        config: GatewayConfig,
        registry: SessionRegistry,
        client_factory: ClientFactory,
        paste_client: PasteClient,
    ):
        self.config = config
        self.registry = registry
        self.client_factory = client_factory
        self.paste_client = paste_client
        self._channels: Dict[str, ResponseChannel] = {}

        self.suppressed_close_reasons = set(config.sessions.suppressed_close_reasons)
        self.transient_close_reasons = set(config.sessions.transient_close_reasons)

    # =========================================================================
    # START
    # =========================================================================

    async def start_pairing(
        self,
        phone_number: str,
        channel: ResponseChannel,
        connection_id: Optional[str] = None,
    ) -> PairingSession:
        """
        Start a pairing session and return once the pairing code is out.

        Raises:
            InvalidInput: Phone number is not digits-only; nothing is created
            WorkspaceError: Workspace allocation failed; nothing is registered

        Every later failure is reported on the channel and ends the session;
        the returned session is then already released.
        """
        digits = validate_phone_number(phone_number)

        self.registry.ensure_root()
        session_id = self.registry.allocate_id(connection_id)
        workspace = self.registry.create_workspace(session_id)

        session = PairingSession(
            id=session_id,
            phone_number=digits,
            workspace_path=workspace,
            connection_id=connection_id,
        )
        self.registry.add(session)
        self._channels[session.id] = channel
        logger.info(f"Started pairing session {session.id}")

        await self._emit(session, ChannelEvent.STATUS, {"message": "initializing"})

        try:
            client = await self.client_factory(self._client_options(session))
        except Exception as e:
            logger.exception(f"Session {session.id}: protocol client creation failed")
            await self._fail_and_release(
                session,
                ConnectionClosedError(f"Failed to initialize WhatsApp client: {e}", "init_failed"),
            )
            return session

        if session.released:
            # Cancelled while the client was being created
            await self._end_client(session.id, client)
            return session

        session.client = client
        client.on(CREDS_UPDATE, self._creds_handler(session))
        client.on(CONNECTION_UPDATE, self._connection_handler(session))

        try:
            await client.connect()
        except Exception as e:
            logger.error(f"Session {session.id}: connect failed: {e}")
            await self._fail_and_release(
                session, ConnectionClosedError(f"Failed to connect to WhatsApp: {e}", "connect_failed")
            )
            return session

        if session.released or session.is_terminal:
            return session

        if client.registered:
            logger.info(f"Session {session.id}: credentials already registered, awaiting connection")
            return session

        await self._request_pairing_code(session)
        return session

    def _client_options(self, session: PairingSession) -> ClientOptions:
        return ClientOptions(
            workspace=session.workspace_path,
            browser=tuple(self.config.browser),
            version=self.config.client_version,
            print_qr_in_terminal=False,
            log_level="silent",
        )

    async def _request_pairing_code(self, session: PairingSession) -> None:
        await self._emit(session, ChannelEvent.STATUS, {"message": "requesting pairing code"})
        self._transition(session, SessionState.CODE_REQUESTED)

        # Give the client's socket time to settle before asking for a code
        await asyncio.sleep(self.config.sessions.pairing_code_delay_seconds)
        if session.released or session.is_terminal or session.client is None:
            return

        try:
            raw_code = await session.client.request_pairing_code(session.phone_number)
            if not raw_code:
                raise PairingCodeError("WhatsApp returned an empty pairing code")
        except PairingCodeError as e:
            await self._fail_and_release(session, e)
            return
        except Exception as e:
            logger.error(f"Session {session.id}: pairing code request failed: {e}")
            await self._fail_and_release(session, PairingCodeError(f"Failed to get pairing code: {e}"))
            return

        if session.released:
            return

        code = format_pairing_code(raw_code)
        session.set_pairing_code(code)
        logger.info(f"Session {session.id}: pairing code issued")
        await self._emit(session, ChannelEvent.PAIRING_CODE, {"code": code})

    # =========================================================================
    # EVENT HANDLERS
    # =========================================================================

    def _creds_handler(self, session: PairingSession):
        async def on_creds_update(_creds: Any) -> None:
            if session.released or session.client is None:
                return
            try:
                await session.client.save_creds()
            except Exception as e:
                logger.error(f"Session {session.id}: failed to persist credentials: {e}")

        return on_creds_update

    def _connection_handler(self, session: PairingSession):
        async def on_connection_update(update: ConnectionUpdate) -> None:
            try:
                await self.handle_connection_update(session, update)
            except Exception:
                logger.exception(f"Session {session.id}: unhandled error in connection update")
                await self.release(session)

        return on_connection_update

    async def handle_connection_update(self, session: PairingSession, update: ConnectionUpdate) -> None:
        """Apply one connection.update event to the session's state machine."""
        if session.released or session.is_terminal:
            logger.debug(f"Session {session.id}: ignoring {update.connection!r} in state {session.state.value}")
            return

        if update.connection == "open":
            if session.state not in (SessionState.CREATED, SessionState.CODE_REQUESTED):
                logger.debug(f"Session {session.id}: duplicate open in state {session.state.value}")
                return
            self._transition(session, SessionState.CONNECTED)
            logger.info(f"Session {session.id} connected successfully")
            # The client awaits this handler from its receive loop, which must
            # keep running for the outgoing messages to be acknowledged
            session.export_task = asyncio.create_task(
                self._export_and_deliver(session), name=f"export-{session.id}"
            )

        elif update.connection == "close":
            if session.state == SessionState.CONNECTED:
                # Export in progress; its own error handling reports failures
                logger.debug(f"Session {session.id}: close during export ({update.reason})")
                return

            reason = update.reason
            if reason in self.transient_close_reasons:
                logger.info(f"Session {session.id}: connection closed ({reason}), client will reconnect")
                return
            if reason in self.suppressed_close_reasons:
                logger.info(f"Session {session.id}: connection closed ({reason}), ending quietly")
                self._transition(session, SessionState.CLOSED)
                await self.release(session)
            else:
                logger.warning(f"Session {session.id}: connection closed unexpectedly ({reason})")
                await self._fail_and_release(
                    session, ConnectionClosedError(f"Connection closed: {reason}", reason)
                )

        else:
            logger.debug(f"Session {session.id}: connection update {update.connection!r}")

    # =========================================================================
    # EXPORT + DELIVERY
    # =========================================================================

    async def _export_and_deliver(self, session: PairingSession) -> None:
        try:
            if self.config.sessions.export_delay_seconds > 0:
                await asyncio.sleep(self.config.sessions.export_delay_seconds)
            if session.released:
                return

            identifier = await self._export_credentials(session)
            session.session_identifier = identifier
            await self._deliver(session, identifier)

            self._transition(session, SessionState.COMPLETED)
            logger.info(f"Session {session.id}: session id delivered")
            await self._emit(
                session,
                ChannelEvent.SUCCESS,
                {"message": "Session ID sent to your WhatsApp. Check your messages!"},
            )

            # Keep the session visible as paired for a short while
            if self.config.sessions.completion_grace_seconds > 0:
                await asyncio.sleep(self.config.sessions.completion_grace_seconds)

        except GatewayError as e:
            await self._fail(session, e)
        except Exception as e:
            logger.exception(f"Session {session.id}: unexpected export failure")
            await self._fail(session, ExportError(f"Failed to export session: {e}"))
        finally:
            await self.release(session)

    async def _export_credentials(self, session: PairingSession) -> str:
        """Upload creds.json and return the product-prefixed session identifier."""
        if session.client is not None:
            try:
                await session.client.save_creds()
            except Exception as e:
                raise ExportError(f"Failed to persist credentials: {e}") from e

        try:
            raw = await asyncio.to_thread(session.creds_path.read_text, encoding="utf-8")
            creds = json.loads(raw)
        except FileNotFoundError as e:
            raise ExportError("No credentials found for this session") from e
        except (OSError, ValueError) as e:
            raise ExportError(f"Failed to read credentials: {e}") from e

        product = self.config.product_tag
        paste = self.config.paste
        url = await self.paste_client.create_paste(
            json.dumps(creds, indent=2),
            title=f"{product} Session Credentials",
            format=paste.format,
            visibility=paste.visibility,
            expiration=paste.expiration,
        )
        return make_session_identifier(product, paste_id_from_url(url))

    async def _deliver(self, session: PairingSession, identifier: str) -> None:
        """Send the bare id, then the instructions, to the user's own account."""
        client = session.client
        if client is None:
            raise DeliveryError("WhatsApp client is no longer available")

        jid = user_jid(session.phone_number)
        instructions = render_instructions(self.config.product_tag, identifier)
        try:
            await client.send_message(jid, {"text": identifier})
            await client.send_message(jid, {"text": instructions})
        except Exception as e:
            raise DeliveryError(f"Failed to send session ID to WhatsApp: {e}") from e

    # =========================================================================
    # TERMINATION
    # =========================================================================

    async def expire(self, session: PairingSession) -> None:
        """Force-end a session that outlived its time budget."""
        await self._emit(session, ChannelEvent.ERROR, {"message": "Pairing session timed out"})
        await self.release(session)

    async def release(self, session: PairingSession) -> None:
        """
        Release everything a session owns. Idempotent.

        Ends the client, detaches its handlers, removes the workspace, and
        deregisters the session. Secondary errors are logged, never raised.
        """
        first_release = not session.released
        session.released = True

        if not session.is_terminal:
            self._transition(session, SessionState.CLOSED)

        task = session.export_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        client, session.client = session.client, None
        if client is not None:
            await self._end_client(session.id, client)

        self.registry.remove_workspace(session.workspace_path)

        if self.registry.get(session.id) is session:
            self.registry.remove(session.id)
        self._channels.pop(session.id, None)

        if first_release:
            logger.info(f"Released session {session.id} ({session.state.value})")

    async def _end_client(self, session_id: str, client: Any) -> None:
        try:
            client.remove_all_listeners()
        except Exception as e:
            logger.warning(f"Session {session_id}: error detaching listeners: {e}")
        try:
            await client.end()
        except Exception as e:
            logger.warning(f"Session {session_id}: error ending client: {e}")

    async def _fail(self, session: PairingSession, error: GatewayError) -> None:
        session.error = error.message
        if not session.is_terminal:
            self._transition(session, SessionState.FAILED)
        logger.error(f"Session {session.id} failed ({error.code}): {error.message}")
        await self._emit(session, ChannelEvent.ERROR, {"message": error.message})

    async def _fail_and_release(self, session: PairingSession, error: GatewayError) -> None:
        try:
            await self._fail(session, error)
        finally:
            await self.release(session)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _transition(self, session: PairingSession, new_state: SessionState) -> bool:
        if new_state not in _TRANSITIONS[session.state]:
            logger.warning(
                f"Session {session.id}: ignoring transition {session.state.value} -> {new_state.value}"
            )
            return False
        logger.debug(f"Session {session.id}: {session.state.value} -> {new_state.value}")
        session.state = new_state
        return True

    async def _emit(self, session: PairingSession, event: str, payload: Dict[str, Any]) -> None:
        """Send an event to the session's caller; transport errors are logged."""
        if event in ChannelEvent.TERMINAL:
            if session.outcome is not None:
                return
            session.outcome = event

        channel = self._channels.get(session.id)
        if channel is None:
            return
        try:
            await channel.emit(event, payload)
        except Exception as e:
            logger.warning(f"Session {session.id}: could not deliver {event!r} event: {e}")
