"""
Pairing Request Dispatcher

Entry point the transports call. Owns the session registry, the lifecycle
controller, and the janitor, and ties sessions to transport connections so a
disconnect cancels them.
"""

import logging
from typing import Any, Dict, Optional

from ..channels.base import ResponseChannel
from ..channels.whatsapp.client import ClientFactory, create_pyaileys_client
from ..config.schema import GatewayConfig
from ..integrations.paste import PasteClient
from .janitor import SessionJanitor
from .lifecycle import PairingLifecycle, validate_phone_number
from .session import PairingSession, SessionRegistry

logger = logging.getLogger(__name__)


class PairingDispatcher:
    """
    Maps inbound pairing requests onto isolated lifecycle runs.

    Usage:
        dispatcher = PairingDispatcher(config)
        await dispatcher.start()
        session = await dispatcher.request_pairing("15551234567", channel)
        ...
        await dispatcher.shutdown()
    """

    def __init__(
        self,
        config: GatewayConfig,
        client_factory: Optional[ClientFactory] = None,
        paste_client: Optional[PasteClient] = None,
    ):
        self.config = config
        self.registry = SessionRegistry(config.sessions_root)
        self.paste_client = paste_client or PasteClient(config.paste)
        self.lifecycle = PairingLifecycle(
            config,
            self.registry,
            client_factory or create_pyaileys_client,
            self.paste_client,
        )
        self.janitor = SessionJanitor(
            self.lifecycle,
            self.registry,
            max_age_seconds=config.sessions.max_age_seconds,
            interval_seconds=config.sessions.sweep_interval_seconds,
        )

    @property
    def active_sessions(self) -> int:
        return len(self.registry)

    async def start(self) -> None:
        """Prepare the sessions root and start the janitor"""
        self.registry.ensure_root()
        self.janitor.start()
        logger.info(f"Pairing dispatcher ready (sessions root: {self.registry.root})")

    async def request_pairing(
        self,
        phone_number: Any,
        channel: ResponseChannel,
        connection_id: Optional[str] = None,
    ) -> PairingSession:
        """
        Validate and start a new pairing session.

        Raises:
            InvalidInput: Bad phone number
            WorkspaceError: Workspace could not be allocated
        """
        digits = validate_phone_number(phone_number)
        return await self.lifecycle.start_pairing(digits, channel, connection_id=connection_id)

    def get_status(self, session_id: str) -> Dict[str, str]:
        session = self.registry.get(session_id)
        if session is None:
            return {"status": "not_found"}
        return {"status": session.status()}

    async def disconnect(self, connection_id: str) -> int:
        """Release every session still tied to a closed transport connection"""
        sessions = self.registry.for_connection(connection_id)
        for session in sessions:
            logger.info(f"Connection {connection_id} closed, releasing session {session.id}")
            await self.lifecycle.release(session)
        return len(sessions)

    async def release_all(self) -> int:
        sessions = list(self.registry)
        for session in sessions:
            try:
                await self.lifecycle.release(session)
            except Exception as e:
                logger.error(f"Error during shutdown of session {session.id}: {e}")
        return len(sessions)

    async def shutdown(self) -> None:
        """Stop the janitor and force-terminate every tracked session"""
        await self.janitor.stop()
        released = await self.release_all()
        await self.paste_client.close()
        logger.info(f"Pairing dispatcher shut down ({released} sessions released)")
