"""
Pairing Session Registry

Tracks pairing sessions, their state, and the credential workspace each one
exclusively owns. The registry is the only shared collection in the process;
it is owned by the dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional
import asyncio
import logging
import secrets
import shutil

from ..errors import WorkspaceError

if TYPE_CHECKING:
    from ..channels.whatsapp.client import ProtocolClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle state of a pairing session"""
    CREATED = "created"
    CODE_REQUESTED = "code_requested"
    CONNECTED = "connected"
    COMPLETED = "completed"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CLOSED})


def new_session_id(connection_id: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    Build a session id from the creation time plus the caller's connection id,
    or a random token when there is no connection.
    """
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    suffix = connection_id or secrets.token_hex(4)
    return f"session_{millis}_{suffix}"


@dataclass
class PairingSession:
    """One phone number being paired through one protocol client"""
    id: str
    phone_number: str
    workspace_path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: SessionState = SessionState.CREATED
    client: Optional["ProtocolClient"] = None
    pairing_code: Optional[str] = None
    session_identifier: Optional[str] = None
    connection_id: Optional[str] = None
    error: Optional[str] = None
    # Terminal event already reported to the caller ("success" or "error")
    outcome: Optional[str] = None
    released: bool = False
    # Export, delivery and the completion grace; runs outside the client's event dispatch
    export_task: Optional[asyncio.Task] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_paired(self) -> bool:
        return self.state in (SessionState.CONNECTED, SessionState.COMPLETED)

    @property
    def creds_path(self) -> Path:
        return self.workspace_path / "creds.json"

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.created_at).total_seconds()

    def set_pairing_code(self, code: str) -> None:
        if self.pairing_code is not None:
            raise RuntimeError(f"Pairing code already issued for session {self.id}")
        self.pairing_code = code

    def status(self) -> str:
        """Status string reported by the session-status endpoint"""
        return "paired" if self.is_paired else "waiting"


class SessionRegistry:
    """
    Owns the map of tracked sessions and their workspaces under one root.

    Workspaces live at <root>/<session_id>/ and are never shared.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.sessions: Dict[str, PairingSession] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    def __iter__(self) -> Iterator[PairingSession]:
        return iter(list(self.sessions.values()))

    def ensure_root(self) -> None:
        """Create the sessions root if it doesn't exist"""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create sessions root {self.root}: {e}") from e

    def allocate_id(self, connection_id: Optional[str] = None) -> str:
        """Return a session id not currently tracked"""
        while True:
            session_id = new_session_id(connection_id)
            if session_id not in self.sessions:
                return session_id
            connection_id = None

    def create_workspace(self, session_id: str) -> Path:
        """
        Create the credential workspace for a session.

        Raises:
            WorkspaceError: If the directory can't be created or already exists
        """
        path = self.root / session_id
        try:
            path.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace for session {session_id}: {e}") from e

        logger.debug(f"Created session workspace: {path}")
        return path

    def remove_workspace(self, path: Path) -> bool:
        """Remove a workspace tree. Failures are logged, never raised."""
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed session workspace: {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to remove workspace {path}: {e}")
            return False

    def add(self, session: PairingSession) -> None:
        if session.id in self.sessions:
            raise ValueError(f"Session {session.id} is already tracked")
        self.sessions[session.id] = session

    def get(self, session_id: str) -> Optional[PairingSession]:
        return self.sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[PairingSession]:
        return self.sessions.pop(session_id, None)

    def for_connection(self, connection_id: str) -> List[PairingSession]:
        return [s for s in self.sessions.values() if s.connection_id == connection_id]

    def expired(self, max_age_seconds: float, now: Optional[datetime] = None) -> List[PairingSession]:
        """Non-terminal sessions older than max_age_seconds"""
        now = now or datetime.now(timezone.utc)
        return [
            s for s in self.sessions.values()
            if not s.is_terminal and s.age_seconds(now) > max_age_seconds
        ]
