"""
Test Session Registry

Tests for PairingSession state helpers and SessionRegistry workspace handling.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

from ef_prime_session.core.session import (
    PairingSession,
    SessionRegistry,
    SessionState,
    new_session_id,
)
from ef_prime_session.errors import WorkspaceError


def make_session(registry, session_id="session_1_abc", **kwargs):
    path = registry.create_workspace(session_id)
    session = PairingSession(id=session_id, phone_number="15551234567", workspace_path=path, **kwargs)
    registry.add(session)
    return session


class TestSessionId:
    """Tests for new_session_id"""

    def test_uses_connection_id(self):
        """The connection id becomes the id suffix"""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert new_session_id("abcd", now=now) == f"session_{int(now.timestamp() * 1000)}_abcd"

    def test_random_suffix_without_connection(self):
        """Without a connection the suffix is random"""
        assert new_session_id() != new_session_id()


class TestPairingSession:
    """Tests for PairingSession"""

    def test_status_follows_state(self, tmp_path):
        """Status is waiting until connected, then paired"""
        session = PairingSession(id="s", phone_number="1", workspace_path=tmp_path)
        assert session.status() == "waiting"

        session.state = SessionState.CONNECTED
        assert session.status() == "paired"

        session.state = SessionState.COMPLETED
        assert session.status() == "paired"
        assert session.is_terminal

    def test_pairing_code_set_once(self, tmp_path):
        """The pairing code cannot be replaced"""
        session = PairingSession(id="s", phone_number="1", workspace_path=tmp_path)
        session.set_pairing_code("ABCD-1234")

        with pytest.raises(RuntimeError):
            session.set_pairing_code("EFGH-5678")
        assert session.pairing_code == "ABCD-1234"

    def test_creds_path(self, tmp_path):
        """creds.json lives in the workspace"""
        session = PairingSession(id="s", phone_number="1", workspace_path=tmp_path)
        assert session.creds_path == tmp_path / "creds.json"

    def test_terminal_states(self):
        """Only completed, failed and closed are terminal"""
        assert SessionState.FAILED.is_terminal
        assert SessionState.CLOSED.is_terminal
        assert not SessionState.CODE_REQUESTED.is_terminal


class TestSessionRegistry:
    """Tests for SessionRegistry"""

    def test_workspace_created_under_root(self, tmp_path):
        """Workspaces are created under the sessions root"""
        registry = SessionRegistry(tmp_path / "sessions")
        registry.ensure_root()

        path = registry.create_workspace("session_1_abc")

        assert path == tmp_path / "sessions" / "session_1_abc"
        assert path.is_dir()

    def test_existing_workspace_is_an_error(self, tmp_path):
        """An existing workspace directory is refused"""
        registry = SessionRegistry(tmp_path)
        registry.create_workspace("session_1_abc")

        with pytest.raises(WorkspaceError):
            registry.create_workspace("session_1_abc")

    def test_ensure_root_failure(self, tmp_path):
        """An unusable root raises WorkspaceError"""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        registry = SessionRegistry(blocker / "sessions")

        with pytest.raises(WorkspaceError):
            registry.ensure_root()

    def test_remove_workspace(self, tmp_path):
        """Removing a workspace deletes it and tolerates absence"""
        registry = SessionRegistry(tmp_path)
        path = registry.create_workspace("session_1_abc")
        (path / "creds.json").write_text("{}")

        assert registry.remove_workspace(path) is True
        assert not path.exists()
        assert registry.remove_workspace(path) is True

    def test_add_get_remove(self, tmp_path):
        """Sessions can be added, looked up and removed"""
        registry = SessionRegistry(tmp_path)
        session = make_session(registry)

        assert session.id in registry
        assert registry.get(session.id) is session
        assert len(registry) == 1

        with pytest.raises(ValueError):
            registry.add(session)

        assert registry.remove(session.id) is session
        assert registry.remove(session.id) is None
        assert len(registry) == 0

    def test_iteration_is_a_snapshot(self, tmp_path):
        """Iteration survives removal during the loop"""
        registry = SessionRegistry(tmp_path)
        make_session(registry, "a")
        make_session(registry, "b")

        for session in registry:
            registry.remove(session.id)

        assert len(registry) == 0

    def test_for_connection(self, tmp_path):
        """Sessions are found by connection id"""
        registry = SessionRegistry(tmp_path)
        mine = make_session(registry, "a", connection_id="conn1")
        make_session(registry, "b", connection_id="conn2")

        assert registry.for_connection("conn1") == [mine]

    def test_expired_skips_terminal_sessions(self, tmp_path):
        """Terminal sessions are never reported as expired"""
        registry = SessionRegistry(tmp_path)
        old = datetime.now(timezone.utc) - timedelta(minutes=20)
        stale = make_session(registry, "stale", created_at=old)
        make_session(registry, "done", created_at=old, state=SessionState.COMPLETED)
        make_session(registry, "fresh")

        assert registry.expired(600) == [stale]

    def test_allocate_id_avoids_collisions(self, tmp_path):
        """Allocated ids never repeat a registered id"""
        registry = SessionRegistry(tmp_path)
        taken = make_session(registry, "session_1_conn")

        with patch(
            "ef_prime_session.core.session.new_session_id",
            side_effect=[taken.id, "session_1_f00d"],
        ):
            assert registry.allocate_id("conn") == "session_1_f00d"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
