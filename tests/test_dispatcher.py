"""
Test Pairing Dispatcher

Tests for request routing, status lookup, disconnect and shutdown.
"""

import pytest

from ef_prime_session.channels.base import CollectingChannel
from ef_prime_session.channels.whatsapp.client import CONNECTION_UPDATE, ConnectionUpdate
from ef_prime_session.core.session import SessionState
from ef_prime_session.errors import InvalidInput


class TestPairingDispatcher:
    """Tests for PairingDispatcher"""

    @pytest.mark.asyncio
    async def test_invalid_phone_rejected_up_front(self, dispatcher, factory, channel):
        """Validation runs before any session exists"""
        with pytest.raises(InvalidInput):
            await dispatcher.request_pairing("not-a-number", channel)

        assert factory.clients == []
        assert dispatcher.active_sessions == 0

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, dispatcher, factory, channel):
        """Status moves from waiting to not_found once delivered"""
        assert dispatcher.get_status("session_0_missing") == {"status": "not_found"}

        session = await dispatcher.request_pairing("15551234567", channel)
        assert dispatcher.get_status(session.id) == {"status": "waiting"}

        await factory.last.fire(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))
        await session.export_task

        assert session.state == SessionState.COMPLETED
        assert dispatcher.get_status(session.id) == {"status": "not_found"}

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, dispatcher, factory):
        """One session failing leaves the other untouched"""
        first_channel, second_channel = CollectingChannel(), CollectingChannel()
        first = await dispatcher.request_pairing("111", first_channel)
        second = await dispatcher.request_pairing("222", second_channel)

        await factory.clients[0].fire(CONNECTION_UPDATE, ConnectionUpdate(connection="close", status_code=428))

        assert first.state == SessionState.FAILED
        assert second.state == SessionState.CODE_REQUESTED
        assert second.workspace_path.is_dir()
        assert second_channel.error_message is None
        assert dispatcher.active_sessions == 1

    @pytest.mark.asyncio
    async def test_disconnect_releases_connection_sessions(self, dispatcher, factory):
        """Disconnect releases only that connection's sessions"""
        mine = await dispatcher.request_pairing("111", CollectingChannel(), connection_id="conn1")
        other = await dispatcher.request_pairing("222", CollectingChannel(), connection_id="conn2")

        released = await dispatcher.disconnect("conn1")

        assert released == 1
        assert mine.released and mine.state == SessionState.CLOSED
        assert not mine.workspace_path.exists()
        assert not other.released
        assert factory.clients[0].ended == 1

    @pytest.mark.asyncio
    async def test_shutdown_releases_everything(self, dispatcher, factory):
        """Shutdown stops the janitor and releases every session"""
        await dispatcher.start()
        sessions = [
            await dispatcher.request_pairing(phone, CollectingChannel())
            for phone in ("111", "222", "333")
        ]

        await dispatcher.shutdown()

        assert dispatcher.active_sessions == 0
        assert not dispatcher.janitor.is_running
        assert all(s.released for s in sessions)
        assert all(client.ended == 1 for client in factory.clients)
        assert list(dispatcher.registry.root.iterdir()) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
