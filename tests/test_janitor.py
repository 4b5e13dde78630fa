"""
Test Session Janitor
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from ef_prime_session.channels.base import ChannelEvent, CollectingChannel
from ef_prime_session.core.janitor import SessionJanitor
from ef_prime_session.core.session import SessionState


class TestSessionJanitor:
    """Tests for SessionJanitor.sweep and the background loop"""

    @pytest.mark.asyncio
    async def test_sweep_expires_stale_sessions(self, dispatcher, channel):
        """Sessions older than max age are expired with a timeout"""
        session = await dispatcher.request_pairing("15551234567", channel)

        later = datetime.now(timezone.utc) + timedelta(minutes=11)
        evicted = await dispatcher.janitor.sweep(now=later)

        assert evicted == 1
        assert channel.error_message == "Pairing session timed out"
        assert session.state == SessionState.CLOSED
        assert not session.workspace_path.exists()
        assert dispatcher.active_sessions == 0

    @pytest.mark.asyncio
    async def test_sweep_keeps_fresh_sessions(self, dispatcher, channel):
        """Young sessions survive a sweep"""
        session = await dispatcher.request_pairing("15551234567", channel)

        assert await dispatcher.janitor.sweep() == 0
        assert dispatcher.registry.get(session.id) is session
        assert ChannelEvent.ERROR not in channel.names

    @pytest.mark.asyncio
    async def test_sweep_continues_after_errors(self, dispatcher):
        """One failing expiry does not stop the sweep"""
        first = await dispatcher.request_pairing("111", CollectingChannel())
        second = await dispatcher.request_pairing("222", CollectingChannel())

        original_expire = dispatcher.lifecycle.expire

        async def flaky_expire(session):
            if session is first:
                raise RuntimeError("boom")
            await original_expire(session)

        dispatcher.lifecycle.expire = flaky_expire
        later = datetime.now(timezone.utc) + timedelta(hours=1)

        assert await dispatcher.janitor.sweep(now=later) == 1
        assert second.released
        assert not first.released

    @pytest.mark.asyncio
    async def test_background_loop(self, dispatcher):
        """The background loop sweeps until stopped"""
        lifecycle = AsyncMock()
        registry = dispatcher.registry
        janitor = SessionJanitor(lifecycle, registry, max_age_seconds=0, interval_seconds=0.01)

        session = await dispatcher.request_pairing("15551234567", CollectingChannel())
        session.created_at -= timedelta(seconds=5)

        janitor.start()
        assert janitor.is_running
        await asyncio.sleep(0.05)
        await janitor.stop()

        assert not janitor.is_running
        lifecycle.expire.assert_any_await(session)

    @pytest.mark.asyncio
    async def test_stop_propagates_cancellation(self, dispatcher):
        """Cancelling a caller blocked in stop() is not swallowed"""
        stopped = asyncio.Event()

        class SlowJanitor(SessionJanitor):
            async def _run(self):
                try:
                    await asyncio.sleep(3600)
                finally:
                    # Simulate a loop that takes a while to wind down
                    await asyncio.sleep(0.2)
                    stopped.set()

        janitor = SlowJanitor(AsyncMock(), dispatcher.registry, interval_seconds=3600)
        janitor.start()
        await asyncio.sleep(0)

        outer = asyncio.create_task(janitor.stop())
        await asyncio.sleep(0)
        outer.cancel()

        with pytest.raises(asyncio.CancelledError):
            await outer
        assert not janitor.is_running
        await asyncio.wait_for(stopped.wait(), timeout=1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
