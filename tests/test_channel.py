"""
Tests for the session channel lifecycle, error handling and dispatch.
"""

import asyncio

import pytest

from puff_sync.channel import ChannelStatus, SessionChannel
from puff_sync.credentials import MemoryCredentialStore
from puff_sync.exceptions import AuthenticationError, ChannelClosedError, ChannelNotConnectedError

from .fakes import GOOD_TOKEN, FakeServer, FakeTransport, wait_until


def _make_channel(server: FakeServer, credentials: MemoryCredentialStore, **kwargs) -> SessionChannel:
    return SessionChannel(
        "ws://fake",
        credentials,
        lambda: FakeTransport(server),
        initial_backoff_ms=10,
        max_backoff_ms=50,
        **kwargs,
    )


class TestConnect:
    """Tests for connection lifecycle."""

    @pytest.mark.asyncio
    async def test_connect_with_stored_token(self, channel: SessionChannel, fake_server: FakeServer):
        status = await channel.connect()

        assert status is ChannelStatus.CONNECTED
        assert channel.is_connected
        assert fake_server.current.token == GOOD_TOKEN

    @pytest.mark.asyncio
    async def test_no_token_stays_disconnected(self, fake_server: FakeServer):
        """Without credentials the channel never opens a connection."""
        channel = _make_channel(fake_server, MemoryCredentialStore())

        assert await channel.connect() is ChannelStatus.DISCONNECTED
        assert fake_server.open_attempts == 0

    @pytest.mark.asyncio
    async def test_connect_with_fresh_token_saves_it(self, fake_server: FakeServer):
        credentials = MemoryCredentialStore()
        channel = _make_channel(fake_server, credentials)
        try:
            assert await channel.connect(GOOD_TOKEN) is ChannelStatus.CONNECTED
            assert await credentials.load() == GOOD_TOKEN
        finally:
            await channel.disconnect()

    @pytest.mark.asyncio
    async def test_connect_is_noop_when_connected(self, channel: SessionChannel, fake_server: FakeServer):
        await channel.connect()
        await channel.connect()

        assert fake_server.open_attempts == 1

    @pytest.mark.asyncio
    async def test_status_listeners(self, channel: SessionChannel):
        seen: list[ChannelStatus] = []
        channel.status_listeners.append(seen.append)

        await channel.connect()
        await channel.disconnect()

        assert seen == [ChannelStatus.CONNECTING, ChannelStatus.CONNECTED, ChannelStatus.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_disconnect_keeps_credentials(self, channel: SessionChannel, credentials: MemoryCredentialStore):
        await channel.connect()
        await channel.disconnect()

        assert channel.status is ChannelStatus.DISCONNECTED
        assert await credentials.load() == GOOD_TOKEN

    @pytest.mark.asyncio
    async def test_logout_forgets_everything(self, channel: SessionChannel, credentials: MemoryCredentialStore):
        await channel.connect()
        channel.snapshot = object()

        await channel.logout()

        assert channel.status is ChannelStatus.DISCONNECTED
        assert channel.snapshot is None
        assert await credentials.load() is None


class TestReconnect:
    """Transient failures retry without touching credentials."""

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self, channel: SessionChannel, fake_server: FakeServer):
        await channel.connect()
        first = fake_server.current

        first.drop()
        await wait_until(lambda: len(fake_server.transports) == 2 and channel.is_connected)

        assert first.closed
        assert fake_server.current is not first

    @pytest.mark.asyncio
    async def test_refused_connection_retries_with_backoff(
        self, channel: SessionChannel, fake_server: FakeServer, credentials: MemoryCredentialStore
    ):
        fake_server.fail_open = 2

        assert await channel.connect() is ChannelStatus.DISCONNECTED
        await wait_until(lambda: channel.is_connected)

        assert fake_server.open_attempts == 3
        assert await credentials.load() == GOOD_TOKEN
        assert not channel.has_error

    @pytest.mark.asyncio
    async def test_persistent_failures_become_visible(self, channel: SessionChannel, fake_server: FakeServer):
        """After repeated failures the UI sees an error, but the channel keeps trying."""
        fake_server.fail_open = 100

        await channel.connect()
        await wait_until(lambda: fake_server.open_attempts >= 3)

        assert channel.has_error
        assert "Unable to reach sync server" in channel.last_error
        assert channel.status is not ChannelStatus.AUTH_FAILED

        fake_server.fail_open = 0
        await wait_until(lambda: channel.is_connected)
        assert not channel.has_error

    @pytest.mark.asyncio
    async def test_no_reconnect_when_disabled(self, fake_server: FakeServer, credentials: MemoryCredentialStore):
        channel = _make_channel(fake_server, credentials, auto_reconnect=False)
        await channel.connect()

        fake_server.current.drop()
        await wait_until(lambda: channel.status is ChannelStatus.DISCONNECTED)
        await asyncio.sleep(0.05)

        assert fake_server.open_attempts == 1


class TestAuthFailure:
    """Any authentication failure logs the user out and is not retried."""

    @pytest.mark.asyncio
    async def test_rejected_handshake(self, fake_server: FakeServer):
        credentials = MemoryCredentialStore("revoked-token")
        channel = _make_channel(fake_server, credentials)

        assert await channel.connect() is ChannelStatus.AUTH_FAILED
        await asyncio.sleep(0.05)

        assert fake_server.open_attempts == 1
        assert await credentials.load() is None
        assert channel.has_error

    @pytest.mark.asyncio
    async def test_auth_error_event(
        self, channel: SessionChannel, fake_server: FakeServer, credentials: MemoryCredentialStore
    ):
        await channel.connect()

        fake_server.current.push("error", {"message": "Authentication error: user does not exist"})
        await wait_until(lambda: channel.status is ChannelStatus.AUTH_FAILED)
        await asyncio.sleep(0.05)

        assert await credentials.load() is None
        assert fake_server.open_attempts == 1
        assert channel.last_error == "Authentication error: user does not exist"

    @pytest.mark.asyncio
    async def test_auth_error_fails_pending_waiters(self, channel: SessionChannel, fake_server: FakeServer):
        await channel.connect()
        waiter = channel.expect("puffCount")

        fake_server.current.push("error", {"message": "expired", "code": "token_expired"})

        with pytest.raises(AuthenticationError):
            await asyncio.wait_for(waiter, 1)

    @pytest.mark.asyncio
    async def test_transient_error_event_keeps_session(
        self, channel: SessionChannel, fake_server: FakeServer, credentials: MemoryCredentialStore
    ):
        await channel.connect()

        fake_server.current.push("error", {"message": "database timeout"})
        await wait_until(lambda: channel.has_error)

        assert channel.is_connected
        assert channel.last_error == "database timeout"
        assert await credentials.load() == GOOD_TOKEN

    @pytest.mark.asyncio
    async def test_reconnect_after_auth_failure_needs_new_token(self, fake_server: FakeServer):
        credentials = MemoryCredentialStore("revoked-token")
        channel = _make_channel(fake_server, credentials)
        await channel.connect()

        try:
            assert await channel.connect(GOOD_TOKEN) is ChannelStatus.CONNECTED
        finally:
            await channel.disconnect()


class TestEmitAndDispatch:
    @pytest.mark.asyncio
    async def test_emit_when_disconnected_is_dropped(self, channel: SessionChannel, fake_server: FakeServer):
        """Emissions while not connected are dropped, not queued."""
        assert await channel.emit("getPuffCount") is False

        await channel.connect()

        assert fake_server.received == []

    @pytest.mark.asyncio
    async def test_emit_send_failure_returns_false(self, channel: SessionChannel, fake_server: FakeServer):
        await channel.connect()
        fake_server.fail_send = True

        assert await channel.emit("getPuffCount") is False

    @pytest.mark.asyncio
    async def test_handlers_receive_payloads(self, channel: SessionChannel, fake_server: FakeServer):
        received = []

        async def async_handler(data):
            received.append(("async", data))

        channel.on("update", lambda data: received.append(("sync", data)))
        channel.on("update", async_handler)
        await channel.connect()

        fake_server.current.push("update", {"sync": {"user": {"id": "u1", "name": "Sam"}}})
        await wait_until(lambda: len(received) == 2)

        assert channel.snapshot.user.id == "u1"

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_dispatch(self, channel: SessionChannel, fake_server: FakeServer):
        received = []

        def broken(data):
            raise RuntimeError("boom")

        channel.on("puffCount", broken)
        channel.on("puffCount", received.append)
        await channel.connect()

        fake_server.current.push("puffCount", 3)
        await wait_until(lambda: received == [3])

        assert channel.is_connected

    @pytest.mark.asyncio
    async def test_off_removes_handler(self, channel: SessionChannel, fake_server: FakeServer):
        received = []
        channel.on("puffCount", received.append)
        channel.off("puffCount", received.append)
        await channel.connect()

        fake_server.current.push("puffCount", 3)
        await asyncio.sleep(0.02)

        assert received == []

    @pytest.mark.asyncio
    async def test_malformed_messages_are_skipped(self, channel: SessionChannel, fake_server: FakeServer):
        received = []
        channel.on("puffCount", received.append)
        await channel.connect()

        fake_server.current.inbox.put_nowait({"data": "no event"})
        fake_server.current.push("puffCount", 1)
        await wait_until(lambda: received == [1])

    @pytest.mark.asyncio
    async def test_expect_requires_connection(self, channel: SessionChannel):
        with pytest.raises(ChannelNotConnectedError):
            channel.expect("puffCount")

    @pytest.mark.asyncio
    async def test_expect_resolves_with_reply(self, channel: SessionChannel):
        await channel.connect()
        reply = channel.expect("puffCount")

        assert await channel.emit("getPuffCount") is True
        assert await asyncio.wait_for(reply, 1) == 0

    @pytest.mark.asyncio
    async def test_drop_fails_pending_waiters(self, channel: SessionChannel, fake_server: FakeServer):
        await channel.connect()
        waiter = channel.expect("syncedPuffIds")

        fake_server.current.drop()

        with pytest.raises(ChannelClosedError):
            await asyncio.wait_for(waiter, 1)
