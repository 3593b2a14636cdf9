"""
Tests for the PuffSyncClient facade.
"""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from puff_sync import ChannelStatus, PuffSyncClient, SyncConfig
from puff_sync.credentials import MemoryCredentialStore

from .fakes import GOOD_TOKEN, FakeServer, FakeTransport, wait_until


@pytest.fixture
def config(temp_dir: Path) -> SyncConfig:
    return SyncConfig(
        server_url="ws://fake",
        data_dir=temp_dir,
        sync_interval_s=60,
        run_timeout_s=0.3,
        initial_backoff_ms=10,
        max_backoff_ms=50,
    )


@pytest.fixture
async def client(config: SyncConfig, fake_server: FakeServer) -> AsyncIterator[PuffSyncClient]:
    client = PuffSyncClient.create(
        config,
        credentials=MemoryCredentialStore(GOOD_TOKEN),
        transport_factory=lambda: FakeTransport(fake_server),
    )
    yield client
    await client.stop()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_does_no_io(self, config: SyncConfig):
        client = PuffSyncClient.create(config)

        assert client.channel.status is ChannelStatus.DISCONNECTED
        assert not config.ledger_path.exists()
        assert not config.token_path.exists()

    @pytest.mark.asyncio
    async def test_start_connects_and_syncs_existing_puffs(
        self, client: PuffSyncClient, fake_server: FakeServer
    ):
        await client.ledger.append()
        await client.ledger.append()

        await client.start()
        await wait_until(lambda: client.status().unsynced == 0)

        assert client.status().connection is ChannelStatus.CONNECTED
        assert len(fake_server.puffs) == 2

    @pytest.mark.asyncio
    async def test_context_manager(self, config: SyncConfig, fake_server: FakeServer):
        async with PuffSyncClient.create(
            config,
            credentials=MemoryCredentialStore(GOOD_TOKEN),
            transport_factory=lambda: FakeTransport(fake_server),
        ) as client:
            assert client.channel.is_connected

        assert client.channel.status is ChannelStatus.DISCONNECTED


class TestRecording:
    @pytest.mark.asyncio
    async def test_record_while_connected_syncs(self, client: PuffSyncClient, fake_server: FakeServer):
        await client.start(auto_sync=False)

        event = await client.record_puff()
        await wait_until(lambda: event.synced)

        assert event.id in fake_server.puffs

    @pytest.mark.asyncio
    async def test_record_offline_keeps_puff(self, config: SyncConfig, fake_server: FakeServer):
        client = PuffSyncClient.create(
            config,
            credentials=MemoryCredentialStore(),
            transport_factory=lambda: FakeTransport(fake_server),
        )
        await client.start()
        try:
            await client.record_puff()
            status = client.status()

            assert status.connection is ChannelStatus.DISCONNECTED
            assert status.unsynced == 1
            assert status.today_count == 1
        finally:
            await client.stop()

    @pytest.mark.asyncio
    async def test_sync_now_reports_result(self, client: PuffSyncClient):
        await client.start(auto_sync=False)
        client.config.sync_on_record = False
        await client.record_puff()

        result = await client.sync_now()

        assert result.sent == 1
        assert client.status().last_sync is result

    @pytest.mark.asyncio
    async def test_reset(self, client: PuffSyncClient):
        await client.start(auto_sync=False)
        await client.record_puff()

        await client.reset()

        assert client.status().today_count == 0

    @pytest.mark.asyncio
    async def test_stats_use_configured_limit(self, client: PuffSyncClient):
        """Goal progress is measured against the configured daily limit."""
        client.config.daily_puff_limit = 4
        client.config.sync_on_record = False
        for _ in range(2):
            await client.record_puff()

        progress = client.stats().goal_progress

        assert progress.percentage == 50
        assert progress.status == "Halfway"


class TestAccount:
    @pytest.mark.asyncio
    async def test_is_logged_in(self, client: PuffSyncClient):
        assert await client.is_logged_in() is True

        await client.logout()

        assert await client.is_logged_in() is False
        assert client.channel.status is ChannelStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logout_with_reset(self, client: PuffSyncClient):
        await client.start(auto_sync=False)
        client.config.sync_on_record = False
        await client.record_puff()

        await client.logout(reset_ledger=True)

        assert len(client.ledger) == 0

    @pytest.mark.asyncio
    async def test_auth_failure_surfaces_in_status(self, client: PuffSyncClient, fake_server: FakeServer):
        await client.start(auto_sync=False)

        fake_server.current.push("error", {"message": "User does not exist"})
        await wait_until(lambda: client.channel.status is ChannelStatus.AUTH_FAILED)

        status = client.status()
        assert status.has_error
        assert status.error == "User does not exist"
        assert await client.is_logged_in() is False


class TestSocial:
    @pytest.mark.asyncio
    async def test_social_events_are_emitted(self, client: PuffSyncClient, fake_server: FakeServer):
        await client.start(auto_sync=False)

        assert await client.add_friend("u2") is True
        assert await client.accept_request("r1") is True
        assert await client.decline_request("r2") is True

        assert fake_server.received == [
            {"event": "addFriend", "data": {"friendId": "u2"}},
            {"event": "acceptRequest", "data": {"requestId": "r1"}},
            {"event": "declineRequest", "data": {"requestId": "r2"}},
        ]

    @pytest.mark.asyncio
    async def test_social_events_dropped_when_offline(self, client: PuffSyncClient):
        assert await client.add_friend("u2") is False
