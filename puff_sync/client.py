"""
Puff sync client facade.

Constructs the ledger, credential store, channel and reconciler
explicitly and owns their lifecycle. The UI layer talks to this
class only.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

from .auth import AccountClient
from .channel import events
from .channel.channel import SessionChannel, TransportFactory
from .channel.events import AccountSnapshot, ChannelStatus
from .config import SyncConfig, load_config
from .credentials import CredentialStore, FileCredentialStore
from .ledger import PuffEvent, PuffLedger, PuffStats
from .logging_utils import SyncLoggerAdapter
from .reconciler import ReconciliationResult, Reconciler

logger = logging.getLogger(__name__)


@dataclass
class ClientStatus:
    """Everything the UI needs to render sync state."""

    connection: ChannelStatus
    error: str | None
    unsynced: int
    today_count: int
    streak: int
    last_sync: ReconciliationResult | None

    @property
    def has_error(self) -> bool:
        return self.error is not None


class PuffSyncClient:
    """Entry point for applications.

    Example:
        >>> async with PuffSyncClient.create(load_config()) as client:
        ...     await client.record_puff()
        ...     print(client.status())
    """

    def __init__(
        self,
        config: SyncConfig,
        ledger: PuffLedger,
        credentials: CredentialStore,
        channel: SessionChannel,
        reconciler: Reconciler,
        accounts: AccountClient,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.credentials = credentials
        self.channel = channel
        self.reconciler = reconciler
        self.accounts = accounts
        self.log = SyncLoggerAdapter(
            logger, {"server_url": config.server_url, "data_dir": str(config.data_dir)}
        )
        self._background: set[asyncio.Task[Any]] = set()
        self._started = False

    @classmethod
    def create(
        cls,
        config: SyncConfig | None = None,
        credentials: CredentialStore | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> PuffSyncClient:
        """Build a client and all its services. Performs no I/O.

        Args:
            config: Settings. Defaults to load_config()
            credentials: Token store. Defaults to a file in the data dir
            transport_factory: Channel transport override (tests, custom stacks)
        """
        config = config or load_config()
        credentials = credentials or FileCredentialStore(config.token_path)
        ledger = PuffLedger(
            config.ledger_path,
            retention=timedelta(days=config.retention_days),
            tracking_mode=config.tracking_mode,
        )
        channel = SessionChannel.from_config(config, credentials, transport_factory)
        reconciler = Reconciler.from_config(config, ledger, channel)
        accounts = AccountClient(config.http_url, credentials, timeout=config.connect_timeout_s)
        return cls(config, ledger, credentials, channel, reconciler, accounts)

    async def start(self, connect: bool = True, auto_sync: bool = True) -> None:
        """Load the ledger, connect with any stored token, start the timer."""
        if self._started:
            return
        await self.ledger.load()
        if connect:
            status = await self.channel.connect()
            self.log.info(f"Client started: channel {status.value}")
        if auto_sync:
            await self.reconciler.start()
        self._started = True

    async def stop(self) -> None:
        await self.reconciler.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.channel.disconnect()
        self._started = False
        self.log.info("Client stopped")

    async def __aenter__(self) -> PuffSyncClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # -- puffs -------------------------------------------------------------

    async def record_puff(self, timestamp: datetime | None = None) -> PuffEvent:
        """Append a puff and, if configured, start a sync in the background.

        Raises:
            LedgerIOError: If the puff could not be persisted
        """
        event = await self.ledger.append(timestamp)
        if self.config.sync_on_record and self.channel.is_connected:
            self._spawn(self.reconciler.trigger())
        return event

    async def sync_now(self) -> ReconciliationResult:
        return await self.reconciler.trigger()

    async def reset(self) -> None:
        """Delete all local puffs."""
        await self.ledger.reset()

    def stats(self, tz: tzinfo = UTC) -> PuffStats:
        return PuffStats(self.ledger.events, tz=tz, settings=self.config.user_settings)

    def status(self, tz: tzinfo = UTC) -> ClientStatus:
        stats = self.stats(tz)
        return ClientStatus(
            connection=self.channel.status,
            error=self.channel.last_error,
            unsynced=len(self.ledger.unsynced_suffix()),
            today_count=stats.today_count,
            streak=stats.streak,
            last_sync=self.reconciler.last_result,
        )

    # -- account -----------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> ChannelStatus:
        token = await self.accounts.register(name, email, password)
        return await self.channel.connect(token)

    async def login(self, email: str, password: str) -> ChannelStatus:
        token = await self.accounts.login(email, password)
        return await self.channel.connect(token)

    async def logout(self, reset_ledger: bool = False) -> None:
        await self.channel.logout()
        if reset_ledger:
            await self.ledger.reset()

    async def is_logged_in(self) -> bool:
        return await self.credentials.load() is not None

    @property
    def snapshot(self) -> AccountSnapshot | None:
        return self.channel.snapshot

    # -- social ------------------------------------------------------------

    async def add_friend(self, friend_id: str) -> bool:
        return await self.channel.emit(events.ADD_FRIEND, {"friendId": friend_id})

    async def accept_request(self, request_id: str) -> bool:
        return await self.channel.emit(events.ACCEPT_REQUEST, {"requestId": request_id})

    async def decline_request(self, request_id: str) -> bool:
        return await self.channel.emit(events.DECLINE_REQUEST, {"requestId": request_id})

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
