"""
Shared test configuration and fixtures.
"""

from __future__ import annotations

import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from puff_sync.channel import SessionChannel
from puff_sync.credentials import MemoryCredentialStore
from puff_sync.ledger import PuffLedger
from puff_sync.reconciler import Reconciler

from .fakes import GOOD_TOKEN, FakeServer, FakeTransport


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def ledger(temp_dir: Path) -> PuffLedger:
    """A loaded, empty ledger."""
    ledger = PuffLedger(temp_dir / "puffs.jsonl")
    await ledger.load()
    return ledger


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def credentials() -> MemoryCredentialStore:
    return MemoryCredentialStore(GOOD_TOKEN)


@pytest.fixture
async def channel(fake_server: FakeServer, credentials: MemoryCredentialStore) -> AsyncIterator[SessionChannel]:
    """A channel using the fake transport, not yet connected."""
    channel = SessionChannel(
        "ws://fake",
        credentials,
        lambda: FakeTransport(fake_server),
        initial_backoff_ms=10,
        max_backoff_ms=50,
    )
    yield channel
    await channel.disconnect()


@pytest.fixture
async def reconciler(ledger: PuffLedger, channel: SessionChannel) -> AsyncIterator[Reconciler]:
    reconciler = Reconciler(ledger, channel, interval_s=0.05, run_timeout_s=0.3)
    yield reconciler
    await reconciler.stop()
