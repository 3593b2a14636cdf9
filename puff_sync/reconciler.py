"""
Reconciliation of the local ledger with the server.

The reconciler is the only component that flips ledger events to
synced. Each run:
1. Asks the server for its count (and, if supported, its ids)
2. Computes the unsynced delta
3. Emits the delta as one addPuffs batch
4. Marks the confirmed ids synced

At most one run is in flight; every run is bounded by a timeout and
always clears the in-flight guard, so a failed run is simply
retried from scratch on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from .channel import events
from .channel.channel import SessionChannel
from .channel.events import ServerPuffState, parse_synced_ids
from .exceptions import (
    AuthenticationError,
    ChannelError,
    ChannelNotConnectedError,
    LedgerIOError,
    ReconciliationError,
)
from .ledger import PuffEvent, PuffLedger

if TYPE_CHECKING:
    from .config import SyncConfig

logger = logging.getLogger(__name__)


class ReconcilerState(Enum):
    """Current state of the reconciler."""

    IDLE = "idle"
    RUNNING = "running"


class RunOutcome(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class DeltaStrategy(Enum):
    """How the unsynced delta was computed for a run."""

    ID_MATCH = "id_match"
    COUNT_DIFFERENCE = "count_difference"


@dataclass
class ReconciliationResult:
    """Result of one reconciliation run."""

    outcome: RunOutcome
    strategy: DeltaStrategy | None = None
    sent: int = 0
    confirmed: int = 0
    already_known: int = 0
    error: str | None = None
    duration_ms: int = 0
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.outcome is RunOutcome.COMPLETED


@dataclass
class Delta:
    strategy: DeltaStrategy
    to_send: list[PuffEvent]
    already_known: list[PuffEvent] = field(default_factory=list)


def compute_delta(
    unsynced: Sequence[PuffEvent],
    local_total: int,
    server: ServerPuffState,
) -> Delta:
    """Decide which unsynced events to send.

    With server ids, unsynced events the server already holds are
    reported as already_known (their confirmation was lost) and only
    the rest is sent.

    With only a count, the local synced flag wins: the whole unsynced
    suffix is sent and the server drops ids it already has. The count
    difference is only checked for drift, since events logged on other
    devices or deleted server-side make it disagree with the suffix.

    Args:
        unsynced: Ledger events with synced == False, in insertion order
        local_total: Number of events in the ledger
        server: Parsed puffCount reply

    Returns:
        Delta preserving insertion order
    """
    if server.ids is not None:
        known = [e for e in unsynced if e.id in server.ids]
        pending = [e for e in unsynced if e.id not in server.ids]
        return Delta(DeltaStrategy.ID_MATCH, pending, known)

    difference = local_total - server.count
    if difference != len(unsynced):
        logger.info(
            f"Server count drift: local={local_total} server={server.count} "
            f"unsynced={len(unsynced)}; sending full unsynced suffix"
        )
    return Delta(DeltaStrategy.COUNT_DIFFERENCE, list(unsynced))


class Reconciler:
    """Timer-driven reconciliation of ledger and server.

    Example:
        >>> reconciler = Reconciler(ledger, channel, interval_s=10)
        >>> await reconciler.start()   # periodic runs
        >>> result = await reconciler.trigger()   # immediate run
        >>> await reconciler.stop()
    """

    def __init__(
        self,
        ledger: PuffLedger,
        channel: SessionChannel,
        interval_s: float = 10.0,
        run_timeout_s: float = 15.0,
    ) -> None:
        """Initialize the reconciler.

        Args:
            ledger: Ledger to reconcile
            channel: Channel to the sync server
            interval_s: Seconds between timer-driven runs
            run_timeout_s: Hard limit for a single run
        """
        self.ledger = ledger
        self.channel = channel
        self.interval_s = interval_s
        self.run_timeout_s = run_timeout_s

        self._in_flight = False
        self._timer_task: asyncio.Task[None] | None = None
        self.last_result: ReconciliationResult | None = None

        # Confirmations that arrive after their run timed out still count
        channel.on(events.SYNCED_PUFF_IDS, self._on_synced_ids)

    @classmethod
    def from_config(cls, config: SyncConfig, ledger: PuffLedger, channel: SessionChannel) -> Reconciler:
        return cls(ledger, channel, interval_s=config.sync_interval_s, run_timeout_s=config.run_timeout_s)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def state(self) -> ReconcilerState:
        return ReconcilerState.RUNNING if self._in_flight else ReconcilerState.IDLE

    async def trigger(self) -> ReconciliationResult:
        """Run one reconciliation now.

        Returns immediately with a SKIPPED result if a run is already
        in flight. Never raises for channel, ledger or timeout failures;
        those abort the run and are reported in the result.
        """
        if self._in_flight:
            logger.debug("Reconciliation already in flight; skipping")
            return ReconciliationResult(outcome=RunOutcome.SKIPPED)

        self._in_flight = True
        started = time.monotonic()
        result = ReconciliationResult(outcome=RunOutcome.ABORTED)

        try:
            async with asyncio.timeout(self.run_timeout_s):
                await self._run(result)
        except TimeoutError:
            result.error = f"Timed out after {self.run_timeout_s}s"
        except (ChannelError, AuthenticationError, LedgerIOError, ReconciliationError) as e:
            result.error = str(e)
        finally:
            self._in_flight = False

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.finished_at = datetime.now(UTC)
        self.last_result = result

        if result.success:
            if result.sent or result.already_known:
                logger.info(
                    f"Reconciled: sent={result.sent} confirmed={result.confirmed} "
                    f"already_known={result.already_known} ({result.duration_ms}ms)"
                )
        else:
            logger.warning(f"Reconciliation aborted: {result.error}")
        return result

    async def _run(self, result: ReconciliationResult) -> None:
        if not self.ledger.unsynced_suffix():
            result.outcome = RunOutcome.COMPLETED
            return

        if not self.channel.is_connected:
            raise ChannelNotConnectedError(self.channel.status.value)

        server = await self._request_server_state()

        delta = compute_delta(self.ledger.unsynced_suffix(), len(self.ledger), server)
        result.strategy = delta.strategy
        if delta.already_known:
            result.already_known = await self.ledger.mark_synced(e.id for e in delta.already_known)

        if not delta.to_send:
            result.outcome = RunOutcome.COMPLETED
            return

        batch_ids = {e.id for e in delta.to_send}
        confirmation = self.channel.expect(events.SYNCED_PUFF_IDS)
        payload = {"puffs": [e.to_wire() for e in delta.to_send]}
        if not await self.channel.emit(events.ADD_PUFFS, payload):
            confirmation.cancel()
            raise ReconciliationError("emit_batch", "addPuffs was dropped")
        result.sent = len(delta.to_send)

        try:
            confirmed = parse_synced_ids(await confirmation)
        except ValueError as e:
            raise ReconciliationError("confirm", e) from e

        await self.ledger.mark_synced(confirmed)
        result.confirmed = len(confirmed & batch_ids)
        result.outcome = RunOutcome.COMPLETED

    async def _request_server_state(self) -> ServerPuffState:
        reply = self.channel.expect(events.PUFF_COUNT)
        if not await self.channel.emit(events.GET_PUFF_COUNT):
            reply.cancel()
            raise ReconciliationError("request_count", "getPuffCount was dropped")

        try:
            return ServerPuffState.from_payload(await reply)
        except ValueError as e:
            raise ReconciliationError("request_count", e) from e

    async def _on_synced_ids(self, payload: Any) -> None:
        try:
            ids = parse_synced_ids(payload)
        except ValueError as e:
            logger.warning(f"Ignoring malformed syncedPuffIds: {e}")
            return

        try:
            await self.ledger.mark_synced(ids)
        except LedgerIOError as e:
            logger.error(f"Could not mark confirmed puffs synced: {e}")

    async def start(self) -> None:
        """Start periodic reconciliation, beginning with an immediate run."""
        if self._timer_task is not None:
            return

        async def timer_loop() -> None:
            while True:
                try:
                    await self.trigger()
                except Exception:
                    logger.exception("Unexpected reconciliation failure")
                await asyncio.sleep(self.interval_s)

        self._timer_task = asyncio.create_task(timer_loop())
        logger.info(f"Reconciler started (interval={self.interval_s}s)")

    async def stop(self) -> None:
        """Stop periodic reconciliation."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
            logger.info("Reconciler stopped")
