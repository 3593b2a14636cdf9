"""
Local puff ledger.

The ledger is the device's source of truth: an ordered, persisted
list of puff events. Callers can append and query; only the
reconciler flips events to synced.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta, tzinfo
from pathlib import Path

from ..exceptions import LedgerIOError
from .file_ops import read_jsonl, remove_file, write_jsonl_atomic
from .types import PuffEvent, TrackingMode

logger = logging.getLogger(__name__)


class PuffLedger:
    """Append-only, file-backed store of puff events.

    Events are kept in insertion order in memory and the whole list
    is rewritten atomically to a JSONL file after every mutation.
    Mutations are serialized through an asyncio lock; the ledger is
    meant to be used from a single event loop.

    Example:
        >>> ledger = PuffLedger(Path("~/.pufftrack/puffs.jsonl").expanduser())
        >>> await ledger.load()
        >>> puff = await ledger.append()
        >>> [p.id for p in ledger.unsynced_suffix()]
        [puff.id]
    """

    def __init__(
        self,
        path: Path,
        retention: timedelta = timedelta(days=30),
        tracking_mode: TrackingMode = TrackingMode.VAPING,
    ) -> None:
        """Initialize the ledger.

        Args:
            path: JSONL file holding the events
            retention: Events older than now - retention are pruned on append
            tracking_mode: Default mode stamped on new events
        """
        self.path = Path(path)
        self.retention = retention
        self.tracking_mode = tracking_mode
        self._events: list[PuffEvent] = []
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Load events from disk, replacing the in-memory state.

        Raises:
            LedgerIOError: If the file exists but cannot be read or parsed
        """
        records = await read_jsonl(self.path)
        try:
            events = [PuffEvent.from_dict(r) for r in records]
        except (KeyError, ValueError, TypeError, OverflowError) as e:
            raise LedgerIOError("parse_record", str(self.path), e) from e
        self._events = events
        logger.debug(f"Loaded {len(self._events)} puffs from {self.path}")

    @property
    def events(self) -> list[PuffEvent]:
        """Snapshot of all events in insertion order."""
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    async def append(
        self,
        timestamp: datetime | None = None,
        tracking_mode: TrackingMode | None = None,
    ) -> PuffEvent:
        """Record a new unsynced puff and persist it.

        Events outside the retention window are pruned in the same
        write, so the file and memory change together or not at all.

        Args:
            timestamp: When the puff happened. Defaults to now.
            tracking_mode: Overrides the ledger's default mode

        Returns:
            The new event

        Raises:
            LedgerIOError: If the ledger cannot be written. The event
                is not kept in memory in that case.
        """
        event = PuffEvent(
            timestamp=timestamp or datetime.now(UTC),
            tracking_mode=tracking_mode or self.tracking_mode,
        )

        cutoff = datetime.now(UTC) - self.retention

        async with self._lock:
            previous = self._events
            candidates = [*previous, event]
            self._events = [e for e in candidates if e.timestamp >= cutoff]
            try:
                await self._persist()
            except Exception:
                self._events = previous
                raise

        removed = len(candidates) - len(self._events)
        if removed:
            logger.info(f"Pruned {removed} puffs older than {cutoff.isoformat()}")
        return event

    async def prune_older_than(self, cutoff: datetime) -> int:
        """Remove every event with timestamp < cutoff.

        Args:
            cutoff: Oldest timestamp to keep

        Returns:
            Number of events removed
        """
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)

        async with self._lock:
            kept = [e for e in self._events if e.timestamp >= cutoff]
            removed = len(self._events) - len(kept)
            if removed == 0:
                return 0

            previous = self._events
            self._events = kept
            try:
                await self._persist()
            except Exception:
                self._events = previous
                raise

        logger.info(f"Pruned {removed} puffs older than {cutoff.isoformat()}")
        return removed

    def unsynced_suffix(self) -> list[PuffEvent]:
        """All events not yet acknowledged by the server, in insertion order."""
        return [e for e in self._events if not e.synced]

    async def mark_synced(self, ids: Iterable[str]) -> int:
        """Flip the synced flag for exactly the matching events.

        Idempotent: already-synced events and unknown ids are ignored.

        Args:
            ids: Identifiers confirmed by the server

        Returns:
            Number of events that changed
        """
        wanted = set(ids)
        if not wanted:
            return 0

        async with self._lock:
            changed = [e for e in self._events if e.id in wanted and not e.synced]
            if not changed:
                return 0

            for event in changed:
                event.synced = True
            try:
                await self._persist()
            except Exception:
                for event in changed:
                    event.synced = False
                raise

        logger.debug(f"Marked {len(changed)} puffs synced")
        return len(changed)

    async def reset(self) -> None:
        """Remove the ledger file, then clear every event.

        Raises:
            LedgerIOError: If the file cannot be removed. Events stay
                in memory in that case.
        """
        async with self._lock:
            await remove_file(self.path)
            self._events = []
        logger.info("Ledger reset")

    def events_between(self, start: datetime, end: datetime) -> list[PuffEvent]:
        """Events with start <= timestamp < end, in insertion order."""
        return [e for e in self._events if start <= e.timestamp < end]

    def count_for_date(self, day: date, tz: tzinfo = UTC) -> int:
        """Number of events on a calendar day in the given timezone."""
        return sum(1 for e in self._events if e.timestamp.astimezone(tz).date() == day)

    async def _persist(self) -> None:
        await write_jsonl_atomic(self.path, [e.to_dict() for e in self._events])
