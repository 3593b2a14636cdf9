"""
Ledger types and data classes.

Defines the puff event recorded on the device and the tracking
modes a user can log under.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TrackingMode(Enum):
    """What a single logged event counts."""

    VAPING = "vaping"
    CIGARETTES = "cigarettes"

    @property
    def unit_name(self) -> str:
        return "puff" if self is TrackingMode.VAPING else "cigarette"

    @property
    def unit_name_plural(self) -> str:
        return self.unit_name + "s"


def _new_puff_id() -> str:
    return str(uuid.uuid4())


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class PuffEvent:
    """A single logged occurrence of the tracked habit.

    The id is assigned at creation and never changes. The synced
    flag only moves from False to True; it is reset solely by
    clearing the whole ledger.

    Attributes:
        id: Opaque unique identifier shared with the server once synced
        timestamp: When the event occurred (client clock, UTC)
        synced: True once the server acknowledged receipt
        tracking_mode: Mode in effect when the event was recorded
    """

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str = field(default_factory=_new_puff_id)
    synced: bool = False
    tracking_mode: TrackingMode = TrackingMode.VAPING

    def __post_init__(self) -> None:
        self.timestamp = _ensure_aware(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "synced": self.synced,
            "tracking_mode": self.tracking_mode.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PuffEvent":
        """Deserialize from dictionary.

        Accepts ISO timestamps or epoch seconds.
        """
        raw_ts = data["timestamp"]
        if isinstance(raw_ts, (int, float)):
            timestamp = datetime.fromtimestamp(raw_ts, UTC)
        else:
            timestamp = datetime.fromisoformat(raw_ts)

        return cls(
            id=data["id"],
            timestamp=timestamp,
            synced=bool(data.get("synced", False)),
            tracking_mode=TrackingMode(data.get("tracking_mode", TrackingMode.VAPING.value)),
        )

    def to_wire(self) -> dict[str, Any]:
        """Form sent to the server in an addPuffs batch."""
        return {"id": self.id, "timestamp": self.timestamp.timestamp()}
