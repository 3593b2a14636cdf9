"""
Local puff ledger.

Provides the device-side, file-backed event log and read-only
aggregates over it.

Key classes:
- PuffLedger: Append-only store with idempotent synced marking
- PuffEvent: A single recorded puff
- PuffStats: Today's count, streak, milestones, savings and trends
- UserSettings: Spending and daily limit the aggregates are measured against
"""

from .ledger import PuffLedger
from .stats import (
    Financials,
    GoalProgress,
    Milestone,
    PuffStats,
    TimeOfDayPattern,
    UserSettings,
    WeeklyComparison,
    WithdrawalStage,
)
from .types import PuffEvent, TrackingMode

__all__ = [
    "PuffLedger",
    "PuffEvent",
    "TrackingMode",
    "PuffStats",
    "WithdrawalStage",
    "UserSettings",
    "Milestone",
    "Financials",
    "TimeOfDayPattern",
    "GoalProgress",
    "WeeklyComparison",
]
