"""Read-only aggregates over the ledger for display."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, tzinfo

from .types import PuffEvent, TrackingMode

CIGARETTES_PER_PACK = 20


@dataclass(frozen=True)
class UserSettings:
    """What the user spends and the limit they set themselves.

    In cigarettes mode `vape_cost` is the price of a pack.
    """

    vape_cost: float = 10.0
    puffs_per_vape: int = 600
    monthly_spending: float = 50.0
    daily_puff_limit: int = 30
    tracking_mode: TrackingMode = TrackingMode.VAPING

    @property
    def cost_per_unit(self) -> float:
        if self.tracking_mode is TrackingMode.CIGARETTES:
            return self.vape_cost / CIGARETTES_PER_PACK
        return self.vape_cost / self.puffs_per_vape


@dataclass(frozen=True)
class WithdrawalStage:
    status: str
    description: str


@dataclass(frozen=True)
class Milestone:
    days: int
    title: str
    description: str
    achieved: bool = False


@dataclass(frozen=True)
class Financials:
    money_saved: float
    vape_duration_days: float


@dataclass(frozen=True)
class TimeOfDayPattern:
    morning: int
    afternoon: int
    evening: int

    @property
    def peak(self) -> str:
        """Label of the busiest period; ties go to the earlier one."""
        buckets = [(self.morning, "6-12 AM"), (self.afternoon, "12-6 PM"), (self.evening, "6-12 PM")]
        return max(buckets, key=lambda b: b[0])[1]


@dataclass(frozen=True)
class GoalProgress:
    status: str
    percentage: int


@dataclass(frozen=True)
class WeeklyComparison:
    this_week_avg: float
    last_week_avg: float

    @property
    def trend(self) -> float:
        return self.this_week_avg - self.last_week_avg

    @property
    def percentage(self) -> int:
        if self.last_week_avg <= 0:
            return 0
        return int(self.trend / self.last_week_avg * 100)


_NO_DATA = WithdrawalStage("No data", "Start tracking your puffs to see your withdrawal status.")

# (upper bound in hours, stage); first match wins
_WITHDRAWAL_STAGES: list[tuple[int, WithdrawalStage]] = [
    (3, WithdrawalStage("You are still puffing", "Try to extend the time between puffs.")),
    (12, WithdrawalStage("Early Withdrawal", "You might experience mild cravings. Stay hydrated and try deep breathing.")),
    (24, WithdrawalStage("Moderate Withdrawal", "Cravings may intensify. Stay busy and remember why you're quitting.")),
    (72, WithdrawalStage("Peak Withdrawal", "This is the toughest part. Your body is healing. Stay strong!")),
]
_RECOVERY = WithdrawalStage("Recovery in Progress", "Great job! The worst is over. Keep going!")

_MILESTONES: list[tuple[int, str, str]] = [
    (1, "24 Hours Free", "You've made it through the first day!"),
    (3, "3-Day Challenge", "You've overcome the toughest part!"),
    (7, "One Week Wonder", "A full week vape-free!"),
    (14, "Fortnight Freedom", "Two weeks without vaping!"),
    (30, "Monthly Marvel", "30 days of freedom!"),
    (60, "60-Day Milestone", "Two months vape-free! You're making incredible progress!"),
]

# (lower bound in percent, status); first match wins
_GOAL_LEVELS: list[tuple[int, str]] = [(100, "Over Limit"), (80, "Near Limit"), (50, "Halfway")]


class PuffStats:
    """Aggregates the UI layer renders.

    All calendar math happens in the given timezone so "today"
    matches the user's wall clock.
    """

    def __init__(
        self,
        events: Sequence[PuffEvent],
        tz: tzinfo = UTC,
        now: datetime | None = None,
        settings: UserSettings | None = None,
    ):
        self.events = list(events)
        self.tz = tz
        self.now = (now or datetime.now(UTC)).astimezone(tz)
        self.settings = settings or UserSettings()

    def _local_day(self, event: PuffEvent) -> date:
        return event.timestamp.astimezone(self.tz).date()

    @property
    def last_puff_time(self) -> datetime | None:
        if not self.events:
            return None
        return max(e.timestamp for e in self.events)

    def count_for_date(self, day: date) -> int:
        return sum(1 for e in self.events if self._local_day(e) == day)

    @property
    def today_count(self) -> int:
        return self.count_for_date(self.now.date())

    def counts_by_date(self, days: int = 7) -> dict[date, int]:
        """Counts for the last `days` calendar days, oldest first, zero-filled."""
        counter = Counter(self._local_day(e) for e in self.events)
        today = self.now.date()
        return {
            today - timedelta(days=offset): counter.get(today - timedelta(days=offset), 0)
            for offset in range(days - 1, -1, -1)
        }

    @property
    def streak(self) -> int:
        """Whole days since the last puff (0 when there is none)."""
        last = self.last_puff_time
        if last is None:
            return 0
        return max(0, (self.now - last.astimezone(self.tz)).days)

    @property
    def hours_since_last_puff(self) -> int | None:
        last = self.last_puff_time
        if last is None:
            return None
        return int((self.now - last).total_seconds() // 3600)

    def average_per_day(self, window_days: int = 30) -> float:
        """Average over the days in the window that have at least one puff."""
        cutoff = self.now - timedelta(days=window_days)
        recent = [e for e in self.events if e.timestamp >= cutoff]
        unique_days = len({self._local_day(e) for e in recent})
        return len(recent) / max(1, unique_days)

    @property
    def withdrawal_stage(self) -> WithdrawalStage:
        hours = self.hours_since_last_puff
        if hours is None:
            return _NO_DATA
        for upper, stage in _WITHDRAWAL_STAGES:
            if hours <= upper:
                return stage
        return _RECOVERY

    @property
    def milestones(self) -> list[Milestone]:
        """The fixed milestone table, each marked achieved once the streak reaches it."""
        streak = self.streak
        return [Milestone(days, title, desc, streak >= days) for days, title, desc in _MILESTONES]

    @property
    def financials(self) -> Financials:
        """Monthly savings against the user's old spend, and how long one vape lasts.

        Both are projected from the 30-day average.
        """
        avg = self.average_per_day()
        daily_spend = self.settings.monthly_spending / 30
        new_daily_spend = avg / self.settings.puffs_per_vape * self.settings.vape_cost
        return Financials(
            money_saved=max(0.0, daily_spend - new_daily_spend) * 30,
            vape_duration_days=self.settings.puffs_per_vape / max(1.0, avg),
        )

    @property
    def time_of_day_pattern(self) -> TimeOfDayPattern:
        # 00:00-05:59 belongs to no bucket
        hours = Counter(e.timestamp.astimezone(self.tz).hour for e in self.events)
        return TimeOfDayPattern(
            morning=sum(n for h, n in hours.items() if 6 <= h < 12),
            afternoon=sum(n for h, n in hours.items() if 12 <= h < 18),
            evening=sum(n for h, n in hours.items() if h >= 18),
        )

    @property
    def goal_progress(self) -> GoalProgress:
        """Today's count as a share of the daily limit."""
        percentage = self.today_count * 100 / max(1, self.settings.daily_puff_limit)
        for lower, status in _GOAL_LEVELS:
            if percentage >= lower:
                return GoalProgress(status, int(percentage))
        return GoalProgress("On Track", int(percentage))

    @property
    def weekly_comparison(self) -> WeeklyComparison:
        """Per-day averages for the last 7 days and the 7 days before."""
        this_start = self.now - timedelta(days=7)
        last_start = this_start - timedelta(days=7)
        this_week = sum(1 for e in self.events if e.timestamp >= this_start)
        last_week = sum(1 for e in self.events if last_start <= e.timestamp < this_start)
        return WeeklyComparison(this_week / 7, last_week / 7)
