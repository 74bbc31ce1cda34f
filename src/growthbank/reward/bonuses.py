"""
Bonus rules.

Each rule looks at a ``BonusContext`` and returns at most one
``BonusItem``. Rules never see each other's output, so the bonus total
does not depend on evaluation order.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional, Protocol, runtime_checkable

from ..sessions.models import DifficultyTier
from .models import BonusContext, BonusItem, BonusKind, RewardConfig


def consecutive_days(session_date: date, prior_dates: Iterable[date]) -> int:
    """Length of the daily streak ending on ``session_date``.

    ``session_date`` counts as day one; each earlier calendar day with a
    completed session extends the streak until the first gap.

    >>> consecutive_days(date(2024, 1, 10), [date(2024, 1, 9), date(2024, 1, 8)])
    3
    """
    days = 1
    for prior in sorted(set(prior_dates), reverse=True):
        if prior >= session_date:
            continue
        if prior == session_date - timedelta(days=days):
            days += 1
        else:
            break
    return days


def streak_bonus(days: int, config: Optional[RewardConfig] = None) -> int:
    config = config or RewardConfig()
    if days >= config.streak_long_days:
        return config.streak_long_bonus
    if days >= config.streak_short_days:
        return config.streak_short_bonus
    return 0


@runtime_checkable
class BonusRule(Protocol):
    """Protocol for pluggable bonus rules."""

    kind: BonusKind

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]: ...


class StreakBonus:
    kind = BonusKind.STREAK

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]:
        amount = streak_bonus(ctx.consecutive_days, config)
        if amount <= 0:
            return None
        return BonusItem(
            kind=self.kind,
            amount=amount,
            reason=f"{ctx.consecutive_days}-day learning streak",
        )


class FirstAttemptBonus:
    kind = BonusKind.FIRST_ATTEMPT

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]:
        if not ctx.is_first_attempt or config.first_attempt_bonus <= 0:
            return None
        return BonusItem(
            kind=self.kind,
            amount=config.first_attempt_bonus,
            reason="First completion of this task",
        )


class ChallengeBonus:
    kind = BonusKind.CHALLENGE

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]:
        if ctx.difficulty_tier == DifficultyTier.EXTREME:
            amount, reason = config.extreme_bonus, "Took on an extreme challenge"
        elif ctx.difficulty_tier == DifficultyTier.HARD:
            amount, reason = config.hard_bonus, "Took on a hard challenge"
        else:
            return None
        if amount <= 0:
            return None
        return BonusItem(kind=self.kind, amount=amount, reason=reason)


class DailyGoalBonus:
    kind = BonusKind.DAILY_GOAL

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]:
        # Counts this session too
        if ctx.completed_today + 1 < config.daily_goal_sessions:
            return None
        return BonusItem(
            kind=self.kind,
            amount=config.daily_goal_bonus,
            reason=f"Reached the daily goal of {config.daily_goal_sessions} sessions",
        )


class WeekendBonus:
    kind = BonusKind.WEEKEND

    def evaluate(self, ctx: BonusContext, config: RewardConfig) -> Optional[BonusItem]:
        if ctx.session_date.weekday() < 5:
            return None
        return BonusItem(
            kind=self.kind,
            amount=config.weekend_bonus,
            reason="Kept learning over the weekend",
        )


DEFAULT_BONUS_RULES: tuple[BonusRule, ...] = (
    StreakBonus(),
    FirstAttemptBonus(),
    ChallengeBonus(),
    DailyGoalBonus(),
    WeekendBonus(),
)
