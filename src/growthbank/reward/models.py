"""
Reward calculation models.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .. import constants as c
from ..sessions.models import DifficultyTier


class RewardConfig(BaseModel):
    """Tunable amounts for the reward formula."""

    focus_rate: int = Field(default=c.FOCUS_COIN_RATE, ge=1, description="Minutes per focus coin")
    min_focus_minutes: int = Field(default=c.MIN_FOCUS_MINUTES, ge=0)
    max_focus_minutes: int = Field(default=c.MAX_FOCUS_MINUTES, ge=1)
    streak_long_days: int = Field(default=c.STREAK_LONG_DAYS, ge=1)
    streak_long_bonus: int = Field(default=c.STREAK_LONG_BONUS, ge=0)
    streak_short_days: int = Field(default=c.STREAK_SHORT_DAYS, ge=1)
    streak_short_bonus: int = Field(default=c.STREAK_SHORT_BONUS, ge=0)
    streak_lookback_days: int = Field(default=c.STREAK_LOOKBACK_DAYS, ge=1)
    first_attempt_bonus: int = Field(default=c.FIRST_ATTEMPT_BONUS, ge=0)
    hard_bonus: int = Field(default=c.HARD_DIFFICULTY_BONUS, ge=0)
    extreme_bonus: int = Field(default=c.EXTREME_DIFFICULTY_BONUS, ge=0)
    daily_goal_sessions: int = Field(default=c.DAILY_GOAL_SESSIONS, ge=1)
    daily_goal_bonus: int = Field(default=c.DAILY_GOAL_BONUS, ge=0)
    weekend_bonus: int = Field(default=c.WEEKEND_BONUS, ge=0)


class BonusKind(str, Enum):
    STREAK = "consecutive"
    FIRST_ATTEMPT = "first_time"
    CHALLENGE = "difficulty"
    DAILY_GOAL = "daily_goal"
    WEEKEND = "weekend"


class BonusItem(BaseModel):
    kind: BonusKind
    amount: int
    reason: str


class BonusContext(BaseModel):
    """Facts about the session and the user's history that bonuses read."""

    session_date: date
    consecutive_days: int = Field(ge=1)
    is_first_attempt: bool
    difficulty_tier: DifficultyTier
    completed_today: int = Field(ge=0, description="Completed sessions on session_date before this one")


class RewardInputs(BaseModel):
    focus_minutes: int
    focus_rate: int
    result_quantity: int
    base_coin: int
    difficulty_coefficient: float
    consecutive_days: int


class RewardResult(BaseModel):
    """
    Itemized award for one session.

    ``total_coins`` is always ``focus_coins + result_coins + bonus_coins``.
    """

    focus_coins: int
    result_coins: int
    bonus_coins: int
    total_coins: int
    bonuses: list[BonusItem] = Field(default_factory=list)
    inputs: Optional[RewardInputs] = None

    @property
    def base_coins(self) -> int:
        return self.focus_coins + self.result_coins

    @classmethod
    def zero(cls) -> "RewardResult":
        return cls(focus_coins=0, result_coins=0, bonus_coins=0, total_coins=0)


class RewardRequest(BaseModel):
    """Calculator input, used for batch previews."""

    user_id: str
    task_id: str
    difficulty_id: str
    focus_minutes: int
    result_quantity: int
    session_date: date
