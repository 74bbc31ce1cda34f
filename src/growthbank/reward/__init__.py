"""Session reward calculation."""

from .bonuses import (
    DEFAULT_BONUS_RULES,
    BonusRule,
    ChallengeBonus,
    DailyGoalBonus,
    FirstAttemptBonus,
    StreakBonus,
    WeekendBonus,
    consecutive_days,
    streak_bonus,
)
from .calculator import RewardCalculator, difficulty_tier, focus_coins, result_coins
from .models import (
    BonusContext,
    BonusItem,
    BonusKind,
    RewardConfig,
    RewardInputs,
    RewardRequest,
    RewardResult,
)

__all__ = [
    "DEFAULT_BONUS_RULES",
    "BonusContext",
    "BonusItem",
    "BonusKind",
    "BonusRule",
    "ChallengeBonus",
    "DailyGoalBonus",
    "FirstAttemptBonus",
    "RewardCalculator",
    "RewardConfig",
    "RewardInputs",
    "RewardRequest",
    "RewardResult",
    "StreakBonus",
    "WeekendBonus",
    "consecutive_days",
    "difficulty_tier",
    "focus_coins",
    "result_coins",
    "streak_bonus",
]
