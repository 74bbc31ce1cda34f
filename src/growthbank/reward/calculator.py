"""
Reward Calculator

Computes the coin award for one completed session:

    focus  = floor(focus_minutes / focus_rate)   if focus_minutes >= min_focus
    result = floor(result_quantity * base_coin * coefficient)
    bonus  = sum of the bonus rules
    total  = focus + result + bonus

The calculator only reads; recording the award is the coin service's job.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Optional, Sequence

from ..constants import MAX_BATCH_CALCULATIONS
from ..exceptions import (
    CatalogNotFoundError,
    GrowthBankError,
    InternalComputeError,
    ValidationError,
)
from ..sessions.models import Difficulty, DifficultyTier
from ..sessions.repository import Catalog, SessionRepository
from .bonuses import DEFAULT_BONUS_RULES, BonusRule, consecutive_days
from .models import (
    BonusContext,
    BonusItem,
    RewardConfig,
    RewardInputs,
    RewardRequest,
    RewardResult,
)

logger = logging.getLogger(__name__)

_LABEL_TIERS = {
    "hard": DifficultyTier.HARD,
    "extreme": DifficultyTier.EXTREME,
    "困难": DifficultyTier.HARD,
    "极难": DifficultyTier.EXTREME,
}


def difficulty_tier(difficulty: Difficulty) -> DifficultyTier:
    """Tier of a difficulty, falling back to its label."""
    if difficulty.tier in (DifficultyTier.HARD, DifficultyTier.EXTREME):
        return difficulty.tier
    return _LABEL_TIERS.get(difficulty.label.strip().lower(), difficulty.tier)


def focus_coins(focus_minutes: int, config: Optional[RewardConfig] = None) -> int:
    config = config or RewardConfig()
    if focus_minutes < config.min_focus_minutes:
        return 0
    return focus_minutes // config.focus_rate


def result_coins(result_quantity: int, base_coin: int, coefficient: float) -> int:
    return math.floor(result_quantity * base_coin * coefficient)


def _require_int(name: str, value: object, low: int, high: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValidationError(f"{name} must be {bound}, got {value}")
    return value


class RewardCalculator:
    """
    Multi-factor reward calculator.

    Args:
        catalog: Task and difficulty lookup.
        sessions: Completed-session history used by the bonus rules.
        config: Tunable amounts; defaults match the stock economy.
        rules: Bonus rules to apply; defaults to all five built-ins.
    """

    def __init__(
        self,
        catalog: Catalog,
        sessions: SessionRepository,
        config: Optional[RewardConfig] = None,
        rules: Optional[Sequence[BonusRule]] = None,
    ):
        self._catalog = catalog
        self._sessions = sessions
        self.config = config or RewardConfig()
        self._rules = tuple(rules) if rules is not None else DEFAULT_BONUS_RULES

    async def calculate(
        self,
        user_id: str,
        task_id: str,
        difficulty_id: str,
        focus_minutes: int,
        result_quantity: int,
        session_date: date,
    ) -> RewardResult:
        """Compute the award for one session.

        Raises:
            ValidationError: Minutes or quantity out of range.
            CatalogNotFoundError: Task or difficulty missing or inactive.
            InternalComputeError: A bonus rule failed unexpectedly.
        """
        _require_int("focus_minutes", focus_minutes, 0, self.config.max_focus_minutes)
        _require_int("result_quantity", result_quantity, 0)

        task = await self._catalog.get_task(task_id)
        if task is None or not task.is_active:
            raise CatalogNotFoundError(f"Task {task_id} not found or inactive")
        difficulty = await self._catalog.get_difficulty(difficulty_id)
        if difficulty is None or not difficulty.is_active:
            raise CatalogNotFoundError(f"Difficulty {difficulty_id} not found or inactive")

        ctx = await self._bonus_context(user_id, task_id, difficulty, session_date)
        bonuses = self._apply_rules(ctx)

        focus = focus_coins(focus_minutes, self.config)
        result = result_coins(result_quantity, task.base_coin, difficulty.coefficient)
        bonus = sum(b.amount for b in bonuses)

        logger.debug(
            "Reward for %s on %s: focus=%d result=%d bonus=%d",
            user_id, task_id, focus, result, bonus,
        )
        return RewardResult(
            focus_coins=focus,
            result_coins=result,
            bonus_coins=bonus,
            total_coins=focus + result + bonus,
            bonuses=bonuses,
            inputs=RewardInputs(
                focus_minutes=focus_minutes,
                focus_rate=self.config.focus_rate,
                result_quantity=result_quantity,
                base_coin=task.base_coin,
                difficulty_coefficient=difficulty.coefficient,
                consecutive_days=ctx.consecutive_days,
            ),
        )

    async def calculate_many(self, requests: Sequence[RewardRequest]) -> list[RewardResult]:
        """Preview several sessions; an invalid item yields a zero result."""
        if len(requests) > MAX_BATCH_CALCULATIONS:
            raise ValidationError(
                f"At most {MAX_BATCH_CALCULATIONS} calculations per batch"
            )
        results = []
        for req in requests:
            try:
                results.append(await self.calculate(
                    req.user_id,
                    req.task_id,
                    req.difficulty_id,
                    req.focus_minutes,
                    req.result_quantity,
                    req.session_date,
                ))
            except (ValidationError, CatalogNotFoundError) as exc:
                logger.info("Batch item for %s rejected: %s", req.user_id, exc)
                results.append(RewardResult.zero())
        return results

    async def _bonus_context(
        self,
        user_id: str,
        task_id: str,
        difficulty: Difficulty,
        session_date: date,
    ) -> BonusContext:
        prior_dates = await self._sessions.completed_session_dates(
            user_id, session_date, self.config.streak_lookback_days
        )
        return BonusContext(
            session_date=session_date,
            consecutive_days=consecutive_days(session_date, prior_dates),
            is_first_attempt=not await self._sessions.has_completed_session(user_id, task_id),
            difficulty_tier=difficulty_tier(difficulty),
            completed_today=await self._sessions.count_completed_on(user_id, session_date),
        )

    def _apply_rules(self, ctx: BonusContext) -> list[BonusItem]:
        bonuses: list[BonusItem] = []
        for rule in self._rules:
            try:
                item = rule.evaluate(ctx, self.config)
            except GrowthBankError:
                raise
            except Exception as exc:
                raise InternalComputeError(
                    f"Bonus rule {getattr(rule, 'kind', rule)!s} failed: {exc}"
                ) from exc
            if item is not None and item.amount > 0:
                bonuses.append(item)
        return bonuses
