"""
Coin Service

Collaborator-facing API over the ledger and the reward calculator:

- Recording session rewards as one atomic commit
- Redemption spends and admin adjustments
- Achievement bonuses driven by typed conditions
- Summaries, efficiency, leaderboard and ranking
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from ..conditions import AchievementDefinition, UserStats
from ..constants import (
    SOURCE_ACHIEVEMENT,
    SOURCE_ADMIN_ADJUSTMENT,
    SOURCE_REWARD,
    SOURCE_SESSION,
    SOURCE_SESSION_BONUS,
)
from ..events.bus import EVENT_REWARD_RECORDED, Event, EventBus
from ..exceptions import ValidationError
from ..ledger.models import ChangeKind, EntryDraft, LeaderboardRow, LedgerEntry, Ranking
from ..ledger.store import LedgerStore
from ..reward.bonuses import consecutive_days
from ..reward.calculator import RewardCalculator
from ..reward.models import RewardResult
from ..sessions.models import SessionRecord, SessionStatus
from ..sessions.repository import Catalog, SessionRepository
from .models import CoinEfficiency, CoinSummary, EarningSource, EfficiencyLevel, SessionReward

logger = logging.getLogger(__name__)

_EARNING_KINDS = (ChangeKind.EARNED, ChangeKind.BONUS)


class CoinService:
    """
    Service layer for the coin economy.

    Every balance change goes through the ledger store, so the per-user
    lock and the balance counter cover all of these operations.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        calculator: RewardCalculator,
        sessions: SessionRepository,
        catalog: Catalog,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._ledger = ledger
        self._calculator = calculator
        self._sessions = sessions
        self._catalog = catalog
        self._event_bus = event_bus

    @property
    def ledger(self) -> LedgerStore:
        return self._ledger

    # -- Session rewards ----------------------------------------------

    async def record_session_reward(
        self,
        session: SessionRecord,
        reward: RewardResult,
    ) -> list[LedgerEntry]:
        """Record a calculated reward as one commit.

        Focus and result coins become an ``earned`` entry, bonuses a
        separate ``bonus`` entry. Zero-valued parts are left out.
        """
        drafts = []
        if reward.base_coins > 0:
            drafts.append(EntryDraft(
                amount=reward.base_coins,
                change_kind=ChangeKind.EARNED,
                source_kind=SOURCE_SESSION,
                reference_id=session.session_id,
                description=(
                    f"Session reward: focus {reward.focus_coins} "
                    f"+ result {reward.result_coins}"
                ),
                metadata={
                    "session_id": session.session_id,
                    "calculations": reward.model_dump(mode="json", exclude={"bonuses"}),
                },
            ))
        if reward.bonus_coins > 0:
            drafts.append(EntryDraft(
                amount=reward.bonus_coins,
                change_kind=ChangeKind.BONUS,
                source_kind=SOURCE_SESSION_BONUS,
                reference_id=session.session_id,
                description="Session bonus: " + ", ".join(b.reason for b in reward.bonuses),
                metadata={
                    "session_id": session.session_id,
                    "bonuses": [b.model_dump(mode="json") for b in reward.bonuses],
                },
            ))
        if not drafts:
            logger.debug("Session %s earned no coins", session.session_id)
            return []

        entries = await self._ledger.append_many(session.user_id, drafts)
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_REWARD_RECORDED,
                source="coin_service",
                payload={
                    "user_id": session.user_id,
                    "session_id": session.session_id,
                    "total_coins": reward.total_coins,
                },
            ))
        return entries

    async def complete_session(
        self,
        user_id: str,
        task_id: str,
        difficulty_id: str,
        focus_minutes: int,
        result_quantity: int,
        session_date: date,
        session_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SessionReward:
        """Calculate, store and reward a completed session.

        The reward is calculated before anything is written, so a
        calculation error leaves no trace.
        """
        reward = await self._calculator.calculate(
            user_id, task_id, difficulty_id, focus_minutes, result_quantity, session_date
        )
        task = await self._catalog.get_task(task_id)
        session = SessionRecord(
            user_id=user_id,
            task_id=task_id,
            difficulty_id=difficulty_id,
            session_date=session_date,
            focus_minutes=focus_minutes,
            result_quantity=result_quantity,
            total_coins=reward.total_coins,
            status=SessionStatus.COMPLETED,
            subject=task.subject if task else None,
            task_kind=task.task_kind if task else None,
            notes=notes,
            **({"session_id": session_id} if session_id else {}),
        )
        await self._sessions.add(session)
        entries = await self.record_session_reward(session, reward)
        logger.info(
            "Recorded session %s for %s: %d coins",
            session.session_id, user_id, reward.total_coins,
        )
        return SessionReward(session=session, reward=reward, entries=entries)

    # -- Spends and adjustments ---------------------------------------

    async def redeem(
        self,
        user_id: str,
        reward_id: str,
        cost: int,
        description: str = "",
    ) -> LedgerEntry:
        """Spend ``cost`` coins on a reward.

        Raises:
            ValidationError: ``cost`` is not positive.
            InsufficientBalanceError: The balance does not cover ``cost``.
        """
        if cost <= 0:
            raise ValidationError("cost must be positive")
        return await self._ledger.append(
            user_id,
            -cost,
            ChangeKind.REDEEMED,
            SOURCE_REWARD,
            reference_id=reward_id,
            description=f"Redeemed reward: {description or reward_id}",
            metadata={"reward_id": reward_id},
            spend=True,
        )

    async def adjust(
        self,
        user_id: str,
        amount: int,
        reason: str,
        admin_id: str,
    ) -> LedgerEntry:
        """Administrative correction; may leave a negative balance."""
        if amount == 0:
            raise ValidationError("adjustment amount must be non-zero")
        kind = ChangeKind.BONUS if amount > 0 else ChangeKind.PENALTY
        logger.info("Admin %s adjusting %s by %d: %s", admin_id, user_id, amount, reason)
        return await self._ledger.append(
            user_id,
            amount,
            kind,
            SOURCE_ADMIN_ADJUSTMENT,
            reference_id=admin_id,
            description=f"Admin adjustment: {reason}",
            metadata={"admin_id": admin_id},
        )

    async def award_achievement_bonus(
        self,
        user_id: str,
        achievement: AchievementDefinition,
        stats: Optional[UserStats] = None,
    ) -> Optional[LedgerEntry]:
        """Pay an achievement's coins if its condition holds and it has not been paid."""
        if achievement.reward_coins <= 0:
            return None
        stats = stats or await self.user_stats(user_id)
        if not achievement.is_met(stats):
            return None
        return await self._ledger.append_once(user_id, EntryDraft(
            amount=achievement.reward_coins,
            change_kind=ChangeKind.BONUS,
            source_kind=SOURCE_ACHIEVEMENT,
            reference_id=achievement.achievement_id,
            description=f"Achievement unlocked: {achievement.name}",
            metadata={"achievement_id": achievement.achievement_id},
        ))

    # -- Views --------------------------------------------------------

    async def balance(self, user_id: str) -> int:
        return await self._ledger.current_balance(user_id)

    async def summary(
        self,
        user_id: str,
        days: int = 30,
        *,
        now: Optional[datetime] = None,
    ) -> CoinSummary:
        if days < 1:
            raise ValidationError("days must be positive")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        entries = await self._ledger.entries(user_id)
        window = [e for e in entries if e.created_at >= cutoff]

        sources: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        for entry in window:
            if entry.change_kind in _EARNING_KINDS:
                sources[entry.source_kind][0] += entry.amount
                sources[entry.source_kind][1] += 1

        return CoinSummary(
            user_id=user_id,
            days=days,
            current_balance=await self._ledger.current_balance(user_id),
            total_earned=sum(e.amount for e in window if e.change_kind in _EARNING_KINDS),
            total_spent=-sum(e.amount for e in window if e.change_kind == ChangeKind.REDEEMED),
            total_decayed=-sum(e.amount for e in window if e.change_kind == ChangeKind.DECAYED),
            recent_transactions=list(reversed(entries[-10:])),
            earning_sources=sorted(
                (EarningSource(source=s, amount=a, count=c) for s, (a, c) in sources.items()),
                key=lambda s: -s.amount,
            ),
        )

    async def efficiency(
        self,
        user_id: str,
        days: int = 7,
        *,
        today: Optional[date] = None,
    ) -> CoinEfficiency:
        """Coins per focus hour over the last ``days`` days."""
        if days < 1:
            raise ValidationError("days must be positive")
        today = today or datetime.now(timezone.utc).date()
        sessions = await self._sessions.completed_sessions(user_id, today - timedelta(days=days))
        coins = sum(s.total_coins for s in sessions)
        minutes = sum(s.focus_minutes for s in sessions)

        per_hour = coins / (minutes / 60) if minutes > 0 else 0.0
        if per_hour >= 10:
            level = EfficiencyLevel.HIGH
        elif per_hour >= 5:
            level = EfficiencyLevel.MEDIUM
        else:
            level = EfficiencyLevel.LOW
        return CoinEfficiency(
            days=days,
            coins_per_hour=round(per_hour, 2),
            coins_per_session=round(coins / len(sessions), 2) if sessions else 0.0,
            daily_average=round(coins / days, 2),
            efficiency=level,
        )

    async def user_stats(self, user_id: str, *, today: Optional[date] = None) -> UserStats:
        today = today or datetime.now(timezone.utc).date()
        sessions = await self._sessions.completed_sessions(user_id, date.min)
        subject_coins: dict[str, int] = defaultdict(int)
        for s in sessions:
            if s.subject:
                subject_coins[s.subject] += s.total_coins
        dates = {s.session_date for s in sessions if s.session_date <= today}
        streak = consecutive_days(today, dates) if today in dates else 0
        earned = sum(
            e.amount for e in await self._ledger.entries(user_id)
            if e.change_kind in _EARNING_KINDS
        )
        return UserStats(
            user_id=user_id,
            session_count=len(sessions),
            coins_earned=earned,
            balance=await self._ledger.current_balance(user_id),
            streak_days=streak,
            focus_minutes=sum(s.focus_minutes for s in sessions),
            subject_coins=dict(subject_coins),
        )

    async def leaderboard(self, limit: int = 10) -> list[LeaderboardRow]:
        return await self._ledger.leaderboard(limit)

    async def ranking(self, user_id: str) -> Ranking:
        return await self._ledger.rank(user_id)
