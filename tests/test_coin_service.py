"""Tests for the coin service."""

import asyncio
from datetime import timedelta

import pytest

from growthbank.conditions import AchievementDefinition, SessionCountAtLeast, StreakAtLeast, UserStats
from growthbank.constants import SOURCE_ACHIEVEMENT, SOURCE_ADMIN_ADJUSTMENT, SOURCE_SESSION, SOURCE_SESSION_BONUS
from growthbank.events import EVENT_REWARD_RECORDED
from growthbank.exceptions import CatalogNotFoundError, InsufficientBalanceError, ValidationError
from growthbank.ledger import ChangeKind, LedgerStore
from growthbank.services import CoinService, EfficiencyLevel
from growthbank.storage import MemoryStorageProvider

from conftest import TODAY, make_session


class _YieldingStorage(MemoryStorageProvider):
    """Yields to the loop on every read, like a networked backend."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def hget(self, key, field):
        await asyncio.sleep(0)
        return await super().hget(key, field)

    async def lrange(self, key, start, stop):
        await asyncio.sleep(0)
        return await super().lrange(key, start, stop)


@pytest.fixture
def service(ledger, calculator, sessions, catalog, event_bus):
    return CoinService(ledger, calculator, sessions, catalog, event_bus=event_bus)


async def _complete(service, **overrides):
    args = dict(
        user_id="alice",
        task_id="math-practice",
        difficulty_id="normal",
        focus_minutes=60,
        result_quantity=10,
        session_date=TODAY,
    )
    args.update(overrides)
    return await service.complete_session(**args)


class TestCompleteSession:
    async def test_records_earned_and_bonus(self, service, ledger, sessions):
        recorded = await _complete(service)

        assert recorded.reward.total_coins == 27
        assert [(e.change_kind, e.amount, e.source_kind) for e in recorded.entries] == [
            (ChangeKind.EARNED, 22, SOURCE_SESSION),
            (ChangeKind.BONUS, 5, SOURCE_SESSION_BONUS),
        ]
        assert await ledger.current_balance("alice") == 27

        stored = await sessions.get(recorded.session.session_id)
        assert stored.total_coins == 27
        assert stored.subject == "math"

    async def test_entry_metadata(self, service):
        recorded = await _complete(service)
        earned, bonus = recorded.entries
        session_id = recorded.session.session_id
        assert earned.reference_id == session_id
        assert earned.metadata["session_id"] == session_id
        assert earned.metadata["calculations"]["focus_coins"] == 2
        assert bonus.metadata["bonuses"][0]["kind"] == "first_time"

    async def test_custom_session_id(self, service):
        recorded = await _complete(service, session_id="s-42")
        assert recorded.session.session_id == "s-42"

    async def test_zero_reward_writes_no_entries(self, service, sessions, ledger):
        await sessions.add(make_session(task_id="math-practice", session_date=TODAY - timedelta(days=3)))
        recorded = await _complete(service, focus_minutes=4, result_quantity=0)
        assert recorded.entries == []
        assert await ledger.entries("alice") == []
        assert len(sessions) == 2

    async def test_calculation_error_leaves_no_trace(self, service, sessions, ledger):
        with pytest.raises(CatalogNotFoundError):
            await _complete(service, task_id="knitting")
        assert len(sessions) == 0
        assert await ledger.entries("alice") == []

    async def test_second_session_counts_toward_streak(self, service):
        await _complete(service, session_date=TODAY - timedelta(days=2))
        await _complete(service, session_date=TODAY - timedelta(days=1))
        third = await _complete(service)
        assert third.reward.inputs.consecutive_days == 3

    async def test_emits_reward_event(self, service, event_bus):
        received = []
        event_bus.subscribe(EVENT_REWARD_RECORDED, received.append)
        recorded = await _complete(service)
        assert received[0].payload["total_coins"] == 27
        assert received[0].payload["session_id"] == recorded.session.session_id


class TestSpendsAndAdjustments:
    async def test_redeem(self, service, ledger):
        await _complete(service)
        entry = await service.redeem("alice", "movie-night", 20, "Movie night")
        assert entry.change_kind == ChangeKind.REDEEMED
        assert entry.amount == -20
        assert entry.reference_id == "movie-night"
        assert await ledger.current_balance("alice") == 7

    async def test_redeem_insufficient(self, service, ledger):
        await _complete(service)
        with pytest.raises(InsufficientBalanceError):
            await service.redeem("alice", "console", 500)
        assert await ledger.current_balance("alice") == 27

    @pytest.mark.parametrize("cost", [0, -5])
    async def test_redeem_cost_must_be_positive(self, service, cost):
        with pytest.raises(ValidationError):
            await service.redeem("alice", "gift", cost)

    async def test_adjust(self, service):
        bonus = await service.adjust("alice", 10, "Contest winner", "admin-1")
        penalty = await service.adjust("alice", -25, "Refund abuse", "admin-1")
        assert bonus.change_kind == ChangeKind.BONUS
        assert penalty.change_kind == ChangeKind.PENALTY
        assert penalty.source_kind == SOURCE_ADMIN_ADJUSTMENT
        assert penalty.balance_after == -15

    async def test_adjust_zero(self, service):
        with pytest.raises(ValidationError):
            await service.adjust("alice", 0, "noop", "admin-1")


class TestAchievements:
    async def test_paid_once(self, service, ledger):
        achievement = AchievementDefinition(
            achievement_id="first-steps",
            name="First steps",
            reward_coins=50,
            condition=SessionCountAtLeast(value=1),
        )
        await _complete(service)

        entry = await service.award_achievement_bonus("alice", achievement)
        assert entry.source_kind == SOURCE_ACHIEVEMENT
        assert entry.amount == 50
        assert await service.award_achievement_bonus("alice", achievement) is None
        assert await ledger.current_balance("alice") == 77

    async def test_condition_not_met(self, service):
        achievement = AchievementDefinition(
            achievement_id="week-streak",
            name="Week streak",
            reward_coins=30,
            condition=StreakAtLeast(value=7),
        )
        await _complete(service)
        stats = await service.user_stats("alice", today=TODAY)
        assert await service.award_achievement_bonus("alice", achievement, stats) is None

    async def test_concurrent_awards_pay_once(self, calculator, sessions, catalog):
        storage = _YieldingStorage()
        await storage.connect()
        ledger = LedgerStore(storage)
        service = CoinService(ledger, calculator, sessions, catalog)
        achievement = AchievementDefinition(
            achievement_id="first-steps",
            name="First steps",
            reward_coins=50,
            condition=SessionCountAtLeast(value=1),
        )
        stats = UserStats(user_id="alice", session_count=3)

        results = await asyncio.gather(*(
            service.award_achievement_bonus("alice", achievement, stats) for _ in range(5)
        ))

        assert sum(r is not None for r in results) == 1
        assert await ledger.current_balance("alice") == 50
        assert len(await ledger.entries("alice")) == 1


class TestViews:
    async def test_summary(self, service):
        await _complete(service)
        await service.redeem("alice", "gift", 5)

        summary = await service.summary("alice", 30)
        assert summary.current_balance == 22
        assert summary.total_earned == 27
        assert summary.total_spent == 5
        assert summary.total_decayed == 0
        assert [(s.source, s.amount, s.count) for s in summary.earning_sources] == [
            (SOURCE_SESSION, 22, 1),
            (SOURCE_SESSION_BONUS, 5, 1),
        ]
        assert summary.recent_transactions[0].change_kind == ChangeKind.REDEEMED

    @pytest.mark.parametrize("coins,level", [
        (12, EfficiencyLevel.HIGH),
        (10, EfficiencyLevel.HIGH),
        (6, EfficiencyLevel.MEDIUM),
        (2, EfficiencyLevel.LOW),
    ])
    async def test_efficiency_levels(self, service, sessions, coins, level):
        await sessions.add(make_session(session_date=TODAY - timedelta(days=1),
                                        total_coins=coins, focus_minutes=60))
        result = await service.efficiency("alice", 7, today=TODAY)
        assert result.coins_per_hour == coins
        assert result.efficiency == level

    async def test_efficiency_without_focus(self, service):
        result = await service.efficiency("alice", 7, today=TODAY)
        assert result.coins_per_hour == 0.0
        assert result.coins_per_session == 0.0
        assert result.efficiency == EfficiencyLevel.LOW

    async def test_user_stats(self, service):
        await _complete(service, session_date=TODAY - timedelta(days=1))
        await _complete(service, task_id="english-vocab")
        stats = await service.user_stats("alice", today=TODAY)
        assert stats.session_count == 2
        assert stats.streak_days == 2
        assert stats.focus_minutes == 120
        assert set(stats.subject_coins) == {"math", "english"}
        assert stats.coins_earned == stats.balance

    async def test_leaderboard_and_ranking(self, service):
        await _complete(service)
        await _complete(service, user_id="bob", result_quantity=20)
        rows = await service.leaderboard()
        assert [r.user_id for r in rows] == ["bob", "alice"]
        assert (await service.ranking("alice")).rank == 2

    @pytest.mark.parametrize("days", [0, -1])
    async def test_window_must_be_positive(self, service, days):
        with pytest.raises(ValidationError):
            await service.summary("alice", days)
        with pytest.raises(ValidationError):
            await service.efficiency("alice", days)
