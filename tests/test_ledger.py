"""Tests for the append-only ledger store."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from growthbank.constants import SOURCE_REWARD, SOURCE_SESSION, SOURCE_SESSION_DECAY
from growthbank.events import EVENT_LEDGER_APPENDED, EVENT_LEDGER_REJECTED
from growthbank.exceptions import InsufficientBalanceError, StorageError, ValidationError
from growthbank.ledger import ChangeKind, DecayKey, EntryDraft, HistoryQuery, LedgerStore
from growthbank.storage import MemoryStorageProvider, RedisStorageProvider, StorageConfig


def _earn(amount: int, source: str = SOURCE_SESSION) -> EntryDraft:
    return EntryDraft(amount=amount, change_kind=ChangeKind.EARNED, source_kind=source)


class _FailingListStorage(MemoryStorageProvider):
    async def rpush(self, key: str, value: str) -> int:
        raise RuntimeError("disk full")


# ---------------------------------------------------------------------------
# Appends
# ---------------------------------------------------------------------------


class TestAppend:
    async def test_first_entry(self, ledger):
        entry = await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION, "s1", "Study")
        assert entry.sequence == 1
        assert entry.balance_after == 10
        assert entry.reference_id == "s1"
        assert await ledger.current_balance("alice") == 10

    async def test_snapshots_chain(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        await ledger.append("alice", -3, ChangeKind.DECAYED, SOURCE_SESSION_DECAY)
        entry = await ledger.append("alice", 5, ChangeKind.BONUS, SOURCE_SESSION)
        assert entry.sequence == 3
        assert entry.balance_after == 12
        assert await ledger.verify("alice")

    async def test_unknown_user_has_zero_balance(self, ledger):
        assert await ledger.current_balance("nobody") == 0
        assert await ledger.entries("nobody") == []

    async def test_entries_are_frozen(self, ledger):
        entry = await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        with pytest.raises(pydantic.ValidationError):
            entry.amount = 99

    async def test_emits_event_and_metrics(self, ledger, event_bus, metrics):
        received = []
        event_bus.subscribe("ledger.*", received.append)
        await ledger.append("alice", 7, ChangeKind.EARNED, SOURCE_SESSION)

        assert [e.event_type for e in received] == [EVENT_LEDGER_APPENDED]
        assert received[0].payload["balance_after"] == 7
        sample = metrics.registry.get_sample_value(
            "growthbank_ledger_entries_total", {"change_kind": "earned"}
        )
        assert sample == 1.0
        assert metrics.registry.get_sample_value(
            "growthbank_user_balance", {"user_id": "alice"}
        ) == 7.0

    async def test_concurrent_appends_serialize(self, ledger):
        await asyncio.gather(*(
            ledger.append("alice", 1, ChangeKind.EARNED, SOURCE_SESSION) for _ in range(50)
        ))
        entries = await ledger.entries("alice")
        assert [e.sequence for e in entries] == list(range(1, 51))
        assert [e.balance_after for e in entries] == list(range(1, 51))
        assert await ledger.current_balance("alice") == 50
        assert await ledger.verify("alice")

    async def test_users_do_not_share_balances(self, ledger):
        await asyncio.gather(
            ledger.append("alice", 5, ChangeKind.EARNED, SOURCE_SESSION),
            ledger.append("bob", 8, ChangeKind.EARNED, SOURCE_SESSION),
        )
        assert await ledger.current_balance("alice") == 5
        assert await ledger.current_balance("bob") == 8


class TestSpend:
    async def test_insufficient_balance(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.append("alice", -15, ChangeKind.REDEEMED, SOURCE_REWARD, spend=True)

        assert exc_info.value.balance == 10
        assert exc_info.value.requested == 15
        assert await ledger.current_balance("alice") == 10
        assert len(await ledger.entries("alice")) == 1

    async def test_spend_to_exactly_zero(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        entry = await ledger.append("alice", -10, ChangeKind.REDEEMED, SOURCE_REWARD, spend=True)
        assert entry.balance_after == 0

    async def test_rejection_is_observed(self, ledger, event_bus, metrics):
        received = []
        event_bus.subscribe(EVENT_LEDGER_REJECTED, received.append)
        with pytest.raises(InsufficientBalanceError):
            await ledger.append("alice", -1, ChangeKind.REDEEMED, SOURCE_REWARD, spend=True)
        assert received[0].payload == {"user_id": "alice", "balance": 0, "requested": 1}
        assert metrics.registry.get_sample_value("growthbank_rejected_spends_total") == 1.0

    async def test_non_spend_may_go_negative(self, ledger):
        entry = await ledger.append("alice", -4, ChangeKind.PENALTY, "admin_adjustment")
        assert entry.balance_after == -4

    async def test_concurrent_spends_never_overdraw(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        results = await asyncio.gather(
            *(
                ledger.append("alice", -1, ChangeKind.REDEEMED, SOURCE_REWARD, spend=True)
                for _ in range(15)
            ),
            return_exceptions=True,
        )
        rejected = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(rejected) == 5
        assert await ledger.current_balance("alice") == 0
        assert await ledger.verify("alice")


class TestAppendMany:
    async def test_requires_entries(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.append_many("alice", [])

    async def test_consecutive_snapshots(self, ledger):
        entries = await ledger.append_many("alice", [_earn(10), _earn(4)])
        assert [(e.sequence, e.balance_after) for e in entries] == [(1, 10), (2, 14)]

    async def test_rejected_batch_writes_nothing(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        drafts = [
            _earn(5),
            EntryDraft(amount=-20, change_kind=ChangeKind.REDEEMED, source_kind=SOURCE_REWARD),
        ]
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.append_many("alice", drafts, spend=True)
        assert exc_info.value.requested == 20
        assert len(await ledger.entries("alice")) == 1
        assert await ledger.current_balance("alice") == 10

    async def test_storage_failure_leaves_balance(self):
        storage = _FailingListStorage()
        await storage.connect()
        ledger = LedgerStore(storage)
        with pytest.raises(StorageError):
            await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        assert await ledger.current_balance("alice") == 0
        assert await ledger.entries("alice") == []


class TestDecayAppend:
    async def test_idempotent_per_key(self, ledger):
        await ledger.append("alice", 100, ChangeKind.EARNED, SOURCE_SESSION, "s1")
        key = DecayKey("alice", "s1", "r1")

        first = await ledger.append_decay(key, -20, "Knowledge decay - r1", {"rule_name": "r1"})
        second = await ledger.append_decay(key, -20, "Knowledge decay - r1", {"rule_name": "r1"})

        assert first is not None
        assert first.change_kind == ChangeKind.DECAYED
        assert first.source_kind == SOURCE_SESSION_DECAY
        assert first.rule_id == "r1"
        assert second is None
        assert await ledger.has_decay(key)
        assert await ledger.current_balance("alice") == 80

    async def test_concurrent_decays_apply_once(self, ledger):
        key = DecayKey("alice", "s1", "r1")
        results = await asyncio.gather(*(
            ledger.append_decay(key, -5, "decay", {}) for _ in range(10)
        ))
        assert sum(1 for r in results if r is not None) == 1
        assert await ledger.current_balance("alice") == -5

    async def test_rejects_non_negative_amount(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.append_decay(DecayKey("alice", "s1", "r1"), 0, "decay", {})

    async def test_other_rule_is_separate(self, ledger):
        await ledger.append_decay(DecayKey("alice", "s1", "r1"), -5, "decay", {})
        assert not await ledger.has_decay(DecayKey("alice", "s1", "r2"))


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:
    @pytest.fixture
    async def filled(self, ledger):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION, "s1")
        await ledger.append("alice", 5, ChangeKind.BONUS, "session_bonus", "s1")
        await ledger.append("alice", -3, ChangeKind.REDEEMED, SOURCE_REWARD, "gift")
        await ledger.append("alice", 8, ChangeKind.EARNED, SOURCE_SESSION, "s2")
        return ledger

    async def test_newest_first(self, filled):
        page = await filled.history("alice")
        assert [e.sequence for e in page.entries] == [4, 3, 2, 1]
        assert page.total == 4
        assert not page.has_more

    async def test_filter_by_kind(self, filled):
        page = await filled.history("alice", HistoryQuery(change_kind=ChangeKind.EARNED))
        assert [e.reference_id for e in page.entries] == ["s2", "s1"]

    async def test_filter_by_source(self, filled):
        page = await filled.history("alice", HistoryQuery(source_kind=SOURCE_REWARD))
        assert page.total == 1
        assert page.entries[0].amount == -3

    async def test_pagination(self, filled):
        page = await filled.history("alice", HistoryQuery(limit=3))
        assert len(page.entries) == 3
        assert page.has_more
        rest = await filled.history("alice", HistoryQuery(limit=3, offset=3))
        assert [e.sequence for e in rest.entries] == [1]
        assert not rest.has_more

    async def test_date_range(self, filled):
        today = datetime.now(timezone.utc).date()
        assert (await filled.history("alice", HistoryQuery(start_date=today))).total == 4
        tomorrow = today + timedelta(days=1)
        assert (await filled.history("alice", HistoryQuery(start_date=tomorrow))).total == 0

    def test_query_validation(self):
        with pytest.raises(pydantic.ValidationError):
            HistoryQuery(limit=0)
        with pytest.raises(pydantic.ValidationError):
            HistoryQuery(limit=101)
        with pytest.raises(pydantic.ValidationError):
            HistoryQuery(
                start_date=datetime(2024, 2, 1).date(),
                end_date=datetime(2024, 1, 1).date(),
            )


# ---------------------------------------------------------------------------
# Ranking and integrity
# ---------------------------------------------------------------------------


class TestRanking:
    @pytest.fixture
    async def board(self, ledger):
        await ledger.append("alice", 50, ChangeKind.EARNED, SOURCE_SESSION)
        await ledger.append("bob", 30, ChangeKind.EARNED, SOURCE_SESSION)
        await ledger.append("carol", 30, ChangeKind.EARNED, SOURCE_SESSION)
        return ledger

    async def test_leaderboard(self, board):
        rows = await board.leaderboard(2)
        assert len(rows) == 2
        assert (rows[0].rank, rows[0].user_id, rows[0].balance) == (1, "alice", 50)

    async def test_ties_share_rank(self, board):
        bob = await board.rank("bob")
        carol = await board.rank("carol")
        assert bob.rank == carol.rank == 2
        assert bob.total_users == 3
        assert bob.percentile == 66.67

    async def test_top_user_percentile(self, board):
        assert (await board.rank("alice")).percentile == 100.0

    async def test_unranked_user(self, board):
        ranking = await board.rank("dave")
        assert ranking.rank == 4
        assert ranking.percentile == 0.0
        assert ranking.balance == 0

    async def test_user_ids(self, board):
        assert set(await board.user_ids()) == {"alice", "bob", "carol"}

    async def test_leaderboard_limit_must_be_positive(self, board):
        with pytest.raises(ValidationError):
            await board.leaderboard(0)


class TestIntegrity:
    async def test_reconcile_repairs_counter(self, ledger, storage):
        await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        await ledger.append("alice", 5, ChangeKind.EARNED, SOURCE_SESSION)
        await storage.set("gb:ledger:alice:balance", "999")

        assert not await ledger.verify("alice")
        assert await ledger.reconcile("alice") == 15
        assert await ledger.verify("alice")
        assert await ledger.current_balance("alice") == 15

    async def test_reconcile_restores_decay_index(self, ledger, storage):
        key = DecayKey("alice", "s1", "r1")
        await ledger.append_decay(key, -5, "decay", {})
        await storage.delete("gb:ledger:decay_index")
        assert not await ledger.has_decay(key)

        await ledger.reconcile("alice")
        assert await ledger.has_decay(key)

    async def test_key_prefix(self):
        storage = MemoryStorageProvider(StorageConfig(key_prefix="school"))
        await storage.connect()
        ledger = LedgerStore(storage)
        await ledger.append("alice", 3, ChangeKind.EARNED, SOURCE_SESSION)
        assert await storage.get("school:ledger:alice:balance") == "3"


class TestRedisLedger:
    """The ledger behaves the same on the Redis backend."""

    @pytest.fixture
    async def redis_ledger(self):
        fakeredis = pytest.importorskip("fakeredis")
        storage = RedisStorageProvider(StorageConfig(backend="redis"))
        storage._client = fakeredis.FakeAsyncRedis(decode_responses=True)
        yield LedgerStore(storage)
        await storage._client.flushall()

    async def test_append_and_history(self, redis_ledger):
        await redis_ledger.append_many("alice", [_earn(10), _earn(2)])
        await redis_ledger.append("alice", -4, ChangeKind.REDEEMED, SOURCE_REWARD, spend=True)
        page = await redis_ledger.history("alice")
        assert [e.balance_after for e in page.entries] == [8, 12, 10]
        assert await redis_ledger.verify("alice")

    async def test_rank(self, redis_ledger):
        await redis_ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)
        await redis_ledger.append("bob", 20, ChangeKind.EARNED, SOURCE_SESSION)
        assert (await redis_ledger.rank("alice")).rank == 2


class TestAppendOnce:
    async def test_second_append_for_reference_is_skipped(self, ledger):
        draft = EntryDraft(
            amount=50, change_kind=ChangeKind.BONUS, source_kind=SOURCE_REWARD,
            reference_id="first-steps",
        )
        first = await ledger.append_once("alice", draft)
        assert first.amount == 50
        assert await ledger.append_once("alice", draft) is None
        assert await ledger.current_balance("alice") == 50

    async def test_scoped_by_user_and_source(self, ledger):
        for user, source in (("alice", SOURCE_REWARD), ("bob", SOURCE_REWARD), ("alice", SOURCE_SESSION)):
            entry = await ledger.append_once(user, EntryDraft(
                amount=5, change_kind=ChangeKind.BONUS, source_kind=source, reference_id="x",
            ))
            assert entry is not None

    async def test_needs_reference(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.append_once("alice", _earn(5))


class TestSubscriberFailures:
    async def test_raising_subscriber_does_not_fail_append(self, ledger, event_bus, caplog):
        def broken(event):
            raise RuntimeError("notifier down")

        event_bus.subscribe("ledger.*", broken)
        with caplog.at_level(logging.ERROR, logger="growthbank.events.bus"):
            entry = await ledger.append("alice", 10, ChangeKind.EARNED, SOURCE_SESSION)

        assert entry.balance_after == 10
        assert await ledger.current_balance("alice") == 10
        assert "Event handler failed" in caplog.text
