"""Property-based tests for ledger invariants.

Uses Hypothesis to check that the balance snapshot chain and the
non-negative spend rule hold for arbitrary sequences of writes.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from growthbank.exceptions import InsufficientBalanceError
from growthbank.ledger import ChangeKind, LedgerStore
from growthbank.storage import MemoryStorageProvider


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# (amount, is_spend)
operation = st.one_of(
    st.tuples(st.integers(min_value=1, max_value=500), st.just(False)),
    st.tuples(st.integers(min_value=-500, max_value=-1), st.just(True)),
    st.tuples(st.integers(min_value=-50, max_value=-1), st.just(False)),
)


def _run(ops: list[tuple[int, bool]], concurrent: bool):
    async def scenario():
        storage = MemoryStorageProvider()
        await storage.connect()
        ledger = LedgerStore(storage)

        async def apply(amount: int, spend: bool):
            kind = ChangeKind.EARNED if amount > 0 else (
                ChangeKind.REDEEMED if spend else ChangeKind.DECAYED
            )
            try:
                return await ledger.append("u", amount, kind, "test", spend=spend)
            except InsufficientBalanceError:
                return None

        if concurrent:
            results = await asyncio.gather(*(apply(a, s) for a, s in ops))
        else:
            results = [await apply(a, s) for a, s in ops]
        return ledger, results, await ledger.entries("u"), await ledger.current_balance("u")

    return asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Property: balance equals the sum of accepted amounts
# ---------------------------------------------------------------------------


class TestBalanceChain:
    @given(ops=st.lists(operation, max_size=40))
    @settings(max_examples=100, deadline=None)
    def test_balance_is_sum_of_entries(self, ops):
        _, _, entries, balance = _run(ops, concurrent=False)
        assert balance == sum(e.amount for e in entries)

    @given(ops=st.lists(operation, max_size=40))
    @settings(max_examples=100, deadline=None)
    def test_snapshots_chain(self, ops):
        _, _, entries, _ = _run(ops, concurrent=True)
        running = 0
        for seq, entry in enumerate(entries, start=1):
            running += entry.amount
            assert entry.sequence == seq
            assert entry.balance_after == running


# ---------------------------------------------------------------------------
# Property: spends never leave a negative balance
# ---------------------------------------------------------------------------


class TestSpendGuard:
    @given(ops=st.lists(operation, max_size=40))
    @settings(max_examples=100, deadline=None)
    def test_accepted_spends_stay_non_negative(self, ops):
        _, results, _, _ = _run(ops, concurrent=True)
        for entry in results:
            if entry is not None and entry.change_kind == ChangeKind.REDEEMED:
                assert entry.balance_after >= 0

    @given(ops=st.lists(operation, max_size=40))
    @settings(max_examples=100, deadline=None)
    def test_rejected_spends_write_nothing(self, ops):
        _, results, entries, _ = _run(ops, concurrent=False)
        assert len(entries) == sum(1 for r in results if r is not None)
