"""
Ledger Store

Append-only coin ledger on top of an ``AbstractStorageProvider``.

Layout per user (``{prefix}`` from ``StorageConfig.key_prefix``):

    {prefix}:ledger:{user}:commits    list of JSON commits (one or more entries)
    {prefix}:ledger:{user}:balance    balance counter
    {prefix}:ledger:{user}:sequence   last assigned entry sequence
    {prefix}:ledger:decay_index       hash: "user|reference|rule" -> entry_id
    {prefix}:ledger:reference_index   hash: "user|source|reference" -> entry_id
    {prefix}:ledger:balances          sorted set: user -> balance

Usage:
    from growthbank.ledger import LedgerStore, ChangeKind
    from growthbank.storage import MemoryStorageProvider

    storage = MemoryStorageProvider()
    await storage.connect()

    ledger = LedgerStore(storage)
    await ledger.append("u1", 10, ChangeKind.EARNED, "session")
    assert await ledger.current_balance("u1") == 10
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..constants import SOURCE_SESSION_DECAY
from ..events.bus import EVENT_LEDGER_APPENDED, EVENT_LEDGER_REJECTED, Event, EventBus
from ..exceptions import InsufficientBalanceError, StorageError, ValidationError
from ..observability.metrics import CoinMetrics
from ..storage.provider import AbstractStorageProvider
from .models import (
    ChangeKind,
    DecayKey,
    EntryDraft,
    HistoryPage,
    HistoryQuery,
    LeaderboardRow,
    LedgerEntry,
    Ranking,
)

logger = logging.getLogger(__name__)


class LedgerStore:
    """
    Per-user append-only ledger with an exact running balance.

    Every write for a user happens under that user's ``asyncio.Lock``,
    held across the read of the balance counter, the commit and the
    counter update. Multi-entry appends are stored as one list element,
    so readers see all of a commit's entries or none of them.
    """

    def __init__(
        self,
        storage: AbstractStorageProvider,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[CoinMetrics] = None,
    ):
        self._storage = storage
        self._prefix = storage.config.key_prefix
        self._event_bus = event_bus
        self._metrics = metrics
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ── Keys ──────────────────────────────────────────────────

    def _commits_key(self, user_id: str) -> str:
        return f"{self._prefix}:ledger:{user_id}:commits"

    def _balance_key(self, user_id: str) -> str:
        return f"{self._prefix}:ledger:{user_id}:balance"

    def _sequence_key(self, user_id: str) -> str:
        return f"{self._prefix}:ledger:{user_id}:sequence"

    def _decay_index_key(self) -> str:
        return f"{self._prefix}:ledger:decay_index"

    def _balances_key(self) -> str:
        return f"{self._prefix}:ledger:balances"

    def _reference_index_key(self) -> str:
        return f"{self._prefix}:ledger:reference_index"

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    # ── Write operations ──────────────────────────────────────

    async def append(
        self,
        user_id: str,
        amount: int,
        change_kind: ChangeKind,
        source_kind: str,
        reference_id: Optional[str] = None,
        description: str = "",
        metadata: Optional[dict[str, Any]] = None,
        *,
        spend: bool = False,
    ) -> LedgerEntry:
        """Append a single entry and return it.

        Args:
            user_id: Owner of the entry.
            amount: Signed coin delta.
            change_kind: Category of the change.
            source_kind: Origin tag (``session``, ``reward``, ...).
            reference_id: Id of the originating record, if any.
            description: Human-readable text.
            metadata: Extra structured data stored with the entry.
            spend: Reject the append if it would leave a negative balance.

        Returns:
            The persisted ``LedgerEntry``.

        Raises:
            InsufficientBalanceError: ``spend`` is set and the balance
                would drop below zero.
            StorageError: The backend failed; the balance is unchanged.
        """
        draft = EntryDraft(
            amount=amount,
            change_kind=change_kind,
            source_kind=source_kind,
            reference_id=reference_id,
            description=description,
            metadata=metadata or {},
        )
        entries = await self.append_many(user_id, [draft], spend=spend)
        return entries[0]

    async def append_many(
        self,
        user_id: str,
        drafts: Iterable[EntryDraft],
        *,
        spend: bool = False,
    ) -> list[LedgerEntry]:
        """Append several entries as one commit.

        Balance snapshots are consecutive across the drafts. Either every
        entry becomes visible or none does.
        """
        drafts = list(drafts)
        if not drafts:
            raise ValidationError("append_many needs at least one entry")
        async with self._lock_for(user_id):
            return await self._commit(user_id, drafts, spend=spend)

    async def append_decay(
        self,
        key: DecayKey,
        amount: int,
        description: str,
        metadata: dict[str, Any],
    ) -> Optional[LedgerEntry]:
        """Append a decay entry unless one already exists for ``key``.

        The index check and the append happen under the same lock, so two
        overlapping cycles cannot both decay a session under one rule.

        Returns:
            The new entry, or ``None`` if the key was already decayed.
        """
        if amount >= 0:
            raise ValidationError("Decay amounts must be negative")
        draft = EntryDraft(
            amount=amount,
            change_kind=ChangeKind.DECAYED,
            source_kind=SOURCE_SESSION_DECAY,
            reference_id=key.reference_id,
            description=description,
            metadata={**metadata, "rule_id": key.rule_id},
        )
        async with self._lock_for(key.user_id):
            if await self.has_decay(key):
                return None
            entries = await self._commit(key.user_id, [draft], spend=False)
        return entries[0]

    async def append_once(self, user_id: str, draft: EntryDraft) -> Optional[LedgerEntry]:
        """Append ``draft`` unless this user already has an entry recorded
        once for the same ``source_kind`` and ``reference_id``.

        The lookup and the append share the user's lock.

        Returns:
            The new entry, or ``None`` if the reference was already recorded.
        """
        if not draft.reference_id:
            raise ValidationError("append_once needs a reference_id")
        field = f"{user_id}|{draft.source_kind}|{draft.reference_id}"
        async with self._lock_for(user_id):
            if await self._storage.hget(self._reference_index_key(), field) is not None:
                return None
            entries = await self._commit(user_id, [draft], spend=False)
            await self._storage.hset(self._reference_index_key(), field, entries[0].entry_id)
        return entries[0]

    async def _commit(
        self,
        user_id: str,
        drafts: list[EntryDraft],
        *,
        spend: bool,
    ) -> list[LedgerEntry]:
        # Caller holds the user's lock
        balance = await self.current_balance(user_id)
        sequence = int(await self._storage.get(self._sequence_key(user_id)) or 0)
        now = datetime.now(timezone.utc)

        entries: list[LedgerEntry] = []
        running = balance
        for offset, draft in enumerate(drafts, start=1):
            running += draft.amount
            if spend and running < 0:
                requested = -sum(d.amount for d in drafts if d.amount < 0)
                self._reject(user_id, balance, requested)
            entries.append(
                LedgerEntry(
                    user_id=user_id,
                    sequence=sequence + offset,
                    amount=draft.amount,
                    balance_after=running,
                    change_kind=draft.change_kind,
                    source_kind=draft.source_kind,
                    reference_id=draft.reference_id,
                    description=draft.description,
                    metadata=draft.metadata,
                    created_at=now,
                )
            )

        delta = running - balance
        payload = json.dumps([e.model_dump(mode="json") for e in entries], sort_keys=True)

        try:
            new_balance = await self._storage.incrby(self._balance_key(user_id), delta)
        except Exception as exc:
            raise StorageError(f"Failed to update balance for {user_id}") from exc
        if new_balance != running:
            # Another process wrote to this user without our lock
            await self._storage.incrby(self._balance_key(user_id), -delta)
            raise StorageError(
                f"Balance for {user_id} changed concurrently "
                f"(expected {running}, found {new_balance})"
            )

        try:
            await self._storage.rpush(self._commits_key(user_id), payload)
        except Exception as exc:
            await self._rollback_balance(user_id, delta)
            raise StorageError(f"Failed to persist ledger commit for {user_id}") from exc

        await self._storage.incrby(self._sequence_key(user_id), len(entries))
        await self._storage.zadd(self._balances_key(), float(running), user_id)
        for entry in entries:
            if entry.change_kind == ChangeKind.DECAYED and entry.reference_id and entry.rule_id:
                key = DecayKey(user_id, entry.reference_id, entry.rule_id)
                await self._storage.hset(self._decay_index_key(), key.field(), entry.entry_id)

        logger.debug(
            "Committed %d entr%s for %s, balance %d -> %d",
            len(entries), "y" if len(entries) == 1 else "ies", user_id, balance, running,
        )
        self._observe(user_id, entries, running)
        return entries

    async def _rollback_balance(self, user_id: str, delta: int) -> None:
        try:
            await self._storage.incrby(self._balance_key(user_id), -delta)
        except Exception:
            logger.error(
                "Could not restore balance counter for %s; run reconcile()",
                user_id, exc_info=True,
            )
            raise

    def _reject(self, user_id: str, balance: int, requested: int) -> None:
        if self._metrics:
            self._metrics.record_rejected_spend()
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_LEDGER_REJECTED,
                source="ledger",
                payload={"user_id": user_id, "balance": balance, "requested": requested},
            ))
        raise InsufficientBalanceError(user_id, balance, requested)

    def _observe(self, user_id: str, entries: list[LedgerEntry], balance: int) -> None:
        if self._metrics:
            for entry in entries:
                self._metrics.record_entry(entry.change_kind.value, entry.amount)
            self._metrics.record_balance(user_id, balance)
        if self._event_bus:
            for entry in entries:
                self._event_bus.emit(Event(
                    event_type=EVENT_LEDGER_APPENDED,
                    source="ledger",
                    payload=entry.model_dump(mode="json"),
                ))

    # ── Read operations ───────────────────────────────────────

    async def current_balance(self, user_id: str) -> int:
        """Return the user's balance, 0 if they have no entries."""
        value = await self._storage.get(self._balance_key(user_id))
        return int(value) if value is not None else 0

    async def entries(self, user_id: str) -> list[LedgerEntry]:
        """Return the user's full trail in sequence order."""
        commits = await self._storage.lrange(self._commits_key(user_id), 0, -1)
        result: list[LedgerEntry] = []
        for commit in commits:
            result.extend(LedgerEntry.model_validate(raw) for raw in json.loads(commit))
        result.sort(key=lambda e: e.sequence)
        return result

    async def history(
        self,
        user_id: str,
        query: Optional[HistoryQuery] = None,
    ) -> HistoryPage:
        """Return matching entries newest first, with the total match count."""
        query = query or HistoryQuery()
        matched = [e for e in await self.entries(user_id) if query.matches(e)]
        matched.reverse()
        page = matched[query.offset:query.offset + query.limit]
        return HistoryPage(
            entries=page,
            total=len(matched),
            limit=query.limit,
            offset=query.offset,
        )

    async def has_decay(self, key: DecayKey) -> bool:
        """Check whether ``key`` has already produced a decay entry."""
        return await self._storage.hget(self._decay_index_key(), key.field()) is not None

    async def user_ids(self) -> list[str]:
        """Users that have at least one entry, highest balance first."""
        rows = await self._storage.zrevrange(self._balances_key(), 0, -1)
        return [member for member, _ in rows]

    async def leaderboard(self, limit: int = 10) -> list[LeaderboardRow]:
        if limit < 1:
            raise ValidationError("limit must be positive")
        rows = await self._storage.zrevrange(self._balances_key(), 0, limit - 1)
        return [
            LeaderboardRow(rank=i, user_id=member, balance=int(score))
            for i, (member, score) in enumerate(rows, start=1)
        ]

    async def rank(self, user_id: str) -> Ranking:
        """Rank the user by balance; ties share the better rank."""
        rows = await self._storage.zrevrange(self._balances_key(), 0, -1)
        total = len(rows)
        balance = await self.current_balance(user_id)
        if user_id in {member for member, _ in rows}:
            rank = 1 + sum(1 for _, score in rows if score > balance)
            percentile = round((total - rank + 1) / total * 100, 2)
        else:
            rank = total + 1
            percentile = 0.0
        return Ranking(
            user_id=user_id,
            rank=rank,
            total_users=total,
            balance=balance,
            percentile=percentile,
        )

    # ── Integrity ─────────────────────────────────────────────

    async def verify(self, user_id: str) -> bool:
        """Check the snapshot chain and that the counter matches it."""
        entries = await self.entries(user_id)
        running = 0
        for expected_seq, entry in enumerate(entries, start=1):
            running += entry.amount
            if entry.sequence != expected_seq or entry.balance_after != running:
                logger.warning(
                    "Ledger chain broken for %s at sequence %d", user_id, entry.sequence
                )
                return False
        return await self.current_balance(user_id) == running

    async def reconcile(self, user_id: str) -> int:
        """Rebuild the counters and decay index from the stored trail.

        Returns:
            The balance implied by the trail.
        """
        async with self._lock_for(user_id):
            entries = await self.entries(user_id)
            balance = entries[-1].balance_after if entries else 0
            sequence = entries[-1].sequence if entries else 0
            await self._storage.set(self._balance_key(user_id), str(balance))
            await self._storage.set(self._sequence_key(user_id), str(sequence))
            if entries:
                await self._storage.zadd(self._balances_key(), float(balance), user_id)
            for entry in entries:
                if entry.change_kind == ChangeKind.DECAYED and entry.reference_id and entry.rule_id:
                    key = DecayKey(user_id, entry.reference_id, entry.rule_id)
                    await self._storage.hset(self._decay_index_key(), key.field(), entry.entry_id)
            logger.info("Reconciled ledger for %s: balance=%d entries=%d", user_id, balance, len(entries))
            return balance
