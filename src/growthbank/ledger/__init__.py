"""Append-only coin ledger."""

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
from .store import LedgerStore

__all__ = [
    "ChangeKind",
    "DecayKey",
    "EntryDraft",
    "HistoryPage",
    "HistoryQuery",
    "LeaderboardRow",
    "LedgerEntry",
    "LedgerStore",
    "Ranking",
]
