"""
Ledger data model.

Entries are immutable once written; the balance snapshot on each entry
chains the trail together the way an audit log chains hashes.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, NamedTuple, Optional
from pydantic import BaseModel, Field, model_validator
import uuid

from ..constants import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeKind(str, Enum):
    """Category of a balance change."""

    EARNED = "earned"
    DECAYED = "decayed"
    REDEEMED = "redeemed"
    BONUS = "bonus"
    PENALTY = "penalty"


class EntryDraft(BaseModel):
    """An entry that has not been assigned a balance snapshot yet."""

    amount: int
    change_kind: ChangeKind
    source_kind: str
    reference_id: Optional[str] = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerEntry(BaseModel):
    """
    Single ledger entry.

    ``balance_after`` equals the previous entry's ``balance_after`` plus
    ``amount``; ``sequence`` orders entries per user even when
    ``created_at`` ties.
    """

    model_config = {"frozen": True}

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    sequence: int = Field(ge=1)
    amount: int
    balance_after: int
    change_kind: ChangeKind
    source_kind: str
    reference_id: Optional[str] = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def rule_id(self) -> Optional[str]:
        """Decay rule that produced this entry, if any."""
        return self.metadata.get("rule_id")


class DecayKey(NamedTuple):
    """Composite key identifying one decay application."""

    user_id: str
    reference_id: str
    rule_id: str

    def field(self) -> str:
        return f"{self.user_id}|{self.reference_id}|{self.rule_id}"


class HistoryQuery(BaseModel):
    """Filters and paging for ledger history."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    change_kind: Optional[ChangeKind] = None
    source_kind: Optional[str] = None
    limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "HistoryQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def matches(self, entry: LedgerEntry) -> bool:
        day = entry.created_at.date()
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        if self.change_kind and entry.change_kind != self.change_kind:
            return False
        if self.source_kind and entry.source_kind != self.source_kind:
            return False
        return True


class HistoryPage(BaseModel):
    """One page of history, newest first, with the unpaged match count."""

    entries: list[LedgerEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


class LeaderboardRow(BaseModel):
    rank: int
    user_id: str
    balance: int


class Ranking(BaseModel):
    """Position of one user among all users holding a balance."""

    user_id: str
    rank: int
    total_users: int
    balance: int
    percentile: float
