"""Result models returned by the coin service."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from ..ledger.models import LedgerEntry
from ..reward.models import RewardResult
from ..sessions.models import SessionRecord


class SessionReward(BaseModel):
    """A recorded session together with the entries it produced."""

    session: SessionRecord
    reward: RewardResult
    entries: list[LedgerEntry] = Field(default_factory=list)


class EarningSource(BaseModel):
    source: str
    amount: int
    count: int


class CoinSummary(BaseModel):
    user_id: str
    days: int
    current_balance: int
    total_earned: int
    total_spent: int
    total_decayed: int
    recent_transactions: list[LedgerEntry] = Field(default_factory=list)
    earning_sources: list[EarningSource] = Field(default_factory=list)


class EfficiencyLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CoinEfficiency(BaseModel):
    days: int
    coins_per_hour: float
    coins_per_session: float
    daily_average: float
    efficiency: EfficiencyLevel
