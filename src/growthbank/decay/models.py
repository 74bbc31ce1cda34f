"""
Decay rule models.
"""

from __future__ import annotations

import datetime as dt
import math
import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..constants import (
    ACTIVE_USER_WINDOW_DAYS,
    DECAY_SESSION_WINDOW_DAYS,
    MAX_PREDICTION_DAYS,
)
from ..sessions.models import SessionRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecayKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DecayScope(str, Enum):
    ALL = "all"
    SUBJECT = "subject"
    TASK_TYPE = "task_type"


class DecayRule(BaseModel):
    """
    Administrator-defined decay rule.

    A session older than ``threshold_days`` loses
    ``floor(total_coins * decay_rate)`` (percentage) or ``decay_rate``
    coins (fixed), never more than ``total_coins``, once per rule.
    """

    rule_id: str = Field(default_factory=lambda: f"rule_{uuid.uuid4().hex[:12]}")
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    threshold_days: int = Field(ge=0)
    decay_rate: float = Field(ge=0)
    decay_kind: DecayKind = DecayKind.PERCENTAGE
    scope: DecayScope = DecayScope.ALL
    scope_value: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_rule(self) -> "DecayRule":
        if self.decay_kind == DecayKind.PERCENTAGE and self.decay_rate > 1:
            raise ValueError("percentage decay_rate must be between 0 and 1")
        if self.scope != DecayScope.ALL and not self.scope_value:
            raise ValueError(f"scope {self.scope.value!r} requires a scope_value")
        return self

    @property
    def is_urgent(self) -> bool:
        """Rules flagged urgent run on the fast scheduler lane."""
        return bool(self.metadata.get("urgent") or self.metadata.get("emergency"))

    def applies_to(self, session: SessionRecord) -> bool:
        if self.scope == DecayScope.ALL:
            return True
        if self.scope == DecayScope.SUBJECT:
            return session.subject == self.scope_value
        kind = session.task_kind.value if session.task_kind is not None else None
        return kind == self.scope_value

    def amount_for(self, total_coins: int) -> int:
        """Coins to remove from a session worth ``total_coins``."""
        if total_coins <= 0:
            return 0
        if self.decay_kind == DecayKind.PERCENTAGE:
            amount = math.floor(total_coins * self.decay_rate)
        else:
            amount = math.floor(self.decay_rate)
        return max(0, min(amount, total_coins))


class DecayRuleUpdate(BaseModel):
    """Partial update for a decay rule; unset fields are left alone."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    threshold_days: Optional[int] = Field(default=None, ge=0)
    decay_rate: Optional[float] = Field(default=None, ge=0)
    decay_kind: Optional[DecayKind] = None
    scope: Optional[DecayScope] = None
    scope_value: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    metadata: Optional[dict[str, Any]] = None


class DecayConfig(BaseModel):
    """Tuning for decay cycles."""

    active_user_window_days: int = Field(default=ACTIVE_USER_WINDOW_DAYS, ge=1)
    session_window_days: int = Field(default=DECAY_SESSION_WINDOW_DAYS, ge=1)
    max_prediction_days: int = Field(default=MAX_PREDICTION_DAYS, ge=1)
    batch_size: int = Field(default=50, ge=1, description="Users per batch")
    max_concurrency: int = Field(default=4, ge=1, description="Users processed in parallel")
    cycle_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class SchedulerConfig(BaseModel):
    """When the scheduler runs decay cycles."""

    enabled: bool = True
    daily_run_at: time = Field(default=time(2, 0))
    urgent_interval_minutes: int = Field(default=60, ge=1)
    poll_interval_seconds: float = Field(default=30.0, gt=0)


class DecayPrediction(BaseModel):
    date: dt.date
    predicted_decay: int
    affected_sessions: int


class CycleFailure(BaseModel):
    user_id: str
    rule_id: Optional[str] = None
    session_id: Optional[str] = None
    error: str


class CycleReport(BaseModel):
    """Outcome of one decay cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    lane: str = "full"
    users_total: int = 0
    users_processed: int = 0
    entries_written: int = 0
    coins_decayed: int = 0
    failures: list[CycleFailure] = Field(default_factory=list)
    timed_out: bool = False
    checkpoint: Optional[str] = Field(
        default=None, description="Last user id finished when the cycle stopped early"
    )

    @property
    def completed(self) -> bool:
        return not self.timed_out


class RuleDecayTotal(BaseModel):
    rule_id: str
    rule_name: str
    total_decayed: int
    count: int


class DecayStatistics(BaseModel):
    days: int
    total_decayed: int
    decay_count: int
    avg_decay_per_day: float
    by_rule: list[RuleDecayTotal] = Field(default_factory=list)
