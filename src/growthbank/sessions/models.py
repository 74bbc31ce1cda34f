"""
Catalog and session records read by the coin engine.

These are owned by the session subsystem; the engine only reads them.
"""

from datetime import date
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
import uuid


class TaskKind(str, Enum):
    STUDY = "study"
    PRACTICE = "practice"
    EXAM = "exam"
    READING = "reading"
    CODING = "coding"
    OTHER = "other"


class DifficultyTier(str, Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    EXTREME = "extreme"


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class Task(BaseModel):
    """A task definition from the catalog."""

    task_id: str
    name: str
    subject: str
    task_kind: TaskKind = TaskKind.OTHER
    base_coin: int = Field(ge=0)
    unit_name: str = "unit"
    is_active: bool = True


class Difficulty(BaseModel):
    """A difficulty level with its reward coefficient."""

    difficulty_id: str
    label: str
    coefficient: float = Field(gt=0)
    tier: DifficultyTier = DifficultyTier.NORMAL
    is_active: bool = True


class SessionRecord(BaseModel):
    """
    A logged learning session.

    ``subject`` and ``task_kind`` are copied from the task when the
    session is stored so decay scope matching needs no catalog join.
    ``total_coins`` is the award recorded at completion and is the base
    every decay rule works from.
    """

    session_id: str = Field(default_factory=lambda: f"s_{uuid.uuid4().hex[:16]}")
    user_id: str
    task_id: str
    difficulty_id: str
    session_date: date
    focus_minutes: int = Field(default=0, ge=0)
    result_quantity: int = Field(default=0, ge=0)
    total_coins: int = Field(default=0, ge=0)
    status: SessionStatus = SessionStatus.COMPLETED
    subject: Optional[str] = None
    task_kind: Optional[TaskKind] = None
    notes: Optional[str] = None
