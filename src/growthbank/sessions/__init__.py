"""Read-only view of the catalog and logged sessions."""

from .models import (
    Difficulty,
    DifficultyTier,
    SessionRecord,
    SessionStatus,
    Task,
    TaskKind,
)
from .repository import (
    Catalog,
    InMemoryCatalog,
    InMemorySessionRepository,
    SessionRepository,
)

__all__ = [
    "Catalog",
    "Difficulty",
    "DifficultyTier",
    "InMemoryCatalog",
    "InMemorySessionRepository",
    "SessionRecord",
    "SessionRepository",
    "SessionStatus",
    "Task",
    "TaskKind",
]
