"""
Session and catalog collaborators.

The coin engine depends only on the two protocols below. The in-memory
implementations back the CLI, local development and tests.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import yaml

from ..exceptions import ConfigurationError, SessionNotFoundError, ValidationError
from .models import Difficulty, SessionRecord, SessionStatus, Task


@runtime_checkable
class Catalog(Protocol):
    """Read access to task definitions and difficulty levels."""

    async def get_task(self, task_id: str) -> Optional[Task]: ...

    async def get_difficulty(self, difficulty_id: str) -> Optional[Difficulty]: ...


@runtime_checkable
class SessionRepository(Protocol):
    """Queries the coin engine runs against logged sessions."""

    async def active_user_ids(self, since: date) -> list[str]: ...

    async def sessions_for_decay(self, user_id: str, since: date) -> list[SessionRecord]: ...

    async def completed_session_dates(
        self, user_id: str, before: date, limit: int
    ) -> list[date]: ...

    async def has_completed_session(self, user_id: str, task_id: str) -> bool: ...

    async def count_completed_on(self, user_id: str, day: date) -> int: ...

    async def completed_sessions(self, user_id: str, since: date) -> list[SessionRecord]: ...

    async def get(self, session_id: str) -> SessionRecord: ...

    async def add(self, session: SessionRecord) -> SessionRecord: ...


def _load_yaml(path: Union[str, Path]) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    return data


class InMemoryCatalog:
    """Dictionary-backed catalog."""

    def __init__(
        self,
        tasks: Optional[list[Task]] = None,
        difficulties: Optional[list[Difficulty]] = None,
    ):
        self._tasks = {t.task_id: t for t in tasks or []}
        self._difficulties = {d.difficulty_id: d for d in difficulties or []}

    def add_task(self, task: Task) -> None:
        self._tasks[task.task_id] = task

    def add_difficulty(self, difficulty: Difficulty) -> None:
        self._difficulties[difficulty.difficulty_id] = difficulty

    async def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    async def get_difficulty(self, difficulty_id: str) -> Optional[Difficulty]:
        return self._difficulties.get(difficulty_id)

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def difficulties(self) -> list[Difficulty]:
        return list(self._difficulties.values())

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "InMemoryCatalog":
        """Load ``tasks`` and ``difficulties`` lists from a YAML file."""
        data = _load_yaml(path)
        return cls(
            tasks=[Task.model_validate(t) for t in data.get("tasks", [])],
            difficulties=[Difficulty.model_validate(d) for d in data.get("difficulties", [])],
        )


class InMemorySessionRepository:
    """
    Session store kept in a dictionary.

    Logins are tracked separately so a user who only signed in still
    counts as active for decay.
    """

    def __init__(self, sessions: Optional[list[SessionRecord]] = None):
        self._sessions: dict[str, SessionRecord] = {}
        self._logins: dict[str, date] = {}
        for session in sessions or []:
            self._sessions[session.session_id] = session

    def record_login(self, user_id: str, day: date) -> None:
        current = self._logins.get(user_id)
        if current is None or day > current:
            self._logins[user_id] = day

    def _completed(self, user_id: str) -> list[SessionRecord]:
        return [
            s for s in self._sessions.values()
            if s.user_id == user_id and s.status == SessionStatus.COMPLETED
        ]

    async def active_user_ids(self, since: date) -> list[str]:
        users = {u for u, last in self._logins.items() if last >= since}
        users.update(s.user_id for s in self._sessions.values() if s.session_date >= since)
        return sorted(users)

    async def sessions_for_decay(self, user_id: str, since: date) -> list[SessionRecord]:
        return [s for s in await self.completed_sessions(user_id, since) if s.total_coins > 0]

    async def completed_session_dates(
        self, user_id: str, before: date, limit: int
    ) -> list[date]:
        """Distinct completed-session dates strictly before ``before``, newest first."""
        dates = {s.session_date for s in self._completed(user_id) if s.session_date < before}
        return sorted(dates, reverse=True)[:limit]

    async def has_completed_session(self, user_id: str, task_id: str) -> bool:
        return any(s.task_id == task_id for s in self._completed(user_id))

    async def count_completed_on(self, user_id: str, day: date) -> int:
        return sum(1 for s in self._completed(user_id) if s.session_date == day)

    async def completed_sessions(self, user_id: str, since: date) -> list[SessionRecord]:
        sessions = [s for s in self._completed(user_id) if s.session_date >= since]
        return sorted(sessions, key=lambda s: (s.session_date, s.session_id))

    async def get(self, session_id: str) -> SessionRecord:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session {session_id} not found") from None

    async def add(self, session: SessionRecord) -> SessionRecord:
        if session.session_id in self._sessions:
            raise ValidationError(f"Session {session.session_id} already exists")
        self._sessions[session.session_id] = session
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "InMemorySessionRepository":
        """Load a ``sessions`` list (and optional ``logins`` map) from YAML."""
        data = _load_yaml(path)
        repo = cls([SessionRecord.model_validate(s) for s in data.get("sessions", [])])
        for user_id, day in (data.get("logins") or {}).items():
            repo.record_login(user_id, date.fromisoformat(str(day)))
        return repo
