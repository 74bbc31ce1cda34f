"""
Achievement conditions.

A closed set of typed conditions evaluated against a ``UserStats``
snapshot. Conditions are plain data, so they round-trip through YAML and
JSON and can be validated before they are stored:

    kind: all_of
    conditions:
      - kind: session_count_at_least
        value: 10
      - kind: subject_coins_at_least
        subject: math
        value: 100
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, Union

import pydantic
import yaml
from pydantic import BaseModel, Field, TypeAdapter

from .exceptions import ConfigurationError, ValidationError


class UserStats(BaseModel):
    """Snapshot of a user's progress that conditions are checked against."""

    user_id: str
    session_count: int = 0
    coins_earned: int = 0
    balance: int = 0
    streak_days: int = 0
    focus_minutes: int = 0
    subject_coins: dict[str, int] = Field(default_factory=dict)


class SessionCountAtLeast(BaseModel):
    kind: Literal["session_count_at_least"] = "session_count_at_least"
    value: int = Field(ge=0)

    def evaluate(self, stats: UserStats) -> bool:
        return stats.session_count >= self.value


class CoinsEarnedAtLeast(BaseModel):
    kind: Literal["coins_earned_at_least"] = "coins_earned_at_least"
    value: int = Field(ge=0)

    def evaluate(self, stats: UserStats) -> bool:
        return stats.coins_earned >= self.value


class StreakAtLeast(BaseModel):
    kind: Literal["streak_at_least"] = "streak_at_least"
    value: int = Field(ge=1)

    def evaluate(self, stats: UserStats) -> bool:
        return stats.streak_days >= self.value


class FocusMinutesAtLeast(BaseModel):
    kind: Literal["focus_minutes_at_least"] = "focus_minutes_at_least"
    value: int = Field(ge=0)

    def evaluate(self, stats: UserStats) -> bool:
        return stats.focus_minutes >= self.value


class SubjectCoinsAtLeast(BaseModel):
    kind: Literal["subject_coins_at_least"] = "subject_coins_at_least"
    subject: str
    value: int = Field(ge=0)

    def evaluate(self, stats: UserStats) -> bool:
        return stats.subject_coins.get(self.subject, 0) >= self.value


class BalanceAtLeast(BaseModel):
    kind: Literal["balance_at_least"] = "balance_at_least"
    value: int

    def evaluate(self, stats: UserStats) -> bool:
        return stats.balance >= self.value


class AllOf(BaseModel):
    kind: Literal["all_of"] = "all_of"
    conditions: list["Condition"] = Field(min_length=1)

    def evaluate(self, stats: UserStats) -> bool:
        return all(c.evaluate(stats) for c in self.conditions)


class AnyOf(BaseModel):
    kind: Literal["any_of"] = "any_of"
    conditions: list["Condition"] = Field(min_length=1)

    def evaluate(self, stats: UserStats) -> bool:
        return any(c.evaluate(stats) for c in self.conditions)


Condition = Annotated[
    Union[
        SessionCountAtLeast,
        CoinsEarnedAtLeast,
        StreakAtLeast,
        FocusMinutesAtLeast,
        SubjectCoinsAtLeast,
        BalanceAtLeast,
        AllOf,
        AnyOf,
    ],
    Field(discriminator="kind"),
]

AllOf.model_rebuild()
AnyOf.model_rebuild()

_condition_adapter: TypeAdapter[Condition] = TypeAdapter(Condition)


def parse_condition(data: dict[str, Any]) -> Condition:
    """Build a condition from its dict form.

    Raises:
        ValidationError: Unknown ``kind`` or bad fields.
    """
    try:
        return _condition_adapter.validate_python(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid condition: {exc}") from exc


class AchievementDefinition(BaseModel):
    """An achievement awarded with coins once its condition holds."""

    achievement_id: str
    name: str
    description: str = ""
    reward_coins: int = Field(default=0, ge=0)
    condition: Condition

    def is_met(self, stats: UserStats) -> bool:
        return self.condition.evaluate(stats)


def load_achievements(path: Union[str, Path]) -> list[AchievementDefinition]:
    """Load an ``achievements`` list from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot load achievements from {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    try:
        return [AchievementDefinition.model_validate(a) for a in data.get("achievements", [])]
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"Invalid achievements in {path}: {exc}") from exc
