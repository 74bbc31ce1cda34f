"""Stock catalog and decay rules for a fresh installation."""

from __future__ import annotations

from .decay.models import DecayKind, DecayRule, DecayScope
from .sessions.models import Difficulty, DifficultyTier, Task, TaskKind
from .sessions.repository import InMemoryCatalog

DEFAULT_DIFFICULTIES = [
    Difficulty(difficulty_id="easy", label="Easy", coefficient=0.8, tier=DifficultyTier.EASY),
    Difficulty(difficulty_id="normal", label="Normal", coefficient=1.0, tier=DifficultyTier.NORMAL),
    Difficulty(difficulty_id="hard", label="Hard", coefficient=1.5, tier=DifficultyTier.HARD),
    Difficulty(difficulty_id="extreme", label="Extreme", coefficient=2.0, tier=DifficultyTier.EXTREME),
]

DEFAULT_TASKS = [
    Task(task_id="math-practice", name="Math exercises", subject="math",
         task_kind=TaskKind.PRACTICE, base_coin=2, unit_name="problem"),
    Task(task_id="math-reading", name="Math reading", subject="math",
         task_kind=TaskKind.READING, base_coin=1, unit_name="page"),
    Task(task_id="english-vocab", name="English vocabulary", subject="english",
         task_kind=TaskKind.STUDY, base_coin=1, unit_name="word"),
    Task(task_id="english-reading", name="English reading", subject="english",
         task_kind=TaskKind.READING, base_coin=3, unit_name="article"),
    Task(task_id="english-writing", name="English writing", subject="english",
         task_kind=TaskKind.PRACTICE, base_coin=5, unit_name="essay"),
    Task(task_id="major-practice", name="Major course exercises", subject="major",
         task_kind=TaskKind.PRACTICE, base_coin=3, unit_name="problem"),
    Task(task_id="major-reading", name="Major course reading", subject="major",
         task_kind=TaskKind.READING, base_coin=2, unit_name="page"),
    Task(task_id="coding-practice", name="Coding exercises", subject="programming",
         task_kind=TaskKind.CODING, base_coin=4, unit_name="problem"),
    Task(task_id="code-reading", name="Code reading", subject="programming",
         task_kind=TaskKind.READING, base_coin=2, unit_name="module"),
    Task(task_id="mock-exam", name="Mock exam", subject="general",
         task_kind=TaskKind.EXAM, base_coin=10, unit_name="paper"),
]

DEFAULT_DECAY_RULES = [
    DecayRule(
        rule_id="general-30d",
        name="General 30-day decay",
        description="Coins start decaying 5% after 30 days",
        threshold_days=30,
        decay_rate=0.05,
        decay_kind=DecayKind.PERCENTAGE,
        scope=DecayScope.ALL,
        priority=1,
    ),
    DecayRule(
        rule_id="math-21d",
        name="Math knowledge decay",
        description="Math coins decay 8% after 21 days",
        threshold_days=21,
        decay_rate=0.08,
        scope=DecayScope.SUBJECT,
        scope_value="math",
        priority=2,
    ),
    DecayRule(
        rule_id="english-14d",
        name="English memory decay",
        description="English coins decay 10% after 14 days",
        threshold_days=14,
        decay_rate=0.10,
        scope=DecayScope.SUBJECT,
        scope_value="english",
        priority=2,
    ),
    DecayRule(
        rule_id="programming-45d",
        name="Programming skill decay",
        description="Programming coins decay 3% after 45 days",
        threshold_days=45,
        decay_rate=0.03,
        scope=DecayScope.SUBJECT,
        scope_value="programming",
        priority=2,
    ),
]


def default_catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        tasks=[t.model_copy() for t in DEFAULT_TASKS],
        difficulties=[d.model_copy() for d in DEFAULT_DIFFICULTIES],
    )


def default_decay_rules() -> list[DecayRule]:
    return [r.model_copy(deep=True) for r in DEFAULT_DECAY_RULES]
