"""Scheduled coin decay."""

from .engine import DecayRuleEngine
from .models import (
    CycleFailure,
    CycleReport,
    DecayConfig,
    DecayKind,
    DecayPrediction,
    DecayRule,
    DecayRuleUpdate,
    DecayScope,
    DecayStatistics,
    RuleDecayTotal,
    SchedulerConfig,
)
from .rules import DecayRuleRepository
from .scheduler import DecayScheduler, SchedulerStatus

__all__ = [
    "CycleFailure",
    "CycleReport",
    "DecayConfig",
    "DecayKind",
    "DecayPrediction",
    "DecayRule",
    "DecayRuleEngine",
    "DecayRuleRepository",
    "DecayRuleUpdate",
    "DecayScheduler",
    "DecayScope",
    "DecayStatistics",
    "RuleDecayTotal",
    "SchedulerConfig",
    "SchedulerStatus",
]
