"""Event bus for GrowthBank coin activity."""

from .bus import (
    ALL_EVENT_TYPES,
    EVENT_DECAY_APPLIED,
    EVENT_DECAY_CYCLE_COMPLETED,
    EVENT_LEDGER_APPENDED,
    EVENT_LEDGER_REJECTED,
    EVENT_REWARD_RECORDED,
    EVENT_RULE_CHANGED,
    AsyncEventBus,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
    "AsyncEventBus",
    "EVENT_LEDGER_APPENDED",
    "EVENT_LEDGER_REJECTED",
    "EVENT_REWARD_RECORDED",
    "EVENT_DECAY_APPLIED",
    "EVENT_DECAY_CYCLE_COMPLETED",
    "EVENT_RULE_CHANGED",
    "ALL_EVENT_TYPES",
]
