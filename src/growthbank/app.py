"""
Wiring for a complete GrowthBank instance.

Usage:
    async with GrowthBank(config, catalog=catalog, sessions=sessions) as bank:
        await bank.coins.complete_session(...)
        await bank.engine.run_cycle()
"""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import CollectorRegistry

from .config import GrowthBankConfig
from .decay.engine import DecayRuleEngine
from .decay.rules import DecayRuleRepository
from .decay.scheduler import DecayScheduler
from .events.bus import AsyncEventBus, EventBus, InMemoryEventBus
from .ledger.store import LedgerStore
from .observability.metrics import CoinMetrics
from .reward.calculator import RewardCalculator
from .seeds import default_catalog
from .services.coin_service import CoinService
from .sessions.repository import Catalog, InMemorySessionRepository, SessionRepository
from .storage import AbstractStorageProvider, create_provider

logger = logging.getLogger(__name__)


def _default_bus(kind: str) -> EventBus:
    if kind == "async":
        return AsyncEventBus()
    return InMemoryEventBus()


class GrowthBank:
    """Owns the storage connection and every engine component built on it."""

    def __init__(
        self,
        config: Optional[GrowthBankConfig] = None,
        *,
        catalog: Optional[Catalog] = None,
        sessions: Optional[SessionRepository] = None,
        storage: Optional[AbstractStorageProvider] = None,
        event_bus: Optional[EventBus] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self.config = config or GrowthBankConfig()
        self.storage = storage or create_provider(self.config.storage)
        self.catalog = catalog or default_catalog()
        self.sessions = sessions or InMemorySessionRepository()
        self.events = event_bus or _default_bus(self.config.event_bus)
        self.metrics = CoinMetrics(registry=registry or CollectorRegistry())

        self.ledger = LedgerStore(self.storage, event_bus=self.events, metrics=self.metrics)
        self.rules = DecayRuleRepository(self.storage, event_bus=self.events)
        self.calculator = RewardCalculator(self.catalog, self.sessions, self.config.reward)
        self.engine = DecayRuleEngine(
            self.ledger,
            self.sessions,
            self.rules,
            self.config.decay,
            event_bus=self.events,
            metrics=self.metrics,
        )
        self.scheduler = DecayScheduler(self.engine, self.rules, self.config.scheduler)
        self.coins = CoinService(
            self.ledger, self.calculator, self.sessions, self.catalog, event_bus=self.events
        )

    async def __aenter__(self) -> "GrowthBank":
        await self.storage.connect()
        if isinstance(self.events, AsyncEventBus):
            await self.events.start()
        logger.debug("GrowthBank connected to %s storage", self.config.storage.backend)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.scheduler.stop()
        if isinstance(self.events, AsyncEventBus):
            await self.events.stop()
        await self.storage.disconnect()
