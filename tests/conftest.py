"""Shared fixtures for the GrowthBank test suite."""

from datetime import date, datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from growthbank.events import InMemoryEventBus
from growthbank.ledger import LedgerStore
from growthbank.observability import CoinMetrics
from growthbank.reward import RewardCalculator
from growthbank.seeds import default_catalog
from growthbank.sessions.models import SessionRecord, TaskKind
from growthbank.sessions.repository import InMemorySessionRepository
from growthbank.storage import MemoryStorageProvider

# A Wednesday
TODAY = date(2024, 5, 15)
NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def make_session(
    user_id: str = "alice",
    session_date: date = TODAY,
    total_coins: int = 100,
    subject: str = "math",
    task_id: str = "math-practice",
    task_kind: TaskKind = TaskKind.PRACTICE,
    **kwargs,
) -> SessionRecord:
    return SessionRecord(
        user_id=user_id,
        task_id=task_id,
        difficulty_id=kwargs.pop("difficulty_id", "normal"),
        session_date=session_date,
        focus_minutes=kwargs.pop("focus_minutes", 60),
        result_quantity=kwargs.pop("result_quantity", 10),
        total_coins=total_coins,
        subject=subject,
        task_kind=task_kind,
        **kwargs,
    )


@pytest.fixture
async def storage():
    provider = MemoryStorageProvider()
    await provider.connect()
    yield provider
    await provider.disconnect()


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def metrics():
    return CoinMetrics(registry=CollectorRegistry())


@pytest.fixture
def ledger(storage, event_bus, metrics):
    return LedgerStore(storage, event_bus=event_bus, metrics=metrics)


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def sessions():
    return InMemorySessionRepository()


@pytest.fixture
def calculator(catalog, sessions):
    return RewardCalculator(catalog, sessions)
