"""Service layer for GrowthBank."""

from .coin_service import CoinService
from .models import (
    CoinEfficiency,
    CoinSummary,
    EarningSource,
    EfficiencyLevel,
    SessionReward,
)

__all__ = [
    "CoinService",
    "CoinEfficiency",
    "CoinSummary",
    "EarningSource",
    "EfficiencyLevel",
    "SessionReward",
]
