"""Observability for GrowthBank."""

from .metrics import CoinMetrics

__all__ = ["CoinMetrics"]
