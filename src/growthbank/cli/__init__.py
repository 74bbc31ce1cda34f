"""Command-line interface for GrowthBank."""

from .main import cli, main

__all__ = ["cli", "main"]
