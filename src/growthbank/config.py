"""
GrowthBank configuration.

One pydantic model per subsystem, combined in ``GrowthBankConfig`` and
loaded from YAML:

    storage:
      backend: redis
      redis_host: cache.internal
    decay:
      batch_size: 100
      cycle_timeout_seconds: 600
    scheduler:
      daily_run_at: "02:00"

Environment variables ``GROWTHBANK_STORAGE_BACKEND``,
``GROWTHBANK_STORAGE_URL`` and ``GROWTHBANK_LOG_LEVEL`` override the file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

import pydantic
import yaml
from pydantic import BaseModel, Field

from .decay.models import DecayConfig, SchedulerConfig
from .exceptions import ConfigurationError
from .reward.models import RewardConfig
from .storage.provider import StorageConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "GROWTHBANK_"


class GrowthBankConfig(BaseModel):
    """Top-level configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    reward: RewardConfig = Field(default_factory=RewardConfig)
    decay: DecayConfig = Field(default_factory=DecayConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    log_level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    event_bus: str = Field(default="memory", pattern=r"^(memory|async)$")
    metrics_port: Optional[int] = Field(default=None, ge=1, le=65535)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "GrowthBankConfig":
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: The file is unreadable or invalid.
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "GrowthBankConfig":
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[dict[str, str]] = None,
    ) -> "GrowthBankConfig":
        """Load from ``path`` (if given) and apply environment overrides."""
        config = cls.from_yaml(path) if path else cls()
        return config.with_env(environ if environ is not None else dict(os.environ))

    def with_env(self, environ: dict[str, str]) -> "GrowthBankConfig":
        data = self.model_dump()
        if backend := environ.get(f"{ENV_PREFIX}STORAGE_BACKEND"):
            data["storage"]["backend"] = backend
        if url := environ.get(f"{ENV_PREFIX}STORAGE_URL"):
            data["storage"]["connection_string"] = url
        if level := environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
            data["log_level"] = level.upper()
        return self.from_dict(data)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Write this configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
