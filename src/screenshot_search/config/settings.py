"""Index configuration and CPU mode handling."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import ConfigError
from .defaults import (
    CPU_MODE_PROFILES,
    DB_DIRNAME,
    MODEL_CACHE_DIRNAME,
    SETTING_CPU_MODE,
    SETTING_SCREENSHOT_DIRECTORY,
)


class CpuMode(StrEnum):
    """Indexing throughput profile.

    Normal keeps the tray app responsive with small batches and a short
    pause between them; Fast trades responsiveness for throughput.
    """

    NORMAL = "normal"
    FAST = "fast"

    def batch_size(self) -> int:
        return CPU_MODE_PROFILES[self.value][0]

    def delay_ms(self) -> int:
        return CPU_MODE_PROFILES[self.value][1]

    @classmethod
    def parse(cls, value: str | None) -> CpuMode:
        """Map a persisted setting to a mode. Anything but "fast" is Normal."""
        if isinstance(value, str) and value.strip().lower() == cls.FAST.value:
            return cls.FAST
        return cls.NORMAL


class IndexConfig(BaseModel):
    """Immutable configuration passed by value to every index operation."""

    model_config = ConfigDict(frozen=True)

    db_path: Path = Field(..., description="Directory of the embedded vector store")
    cpu_mode: CpuMode = Field(default=CpuMode.NORMAL)
    screenshot_dir: Path = Field(..., description="Root of the screenshot corpus")

    @property
    def model_cache_dir(self) -> Path:
        """Model download cache, a dot-prefixed sibling of the store."""
        return self.db_path.parent / MODEL_CACHE_DIRNAME

    @classmethod
    def from_settings(
        cls, settings: Mapping[str, Any], config_dir: Path
    ) -> IndexConfig:
        """Build a config from the application's key-value settings.

        Args:
            settings: Settings provider (anything with ``.get``)
            config_dir: Per-user configuration directory holding the store

        Raises:
            ConfigError: If no screenshot directory is configured
        """
        screenshot_dir = settings.get(SETTING_SCREENSHOT_DIRECTORY)
        if not screenshot_dir:
            raise ConfigError(
                "No screenshot directory configured",
                context={"key": SETTING_SCREENSHOT_DIRECTORY},
            )

        return cls(
            db_path=Path(config_dir) / DB_DIRNAME,
            cpu_mode=CpuMode.parse(settings.get(SETTING_CPU_MODE)),
            screenshot_dir=Path(screenshot_dir),
        )
