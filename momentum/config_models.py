from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from momentum import CONFIG_PATH, PROJECT_ROOT

logger = logging.getLogger(__name__)


# =============================================================================
# EngineConfig (args/engine.yaml)
# =============================================================================

class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    database_path: str = Field(default="data/momentum.db")

    def resolved_path(self) -> Path:
        override = os.environ.get("MOMENTUM_DB_PATH")
        if override:
            return Path(override)
        path = Path(self.database_path)
        return path if path.is_absolute() else PROJECT_ROOT / path


class DecompositionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    min_step_minutes: int = Field(default=5, ge=1)
    chunk_split_factor: float = Field(default=1.5, gt=1.0)
    merge_max_minutes: int = Field(default=45, ge=1)
    split_threshold_minutes: int = Field(default=45, ge=1)
    recent_log_window: int = Field(default=10, ge=1)
    strong_pattern_threshold: int = Field(default=3, ge=1)
    deletion_split_threshold: int = Field(default=3, ge=1)
    split_min_minutes: int = Field(default=20, ge=0)
    calibration_window: int = Field(default=100, ge=1)
    calibration_min_samples: int = Field(default=3, ge=1)
    ratio_min: float = Field(default=0.5, gt=0)
    ratio_max: float = Field(default=2.0, gt=0)


class SuggestionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    deferral_window: int = Field(default=50, ge=1)
    min_deferrals: int = Field(default=3, ge=1)
    min_step_minutes: int = Field(default=5, ge=1)
    collect_max_minutes: int = Field(default=10, ge=1)
    collect_fraction: float = Field(default=0.25, gt=0.0, lt=1.0)


class ReschedulingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    history_limit: int = Field(default=20, ge=1)
    min_samples: int = Field(default=5, ge=1)
    cold_start_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    max_confidence: float = Field(default=0.95, ge=0.0, le=1.0)


class NudgeConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    daily_cap: int = Field(default=5, ge=1)
    pattern_missed_threshold: int = Field(default=2, ge=1)
    momentum_completed_threshold: int = Field(default=3, ge=1)
    snooze_minutes: int = Field(default=60, ge=1)


class InsightConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_insights: int = Field(default=3, ge=1)
    praise_completion_rate: int = Field(default=80, ge=0, le=100)
    low_completion_rate: int = Field(default=50, ge=0, le=100)
    low_completion_min_tasks: int = Field(default=3, ge=1)
    over_estimate_accuracy: int = Field(default=130, ge=100)
    under_estimate_accuracy: int = Field(default=70, ge=0, le=100)
    notes_habit_threshold: int = Field(default=3, ge=1)


class EngineConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    decomposition: DecompositionConfig = Field(default_factory=DecompositionConfig)
    suggestions: SuggestionConfig = Field(default_factory=SuggestionConfig)
    rescheduling: ReschedulingConfig = Field(default_factory=ReschedulingConfig)
    nudges: NudgeConfig = Field(default_factory=NudgeConfig)
    insights: InsightConfig = Field(default_factory=InsightConfig)


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load args/engine.yaml; a missing or empty file yields the defaults."""
    path = path or CONFIG_PATH
    if not path.exists():
        logger.debug("Engine config %s not found, using defaults", path)
        return EngineConfig()
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return EngineConfig.model_validate(raw)


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Process-wide config, read once."""
    return load_engine_config()


__all__ = [
    "DecompositionConfig",
    "EngineConfig",
    "InsightConfig",
    "NudgeConfig",
    "ReschedulingConfig",
    "StorageConfig",
    "SuggestionConfig",
    "get_engine_config",
    "load_engine_config",
]
