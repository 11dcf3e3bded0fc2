"""Application configuration loader.

Loads configuration from data/config/assessment_v1.yaml (or the path in
the ASSESSMENT_CONFIG environment variable) and falls back to built-in
defaults when no file exists.

Usage:
    from assessment.config.app_config import load_app_config

    config = load_app_config()
    max_attempts = config.makeup.max_attempts
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

CONFIG_FILE = Path("data/config/assessment_v1.yaml")
CONFIG_ENV = "ASSESSMENT_CONFIG"


@dataclass
class GradingConfig:
    """Grading defaults."""

    default_points: int = 10
    pass_quality: int = 60
    multi_answer_delimiter: str = ","
    ai_timeout_seconds: int = 30


@dataclass
class MakeupConfig:
    """Makeup-exam workflow settings."""

    max_attempts: int = 2
    weak_topic_limit: int = 3
    create_on_overdue: bool = True


@dataclass
class ReminderConfig:
    """Deadline reminder thresholds, in days before the deadline."""

    thresholds_days: list[int] = field(default_factory=lambda: [3, 1, 0])


@dataclass
class LLMSection:
    """Language-model settings used by the subjective grader."""

    provider: str = "lmstudio"
    base_url: str | None = None
    model: str = "default"
    temperature: float = 0.2
    max_tokens: int = 1024


@dataclass
class AppConfig:
    """Application-wide configuration."""

    database_path: str = "db/assessment.db"
    grading: GradingConfig = field(default_factory=GradingConfig)
    makeup: MakeupConfig = field(default_factory=MakeupConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    llm: LLMSection = field(default_factory=LLMSection)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "database": {"path": "db/assessment.db"},
        "grading": {
            "default_points": 10,
            "pass_quality": 60,
            "multi_answer_delimiter": ",",
            "ai_timeout_seconds": 30,
        },
        "makeup": {
            "max_attempts": 2,
            "weak_topic_limit": 3,
            "create_on_overdue": True,
        },
        "reminders": {"thresholds_days": [3, 1, 0]},
        "llm": {
            "provider": "lmstudio",
            "base_url": None,
            "model": "default",
            "temperature": 0.2,
            "max_tokens": 1024,
        },
    }


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge a (possibly partial) YAML document over the defaults."""
    result = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    grading_data = data.get("grading", {})
    makeup_data = data.get("makeup", {})
    reminder_data = data.get("reminders", {})
    llm_data = data.get("llm", {})

    grading = GradingConfig(
        default_points=int(grading_data.get("default_points", 10)),
        pass_quality=int(grading_data.get("pass_quality", 60)),
        multi_answer_delimiter=grading_data.get("multi_answer_delimiter", ","),
        ai_timeout_seconds=int(grading_data.get("ai_timeout_seconds", 30)),
    )
    makeup = MakeupConfig(
        max_attempts=int(makeup_data.get("max_attempts", 2)),
        weak_topic_limit=int(makeup_data.get("weak_topic_limit", 3)),
        create_on_overdue=bool(makeup_data.get("create_on_overdue", True)),
    )
    reminders = ReminderConfig(
        thresholds_days=[int(d) for d in reminder_data.get("thresholds_days", [3, 1, 0])],
    )
    llm = LLMSection(
        provider=llm_data.get("provider", "lmstudio"),
        base_url=llm_data.get("base_url"),
        model=llm_data.get("model", "default"),
        temperature=float(llm_data.get("temperature", 0.2)),
        max_tokens=int(llm_data.get("max_tokens", 1024)),
    )

    return AppConfig(
        database_path=data.get("database", {}).get("path", "db/assessment.db"),
        grading=grading,
        makeup=makeup,
        reminders=reminders,
        llm=llm,
    )


def get_config_path() -> Path:
    """Resolve the configuration file path (environment override first)."""
    env_path = os.environ.get(CONFIG_ENV)
    return Path(env_path) if env_path else CONFIG_FILE


def load_app_config(config_path: Path | None = None, force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        config_path: Explicit YAML path. Bypasses the cache when given.
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if config_path is None and _cached_config is not None and not force_reload:
        return _cached_config

    path = config_path or get_config_path()
    data = _get_defaults()

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        data = _merge(data, loaded)
    else:
        logger.info("using_default_config", missing=str(path))

    config = _parse_config(data)
    if config_path is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
