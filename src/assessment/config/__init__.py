"""Configuration package for the assessment engine."""

from assessment.config.app_config import (
    AppConfig,
    GradingConfig,
    LLMSection,
    MakeupConfig,
    ReminderConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GradingConfig",
    "LLMSection",
    "MakeupConfig",
    "ReminderConfig",
    "clear_config_cache",
    "load_app_config",
]
