"""Configuration management for deferlm."""

from .settings import (
    DeferLMConfig,
    LoggingConfig,
    FittingConfig,
    GroupingConfig,
    LogLevel,
    NAAction,
    ErrorPolicy,
    get_default_config,
    reset_default_config,
)

__all__ = [
    "DeferLMConfig",
    "LoggingConfig",
    "FittingConfig",
    "GroupingConfig",
    "LogLevel",
    "NAAction",
    "ErrorPolicy",
    "get_default_config",
    "reset_default_config",
]
