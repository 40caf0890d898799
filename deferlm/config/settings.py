"""
Configuration management system for deferlm.

Provides a hierarchical configuration with support for YAML files,
environment variables and runtime updates.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from enum import Enum

from ..core.exceptions import ConfigurationError


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class NAAction(str, Enum):
    """Missing-value policies understood by the fitting routine."""
    OMIT = "omit"        # Drop incomplete rows
    EXCLUDE = "exclude"  # Drop for fitting, pad residuals/fitted back with NaN
    FAIL = "fail"        # Refuse to fit when any referenced value is missing


class ErrorPolicy(str, Enum):
    """What the grouping driver does when a partition callback raises."""
    RAISE = "raise"
    SKIP = "skip"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(validate_assignment=True)

    level: LogLevel = LogLevel.INFO
    file_logging: bool = False
    log_file: Optional[Path] = None
    console_logging: bool = True
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class FittingConfig(BaseModel):
    """Least-squares fitting configuration."""
    model_config = ConfigDict(validate_assignment=True)

    default_na_action: NAAction = NAAction.OMIT
    rank_tolerance: float = 1e-7
    default_raw: bool = True

    @field_validator("default_na_action", mode="before")
    @classmethod
    def validate_na_action(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("rank_tolerance")
    @classmethod
    def validate_rank_tolerance(cls, v):
        if v <= 0:
            raise ValueError("rank_tolerance must be positive")
        return v


class GroupingConfig(BaseModel):
    """Grouped execution configuration."""
    model_config = ConfigDict(validate_assignment=True)

    parallel: bool = False
    max_workers: Optional[int] = Field(default=None, validate_default=True)
    result_column: str = "fit"
    on_error: ErrorPolicy = ErrorPolicy.RAISE

    @field_validator("max_workers", mode="before")
    @classmethod
    def validate_max_workers(cls, v):
        if v is None:
            return min(8, os.cpu_count() or 1)
        return max(1, int(v))


class DeferLMConfig(BaseModel):
    """Main configuration class for deferlm."""
    model_config = ConfigDict(validate_assignment=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    fitting: FittingConfig = Field(default_factory=FittingConfig)
    grouping: GroupingConfig = Field(default_factory=GroupingConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            **kwargs: Override specific configuration sections
        """
        config_data: Dict[str, Any] = {}
        if config_file:
            config_data = _load_config_file(config_file)

        _merge_sections(config_data, _load_environment_variables())
        _merge_sections(config_data, kwargs)

        try:
            super().__init__(**config_data)
        except ValidationError as e:
            raise ConfigurationError(reason=str(e)) from e

        if self.logging.file_logging and self.logging.log_file is None:
            self.logging.log_file = Path.home() / ".deferlm" / "logs" / "deferlm.log"

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save current configuration to YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, indent=2)

    def update(self, **kwargs) -> None:
        """
        Update configuration values.

        Keys are either section names (``fitting={...}``) or dotted paths
        passed through ``**{"fitting.default_na_action": "fail"}``.
        """
        for key, value in kwargs.items():
            section_name, _, field_name = key.partition(".")
            if not hasattr(self, section_name):
                raise ConfigurationError(config_key=key, reason="unknown section")

            section = getattr(self, section_name)
            try:
                if field_name:
                    if field_name not in type(section).model_fields:
                        raise ConfigurationError(config_key=key, reason="unknown setting")
                    setattr(section, field_name, value)
                elif isinstance(value, dict):
                    for sub_key, sub_value in value.items():
                        setattr(section, sub_key, sub_value)
                else:
                    setattr(self, section_name, value)
            except ValidationError as e:
                raise ConfigurationError(config_key=key, reason=str(e)) from e


def get_user_config_path() -> Path:
    """Get the user's configuration file path."""
    return Path.home() / ".deferlm" / "config.yaml"


def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(config_file)
    if not config_path.exists():
        raise ConfigurationError(config_key=str(config_path), reason="configuration file not found")

    with open(config_path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(config_key=str(config_path), reason=str(e)) from e

    if not isinstance(data, dict):
        raise ConfigurationError(config_key=str(config_path), reason="top level must be a mapping")
    return data


def _load_environment_variables() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    env_mappings = {
        "DEFERLM_LOG_LEVEL": ("logging", "level"),
        "DEFERLM_NA_ACTION": ("fitting", "default_na_action"),
        "DEFERLM_PARALLEL": ("grouping", "parallel"),
        "DEFERLM_MAX_WORKERS": ("grouping", "max_workers"),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.getenv(env_var)
        if value is not None:
            if key == "max_workers":
                try:
                    value = int(value)
                except ValueError as e:
                    raise ConfigurationError(config_key=env_var, reason=f"not an integer: {value!r}") from e
            elif key == "parallel":
                value = value.lower() in ("true", "1", "yes", "on")

            config.setdefault(section, {})[key] = value

    return config


def _merge_sections(base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Merge section dictionaries one level deep."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update(value)
        else:
            base[key] = value


# Default configuration instance
_default_config: Optional[DeferLMConfig] = None


def get_default_config() -> DeferLMConfig:
    """Get the default configuration instance."""
    global _default_config
    if _default_config is None:
        user_config = get_user_config_path()
        # Environment variables still override the user file
        _default_config = DeferLMConfig(config_file=user_config if user_config.exists() else None)
    return _default_config


def reset_default_config() -> None:
    """Forget the default configuration so it is rebuilt on next access."""
    global _default_config
    _default_config = None
