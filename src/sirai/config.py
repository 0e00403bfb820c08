"""Configuration loading for sirai.

Configuration lives in a YAML file (``sirai.yaml`` by default). The file is
deep-merged over :data:`DEFAULT_CONFIG_TEMPLATE` and validated into an
:class:`AppConfig`, which is then passed explicitly to every component.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_CONFIG_NAME = "sirai.yaml"

DEFAULT_TRUSTED_COMMANDS: List[str] = [
    "ls",
    "cat",
    "git status",
    "git diff",
    "git log",
    "pytest",
    "python -m pytest",
    "npm test",
    "npm run test",
    "npm run lint",
    "npm run build",
]

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "models": {
        "default": {
            "provider": "openai",
            "model": "gpt-5-mini",
            "base_url": "https://api.openai.com/v1/responses",
            "api_key": None,
            "timeout": 120.0,
            "input_price_per_million": 0.25,
            "output_price_per_million": 2.0,
        },
        "local": None,
        "remote": None,
        "roles": {},
        "max_attempts": 3,
        "retry_delay": 0.5,
        "max_tool_turns": 40,
    },
    "planning": {
        "enabled": True,
        "listing_depth": 4,
        "pre_planning": {"enabled": False},
        "delegate": {"enabled": False},
        "complexity": {
            "weights": {
                "task_type": 0.2,
                "scope_size": 0.3,
                "dependencies_count": 0.2,
                "technology_complexity": 0.2,
                "prior_success_rate": 0.1,
            },
            "thresholds": {"medium": 40.0, "high": 70.0},
        },
    },
    "tools": {
        "trusted_commands": list(DEFAULT_TRUSTED_COMMANDS),
        "process_timeout_ms": 30000,
        "max_output_chars": 20000,
    },
    "validation": {
        "auto_commands": [],
        "command_timeout_ms": 120000,
        "auto_fix": False,
        "max_fix_attempts": 3,
    },
    "session": {
        "retry_delay": 1.0,
        "max_same_state_retries": 30,
    },
    "history": {
        "path": ".sirai/task-history.json",
        "max_tasks": 50,
    },
    "context": {
        "max_depth": 4,
        "max_files": 500,
    },
    "paths": {
        "data": ".sirai",
        "logs": ".sirai/logs",
    },
}


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed or validated."""


class ConfigModel(BaseModel):
    """Base model for configuration sections; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class ModelSettings(ConfigModel):
    """Connection settings for a single language model."""

    provider: Literal["openai", "offline"] = "openai"
    model: str = "gpt-5-mini"
    base_url: str = "https://api.openai.com/v1/responses"
    api_key: Optional[str] = None
    timeout: float = 120.0
    input_price_per_million: float = 0.0
    output_price_per_million: float = 0.0


class ModelsConfig(ConfigModel):
    default: ModelSettings = Field(default_factory=ModelSettings)
    local: Optional[ModelSettings] = None
    remote: Optional[ModelSettings] = None
    roles: Dict[str, ModelSettings] = Field(default_factory=dict)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0)
    max_tool_turns: int = Field(default=40, ge=1)


class ToggleConfig(ConfigModel):
    enabled: bool = False


class ComplexityWeights(ConfigModel):
    task_type: float = 0.2
    scope_size: float = 0.3
    dependencies_count: float = 0.2
    technology_complexity: float = 0.2
    prior_success_rate: float = 0.1


class ComplexityThresholds(ConfigModel):
    medium: float = 40.0
    high: float = 70.0


class ComplexityConfig(ConfigModel):
    weights: ComplexityWeights = Field(default_factory=ComplexityWeights)
    thresholds: ComplexityThresholds = Field(default_factory=ComplexityThresholds)


class PlanningConfig(ConfigModel):
    enabled: bool = True
    listing_depth: int = Field(default=4, ge=1)
    pre_planning: ToggleConfig = Field(default_factory=ToggleConfig)
    delegate: ToggleConfig = Field(default_factory=ToggleConfig)
    complexity: ComplexityConfig = Field(default_factory=ComplexityConfig)


class ToolsConfig(ConfigModel):
    trusted_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_TRUSTED_COMMANDS))
    process_timeout_ms: int = Field(default=30000, gt=0)
    max_output_chars: int = Field(default=20000, gt=0)


class AutoCommand(ConfigModel):
    """A trusted command run before the validation model is consulted."""

    name: str
    command: List[str]
    optional: bool = True


class ValidationConfig(ConfigModel):
    auto_commands: List[AutoCommand] = Field(default_factory=list)
    command_timeout_ms: int = Field(default=120000, gt=0)
    auto_fix: bool = False
    max_fix_attempts: int = Field(default=3, ge=0)


class SessionConfig(ConfigModel):
    retry_delay: float = Field(default=1.0, ge=0)
    max_same_state_retries: Optional[int] = Field(default=30, ge=1)


class HistoryConfig(ConfigModel):
    path: str = ".sirai/task-history.json"
    max_tasks: int = Field(default=50, ge=1)


class ContextConfig(ConfigModel):
    max_depth: int = Field(default=4, ge=1)
    max_files: int = Field(default=500, ge=1)


class PathsConfig(ConfigModel):
    data: str = ".sirai"
    logs: str = ".sirai/logs"


class AppConfig(ConfigModel):
    """Validated application configuration."""

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    def resolve(self, root: Path, value: str) -> Path:
        """Resolve a configured path relative to ``root``."""
        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            return candidate
        return (root / candidate).resolve()


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into ``base`` recursively and return ``base``."""
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _deep_merge(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def build_config(overrides: Mapping[str, Any] | None = None) -> AppConfig:
    """Validate ``overrides`` layered over the defaults."""
    data = _copy_config_template()
    if overrides:
        _deep_merge(data, overrides)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration: {error}") from error


def load_config(config_path: Path | str | None) -> AppConfig:
    """Load YAML configuration from disk; missing files yield the defaults."""
    if config_path is None:
        return build_config()
    path = Path(config_path)
    if not path.exists():
        return build_config()

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return build_config(data)


def write_default_config(config_path: Path) -> None:
    """Persist the default configuration template with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(_copy_config_template(), handle, sort_keys=False)


__all__ = [
    "AppConfig",
    "AutoCommand",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ModelSettings",
    "build_config",
    "load_config",
    "write_default_config",
]
