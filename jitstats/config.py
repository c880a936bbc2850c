"""
Configuration for jitstats.

Defaults live on JitStatsConfig; load_config() patches them from a JSON
file such as:

    {
      "interception_point": "executor_start",
      "search_path": ["sales", "public"],
      "verbose_maintenance": true,
      "on_error": "warn"
    }
"""

import json
import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from jitstats.errors import ConfigError


class InterceptionPoint(Enum):
    """Where in statement processing the coordinator runs."""
    POST_PARSE_ANALYZE = "post_parse_analyze"  # every parsed statement
    EXECUTOR_START = "executor_start"  # plannable statements only


ON_ERROR_CHOICES = ("raise", "warn")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class JitStatsConfig:
    enabled: bool = True
    interception_point: InterceptionPoint = InterceptionPoint.POST_PARSE_ANALYZE
    dialect: str = "postgres"
    search_path: list[str] = field(default_factory=lambda: ["public"])
    excluded_schemas: list[str] = field(
        default_factory=lambda: ["pg_catalog", "information_schema", "pg_toast"]
    )
    verbose_maintenance: bool = False
    report_denied: bool = True
    dry_run: bool = False
    on_error: str = "raise"  # raise: abort the statement; warn: log and continue
    log_level: str = "WARNING"

    def validate(self) -> None:
        """Check enum-like fields; raises ConfigError."""
        if not isinstance(self.interception_point, InterceptionPoint):
            raise ConfigError(f"invalid interception_point: {self.interception_point!r}")
        if self.on_error not in ON_ERROR_CHOICES:
            raise ConfigError(
                f"invalid on_error: {self.on_error!r} (expected one of {ON_ERROR_CHOICES})"
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"invalid log_level: {self.log_level!r}")
        if not self.search_path:
            raise ConfigError("search_path must name at least one schema")

    @property
    def numeric_log_level(self) -> int:
        return getattr(logging, self.log_level.upper())


def _coerce_interception_point(value: Any) -> InterceptionPoint:
    if isinstance(value, InterceptionPoint):
        return value
    if isinstance(value, str):
        try:
            return InterceptionPoint(value.lower())
        except ValueError:
            pass
    raise ConfigError(f"invalid interception_point: {value!r}")


def config_from_dict(data: dict[str, Any]) -> JitStatsConfig:
    """
    Build a config from a plain dict, starting from defaults.

    Raises:
        ConfigError: unknown keys or invalid values
    """
    known = {f.name for f in fields(JitStatsConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {unknown}")

    config = JitStatsConfig()
    for key, value in data.items():
        if key == "interception_point":
            value = _coerce_interception_point(value)
        elif key in ("search_path", "excluded_schemas"):
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"{key} must be a list of strings")
        setattr(config, key, value)

    config.validate()
    return config


def load_config(config_path: Path) -> JitStatsConfig:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the JSON config

    Returns:
        Validated JitStatsConfig
    """
    try:
        content = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{config_path}: invalid JSON: {e}") from e

    if not isinstance(content, dict):
        raise ConfigError(f"{config_path}: JSON object expected")
    return config_from_dict(content)
