"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json so that the engine
and the CLI share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MAX_LOOP_ITERATIONS = 100
ERROR_STRATEGIES = ("fail_fast", "continue", "collect")

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"


def get_flowgraph_config() -> dict[str, Any]:
    """Load flowgraph configuration from ~/.flowgraph/configuration.json."""
    if not FLOWGRAPH_CONFIG_FILE.exists():
        return {}
    try:
        with open(FLOWGRAPH_CONFIG_FILE, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_max_loop_iterations() -> int:
    """Return the configured loop iteration cap, falling back to DEFAULT_MAX_LOOP_ITERATIONS."""
    value = get_flowgraph_config().get("engine", {}).get("max_loop_iterations")
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_LOOP_ITERATIONS


def get_error_strategy() -> str:
    """Return the configured error strategy ('fail_fast' unless configured otherwise)."""
    strategy = get_flowgraph_config().get("engine", {}).get("error_strategy")
    return strategy if strategy in ERROR_STRATEGIES else "fail_fast"


def get_storage_path() -> Path | None:
    """Return the execution storage directory, if one is configured."""
    env_path = os.environ.get("FLOWGRAPH_STORAGE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    configured = get_flowgraph_config().get("storage", {}).get("path")
    if configured:
        return Path(configured).expanduser()
    return None


def get_log_level() -> str:
    env_level = os.environ.get("FLOWGRAPH_LOG_LEVEL")
    if env_level:
        return env_level.upper()
    return str(get_flowgraph_config().get("logging", {}).get("level", "INFO")).upper()


def get_log_format() -> str:
    return get_flowgraph_config().get("logging", {}).get("format", "auto")


# ---------------------------------------------------------------------------
# EngineConfig – shared by the engine and the CLI
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.flowgraph/configuration.json."""

    max_loop_iterations: int = field(default_factory=get_max_loop_iterations)
    error_strategy: str = field(default_factory=get_error_strategy)
    storage_path: Path | None = field(default_factory=get_storage_path)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)

    def __post_init__(self):
        if self.error_strategy not in ERROR_STRATEGIES:
            raise ValueError(
                f"Unknown error strategy '{self.error_strategy}', "
                f"expected one of {', '.join(ERROR_STRATEGIES)}"
            )
        if self.max_loop_iterations <= 0:
            raise ValueError("max_loop_iterations must be positive")
