"""Tests for configuration loading and EngineConfig."""

import json
from pathlib import Path

import pytest

from flowgraph import config as flowgraph_config
from flowgraph.config import (
    DEFAULT_MAX_LOOP_ITERATIONS,
    EngineConfig,
    get_error_strategy,
    get_flowgraph_config,
    get_log_level,
    get_max_loop_iterations,
    get_storage_path,
)


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch):
    """Point the loader at a temporary configuration.json and clear env overrides."""
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(flowgraph_config, "FLOWGRAPH_CONFIG_FILE", path)
    monkeypatch.delenv("FLOWGRAPH_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FLOWGRAPH_STORAGE_PATH", raising=False)
    return path


def write_config(path: Path, data) -> None:
    path.write_text(json.dumps(data), encoding="utf-8")


class TestConfigFile:
    def test_missing_file_gives_defaults(self, config_file):
        assert get_flowgraph_config() == {}
        assert get_max_loop_iterations() == DEFAULT_MAX_LOOP_ITERATIONS
        assert get_error_strategy() == "fail_fast"
        assert get_storage_path() is None
        assert get_log_level() == "INFO"

    def test_corrupt_file_gives_defaults(self, config_file):
        config_file.write_text("{not json", encoding="utf-8")

        assert get_flowgraph_config() == {}

    def test_non_object_file_gives_defaults(self, config_file):
        write_config(config_file, ["engine"])

        assert get_flowgraph_config() == {}

    def test_values_read_from_file(self, config_file, tmp_path: Path):
        write_config(
            config_file,
            {
                "engine": {"max_loop_iterations": 25, "error_strategy": "collect"},
                "storage": {"path": str(tmp_path / "runs")},
                "logging": {"level": "debug", "format": "json"},
            },
        )

        config = EngineConfig()

        assert config.max_loop_iterations == 25
        assert config.error_strategy == "collect"
        assert config.storage_path == tmp_path / "runs"
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_invalid_file_values_fall_back(self, config_file):
        write_config(
            config_file,
            {"engine": {"max_loop_iterations": 0, "error_strategy": "retry_forever"}},
        )

        assert get_max_loop_iterations() == DEFAULT_MAX_LOOP_ITERATIONS
        assert get_error_strategy() == "fail_fast"

    def test_environment_overrides_file(self, config_file, monkeypatch, tmp_path: Path):
        write_config(config_file, {"logging": {"level": "INFO"}, "storage": {"path": "/nowhere"}})
        monkeypatch.setenv("FLOWGRAPH_LOG_LEVEL", "warning")
        monkeypatch.setenv("FLOWGRAPH_STORAGE_PATH", str(tmp_path))

        assert get_log_level() == "WARNING"
        assert get_storage_path() == tmp_path


class TestEngineConfig:
    def test_explicit_values(self, config_file):
        config = EngineConfig(max_loop_iterations=3, error_strategy="continue")

        assert config.max_loop_iterations == 3
        assert config.error_strategy == "continue"

    def test_unknown_strategy_rejected(self, config_file):
        with pytest.raises(ValueError, match="Unknown error strategy"):
            EngineConfig(error_strategy="retry_forever")

    def test_non_positive_iterations_rejected(self, config_file):
        with pytest.raises(ValueError, match="must be positive"):
            EngineConfig(max_loop_iterations=0)
