"""Unit tests for config module."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from config import (
    BrowserConfig,
    CacheConfig,
    DecisionConfig,
    LoopConfig,
    PathfinderConfig,
    ReportingConfig,
    load_config,
)
from exceptions import ConfigFileNotFoundError, ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("PATHFINDER_MODEL", "PATHFINDER_BASE_URL", "PATHFINDER_API_KEY"):
        monkeypatch.delenv(var, raising=False)


class TestDecisionConfig:
    """Tests for DecisionConfig model."""

    def test_default_values(self):
        config = DecisionConfig()
        assert config.model == "gpt-4o-mini"
        assert config.base_url == "https://api.openai.com/v1"
        assert config.temperature == 0.1
        assert config.max_retries == 3

    def test_base_url_trailing_slash_stripped(self):
        config = DecisionConfig(base_url="http://localhost:1234/v1/")
        assert config.base_url == "http://localhost:1234/v1"

    def test_temperature_validation(self):
        with pytest.raises(ValueError):
            DecisionConfig(temperature=-0.1)
        with pytest.raises(ValueError):
            DecisionConfig(temperature=2.5)

    def test_retry_validation(self):
        with pytest.raises(ValueError):
            DecisionConfig(max_retries=0)

    def test_env_var_loading(self, monkeypatch):
        monkeypatch.setenv("PATHFINDER_BASE_URL", "http://env-url:8080/v1")
        monkeypatch.setenv("PATHFINDER_API_KEY", "env-api-key")
        monkeypatch.setenv("PATHFINDER_MODEL", "env-model")

        config = DecisionConfig()
        assert config.base_url == "http://env-url:8080/v1"
        assert config.api_key == "env-api-key"
        assert config.model == "env-model"

    def test_explicit_value_beats_env(self, monkeypatch):
        monkeypatch.setenv("PATHFINDER_MODEL", "env-model")
        assert DecisionConfig(model="explicit").model == "explicit"


class TestBrowserConfig:
    """Tests for BrowserConfig model."""

    def test_default_values(self):
        config = BrowserConfig()
        assert config.browser == "chromium"
        assert config.headless is True
        assert config.viewport_width == 1280
        assert config.viewport_height == 720
        assert config.record_video is True

    def test_invalid_browser_rejected(self):
        with pytest.raises(ValueError):
            BrowserConfig(browser="invalid")

    def test_viewport_validation(self):
        with pytest.raises(ValueError):
            BrowserConfig(viewport_width=100)

    def test_video_dir_conversion(self):
        assert isinstance(BrowserConfig(video_dir="./videos").video_dir, Path)


class TestLoopAndCacheConfig:
    def test_budgets(self):
        loop = LoopConfig()
        assert loop.max_actions_standard == 15
        assert loop.max_actions_chaos == 50

    def test_cache_defaults(self):
        cache = CacheConfig(cache_dir="./somewhere")
        assert cache.enabled is True
        assert cache.cache_dir == Path("./somewhere")


class TestReportingConfig:
    """Tests for ReportingConfig model."""

    def test_default_values(self):
        config = ReportingConfig()
        assert config.save_screenshots is True
        assert config.output_format == "json"
        assert config.events_file is None

    def test_path_conversion(self):
        config = ReportingConfig(
            screenshots_folder="./custom/screenshots",
            reports_folder="./custom/reports",
            events_file="./custom/events.jsonl",
        )
        assert isinstance(config.screenshots_folder, Path)
        assert isinstance(config.reports_folder, Path)
        assert isinstance(config.events_file, Path)

    def test_unknown_output_format_rejected(self):
        with pytest.raises(ValueError):
            ReportingConfig(output_format="pdf")


class TestLoadConfig:
    """Tests for load_config function."""

    def test_loads_from_json_file(self, temp_dir: Path):
        config_data = {
            "decision": {"model": "test-model", "temperature": 0.5},
            "browser": {"browser": "firefox"},
            "loop": {"max_actions_standard": 30},
        }
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps(config_data))

        config = load_config(config_file)
        assert config.decision.model == "test-model"
        assert config.decision.temperature == 0.5
        assert config.browser.browser == "firefox"
        assert config.loop.max_actions_standard == 30

    def test_loads_from_yaml_file(self, temp_dir: Path):
        config_file = temp_dir / "pathfinder.yaml"
        config_file.write_text("chaos:\n  abort_rate: 0.3\n  seed: 5\nparallel_workers: 2\n")

        config = load_config(config_file)
        assert config.chaos.abort_rate == 0.3
        assert config.chaos.seed == 5
        assert config.parallel_workers == 2

    def test_cli_overrides(self, temp_dir: Path):
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps({"browser": {"browser": "firefox"}}))

        overrides = {
            "browser": "chromium",
            "headful": True,
            "parallel": 4,
            "no_cache": True,
            "reports_dir": str(temp_dir / "out"),
            "model": "cli-model",
        }

        config = load_config(config_file, cli_overrides=overrides)
        assert config.browser.browser == "chromium"
        assert config.browser.headless is False
        assert config.parallel_workers == 4
        assert config.cache.enabled is False
        assert config.reporting.reports_folder == temp_dir / "out"
        assert config.decision.model == "cli-model"

    def test_none_overrides_ignored(self, temp_dir: Path):
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps({"decision": {"model": "file-model"}}))

        config = load_config(config_file, cli_overrides={"model": None})
        assert config.decision.model == "file-model"

    def test_default_config_path(self, temp_dir: Path, monkeypatch):
        monkeypatch.chdir(temp_dir)

        config = load_config()
        assert isinstance(config, PathfinderConfig)
        assert config.decision.model == "gpt-4o-mini"

    def test_picks_up_pathfinder_yaml_in_cwd(self, temp_dir: Path, monkeypatch):
        monkeypatch.chdir(temp_dir)
        (temp_dir / "pathfinder.yaml").write_text("verbose: true\n")

        assert load_config().verbose is True

    def test_missing_explicit_file(self, temp_dir: Path):
        with pytest.raises(ConfigFileNotFoundError):
            load_config(temp_dir / "nope.yaml")

    def test_unparseable_file(self, temp_dir: Path):
        config_file = temp_dir / "broken.json"
        config_file.write_text("{broken")

        with pytest.raises(ConfigurationError):
            load_config(config_file)
