"""Pydantic configuration models for the Pathfinder QA agent."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError, ConfigurationError


# Load .env file if present
load_dotenv()


class DecisionConfig(BaseModel):
    """Vision decision-engine configuration."""

    model: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable model name",
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the OpenAI-compatible API endpoint",
    )
    api_key: str = Field(
        default="",
        description="API key for the decision engine",
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Temperature for model generation",
    )
    max_tokens: int = Field(
        default=768,
        ge=100,
        le=4096,
        description="Maximum tokens for model response",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per decision before degrading to a wait action",
    )
    image_max_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Screenshots wider than this are downscaled before upload",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/")

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load values from environment variables if not explicitly set."""
        env_mapping = {
            "base_url": "PATHFINDER_BASE_URL",
            "api_key": "PATHFINDER_API_KEY",
            "model": "PATHFINDER_MODEL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class BrowserConfig(BaseModel):
    """Browser automation configuration."""

    browser: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(
        default=1280,
        ge=800,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=720,
        ge=600,
        le=2160,
        description="Browser viewport height",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )
    record_video: bool = Field(
        default=True,
        description="Record a video of each session",
    )
    video_dir: Path = Field(
        default=Path("./artifacts/videos"),
        description="Directory for session videos",
    )
    action_timeout_ms: int = Field(
        default=5000,
        ge=500,
        le=60000,
        description="Timeout for a single click/fill attempt",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for selector clicks and fills before giving up",
    )

    @field_validator("video_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        return v


class LoopConfig(BaseModel):
    """Agent loop budgets."""

    max_actions_standard: int = Field(
        default=15,
        ge=1,
        le=200,
        description="Decision budget per step in standard mode",
    )
    max_actions_chaos: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Decision budget per step in chaos mode",
    )
    settle_ms: int = Field(
        default=500,
        ge=0,
        le=10000,
        description="Pause after each replayed cache action",
    )


class CacheConfig(BaseModel):
    """Action cache configuration."""

    enabled: bool = Field(default=True, description="Use the action cache in standard mode")
    cache_dir: Path = Field(default=Path("./cache"), description="Directory holding action_cache.json")

    @field_validator("cache_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        return v


class ChaosConfig(BaseModel):
    """Fault-injection policy for chaos runs."""

    abort_rate: float = Field(default=0.10, ge=0.0, le=1.0, description="Share of xhr/fetch requests aborted")
    delay_rate: float = Field(default=0.20, ge=0.0, le=1.0, description="Share of requests delayed")
    min_delay_ms: int = Field(default=1000, ge=0, le=30000)
    max_delay_ms: int = Field(default=3000, ge=0, le=30000)
    fuzz_probability: float = Field(default=0.5, ge=0.0, le=1.0, description="Chance a typed text is fuzzed")
    rage_clicks: int = Field(default=10, ge=1, le=100, description="Clicks per rage_click action")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible chaos")

    @model_validator(mode="after")
    def check_ranges(self) -> "ChaosConfig":
        if self.abort_rate + self.delay_rate > 1.0:
            raise ValueError("abort_rate + delay_rate must not exceed 1.0")
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        return self


class ReportingConfig(BaseModel):
    """Reporting and output configuration."""

    save_screenshots: bool = Field(
        default=True,
        description="Save screenshots during runs",
    )
    screenshots_folder: Path = Field(
        default=Path("./artifacts/screenshots"),
        description="Directory for saving screenshots",
    )
    reports_folder: Path = Field(
        default=Path("./reports"),
        description="Directory for saving reports and traces",
    )
    output_format: Literal["json", "junit", "all"] = Field(
        default="json",
        description="Report output format",
    )
    events_file: Optional[Path] = Field(
        default=None,
        description="Append run events as JSON lines to this file",
    )

    @field_validator("screenshots_folder", "reports_folder", "events_file", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Any:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class PathfinderConfig(BaseModel):
    """Root configuration model combining all config sections."""

    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    chaos: ChaosConfig = Field(default_factory=ChaosConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    parallel_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Number of parallel flow workers",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> PathfinderConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    explicit = config_path is not None
    if config_path is None:
        config_path = Path("pathfinder.yaml")
        if not config_path.exists():
            config_path = Path("pathfinder.json")

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                if config_path.suffix in {".yaml", ".yml"}:
                    config_data = yaml.safe_load(f) or {}
                else:
                    config_data = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not parse config file {config_path}: {exc}") from exc
    elif explicit:
        raise ConfigFileNotFoundError(str(config_path))

    config = PathfinderConfig.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = PathfinderConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "parallel": ("parallel_workers", None),
        "verbose": ("verbose", None),
        "output_format": ("reporting", "output_format"),
        "model": ("decision", "model"),
        "base_url": ("decision", "base_url"),
        "cache_dir": ("cache", "cache_dir"),
        "reports_dir": ("reporting", "reports_folder"),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue
        if key == "no_cache":
            config_dict["cache"]["enabled"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
