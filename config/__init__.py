"""Configuration module for the Pathfinder QA agent."""
from config.models import (
    BrowserConfig,
    CacheConfig,
    ChaosConfig,
    DecisionConfig,
    LoopConfig,
    PathfinderConfig,
    ReportingConfig,
    load_config,
)

__all__ = [
    "BrowserConfig",
    "CacheConfig",
    "ChaosConfig",
    "DecisionConfig",
    "LoopConfig",
    "PathfinderConfig",
    "ReportingConfig",
    "load_config",
]
