"""Base reporter interface for Pathfinder runs."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List

from agent_types import RunResult


class ReportFormat(str, Enum):
    """Supported report formats."""
    JSON = "json"
    JUNIT = "junit"
    ALL = "all"


def report_slug(name: str) -> str:
    """Filesystem-safe form of a flow name."""
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower()
    return slug[:60] or "run"


class BaseReporter(ABC):
    """Abstract base class for report generators."""

    @abstractmethod
    def generate(self, result: RunResult, output_dir: Path) -> Path:
        """
        Generate a report for a single run.

        Args:
            result: Run result
            output_dir: Directory to write report to

        Returns:
            Path to the generated report file
        """

    @abstractmethod
    def generate_suite(self, results: List[RunResult], output_dir: Path) -> Path:
        """Generate a combined report for multiple runs."""

    @property
    @abstractmethod
    def format(self) -> ReportFormat:
        """Return the report format this reporter generates."""
