"""Filesystem-backed loader for multi-step test flows."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from agent_types import TestFlow, TestStep
from exceptions import FlowLoadError, FlowValidationError

VALID_MODES = ("standard", "chaos")


def _as_set(value: Any) -> Set[str]:
    """Convert value to set of strings."""
    if value is None:
        return set()
    if isinstance(value, (list, set, tuple)):
        return {str(item) for item in value}
    if isinstance(value, str):
        return {value}
    raise FlowLoadError(f"Expected string, list, or set, got {type(value).__name__}")


def _parse_steps(raw_steps: Any, flow_name: str) -> List[TestStep]:
    """Steps may be ``{name, goal}`` mappings or bare goal strings."""
    if isinstance(raw_steps, str):
        raw_steps = [raw_steps]
    if not isinstance(raw_steps, list):
        raise FlowValidationError("'steps' must be a list", flow_name=flow_name, field="steps")

    steps: List[TestStep] = []
    for i, item in enumerate(raw_steps, 1):
        if isinstance(item, str):
            goal, name = item, f"Step {i}"
        elif isinstance(item, dict):
            goal = item.get("goal") or item.get("objective")
            name = item.get("name") or f"Step {i}"
        else:
            raise FlowValidationError(f"Step {i} must be a mapping or string", flow_name=flow_name, field="steps")
        if not goal or not str(goal).strip():
            raise FlowValidationError(f"Step {i} is missing a 'goal'", flow_name=flow_name, field="steps")
        steps.append(TestStep(name=str(name), goal=str(goal).strip()))
    return steps


def parse_flow(data: Dict[str, Any], fallback_name: str) -> TestFlow:
    """Parse a dictionary into a TestFlow."""
    if not isinstance(data, dict):
        raise FlowLoadError("Flow payload must be a mapping")

    name = str(data.get("name") or data.get("id") or fallback_name)

    start_url = data.get("start_url") or data.get("url")
    if not start_url:
        raise FlowValidationError("Flow is missing a 'start_url' field", flow_name=name, field="start_url")

    if data.get("steps"):
        steps = _parse_steps(data["steps"], name)
    elif data.get("goal"):
        steps = [TestStep(name="Main Goal", goal=str(data["goal"]).strip())]
    else:
        raise FlowValidationError("Flow needs 'steps' or a single 'goal'", flow_name=name, field="steps")

    mode = str(data.get("mode", "standard")).lower()
    if mode not in VALID_MODES:
        raise FlowValidationError(
            f"Unknown mode {mode!r}; expected one of {', '.join(VALID_MODES)}",
            flow_name=name,
            field="mode",
        )

    max_actions = data.get("max_actions_per_step")
    if max_actions is not None:
        try:
            max_actions = int(max_actions)
        except (TypeError, ValueError) as exc:
            raise FlowValidationError(
                "max_actions_per_step must be an integer", flow_name=name, field="max_actions_per_step"
            ) from exc
        if max_actions < 1:
            raise FlowValidationError(
                "max_actions_per_step must be at least 1", flow_name=name, field="max_actions_per_step"
            )

    return TestFlow(
        name=name,
        steps=steps,
        start_url=str(start_url),
        mode=mode,
        notes=data.get("notes"),
        tags=_as_set(data.get("tags")),
        skip=bool(data.get("skip", False)),
        skip_reason=data.get("skip_reason"),
        max_actions_per_step=max_actions,
    )


def load_flow_file(path: Path) -> TestFlow:
    """Load a single flow file (YAML or JSON)."""
    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yml", ".yaml"}:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
        return parse_flow(data, fallback_name=path.stem)
    except (FlowLoadError, FlowValidationError) as exc:
        if isinstance(exc, FlowLoadError) and exc.file_path is None:
            raise FlowLoadError(exc.message, file_path=str(path)) from exc
        raise
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise FlowLoadError(f"Failed to load flow file: {exc}", file_path=str(path)) from exc


def discover_flows(
    flows_dir: Path,
    only_names: Optional[Iterable[str]] = None,
    include_tags: Optional[Set[str]] = None,
    exclude_tags: Optional[Set[str]] = None,
    include_skipped: bool = False,
) -> List[TestFlow]:
    """
    Discover and load flows from a directory.

    Args:
        flows_dir: Directory containing flow YAML/JSON files
        only_names: If provided, only load flows with these names
        include_tags: If provided, only include flows with at least one of these tags
        exclude_tags: If provided, exclude flows with any of these tags
        include_skipped: If True, include flows marked as skip=true

    Returns:
        List of TestFlow objects
    """
    flows_dir = flows_dir.expanduser().resolve()

    if not flows_dir.exists():
        raise FlowLoadError(f"Flows directory does not exist: {flows_dir}")

    name_filter = set(only_names or [])
    found: List[TestFlow] = []

    all_files = sorted(flows_dir.glob("*.yaml")) + sorted(flows_dir.glob("*.yml")) + sorted(flows_dir.glob("*.json"))

    for path in all_files:
        flow = load_flow_file(path)
        if name_filter and flow.name not in name_filter:
            continue
        if flow.skip and not include_skipped:
            continue
        if not flow.matches_filter(include_tags, exclude_tags):
            continue
        found.append(flow)

    if name_filter:
        missing = name_filter - {f.name for f in found}
        if missing:
            raise FlowLoadError(f"Flows not found: {', '.join(sorted(missing))}")

    return found
