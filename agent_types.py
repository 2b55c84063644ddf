"""Typed objects shared by the agent loop, cache, observer and reporters."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

RunMode = Literal["standard", "chaos"]


class ActionKind(str, Enum):
    """Every interaction the decision engine may ask for."""

    CLICK = "click"
    TYPE = "type"
    KEYPRESS = "keypress"
    SCROLL = "scroll"
    HOVER = "hover"
    WAIT = "wait"
    NAVIGATE = "navigate"
    RAGE_CLICK = "rage_click"
    DONE = "done"
    FAIL = "fail"


TERMINAL_KINDS = frozenset({ActionKind.DONE, ActionKind.FAIL})


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Action:
    """One atomic UI instruction, or a terminal done/fail signal."""

    kind: ActionKind
    selector: Optional[str] = None
    coordinate: Optional[Tuple[int, int]] = None
    text: Optional[str] = None
    key: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None
    intent: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def target(self) -> Optional[Any]:
        """Selector if present, else coordinate; used for repeat detection."""
        if self.selector:
            return self.selector
        return self.coordinate

    def describe(self) -> str:
        """Compact one-line description used in logs and history."""
        details = ""
        if self.selector:
            details += f' Sel="{self.selector}"'
        if self.coordinate:
            details += f" Coord=({self.coordinate[0]},{self.coordinate[1]})"
        if self.text:
            details += f' Text="{self.text}"'
        if self.key:
            details += f' Key="{self.key}"'
        return f"{self.kind.value}{details}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind.value}
        if self.selector is not None:
            data["selector"] = self.selector
        if self.coordinate is not None:
            data["coordinate"] = {"x": self.coordinate[0], "y": self.coordinate[1]}
        for name in ("text", "key", "duration", "reason", "intent"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        """Build an action from its wire form. Raises ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError(f"Action must be a mapping, got {type(data).__name__}")
        raw_kind = data.get("type") or data.get("kind") or data.get("action")
        try:
            kind = ActionKind(str(raw_kind).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown action type: {raw_kind!r}") from exc

        coordinate = _parse_coordinate(data.get("coordinate"))
        duration = data.get("duration")
        if duration is not None:
            duration = int(duration)

        def _opt_str(name: str) -> Optional[str]:
            value = data.get(name)
            if value is None:
                return None
            return str(value)

        return cls(
            kind=kind,
            selector=_opt_str("selector") or None,
            coordinate=coordinate,
            text=_opt_str("text"),
            key=_opt_str("key") or None,
            duration=duration,
            reason=_opt_str("reason"),
            intent=_opt_str("intent") or None,
        )


def _parse_coordinate(value: Any) -> Optional[Tuple[int, int]]:
    """Accept ``{"x": .., "y": ..}`` or ``[x, y]``."""
    if value is None:
        return None
    if isinstance(value, dict):
        if "x" not in value or "y" not in value:
            raise ValueError(f"Coordinate needs x and y: {value!r}")
        return (int(round(float(value["x"]))), int(round(float(value["y"]))))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return (int(round(float(value[0]))), int(round(float(value[1]))))
    raise ValueError(f"Unsupported coordinate: {value!r}")


@dataclass(frozen=True)
class StateSnapshot:
    """Observed page state after one executed action."""

    url: str
    index: int
    last_action: Optional[Action] = None
    timestamp: int = field(default_factory=_now_ms)

    @property
    def kind(self) -> Optional[ActionKind]:
        return self.last_action.kind if self.last_action else None


@dataclass(frozen=True)
class HistoryEntry:
    """One executed action and how it turned out."""

    step: int
    action: Action
    outcome: str
    timestamp: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class TestStep:
    """Named sub-goal within a flow."""

    __test__ = False

    name: str
    goal: str


@dataclass
class TestFlow:
    """Ordered steps sharing one browser session."""

    __test__ = False

    name: str
    steps: List[TestStep]
    start_url: str
    mode: RunMode = "standard"
    notes: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    skip: bool = False
    skip_reason: Optional[str] = None
    max_actions_per_step: Optional[int] = None

    @classmethod
    def single_goal(cls, start_url: str, goal: str, mode: RunMode = "standard") -> "TestFlow":
        """Normalise an ad-hoc goal into a one-step flow."""
        return cls(name=goal, steps=[TestStep(name="Main Goal", goal=goal)], start_url=start_url, mode=mode)

    def has_any_tag(self, tags: Set[str]) -> bool:
        lower_tags = {t.lower() for t in tags}
        return bool(lower_tags & {t.lower() for t in self.tags})

    def matches_filter(
        self,
        include_tags: Optional[Set[str]] = None,
        exclude_tags: Optional[Set[str]] = None,
    ) -> bool:
        if include_tags and not self.has_any_tag(include_tags):
            return False
        if exclude_tags and self.has_any_tag(exclude_tags):
            return False
        return True


ActionSource = Literal["cache", "vision"]
StepStatus = Literal["passed", "failed", "fault_triggered", "skipped"]
RunStatus = Literal["passed", "failed", "fault_triggered", "stopped"]


@dataclass
class ActionRecord:
    """One executed (or decided) action plus what happened."""

    step_index: int
    ordinal: int
    action: Action
    outcome: str
    page_url: str
    source: ActionSource = "vision"
    thought: Optional[str] = None
    screenshot_path: Optional[Path] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    duration_ms: Optional[float] = None


@dataclass
class StepResult:
    """Outcome of a single step."""

    step: TestStep
    status: StepStatus
    source: ActionSource = "vision"
    actions: List[ActionRecord] = field(default_factory=list)
    error_category: Optional[str] = None
    message: Optional[str] = None
    cached: bool = False

    @property
    def success(self) -> bool:
        return self.status == "passed"


@dataclass
class RunResult:
    """Outcome of a full flow run."""

    flow: TestFlow
    run_id: str
    status: RunStatus
    reason: str
    started_at: datetime
    finished_at: datetime
    steps: List[StepResult] = field(default_factory=list)
    error_category: Optional[str] = None
    final_url: Optional[str] = None
    history: List[str] = field(default_factory=list)
    console_errors: List[str] = field(default_factory=list)
    page_errors: List[str] = field(default_factory=list)
    failed_requests: List[str] = field(default_factory=list)
    video_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.status == "passed"

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def action_count(self) -> int:
        return sum(len(step.actions) for step in self.steps)

    @property
    def actions(self) -> List[ActionRecord]:
        return [record for step in self.steps for record in step.actions]


@dataclass
class RunSuiteResult:
    """Aggregated results for many runs."""

    results: List[RunResult]
    started_at: datetime
    finished_at: datetime

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def faults(self) -> int:
        return sum(1 for r in self.results if r.status == "fault_triggered")

    @property
    def failed(self) -> int:
        return self.total - self.passed - self.faults

    @property
    def pass_rate(self) -> float:
        return (self.passed / self.total * 100) if self.total else 0.0

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def failed_runs(self) -> List[RunResult]:
        return [r for r in self.results if r.status in ("failed", "stopped")]
