"""Progress observer: catches loops and stagnation inside a single step."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from agent_types import Action, ActionKind, StateSnapshot

STUCK = "STUCK"
LOOP = "LOOP"
REPETITION = "REPETITION"
LIMIT = "LIMIT"
STEP_FAILED = "STEP_FAILED"

NAVIGATION_PHRASES = ("go to", "navigate", "open the", "visit")


@dataclass(frozen=True)
class Intervention:
    """A step-fatal finding, e.g. ``Intervention("LOOP", "...")``."""

    category: str
    message: str

    def __str__(self) -> str:
        return f"{self.category}: {self.message}"


class ProgressObserver:
    """
    Sliding window over the most recent state snapshots of one step.

    ``wait`` actions are ignored by every check: they are pauses
    (often while the decision engine is rate limited), not lack of progress.
    """

    def __init__(
        self,
        capacity: int = 25,
        stagnation_threshold: int = 15,
        click_window: int = 15,
        click_flood_threshold: int = 12,
        click_hard_limit: int = 15,
        same_kind_limit: int = 5,
        same_target_limit: int = 3,
    ):
        self.capacity = capacity
        self.stagnation_threshold = stagnation_threshold
        self.click_window = click_window
        self.click_flood_threshold = click_flood_threshold
        self.click_hard_limit = click_hard_limit
        self.same_kind_limit = same_kind_limit
        self.same_target_limit = same_target_limit
        self._snapshots: Deque[StateSnapshot] = deque(maxlen=capacity)
        self._recorded = 0
        self._start_url: Optional[str] = None

    def reset_for_new_step(self, start_url: Optional[str] = None) -> None:
        self._snapshots.clear()
        self._recorded = 0
        self._start_url = start_url

    def record_state(self, url: str, action: Optional[Action] = None) -> StateSnapshot:
        snapshot = StateSnapshot(url=url, index=self._recorded, last_action=action)
        self._recorded += 1
        self._snapshots.append(snapshot)
        return snapshot

    @property
    def snapshots(self) -> Tuple[StateSnapshot, ...]:
        return tuple(self._snapshots)

    def current_url(self) -> Optional[str]:
        return self._snapshots[-1].url if self._snapshots else None

    def initial_url(self) -> Optional[str]:
        if self._start_url is not None:
            return self._start_url
        return self._snapshots[0].url if self._snapshots else None

    def _active(self) -> List[StateSnapshot]:
        return [s for s in self._snapshots if s.kind != ActionKind.WAIT]

    def _is_filling_form(self, active: List[StateSnapshot]) -> bool:
        recent_types = sum(1 for s in active[-5:] if s.kind == ActionKind.TYPE)
        return recent_types >= 3 and active[-1].url == active[-2].url

    def validate_progress(self) -> Optional[Intervention]:
        """Return an intervention if the step should be aborted, else None."""
        active = self._active()
        if len(active) < 3:
            return None

        current, previous, two_before = active[-1], active[-2], active[-3]
        filling_form = self._is_filling_form(active)
        same_url = current.url == previous.url

        if (
            same_url
            and previous.url == two_before.url
            and len(active) >= self.stagnation_threshold
            and not filling_form
        ):
            return Intervention(
                STUCK,
                f"URL has not changed in {len(active)} actions. Possible infinite loop.",
            )

        recent_clicks = sum(1 for s in active[-self.click_window:] if s.kind == ActionKind.CLICK)
        if recent_clicks >= self.click_flood_threshold and same_url and not filling_form:
            return Intervention(
                LOOP,
                f"{recent_clicks} clicks in the last {self.click_window} actions without navigation.",
            )

        kind = current.kind
        if (
            kind is not None
            and kind != ActionKind.TYPE
            and kind == previous.kind == two_before.kind
            and same_url
            and previous.url == two_before.url
        ):
            run: List[StateSnapshot] = []
            for snapshot in reversed(active):
                if snapshot.kind != kind:
                    break
                run.append(snapshot)
            repeat_count = len(run)

            if kind == ActionKind.CLICK:
                targets = {s.last_action.target for s in run}
                if len(targets) == 1 and repeat_count >= self.same_target_limit:
                    return Intervention(
                        REPETITION,
                        f"Clicked the same target {repeat_count} times without navigation.",
                    )
                if repeat_count >= self.click_hard_limit:
                    return Intervention(
                        LIMIT,
                        f"{repeat_count} consecutive clicks across {len(targets)} targets. Agent is likely lost.",
                    )
            elif repeat_count >= self.same_kind_limit:
                return Intervention(
                    REPETITION,
                    f"Action ({kind.value}) repeated {repeat_count} times in a row.",
                )

        return None

    def repeat_warning(self) -> Optional[str]:
        """Soft hint when the last two clicks hit the same target on the same page."""
        active = self._active()
        if len(active) < 2:
            return None
        current, previous = active[-1], active[-2]
        if (
            current.kind == ActionKind.CLICK
            and previous.kind == ActionKind.CLICK
            and current.url == previous.url
            and current.last_action.target is not None
            and current.last_action.target == previous.last_action.target
        ):
            return (
                f"WARNING: you clicked {current.last_action.target} twice and the page did not change. "
                "Try a different element, a keypress, or finish with done/fail."
            )
        return None

    def validate_step_completion(self, goal: str, end_url: Optional[str] = None) -> Optional[Intervention]:
        """Fail a navigation-style step whose URL never changed."""
        lowered = (goal or "").lower()
        if not any(phrase in lowered for phrase in NAVIGATION_PHRASES):
            return None

        start_url = self.initial_url()
        if end_url is None:
            end_url = self.current_url()
        if start_url is None or end_url is None:
            return None
        if end_url == start_url:
            return Intervention(
                STEP_FAILED,
                f'"{goal}" did not result in navigation. Still on {end_url}',
            )
        return None
