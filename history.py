"""Bounded action transcript for decision-engine prompts."""
from __future__ import annotations

from collections import deque
from typing import Deque, List

from agent_types import Action, HistoryEntry


class ActionHistoryLog:
    """Keeps the last few actions in detail and summarises the rest."""

    def __init__(self, max_visible: int = 5, capacity: int = 200, max_raw_logs: int = 200):
        self.max_visible = max_visible
        self._entries: Deque[HistoryEntry] = deque(maxlen=capacity)
        self._raw_logs: Deque[str] = deque(maxlen=max_raw_logs)
        self._total = 0

    def record(self, action: Action, outcome: str, step: int) -> HistoryEntry:
        entry = HistoryEntry(step=step, action=action, outcome=outcome)
        self._entries.append(entry)
        self._total += 1
        return entry

    def log(self, message: str) -> None:
        self._raw_logs.append(message)

    def __len__(self) -> int:
        return self._total

    def render_for_prompt(self) -> str:
        output = "\n".join(self._raw_logs) + "\n\n"

        if not self._entries:
            return output + "No actions taken yet."

        entries = list(self._entries)
        # ordinal of entries[0] across everything ever recorded
        first_ordinal = self._total - len(entries) + 1
        visible_start = max(0, len(entries) - self.max_visible)

        if visible_start > 0:
            first_step = entries[0].step
            last_step = entries[visible_start - 1].step
            summarized = self._total - (len(entries) - visible_start)
            output += (
                f"[Steps {first_step}-{last_step}]: {summarized} previous actions completed "
                "(summarized to save space).\n...\n"
            )

        lines = []
        for offset, entry in enumerate(entries[visible_start:]):
            ordinal = first_ordinal + visible_start + offset
            status_icon = "⚠️" if "No changes" in entry.outcome else "✅"
            lines.append(f"[{ordinal}] {status_icon} {entry.action.describe()} → {entry.outcome}")

        return output + "\n".join(lines) + "\n"

    def full_log(self) -> List[str]:
        """Everything still retained, for persistence."""
        entries = list(self._entries)
        first_ordinal = self._total - len(entries) + 1
        return [*self._raw_logs, *(
            f"[{first_ordinal + i}] {entry.action.describe()} Outcome: {entry.outcome}"
            for i, entry in enumerate(entries)
        )]
