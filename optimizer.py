"""Turn a raw recorded action trace into a short replayable sequence."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from agent_types import Action, ActionKind

logger = logging.getLogger("pathfinder.optimizer")

_DROPPED_KINDS = frozenset({ActionKind.WAIT, ActionKind.FAIL})


def actions_identical(a: Action, b: Action) -> bool:
    """Whether ``b`` repeats ``a`` closely enough to be retry noise."""
    if a.kind != b.kind:
        return False

    if a.kind == ActionKind.TYPE:
        return a.selector == b.selector and a.text == b.text

    if a.kind == ActionKind.CLICK:
        if a.selector and b.selector and a.selector == b.selector:
            return True
        if a.coordinate is not None and b.coordinate is not None and a.coordinate == b.coordinate:
            return True

    return False


def optimize_actions(actions: Optional[Sequence[Action]]) -> List[Action]:
    """
    Drop waits, failures and back-to-back duplicates from a trace.

    Each action is compared only with its immediate successor in the
    original input, so a ``fail`` sitting between two identical clicks keeps
    both clicks. Relative order of kept actions is preserved.
    """
    if not actions:
        return []

    optimized: List[Action] = []
    dropped = 0

    for i, current in enumerate(actions):
        nxt = actions[i + 1] if i + 1 < len(actions) else None

        if current.kind in _DROPPED_KINDS:
            dropped += 1
            continue

        # keep the later of two identical attempts
        if nxt is not None and actions_identical(current, nxt):
            dropped += 1
            continue

        optimized.append(current)

    if dropped:
        logger.info(f"Reduced path from {len(actions)} to {len(optimized)} actions (-{dropped})")

    return optimized
