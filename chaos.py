"""Chaos policy: decides when and how to misbehave during a chaos run."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
from typing import Any, Literal, Optional

from agent_types import Action, ActionKind
from config import ChaosConfig

RouteDecision = Literal["continue", "abort", "delay"]

NASTY_STRINGS = [
    "' OR 1=1--",
    "<script>alert(1)</script>",
    "😀😃😄😁😆😅😂🤣",
    "A" * 1000,
    "-1",
    "0",
    "undefined",
    "null",
    "{{7*7}}",
    "../../etc/passwd",
]

# left alone so the app still renders
PASSTHROUGH_RESOURCES = frozenset({"image", "font", "stylesheet"})
ABORTABLE_RESOURCES = frozenset({"xhr", "fetch"})


class ChaosPolicy:
    """Network-fault and input-fuzzing policy for chaos mode."""

    def __init__(
        self,
        config: Optional[ChaosConfig] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ChaosConfig()
        self.rng = rng or random.Random(self.config.seed)
        self.logger = logger or logging.getLogger("pathfinder.chaos")
        self.active = True

    @property
    def rage_click_count(self) -> int:
        return self.config.rage_clicks

    def route_decision(self, resource_type: str, roll: Optional[float] = None) -> RouteDecision:
        """Pick what happens to one outgoing request."""
        if not self.active or resource_type in PASSTHROUGH_RESOURCES:
            return "continue"
        if roll is None:
            roll = self.rng.random()
        if roll < self.config.abort_rate and resource_type in ABORTABLE_RESOURCES:
            return "abort"
        if self.config.abort_rate <= roll < self.config.abort_rate + self.config.delay_rate:
            return "delay"
        return "continue"

    def delay_seconds(self) -> float:
        return self.rng.randint(self.config.min_delay_ms, self.config.max_delay_ms) / 1000.0

    def fuzz(self, action: Action) -> Action:
        """Swap a typed payload for a hostile string some of the time."""
        if action.kind != ActionKind.TYPE:
            return action
        wants_fuzz = not action.text or "NASTY" in action.text
        if not wants_fuzz and self.rng.random() >= self.config.fuzz_probability:
            return action
        nasty = self.rng.choice(NASTY_STRINGS)
        reason = f"{action.reason or ''} [Injected nasty string: {nasty[:40]}]".strip()
        return dataclasses.replace(action, text=nasty, reason=reason)

    async def handle_route(self, route: Any) -> None:
        """Playwright ``page.route`` handler applying :meth:`route_decision`."""
        request = route.request
        decision = self.route_decision(request.resource_type)
        if decision == "abort":
            self.logger.info(f"Gremlin aborting {request.url[:80]}")
            try:
                await route.abort("failed")
            except Exception as exc:
                self.logger.debug(f"Route abort failed: {exc}")
            return
        if decision == "delay":
            await asyncio.sleep(self.delay_seconds())
        try:
            await route.continue_()
        except Exception as exc:
            self.logger.debug(f"Route continue failed: {exc}")
