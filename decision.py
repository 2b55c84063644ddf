"""Vision decision engine adapter.

Wraps an OpenAI-compatible vision model behind a strict result type. The
model is treated as unreliable: replies may carry prose around the JSON,
trailing commas, or nothing usable at all, and calls may be rate limited.
Every public call returns a :class:`Decision`; after retries are exhausted it
degrades to a short ``wait`` instead of raising.
"""
from __future__ import annotations

import base64
import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional, Union

import openai
from openai import AsyncOpenAI
from PIL import Image
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from agent_types import Action, ActionKind
from chaos import ChaosPolicy
from config import DecisionConfig
from exceptions import ActionParseError
from prompts import build_chaos_prompt, build_goal_prompt

FailureKind = Literal["parse", "rate_limited", "other"]

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")

FALLBACK_WAIT_MS = 2000


@dataclass
class Decision:
    """What the engine wants done next."""

    thought: str
    actions: List[Action] = field(default_factory=list)
    degraded: bool = False


@dataclass
class DecisionFailure:
    """Why a single engine call produced no usable decision."""

    kind: FailureKind
    message: str
    raw: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.kind in ("parse", "rate_limited")


DecisionOutcome = Union[Decision, DecisionFailure]


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``text``, ignoring braces inside strings."""
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # unbalanced from here, try the next opening brace
        start = text.find("{", start + 1)
    return None


def repair_json(payload: str) -> str:
    """Strip trailing commas before a closing brace or bracket."""
    return _TRAILING_COMMA.sub(r"\1", payload)


def decode_decision(text: str) -> Decision:
    """Strictly decode model text. Raises ActionParseError."""
    payload = extract_json_object(text or "")
    if payload is None:
        raise ActionParseError("No JSON object found in response", raw_response=text)

    try:
        obj = json.loads(repair_json(payload))
    except ValueError as exc:
        raise ActionParseError(f"Invalid JSON: {exc}", raw_response=text) from exc

    if not isinstance(obj, dict):
        raise ActionParseError("Response JSON is not an object", raw_response=text)

    if isinstance(obj.get("actions"), list):
        raw_actions = obj["actions"]
        thought = str(obj.get("thought") or "")
    elif "type" in obj:
        # single bare action
        raw_actions = [obj]
        thought = str(obj.get("thought") or obj.get("reason") or "")
    else:
        raise ActionParseError("Response has neither 'actions' nor 'type'", raw_response=text)

    if not raw_actions:
        raise ActionParseError("Response contained an empty action list", raw_response=text)

    try:
        actions = [Action.from_dict(item) for item in raw_actions]
    except (TypeError, ValueError) as exc:
        raise ActionParseError(f"Malformed action: {exc}", raw_response=text) from exc

    return Decision(thought=thought, actions=actions)


def parse_decision(text: str) -> DecisionOutcome:
    """Turn raw model text into a Decision, or a ``parse`` failure."""
    try:
        return decode_decision(text)
    except ActionParseError as exc:
        return DecisionFailure("parse", exc.message, raw=text)


def encode_screenshot(screenshot: bytes, max_width: int = 1280) -> str:
    """Downscale (if needed) and re-encode a screenshot as base64 JPEG."""
    image = Image.open(io.BytesIO(screenshot))
    if image.mode != "RGB":
        image = image.convert("RGB")
    if image.width > max_width:
        height = round(image.height * max_width / image.width)
        image = image.resize((max_width, height))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=80)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def fallback_decision(failure: DecisionFailure) -> Decision:
    return Decision(
        thought=f"Decision engine unavailable ({failure.kind}): {failure.message}",
        actions=[
            Action(
                kind=ActionKind.WAIT,
                duration=FALLBACK_WAIT_MS,
                reason=f"Brain freeze ({failure.kind}), pausing briefly",
            )
        ],
        degraded=True,
    )


class DecisionEngine:
    """Vision model client with retry/backoff over :data:`DecisionOutcome`."""

    def __init__(
        self,
        config: Optional[DecisionConfig] = None,
        client: Optional[Any] = None,
        chaos: Optional[ChaosPolicy] = None,
        logger: Optional[logging.Logger] = None,
        retry_wait: Optional[Any] = None,
    ):
        self.config = config or DecisionConfig()
        self.logger = logger or logging.getLogger("pathfinder.decision")
        self.client = client or AsyncOpenAI(
            api_key=self.config.api_key or "missing-api-key",
            base_url=self.config.base_url,
        )
        self.chaos = chaos
        self.retry_wait = retry_wait or wait_exponential(multiplier=1.0, min=1.0, max=8.0)

    async def decide(
        self,
        screenshot: bytes,
        goal: str,
        history: str,
        page_context: Optional[str] = None,
        dom_diff: Optional[str] = None,
        warning: Optional[str] = None,
    ) -> Decision:
        """Next action(s) toward ``goal``."""
        prompt = build_goal_prompt(goal, history, page_context, dom_diff, warning)
        return await self._decide_with_retry(prompt, screenshot)

    async def decide_chaos(self, screenshot: bytes, history: str) -> Decision:
        """Next action(s) meant to break the app; typed text may be fuzzed."""
        decision = await self._decide_with_retry(build_chaos_prompt(history), screenshot)
        if self.chaos is not None and not decision.degraded:
            decision.actions = [self.chaos.fuzz(action) for action in decision.actions]
        return decision

    async def _decide_with_retry(self, prompt: str, screenshot: bytes) -> Decision:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=self.retry_wait,
            retry=retry_if_result(lambda outcome: isinstance(outcome, DecisionFailure) and outcome.retryable),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
        )
        outcome = await retrying(self._request, prompt, screenshot)

        if isinstance(outcome, DecisionFailure):
            self.logger.warning(f"Decision engine degraded to wait: {outcome.kind}: {outcome.message}")
            return fallback_decision(outcome)
        return outcome

    async def _request(self, prompt: str, screenshot: bytes) -> DecisionOutcome:
        """One model call, mapped onto the result type. Never raises."""
        try:
            image_b64 = encode_screenshot(screenshot, self.config.image_max_width)
        except Exception as exc:
            return DecisionFailure("other", f"Could not encode screenshot: {exc}")

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                ],
            }
        ]

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.RateLimitError as exc:
            return DecisionFailure("rate_limited", f"Rate limited: {exc}")
        except Exception as exc:
            self.logger.error(f"Decision engine call failed: {exc}")
            return DecisionFailure("other", f"Model call failed: {exc}")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            return DecisionFailure("parse", "Empty response from model")

        self.logger.debug(f"Model response: {content[:300]}")
        outcome = parse_decision(content)
        if isinstance(outcome, DecisionFailure):
            self.logger.warning(f"Unparseable model response: {outcome.message}")
        return outcome
