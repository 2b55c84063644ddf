"""Pathfinder agent loop: cache replay or perceive/decide/act per flow step."""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from action_cache import ActionCache
from agent_types import (
    Action,
    ActionKind,
    ActionRecord,
    RunResult,
    StepResult,
    TestFlow,
    TestStep,
)
from chaos import ChaosPolicy
from config import PathfinderConfig
from decision import Decision
from events import EventSink, NullEventSink, RunEvent, publish
from exceptions import (
    AgentGaveUpError,
    BrowserError,
    ChaosFaultDetected,
    MaxActionsExceededError,
    PathfinderError,
    ProgressStalledError,
    RunCancelledError,
    StepExecutionError,
)
from history import ActionHistoryLog
from observer import ProgressObserver
from optimizer import optimize_actions


class AgentLoop:
    """Drives one browser session through the steps of a flow.

    The browser and decision engine are collaborators; the loop owns the
    observer and history for the duration of a run and shares only the
    action cache with other runs.
    """

    def __init__(
        self,
        browser: Any,
        engine: Any,
        cache: Optional[ActionCache] = None,
        config: Optional[PathfinderConfig] = None,
        events: Optional[EventSink] = None,
        chaos: Optional[ChaosPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser = browser
        self.engine = engine
        self.config = config or PathfinderConfig()
        self.cache = cache
        self.events = events or NullEventSink()
        self.chaos = chaos
        self.logger = logger or logging.getLogger("pathfinder.agent")
        self.observer = ProgressObserver()
        self.history = ActionHistoryLog()
        self._run_id = ""

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def _emit(self, event_type: str, **data: Any) -> None:
        publish(self.events, RunEvent(run_id=self._run_id, type=event_type, data=data), self.logger)

    def _log(self, message: str) -> None:
        self.logger.info(message)
        self._emit("log", message=message)

    # ─────────────────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────────────────

    async def run(
        self,
        flow: TestFlow,
        run_id: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
        trace_path: Optional[Path] = None,
    ) -> RunResult:
        """Execute every step of ``flow`` in one browser session."""
        self._run_id = run_id or uuid.uuid4().hex[:12]
        self.observer = ProgressObserver()
        self.history = ActionHistoryLog()
        chaos_mode = flow.mode == "chaos"

        started_at = datetime.utcnow()
        steps: List[StepResult] = []
        status = "failed"
        reason = ""
        error_category: Optional[str] = None
        final_url: Optional[str] = None
        video_path: Optional[Path] = None

        self._emit("status", status="running")
        self._log(f"Starting run: {flow.name} [{flow.mode}] on {flow.start_url}")

        try:
            await self.browser.start(self._run_id)
            if chaos_mode:
                await self.browser.enable_chaos(self.chaos or ChaosPolicy(self.config.chaos))
                self.history.log("CHAOS MODE ENABLED")
            await self.browser.goto(flow.start_url)

            for index, step in enumerate(flow.steps, 1):
                if stop_event is not None and stop_event.is_set():
                    raise RunCancelledError(f"Run stopped before step {index}: {step.name}", step_name=step.name)

                step_result = StepResult(step=step, status="failed")
                steps.append(step_result)
                await self._run_step(flow, step, index, step_result)
                step_result.status = "passed"
                self._write_trace(trace_path, flow=flow, started_at=started_at, steps=steps)

            status = "passed"
            reason = f"All {len(flow.steps)} step(s) completed"
        except RunCancelledError as exc:
            status, reason, error_category = "stopped", exc.message, exc.category
        except ChaosFaultDetected as exc:
            status, reason, error_category = "fault_triggered", exc.message, exc.category
            self._mark_last_step(steps, "fault_triggered", exc)
        except StepExecutionError as exc:
            status, reason, error_category = "failed", exc.message, exc.category
            self._mark_last_step(steps, "failed", exc)
        except PathfinderError as exc:
            status, reason, error_category = "failed", exc.message, "BROWSER_ERROR"
            self._mark_last_step(steps, "failed", exc, category=error_category)
        except Exception as exc:
            self.logger.exception(f"Unexpected error during run {self._run_id}")
            status, reason, error_category = "failed", f"{type(exc).__name__}: {exc}", "RUNNER_ERROR"
            self._mark_last_step(steps, "failed", exc, category=error_category)
        finally:
            try:
                final_url = self.browser.get_url()
            except BrowserError:
                final_url = None
            console_errors = list(self.browser.get_console_errors())
            page_errors = list(self.browser.page_errors)
            failed_requests = list(self.browser.failed_requests)
            try:
                video_path = self._keep_video(await self.browser.close())
            except Exception as exc:
                self.logger.warning(f"Error while closing browser: {exc}")

        finished_at = datetime.utcnow()
        if status == "passed":
            self._log(f"Run completed successfully: {reason}")
        else:
            self.history.log(f"ERROR: {reason}")
            self._log(f"Run ended with {status}: {reason}")
        self._emit("status", status=status, reason=reason, category=error_category)

        result = RunResult(
            flow=flow,
            run_id=self._run_id,
            status=status,
            reason=reason,
            started_at=started_at,
            finished_at=finished_at,
            steps=steps,
            error_category=error_category,
            final_url=final_url,
            history=self.history.full_log(),
            console_errors=console_errors,
            page_errors=page_errors,
            failed_requests=failed_requests,
            video_path=video_path,
        )
        self._write_trace(trace_path, flow=flow, started_at=started_at, steps=steps, result=result)
        return result

    @staticmethod
    def _mark_last_step(
        steps: List[StepResult],
        status: str,
        exc: Exception,
        category: Optional[str] = None,
    ) -> None:
        if not steps or steps[-1].status == "passed":
            return
        steps[-1].status = status
        steps[-1].message = getattr(exc, "message", None) or str(exc)
        steps[-1].error_category = category or getattr(exc, "category", None)

    # ─────────────────────────────────────────────────────────────────────────
    # Step
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_step(self, flow: TestFlow, step: TestStep, index: int, result: StepResult) -> None:
        """Replay from cache when possible, else run the vision loop. Raises on step failure."""
        chaos_mode = flow.mode == "chaos"
        start_url = self.browser.get_url()
        self.observer.reset_for_new_step(start_url)

        self._log(f"Step {index}/{len(flow.steps)}: {step.name}")
        self.history.log(f"--- STEP {index}: {step.name} ({step.goal}) ---")

        use_cache = self.cache is not None and self.config.cache.enabled and not chaos_mode
        if use_cache:
            cached = self.cache.lookup(start_url, step.name, step.goal)
            if cached:
                if await self._replay(cached, index, result):
                    result.source = "cache"
                    result.cached = True
                    return
                result.actions.clear()

        await self._vision_loop(flow, step, index, start_url, result)

    async def _replay(self, actions: List[Action], index: int, result: StepResult) -> bool:
        """Execute cached actions blindly. False if any of them fails."""
        self._log(f"Replaying {len(actions)} cached actions")
        await self._emit_frame()
        settle = self.config.loop.settle_ms / 1000.0
        executed = 0
        for action in actions:
            if action.kind == ActionKind.DONE:
                continue
            started = time.monotonic()
            try:
                outcome = await self.browser.execute_action(action)
            except BrowserError as exc:
                self.logger.warning(f"Cached replay failed at {action.describe()}: {exc}")
                self.history.log(f"[CACHE] Failed: {exc.message}. Recovering with vision.")
                return False
            executed += 1
            result.actions.append(
                ActionRecord(
                    step_index=index,
                    ordinal=executed,
                    action=action,
                    outcome=outcome,
                    page_url=self.browser.get_url(),
                    source="cache",
                    duration_ms=(time.monotonic() - started) * 1000,
                )
            )
            if settle:
                await asyncio.sleep(settle)

        self.history.log(f"[CACHE] Successfully executed {executed} actions.")
        self._log(f"Fast forward: executed {executed} cached actions")
        return True

    async def _vision_loop(
        self,
        flow: TestFlow,
        step: TestStep,
        index: int,
        start_url: str,
        result: StepResult,
    ) -> None:
        chaos_mode = flow.mode == "chaos"
        if chaos_mode:
            budget = self.config.loop.max_actions_chaos
        else:
            budget = flow.max_actions_per_step or self.config.loop.max_actions_standard
        trace: List[Action] = []
        faults_before = self.browser.fault_count

        for round_num in range(budget):
            screenshot = await self.browser.screenshot()
            screenshot_path = self._save_screenshot(screenshot, index, round_num)
            self._emit("frame", data=base64.b64encode(screenshot).decode("ascii"))

            history_text = self.history.render_for_prompt()
            if chaos_mode:
                decision = await self.engine.decide_chaos(screenshot, history_text)
            else:
                decision = await self.engine.decide(
                    screenshot,
                    step.goal,
                    history_text,
                    page_context=await self.browser.get_page_context(),
                    dom_diff=await self.browser.get_dom_diff(),
                    warning=self.observer.repeat_warning(),
                )
            self._on_thought(decision)

            for action in decision.actions:
                trace.append(action)

                if action.kind == ActionKind.DONE:
                    self._finish_step(flow, step, index, start_url, trace, action)
                    return

                if action.kind == ActionKind.FAIL:
                    self.history.record(action, "Agent reported failure", index)
                    if chaos_mode:
                        raise ChaosFaultDetected(
                            f"Chaos crash at step {step.name}: {action.reason or 'agent reported failure'}",
                            step_name=step.name,
                        )
                    raise AgentGaveUpError(
                        f"Failed at step {step.name}: {action.reason or 'no reason given'}",
                        step_name=step.name,
                    )

                record = await self._execute(action, index, len(result.actions) + 1, decision, screenshot_path)
                result.actions.append(record)
                self.observer.record_state(record.page_url, action)

                if chaos_mode and self.browser.fault_count > faults_before:
                    raise ChaosFaultDetected(
                        f"Crash detected: {len(self.browser.page_errors)} page errors, "
                        f"{len(self.browser.failed_requests)} failed requests",
                        step_name=step.name,
                        details={
                            "page_errors": list(self.browser.page_errors),
                            "failed_requests": list(self.browser.failed_requests),
                        },
                    )

                intervention = self.observer.validate_progress()
                if intervention:
                    self.history.log(f"OBSERVER: {intervention}")
                    self.logger.warning(f"Observer intervention: {intervention}")
                    raise ProgressStalledError(
                        f"Observer detected issue: {intervention.message}",
                        step_name=step.name,
                        category=intervention.category,
                    )

        raise MaxActionsExceededError(budget, step_name=step.name)

    def _on_thought(self, decision: Decision) -> None:
        if decision.thought:
            self.logger.info(f"Thought: {decision.thought[:200]}")
            self._emit("thought", message=decision.thought)

    async def _execute(
        self,
        action: Action,
        index: int,
        ordinal: int,
        decision: Decision,
        screenshot_path: Optional[Path],
    ) -> ActionRecord:
        """Run one action; failures become part of the outcome, not an exception."""
        self._log(f"Action: {action.describe()} Reason={action.reason or ''}")
        started = time.monotonic()
        try:
            outcome = await self.browser.execute_action(action)
        except BrowserError as exc:
            self.logger.warning(f"Action {action.kind.value} failed: {exc}")
            outcome = f"FAILED: {exc.message}"

        self.history.record(action, outcome, index)
        return ActionRecord(
            step_index=index,
            ordinal=ordinal,
            action=action,
            outcome=outcome,
            page_url=self.browser.get_url(),
            source="vision",
            thought=decision.thought,
            screenshot_path=screenshot_path,
            duration_ms=(time.monotonic() - started) * 1000,
        )

    def _finish_step(
        self,
        flow: TestFlow,
        step: TestStep,
        index: int,
        start_url: str,
        trace: List[Action],
        done: Action,
    ) -> None:
        """Validate a ``done`` and cache the trace. Raises if the step did not really finish."""
        self.history.record(done, "Step marked done", index)
        if flow.mode == "chaos":
            self._log(f"Chaos step {step.name} ended without a crash")
            return

        intervention = self.observer.validate_step_completion(step.goal, self.browser.get_url())
        if intervention:
            self.history.log(f"OBSERVER: {intervention}")
            raise ProgressStalledError(intervention.message, step_name=step.name, category=intervention.category)

        if self.cache is not None and self.config.cache.enabled and len(trace) > 1:
            optimized = optimize_actions(trace)
            self.cache.store(start_url, step.name, step.goal, optimized)
            self.logger.info(f"Cached {len(optimized)} actions for step {step.name}")
        self._log(f"Step {step.name} completed")

    # ─────────────────────────────────────────────────────────────────────────
    # Artifacts
    # ─────────────────────────────────────────────────────────────────────────

    async def _emit_frame(self) -> None:
        try:
            screenshot = await self.browser.screenshot()
        except BrowserError as exc:
            self.logger.debug(f"No frame for replay: {exc}")
            return
        self._emit("frame", data=base64.b64encode(screenshot).decode("ascii"))

    def _save_screenshot(self, screenshot: bytes, step_index: int, round_num: int) -> Optional[Path]:
        if not self.config.reporting.save_screenshots:
            return None
        folder = self.config.reporting.screenshots_folder / self._run_id
        path = folder / f"step{step_index}_action{round_num}.jpg"
        try:
            folder.mkdir(parents=True, exist_ok=True)
            path.write_bytes(screenshot)
        except OSError as exc:
            self.logger.warning(f"Failed to save screenshot {path}: {exc}")
            return None
        return path

    def _keep_video(self, video_path: Optional[Path]) -> Optional[Path]:
        """Give the recording a predictable name: ``run-<id>.webm``."""
        if not video_path or not Path(video_path).exists():
            return None
        target = self.config.browser.video_dir / f"run-{self._run_id}.webm"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            Path(video_path).replace(target)
        except OSError as exc:
            self.logger.warning(f"Could not move video {video_path}: {exc}")
            return Path(video_path)
        self.logger.info(f"Video saved to {target}")
        return target

    def _write_trace(
        self,
        trace_path: Optional[Path],
        *,
        flow: TestFlow,
        started_at: datetime,
        steps: List[StepResult],
        result: Optional[RunResult] = None,
    ) -> None:
        """Persist the run trace; partial traces survive cancellation and crashes."""
        if not trace_path:
            return
        try:
            trace_path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "run_id": self._run_id,
                "flow": flow.name,
                "mode": flow.mode,
                "start_url": flow.start_url,
                "status": result.status if result else "running",
                "reason": result.reason if result else None,
                "error_category": result.error_category if result else None,
                "started_at": started_at.isoformat(),
                "steps": [
                    {
                        "name": s.step.name,
                        "goal": s.step.goal,
                        "status": s.status,
                        "source": s.source,
                        "actions": [
                            {
                                "ordinal": a.ordinal,
                                "action": a.action.to_dict(),
                                "outcome": a.outcome,
                                "url": a.page_url,
                                "source": a.source,
                                "screenshot": str(a.screenshot_path) if a.screenshot_path else None,
                            }
                            for a in s.actions
                        ],
                    }
                    for s in steps
                ],
                "history": self.history.full_log(),
            }
            trace_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            self.logger.warning(f"Failed to write trace file {trace_path}: {exc}")
