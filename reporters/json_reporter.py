"""JSON report generator for Pathfinder runs."""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from agent_types import ActionRecord, RunResult, StepResult
from reporters.base import BaseReporter, ReportFormat, report_slug


class JSONReporter(BaseReporter):
    """Generate machine-readable JSON reports."""

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JSON

    def _action_to_dict(self, record: ActionRecord) -> Dict[str, Any]:
        return {
            "ordinal": record.ordinal,
            "action": record.action.to_dict(),
            "outcome": record.outcome,
            "url": record.page_url,
            "source": record.source,
            "thought": record.thought,
            "screenshot": str(record.screenshot_path) if record.screenshot_path else None,
            "duration_ms": round(record.duration_ms, 1) if record.duration_ms is not None else None,
        }

    def _step_to_dict(self, step: StepResult) -> Dict[str, Any]:
        return {
            "name": step.step.name,
            "goal": step.step.goal,
            "status": step.status,
            "source": step.source,
            "cached": step.cached,
            "error_category": step.error_category,
            "message": step.message,
            "actions": [self._action_to_dict(a) for a in step.actions],
        }

    def _result_to_dict(self, result: RunResult) -> Dict[str, Any]:
        """Convert RunResult to JSON-serializable dict."""
        return {
            "flow": {
                "name": result.flow.name,
                "start_url": result.flow.start_url,
                "mode": result.flow.mode,
                "tags": sorted(result.flow.tags),
                "notes": result.flow.notes,
            },
            "result": {
                "run_id": result.run_id,
                "status": result.status,
                "success": result.success,
                "reason": result.reason,
                "error_category": result.error_category,
                "started_at": result.started_at.isoformat(),
                "finished_at": result.finished_at.isoformat(),
                "duration_seconds": result.duration_seconds,
                "total_actions": result.action_count,
                "final_url": result.final_url,
                "video": str(result.video_path) if result.video_path else None,
                "console_errors": result.console_errors,
                "page_errors": result.page_errors,
                "failed_requests": result.failed_requests,
            },
            "steps": [self._step_to_dict(s) for s in result.steps],
            "history": result.history,
        }

    def generate(self, result: RunResult, output_dir: Path) -> Path:
        """Generate JSON report for a single run."""
        output_dir.mkdir(parents=True, exist_ok=True)
        target = output_dir / f"{report_slug(result.flow.name)}-{result.run_id}.json"

        report_data = {
            "generated_at": datetime.utcnow().isoformat(),
            "report_version": "1.0",
            "runs": [self._result_to_dict(result)],
            "summary": {
                "total": 1,
                "passed": 1 if result.success else 0,
                "faults": 1 if result.status == "fault_triggered" else 0,
                "failed": 1 if result.status in ("failed", "stopped") else 0,
            },
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target

    def generate_suite(self, results: List[RunResult], output_dir: Path) -> Path:
        """Generate combined JSON report for multiple runs."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        target = output_dir / f"suite-{timestamp}.json"

        passed = sum(1 for r in results if r.success)
        faults = sum(1 for r in results if r.status == "fault_triggered")
        failed = len(results) - passed - faults
        pass_rate = (passed / len(results) * 100) if results else 0.0

        durations = [r.duration_seconds for r in results]
        total_duration = sum(durations)
        avg_duration = total_duration / len(durations) if durations else 0

        report_data = {
            "generated_at": datetime.utcnow().isoformat(),
            "report_version": "1.0",
            "runs": [self._result_to_dict(r) for r in results],
            "summary": {
                "total": len(results),
                "passed": passed,
                "faults": faults,
                "failed": failed,
                "pass_rate": round(pass_rate, 2),
                "total_duration_seconds": round(total_duration, 2),
                "avg_duration_seconds": round(avg_duration, 2),
            },
            "failed_runs": [
                {"flow": r.flow.name, "status": r.status, "category": r.error_category, "reason": r.reason}
                for r in results
                if not r.success
            ],
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target
