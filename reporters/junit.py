"""JUnit XML report generator for CI integration."""
from __future__ import annotations

import html
from datetime import datetime
from pathlib import Path
from typing import List

from agent_types import RunResult
from reporters.base import BaseReporter, ReportFormat


class JUnitReporter(BaseReporter):
    """Generate JUnit XML reports for CI/CD integration.

    A chaos run that triggered a fault is reported as a ``<failure>`` of type
    ``FaultTriggered`` so CI surfaces it; a stopped run is ``<skipped>``.
    """

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JUNIT

    def _escape_xml(self, text: str) -> str:
        """Escape special XML characters."""
        return html.escape(str(text), quote=True)

    def _format_timestamp(self, dt: datetime) -> str:
        return dt.strftime("%Y-%m-%dT%H:%M:%S")

    def _build_testcase_xml(self, result: RunResult) -> str:
        """Build XML for a single run."""
        classname = f"pathfinder.{result.flow.mode}"
        name = self._escape_xml(result.flow.name)
        time_sec = f"{result.duration_seconds:.3f}"

        lines = [f'    <testcase classname="{classname}" name="{name}" time="{time_sec}">']

        if result.status == "stopped":
            lines.append(f'      <skipped message="{self._escape_xml(result.reason)}"/>')
        elif not result.success:
            failure_type = "FaultTriggered" if result.status == "fault_triggered" else (
                result.error_category or "RunFailure"
            )
            lines.append(
                f'      <failure message="{self._escape_xml(result.reason)}" '
                f'type="{self._escape_xml(failure_type)}"><![CDATA['
            )
            lines.append(f"Flow: {result.flow.name}")
            lines.append(f"URL: {result.flow.start_url}")
            lines.append(f"Status: {result.status}")
            lines.append(f"Reason: {result.reason}")
            lines.append("")
            for step in result.steps:
                lines.append(f"  [{step.status}] {step.step.name}: {step.step.goal}")
            if result.actions:
                lines.append("")
                lines.append("Last Actions:")
                for record in result.actions[-5:]:
                    lines.append(f"  [{record.ordinal}] {record.action.describe()} @ {record.page_url}")
                    lines.append(f"      Outcome: {record.outcome[:150]}")
            for err in (result.page_errors + result.failed_requests)[:10]:
                lines.append(f"  ! {err}")
            lines.append("]]></failure>")

        if result.history:
            lines.append("      <system-out><![CDATA[")
            lines.extend(line.replace("]]>", "]]&gt;") for line in result.history[-20:])
            lines.append("]]></system-out>")

        lines.append("    </testcase>")
        return "\n".join(lines)

    def generate(self, result: RunResult, output_dir: Path) -> Path:
        """Generate JUnit XML report for a single run."""
        return self.generate_suite([result], output_dir)

    def generate_suite(self, results: List[RunResult], output_dir: Path) -> Path:
        """Generate combined JUnit XML report for multiple runs."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S-%f")
        target = output_dir / f"junit-{timestamp}.xml"

        tests = len(results)
        skipped = sum(1 for r in results if r.status == "stopped")
        failures = sum(1 for r in results if r.status in ("failed", "fault_triggered"))
        total_time = sum(r.duration_seconds for r in results)

        if results:
            timestamp_str = self._format_timestamp(min(r.started_at for r in results))
        else:
            timestamp_str = self._format_timestamp(datetime.utcnow())

        lines = ['<?xml version="1.0" encoding="UTF-8"?>']
        lines.append(
            f'<testsuite name="Pathfinder QA" '
            f'tests="{tests}" '
            f'failures="{failures}" '
            f'errors="0" '
            f'skipped="{skipped}" '
            f'time="{total_time:.3f}" '
            f'timestamp="{timestamp_str}">'
        )
        lines.append("  <properties>")
        lines.append('    <property name="reporter" value="pathfinder-junit"/>')
        lines.append(f'    <property name="generated_at" value="{datetime.utcnow().isoformat()}"/>')
        lines.append("  </properties>")

        for result in results:
            lines.append(self._build_testcase_xml(result))

        lines.append("</testsuite>")

        target.write_text("\n".join(lines), encoding="utf-8")
        return target
