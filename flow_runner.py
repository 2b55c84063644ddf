"""CLI-friendly orchestrator for running Pathfinder flows."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

from action_cache import ActionCache
from agent import AgentLoop
from agent_types import RunResult, RunSuiteResult, TestFlow
from browser import BrowserController
from chaos import ChaosPolicy
from config import PathfinderConfig, load_config
from decision import DecisionEngine
from events import EventSink, FanOutEventSink, JsonlEventSink, LoggingEventSink
from exceptions import FlowDefinitionError, PathfinderError
from flow_loader import discover_flows
from reporters import JSONReporter, JUnitReporter, ReportFormat
from reporters.base import report_slug

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FAULTS = 2


class FlowRunner:
    """Runs flows, one agent and browser session per run, sharing one action cache."""

    def __init__(
        self,
        config: PathfinderConfig,
        cache: Optional[ActionCache] = None,
        events: Optional[EventSink] = None,
        logger: Optional[logging.Logger] = None,
        browser_factory: Optional[Callable[[], object]] = None,
        engine_factory: Optional[Callable[[Optional[ChaosPolicy]], object]] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("pathfinder.runner")
        self.cache = cache or ActionCache(config.cache.cache_dir, logger=self.logger)
        self.events = events or self._default_events()
        self._browser_factory = browser_factory
        self._engine_factory = engine_factory

    def _default_events(self) -> EventSink:
        sinks: List[EventSink] = [LoggingEventSink(self.logger)]
        if self.config.reporting.events_file:
            sinks.append(JsonlEventSink(self.config.reporting.events_file))
        return FanOutEventSink(*sinks)

    def _new_agent(self, flow: TestFlow) -> AgentLoop:
        chaos = ChaosPolicy(self.config.chaos, logger=self.logger) if flow.mode == "chaos" else None
        if self._browser_factory:
            browser = self._browser_factory()
        else:
            browser = BrowserController.from_config(self.config.browser, logger=self.logger)
        if self._engine_factory:
            engine = self._engine_factory(chaos)
        else:
            engine = DecisionEngine(self.config.decision, chaos=chaos, logger=self.logger)
        return AgentLoop(
            browser=browser,
            engine=engine,
            cache=self.cache,
            config=self.config,
            events=self.events,
            chaos=chaos,
            logger=self.logger,
        )

    def _skipped_result(self, flow: TestFlow, reason: str) -> RunResult:
        now = datetime.utcnow()
        return RunResult(
            flow=flow,
            run_id="skipped",
            status="stopped",
            reason=reason,
            started_at=now,
            finished_at=now,
            error_category="SKIPPED",
        )

    async def run_flow(self, flow: TestFlow, stop_event: Optional[asyncio.Event] = None) -> RunResult:
        """Run a single flow and write its report."""
        if flow.skip:
            self.logger.info(f"Skipping {flow.name}: {flow.skip_reason or 'marked as skip'}")
            return self._skipped_result(flow, f"Skipped: {flow.skip_reason or 'marked as skip'}")
        if stop_event is not None and stop_event.is_set():
            return self._skipped_result(flow, "Stopped before start")

        run_id = f"{datetime.utcnow().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"
        trace_path = self.config.reporting.reports_folder / "traces" / f"{report_slug(flow.name)}-{run_id}.json"
        started = datetime.utcnow()

        try:
            agent = self._new_agent(flow)
            result = await agent.run(flow, run_id=run_id, stop_event=stop_event, trace_path=trace_path)
        except Exception as exc:
            self.logger.error(f"Flow {flow.name} crashed: {exc}", exc_info=True)
            result = RunResult(
                flow=flow,
                run_id=run_id,
                status="failed",
                reason=f"Runner exception: {exc}",
                started_at=started,
                finished_at=datetime.utcnow(),
                error_category="RUNNER_ERROR",
            )

        self._generate_reports([result], suite=False)
        return result

    async def run_sequential(
        self,
        flows: Sequence[TestFlow],
        stop_event: Optional[asyncio.Event] = None,
    ) -> List[RunResult]:
        results: List[RunResult] = []
        for i, flow in enumerate(flows, 1):
            self.logger.info(f"=== Running flow {flow.name} ({i}/{len(flows)}) ===")
            results.append(await self.run_flow(flow, stop_event))
        return results

    async def run_parallel(
        self,
        flows: Sequence[TestFlow],
        max_workers: int = 4,
        stop_event: Optional[asyncio.Event] = None,
    ) -> List[RunResult]:
        """Run flows concurrently, at most ``max_workers`` browser sessions at a time."""
        semaphore = asyncio.Semaphore(max_workers)

        async def run_with_limit(flow: TestFlow, index: int) -> RunResult:
            async with semaphore:
                self.logger.info(f"=== Starting flow {flow.name} ({index}/{len(flows)}) ===")
                return await self.run_flow(flow, stop_event)

        tasks = [run_with_limit(flow, i + 1) for i, flow in enumerate(flows)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        final_results: List[RunResult] = []
        for flow, result in zip(flows, results):
            if isinstance(result, BaseException):
                self.logger.error(f"Flow {flow.name} failed with exception: {result}")
                now = datetime.utcnow()
                final_results.append(
                    RunResult(
                        flow=flow,
                        run_id="error",
                        status="failed",
                        reason=f"Exception: {result}",
                        started_at=now,
                        finished_at=now,
                        error_category="RUNNER_ERROR",
                    )
                )
            else:
                final_results.append(result)
        return final_results

    async def run_all(
        self,
        flows: Sequence[TestFlow],
        stop_event: Optional[asyncio.Event] = None,
    ) -> RunSuiteResult:
        """Run all flows with configured parallelism."""
        start_time = datetime.utcnow()

        if self.config.parallel_workers > 1:
            self.logger.info(f"Running {len(flows)} flows with {self.config.parallel_workers} parallel workers")
            results = await self.run_parallel(flows, self.config.parallel_workers, stop_event)
        else:
            results = await self.run_sequential(flows, stop_event)

        suite = RunSuiteResult(results=results, started_at=start_time, finished_at=datetime.utcnow())
        if len(results) > 1:
            self._generate_reports(results, suite=True)
        return suite

    def _generate_reports(self, results: List[RunResult], suite: bool) -> None:
        output_dir = self.config.reporting.reports_folder
        output_format = self.config.reporting.output_format

        reporters = []
        if output_format in (ReportFormat.JSON, ReportFormat.ALL, "json", "all"):
            reporters.append(JSONReporter())
        if output_format in (ReportFormat.JUNIT, ReportFormat.ALL, "junit", "all"):
            reporters.append(JUnitReporter())

        for reporter in reporters:
            try:
                if suite:
                    path = reporter.generate_suite(results, output_dir)
                else:
                    path = reporter.generate(results[0], output_dir)
            except OSError as exc:
                self.logger.error(f"Failed to write {reporter.format.value} report: {exc}")
                continue
            self.logger.info(f"{'Suite ' if suite else ''}{reporter.format.value.upper()} report: {path}")


def exit_code_for(suite: RunSuiteResult) -> int:
    """1 if any run failed, 2 if the only bad news is triggered chaos faults."""
    if suite.failed > 0:
        return EXIT_FAILED
    if suite.faults > 0:
        return EXIT_FAULTS
    return EXIT_OK


def print_summary(suite: RunSuiteResult) -> None:
    print("\n" + "=" * 60)
    print("PATHFINDER SUMMARY")
    print("=" * 60)
    print(f"Total:  {suite.total}")
    print(f"Passed: {suite.passed}")
    print(f"Faults: {suite.faults}")
    print(f"Failed: {suite.failed}")
    print(f"Pass Rate: {suite.pass_rate:.1f}%")
    print(f"Duration: {suite.duration_seconds:.1f}s")
    print("=" * 60)

    bad = [r for r in suite.results if not r.success]
    if bad:
        print("\nNot passed:")
        for result in bad:
            category = f" [{result.error_category}]" if result.error_category else ""
            print(f"  - {result.flow.name} ({result.status}){category}: {result.reason[:80]}")


def build_cli_overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "browser": getattr(args, "browser", None),
        "headful": getattr(args, "headful", None) or None,
        "parallel": getattr(args, "parallel", None),
        "verbose": getattr(args, "verbose", None) or None,
        "output_format": getattr(args, "output_format", None),
        "model": getattr(args, "model", None),
        "base_url": getattr(args, "base_url", None),
        "cache_dir": getattr(args, "cache_dir", None),
        "no_cache": getattr(args, "no_cache", None) or None,
        "reports_dir": getattr(args, "reports_dir", None),
    }
    return {k: v for k, v in overrides.items() if v is not None}


def install_stop_handler(stop_event: asyncio.Event, logger: logging.Logger) -> None:
    """Ask running flows to stop at the next step boundary on SIGTERM."""

    def _request_stop() -> None:
        logger.warning("Stop requested; finishing current steps")
        stop_event.set()

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, _request_stop)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported on this platform")


async def run_from_cli_args(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Entry point shared by the CLI script."""
    include_tags: Optional[Set[str]] = set(args.tag) if args.tag else None
    exclude_tags: Optional[Set[str]] = set(args.exclude_tag) if args.exclude_tag else None

    try:
        flows = discover_flows(
            Path(args.flows_dir),
            only_names=args.flow if args.flow else None,
            include_tags=include_tags,
            exclude_tags=exclude_tags,
            include_skipped=args.include_skipped,
        )
    except FlowDefinitionError as exc:
        logger.error(str(exc))
        return EXIT_FAILED

    if not flows:
        logger.warning("No flows found matching filters")
        return EXIT_OK

    if args.mode:
        for flow in flows:
            flow.mode = args.mode

    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path, build_cli_overrides(args))
    except (PathfinderError, ValueError) as exc:
        logger.error(f"Failed to load config: {exc}")
        return EXIT_FAILED

    logger.info(f"Loaded {len(flows)} flow(s)")
    if config.verbose:
        logger.info(f"Browser: {config.browser.browser}, Headless: {config.browser.headless}")
        logger.info(f"Model: {config.decision.model} @ {config.decision.base_url}")
        logger.info(f"Parallel workers: {config.parallel_workers}")

    stop_event = asyncio.Event()
    install_stop_handler(stop_event, logger)

    runner = FlowRunner(config=config, logger=logger)
    suite = await runner.run_all(flows, stop_event)
    print_summary(suite)
    return exit_code_for(suite)


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Run multi-step web UI flows with the Pathfinder vision agent.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Run all flows in ./flows
  %(prog)s --flow "Checkout"            # Run one flow by name
  %(prog)s --tag smoke --parallel 4     # Tagged flows, 4 browsers at once
  %(prog)s --mode chaos                 # Try to break every flow
        """,
    )

    flow_group = parser.add_argument_group("Flow Selection")
    flow_group.add_argument("--flows-dir", default="flows", help="Directory containing flow YAML/JSON files (default: flows)")
    flow_group.add_argument("--flow", action="append", help="Flow name to run (can be used multiple times)")
    flow_group.add_argument("--tag", action="append", help="Only run flows with this tag (repeatable)")
    flow_group.add_argument("--exclude-tag", action="append", help="Exclude flows with this tag (repeatable)")
    flow_group.add_argument("--include-skipped", action="store_true", help="Include flows marked as skip=true")
    flow_group.add_argument("--mode", choices=["standard", "chaos"], help="Override every flow's mode")

    browser_group = parser.add_argument_group("Browser Options")
    browser_group.add_argument("--browser", choices=["chromium", "firefox", "webkit"], help="Browser engine (default: chromium)")
    browser_group.add_argument("--headful", action="store_true", help="Show the browser window")

    model_group = parser.add_argument_group("Decision Engine")
    model_group.add_argument("--model", help="Vision model name")
    model_group.add_argument("--base-url", help="OpenAI-compatible API base URL")

    exec_group = parser.add_argument_group("Execution Options")
    exec_group.add_argument("--parallel", type=int, metavar="N", help="Number of parallel workers (default: 1)")
    exec_group.add_argument("--config", help="Path to config file (default: pathfinder.yaml if exists)")
    exec_group.add_argument("--cache-dir", help="Directory holding the action cache")
    exec_group.add_argument("--no-cache", action="store_true", help="Never replay or write cached actions")

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument("--reports-dir", help="Directory for reports and traces (default: reports)")
    output_group.add_argument("--output-format", choices=["json", "junit", "all"], help="Report output format (default: json)")
    output_group.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true", help="Suppress non-essential output")

    return parser


def configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        log_level = logging.WARNING
    elif verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not verbose else "[%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()
    configure_logging(args.verbose, args.quiet)
    logger = logging.getLogger("pathfinder")

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except PathfinderError as exc:
        logger.error(f"Error: {exc}")
        exit_code = EXIT_FAILED
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = EXIT_FAILED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
