"""Run the Pathfinder agent against one URL with a single goal."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from agent_types import RunSuiteResult, TestFlow
from config import load_config
from exceptions import PathfinderError
from flow_runner import (
    EXIT_FAILED,
    FlowRunner,
    build_cli_overrides,
    configure_logging,
    exit_code_for,
    install_stop_handler,
    print_summary,
)


async def main(args: argparse.Namespace, logger: logging.Logger) -> int:
    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path, build_cli_overrides(args))
    except (PathfinderError, ValueError) as exc:
        logger.error(f"Failed to load config: {exc}")
        return EXIT_FAILED

    flow = TestFlow.single_goal(args.url, args.goal, mode=args.mode)

    stop_event = asyncio.Event()
    install_stop_handler(stop_event, logger)

    runner = FlowRunner(config=config, logger=logger)
    result = await runner.run_flow(flow, stop_event)

    suite = RunSuiteResult(results=[result], started_at=result.started_at, finished_at=result.finished_at)
    print_summary(suite)
    if result.video_path:
        print(f"Video: {result.video_path}")
    return exit_code_for(suite)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Pathfinder agent with a single goal")
    parser.add_argument("--url", required=True, help="Start URL")
    parser.add_argument("--goal", required=True, help="What the agent should accomplish")
    parser.add_argument("--mode", choices=["standard", "chaos"], default="standard", help="Run mode")
    parser.add_argument("--headful", action="store_true", help="Run browser in headful mode (show GUI)")
    parser.add_argument("--browser", choices=["chromium", "firefox", "webkit"], help="Browser engine")
    parser.add_argument("--model", help="Vision model name")
    parser.add_argument("--base-url", help="OpenAI-compatible API base URL")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--no-cache", action="store_true", help="Do not use the action cache")
    parser.add_argument("--reports-dir", help="Directory for reports and traces")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress non-essential output")
    return parser


if __name__ == "__main__":
    cli_args = _build_arg_parser().parse_args()
    configure_logging(cli_args.verbose, cli_args.quiet)
    cli_logger = logging.getLogger("pathfinder")

    try:
        code = asyncio.run(main(cli_args, cli_logger))
    except KeyboardInterrupt:
        cli_logger.info("Interrupted by user")
        code = 130
    except PathfinderError as e:
        cli_logger.error(f"Error: {e}")
        code = EXIT_FAILED
    sys.exit(code)
