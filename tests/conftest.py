"""Pytest fixtures for Pathfinder tests."""
from __future__ import annotations

import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_types import Action, ActionKind, ActionRecord, RunResult, StepResult, TestFlow, TestStep
from config import BrowserConfig, CacheConfig, LoopConfig, PathfinderConfig, ReportingConfig
from decision import Decision


def click(selector: str = None, coordinate=None, **kwargs) -> Action:
    return Action(kind=ActionKind.CLICK, selector=selector, coordinate=coordinate, **kwargs)


def type_into(selector: str, text: str, **kwargs) -> Action:
    return Action(kind=ActionKind.TYPE, selector=selector, text=text, **kwargs)


def act(kind: ActionKind, **kwargs) -> Action:
    return Action(kind=kind, **kwargs)


DONE = Action(kind=ActionKind.DONE, reason="Goal reached")


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_config(temp_dir: Path) -> PathfinderConfig:
    """Config with no pauses and every artifact under a temp dir."""
    return PathfinderConfig(
        browser=BrowserConfig(record_video=False, video_dir=temp_dir / "videos"),
        loop=LoopConfig(settle_ms=0),
        cache=CacheConfig(cache_dir=temp_dir / "cache"),
        reporting=ReportingConfig(
            save_screenshots=False,
            screenshots_folder=temp_dir / "screenshots",
            reports_folder=temp_dir / "reports",
        ),
    )


@pytest.fixture
def login_flow() -> TestFlow:
    return TestFlow(
        name="Login and greet",
        start_url="https://shop.test/login?token=A",
        steps=[
            TestStep(name="Login", goal="log in with user X"),
            TestStep(name="Greeting", goal="confirm the dashboard greets user X"),
        ],
        tags={"smoke", "auth"},
    )


@pytest.fixture
def mock_browser() -> MagicMock:
    """Browser collaborator double; every action succeeds on an unchanging URL."""
    browser = MagicMock()
    browser.start = AsyncMock()
    browser.close = AsyncMock(return_value=None)
    browser.goto = AsyncMock()
    browser.enable_chaos = AsyncMock()
    browser.screenshot = AsyncMock(return_value=b"fake_jpeg")
    browser.get_page_context = AsyncMock(return_value='{"items": []}')
    browser.get_dom_diff = AsyncMock(return_value="No changes detected")
    browser.execute_action = AsyncMock(return_value="ok")
    browser.get_url = MagicMock(return_value="https://shop.test/login?token=A")
    browser.get_console_errors = MagicMock(return_value=[])
    browser.page_errors = []
    browser.failed_requests = []
    browser.fault_count = 0
    return browser


@pytest.fixture
def mock_engine() -> MagicMock:
    """Decision engine double; tests set ``decide.side_effect``."""
    engine = MagicMock()
    engine.decide = AsyncMock(return_value=Decision(thought="finished", actions=[DONE]))
    engine.decide_chaos = AsyncMock(return_value=Decision(thought="nothing broke", actions=[DONE]))
    return engine


@pytest.fixture
def sample_run_result(login_flow: TestFlow) -> RunResult:
    step_one = StepResult(
        step=login_flow.steps[0],
        status="passed",
        actions=[
            ActionRecord(
                step_index=1,
                ordinal=1,
                action=type_into("#user", "X"),
                outcome="Filled #user",
                page_url="https://shop.test/login",
                thought="Fill the username",
                timestamp=datetime(2024, 1, 1, 10, 0, 5),
            ),
            ActionRecord(
                step_index=1,
                ordinal=2,
                action=click("#submit"),
                outcome="Clicked #submit",
                page_url="https://shop.test/dashboard",
                timestamp=datetime(2024, 1, 1, 10, 0, 10),
            ),
        ],
    )
    step_two = StepResult(step=login_flow.steps[1], status="passed", source="cache", cached=True)
    return RunResult(
        flow=login_flow,
        run_id="run-1",
        status="passed",
        reason="All 2 step(s) completed",
        started_at=datetime(2024, 1, 1, 10, 0, 0),
        finished_at=datetime(2024, 1, 1, 10, 0, 30),
        steps=[step_one, step_two],
        final_url="https://shop.test/dashboard",
        history=["--- STEP 1: Login (log in with user X) ---", "[1] type Sel=\"#user\" Text=\"X\" Outcome: ok"],
    )


@pytest.fixture
def sample_flow_yaml() -> str:
    """Sample YAML flow definition."""
    return """
name: Checkout
start_url: https://shop.test/
mode: standard
tags:
  - smoke
  - cart
max_actions_per_step: 20
steps:
  - name: Add item
    goal: add the blue shirt to the cart
  - name: Checkout
    goal: go to the checkout page
  - pay with the test card
"""


@pytest.fixture
def sample_flow_json() -> Dict[str, Any]:
    """Sample JSON flow definition with a single goal."""
    return {
        "name": "Search",
        "url": "https://shop.test/",
        "goal": "search for socks",
        "mode": "chaos",
        "tags": ["search"],
    }
