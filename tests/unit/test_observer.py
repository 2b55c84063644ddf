"""Unit tests for the progress observer."""
from __future__ import annotations

import pytest

from agent_types import Action, ActionKind
from observer import LIMIT, LOOP, REPETITION, STEP_FAILED, STUCK, ProgressObserver

URL = "https://shop.test/cart"


def click(selector):
    return Action(kind=ActionKind.CLICK, selector=selector)


SCROLL = Action(kind=ActionKind.SCROLL)
HOVER = Action(kind=ActionKind.HOVER, selector="#menu")
KEYPRESS = Action(kind=ActionKind.KEYPRESS, key="Tab")
WAIT = Action(kind=ActionKind.WAIT, duration=500)

# no three consecutive actions share a kind
VARIED = [SCROLL, HOVER, KEYPRESS, click("#a")]


def varied(n):
    return [VARIED[i % len(VARIED)] for i in range(n)]


@pytest.fixture
def observer() -> ProgressObserver:
    obs = ProgressObserver()
    obs.reset_for_new_step(URL)
    return obs


def feed(observer, actions, url=URL):
    """Record each action and return the intervention seen after each one."""
    results = []
    for action in actions:
        observer.record_state(url, action)
        results.append(observer.validate_progress())
    return results


class TestStagnation:
    def test_stuck_after_fifteen_actions_on_one_url(self, observer):
        results = feed(observer, varied(15))

        assert results[:14] == [None] * 14
        assert results[14].category == STUCK

    def test_changing_url_is_progress(self, observer):
        for i, action in enumerate(varied(20)):
            observer.record_state(f"{URL}?page={i}", action)
            assert observer.validate_progress() is None

    def test_form_filling_is_not_stagnation(self, observer):
        feed(observer, varied(12))
        typing = [Action(kind=ActionKind.TYPE, selector=f"#field{i}", text="x") for i in range(4)]

        assert feed(observer, typing) == [None] * 4

    def test_waits_do_not_count(self, observer):
        assert feed(observer, [WAIT] * 30) == [None] * 30


class TestClickChecks:
    def test_same_target_three_times_is_repetition(self, observer):
        results = feed(observer, [click("#btn")] * 3)

        assert results[:2] == [None, None]
        assert results[2].category == REPETITION

    def test_distinct_targets_are_allowed(self, observer):
        assert feed(observer, [click("#a"), click("#b"), click("#c")]) == [None] * 3

    def test_waits_between_same_clicks_still_repeat(self, observer):
        results = feed(observer, [click("#btn"), WAIT, click("#btn"), WAIT, click("#btn")])
        assert results[-1].category == REPETITION

    def test_click_flood_is_loop(self, observer):
        results = feed(observer, [click(f"#item{i}") for i in range(12)])

        assert results[:11] == [None] * 11
        assert results[11].category == LOOP

    def test_click_flood_needs_same_url(self, observer):
        for i in range(14):
            observer.record_state(f"{URL}/{i}", click(f"#item{i}"))
            assert observer.validate_progress() is None

    def test_hard_click_limit(self):
        observer = ProgressObserver(stagnation_threshold=100, click_flood_threshold=100)
        observer.reset_for_new_step(URL)
        results = feed(observer, [click(f"#item{i}") for i in range(15)])

        assert results[:14] == [None] * 14
        assert results[14].category == LIMIT

    def test_coordinate_clicks_use_coordinate_as_target(self, observer):
        same_spot = Action(kind=ActionKind.CLICK, coordinate=(100, 200))
        assert feed(observer, [same_spot] * 3)[-1].category == REPETITION


class TestKindRepetition:
    def test_same_kind_five_times(self, observer):
        results = feed(observer, [SCROLL] * 5)

        assert results[:4] == [None] * 4
        assert results[4].category == REPETITION
        assert "scroll" in results[4].message

    def test_typing_is_exempt(self, observer):
        typing = [Action(kind=ActionKind.TYPE, selector="#q", text=str(i)) for i in range(8)]
        assert feed(observer, typing) == [None] * 8

    def test_run_broken_by_url_change(self, observer):
        feed(observer, [SCROLL] * 4)
        observer.record_state(URL + "/next", SCROLL)
        assert observer.validate_progress() is None


class TestRepeatWarning:
    def test_warns_on_second_identical_click(self, observer):
        feed(observer, [click("#btn"), click("#btn")])

        warning = observer.repeat_warning()
        assert warning is not None
        assert "#btn" in warning

    def test_no_warning_for_different_targets(self, observer):
        feed(observer, [click("#a"), click("#b")])
        assert observer.repeat_warning() is None

    def test_no_warning_after_navigation(self, observer):
        observer.record_state(URL, click("#btn"))
        observer.record_state(URL + "/next", click("#btn"))
        assert observer.repeat_warning() is None


class TestStepCompletion:
    def test_navigation_goal_without_navigation_fails(self, observer):
        result = observer.validate_step_completion("Go to the pricing page", URL)

        assert result is not None
        assert result.category == STEP_FAILED
        assert URL in result.message

    def test_navigation_goal_with_navigation_passes(self, observer):
        assert observer.validate_step_completion("navigate to pricing", "https://shop.test/pricing") is None

    def test_non_navigation_goal_is_not_checked(self, observer):
        assert observer.validate_step_completion("add the blue shirt to the cart", URL) is None

    def test_end_url_defaults_to_last_snapshot(self, observer):
        observer.record_state("https://shop.test/pricing", click("#pricing"))
        assert observer.validate_step_completion("visit the pricing page") is None

    def test_start_url_defaults_to_first_snapshot(self):
        observer = ProgressObserver()
        observer.record_state(URL, click("#x"))
        observer.record_state(URL, click("#y"))
        assert observer.validate_step_completion("open the settings").category == STEP_FAILED


class TestWindow:
    def test_reset_clears_snapshots(self, observer):
        feed(observer, [click("#btn")] * 2)
        observer.reset_for_new_step("https://shop.test/other")

        assert observer.snapshots == ()
        assert observer.initial_url() == "https://shop.test/other"
        assert feed(observer, [click("#btn")], url="https://shop.test/other") == [None]

    def test_window_is_bounded(self, observer):
        feed(observer, [WAIT] * 40)
        assert len(observer.snapshots) == 25
        assert observer.snapshots[-1].index == 39
