"""Unit tests for flow loading and discovery."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from agent_types import TestStep
from exceptions import FlowLoadError, FlowValidationError
from flow_loader import discover_flows, load_flow_file, parse_flow


class TestParseFlow:
    def test_full_definition(self):
        flow = parse_flow(
            {
                "name": "Checkout",
                "start_url": "https://shop.test/",
                "steps": [
                    {"name": "Add item", "goal": "add the blue shirt to the cart"},
                    {"name": "Pay", "objective": "pay with the test card"},
                ],
                "tags": ["smoke"],
                "notes": "needs the seeded catalogue",
                "max_actions_per_step": 25,
            },
            fallback_name="checkout",
        )

        assert flow.name == "Checkout"
        assert flow.mode == "standard"
        assert flow.steps == [
            TestStep(name="Add item", goal="add the blue shirt to the cart"),
            TestStep(name="Pay", goal="pay with the test card"),
        ]
        assert flow.tags == {"smoke"}
        assert flow.max_actions_per_step == 25

    def test_single_goal_becomes_main_goal_step(self, sample_flow_json: Dict[str, Any]):
        flow = parse_flow(sample_flow_json, fallback_name="search")

        assert flow.start_url == "https://shop.test/"
        assert flow.mode == "chaos"
        assert flow.steps == [TestStep(name="Main Goal", goal="search for socks")]

    def test_bare_string_steps_get_numbered_names(self):
        flow = parse_flow(
            {"start_url": "https://shop.test/", "steps": ["open the cart", "empty it"]},
            fallback_name="cart-file",
        )

        assert flow.name == "cart-file"
        assert [s.name for s in flow.steps] == ["Step 1", "Step 2"]

    def test_id_used_as_name(self):
        flow = parse_flow({"id": "search-001", "url": "https://shop.test/", "goal": "search"}, "file")
        assert flow.name == "search-001"

    def test_missing_start_url(self):
        with pytest.raises(FlowValidationError) as exc_info:
            parse_flow({"name": "x", "goal": "do it"}, "x")
        assert exc_info.value.field == "start_url"

    def test_missing_steps_and_goal(self):
        with pytest.raises(FlowValidationError):
            parse_flow({"name": "x", "start_url": "https://shop.test/"}, "x")

    def test_step_without_goal(self):
        with pytest.raises(FlowValidationError):
            parse_flow({"start_url": "https://shop.test/", "steps": [{"name": "Empty"}]}, "x")

    def test_unknown_mode(self):
        with pytest.raises(FlowValidationError) as exc_info:
            parse_flow({"start_url": "https://shop.test/", "goal": "g", "mode": "turbo"}, "x")
        assert exc_info.value.field == "mode"

    @pytest.mark.parametrize("value", [0, "lots"])
    def test_bad_action_budget(self, value):
        with pytest.raises(FlowValidationError):
            parse_flow({"start_url": "https://shop.test/", "goal": "g", "max_actions_per_step": value}, "x")

    def test_not_a_mapping(self):
        with pytest.raises(FlowLoadError):
            parse_flow(["not", "a", "mapping"], "x")


class TestLoadFlowFile:
    def test_yaml(self, temp_dir: Path, sample_flow_yaml: str):
        path = temp_dir / "checkout.yaml"
        path.write_text(sample_flow_yaml)

        flow = load_flow_file(path)
        assert flow.name == "Checkout"
        assert len(flow.steps) == 3
        assert flow.steps[2] == TestStep(name="Step 3", goal="pay with the test card")
        assert flow.tags == {"smoke", "cart"}

    def test_json(self, temp_dir: Path, sample_flow_json: Dict[str, Any]):
        path = temp_dir / "search.json"
        path.write_text(json.dumps(sample_flow_json))

        assert load_flow_file(path).name == "Search"

    def test_invalid_yaml_reports_file(self, temp_dir: Path):
        path = temp_dir / "broken.yaml"
        path.write_text("name: [unclosed\n")

        with pytest.raises(FlowLoadError) as exc_info:
            load_flow_file(path)
        assert exc_info.value.file_path == str(path)

    def test_non_mapping_reports_file(self, temp_dir: Path):
        path = temp_dir / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(FlowLoadError) as exc_info:
            load_flow_file(path)
        assert exc_info.value.file_path == str(path)


class TestDiscoverFlows:
    @pytest.fixture
    def flows_dir(self, temp_dir: Path) -> Path:
        (temp_dir / "a_login.yaml").write_text(
            "name: Login\nstart_url: https://shop.test/login\ngoal: log in\ntags: [smoke, auth]\n"
        )
        (temp_dir / "b_search.yml").write_text(
            "name: Search\nstart_url: https://shop.test/\ngoal: search for socks\ntags: [search]\n"
        )
        (temp_dir / "c_legacy.json").write_text(
            json.dumps({"name": "Legacy", "start_url": "https://shop.test/old", "goal": "g", "skip": True})
        )
        (temp_dir / "README.md").write_text("not a flow")
        return temp_dir

    def test_discovers_all_non_skipped(self, flows_dir: Path):
        flows = discover_flows(flows_dir)
        assert [f.name for f in flows] == ["Login", "Search"]

    def test_include_skipped(self, flows_dir: Path):
        flows = discover_flows(flows_dir, include_skipped=True)
        assert "Legacy" in [f.name for f in flows]

    def test_tag_filters(self, flows_dir: Path):
        assert [f.name for f in discover_flows(flows_dir, include_tags={"SMOKE"})] == ["Login"]
        assert [f.name for f in discover_flows(flows_dir, exclude_tags={"auth"})] == ["Search"]

    def test_name_filter(self, flows_dir: Path):
        assert [f.name for f in discover_flows(flows_dir, only_names=["Search"])] == ["Search"]

    def test_missing_named_flow(self, flows_dir: Path):
        with pytest.raises(FlowLoadError, match="Nope"):
            discover_flows(flows_dir, only_names=["Nope"])

    def test_missing_directory(self, temp_dir: Path):
        with pytest.raises(FlowLoadError):
            discover_flows(temp_dir / "missing")
