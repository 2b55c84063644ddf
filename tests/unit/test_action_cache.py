"""Unit tests for the file-backed action cache."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from action_cache import CACHE_FILENAME, ActionCache, fingerprint, normalize_url
from agent_types import Action, ActionKind

LOGIN_ACTIONS = [
    Action(kind=ActionKind.TYPE, selector="#user", text="X"),
    Action(kind=ActionKind.TYPE, selector="#pass", text="secret"),
    Action(kind=ActionKind.CLICK, selector="#submit"),
    Action(kind=ActionKind.DONE, reason="Logged in"),
]


class TestFingerprint:
    def test_query_and_fragment_ignored(self):
        assert normalize_url("https://shop.test/login?token=abc#top") == "https://shop.test/login"

    def test_host_is_lowercased(self):
        assert normalize_url("https://Shop.TEST/Login?t=1") == "https://shop.test/Login"

    def test_empty_path_is_root(self):
        assert normalize_url("https://shop.test") == "https://shop.test/"
        assert fingerprint("https://shop.test", "Home", "look") == fingerprint("https://shop.test/", "Home", "look")

    def test_relative_url_kept(self):
        assert normalize_url("about:blank") == "about:blank"

    def test_same_step_same_key(self):
        a = fingerprint("https://shop.test/login?s=1", "Login", "log in")
        b = fingerprint("https://shop.test/login?s=2", "Login", "log in")
        assert a == b

    def test_path_step_and_goal_split_keys(self):
        base = fingerprint("https://shop.test/login", "Login", "log in")
        assert base != fingerprint("https://shop.test/signup", "Login", "log in")
        assert base != fingerprint("https://shop.test/login", "Sign in", "log in")
        assert base != fingerprint("https://shop.test/login", "Login", "log in as admin")


class TestActionCache:
    def test_store_and_lookup(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)

        assert cache.lookup("https://shop.test/login", "Login", "log in") == LOGIN_ACTIONS

    def test_lookup_matches_other_query_string(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login?token=A", "Login", "log in", LOGIN_ACTIONS)

        assert cache.lookup("https://shop.test/login?token=B", "Login", "log in") == LOGIN_ACTIONS

    def test_miss_returns_none(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        assert cache.lookup("https://shop.test/", "Login", "log in") is None

    def test_hit_count_increments(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)
        cache.lookup("https://shop.test/login", "Login", "log in")
        cache.lookup("https://shop.test/login", "Login", "log in")

        assert cache.hit_count("https://shop.test/login", "Login", "log in") == 2

    def test_store_overwrites_and_resets_hits(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)
        cache.lookup("https://shop.test/login", "Login", "log in")
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS[2:])

        assert len(cache) == 1
        assert cache.hit_count("https://shop.test/login", "Login", "log in") == 0
        assert cache.lookup("https://shop.test/login", "Login", "log in") == LOGIN_ACTIONS[2:]

    def test_persists_across_instances(self, temp_dir: Path):
        ActionCache(temp_dir).store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)

        reloaded = ActionCache(temp_dir)
        assert reloaded.has("https://shop.test/login", "Login", "log in")
        assert reloaded.lookup("https://shop.test/login", "Login", "log in") == LOGIN_ACTIONS

    def test_file_layout(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        key = cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS[2:3])

        data = json.loads((temp_dir / CACHE_FILENAME).read_text())
        assert data[key]["actions"] == [{"type": "click", "selector": "#submit"}]
        assert data[key]["hitCount"] == 0
        assert isinstance(data[key]["timestamp"], int)

    def test_corrupt_file_starts_empty(self, temp_dir: Path):
        (temp_dir / CACHE_FILENAME).write_text("{not json")
        cache = ActionCache(temp_dir)

        assert len(cache) == 0
        cache.store("https://shop.test/", "Home", "look around", LOGIN_ACTIONS)
        assert len(ActionCache(temp_dir)) == 1

    def test_non_mapping_file_starts_empty(self, temp_dir: Path):
        (temp_dir / CACHE_FILENAME).write_text("[1, 2, 3]")
        assert len(ActionCache(temp_dir)) == 0

    def test_unreadable_entry_is_a_miss(self, temp_dir: Path):
        key = fingerprint("https://shop.test/", "Home", "look around")
        (temp_dir / CACHE_FILENAME).write_text(json.dumps({key: {"actions": [{"type": "teleport"}]}}))

        assert ActionCache(temp_dir).lookup("https://shop.test/", "Home", "look around") is None

    def test_malformed_entries_dropped_on_load(self, temp_dir: Path):
        key = fingerprint("https://shop.test/", "Home", "look around")
        good = {"actions": [{"type": "click", "selector": "#go"}], "timestamp": 1, "hitCount": 0}
        (temp_dir / CACHE_FILENAME).write_text(
            json.dumps({"bogus": 5, "listy": ["not", "a", "mapping"], "no-actions": {"hitCount": 1}, key: good})
        )

        cache = ActionCache(temp_dir)

        assert len(cache) == 1
        assert cache.lookup("https://shop.test/", "Home", "look around") == [
            Action(kind=ActionKind.CLICK, selector="#go")
        ]
        assert cache.remove_where(lambda actions: False) == 0

    def test_non_numeric_hit_count_is_reset(self, temp_dir: Path):
        key = fingerprint("https://shop.test/", "Home", "look around")
        entry = {"actions": [{"type": "click", "selector": "#go"}], "hitCount": "many"}
        (temp_dir / CACHE_FILENAME).write_text(json.dumps({key: entry}))

        cache = ActionCache(temp_dir)

        assert cache.hit_count("https://shop.test/", "Home", "look around") == 0
        assert cache.lookup("https://shop.test/", "Home", "look around") is not None
        assert cache.hit_count("https://shop.test/", "Home", "look around") == 1

    def test_failed_write_is_logged_and_swallowed(self, temp_dir: Path, caplog):
        (temp_dir / CACHE_FILENAME).mkdir()
        cache = ActionCache(temp_dir)

        with caplog.at_level(logging.ERROR, logger="pathfinder.cache"):
            cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)

        assert "Failed to save action cache" in caplog.text
        assert cache.lookup("https://shop.test/login", "Login", "log in") == LOGIN_ACTIONS
        assert cache.hit_count("https://shop.test/login", "Login", "log in") == 1

    def test_lookup_returns_copy(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)

        first = cache.lookup("https://shop.test/login", "Login", "log in")
        first.clear()
        assert cache.lookup("https://shop.test/login", "Login", "log in") == LOGIN_ACTIONS

    def test_entries_is_detached(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        key = cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)

        snapshot = cache.entries()
        snapshot[key]["actions"] = []
        assert len(cache.lookup("https://shop.test/login", "Login", "log in")) == 4

    def test_clear(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)
        cache.clear()

        assert len(cache) == 0
        assert len(ActionCache(temp_dir)) == 0

    def test_remove_where(self, temp_dir: Path):
        cache = ActionCache(temp_dir)
        cache.store("https://shop.test/login", "Login", "log in", LOGIN_ACTIONS)
        cache.store(
            "https://shop.test/",
            "Docs",
            "open docs",
            [Action(kind=ActionKind.NAVIGATE, text="https://docs.test/")],
        )

        removed = cache.remove_where(lambda actions: any(a.kind == ActionKind.NAVIGATE for a in actions))

        assert removed == 1
        assert cache.has("https://shop.test/login", "Login", "log in")
        assert not cache.has("https://shop.test/", "Docs", "open docs")

    def test_creates_missing_directory(self, temp_dir: Path):
        nested = temp_dir / "a" / "b"
        cache = ActionCache(nested)
        cache.store("https://shop.test/", "Home", "look", LOGIN_ACTIONS)

        assert (nested / CACHE_FILENAME).exists()
