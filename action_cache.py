"""File-backed cache of successful action sequences keyed by step fingerprint."""
from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from agent_types import Action

CACHE_FILENAME = "action_cache.json"


def normalize_url(url: str) -> str:
    """Reduce a URL to scheme://host/path so session tokens don't split the cache.

    The host is lowercased and an empty path becomes ``/``.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc.lower()}{parts.path or '/'}"


def _hit_count(entry: Dict[str, Any]) -> int:
    try:
        return int(entry.get("hitCount", 0))
    except (TypeError, ValueError):
        return 0


def fingerprint(url: str, step_name: str, goal: str) -> str:
    data = f"{normalize_url(url)}|{step_name}|{goal}"
    return hashlib.md5(data.encode("utf-8")).hexdigest()


class ActionCache:
    """
    Persistent fingerprint -> action sequence store.

    The whole store is loaded into memory at construction and rewritten in
    full on every mutation. Concurrent writers in separate processes can
    lose each other's updates.
    """

    def __init__(
        self,
        cache_dir: str | Path = "./cache",
        logger: Optional[logging.Logger] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.cache_path = self.cache_dir / CACHE_FILENAME
        self.logger = logger or logging.getLogger("pathfinder.cache")
        self._entries: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.logger.warning(f"Could not create cache directory {self.cache_dir}: {exc}")

        if not self.cache_path.exists():
            return {}
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self.logger.warning(f"Failed to read cache file {self.cache_path}, starting fresh: {exc}")
            return {}
        if not isinstance(data, dict):
            self.logger.warning(f"Cache file {self.cache_path} is not a mapping, starting fresh")
            return {}

        entries = {}
        for key, entry in data.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("actions"), list):
                self.logger.warning(f"Dropping malformed cache entry {key}")
                continue
            entries[key] = entry
        return entries

    def _save(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(self._entries, indent=2), encoding="utf-8")
        except OSError as exc:
            self.logger.error(f"Failed to save action cache: {exc}")

    def lookup(self, url: str, step_name: str, goal: str) -> Optional[List[Action]]:
        """Return a copy of the cached sequence, or None on a miss."""
        key = fingerprint(url, step_name, goal)
        entry = self._entries.get(key)
        if entry is None:
            self.logger.info(f"Cache MISS for {step_name} ({key})")
            return None

        try:
            actions = [Action.from_dict(item) for item in entry.get("actions", [])]
        except (TypeError, ValueError) as exc:
            self.logger.warning(f"Ignoring unreadable cache entry {key}: {exc}")
            return None

        entry["hitCount"] = _hit_count(entry) + 1
        self.logger.info(f"Cache HIT for {step_name} ({key}), hits={entry['hitCount']}")
        self._save()
        return actions

    def store(self, url: str, step_name: str, goal: str, actions: Sequence[Action]) -> str:
        """Overwrite the entry for this step. Returns the fingerprint."""
        key = fingerprint(url, step_name, goal)
        self._entries[key] = {
            "actions": [action.to_dict() for action in actions],
            "timestamp": int(time.time() * 1000),
            "hitCount": 0,
        }
        self.logger.info(f"Cache SAVED {len(actions)} actions for {step_name} ({key})")
        self._save()
        return key

    def has(self, url: str, step_name: str, goal: str) -> bool:
        return fingerprint(url, step_name, goal) in self._entries

    def hit_count(self, url: str, step_name: str, goal: str) -> int:
        entry = self._entries.get(fingerprint(url, step_name, goal))
        return _hit_count(entry) if entry else 0

    def entries(self) -> Dict[str, Dict[str, Any]]:
        """Detached copy of the raw store."""
        return json.loads(json.dumps(self._entries))

    def remove_where(self, predicate: Callable[[List[Action]], bool]) -> int:
        """Drop every entry whose action list matches ``predicate``."""
        doomed = []
        for key, entry in self._entries.items():
            try:
                actions = [Action.from_dict(item) for item in entry.get("actions", [])]
            except (TypeError, ValueError):
                continue
            if predicate(actions):
                doomed.append(key)

        for key in doomed:
            del self._entries[key]
        if doomed:
            self.logger.info(f"Removed {len(doomed)} cache entries")
            self._save()
        return len(doomed)

    def clear(self) -> None:
        self._entries = {}
        self._save()

    def __len__(self) -> int:
        return len(self._entries)
