"""Purge action cache entries that navigate to a host, or wipe the cache."""
import argparse
import logging
import sys
from typing import List, Optional

from action_cache import ActionCache
from agent_types import Action, ActionKind


def navigates_to(keyword: str):
    """Predicate: any ``navigate`` action whose URL contains ``keyword``."""
    needle = keyword.lower()

    def _match(actions: List[Action]) -> bool:
        return any(
            action.kind == ActionKind.NAVIGATE and action.text and needle in action.text.lower()
            for action in actions
        )

    return _match


def flush(
    cache: ActionCache,
    keyword: Optional[str] = None,
    wipe_all: bool = False,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Returns the number of entries removed."""
    logger = logger or logging.getLogger("pathfinder.flush")
    total = len(cache)

    if wipe_all:
        cache.clear()
        logger.info(f"Cleared all {total} cache entries")
        return total

    removed = cache.remove_where(navigates_to(keyword))
    if removed:
        logger.info(f"Removed {removed} entries navigating to '{keyword}'")
    else:
        logger.info(f"No entries navigate to '{keyword}' ({total} entries kept). Use --all to clear everything.")
    return removed


def main() -> int:
    parser = argparse.ArgumentParser(description="Flush entries from the Pathfinder action cache")
    parser.add_argument("keyword", nargs="?", help="Remove entries whose navigate actions contain this text")
    parser.add_argument("--all", action="store_true", dest="wipe_all", help="Remove every entry")
    parser.add_argument("--cache-dir", default="./cache", help="Directory holding action_cache.json")
    args = parser.parse_args()

    if not args.keyword and not args.wipe_all:
        parser.error("give a host keyword or --all")

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    logger = logging.getLogger("pathfinder.flush")

    cache = ActionCache(args.cache_dir, logger=logger)
    if not cache.cache_path.exists():
        logger.error(f"Cache file not found: {cache.cache_path}")
        return 1

    flush(cache, args.keyword, args.wipe_all, logger)
    return 0


if __name__ == "__main__":
    sys.exit(main())
