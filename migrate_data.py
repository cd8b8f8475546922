"""
One-time migration helper to upgrade an existing data/blogs.json written by
older versions of the blog (``_id`` keys, no slugs, missing views, tags or
timestamps).

Usage:
    python migrate_data.py [path/to/blogs.json]
"""

import argparse
from pathlib import Path
from typing import Dict, List

import config
from posts import normalize_post
from storage import JsonFileStore, RecordStore


def migrate(store: RecordStore, locator: str) -> List[Dict]:
    try:
        raw = store.read_strict(locator)
    except FileNotFoundError:
        raise SystemExit(f"Data file not found: {locator}")
    except ValueError as exc:
        raise SystemExit(f"Data file is not valid JSON: {exc}")

    if isinstance(raw, dict):
        raw = raw.get("posts", raw.get("blogs", []))
    if not isinstance(raw, list):
        raise SystemExit("Expected a list of posts")

    migrated: List[Dict] = []
    for item in raw:
        if isinstance(item, dict):
            migrated.append(normalize_post(item, migrated))

    if not store.write(locator, migrated):
        raise SystemExit("Could not write migrated posts")
    return migrated


def main(argv=None):
    parser = argparse.ArgumentParser(description="Upgrade a legacy posts file in place")
    parser.add_argument(
        "path",
        nargs="?",
        default="",
        help="Path to the posts JSON file (defaults to the configured data directory)",
    )
    args = parser.parse_args(argv)

    path = Path(args.path) if args.path else config.DATA_DIR / f"{config.POSTS_FILE}.json"
    posts = migrate(JsonFileStore(path.parent), path.name)
    published = sum(1 for p in posts if p["isPublished"])
    print(f"Migrated {path}: {len(posts)} posts ({published} published).")


if __name__ == "__main__":
    main()
