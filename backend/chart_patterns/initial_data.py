"""Initial data: create the pattern table and optionally seed patterns from a JSON file."""

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from chart_patterns.core.config import settings
from chart_patterns.core.db import engine, init_db
from chart_patterns.core.pattern_store import PatternStore, PatternValidationError

logger = logging.getLogger(__name__)


def load_seed_file(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSON list of {name, script, description?, examples?} objects."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Seed file {path} must contain a JSON list")
    return data


def seed_patterns(store: PatternStore, records: list[dict[str, Any]]) -> list[str]:
    """Create patterns whose name is not stored yet. Invalid records are logged and skipped."""
    existing = {p.name for p in store.list()}
    created: list[str] = []
    for record in records:
        if not isinstance(record, dict):
            logger.warning("Skipped seed entry that is not an object: %r", record)
            continue
        name = record.get("name")
        if name in existing:
            logger.info("Pattern already exists, skipping: %s", name)
            continue
        try:
            pattern_id = store.create(
                name=name,
                script=record.get("script"),
                description=record.get("description", ""),
                examples=record.get("examples", ""),
            )
        except PatternValidationError as e:
            logger.warning("Skipped invalid seed pattern %r: %s", name, e)
            continue
        existing.add(name)
        created.append(pattern_id)
    return created


def init() -> None:
    init_db(engine)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the pattern database and seed patterns.")
    parser.add_argument("--seed", help="JSON file with a list of patterns to create")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info("Creating initial data")
    init()
    if args.seed:
        created = seed_patterns(PatternStore(engine), load_seed_file(args.seed))
        logger.info("Seeded %d patterns from %s", len(created), args.seed)
    logger.info("Initial data created")


if __name__ == "__main__":
    main()
