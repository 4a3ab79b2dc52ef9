"""Run achievement processing outside the API process (cron, one-off jobs).

Usage:
    python -m backend.scripts.achievement_processor all [--concurrency N]
    python -m backend.scripts.achievement_processor class CLASS_ID
    python -m backend.scripts.achievement_processor daily
    python -m backend.scripts.achievement_processor weekly
    python -m backend.scripts.achievement_processor health
    python -m backend.scripts.achievement_processor seed

Exit status is 0 on success, 1 when any student failed or the check is
unhealthy.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime

from dotenv import load_dotenv

from backend.api.config import Settings
from backend.api.db.database import get_session_factory
from backend.api.services.achievement_catalog import seed_achievements
from backend.api.services.achievement_scheduler import weekly_report_for
from backend.api.services.wiring import build_batch_runner

logger = logging.getLogger(__name__)

COMMANDS = ("all", "class", "daily", "weekly", "health", "seed")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VCoin achievement processor")
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("class_id", nargs="?", type=int, help="Class to process (class only)")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Students evaluated in parallel (defaults to BATCH_CONCURRENCY)",
    )
    args = parser.parse_args(argv)
    if args.command == "class" and args.class_id is None:
        parser.error("the class command requires CLASS_ID")
    return args


async def run(command: str, settings: Settings, class_id: int | None = None) -> int:
    """Execute one command and return the process exit status."""
    session_factory = get_session_factory()
    runner = build_batch_runner(session_factory, settings)

    if command == "all":
        result = await runner.run_for_all_students()
        print(json.dumps(result.summary(), indent=2))
        return 1 if result.error_count else 0

    if command == "class":
        if class_id is None:
            raise ValueError("the class command requires a class id")
        result = await runner.run_for_class(class_id)
        print(json.dumps(result.summary(), indent=2))
        return 1 if result.error_count else 0

    if command == "daily":
        result = await runner.run_time_based()
        print(json.dumps(result.summary(), indent=2))
        return 1 if result.error_count else 0

    if command == "weekly":
        summary = await weekly_report_for(session_factory)(datetime.now(UTC))
        print(json.dumps(summary, indent=2))
        return 0

    if command == "health":
        healthy, student_count = await runner.health_check()
        print(json.dumps({"healthy": healthy, "student_count": student_count}))
        return 0 if healthy else 1

    async with session_factory() as session:
        added = await seed_achievements(session)
        await session.commit()
    print(json.dumps({"seeded": added}))
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    args = _parse_args(argv)
    load_dotenv()
    settings = Settings()
    if args.concurrency is not None:
        settings = settings.model_copy(update={"batch_concurrency": max(1, args.concurrency)})

    logger.info("Achievement processor: %s", args.command)
    try:
        return asyncio.run(run(args.command, settings, args.class_id))
    except Exception:
        logger.exception("Achievement processor %s failed", args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
