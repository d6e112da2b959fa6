#!/usr/bin/env python
"""
Run Cycle
Run one reminder cycle from the command line and print the result
"""

import sys
import os
import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import init_db
from actions.reminder_scheduler import ReminderScheduler


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def parse_now(value: str) -> datetime:
    """ISO timestamp; naive values are taken as UTC"""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def run(now=None) -> dict:
    scheduler = ReminderScheduler()
    result = await scheduler.run_cycle_once(now)
    return result.to_dict()


def main():
    parser = argparse.ArgumentParser(
        description="Run a single reminder engine cycle"
    )
    parser.add_argument(
        "--now",
        type=parse_now,
        default=None,
        help="Evaluate as of this instant (ISO 8601, UTC if no offset)"
    )

    args = parser.parse_args()

    init_db()
    result = asyncio.run(run(args.now))
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
