#!/usr/bin/env python3
"""
Letter sweep runner - delivers due on_date / on_milestone letters and retries
undelivered after_death letters for activated releases, on a heartbeat loop.

Usage:
    LETTER_SWEEP_ENABLED=true python scripts/run_sweep.py
    python scripts/run_sweep.py --once
"""

import argparse
import sys
from pathlib import Path

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from release_gate.core.config import is_sweep_enabled, validate_sweep_config
from release_gate.core.db import init_db
from release_gate.core.heartbeat import start, stop
from release_gate.core.sweep import register_sweep_tasks, sweep_due_letters
from util.logging import logger


def main():
    parser = argparse.ArgumentParser(description="Run the scheduled letter sweep")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    init_db()

    if args.once:
        outcomes = sweep_due_letters()
        for letter_id, outcome in outcomes.items():
            print(f"{letter_id}: {outcome}")
        return

    try:
        if not is_sweep_enabled():
            print("Letter sweep requires LETTER_SWEEP_ENABLED=true (or use --once)")
            sys.exit(1)

        issues = validate_sweep_config()
        if issues:
            print(f"Invalid sweep configuration: {issues}")
            sys.exit(1)

        register_sweep_tasks()
        start()

    except KeyboardInterrupt:
        stop()
    except Exception as e:
        logger.error(f"Letter sweep runner crashed: {e}")
        stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
