"""
Initialize all tracker databases.

Run this once after cloning or after clearing the data directory.
Safe to run repeatedly - all CREATE statements use IF NOT EXISTS.

Usage:
    python -m scripts.init_databases
    # or from project root:
    python scripts/init_databases.py
"""

import sys
from pathlib import Path

# Ensure common/ is importable when running as a standalone script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.config import DATA_DIR, MESSAGES_DB_PATH, TRACKER_DB_PATH, TASKS_PATH
from common.db import init_database
from common.tracker_db import init_tracker_db


def main():
    print(f"Data directory: {DATA_DIR}")
    print(f"Message store:  {MESSAGES_DB_PATH}")
    print(f"Tracker DB:     {TRACKER_DB_PATH}")
    print(f"Tasks file:     {TASKS_PATH}{'' if TASKS_PATH.exists() else ' (missing)'}")
    print()

    init_database()
    init_tracker_db()

    print()
    print("All databases initialized. Ready to start tracking.")


if __name__ == "__main__":
    main()
