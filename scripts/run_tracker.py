"""
Headless task tracker.

Runs the tracker without the Discord control bot (the bot token is
still needed for the REST calls) and inspects its logs.

Usage:
    python -m scripts.run_tracker run              # track every minute until Ctrl+C
    python -m scripts.run_tracker once             # a single cycle, then print status
    python -m scripts.run_tracker tasks            # trackable tasks and their requirements
    python -m scripts.run_tracker evaluations --task TASK_ID --limit 20
    python -m scripts.run_tracker errors --limit 20
"""

import sys
import json
import asyncio
import argparse
from pathlib import Path

# Ensure common/ is importable when running as a standalone script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.config import MONITORED_TOOL
from common.logger import get_logger
from tracker import build_tracker, LogManager, JsonTaskSource

logger = get_logger()


async def run_forever():
    tracker = build_tracker()
    await tracker.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        tracker.stop()
        await tracker.drain()


async def run_once():
    tracker = build_tracker()
    await tracker.track()
    print(json.dumps(tracker.get_status().to_dict(), indent=2))


def show_tasks():
    source = JsonTaskSource()
    requirements = source.requirements()
    for task in source.load_tasks():
        marker = "*" if task.is_trackable(MONITORED_TOOL) else " "
        print(f"{marker} {task.id}  {task.title}  tools={','.join(task.tools)}")
        for req_id in task.requirements_active:
            req = requirements.get(req_id)
            print(f"      - {req_id}: {req.title if req else '(unknown requirement)'}")


def show_evaluations(task_id: str = None, limit: int = 50):
    log_manager = LogManager()
    log_manager.init_database()
    for entry in log_manager.recent_evaluations(task_id=task_id, limit=limit):
        sent = " [sent]" if entry.message_sent else ""
        print(f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.level.value:<9} "
              f"{entry.task_id}/{entry.requirement_id}{sent}  {entry.message}")


def show_errors(limit: int = 20):
    log_manager = LogManager()
    log_manager.init_database()
    for entry in log_manager.recent_errors(limit=limit):
        print(f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.source}: {entry.message}")


def main():
    parser = argparse.ArgumentParser(description='Discord task tracker')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('run', help='Start tracking and keep running')
    sub.add_parser('once', help='Run a single tracking cycle')
    sub.add_parser('tasks', help='List tasks (* = trackable)')

    evaluations = sub.add_parser('evaluations', help='Show recent evaluations')
    evaluations.add_argument('--task', dest='task_id', help='Only this task')
    evaluations.add_argument('--limit', type=int, default=50)

    errors = sub.add_parser('errors', help='Show recent tracker errors')
    errors.add_argument('--limit', type=int, default=20)

    args = parser.parse_args()

    if args.command == 'run':
        try:
            asyncio.run(run_forever())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt, exiting.")
    elif args.command == 'once':
        asyncio.run(run_once())
    elif args.command == 'tasks':
        show_tasks()
    elif args.command == 'evaluations':
        show_evaluations(args.task_id, args.limit)
    elif args.command == 'errors':
        show_errors(args.limit)


if __name__ == "__main__":
    main()
