"""Task tracker: Discord activity -> metrics -> Claude evaluation -> coaching DMs."""

import os
from pathlib import Path

from common.config import (
    MESSAGES_DB_PATH,
    TRACKER_DB_PATH,
    NOTIFICATION_HISTORY_PATH,
    TASKS_PATH,
    REQUIREMENTS_PATH,
)
from common.db import MessageStore
from common.discord_api import DiscordAPI

from .collector import DiscordMessageSource
from .evaluator import ClaudeEvaluator, RequirementEvaluator
from .log_manager import LogManager
from .metrics import aggregate, aggregate_and_store
from .mentions import parse_mentions
from .notifications import NotificationDispatcher, NotificationHistory, can_send
from .scheduler import TaskTracker
from .task_source import JsonTaskSource


def build_tracker(token: str = None, evaluator: RequirementEvaluator = None,
                  messages_db: Path = MESSAGES_DB_PATH, tracker_db: Path = TRACKER_DB_PATH,
                  history_path: Path = NOTIFICATION_HISTORY_PATH,
                  tasks_path: Path = TASKS_PATH, requirements_path: Path = REQUIREMENTS_PATH) -> TaskTracker:
    """
    Wire every tracker service once and hand them to a TaskTracker.

    Creates the database schemas if needed. The bot token defaults to
    TRACKER_BOT_TOKEN from the environment.
    """
    api = DiscordAPI(token or os.environ["TRACKER_BOT_TOKEN"])

    store = MessageStore(messages_db)
    store.init_database()
    log_manager = LogManager(tracker_db)
    log_manager.init_database()

    return TaskTracker(
        task_source=JsonTaskSource(tasks_path, requirements_path),
        message_source=DiscordMessageSource(api, store),
        store=store,
        evaluator=evaluator or ClaudeEvaluator(),
        log_manager=log_manager,
        dispatcher=NotificationDispatcher(api, NotificationHistory(history_path)),
    )


__all__ = [
    'build_tracker',
    'TaskTracker',
    'LogManager',
    'NotificationDispatcher',
    'NotificationHistory',
    'ClaudeEvaluator',
    'RequirementEvaluator',
    'DiscordMessageSource',
    'JsonTaskSource',
    'aggregate',
    'aggregate_and_store',
    'parse_mentions',
    'can_send',
]
