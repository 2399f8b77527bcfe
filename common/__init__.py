"""
common - Shared library for the task tracker.

Quick imports:
    from common.config import DATA_DIR, MESSAGES_DB_PATH
    from common.db import MessageStore
    from common.models import Message, UserMetrics, Level
    from common.discord_api import DiscordAPI
"""
