"""
Notification Dispatcher & Throttle

Sends coaching messages for notifiable evaluations (Excellent / Poor)
and rate-limits them per (user, task, requirement, channel kind).

The throttle fails open: a missing or unreadable last-sent timestamp
never blocks a user. After an attempted send the new timestamp is
recorded whether or not Discord accepted the message, so a failed send
still uses up the throttle window.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from tinydb import TinyDB, Query

from common.config import (
    NOTIFICATION_HISTORY_PATH,
    NOTIFY_THROTTLE_SECONDS,
    NOTIFY_USER_ID,
    CHANNEL_ANNOUNCEMENTS_ENABLED,
    ANNOUNCE_CHANNEL_ID,
    SEND_TIMEOUT,
)
from common.models import EvaluationResult, Level, Requirement, SendResult, Task, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DIRECT_MESSAGE = "direct_message"
CHANNEL_MESSAGE = "channel_message"

DEFAULT_REQUIREMENT_EMOJI = "📊"


def can_send(last_sent, now: datetime, window_seconds: float = NOTIFY_THROTTLE_SECONDS) -> bool:
    """True if nothing was sent yet, the stored time is unreadable, or the window has passed."""
    last = parse_timestamp(last_sent)
    if last is None:
        return True
    return (now - last) >= timedelta(seconds=window_seconds)


class NotificationHistory:
    """Last-sent timestamps, one TinyDB document per (user, task, requirement, kind)."""

    def __init__(self, path: Path = None, db: TinyDB = None):
        self.db = db or TinyDB(str(path or NOTIFICATION_HISTORY_PATH))
        self.table = self.db.table('notification_history')

    @staticmethod
    def _key(user_id, task_id, requirement_id, channel_kind):
        entry = Query()
        return ((entry.user_id == str(user_id)) & (entry.task_id == str(task_id)) &
                (entry.requirement_id == str(requirement_id)) & (entry.channel_kind == channel_kind))

    def last_sent(self, user_id, task_id, requirement_id, channel_kind=DIRECT_MESSAGE) -> Optional[str]:
        doc = self.table.get(self._key(user_id, task_id, requirement_id, channel_kind))
        return doc.get('last_sent') if doc else None

    def record(self, user_id, task_id, requirement_id, channel_kind, when: datetime):
        self.table.upsert({
            'user_id': str(user_id),
            'task_id': str(task_id),
            'requirement_id': str(requirement_id),
            'channel_kind': channel_kind,
            'last_sent': when.isoformat(),
        }, self._key(user_id, task_id, requirement_id, channel_kind))

    def close(self):
        self.db.close()


def format_direct_message(result: EvaluationResult, task: Task, requirement: Requirement) -> str:
    emoji = requirement.emoji or DEFAULT_REQUIREMENT_EMOJI
    return f"{emoji} {task.title} - {requirement.title}\n\n{result.message}"


def format_excellence_message(result: EvaluationResult) -> str:
    return f"🌟 Outstanding Achievement! 🌟\n\n{result.message}\n\nKeep up the amazing work! 💪"


class NotificationDispatcher:
    """
    Delivers evaluation messages through a Discord sender.

    `sender` needs send_direct_message(user_id, text) and
    send_channel_message(channel_id, text), both returning SendResult
    (common.discord_api.DiscordAPI). They are blocking calls and run in a
    worker thread bounded by `send_timeout`.
    """

    def __init__(self, sender, history: NotificationHistory,
                 default_user_id: str = NOTIFY_USER_ID,
                 window_seconds: float = NOTIFY_THROTTLE_SECONDS,
                 announcements_enabled: bool = CHANNEL_ANNOUNCEMENTS_ENABLED,
                 announce_channel_id: str = ANNOUNCE_CHANNEL_ID,
                 send_timeout: float = SEND_TIMEOUT,
                 clock: Callable[[], datetime] = utcnow):
        self.sender = sender
        self.history = history
        self.default_user_id = default_user_id
        self.window_seconds = window_seconds
        self.announcements_enabled = announcements_enabled
        self.announce_channel_id = announce_channel_id
        self.send_timeout = send_timeout
        self.clock = clock

    def recipient_for(self, task: Task) -> Optional[str]:
        return task.assignee_id or self.default_user_id or None

    async def _send(self, send: Callable[[str, str], SendResult], target: str, text: str) -> SendResult:
        try:
            return await asyncio.wait_for(asyncio.to_thread(send, target, text), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Send to {target} timed out after {self.send_timeout}s")
            return SendResult(success=False, error="send timeout")
        except Exception as e:
            logger.error(f"Send to {target} failed: {e}", exc_info=True)
            return SendResult(success=False, error=str(e))

    async def notify(self, result: EvaluationResult, task: Task, requirement: Requirement) -> List[str]:
        """
        Send the notifications this result calls for.

        Returns the channel kinds a send was attempted on (empty when the
        result is not notifiable, throttled, or has no recipient).
        """
        if not result.should_notify:
            return []

        user_id = self.recipient_for(task)
        if not user_id:
            logger.warning(f"No recipient for task {task.id}, skipping notification")
            return []

        attempted = []
        if result.level == Level.EXCELLENT and self.announcements_enabled and self.announce_channel_id:
            if await self._notify_channel(result, task, requirement, user_id):
                attempted.append(CHANNEL_MESSAGE)

        if await self._notify_direct(result, task, requirement, user_id):
            attempted.append(DIRECT_MESSAGE)
        return attempted

    async def _notify_direct(self, result, task, requirement, user_id) -> bool:
        now = self.clock()
        if not can_send(self.history.last_sent(user_id, task.id, requirement.id, DIRECT_MESSAGE),
                        now, self.window_seconds):
            logger.debug(f"Throttled DM to {user_id} for {task.id}/{requirement.id}")
            return False

        sent = await self._send(self.sender.send_direct_message, user_id,
                                format_direct_message(result, task, requirement))
        if sent.success:
            logger.info(f"Sent {result.level.value} DM to {user_id} for {task.title} - {requirement.title}")
        else:
            logger.warning(f"DM to {user_id} failed: {sent.error}")

        # Recorded even when the send failed
        self.history.record(user_id, task.id, requirement.id, DIRECT_MESSAGE, now)
        return True

    async def _notify_channel(self, result, task, requirement, user_id) -> bool:
        now = self.clock()
        if not can_send(self.history.last_sent(user_id, task.id, requirement.id, CHANNEL_MESSAGE),
                        now, self.window_seconds):
            return False

        sent = await self._send(self.sender.send_channel_message, self.announce_channel_id,
                                format_excellence_message(result))
        if not sent.success:
            logger.warning(f"Announcement in {self.announce_channel_id} failed: {sent.error}")

        self.history.record(user_id, task.id, requirement.id, CHANNEL_MESSAGE, now)
        return True
