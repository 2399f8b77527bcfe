from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from common.db import MessageStore
from common.models import EvaluationResult, Level, Message, Reaction, SendResult, StoreResult
from tracker.log_manager import LogManager
from tracker.notifications import NotificationHistory

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

_ids = count(1)


def make_message(author_id, seconds=0, content="", **kwargs):
    """Message authored `seconds` after T0."""
    kwargs.setdefault('author_username', f"user{author_id}")
    kwargs.setdefault('channel_id', "100")
    kwargs.setdefault('channel_name', "general")
    return Message(
        id=kwargs.pop('id', str(next(_ids))),
        author_id=str(author_id),
        timestamp=T0 + timedelta(seconds=seconds),
        content=content,
        **kwargs,
    )


def reaction(count_, name="👍"):
    return Reaction(emoji_name=name, count=count_)


@pytest.fixture
def message_store(tmp_path):
    store = MessageStore(tmp_path / "messages.db")
    store.init_database()
    return store


@pytest.fixture
def log_manager(tmp_path):
    manager = LogManager(tmp_path / "tracker.db")
    manager.init_database()
    return manager


@pytest.fixture
def history(tmp_path):
    hist = NotificationHistory(tmp_path / "history.json")
    yield hist
    hist.close()


class FakeSender:
    """Stands in for DiscordAPI's send helpers."""

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.direct = []
        self.channel = []

    def _result(self, text):
        if self.succeed:
            return SendResult(success=True, message_id="999", content=text)
        return SendResult(success=False, error="Cannot send messages to this user")

    def send_direct_message(self, user_id, text):
        self.direct.append((user_id, text))
        return self._result(text)

    def send_channel_message(self, channel_id, text):
        self.channel.append((channel_id, text))
        return self._result(text)


class FakeEvaluator:
    """Returns a fixed level per requirement id (default Ok) and records calls."""

    def __init__(self, levels=None, default=Level.OK):
        self.levels = levels or {}
        self.default = default
        self.calls = []

    async def evaluate(self, metrics, requirement, task_id):
        self.calls.append((task_id, requirement.id))
        level = self.levels.get(requirement.id, self.default)
        return EvaluationResult(
            task_id=task_id,
            requirement_id=requirement.id,
            level=level,
            message=f"{level.value} work on {requirement.title}",
            proof="fake",
        )


class FakeMessageSource:
    def __init__(self, messages=None, error=None):
        self.messages = messages or []
        self.error = error
        self.calls = 0

    async def fetch_messages(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.messages)


class FakeDispatcher:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def notify(self, result, task, requirement):
        self.calls.append((result, task, requirement))
        if self.error:
            raise self.error
        return ["direct_message"]


class FakeStore:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.snapshots = []

    def write_filtered(self, metrics):
        self.snapshots.append(metrics)
        if self.succeed:
            return StoreResult(success=True, created_ids=["1"])
        return StoreResult(success=False, error="disk full")


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def fake_evaluator():
    return FakeEvaluator()


@pytest.fixture
def fake_store():
    return FakeStore()
