from datetime import timedelta

import pytest

from common.models import EvaluationResult, Level, Requirement, Task
from conftest import FakeSender, T0
from tracker.notifications import (
    CHANNEL_MESSAGE,
    DIRECT_MESSAGE,
    NotificationDispatcher,
    can_send,
    format_direct_message,
    format_excellence_message,
)

TASK = Task(id="t1", title="Community", tools=["discord.com"], requirements_active=["r1"], assignee_id="42")
REQUIREMENT = Requirement(id="r1", title="Responsiveness", emoji="⚡")


def result(level=Level.POOR, message="Reply faster please"):
    return EvaluationResult(task_id="t1", requirement_id="r1", level=level, message=message, proof="p")


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_dispatcher(sender, history, clock=None, **kwargs):
    kwargs.setdefault('default_user_id', "")
    kwargs.setdefault('announcements_enabled', False)
    kwargs.setdefault('announce_channel_id', "")
    return NotificationDispatcher(sender, history, window_seconds=60, send_timeout=5,
                                  clock=clock or Clock(), **kwargs)


# ------------------------------------------------------------------------
# can_send
# ------------------------------------------------------------------------

def test_can_send_without_history():
    assert can_send(None, T0, 60)


def test_can_send_blocks_inside_window():
    assert not can_send((T0 - timedelta(seconds=30)).isoformat(), T0, 60)


def test_can_send_after_window():
    assert can_send((T0 - timedelta(seconds=61)).isoformat(), T0, 60)
    assert can_send((T0 - timedelta(seconds=60)).isoformat(), T0, 60)


def test_can_send_fails_open_on_garbage():
    assert can_send("not a timestamp", T0, 60)
    assert can_send("", T0, 60)


def test_can_send_accepts_datetime():
    assert not can_send(T0 - timedelta(seconds=1), T0, 60)


# ------------------------------------------------------------------------
# History
# ------------------------------------------------------------------------

def test_history_keys_are_isolated(history):
    history.record("42", "t1", "r1", DIRECT_MESSAGE, T0)

    assert history.last_sent("42", "t1", "r1", DIRECT_MESSAGE) == T0.isoformat()
    assert history.last_sent("42", "t1", "r1", CHANNEL_MESSAGE) is None
    assert history.last_sent("42", "t1", "r2", DIRECT_MESSAGE) is None
    assert history.last_sent("42", "t2", "r1", DIRECT_MESSAGE) is None
    assert history.last_sent("43", "t1", "r1", DIRECT_MESSAGE) is None


def test_history_record_overwrites(history):
    history.record("42", "t1", "r1", DIRECT_MESSAGE, T0)
    history.record("42", "t1", "r1", DIRECT_MESSAGE, T0 + timedelta(minutes=5))

    assert history.last_sent("42", "t1", "r1") == (T0 + timedelta(minutes=5)).isoformat()
    assert len(history.table) == 1


# ------------------------------------------------------------------------
# Formatting
# ------------------------------------------------------------------------

def test_format_direct_message():
    text = format_direct_message(result(), TASK, REQUIREMENT)
    assert text == "⚡ Community - Responsiveness\n\nReply faster please"


def test_format_direct_message_default_emoji():
    text = format_direct_message(result(), TASK, Requirement(id="r1", title="Responsiveness"))
    assert text.startswith("📊 Community - Responsiveness")


def test_format_excellence_message():
    text = format_excellence_message(result(Level.EXCELLENT, "Great replies"))
    assert text == "🌟 Outstanding Achievement! 🌟\n\nGreat replies\n\nKeep up the amazing work! 💪"


# ------------------------------------------------------------------------
# Dispatcher
# ------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_poor_result_sends_dm_to_assignee(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history)

    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == [DIRECT_MESSAGE]
    assert sender.direct == [("42", "⚡ Community - Responsiveness\n\nReply faster please")]
    assert history.last_sent("42", "t1", "r1") == T0.isoformat()


@pytest.mark.asyncio
async def test_ok_result_sends_nothing(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history)

    assert await dispatcher.notify(result(Level.OK), TASK, REQUIREMENT) == []
    assert await dispatcher.notify(result(Level.ERROR), TASK, REQUIREMENT) == []
    assert sender.direct == []


@pytest.mark.asyncio
async def test_second_notification_inside_window_is_throttled(history):
    sender = FakeSender()
    clock = Clock()
    dispatcher = make_dispatcher(sender, history, clock)

    await dispatcher.notify(result(), TASK, REQUIREMENT)
    clock.advance(30)
    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == []
    clock.advance(31)
    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == [DIRECT_MESSAGE]

    assert len(sender.direct) == 2


@pytest.mark.asyncio
async def test_other_requirement_is_not_throttled(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history)
    other = Requirement(id="r2", title="Tone")

    await dispatcher.notify(result(), TASK, REQUIREMENT)
    assert await dispatcher.notify(result(), TASK, other) == [DIRECT_MESSAGE]


@pytest.mark.asyncio
async def test_failed_send_still_uses_the_window(history):
    sender = FakeSender(succeed=False)
    clock = Clock()
    dispatcher = make_dispatcher(sender, history, clock)

    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == [DIRECT_MESSAGE]
    assert history.last_sent("42", "t1", "r1") == T0.isoformat()

    clock.advance(10)
    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == []
    assert len(sender.direct) == 1


@pytest.mark.asyncio
async def test_sender_exception_becomes_failed_send(history):
    class ExplodingSender(FakeSender):
        def send_direct_message(self, user_id, text):
            raise RuntimeError("socket closed")

    dispatcher = make_dispatcher(ExplodingSender(), history)

    assert await dispatcher.notify(result(), TASK, REQUIREMENT) == [DIRECT_MESSAGE]
    assert history.last_sent("42", "t1", "r1") == T0.isoformat()


@pytest.mark.asyncio
async def test_falls_back_to_default_recipient(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history, default_user_id="7")
    unassigned = Task(id="t1", title="Community", tools=["discord.com"], requirements_active=["r1"])

    await dispatcher.notify(result(), unassigned, REQUIREMENT)
    assert sender.direct[0][0] == "7"


@pytest.mark.asyncio
async def test_no_recipient_skips(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history)
    unassigned = Task(id="t1", title="Community")

    assert await dispatcher.notify(result(), unassigned, REQUIREMENT) == []
    assert sender.direct == []


@pytest.mark.asyncio
async def test_excellent_is_announced_when_enabled(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history, announcements_enabled=True, announce_channel_id="555")

    kinds = await dispatcher.notify(result(Level.EXCELLENT, "Great replies"), TASK, REQUIREMENT)

    assert kinds == [CHANNEL_MESSAGE, DIRECT_MESSAGE]
    assert sender.channel == [("555", format_excellence_message(result(Level.EXCELLENT, "Great replies")))]
    assert history.last_sent("42", "t1", "r1", CHANNEL_MESSAGE) == T0.isoformat()


@pytest.mark.asyncio
async def test_poor_is_never_announced(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history, announcements_enabled=True, announce_channel_id="555")

    assert await dispatcher.notify(result(Level.POOR), TASK, REQUIREMENT) == [DIRECT_MESSAGE]
    assert sender.channel == []


@pytest.mark.asyncio
async def test_announcements_disabled_by_default(history):
    sender = FakeSender()
    dispatcher = make_dispatcher(sender, history, announce_channel_id="555")

    await dispatcher.notify(result(Level.EXCELLENT), TASK, REQUIREMENT)
    assert sender.channel == []
