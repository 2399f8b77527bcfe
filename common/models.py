"""
Shared data models for the task tracker.

These dataclasses are the typed contracts passed between the message
store, the metrics aggregator, the evaluator, the evaluation log and
the notification dispatcher. Raw JSON from Discord or from the task
files is converted at the edges (from_dict) so the pipeline itself
never handles untyped payloads.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (Discord style, 'Z' suffix allowed).

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input instead of raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except (ValueError, TypeError):
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pick(data: dict, *keys, default=None):
    """First present key wins (snake_case first, then the camelCase export keys)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


class Level(Enum):
    """Qualitative outcome of evaluating metrics against a requirement."""
    EXCELLENT = "Excellent"
    OK = "Ok"
    POOR = "Poor"
    ERROR = "Error"

    @classmethod
    def parse(cls, value) -> "Level":
        """Case-insensitive lookup by value. Raises ValueError for unknown levels."""
        if isinstance(value, cls):
            return value
        for level in cls:
            if str(value).strip().lower() == level.value.lower():
                return level
        raise ValueError(f"Unknown evaluation level: {value!r}")


NOTIFY_LEVELS = (Level.EXCELLENT, Level.POOR)


def should_notify(level: Level) -> bool:
    return level in NOTIFY_LEVELS


# ============================================================================
# MESSAGES
# ============================================================================

@dataclass(frozen=True)
class Reaction:
    emoji_name: str
    count: int = 0
    emoji_id: Optional[str] = None
    animated: bool = False
    users: List[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Reaction":
        emoji = data.get('emoji') or {}
        return cls(
            emoji_name=emoji.get('name') or data.get('emoji_name') or '',
            emoji_id=str(emoji['id']) if emoji.get('id') else data.get('emoji_id'),
            animated=bool(emoji.get('animated', data.get('animated', False))),
            count=int(data.get('count') or 0),
            users=list(data.get('users') or []),
        )

    def to_dict(self) -> dict:
        return {
            'emoji': {'name': self.emoji_name, 'id': self.emoji_id, 'animated': self.animated},
            'count': self.count,
            'users': list(self.users),
        }


@dataclass(frozen=True)
class Message:
    """
    One Discord message as ingested into the message store.

    Immutable once ingested. `attachments` holds URLs and `embeds` holds
    the raw embed payloads, both in the order Discord returned them.
    """
    id: str
    author_id: str
    timestamp: datetime
    content: str = ""
    author_username: str = ""
    channel_id: str = ""
    channel_name: str = ""
    edited_timestamp: Optional[datetime] = None
    attachments: List[str] = field(default_factory=list)
    embeds: List[dict] = field(default_factory=list)
    reactions: List[Reaction] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        timestamp = parse_timestamp(_pick(data, 'timestamp'))
        if timestamp is None:
            raise ValueError(f"Message {data.get('id')} has no valid timestamp")
        return cls(
            id=str(data['id']),
            content=_pick(data, 'content', default='') or '',
            author_id=str(_pick(data, 'author_id', 'authorId', default='')),
            author_username=_pick(data, 'author_username', 'authorUsername', default='') or '',
            channel_id=str(_pick(data, 'channel_id', 'channelId', default='')),
            channel_name=_pick(data, 'channel_name', 'channelName', default='') or '',
            timestamp=timestamp,
            edited_timestamp=parse_timestamp(_pick(data, 'edited_timestamp', 'editedTimestamp')),
            attachments=list(_pick(data, 'attachments', default=[])),
            embeds=list(_pick(data, 'embeds', default=[])),
            reactions=[r if isinstance(r, Reaction) else Reaction.from_dict(r)
                       for r in _pick(data, 'reactions', default=[])],
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'content': self.content,
            'author_id': self.author_id,
            'author_username': self.author_username,
            'channel_id': self.channel_id,
            'channel_name': self.channel_name,
            'timestamp': format_timestamp(self.timestamp),
            'edited_timestamp': format_timestamp(self.edited_timestamp),
            'attachments': list(self.attachments),
            'embeds': list(self.embeds),
            'reactions': [r.to_dict() for r in self.reactions],
        }


# ============================================================================
# METRICS
# ============================================================================

@dataclass
class UserMetrics:
    """
    Engagement statistics for one participant over one message set.

    attachments_count / embeds_count count messages that carry at least
    one attachment / embed, not the number of attachments.
    """
    author_id: str
    author_username: str = ""
    total_messages: int = 0
    first_message: Optional[datetime] = None
    last_message: Optional[datetime] = None
    edited_messages: int = 0
    attachments_count: int = 0
    embeds_count: int = 0
    mentions_sent: int = 0
    total_reactions_received: int = 0
    total_message_length: int = 0
    response_times: List[float] = field(default_factory=list)  # seconds

    @property
    def edited_ratio(self) -> float:
        return self.edited_messages / self.total_messages if self.total_messages else 0

    @property
    def average_reactions(self) -> float:
        return self.total_reactions_received / self.total_messages if self.total_messages else 0

    @property
    def average_message_length(self) -> float:
        return self.total_message_length / self.total_messages if self.total_messages else 0

    @property
    def average_response_time(self) -> Optional[float]:
        if not self.response_times:
            return None
        return sum(self.response_times) / len(self.response_times)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['first_message'] = format_timestamp(self.first_message)
        data['last_message'] = format_timestamp(self.last_message)
        data['edited_ratio'] = self.edited_ratio
        data['average_reactions'] = self.average_reactions
        data['average_message_length'] = self.average_message_length
        data['average_response_time'] = self.average_response_time
        return data


# ============================================================================
# TASKS AND REQUIREMENTS
# ============================================================================

@dataclass(frozen=True)
class Requirement:
    id: str
    title: str = ""
    measure: str = ""
    severity: str = ""
    emoji: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Requirement":
        return cls(
            id=str(data['id']),
            title=data.get('title', '') or '',
            measure=data.get('measure', '') or '',
            severity=str(data.get('severity', '') or ''),
            emoji=data.get('emoji'),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Task:
    id: str
    title: str = ""
    tools: List[str] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    requirements_active: List[str] = field(default_factory=list)
    assignee_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        # requirements may be plain ids or embedded requirement objects
        requirement_ids = [
            str(r['id']) if isinstance(r, dict) else str(r)
            for r in data.get('requirements') or []
        ]
        assignee = _pick(data, 'assignee_id', 'assigneeId', 'userId')
        return cls(
            id=str(data['id']),
            title=_pick(data, 'title', 'name', default='') or '',
            tools=list(data.get('tools') or []),
            requirements=requirement_ids,
            requirements_active=[str(r) for r in
                                 _pick(data, 'requirements_active', 'requirementsActive', default=[])],
            assignee_id=str(assignee) if assignee else None,
        )

    def is_trackable(self, tool: str) -> bool:
        return tool in self.tools and len(self.requirements_active) > 0


# ============================================================================
# EVALUATION, LOGS, STATUS
# ============================================================================

@dataclass
class EvaluationResult:
    task_id: str
    requirement_id: str
    level: Level
    message: str
    proof: str
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def should_notify(self) -> bool:
        return should_notify(self.level)


@dataclass
class LogEntry:
    id: int
    timestamp: datetime
    task_id: str
    requirement_id: str
    level: Level
    message: str
    proof: str
    message_sent: bool


@dataclass
class ErrorLogEntry:
    id: int
    timestamp: datetime
    source: str
    message: str


@dataclass(frozen=True)
class TrackerStatus:
    is_tracking: bool
    last_run: Optional[datetime]
    active_task_count: int

    def to_dict(self) -> dict:
        return {
            'is_tracking': self.is_tracking,
            'last_run': format_timestamp(self.last_run),
            'active_task_count': self.active_task_count,
        }


# ============================================================================
# COLLABORATOR RESULTS
# ============================================================================

@dataclass
class StoreResult:
    """Structured outcome of a message store call. Store calls never raise."""
    success: bool
    data: List[Any] = field(default_factory=list)
    created_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SendResult:
    """Structured outcome of a Discord send. Send calls never raise."""
    success: bool
    message_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    content: Optional[str] = None
    error: Optional[str] = None
