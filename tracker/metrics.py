"""
Metrics Aggregator
Turns a set of Discord messages into per-user engagement statistics.

Two passes over the chronologically sorted messages:
- Pass 1 accumulates per-author counts (messages, length, edits,
  attachments, embeds, mentions sent, reactions received) and the
  first/last message times.
- Pass 2 attributes response times: for every user mentioned in a
  message, the first later message by that user is their reply.

Metrics are rebuilt from scratch on every call. Pass 2 scans forward
from each mention, so it is O(n*k) in the forward scan depth; per-cycle
message windows keep that bounded.
"""

import logging
from typing import Dict, Iterable, List

from common.models import Message, UserMetrics
from .mentions import parse_mentions, distinct_mentions

logger = logging.getLogger(__name__)


def _get_metrics(metrics: Dict[str, UserMetrics], user_id: str, username: str) -> UserMetrics:
    if user_id not in metrics:
        metrics[user_id] = UserMetrics(author_id=user_id, author_username=username)
    return metrics[user_id]


def aggregate(messages: Iterable[Message]) -> List[UserMetrics]:
    """
    Compute per-user metrics for a message set.

    Input order does not matter; messages are stably sorted by timestamp
    (ties keep input order). Users are returned in order of first
    reference.
    """
    ordered = sorted(messages, key=lambda m: m.timestamp)
    metrics: Dict[str, UserMetrics] = {}

    # First pass: basic per-author counts
    for msg in ordered:
        m = _get_metrics(metrics, msg.author_id, msg.author_username)
        m.total_messages += 1
        m.total_message_length += len(msg.content)

        if m.first_message is None or msg.timestamp < m.first_message:
            m.first_message = msg.timestamp
        if m.last_message is None or msg.timestamp > m.last_message:
            m.last_message = msg.timestamp

        if msg.edited_timestamp:
            m.edited_messages += 1
        # Presence, not totals
        if msg.attachments:
            m.attachments_count += 1
        if msg.embeds:
            m.embeds_count += 1

        m.mentions_sent += len(parse_mentions(msg.content))
        m.total_reactions_received += sum(r.count for r in msg.reactions)

    # Second pass: first reply after each mention
    for index, msg in enumerate(ordered):
        for mentioned_id in distinct_mentions(msg.content):
            if mentioned_id == msg.author_id:
                continue
            for reply in ordered[index + 1:]:
                if reply.author_id == mentioned_id:
                    responder = _get_metrics(metrics, mentioned_id, reply.author_username)
                    responder.response_times.append((reply.timestamp - msg.timestamp).total_seconds())
                    break

    return list(metrics.values())


def aggregate_and_store(messages: Iterable[Message], store) -> List[UserMetrics]:
    """
    Aggregate and persist the result as a filtered-data snapshot.

    The snapshot write never fails the caller: a failed write is logged
    and the metrics are returned regardless.
    """
    result = aggregate(messages)
    try:
        written = store.write_filtered(result)
        if written.success:
            logger.info(f"Filtered discord data for {len(result)} users")
        else:
            logger.warning(f"Could not store filtered data: {written.error}")
    except Exception as e:
        logger.warning(f"Could not store filtered data: {e}")
    return result
