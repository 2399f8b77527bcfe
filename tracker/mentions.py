"""Discord mention token parsing."""

import re
from typing import List

# <@123> and the legacy nickname form <@!123>
MENTION_PATTERN = re.compile(r'<@!?(\d+)>')


def parse_mentions(content: str) -> List[str]:
    """User ids referenced by mention tokens, in order, duplicates kept."""
    if not content:
        return []
    return MENTION_PATTERN.findall(content)


def distinct_mentions(content: str) -> List[str]:
    """Like parse_mentions, but each user id once (first occurrence wins)."""
    return list(dict.fromkeys(parse_mentions(content)))
