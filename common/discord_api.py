"""
Discord REST client used by the tracker.

Thin wrapper over the v10 HTTP API with the bot token:
- paginated channel history (newest first, `before` cursor)
- reaction user lookups
- channel lookup by name inside a guild
- direct messages and channel messages

Rate limits (429) are honoured by sleeping `retry_after` and retrying a
bounded number of times. Fetch helpers raise DiscordAPIError on failure;
the send helpers never raise and return a SendResult instead.
"""

import logging
import time
from typing import Optional, List

import requests
from urllib.parse import quote

from .models import SendResult, parse_timestamp

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"
MAX_RATE_LIMIT_RETRIES = 5
GUILD_TEXT_CHANNEL = 0


class DiscordAPIError(Exception):
    """A Discord REST call failed (non-2xx after retries, or a network error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def emoji_path(emoji: dict) -> str:
    """URL segment for a reaction emoji: name:id for custom, escaped unicode otherwise."""
    if emoji.get('id'):
        return f"{emoji.get('name')}:{emoji['id']}"
    return quote(emoji.get('name') or '')


class DiscordAPI:
    def __init__(self, token: str, timeout: float = 15.0, session: requests.Session = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'authorization': f"Bot {token}",
            'content-type': 'application/json',
        })

    def _request(self, method: str, path: str, **kwargs):
        url = f"{API_BASE}{path}"
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise DiscordAPIError(f"{method} {path} failed: {e}") from e

            if resp.status_code == 429:
                retry_after = float(resp.json().get('retry_after', 1))
                if retry_after > 10:
                    logger.warning(f'Rate limited on {path}, waiting {retry_after} seconds')
                time.sleep(retry_after)
                continue

            if resp.status_code >= 400:
                raise DiscordAPIError(
                    f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
            if resp.status_code == 204:
                return None
            return resp.json()

        raise DiscordAPIError(f"{method} {path} still rate limited after {MAX_RATE_LIMIT_RETRIES} retries",
                              status_code=429)

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def fetch_messages(self, channel_id: str, before: str = None, limit: int = 100) -> List[dict]:
        """One page of channel history, newest first."""
        params = {'limit': limit}
        if before:
            params['before'] = before
        return self._request('GET', f"/channels/{channel_id}/messages", params=params)

    def fetch_reaction_users(self, channel_id: str, message_id: str, emoji: dict, limit: int = 100) -> List[dict]:
        """Users who reacted with `emoji` (Discord caps a page at 100)."""
        users = self._request(
            'GET',
            f"/channels/{channel_id}/messages/{message_id}/reactions/{emoji_path(emoji)}",
            params={'limit': limit},
        )
        return [{'user_id': str(u['id']), 'username': u.get('username', '')} for u in users]

    def fetch_channel(self, channel_id: str) -> dict:
        return self._request('GET', f"/channels/{channel_id}")

    def find_channel(self, guild_id: str, name: str) -> Optional[dict]:
        """First text channel in the guild with the given name."""
        for channel in self._request('GET', f"/guilds/{guild_id}/channels"):
            if channel.get('name') == name and channel.get('type') == GUILD_TEXT_CHANNEL:
                return channel
        return None

    # ------------------------------------------------------------------------
    # Sends
    # ------------------------------------------------------------------------

    def _send_result(self, sent: dict) -> SendResult:
        return SendResult(
            success=True,
            message_id=str(sent.get('id')),
            timestamp=parse_timestamp(sent.get('timestamp')),
            content=sent.get('content'),
        )

    def send_direct_message(self, user_id: str, text: str) -> SendResult:
        """Open (or reuse) the DM channel with a user and post `text` to it."""
        try:
            dm_channel = self._request('POST', "/users/@me/channels", json={'recipient_id': str(user_id)})
            sent = self._request('POST', f"/channels/{dm_channel['id']}/messages", json={'content': text})
            return self._send_result(sent)
        except (DiscordAPIError, KeyError) as e:
            logger.error(f"Error sending direct message to {user_id}: {e}")
            return SendResult(success=False, error=str(e))

    def send_channel_message(self, channel_id: str, text: str) -> SendResult:
        try:
            sent = self._request('POST', f"/channels/{channel_id}/messages", json={'content': text})
            return self._send_result(sent)
        except DiscordAPIError as e:
            logger.error(f"Error sending channel message to {channel_id}: {e}")
            return SendResult(success=False, error=str(e))
