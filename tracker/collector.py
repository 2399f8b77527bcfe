"""
Message collector for the monitored channel.

Each cycle pulls the channel history that is not stored yet, writes it
to the message store and reads back the full stored set for the
channel. Paging stops at the first page that is empty or that the
store already holds entirely.

Discord failures propagate to the caller (they abort the cycle). A
failed store read is logged and yields no messages.
"""

import asyncio
import logging
from typing import List, Optional

from common.config import GUILD_ID, MONITORED_CHANNEL_ID, MONITORED_CHANNEL_NAME
from common.discord_api import DiscordAPI, DiscordAPIError
from common.models import Message

logger = logging.getLogger(__name__)


def message_from_api(data: dict, channel_name: str, reactions: list) -> Message:
    """Convert a Discord REST message payload into a Message."""
    author = data.get('author') or {}
    return Message.from_dict({
        'id': data['id'],
        'content': data.get('content') or '',
        'author_id': author.get('id', ''),
        'author_username': author.get('username', ''),
        'channel_id': data.get('channel_id', ''),
        'channel_name': channel_name,
        'timestamp': data.get('timestamp'),
        'edited_timestamp': data.get('edited_timestamp'),
        'attachments': [a.get('url') for a in data.get('attachments') or []],
        'embeds': list(data.get('embeds') or []),
        'reactions': reactions,
    })


class DiscordMessageSource:
    def __init__(self, api: DiscordAPI, store, channel_id: str = MONITORED_CHANNEL_ID,
                 channel_name: str = MONITORED_CHANNEL_NAME, guild_id: str = GUILD_ID,
                 page_size: int = 100):
        self.api = api
        self.store = store
        self.channel_id = channel_id
        self.channel_name = channel_name
        self.guild_id = guild_id
        self.page_size = page_size

    def _resolve_channel(self):
        if self.channel_id:
            if not self.channel_name:
                self.channel_name = self.api.fetch_channel(self.channel_id).get('name', '')
            return
        if not self.guild_id:
            raise DiscordAPIError("No MONITORED_CHANNEL_ID and no GUILD_ID to look it up in")
        channel = self.api.find_channel(self.guild_id, self.channel_name)
        if not channel:
            raise DiscordAPIError(f"No #{self.channel_name} channel found in guild {self.guild_id}")
        self.channel_id = str(channel['id'])
        logger.info(f"Tracking #{self.channel_name} ({self.channel_id})")

    def _reactions_for(self, data: dict) -> list:
        reactions = []
        for reaction in data.get('reactions') or []:
            emoji = reaction.get('emoji') or {}
            users = self.api.fetch_reaction_users(self.channel_id, data['id'], emoji)
            reactions.append({
                'emoji': {'name': emoji.get('name'), 'id': emoji.get('id'),
                          'animated': emoji.get('animated', False)},
                'count': reaction.get('count', 0),
                'users': users,
            })
        return reactions

    def sync(self) -> List[Message]:
        """Fetch unseen messages from Discord and store them. Returns the new messages."""
        self._resolve_channel()
        known = self.store.known_ids(self.channel_id)

        new_messages = []
        before: Optional[str] = None
        while True:
            page = self.api.fetch_messages(self.channel_id, before=before, limit=self.page_size)
            if not page:
                break

            unseen = [data for data in page if str(data['id']) not in known]
            for data in unseen:
                new_messages.append(message_from_api(data, self.channel_name, self._reactions_for(data)))
                known.add(str(data['id']))

            if not unseen:
                break
            before = page[-1]['id']

        if new_messages:
            written = self.store.write(new_messages)
            if not written.success:
                logger.error(f"Could not store fetched messages: {written.error}")
            else:
                logger.info(f"Fetched {len(written.created_ids)} new messages from #{self.channel_name}")
        return new_messages

    def load(self) -> List[Message]:
        """Everything stored for the monitored channel, oldest first."""
        result = self.store.read({'channel_id': self.channel_id})
        if not result.success:
            logger.error(f"Error reading stored messages: {result.error}")
            return []
        return result.data

    async def fetch_messages(self) -> List[Message]:
        await asyncio.to_thread(self.sync)
        return await asyncio.to_thread(self.load)
