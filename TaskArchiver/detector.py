from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Set, Union

from .archiver import Archiver
from .errors import GatewayError
from .gateway import Gateway
from .models import ArchiveRecord, ArchiveSettings, AuthorInfo, CompletionNotice, MessageInfo

log = logging.getLogger("red.taskarchiver.detector")

CHECKMARK_EMOJIS = frozenset(
    {
        "✅",
        "✓",
        "☑️",
        "☑",
        "🗸",
        "✔️",
        "✔",
        "🗹",
    }
)


@dataclass(frozen=True)
class ReactionEvent:
    emoji: str
    user: AuthorInfo
    channel_id: int
    message_id: int
    guild_id: Optional[int]


def is_checkmark(emoji: str) -> bool:
    return emoji in CHECKMARK_EMOJIS


def effective_scope(message: MessageInfo) -> int:
    return message.parent_id if message.in_thread else message.channel_id


def in_monitored_scope(message: MessageInfo, monitored_channel_id: Optional[int]) -> bool:
    if monitored_channel_id is None:
        return False
    if effective_scope(message) == monitored_channel_id:
        return True
    return message.in_thread and message.parent_id == monitored_channel_id


class TriggerDetector:
    """Turns reaction events into at most one archive run per message."""

    def __init__(self, gateway: Gateway, archiver: Archiver):
        self.gateway = gateway
        self.archiver = archiver
        self._claims: Set[int] = set()

    def claim(self, message_id: int) -> bool:
        # No await between the check and the add.
        if message_id in self._claims:
            return False
        self._claims.add(message_id)
        return True

    def release(self, message_id: int) -> None:
        self._claims.discard(message_id)

    async def handle(
        self, event: ReactionEvent, settings: ArchiveSettings
    ) -> Union[ArchiveRecord, CompletionNotice, None]:
        if event.user.bot or event.user.id == self.gateway.user_id:
            return None
        if not is_checkmark(event.emoji):
            return None
        if not self.claim(event.message_id):
            log.info("Message %s is already being archived; ignoring %s", event.message_id, event.emoji)
            return None
        try:
            try:
                message = await self.gateway.fetch_message(event.channel_id, event.message_id)
            except GatewayError:
                log.exception("Could not fetch message %s for reaction event", event.message_id)
                return None

            if not in_monitored_scope(message, settings.monitored_channel_id):
                return None

            log.info(
                "Checkmark (%s) detected from %s in %s %s",
                event.emoji,
                event.user.tag,
                "thread" if message.in_thread else "channel",
                message.channel_id,
            )
            if settings.trigger_mark in message.own_reactions:
                log.info("Message %s was already marked as completed. Skipping.", message.id)
                return None

            return await self.archiver.archive(message, event.user, settings)
        finally:
            self.release(event.message_id)
