"""
The slice of Discord the archive workflow is allowed to touch.

The workflow talks to a ``Gateway`` and sees plain snapshots (``MessageInfo``,
``ThreadInfo``); ``DiscordGateway`` is the discord.py implementation the cog
wires in.
"""
from __future__ import annotations

import contextlib
import logging
from typing import Iterator, List, Optional, Protocol

import discord

from .correlation import CompletionToken
from .errors import ChannelResolutionError, GatewayError
from .models import AttachmentInfo, AuthorInfo, MessageInfo, ThreadInfo

log = logging.getLogger("red.taskarchiver.gateway")

COMPLETION_CHANNEL_TOPIC = "Automatically archived completed tasks and threads"


class Gateway(Protocol):
    @property
    def user_id(self) -> int: ...

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageInfo: ...

    async def fetch_thread(self, thread_id: int) -> Optional[ThreadInfo]: ...

    async def fetch_starter_message(self, thread: ThreadInfo) -> Optional[MessageInfo]: ...

    async def fetch_history(self, channel_id: int, limit: int) -> List[MessageInfo]: ...

    async def send_message(
        self,
        channel_id: int,
        content: Optional[str] = None,
        embed: Optional[discord.Embed] = None,
    ) -> int: ...

    async def attach_control(self, channel_id: int, message_id: int, token: CompletionToken) -> None: ...

    async def create_thread(
        self, channel_id: int, message_id: int, name: str, auto_archive_duration: int
    ) -> int: ...

    async def set_thread_state(self, thread_id: int, *, locked: bool, archived: bool) -> None: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def delete_thread(self, thread_id: int) -> None: ...

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None: ...

    async def remove_reaction(self, channel_id: int, message_id: int, emoji: str) -> None: ...


class ReopenView(discord.ui.View):
    """Single "Reopen" button; clicks are routed by the cog's interaction listener."""

    def __init__(self, token: CompletionToken):
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                label="Reopen",
                emoji="🔄",
                style=discord.ButtonStyle.secondary,
                custom_id=token.encode(),
            )
        )


@contextlib.contextmanager
def _translate(action: str) -> Iterator[None]:
    try:
        yield
    except (discord.HTTPException, discord.ClientException) as e:
        raise GatewayError(action, str(e)) from e


def _component_ids(message: discord.Message) -> tuple:
    ids = []
    for row in message.components:
        for child in getattr(row, "children", [row]):
            custom_id = getattr(child, "custom_id", None)
            if custom_id:
                ids.append(custom_id)
    return tuple(ids)


def message_info(message: discord.Message) -> MessageInfo:
    channel = message.channel
    is_thread = isinstance(channel, discord.Thread)
    started = getattr(message, "thread", None)
    return MessageInfo(
        id=message.id,
        channel_id=channel.id,
        guild_id=message.guild.id if message.guild else None,
        author=AuthorInfo(message.author.id, str(message.author), message.author.bot),
        created_at=message.created_at,
        content=message.content or "",
        parent_id=channel.parent_id if is_thread else None,
        thread_id=started.id if started else None,
        is_system=message.is_system(),
        has_embeds=bool(message.embeds),
        attachments=tuple(AttachmentInfo(a.filename, a.url) for a in message.attachments),
        own_reactions=frozenset(str(r.emoji) for r in message.reactions if r.me),
        embed_footers=tuple(e.footer.text for e in message.embeds if e.footer and e.footer.text),
        component_ids=_component_ids(message),
    )


def thread_info(thread: discord.Thread) -> ThreadInfo:
    return ThreadInfo(
        id=thread.id,
        name=thread.name,
        guild_id=thread.guild.id,
        parent_id=thread.parent_id,
        locked=thread.locked,
        archived=thread.archived,
        in_forum=isinstance(thread.parent, discord.ForumChannel),
    )


class DiscordGateway:
    def __init__(self, bot: discord.Client):
        self.bot = bot

    @property
    def user_id(self) -> int:
        return self.bot.user.id

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            with _translate(f"fetch channel {channel_id}"):
                channel = await self.bot.fetch_channel(channel_id)
        return channel

    async def _messageable(self, channel_id: int):
        channel = await self._channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise GatewayError(f"use channel {channel_id}", "not a text channel")
        return channel

    async def _thread(self, thread_id: int) -> discord.Thread:
        channel = await self._channel(thread_id)
        if not isinstance(channel, discord.Thread):
            raise GatewayError(f"use thread {thread_id}", "not a thread")
        return channel

    # ------------- reads -------------

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageInfo:
        channel = await self._messageable(channel_id)
        with _translate(f"fetch message {message_id}"):
            message = await channel.fetch_message(message_id)
        return message_info(message)

    async def fetch_thread(self, thread_id: int) -> Optional[ThreadInfo]:
        try:
            channel = await self._channel(thread_id)
        except GatewayError:
            log.warning("Thread %s could not be fetched", thread_id)
            return None
        if not isinstance(channel, discord.Thread):
            return None
        return thread_info(channel)

    async def fetch_starter_message(self, thread: ThreadInfo) -> Optional[MessageInfo]:
        # A thread started from a message shares that message's id.
        if thread.parent_id is None:
            return None
        try:
            return await self.fetch_message(thread.parent_id, thread.id)
        except GatewayError:
            return None

    async def fetch_history(self, channel_id: int, limit: int) -> List[MessageInfo]:
        channel = await self._messageable(channel_id)
        with _translate(f"fetch history of {channel_id}"):
            messages = [m async for m in channel.history(limit=limit)]
        return [message_info(m) for m in messages]

    # ------------- writes -------------

    async def send_message(
        self,
        channel_id: int,
        content: Optional[str] = None,
        embed: Optional[discord.Embed] = None,
    ) -> int:
        channel = await self._messageable(channel_id)
        with _translate(f"send to {channel_id}"):
            message = await channel.send(
                content=content,
                embed=embed,
                allowed_mentions=discord.AllowedMentions.none(),
            )
        return message.id

    async def attach_control(self, channel_id: int, message_id: int, token: CompletionToken) -> None:
        channel = await self._messageable(channel_id)
        with _translate(f"attach control to {message_id}"):
            await channel.get_partial_message(message_id).edit(view=ReopenView(token))

    async def create_thread(
        self, channel_id: int, message_id: int, name: str, auto_archive_duration: int
    ) -> int:
        channel = await self._messageable(channel_id)
        with _translate(f"create thread on {message_id}"):
            thread = await channel.get_partial_message(message_id).create_thread(
                name=name, auto_archive_duration=auto_archive_duration
            )
        return thread.id

    async def set_thread_state(self, thread_id: int, *, locked: bool, archived: bool) -> None:
        thread = await self._thread(thread_id)
        if thread.locked == locked and thread.archived == archived:
            return
        with _translate(f"edit thread {thread_id}"):
            await thread.edit(locked=locked, archived=archived)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        channel = await self._messageable(channel_id)
        with _translate(f"delete message {message_id}"):
            await channel.get_partial_message(message_id).delete()

    async def delete_thread(self, thread_id: int) -> None:
        thread = await self._thread(thread_id)
        with _translate(f"delete thread {thread_id}"):
            await thread.delete()

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        channel = await self._messageable(channel_id)
        with _translate(f"react to {message_id}"):
            await channel.get_partial_message(message_id).add_reaction(emoji)

    async def remove_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        channel = await self._messageable(channel_id)
        with _translate(f"remove reaction from {message_id}"):
            await channel.get_partial_message(message_id).remove_reaction(emoji, self.bot.user)

    # ------------- channel resolution -------------

    async def resolve_channel(self, guild: discord.Guild, ident: str) -> int:
        """Find a text channel by numeric id, falling back to a lookup by name."""
        ident = str(ident).strip()
        if ident.isdigit():
            try:
                channel = await self._channel(int(ident))
            except GatewayError:
                channel = None
            if isinstance(channel, discord.TextChannel):
                return channel.id
        channel = discord.utils.get(guild.text_channels, name=ident)
        if channel is None:
            raise ChannelResolutionError(f"no text channel with id or name {ident!r} in {guild.id}")
        return channel.id

    async def ensure_text_channel(self, guild: discord.Guild, name: str) -> int:
        channel = discord.utils.get(guild.text_channels, name=name)
        if channel is not None:
            return channel.id
        with _translate(f"create channel {name}"):
            channel = await guild.create_text_channel(name, topic=COMPLETION_CHANNEL_TOPIC)
        log.info("Created completion channel %s (%s) in guild %s", channel.name, channel.id, guild.id)
        return channel.id
