from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, Dict, Optional, Union

import discord
from redbot.core import commands, Config
from redbot.core.bot import Red

from .archiver import Archiver
from .correlation import ArchiveAction, CompletionToken, decode, is_ours
from .detector import ReactionEvent, TriggerDetector, is_checkmark
from .errors import ChannelResolutionError, CorrelationError, GatewayError
from .gateway import DiscordGateway
from .models import ArchiveSettings, AuthorInfo
from .reopener import Reopener, ReopenRequest

log = logging.getLogger("red.taskarchiver")

DEFAULT_COMPLETION_CHANNEL = "completed-tasks"
CHUNK_LIMIT_RANGE = (200, 2000)
PACING_RANGE_MS = (0, 5000)


def _env_channel_id(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    return int(value) if value.isdigit() else None


def author_info(user: discord.abc.User) -> AuthorInfo:
    return AuthorInfo(user.id, str(user), user.bot)


class InteractionResponder:
    """Acknowledges a button click and answers privately through the followup webhook."""

    def __init__(self, interaction: discord.Interaction):
        self.interaction = interaction

    async def acknowledge(self) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer(ephemeral=True, thinking=True)

    async def reply(self, text: str) -> None:
        await self.interaction.followup.send(text, ephemeral=True)


class TaskArchiver(commands.Cog):
    """
    Archive finished threads when someone reacts with a checkmark.

    - A checkmark on a message in the monitored channel (or one of its threads)
      copies the thread into the completion channel and locks the original.
    - Messages outside a thread get a short completion notice instead.
    - The archive carries a Reopen button that removes the copy and unlocks
      the original thread.
    """

    __author__ = "Wellspring"
    __version__ = "1.0.0"

    def __init__(self, bot: Red):
        self.bot = bot
        self.config = Config.get_conf(self, identifier=0x7A5C0A2C, force_registration=True)
        self.config.register_guild(
            monitored_channel=_env_channel_id("TARGET_CHANNEL_ID"),
            completion_channel=os.environ.get("COMPLETION_CHANNEL_ID") or DEFAULT_COMPLETION_CHANNEL,
            trigger_mark="📋",
            chunk_limit=1900,
            pacing_ms=250,
            post_summary=True,
            notify_source=True,
        )

        self.gateway = DiscordGateway(bot)
        self.archiver = Archiver(self.gateway)
        self.detector = TriggerDetector(self.gateway, self.archiver)
        self.reopener = Reopener(self.gateway)
        self._handlers: Dict[
            ArchiveAction, Callable[[discord.Interaction, CompletionToken], Awaitable[None]]
        ] = {
            ArchiveAction.REOPEN: self._handle_reopen,
        }
        self._startup_task: Optional[asyncio.Task] = None

    async def red_delete_data_for_user(self, **kwargs):
        # Only channel settings are stored.
        return

    # -------------- LIFECYCLE --------------

    async def cog_load(self) -> None:
        self._startup_task = asyncio.create_task(self._prepare_completion_channels())

    async def cog_unload(self) -> None:
        if self._startup_task and not self._startup_task.done():
            self._startup_task.cancel()

    async def _prepare_completion_channels(self) -> None:
        """Create completion channels that are configured by name and missing."""
        await self.bot.wait_until_red_ready()
        all_guilds = await self.config.all_guilds()
        for guild in self.bot.guilds:
            data = all_guilds.get(guild.id) or await self.config.guild(guild).all()
            if data.get("monitored_channel") is None:
                continue
            ident = str(data.get("completion_channel") or "")
            if not ident or ident.isdigit():
                continue
            try:
                channel_id = await self.gateway.ensure_text_channel(guild, ident)
            except GatewayError:
                log.exception("Failed to create completion channel %r in guild %s", ident, guild.id)
                continue
            log.info("Guild %s archives completed tasks into %s", guild.id, channel_id)

    # -------------- SETTINGS --------------

    async def settings_for(self, guild: discord.Guild) -> Optional[ArchiveSettings]:
        data = await self.config.guild(guild).all()
        monitored = data["monitored_channel"]
        if monitored is None:
            return None
        try:
            completion_id = await self.gateway.resolve_channel(guild, data["completion_channel"])
        except ChannelResolutionError:
            log.warning(
                "Could not find completion channel %r in guild %s; posting into the monitored channel",
                data["completion_channel"],
                guild.id,
            )
            completion_id = monitored
        return ArchiveSettings(
            monitored_channel_id=monitored,
            completion_channel_id=completion_id,
            trigger_mark=data["trigger_mark"],
            chunk_limit=data["chunk_limit"],
            pacing=data["pacing_ms"] / 1000,
            post_summary=data["post_summary"],
            notify_source=data["notify_source"],
        )

    # -------------- LISTENERS --------------

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if payload.guild_id is None:
            return
        emoji = str(payload.emoji)
        if not is_checkmark(emoji):
            return
        try:
            user = payload.member or self.bot.get_user(payload.user_id)
            if user is None:
                user = await self.bot.fetch_user(payload.user_id)
            if user.bot:
                return
            guild = self.bot.get_guild(payload.guild_id)
            if guild is None:
                return
            settings = await self.settings_for(guild)
            if settings is None:
                return
            event = ReactionEvent(
                emoji=emoji,
                user=author_info(user),
                channel_id=payload.channel_id,
                message_id=payload.message_id,
                guild_id=payload.guild_id,
            )
            await self.detector.handle(event, settings)
        except Exception:
            log.exception("Error processing reaction on message %s", payload.message_id)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        if not is_ours(custom_id):
            return
        try:
            token = decode(custom_id)
        except CorrelationError:
            log.warning("Undecodable task archive control %r", custom_id)
            try:
                await interaction.response.send_message(
                    "This archive control can no longer be resolved.", ephemeral=True
                )
            except (discord.HTTPException, discord.ClientException):
                log.exception("Could not answer undecodable control %r", custom_id)
            return
        try:
            await self._handlers[token.action](interaction, token)
        except Exception:
            log.exception("Error handling %s for thread %s", token.action.value, token.source_thread_id)

    async def _handle_reopen(self, interaction: discord.Interaction, token: CompletionToken) -> None:
        monitored = None
        trigger_mark = "📋"
        if interaction.guild is not None:
            data = await self.config.guild(interaction.guild).all()
            monitored = data["monitored_channel"]
            trigger_mark = data["trigger_mark"]
        message_id = interaction.message.id if interaction.message else token.anchor_message_id
        request = ReopenRequest(
            token=token,
            user=author_info(interaction.user),
            channel_id=interaction.channel_id,
            message_id=message_id,
            monitored_channel_id=monitored,
            trigger_mark=trigger_mark,
        )
        await self.reopener.reopen(request, InteractionResponder(interaction))

    # -------------- CONFIG COMMANDS --------------

    @commands.group(name="taskarchive")
    @commands.guild_only()
    @commands.admin_or_permissions(manage_guild=True)
    async def taskarchive_group(self, ctx: commands.Context):
        """Configure the checkmark task archiver."""
        if ctx.invoked_subcommand is None:
            await ctx.send_help(ctx.command)

    @taskarchive_group.command(name="monitor")
    async def set_monitor(
        self, ctx: commands.Context, channel: Union[discord.TextChannel, discord.ForumChannel]
    ):
        """Set the channel whose messages and threads are watched for checkmarks."""
        await self.config.guild(ctx.guild).monitored_channel.set(channel.id)
        await ctx.send(f"Watching {channel.mention} for checkmark reactions.")

    @taskarchive_group.command(name="completion")
    async def set_completion(self, ctx: commands.Context, *, channel: str):
        """
        Set the completion channel by id, mention or name.

        A name that does not exist yet is created.
        """
        ident = channel.strip().lstrip("<#").rstrip(">")
        if not ident:
            await ctx.send("Channel cannot be empty.")
            return
        try:
            if ident.isdigit():
                channel_id = await self.gateway.resolve_channel(ctx.guild, ident)
            else:
                channel_id = await self.gateway.ensure_text_channel(ctx.guild, ident)
        except (ChannelResolutionError, GatewayError) as e:
            await ctx.send(f"Could not use that channel: {e}")
            return
        await self.config.guild(ctx.guild).completion_channel.set(ident)
        await ctx.send(f"Completed tasks will be archived in <#{channel_id}>.")

    @taskarchive_group.command(name="mark")
    async def set_mark(self, ctx: commands.Context, emoji: str):
        """Set the reaction used to mark a message as already archived."""
        await self.config.guild(ctx.guild).trigger_mark.set(emoji.strip())
        await ctx.send(f"Archived messages will be marked with {emoji.strip()}.")

    @taskarchive_group.command(name="chunklimit")
    async def set_chunk_limit(self, ctx: commands.Context, limit: int):
        """Set the maximum length of one replayed transcript message."""
        low, high = CHUNK_LIMIT_RANGE
        if limit < low or limit > high:
            await ctx.send(f"Chunk limit must be between {low} and {high}.")
            return
        await self.config.guild(ctx.guild).chunk_limit.set(limit)
        await ctx.send(f"Transcript messages will be split at `{limit}` characters.")

    @taskarchive_group.command(name="pacing")
    async def set_pacing(self, ctx: commands.Context, milliseconds: int):
        """Set the delay between replayed transcript messages."""
        low, high = PACING_RANGE_MS
        if milliseconds < low or milliseconds > high:
            await ctx.send(f"Pacing must be between {low} and {high} ms.")
            return
        await self.config.guild(ctx.guild).pacing_ms.set(milliseconds)
        await ctx.send(f"Transcript pacing set to `{milliseconds}` ms.")

    @taskarchive_group.command(name="summary")
    async def set_summary(self, ctx: commands.Context, enabled: bool):
        """Toggle the summary embed posted next to each archive."""
        await self.config.guild(ctx.guild).post_summary.set(enabled)
        await ctx.send(f"Summary embeds {'enabled' if enabled else 'disabled'}.")

    @taskarchive_group.command(name="notifysource")
    async def set_notify_source(self, ctx: commands.Context, enabled: bool):
        """Toggle the notice posted in the original thread before it is locked."""
        await self.config.guild(ctx.guild).notify_source.set(enabled)
        await ctx.send(f"Original-thread notices {'enabled' if enabled else 'disabled'}.")

    @taskarchive_group.command(name="settings")
    async def show_settings(self, ctx: commands.Context):
        """Show the archiver settings for this server."""
        data = await self.config.guild(ctx.guild).all()
        monitored = data["monitored_channel"]
        msg = [
            f"**Task Archiver settings for {ctx.guild.name}**",
            f"Monitored channel: {f'<#{monitored}>' if monitored else 'Not set'}",
            f"Completion channel: `{data['completion_channel']}`",
            f"Trigger mark: {data['trigger_mark']}",
            f"Chunk limit: `{data['chunk_limit']}`",
            f"Pacing: `{data['pacing_ms']}` ms",
            f"Summary embeds: {'on' if data['post_summary'] else 'off'}",
            f"Original-thread notices: {'on' if data['notify_source'] else 'off'}",
        ]
        await ctx.send("\n".join(msg))
