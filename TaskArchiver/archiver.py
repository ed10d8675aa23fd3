from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from . import formatting
from .correlation import reopen_token
from .errors import GatewayError
from .gateway import Gateway
from .models import (
    ArchiveRecord,
    ArchiveSettings,
    AuthorInfo,
    CompletionNotice,
    MessageInfo,
    ThreadInfo,
    ThreadStats,
)

log = logging.getLogger("red.taskarchiver.archiver")


def sort_chronologically(messages: Sequence[MessageInfo]) -> List[MessageInfo]:
    # sorted() is stable, so equal timestamps keep fetch order.
    return sorted(messages, key=lambda m: m.created_at)


def compute_stats(messages: Sequence[MessageInfo], fetch_limit: int) -> ThreadStats:
    ordered = sort_chronologically(messages)
    duration_ms = None
    if ordered:
        delta = ordered[-1].created_at - ordered[0].created_at
        duration_ms = int(delta.total_seconds() * 1000)
    participants = {m.author.id for m in ordered if not m.author.bot}
    return ThreadStats(
        duration_ms=duration_ms,
        message_count=len(ordered),
        participant_count=len(participants),
        truncated=len(ordered) >= fetch_limit,
    )


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Archiver:
    """
    Copies a finished thread into the completion channel and locks the original.

    A run posts an anchor message (header + stats), starts the transcript
    thread from it, attaches the reopen control, replays the source history,
    tells the source thread where it went, marks the trigger message and
    finally locks and archives the source thread. Messages that are not in a
    thread get a short completion notice instead.
    """

    def __init__(
        self,
        gateway: Gateway,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self.gateway = gateway
        self._sleep = sleep
        self._clock = clock

    async def archive(
        self, message: MessageInfo, user: AuthorInfo, settings: ArchiveSettings
    ) -> Union[ArchiveRecord, CompletionNotice, None]:
        try:
            thread, starter = await self.resolve_thread(message)
            if thread is None:
                log.info("Message %s is not part of a thread; posting a completion notice instead.", message.id)
                return await self.post_standalone(message, user, settings)
            return await self.archive_thread(message, thread, starter, user, settings)
        except GatewayError:
            log.exception("Archiving message %s failed", message.id)
            return None

    # ------------- thread resolution -------------

    async def resolve_thread(self, message: MessageInfo):
        if message.in_thread:
            thread = await self.gateway.fetch_thread(message.channel_id)
            if thread is None:
                return None, None
            starter = await self.gateway.fetch_starter_message(thread)
            if starter is None:
                log.info("Could not fetch starter message of thread %s", thread.id)
            return thread, starter
        if message.thread_id is not None:
            thread = await self.gateway.fetch_thread(message.thread_id)
            return thread, (message if thread is not None else None)
        return None, None

    # ------------- thread path -------------

    async def archive_thread(
        self,
        trigger: MessageInfo,
        thread: ThreadInfo,
        starter: Optional[MessageInfo],
        user: AuthorInfo,
        settings: ArchiveSettings,
    ) -> ArchiveRecord:
        completed_at = self._clock()
        history = sort_chronologically(await self.gateway.fetch_history(thread.id, settings.fetch_limit))
        stats = compute_stats(history, settings.fetch_limit)

        channel_id = settings.completion_channel_id
        header = formatting.render_header(thread, user, completed_at, stats, starter)
        anchor_id = await self.gateway.send_message(channel_id, content=header)
        try:
            transcript_id = await self.gateway.create_thread(
                channel_id,
                anchor_id,
                formatting.archive_thread_name(thread.name),
                settings.auto_archive_duration,
            )
        except GatewayError:
            log.exception("Could not start transcript thread for %s; removing anchor %s", thread.id, anchor_id)
            await self._try(self.gateway.delete_message(channel_id, anchor_id), "delete orphan anchor")
            raise
        log.info("Created transcript thread %s for %s", transcript_id, thread.id)

        record = ArchiveRecord(
            source_thread_id=thread.id,
            anchor_message_id=anchor_id,
            transcript_thread_id=transcript_id,
            completion_channel_id=channel_id,
            stats=stats,
        )

        await self._try(
            self.gateway.attach_control(channel_id, anchor_id, reopen_token(thread.id, anchor_id, trigger.id)),
            "attach reopen control",
        )

        record.replayed = await self.replay(transcript_id, history, stats, settings)

        archive_link = formatting.channel_link(thread.guild_id, transcript_id)
        if settings.post_summary:
            embed = formatting.build_summary_embed(thread, user, record, completed_at)
            record.summary_message_id = await self._try(
                self.gateway.send_message(channel_id, embed=embed), "post completion summary"
            )

        await self.close_source(thread, trigger, user, archive_link, settings)
        return record

    async def replay(
        self,
        transcript_id: int,
        history: Sequence[MessageInfo],
        stats: ThreadStats,
        settings: ArchiveSettings,
    ) -> int:
        """Post the source history into the transcript thread, oldest first."""
        if stats.truncated:
            await self._try(
                self.gateway.send_message(transcript_id, content=formatting.truncation_warning(settings.fetch_limit)),
                "post truncation warning",
            )

        replayed = 0
        for original in history:
            if original.is_system:
                continue
            text = formatting.render_transcript_message(original)
            sent = False
            for chunk in formatting.split_text_into_chunks(text, settings.chunk_limit):
                posted = await self._try(
                    self.gateway.send_message(transcript_id, content=chunk), f"replay message {original.id}"
                )
                sent = sent or posted is not None
                if settings.pacing:
                    await self._sleep(settings.pacing)
            if sent:
                replayed += 1

        await self._try(self.gateway.send_message(transcript_id, content=formatting.END_MARKER), "post end marker")
        return replayed

    async def close_source(
        self,
        thread: ThreadInfo,
        trigger: MessageInfo,
        user: AuthorInfo,
        archive_link: str,
        settings: ArchiveSettings,
    ) -> None:
        # The notice has to land before the lock; a locked thread rejects it.
        if settings.notify_source:
            await self._try(
                self.gateway.send_message(thread.id, content=formatting.render_source_notice(user, archive_link)),
                "notify source thread",
            )
        await self._try(
            self.gateway.add_reaction(trigger.channel_id, trigger.id, settings.trigger_mark),
            "apply trigger mark",
        )
        await self._try(
            self.gateway.set_thread_state(thread.id, locked=True, archived=True),
            "lock source thread",
        )

    # ------------- standalone path -------------

    async def post_standalone(
        self, message: MessageInfo, user: AuthorInfo, settings: ArchiveSettings
    ) -> CompletionNotice:
        completed_at = self._clock()
        channel_id = settings.completion_channel_id
        notice_id = await self.gateway.send_message(
            channel_id, content=formatting.render_standalone_notice(message, user, completed_at)
        )
        log.info("Completion notice %s posted for message %s", notice_id, message.id)
        notice = CompletionNotice(message_id=notice_id, completion_channel_id=channel_id)

        await self._try(
            self.gateway.add_reaction(message.channel_id, message.id, settings.trigger_mark),
            "apply trigger mark",
        )

        if settings.post_summary:
            archive_link = formatting.channel_link(message.guild_id, channel_id, notice_id)
            embed = formatting.build_standalone_embed(message, user, archive_link, completed_at)
            notice.summary_message_id = await self._try(
                self.gateway.send_message(channel_id, embed=embed), "post completion summary"
            )
        return notice

    async def _try(self, call: Awaitable, step: str):
        try:
            return await call
        except GatewayError:
            log.warning("Archive step %r failed", step, exc_info=True)
            return None
