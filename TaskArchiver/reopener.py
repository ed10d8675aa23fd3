from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol

from . import formatting
from .correlation import CompletionToken, match_message
from .errors import GatewayError
from .gateway import Gateway
from .models import AuthorInfo, ReopenReport, ThreadInfo

log = logging.getLogger("red.taskarchiver.reopener")

SWEEP_LIMIT = 50


class Responder(Protocol):
    async def acknowledge(self) -> None: ...

    async def reply(self, text: str) -> None: ...


@dataclass(frozen=True)
class ReopenRequest:
    token: CompletionToken
    user: AuthorInfo
    # Where the clicked control lives.
    channel_id: int
    message_id: int
    monitored_channel_id: Optional[int] = None
    trigger_mark: str = "📋"


class Reopener:
    """
    Reverses an archive: ARCHIVED -> REOPENING -> LIVE.

    Every step is attempted even when an earlier one failed; the outcome of
    each is collected in a ``ReopenReport`` and summarised to the user who
    clicked.
    """

    def __init__(self, gateway: Gateway):
        self.gateway = gateway

    async def reopen(self, request: ReopenRequest, responder: Responder) -> ReopenReport:
        token = request.token
        report = ReopenReport(source_thread_id=token.source_thread_id)

        try:
            await responder.acknowledge()
        except Exception:
            log.exception("Could not acknowledge reopen of %s", token.source_thread_id)

        if request.message_id != token.anchor_message_id:
            log.warning(
                "Reopen control on message %s names anchor %s; deleting both",
                request.message_id,
                token.anchor_message_id,
            )

        await self._step(
            report,
            "delete archive message",
            self.gateway.delete_message(request.channel_id, request.message_id),
        )
        if request.message_id != token.anchor_message_id:
            await self._step(
                report,
                "delete anchor message",
                self.gateway.delete_message(request.channel_id, token.anchor_message_id),
            )
        await self._step(report, "sweep related messages", self.sweep(request, report))
        # The transcript thread was started from the anchor, so it shares its id.
        await self._step(report, "delete transcript thread", self.gateway.delete_thread(token.anchor_message_id))

        thread = await self.gateway.fetch_thread(token.source_thread_id)
        report.source_resolved = thread is not None
        if thread is not None:
            await self._step(
                report,
                "unlock original thread",
                self.gateway.set_thread_state(thread.id, locked=False, archived=False),
            )
            notice = formatting.render_reopened_notice(thread, request.user)
            await self._step(report, "notify original thread", self.gateway.send_message(thread.id, content=notice))
            if thread.parent_id is not None and not thread.in_forum:
                await self._step(
                    report, "notify parent channel", self.gateway.send_message(thread.parent_id, content=notice)
                )
        else:
            log.warning("Original thread %s could not be resolved during reopen", token.source_thread_id)
            if request.monitored_channel_id is not None:
                await self._step(
                    report,
                    "notify monitored channel",
                    self.gateway.send_message(
                        request.monitored_channel_id,
                        content=formatting.render_lost_notice(token.source_thread_id, request.user),
                    ),
                )
        await self._clear_trigger_mark(request, thread, report)

        try:
            await responder.reply(formatting.render_reopen_reply(report))
        except Exception:
            log.exception("Could not send reopen status for %s", token.source_thread_id)
        log.info(
            "Reopen of %s by %s finished (%s)",
            token.source_thread_id,
            request.user.tag,
            "complete" if report.fully_reversed else "partial",
        )
        return report

    async def sweep(self, request: ReopenRequest, report: ReopenReport) -> int:
        """Delete other bot messages in the completion channel tied to the same thread."""
        token = request.token
        removed = 0
        for message in await self.gateway.fetch_history(request.channel_id, SWEEP_LIMIT):
            if message.id in (request.message_id, token.anchor_message_id):
                continue
            if message.author.id != self.gateway.user_id:
                continue
            matched, exact = match_message(token.source_thread_id, message.component_ids, message.embed_footers)
            if not matched:
                continue
            if not exact:
                log.info("Best-effort sweep: message %s matched only by task id suffix", message.id)
            try:
                await self.gateway.delete_message(request.channel_id, message.id)
            except GatewayError as e:
                log.warning("Sweep could not delete message %s: %s", message.id, e)
                report.record(f"delete related message {message.id}", False, e.detail or str(e))
                continue
            removed += 1
        return removed

    async def _clear_trigger_mark(
        self, request: ReopenRequest, thread: Optional[ThreadInfo], report: ReopenReport
    ) -> None:
        """Take the bot's mark off the trigger message so a new checkmark archives again."""
        token = request.token
        if token.trigger_id == token.source_thread_id:
            # Starter message: lives in the thread's parent, normally the monitored channel.
            channel_id = thread.parent_id if thread is not None else request.monitored_channel_id
        else:
            channel_id = token.source_thread_id if thread is not None else None
        if channel_id is None:
            log.info("Trigger message %s of %s is gone; leaving its mark", token.trigger_id, token.source_thread_id)
            return
        await self._step(
            report,
            "remove trigger mark",
            self.gateway.remove_reaction(channel_id, token.trigger_id, request.trigger_mark),
        )

    async def _step(self, report: ReopenReport, step: str, call: Awaitable) -> None:
        try:
            await call
        except GatewayError as e:
            log.warning("Reopen step %r failed for %s: %s", step, report.source_thread_id, e)
            report.record(step, False, e.detail or str(e))
        else:
            report.record(step, True)
