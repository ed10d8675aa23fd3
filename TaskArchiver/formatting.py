from __future__ import annotations

import datetime
import re
from typing import List, Optional

import discord

from .correlation import footer_for, short_id
from .models import ArchiveRecord, AuthorInfo, MessageInfo, ReopenReport, ThreadInfo, ThreadStats

# Discord limits
DISCORD_MAX_MESSAGE = 2000
DISCORD_MAX_THREAD_NAME = 100

COLOR_COMPLETE = 0x00FF00

COMPLETED_PREFIX = "✅ "
CONTENTS_MARKER = "--- Thread Contents Below ---"
END_MARKER = "--- End of Thread Content ---"
STARTER_SNIPPET = 200
STANDALONE_SNIPPET = 1000
DETAILS_SNIPPET = 200


def truncation_warning(limit: int) -> str:
    return (
        f"⚠️ **Note:** This thread had more than {limit} messages. "
        f"Only the most recent {limit} messages are shown here due to Discord API limitations."
    )


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def format_duration(ms: Optional[float]) -> str:
    """Bucket a millisecond span into seconds, minutes, hours or days."""
    if ms is None:
        return "Unknown"
    if ms < 60_000:
        return f"{_round_half_up(ms / 1000)} seconds"
    if ms < 3_600_000:
        return f"{_round_half_up(ms / 60_000)} minutes"
    if ms < 86_400_000:
        return f"{_round_half_up(ms / 3_600_000)} hours"
    return f"{_round_half_up(ms / 86_400_000)} days"


def split_text_into_chunks(text: str, limit: int) -> List[str]:
    """
    Split text on line boundaries so every chunk is at most ``limit`` chars.

    A single line longer than the limit is hard-cut into limit-sized pieces.
    """
    if len(text) <= limit:
        return [text]

    lines: List[str] = []
    for line in text.split("\n"):
        while len(line) > limit:
            lines.append(line[:limit])
            line = line[limit:]
        lines.append(line)

    chunks: List[str] = []
    cur: Optional[str] = None
    for line in lines:
        if cur is None:
            cur = line
        elif len(cur) + 1 + len(line) <= limit:
            cur = f"{cur}\n{line}"
        else:
            chunks.append(cur)
            cur = line
    if cur is not None:
        chunks.append(cur)
    return [c for c in chunks if c.strip()] or [text[:limit]]


def discord_timestamp(when: datetime.datetime, style: str = "f") -> str:
    """Timestamp markup the Discord client renders in the reader's locale."""
    return f"<t:{int(when.timestamp())}:{style}>"


def channel_link(guild_id: Optional[int], channel_id: int, message_id: Optional[int] = None) -> str:
    url = f"https://discord.com/channels/{guild_id}/{channel_id}"
    if message_id is not None:
        url += f"/{message_id}"
    return url


def snippet(text: str, limit: int) -> str:
    return f"{text[:limit]}..." if len(text) > limit else text


def archive_thread_name(name: str) -> str:
    return f"{COMPLETED_PREFIX}{name or 'Completed Thread'}"[:DISCORD_MAX_THREAD_NAME]


def extract_keywords(name: Optional[str], count: int = 5) -> str:
    if not name:
        return "N/A"
    words = [w for w in re.split(r"[\s,._-]+", name) if len(w) > 3]
    return ", ".join(words[:count]) if words else "N/A"


# ------------- Transcript -------------

def render_transcript_message(message: MessageInfo) -> str:
    text = f"**{message.author.tag}** ({discord_timestamp(message.created_at)}):\n"
    if message.content:
        text += message.content
    if message.has_embeds:
        text += "\n[Message contained embeds]"
    if message.attachments:
        text += "\n**Attachments:**"
        for attachment in message.attachments:
            text += f"\n- {attachment.name}: {attachment.url}"
    return text


# ------------- Header / stats -------------

def render_stats_lines(stats: ThreadStats) -> List[str]:
    if stats.truncated:
        messages = (
            f"Messages: {stats.message_count}+ "
            f"(only the most recent {stats.message_count} were captured)"
        )
    else:
        messages = f"Messages: {stats.message_count}"
    return [
        f"• Duration: {format_duration(stats.duration_ms)}",
        f"• {messages}",
        f"• Participants: {stats.participant_count}",
    ]


def render_header(
    thread: ThreadInfo,
    user: AuthorInfo,
    completed_at: datetime.datetime,
    stats: ThreadStats,
    starter: Optional[MessageInfo] = None,
) -> str:
    lines = [
        "## Thread Completed ✅",
        f"**Original Thread:** {thread.name or 'Completed Thread'}",
        f"**Marked complete by:** {user.tag}",
        f"**Completed at:** {discord_timestamp(completed_at)}",
        f"**Original Thread Link:** {thread.jump_url}",
    ]
    if starter is not None:
        content = starter.content or "(No content)"
        lines.append("")
        lines.append(f"**Thread Started By:** {starter.author.tag}")
        lines.append(f"**Thread Start Message:** {snippet(content, STARTER_SNIPPET)}")
    lines.append("")
    lines.append("**📊 Thread Stats**")
    lines.extend(render_stats_lines(stats))
    lines.append("")
    lines.append(CONTENTS_MARKER)
    return "\n".join(lines)


def build_summary_embed(
    thread: ThreadInfo,
    user: AuthorInfo,
    record: ArchiveRecord,
    completed_at: datetime.datetime,
) -> discord.Embed:
    embed = discord.Embed(
        title=f"✅ Task Completed: {thread.name}"[:256],
        description=f"This task has been marked as completed by <@{user.id}> and archived.",
        color=COLOR_COMPLETE,
        timestamp=completed_at,
    )
    stats = "\n".join(render_stats_lines(record.stats) + [f"• Topics: {extract_keywords(thread.name)}"])
    embed.add_field(name="📊 Thread Stats", value=stats, inline=False)
    links = (
        f"• [Original Thread]({thread.jump_url})\n"
        f"• [Archive Copy]({channel_link(thread.guild_id, record.transcript_thread_id)})"
    )
    embed.add_field(name="🔗 Links", value=links, inline=False)
    embed.set_footer(text=footer_for(thread.id))
    return embed


# ------------- Standalone messages -------------

def describe_content(message: MessageInfo) -> str:
    content = (message.content or "").strip()
    if content:
        return snippet(content, STANDALONE_SNIPPET)
    if message.has_embeds:
        return "(Message contained embeds)"
    if message.attachments:
        return "(Message contained attachments)"
    return "(Empty message)"


def render_standalone_notice(
    message: MessageInfo,
    user: AuthorInfo,
    completed_at: datetime.datetime,
) -> str:
    return "\n".join(
        [
            "## Task Completed ✅",
            f"**Task:** {describe_content(message)}",
            f"**Originally posted by:** {message.author.tag or 'Unknown User'}",
            f"**Marked complete by:** {user.tag}",
            f"**Completed at:** {discord_timestamp(completed_at)}",
            f"**Original Message Link:** {message.jump_url}",
        ]
    )


def build_standalone_embed(
    message: MessageInfo,
    user: AuthorInfo,
    archive_link: str,
    completed_at: datetime.datetime,
) -> discord.Embed:
    embed = discord.Embed(
        title="✅ Task Completed",
        description=f"This task has been marked as completed by <@{user.id}> and archived.",
        color=COLOR_COMPLETE,
        timestamp=completed_at,
    )
    embed.add_field(name="📝 Task Details", value=snippet(describe_content(message), DETAILS_SNIPPET), inline=False)
    embed.add_field(
        name="🔗 Links",
        value=f"• [Original Message]({message.jump_url})\n• [Archive Copy]({archive_link})",
        inline=False,
    )
    embed.set_footer(text=footer_for(message.id))
    return embed


# ------------- Notices -------------

def render_source_notice(user: AuthorInfo, archive_link: str) -> str:
    return (
        f"✅ This thread was marked complete by **{user.tag}** and archived to {archive_link}. "
        "Use the Reopen button on the archive to unlock it."
    )


def render_reopened_notice(thread: ThreadInfo, user: AuthorInfo) -> str:
    return f"🔄 **Task reopened** by {user.tag}: {thread.name}\n{thread.jump_url}"


def render_lost_notice(source_thread_id: int, user: AuthorInfo) -> str:
    return (
        f"🔄 **Task reopened** by {user.tag}, but the original thread "
        f"(Task ID: {short_id(source_thread_id)}) could not be found. "
        "Its archive was removed; the correlation to the original thread was lost."
    )


def render_reopen_reply(report: ReopenReport) -> str:
    if report.fully_reversed:
        return "✅ Task reopened. The archive was removed and the original thread is unlocked."
    lines = ["⚠️ Task reopened with problems:"]
    if not report.source_resolved:
        lines.append("- the original thread could not be found")
    for outcome in report.failed:
        lines.append(f"- {outcome.step}: {outcome.detail or 'failed'}")
    return "\n".join(lines)
