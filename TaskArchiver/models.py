from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class AuthorInfo:
    id: int
    tag: str
    bot: bool = False


@dataclass(frozen=True)
class AttachmentInfo:
    name: str
    url: str


@dataclass(frozen=True)
class MessageInfo:
    """Snapshot of a Discord message, detached from the client cache."""

    id: int
    channel_id: int
    guild_id: Optional[int]
    author: AuthorInfo
    created_at: datetime.datetime
    content: str = ""
    # Set when the message's channel is a thread.
    parent_id: Optional[int] = None
    # Set when the message itself started a thread.
    thread_id: Optional[int] = None
    is_system: bool = False
    has_embeds: bool = False
    attachments: Tuple[AttachmentInfo, ...] = ()
    own_reactions: FrozenSet[str] = frozenset()
    embed_footers: Tuple[str, ...] = ()
    component_ids: Tuple[str, ...] = ()

    @property
    def in_thread(self) -> bool:
        return self.parent_id is not None

    @property
    def jump_url(self) -> str:
        return f"https://discord.com/channels/{self.guild_id}/{self.channel_id}/{self.id}"


@dataclass(frozen=True)
class ThreadInfo:
    id: int
    name: str
    guild_id: int
    parent_id: Optional[int]
    locked: bool = False
    archived: bool = False
    # Forum posts: the parent takes no plain messages.
    in_forum: bool = False

    @property
    def jump_url(self) -> str:
        return f"https://discord.com/channels/{self.guild_id}/{self.id}"


@dataclass(frozen=True)
class ThreadStats:
    duration_ms: Optional[int]
    message_count: int
    participant_count: int
    truncated: bool


@dataclass
class ArchiveSettings:
    """Per-guild knobs resolved from Config before a run starts."""

    monitored_channel_id: Optional[int]
    completion_channel_id: int
    trigger_mark: str = "📋"
    chunk_limit: int = 1900
    fetch_limit: int = 100
    pacing: float = 0.25
    post_summary: bool = True
    notify_source: bool = True
    auto_archive_duration: int = 10080


@dataclass
class ArchiveRecord:
    source_thread_id: int
    anchor_message_id: int
    transcript_thread_id: int
    completion_channel_id: int
    stats: ThreadStats
    replayed: int = 0
    summary_message_id: Optional[int] = None


@dataclass
class CompletionNotice:
    """Result of the standalone path: no thread, no reopen control."""

    message_id: int
    completion_channel_id: int
    summary_message_id: Optional[int] = None


@dataclass
class StepOutcome:
    step: str
    ok: bool
    detail: str = ""


@dataclass
class ReopenReport:
    source_thread_id: int
    outcomes: List[StepOutcome] = field(default_factory=list)
    source_resolved: bool = False

    def record(self, step: str, ok: bool, detail: str = "") -> None:
        self.outcomes.append(StepOutcome(step, ok, detail))

    @property
    def failed(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def fully_reversed(self) -> bool:
        return self.source_resolved and not self.failed
