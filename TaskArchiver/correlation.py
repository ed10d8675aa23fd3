"""
Correlation ids that tie an archive back to the thread it came from.

Nothing is stored outside Discord, so everything the reopen button needs is
packed into its custom id, and summary embeds carry the same reference in
their footer. The prefix names the layout; a different layout gets a
different prefix:

- ``tarc1_<action>_<thread>_<anchor>``: controls posted before the trigger
  message was recorded. Still decoded; the trigger is assumed to be the
  thread's starter message.
- ``tarc2_<action>_<thread>_<anchor>_<trigger>``: current layout.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .errors import CorrelationError

SCHEMA = "tarc2"
LEGACY_SCHEMA = "tarc1"
FOOTER_SCHEMA = "tarc1"
TASK_ID_DIGITS = 6

_LAYOUT_PARTS = {LEGACY_SCHEMA: 4, SCHEMA: 5}
_FOOTER_REF = re.compile(rf"\b{FOOTER_SCHEMA}:(\d+)\b")
_TASK_ID = re.compile(r"Task ID: (\d+)")


class ArchiveAction(enum.Enum):
    REOPEN = "reopen"


@dataclass(frozen=True)
class CompletionToken:
    action: ArchiveAction
    source_thread_id: int
    anchor_message_id: int
    # None only for controls decoded from the legacy layout.
    trigger_message_id: Optional[int] = None

    def encode(self) -> str:
        if self.trigger_message_id is None:
            return f"{LEGACY_SCHEMA}_{self.action.value}_{self.source_thread_id}_{self.anchor_message_id}"
        return (
            f"{SCHEMA}_{self.action.value}_{self.source_thread_id}"
            f"_{self.anchor_message_id}_{self.trigger_message_id}"
        )

    @property
    def trigger_id(self) -> int:
        """The message that carried the checkmark; the starter when unknown."""
        if self.trigger_message_id is None:
            return self.source_thread_id
        return self.trigger_message_id


def is_ours(custom_id: Optional[str]) -> bool:
    return bool(custom_id) and any(custom_id.startswith(f"{schema}_") for schema in _LAYOUT_PARTS)


def decode(custom_id: str) -> CompletionToken:
    """Parse a control id produced by :meth:`CompletionToken.encode`."""
    if not is_ours(custom_id):
        raise CorrelationError(f"not a task archive control: {custom_id!r}")
    parts = custom_id.split("_")
    if len(parts) != _LAYOUT_PARTS[parts[0]]:
        raise CorrelationError(f"malformed control id: {custom_id!r}")
    _, action_name, *ids = parts
    try:
        action = ArchiveAction(action_name)
    except ValueError:
        raise CorrelationError(f"unknown action {action_name!r} in {custom_id!r}") from None
    if not all(i.isdigit() for i in ids):
        raise CorrelationError(f"non-numeric ids in {custom_id!r}")
    thread_id, anchor_id, *trigger = (int(i) for i in ids)
    return CompletionToken(action, thread_id, anchor_id, trigger[0] if trigger else None)


def reopen_token(source_thread_id: int, anchor_message_id: int, trigger_message_id: int) -> CompletionToken:
    return CompletionToken(ArchiveAction.REOPEN, source_thread_id, anchor_message_id, trigger_message_id)


def short_id(snowflake: int) -> str:
    return str(snowflake)[-TASK_ID_DIGITS:]


def footer_for(snowflake: int) -> str:
    return f"Task ID: {short_id(snowflake)} · {FOOTER_SCHEMA}:{snowflake}"


def footer_ref(footer: str) -> Optional[int]:
    m = _FOOTER_REF.search(footer or "")
    return int(m.group(1)) if m else None


def match_message(
    source_thread_id: int,
    component_ids: Iterable[str],
    footers: Iterable[str],
) -> Tuple[bool, bool]:
    """
    Decide whether a completion-channel message belongs to ``source_thread_id``.

    Returns ``(matched, exact)``. ``exact`` is False when the only evidence is
    the six-digit suffix in a footer without a structured reference; callers
    treat that as a best-effort match.
    """
    for custom_id in component_ids:
        if not is_ours(custom_id):
            continue
        try:
            token = decode(custom_id)
        except CorrelationError:
            continue
        if token.source_thread_id == source_thread_id:
            return True, True

    suffix = short_id(source_thread_id)
    for footer in footers:
        ref = footer_ref(footer)
        if ref is not None:
            if ref == source_thread_id:
                return True, True
            continue
        m = _TASK_ID.search(footer or "")
        if m and m.group(1) == suffix:
            return True, False
    return False, False
