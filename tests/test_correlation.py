from __future__ import annotations

import pytest

from TaskArchiver.correlation import (
    ArchiveAction,
    decode,
    footer_for,
    footer_ref,
    is_ours,
    match_message,
    reopen_token,
)
from TaskArchiver.errors import CorrelationError

THREAD_ID = 1180000000000123456
ANCHOR_ID = 1180000000000999999
TRIGGER_ID = 1180000000000555555


def test_reopen_token_layout() -> None:
    token = reopen_token(THREAD_ID, ANCHOR_ID, TRIGGER_ID)
    assert token.encode() == f"tarc2_reopen_{THREAD_ID}_{ANCHOR_ID}_{TRIGGER_ID}"
    assert len(token.encode()) <= 100


def test_decode_recovers_fields() -> None:
    token = decode(f"tarc2_reopen_{THREAD_ID}_{ANCHOR_ID}_{TRIGGER_ID}")
    assert token.action is ArchiveAction.REOPEN
    assert token.source_thread_id == THREAD_ID
    assert token.anchor_message_id == ANCHOR_ID
    assert token.trigger_id == TRIGGER_ID


def test_legacy_layout_assumes_starter_trigger() -> None:
    legacy = f"tarc1_reopen_{THREAD_ID}_{ANCHOR_ID}"
    token = decode(legacy)
    assert token.trigger_message_id is None
    assert token.trigger_id == THREAD_ID
    assert token.encode() == legacy


@pytest.mark.parametrize(
    "custom_id",
    [
        "reopen_123_456",
        f"tarc1_reopen_{THREAD_ID}",
        f"tarc1_close_{THREAD_ID}_{ANCHOR_ID}",
        f"tarc1_reopen_abc_{ANCHOR_ID}",
        f"tarc1_reopen_{THREAD_ID}_{ANCHOR_ID}_extra",
        f"tarc2_reopen_{THREAD_ID}_{ANCHOR_ID}",
        f"tarc2_reopen_{THREAD_ID}_{ANCHOR_ID}_x",
        f"tarc3_reopen_{THREAD_ID}_{ANCHOR_ID}_{TRIGGER_ID}",
    ],
)
def test_decode_rejects_foreign_or_malformed(custom_id) -> None:
    with pytest.raises(CorrelationError):
        decode(custom_id)


def test_is_ours() -> None:
    assert is_ours("tarc1_reopen_1_2")
    assert is_ours("tarc2_reopen_1_2_3")
    assert not is_ours("tarc3_reopen_1_2_3")
    assert not is_ours("giveaway:enter")
    assert not is_ours(None)


def test_footer_round_trip() -> None:
    footer = footer_for(THREAD_ID)
    assert footer.startswith("Task ID: 123456")
    assert footer_ref(footer) == THREAD_ID
    assert footer_ref("Task ID: 123456") is None


def test_match_by_control_is_exact() -> None:
    ids = [reopen_token(THREAD_ID, ANCHOR_ID, TRIGGER_ID).encode()]
    assert match_message(THREAD_ID, ids, []) == (True, True)
    assert match_message(THREAD_ID + 1, ids, []) == (False, False)


def test_match_by_structured_footer_is_exact() -> None:
    assert match_message(THREAD_ID, [], [footer_for(THREAD_ID)]) == (True, True)


def test_structured_footer_for_other_thread_with_same_suffix_does_not_match() -> None:
    other = THREAD_ID + 10_000_000
    assert str(other)[-6:] == str(THREAD_ID)[-6:]
    assert match_message(THREAD_ID, [], [footer_for(other)]) == (False, False)


def test_bare_suffix_footer_is_best_effort() -> None:
    assert match_message(THREAD_ID, [], ["Task ID: 123456"]) == (True, False)
    assert match_message(THREAD_ID, [], ["Task ID: 654321"]) == (False, False)
