from __future__ import annotations

from dataclasses import replace

import discord
import pytest

from TaskArchiver.archiver import Archiver
from TaskArchiver.correlation import ArchiveAction, CompletionToken, footer_for, reopen_token
from TaskArchiver.detector import ReactionEvent, TriggerDetector
from TaskArchiver.models import ArchiveSettings
from TaskArchiver.reopener import Reopener, ReopenRequest
from tests.fakes import ALICE, BOB, CAROL, GUILD_ID, FakeGateway, FakeResponder, no_sleep

MONITORED = 100
THREAD = 200
COMPLETION = 300


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_channel(MONITORED)
    gw.add_channel(COMPLETION)
    return gw


async def _archive(gateway: FakeGateway, **overrides):
    starter = gateway.add_message(MONITORED, "Ship it", ALICE, message_id=THREAD, thread_id=THREAD)
    gateway.add_thread(THREAD, "Ship release", MONITORED)
    for content, author in (("hello", ALICE), ("world", BOB), ("done", ALICE)):
        gateway.add_message(THREAD, content, author)
    settings = ArchiveSettings(
        monitored_channel_id=MONITORED, completion_channel_id=COMPLETION, pacing=0, **overrides
    )
    return await Archiver(gateway, sleep=no_sleep).archive(starter, BOB, settings)


def _request(record, user=CAROL, trigger_id=THREAD) -> ReopenRequest:
    return ReopenRequest(
        token=reopen_token(record.source_thread_id, record.anchor_message_id, trigger_id),
        user=user,
        channel_id=record.completion_channel_id,
        message_id=record.anchor_message_id,
        monitored_channel_id=MONITORED,
    )


@pytest.mark.anyio
async def test_reopen_reverses_archive(gateway) -> None:
    record = await _archive(gateway)
    responder = FakeResponder()

    report = await Reopener(gateway).reopen(_request(record), responder)

    assert report.fully_reversed
    assert responder.acknowledged
    assert responder.replies and responder.replies[0].startswith("✅")
    assert record.anchor_message_id in gateway.deleted_messages
    assert record.summary_message_id in gateway.deleted_messages
    assert record.transcript_thread_id in gateway.deleted_threads
    assert gateway.contents(COMPLETION) == []
    assert not gateway.threads[THREAD].locked
    assert not gateway.threads[THREAD].archived
    assert gateway.contents(THREAD)[-1].startswith("🔄 **Task reopened** by carol")
    assert gateway.contents(MONITORED)[-1].startswith("🔄 **Task reopened** by carol")


@pytest.mark.anyio
async def test_reopen_is_idempotent_on_unlocked_thread(gateway) -> None:
    record = await _archive(gateway)
    await gateway.set_thread_state(THREAD, locked=False, archived=False)

    report = await Reopener(gateway).reopen(_request(record), FakeResponder())

    assert not gateway.threads[THREAD].locked
    assert all(o.ok for o in report.outcomes if o.step == "unlock original thread")


@pytest.mark.anyio
async def test_sweep_leaves_unrelated_messages(gateway) -> None:
    record = await _archive(gateway)
    unrelated_embed_id = await gateway.send_message(COMPLETION, content="other task")
    human = gateway.add_message(COMPLETION, f"Task ID: {str(THREAD)[-6:]}", ALICE)

    await Reopener(gateway).reopen(_request(record), FakeResponder())

    remaining = [m.id for m in gateway.channels[COMPLETION]]
    assert remaining == [unrelated_embed_id, human.id]


@pytest.mark.anyio
async def test_sweep_removes_messages_by_structured_footer(gateway) -> None:
    record = await _archive(gateway, post_summary=False)
    embed = discord.Embed(title="copy")
    embed.set_footer(text=footer_for(THREAD))
    stray = await gateway.send_message(COMPLETION, embed=embed)

    await Reopener(gateway).reopen(_request(record), FakeResponder())

    assert stray in gateway.deleted_messages


@pytest.mark.anyio
async def test_partial_failure_is_reported(gateway) -> None:
    record = await _archive(gateway)
    gateway.failing.add("delete_thread")
    responder = FakeResponder()

    report = await Reopener(gateway).reopen(_request(record), responder)

    assert not report.fully_reversed
    assert [o.step for o in report.failed] == ["delete transcript thread"]
    assert not gateway.threads[THREAD].locked
    assert responder.replies[0].startswith("⚠️")
    assert "delete transcript thread" in responder.replies[0]


@pytest.mark.anyio
async def test_lost_source_falls_back_to_monitored_channel(gateway) -> None:
    record = await _archive(gateway)
    del gateway.threads[THREAD]
    responder = FakeResponder()

    report = await Reopener(gateway).reopen(_request(record), responder)

    assert not report.source_resolved
    assert "could not be found" in gateway.contents(MONITORED)[-1]
    assert record.transcript_thread_id in gateway.deleted_threads
    assert "original thread could not be found" in responder.replies[0]


@pytest.mark.anyio
async def test_archive_then_reopen_then_archive_again(gateway) -> None:
    record = await _archive(gateway)
    await Reopener(gateway).reopen(_request(record), FakeResponder())

    settings = ArchiveSettings(monitored_channel_id=MONITORED, completion_channel_id=COMPLETION, pacing=0)
    detector = TriggerDetector(gateway, Archiver(gateway, sleep=no_sleep))
    again = await detector.handle(ReactionEvent("✅", BOB, MONITORED, THREAD, GUILD_ID), settings)

    assert again is not None
    assert again.anchor_message_id != record.anchor_message_id
    assert gateway.threads[THREAD].locked


@pytest.mark.anyio
async def test_reopen_removes_trigger_mark_from_starter(gateway) -> None:
    record = await _archive(gateway)
    assert gateway.reactions[THREAD] == {"📋"}

    report = await Reopener(gateway).reopen(_request(record), FakeResponder())

    assert gateway.reactions[THREAD] == set()
    assert [o.ok for o in report.outcomes if o.step == "remove trigger mark"] == [True]
    assert report.fully_reversed


@pytest.mark.anyio
async def test_reopen_removes_trigger_mark_inside_thread(gateway) -> None:
    gateway.add_message(MONITORED, "Ship it", ALICE, message_id=THREAD, thread_id=THREAD)
    gateway.add_thread(THREAD, "Ship release", MONITORED)
    inner = gateway.add_message(THREAD, "done", BOB)
    settings = ArchiveSettings(monitored_channel_id=MONITORED, completion_channel_id=COMPLETION, pacing=0)
    record = await Archiver(gateway, sleep=no_sleep).archive(inner, BOB, settings)
    token = gateway.controls[record.anchor_message_id]
    assert token.trigger_id == inner.id

    request = replace(_request(record), token=token)
    report = await Reopener(gateway).reopen(request, FakeResponder())

    assert gateway.reactions[inner.id] == set()
    assert report.fully_reversed


@pytest.mark.anyio
async def test_legacy_control_clears_starter_mark(gateway) -> None:
    record = await _archive(gateway)
    legacy = CompletionToken(ArchiveAction.REOPEN, THREAD, record.anchor_message_id)

    report = await Reopener(gateway).reopen(replace(_request(record), token=legacy), FakeResponder())

    assert gateway.reactions[THREAD] == set()
    assert report.fully_reversed


@pytest.mark.anyio
async def test_failed_mark_removal_is_reported(gateway) -> None:
    record = await _archive(gateway)
    gateway.failing.add("remove_reaction")
    responder = FakeResponder()

    report = await Reopener(gateway).reopen(_request(record), responder)

    assert not report.fully_reversed
    assert [o.step for o in report.failed] == ["remove trigger mark"]
    assert "remove trigger mark" in responder.replies[0]


@pytest.mark.anyio
async def test_sweep_continues_past_failed_delete(gateway) -> None:
    record = await _archive(gateway, post_summary=False)
    strays = []
    for title in ("first copy", "second copy"):
        embed = discord.Embed(title=title)
        embed.set_footer(text=footer_for(THREAD))
        strays.append(await gateway.send_message(COMPLETION, embed=embed))
    gateway.undeletable.add(strays[1])
    responder = FakeResponder()

    report = await Reopener(gateway).reopen(_request(record), responder)

    assert strays[0] in gateway.deleted_messages
    assert [m.id for m in gateway.channels[COMPLETION]] == [strays[1]]
    assert [o.step for o in report.failed] == [f"delete related message {strays[1]}"]
    assert not report.fully_reversed
    assert responder.replies[0].startswith("⚠️")


@pytest.mark.anyio
async def test_forum_post_skips_parent_notice(gateway) -> None:
    record = await _archive(gateway)
    gateway.threads[THREAD] = replace(gateway.threads[THREAD], in_forum=True)
    before = gateway.contents(MONITORED)

    report = await Reopener(gateway).reopen(_request(record), FakeResponder())

    assert "notify parent channel" not in [o.step for o in report.outcomes]
    assert gateway.contents(MONITORED) == before
    assert report.fully_reversed
