import asyncio
import logging

import pytest

from livecaptions.subtitles.aggregator import CaptionAggregator, RemoveUtterance, UpdateUtterance
from livecaptions.subtitles.models import SessionPreferences

P = {"id": "p1", "name": "Alice", "avatar_url": None}
EN = SessionPreferences(requesting_captions=True, target_language="en")


def _transcription(message_id, text, is_interim=False, stability=0.0, language="en-US"):
    return {
        "type": "transcription-result",
        "message_id": message_id,
        "participant": P,
        "language": language,
        "is_interim": is_interim,
        "stability": stability,
        "transcript": [{"text": text}],
    }


@pytest.fixture
def pipeline(fake_loop):
    agg = CaptionAggregator(loop=fake_loop)
    actions = []
    agg.add_listener(actions.append)
    return agg, actions


def test_interim_final_expiry_scenario(pipeline, fake_loop):
    agg, actions = pipeline

    agg.handle_message(_transcription("u1", "hel", is_interim=True, stability=0.9), EN)
    record = agg.store.get("u1")
    assert record.stable == "hel"
    assert record.language == "en"
    assert record.unstable is None
    assert record.final is None

    fake_loop.advance(1.0)
    agg.handle_message(_transcription("u1", "hello"), EN)
    record = agg.store.get("u1")
    assert record.final == "hello"
    assert record.stable is None
    assert record.unstable is None

    fake_loop.advance(2.9)
    assert "u1" in agg.store
    fake_loop.advance(0.2)
    assert "u1" not in agg.store

    removals = [a for a in actions if isinstance(a, RemoveUtterance)]
    assert removals == [RemoveUtterance("u1", reason="expired")]
    fake_loop.advance(10.0)
    assert len([a for a in actions if isinstance(a, RemoveUtterance)]) == 1


def test_every_update_arms_a_timer(pipeline, fake_loop):
    agg, actions = pipeline
    for uid in ("a", "b", "c"):
        agg.handle_message(_transcription(uid, uid.upper()), EN)
        assert agg.scheduler.has_timer(uid)
    assert agg.scheduler.active_count == 3
    assert [a.utterance_id for a in actions if isinstance(a, UpdateUtterance)] == ["a", "b", "c"]


def test_finals_for_distinct_ids_keep_latest_text(pipeline):
    agg, _ = pipeline
    events = [("a", "one"), ("b", "two"), ("a", "uno"), ("c", "three"), ("b", "dos")]
    for uid, text in events:
        agg.handle_message(_transcription(uid, text), EN)
    assert agg.store.get("a").final == "uno"
    assert agg.store.get("b").final == "dos"
    assert agg.store.get("c").final == "three"


def test_translation_with_other_language_causes_no_mutation(pipeline):
    agg, actions = pipeline
    prefs = SessionPreferences(requesting_captions=True, target_language="de")
    decision = agg.handle_message(
        {"type": "translation-result", "message_id": "t1", "participant": P, "language": "fr", "text": "salut"},
        prefs,
    )
    assert decision.forwarded is False
    assert len(agg.store) == 0
    assert actions == []
    assert agg.scheduler.active_count == 0
    assert agg.stats["dropped_language_mismatch"] == 1


def test_translation_substitutes_target_language(pipeline):
    agg, _ = pipeline
    prefs = SessionPreferences(requesting_captions=True, target_language="de")
    agg.handle_message(
        {"type": "translation-result", "message_id": "t1", "participant": P, "language": "de", "text": "hallo"},
        prefs,
    )
    record = agg.store.get("t1")
    assert record.final == "hallo"
    assert record.language == "de"


def test_explicit_remove_cancels_timer(pipeline, fake_loop):
    agg, actions = pipeline
    agg.handle_message(_transcription("u1", "hi"), EN)
    agg.remove("u1")
    assert agg.scheduler.active_count == 0
    fake_loop.advance(5.0)
    assert [a for a in actions if isinstance(a, RemoveUtterance)] == [RemoveUtterance("u1", reason="requested")]


def test_remove_unknown_id_emits_nothing(pipeline):
    agg, actions = pipeline
    agg.remove("ghost")
    assert actions == []


def test_keep_final_policy(fake_loop):
    agg = CaptionAggregator(loop=fake_loop, final_policy="keep")
    agg.handle_message(_transcription("u1", "hello"), EN)
    agg.handle_message(_transcription("u1", "hello w", is_interim=True, stability=0.2), EN)
    assert agg.store.get("u1").final == "hello"
    assert agg.store.get("u1").unstable is None


def test_unknown_final_policy_is_rejected():
    with pytest.raises(ValueError, match="final policy"):
        CaptionAggregator(final_policy="sometimes")


def test_close_cancels_timers_and_ignores_late_actions(pipeline, fake_loop):
    agg, actions = pipeline
    agg.handle_message(_transcription("u1", "hi"), EN)
    assert agg.close() == 1
    fake_loop.advance(5.0)
    agg.handle_message(_transcription("u2", "late"), EN)
    assert len(actions) == 1
    assert "u2" not in agg.store


def test_trace_log_emits_caption_trace_rows(fake_loop, caplog):
    agg = CaptionAggregator(loop=fake_loop, trace_log=True)
    with caplog.at_level(logging.INFO, logger="livecaptions.subtitles.aggregator"):
        agg.handle_message(_transcription("u1", "hi"), EN)
        fake_loop.advance(3.5)
    messages = [r.getMessage() for r in caplog.records if r.getMessage().startswith("caption_trace")]
    assert len(messages) == 2
    assert '"event":"utterance_update"' in messages[0]
    assert '"tier":"final"' in messages[0]
    assert '"reason":"expired"' in messages[1]


def test_update_without_event_loop_leaves_store_untouched():
    agg = CaptionAggregator()
    actions = []
    agg.add_listener(actions.append)
    with pytest.raises(RuntimeError):
        agg.handle_message(_transcription("u1", "hi"), EN)
    assert "u1" not in agg.store
    assert agg.scheduler.active_count == 0
    assert actions == []


def test_update_with_empty_id_arms_no_timer(fake_loop):
    agg = CaptionAggregator(loop=fake_loop)
    with pytest.raises(ValueError, match="utterance_id"):
        agg.dispatch(UpdateUtterance(" ", None))
    assert agg.scheduler.active_count == 0
    assert len(agg.store) == 0


def test_update_inside_running_loop_expires_on_its_own():
    async def _run():
        agg = CaptionAggregator(remove_after_ms=20)
        actions = []
        agg.add_listener(actions.append)
        agg.handle_message(_transcription("u1", "hi"), EN)
        assert agg.scheduler.has_timer("u1")
        await asyncio.sleep(0.2)
        return agg, actions

    agg, actions = asyncio.run(_run())
    assert "u1" not in agg.store
    assert actions[-1] == RemoveUtterance("u1", reason="expired")
