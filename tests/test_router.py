from livecaptions.subtitles.models import SessionPreferences
from livecaptions.subtitles.router import EventRouter, parse_event

PARTICIPANT = {"id": "p1", "name": "Alice", "avatar_url": "https://example.invalid/a.png"}


class _RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify_chunk(self, payload):
        self.calls.append(payload)


def _transcription(text="hel", language="en-US", is_interim=True, stability=0.9, message_id="u1"):
    return {
        "type": "transcription-result",
        "message_id": message_id,
        "participant": dict(PARTICIPANT),
        "language": language,
        "is_interim": is_interim,
        "stability": stability,
        "transcript": [{"text": text}],
    }


def _translation(text="hallo", language="de", message_id="u1"):
    return {
        "type": "translation-result",
        "message_id": message_id,
        "participant": dict(PARTICIPANT),
        "language": language,
        "text": text,
    }


def test_unsupported_type_is_dropped_without_notification():
    notifier = _RecordingNotifier()
    router = EventRouter(notifier=notifier)
    decision = router.route({"type": "chat-message", "text": "hi"}, SessionPreferences(target_language="en"))
    assert decision.forwarded is False
    assert decision.reason == "unsupported_type"
    assert notifier.calls == []


def test_malformed_events_are_dropped_with_reason():
    router = EventRouter()
    prefs = SessionPreferences(target_language="en")
    no_participant = _transcription()
    no_participant.pop("participant")
    assert router.route(no_participant, prefs).reason == "missing_participant"
    no_id = _transcription(message_id="")
    assert router.route(no_id, prefs).reason == "missing_message_id"
    no_text = _transcription()
    no_text["transcript"] = []
    assert router.route(no_text, prefs).reason == "missing_text"
    assert router.route(["not", "a", "dict"], prefs).reason == "not_an_object"


def test_transcription_matches_on_two_letter_prefix():
    router = EventRouter()
    decision = router.route(_transcription(language="en-US"), SessionPreferences(target_language="en"))
    assert decision.forwarded is True
    assert decision.display_language == "en"
    assert decision.event.utterance_id == "u1"
    assert decision.event.participant.avatar_url == "https://example.invalid/a.png"

    decision = router.route(_transcription(language="fr-FR"), SessionPreferences(target_language="en"))
    assert decision.forwarded is False
    assert decision.reason == "language_mismatch"


def test_translation_requires_exact_language():
    router = EventRouter()
    assert router.route(_translation(language="de"), SessionPreferences(target_language="de")).forwarded is True
    decision = router.route(_translation(language="de-AT"), SessionPreferences(target_language="de"))
    assert decision.forwarded is False
    assert decision.reason == "language_mismatch"


def test_missing_target_language_drops_everything():
    router = EventRouter()
    assert router.route(_transcription(), SessionPreferences()).reason == "no_target_language"
    assert router.route(_translation(), SessionPreferences()).reason == "no_target_language"


def test_notification_happens_even_when_language_filter_drops():
    notifier = _RecordingNotifier()
    router = EventRouter(notifier=notifier)
    decision = router.route(
        _transcription(text="bonjour", language="fr-FR", is_interim=False),
        SessionPreferences(target_language="en"),
    )
    assert decision.forwarded is False
    assert decision.notified is True
    assert notifier.calls == [
        {
            "messageID": "u1",
            "language": "fr-FR",
            "participant": {"id": "p1", "name": "Alice", "avatarUrl": "https://example.invalid/a.png"},
            "final": "bonjour",
        }
    ]


def test_notification_tier_follows_stability():
    notifier = _RecordingNotifier()
    router = EventRouter(notifier=notifier)
    prefs = SessionPreferences(target_language="en")
    router.route(_transcription(text="a", stability=0.9), prefs)
    router.route(_transcription(text="b", stability=0.3), prefs)
    assert notifier.calls[0]["stable"] == "a"
    assert notifier.calls[1]["unstable"] == "b"


def test_translations_are_not_notified():
    notifier = _RecordingNotifier()
    router = EventRouter(notifier=notifier)
    router.route(_translation(), SessionPreferences(target_language="de"))
    assert notifier.calls == []


def test_skip_interim_drops_and_suppresses_notification():
    notifier = _RecordingNotifier()
    router = EventRouter(notifier=notifier, skip_interim_results=True)
    prefs = SessionPreferences(target_language="en")

    decision = router.route(_transcription(is_interim=True), prefs)
    assert decision.forwarded is False
    assert decision.reason == "interim_skipped"
    assert notifier.calls == []

    decision = router.route(_transcription(text="hello", is_interim=False), prefs)
    assert decision.forwarded is True
    assert notifier.calls[-1]["final"] == "hello"


def test_parse_event_tolerates_bad_stability():
    payload = _transcription()
    payload["stability"] = "n/a"
    event, reason = parse_event(payload)
    assert reason == ""
    assert event.stability == 0.0


def test_string_flags_are_not_truthy_by_accident():
    router = EventRouter()
    prefs = SessionPreferences(target_language="en")
    payload = _transcription(text="hello")
    payload["is_interim"] = "false"
    assert router.route(payload, prefs).event.is_interim is False

    payload["is_interim"] = "true"
    assert router.route(payload, prefs).event.is_interim is True

    payload["is_interim"] = "maybe"
    assert router.route(payload, prefs).event.is_interim is False

    payload.pop("is_interim")
    assert router.route(payload, prefs).event.is_interim is False
