# coding=utf-8
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from .merge import classify_tier
from .models import (
    JSON_TYPE_TRANSCRIPTION_RESULT,
    JSON_TYPE_TRANSLATION_RESULT,
    CaptionEvent,
    Participant,
    SessionPreferences,
    coerce_bool,
)

logger = logging.getLogger(__name__)

FORWARD = "forward"
DROP = "drop"


class ChunkNotifier(Protocol):
    def notify_chunk(self, payload: Dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class RouteDecision:
    action: str
    reason: str
    event: Optional[CaptionEvent] = None
    display_language: Optional[str] = None
    notified: bool = False

    @property
    def forwarded(self) -> bool:
        return self.action == FORWARD


def _transcript_text(payload: Mapping[str, Any]) -> Optional[str]:
    transcript = payload.get("transcript")
    if not isinstance(transcript, (list, tuple)) or not transcript:
        return None
    first = transcript[0]
    if not isinstance(first, Mapping) or first.get("text") is None:
        return None
    return str(first.get("text"))


def parse_event(payload: Any) -> tuple[Optional[CaptionEvent], str]:
    if not isinstance(payload, Mapping):
        return None, "not_an_object"
    kind = str(payload.get("type", "") or "")
    if kind not in {JSON_TYPE_TRANSCRIPTION_RESULT, JSON_TYPE_TRANSLATION_RESULT}:
        return None, "unsupported_type"

    utterance_id = str(payload.get("message_id", "") or "").strip()
    if not utterance_id:
        return None, "missing_message_id"
    participant = Participant.from_payload(payload.get("participant"))
    if participant is None:
        return None, "missing_participant"

    if kind == JSON_TYPE_TRANSLATION_RESULT:
        text = payload.get("text")
        text = None if text is None else str(text)
    else:
        text = _transcript_text(payload)
    if text is None:
        return None, "missing_text"

    try:
        stability = float(payload.get("stability", 0.0) or 0.0)
    except (TypeError, ValueError):
        stability = 0.0

    return (
        CaptionEvent(
            kind=kind,
            utterance_id=utterance_id,
            participant=participant,
            language=str(payload.get("language", "") or ""),
            text=text,
            is_interim=coerce_bool(payload.get("is_interim"), False),
            stability=stability,
        ),
        "",
    )


def chunk_payload(event: CaptionEvent) -> Dict[str, Any]:
    tier = classify_tier(event.is_interim, event.stability)
    return {
        "messageID": event.utterance_id,
        "language": event.language,
        "participant": event.participant.to_dict(),
        tier.value: event.text,
    }


class EventRouter:
    """
    Decide whether an inbound endpoint message reaches the merge step.
    """

    def __init__(
        self,
        notifier: Optional[ChunkNotifier] = None,
        skip_interim_results: bool = False,
    ) -> None:
        self.notifier = notifier
        self.skip_interim_results = bool(skip_interim_results)

    def route(self, payload: Any, prefs: SessionPreferences) -> RouteDecision:
        event, reason = parse_event(payload)
        if event is None:
            return RouteDecision(action=DROP, reason=reason)

        target = str(prefs.target_language or "")

        if event.is_translation:
            if not target:
                return RouteDecision(action=DROP, reason="no_target_language", event=event)
            if event.language != target:
                return RouteDecision(action=DROP, reason="language_mismatch", event=event)
            return RouteDecision(action=FORWARD, reason="translation", event=event, display_language=target)

        skipped_interim = event.is_interim and self.skip_interim_results
        notified = False
        if self.notifier is not None and not skipped_interim:
            self.notifier.notify_chunk(chunk_payload(event))
            notified = True

        if not target:
            return RouteDecision(action=DROP, reason="no_target_language", event=event, notified=notified)
        if event.language[:2] != target[:2]:
            return RouteDecision(action=DROP, reason="language_mismatch", event=event, notified=notified)
        if skipped_interim:
            return RouteDecision(action=DROP, reason="interim_skipped", event=event, notified=notified)
        return RouteDecision(
            action=FORWARD,
            reason="transcription",
            event=event,
            display_language=target,
            notified=notified,
        )
