# coding=utf-8
from __future__ import annotations

from dataclasses import replace
from typing import Optional

from .models import (
    STABLE_TRANSCRIPTION_FACTOR,
    CaptionEvent,
    FinalPolicy,
    Tier,
    Utterance,
)


def classify_tier(is_interim: bool, stability: float) -> Tier:
    if not is_interim:
        return Tier.FINAL
    if float(stability or 0.0) > STABLE_TRANSCRIPTION_FACTOR:
        return Tier.STABLE
    return Tier.UNSTABLE


def event_tier(event: CaptionEvent) -> Tier:
    # Translations are only ever delivered as authoritative results.
    if event.is_translation:
        return Tier.FINAL
    return classify_tier(event.is_interim, event.stability)


def merge(
    existing: Optional[Utterance],
    event: CaptionEvent,
    *,
    display_language: Optional[str],
    final_policy: FinalPolicy = FinalPolicy.OVERWRITE,
) -> Utterance:
    """
    Build the complete record that replaces `existing` for `event.utterance_id`.
    """
    tier = event_tier(event)

    if (
        final_policy is FinalPolicy.KEEP
        and existing is not None
        and existing.final is not None
        and tier is not Tier.FINAL
    ):
        return replace(existing, participant=event.participant)

    fields = {t.value: None for t in Tier}
    fields[tier.value] = event.text
    return Utterance(
        utterance_id=event.utterance_id,
        participant=event.participant,
        language=display_language,
        **fields,
    )
