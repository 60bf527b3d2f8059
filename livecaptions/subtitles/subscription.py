# coding=utf-8
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from .models import SessionPreferences

logger = logging.getLogger(__name__)

# Local participant property telling the backend whether a transcriber is wanted.
P_NAME_REQUESTING_TRANSCRIPTION = "requestingTranscription"
# Local participant property holding the translation language preference.
P_NAME_TRANSLATION_LANGUAGE = "translation_language"
TRANSLATION_LANGUAGE_PREFIX = "translation-languages:"


class SessionCollaborator(Protocol):
    def get_target_language(self) -> Optional[str]:
        ...

    def set_requesting_transcription(self, enabled: bool) -> None:
        ...

    def set_translation_language(self, language: str) -> None:
        ...


class LocalSession:
    """
    In-process conferencing session keeping local participant properties.
    """

    def __init__(self) -> None:
        self.properties: Dict[str, Any] = {}

    def get_target_language(self) -> Optional[str]:
        value = self.properties.get(P_NAME_TRANSLATION_LANGUAGE)
        return str(value) if value else None

    def set_requesting_transcription(self, enabled: bool) -> None:
        self.properties[P_NAME_REQUESTING_TRANSCRIPTION] = bool(enabled)

    def set_translation_language(self, language: str) -> None:
        self.properties[P_NAME_TRANSLATION_LANGUAGE] = str(language)


def normalize_language(raw: Any) -> str:
    return str(raw or "").strip().replace(TRANSLATION_LANGUAGE_PREFIX, "")


class SubscriptionController:
    def __init__(
        self,
        session: Optional[SessionCollaborator] = None,
        preferences: Optional[SessionPreferences] = None,
    ) -> None:
        self.session = session
        self.preferences = preferences if preferences is not None else SessionPreferences()

    def sync_from_session(self) -> SessionPreferences:
        if self.session is not None:
            language = self.session.get_target_language()
            if language:
                self.preferences.target_language = language
        return self.preferences

    def set_requesting(self, enabled: bool, language: Optional[str] = None) -> SessionPreferences:
        prefs = self.preferences
        prefs.requesting_captions = bool(enabled)
        if language is not None:
            prefs.requested_language = language
        if self.session is not None:
            self.session.set_requesting_transcription(prefs.requesting_captions)

        if enabled and language:
            target = normalize_language(language)
            prefs.target_language = target
            if self.session is not None:
                self.session.set_translation_language(target)

        logger.info(
            "requesting captions=%s target_language=%s",
            prefs.requesting_captions,
            prefs.target_language or "",
        )
        return prefs

    def toggle_requesting(self) -> SessionPreferences:
        prefs = self.preferences
        return self.set_requesting(not prefs.requesting_captions, prefs.requested_language)
