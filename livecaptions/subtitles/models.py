# coding=utf-8
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

JSON_TYPE_TRANSCRIPTION_RESULT = "transcription-result"
JSON_TYPE_TRANSLATION_RESULT = "translation-result"

# Treat an interim transcript as stable beyond this value.
STABLE_TRANSCRIPTION_FACTOR = 0.85
REMOVE_AFTER_MS = 3000


class Tier(str, enum.Enum):
    FINAL = "final"
    STABLE = "stable"
    UNSTABLE = "unstable"


def coerce_bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower() if isinstance(raw, str) else ""
    if text == "true":
        return True
    if text == "false":
        return False
    return default


class FinalPolicy(str, enum.Enum):
    OVERWRITE = "overwrite"
    KEEP = "keep"

    @classmethod
    def parse(cls, raw: Any) -> "FinalPolicy":
        if isinstance(raw, cls):
            return raw
        text = str(raw or "").strip().lower()
        for policy in cls:
            if policy.value == text:
                return policy
        raise ValueError(f"unknown final policy: {raw!r}")


@dataclass(frozen=True)
class Participant:
    id: str
    name: str = ""
    avatar_url: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["Participant"]:
        if not isinstance(raw, Mapping):
            return None
        pid = str(raw.get("id", "") or "").strip()
        if not pid:
            return None
        avatar = raw.get("avatar_url")
        return cls(
            id=pid,
            name=str(raw.get("name", "") or ""),
            avatar_url=str(avatar) if avatar else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "avatarUrl": self.avatar_url}


@dataclass(frozen=True)
class CaptionEvent:
    """
    One parsed inbound transcription or translation result.
    """

    kind: str
    utterance_id: str
    participant: Participant
    language: str
    text: str
    is_interim: bool = False
    stability: float = 0.0

    @property
    def is_translation(self) -> bool:
        return self.kind == JSON_TYPE_TRANSLATION_RESULT


@dataclass(frozen=True)
class Utterance:
    utterance_id: str
    participant: Participant
    final: Optional[str] = None
    stable: Optional[str] = None
    unstable: Optional[str] = None
    language: Optional[str] = None

    @property
    def tier(self) -> Optional[Tier]:
        if self.final is not None:
            return Tier.FINAL
        if self.stable is not None:
            return Tier.STABLE
        if self.unstable is not None:
            return Tier.UNSTABLE
        return None

    @property
    def text(self) -> str:
        for value in (self.final, self.stable, self.unstable):
            if value is not None:
                return value
        return ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "utterance_id": self.utterance_id,
            "participant": self.participant.to_dict(),
        }
        for tier in Tier:
            value = getattr(self, tier.value)
            if value is not None:
                out[tier.value] = value
        if self.language is not None:
            out["language"] = self.language
        return out


@dataclass
class SessionPreferences:
    requesting_captions: bool = False
    target_language: Optional[str] = None
    requested_language: Optional[str] = None
