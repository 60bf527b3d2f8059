# coding=utf-8
from __future__ import annotations

from typing import Dict, List, Optional

from .models import Utterance


class UtteranceStore:
    """
    Current display state, one record per utterance id.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Utterance] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, utterance_id: object) -> bool:
        return utterance_id in self._entries

    def upsert(self, utterance_id: str, record: Utterance) -> None:
        uid = str(utterance_id or "").strip()
        if not uid:
            raise ValueError("utterance_id is required")
        self._entries[uid] = record

    def get(self, utterance_id: str) -> Optional[Utterance]:
        return self._entries.get(str(utterance_id or "").strip())

    def remove(self, utterance_id: str) -> bool:
        return self._entries.pop(str(utterance_id or "").strip(), None) is not None

    def ids(self) -> List[str]:
        return list(self._entries)

    def snapshot(self) -> List[Dict[str, object]]:
        return [record.to_dict() for record in self._entries.values()]
