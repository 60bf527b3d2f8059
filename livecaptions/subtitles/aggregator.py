# coding=utf-8
from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .expiry import ExpiryScheduler
from .merge import merge
from .models import REMOVE_AFTER_MS, FinalPolicy, SessionPreferences, Utterance
from .router import ChunkNotifier, EventRouter, RouteDecision
from .store import UtteranceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateUtterance:
    utterance_id: str
    record: Utterance


@dataclass(frozen=True)
class RemoveUtterance:
    utterance_id: str
    reason: str = "expired"


CaptionAction = Union[UpdateUtterance, RemoveUtterance]
ActionListener = Callable[[CaptionAction], None]


class CaptionAggregator:
    """
    Single-threaded caption pipeline: route -> merge -> store -> expiry.

    Every mutation of the store goes through `dispatch`, including removals
    requested by expiry timers, so updates and removals for one id are
    applied strictly in the order they were dispatched.
    """

    def __init__(
        self,
        notifier: Optional[ChunkNotifier] = None,
        skip_interim_results: bool = False,
        final_policy: Union[FinalPolicy, str] = FinalPolicy.OVERWRITE,
        remove_after_ms: float = REMOVE_AFTER_MS,
        loop: Optional[Any] = None,
        trace_log: bool = False,
    ) -> None:
        self.router = EventRouter(notifier=notifier, skip_interim_results=skip_interim_results)
        self.final_policy = FinalPolicy.parse(final_policy)
        self.store = UtteranceStore()
        self.scheduler = ExpiryScheduler(self._on_expire, quiet_window_ms=remove_after_ms, loop=loop)
        self.trace_log = bool(trace_log)
        self.stats: Counter = Counter()
        self._listeners: List[ActionListener] = []
        self._trace_seq = 0
        self._closed = False

    def add_listener(self, listener: ActionListener) -> None:
        self._listeners.append(listener)

    def handle_message(self, payload: Any, prefs: SessionPreferences) -> RouteDecision:
        self.stats["received"] += 1
        decision = self.router.route(payload, prefs)
        if decision.notified:
            self.stats["notified"] += 1
        if not decision.forwarded or decision.event is None:
            self.stats["dropped"] += 1
            self.stats[f"dropped_{decision.reason}"] += 1
            logger.debug("caption event dropped reason=%s", decision.reason)
            return decision

        self.stats["forwarded"] += 1
        event = decision.event
        record = merge(
            self.store.get(event.utterance_id),
            event,
            display_language=decision.display_language,
            final_policy=self.final_policy,
        )
        self.dispatch(UpdateUtterance(event.utterance_id, record))
        return decision

    def remove(self, utterance_id: str, reason: str = "requested") -> None:
        self.dispatch(RemoveUtterance(utterance_id, reason=reason))

    def dispatch(self, action: CaptionAction) -> None:
        if self._closed:
            return
        if isinstance(action, UpdateUtterance):
            if not str(action.utterance_id or "").strip():
                raise ValueError("utterance_id is required")
            # Arm first: a record must never sit in the store without a timer.
            self.scheduler.touch(action.utterance_id)
            self.store.upsert(action.utterance_id, action.record)
            self.stats["updates"] += 1
            self._trace("utterance_update", action.utterance_id, record=action.record)
        elif isinstance(action, RemoveUtterance):
            self.scheduler.cancel(action.utterance_id)
            if not self.store.remove(action.utterance_id):
                return
            self.stats["removals"] += 1
            self._trace("utterance_remove", action.utterance_id, reason=action.reason)
        else:
            raise TypeError(f"unsupported caption action: {type(action).__name__}")

        for listener in list(self._listeners):
            listener(action)

    def snapshot(self) -> List[Dict[str, object]]:
        return self.store.snapshot()

    def close(self) -> int:
        self._closed = True
        return self.scheduler.cancel_all()

    def _on_expire(self, utterance_id: str) -> None:
        self.dispatch(RemoveUtterance(utterance_id, reason="expired"))

    def _trace(
        self,
        event: str,
        utterance_id: str,
        *,
        record: Optional[Utterance] = None,
        reason: str = "",
    ) -> None:
        if not self.trace_log:
            return
        self._trace_seq += 1
        tier = record.tier if record is not None else None
        row: Dict[str, Any] = {
            "topic": "caption_state",
            "event": event,
            "utterance_id": utterance_id,
            "seq": self._trace_seq,
            "ts_ms": int(time.time() * 1000),
            "tier": tier.value if tier is not None else "",
            "text_chars": len(record.text) if record is not None else 0,
            "language": (record.language or "") if record is not None else "",
            "reason": reason,
            "live": len(self.store),
        }
        try:
            logger.info("caption_trace %s", json.dumps(row, ensure_ascii=False, separators=(",", ":")))
        except (TypeError, ValueError):
            logger.info("caption_trace %s", row)
