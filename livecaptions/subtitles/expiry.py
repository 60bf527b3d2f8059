# coding=utf-8
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from .models import REMOVE_AFTER_MS

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """
    Per-utterance quiet-window timers. Owns the id -> timer handle mapping;
    on expiry it only reports the id, removal itself is up to `on_expire`.
    """

    def __init__(
        self,
        on_expire: Callable[[str], None],
        quiet_window_ms: float = REMOVE_AFTER_MS,
        loop: Optional[Any] = None,
    ) -> None:
        if float(quiet_window_ms) <= 0:
            raise ValueError("quiet_window_ms must be positive")
        self.quiet_window_ms = float(quiet_window_ms)
        self._on_expire = on_expire
        self._loop = loop
        self._handles: Dict[str, Any] = {}

    @property
    def active_count(self) -> int:
        return len(self._handles)

    def has_timer(self, utterance_id: str) -> bool:
        return utterance_id in self._handles

    def touch(self, utterance_id: str) -> None:
        # Resolve the loop before dropping the previous timer.
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        self.cancel(utterance_id)
        self._handles[utterance_id] = loop.call_later(
            self.quiet_window_ms / 1000.0,
            self._fire,
            utterance_id,
        )

    def cancel(self, utterance_id: str) -> bool:
        handle = self._handles.pop(utterance_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        count = 0
        for uid in list(self._handles):
            if self.cancel(uid):
                count += 1
        return count

    def _fire(self, utterance_id: str) -> None:
        self._handles.pop(utterance_id, None)
        logger.debug("utterance expired id=%s window_ms=%.0f", utterance_id, self.quiet_window_ms)
        self._on_expire(utterance_id)
