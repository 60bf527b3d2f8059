import heapq
import itertools

import pytest


class _FakeHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manual clock exposing the `call_later` surface of an asyncio loop."""

    def __init__(self):
        self.now = 0.0
        self._heap = []
        self._counter = itertools.count()

    def call_later(self, delay, callback, *args):
        handle = _FakeHandle(self.now + delay, callback, args)
        heapq.heappush(self._heap, (handle.when, next(self._counter), handle))
        return handle

    @property
    def pending(self):
        return [h for _, _, h in self._heap if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while self._heap and self._heap[0][0] <= target:
            when, _, handle = heapq.heappop(self._heap)
            self.now = when
            if not handle.cancelled:
                handle.callback(*handle.args)
        self.now = target


@pytest.fixture
def fake_loop():
    return FakeLoop()
