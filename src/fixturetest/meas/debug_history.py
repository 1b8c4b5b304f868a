"""Slow/step mode support: snapshot history, pause and navigation.

In slow mode the workflow records a text snapshot after each adjacency
sub-test and then waits a few seconds so an operator can read it. The wait can
be paused indefinitely and the operator can step back and forth through the
recorded snapshots. None of this affects classification.
"""

from __future__ import annotations

import asyncio
from typing import Optional

STEP = 0.1  # seconds


class DebugHistory:
    def __init__(self, step: float = STEP):
        self.step = step
        self._entries: list[str] = []
        self._index = -1
        self._paused = False

    def __len__(self):
        return len(self._entries)

    @property
    def index(self) -> int:
        """Zero-based position of the snapshot on display, -1 when empty."""
        return self._index

    def add(self, text: str):
        """Append a snapshot and jump to it."""
        self._entries.append(text)
        self._index = len(self._entries) - 1

    def current(self) -> Optional[str]:
        if self._index < 0:
            return None
        return self._entries[self._index]

    def prev(self) -> Optional[str]:
        if self._index > 0:
            self._index -= 1
        return self.current()

    def next(self) -> Optional[str]:
        if self._index < len(self._entries) - 1:
            self._index += 1
        return self.current()

    def clear(self):
        self._entries.clear()
        self._index = -1
        self._paused = False

    def snapshot(self) -> tuple[int, int, str]:
        """``(position, total, text)`` with a 1-based position, 0 when empty."""
        return self._index + 1, len(self._entries), self.current() or ""

    # ------------------------------------------------------------------
    # pause
    # ------------------------------------------------------------------

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self):
        self._paused = True

    def resume(self):
        self._paused = False

    def toggle_pause(self) -> bool:
        self._paused = not self._paused
        return self._paused

    async def wait_if_paused(self, cancel: Optional[asyncio.Event] = None) -> bool:
        """Block while paused. Returns True if cancelled meanwhile."""
        while self._paused:
            if cancel is not None and cancel.is_set():
                return True
            await asyncio.sleep(self.step)
        return cancel is not None and cancel.is_set()

    async def debug_delay(
        self, seconds: float, cancel: Optional[asyncio.Event] = None
    ) -> bool:
        """Wait ``seconds`` of unpaused time. Returns True if cancelled."""
        elapsed = 0.0
        while elapsed < seconds:
            if await self.wait_if_paused(cancel):
                return True
            await asyncio.sleep(self.step)
            elapsed += self.step
        return cancel is not None and cancel.is_set()
