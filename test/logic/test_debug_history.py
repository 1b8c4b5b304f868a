import asyncio
import time

import pytest

from fixturetest.meas import DebugHistory


class TestDebugHistory:
    def test_navigation(self):
        history = DebugHistory()
        assert history.current() is None
        assert history.snapshot() == (0, 0, "")
        for text in ("a", "b", "c"):
            history.add(text)
        assert history.snapshot() == (3, 3, "c")
        assert history.prev() == "b"
        assert history.prev() == "a"
        assert history.prev() == "a"
        assert history.next() == "b"
        history.add("d")
        assert history.snapshot() == (4, 4, "d")
        assert history.next() == "d"

    def test_clear(self):
        history = DebugHistory()
        history.add("a")
        history.pause()
        history.clear()
        assert len(history) == 0
        assert history.index == -1
        assert not history.paused

    @pytest.mark.asyncio
    async def test_delay_runs_out(self):
        history = DebugHistory(step=0.005)
        assert await history.debug_delay(0.02) is False

    @pytest.mark.asyncio
    async def test_pause_holds_delay(self):
        history = DebugHistory(step=0.005)
        assert history.toggle_pause() is True
        task = asyncio.create_task(history.debug_delay(0.01))
        await asyncio.sleep(0.05)
        assert not task.done()
        history.resume()
        assert await task is False

    @pytest.mark.asyncio
    async def test_cancel_while_paused(self):
        history = DebugHistory(step=0.005)
        cancel = asyncio.Event()
        history.pause()
        task = asyncio.create_task(history.debug_delay(10.0, cancel))
        await asyncio.sleep(0.02)
        start = time.monotonic()
        cancel.set()
        assert await task is True
        assert time.monotonic() - start < 1.0
