import time

import pytest

from fixturetest.device import ConnectResult, MockFixture
from fixturetest.meas import BatchReader
from fixturetest.system import mock_system
from fixturetest.types import ARDUINO, STM32, ReadState

POLL = 0.002


async def connected_system(fixture):
    system = mock_system(fixture)
    assert (await system.connect_arduino())[0] == ConnectResult.SUCCESS
    assert (await system.connect_stm32(exclude={"MOCK0"}))[0] == ConnectResult.SUCCESS
    return system


def reader_for(system, **kwargs):
    return BatchReader(
        system.store, system.arduino, system.stm32, poll_interval=POLL, **kwargs
    )


class TestBatchReader:
    @pytest.mark.asyncio
    async def test_idle_batch_fills_both_links(self):
        system = await connected_system(MockFixture())
        highlights = []
        reader = reader_for(system, on_highlight=lambda ch, s: highlights.append((ch, s)))
        result = await reader.read_batch(range(18), ReadState.IDLE, 2, 20)
        assert result.complete
        for ch in range(18):
            assert system.store.first_value(ARDUINO, ReadState.IDLE, ch) == 800
            assert system.store.first_value(STM32, ReadState.IDLE, ch) == 20
        assert highlights[0] == (0, "idle")
        assert highlights[-1] == (None, "")

    @pytest.mark.asyncio
    async def test_silent_device_terminates_within_bound(self):
        fixture = MockFixture(silent_stm32={4})
        system = await connected_system(fixture)
        reader = reader_for(system)
        retries, wait_ms = 3, 20
        start = time.monotonic()
        result = await reader.read_batch([3, 4, 5], ReadState.IDLE, retries, wait_ms)
        elapsed = time.monotonic() - start

        assert result.missing == {STM32: [4]}
        assert result.missing_channels() == [4]
        assert not result.complete
        # the Arduino side of the silent channel still arrived
        assert system.store.count(ARDUINO, ReadState.IDLE, 4) == 1
        # phase 1 plus phase 2 polls, with generous slack for scheduling
        bound = (3 + retries) * reader.polls_for(wait_ms) * POLL
        assert elapsed < bound * 5 + 0.5
        # one phase 1 read plus every retry went to the STM32
        reads = [f for f in system.stm32.frames if f.is_read_reply and f.channel == 4]
        assert len(reads) == 1 + retries

    @pytest.mark.asyncio
    async def test_disconnected_device_not_asked(self):
        system = await connected_system(MockFixture())
        system.stm32.close()
        reader = reader_for(system)
        result = await reader.read_batch([0, 1], ReadState.IDLE, 2, 10)
        assert result.complete
        assert system.store.count(STM32, ReadState.IDLE, 0) == 0
        assert system.store.count(ARDUINO, ReadState.IDLE, 0) == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_batch(self):
        system = await connected_system(MockFixture())
        reader = reader_for(system)
        reader.cancel.set()
        result = await reader.read_batch(range(18), ReadState.IDLE, 2, 10)
        assert result.cancelled
        assert not result.complete
        assert system.store.count(ARDUINO, ReadState.IDLE, 0) == 0

    @pytest.mark.asyncio
    async def test_read_running(self):
        fixture = MockFixture()
        system = await connected_system(fixture)
        fixture.gpio_on.add(7)
        arrived = await reader_for(system).read_running(7)
        assert arrived == {ARDUINO, STM32}
        assert system.store.latest_value(ARDUINO, ReadState.RUNNING, 7) == 40
        assert system.store.latest_value(STM32, ReadState.RUNNING, 7) == 340

    @pytest.mark.asyncio
    async def test_pause_returns_on_cancel(self):
        system = await connected_system(MockFixture())
        reader = reader_for(system)
        assert await reader.pause(0.01) is False
        reader.cancel.set()
        start = time.monotonic()
        assert await reader.pause(5.0) is True
        assert time.monotonic() - start < 1.0
