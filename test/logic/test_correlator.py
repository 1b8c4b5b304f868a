import asyncio
import time

import pytest

from fixturetest.meas import Correlator
from fixturetest.protocol import (
    CLOSE_ALL_PAYLOAD,
    OP_GPIO_ON,
    FrameDecoder,
    gpio_payload,
    read_payload,
)
from fixturetest.protocol.codec import payload_expectation


class FakeLink:
    """Records frames and answers the n-th one with a confirmation."""

    def __init__(self, confirm_on=None, connected=True):
        self.frames = []
        self.confirm_on = confirm_on
        self.connected = connected
        self.correlator = None

    def send_frame(self, frame: bytes) -> bool:
        self.frames.append(frame)
        if self.confirm_on is not None and len(self.frames) == self.confirm_on:
            (decoded,) = FrameDecoder().feed(frame)
            payload = (decoded.command, *decoded.data)
            asyncio.get_running_loop().call_soon(
                self.correlator.confirm, *payload_expectation(payload)
            )
        return True

    def is_connected(self) -> bool:
        return self.connected


def make_correlator(link: FakeLink) -> Correlator:
    link.correlator = Correlator(link.send_frame, link.is_connected)
    return link.correlator


class TestCorrelator:
    @pytest.mark.asyncio
    async def test_confirmed_on_second_send(self):
        link = FakeLink(confirm_on=2)
        correlator = make_correlator(link)
        ok = await correlator.send_and_await(
            gpio_payload(OP_GPIO_ON, [3]), retry_interval=0.05, max_retries=5
        )
        assert ok is True
        assert len(link.frames) == 2
        assert correlator.frames_sent == 2
        assert correlator.pending is None

    @pytest.mark.asyncio
    async def test_timeout_after_all_sends(self):
        link = FakeLink()
        correlator = make_correlator(link)
        ok = await correlator.send_and_await(
            CLOSE_ALL_PAYLOAD, retry_interval=0.01, max_retries=3
        )
        assert ok is False
        assert len(link.frames) == 3
        assert correlator.pending is None

    @pytest.mark.asyncio
    async def test_mismatched_confirmation_ignored(self):
        link = FakeLink()
        correlator = make_correlator(link)
        task = asyncio.create_task(
            correlator.send_and_await(
                gpio_payload(OP_GPIO_ON, [3]), retry_interval=0.02, max_retries=2
            )
        )
        await asyncio.sleep(0)
        correlator.confirm(*payload_expectation(gpio_payload(OP_GPIO_ON, [4])))
        assert await task is False

    @pytest.mark.asyncio
    async def test_invalidate_fails_wait_immediately(self):
        link = FakeLink()
        correlator = make_correlator(link)
        start = time.monotonic()
        task = asyncio.create_task(
            correlator.send_and_await(
                gpio_payload(OP_GPIO_ON, [1]), retry_interval=1.0, max_retries=5
            )
        )
        await asyncio.sleep(0.01)
        correlator.invalidate()
        assert await task is False
        assert time.monotonic() - start < 1.0
        assert len(link.frames) == 1

    @pytest.mark.asyncio
    async def test_second_pending_raises(self):
        link = FakeLink()
        correlator = make_correlator(link)
        first = asyncio.create_task(
            correlator.send_and_await(
                gpio_payload(OP_GPIO_ON, [1]), retry_interval=1.0, max_retries=1
            )
        )
        await asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            await correlator.send_and_await(gpio_payload(OP_GPIO_ON, [2]))
        correlator.invalidate()
        assert await first is False

    @pytest.mark.asyncio
    async def test_non_confirmable_sent_once(self):
        link = FakeLink()
        correlator = make_correlator(link)
        assert await correlator.send_and_await(read_payload(7)) is True
        assert len(link.frames) == 1
        assert correlator.pending is None

    @pytest.mark.asyncio
    async def test_not_connected_sends_nothing(self):
        link = FakeLink(connected=False)
        correlator = make_correlator(link)
        assert await correlator.send_and_await(CLOSE_ALL_PAYLOAD) is False
        assert link.frames == []

    def test_unexpected_confirmation_dropped(self):
        correlator = Correlator(lambda frame: True, lambda: True)
        correlator.confirm(*payload_expectation(CLOSE_ALL_PAYLOAD))
        assert correlator.pending is None
