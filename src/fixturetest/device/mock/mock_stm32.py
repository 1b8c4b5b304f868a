from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from fixturetest.device.device import ConnectResult, Device
from fixturetest.device.mock.fixture import MockFixture
from fixturetest.protocol.codec import (
    OP_CLEAR,
    OP_FIRMWARE,
    OP_GPIO_OFF,
    OP_GPIO_ON,
    OP_READ,
    Frame,
    FrameDecoder,
    encode,
    mask_bytes,
    mask_channels,
)


class MockStm32(Device):  # Protocol compliance checked by role system
    """Framed link that answers from a `MockFixture` instead of a serial port.

    Outbound frames are decoded with the real `FrameDecoder`, and replies are
    encoded and decoded again before they reach the callbacks.
    """

    def __init__(self, fixture: Optional[MockFixture] = None, **config):
        super().__init__(**config)
        self.fixture = fixture or MockFixture()
        self.port: Optional[str] = None
        self.version: Optional[str] = None
        self._connected = False
        self._rx = FrameDecoder()
        self._tx = FrameDecoder()
        self.frames: list[Frame] = []
        self.on_reading: Optional[Callable[[int, int], None]] = None
        self.on_confirm: Optional[Callable[[int, int], None]] = None
        self.on_disconnect: Optional[Callable[[], None]] = None

    async def connect_and_verify(self, port: str) -> ConnectResult:
        await asyncio.sleep(0)
        if port != self.fixture.stm32_port:
            return ConnectResult.FAILED
        self.port = port
        self._connected = True
        d = self.fixture.firmware
        self.version = f"{d[3]}.{d[2]}.{d[1]}.{d[0]}"
        logger.info("MockStm32 firmware {} connected on {}", self.version, port)
        return ConnectResult.SUCCESS

    def close(self):
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def drop_link(self):
        """Simulate a lost link, as a heartbeat timeout would report it."""
        self._connected = False
        if self.on_disconnect is not None:
            self.on_disconnect()

    def send_frame(self, frame: bytes) -> bool:
        if not self._connected:
            return False
        for f in self._rx.feed(frame):
            self.frames.append(f)
            self._answer(f)
        return True

    def _answer(self, frame: Frame):
        fixture = self.fixture
        if frame.command == OP_READ:
            ch = frame.channel
            if ch in fixture.silent_stm32:
                return
            value = fixture.stm32_value(ch)
            self._reply((OP_READ, ch, value & 0xFF, (value >> 8) & 0xFF, (value >> 16) & 0xFF))
        elif frame.command in (OP_GPIO_ON, OP_GPIO_OFF):
            fixture.gpio_frames += 1
            channels = set(mask_channels(frame.mask))
            if frame.command == OP_GPIO_ON:
                fixture.gpio_on |= channels
            else:
                fixture.gpio_on -= channels
            if fixture.dropped_confirms > 0:
                fixture.dropped_confirms -= 1
                return
            self._reply((frame.command, *mask_bytes(frame.mask), 0x00))
        elif frame.command == OP_FIRMWARE:
            self._reply((OP_FIRMWARE, *fixture.firmware))
        elif frame.command == OP_CLEAR:
            fixture.flow_count = 0
        else:
            logger.debug("MockStm32 ignoring opcode {:#04x}", frame.command)

    def _reply(self, payload: tuple[int, ...]):
        loop = asyncio.get_running_loop()
        loop.call_later(self.fixture.reply_delay, self._deliver, encode(payload))

    def _deliver(self, data: bytes):
        if not self._connected:
            return
        for f in self._tx.feed(data):
            if f.is_read_reply and self.on_reading is not None:
                self.on_reading(f.channel, f.value)
            elif f.is_gpio_reply and self.on_confirm is not None:
                self.on_confirm(f.command, f.mask)
            elif f.is_firmware_reply:
                self.version = f.version
