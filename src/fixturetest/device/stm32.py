"""Binary-protocol link to the STM32 (device B).

Inbound bytes go through a `FrameDecoder`; each valid frame is dispatched by
opcode:

- READ reply: ``on_reading(channel, value)``
- GPIO ON/OFF reply: ``on_confirm(command_code, bit_mask)``
- firmware reply: handshake result and keep-alive answer

The handshake and the keep-alive are both the firmware query.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from fixturetest.device.device import ConnectResult
from fixturetest.device.serial_link import SerialLink
from fixturetest.protocol.codec import PING_PAYLOAD, Frame, FrameDecoder, encode
from fixturetest.util.defaults import (
    HANDSHAKE_ATTEMPTS,
    HANDSHAKE_POLL_INTERVAL,
    HANDSHAKE_POLLS,
    STM32_BOOT_WAIT,
)


class Stm32Link(SerialLink):
    label = "STM32"

    def __init__(
        self,
        boot_wait: float = STM32_BOOT_WAIT,
        handshake_poll_interval: float = HANDSHAKE_POLL_INTERVAL,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.boot_wait = boot_wait
        self.handshake_poll_interval = handshake_poll_interval
        self.decoder = FrameDecoder()
        self.version: Optional[str] = None
        self.on_confirm: Optional[Callable[[int, int], None]] = None

    async def connect_and_verify(self, port: str) -> ConnectResult:
        """Open ``port`` and wait for a firmware-version reply."""
        if not self.open_port(port):
            return ConnectResult.PORT_ERROR

        await asyncio.sleep(self.boot_wait)
        self.discard_input()
        self.decoder.reset()
        self.version = None
        self.start_reader()

        for attempt in range(HANDSHAKE_ATTEMPTS):
            if not self.send_frame(encode(PING_PAYLOAD)):
                self.close()
                return ConnectResult.PORT_ERROR
            for _ in range(HANDSHAKE_POLLS):
                await asyncio.sleep(self.handshake_poll_interval)
                if self.version is not None:
                    self._verified = True
                    self.start_heartbeat()
                    logger.info("STM32 firmware {} connected on {}", self.version, port)
                    return ConnectResult.SUCCESS
            if attempt < HANDSHAKE_ATTEMPTS - 1:
                await asyncio.sleep(self.handshake_poll_interval)

        logger.debug("No STM32 firmware reply on {}", port)
        self.close()
        return ConnectResult.FAILED

    def send_frame(self, frame: bytes) -> bool:
        return self.write(frame)

    def _send_heartbeat(self):
        self.send_frame(encode(PING_PAYLOAD))

    def _handle_bytes(self, data: bytes):
        for frame in self.decoder.feed(data):
            self._dispatch(frame)

    def _dispatch(self, frame: Frame):
        logger.trace("STM32 <- {}", frame)
        if frame.is_read_reply:
            if self.on_reading is not None:
                self.on_reading(frame.channel, frame.value)
        elif frame.is_gpio_reply:
            if self.on_confirm is not None:
                self.on_confirm(frame.command, frame.mask)
        elif frame.is_firmware_reply:
            self.version = frame.version
        else:
            logger.debug("Ignoring STM32 frame with opcode {:#04x}", frame.command)
