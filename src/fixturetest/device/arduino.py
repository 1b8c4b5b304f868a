"""Text-protocol link to the Arduino (device A).

The Arduino answers newline-terminated command tokens with one text line per
reading. After the port opens it prints bootloader output for about a second,
so the handshake waits, drops that output, then sends ``connect`` and polls for
the reply:

- a reply in the channel table's ``handshake_ok`` (``connected`` /
  ``connectedmain`` on the main board): `ConnectResult.SUCCESS`
- a reply in ``handshake_other`` (the other variant's firmware):
  `ConnectResult.WRONG_ROLE`
- nothing: `ConnectResult.FAILED`

The keep-alive is ``connect`` again; any inbound line counts as a reply.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from fixturetest.device.device import ConnectResult
from fixturetest.device.serial_link import SerialLink
from fixturetest.protocol.channels import MAIN_CHANNELS, ChannelTable
from fixturetest.protocol.codec import (
    CONNECT_COMMAND,
    classify_handshake_line,
    encode_text,
    parse_text_line,
)
from fixturetest.util.defaults import (
    ARDUINO_BOOT_WAIT,
    HANDSHAKE_ATTEMPTS,
    HANDSHAKE_POLL_INTERVAL,
    HANDSHAKE_POLLS,
)

MAX_LINE = 256  # bytes buffered without a newline before the buffer is dropped


class ArduinoLink(SerialLink):
    label = "Arduino"

    def __init__(
        self,
        boot_wait: float = ARDUINO_BOOT_WAIT,
        handshake_poll_interval: float = HANDSHAKE_POLL_INTERVAL,
        channels: ChannelTable = MAIN_CHANNELS,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.channels = channels
        self.boot_wait = boot_wait
        self.handshake_poll_interval = handshake_poll_interval
        self._line_buf = bytearray()
        self._handshake: Optional[bool] = None

    async def connect_and_verify(self, port: str) -> ConnectResult:
        """Open ``port`` and run the text handshake."""
        if not self.open_port(port):
            return ConnectResult.PORT_ERROR

        await asyncio.sleep(self.boot_wait)
        self.discard_input()
        self._line_buf.clear()
        self.start_reader()

        for attempt in range(HANDSHAKE_ATTEMPTS):
            self._handshake = None
            if not self.write(encode_text(CONNECT_COMMAND)):
                self.close()
                return ConnectResult.PORT_ERROR
            for _ in range(HANDSHAKE_POLLS):
                await asyncio.sleep(self.handshake_poll_interval)
                if self._handshake is True:
                    self._verified = True
                    self.start_heartbeat()
                    logger.info("Arduino connected on {}", port)
                    return ConnectResult.SUCCESS
                if self._handshake is False:
                    logger.warning("{} answered as a different fixture", port)
                    self.close()
                    return ConnectResult.WRONG_ROLE
            if attempt < HANDSHAKE_ATTEMPTS - 1:
                await asyncio.sleep(self.handshake_poll_interval)

        logger.debug("No Arduino handshake reply on {}", port)
        self.close()
        return ConnectResult.FAILED

    def send_text(self, token: str) -> bool:
        return self.write(encode_text(token))

    def _send_heartbeat(self):
        self.send_text(CONNECT_COMMAND)

    def _handle_bytes(self, data: bytes):
        self._line_buf.extend(data)
        while True:
            end = self._line_buf.find(b"\n")
            if end < 0:
                break
            raw = bytes(self._line_buf[:end])
            del self._line_buf[: end + 1]
            self._handle_line(raw.decode("utf-8", errors="replace").strip())
        if len(self._line_buf) > MAX_LINE:
            logger.debug("Dropping {} bytes without a line break", len(self._line_buf))
            self._line_buf.clear()

    def _handle_line(self, line: str):
        if not line:
            return
        logger.trace("Arduino <- {!r}", line)
        table = self.channels
        handshake = classify_handshake_line(
            line, table.handshake_ok, table.handshake_other
        )
        if handshake is not None:
            if not self._verified:
                self._handshake = handshake
            return
        parsed = parse_text_line(
            line, table.line_names, table.mcu_temp_channel, table.flow_channel
        )
        if parsed is not None and self.on_reading is not None:
            self.on_reading(*parsed)
