from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from fixturetest.device.device import ConnectResult, Device
from fixturetest.device.mock.fixture import MockFixture
from fixturetest.protocol.channels import FLOW_OFF, FLOW_ON, MAIN_CHANNELS, ChannelTable
from fixturetest.protocol.codec import (
    CONNECT_COMMAND,
    classify_handshake_line,
    parse_text_line,
)


class MockArduino(Device):  # Protocol compliance checked by role system
    """Text link that answers from a `MockFixture` instead of a serial port.

    Replies are rendered as firmware text lines and parsed back with the real
    line parser. The handshake reply is the fixture's ``arduino_handshake``,
    classified against the link's channel table like the real link does.
    """

    def __init__(
        self,
        fixture: Optional[MockFixture] = None,
        channels: ChannelTable = MAIN_CHANNELS,
        **config,
    ):
        super().__init__(**config)
        self.fixture = fixture or MockFixture()
        self.channels = channels
        self.port: Optional[str] = None
        self._connected = False
        self.sent: list[str] = []
        self.on_reading: Optional[Callable[[int, int], None]] = None
        self.on_disconnect: Optional[Callable[[], None]] = None

    async def connect_and_verify(self, port: str) -> ConnectResult:
        await asyncio.sleep(0)
        if port in self.fixture.wrong_role_ports:
            return ConnectResult.WRONG_ROLE
        if port != self.fixture.arduino_port:
            return ConnectResult.FAILED
        match classify_handshake_line(
            self.fixture.arduino_handshake,
            self.channels.handshake_ok,
            self.channels.handshake_other,
        ):
            case True:
                pass
            case False:
                return ConnectResult.WRONG_ROLE
            case _:
                return ConnectResult.FAILED
        self.port = port
        self._connected = True
        logger.info("MockArduino connected on {}", port)
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

    def send_text(self, token: str) -> bool:
        if not self._connected:
            return False
        self.sent.append(token)
        fixture = self.fixture
        if token == CONNECT_COMMAND:
            return True
        if token == FLOW_ON:
            fixture.flow_on = True
            self._reply(f"flow count: {fixture.count_flow()} pulses")
        elif token == FLOW_OFF:
            fixture.flow_on = False
            self._reply(f"final count: {fixture.flow_count} pulses")
        elif token in self._tokens():
            ch = self._tokens()[token]
            if ch not in fixture.silent_arduino:
                self._reply(self._line(ch, fixture.arduino_value(ch)))
        else:
            logger.debug("MockArduino ignoring {!r}", token)
        return True

    def _tokens(self) -> dict[str, int]:
        return {tok: ch for ch, tok in self.channels.read_commands.items()}

    def _line(self, channel: int, value: int) -> str:
        if channel == self.channels.mcu_temp_channel:
            return f"MCU temp: {value / 10:.1f} C"
        name = self.channels.line_name(channel).upper()
        return f"{name}(A{channel}): {value}"

    def _reply(self, line: str):
        loop = asyncio.get_running_loop()
        loop.call_later(self.fixture.reply_delay, self._deliver, line)

    def _deliver(self, line: str):
        if not self._connected:
            return
        table = self.channels
        parsed = parse_text_line(
            line, table.line_names, table.mcu_temp_channel, table.flow_channel
        )
        if parsed is not None and self.on_reading is not None:
            self.on_reading(*parsed)
