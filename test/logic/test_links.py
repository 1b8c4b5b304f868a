import asyncio
import time
from unittest.mock import patch

import pytest
import serial

from fixturetest.device import ArduinoLink, ConnectResult, MockArduino, Stm32Link
from fixturetest.protocol import (
    OP_FIRMWARE,
    OP_GPIO_ON,
    OP_READ,
    FrameDecoder,
    encode,
    gpio_payload,
    read_payload,
)
from fixturetest.protocol.codec import payload_expectation
from fixturetest.system import FixtureSystem

SERIAL_PATH = "fixturetest.device.serial_link.serial.Serial"


class FakeSerial:
    """Stands in for `serial.Serial`; ``responder(data)`` returns reply bytes."""

    def __init__(self, port, responder=None, **kwargs):
        self.port = port
        self.responder = responder
        self.rx = bytearray()
        self.written = []
        self.is_open = True

    @property
    def in_waiting(self):
        return len(self.rx)

    def read(self, n):
        data = bytes(self.rx[:n])
        del self.rx[:n]
        return data

    def write(self, data):
        self.written.append(bytes(data))
        if self.responder is not None:
            self.rx.extend(self.responder(bytes(data)))
        return len(data)

    def reset_input_buffer(self):
        self.rx.clear()

    def close(self):
        self.is_open = False


def fake_serial(responder):
    opened = []

    def factory(port, **kwargs):
        s = FakeSerial(port, responder, **kwargs)
        opened.append(s)
        return s

    return factory, opened


def arduino_link():
    return ArduinoLink(boot_wait=0, handshake_poll_interval=0.005, poll_interval=0.001)


def stm32_link(**kwargs):
    return Stm32Link(
        boot_wait=0, handshake_poll_interval=0.005, poll_interval=0.001, **kwargs
    )


def arduino_responder(handshake_reply):
    def respond(data):
        if data == b"connect\n":
            return handshake_reply
        if data == b"s3\n":
            return b"SLOT3(A3): 798\r\nnoise line\r\n"
        return b""

    return respond


class Stm32Board:
    """Answers firmware, read and GPIO frames like the STM32 firmware."""

    def __init__(self):
        self.decoder = FrameDecoder()
        self.answer_ping = True
        self.answer_gpio = True

    def __call__(self, data):
        out = b""
        for f in self.decoder.feed(data):
            if f.command == OP_FIRMWARE and self.answer_ping:
                out += encode((OP_FIRMWARE, 0, 3, 1, 1))
            elif f.command == OP_READ:
                out += encode((OP_READ, f.channel, 0x59, 0x01, 0x00))
            elif f.is_gpio_reply and self.answer_gpio:
                out += encode((f.command, *f.data))
        return out


class TestArduinoLink:
    @pytest.mark.asyncio
    async def test_handshake_success(self):
        factory, opened = fake_serial(arduino_responder(b"connected\r\n"))
        link = arduino_link()
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM3") == ConnectResult.SUCCESS
            assert link.is_connected()
            assert link.port == "COM3"
            link.close()
        assert not link.is_connected()
        assert opened[0].is_open is False

    @pytest.mark.asyncio
    async def test_handshake_wrong_role(self):
        factory, opened = fake_serial(arduino_responder(b"connectedbodydoor\n"))
        link = arduino_link()
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM3") == ConnectResult.WRONG_ROLE
        assert not link.is_open()
        assert opened[0].is_open is False

    @pytest.mark.asyncio
    async def test_handshake_no_reply(self):
        factory, opened = fake_serial(arduino_responder(b""))
        link = arduino_link()
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM3") == ConnectResult.FAILED
        assert not link.is_open()
        # two attempts
        assert opened[0].written == [b"connect\n", b"connect\n"]

    @pytest.mark.asyncio
    async def test_port_error(self):
        link = arduino_link()
        with patch(SERIAL_PATH, side_effect=serial.SerialException("busy")):
            assert await link.connect_and_verify("COM3") == ConnectResult.PORT_ERROR
        assert not link.is_open()

    @pytest.mark.asyncio
    async def test_reading_lines_dispatched(self):
        factory, _ = fake_serial(arduino_responder(b"connected\n"))
        link = arduino_link()
        readings = []
        link.on_reading = lambda ch, v: readings.append((ch, v))
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM3") == ConnectResult.SUCCESS
            assert link.send_text("s3")
            await asyncio.sleep(0.02)
            link.close()
        assert readings == [(3, 798)]

    def test_write_on_closed_port(self):
        assert arduino_link().send_text("s3") is False


class TestStm32Link:
    @pytest.mark.asyncio
    async def test_handshake_reads_version(self):
        factory, _ = fake_serial(Stm32Board())
        link = stm32_link()
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM4") == ConnectResult.SUCCESS
            assert link.version == "1.1.3.0"
            link.close()

    @pytest.mark.asyncio
    async def test_handshake_no_reply(self):
        board = Stm32Board()
        board.answer_ping = False
        factory, _ = fake_serial(board)
        link = stm32_link()
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM4") == ConnectResult.FAILED
        assert link.version is None

    @pytest.mark.asyncio
    async def test_replies_dispatched(self):
        factory, _ = fake_serial(Stm32Board())
        link = stm32_link()
        readings, confirms = [], []
        link.on_reading = lambda ch, v: readings.append((ch, v))
        link.on_confirm = lambda code, mask: confirms.append((code, mask))
        with patch(SERIAL_PATH, side_effect=factory):
            assert await link.connect_and_verify("COM4") == ConnectResult.SUCCESS
            link.send_frame(encode(read_payload(5)))
            link.send_frame(encode(gpio_payload(OP_GPIO_ON, [3])))
            await asyncio.sleep(0.02)
            link.close()
        assert readings == [(5, 345)]
        assert confirms == [payload_expectation(gpio_payload(OP_GPIO_ON, [3]))]

    @pytest.mark.asyncio
    async def test_heartbeat_loss_fails_pending_wait(self):
        board = Stm32Board()
        factory, _ = fake_serial(board)
        link = stm32_link(
            heartbeat_interval=0.02, heartbeat_quiet_window=0.01, heartbeat_fail_limit=3
        )
        system = FixtureSystem(
            MockArduino(), link, port_lister=lambda exclude=(), **kwargs: ["COM4"]
        )
        with patch(SERIAL_PATH, side_effect=factory):
            assert await system.connect_stm32() == (ConnectResult.SUCCESS, "COM4")
            board.answer_ping = False
            board.answer_gpio = False
            start = time.monotonic()
            ok = await system.correlator.send_and_await(
                gpio_payload(OP_GPIO_ON, [1]), retry_interval=1.0, max_retries=5
            )
        assert ok is False
        assert time.monotonic() - start < 1.0
        assert not link.is_connected()
