"""Port handling shared by the two serial links.

`SerialLink` owns the pyserial port, a reader task that polls it every
``poll_interval`` and a heartbeat task. Subclasses decode inbound bytes
(`_handle_bytes`), send their own keep-alive (`_send_heartbeat`) and implement
the handshake in ``connect_and_verify``.

The heartbeat runs every ``heartbeat_interval`` seconds. It stays quiet while
other traffic arrived within ``heartbeat_quiet_window``; otherwise it sends a
keep-alive. ``heartbeat_fail_limit`` consecutive keep-alives without any reply
mark the link lost: the port is force-closed and ``on_disconnect`` is called.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import serial  # pyserial package
from loguru import logger

from fixturetest.device.device import Device
from fixturetest.util.defaults import (
    DEFAULT_BAUDRATE,
    HEARTBEAT_FAIL_LIMIT,
    HEARTBEAT_INTERVAL,
    HEARTBEAT_QUIET_WINDOW,
    POLL_INTERVAL,
)


class SerialLink(Device):
    required_config = {"baudrate": int}
    label = "serial"

    def __init__(
        self,
        baudrate: int = DEFAULT_BAUDRATE,
        poll_interval: float = POLL_INTERVAL,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        heartbeat_quiet_window: float = HEARTBEAT_QUIET_WINDOW,
        heartbeat_fail_limit: int = HEARTBEAT_FAIL_LIMIT,
    ):
        super().__init__(baudrate=baudrate)
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_quiet_window = heartbeat_quiet_window
        self.heartbeat_fail_limit = heartbeat_fail_limit

        self.port: Optional[str] = None
        self._serial: Optional[serial.Serial] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._verified = False

        self._last_rx = 0.0
        self._ping_pending = False
        self._missed = 0

        self.on_reading: Optional[Callable[[int, int], None]] = None
        self.on_disconnect: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # port
    # ------------------------------------------------------------------

    def open_port(self, port: str) -> bool:
        """Open ``port`` non-blocking. False (logged) if it cannot be opened."""
        if self._serial is not None:
            self.close()
        try:
            self._serial = serial.Serial(port, baudrate=self.baudrate, timeout=0)
        except (serial.SerialException, OSError):
            logger.exception("Error opening {} port {}.", self.label, port)
            self._serial = None
            return False
        self.port = port
        logger.debug("Opened {} port {} at {} baud", self.label, port, self.baudrate)
        return True

    def discard_input(self):
        """Drop anything the port has buffered, e.g. bootloader output."""
        if self._serial is None:
            return
        try:
            self._serial.reset_input_buffer()
        except (serial.SerialException, OSError):
            logger.warning("Could not reset input buffer on {}", self.port)

    def write(self, data: bytes) -> bool:
        if self._serial is None:
            logger.debug("Not writing to closed {} port", self.label)
            return False
        try:
            self._serial.write(data)
        except (serial.SerialException, OSError):
            logger.exception("Write failed on {} port {}.", self.label, self.port)
            return False
        logger.trace("{} -> {}", self.label, data)
        return True

    def is_open(self) -> bool:
        return self._serial is not None

    def is_connected(self) -> bool:
        return self._serial is not None and self._verified

    def close(self):
        for task in (self._reader_task, self._heartbeat_task):
            if task is not None and not task.done():
                task.cancel()
        self._reader_task = None
        self._heartbeat_task = None
        was_verified = self._verified
        self._verified = False
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError):
                logger.warning("Error closing {} port {}, ignoring.", self.label, self.port)
            self._serial = None
            if was_verified:
                logger.info("Closed {} link on {}", self.label, self.port)

    # ------------------------------------------------------------------
    # background tasks
    # ------------------------------------------------------------------

    def start_reader(self):
        self._last_rx = asyncio.get_running_loop().time()
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def _reader_loop(self):
        while self._serial is not None:
            try:
                waiting = self._serial.in_waiting
                data = self._serial.read(waiting) if waiting else b""
            except (serial.SerialException, OSError):
                logger.exception("Read failed on {} port {}.", self.label, self.port)
                self._link_lost("read error")
                return
            if data:
                self._mark_activity()
                self._handle_bytes(data)
            await asyncio.sleep(self.poll_interval)

    def start_heartbeat(self):
        self._ping_pending = False
        self._missed = 0
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self):
        loop = asyncio.get_running_loop()
        while self.is_connected():
            await asyncio.sleep(self.heartbeat_interval)
            if not self.is_connected():
                return
            if self._ping_pending:
                self._missed += 1
                logger.debug(
                    "{} heartbeat missed ({}/{})",
                    self.label,
                    self._missed,
                    self.heartbeat_fail_limit,
                )
                if self._missed >= self.heartbeat_fail_limit:
                    self._link_lost("heartbeat timeout")
                    return
            elif loop.time() - self._last_rx < self.heartbeat_quiet_window:
                continue
            self._ping_pending = True
            self._send_heartbeat()

    def _mark_activity(self):
        self._last_rx = asyncio.get_running_loop().time()
        self._ping_pending = False
        self._missed = 0

    def _link_lost(self, reason: str):
        logger.error("{} link on {} lost: {}", self.label, self.port, reason)
        self.close()
        if self.on_disconnect is not None:
            self.on_disconnect()

    # ------------------------------------------------------------------
    # subclass hooks
    # ------------------------------------------------------------------

    def _handle_bytes(self, data: bytes):
        raise NotImplementedError()

    def _send_heartbeat(self):
        raise NotImplementedError()
