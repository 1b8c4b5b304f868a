"""Request/confirm/retry for GPIO commands on the framed link.

A GPIO ON/OFF command is only considered applied once the STM32 echoes the
same opcode and channel mask back. There is exactly one pending expectation at
a time: the workflow is strictly sequential, so a second registration while one
is outstanding is a programming error and raises.

The inbound side (the link's frame parser) calls `Correlator.confirm` for every
GPIO reply and `Correlator.invalidate` when the link is lost. Both run on the
event loop, so the pending slot needs no lock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from loguru import logger

from fixturetest.protocol.codec import encode, payload_expectation
from fixturetest.types.config import MAIN_PROFILE


@dataclass(frozen=True)
class CommandExpectation:
    command_code: int
    bit_mask: int

    def __str__(self):
        return f"cmd={self.command_code:#04x} mask={self.bit_mask:#08x}"


class Correlator:
    """Sends frames and waits for their GPIO confirmation.

    Parameters
    ----------
    send_frame : Callable[[bytes], bool]
        Writes one frame to the link; False on transport error.
    is_connected : Callable[[], bool]
        Link status, checked before anything is sent.
    confirmable_opcodes : Sequence[int]
        Opcodes that wait for a confirmation. Anything else is sent once.
    """

    def __init__(
        self,
        send_frame: Callable[[bytes], bool],
        is_connected: Callable[[], bool],
        confirmable_opcodes: Sequence[int] = MAIN_PROFILE.confirmable_opcodes,
    ):
        self._send_frame = send_frame
        self._is_connected = is_connected
        self.confirmable_opcodes = tuple(confirmable_opcodes)
        self._pending: Optional[CommandExpectation] = None
        self._future: Optional[asyncio.Future] = None
        self.frames_sent = 0

    @property
    def pending(self) -> Optional[CommandExpectation]:
        return self._pending

    def _send(self, frame: bytes) -> bool:
        self.frames_sent += 1
        return self._send_frame(frame)

    async def send_and_await(
        self,
        payload: Sequence[int],
        retry_interval: float = 0.1,
        max_retries: int = 5,
    ) -> bool:
        """Send ``payload`` and, for GPIO opcodes, wait for its confirmation.

        Parameters
        ----------
        payload : Sequence[int]
            Five payload bytes; the frame header and checksum are added here.
        retry_interval : float
            Seconds to wait for a confirmation before resending.
        max_retries : int
            Total number of sends before giving up.

        Returns
        -------
        bool
            True on the first matching confirmation (or immediately for a
            non-confirmable opcode), False when every attempt timed out, the
            link was lost, or it was not connected to begin with.

        Raises
        ------
        RuntimeError
            If another confirmable command is still pending.
        """
        if not self._is_connected():
            logger.warning("Not sending {}: link not connected", list(payload))
            return False

        frame = encode(payload)
        if payload[0] not in self.confirmable_opcodes:
            if not self._send(frame):
                logger.warning("Write failed for {}", frame.hex(" "))
            return True

        if self._pending is not None:
            raise RuntimeError(
                f"Cannot register {list(payload)}: {self._pending} is still pending"
            )

        expectation = CommandExpectation(*payload_expectation(payload))
        self._pending = expectation
        self._future = asyncio.get_running_loop().create_future()
        try:
            for attempt in range(1, max_retries + 1):
                if not self._send(frame):
                    logger.warning("Write failed while waiting for {}", expectation)
                    return False
                try:
                    confirmed = await asyncio.wait_for(
                        asyncio.shield(self._future), retry_interval
                    )
                except asyncio.TimeoutError:
                    logger.debug(
                        "No confirmation for {} (attempt {}/{})",
                        expectation,
                        attempt,
                        max_retries,
                    )
                    continue
                if not confirmed:
                    logger.warning("Wait for {} invalidated (link lost)", expectation)
                return confirmed
            logger.warning(
                "No confirmation for {} after {} sends", expectation, max_retries
            )
            return False
        finally:
            self._pending = None
            self._future = None

    def confirm(self, command_code: int, bit_mask: int):
        """Complete the pending wait if ``(command_code, bit_mask)`` matches it."""
        if self._pending is None or self._future is None or self._future.done():
            logger.debug(
                "Dropping unexpected confirmation cmd={:#04x} mask={:#08x}",
                command_code,
                bit_mask,
            )
            return
        if (command_code, bit_mask) != (
            self._pending.command_code,
            self._pending.bit_mask,
        ):
            logger.debug(
                "Dropping confirmation cmd={:#04x} mask={:#08x}, waiting for {}",
                command_code,
                bit_mask,
                self._pending,
            )
            return
        self._future.set_result(True)

    def invalidate(self):
        """Fail the pending wait immediately, e.g. because the link was lost."""
        if self._future is not None and not self._future.done():
            self._future.set_result(False)
