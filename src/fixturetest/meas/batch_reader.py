"""Paired channel reads with event-driven waits and bounded retry.

Every read goes to both links at once: the text token on the Arduino and a
``READ`` frame on the STM32. Completion is detected by polling the store until
each device's series for the channel has grown past its pre-send length, so a
channel that answers quickly moves on quickly. Nothing here waits unbounded:

    phase 1:  len(channels) * ceil(hardware_wait_ms / poll)
    phase 2:  len(channels) * max_retries * ceil(hardware_wait_ms / poll)

polls in the worst case, and cancellation is honoured between channels and
between polls.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from loguru import logger

from fixturetest.meas.store import ReadingStore
from fixturetest.protocol.channels import MAIN_CHANNELS, ChannelTable
from fixturetest.protocol.codec import encode, read_payload
from fixturetest.types.protocols import FramedLinkProtocol, TextLinkProtocol
from fixturetest.types.readings import ReadState
from fixturetest.types.roles import ARDUINO, STM32, DeviceRole
from fixturetest.util.defaults import POLL_INTERVAL

RUNNING_READ_POLLS = 10


@dataclass
class BatchResult:
    """Outcome of a `BatchReader.read_batch` call."""

    state: ReadState
    missing: dict[DeviceRole, list[int]] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        return not self.cancelled and not any(self.missing.values())

    def missing_channels(self) -> list[int]:
        return sorted({ch for chans in self.missing.values() for ch in chans})


class BatchReader:
    """Issues read commands to both links and waits for the store to fill.

    Parameters
    ----------
    store : ReadingStore
        Where inbound readings land.
    arduino, stm32 : optional
        The two links. A missing or disconnected link is simply not asked.
    cancel : asyncio.Event, optional
        Set to stop between channels and between polls.
    on_highlight : Callable[[Optional[int], str], None], optional
        Called with ``(channel, section)`` as each channel is read, and with
        ``(None, "")`` when a batch ends.
    poll_interval : float
        Seconds between store checks.
    channels : ChannelTable
        Arduino command tokens of the fixture variant.
    """

    def __init__(
        self,
        store: ReadingStore,
        arduino: Optional[TextLinkProtocol],
        stm32: Optional[FramedLinkProtocol],
        cancel: Optional[asyncio.Event] = None,
        on_highlight: Optional[Callable[[Optional[int], str], None]] = None,
        poll_interval: float = POLL_INTERVAL,
        channels: ChannelTable = MAIN_CHANNELS,
    ):
        self.store = store
        self.channels = channels
        self.arduino = arduino
        self.stm32 = stm32
        self.cancel = cancel or asyncio.Event()
        self.on_highlight = on_highlight
        self.poll_interval = poll_interval

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    async def pause(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless cancelled first. Returns True if cancelled."""
        try:
            await asyncio.wait_for(self.cancel.wait(), seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_for_growth(
        self,
        device: DeviceRole,
        state: ReadState,
        channel: int,
        before: int,
        wait_ms: float,
    ) -> bool:
        """Poll until the ``(device, state, channel)`` series is longer than ``before``."""
        for _ in range(self.polls_for(wait_ms)):
            if self.cancelled:
                return False
            await asyncio.sleep(self.poll_interval)
            if self.store.count(device, state, channel) > before:
                return True
        return False

    def polls_for(self, wait_ms: float) -> int:
        return max(1, math.ceil(wait_ms / (self.poll_interval * 1000)))

    def connected_devices(self, channel: int) -> list[DeviceRole]:
        """Devices that are connected and able to report ``channel``."""
        devices = []
        if (
            self.arduino is not None
            and self.arduino.is_connected()
            and self.channels.arduino_command(channel) is not None
        ):
            devices.append(ARDUINO)
        if self.stm32 is not None and self.stm32.is_connected():
            devices.append(STM32)
        return devices

    def send_read(self, device: DeviceRole, channel: int) -> bool:
        if device == ARDUINO:
            cmd = self.channels.arduino_command(channel)
            return cmd is not None and self.arduino.send_text(cmd)
        return self.stm32.send_frame(encode(read_payload(channel)))

    def highlight(self, channel: Optional[int], section: str = ""):
        if self.on_highlight is not None:
            self.on_highlight(channel, section)

    async def read_once(
        self,
        channel: int,
        state: ReadState,
        devices: Iterable[DeviceRole],
        wait_ms: float,
    ) -> set[DeviceRole]:
        """Send one read to each of ``devices`` and wait for their replies.

        Returns the devices whose series for ``(state, channel)`` grew.
        """
        devices = list(devices)
        before = {d: self.store.count(d, state, channel) for d in devices}
        for d in devices:
            self.send_read(d, channel)
        arrived: set[DeviceRole] = set()
        for _ in range(self.polls_for(wait_ms)):
            if self.cancelled:
                break
            await asyncio.sleep(self.poll_interval)
            arrived = {
                d for d in devices if self.store.count(d, state, channel) > before[d]
            }
            if len(arrived) == len(devices):
                break
        return arrived

    async def read_batch(
        self,
        channels: Iterable[int],
        target_state: ReadState,
        max_per_channel_retries: int = 5,
        hardware_wait_ms: float = 300,
    ) -> BatchResult:
        """Read every channel in ``channels`` from both links in ``target_state``.

        Parameters
        ----------
        channels : Iterable[int]
            Channel ids, read in order.
        target_state : ReadState
            State the channels are in; readings are filed under it.
        max_per_channel_retries : int
            Phase 2 resend bound for channels still missing a reading.
        hardware_wait_ms : float
            Per-attempt wait.

        Returns
        -------
        BatchResult
            Channels still missing data per device, and whether the batch was
            cancelled.
        """
        channels = list(channels)
        result = BatchResult(state=target_state)
        section = target_state.value

        # phase 1: one paired read per channel
        for ch in channels:
            if self.cancelled:
                result.cancelled = True
                self.highlight(None)
                return result
            self.highlight(ch, section)
            self.store.set_channel_state(ch, target_state)
            await self.read_once(
                ch, target_state, self.connected_devices(ch), hardware_wait_ms
            )

        # phase 2: retry only the devices that have nothing yet
        for ch in channels:
            for attempt in range(max_per_channel_retries):
                if self.cancelled:
                    result.cancelled = True
                    self.highlight(None)
                    return result
                missing = self._missing_devices(ch, target_state)
                if not missing:
                    break
                logger.debug(
                    "Retrying ch{} for {} ({}/{})",
                    ch,
                    ", ".join(str(d) for d in missing),
                    attempt + 1,
                    max_per_channel_retries,
                )
                self.highlight(ch, section)
                self.store.set_channel_state(ch, target_state)
                await self.read_once(ch, target_state, missing, hardware_wait_ms)

            for d in self._missing_devices(ch, target_state):
                result.missing.setdefault(d, []).append(ch)

        self.highlight(None)
        if result.missing:
            logger.warning(
                "{} batch incomplete: {}",
                section,
                {str(d): chans for d, chans in result.missing.items()},
            )
        return result

    def _missing_devices(self, channel: int, state: ReadState) -> list[DeviceRole]:
        return [
            d
            for d in self.connected_devices(channel)
            if self.store.count(d, state, channel) == 0
        ]

    async def read_running(self, channel: int) -> set[DeviceRole]:
        """Paired running read of a stimulated channel, up to 10 polls."""
        self.store.set_channel_state(channel, ReadState.RUNNING)
        return await self.read_once(
            channel,
            ReadState.RUNNING,
            self.connected_devices(channel),
            RUNNING_READ_POLLS * self.poll_interval * 1000,
        )
