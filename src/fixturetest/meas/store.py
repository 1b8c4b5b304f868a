"""Per-channel reading history for one test session.

Every reading is kept in an append-only series keyed by
``(device, state, channel)``. Two views matter to the rest of the package:

- `ReadingStore.first` is the untainted baseline. It is fixed by the first write
  of a session and survives any number of later writes, so adjacency probes
  that re-read idle channels cannot move it.
- `ReadingStore.latest` is the most recent value, used for running readings and
  sensors.

Inbound link data does not know which state a channel is in. The store tracks
the hardware state of each channel (set by the workflow and by confirmed GPIO
commands) and files `record_value` calls under it.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Iterable, Optional

from loguru import logger

from fixturetest.protocol.codec import OP_GPIO_OFF, OP_GPIO_ON, mask_channels
from fixturetest.types.config import MAIN_PROFILE, DeviceProfile
from fixturetest.types.readings import ChannelReading, ReadState
from fixturetest.types.roles import DeviceRole

_Key = tuple[DeviceRole, ReadState, int]


class ReadingStore:
    def __init__(self, profile: DeviceProfile = MAIN_PROFILE):
        self.profile = profile
        self._series: dict[_Key, list[ChannelReading]] = defaultdict(list)
        self._first: dict[_Key, ChannelReading] = {}
        self._channel_state: dict[int, ReadState] = {}
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def record(self, reading: ChannelReading) -> bool:
        """Append a reading. Returns False (and drops it) for an invalid channel."""
        if not self.profile.valid_channel(reading.device, reading.channel_id):
            logger.debug(
                "Dropping {} reading for invalid channel {}",
                reading.device,
                reading.channel_id,
            )
            return False
        key = (reading.device, reading.state, reading.channel_id)
        self._series[key].append(reading)
        self._first.setdefault(key, reading)
        return True

    def record_value(
        self, device: DeviceRole, channel: int, value: int
    ) -> Optional[ChannelReading]:
        """Record an inbound value under the channel's current hardware state."""
        reading = ChannelReading(
            device=device,
            channel_id=channel,
            state=self.channel_state(channel),
            value=value,
            sequence=next(self._sequence),
        )
        if not self.record(reading):
            return None
        logger.trace(
            "{} ch{} {} = {}", device, channel, reading.state.value, value
        )
        return reading

    def set_channel_state(self, channel: int, state: ReadState):
        self._channel_state[channel] = state

    def set_channels_state(self, channels: Iterable[int], state: ReadState):
        for ch in channels:
            self._channel_state[ch] = state

    def channel_state(self, channel: int) -> ReadState:
        return self._channel_state.get(channel, ReadState.IDLE)

    def apply_gpio(self, command: int, mask: int):
        """Track a confirmed GPIO command: ON marks channels RUNNING, OFF marks them IDLE."""
        if command == OP_GPIO_ON:
            self.set_channels_state(mask_channels(mask), ReadState.RUNNING)
        elif command == OP_GPIO_OFF:
            self.set_channels_state(mask_channels(mask), ReadState.IDLE)

    def clear_all(self):
        """Forget every reading and channel state; called when a new run starts."""
        self._series.clear()
        self._first.clear()
        self._channel_state.clear()

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def first(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> Optional[ChannelReading]:
        return self._first.get((device, state, channel))

    def latest(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> Optional[ChannelReading]:
        series = self._series.get((device, state, channel))
        return series[-1] if series else None

    def latest_any(self, device: DeviceRole, channel: int) -> Optional[ChannelReading]:
        """Latest running reading, else latest idle reading."""
        return self.latest(device, ReadState.RUNNING, channel) or self.latest(
            device, ReadState.IDLE, channel
        )

    def series(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> list[ChannelReading]:
        return list(self._series.get((device, state, channel), ()))

    def count(self, device: DeviceRole, state: ReadState, channel: int) -> int:
        return len(self._series.get((device, state, channel), ()))

    def first_value(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> Optional[int]:
        r = self.first(device, state, channel)
        return None if r is None else r.value

    def latest_value(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> Optional[int]:
        r = self.latest(device, state, channel)
        return None if r is None else r.value
