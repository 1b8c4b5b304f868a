"""Simulated fixture board shared by the two mock links.

The model holds per-channel idle and running values for both links, the current
GPIO output state, sensor values and a flow counter. Faults are injected by
editing those values (`MockFixture.set_channel`), by shorting channel pairs, by
silencing channels on one link, or by dropping GPIO confirmations.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fixturetest.types.config import BODYDOOR_CHANNEL_IDS, GPIO_CHANNELS


@dataclass
class MockChannel:
    arduino_idle: int = 800
    arduino_running: int = 40
    stm32_idle: int = 20
    stm32_running: int = 340


def _good_channels() -> dict[int, MockChannel]:
    return {ch: MockChannel() for ch in GPIO_CHANNELS}


# nominal BodyDoor idle counts: 5.1V lines, 1.65V lines, 24V and 12V dividers
BODYDOOR_NOMINAL = {
    **{ch: 1000 for ch in (0, 1, 2, 3, 4, 5, 7, 12, 13, 14)},
    **{ch: 337 for ch in (6, 8, 9, 10, 11)},
    15: 446,
    **{ch: 786 for ch in (16, 17, 18)},
}


@dataclass
class MockFixture:
    """State of a simulated board, with a known-good default."""

    channels: dict[int, MockChannel] = field(default_factory=_good_channels)
    arduino_sensors: dict[int, int] = field(
        default_factory=lambda: {19: 220, 20: 225, 21: 255}  # 21 in tenths of a degree
    )
    stm32_sensors: dict[int, int] = field(
        default_factory=lambda: {19: 950, 20: 955, 21: 25, 22: 24, 23: 26}
    )
    flow_step: int = 40  # pulses counted per flowon while the valve is open
    firmware: tuple[int, int, int, int] = (0, 3, 1, 1)  # 1.1.3.0

    arduino_port: str = "MOCK0"
    stm32_port: str = "MOCK1"
    ports: list[str] = field(default_factory=lambda: ["MOCK0", "MOCK1"])
    wrong_role_ports: set[str] = field(default_factory=set)
    arduino_handshake: str = "connectedmain"

    reply_delay: float = 0.0  # seconds before a reply is delivered
    silent_arduino: set[int] = field(default_factory=set)
    silent_stm32: set[int] = field(default_factory=set)
    dropped_confirms: int = 0  # GPIO confirmations swallowed before echoing again
    shorted_pairs: set[frozenset[int]] = field(default_factory=set)

    gpio_on: set[int] = field(default_factory=set)
    flow_on: bool = False
    flow_count: int = 0
    gpio_frames: int = 0

    @classmethod
    def body_door(cls, **kwargs) -> MockFixture:
        """A known-good BodyDoor board: Arduino idle values only, no STM32."""
        channels = {
            ch: MockChannel(arduino_idle=BODYDOOR_NOMINAL[ch]) for ch in BODYDOOR_CHANNEL_IDS
        }
        return cls(
            channels=channels,
            arduino_sensors={},
            stm32_sensors={},
            ports=["MOCK0"],
            arduino_handshake="connectedbodydoor",
            **kwargs,
        )

    def set_channel(self, channel: int, **values: int):
        for key, value in values.items():
            setattr(self.channels[channel], key, value)

    def short(self, a: int, b: int):
        self.shorted_pairs.add(frozenset((a, b)))

    def is_driven(self, channel: int) -> bool:
        """True if the output is on, directly or through a short to an on output."""
        if channel in self.gpio_on:
            return True
        return any(
            channel in pair and (pair - {channel}) & self.gpio_on
            for pair in self.shorted_pairs
        )

    def arduino_value(self, channel: int) -> int:
        if channel in self.channels:
            ch = self.channels[channel]
            return ch.arduino_running if self.is_driven(channel) else ch.arduino_idle
        return self.arduino_sensors.get(channel, 0)

    def stm32_value(self, channel: int) -> int:
        if channel in self.channels:
            ch = self.channels[channel]
            return ch.stm32_running if self.is_driven(channel) else ch.stm32_idle
        if channel == 18:
            return self.flow_count
        return self.stm32_sensors.get(channel, 0)

    def count_flow(self) -> int:
        if self.flow_on:
            self.flow_count += self.flow_step
        return self.flow_count
