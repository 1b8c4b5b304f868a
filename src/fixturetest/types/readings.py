"""Reading, verdict and state types shared by the store, classifier and workflow."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fixturetest.types.roles import DeviceRole


class ReadState(str, Enum):
    """Output condition of a channel when a reading was captured."""

    IDLE = "idle"
    RUNNING = "running"


class FaultCategory(str, Enum):
    """Fault labels emitted by the classifier, one per channel at most."""

    DRAIN_SUPPLY_SHORT = "D-12V short"
    GATE_DRAIN_SHORT = "G-D short"
    DRAIN_SOURCE_SHORT = "D-S short"
    DRAIN_GROUND_SHORT = "D-ground short"
    LOAD_DISCONNECTED = "load disconnected"
    GATE_GROUND_SHORT = "G-ground short"
    GATE_SOURCE_SHORT = "G-S short"
    WIRE_ERROR = "wire error"
    GPIO_STUCK_ON = "GPIO stuck on"
    GPIO_STUCK_OFF = "GPIO stuck off"


@dataclass(frozen=True)
class ChannelReading:
    device: DeviceRole
    channel_id: int
    state: ReadState
    value: int
    sequence: int


@dataclass(frozen=True)
class FaultVerdict:
    channel_id: int
    category: FaultCategory
