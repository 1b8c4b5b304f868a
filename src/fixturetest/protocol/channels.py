"""Channel tables of the fixture variants.

Main board: channel ids are shared by both links. Ids 0-17 are the GPIO-driven
outputs, 18 is the flow meter, 19-20 the pressure sensors and 21-23 the
temperature sensors. The Arduino addresses them by name, the STM32 by id.

BodyDoor board: Arduino only, ids 0-11 are the Body group and 12-18 the Door
group, all read at idle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from fixturetest.protocol.codec import HANDSHAKE_BODYDOOR, HANDSHAKE_MAIN

DISPLAY_NAMES = {
    **{i: f"SLOT{i + 1}" for i in range(10)},
    10: "WATERPUMP",
    11: "MainUVC",
    12: "SpoutUVC",
    13: "MixUVC",
    14: "AmbientRL",
    15: "CoolRL",
    16: "SparklRL",
    17: "O3",
    18: "Flow",
    19: "PressureCO2",
    20: "PressureWater",
    21: "MCUtemp",
    22: "WATERtemp",
    23: "BIBtemp",
}

# names in Arduino reply lines, lower case
ARDUINO_LINE_NAMES = {
    **{f"slot{i}": i for i in range(10)},
    "water": 10,
    "mainuvc": 11,
    "spoutuvc": 12,
    "mixuvc": 13,
    "ambientrl": 14,
    "coolrl": 15,
    "sparking": 16,
    "o3": 17,
    "flow": 18,
    "pressureco2": 19,
    "pressurewater": 20,
    "mcu": 21,
    "mcutemp": 21,
}

# read command per GPIO channel, indexed by id
ARDUINO_READ_COMMANDS = (
    "s0", "s1", "s2", "s3", "s4", "s5", "s6", "s7", "s8", "s9",
    "water", "u0", "u1", "u2", "arl", "crl", "srl", "o3",
)  # fmt: skip

ARDUINO_SENSOR_COMMANDS = {
    19: "prec",
    20: "prew",
    21: "mcutemp",
}

FLOW_ON = "flowon"  # also reports the running pulse count
FLOW_OFF = "flowoff"

BODYDOOR_DISPLAY_NAMES = {
    0: "AmbientRL",
    1: "CoolRL",
    2: "SparklingRL",
    3: "WaterPump",
    4: "O3",
    5: "MainUVC",
    6: "BibTemp",
    7: "FlowMeter",
    8: "WaterTemp",
    9: "Leak",
    10: "WaterPressure",
    11: "CO2Pressure",
    12: "SpoutUVC",
    13: "MixUVC",
    14: "FlowMeter2",
    15: "BP_24V",
    16: "BP_12V",
    17: "BP_UpScreen",
    18: "BP_LowScreen",
}

BODYDOOR_READ_COMMANDS = (
    "ambientrl", "coolrl", "sparklingrl", "waterpump", "o3", "mainuvc",
    "bibtemp", "flowmeter", "watertemp", "leak", "waterpressure",
    "co2pressure", "spoutuvc", "mixuvc", "flowmeter2", "bp24v", "bp12v",
    "bpup", "bplow",
)  # fmt: skip

BODYDOOR_LINE_NAMES = {
    **{name: i for i, name in enumerate(BODYDOOR_READ_COMMANDS[:15])},
    "bodypower_24v": 15,
    "bodypower_12v": 16,
    "bodypower_upscreen": 17,
    "bodypower_lowscreen": 18,
}

BODY_GROUP = tuple(range(12))
DOOR_GROUP = tuple(range(12, 19))


@dataclass(frozen=True, eq=False)
class ChannelTable:
    """Names and Arduino tokens of one fixture variant.

    ``handshake_ok`` are the replies to ``connect`` that identify this variant,
    ``handshake_other`` the replies of the other variant's firmware.
    """

    name: str
    display_names: dict[int, str]
    line_names: dict[str, int]
    read_commands: dict[int, str]
    handshake_ok: tuple[str, ...]
    handshake_other: tuple[str, ...]
    mcu_temp_channel: Optional[int] = None
    flow_channel: Optional[int] = None

    def display_name(self, channel: int) -> str:
        return self.display_names.get(channel, f"ID{channel}")

    def item_label(self, channel: int) -> str:
        """Result item label, ``"SLOT4 (ID3)"``."""
        return f"{self.display_name(channel)} (ID{channel})"

    def arduino_command(self, channel: int) -> Optional[str]:
        """Command token that makes the Arduino report ``channel``.

        Returns None for ids the Arduino cannot read on demand (flow is driven
        by `FLOW_ON` and the STM32-only temperatures have no token).
        """
        cmd = self.read_commands.get(channel)
        if cmd is None:
            logger.debug("No {} Arduino command for channel {}", self.name, channel)
        return cmd

    def line_name(self, channel: int) -> str:
        """Name the firmware prints for ``channel`` in its reply lines."""
        for name, ch in self.line_names.items():
            if ch == channel:
                return name
        return self.display_name(channel)


MAIN_CHANNELS = ChannelTable(
    name="main",
    display_names=DISPLAY_NAMES,
    line_names=ARDUINO_LINE_NAMES,
    read_commands={
        **dict(enumerate(ARDUINO_READ_COMMANDS)),
        **ARDUINO_SENSOR_COMMANDS,
    },
    handshake_ok=HANDSHAKE_MAIN,
    handshake_other=HANDSHAKE_BODYDOOR,
    mcu_temp_channel=21,
    flow_channel=18,
)

BODYDOOR_CHANNELS = ChannelTable(
    name="bodydoor",
    display_names=BODYDOOR_DISPLAY_NAMES,
    line_names=BODYDOOR_LINE_NAMES,
    read_commands=dict(enumerate(BODYDOOR_READ_COMMANDS)),
    handshake_ok=HANDSHAKE_BODYDOOR,
    handshake_other=HANDSHAKE_MAIN,
)

CHANNEL_TABLES = {t.name: t for t in (MAIN_CHANNELS, BODYDOOR_CHANNELS)}


def display_name(channel: int) -> str:
    return MAIN_CHANNELS.display_name(channel)


def item_label(channel: int) -> str:
    return MAIN_CHANNELS.item_label(channel)


def arduino_command(channel: int) -> str | None:
    return MAIN_CHANNELS.arduino_command(channel)


def group_label(channel: int, table: ChannelTable = BODYDOOR_CHANNELS) -> str:
    """BodyDoor result label, ``"[Door] BP_24V"``."""
    group = "Body" if channel in BODY_GROUP else "Door"
    return f"[{group}] {table.display_name(channel)}"
