"""Configuration types: threshold ranges, the threshold set, device profiles."""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro import DataClassDictMixin

from fixturetest.protocol.channels import CHANNEL_TABLES, ChannelTable
from fixturetest.types.readings import ReadState
from fixturetest.types.roles import ARDUINO, STM32, DeviceRole

GPIO_CHANNELS = tuple(range(18))
BODYDOOR_CHANNEL_IDS = tuple(range(19))


@dataclass(frozen=True)
class ThresholdRange:
    """Inclusive integer band, ``min <= v <= max``."""

    min: int
    max: int

    def __post_init__(self):
        if self.min > self.max:
            raise ValueError(f"ThresholdRange min {self.min} > max {self.max}")

    def contains(self, value: int) -> bool:
        return self.min <= value <= self.max


def _ranges_to_dict(ranges: dict[int, ThresholdRange]) -> dict[str, list[int]]:
    return {str(k): [r.min, r.max] for k, r in sorted(ranges.items())}


def _ranges_from_dict(data: dict) -> dict[int, ThresholdRange]:
    return {int(k): ThresholdRange(int(v[0]), int(v[1])) for k, v in data.items()}


def _ints_to_dict(values: dict[int, int]) -> dict[str, int]:
    return {str(k): v for k, v in sorted(values.items())}


def _ints_from_dict(data: dict) -> dict[int, int]:
    return {int(k): int(v) for k, v in data.items()}


def _range_field(default: dict[int, ThresholdRange]):
    return field(
        default_factory=lambda: dict(default),
        metadata={"serialize": _ranges_to_dict, "deserialize": _ranges_from_dict},
    )


def _uniform(lo: int, hi: int) -> dict[int, ThresholdRange]:
    return {ch: ThresholdRange(lo, hi) for ch in GPIO_CHANNELS}


DEFAULT_ARDUINO_IDLE = _uniform(770, 830)
DEFAULT_ARDUINO_RUNNING = _uniform(25, 60)
DEFAULT_STM32_IDLE = _uniform(0, 55)
DEFAULT_STM32_RUNNING = _uniform(300, 380)

DEFAULT_ARDUINO_SENSOR = {
    18: ThresholdRange(0, 10000),  # flow
    19: ThresholdRange(190, 260),  # CO2 pressure
    20: ThresholdRange(190, 260),  # water pressure
    21: ThresholdRange(-20, 100),  # MCU temp, after /10
}
DEFAULT_STM32_SENSOR = {
    18: ThresholdRange(0, 10000),
    19: ThresholdRange(930, 980),
    20: ThresholdRange(930, 980),
    21: ThresholdRange(-20, 100),
    22: ThresholdRange(-20, 100),  # water temp
    23: ThresholdRange(-20, 100),  # BIB temp
}
DEFAULT_DIFF_THRESHOLD = {18: 3, 21: 5, 22: 5, 23: 5}

FALLBACK_HARDWARE_RANGE = ThresholdRange(0, 1000)
FALLBACK_SENSOR_RANGE = ThresholdRange(0, 10000)
DEFAULT_BODYDOOR_IDLE = {
    **{ch: ThresholdRange(923, 1023) for ch in (0, 1, 2, 3, 4, 5, 7, 12, 13, 14)},  # 5.1V
    **{ch: ThresholdRange(237, 437) for ch in (6, 8, 9, 10, 11)},  # 1.65V
    15: ThresholdRange(346, 546),  # 24V divider
    **{ch: ThresholdRange(686, 886) for ch in (16, 17, 18)},  # 12V dividers
}

FALLBACK_DIFF_THRESHOLD = 250
FALLBACK_BODYDOOR_RANGE = ThresholdRange(0, 1023)


@dataclass(kw_only=True, repr=False)
class Thresholds(DataClassDictMixin):
    """Every threshold, timing parameter and feature toggle used in a test run.

    The workflow takes a copy at the start of each run, so edits made while a run
    is in progress only apply to the next one.
    """

    arduino_idle: dict[int, ThresholdRange] = _range_field(DEFAULT_ARDUINO_IDLE)
    arduino_running: dict[int, ThresholdRange] = _range_field(DEFAULT_ARDUINO_RUNNING)
    stm32_idle: dict[int, ThresholdRange] = _range_field(DEFAULT_STM32_IDLE)
    stm32_running: dict[int, ThresholdRange] = _range_field(DEFAULT_STM32_RUNNING)
    arduino_sensor: dict[int, ThresholdRange] = _range_field(DEFAULT_ARDUINO_SENSOR)
    stm32_sensor: dict[int, ThresholdRange] = _range_field(DEFAULT_STM32_SENSOR)
    bodydoor_idle: dict[int, ThresholdRange] = _range_field(DEFAULT_BODYDOOR_IDLE)
    diff_threshold: dict[int, int] = field(
        default_factory=lambda: dict(DEFAULT_DIFF_THRESHOLD),
        metadata={"serialize": _ints_to_dict, "deserialize": _ints_from_dict},
    )

    # feature toggles
    show_vdd_short_test: bool = False
    show_load_detection: bool = True
    show_mosfet_detection: bool = True
    show_wire_error_detection: bool = True
    show_gpio_status_detection: bool = False
    adjacent_short_test_optimization: bool = False

    # diagnostic thresholds
    load_detection_running: int = 100
    load_detection_idle: int = 50
    gs_short_running: int = 400
    gpio_stuck_on_idle: int = 150
    gpio_stuck_off_running: int = 100
    wire_error_diff: int = 100
    d12v_short_arduino: int = 1000
    arduino_diff: int = 180
    load_disconnected_stm32_running_min: int = 40
    load_disconnected_stm32_running_max: int = 70
    gd_short_arduino_running_min: int = 350
    gd_short_arduino_running_max: int = 480
    gd_short_stm32_running_min: int = 420
    gd_short_stm32_running_max: int = 570
    ds_short_arduino_idle_min: int = 25
    ds_short_arduino_idle_max: int = 60
    ds_short_stm32_idle_min: int = 330
    ds_short_stm32_idle_max: int = 375
    temp_sensor_error_value: int = 85
    adjacent_short: int = 100
    adjacent_not_actuating_diff: int = 100
    arduino_vss: int = 10
    arduino_idle_normal_min: int = 700

    # BodyDoor power rails, raw ADC counts
    power_33v_threshold: int = 300
    power_body12v_threshold: int = 300
    power_door24v_threshold: int = 300
    power_door12v_threshold: int = 300

    # polling
    max_retry_per_id: int = 5
    hardware_wait_ms: int = 300
    sensor_wait_ms: int = 400
    temp_sensor_wait_ms: int = 1000
    flow_settle_ms: int = 500
    flow_read_ms: int = 300
    flow_gap_ms: int = 700
    flow_rounds: int = 3
    slow_mode_delay_ms: int = 3000
    confirm_retry_interval_ms: int = 100
    confirm_max_retries: int = 5

    def __repr__(self):
        return f"{self.__class__.__name__}(<{len(self.__dict__)} settings>)"

    def copy(self) -> Thresholds:
        return Thresholds.from_dict(self.to_dict())

    def hardware_range(
        self, device: DeviceRole, state: ReadState, channel: int
    ) -> ThresholdRange:
        if channel not in GPIO_CHANNELS:
            return FALLBACK_HARDWARE_RANGE
        if device == ARDUINO:
            table = self.arduino_idle if state == ReadState.IDLE else self.arduino_running
        else:
            table = self.stm32_idle if state == ReadState.IDLE else self.stm32_running
        return table.get(channel, FALLBACK_HARDWARE_RANGE)

    def sensor_range(self, device: DeviceRole, channel: int) -> ThresholdRange:
        table = self.arduino_sensor if device == ARDUINO else self.stm32_sensor
        return table.get(channel, FALLBACK_SENSOR_RANGE)

    def bodydoor_range(self, channel: int) -> ThresholdRange:
        return self.bodydoor_idle.get(channel, FALLBACK_BODYDOOR_RANGE)

    def diff_for(self, channel: int) -> int:
        return self.diff_threshold.get(channel, FALLBACK_DIFF_THRESHOLD)

    def load_disconnected_band(self) -> ThresholdRange:
        return ThresholdRange(
            self.load_disconnected_stm32_running_min,
            self.load_disconnected_stm32_running_max,
        )


@dataclass(kw_only=True, repr=False)
class DeviceProfile(DataClassDictMixin):
    """Static description of a fixture variant.

    Channel counts, the GPIO channels that get stimulated, the channels read
    for the idle baseline and the sensor ids each device reports. A different
    fixture board is a different profile, not a code fork. A profile without
    the STM32 (``uses_stm32=False``) only reads its idle channels from the
    Arduino.
    """

    name: str = "main"
    channel_table: str = "main"
    uses_stm32: bool = True
    gpio_channels: tuple[int, ...] = GPIO_CHANNELS
    idle_channels: tuple[int, ...] = GPIO_CHANNELS
    arduino_sensors: tuple[int, ...] = (18, 19, 20, 21)
    stm32_sensors: tuple[int, ...] = (18, 19, 20, 21, 22, 23)
    flow_channel: int = 18
    temperature_channels: tuple[int, ...] = (21, 22, 23)
    mcu_temp_channel: int = 21
    confirmable_opcodes: tuple[int, ...] = (0x01, 0x02)

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name})"

    @property
    def channels(self) -> ChannelTable:
        return CHANNEL_TABLES[self.channel_table]

    def channel_count(self, device: DeviceRole) -> int:
        sensors = self.arduino_sensors if device == ARDUINO else self.stm32_sensors
        return max((*self.gpio_channels, *self.idle_channels, *sensors), default=-1) + 1

    def valid_channel(self, device: DeviceRole, channel: int) -> bool:
        return 0 <= channel < self.channel_count(device)

    def pressure_channels(self, device: DeviceRole) -> tuple[int, ...]:
        sensors = self.arduino_sensors if device == ARDUINO else self.stm32_sensors
        return tuple(
            ch
            for ch in sensors
            if ch != self.flow_channel and ch not in self.temperature_channels
        )

    def sweep_sensors(self, device: DeviceRole) -> tuple[int, ...]:
        """Non-flow sensors read in the sensor sweep, in id order."""
        sensors = self.arduino_sensors if device == ARDUINO else self.stm32_sensors
        return tuple(ch for ch in sensors if ch != self.flow_channel)


MAIN_PROFILE = DeviceProfile()
BODYDOOR_PROFILE = DeviceProfile(
    name="bodydoor",
    channel_table="bodydoor",
    uses_stm32=False,
    gpio_channels=(),
    idle_channels=BODYDOOR_CHANNEL_IDS,
    arduino_sensors=(),
    stm32_sensors=(),
    temperature_channels=(),
    confirmable_opcodes=(),
)

PROFILES = {p.name: p for p in (MAIN_PROFILE, BODYDOOR_PROFILE)}
