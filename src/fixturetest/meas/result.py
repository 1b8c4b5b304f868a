"""Result phase: range checks, sensor checks and the aggregate verdict.

`build_report` evaluates a main-board run, `build_idle_report` a BodyDoor run
(Arduino idle values only, range and power-rail checks).
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from loguru import logger

from fixturetest.meas.adjacency import pin_name
from fixturetest.meas.store import ReadingStore
from fixturetest.protocol.channels import display_name, group_label, item_label
from fixturetest.types.config import (
    BODYDOOR_PROFILE,
    MAIN_PROFILE,
    DeviceProfile,
    Thresholds,
)
from fixturetest.types.readings import FaultCategory, FaultVerdict, ReadState
from fixturetest.types.report import TestReport
from fixturetest.types.roles import ARDUINO, STM32

_ITEM_ID = re.compile(r"\(ID(\d+)\)")
_PAIR_IDS = re.compile(r"\(ID(\d+)-ID(\d+)\)")


def check_hardware_ranges(
    store: ReadingStore, channels: Iterable[int], thresholds: Thresholds
) -> tuple[list[str], list[str]]:
    """Channels whose first idle or latest running value is out of range.

    Returns ``(failed_idle_items, failed_running_items)`` as display names. A
    channel fails if either link is out of range; a missing value is skipped.
    """
    failed_idle, failed_running = [], []
    for ch in channels:
        for state, out, getter in (
            (ReadState.IDLE, failed_idle, store.first_value),
            (ReadState.RUNNING, failed_running, store.latest_value),
        ):
            bad = False
            for device in (ARDUINO, STM32):
                value = getter(device, state, ch)
                if value is None:
                    continue
                if not thresholds.hardware_range(device, state, ch).contains(value):
                    logger.debug("{} ch{} {} = {} out of range", device, ch, state.value, value)
                    bad = True
            if bad:
                out.append(display_name(ch))
    return failed_idle, failed_running


def check_vdd_short(
    store: ReadingStore, channels: Iterable[int], thresholds: Thresholds
) -> list[str]:
    """Idle baselines that sit in the running band but not the idle band."""
    items = []
    for ch in channels:
        for device in (ARDUINO, STM32):
            value = store.first_value(device, ReadState.IDLE, ch)
            if value is None:
                continue
            in_running = thresholds.hardware_range(device, ReadState.RUNNING, ch).contains(value)
            in_idle = thresholds.hardware_range(device, ReadState.IDLE, ch).contains(value)
            if in_running and not in_idle:
                items.append(f"{device} {pin_name(ch)} (ID{ch})")
    return items


def _mcu_temperature(raw: Optional[int]) -> Optional[int]:
    # the Arduino reports tenths of a degree; truncate toward zero
    return None if raw is None else int(raw / 10)


def check_sensors(
    store: ReadingStore,
    thresholds: Thresholds,
    profile: DeviceProfile = MAIN_PROFILE,
) -> list[str]:
    """Sensor channels that failed their range, error-value or agreement checks.

    Pressure and flow channels are range-checked on both links. Temperature
    channels are range-checked on the STM32, where the configured error value
    (85, the DS18B20 power-on reading) always fails, and compared against the
    Arduino MCU temperature; the MCU channel is also range-checked on the
    Arduino after scaling.
    """
    failed: list[str] = []
    mcu = _mcu_temperature(
        _value(store.latest_any(ARDUINO, profile.mcu_temp_channel))
    )

    plain = sorted(
        (set(profile.arduino_sensors) | set(profile.stm32_sensors))
        - set(profile.temperature_channels)
    )
    for ch in plain:
        bad = False
        for device, sensors in ((ARDUINO, profile.arduino_sensors), (STM32, profile.stm32_sensors)):
            if ch not in sensors:
                continue
            value = _value(store.latest_any(device, ch))
            if value is not None and not thresholds.sensor_range(device, ch).contains(value):
                bad = True
        if bad:
            failed.append(display_name(ch))

    for ch in profile.temperature_channels:
        bad = False
        if ch == profile.mcu_temp_channel and ch in profile.arduino_sensors and mcu is not None:
            if not thresholds.sensor_range(ARDUINO, ch).contains(mcu):
                bad = True
        stm32_value = _value(store.latest_any(STM32, ch))
        if stm32_value is not None:
            if stm32_value == thresholds.temp_sensor_error_value:
                logger.warning("{} reports the sensor error value {}", display_name(ch), stm32_value)
                bad = True
            elif not thresholds.sensor_range(STM32, ch).contains(stm32_value):
                bad = True
            if mcu is not None and abs(mcu - stm32_value) > thresholds.diff_for(ch):
                bad = True
        if bad:
            failed.append(display_name(ch))
    return failed


def _value(reading) -> Optional[int]:
    return None if reading is None else reading.value


def filter_adjacent_items(
    adjacent_items: Iterable[str], load_disconnected_items: Iterable[str]
) -> list[str]:
    """Drop adjacency entries that name a load-disconnected channel on either side."""
    disconnected = set()
    for item in load_disconnected_items:
        m = _ITEM_ID.search(item)
        if m:
            disconnected.add(int(m.group(1)))
    if not disconnected:
        return list(adjacent_items)

    kept = []
    for item in adjacent_items:
        m = _PAIR_IDS.search(item)
        if m and (int(m.group(1)) in disconnected or int(m.group(2)) in disconnected):
            logger.debug("Filtering adjacency item for disconnected load: {}", item)
            continue
        kept.append(item)
    return kept


def missing_items(store: ReadingStore, channels: Iterable[int]) -> list[str]:
    """GPIO channels lacking an idle or running value on either link."""
    items = []
    for ch in channels:
        lacking = [
            f"{device} {state.value}"
            for device in (ARDUINO, STM32)
            for state in (ReadState.IDLE, ReadState.RUNNING)
            if store.count(device, state, ch) == 0
        ]
        if lacking:
            items.append(f"{item_label(ch)}: no {', '.join(lacking)}")
    return items


def build_report(
    store: ReadingStore,
    verdicts: list[FaultVerdict],
    adjacent_items: Iterable[str],
    thresholds: Thresholds,
    profile: DeviceProfile = MAIN_PROFILE,
) -> TestReport:
    """Assemble the `TestReport` of a finished run."""
    channels = profile.gpio_channels
    failed_idle, failed_running = check_hardware_ranges(store, channels, thresholds)

    fault_items: dict[str, list[str]] = {c.value: [] for c in FaultCategory}
    for v in verdicts:
        fault_items[v.category.value].append(item_label(v.channel_id))

    report = TestReport(
        failed_idle_items=failed_idle,
        failed_running_items=failed_running,
        failed_sensor_items=check_sensors(store, thresholds, profile),
        vdd_short_items=(
            check_vdd_short(store, channels, thresholds)
            if thresholds.show_vdd_short_test
            else []
        ),
        adjacent_short_items=filter_adjacent_items(
            adjacent_items, fault_items[FaultCategory.LOAD_DISCONNECTED.value]
        ),
        verdicts=list(verdicts),
        fault_items=fault_items,
        missing_items=missing_items(store, channels),
    )
    report.passed = not any(report.failure_lists().values())
    return report


# (message, threshold field, channel ids that must all read low)
POWER_RAILS = (
    ("3.3V power anomaly (ID 6,8,9,10,11 all below threshold)",
     "power_33v_threshold", (6, 8, 9, 10, 11)),
    ("Body 12V power anomaly (ID 0,1,2,3,4,5,7 all below threshold + 3.3V anomaly)",
     "power_body12v_threshold", (0, 1, 2, 3, 4, 5, 7)),
    ("Door 24V boost circuit anomaly (BP_24V below threshold)",
     "power_door24v_threshold", (15,)),
    ("Door 12V power anomaly (ID 12,13,14,16,17,18 all below threshold)",
     "power_door12v_threshold", (12, 13, 14, 16, 17, 18)),
)  # fmt: skip


def _all_below(store: ReadingStore, channels: Iterable[int], limit: int) -> bool:
    for ch in channels:
        value = store.first_value(ARDUINO, ReadState.IDLE, ch)
        if value is None or value >= limit:
            return False
    return True


def check_power_anomalies(store: ReadingStore, thresholds: Thresholds) -> list[str]:
    """BodyDoor supply rails whose channels all read below their threshold.

    A missing reading never counts as low. The Body 12V rail is only reported
    together with a 3.3V anomaly.
    """
    items = []
    low_33v = False
    for message, field_name, channels in POWER_RAILS:
        low = _all_below(store, channels, getattr(thresholds, field_name))
        if field_name == "power_33v_threshold":
            low_33v = low
        elif field_name == "power_body12v_threshold":
            low = low and low_33v
        if low:
            logger.warning(message)
            items.append(message)
    return items


def build_idle_report(
    store: ReadingStore,
    thresholds: Thresholds,
    profile: DeviceProfile = BODYDOOR_PROFILE,
) -> TestReport:
    """Assemble the `TestReport` of an idle-only (BodyDoor) run.

    Each channel's first Arduino idle value is range-checked and listed as
    ``"[Body] AmbientRL"`` when out of range. A channel without a value is
    listed as ``"[Door] BP_24V (no data)"`` and fails the board as well.
    """
    failed, missing = [], []
    for ch in profile.idle_channels:
        label = group_label(ch, profile.channels)
        value = store.first_value(ARDUINO, ReadState.IDLE, ch)
        if value is None:
            missing.append(f"{label} (no data)")
        elif not thresholds.bodydoor_range(ch).contains(value):
            logger.debug("{} idle = {} out of range", label, value)
            failed.append(label)

    report = TestReport(
        power_items=check_power_anomalies(store, thresholds),
        failed_idle_items=failed,
        missing_items=missing,
    )
    report.passed = not any(report.failure_lists().values()) and not missing
    return report
