"""Fault classification from the four readings of a channel.

A channel is described by ``(arduino_idle, arduino_running, stm32_idle,
stm32_running)``. Idle values are the first idle readings of the session,
running values the latest running readings. Any of them may be missing.

Rules are tried in order and the first match wins:

==  ======================  ===================================================
 1  Drain-Supply short      both Arduino values above ``d12v_short_arduino``
 2  Load disconnected       small Arduino change, STM32 running in the
                            load-disconnected band, STM32 idle normal
 3  Gate-Drain short        Arduino idle near zero, Arduino and STM32 running
                            inside their G-D bands
 4  Drain-Source short      idle values of both links inside the D-S bands
 5  Drain-Ground short      Arduino idle near zero
 6  Gate-Ground short       Arduino values normal-idle, STM32 values both low
 7  Gate-Source short       STM32 running high while STM32 idle is low
 -  GPIO stuck on / off     optional, off by default
 8  Wire error              small Arduino change while STM32 running is normal
==  ======================  ===================================================

Rule 2 is gated by ``show_load_detection``, rules 1 and 3-7 by
``show_mosfet_detection``, rule 8 by ``show_wire_error_detection`` and the
GPIO rules by ``show_gpio_status_detection``. A rule whose inputs are not all
present is skipped, so a channel without data never gets a guessed verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from fixturetest.meas.store import ReadingStore
from fixturetest.types.config import Thresholds
from fixturetest.types.readings import FaultCategory, FaultVerdict, ReadState
from fixturetest.types.roles import ARDUINO, STM32


@dataclass(frozen=True)
class ChannelValues:
    channel: int
    arduino_idle: Optional[int] = None
    arduino_running: Optional[int] = None
    stm32_idle: Optional[int] = None
    stm32_running: Optional[int] = None

    @property
    def arduino_diff(self) -> Optional[int]:
        if self.arduino_idle is None or self.arduino_running is None:
            return None
        return abs(self.arduino_idle - self.arduino_running)

    @classmethod
    def from_store(cls, store: ReadingStore, channel: int) -> ChannelValues:
        return cls(
            channel=channel,
            arduino_idle=store.first_value(ARDUINO, ReadState.IDLE, channel),
            arduino_running=store.latest_value(ARDUINO, ReadState.RUNNING, channel),
            stm32_idle=store.first_value(STM32, ReadState.IDLE, channel),
            stm32_running=store.latest_value(STM32, ReadState.RUNNING, channel),
        )


def _present(*values) -> bool:
    return all(v is not None for v in values)


def _between(v: int, lo: int, hi: int) -> bool:
    return lo <= v <= hi


# ============================================================================
# Rules: each returns True on a match; inputs are checked for presence first
# ============================================================================


def _drain_supply(v: ChannelValues, th: Thresholds) -> bool:
    return (
        _present(v.arduino_idle, v.arduino_running)
        and v.arduino_idle > th.d12v_short_arduino
        and v.arduino_running > th.d12v_short_arduino
    )


def _load_disconnected(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_idle, v.stm32_running):
        return False
    return (
        v.arduino_diff < th.arduino_diff
        and th.load_disconnected_band().contains(v.stm32_running)
        and th.hardware_range(STM32, ReadState.IDLE, v.channel).contains(v.stm32_idle)
    )


def _gate_drain(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_running):
        return False
    return (
        v.arduino_idle < th.arduino_vss
        and _between(
            v.arduino_running, th.gd_short_arduino_running_min, th.gd_short_arduino_running_max
        )
        and _between(
            v.stm32_running, th.gd_short_stm32_running_min, th.gd_short_stm32_running_max
        )
    )


def _drain_source(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_idle, v.stm32_running):
        return False
    return _between(
        v.arduino_idle, th.ds_short_arduino_idle_min, th.ds_short_arduino_idle_max
    ) and _between(v.stm32_idle, th.ds_short_stm32_idle_min, th.ds_short_stm32_idle_max)


def _drain_ground(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_idle, v.stm32_running):
        return False
    return v.arduino_idle < th.arduino_vss


def _gate_ground(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_idle, v.stm32_running):
        return False
    return (
        v.arduino_idle >= th.arduino_idle_normal_min
        and v.arduino_running >= th.arduino_idle_normal_min
        and v.stm32_idle < th.load_detection_idle
        and v.stm32_running < th.load_detection_running
    )


def _gate_source(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.stm32_idle, v.stm32_running):
        return False
    return v.stm32_running > th.gs_short_running and v.stm32_idle < th.load_detection_idle


def _gpio_stuck_on(v: ChannelValues, th: Thresholds) -> bool:
    return _present(v.stm32_idle) and v.stm32_idle > th.gpio_stuck_on_idle


def _gpio_stuck_off(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.stm32_idle, v.stm32_running):
        return False
    return (
        v.stm32_running < th.gpio_stuck_off_running
        and v.stm32_idle >= th.load_detection_idle
    )


def _wire_error(v: ChannelValues, th: Thresholds) -> bool:
    if not _present(v.arduino_idle, v.arduino_running, v.stm32_running):
        return False
    return v.arduino_diff < th.wire_error_diff and th.hardware_range(
        STM32, ReadState.RUNNING, v.channel
    ).contains(v.stm32_running)


_Rule = tuple[FaultCategory, Callable[[Thresholds], bool], Callable[[ChannelValues, Thresholds], bool]]

RULES: tuple[_Rule, ...] = (
    (FaultCategory.DRAIN_SUPPLY_SHORT, lambda th: th.show_mosfet_detection, _drain_supply),
    (FaultCategory.LOAD_DISCONNECTED, lambda th: th.show_load_detection, _load_disconnected),
    (FaultCategory.GATE_DRAIN_SHORT, lambda th: th.show_mosfet_detection, _gate_drain),
    (FaultCategory.DRAIN_SOURCE_SHORT, lambda th: th.show_mosfet_detection, _drain_source),
    (FaultCategory.DRAIN_GROUND_SHORT, lambda th: th.show_mosfet_detection, _drain_ground),
    (FaultCategory.GATE_GROUND_SHORT, lambda th: th.show_mosfet_detection, _gate_ground),
    (FaultCategory.GATE_SOURCE_SHORT, lambda th: th.show_mosfet_detection, _gate_source),
    (FaultCategory.GPIO_STUCK_ON, lambda th: th.show_gpio_status_detection, _gpio_stuck_on),
    (FaultCategory.GPIO_STUCK_OFF, lambda th: th.show_gpio_status_detection, _gpio_stuck_off),
    (FaultCategory.WIRE_ERROR, lambda th: th.show_wire_error_detection, _wire_error),
)


def classify(values: ChannelValues, thresholds: Thresholds) -> Optional[FaultCategory]:
    """First matching fault category for one channel, or None.

    Parameters
    ----------
    values : ChannelValues
        The channel's readings; missing ones are None.
    thresholds : Thresholds
        Thresholds and feature toggles of the run.

    Returns
    -------
    Optional[FaultCategory]
        None when no enabled rule matches.
    """
    for category, enabled, rule in RULES:
        if enabled(thresholds) and rule(values, thresholds):
            return category
    return None


def classify_channels(
    store: ReadingStore, channels: Iterable[int], thresholds: Thresholds
) -> list[FaultVerdict]:
    """Verdicts for every channel in ``channels`` that matches a rule."""
    verdicts = []
    for ch in channels:
        category = classify(ChannelValues.from_store(store, ch), thresholds)
        if category is not None:
            verdicts.append(FaultVerdict(channel_id=ch, category=category))
    return verdicts
