"""Short-circuit detection between physically adjacent pins.

While one channel is driven ON, each GPIO neighbour of its STM32 pin is read
again and compared with that neighbour's first idle reading. A neighbour that
moved by more than ``Thresholds.adjacent_short`` is shorted to the driven pin.
The two links are judged independently because their noise floors differ.

Arduino-side evidence is ignored when the driven channel itself is unreliable:

- load disconnected: its STM32 running value sits in the load-disconnected band;
- not actuating: its Arduino idle and running values barely differ while the
  STM32 running value is normal.

Rails (``Vdd``/``Vss``) and unconnected sides are reported for information only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from loguru import logger

from fixturetest.meas.batch_reader import BatchReader
from fixturetest.meas.store import ReadingStore
from fixturetest.types.config import Thresholds
from fixturetest.types.readings import ReadState
from fixturetest.types.roles import ARDUINO, STM32, DeviceRole

PROBE_SENDS = 5
PROBE_WAIT_MS = 800
PROBE_GAP_POLLS = 2  # pause between sends, in poll intervals


class Rail(str, Enum):
    SUPPLY = "Vdd"
    GROUND = "Vss"
    NONE = "none"


SUPPLY_RAIL = Rail.SUPPLY
GROUND_RAIL = Rail.GROUND
NONE = Rail.NONE


@dataclass(frozen=True)
class Gpio:
    channel: int


Neighbour = Union[Gpio, Rail]


@dataclass(frozen=True)
class PinInfo:
    pin_name: str
    neighbours: tuple[Neighbour, Neighbour]


def _pin(name: str, n1, n2) -> PinInfo:
    def conv(n):
        return Gpio(n) if isinstance(n, int) else n

    return PinInfo(name, (conv(n1), conv(n2)))


# STM32 pin of each channel and what sits either side of it on the package
PIN_ADJACENCY: dict[int, PinInfo] = {
    0: _pin("PB15", 1, NONE),
    1: _pin("PB14", 0, NONE),
    2: _pin("PB13", 3, NONE),
    3: _pin("PB12", 2, SUPPLY_RAIL),
    4: _pin("PB11", 5, GROUND_RAIL),
    5: _pin("PB10", 4, 6),
    6: _pin("PE9", 5, 7),
    7: _pin("PE8", 6, 8),
    8: _pin("PE7", 7, 9),
    9: _pin("PB2", 8, NONE),
    10: _pin("PC6", 17, 16),
    11: _pin("PD11", 13, 12),
    12: _pin("PD10", 11, NONE),
    13: _pin("PD12", 17, 11),
    14: _pin("PC9", 15, NONE),
    15: _pin("PC8", 14, 16),
    16: _pin("PC7", 15, 10),
    17: _pin("PD13", 10, 13),
}


def pin_name(channel: int, table: dict[int, PinInfo] = PIN_ADJACENCY) -> str:
    info = table.get(channel)
    return info.pin_name if info else f"ID{channel}"


def gpio_neighbours(channel: int, table: dict[int, PinInfo] = PIN_ADJACENCY) -> list[int]:
    info = table.get(channel)
    if info is None:
        return []
    return [n.channel for n in info.neighbours if isinstance(n, Gpio)]


def rail_neighbours(channel: int, table: dict[int, PinInfo] = PIN_ADJACENCY) -> list[Rail]:
    info = table.get(channel)
    if info is None:
        return []
    return [n for n in info.neighbours if isinstance(n, Rail)]


def pair_key(a: int, b: int) -> str:
    return f"{min(a, b)}-{max(a, b)}"


@dataclass
class ProbeResult:
    """Comparison of one neighbour against its idle baseline."""

    test_id: int
    adjacent_id: int
    threshold: int
    stm32_base: Optional[int] = None
    stm32_new: Optional[int] = None
    stm32_short: bool = False
    arduino_base: Optional[int] = None
    arduino_new: Optional[int] = None
    arduino_short: bool = False
    arduino_suppressed: bool = False

    @property
    def is_short(self) -> bool:
        return self.stm32_short or self.arduino_short


@dataclass
class ProbeOutcome:
    test_id: int
    results: list[ProbeResult] = field(default_factory=list)
    rails: list[Rail] = field(default_factory=list)
    load_disconnected: bool = False
    not_actuating: bool = False


class AdjacencyDetector:
    """Probes the neighbours of each stimulated channel.

    Violations accumulate in `items` across a run, formatted
    ``"STM32: PB12-PB13 (ID3-ID2)"``, driven channel first.
    """

    def __init__(
        self,
        store: ReadingStore,
        reader: BatchReader,
        thresholds: Thresholds,
        table: dict[int, PinInfo] = PIN_ADJACENCY,
    ):
        self.store = store
        self.reader = reader
        self.thresholds = thresholds
        self.table = table
        self.items: list[str] = []
        self.tested_pairs: set[str] = set()

    def reset(self):
        self.items.clear()
        self.tested_pairs.clear()

    def actuation_flags(self, test_id: int) -> tuple[bool, bool]:
        """``(load_disconnected, not_actuating)`` for the driven channel."""
        th = self.thresholds
        stm32_running = self.store.latest_value(STM32, ReadState.RUNNING, test_id)
        ard_idle = self.store.first_value(ARDUINO, ReadState.IDLE, test_id)
        ard_running = self.store.latest_value(ARDUINO, ReadState.RUNNING, test_id)

        load_disconnected = stm32_running is not None and th.load_disconnected_band().contains(
            stm32_running
        )
        if load_disconnected:
            return True, False

        not_actuating = False
        if ard_idle is not None and ard_running is not None and stm32_running is not None:
            stm32_ok = th.hardware_range(STM32, ReadState.RUNNING, test_id).contains(
                stm32_running
            )
            not_actuating = (
                stm32_ok and abs(ard_idle - ard_running) < th.adjacent_not_actuating_diff
            )
        return False, not_actuating

    async def probe(self, test_id: int) -> ProbeOutcome:
        """Read every GPIO neighbour of ``test_id`` and record violations."""
        load_disconnected, not_actuating = self.actuation_flags(test_id)
        outcome = ProbeOutcome(
            test_id=test_id,
            rails=rail_neighbours(test_id, self.table),
            load_disconnected=load_disconnected,
            not_actuating=not_actuating,
        )
        if load_disconnected or not_actuating:
            logger.debug(
                "ch{}: Arduino adjacency evidence ignored (load disconnected={}, not actuating={})",
                test_id,
                load_disconnected,
                not_actuating,
            )

        for adj in gpio_neighbours(test_id, self.table):
            if self.reader.cancelled:
                break
            key = pair_key(test_id, adj)
            if self.thresholds.adjacent_short_test_optimization and key in self.tested_pairs:
                logger.trace("Skipping pair {}, already tested", key)
                continue
            self.tested_pairs.add(key)

            new_values = await self._read_neighbour(adj)
            result = self._compare(
                test_id, adj, new_values, load_disconnected or not_actuating
            )
            outcome.results.append(result)
        return outcome

    async def _read_neighbour(self, adj: int) -> dict[DeviceRole, int]:
        # the neighbour is idle while probed, so probe values land in its idle series
        self.store.set_channel_state(adj, ReadState.IDLE)
        devices = self.reader.connected_devices(adj)
        values: dict[DeviceRole, int] = {}
        for send in range(PROBE_SENDS):
            if self.reader.cancelled:
                break
            pending = [d for d in devices if d not in values]
            arrived = await self.reader.read_once(
                adj, ReadState.IDLE, pending, PROBE_WAIT_MS
            )
            for d in arrived:
                values[d] = self.store.latest_value(d, ReadState.IDLE, adj)
            if len(values) == len(devices):
                break
            if send < PROBE_SENDS - 1:
                await self._gap()
        return values

    async def _gap(self):
        await asyncio.sleep(PROBE_GAP_POLLS * self.reader.poll_interval)

    def _compare(
        self,
        test_id: int,
        adj: int,
        new_values: dict[DeviceRole, int],
        arduino_suppressed: bool,
    ) -> ProbeResult:
        threshold = self.thresholds.adjacent_short
        res = ProbeResult(
            test_id=test_id,
            adjacent_id=adj,
            threshold=threshold,
            stm32_base=self.store.first_value(STM32, ReadState.IDLE, adj),
            stm32_new=new_values.get(STM32),
            arduino_base=self.store.first_value(ARDUINO, ReadState.IDLE, adj),
            arduino_new=new_values.get(ARDUINO),
            arduino_suppressed=arduino_suppressed,
        )
        label = (
            f"{pin_name(test_id, self.table)}-{pin_name(adj, self.table)} "
            f"(ID{test_id}-ID{adj})"
        )
        if res.stm32_new is not None and res.stm32_base is not None:
            res.stm32_short = abs(res.stm32_new - res.stm32_base) > threshold
            if res.stm32_short:
                self.items.append(f"STM32: {label}")
        if (
            not arduino_suppressed
            and res.arduino_new is not None
            and res.arduino_base is not None
        ):
            res.arduino_short = abs(res.arduino_new - res.arduino_base) > threshold
            if res.arduino_short:
                self.items.append(f"Arduino: {label}")
        if res.is_short:
            logger.info("Adjacent short suspected: {}", label)
        return res


def _fmt(v: Optional[int]) -> str:
    return "N/A" if v is None else str(v)


def format_snapshot(outcome: ProbeOutcome, table: dict[int, PinInfo] = PIN_ADJACENCY) -> str:
    """Text block describing one stimulated channel and its neighbour probes."""
    rule = "=" * 36
    lines = [
        rule,
        f"Running {pin_name(outcome.test_id, table)} (ID{outcome.test_id})",
        "Adjacent: "
        + ", ".join(
            f"{pin_name(r.adjacent_id, table)}({r.adjacent_id})" for r in outcome.results
        ),
    ]
    if outcome.rails:
        lines.append("Rails: " + ", ".join(r.value for r in outcome.rails))
    lines.append(rule)
    for i, r in enumerate(outcome.results):
        stm32_diff = (
            abs(r.stm32_new - r.stm32_base)
            if r.stm32_new is not None and r.stm32_base is not None
            else 0
        )
        ard_diff = (
            abs(r.arduino_new - r.arduino_base)
            if r.arduino_new is not None and r.arduino_base is not None
            else 0
        )
        ard_status = "skipped" if r.arduino_suppressed else (
            "SHORT" if r.arduino_short else "ok"
        )
        lines += [
            f"{i + 1}. {pin_name(r.adjacent_id, table)} (ID{r.adjacent_id})",
            f"    pair {pair_key(r.test_id, r.adjacent_id)}",
            f"    STM32   base={_fmt(r.stm32_base)} new={_fmt(r.stm32_new)} "
            f"diff={stm32_diff} {'SHORT' if r.stm32_short else 'ok'}",
            f"    Arduino base={_fmt(r.arduino_base)} new={_fmt(r.arduino_new)} "
            f"diff={ard_diff} {ard_status}",
            f"    threshold {r.threshold}",
        ]
        if i < len(outcome.results) - 1:
            lines.append("-" * 36)
    return "\n".join(lines)
