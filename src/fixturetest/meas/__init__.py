# -*- coding: utf-8 -*-
"""
Measurement and evaluation for one fixture test run.

- `ReadingStore`: per-channel reading history (first idle baseline, latest value)
- `Correlator`: GPIO command confirmation with retry
- `BatchReader`: paired reads from both links with bounded retry
- `AdjacencyDetector`: short circuits between neighbouring pins
- `SensorSweep`: pressure, temperature and flow sensors
- `classify` / `classify_channels`: per-channel fault rules
- `build_report`: range checks and the pass/fail verdict
- `build_idle_report`: the same for an idle-only (BodyDoor) run, with supply rail checks
- `Workflow`: the state machine that runs all of the above

See Also
--------
fixturetest.system : The system a workflow runs on
"""

from .adjacency import (
    PIN_ADJACENCY,
    AdjacencyDetector,
    ProbeOutcome,
    ProbeResult,
    Rail,
    format_snapshot,
    gpio_neighbours,
    pin_name,
)
from .batch_reader import BatchReader, BatchResult
from .classifier import ChannelValues, classify, classify_channels
from .correlator import CommandExpectation, Correlator
from .debug_history import DebugHistory
from .result import (
    build_idle_report,
    build_report,
    check_hardware_ranges,
    check_power_anomalies,
    check_sensors,
    check_vdd_short,
    filter_adjacent_items,
    missing_items,
)
from .sensors import SensorSweep
from .store import ReadingStore
from .workflow import TERMINAL_STATES, WORKFLOW_STATE, Workflow

__all__ = [
    "AdjacencyDetector",
    "BatchReader",
    "BatchResult",
    "ChannelValues",
    "CommandExpectation",
    "Correlator",
    "DebugHistory",
    "PIN_ADJACENCY",
    "ProbeOutcome",
    "ProbeResult",
    "Rail",
    "ReadingStore",
    "SensorSweep",
    "TERMINAL_STATES",
    "WORKFLOW_STATE",
    "Workflow",
    "build_idle_report",
    "build_report",
    "check_hardware_ranges",
    "check_power_anomalies",
    "check_sensors",
    "check_vdd_short",
    "classify",
    "classify_channels",
    "filter_adjacent_items",
    "format_snapshot",
    "gpio_neighbours",
    "missing_items",
    "pin_name",
]
