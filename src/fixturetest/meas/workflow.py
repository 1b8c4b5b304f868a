"""The fixture test workflow.

One run walks through

    CONNECT -> IDLE_BASELINE -> ADJACENCY_AND_RUNNING -> CLOSE_OUTPUTS
            -> SENSOR_SWEEP -> RESULT -> FINISHED

and ends early in CANCELLED, FAILED or WRONG_ROLE. Each state is a coroutine
that does its work and returns the next state; `Workflow.state_machine` routes
between them, turns an unexpected exception into FAILED and reports every
transition on the notification queue.

Cancellation is cooperative: `Workflow.cancel` sets an event that every wait
in the readers checks, and the loop checks it again before entering a state.
Any run that does not finish, including one whose task is cancelled, sends a
close-all without waiting for its confirmation, so no output is left on. A
cancelled run still reports what it measured so far.

On a profile without the STM32 (BodyDoor) the run is

    CONNECT -> IDLE_BASELINE -> RESULT -> FINISHED

with the Arduino alone and no outputs driven.
"""

from __future__ import annotations

import asyncio
import types
import uuid
from typing import TYPE_CHECKING, Optional

from loguru import logger

from fixturetest.device.device import ConnectResult
from fixturetest.meas.adjacency import AdjacencyDetector, format_snapshot, gpio_neighbours
from fixturetest.meas.batch_reader import BatchReader
from fixturetest.meas.classifier import classify_channels
from fixturetest.meas.debug_history import DebugHistory
from fixturetest.meas.result import build_idle_report, build_report
from fixturetest.meas.sensors import SensorSweep
from fixturetest.protocol.channels import FLOW_OFF
from fixturetest.protocol.codec import (
    CLOSE_ALL_PAYLOAD,
    OP_GPIO_OFF,
    OP_GPIO_ON,
    encode,
    gpio_payload,
)
from fixturetest.types import (
    ARDUINO,
    DebugSnapshot,
    ReadingHighlight,
    ReadState,
    ReportReady,
    StatusUpdate,
    TestReport,
    Thresholds,
    WorkflowUpdate,
    WrongRoleDetected,
)
from fixturetest.util.defaults import POLL_INTERVAL

if TYPE_CHECKING:
    from fixturetest.system import FixtureSystem
    from fixturetest.types import Notification

# ----------------
# Available States
# ----------------

WORKFLOW_STATE = types.SimpleNamespace()
WORKFLOW_STATE.CONNECT = "CONNECT"
WORKFLOW_STATE.IDLE_BASELINE = "IDLE_BASELINE"
WORKFLOW_STATE.ADJACENCY_AND_RUNNING = "ADJACENCY_AND_RUNNING"
WORKFLOW_STATE.CLOSE_OUTPUTS = "CLOSE_OUTPUTS"
WORKFLOW_STATE.SENSOR_SWEEP = "SENSOR_SWEEP"
WORKFLOW_STATE.RESULT = "RESULT"
WORKFLOW_STATE.FINISHED = "FINISHED"
WORKFLOW_STATE.CANCELLED = "CANCELLED"
WORKFLOW_STATE.FAILED = "FAILED"
WORKFLOW_STATE.WRONG_ROLE = "WRONG_ROLE"

TERMINAL_STATES = (
    WORKFLOW_STATE.FINISHED,
    WORKFLOW_STATE.CANCELLED,
    WORKFLOW_STATE.FAILED,
    WORKFLOW_STATE.WRONG_ROLE,
)


class Workflow:
    """One test run on a `FixtureSystem`.

    Parameters
    ----------
    system : FixtureSystem
        Links, store and correlator to run on.
    notif_queue : asyncio.Queue[Notification]
        Receives every notification of the run.
    thresholds : Thresholds, optional
        Copied at construction; later edits to the original do not affect
        this run.
    slow_mode : bool
        Record a snapshot after each adjacency sub-test and pause on it.
    poll_interval : float
        Seconds between store checks while waiting for replies.
    """

    state: str = WORKFLOW_STATE.CONNECT
    run_id: str = ""

    def __init__(
        self,
        system: FixtureSystem,
        notif_queue: asyncio.Queue[Notification],
        thresholds: Optional[Thresholds] = None,
        slow_mode: bool = False,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.system = system
        self.notif_queue = notif_queue
        self.thresholds = (thresholds or Thresholds()).copy()
        self.profile = system.profile
        self.store = system.store
        self.slow_mode = slow_mode
        self.run_id = str(uuid.uuid4())

        self._cancel_event = asyncio.Event()
        self.history = DebugHistory()
        self.reader = BatchReader(
            self.store,
            system.arduino,
            system.stm32,
            cancel=self._cancel_event,
            on_highlight=self._on_highlight,
            poll_interval=poll_interval,
            channels=self.profile.channels,
        )
        self.detector = AdjacencyDetector(self.store, self.reader, self.thresholds)
        self.sweep = SensorSweep(
            self.reader, self.thresholds, self.profile, on_status=self._status
        )

    # ----------------------------------------------------------------------------------
    # ===================================== API ========================================
    # ----------------------------------------------------------------------------------

    async def state_machine(self) -> str:
        """Run until a terminal state and return it."""
        self.state = WORKFLOW_STATE.CONNECT
        self.store.clear_all()
        self.history.clear()
        self.detector.reset()
        logger.info("Workflow {} started (slow mode: {})", self.run_id, self.slow_mode)

        try:
            while self.state not in TERMINAL_STATES:
                if self._cancel_event.is_set():
                    next_state = WORKFLOW_STATE.CANCELLED
                else:
                    # router *does stuff*, then says what the next state should be
                    try:
                        next_state = await self._router(self.state)
                    except Exception:
                        logger.exception("Error in workflow state machine.")
                        next_state = WORKFLOW_STATE.FAILED
                    if self._cancel_event.is_set() and next_state not in TERMINAL_STATES:
                        next_state = WORKFLOW_STATE.CANCELLED
                self._set_state(next_state)
        except asyncio.CancelledError:
            logger.warning("Workflow {} task cancelled in {}", self.run_id, self.state)
            self._cancel_event.set()
            self._set_state(WORKFLOW_STATE.CANCELLED)
            self._finish()
            raise

        self._finish()
        return self.state

    def cancel(self):
        logger.info("Workflow {} cancel requested", self.run_id)
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def toggle_pause(self) -> bool:
        """Pause or resume the slow-mode wait. Returns True if now paused."""
        return self.history.toggle_pause()

    def history_prev(self) -> Optional[str]:
        text = self.history.prev()
        self._emit_snapshot()
        return text

    def history_next(self) -> Optional[str]:
        text = self.history.next()
        self._emit_snapshot()
        return text

    def get_info(self) -> dict:
        return {
            "run_id": self.run_id,
            "state": self.state,
            "slow_mode": self.slow_mode,
            "snapshots": len(self.history),
        }

    # ----------------------------------------------------------------------------------
    # ================================= HELPER METHODS =================================
    # ----------------------------------------------------------------------------------

    def _set_state(self, next_state: str):
        if self.state != next_state:
            logger.info("Workflow state: {} {} -> {}", self.run_id, self.state, next_state)
            self.notif_queue.put_nowait(
                WorkflowUpdate(
                    run_id=self.run_id, old_state=self.state, new_state=next_state
                )
            )
        self.state = next_state

    def _status(self, status: str, progress: float):
        self.notif_queue.put_nowait(StatusUpdate(status=status, progress=progress))

    def _on_highlight(self, channel: Optional[int], section: str):
        neighbours = gpio_neighbours(channel) if channel is not None and section == "running" else []
        self.notif_queue.put_nowait(
            ReadingHighlight(channel=channel, section=section, neighbours=neighbours)
        )

    def _emit_snapshot(self):
        index, total, text = self.history.snapshot()
        self.notif_queue.put_nowait(DebugSnapshot(index=index, total=total, text=text))

    async def _gpio(self, payload) -> bool:
        th = self.thresholds
        return await self.system.correlator.send_and_await(
            payload,
            retry_interval=th.confirm_retry_interval_ms / 1000,
            max_retries=th.confirm_max_retries,
        )

    def _label(self, channel: int) -> str:
        return self.profile.channels.item_label(channel)

    def _build_report(self) -> TestReport:
        if not self.profile.uses_stm32:
            return build_idle_report(self.store, self.thresholds, self.profile)
        verdicts = classify_channels(self.store, self.profile.gpio_channels, self.thresholds)
        return build_report(
            self.store, verdicts, self.detector.items, self.thresholds, self.profile
        )

    def _finish(self):
        if self.state != WORKFLOW_STATE.FINISHED and self.profile.uses_stm32:
            stm32 = self.system.stm32
            if stm32.is_connected():
                logger.info("Closing all outputs after {} run", self.state.lower())
                stm32.send_frame(encode(CLOSE_ALL_PAYLOAD))
        if self.state == WORKFLOW_STATE.CANCELLED:
            report = self._build_report()
            report.passed = False
            report.cancelled = True
            self.system.last_result = report
            self.notif_queue.put_nowait(ReportReady(run_id=self.run_id, report=report))
        self._on_highlight(None, "")
        logger.info("Workflow {} ended in {}", self.run_id, self.state)

    async def _router(self, state: str) -> str:
        match state:
            case WORKFLOW_STATE.CONNECT:
                return await self._state_connect()
            case WORKFLOW_STATE.IDLE_BASELINE:
                return await self._state_idle_baseline()
            case WORKFLOW_STATE.ADJACENCY_AND_RUNNING:
                return await self._state_adjacency_and_running()
            case WORKFLOW_STATE.CLOSE_OUTPUTS:
                return await self._state_close_outputs()
            case WORKFLOW_STATE.SENSOR_SWEEP:
                return await self._state_sensor_sweep()
            case WORKFLOW_STATE.RESULT:
                return self._state_result()
            case _:
                raise ValueError(f"Invalid workflow state: {state}")

    # ----------------------------------------------------------------------------------
    # ===================================== STATES =====================================
    # ----------------------------------------------------------------------------------

    async def _state_connect(self) -> str:
        self._status("Connecting to Arduino", 0.02)
        result, port = await self.system.connect_arduino()
        match result:
            case ConnectResult.SUCCESS:
                pass
            case ConnectResult.WRONG_ROLE:
                self.notif_queue.put_nowait(WrongRoleDetected(role=ARDUINO.key, port=port or ""))
                return WORKFLOW_STATE.WRONG_ROLE
            case _:
                logger.error("Arduino connection failed: {}", result.value)
                return WORKFLOW_STATE.FAILED
        if not self.profile.uses_stm32:
            return WORKFLOW_STATE.IDLE_BASELINE
        self.system.arduino.send_text(FLOW_OFF)

        self._status("Connecting to STM32", 0.06)
        result, _ = await self.system.connect_stm32(exclude={port})
        if result != ConnectResult.SUCCESS:
            logger.error("STM32 connection failed: {}", result.value)
            return WORKFLOW_STATE.FAILED
        return WORKFLOW_STATE.IDLE_BASELINE

    async def _state_idle_baseline(self) -> str:
        th = self.thresholds
        self._status("Reading idle baseline", 0.1)
        if self.profile.uses_stm32 and not await self._gpio(CLOSE_ALL_PAYLOAD):
            logger.warning("Close-all not confirmed before the idle baseline")
        channels = self.profile.idle_channels
        self.store.set_channels_state(channels, ReadState.IDLE)
        result = await self.reader.read_batch(
            channels, ReadState.IDLE, th.max_retry_per_id, th.hardware_wait_ms
        )
        if result.cancelled:
            return WORKFLOW_STATE.CANCELLED
        if not self.profile.uses_stm32:
            return WORKFLOW_STATE.RESULT
        return WORKFLOW_STATE.ADJACENCY_AND_RUNNING

    async def _state_adjacency_and_running(self) -> str:
        th = self.thresholds
        channels = self.profile.gpio_channels
        if not await self._gpio(CLOSE_ALL_PAYLOAD):
            logger.warning("Close-all not confirmed before running tests")

        for i, ch in enumerate(channels):
            if self.cancelled:
                return WORKFLOW_STATE.CANCELLED
            self._status(f"Testing {self._label(ch)}", 0.3 + 0.28 * (i + 1) / len(channels))
            self.reader.highlight(ch, "running")

            if not await self._gpio(gpio_payload(OP_GPIO_ON, [ch])):
                logger.warning("ON for {} not confirmed", self._label(ch))
            await self.reader.read_running(ch)
            outcome = await self.detector.probe(ch)

            if self.slow_mode and outcome.results:
                self.history.add(format_snapshot(outcome))
                self._emit_snapshot()
                if await self.history.debug_delay(
                    th.slow_mode_delay_ms / 1000, self._cancel_event
                ):
                    return WORKFLOW_STATE.CANCELLED

            if not await self._gpio(gpio_payload(OP_GPIO_OFF, [ch])):
                logger.warning("OFF for {} not confirmed", self._label(ch))
            self.store.set_channel_state(ch, ReadState.IDLE)

        self.reader.highlight(None)
        if not await self._gpio(CLOSE_ALL_PAYLOAD):
            logger.warning("Close-all not confirmed after running tests")
        return WORKFLOW_STATE.CLOSE_OUTPUTS

    async def _state_close_outputs(self) -> str:
        self._status("Closing outputs", 0.6)
        if not await self._gpio(CLOSE_ALL_PAYLOAD):
            logger.warning("Close-all not confirmed before the sensor sweep")
        return WORKFLOW_STATE.SENSOR_SWEEP

    async def _state_sensor_sweep(self) -> str:
        if not await self.sweep.run():
            return WORKFLOW_STATE.CANCELLED
        return WORKFLOW_STATE.RESULT

    def _state_result(self) -> str:
        self._status("Evaluating results", 0.9)
        report = self._build_report()
        for v in report.verdicts:
            logger.info("{}: {}", self._label(v.channel_id), v.category.value)
        if report.missing_items:
            logger.warning("Channels with missing data: {}", report.missing_items)
        logger.info("Test {} {}", self.run_id, "PASSED" if report.passed else "FAILED")
        self.system.last_result = report
        self.notif_queue.put_nowait(ReportReady(run_id=self.run_id, report=report))
        self._status("Done", 1.0)
        return WORKFLOW_STATE.FINISHED
