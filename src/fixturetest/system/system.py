# -*- coding: utf-8 -*-
"""
The fixture system: two links, the reading store and the GPIO correlator.

`FixtureSystem` owns the devices for both roles and wires their inbound
callbacks into the shared `ReadingStore` and `Correlator`. It finds the links by
scanning serial ports, runs at most one `Workflow` at a time and keeps the
report of the last run.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from loguru import logger

from fixturetest.device import ConnectResult, Device, MockArduino, MockFixture, MockStm32
from fixturetest.meas.correlator import Correlator
from fixturetest.meas.store import ReadingStore
from fixturetest.meas.workflow import Workflow
from fixturetest.protocol.codec import CLOSE_ALL_PAYLOAD, encode
from fixturetest.system.settings import ThresholdSettings
from fixturetest.types import (
    ARDUINO,
    MAIN_PROFILE,
    STM32,
    ConnectionUpdate,
    DeviceProfile,
    DeviceRole,
    TestReport,
    Thresholds,
)
from fixturetest.util.check_hw import list_ports
from fixturetest.util.defaults import PACKDOWN_TIMEOUT, POLL_INTERVAL, PORT_RETRY_GAP

if TYPE_CHECKING:
    from fixturetest.types import Notification

PortLister = Callable[..., list[str]]


class FixtureSystem:
    """Both links of one fixture and the state shared between them.

    Parameters
    ----------
    arduino : Device
        Device for the `ARDUINO` role (text protocol).
    stm32 : Device
        Device for the `STM32` role (framed protocol).
    port_lister : Callable
        ``port_lister(exclude=...) -> list[str]``, candidate ports in order.
    profile : DeviceProfile
        Channel layout of the fixture.
    settings : ThresholdSettings, optional
        Source of the thresholds a run starts from.
    """

    def __init__(
        self,
        arduino: Device,
        stm32: Device,
        port_lister: PortLister = list_ports,
        profile: DeviceProfile = MAIN_PROFILE,
        settings: Optional[ThresholdSettings] = None,
        port_retry_gap: float = PORT_RETRY_GAP,
    ):
        self._by_role: dict[DeviceRole, Device] = {}
        self.add_device_with_role(arduino, ARDUINO)
        self.add_device_with_role(stm32, STM32)
        self.arduino = arduino
        self.stm32 = stm32
        self.port_lister = port_lister
        self.profile = profile
        self.settings = settings or ThresholdSettings()
        self.port_retry_gap = port_retry_gap

        self.store = ReadingStore(profile)
        self.correlator = Correlator(
            stm32.send_frame, stm32.is_connected, profile.confirmable_opcodes
        )
        self.notif_queue: Optional[asyncio.Queue[Notification]] = None
        self._workflow: Optional[Workflow] = None
        self._workflow_done: Optional[asyncio.Event] = None
        self._last_result: Optional[TestReport] = None

        arduino.on_reading = self._on_arduino_reading
        arduino.on_disconnect = self._on_arduino_lost
        stm32.on_reading = self._on_stm32_reading
        stm32.on_confirm = self._on_confirm
        stm32.on_disconnect = self._on_stm32_lost

    # ------------------------------------------------------------------
    # devices and roles
    # ------------------------------------------------------------------

    def add_device_with_role(self, device: Device, role: DeviceRole) -> None:
        """Add a device to the system and assign it a role.

        Raises
        ------
        ValueError
            If role is already assigned to a different device
        TypeError
            If device type is incompatible with role
        """
        is_valid, error_msg = role.validate_device_type(type(device))
        if not is_valid:
            raise TypeError(f"Cannot assign role {role}: {error_msg}")

        holder = self._by_role.get(role)
        if holder is not None and holder is not device:
            raise ValueError(
                f"Role {role} already assigned to {holder.__class__.__name__}"
            )
        self._by_role[role] = device
        device._add_role(role)

    def get_device_by_role(self, role: DeviceRole) -> Device:
        """Get the device that fulfils ``role``.

        Raises
        ------
        ValueError
            If no device fulfils the role
        """
        try:
            return self._by_role[role]
        except KeyError:
            raise ValueError(f"No device found for role {role}") from None

    def has_device_role(self, role: DeviceRole) -> bool:
        return role in self._by_role

    def get_device_roles(self) -> set[DeviceRole]:
        return set(self._by_role)

    # ------------------------------------------------------------------
    # inbound callbacks
    # ------------------------------------------------------------------

    def _on_arduino_reading(self, channel: int, value: int):
        self.store.record_value(ARDUINO, channel, value)

    def _on_stm32_reading(self, channel: int, value: int):
        self.store.record_value(STM32, channel, value)

    def _on_confirm(self, command_code: int, bit_mask: int):
        self.store.apply_gpio(command_code, bit_mask)
        self.correlator.confirm(command_code, bit_mask)

    def _on_arduino_lost(self):
        logger.warning("Arduino link lost")
        self._notify_connection(ARDUINO, False, "link lost")

    def _on_stm32_lost(self):
        logger.warning("STM32 link lost, failing any pending GPIO wait")
        self.correlator.invalidate()
        self._notify_connection(STM32, False, "link lost")

    def _notify_connection(self, role: DeviceRole, connected: bool, detail: str = ""):
        if self.notif_queue is None:
            return
        device = self.get_device_by_role(role)
        self.notif_queue.put_nowait(
            ConnectionUpdate(
                role=role.key,
                port=getattr(device, "port", None) or "",
                connected=connected,
                detail=detail,
            )
        )

    # ------------------------------------------------------------------
    # connection
    # ------------------------------------------------------------------

    async def connect_arduino(
        self, exclude: Iterable[str] = ()
    ) -> tuple[ConnectResult, Optional[str]]:
        """Try the Arduino handshake on each candidate port.

        Returns ``(result, port)``. Stops at the first success, and at the first
        port that answers as a different fixture (`ConnectResult.WRONG_ROLE`).
        """
        return await self._connect(ARDUINO, exclude)

    async def connect_stm32(
        self, exclude: Iterable[str] = ()
    ) -> tuple[ConnectResult, Optional[str]]:
        """Try the STM32 firmware-query handshake on each candidate port."""
        return await self._connect(STM32, exclude)

    async def _connect(
        self, role: DeviceRole, exclude: Iterable[str]
    ) -> tuple[ConnectResult, Optional[str]]:
        device = self.get_device_by_role(role)
        if device.is_connected():
            return ConnectResult.SUCCESS, device.port

        ports = self.port_lister(exclude=set(exclude))
        if not ports:
            logger.error("No serial ports available for {}", role)
            return ConnectResult.FAILED, None

        for i, port in enumerate(ports):
            if i:
                await asyncio.sleep(self.port_retry_gap)
            logger.info("Trying {} handshake on {}", role, port)
            result = await device.connect_and_verify(port)
            match result:
                case ConnectResult.SUCCESS:
                    self._notify_connection(role, True)
                    return result, port
                case ConnectResult.WRONG_ROLE:
                    logger.warning("{} on {} belongs to a different fixture", role, port)
                    return result, port
                case _:
                    logger.debug("{} not on {}: {}", role, port, result.value)
        logger.error("{} not found on {}", role, ", ".join(ports))
        return ConnectResult.FAILED, None

    def disconnect_devices(self):
        for device in self._by_role.values():
            device.close()

    # ------------------------------------------------------------------
    # workflow
    # ------------------------------------------------------------------

    @property
    def workflow(self) -> Optional[Workflow]:
        return self._workflow

    @property
    def last_result(self) -> Optional[TestReport]:
        return self._last_result

    @last_result.setter
    def last_result(self, report: TestReport):
        self._last_result = report

    async def run_workflow(
        self,
        notif_queue: asyncio.Queue[Notification],
        slow_mode: bool = False,
        thresholds: Optional[Thresholds] = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> str:
        """Run one test and return its final workflow state.

        Raises
        ------
        RuntimeError
            If a workflow is already running on this system.
        """
        if self._workflow is not None:
            raise RuntimeError("A workflow is already running on this system.")
        self.notif_queue = notif_queue
        self._workflow_done = asyncio.Event()
        self._workflow = Workflow(
            self,
            notif_queue,
            thresholds=thresholds or self.settings.thresholds,
            slow_mode=slow_mode,
            poll_interval=poll_interval,
        )
        try:
            return await self._workflow.state_machine()
        finally:
            self._workflow = None
            self._workflow_done.set()

    def cancel_workflow(self) -> bool:
        if self._workflow is None:
            return False
        self._workflow.cancel()
        return True

    async def packdown(self, timeout: float = PACKDOWN_TIMEOUT):
        """Stop any run, make sure every output is off, then close both links.

        A running workflow is cancelled and given ``timeout`` seconds to reach
        its terminal state, which sends its own close-all. A close-all is sent
        again before the links close, whether the run stopped in time or not.
        """
        if self.cancel_workflow():
            try:
                await asyncio.wait_for(self._workflow_done.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Workflow still running {} s after cancel", timeout)
        if self.profile.uses_stm32 and self.stm32.is_connected():
            logger.info("Closing all outputs before disconnecting")
            self.stm32.send_frame(encode(CLOSE_ALL_PAYLOAD))
        self.disconnect_devices()


def mock_system(
    fixture: Optional[MockFixture] = None,
    settings: Optional[ThresholdSettings] = None,
    profile: DeviceProfile = MAIN_PROFILE,
) -> FixtureSystem:
    """A `FixtureSystem` on a simulated board; no serial ports are touched."""
    fixture = fixture or MockFixture()

    def port_lister(exclude=None, exclude_stlink=True):
        exclude = set(exclude or ())
        return [p for p in fixture.ports if p not in exclude]

    return FixtureSystem(
        MockArduino(fixture, channels=profile.channels),
        MockStm32(fixture),
        port_lister=port_lister,
        profile=profile,
        settings=settings,
        port_retry_gap=0.0,
    )
