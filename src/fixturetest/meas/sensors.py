"""Sensor sweep: pressure and temperature sensors, then the flow meter test.

Temperature sensors (DS18B20 on the STM32, the MCU die sensor on the Arduino)
need a full conversion before their value is valid, so they get
``temp_sensor_wait_ms``; pressure sensors get ``sensor_wait_ms``. Sensors that
did not answer are retried up to ``max_retry_per_id`` times.

The flow test asserts ``flowon`` and takes three readings from both links,
then releases it with ``flowoff``, takes a final STM32 reading and clears the
STM32 flow counter.
"""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from fixturetest.meas.batch_reader import BatchReader
from fixturetest.protocol.channels import FLOW_OFF, FLOW_ON
from fixturetest.protocol.codec import CLEAR_FLOW_PAYLOAD, encode, read_payload
from fixturetest.types.config import MAIN_PROFILE, DeviceProfile, Thresholds
from fixturetest.types.readings import ReadState
from fixturetest.types.roles import ARDUINO, STM32, DeviceRole


class SensorSweep:
    def __init__(
        self,
        reader: BatchReader,
        thresholds: Thresholds,
        profile: DeviceProfile = MAIN_PROFILE,
        on_status: Optional[Callable[[str, float], None]] = None,
    ):
        self.reader = reader
        self.store = reader.store
        self.thresholds = thresholds
        self.profile = profile
        self.on_status = on_status

    def _status(self, text: str, progress: float):
        if self.on_status is not None:
            self.on_status(text, progress)

    def _connected(self, device: DeviceRole) -> bool:
        link = self.reader.arduino if device == ARDUINO else self.reader.stm32
        return link is not None and link.is_connected()

    def wait_ms_for(self, channel: int) -> int:
        if channel in self.profile.temperature_channels:
            return self.thresholds.temp_sensor_wait_ms
        return self.thresholds.sensor_wait_ms

    async def run(self) -> bool:
        """Run the whole sweep. Returns False if cancelled."""
        self._status("Reading sensors", 0.68)
        for device in (ARDUINO, STM32):
            if not self._connected(device):
                logger.warning("{} not connected, skipping its sensors", device)
                continue
            if not await self._read_sensors(device):
                return False
        for device in (ARDUINO, STM32):
            if self._connected(device) and not await self._retry_sensors(device):
                return False
        return await self.flow_test()

    async def _read_sensors(self, device: DeviceRole) -> bool:
        for ch in self.profile.sweep_sensors(device):
            if self.reader.cancelled:
                return False
            self.reader.highlight(ch, "sensor")
            self.store.set_channel_state(ch, ReadState.RUNNING)
            await self.reader.read_once(ch, ReadState.RUNNING, [device], self.wait_ms_for(ch))
        self.reader.highlight(None)
        return True

    async def _retry_sensors(self, device: DeviceRole) -> bool:
        for ch in self.profile.sweep_sensors(device):
            for attempt in range(self.thresholds.max_retry_per_id):
                if self.reader.cancelled:
                    return False
                if self.store.count(device, ReadState.RUNNING, ch):
                    break
                logger.debug(
                    "Retrying {} sensor {} ({}/{})",
                    device,
                    ch,
                    attempt + 1,
                    self.thresholds.max_retry_per_id,
                )
                self.reader.highlight(ch, "sensor")
                self.store.set_channel_state(ch, ReadState.RUNNING)
                await self.reader.read_once(
                    ch, ReadState.RUNNING, [device], self.wait_ms_for(ch)
                )
        self.reader.highlight(None)
        return True

    async def flow_test(self) -> bool:
        th = self.thresholds
        flow = self.profile.flow_channel
        reader = self.reader

        self._status("Starting flow test", 0.75)
        reader.highlight(flow, "sensor")
        self.store.set_channel_state(flow, ReadState.RUNNING)
        if self._connected(ARDUINO):
            reader.arduino.send_text(FLOW_ON)
        if await reader.pause(th.flow_settle_ms / 1000):
            return False

        for i in range(th.flow_rounds):
            if reader.cancelled:
                return False
            self._status("Reading flow meter", 0.76 + i * 0.02)
            if self._connected(ARDUINO):
                before = self.store.count(ARDUINO, ReadState.RUNNING, flow)
                reader.arduino.send_text(FLOW_ON)  # also reports the pulse count
                await reader.wait_for_growth(
                    ARDUINO, ReadState.RUNNING, flow, before, th.flow_read_ms
                )
            if self._connected(STM32):
                await self._read_stm32_flow()
            if i < th.flow_rounds - 1 and await reader.pause(th.flow_gap_ms / 1000):
                return False

        reader.highlight(None)
        self._status("Stopping flow test", 0.82)
        if self._connected(ARDUINO):
            reader.arduino.send_text(FLOW_OFF)
        if await reader.pause(th.flow_settle_ms / 1000):
            return False

        if self._connected(STM32):
            await self._read_stm32_flow()
            reader.stm32.send_frame(encode(CLEAR_FLOW_PAYLOAD))
        return not reader.cancelled

    async def _read_stm32_flow(self):
        flow = self.profile.flow_channel
        before = self.store.count(STM32, ReadState.RUNNING, flow)
        self.reader.stm32.send_frame(encode(read_payload(flow)))
        await self.reader.wait_for_growth(
            STM32, ReadState.RUNNING, flow, before, self.thresholds.flow_read_ms
        )
