import pytest

from fixturetest.device import ConnectResult, MockFixture
from fixturetest.meas import (
    PIN_ADJACENCY,
    AdjacencyDetector,
    BatchReader,
    Rail,
    format_snapshot,
    gpio_neighbours,
    pin_name,
)
from fixturetest.protocol import OP_GPIO_OFF, OP_GPIO_ON, gpio_payload
from fixturetest.system import mock_system
from fixturetest.types import ARDUINO, GPIO_CHANNELS, ReadState, Thresholds


class Bench:
    """Connected mock system with an idle baseline already read."""

    def __init__(self, fixture, thresholds=None):
        self.fixture = fixture
        self.system = mock_system(fixture)
        self.store = self.system.store
        self.thresholds = thresholds or Thresholds()
        self.reader = BatchReader(
            self.store, self.system.arduino, self.system.stm32, poll_interval=0.002
        )
        self.detector = AdjacencyDetector(self.store, self.reader, self.thresholds)

    async def start(self):
        assert (await self.system.connect_arduino())[0] == ConnectResult.SUCCESS
        assert (await self.system.connect_stm32(exclude={"MOCK0"}))[0] == ConnectResult.SUCCESS
        result = await self.reader.read_batch(GPIO_CHANNELS, ReadState.IDLE, 2, 20)
        assert result.complete
        return self

    async def drive(self, channel):
        """Turn ``channel`` on, read it running and probe its neighbours."""
        ok = await self.system.correlator.send_and_await(
            gpio_payload(OP_GPIO_ON, [channel]), retry_interval=0.05
        )
        assert ok
        await self.reader.read_running(channel)
        outcome = await self.detector.probe(channel)
        await self.system.correlator.send_and_await(
            gpio_payload(OP_GPIO_OFF, [channel]), retry_interval=0.05
        )
        self.store.set_channel_state(channel, ReadState.IDLE)
        return outcome


class TestPinTable:
    def test_every_gpio_channel_has_a_pin(self):
        assert set(PIN_ADJACENCY) == set(GPIO_CHANNELS)

    def test_neighbours_are_symmetric(self):
        for ch in GPIO_CHANNELS:
            for adj in gpio_neighbours(ch):
                assert ch in gpio_neighbours(adj)

    def test_names_and_rails(self):
        assert pin_name(3) == "PB12"
        assert pin_name(40) == "ID40"
        assert gpio_neighbours(3) == [2]
        assert PIN_ADJACENCY[3].neighbours[1] == Rail.SUPPLY
        assert gpio_neighbours(5) == [4, 6]


class TestAdjacencyDetector:
    @pytest.mark.asyncio
    async def test_good_board_has_no_shorts(self):
        bench = await Bench(MockFixture()).start()
        outcome = await bench.drive(5)
        assert [r.adjacent_id for r in outcome.results] == [4, 6]
        assert not any(r.is_short for r in outcome.results)
        assert bench.detector.items == []

    @pytest.mark.asyncio
    async def test_shorted_pair_detected_on_both_links(self):
        fixture = MockFixture()
        fixture.short(3, 2)
        bench = await Bench(fixture).start()
        outcome = await bench.drive(3)

        assert outcome.rails == [Rail.SUPPLY]
        (result,) = outcome.results
        assert result.stm32_short and result.arduino_short
        assert bench.detector.items == [
            "STM32: PB12-PB13 (ID3-ID2)",
            "Arduino: PB12-PB13 (ID3-ID2)",
        ]
        # probe readings never move the idle baseline
        assert bench.store.first_value(ARDUINO, ReadState.IDLE, 2) == 800
        assert bench.store.latest_value(ARDUINO, ReadState.IDLE, 2) == 40

    @pytest.mark.asyncio
    async def test_arduino_evidence_ignored_with_load_disconnected(self):
        fixture = MockFixture()
        fixture.short(3, 2)
        fixture.set_channel(3, stm32_running=55)
        bench = await Bench(fixture).start()
        outcome = await bench.drive(3)

        assert outcome.load_disconnected
        (result,) = outcome.results
        assert result.arduino_suppressed
        assert not result.arduino_short
        assert bench.detector.items == ["STM32: PB12-PB13 (ID3-ID2)"]

    @pytest.mark.asyncio
    async def test_arduino_evidence_ignored_when_not_actuating(self):
        fixture = MockFixture()
        fixture.short(6, 7)
        fixture.set_channel(6, arduino_running=790)
        bench = await Bench(fixture).start()
        outcome = await bench.drive(6)

        assert outcome.not_actuating
        assert not outcome.load_disconnected
        assert bench.detector.items == ["STM32: PE9-PE8 (ID6-ID7)"]

    @pytest.mark.asyncio
    async def test_pair_optimization(self):
        thresholds = Thresholds(adjacent_short_test_optimization=True)
        bench = await Bench(MockFixture(), thresholds).start()
        await bench.drive(3)
        outcome = await bench.drive(2)
        assert outcome.results == []

        bench.thresholds.adjacent_short_test_optimization = False
        outcome = await bench.drive(2)
        assert [r.adjacent_id for r in outcome.results] == [3]

    @pytest.mark.asyncio
    async def test_snapshot_text(self):
        fixture = MockFixture()
        fixture.short(3, 2)
        bench = await Bench(fixture).start()
        text = format_snapshot(await bench.drive(3))
        assert "Running PB12 (ID3)" in text
        assert "Rails: Vdd" in text
        assert "pair 2-3" in text
        assert "SHORT" in text
        assert f"threshold {bench.thresholds.adjacent_short}" in text

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_missing_neighbour_data(self):
        fixture = MockFixture(silent_stm32={8})
        bench = Bench(fixture)
        assert (await bench.system.connect_arduino())[0] == ConnectResult.SUCCESS
        assert (await bench.system.connect_stm32(exclude={"MOCK0"}))[0] == ConnectResult.SUCCESS
        await bench.reader.read_batch(GPIO_CHANNELS, ReadState.IDLE, 1, 10)
        outcome = await bench.drive(9)
        (result,) = outcome.results
        assert result.stm32_base is None
        assert result.stm32_new is None
        assert not result.stm32_short
        assert result.arduino_new == 800
        assert bench.detector.items == []
