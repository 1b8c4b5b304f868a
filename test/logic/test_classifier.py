import pytest

from fixturetest.meas import ChannelValues, ReadingStore, classify, classify_channels
from fixturetest.types import (
    ARDUINO,
    STM32,
    FaultCategory,
    FaultVerdict,
    ReadState,
    Thresholds,
)


def values(ard_idle=None, ard_running=None, stm_idle=None, stm_running=None, ch=0):
    return ChannelValues(
        channel=ch,
        arduino_idle=ard_idle,
        arduino_running=ard_running,
        stm32_idle=stm_idle,
        stm32_running=stm_running,
    )


class TestClassify:
    def test_good_channel(self):
        assert classify(values(798, 36, 5, 345), Thresholds()) is None

    @pytest.mark.parametrize(
        "readings, category",
        [
            ((1015, 1020, 5, 345), FaultCategory.DRAIN_SUPPLY_SHORT),
            ((800, 790, 20, 55), FaultCategory.LOAD_DISCONNECTED),
            ((5, 400, 20, 500), FaultCategory.GATE_DRAIN_SHORT),
            ((40, 40, 350, 340), FaultCategory.DRAIN_SOURCE_SHORT),
            ((3, 30, 20, 340), FaultCategory.DRAIN_GROUND_SHORT),
            ((800, 800, 10, 20), FaultCategory.GATE_GROUND_SHORT),
            ((800, 40, 10, 450), FaultCategory.GATE_SOURCE_SHORT),
            ((800, 750, 20, 340), FaultCategory.WIRE_ERROR),
        ],
    )
    def test_categories(self, readings, category):
        assert classify(values(*readings), Thresholds()) == category

    def test_drain_supply_wins_over_gate_source(self):
        # the STM32 values alone would be a Gate-Source short
        assert classify(values(1015, 1020, 10, 450), Thresholds()) == (
            FaultCategory.DRAIN_SUPPLY_SHORT
        )

    def test_drain_supply_needs_only_arduino(self):
        assert classify(values(1015, 1020), Thresholds()) == (
            FaultCategory.DRAIN_SUPPLY_SHORT
        )

    def test_missing_data_gives_no_verdict(self):
        th = Thresholds()
        assert classify(values(), th) is None
        # running values alone cannot trip an idle-based rule
        assert classify(values(None, 40, None, 340), th) is None
        # Drain-Ground and Drain-Source need all four readings
        assert classify(values(3), th) is None
        assert classify(values(3, 30, 20), th) is None
        assert classify(values(40, 40, 350), th) is None
        assert classify(values(40, None, 350, 340), th) is None

    def test_mosfet_toggle(self):
        th = Thresholds(show_mosfet_detection=False)
        assert classify(values(1015, 1020, 10, 450), th) is None
        assert classify(values(800, 790, 20, 55), th) == FaultCategory.LOAD_DISCONNECTED

    def test_load_toggle(self):
        th = Thresholds(show_load_detection=False)
        # with the load rule off the low STM32 values read as a Gate-Ground short
        assert classify(values(800, 790, 20, 55), th) == FaultCategory.GATE_GROUND_SHORT
        assert classify(values(800, 790, 20, 340), th) == FaultCategory.WIRE_ERROR

    def test_wire_error_toggle(self):
        th = Thresholds(show_wire_error_detection=False)
        assert classify(values(800, 750, 20, 340), th) is None

    def test_gpio_rules_off_by_default(self):
        assert classify(values(800, 40, 200, 340), Thresholds()) is None

    def test_gpio_rules(self):
        th = Thresholds(show_gpio_status_detection=True)
        assert classify(values(800, 40, 200, 340), th) == FaultCategory.GPIO_STUCK_ON
        assert classify(values(800, 40, 60, 80), th) == FaultCategory.GPIO_STUCK_OFF

    def test_channel_ranges_apply(self):
        th = Thresholds()
        # wire error needs the STM32 running value inside the channel's own band
        assert classify(values(800, 750, 20, 390, ch=4), th) is None


class TestClassifyChannels:
    def test_from_store(self):
        store = ReadingStore()
        for ch, (ai, ar, si, sr) in {
            0: (798, 36, 5, 345),
            1: (1015, 1020, 5, 345),
        }.items():
            store.record_value(ARDUINO, ch, ai)
            store.record_value(STM32, ch, si)
            store.set_channel_state(ch, ReadState.RUNNING)
            store.record_value(ARDUINO, ch, ar)
            store.record_value(STM32, ch, sr)
        verdicts = classify_channels(store, [0, 1, 2], Thresholds())
        assert verdicts == [FaultVerdict(1, FaultCategory.DRAIN_SUPPLY_SHORT)]

    def test_idle_uses_first_reading(self):
        store = ReadingStore()
        store.record_value(ARDUINO, 0, 5)
        store.record_value(ARDUINO, 0, 800)  # later adjacency reading
        assert ChannelValues.from_store(store, 0).arduino_idle == 5
