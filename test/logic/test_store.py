from fixturetest.meas import ReadingStore
from fixturetest.protocol import CLOSE_ALL_PAYLOAD, OP_GPIO_ON, gpio_payload
from fixturetest.protocol.codec import payload_expectation
from fixturetest.types import ARDUINO, STM32, ChannelReading, ReadState


class TestReadingStore:
    def test_first_is_fixed_by_first_write(self):
        store = ReadingStore()
        store.record_value(ARDUINO, 3, 798)
        store.record_value(ARDUINO, 3, 40)
        store.record_value(ARDUINO, 3, 812)
        assert store.first_value(ARDUINO, ReadState.IDLE, 3) == 798
        assert store.latest_value(ARDUINO, ReadState.IDLE, 3) == 812
        assert store.count(ARDUINO, ReadState.IDLE, 3) == 3
        assert [r.value for r in store.series(ARDUINO, ReadState.IDLE, 3)] == [
            798,
            40,
            812,
        ]

    def test_values_filed_under_channel_state(self):
        store = ReadingStore()
        store.record_value(STM32, 5, 20)
        store.set_channel_state(5, ReadState.RUNNING)
        store.record_value(STM32, 5, 340)
        assert store.latest_value(STM32, ReadState.IDLE, 5) == 20
        assert store.latest_value(STM32, ReadState.RUNNING, 5) == 340
        # other channels are unaffected
        assert store.channel_state(6) == ReadState.IDLE

    def test_devices_kept_apart(self):
        store = ReadingStore()
        store.record_value(ARDUINO, 1, 800)
        store.record_value(STM32, 1, 10)
        assert store.latest_value(ARDUINO, ReadState.IDLE, 1) == 800
        assert store.latest_value(STM32, ReadState.IDLE, 1) == 10

    def test_invalid_channel_dropped(self):
        store = ReadingStore()
        assert store.record_value(ARDUINO, 40, 1) is None
        assert store.record_value(STM32, -1, 1) is None
        # the Arduino has no channel 22, the STM32 does
        assert store.record_value(ARDUINO, 22, 24) is None
        assert store.record_value(STM32, 22, 24) is not None
        reading = ChannelReading(ARDUINO, 99, ReadState.IDLE, 5, 1)
        assert store.record(reading) is False
        assert store.latest(ARDUINO, ReadState.IDLE, 99) is None

    def test_apply_gpio(self):
        store = ReadingStore()
        store.apply_gpio(*payload_expectation(gpio_payload(OP_GPIO_ON, [3, 17])))
        assert store.channel_state(3) == ReadState.RUNNING
        assert store.channel_state(17) == ReadState.RUNNING
        assert store.channel_state(4) == ReadState.IDLE

        store.apply_gpio(*payload_expectation(CLOSE_ALL_PAYLOAD))
        assert all(store.channel_state(ch) == ReadState.IDLE for ch in range(18))

    def test_latest_any_prefers_running(self):
        store = ReadingStore()
        assert store.latest_any(ARDUINO, 19) is None
        store.record_value(ARDUINO, 19, 221)
        assert store.latest_any(ARDUINO, 19).value == 221
        store.set_channel_state(19, ReadState.RUNNING)
        store.record_value(ARDUINO, 19, 230)
        store.set_channel_state(19, ReadState.IDLE)
        store.record_value(ARDUINO, 19, 200)
        assert store.latest_any(ARDUINO, 19).value == 230

    def test_clear_all(self):
        store = ReadingStore()
        store.set_channel_state(2, ReadState.RUNNING)
        store.record_value(STM32, 2, 340)
        store.clear_all()
        assert store.first(STM32, ReadState.RUNNING, 2) is None
        assert store.channel_state(2) == ReadState.IDLE
        store.record_value(STM32, 2, 15)
        assert store.first_value(STM32, ReadState.IDLE, 2) == 15

    def test_sequence_increases(self):
        store = ReadingStore()
        a = store.record_value(ARDUINO, 0, 1)
        b = store.record_value(STM32, 0, 2)
        assert b.sequence > a.sequence
