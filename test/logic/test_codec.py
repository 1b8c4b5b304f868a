import pytest

from fixturetest.protocol import (
    ARDUINO_LINE_NAMES,
    BODYDOOR_CHANNELS,
    CLOSE_ALL_PAYLOAD,
    OP_GPIO_OFF,
    OP_GPIO_ON,
    OP_READ,
    FrameDecoder,
    checksum_residue,
    encode,
    encode_text,
    gpio_payload,
    mask_channels,
    parse_text_line,
    payload_expectation,
    read_payload,
)
from fixturetest.protocol.codec import HEADER, classify_handshake_line


class TestFrames:
    def test_channel_3_on_payload(self):
        payload = gpio_payload(OP_GPIO_ON, [3])
        assert payload == (0x01, 0x08, 0x00, 0x00, 0x00)
        frame = encode(payload)
        assert frame[:3] == HEADER
        assert frame[3:8] == bytes(payload)
        assert frame[8] == 0x16
        assert checksum_residue(frame) == 0

    @pytest.mark.parametrize(
        "payload",
        [
            read_payload(0),
            read_payload(23),
            gpio_payload(OP_GPIO_ON, [0, 9, 17]),
            CLOSE_ALL_PAYLOAD,
            (0xFF, 0xFF, 0xFF, 0xFF, 0xFF),
        ],
    )
    def test_encoded_frames_self_validate(self, payload):
        frame = encode(payload)
        assert len(frame) == 9
        assert checksum_residue(frame) == 0

    def test_close_all_covers_gpio_channels(self):
        assert gpio_payload(OP_GPIO_OFF, range(18)) == CLOSE_ALL_PAYLOAD
        code, mask = payload_expectation(CLOSE_ALL_PAYLOAD)
        assert code == OP_GPIO_OFF
        assert mask_channels(mask) == list(range(18))

    def test_high_byte_channels(self):
        # channels 16 and 17 live in the third data byte
        assert gpio_payload(OP_GPIO_ON, [17]) == (0x01, 0x00, 0x00, 0x02, 0x00)
        assert payload_expectation(gpio_payload(OP_GPIO_ON, [16]))[1] == 1 << 16

    def test_bad_payload_byte_raises(self):
        with pytest.raises(ValueError):
            encode((OP_READ, 256, 0, 0, 0))
        with pytest.raises(ValueError):
            encode((OP_READ, -1, 0, 0, 0))

    def test_gpio_payload_rejects_other_opcodes(self):
        with pytest.raises(ValueError):
            gpio_payload(OP_READ, [1])


class TestFrameDecoder:
    def test_read_reply(self):
        decoder = FrameDecoder()
        frames = decoder.feed(encode((OP_READ, 5, 0x59, 0x01, 0x00)))
        assert len(frames) == 1
        assert frames[0].is_read_reply
        assert frames[0].channel == 5
        assert frames[0].value == 345

    def test_split_frame(self):
        decoder = FrameDecoder()
        frame = encode(read_payload(7))
        assert decoder.feed(frame[:4]) == []
        frames = decoder.feed(frame[4:])
        assert [f.channel for f in frames] == [7]

    def test_leading_garbage_skipped(self):
        decoder = FrameDecoder()
        frames = decoder.feed(b"\x00\x12\x99" + encode(read_payload(2)))
        assert [f.channel for f in frames] == [2]

    def test_bad_checksum_dropped_and_resynced(self):
        decoder = FrameDecoder()
        bad = bytearray(encode(read_payload(1)))
        bad[-1] ^= 0xFF
        good = encode(read_payload(4))
        frames = decoder.feed(bytes(bad) + good)
        assert [f.channel for f in frames] == [4]
        assert decoder.dropped == 1

    def test_false_header_in_noise(self):
        decoder = FrameDecoder()
        good = encode((OP_READ, 5, 0x10, 0x00, 0x00))
        frames = decoder.feed(HEADER + b"\x03" + good)
        assert len(frames) == 1
        assert frames[0].channel == 5
        assert frames[0].value == 0x10

    def test_gpio_and_firmware_replies(self):
        decoder = FrameDecoder()
        frames = decoder.feed(
            encode(gpio_payload(OP_GPIO_OFF, [3, 17])) + encode((0x05, 0, 3, 1, 1))
        )
        assert frames[0].is_gpio_reply
        assert mask_channels(frames[0].mask) == [3, 17]
        assert frames[1].is_firmware_reply
        assert frames[1].version == "1.1.3.0"


class TestTextLines:
    @pytest.mark.parametrize(
        "line, expected",
        [
            ("SLOT3(A3): 798", (3, 798)),
            ("slot0 (A0): 12\r", (0, 12)),
            ("WATER(A10): 801", (10, 801)),
            ("PRESSURECO2(A19): 220", (19, 220)),
            ("MCU temp: 25.5 C", (21, 255)),
            ("MCU溫度: 31.2°C", (21, 312)),
            ("flow count: 120 pulses", (18, 120)),
            ("流量計數值: 40 pulses", (18, 40)),
            ("最終計數值: 160 pulses", (18, 160)),
        ],
    )
    def test_parse(self, line, expected):
        assert parse_text_line(line, ARDUINO_LINE_NAMES) == expected

    @pytest.mark.parametrize("line", ["", "garbage", "NOPE(A1): 5", "SLOT3(A3):"])
    def test_unparsed_lines_dropped(self, line):
        assert parse_text_line(line, ARDUINO_LINE_NAMES) is None

    def test_handshake_lines(self):
        assert classify_handshake_line("connected\r") is True
        assert classify_handshake_line("ConnectedMain") is True
        assert classify_handshake_line("connectedbodydoor") is False
        assert classify_handshake_line("SLOT3(A3): 798") is None

    def test_bodydoor_handshake_lines(self):
        table = BODYDOOR_CHANNELS
        ok, other = table.handshake_ok, table.handshake_other
        assert classify_handshake_line("connectedbodydoor", ok, other) is True
        assert classify_handshake_line("connectedmain", ok, other) is False
        assert classify_handshake_line("connected", ok, other) is False

    @pytest.mark.parametrize(
        "line, expected",
        [
            ("BodyPower_24V(A15,CH5): 1234", (15, 1234)),
            ("AmbientRL(A0,CH0): 1000", (0, 1000)),
            ("FLOWMETER2(A14): 990", (14, 990)),
            ("BODYPOWER_LOWSCREEN(A18): 786", (18, 786)),
        ],
    )
    def test_parse_bodydoor(self, line, expected):
        assert parse_text_line(line, BODYDOOR_CHANNELS.line_names, None, None) == expected

    def test_bodydoor_has_no_flow_or_mcu_lines(self):
        names = BODYDOOR_CHANNELS.line_names
        assert parse_text_line("MCU temp: 25.5 C", names, None, None) is None
        assert parse_text_line("flow count: 120 pulses", names, None, None) is None

    def test_bodydoor_tokens(self):
        assert BODYDOOR_CHANNELS.arduino_command(0) == "ambientrl"
        assert BODYDOOR_CHANNELS.arduino_command(18) == "bplow"
        assert BODYDOOR_CHANNELS.arduino_command(19) is None
        assert BODYDOOR_CHANNELS.item_label(15) == "BP_24V (ID15)"

    def test_encode_text(self):
        assert encode_text("s3") == b"s3\n"
