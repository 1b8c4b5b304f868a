"""Wire codec for both fixture links.

Binary link (STM32)
-------------------
Outbound frames are ``[0x40, 0x71, 0x30, *payload, cs]`` where ``cs`` makes the
byte sum of the whole frame zero modulo 256. Payloads are five bytes: an opcode
followed by four data bytes. Inbound frames have the same shape and are always
nine bytes long.

GPIO commands carry a 24-bit channel mask over the first three data bytes,
least significant byte first.

Text link (Arduino)
-------------------
Commands are newline-terminated ASCII tokens. The Arduino answers with lines
like ``s3(A3): 798``; the name before the parenthesis selects the channel id.
Anything that does not parse is dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger

HEADER = bytes((0x40, 0x71, 0x30))
PAYLOAD_LEN = 5
FRAME_LEN = len(HEADER) + PAYLOAD_LEN + 1

OP_GPIO_ON = 0x01
OP_GPIO_OFF = 0x02
OP_READ = 0x03
OP_CLEAR = 0x04
OP_FIRMWARE = 0x05

CLEAR_FLOW_COUNTER = 0x12
MASK_BITS = 24

CLOSE_ALL_PAYLOAD = (OP_GPIO_OFF, 0xFF, 0xFF, 0x03, 0x00)  # channels 0-17
CLEAR_FLOW_PAYLOAD = (OP_CLEAR, CLEAR_FLOW_COUNTER, 0x00, 0x00, 0x00)
PING_PAYLOAD = (OP_FIRMWARE, 0x00, 0x00, 0x00, 0x00)


# ============================================================================
# Binary frames
# ============================================================================


def checksum(data: Iterable[int]) -> int:
    """Checksum byte for ``data`` (header plus payload)."""
    return (0x100 - (sum(data) & 0xFF)) & 0xFF


def checksum_residue(frame: Iterable[int]) -> int:
    """Byte sum of a complete frame modulo 256; zero for a valid frame."""
    return sum(frame) & 0xFF


def encode(payload: Iterable[int]) -> bytes:
    """Build a complete frame from a payload.

    Parameters
    ----------
    payload : Iterable[int]
        Opcode and data bytes, each in ``0..255``.

    Returns
    -------
    bytes
        Header, payload and checksum.

    Raises
    ------
    ValueError
        If a payload byte is outside ``0..255``.
    """
    body = list(payload)
    for b in body:
        if not isinstance(b, int) or not 0 <= b <= 0xFF:
            raise ValueError(f"Payload byte out of range: {b!r}")
    frame = bytes(HEADER) + bytes(body)
    return frame + bytes((checksum(frame),))


def channel_mask(channels: Iterable[int]) -> int:
    mask = 0
    for ch in channels:
        if not 0 <= ch < MASK_BITS:
            raise ValueError(f"Channel {ch} cannot be encoded in a {MASK_BITS}-bit mask")
        mask |= 1 << ch
    return mask


def mask_bytes(mask: int) -> tuple[int, int, int]:
    """Split a 24-bit mask into ``(low, mid, high)``."""
    return mask & 0xFF, (mask >> 8) & 0xFF, (mask >> 16) & 0xFF


def mask_from_bytes(low: int, mid: int, high: int) -> int:
    return low | (mid << 8) | (high << 16)


def mask_channels(mask: int) -> list[int]:
    return [ch for ch in range(MASK_BITS) if mask & (1 << ch)]


def gpio_payload(command: int, channels: Iterable[int]) -> tuple[int, ...]:
    """GPIO ON/OFF payload ``[cmd, low, mid, high, 0x00]`` for ``channels``."""
    if command not in (OP_GPIO_ON, OP_GPIO_OFF):
        raise ValueError(f"Not a GPIO opcode: {command:#04x}")
    low, mid, high = mask_bytes(channel_mask(channels))
    return (command, low, mid, high, 0x00)


def read_payload(channel: int) -> tuple[int, ...]:
    return (OP_READ, channel, 0x00, 0x00, 0x00)


def payload_expectation(payload: Iterable[int]) -> tuple[int, int]:
    """``(command_code, bit_mask)`` a confirmation must carry for this payload."""
    p = tuple(payload)
    return p[0], mask_from_bytes(p[1], p[2], p[3])


@dataclass(frozen=True)
class Frame:
    """A decoded inbound frame."""

    command: int
    data: tuple[int, int, int, int]

    @property
    def is_read_reply(self) -> bool:
        return self.command == OP_READ

    @property
    def is_gpio_reply(self) -> bool:
        return self.command in (OP_GPIO_ON, OP_GPIO_OFF)

    @property
    def is_firmware_reply(self) -> bool:
        return self.command == OP_FIRMWARE

    @property
    def channel(self) -> int:
        return self.data[0]

    @property
    def value(self) -> int:
        d = self.data
        return d[1] | (d[2] << 8) | (d[3] << 16)

    @property
    def mask(self) -> int:
        d = self.data
        return mask_from_bytes(d[0], d[1], d[2])

    @property
    def version(self) -> str:
        d = self.data
        return f"{d[3]}.{d[2]}.{d[1]}.{d[0]}"


class FrameDecoder:
    """Incremental decoder for the inbound byte stream.

    Bytes are buffered across `feed` calls. Leading garbage is skipped up to the
    next header, and a frame with a bad checksum is discarded by advancing one
    byte, so a false header inside noise cannot swallow a real frame.
    """

    def __init__(self):
        self._buf = bytearray()
        self.dropped = 0

    def feed(self, data: bytes) -> list[Frame]:
        """Buffer ``data`` and return every complete, valid frame now available."""
        self._buf.extend(data)
        frames = []
        while True:
            start = self._buf.find(HEADER)
            if start < 0:
                # keep a possible partial header at the tail
                keep = len(HEADER) - 1
                if len(self._buf) > keep:
                    del self._buf[: len(self._buf) - keep]
                return frames
            if start:
                logger.trace("Skipping {} bytes before frame header", start)
                del self._buf[:start]
            if len(self._buf) < FRAME_LEN:
                return frames
            raw = bytes(self._buf[:FRAME_LEN])
            if checksum_residue(raw) != 0:
                logger.debug("Dropping frame with bad checksum: {}", raw.hex(" "))
                self.dropped += 1
                del self._buf[:1]
                continue
            del self._buf[:FRAME_LEN]
            frames.append(Frame(command=raw[3], data=(raw[4], raw[5], raw[6], raw[7])))

    def reset(self):
        self._buf.clear()


# ============================================================================
# Text lines
# ============================================================================

CONNECT_COMMAND = "connect"
HANDSHAKE_MAIN = ("connected", "connectedmain")
HANDSHAKE_BODYDOOR = ("connectedbodydoor",)

_ADC_LINE = re.compile(r"^(\w+)\s*\([^)]+\):\s*(-?\d+)")
_MCU_TEMP_LINE = re.compile(
    r"^MCU\s*(?:temp|溫度)\s*:\s*(-?\d+(?:\.\d+)?)\s*°?C?", re.IGNORECASE
)
_FLOW_LINE = re.compile(
    r"(?:flow count|final count|流量計數值|最終計數值)\s*:\s*(\d+)\s*pulses?",
    re.IGNORECASE,
)


def encode_text(token: str) -> bytes:
    return (token.strip() + "\n").encode("ascii")


def parse_text_line(
    line: str,
    names: dict[str, int],
    mcu_temp_channel: Optional[int] = 21,
    flow_channel: Optional[int] = 18,
) -> Optional[tuple[int, int]]:
    """Parse one Arduino line into ``(channel, value)``.

    Parameters
    ----------
    line : str
        Line without its terminator.
    names : dict[str, int]
        Lower-case sensor name to channel id.
    mcu_temp_channel, flow_channel : int, optional
        Channel ids for the MCU temperature and flow counter lines; None on a
        board without them.

    Returns
    -------
    Optional[tuple[int, int]]
        None for anything that is not a reading. MCU temperatures are scaled
        by ten and rounded, so ``25.5`` becomes ``255``.
    """
    line = line.strip()
    if not line:
        return None

    m = _ADC_LINE.match(line)
    if m:
        channel = names.get(m.group(1).lower())
        if channel is None:
            logger.debug("Unknown sensor name in line: {!r}", line)
            return None
        return channel, int(m.group(2))

    m = _MCU_TEMP_LINE.match(line)
    if m and mcu_temp_channel is not None:
        return mcu_temp_channel, round(float(m.group(1)) * 10)

    m = _FLOW_LINE.search(line)
    if m and flow_channel is not None:
        return flow_channel, int(m.group(1))

    logger.debug("Dropping unparsed line: {!r}", line)
    return None


def classify_handshake_line(
    line: str,
    ok: tuple[str, ...] = HANDSHAKE_MAIN,
    other: tuple[str, ...] = HANDSHAKE_BODYDOOR,
) -> Optional[bool]:
    """True for a reply in ``ok``, False for one in ``other``, else None."""
    token = line.strip().lower()
    if token in ok:
        return True
    if token in other:
        return False
    return None
