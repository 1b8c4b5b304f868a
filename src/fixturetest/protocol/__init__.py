"""
Wire protocols of the two fixture links.

- `codec`: binary frames with checksum, GPIO masks, text line parsing
- `channels`: channel tables (ids, display names, Arduino tokens) per fixture variant
"""

from .channels import (
    ARDUINO_LINE_NAMES,
    BODYDOOR_CHANNELS,
    CHANNEL_TABLES,
    DISPLAY_NAMES,
    FLOW_OFF,
    FLOW_ON,
    MAIN_CHANNELS,
    ChannelTable,
    arduino_command,
    display_name,
    item_label,
)
from .codec import (
    CLEAR_FLOW_PAYLOAD,
    CLOSE_ALL_PAYLOAD,
    OP_CLEAR,
    OP_FIRMWARE,
    OP_GPIO_OFF,
    OP_GPIO_ON,
    OP_READ,
    PING_PAYLOAD,
    Frame,
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

__all__ = [
    "ARDUINO_LINE_NAMES",
    "BODYDOOR_CHANNELS",
    "CHANNEL_TABLES",
    "ChannelTable",
    "CLEAR_FLOW_PAYLOAD",
    "CLOSE_ALL_PAYLOAD",
    "DISPLAY_NAMES",
    "FLOW_OFF",
    "FLOW_ON",
    "Frame",
    "FrameDecoder",
    "MAIN_CHANNELS",
    "OP_CLEAR",
    "OP_FIRMWARE",
    "OP_GPIO_OFF",
    "OP_GPIO_ON",
    "OP_READ",
    "PING_PAYLOAD",
    "arduino_command",
    "checksum_residue",
    "display_name",
    "encode",
    "encode_text",
    "gpio_payload",
    "item_label",
    "mask_channels",
    "parse_text_line",
    "payload_expectation",
    "read_payload",
]
