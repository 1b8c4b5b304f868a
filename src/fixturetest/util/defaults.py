# -*- coding: utf-8 -*-

DEFAULT_BAUDRATE = 115200
DEFAULT_LOGLEVEL = "INFO"
SINGLE_LINE_ERR_LOG = False  # reformat tracebacks into a single line for cli output

POLL_INTERVAL = 0.05  # seconds, serial read loop and store polling
HEARTBEAT_INTERVAL = 1.0  # seconds
HEARTBEAT_QUIET_WINDOW = 0.8  # skip a heartbeat if there was traffic this recently
HEARTBEAT_FAIL_LIMIT = 3  # consecutive missed replies before the link is dropped

ARDUINO_BOOT_WAIT = 1.0  # seconds, bootloader chatter after the port opens
STM32_BOOT_WAIT = 0.2  # seconds
HANDSHAKE_ATTEMPTS = 2
HANDSHAKE_POLLS = 5
HANDSHAKE_POLL_INTERVAL = 0.2  # seconds
PORT_RETRY_GAP = 0.2  # seconds between port candidates
PACKDOWN_TIMEOUT = 2.0  # seconds a cancelled run gets to close its outputs

STLINK_VENDOR_ID = 0x0483
