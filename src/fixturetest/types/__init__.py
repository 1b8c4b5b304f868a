"""
Roles, protocols, configuration and message types for fixturetest.

1. Hardware abstraction
    - Protocols define the methods each link must provide
    - Roles (ARDUINO, STM32) bind a protocol to a position in the fixture

2. Configuration
    - `Thresholds`: every threshold, timing and feature toggle of a run
    - `DeviceProfile`: channel layout of a fixture variant

3. Data
    - `ChannelReading`, `ReadState`, `FaultCategory`, `FaultVerdict`
    - `TestReport`: aggregate result of a run

4. Notifications
    - Messages the workflow puts on its notification queue
"""

from .config import (
    BODYDOOR_PROFILE,
    GPIO_CHANNELS,
    MAIN_PROFILE,
    PROFILES,
    DeviceProfile,
    ThresholdRange,
    Thresholds,
)
from .messages import (
    ConnectionUpdate,
    DebugSnapshot,
    Message,
    Notification,
    ReadingHighlight,
    ReportReady,
    StatusUpdate,
    WorkflowUpdate,
    WrongRoleDetected,
)
from .protocols import FramedLinkProtocol, TextLinkProtocol
from .readings import ChannelReading, FaultCategory, FaultVerdict, ReadState
from .report import TestReport
from .roles import ALL_ROLES, ARDUINO, STM32, ArduinoRole, DeviceRole, Stm32Role

__all__ = [
    "ALL_ROLES",
    "ARDUINO",
    "BODYDOOR_PROFILE",
    "PROFILES",
    "STM32",
    "ArduinoRole",
    "ChannelReading",
    "ConnectionUpdate",
    "DebugSnapshot",
    "DeviceProfile",
    "DeviceRole",
    "FaultCategory",
    "FaultVerdict",
    "FramedLinkProtocol",
    "GPIO_CHANNELS",
    "MAIN_PROFILE",
    "Message",
    "Notification",
    "ReadState",
    "ReadingHighlight",
    "ReportReady",
    "StatusUpdate",
    "Stm32Role",
    "TestReport",
    "TextLinkProtocol",
    "ThresholdRange",
    "Thresholds",
    "WorkflowUpdate",
    "WrongRoleDetected",
]
