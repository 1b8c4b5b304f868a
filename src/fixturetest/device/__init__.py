# -*- coding: utf-8 -*-
"""
Links to the fixture's two microcontrollers.

- `ArduinoLink`: text protocol over pyserial (device A)
- `Stm32Link`: checksum-framed binary protocol over pyserial (device B)
- `MockArduino` / `MockStm32`: the same interfaces answering from a simulated
  board (`MockFixture`), for tests and dry runs

Each link implements the protocol of its role (see `fixturetest.types.roles`),
so the system and workflow treat real and simulated links the same way.

Examples
--------
```python
from fixturetest.device import ArduinoLink
link = ArduinoLink(baudrate=115200)
result = await link.connect_and_verify("COM5")
```

See Also
--------
fixturetest.system : Wiring the links together
fixturetest.protocol : Wire formats
"""

from .arduino import ArduinoLink
from .device import ConnectResult, Device
from .mock import MockArduino, MockChannel, MockFixture, MockStm32
from .serial_link import SerialLink
from .stm32 import Stm32Link

__all__ = [
    "ArduinoLink",
    "ConnectResult",
    "Device",
    "MockArduino",
    "MockChannel",
    "MockFixture",
    "MockStm32",
    "SerialLink",
    "Stm32Link",
]
