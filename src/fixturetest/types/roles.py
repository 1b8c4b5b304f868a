"""Device role definitions.

The fixture is driven through exactly two roles:

- ``ARDUINO`` (device A): text-protocol microcontroller, reads the drain side of
  each channel and the Arduino-side sensors.
- ``STM32`` (device B): binary-protocol microcontroller, drives the GPIO outputs,
  confirms GPIO commands and reads the gate side of each channel.

A role names the protocol its device must implement. `FixtureSystem` validates
devices against the role before wiring them up, so a mock device and a serial
device are interchangeable as long as they provide the same methods.

Example
-------
```python
system = FixtureSystem(arduino=ArduinoLink(), stm32=Stm32Link())
system.get_device_by_role(STM32).send_frame(encode(read_payload(3)))
```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar, get_args

from fixturetest.types.protocols import FramedLinkProtocol, TextLinkProtocol

if TYPE_CHECKING:
    from fixturetest.device import Device

D = TypeVar("D")


class DeviceRole(Generic[D]):
    """Base class for device roles.

    Each role:
    1. Specifies a protocol that devices must implement
    2. Validates that devices can fulfil the role requirements
    3. Carries a short key and label used in logs and result items
    """

    key: str = ""
    label: str = ""

    def __init__(self) -> None:
        self.required_type = get_args(self.__class__.__orig_bases__[0])[0]

    def validate_device_type(self, device_class: type["Device"]) -> tuple[bool, str]:
        """Validate if a device class can fulfil this role.

        Parameters
        ----------
        device_class : type[Device]
            The device class to validate

        Returns
        -------
        tuple[bool, str]
            ``(is_valid, error_message)``; the message is empty when valid.
        """
        missing_methods = []
        for method_name in self.required_type.__annotations__:
            if method_name.startswith("on_"):
                # callbacks are instance attributes, set by the system
                continue
            if not hasattr(device_class, method_name):
                missing_methods.append(method_name)

        if missing_methods:
            return False, (
                f"Role {self} requires device implementing {self.required_type.__name__}, "
                f"but {device_class.__name__} is missing methods: {', '.join(missing_methods)}"
            )
        return True, ""

    def __str__(self) -> str:
        return self.label or self.__class__.__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceRole):
            return NotImplemented
        return type(self) == type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class ArduinoRole(DeviceRole[TextLinkProtocol]):
    """Text-protocol sensing link (device A)."""

    key = "arduino"
    label = "Arduino"


class Stm32Role(DeviceRole[FramedLinkProtocol]):
    """Binary-protocol control and sensing link (device B)."""

    key = "stm32"
    label = "STM32"


# Singleton instances (use these)
ARDUINO = ArduinoRole()
STM32 = Stm32Role()

ALL_ROLES = (ARDUINO, STM32)

__all__ = [
    "DeviceRole",
    "ArduinoRole",
    "Stm32Role",
    "ARDUINO",
    "STM32",
    "ALL_ROLES",
]
