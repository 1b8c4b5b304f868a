"""Device base class and connection result type.

Every link to the fixture, real or simulated, inherits from `Device`. The base
class validates constructor configuration against ``required_config`` and keeps
track of the roles the device has been assigned by a `FixtureSystem`.

Roles are checked structurally: a device fulfils a role when it has every
method named by the role's protocol (see `fixturetest.types.protocols`).

Examples
--------
```python
class MyLink(Device):
    required_config = {"baudrate": int}

    async def connect_and_verify(self, port: str) -> ConnectResult:
        ...
```

See Also
--------
fixturetest.types.roles : Role definitions
fixturetest.system : System implementation
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Set, Type

from loguru import logger

if TYPE_CHECKING:
    from fixturetest.types import DeviceRole


class ConnectResult(str, Enum):
    """Outcome of a handshake on one port."""

    SUCCESS = "success"
    WRONG_ROLE = "wrong_role"  # answered with another fixture firmware's signature
    FAILED = "failed"  # port opened but the handshake never completed
    PORT_ERROR = "port_error"  # port could not be opened or written


class Device:
    """Base class for all fixture links.

    Attributes
    ----------
    required_config : dict[str, Type]
        Required configuration parameters and their types
    _roles : Set[DeviceRole]
        Set of roles this device fulfils
    """

    required_config: dict[str, Type] = {}

    _roles: Set[DeviceRole]

    def __init__(self, **config_kwargs):
        for key, value in config_kwargs.items():
            setattr(self, key, value)
        name = self.__class__.__name__
        for key, expected in self.required_config.items():
            if not hasattr(self, key):
                self._config_error(f"{name} missing required config key: {key}")
            actual = getattr(self, key)
            if not isinstance(actual, expected):
                self._config_error(
                    f"{name} config key {key} has wrong type: "
                    f"{type(actual).__name__} (expected {expected.__name__})"
                )
        self._roles: Set[DeviceRole] = set()

    @staticmethod
    def _config_error(msg: str):
        logger.error(msg)
        raise ValueError(msg)

    def _add_role(self, role: DeviceRole) -> None:
        """Record a role; only called by `FixtureSystem`."""
        self._roles.add(role)

    def has_role(self, role: DeviceRole) -> bool:
        return role in self._roles

    def get_roles(self) -> Set[DeviceRole]:
        return self._roles.copy()

    def close(self):
        raise NotImplementedError()

    def is_connected(self) -> bool:
        raise NotImplementedError()
