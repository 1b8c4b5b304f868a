from .fixture import MockChannel, MockFixture
from .mock_arduino import MockArduino
from .mock_stm32 import MockStm32

__all__ = [
    "MockArduino",
    "MockChannel",
    "MockFixture",
    "MockStm32",
]
