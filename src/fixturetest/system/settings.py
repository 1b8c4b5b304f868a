"""Persistent threshold settings.

`ThresholdSettings` keeps the operator's `Thresholds` in a JSON file
(``~/.fixturetest/thresholds.json`` by default). Scalar settings are addressed
by field name, per-channel ranges as ``<table>.<channel>`` with a ``lo,hi``
value, e.g. ``arduino_idle.3 = 770,830``.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Optional

import simplejson as json
from loguru import logger

from fixturetest.types.config import ThresholdRange, Thresholds

RANGE_TABLES = (
    "arduino_idle",
    "arduino_running",
    "stm32_idle",
    "stm32_running",
    "arduino_sensor",
    "stm32_sensor",
    "bodydoor_idle",
)

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


class ThresholdSettings:
    """Handles loading/saving of thresholds as JSON"""

    config_dir: Path = Path.home() / ".fixturetest"
    filename: str = "thresholds.json"

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else self.config_dir / self.filename
        self.thresholds = Thresholds()

    def load(self) -> Thresholds:
        """Read the settings file; missing or unreadable files give defaults."""
        if not self.path.exists():
            logger.info("No threshold file at {}, using defaults", self.path)
            self.thresholds = Thresholds()
            return self.thresholds
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.thresholds = Thresholds.from_dict(json.load(f))
        except (ValueError, LookupError, TypeError):
            logger.exception("Could not read thresholds from {}, using defaults.", self.path)
            self.thresholds = Thresholds()
        else:
            logger.info("Loaded thresholds from {}", self.path)
        return self.thresholds

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.thresholds.to_dict(), f, indent=2)
        logger.info("Saved thresholds to {}", self.path)

    def reset(self) -> Thresholds:
        self.thresholds = Thresholds()
        return self.thresholds

    def scalar_keys(self) -> list[str]:
        return [
            f.name
            for f in dataclasses.fields(Thresholds)
            if isinstance(getattr(self.thresholds, f.name), (bool, int))
        ]

    def get(self, key: str) -> Any:
        if "." in key:
            table, channel = self._range_key(key)
            return table.get(channel)
        if key not in self.scalar_keys():
            raise KeyError(f"Unknown threshold setting: {key}")
        return getattr(self.thresholds, key)

    def set(self, key: str, value: Any):
        """Set one setting, converting ``value`` to the setting's type.

        Raises
        ------
        KeyError
            Unknown setting name or range table.
        ValueError
            Value cannot be converted.
        """
        if "." in key:
            table, channel = self._range_key(key)
            table[channel] = _parse_range(value)
            return
        current = self.get(key)
        if isinstance(current, bool):
            new = _parse_bool(value)
        else:
            new = int(value)
        setattr(self.thresholds, key, new)
        logger.debug("Threshold {} = {}", key, new)

    def set_range(self, table: str, channel: int, lo: int, hi: int):
        self.set(f"{table}.{channel}", (lo, hi))

    def _range_key(self, key: str) -> tuple[dict[int, ThresholdRange], int]:
        name, _, channel = key.partition(".")
        if name not in RANGE_TABLES:
            raise KeyError(f"Unknown range table: {name}")
        return getattr(self.thresholds, name), int(channel)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_range(value: Any) -> ThresholdRange:
    if isinstance(value, ThresholdRange):
        return value
    if isinstance(value, str):
        parts = value.replace(":", ",").split(",")
    else:
        parts = list(value)
    if len(parts) != 2:
        raise ValueError(f"Expected 'lo,hi', got {value!r}")
    return ThresholdRange(int(parts[0]), int(parts[1]))
