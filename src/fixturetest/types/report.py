"""Aggregate result of one test run."""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro import DataClassDictMixin

from fixturetest.types.readings import FaultCategory, FaultVerdict


@dataclass(kw_only=True)
class TestReport(DataClassDictMixin):
    """Pass/fail verdict with every failure list the Result phase produces.

    Item strings are display names (``"SLOT4"``) for range failures and
    ``"<name> (ID<n>)"`` for diagnostic categories, so the adjacency filter
    and the presentation layer can both pick out channel ids.
    """

    __test__ = False  # not a pytest class

    passed: bool = False
    cancelled: bool = False
    power_items: list[str] = field(default_factory=list)
    failed_idle_items: list[str] = field(default_factory=list)
    failed_running_items: list[str] = field(default_factory=list)
    failed_sensor_items: list[str] = field(default_factory=list)
    vdd_short_items: list[str] = field(default_factory=list)
    adjacent_short_items: list[str] = field(default_factory=list)
    verdicts: list[FaultVerdict] = field(default_factory=list)
    fault_items: dict[str, list[str]] = field(default_factory=dict)
    missing_items: list[str] = field(default_factory=list)

    def items_for(self, category: FaultCategory) -> list[str]:
        return self.fault_items.get(category.value, [])

    def failure_lists(self) -> dict[str, list[str]]:
        """All lists that decide the verdict, keyed by a printable title."""
        lists = {
            "power anomaly": self.power_items,
            "idle out of range": self.failed_idle_items,
            "running out of range": self.failed_running_items,
            "sensor out of range": self.failed_sensor_items,
            "Vdd short": self.vdd_short_items,
            "adjacent short": self.adjacent_short_items,
        }
        for category in FaultCategory:
            lists[category.value] = self.items_for(category)
        return lists
