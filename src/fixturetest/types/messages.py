"""Notification types sent from the workflow to the presentation layer.

The workflow never renders anything. It puts `Notification` objects on an
``asyncio.Queue`` and whoever drives the run (the CLI, a GUI shell, a test)
consumes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro.mixins.msgpack import DataClassMessagePackMixin
from mashumaro.types import Discriminator

from fixturetest.types.report import TestReport


@dataclass
class Message(DataClassMessagePackMixin):
    """Base class for all messages."""

    def __repr__(self):
        msg = self.__class__.__name__ + "("
        msg += ", ".join(f"{k}={v}" for k, v in self.__dict__.items())
        return msg + ")"


@dataclass(kw_only=True, repr=False)
class Notification(Message):
    type: str

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass(kw_only=True, repr=False)
class StatusUpdate(Notification):
    type: str = "status"
    status: str
    progress: float  # in [0, 1]


@dataclass(kw_only=True, repr=False)
class WorkflowUpdate(Notification):
    type: str = "workflow_update"
    run_id: str
    old_state: str
    new_state: str


@dataclass(kw_only=True, repr=False)
class ReadingHighlight(Notification):
    """Channel currently being read; ``channel`` is None to clear the highlight."""

    type: str = "reading_highlight"
    channel: int | None
    section: str = ""  # "idle", "running" or "sensor"
    neighbours: list[int] = field(default_factory=list)


@dataclass(kw_only=True, repr=False)
class ConnectionUpdate(Notification):
    type: str = "connection_update"
    role: str
    port: str
    connected: bool
    detail: str = ""


@dataclass(kw_only=True, repr=False)
class WrongRoleDetected(Notification):
    """A handshake answered with the signature of a different fixture firmware."""

    type: str = "wrong_role"
    role: str
    port: str


@dataclass(kw_only=True, repr=False)
class DebugSnapshot(Notification):
    type: str = "debug_snapshot"
    index: int  # 1-based, 0 when history is empty
    total: int
    text: str = ""


@dataclass(kw_only=True, repr=False)
class ReportReady(Notification):
    type: str = "report"
    run_id: str
    report: TestReport
