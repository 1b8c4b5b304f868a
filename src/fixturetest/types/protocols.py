"""Device role protocols defining required methods for each link.

Protocols specify the methods a device must provide to fulfil a role. Devices do
not inherit from them; the role system checks method presence when a device is
attached to a `FixtureSystem`, and `@runtime_checkable` allows isinstance checks
in tests.

Both links share the connection lifecycle (``connect_and_verify``, ``close``,
``is_connected``) and the inbound callbacks wired up by the system
(``on_reading``, ``on_disconnect``). They differ in how commands go out: the
text link sends newline-terminated tokens, the framed link sends checksum
frames and additionally reports GPIO confirmations (``on_confirm``).

See Also
--------
fixturetest.types.roles : Role definitions and validation
fixturetest.device : Device implementations
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable


@runtime_checkable
class TextLinkProtocol(Protocol):
    """Methods required of the text-protocol (Arduino) link."""

    connect_and_verify: Callable[[str], Awaitable]
    """Open the given port and run the text handshake; returns a ConnectResult."""

    send_text: Callable[[str], bool]
    """Send one command token (newline appended). False on transport error."""

    close: Callable[[], None]
    """Close the port and stop background tasks."""

    is_connected: Callable[[], bool]
    """True while the port is open and the heartbeat is healthy."""

    on_reading: Optional[Callable[[int, int], None]]
    """Callback for each parsed ``(channel, value)``."""

    on_disconnect: Optional[Callable[[], None]]
    """Callback when the link is lost (heartbeat failure or port error)."""


@runtime_checkable
class FramedLinkProtocol(Protocol):
    """Methods required of the binary-protocol (STM32) link."""

    connect_and_verify: Callable[[str], Awaitable]
    """Open the given port and run the firmware-query handshake."""

    send_frame: Callable[[bytes], bool]
    """Send one complete frame (header, payload, checksum)."""

    close: Callable[[], None]
    """Close the port and stop background tasks."""

    is_connected: Callable[[], bool]
    """True while the port is open and the heartbeat is healthy."""

    on_reading: Optional[Callable[[int, int], None]]
    """Callback for each READ reply ``(channel, value)``."""

    on_confirm: Optional[Callable[[int, int], None]]
    """Callback for each GPIO reply ``(command_code, bit_mask)``."""

    on_disconnect: Optional[Callable[[], None]]
    """Callback when the link is lost."""
