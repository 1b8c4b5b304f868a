from typing import Iterable, Optional

import serial.tools.list_ports
from loguru import logger

from .defaults import STLINK_VENDOR_ID


def get_hw_ports():
    port_dict = dict()
    for p in list(serial.tools.list_ports.comports()):
        # Only include if there's actual hardware info
        if p.hwid != "n/a":
            port_dict[p.device] = tuple(p)[1:]
    return port_dict


def is_stlink_port(port_info) -> bool:
    """True if the port is an ST-Link virtual COM port (the programmer, not the DUT)."""
    return getattr(port_info, "vid", None) == STLINK_VENDOR_ID


def list_ports(
    exclude: Optional[Iterable[str]] = None, exclude_stlink: bool = True
) -> list[str]:
    """List connectable serial ports.

    Parameters
    ----------
    exclude : Iterable[str], optional
        Port names already in use (e.g. by the other link).
    exclude_stlink : bool
        Skip ST-Link VCP ports, identified by USB vendor id.

    Returns
    -------
    list[str]
        Port names, in enumeration order.
    """
    exclude = set(exclude or ())
    ports = []
    for p in serial.tools.list_ports.comports():
        if p.device in exclude:
            continue
        if exclude_stlink and is_stlink_port(p):
            logger.debug("Skipping ST-Link port {}", p.device)
            continue
        ports.append(p.device)
    return ports
