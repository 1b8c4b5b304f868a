# -*- coding: utf-8 -*-
"""
Utility functions and constants for fixturetest.

- Logging configuration and management
- Serial port enumeration
- Process-level defaults (log levels, timings)

Examples
--------
Start logging to stderr for an interactive session:
```python
from fixturetest.util import start_client_log
start_client_log(log_to_file=False, log_to_stdout=True, log_level="DEBUG")
```

See Also
--------
fixturetest.util.logging : Logging configuration
fixturetest.util.check_hw : Port enumeration
"""

from .check_hw import get_hw_ports, is_stlink_port, list_ports
from .defaults import (
    DEFAULT_BAUDRATE,
    DEFAULT_LOGLEVEL,
    POLL_INTERVAL,
    SINGLE_LINE_ERR_LOG,
)
from .logging import (
    clear_log,
    format_error_response,
    get_log_filename,
    log_default_path_client,
    shutdown_client_log,
    start_client_log,
)

__all__ = [
    "DEFAULT_BAUDRATE",
    "DEFAULT_LOGLEVEL",
    "POLL_INTERVAL",
    "SINGLE_LINE_ERR_LOG",
    "clear_log",
    "format_error_response",
    "get_hw_ports",
    "get_log_filename",
    "is_stlink_port",
    "list_ports",
    "log_default_path_client",
    "shutdown_client_log",
    "start_client_log",
]
