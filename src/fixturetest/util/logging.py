# -*- coding: utf-8 -*-
"""
Logging setup for fixture runs.

One run writes one log: the file sink is recreated at the start of each run so
the log on disk always belongs to the last board tested.
"""

import os
import pathlib
import sys
import traceback

from loguru import logger

from .defaults import DEFAULT_LOGLEVEL, SINGLE_LINE_ERR_LOG

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)

_active_log_path = ""


def format_error_response():
    """Traceback of the exception being handled, for CLI error output."""
    err_str = traceback.format_exc()
    if not SINGLE_LINE_ERR_LOG:
        return err_str
    return "\t".join(line.strip() for line in err_str.splitlines())


def start_client_log(
    log_to_file=True,
    log_to_stdout=False,
    log_path=None,
    clear_prev=True,
    log_level=DEFAULT_LOGLEVEL,
):
    global _active_log_path
    log_path = os.path.abspath(log_path) if log_path else log_default_path_client()

    # the default stderr sink would double up with ours
    logger.remove()
    _active_log_path = ""

    if log_to_file:
        if clear_prev:
            clear_log(log_path)
        logger.add(
            log_path, level=log_level, format=FILE_FORMAT, enqueue=True, colorize=False
        )
        _active_log_path = log_path
    if log_to_stdout:
        logger.add(sys.stderr, level=log_level, enqueue=True, colorize=True)

    if _active_log_path:
        logger.info("Fixture log started at {}", _active_log_path)
    else:
        logger.info("Fixture log started (no file).")


def log_default_path_client() -> str:
    return str(pathlib.Path.home().joinpath(".fixturetest", "client.log"))


def clear_log(log_path: str):
    """
    Delete the log file at `log_path`, if there is one.

    Arguments
    ---------
    log_path : str
        The path to the log file, see `log_default_path_client()`.
    """
    if not os.path.exists(log_path):
        return
    try:
        os.remove(log_path)
    except PermissionError:
        logger.error("Could not clear log file {}: permission denied.", log_path)


def shutdown_client_log():
    global _active_log_path
    try:
        logger.info("Closing fixture log.")
        logger.complete()
        logger.remove()
    except Exception:
        logger.exception("Error shutting down fixture log, skipping.")
    _active_log_path = ""


def get_log_filename() -> str:
    """Path of the file sink started by `start_client_log`, or ''."""
    return _active_log_path
