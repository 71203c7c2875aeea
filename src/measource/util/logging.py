# -*- coding: utf-8 -*-
"""
Loguru sinks for the source server and its clients.

Both sides log to a file under `~/.measource/` by default. Error responses sent
across the wire carry a formatted traceback (see `format_error_response`).
"""

import os
import sys
import traceback

from loguru import logger

from .defaults import DEFAULT_LOGLEVEL, SINGLE_LINE_ERR_LOG, USER_DIR


def format_error_response():
    err_str = traceback.format_exc()
    if SINGLE_LINE_ERR_LOG:
        return "\t".join(line.strip() for line in err_str.splitlines())
    else:
        return err_str


def _start_log(
    side: str,
    log_to_file: bool,
    log_to_stdout: bool,
    log_path,
    clear_prev: bool,
    log_level: str,
):
    if not log_path:
        log_path = (
            log_default_path_server() if side == "Server" else log_default_path_client()
        )
    else:
        log_path = os.path.abspath(log_path)

    if clear_prev:
        clear_log(log_path)

    # first remove (default) stderr output
    logger.remove()

    if log_to_file:
        logger.add(log_path, level=log_level, enqueue=True, colorize=False)
        logger.measource_log_path = log_path
    if log_to_stdout:
        logger.add(sys.stderr, level=log_level, enqueue=True, colorize=True)
    if log_to_file:
        logger.info("{} log started at {}", side, log_path)
    else:
        logger.info("{} log started.", side)


def start_client_log(
    log_to_file=True,
    log_to_stdout=False,
    log_path=None,
    clear_prev=True,
    log_level=DEFAULT_LOGLEVEL,
):
    _start_log("Client", log_to_file, log_to_stdout, log_path, clear_prev, log_level)


def start_server_log(
    log_to_file=True,
    log_to_stdout=False,
    log_path=None,
    clear_prev=True,
    log_level=DEFAULT_LOGLEVEL,
):
    _start_log("Server", log_to_file, log_to_stdout, log_path, clear_prev, log_level)


def log_default_path_client() -> str:
    return str(USER_DIR / "client.log")


def log_default_path_server() -> str:
    return str(USER_DIR / "server.log")


def clear_log(log_path: str):
    """
    Clear the log file at the given path, if it exists.

    Arguments
    ---------
    log_path : str
        The path to the log file. Defaults are given by
        log_default_path_client() and log_default_path_server().
    """
    if os.path.exists(log_path):
        try:
            os.remove(log_path)
        except PermissionError:
            logger.error(
                "Could not clear log file {}. Permission denied. Continuing.", log_path
            )


def shutdown_client_log():
    try:
        logger.info("Closing down client log.")
        logger.remove()
    except Exception:
        logger.exception("Error shutting down client log - skipping.")


def get_log_filename() -> str:
    """Finds the current log filename."""
    return getattr(logger, "measource_log_path", "")
