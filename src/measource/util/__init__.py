# -*- coding: utf-8 -*-
"""
Utility functions and constants for measource.

- Logging configuration and management (loguru)
- Network, timing and path defaults

See Also
--------
measource.util.logging : Logging configuration
measource.util.defaults : Defaults
"""

from .defaults import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_READ_INTERVAL,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    SINGLE_LINE_ERR_LOG,
    TEST_LOGLEVEL,
)
from .logging import (
    clear_log,
    format_error_response,
    get_log_filename,
    log_default_path_client,
    log_default_path_server,
    shutdown_client_log,
    start_client_log,
    start_server_log,
)

__all__ = [
    "DEFAULT_HOST_ADDR",
    "DEFAULT_LOGLEVEL",
    "DEFAULT_PORT",
    "DEFAULT_READ_INTERVAL",
    "DEFAULT_RETRIES",
    "DEFAULT_TIMEOUT",
    "SINGLE_LINE_ERR_LOG",
    "TEST_LOGLEVEL",
    "clear_log",
    "format_error_response",
    "get_log_filename",
    "log_default_path_client",
    "log_default_path_server",
    "shutdown_client_log",
    "start_client_log",
    "start_server_log",
]
