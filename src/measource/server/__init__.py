# -*- coding: utf-8 -*-
"""
Server-client communication for measource.

A server process hosts one data source and exposes its requests over
ZeroMQ; controllers connect with the functions in `measource.server.client`.

Examples
--------
Serving a HiDens source and talking to it:
```python
from measource.server import start_bg_server, open_connection, initialize
proc = start_bg_server("hidens", "11.0.0.1")
conn, sync = open_connection()
initialize(conn)
```

See Also
--------
measource.server.client : Client-side communication functions
measource.server.server : Server implementation
"""

from __future__ import annotations

import os
import subprocess
import sys

from loguru import logger

import measource.util
from measource.util import DEFAULT_HOST_ADDR, DEFAULT_LOGLEVEL, DEFAULT_PORT

from .client import (
    client_sync,
    close_connection,
    get_other_ports,
    get_param,
    get_server_log_path,
    initialize,
    open_connection,
    ping,
    recv_frame,
    request_status,
    set_param,
    shutdown_server,
    start_bg_notif_listener,
    start_stream,
    stop_stream,
    wait_for_notif,
)
from .server import start_server


def start_bg_server(
    source_type: str,
    location: str = "",
    host: str = DEFAULT_HOST_ADDR,
    msg_port: int = DEFAULT_PORT,
    notif_port: int = DEFAULT_PORT + 1,
    stream_port: int = DEFAULT_PORT + 2,
    log_path: str | None = None,  # if "" or None defaults to log_default_path_server
    clear_prev_log: bool = True,
    log_to_file: bool = True,
    log_to_stdout: bool = False,
    log_level: str = DEFAULT_LOGLEVEL,
) -> subprocess.Popen:
    """Start a source server in a background process.

    Returns
    -------
    subprocess.Popen
        The server process handle; stop it with `shutdown_server` or
        `kill_bg_server`.
    """
    if not log_path:
        log_path = measource.util.log_default_path_server()

    this_dir = os.path.dirname(os.path.realpath(__file__))
    return subprocess.Popen(
        [
            sys.executable,
            os.path.join(this_dir, "server_script.py"),
            source_type,
            location,
            host,
            str(msg_port),
            str(notif_port),
            str(stream_port),
            log_path,
            str(clear_prev_log),
            str(log_to_file),
            str(log_to_stdout),
            str(log_level),
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def kill_bg_server(proc: subprocess.Popen):
    """Kill a background server process, logging whatever it printed."""
    logger.info("Killing server process.")
    proc.kill()
    outs, errs = proc.communicate()
    if outs:
        logger.info("#======= Server killed, outs: =======#")
        logger.info(outs.decode("utf-8"))
    if errs:
        logger.error("#======= Server killed, errs: =======#")
        logger.error(errs.decode("utf-8"))
        logger.error("PID = {}", proc.pid)


__all__ = [
    "start_server",
    "start_bg_server",
    "kill_bg_server",
    "open_connection",
    "close_connection",
    "client_sync",
    "get_other_ports",
    "get_server_log_path",
    "ping",
    "shutdown_server",
    "initialize",
    "start_stream",
    "stop_stream",
    "get_param",
    "set_param",
    "request_status",
    "recv_frame",
    "start_bg_notif_listener",
    "wait_for_notif",
]
