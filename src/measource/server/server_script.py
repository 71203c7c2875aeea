# -*- coding: utf-8 -*-
"""Entry point for `start_bg_server`: argv in, `start_server` out."""

import asyncio
import sys

from measource.server.server import start_server

if __name__ == "__main__":
    (
        source_type,
        location,
        host,
        msg_port,
        notif_port,
        stream_port,
        log_path,
        clear_prev_log,
        log_to_file,
        log_to_stdout,
        log_level,
    ) = sys.argv[1:12]

    asyncio.run(
        start_server(
            source_type,
            location,
            host,
            int(msg_port),
            int(notif_port),
            int(stream_port),
            log_path=log_path,
            log_to_stdout=log_to_stdout == "True",
            clear_prev_log=clear_prev_log == "True",
            log_to_file=log_to_file == "True",
            log_level=log_level,
        )
    )
