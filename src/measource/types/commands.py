"""Command strings shared by the server and client.

Each command string is its own dotted path, e.g. `"CONSTS.SOURCE.GET"`, so
requests can be routed by prefix.
"""

import types


def _group(name: str, *commands: str) -> types.SimpleNamespace:
    return types.SimpleNamespace(**{c: f"CONSTS.{name}.{c}" for c in commands})


CONSTS = types.SimpleNamespace()

CONSTS.COMMS = _group(
    "COMMS",
    "PING",
    "PONG",
    "SHUTDOWN",
    "GET_OTHER_PORTS",
    "GET_SERVER_LOG_PATH",
    "CLIENT_SYNC",
)

CONSTS.SOURCE = _group(
    "SOURCE",
    "INITIALIZE",
    "START_STREAM",
    "STOP_STREAM",
    "GET",
    "SET",
    "REQUEST_STATUS",
)
