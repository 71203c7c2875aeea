# -*- coding: utf-8 -*-
"""
Client side of the source control interface.

Every client function is decorated with `@command(CONSTS...)`, naming the
command it sends; the server registers the matching handler with
`@handler`. `assert_valid_handler_client_correspondence()` checks the two
sides agree.

The request socket is a synchronous `zmq.REQ` with lazy-pirate retries:
poll for the reply, and on timeout close the socket, reconnect and resend.
Parameter values travel in their wire encoding (`measource.types.wire`).
"""

# ============================================================================

from __future__ import annotations

import asyncio
import time
from functools import wraps
from timeit import default_timer as timer
from typing import TYPE_CHECKING, Any, Callable, Type, TypeVar, cast

import zmq
from loguru import logger

import measource
from measource.types import (
    CONSTS,
    PENDING_COMMAND_VALIDATIONS,
    WIRE_CODEC,
    ClientConnection,
    CodecError,
    CommsError,
    DictResponse,
    ErrorResponse,
    MsgResponse,
    Notification,
    ParamResponse,
    Request,
    Response,
    SampleFrame,
    TupleResponse,
    ValueResponse,
)
from measource.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_PORT,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    format_error_response,
)

if TYPE_CHECKING:
    import measource.server

# uploads hold the set reply until the FPGA transfer is done
SET_TIMEOUT = 30  # seconds

# ====================================================================================


def _close_sockets(client_connection: ClientConnection) -> None:
    for socket in (
        client_connection.msg_socket,
        client_connection.notif_socket,
        client_connection.stream_socket,
    ):
        if isinstance(socket, zmq.Socket) and not socket.closed:
            socket.close(linger=0)


def _get_response(
    client_connection: ClientConnection,
    request: Request,
    request_retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
) -> Response:
    """Read a single response from the server (ZMQ lazy pirate).

    Polls the REQ socket for `timeout` seconds; if nothing arrives the
    socket is closed, reopened and the request resent, up to
    `request_retries` times.

    Returns
    -------
    Response
        The server's response, or an `ErrorResponse` if it seems offline.
    """
    retries_left = request_retries + 1  # first attempt counts
    logger.debug("*REQUEST* (client->): {}", request)
    client_connection.msg_socket.send(request.to_msgpack())
    while True:
        try:
            if client_connection.msg_socket.poll(int(1000 * timeout), zmq.POLLIN):
                resp = Response.from_msgpack(client_connection.msg_socket.recv())
                logger.debug("*RESPONSE* (client<-): {}", resp)
                return resp
        except zmq.ZMQError as e:
            if request.command == CONSTS.COMMS.SHUTDOWN:
                logger.info("Expected ZMQ error after shutdown command")
                return MsgResponse(value="Server shutting down")
            logger.warning("ZMQ error: {}", e)

        retries_left -= 1
        logger.warning("No response from server...")
        # Socket is confused. Close and remove it.
        client_connection.msg_socket.close(linger=0)
        if retries_left == 0:
            logger.error("Server seems to be offline, abandoning.")
            return ErrorResponse(value="Server seems to be offline.")
        logger.info("Reconnecting to server...")
        client_connection.msg_socket = client_connection.context.socket(zmq.REQ)
        client_connection.msg_socket.connect(
            f"tcp://{client_connection.host}:{client_connection.msg_port}"
        )
        logger.debug("*REQUEST* (client->): {}", request)
        client_connection.msg_socket.send(request.to_msgpack())


# ====================================================================================


def _open_connection(
    host: str,
    msg_port: int,
    notif_port: int,
    stream_port: int,
    context: zmq.Context | None = None,
) -> ClientConnection:
    """Open ZMQ sockets for all communication channels with the server."""
    logger.info("Attempting full connection to server on {}:{}.", host, msg_port)
    context = context if context is not None else zmq.Context()
    try:
        msg_socket = context.socket(zmq.REQ)
        msg_socket.connect(f"tcp://{host}:{msg_port}")
        notif_socket = context.socket(zmq.SUB)
        notif_socket.setsockopt(zmq.SUBSCRIBE, b"")  # subscribe to all
        notif_socket.connect(f"tcp://{host}:{notif_port}")
        stream_socket = context.socket(zmq.SUB)
        stream_socket.setsockopt(zmq.SUBSCRIBE, b"")
        stream_socket.connect(f"tcp://{host}:{stream_port}")
    except zmq.ZMQError:
        logger.exception("Error during connection.")
        raise CommsError(f"Error during connection: {format_error_response()}")
    return ClientConnection(
        context,
        msg_socket,
        notif_socket,
        stream_socket,
        host,
        msg_port,
        notif_port,
        stream_port,
    )


# ============================================================================


def open_connection(
    host=DEFAULT_HOST_ADDR,
    msg_port=DEFAULT_PORT,
    timeout=DEFAULT_TIMEOUT,
    request_retries: int = DEFAULT_RETRIES,
) -> tuple[ClientConnection, dict]:
    """Connect to a source server.

    Pings the message port, asks for the notification and stream ports,
    opens all three sockets and syncs.

    Parameters
    ----------
    host : str, optional
        The host address to connect to, by default DEFAULT_HOST_ADDR
    msg_port : int, optional
        Port number for the message socket, by default DEFAULT_PORT
    timeout : float, optional
        Seconds to wait for each reply while connecting
    request_retries : int, optional
        Number of retry attempts for requests, by default DEFAULT_RETRIES

    Returns
    -------
    tuple[ClientConnection, dict]
        The connection and the server's sync info (version, source type,
        state, gettable and settable parameter names).

    Raises
    ------
    CommsError
        If the server does not answer or the sync fails.
    """
    t0 = timer()
    context = zmq.Context()
    msg_socket = context.socket(zmq.REQ)
    msg_socket.connect(f"tcp://{host}:{msg_port}")
    temp_connection = ClientConnection(
        context, msg_socket, None, None, host, msg_port, msg_port, msg_port
    )
    resp = _get_response(
        temp_connection, Request(CONSTS.COMMS.PING), request_retries, timeout
    )
    if isinstance(resp, ErrorResponse) or resp.value != CONSTS.COMMS.PONG:
        logger.error("Bad connection - no response from server.")
        temp_connection.msg_socket.close(linger=0)
        context.term()
        raise CommsError("Bad connection - no response from server.")
    logger.info("Initial connection confirmed after {:.3f}s.", timer() - t0)

    notif_port, stream_port = get_other_ports(temp_connection, request_retries)
    temp_connection.msg_socket.close(linger=0)
    client_connection = _open_connection(host, msg_port, notif_port, stream_port, context)

    sync = client_sync(client_connection, request_retries)
    if sync.get("version") != measource.__version__:
        logger.critical(
            "Client-server version mismatch: {} vs {}",
            measource.__version__,
            sync.get("version"),
        )
    logger.info("Connection established on {}", host)
    return client_connection, sync


# ============================================================================


def close_connection(client_connection: ClientConnection):
    """Close the connection to the server."""
    logger.info("Closing connection.")
    _close_sockets(client_connection)
    client_connection.context.term()


# ============================================================================


T = TypeVar("T", bound=Response)


def _send_request(
    client_connection: ClientConnection,
    request: Request,
    request_retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
) -> T:
    """Send a request and return the response.

    Raises
    ------
    CommsError
        If the server returns an error
    """
    resp = _get_response(client_connection, request, request_retries, timeout)
    if isinstance(resp, ErrorResponse):
        logger.error("Error during {}: '{}'", request.command, resp.value)
        raise CommsError(f"Error returned from {request.command}: {resp.value}")
    return cast(T, resp)


# ====================================================================================


def command(
    command_str: str, response_type: Type[T] | Any = "Response"
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that marks a client function and records its command.

    Args:
        command_str: The command string that identifies this client function
        response_type: The expected response type from the server or Union of types
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        # validated later against the handler registry
        PENDING_COMMAND_VALIDATIONS.append((command_str, func.__name__))

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return func(*args, **kwargs)

        wrapper._command = command_str
        wrapper._response_type = response_type
        wrapper._is_client_method = True
        return wrapper

    return decorator


# ====================================================================================
# -----------------
# INTERFACE METHODS
# -----------------
# ====================================================================================

# each of these has a corresponding function in server.py to handle the request.

# -------------------------------------------------------------------------------------
# General server comms
# -------------------------------------------------------------------------------------


@command(CONSTS.COMMS.CLIENT_SYNC, response_type=DictResponse | ErrorResponse)
def client_sync(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> dict:
    """Server version, source type and state, parameter names."""
    calls: measource.server.server.handle_client_sync
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.CLIENT_SYNC), request_retries
    )
    return resp.value


@command(CONSTS.COMMS.GET_OTHER_PORTS, response_type=TupleResponse | ErrorResponse)
def get_other_ports(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> tuple[int, int]:
    """Get the notification and stream ports from the server."""
    calls: measource.server.server.handle_get_other_ports
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.GET_OTHER_PORTS), request_retries
    )
    notif_port, stream_port = resp.value
    return notif_port, stream_port


@command(CONSTS.COMMS.PING, response_type=MsgResponse | ErrorResponse)
def ping(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> str:
    """Returns "pong" if the server answered."""
    calls: measource.server.server.handle_ping
    try:
        _send_request(client_connection, Request(CONSTS.COMMS.PING), request_retries)
    except CommsError:
        logger.exception("Ping failed.")
        return "-1.0"
    return "pong"


@command(CONSTS.COMMS.GET_SERVER_LOG_PATH, response_type=ValueResponse | ErrorResponse)
def get_server_log_path(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> str:
    calls: measource.server.server.handle_get_server_log_path
    resp = _send_request(
        client_connection, Request(CONSTS.COMMS.GET_SERVER_LOG_PATH), request_retries
    )
    logger.info("Server log path: {}", resp.value)
    return resp.value


@command(CONSTS.COMMS.SHUTDOWN, response_type=MsgResponse | ErrorResponse)
def shutdown_server(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> None:
    """Ask the server to close its source and exit, then close the connection."""
    calls: measource.server.server.handle_shutdown
    try:
        _send_request(client_connection, Request(CONSTS.COMMS.SHUTDOWN), 1)
        logger.info("Server shutdown initiated successfully")
    finally:
        close_connection(client_connection)


# -------------------------------------------------------------------------------------
# Source requests
# -------------------------------------------------------------------------------------


@command(CONSTS.SOURCE.INITIALIZE, response_type=MsgResponse | ErrorResponse)
def initialize(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> None:
    """Connect the source to its device (invalid -> initialized)."""
    calls: measource.server.server.handle_initialize
    _send_request(client_connection, Request(CONSTS.SOURCE.INITIALIZE), request_retries)


@command(CONSTS.SOURCE.START_STREAM, response_type=MsgResponse | ErrorResponse)
def start_stream(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> None:
    calls: measource.server.server.handle_start_stream
    _send_request(
        client_connection, Request(CONSTS.SOURCE.START_STREAM), request_retries
    )


@command(CONSTS.SOURCE.STOP_STREAM, response_type=MsgResponse | ErrorResponse)
def stop_stream(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> None:
    calls: measource.server.server.handle_stop_stream
    _send_request(client_connection, Request(CONSTS.SOURCE.STOP_STREAM), request_retries)


@command(CONSTS.SOURCE.GET, response_type=ParamResponse | ErrorResponse)
def get_param(
    client_connection: ClientConnection,
    param: str,
    request_retries: int = DEFAULT_RETRIES,
) -> Any:
    """Get a parameter, decoded from its wire encoding.

    Parameters the codec does not know come back as raw bytes.
    """
    calls: measource.server.server.handle_get_param
    resp = _send_request(
        client_connection,
        Request(CONSTS.SOURCE.GET, {"param": param}),
        request_retries,
    )
    if WIRE_CODEC.kind_of(param) is None:
        return resp.value
    try:
        return WIRE_CODEC.decode(param, resp.value)
    except CodecError as e:
        raise CommsError(f"Could not decode {param}: {e}") from e


@command(CONSTS.SOURCE.SET, response_type=MsgResponse | ErrorResponse)
def set_param(
    client_connection: ClientConnection,
    param: str,
    value: Any,
    request_retries: int = DEFAULT_RETRIES,
    timeout: float = SET_TIMEOUT,
) -> None:
    """Set a parameter. Values are wire-encoded here; raw bytes pass through."""
    calls: measource.server.server.handle_set_param
    if isinstance(value, bytes) or WIRE_CODEC.kind_of(param) is None:
        data = bytes(value) if isinstance(value, (bytes, bytearray)) else b""
    else:
        try:
            data = WIRE_CODEC.encode(param, value)
        except CodecError as e:
            raise CommsError(f"Could not encode {param}: {e}") from e
    _send_request(
        client_connection,
        Request(CONSTS.SOURCE.SET, {"param": param, "value": data}),
        request_retries,
        timeout,
    )


@command(CONSTS.SOURCE.REQUEST_STATUS, response_type=DictResponse | ErrorResponse)
def request_status(
    client_connection: ClientConnection, request_retries: int = DEFAULT_RETRIES
) -> dict:
    calls: measource.server.server.handle_request_status
    resp = _send_request(
        client_connection, Request(CONSTS.SOURCE.REQUEST_STATUS), request_retries
    )
    return resp.value


# -------------------------------------------------------------------------------------
# Notifications & frames
# -------------------------------------------------------------------------------------


def recv_frame(
    client_connection: ClientConnection, timeout: float = DEFAULT_TIMEOUT
) -> SampleFrame | None:
    """Next sample frame from the stream socket, or None after `timeout`."""
    if not client_connection.stream_socket.poll(int(1000 * timeout), zmq.POLLIN):
        return None
    _, data = client_connection.stream_socket.recv_multipart()
    return cast(SampleFrame, Notification.from_msgpack(data))


def start_bg_notif_listener(client_connection: ClientConnection):
    qu = asyncio.Queue()

    async def listen(queue):
        logger.info("Starting notification listener")
        while True:
            await asyncio.sleep(0.01)
            try:
                msg = client_connection.notif_socket.recv(flags=zmq.NOBLOCK)
            except zmq.Again:
                continue
            except zmq.ZMQError:
                logger.exception("Error in notif listener.")
                break
            notif = Notification.from_msgpack(msg)
            queue.put_nowait(notif)
            logger.trace("*NOTIF* (client<-): {}", notif)

    task = asyncio.create_task(listen(qu))
    return task, qu


async def wait_for_notif(
    qu: asyncio.Queue, notif_type: Type[Notification], timeout=DEFAULT_TIMEOUT
):
    start = time.time()
    while time.time() - start < timeout:
        try:
            notif = qu.get_nowait()
            if isinstance(notif, notif_type):
                return notif
        except asyncio.QueueEmpty:
            pass
        await asyncio.sleep(0.01)
    raise TimeoutError(f"Timeout waiting for {notif_type} notification.")
