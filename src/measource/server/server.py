# -*- coding: utf-8 -*-
"""
Server side of the source control interface.

One server hosts one data source. Controllers talk to it over three ZeroMQ
sockets:

- `ROUTER` (msg port): msgpack `Request`s in, `Response`s out
- `PUB` (notif port): `ErrorOccurred` / `StateChanged` notifications
- `PUB` (stream port): `SampleFrame`s

Handlers are registered with `@handler(command, *client_functions)`, which
records which client functions in `measource.server.client` use them; the
correspondence is checked by `assert_valid_handler_client_correspondence()`.

Every request runs in its own task, so a request waiting on something slow
(a configuration upload) does not hold up others. The source itself keeps
its requests from interleaving.
"""

import asyncio
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Awaitable, Callable

import zmq
import zmq.asyncio
from loguru import logger
from setproctitle import setproctitle

import measource
import measource.util
from measource.device import BaseSource, create_source
from measource.types import (
    CONSTS,
    HANDLER_REGISTRY,
    WIRE_CODEC,
    CodecError,
    DictResponse,
    ErrorResponse,
    HandlerInfo,
    MsgResponse,
    Notification,
    ParamResponse,
    Reply,
    Request,
    Response,
    SampleFrame,
    ServerConnection,
    TupleResponse,
    ValueResponse,
)
from measource.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    format_error_response,
)

NOTIFS_PER_LOOP = 10
POLL_MS = 5

HandlerFunc = Callable[[ServerConnection, bytes, BaseSource, Request], Awaitable[None]]

# ============================================================================


async def _send_response(
    server_connection: ServerConnection, req_identity: bytes, response: Response
):
    logger.debug("*RESPONSE* (server->): {}", response)
    await server_connection.msg_socket.send_multipart(
        [req_identity, b"", response.to_msgpack()]
    )


async def _send_reply(
    server_connection: ServerConnection,
    req_identity: bytes,
    reply: Reply,
    ok: Response | None = None,
):
    """Map a source `Reply` onto the wire: `ok` on success, else the message."""
    if not reply.success:
        await _send_response(server_connection, req_identity, ErrorResponse(value=reply.msg))
        return
    await _send_response(
        server_connection, req_identity, ok if ok is not None else MsgResponse(value=reply.msg)
    )


async def _publish(server_connection: ServerConnection, notif: Notification):
    if isinstance(notif, SampleFrame):
        await server_connection.send_frame(notif)
    else:
        logger.trace("*NOTIF* (server->): {}", notif)
        await server_connection.notif_socket.send(notif.to_msgpack())


# ============================================================================


async def client_handler(server_connection: ServerConnection, source: BaseSource):
    while not server_connection.shutdown_requested:
        # drain a bounded number of notifications, then look for requests
        chunk = 0
        while not server_connection.notif_queue.empty() and chunk < NOTIFS_PER_LOOP:
            chunk += 1
            notif: Notification = server_connection.notif_queue.get_nowait()
            try:
                await _publish(server_connection, notif)
            except zmq.ZMQError:
                logger.exception("ERROR SENDING NOTIF {}.", notif)

        if not await server_connection.msg_socket.poll(POLL_MS, zmq.POLLIN):
            continue
        req_identity, _, req = await server_connection.msg_socket.recv_multipart()
        try:
            request = Request.from_msgpack(req)
        except Exception:
            logger.exception("Request unpacking error:")
            await _send_response(
                server_connection,
                req_identity,
                ErrorResponse(value=format_error_response()),
            )
            continue

        task = asyncio.create_task(
            _route_safely(server_connection, req_identity, source, request)
        )
        server_connection.pending.add(task)
        task.add_done_callback(server_connection.pending.discard)

    logger.info("Client handler exiting due to shutdown request")


async def _route_safely(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    try:
        await request_router(server_connection, req_identity, source, request)
    except Exception:
        logger.exception("Uncaught error in request_router.")
        await _send_response(
            server_connection,
            req_identity,
            ErrorResponse(value=format_error_response()),
        )


# ============================================================================


async def start_server(
    source_type: str,
    location: str = "",
    host: str = DEFAULT_HOST_ADDR,
    msg_port: int = DEFAULT_PORT,
    notif_port: int = DEFAULT_PORT + 1,
    stream_port: int = DEFAULT_PORT + 2,
    read_interval: int | None = None,
    ini_path: str | Path | None = None,
    log_to_file: bool = True,
    log_to_stdout: bool = False,
    log_path: str = "",
    clear_prev_log: bool = True,
    log_level: str = DEFAULT_LOGLEVEL,
):
    """Serve one source until a client asks for shutdown."""
    timestamp = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
    setproctitle(f"measource-server_{timestamp}")

    measource.util.start_server_log(
        log_to_file=log_to_file,
        log_to_stdout=log_to_stdout,
        log_path=log_path,
        clear_prev=clear_prev_log,
        log_level=log_level,
    )
    logger.info("Starting msg server on {}:{}", host, msg_port)

    notif_queue: asyncio.Queue[Notification] = asyncio.Queue()
    source = create_source(
        source_type,
        location,
        read_interval=read_interval,
        notif_queue=notif_queue,
        ini_path=ini_path,
    )
    logger.info("Serving {!r}", source)

    context = zmq.asyncio.Context()
    try:
        msg_socket = context.socket(zmq.ROUTER)
        msg_socket.bind(f"tcp://{host}:{msg_port}")  # bind on server side
        notif_socket = context.socket(zmq.PUB)
        notif_socket.bind(f"tcp://{host}:{notif_port}")
        stream_socket = context.socket(zmq.PUB)
        stream_socket.bind(f"tcp://{host}:{stream_port}")
    except zmq.ZMQError:
        logger.exception("Error opening server-side connection.")
        context.destroy(linger=0)
        raise
    server_connection = ServerConnection(
        msg_socket=msg_socket,
        notif_socket=notif_socket,
        stream_socket=stream_socket,
        host=host,
        msg_port=msg_port,
        notif_port=notif_port,
        stream_port=stream_port,
        notif_queue=notif_queue,
        context=context,
    )

    try:
        await client_handler(server_connection, source)
        # let in-flight replies (including the shutdown reply) go out
        if server_connection.pending:
            await asyncio.wait(server_connection.pending, timeout=1.0)
    finally:
        await source.close()
        for task in server_connection.pending:
            task.cancel()
        for socket in (msg_socket, notif_socket, stream_socket):
            socket.close(linger=100)
        context.term()
        logger.info("Server stopped.")


# ============================================================================


def get_router_map() -> dict[str, HandlerFunc]:
    return {
        CONSTS.COMMS.PING: handle_ping,
        CONSTS.COMMS.SHUTDOWN: handle_shutdown,
        CONSTS.COMMS.GET_OTHER_PORTS: handle_get_other_ports,
        CONSTS.COMMS.GET_SERVER_LOG_PATH: handle_get_server_log_path,
        CONSTS.COMMS.CLIENT_SYNC: handle_client_sync,
        # SOURCE
        CONSTS.SOURCE.INITIALIZE: handle_initialize,
        CONSTS.SOURCE.START_STREAM: handle_start_stream,
        CONSTS.SOURCE.STOP_STREAM: handle_stop_stream,
        CONSTS.SOURCE.GET: handle_get_param,
        CONSTS.SOURCE.SET: handle_set_param,
        CONSTS.SOURCE.REQUEST_STATUS: handle_request_status,
    }


# this function is essentially the 'server'
async def request_router(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    logger.debug("*REQUEST* (server<-): {}", request)
    try:
        handler_func = get_router_map()[request.command]
    except KeyError:
        logger.error("Unknown request: {}", request.command)
        await _send_response(
            server_connection,
            req_identity,
            ErrorResponse(value=f"Unknown request: {request.command}"),
        )
        return
    await handler_func(server_connection, req_identity, source, request)


# ============================================================================
# ============== Handlers
# ============================================================================


def handler(command: str, *client_methods: str) -> Callable[[HandlerFunc], HandlerFunc]:
    """Decorator that registers a server handler and its client functions.

    Args:
        command: The command string that identifies this handler
        *client_methods: Names of client functions that send this command

    Example:
        @handler(CONSTS.SOURCE.GET, "get_param")
        async def handle_get_param(...):
            ...
    """

    def decorator(func: HandlerFunc) -> HandlerFunc:
        HANDLER_REGISTRY[command] = HandlerInfo(
            handler_func=func,
            client_methods=list(client_methods),
            command=command,
        )

        @wraps(func)
        async def wrapper(
            server_connection: ServerConnection,
            req_identity: bytes,
            source: BaseSource,
            request: Request,
        ) -> None:
            await func(server_connection, req_identity, source, request)

        return wrapper

    return decorator


# ============================================================================


@handler(CONSTS.COMMS.PING, "ping")
async def handle_ping(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    """Handle ping request from client."""
    handles: measource.server.client.ping
    await _send_response(
        server_connection, req_identity, MsgResponse(value=CONSTS.COMMS.PONG)
    )


# ============================================================================


@handler(CONSTS.COMMS.SHUTDOWN, "shutdown_server")
async def handle_shutdown(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.shutdown_server
    logger.info("Shutdown requested, closing {!r}.", source)
    await source.close()
    server_connection.shutdown_requested = True
    await _send_response(
        server_connection, req_identity, MsgResponse(value="Shutting down")
    )


# ============================================================================


@handler(CONSTS.COMMS.GET_OTHER_PORTS, "get_other_ports")
async def handle_get_other_ports(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.get_other_ports
    await _send_response(
        server_connection,
        req_identity,
        TupleResponse(
            value=(
                server_connection.notif_port,
                server_connection.stream_port,
            ),
        ),
    )


# ============================================================================


@handler(CONSTS.COMMS.GET_SERVER_LOG_PATH, "get_server_log_path")
async def handle_get_server_log_path(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.get_server_log_path
    log_path = measource.util.get_log_filename()
    logger.info("Server log path: {}", log_path)
    await _send_response(server_connection, req_identity, ValueResponse(value=log_path))


# ============================================================================


@handler(CONSTS.COMMS.CLIENT_SYNC, "client_sync")
async def handle_client_sync(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.client_sync
    await _send_response(
        server_connection,
        req_identity,
        DictResponse(
            value={
                "version": measource.__version__,
                "source-type": source.source_type,
                "device-type": source.device_type,
                "state": source.state,
                "gettable": sorted(source.gettable),
                "settable": sorted(source.settable),
            }
        ),
    )


# ============================================================================


@handler(CONSTS.SOURCE.INITIALIZE, "initialize")
async def handle_initialize(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.initialize
    await _send_reply(server_connection, req_identity, await source.initialize())


@handler(CONSTS.SOURCE.START_STREAM, "start_stream")
async def handle_start_stream(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.start_stream
    await _send_reply(server_connection, req_identity, await source.start_stream())


@handler(CONSTS.SOURCE.STOP_STREAM, "stop_stream")
async def handle_stop_stream(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.stop_stream
    await _send_reply(server_connection, req_identity, await source.stop_stream())


# ============================================================================


@handler(CONSTS.SOURCE.GET, "get_param")
async def handle_get_param(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    """Reply with the parameter value in its wire encoding."""
    handles: measource.server.client.get_param
    param = request.params["param"]
    reply = await source.get(param)
    if not reply.success:
        await _send_reply(server_connection, req_identity, reply)
        return
    try:
        value = WIRE_CODEC.encode(param, reply.value)
    except CodecError as e:
        logger.error("Could not encode {} = {!r}: {}", param, reply.value, e)
        await _send_response(server_connection, req_identity, ErrorResponse(value=str(e)))
        return
    await _send_response(
        server_connection, req_identity, ParamResponse(param=param, value=value)
    )


@handler(CONSTS.SOURCE.SET, "set_param")
async def handle_set_param(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    """Decode the wire-encoded value and set it on the source."""
    handles: measource.server.client.set_param
    param = request.params["param"]
    value = request.params.get("value", b"")
    try:
        # unknown names go through raw so the source reports them
        if WIRE_CODEC.kind_of(param) is not None:
            value = WIRE_CODEC.decode(param, value)
    except CodecError as e:
        await _send_response(server_connection, req_identity, ErrorResponse(value=str(e)))
        return
    await _send_reply(server_connection, req_identity, await source.set(param, value))


@handler(CONSTS.SOURCE.REQUEST_STATUS, "request_status")
async def handle_request_status(
    server_connection: ServerConnection,
    req_identity: bytes,
    source: BaseSource,
    request: Request,
):
    handles: measource.server.client.request_status
    reply = await source.request_status()
    await _send_reply(
        server_connection, req_identity, reply, DictResponse(value=reply.value)
    )
