"""
Types shared across measource.

1. Source data model
    - `Electrode` / `Configuration`: ordered electrode configurations
    - `SampleFrame`: one read interval of samples plus the aux channel
    - `WireCodec`: binary layouts of named parameter values

2. Messages
    - `Request` / `Reply` for in-process requests against a source
    - `Response` family sent by the server, `Notification` family for
      unsolicited events (errors, state changes, sample frames)
    - Serialization using MessagePack over ZeroMQ

3. Configuration
    - One mashumaro dataclass per source type, INI overrides

4. Errors
    - Exception taxonomy used inside sources (see `measource.types.errors`)

Examples
--------
Encoding a parameter for a remote controller:
```python
from measource.types import encode_value, decode_value
assert decode_value("nchannels", encode_value("nchannels", 64)) == 64
```

See Also
--------
measource.device : Source implementations
measource.server : Server-client communication module
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import zmq
import zmq.asyncio

from .commands import CONSTS
from .config import (
    FileSourceConfig,
    HidensConfig,
    SourceConfig,
    config_class_for,
    load_source_config,
)
from .electrode import Configuration, Electrode
from .errors import (
    CodecError,
    CommsError,
    InvalidStateTransition,
    ProtocolError,
    ReplyTimeout,
    ResourceMissing,
    SourceConnectionError,
    SourceError,
    UnsupportedSourceError,
    ValidationError,
)
from .messages import (
    DictResponse,
    ErrorOccurred,
    ErrorResponse,
    Message,
    MsgResponse,
    Notification,
    ParamResponse,
    Reply,
    Request,
    Response,
    SampleFrame,
    StateChanged,
    TupleResponse,
    ValueResponse,
)
from .validation import (
    HANDLER_REGISTRY,
    PENDING_COMMAND_VALIDATIONS,
    HandlerInfo,
    assert_valid_handler_client_correspondence,
    validate_handler_client_correspondence,
)
from .wire import (
    PARAMETER_KINDS,
    UINT_MAX,
    UINT_UNSET,
    WIRE_CODEC,
    ValueKind,
    WireCodec,
    decode_value,
    encode_value,
)


@dataclass
class ClientConnection:
    """Client-side connection information."""

    context: zmq.Context
    msg_socket: zmq.Socket  # REQ socket (sync)
    notif_socket: zmq.Socket  # SUB socket for notifications
    stream_socket: zmq.Socket  # SUB socket for sample frames
    host: str
    msg_port: int
    notif_port: int
    stream_port: int


@dataclass
class ServerConnection:
    """Server-side connection information."""

    msg_socket: zmq.asyncio.Socket  # ROUTER socket
    notif_socket: zmq.asyncio.Socket  # PUB socket for notifications
    stream_socket: zmq.asyncio.Socket  # PUB socket for sample frames
    host: str
    msg_port: int
    notif_port: int
    stream_port: int
    notif_queue: asyncio.Queue
    context: zmq.asyncio.Context | None = None
    shutdown_requested: bool = False
    pending: set = field(default_factory=set)  # in-flight request tasks

    async def send_frame(self, frame: SampleFrame, header: str = "frame") -> None:
        """Publish a sample frame on the stream socket."""
        await self.stream_socket.send_multipart(
            [header.encode("utf-8"), frame.to_msgpack()]
        )


__all__ = [
    "ClientConnection",
    "ServerConnection",
    "CONSTS",
    "SourceConfig",
    "HidensConfig",
    "FileSourceConfig",
    "config_class_for",
    "load_source_config",
    "Electrode",
    "Configuration",
    "SourceError",
    "InvalidStateTransition",
    "ValidationError",
    "ProtocolError",
    "ReplyTimeout",
    "SourceConnectionError",
    "ResourceMissing",
    "CodecError",
    "UnsupportedSourceError",
    "CommsError",
    "Message",
    "Request",
    "Reply",
    "Response",
    "MsgResponse",
    "DictResponse",
    "ValueResponse",
    "ParamResponse",
    "TupleResponse",
    "ErrorResponse",
    "Notification",
    "ErrorOccurred",
    "StateChanged",
    "SampleFrame",
    "HANDLER_REGISTRY",
    "PENDING_COMMAND_VALIDATIONS",
    "HandlerInfo",
    "assert_valid_handler_client_correspondence",
    "validate_handler_client_correspondence",
    "ValueKind",
    "WireCodec",
    "WIRE_CODEC",
    "PARAMETER_KINDS",
    "UINT_MAX",
    "UINT_UNSET",
    "encode_value",
    "decode_value",
]
