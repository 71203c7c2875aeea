"""Message types for source requests, replies and notifications."""

from __future__ import annotations

import pickle
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from mashumaro.mixins.msgpack import DataClassMessagePackMixin
from mashumaro.types import Discriminator


@dataclass
class Message(DataClassMessagePackMixin):
    """Base class for all messages."""

    def __repr__(self):
        parts = []
        for name, val in self.__dict__.items():
            if isinstance(val, np.ndarray):
                parts.append(f"{name}=<Array{val.shape}>")
            elif isinstance(val, (bytes, bytearray)):
                parts.append(f"{name}=<{len(val)} bytes>")
            else:
                parts.append(f"{name}={val!r}")
        return self.__class__.__name__ + "(" + ", ".join(parts) + ")"


@dataclass(repr=False)
class Request(Message):
    """A request from a controller to a source.

    The command is one of the `CONSTS` strings. Parameters are plain msgpack
    values; parameter values headed for a source travel wire-encoded as bytes.
    """

    command: str
    params: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Responses (server -> controller)
# ============================================================================


@dataclass(kw_only=True, repr=False)
class Response(Message):
    """A response from server to a controller's request."""

    type: str  # subclass to define
    value: Any  # subclass to define

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass(kw_only=True, repr=False)
class MsgResponse(Response):
    type: str = "msg"
    value: str = ""


@dataclass(kw_only=True, repr=False)
class DictResponse(Response):
    type: str = "dict"
    value: dict = field(default_factory=dict)


@dataclass(kw_only=True, repr=False)
class ValueResponse(Response):
    type: str = "value"
    value: int | float | str | bool = False


@dataclass(kw_only=True, repr=False)
class ParamResponse(Response):
    """A parameter value, encoded with the wire codec."""

    type: str = "param"
    param: str
    value: bytes = b""


@dataclass(kw_only=True, repr=False)
class TupleResponse(Response):
    type: str = "tuple"
    value: tuple = ()


@dataclass(kw_only=True, repr=False)
class ErrorResponse(Response):
    type: str = "error"
    value: str = ""


# ============================================================================
# Notifications (source -> controller, unsolicited)
# ============================================================================


@dataclass(kw_only=True, repr=False)
class Notification(Message):
    type: str

    class Config:
        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass(kw_only=True, repr=False)
class ErrorOccurred(Notification):
    """A spontaneous error; the source has dropped back to `invalid`."""

    type: str = "error_occurred"
    source_type: str
    msg: str


@dataclass(kw_only=True, repr=False)
class StateChanged(Notification):
    type: str = "state_changed"
    source_type: str
    old_state: str
    new_state: str
    msg: str = ""


@dataclass(kw_only=True, repr=False)
class SampleFrame(Notification):
    """One read interval of data.

    `samples` is int16, shaped (channels, nsamples), rows in configuration
    order. `aux` is int16, shaped (nsamples,), the decoded photodiode channel
    (0 or 255), or empty when the source has none; it is kept out of
    `samples`.
    """

    type: str = "sample_frame"
    frame_num: int
    samples: np.ndarray = field(
        metadata={"serialize": pickle.dumps, "deserialize": pickle.loads}
    )
    aux: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.int16),
        metadata={"serialize": pickle.dumps, "deserialize": pickle.loads},
    )

    @property
    def nchannels(self) -> int:
        return self.samples.shape[0]

    @property
    def nsamples(self) -> int:
        return self.samples.shape[1]


# ============================================================================
# In-process reply
# ============================================================================


@dataclass
class Reply:
    """Outcome of one request against a source.

    Requests never raise for request-scoped failures: they return a Reply
    with `success=False` and an explanation in `msg`.
    """

    request: str
    success: bool
    msg: str = ""
    param: str | None = None
    value: Any = None

    def __bool__(self):
        return self.success
