"""Lifecycle contract shared by every data source.

States and the only legal transitions:

    invalid --initialize--> initialized --start_stream--> streaming
                            initialized <--stop_stream--- streaming

plus the error-handling transition, which drives any state back to `invalid`
and clears every device-derived field.

Every request is a coroutine returning a `Reply`. Requests against one
instance never interleave: each runs under the instance's `asyncio.Lock`, as
does every streaming tick. Request-scoped failures (wrong state, bad value,
unreachable endpoint) come back as a failed `Reply` and leave the state
untouched; session-scoped failures (protocol errors, missing resources) go
through `handle_error`, which also puts an `ErrorOccurred` on the
notification queue.
"""

from __future__ import annotations

import asyncio
import math
import types
from datetime import datetime
from typing import Any, Awaitable

import numpy as np
from loguru import logger

from measource.types import (
    CONSTS,
    CodecError,
    Configuration,
    ErrorOccurred,
    InvalidStateTransition,
    Notification,
    Reply,
    Request,
    SampleFrame,
    SourceConfig,
    SourceConnectionError,
    SourceError,
    StateChanged,
    UnsupportedSourceError,
    ValidationError,
)

# ----------------
# Available States
# ----------------

SOURCE_STATE = types.SimpleNamespace()
SOURCE_STATE.INVALID = "invalid"
SOURCE_STATE.INITIALIZED = "initialized"
SOURCE_STATE.STREAMING = "streaming"

REQUEST_SCOPED_ERRORS = (
    InvalidStateTransition,
    ValidationError,
    SourceConnectionError,
    UnsupportedSourceError,
    CodecError,
)

BASE_GETTABLE = frozenset(
    {
        "connect-time",
        "start-time",
        "state",
        "nchannels",
        "has-analog-output",
        "gain",
        "adc-range",
        "read-interval",
        "sample-rate",
        "source-type",
        "device-type",
    }
)


def _fmt_time(t: datetime | None) -> str:
    return t.isoformat(timespec="milliseconds") if t is not None else ""


class BaseSource:
    """Base class for all data sources.

    Subclasses extend `gettable`/`settable` in their constructor and override
    the hooks `_initialize`, `_start_stream`, `_stop_stream`, `_set`,
    `_on_tick`, `_teardown`, `_parameters` and `_pack_status`. The public
    request methods own the state checks and transitions.

    Attributes
    ----------
    state : str
        One of `SOURCE_STATE`.
    gettable, settable : set[str]
        Parameter names accepted by `get` / `set` on this instance.
    notif_queue : asyncio.Queue[Notification]
        Outbound channel for errors, state changes and sample frames.
    """

    def __init__(
        self,
        config: SourceConfig,
        notif_queue: asyncio.Queue[Notification] | None = None,
    ):
        self.config = config
        self.notif_queue = notif_queue if notif_queue is not None else asyncio.Queue()
        self.source_type = config.source_type
        self.device_type = config.device_type
        self.location = config.location
        self.read_interval = int(config.read_interval)
        self.sample_rate = float(config.sample_rate)

        self.gettable: set[str] = set(BASE_GETTABLE)
        self.settable: set[str] = set()

        self.state = SOURCE_STATE.INVALID
        self._reset_device_fields()
        self.connect_time: datetime | None = None
        self.start_time: datetime | None = None

        self._lock = asyncio.Lock()
        self._stream_task: asyncio.Task | None = None
        self._frame_num = 0

    def __repr__(self):
        return f"{self.__class__.__name__}({self.location!r}, state={self.state})"

    # ----------------------------------------------------------------------------------
    # ===================================== Requests ===================================
    # ----------------------------------------------------------------------------------

    async def initialize(self) -> Reply:
        async with self._lock:
            try:
                self._require_state(SOURCE_STATE.INVALID, "initialize")
                await self._initialize()
            except SourceError as e:
                return self._failed("initialize", e)
            self.connect_time = datetime.now()
            self._set_state(SOURCE_STATE.INITIALIZED)
            return Reply("initialize", True)

    async def start_stream(self) -> Reply:
        async with self._lock:
            try:
                self._require_state(SOURCE_STATE.INITIALIZED, "start stream")
                await self._start_stream()
            except SourceError as e:
                return self._failed("start-stream", e)
            self.start_time = datetime.now()
            self._frame_num = 0
            self._set_state(SOURCE_STATE.STREAMING)
            self._stream_task = asyncio.create_task(
                self._stream_loop(), name=f"{self.source_type}-stream"
            )
            return Reply("start-stream", True)

    async def stop_stream(self) -> Reply:
        async with self._lock:
            try:
                self._require_state(SOURCE_STATE.STREAMING, "stop stream")
                self._cancel_stream_task()
                await self._stop_stream()
            except SourceError as e:
                return self._failed("stop-stream", e)
            self.start_time = None
            self._set_state(SOURCE_STATE.INITIALIZED)
            return Reply("stop-stream", True)

    async def get(self, param: str) -> Reply:
        async with self._lock:
            if param not in self.gettable:
                return Reply(
                    "get",
                    False,
                    f'The parameter "{param}" is not valid for source '
                    f"{self.__class__.__name__}",
                    param,
                )
            return Reply("get", True, param=param, value=self._parameters()[param])

    async def set(self, param: str, value: Any = None) -> Reply:
        """Set a parameter.

        `_set` may hand back an awaitable for work that must not hold the
        request lock (e.g. a configuration upload). It is awaited after the
        lock is released and produces the final reply.
        """
        follow_up: Awaitable[Reply] | None = None
        async with self._lock:
            try:
                if not self.settable:
                    raise ValidationError(
                        "Setting parameters is not implemented by "
                        f"{self.__class__.__name__} sources."
                    )
                if param not in self.settable:
                    raise ValidationError(
                        f'Cannot set parameter "{param}" for {self.__class__.__name__}.'
                    )
                follow_up = await self._set(param, value)
            except SourceError as e:
                return self._failed("set", e, param)
        if follow_up is not None:
            return await follow_up
        logger.info("{} set {} = {}", self.source_type, param, value)
        return Reply("set", True, param=param, value=value)

    async def request_status(self) -> Reply:
        async with self._lock:
            return Reply("request-status", True, value=self._pack_status())

    async def handle(self, request: Request) -> Reply:
        """Dispatch a `Request` message to the matching request method."""
        params = request.params
        match request.command:
            case CONSTS.SOURCE.INITIALIZE:
                return await self.initialize()
            case CONSTS.SOURCE.START_STREAM:
                return await self.start_stream()
            case CONSTS.SOURCE.STOP_STREAM:
                return await self.stop_stream()
            case CONSTS.SOURCE.GET:
                return await self.get(params["param"])
            case CONSTS.SOURCE.SET:
                return await self.set(params["param"], params.get("value"))
            case CONSTS.SOURCE.REQUEST_STATUS:
                return await self.request_status()
            case _:
                return Reply(request.command, False, f"Unknown request: {request.command}")

    # ----------------------------------------------------------------------------------
    # ================================ Error handling ==================================
    # ----------------------------------------------------------------------------------

    def handle_error(self, msg: str) -> None:
        """Error-handling transition. Idempotent.

        Tears down any open session, clears device-derived fields, moves to
        `invalid` and reports `msg` as an `ErrorOccurred` notification. A
        second call with nothing left to tear down only logs.
        """
        had_session = self._teardown()
        self._cancel_stream_task()
        if self.state == SOURCE_STATE.INVALID and not had_session:
            logger.debug("{} error while already invalid: {}", self.source_type, msg)
            return
        logger.error("{} source error: {}", self.source_type, msg)
        self._reset_device_fields()
        self.connect_time = None
        self.start_time = None
        self._set_state(SOURCE_STATE.INVALID, msg)
        self._notify(ErrorOccurred(source_type=self.source_type, msg=msg))

    async def close(self) -> None:
        """Release the session at shutdown, without reporting an error."""
        async with self._lock:
            self._cancel_stream_task()
            self._teardown()
            self._reset_device_fields()
            self.connect_time = None
            self.start_time = None
            self._set_state(SOURCE_STATE.INVALID, "closed")

    # ----------------------------------------------------------------------------------
    # ===================================== Hooks ======================================
    # ----------------------------------------------------------------------------------

    async def _initialize(self) -> None:
        pass

    async def _start_stream(self) -> None:
        pass

    async def _stop_stream(self) -> None:
        pass

    async def _set(self, param: str, value: Any) -> Awaitable[Reply] | None:
        raise ValidationError(
            f"Setting parameters is not implemented by {self.__class__.__name__}."
        )

    async def _on_tick(self) -> None:
        """Called every read interval while streaming, under the request lock."""
        pass

    def _teardown(self) -> bool:
        """Close device resources. Returns True if something was open."""
        return False

    def _parameters(self) -> dict[str, Any]:
        """Snapshot of every parameter value by name."""
        return {
            "connect-time": _fmt_time(self.connect_time),
            "start-time": _fmt_time(self.start_time),
            "state": self.state,
            "nchannels": self.nchannels,
            "has-analog-output": self.has_analog_output,
            "analog-output": self.analog_output,
            "analog-output-size": int(self.analog_output.size),
            "gain": self.gain,
            "adc-range": self.adc_range,
            "read-interval": self.read_interval,
            "sample-rate": self.sample_rate,
            "source-type": self.source_type,
            "device-type": self.device_type,
            "trigger": self.trigger,
            "location": self.location,
            "plug": self.plug,
            "chip-id": self.chip_id,
            "configuration": self.configuration,
        }

    def _pack_status(self) -> dict[str, Any]:
        """Status map; values are plain msgpack/JSON types."""
        return {
            "state": self.state,
            "source-type": self.source_type,
            "device-type": self.device_type,
            "connect-time": _fmt_time(self.connect_time),
            "start-time": _fmt_time(self.start_time),
            "read-interval": self.read_interval,
            "sample-rate": self.sample_rate,
            "gain": self.gain,
            "adc-range": self.adc_range,
            "nchannels": self.nchannels,
            "has-analog-output": self.has_analog_output,
        }

    # ----------------------------------------------------------------------------------
    # ==================================== Internals ===================================
    # ----------------------------------------------------------------------------------

    @property
    def has_analog_output(self) -> bool:
        return self.analog_output.size > 0

    @property
    def frame_size(self) -> int:
        """Samples per emitted frame."""
        if not math.isfinite(self.sample_rate):
            return 0
        return int(self.read_interval * self.sample_rate / 1000)

    def _reset_device_fields(self) -> None:
        self.gain = math.nan
        self.adc_range = math.nan
        self.nchannels = 0
        self.plug: int | None = None
        self.chip_id: int | None = None
        self.trigger = "none"
        self.analog_output = np.zeros(0, dtype=np.float64)
        self.configuration = Configuration()

    def _require_state(self, required: str, verb: str) -> None:
        if self.state != required:
            raise InvalidStateTransition(
                f"Can only {verb} from the '{required}' state."
            )

    def _failed(self, request: str, exc: SourceError, param: str | None = None) -> Reply:
        if isinstance(exc, REQUEST_SCOPED_ERRORS):
            logger.warning("{} {} failed: {}", self.source_type, request, exc)
        else:
            self.handle_error(str(exc))
        return Reply(request, False, str(exc), param)

    def _set_state(self, new_state: str, msg: str = "") -> None:
        old_state, self.state = self.state, new_state
        if old_state == new_state:
            return
        logger.info("{} state {} -> {}", self.source_type, old_state, new_state)
        self._notify(
            StateChanged(
                source_type=self.source_type,
                old_state=old_state,
                new_state=new_state,
                msg=msg,
            )
        )

    def _notify(self, notif: Notification) -> None:
        self.notif_queue.put_nowait(notif)

    def _emit_frame(self, samples: np.ndarray, aux: np.ndarray | None = None) -> None:
        frame = SampleFrame(
            frame_num=self._frame_num,
            samples=samples,
            aux=aux if aux is not None else np.zeros(0, dtype=np.int16),
        )
        self._frame_num += 1
        logger.trace("{} emitting {}", self.source_type, frame)
        self._notify(frame)

    def _cancel_stream_task(self) -> None:
        task, self._stream_task = self._stream_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _stream_loop(self) -> None:
        interval = self.read_interval / 1000.0
        while True:
            await asyncio.sleep(interval)
            async with self._lock:
                if self.state != SOURCE_STATE.STREAMING:
                    return
                try:
                    await self._on_tick()
                except SourceError as e:
                    self.handle_error(str(e))
                    return
                except Exception:
                    logger.exception("{} stream tick failed.", self.source_type)
                    self.handle_error(f"Error reading data from {self.source_type} source.")
                    return
