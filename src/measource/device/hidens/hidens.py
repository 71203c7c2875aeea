"""HiDens source: client of the HiDens network sample server.

Requests are line commands on one TCP connection (`HidensLink`); once
streaming, the same connection carries raw frames, requested every read
interval with `stream <ms>`.

Channel layout: each raw sample is `frame_bytes` bytes, one per hardware
channel, with the aux (photodiode) byte last. Only the channels the current
configuration connects are kept.
"""

from __future__ import annotations

import asyncio
import math
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Awaitable

import numpy as np
from loguru import logger

from measource.device.source import SOURCE_STATE, BaseSource
from measource.types import (
    Configuration,
    HidensConfig,
    InvalidStateTransition,
    Notification,
    ProtocolError,
    Reply,
    ResourceMissing,
    SourceConnectionError,
    SourceError,
    ValidationError,
)

from .electrodes import load_electrode_table
from .frames import channel_rows, decode_frames, parse_channel_report, verify_reply
from .link import HidensLink
from .uploader import ConfigUploader, PendingUpload, UploadResult

RUNNING_HINT = (
    "Make sure the server is running and a chip is plugged into the Neurolizer."
)


def _as_uint(value: Any) -> int | None:
    """Unsigned integer from an int or a digit string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, np.integer)):
        return int(value) if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class HidensSource(BaseSource):
    config: HidensConfig

    def __init__(
        self,
        config: HidensConfig,
        notif_queue: asyncio.Queue[Notification] | None = None,
    ):
        super().__init__(config, notif_queue)
        self.gettable |= {"configuration", "configuration-file", "plug", "chip-id", "location"}
        self.settable |= {"configuration", "configuration-file", "plug"}
        self.configuration_file = ""
        self._link: HidensLink | None = None
        self._device_gain = math.nan
        self._upload: PendingUpload | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._uploader = ConfigUploader(config.fpga_connect_timeout, config.fpga_write_timeout)

    @property
    def bytes_per_emit_frame(self) -> int:
        return self.frame_size * self.config.frame_bytes

    def _reset_device_fields(self) -> None:
        super()._reset_device_fields()
        self._electrode_indices = np.full(self.config.total_channels, -1, dtype=np.int64)
        self._channel_rows = channel_rows(self._electrode_indices, self.config.aux_row)

    # ----------------------------------------------------------------------------------
    # ================================== Lifecycle =====================================
    # ----------------------------------------------------------------------------------

    async def _initialize(self) -> None:
        cfg = self.config
        self._link = await HidensLink.open(
            cfg.location, cfg.port, cfg.connect_timeout, on_lost=self._on_link_lost
        )
        logger.info("Connected to HiDens data server at {}:{}", cfg.location, cfg.port)

        for cmd in (
            f"setbytes {cfg.frame_bytes}",
            "header_frameno off",
            f"client_name {cfg.client_name}",
        ):
            if not verify_reply(await self._ask(cmd)):
                self._drop_link()
                raise SourceConnectionError(
                    "Error initializing communication with HiDens data server."
                )

        sample_rate = await self._ask_float(
            "sr", "Could not retrieve sampling rate from HiDens server."
        )
        device_gain = await self._ask_float("gain 0", "Could not retrieve gain from HiDens server.")
        adc_range = await self._ask_float(
            "adc_range", "Could not retrieve ADC range from HiDens server."
        )

        self.sample_rate = sample_rate
        self._device_gain = device_gain
        self.adc_range = adc_range
        self.gain = adc_range / 256.0 / device_gain if device_gain else math.nan
        logger.info(
            "HiDens handshake done: sr={} gain={} adc_range={}",
            self.sample_rate,
            self.gain,
            self.adc_range,
        )

    async def _start_stream(self) -> None:
        cfg = self.config
        if self.plug is None or self.plug > cfg.max_plug:
            raise ValidationError(f"Cannot start HiDens data stream with source plug = {self.plug}")
        if len(self.configuration) == 0:
            raise ValidationError("Cannot initialize HiDens source with empty configuration.")
        if not 0 <= self.gain <= cfg.max_gain:  # false for NaN too
            raise ValidationError(f"Cannot initialize HiDens source with gain = {self.gain}")
        if self._upload is not None:
            raise InvalidStateTransition(
                "Cannot start streaming while a configuration upload is pending."
            )
        stale = self._require_link().discard()
        if stale:
            logger.debug("Discarded {} stale bytes before streaming.", stale)
        self._request_data("live")

    async def _on_tick(self) -> None:
        self._recv_data_frames()
        self._request_data("stream")

    def _teardown(self) -> bool:
        link, self._link = self._link, None
        if link is None:
            return False
        link.close()
        logger.info("Closed connection to HiDens data server.")
        return True

    async def close(self) -> None:
        await super().close()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _on_link_lost(self, exc: Exception | None) -> None:
        logger.warning("HiDens link lost: {!r}", exc)
        self.handle_error("Unexpectedly disconnected from HiDens data server.")

    # ----------------------------------------------------------------------------------
    # ================================== Parameters ====================================
    # ----------------------------------------------------------------------------------

    async def _set(self, param: str, value: Any) -> Awaitable[Reply] | None:
        if self.state != SOURCE_STATE.INITIALIZED:
            raise InvalidStateTransition(
                "Can only set parameters while in the 'initialized' state."
            )
        match param:
            case "plug":
                await self._set_plug(value)
            case "configuration-file":
                return self._start_upload(value)
            case "configuration":
                raise ValidationError(
                    "Setting Hidens configurations directly from the command bytes is not"
                    " yet supported. Set it via the 'configuration-file' parameter until"
                    " this is implemented"
                )
        return None

    async def _set_plug(self, value: Any) -> None:
        cfg = self.config
        self.plug = None
        self.chip_id = None

        plug = _as_uint(value)
        if plug is None or plug > cfg.max_plug:
            raise ValidationError(
                "The plug value was not an integer or outside the allowed range "
                f"[0, {cfg.max_plug}]."
            )
        if not verify_reply(await self._ask(f"select {plug}")):
            raise ValidationError("The requested plug does not contain a chip.")
        chip_id = _as_uint(await self._ask("id"))
        if chip_id is None or chip_id == cfg.no_chip_id:
            raise ValidationError("The chip in the requested plug appears invalid.")

        self.plug, self.chip_id = plug, chip_id
        logger.info("Selected plug {} (chip id {})", plug, chip_id)
        try:
            await self._fetch_configuration()
        except SourceError:
            self.plug = None
            self.chip_id = None
            raise

    def _start_upload(self, value: Any) -> Awaitable[Reply]:
        cfg = self.config
        if self.plug is None:
            raise ValidationError("Must select a Neurolizer plug before setting configuration.")
        if not isinstance(value, (str, os.PathLike)):
            raise ValidationError("The configuration file must be given as a path.")
        path = str(value)
        if not path.endswith(cfg.config_file_suffix):
            self.configuration_file = ""
            raise ValidationError(
                f'Configuration files must be in "*{cfg.config_file_suffix}" format'
            )
        if not Path(path).exists():
            self.configuration_file = ""
            raise ValidationError(f'Configuration file "{path}" does not exist.')
        if self._upload is not None:
            raise InvalidStateTransition("A configuration upload is already in progress.")

        upload = PendingUpload(path, cfg.fpga_addr, cfg.fpga_port)
        self._upload = upload
        self.configuration_file = path
        logger.info("Uploading {} to {}:{}", path, cfg.fpga_addr, cfg.fpga_port)
        future = asyncio.wrap_future(self._uploader.submit(upload, self._get_executor()))
        return self._finish_upload(upload, future)

    async def _finish_upload(
        self, upload: PendingUpload, future: asyncio.Future[UploadResult]
    ) -> Reply:
        try:
            result = await future
        except Exception:
            logger.exception("Configuration upload worker failed.")
            result = UploadResult(False, upload.file_path)

        async with self._lock:
            self._upload = None
            if self.state != SOURCE_STATE.INITIALIZED:
                self.configuration_file = ""
                return Reply(
                    "set",
                    False,
                    "The source left the 'initialized' state during the configuration upload.",
                    "configuration-file",
                )
            if not result.success:
                self.configuration_file = ""
                return self._failed(
                    "set",
                    SourceConnectionError("Could not send the configuration to the server."),
                    "configuration-file",
                )
            self.configuration_file = result.file_path
            try:
                await self._refresh_configuration()
            except SourceError as e:
                self.configuration_file = ""
                return self._failed("set", e, "configuration-file")
        logger.info("Configuration {} active.", result.file_path)
        return Reply("set", True, param="configuration-file", value=result.file_path)

    async def _refresh_configuration(self) -> None:
        """Fetch after an upload; the server may still report the old layout."""
        previous = self.configuration
        await self._fetch_configuration()
        for _ in range(self.config.config_refresh_retries):
            if self.configuration != previous:
                break
            await asyncio.sleep(self.config.config_refresh_delay)
            await self._fetch_configuration()

    async def _fetch_configuration(self) -> None:
        cfg = self.config
        self._send(f"ch 0-{cfg.total_channels - 1}")
        lines = await self._require_link().read_lines(cfg.total_channels, cfg.request_wait_time)
        if not lines or not verify_reply(lines[0]):
            raise ProtocolError("Could not retrieve configuration from HiDens server.")
        indices = parse_channel_report(lines, cfg.total_channels)
        try:
            table = load_electrode_table(cfg.electrode_table)
        except ResourceMissing:
            self.configuration = Configuration()
            raise
        configuration = table.build_configuration(indices)

        self._electrode_indices = indices
        self._channel_rows = channel_rows(indices, cfg.aux_row)
        self.configuration = configuration
        self.nchannels = len(configuration)
        logger.info("HiDens configuration: {} connected channels.", self.nchannels)

    def _parameters(self) -> dict[str, Any]:
        params = super()._parameters()
        params["configuration-file"] = self.configuration_file
        return params

    def _pack_status(self) -> dict[str, Any]:
        status = super()._pack_status()
        status.update(
            {
                "location": self.location,
                "configuration": self.configuration.to_json(),
                "configuration-file": self.configuration_file,
                "plug": self.plug,
                "chip-id": self.chip_id,
            }
        )
        return status

    # ----------------------------------------------------------------------------------
    # =================================== Transport ====================================
    # ----------------------------------------------------------------------------------

    def _require_link(self) -> HidensLink:
        if self._link is None or not self._link.connected:
            raise ProtocolError("Not connected to HiDens data server.")
        return self._link

    def _drop_link(self) -> None:
        if self._link is not None:
            self._link.close()
            self._link = None

    def _send(self, cmd: str) -> None:
        self._require_link().write(f"{cmd}\n".encode("latin-1"))

    async def _ask(self, cmd: str) -> str:
        self._send(cmd)
        return await self._require_link().read_line(self.config.request_wait_time)

    async def _ask_float(self, cmd: str, msg: str) -> float:
        reply = await self._ask(cmd)
        try:
            return float(reply)
        except ValueError:
            self._drop_link()
            raise SourceConnectionError(f"{msg} {RUNNING_HINT}") from None

    def _request_data(self, method: str) -> None:
        self._send(f"{method} {self.read_interval}")

    def _recv_data_frames(self) -> None:
        cfg = self.config
        link = self._require_link()
        nbytes = self.bytes_per_emit_frame
        if nbytes <= 0:
            return
        while link.bytes_available >= nbytes:
            samples, aux = decode_frames(
                link.read(nbytes), cfg.frame_bytes, self._channel_rows, cfg.aux_row, cfg.aux_bit
            )
            self._emit_frame(samples, aux)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="measource-upload"
            )
        return self._executor
