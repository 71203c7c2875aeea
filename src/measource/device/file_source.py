"""Playback of a recorded acquisition from a `.npz` file.

Arrays read from the recording:

    samples        int16, (nchannels, nsamples)
    sample_rate    scalar
    gain           scalar (optional)
    adc_range      scalar (optional)
    device_type    str (optional, "hidens" recordings carry a configuration)
    configuration  (n, 6), rows of [index, xpos, x, ypos, y, label] (optional)
    analog_output  float vector (optional)
    aux            int16, (nsamples,) (optional)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
from loguru import logger

from measource.device.source import SOURCE_STATE, BaseSource
from measource.types import (
    Configuration,
    FileSourceConfig,
    Notification,
    ResourceMissing,
)

END_OF_DATA_MSG = "Reached end of source data file."


class FileSource(BaseSource):
    config: FileSourceConfig

    def __init__(
        self,
        config: FileSourceConfig,
        notif_queue: asyncio.Queue[Notification] | None = None,
    ):
        path = Path(config.location).expanduser()
        if not path.is_file():
            raise ResourceMissing(f'Data file "{config.location}" does not exist.')
        super().__init__(config, notif_queue)
        self.path = path
        self.gettable.add("location")

        with np.load(path) as data:
            if "device_type" in data.files:
                self.device_type = str(data["device_type"])
        if self.device_type == "hidens":
            self.gettable |= {"configuration", "plug"}
        else:
            self.gettable.add("analog-output")

        self._samples = np.zeros((0, 0), dtype=np.int16)
        self._aux = np.zeros(0, dtype=np.int16)
        self._position = 0

    async def _initialize(self) -> None:
        try:
            with np.load(self.path) as data:
                samples = np.asarray(data["samples"], dtype=np.int16)
                sample_rate = float(data["sample_rate"])
                gain = float(data["gain"]) if "gain" in data.files else np.nan
                adc_range = float(data["adc_range"]) if "adc_range" in data.files else np.nan
                rows = data["configuration"] if "configuration" in data.files else None
                analog_output = (
                    np.asarray(data["analog_output"], dtype=np.float64)
                    if "analog_output" in data.files
                    else np.zeros(0, dtype=np.float64)
                )
                aux = (
                    np.asarray(data["aux"], dtype=np.int16)
                    if "aux" in data.files
                    else np.zeros(samples.shape[1], dtype=np.int16)
                )
        except (OSError, KeyError, ValueError) as e:
            raise ResourceMissing(f"Could not read data file {self.path}: {e}") from e
        if samples.ndim != 2:
            raise ResourceMissing(f"Samples in {self.path} must be (nchannels, nsamples).")

        self._samples = samples
        self._aux = aux
        self.sample_rate = sample_rate
        self.gain = gain
        self.adc_range = adc_range
        self.nchannels = samples.shape[0]
        self.analog_output = analog_output
        if rows is not None:
            self.configuration = Configuration.from_json(np.asarray(rows).tolist())
        if self.device_type == "hidens":
            # recordings come from a single chip
            self.plug = 0
            self.chip_id = 1
        logger.info(
            "Opened recording {}: {} channels x {} samples at {} Hz",
            self.path,
            self.nchannels,
            samples.shape[1],
            self.sample_rate,
        )

    async def _start_stream(self) -> None:
        self._position = 0

    async def _on_tick(self) -> None:
        nsamples = self._samples.shape[1]
        stop = min(self._position + max(self.frame_size, 1), nsamples)
        if stop > self._position:
            self._emit_frame(
                np.ascontiguousarray(self._samples[:, self._position : stop]),
                np.ascontiguousarray(self._aux[self._position : stop]),
            )
            self._position = stop
        if self._position >= nsamples:
            self._stream_task = None
            self.start_time = None
            self._set_state(SOURCE_STATE.INITIALIZED, END_OF_DATA_MSG)

    def _teardown(self) -> bool:
        had_data = self._samples.size > 0
        self._samples = np.zeros((0, 0), dtype=np.int16)
        self._aux = np.zeros(0, dtype=np.int16)
        self._position = 0
        return had_data
