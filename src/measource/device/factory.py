"""Construct a data source by type name."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

from loguru import logger

from measource.types import (
    Notification,
    SourceConfig,
    UnsupportedSourceError,
    load_source_config,
)

from .file_source import FileSource
from .hidens import HidensSource
from .source import BaseSource

SourceFactory = Callable[[SourceConfig, "asyncio.Queue[Notification] | None"], BaseSource]

SOURCE_TYPES: dict[str, SourceFactory] = {
    "hidens": HidensSource,
    "file": FileSource,
}

# known but not shipped: needs the vendor NI-DAQmx binding
UNSUPPORTED_TYPES = {
    "mcs": "MCS sources need the NI-DAQmx vendor driver binding, which is not installed.",
}


def register_source_type(source_type: str, factory: SourceFactory) -> None:
    """Make `create_source(source_type, ...)` build sources with `factory`."""
    SOURCE_TYPES[source_type.lower()] = factory


def create_source(
    source_type: str,
    location: str = "",
    read_interval: int | None = None,
    notif_queue: asyncio.Queue[Notification] | None = None,
    config: SourceConfig | None = None,
    ini_path: str | Path | None = None,
) -> BaseSource:
    """Create a source in the `invalid` state.

    Parameters
    ----------
    source_type : str
        "hidens", "file" or a registered type (case-insensitive).
    location : str
        Server address or recording path. Empty uses the configured default.
    read_interval : int, optional
        Milliseconds between sample frames.
    config : SourceConfig, optional
        Complete configuration; `location`, `read_interval` and `ini_path`
        are ignored when given.

    Raises
    ------
    UnsupportedSourceError
        Known type that is not available in this installation.
    ValueError
        Unknown type.
    """
    key = source_type.lower()
    if key not in SOURCE_TYPES:
        if key in UNSUPPORTED_TYPES:
            raise UnsupportedSourceError(UNSUPPORTED_TYPES[key])
        raise ValueError(f"Unknown source type: {source_type}")
    if config is None:
        config = load_source_config(
            key, ini_path, location=location or None, read_interval=read_interval
        )
    logger.info("Creating {} source at {!r}", key, config.location)
    return SOURCE_TYPES[key](config, notif_queue)
