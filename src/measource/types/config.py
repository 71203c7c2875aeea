"""Configuration types for data sources.

One dataclass per source type, built once when a source is created and then
threaded through it. Values can be overridden from an INI file, one section
per source type:

    [hidens]
    location = 11.0.0.1
    port = 11112
    electrode_table = ~/.measource/electrode-list.txt

    [file]
    read_interval = 20

Search order for `load_source_config`:
1. the path given explicitly
2. ~/.measource/sources.ini
3. dataclass defaults
"""

import dataclasses
import math
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
from mashumaro.exceptions import SuitableVariantNotFoundError
from mashumaro.types import Discriminator

from measource.util import defaults


@dataclass(kw_only=True)
class SourceConfig(DataClassDictMixin):
    """Base configuration for a data source.

    Attributes
    ----------
    source_type : str
        Type tag, selects the subclass when loading from a dict.
    location : str
        Where the data comes from (server address, recording path).
    read_interval : int
        Milliseconds between emitted sample frames.
    """

    class Config(BaseConfig):
        discriminator = Discriminator(
            field="source_type",
            include_subtypes=True,
        )

    source_type: str
    device_type: str = "none"
    location: str = ""
    read_interval: int = defaults.DEFAULT_READ_INTERVAL
    sample_rate: float = math.nan


@dataclass(kw_only=True)
class HidensConfig(SourceConfig):
    """Configuration for the HiDens network sample server."""

    source_type: str = "hidens"
    device_type: str = "hidens"
    location: str = defaults.HIDENS_ADDR
    port: int = defaults.HIDENS_PORT
    fpga_addr: str = defaults.FPGA_ADDR
    fpga_port: int = defaults.FPGA_PORT
    client_name: str = defaults.HIDENS_CLIENT_NAME
    sample_rate: float = 20000.0
    request_wait_time: float = defaults.HIDENS_REQUEST_WAIT_TIME
    connect_timeout: float = defaults.HIDENS_CONNECT_TIMEOUT
    fpga_connect_timeout: float = defaults.FPGA_CONNECT_TIMEOUT
    fpga_write_timeout: float = defaults.FPGA_WRITE_TIMEOUT
    total_channels: int = 126
    frame_bytes: int = 131  # bytes per sample, aux byte last
    aux_bit: int = 0x08
    no_chip_id: int = 65535
    max_plug: int = 4
    max_gain: float = 10000.0
    electrode_table: str = str(defaults.USER_DIR / "electrode-list.txt")
    config_file_suffix: str = ".cmdraw.nrk2"
    # re-fetches after an upload while the reported configuration is unchanged
    config_refresh_retries: int = 1
    config_refresh_delay: float = 0.05  # seconds

    @property
    def aux_row(self) -> int:
        return self.frame_bytes - 1


@dataclass(kw_only=True)
class FileSourceConfig(SourceConfig):
    """Configuration for recorded-file playback."""

    source_type: str = "file"


def _all_config_types() -> dict[str, type[SourceConfig]]:
    found = {}
    stack = [SourceConfig]
    while stack:
        cls = stack.pop()
        for sub in cls.__subclasses__():
            default = {f.name: f.default for f in dataclasses.fields(sub)}
            found[str(default["source_type"])] = sub
            stack.append(sub)
    return found


def config_class_for(source_type: str) -> type[SourceConfig]:
    try:
        return _all_config_types()[source_type.lower()]
    except KeyError:
        raise ValueError(f"No configuration type for source '{source_type}'.") from None


def _read_section(ini_path: Path, source_type: str) -> dict[str, str] | None:
    parser = ConfigParser()
    parser.read(ini_path)
    # Case-insensitive section lookup
    for section in parser.sections():
        if section.lower() == source_type.lower():
            return dict(parser[section])
    return None


def _coerce(field: dataclasses.Field, raw: str):
    if field.type is int:
        return int(raw, 0)
    if field.type is float:
        return float(raw)
    if field.type is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if field.name in ("electrode_table",):
        return str(Path(raw).expanduser())
    return raw


def load_source_config(
    source_type: str, ini_path: str | Path | None = None, **overrides
) -> SourceConfig:
    """Build the configuration for a source type.

    Parameters
    ----------
    source_type : str
        "hidens", "file", ...
    ini_path : str | Path, optional
        INI file to read; by default `~/.measource/sources.ini` when it exists.
    **overrides
        Field values that win over the INI file.

    Returns
    -------
    SourceConfig
        The subclass registered for `source_type`.

    Raises
    ------
    ValueError
        Unknown source type or unknown/invalid field in the INI section.
    """
    cls = config_class_for(source_type)
    fields = {f.name: f for f in dataclasses.fields(cls)}
    data: dict = {"source_type": source_type.lower()}

    path = Path(ini_path) if ini_path is not None else defaults.SOURCES_INI
    if path.exists():
        section = _read_section(path, source_type)
        if section is not None:
            logger.debug("Loading {} source config from {}", source_type, path)
            for key, raw in section.items():
                name = key.replace("-", "_")
                if name not in fields:
                    raise ValueError(
                        f"Unknown option '{key}' for source '{source_type}' in {path}"
                    )
                data[name] = _coerce(fields[name], raw)
    elif ini_path is not None:
        raise ValueError(f"Source configuration file not found: {path}")

    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return SourceConfig.from_dict(data)
    except SuitableVariantNotFoundError:
        raise ValueError(f"No configuration type for source '{source_type}'.") from None
