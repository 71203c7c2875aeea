"""Electrode position table.

A text file with one line per electrode; line `i` describes electrode `i`.
Fields are separated by whitespace or by the letters x, y and p, e.g.

    1052x1743y 3 17 A

gives xpos=1052, ypos=1743, x=3, y=17 and the label character 'A'.
"""

from __future__ import annotations

import functools
import re
from pathlib import Path

import numpy as np
from loguru import logger

from measource.types import Configuration, Electrode, ResourceMissing

_FIELD_SEP = re.compile(r"\s|[xyp]")


class ElectrodeTable:
    def __init__(self, lines: list[str], path: str = "<memory>"):
        self.path = path
        self._lines = lines
        self._parsed: dict[int, Electrode] = {}

    def __len__(self):
        return len(self._lines)

    def __repr__(self):
        return f"ElectrodeTable({self.path!r}, {len(self)} electrodes)"

    @classmethod
    def from_file(cls, path: str | Path) -> ElectrodeTable:
        path = Path(path)
        if not path.exists():
            raise ResourceMissing(f"Electrode configuration file '{path.name}' is missing!")
        try:
            text = path.read_text(encoding="latin-1")
        except OSError as e:
            raise ResourceMissing(f"Could not read electrode configuration file: {e}") from e
        logger.debug("Loaded electrode table {}", path)
        return cls(text.splitlines(), str(path))

    def lookup(self, index: int) -> Electrode:
        index = int(index)
        if index in self._parsed:
            return self._parsed[index]
        try:
            fields = _FIELD_SEP.split(self._lines[index])
            electrode = Electrode(
                index=index,
                xpos=int(fields[0]),
                ypos=int(fields[1]),
                x=int(fields[3]),
                y=int(fields[4]),
                label=ord(fields[5][0]) & 0xFF,
            )
        except (IndexError, ValueError):
            raise ResourceMissing(
                f"No valid position for electrode {index} in {self.path}"
            ) from None
        self._parsed[index] = electrode
        return electrode

    def build_configuration(self, indices: np.ndarray) -> Configuration:
        """Configuration for the connected channels, in channel order."""
        config = Configuration()
        for index in indices:
            if index >= 0:
                config.append(self.lookup(index))
        return config


@functools.lru_cache(maxsize=8)
def load_electrode_table(path: str) -> ElectrodeTable:
    """Cached `ElectrodeTable.from_file`; failures are not cached."""
    return ElectrodeTable.from_file(Path(path).expanduser())
