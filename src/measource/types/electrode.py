"""Electrodes and ordered electrode configurations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from .errors import ValidationError


@dataclass(frozen=True, eq=False)
class Electrode:
    """One recording site on the array.

    Two electrodes are the same electrode when their `index` matches, whatever
    their position or label.

    Attributes
    ----------
    index : int
        Electrode index on the array (u32).
    xpos, ypos : int
        Position in microns (u32 each).
    x, y : int
        Position as a grid index (u16 each).
    label : int
        Wiring label (u8).
    """

    index: int
    xpos: int = 0
    ypos: int = 0
    x: int = 0
    y: int = 0
    label: int = 0

    def __eq__(self, other):
        if not isinstance(other, Electrode):
            return NotImplemented
        return self.index == other.index

    def __hash__(self):
        return hash(self.index)

    def to_json(self) -> list[int]:
        return [self.index, self.xpos, self.x, self.ypos, self.y, self.label]

    @classmethod
    def from_json(cls, values: Sequence[int]) -> Electrode:
        index, xpos, x, ypos, y, label = (int(v) for v in values)
        return cls(index=index, xpos=xpos, ypos=ypos, x=x, y=y, label=label)


class Configuration:
    """Ordered, duplicate-free sequence of electrodes.

    Order is physical channel order as reported by the device.
    """

    def __init__(self, electrodes: Iterable[Electrode] = ()):
        self._electrodes: list[Electrode] = []
        self._indices: set[int] = set()
        for el in electrodes:
            self.append(el)

    def append(self, electrode: Electrode) -> None:
        if electrode.index in self._indices:
            raise ValidationError(
                f"Electrode {electrode.index} is already in the configuration."
            )
        self._electrodes.append(electrode)
        self._indices.add(electrode.index)

    def clear(self) -> None:
        self._electrodes.clear()
        self._indices.clear()

    @property
    def indices(self) -> list[int]:
        return [el.index for el in self._electrodes]

    def __contains__(self, item) -> bool:
        if isinstance(item, Electrode):
            return item.index in self._indices
        return item in self._indices

    def __iter__(self) -> Iterator[Electrode]:
        return iter(self._electrodes)

    def __len__(self) -> int:
        return len(self._electrodes)

    def __getitem__(self, i: int) -> Electrode:
        return self._electrodes[i]

    def __eq__(self, other):
        if not isinstance(other, Configuration):
            return NotImplemented
        return [el.to_json() for el in self] == [el.to_json() for el in other]

    def __repr__(self):
        return f"Configuration(n={len(self)}, indices={self.indices})"

    def to_json(self) -> list[list[int]]:
        return [el.to_json() for el in self._electrodes]

    @classmethod
    def from_json(cls, values: Iterable[Sequence[int]]) -> Configuration:
        return cls(Electrode.from_json(v) for v in values)
