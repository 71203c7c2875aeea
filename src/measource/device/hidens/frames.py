"""Decoding of HiDens replies and raw sample frames."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from measource.types import ProtocolError


def verify_reply(reply: str | None) -> bool:
    """A reply is good if it exists and is not an error line."""
    return reply is not None and not reply.startswith("Error")


def parse_channel_report(lines: Sequence[str], total_channels: int) -> np.ndarray:
    """Electrode index per hardware channel, -1 where nothing is connected.

    Line `i` of the `ch` reply describes channel `i`. Blank lines (after
    trimming trailing padding) and missing trailing lines are unconnected.
    """
    indices = np.full(total_channels, -1, dtype=np.int64)
    for channel, line in enumerate(lines[:total_channels]):
        entry = line.rstrip()
        if not entry:
            continue
        try:
            index = int(entry)
        except ValueError:
            raise ProtocolError(
                f"Bad channel report entry for channel {channel}: {line!r}"
            ) from None
        if index < 0:
            raise ProtocolError(f"Negative electrode index for channel {channel}: {index}")
        indices[channel] = index
    return indices


def channel_rows(indices: np.ndarray, aux_row: int) -> np.ndarray:
    """Byte positions kept from each raw sample: connected channels, then aux."""
    connected = np.flatnonzero(np.asarray(indices) >= 0)
    return np.append(connected, aux_row).astype(np.intp)


def decode_frames(
    buffer: bytes,
    frame_bytes: int,
    rows: np.ndarray,
    aux_row: int,
    aux_bit: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Raw bytes to `(samples, aux)`.

    The buffer is a run of samples of `frame_bytes` bytes each, one byte per
    hardware channel. `samples` has shape (channels, nsamples) as int16 and
    carries the inverted sign of the raw bytes. `aux` holds 255 where
    `aux_bit` is set in the aux byte, else 0.
    """
    raw = np.frombuffer(buffer, dtype=np.uint8)
    if raw.size % frame_bytes:
        raise ProtocolError(
            f"Frame buffer of {raw.size} bytes is not a whole number of "
            f"{frame_bytes}-byte samples."
        )
    block = raw.reshape(-1, frame_bytes)
    electrode_rows = rows[rows != aux_row]
    samples = -block[:, electrode_rows].T.astype(np.int16)
    aux = np.where(block[:, aux_row] & aux_bit, 255, 0).astype(np.int16)
    return np.ascontiguousarray(samples), aux
