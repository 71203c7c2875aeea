"""Binary wire layouts for named source parameters.

Each parameter name maps to exactly one `ValueKind`; the layout is chosen from
that mapping, never from the runtime value. All numbers are little-endian.

    TEXT           raw UTF-8, no length prefix, no terminator
    UINT           u32
    FLOAT          f32
    BOOL           1 byte
    FLOAT_VECTOR   u32 count, then count x f64
    CONFIGURATION  u32 count, then count x electrode record (see below)
    BYTES          raw bytes

Electrode record (17 bytes): index u32, xpos u32, ypos u32, x u16, y u16,
label u8.

Encoding a name with no registered kind gives `b""`. That is "no wire
representation", distinct from a valid zero-length text value.
"""

from __future__ import annotations

import enum
import numbers
import struct
from typing import Any

import numpy as np

from .electrode import Configuration, Electrode
from .errors import CodecError, ValidationError

UINT_MAX = 0xFFFFFFFF
UINT_UNSET = UINT_MAX  # encoding of an unset uint parameter (e.g. no plug)

_UINT = struct.Struct("<I")
_FLOAT = struct.Struct("<f")
_BOOL = struct.Struct("<?")
_DOUBLE = struct.Struct("<d")
_ELECTRODE = struct.Struct("<IIIHHB")


class ValueKind(enum.Enum):
    TEXT = "text"
    UINT = "uint"
    FLOAT = "float"
    BOOL = "bool"
    FLOAT_VECTOR = "float_vector"
    CONFIGURATION = "configuration"
    BYTES = "bytes"


PARAMETER_KINDS: dict[str, ValueKind] = {
    "trigger": ValueKind.TEXT,
    "connect-time": ValueKind.TEXT,
    "start-time": ValueKind.TEXT,
    "state": ValueKind.TEXT,
    "source-type": ValueKind.TEXT,
    "device-type": ValueKind.TEXT,
    "location": ValueKind.TEXT,
    "configuration-file": ValueKind.TEXT,
    "nchannels": ValueKind.UINT,
    "analog-output-size": ValueKind.UINT,
    "plug": ValueKind.UINT,
    "chip-id": ValueKind.UINT,
    "read-interval": ValueKind.UINT,
    "gain": ValueKind.FLOAT,
    "adc-range": ValueKind.FLOAT,
    "sample-rate": ValueKind.FLOAT,
    "has-analog-output": ValueKind.BOOL,
    "analog-output": ValueKind.FLOAT_VECTOR,
    "configuration": ValueKind.CONFIGURATION,
}


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))


class WireCodec:
    """Encode/decode parameter values using a name -> kind table.

    Parameters
    ----------
    kinds : dict[str, ValueKind], optional
        Starting table, by default a copy of `PARAMETER_KINDS`.
    """

    def __init__(self, kinds: dict[str, ValueKind] | None = None):
        self.kinds = dict(PARAMETER_KINDS if kinds is None else kinds)

    def register_parameter(self, name: str, kind: ValueKind) -> None:
        if name in self.kinds and self.kinds[name] is not kind:
            raise CodecError(
                f"Parameter '{name}' is already registered as {self.kinds[name].value}."
            )
        self.kinds[name] = kind

    def kind_of(self, name: str) -> ValueKind | None:
        return self.kinds.get(name)

    # ------------------------------------------------------------------ encode

    def encode(self, name: str, value: Any) -> bytes:
        kind = self.kinds.get(name)
        if kind is None:
            return b""
        try:
            return _ENCODERS[kind](value)
        except CodecError as e:
            raise CodecError(f"Cannot encode '{name}': {e}") from None
        except (struct.error, TypeError, ValueError, UnicodeError) as e:
            raise CodecError(f"Cannot encode '{name}' as {kind.value}: {e}") from e

    # ------------------------------------------------------------------ decode

    def decode(self, name: str, data: bytes) -> Any:
        kind = self.kinds.get(name)
        if kind is None:
            raise CodecError(f"No wire representation for parameter '{name}'.")
        data = bytes(data)
        try:
            return _DECODERS[kind](data)
        except CodecError as e:
            raise CodecError(f"Cannot decode '{name}': {e}") from None
        except (struct.error, UnicodeError, ValueError, ValidationError) as e:
            raise CodecError(f"Cannot decode '{name}' as {kind.value}: {e}") from e


# ============================================================================


def _encode_text(value) -> bytes:
    if not isinstance(value, str):
        raise CodecError(f"expected text, got {type(value).__name__}")
    return value.encode("utf-8")


def _encode_uint(value) -> bytes:
    if value is None:
        return _UINT.pack(UINT_UNSET)
    if not isinstance(value, (numbers.Integral,)) or isinstance(
        value, (bool, np.bool_)
    ):
        raise CodecError(f"expected unsigned integer, got {type(value).__name__}")
    if not 0 <= int(value) <= UINT_MAX:
        raise CodecError(f"{value} outside the u32 range")
    return _UINT.pack(int(value))


def _encode_float(value) -> bytes:
    if not _is_number(value):
        raise CodecError(f"expected float, got {type(value).__name__}")
    return _FLOAT.pack(float(value))


def _encode_bool(value) -> bytes:
    if not isinstance(value, (bool, np.bool_)):
        raise CodecError(f"expected bool, got {type(value).__name__}")
    return _BOOL.pack(bool(value))


def _encode_float_vector(value) -> bytes:
    if isinstance(value, (str, bytes)) or not hasattr(value, "__len__"):
        raise CodecError(f"expected float vector, got {type(value).__name__}")
    values = list(np.asarray(value).ravel()) if isinstance(value, np.ndarray) else value
    if not all(_is_number(v) for v in values):
        raise CodecError("float vector contains non-numeric elements")
    return _UINT.pack(len(values)) + b"".join(_DOUBLE.pack(float(v)) for v in values)


def _encode_configuration(value) -> bytes:
    if not isinstance(value, Configuration):
        raise CodecError(f"expected Configuration, got {type(value).__name__}")
    records = [
        _ELECTRODE.pack(el.index, el.xpos, el.ypos, el.x, el.y, el.label)
        for el in value
    ]
    return _UINT.pack(len(records)) + b"".join(records)


def _encode_bytes(value) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise CodecError(f"expected bytes, got {type(value).__name__}")
    return bytes(value)


def _expect(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise CodecError(f"{what} needs {size} bytes, got {len(data)}")
    if len(data) > size:
        raise CodecError(f"{what} expected {size} bytes, got {len(data)} (trailing data)")


def _decode_uint(data: bytes) -> int:
    _expect(data, _UINT.size, "uint")
    return _UINT.unpack(data)[0]


def _decode_float(data: bytes) -> float:
    _expect(data, _FLOAT.size, "float")
    return _FLOAT.unpack(data)[0]


def _decode_bool(data: bytes) -> bool:
    _expect(data, _BOOL.size, "bool")
    return _BOOL.unpack(data)[0]


def _decode_float_vector(data: bytes) -> np.ndarray:
    if len(data) < _UINT.size:
        raise CodecError(f"float vector needs at least {_UINT.size} bytes")
    (count,) = _UINT.unpack_from(data)
    _expect(data, _UINT.size + count * _DOUBLE.size, f"float vector of {count}")
    return np.frombuffer(data, dtype="<f8", count=count, offset=_UINT.size).astype(
        np.float64
    )


def _decode_configuration(data: bytes) -> Configuration:
    if len(data) < _UINT.size:
        raise CodecError(f"configuration needs at least {_UINT.size} bytes")
    (count,) = _UINT.unpack_from(data)
    _expect(data, _UINT.size + count * _ELECTRODE.size, f"configuration of {count}")
    config = Configuration()
    for index, xpos, ypos, x, y, label in _ELECTRODE.iter_unpack(data[_UINT.size :]):
        config.append(Electrode(index, xpos, ypos, x, y, label))
    return config


_ENCODERS = {
    ValueKind.TEXT: _encode_text,
    ValueKind.UINT: _encode_uint,
    ValueKind.FLOAT: _encode_float,
    ValueKind.BOOL: _encode_bool,
    ValueKind.FLOAT_VECTOR: _encode_float_vector,
    ValueKind.CONFIGURATION: _encode_configuration,
    ValueKind.BYTES: _encode_bytes,
}

_DECODERS = {
    ValueKind.TEXT: lambda data: data.decode("utf-8"),
    ValueKind.UINT: _decode_uint,
    ValueKind.FLOAT: _decode_float,
    ValueKind.BOOL: _decode_bool,
    ValueKind.FLOAT_VECTOR: _decode_float_vector,
    ValueKind.CONFIGURATION: _decode_configuration,
    ValueKind.BYTES: bytes,
}

WIRE_CODEC = WireCodec()


def encode_value(name: str, value: Any) -> bytes:
    """Encode with the default parameter table."""
    return WIRE_CODEC.encode(name, value)


def decode_value(name: str, data: bytes) -> Any:
    """Decode with the default parameter table."""
    return WIRE_CODEC.decode(name, data)
