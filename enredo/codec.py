#  -*- coding: utf-8 -*-
"""
Wire codec for the pickle format.

The codec encodes and decodes the scalar building blocks of a stream:

- fixed-width little-endian scalars (``struct`` for Python numbers, numpy
  for the boxed fixed-width kinds),
- the 15-bit chunked variable-length integer used for memo offsets,
- the 7-bit compact integer used for lengths and counts,
- length-prefixed nullable UTF-8 strings.

Readers never consume past a declared length. Every inconsistency raises
``FormatError``; nothing is silently truncated.

15-bit varint
-------------
A signed 64-bit value is reinterpreted as unsigned and cut into 15-bit
groups, least significant first. Each group travels in a little-endian
16-bit unit whose top bit flags that another unit follows. Four groups
cover 60 bits, so a fifth unit may carry at most the remaining four bits::

    0x0000_7FFF  ->  FF 7F
    0x0000_8000  ->  00 80 01 00
    -1           ->  FF FF FF FF FF FF FF FF 0F 00
"""

from __future__ import annotations

import enum
import struct

import numpy

from .errors import FormatError
from .stream import PickleStream


_INT64 = struct.Struct('<q')
_UINT16 = struct.Struct('<H')
_FLOAT64 = struct.Struct('<d')
_COMPLEX128 = struct.Struct('<dd')

# large declared lengths are read incrementally, never allocated up front
_CHUNK_SIZE = 1 << 20

INT64_MIN: int = -(1 << 63)
INT64_MAX: int = (1 << 63) - 1
INT32_MIN: int = -(1 << 31)
INT32_MAX: int = (1 << 31) - 1


class Kind(enum.IntEnum):
    """Fixed-width scalar kinds, all encoded little-endian."""

    BOOL = 1
    INT8 = 2
    UINT8 = 3
    INT16 = 4
    UINT16 = 5
    INT32 = 6
    UINT32 = 7
    INT64 = 8
    UINT64 = 9
    FLOAT16 = 10
    FLOAT32 = 11
    FLOAT64 = 12
    COMPLEX64 = 13
    COMPLEX128 = 14

    @property
    def dtype(self) -> numpy.dtype:
        """Little-endian numpy dtype of the kind."""
        return numpy.dtype(_WIRE_DTYPES[self])

    @property
    def native(self) -> numpy.dtype:
        """Native byte order numpy dtype of the kind."""
        return self.dtype.newbyteorder('=')

    @property
    def size(self) -> int:
        return self.dtype.itemsize

    @classmethod
    def from_dtype(cls, dtype: numpy.dtype) -> Kind | None:
        """Return the kind matching ``dtype``, or None if there is none."""
        dtype = numpy.dtype(dtype)
        return _KINDS_BY_LAYOUT.get((dtype.kind, dtype.itemsize))


_WIRE_DTYPES = {
    Kind.BOOL: '?',
    Kind.INT8: 'i1',
    Kind.UINT8: 'u1',
    Kind.INT16: '<i2',
    Kind.UINT16: '<u2',
    Kind.INT32: '<i4',
    Kind.UINT32: '<u4',
    Kind.INT64: '<i8',
    Kind.UINT64: '<u8',
    Kind.FLOAT16: '<f2',
    Kind.FLOAT32: '<f4',
    Kind.FLOAT64: '<f8',
    Kind.COMPLEX64: '<c8',
    Kind.COMPLEX128: '<c16',
}

_KINDS_BY_LAYOUT = {(numpy.dtype(code).kind, numpy.dtype(code).itemsize): kind
                    for kind, code in _WIRE_DTYPES.items()}


# ========== ========== ========== ========== ========== ==========
class PickleWriter:
    """
    Binary writer over a ``PickleStream``.

    Parameters
    ----------
    stream : PickleStream
        Position-tracking sink.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, stream: PickleStream) -> None:
        self.stream: PickleStream = stream

    # ========== ========== ========== ========== ========== public methods
    def write_bytes(self, data: bytes) -> None:
        self.stream.write(data)

    def write_uint8(self, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise FormatError(f"Value {value} does not fit in one byte")

        self.stream.write(bytes((value,)))

    def write_bool(self, value: bool) -> None:
        self.write_uint8(1 if value else 0)

    def write_uint16(self, value: int) -> None:
        self.stream.write(_UINT16.pack(value))

    def write_int64(self, value: int) -> None:
        if not INT64_MIN <= value <= INT64_MAX:
            raise FormatError(f"Value {value} does not fit in a signed 64-bit integer")

        self.stream.write(_INT64.pack(value))

    def write_float64(self, value: float) -> None:
        self.stream.write(_FLOAT64.pack(value))

    def write_complex128(self, value: complex) -> None:
        self.stream.write(_COMPLEX128.pack(value.real, value.imag))

    def write_bigint(self, value: int) -> None:
        """Write an arbitrary precision integer as signed little-endian bytes."""
        size = (value.bit_length() + 8) // 8
        self.write_blob(value.to_bytes(size, 'little', signed=True))

    def write_scalar(self, kind: Kind, value) -> None:
        """Write a fixed-width scalar of the given kind."""
        self.stream.write(numpy.asarray(value, dtype=kind.dtype).tobytes())

    def write_varint(self, value: int) -> None:
        """Write a signed 64-bit integer in 15-bit chunked form."""
        if not INT64_MIN <= value <= INT64_MAX:
            raise FormatError(f"Value {value} does not fit in a signed 64-bit integer")

        value &= 0xFFFF_FFFF_FFFF_FFFF

        while value > 0x7FFF:
            self.write_uint16((value & 0x7FFF) | 0x8000)
            value >>= 15

        self.write_uint16(value)

    def write_compact_int(self, value: int) -> None:
        """Write a signed 32-bit integer in 7-bit compact form."""
        if not INT32_MIN <= value <= INT32_MAX:
            raise FormatError(f"Value {value} does not fit in a signed 32-bit integer")

        value &= 0xFFFF_FFFF
        out = bytearray()

        while value >= 0x80:
            out.append((value & 0x7F) | 0x80)
            value >>= 7

        out.append(value)
        self.stream.write(bytes(out))

    def write_blob(self, data: bytes) -> None:
        self.write_compact_int(len(data))
        self.stream.write(data)

    def write_nullable_string(self, value: str | None) -> None:
        """Write a length-prefixed UTF-8 string, ``-1`` standing for None."""
        if value is None:
            self.write_compact_int(-1)
            return

        self.write_blob(value.encode('utf-8', 'surrogatepass'))

    def write_string(self, value: str) -> None:
        if value is None:
            raise FormatError("Expected a string, got None")

        self.write_nullable_string(value)

    def flush(self) -> None:
        self.stream.flush()

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def position(self) -> int:
        return self.stream.position


# ========== ========== ========== ========== ========== ==========
class PickleReader:
    """
    Binary reader over a ``PickleStream``; the mirror of ``PickleWriter``.

    Parameters
    ----------
    stream : PickleStream
        Position-tracking source.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, stream: PickleStream) -> None:
        self.stream: PickleStream = stream

    # ========== ========== ========== ========== ========== public methods
    def read_exact(self, count: int) -> bytes:
        """
        Read exactly ``count`` bytes.

        Raises
        ------
        FormatError
            If the stream ends first.
        """
        if count < 0:
            raise FormatError(f"Invalid read length {count}")

        chunks = []
        remaining = count

        while remaining:
            chunk = self.stream.read(min(remaining, _CHUNK_SIZE))

            if not chunk:
                error = f"Unexpected end of stream at position {self.position}, " \
                        f"{remaining} of {count} bytes missing"
                raise FormatError(error)

            chunks.append(chunk)
            remaining -= len(chunk)

        return b''.join(chunks)

    def read_uint8(self) -> int:
        return self.read_exact(1)[0]

    def read_bool(self) -> bool:
        value = self.read_uint8()

        if value > 1:
            raise FormatError(f"Invalid boolean byte {value:#x}")

        return value == 1

    def read_uint16(self) -> int:
        return _UINT16.unpack(self.read_exact(2))[0]

    def read_int64(self) -> int:
        return _INT64.unpack(self.read_exact(8))[0]

    def read_float64(self) -> float:
        return _FLOAT64.unpack(self.read_exact(8))[0]

    def read_complex128(self) -> complex:
        real, imag = _COMPLEX128.unpack(self.read_exact(16))
        return complex(real, imag)

    def read_bigint(self) -> int:
        return int.from_bytes(self.read_blob(), 'little', signed=True)

    def read_scalar(self, kind: Kind):
        data = self.read_exact(kind.size)
        return numpy.frombuffer(data, dtype=kind.dtype).astype(kind.native)[0]

    def read_varint(self) -> int:
        """
        Read a 15-bit chunked integer.

        Raises
        ------
        FormatError
            If a fifth unit carries more than the four remaining bits.
        """
        result = 0

        for shift in (0, 15, 30, 45):
            unit = self.read_uint16()
            result |= (unit & 0x7FFF) << shift

            if unit <= 0x7FFF:
                return _to_signed(result, 64)

        unit = self.read_uint16()

        if unit > 0b1111:
            raise FormatError("Too many bytes in what should have been a 15 bit encoded Int64")

        result |= unit << 60
        return _to_signed(result, 64)

    def read_compact_int(self) -> int:
        result = 0

        for shift in (0, 7, 14, 21):
            byte = self.read_uint8()
            result |= (byte & 0x7F) << shift

            if byte <= 0x7F:
                return _to_signed(result, 32)

        byte = self.read_uint8()

        if byte > 0b1111:
            raise FormatError("Too many bytes in what should have been a 7 bit encoded Int32")

        result |= byte << 28
        return _to_signed(result, 32)

    def read_blob(self) -> bytes:
        size = self.read_compact_int()

        if size < 0:
            raise FormatError(f"Invalid blob length {size}")

        return self.read_exact(size)

    def read_nullable_string(self) -> str | None:
        size = self.read_compact_int()

        if size == -1:
            return None

        if size < -1:
            raise FormatError(f"Invalid string length {size}")

        data = self.read_exact(size)

        try:
            return data.decode('utf-8', 'surrogatepass')
        except UnicodeDecodeError as exc:
            raise FormatError(f"Invalid UTF-8 string payload: {exc}") from exc

    def read_string(self) -> str:
        value = self.read_nullable_string()

        if value is None:
            raise FormatError(f"Unexpected null string at position {self.position}")

        return value

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def position(self) -> int:
        return self.stream.position


def _to_signed(value: int, bits: int) -> int:
    if value >= 1 << (bits - 1):
        value -= 1 << bits

    return value


__all__ = [
    'Kind',
    'PickleWriter',
    'PickleReader',
]
