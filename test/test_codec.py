#  -*- coding: utf-8 -*-
"""
Test suite for the wire codec and the position-tracking stream.

Tests cover:
- PickleStream: position counting, refused operations
- 15-bit varint: boundary encodings, fifth unit overflow
- Compact integers, strings and blobs
- Fixed-width scalars
- Truncated input
"""

from __future__ import annotations

import io

import numpy as np
import pytest

from enredo.codec import Kind, PickleReader, PickleWriter, INT64_MIN, INT64_MAX
from enredo.errors import FormatError, NotSupportedError
from enredo.stream import PickleStream


# ========== ========== ========== ========== Fixtures
@pytest.fixture
def buffer() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture
def writer(buffer: io.BytesIO) -> PickleWriter:
    return PickleWriter(PickleStream(buffer))


def reader_of(data: bytes) -> PickleReader:
    return PickleReader(PickleStream(io.BytesIO(data)))


# ========== ========== ========== ========== PickleStream
class TestPickleStream:

    def test_position_counts_written_bytes(self, buffer: io.BytesIO) -> None:
        stream = PickleStream(buffer)

        stream.write(b'abc')
        stream.write(b'de')

        assert stream.position == 5
        assert stream.tell() == 5
        assert buffer.getvalue() == b'abcde'

    def test_position_counts_read_bytes(self) -> None:
        stream = PickleStream(io.BytesIO(b'0123456789'))

        assert stream.read(4) == b'0123'
        assert stream.read(3) == b'456'
        assert stream.position == 7

    def test_position_starts_at_zero_mid_stream(self) -> None:
        # the wrapper counts from where it was created
        source = io.BytesIO(b'xxhello')
        source.read(2)

        stream = PickleStream(source)
        stream.read(5)

        assert stream.position == 5

    def test_reads_from_source_without_readinto(self) -> None:

        class Source:
            def __init__(self):
                self.data = io.BytesIO(b'payload')

            def read(self, size):
                return self.data.read(size)

            def readable(self):
                return True

        stream = PickleStream(Source())

        assert stream.read(3) == b'pay'
        assert stream.position == 3

    @pytest.mark.parametrize('operation', [
        lambda stream: stream.seek(0),
        lambda stream: stream.truncate(0),
        lambda stream: len(stream),
        lambda stream: stream.length,
    ])
    def test_refuses_random_access(self, buffer: io.BytesIO, operation) -> None:
        stream = PickleStream(buffer)

        with pytest.raises(NotSupportedError):
            operation(stream)

    def test_not_seekable(self, buffer: io.BytesIO) -> None:
        assert not PickleStream(buffer).seekable()

    def test_not_supported_is_unsupported_operation(self) -> None:
        assert issubclass(NotSupportedError, io.UnsupportedOperation)


# ========== ========== ========== ========== varint
class TestVarint:

    @pytest.mark.parametrize('value, encoded', [
        (0, b'\x00\x00'),
        (1, b'\x01\x00'),
        (0x7FFF, b'\xff\x7f'),
        (0x8000, b'\x00\x80\x01\x00'),
        (-1, b'\xff\xff' * 4 + b'\x0f\x00'),
    ])
    def test_encoding(self, writer: PickleWriter, buffer: io.BytesIO, value: int, encoded: bytes) -> None:
        writer.write_varint(value)
        assert buffer.getvalue() == encoded

    @pytest.mark.parametrize('value', [0, 1, 0x7FFF, 0x8000, 0x3FFF_FFFF, 1 << 45, INT64_MAX, INT64_MIN, -1, -12345])
    def test_reads_back(self, writer: PickleWriter, buffer: io.BytesIO, value: int) -> None:
        writer.write_varint(value)
        assert reader_of(buffer.getvalue()).read_varint() == value

    def test_fifth_unit_overflow(self) -> None:
        # the fifth unit may only carry the four remaining bits
        data = b'\xff\xff' * 4 + b'\x10\x00'

        with pytest.raises(FormatError, match='15 bit encoded Int64'):
            reader_of(data).read_varint()

    def test_rejects_out_of_range(self, writer: PickleWriter) -> None:
        with pytest.raises(FormatError):
            writer.write_varint(INT64_MAX + 1)


# ========== ========== ========== ========== compact integers and strings
class TestCompactInt:

    @pytest.mark.parametrize('value, encoded', [
        (0, b'\x00'),
        (127, b'\x7f'),
        (128, b'\x80\x01'),
        (300, b'\xac\x02'),
    ])
    def test_encoding(self, writer: PickleWriter, buffer: io.BytesIO, value: int, encoded: bytes) -> None:
        writer.write_compact_int(value)
        assert buffer.getvalue() == encoded

    def test_negative_one_reads_back(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_compact_int(-1)

        assert len(buffer.getvalue()) == 5
        assert reader_of(buffer.getvalue()).read_compact_int() == -1

    def test_fifth_byte_overflow(self) -> None:
        with pytest.raises(FormatError):
            reader_of(b'\xff\xff\xff\xff\x7f').read_compact_int()


class TestStrings:

    def test_null_string(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_nullable_string(None)
        assert reader_of(buffer.getvalue()).read_nullable_string() is None

    def test_length_is_utf8_byte_count(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_string('ação')

        data = buffer.getvalue()

        assert data[0] == len('ação'.encode('utf-8'))
        assert reader_of(data).read_string() == 'ação'

    def test_lone_surrogate_survives(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_string('\ud800')
        assert reader_of(buffer.getvalue()).read_string() == '\ud800'

    def test_required_string_rejects_null(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_nullable_string(None)

        with pytest.raises(FormatError):
            reader_of(buffer.getvalue()).read_string()

    def test_invalid_utf8(self) -> None:
        with pytest.raises(FormatError):
            reader_of(b'\x02\xc3\x28').read_string()

    def test_invalid_negative_length(self) -> None:
        # -2 as a compact int
        with pytest.raises(FormatError):
            reader_of(b'\xfe\xff\xff\xff\x0f').read_nullable_string()


# ========== ========== ========== ========== fixed width values
class TestFixedWidth:

    def test_int64_is_little_endian(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_int64(1)
        assert buffer.getvalue() == b'\x01' + b'\x00' * 7

    def test_int64_range(self, writer: PickleWriter) -> None:
        with pytest.raises(FormatError):
            writer.write_int64(INT64_MAX + 1)

    def test_bigint(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        value = -(1 << 200) + 17
        writer.write_bigint(value)
        assert reader_of(buffer.getvalue()).read_bigint() == value

    def test_complex(self, writer: PickleWriter, buffer: io.BytesIO) -> None:
        writer.write_complex128(1.5 - 2j)
        assert reader_of(buffer.getvalue()).read_complex128() == 1.5 - 2j

    @pytest.mark.parametrize('kind, value', [
        (Kind.INT8, -3),
        (Kind.UINT16, 65535),
        (Kind.FLOAT32, 0.5),
        (Kind.COMPLEX64, 1 + 1j),
        (Kind.BOOL, True),
    ])
    def test_scalars(self, writer: PickleWriter, buffer: io.BytesIO, kind: Kind, value) -> None:
        writer.write_scalar(kind, value)

        data = buffer.getvalue()
        result = reader_of(data).read_scalar(kind)

        assert len(data) == kind.size
        assert result == value
        assert result.dtype == kind.native

    def test_invalid_bool(self) -> None:
        with pytest.raises(FormatError):
            reader_of(b'\x02').read_bool()

    def test_kind_from_dtype(self) -> None:
        assert Kind.from_dtype(np.dtype('>i4')) is Kind.INT32
        assert Kind.from_dtype(np.dtype('float64')) is Kind.FLOAT64
        assert Kind.from_dtype(np.dtype('U3')) is None


# ========== ========== ========== ========== truncation
class TestTruncation:

    def test_short_read(self) -> None:
        with pytest.raises(FormatError, match='Unexpected end of stream'):
            reader_of(b'\x01\x02').read_int64()

    def test_blob_longer_than_stream(self) -> None:
        with pytest.raises(FormatError):
            reader_of(b'\x05ab').read_blob()
