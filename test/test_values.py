#  -*- coding: utf-8 -*-
"""
Test suite for value shapes: primitives, arrays, collections and cycles.

Tests cover:
- Primitives, numpy scalars and their identity
- Arrays of every element flavour, bounded arrays, empty dimensions
- Collections and tuples, shared references
- Cycles, including the ones that cannot be represented
- Corrupt and truncated streams
- Deterministic output
"""

from __future__ import annotations

import io
import math
import threading

import numpy as np
import pytest

import enredo

from enredo import BoundedArray, Pickler
from enredo.codec import Kind, PickleWriter
from enredo.descriptors import MAGIC, ELEMENT_DTYPE, ELEMENT_OBJECT, Op
from enredo.errors import DanglingReferenceError, FormatError, UnsupportedTypeError
from enredo.stream import PickleStream


HEADER_SIZE = len(MAGIC) + 3


def encode(write) -> bytes:
    """Bytes produced by ``write(writer)`` on a fresh writer."""
    buffer = io.BytesIO()
    write(PickleWriter(PickleStream(buffer)))
    return buffer.getvalue()


# ========== ========== ========== ========== Fixtures
@pytest.fixture
def header() -> bytes:
    return enredo.dumps(None)[:-1]


# ========== ========== ========== ========== primitives
class TestPrimitives:

    @pytest.mark.parametrize('value', [
        None, True, False, 0, -1, 2 ** 62, -(2 ** 63), 2 ** 100, -(2 ** 90),
        1.5, -0.0, float('inf'), 1 + 2j, '', 'text', 'ação', b'', b'\x00\xff',
    ])
    def test_roundtrip(self, roundtrip, value) -> None:
        result = roundtrip(value)

        assert result == value
        assert type(result) is type(value)

    def test_nan(self, roundtrip) -> None:
        assert math.isnan(roundtrip(float('nan')))

    def test_bytearray_is_mutable_copy(self, roundtrip) -> None:
        value = bytearray(b'abc')
        result = roundtrip(value)

        assert result == value
        assert isinstance(result, bytearray)

    def test_null_is_single_byte(self) -> None:
        assert len(enredo.dumps(None)) == HEADER_SIZE + 1

    def test_header(self) -> None:
        assert enredo.dumps(0)[:len(MAGIC)] == MAGIC

    @pytest.mark.parametrize('value', [
        np.int8(-5), np.uint32(7), np.int64(2 ** 40), np.float16(0.5),
        np.float32(1.25), np.float64(2.5), np.complex64(1 - 1j), np.bool_(True),
    ])
    def test_numpy_scalars(self, roundtrip, value) -> None:
        result = roundtrip(value)

        assert result == value
        assert result.dtype == value.dtype

    def test_boxed_values_are_shared(self, roundtrip) -> None:
        blob = bytearray(b'shared')
        text = ''.join(['sha', 'red'])

        result = roundtrip([blob, blob, text, text])

        assert result[0] is result[1]
        assert result[2] is result[3]

    @pytest.mark.parametrize('make', [
        lambda: int('1000000000000'),
        lambda: int('1' * 30),
        lambda: float('2.5'),
        lambda: complex('1+2j'),
    ])
    def test_shared_numbers(self, roundtrip, make) -> None:
        value = make()
        first, second = roundtrip([value, value])

        assert first == value
        assert first is second

    @pytest.mark.parametrize('make', [
        lambda: ''.join(['ab', 'cd']),
        lambda: np.float64(1.5),
        lambda: int('1000000000000'),
        lambda: float('2.5'),
    ])
    def test_equal_values_boxed_apart_stay_apart(self, roundtrip, make) -> None:
        first, second = make(), make()
        assert first is not second

        result = roundtrip([first, second])

        assert result[0] == result[1]
        assert result[0] is not result[1]

    def test_repeated_number_is_back_reference(self) -> None:
        # the second occurrence is a tag and a two byte offset, not 9 bytes
        value = 10 ** 12
        data = enredo.dumps([value, value])

        assert len(data) == HEADER_SIZE + 2 + 9 + 3

    def test_booleans_are_written_inline(self) -> None:
        data = enredo.dumps([True, True])
        assert len(data) == HEADER_SIZE + 2 + 2 * 2

    def test_builtin_singletons(self, roundtrip) -> None:
        assert roundtrip(Ellipsis) is Ellipsis
        assert roundtrip(NotImplemented) is NotImplemented
        assert roundtrip(type(None)) is type(None)

    def test_builtin_references(self, roundtrip) -> None:
        assert roundtrip(len) is len
        assert roundtrip(int) is int
        assert roundtrip(math) is math


# ========== ========== ========== ========== arrays
class TestArrays:

    @pytest.mark.parametrize('array', [
        np.arange(12, dtype=np.int32).reshape(3, 4),
        np.arange(24, dtype=np.float64).reshape(2, 3, 4),
        np.array([True, False]),
        np.array([1 + 1j, 2 - 2j], dtype=np.complex64),
        np.zeros((2, 0)),
        np.array(3.5),
        np.array(['ab', 'c']),
        np.array(['2024-01-01', '2024-06-30'], dtype='datetime64[D]'),
    ])
    def test_roundtrip(self, roundtrip, array) -> None:
        result = roundtrip(array)

        assert isinstance(result, np.ndarray)
        assert result.shape == array.shape
        assert result.dtype == array.dtype
        assert np.array_equal(result, array)

    def test_big_endian_is_read_native(self, roundtrip) -> None:
        array = np.arange(5, dtype='>i4')
        result = roundtrip(array)

        assert np.array_equal(result, array)
        assert result.dtype == np.dtype('=i4')

    def test_non_contiguous_view(self, roundtrip) -> None:
        array = np.arange(20).reshape(4, 5)[::2, 1::2]
        assert np.array_equal(roundtrip(array), array)

    def test_result_is_writeable(self, roundtrip) -> None:
        result = roundtrip(np.arange(3))
        result[0] = 10

        assert result[0] == 10

    def test_object_array(self, roundtrip) -> None:
        array = np.empty((2, 2), dtype=object)
        array[0, 0] = 'a'
        array[0, 1] = [1, 2]
        array[1, 0] = None
        array[1, 1] = {'k': 3.5}

        result = roundtrip(array)

        assert result.dtype == object
        assert result.shape == (2, 2)
        assert result[0, 1] == [1, 2]
        assert result[1, 1] == {'k': 3.5}

    def test_empty_object_array(self, roundtrip) -> None:
        result = roundtrip(np.empty((2, 0), dtype=object))
        assert result.shape == (2, 0)

    def test_primitive_elements_are_packed(self) -> None:
        packed = enredo.dumps(np.array([1, 2, 3], dtype=np.int32))
        boxed = enredo.dumps(np.array([1, 2, 3], dtype=object))

        assert len(packed) < len(boxed)

    def test_self_referential_object_array(self, roundtrip) -> None:
        array = np.empty(2, dtype=object)
        array[0] = array
        array[1] = 'tail'

        result = roundtrip(array)

        assert result[0] is result
        assert result[1] == 'tail'

    def test_shared_array(self, roundtrip) -> None:
        array = np.ones(3)
        first, second = roundtrip([array, array])

        assert first is second

    def test_structured_dtype_unsupported(self) -> None:
        array = np.zeros(2, dtype=[('x', 'i4'), ('y', 'f8')])

        with pytest.raises(UnsupportedTypeError):
            enredo.dumps(array)


class TestBoundedArrays:

    def test_roundtrip(self, roundtrip) -> None:
        array = BoundedArray(np.arange(6).reshape(2, 3), lower_bounds=(1, -1))
        result = roundtrip(array)

        assert result == array
        assert result.lower_bounds == (1, -1)
        assert result[2, 1] == array[2, 1]

    def test_absolute_indexing(self) -> None:
        array = BoundedArray([10, 20, 30], lower_bounds=(5,))

        assert array[5] == 10
        assert array.get_lower_bound(0) == 5
        assert array.get_upper_bound(0) == 7

        with pytest.raises(IndexError):
            array[4]

    def test_self_reference(self, roundtrip) -> None:
        array = BoundedArray(np.empty(2, dtype=object), lower_bounds=(5,))
        array[5] = array
        array[6] = 1.5

        result = roundtrip(array)

        assert result[5] is result
        assert result[6] == 1.5

    def test_plain_array_keeps_its_tag(self, roundtrip) -> None:
        assert isinstance(roundtrip(BoundedArray([1, 2])), BoundedArray)
        assert isinstance(roundtrip(np.array([1, 2])), np.ndarray)


# ========== ========== ========== ========== collections
class TestCollections:

    @pytest.mark.parametrize('value', [
        [], [1, 'two', 3.0], {}, {'a': 1, 2: [3]}, set(), {1, 2, 3}, frozenset({'x', 'y'}),
        (), (1,), (1, (2, (3,))), {(1, 2): frozenset({3})},
    ])
    def test_roundtrip(self, roundtrip, value) -> None:
        result = roundtrip(value)

        assert result == value
        assert type(result) is type(value)

    def test_dict_order_is_kept(self, roundtrip) -> None:
        value = {'z': 1, 'a': 2, 'm': 3}
        assert list(roundtrip(value)) == ['z', 'a', 'm']

    def test_shared_references(self, roundtrip) -> None:
        inner = [1, 2]
        mapping = {'x': inner}
        outer = [inner, mapping, inner, (inner,)]

        result = roundtrip(outer)

        assert result[0] is result[2]
        assert result[1]['x'] is result[0]
        assert result[3][0] is result[0]

    def test_shared_tuple(self, roundtrip) -> None:
        pair = (1, 'a')
        first, second = roundtrip([pair, pair])

        assert first is second

    def test_tuple_shared_inside_tuple(self, roundtrip) -> None:
        pair = (1, True)
        result = roundtrip((pair, pair))

        assert result == ((1, True), (1, True))
        assert result[0] is result[1]

    def test_each_object_written_once(self) -> None:
        inner = list(range(100))
        once = enredo.dumps([inner])
        twice = enredo.dumps([inner, inner])

        # the second occurrence costs a tag and a two byte offset
        assert len(twice) - len(once) == 3


# ========== ========== ========== ========== cycles
class TestCycles:

    def test_self_containing_list(self, roundtrip) -> None:
        value = [1]
        value.append(value)

        result = roundtrip(value)

        assert result[1] is result

    def test_self_containing_dict(self, roundtrip) -> None:
        value = {'name': 'root'}
        value['self'] = value

        result = roundtrip(value)

        assert result['self'] is result

    def test_mutual_cycle(self, roundtrip) -> None:
        a, b = [], {}
        a.append(b)
        b['a'] = a

        result = roundtrip(a)

        assert result[0]['a'] is result

    def test_cycle_through_tuple_reached_from_list(self, roundtrip) -> None:
        # the list is registered first, so the tuple can refer back to it
        value = []
        value.append((value,))

        result = roundtrip(value)

        assert result[0][0] is result

    def test_cycle_closing_on_tuple(self) -> None:
        value = []
        pair = (value,)
        value.append(pair)

        with pytest.raises(DanglingReferenceError) as info:
            enredo.dumps(pair)

        assert info.value.offset == HEADER_SIZE


# ========== ========== ========== ========== corrupt streams
class TestCorruptStreams:

    def test_bad_magic(self) -> None:
        with pytest.raises(FormatError, match='magic'):
            enredo.loads(b'PKL1' + enredo.dumps(None)[len(MAGIC):])

    def test_unknown_opcode(self, header: bytes) -> None:
        with pytest.raises(FormatError, match='opcode'):
            enredo.loads(header + b'\xee')

    def test_truncated(self) -> None:
        data = enredo.dumps([1, 2, 3])

        with pytest.raises(FormatError):
            enredo.loads(data[:-3])

    def test_backref_to_unknown_offset(self, header: bytes) -> None:
        data = header + bytes([Op.LIST, 1, Op.MEMO]) + b'\x63\x00'

        with pytest.raises(DanglingReferenceError) as info:
            enredo.loads(data)

        assert info.value.offset == 99

    def test_forward_reference(self, header: bytes) -> None:
        offset = len(header) + 5
        data = header + bytes([Op.LIST, 2, Op.MEMO, offset, 0, Op.NULL])

        with pytest.raises(DanglingReferenceError):
            enredo.loads(data)

    def test_wrong_format_version(self) -> None:
        data = bytearray(enredo.dumps(None))
        data[len(MAGIC)] = 9

        with pytest.raises(FormatError, match='version'):
            enredo.loads(bytes(data))

    def test_standalone_cell(self, header: bytes) -> None:
        with pytest.raises(FormatError):
            enredo.loads(header + bytes([Op.CELL]))

    def test_array_too_big(self, header: bytes) -> None:
        dims = encode(lambda writer: [writer.write_compact_int(value) for value in (0, 2 ** 30, 0, 2 ** 30)])
        data = header + bytes([Op.ARRAY, ELEMENT_OBJECT, 2]) + dims

        with pytest.raises(FormatError, match='shape'):
            enredo.loads(data)

    def test_packed_array_longer_than_stream(self, header: bytes) -> None:
        dims = encode(lambda writer: [writer.write_compact_int(value) for value in (0, 2 ** 30, 0, 2 ** 30)])
        data = header + bytes([Op.ARRAY, Kind.INT64, 2]) + dims + b'\x00' * 16

        with pytest.raises(FormatError):
            enredo.loads(data)

    @pytest.mark.parametrize('dtype', ['|O', 'i4,f8', 'not-a-dtype'])
    def test_array_dtype_refused(self, header: bytes, dtype: str) -> None:
        code = encode(lambda writer: writer.write_string(dtype))
        data = header + bytes([Op.ARRAY, ELEMENT_DTYPE]) + code + bytes([1, 0, 1]) + b'\x00' * 8

        with pytest.raises(FormatError, match='dtype'):
            enredo.loads(data)

    def test_unhashable_dict_key(self, header: bytes) -> None:
        data = header + bytes([Op.DICT, 1, Op.LIST, 0, Op.NULL])

        with pytest.raises(FormatError, match='key'):
            enredo.loads(data)

    @pytest.mark.parametrize('op', [Op.SET, Op.FROZENSET])
    def test_unhashable_set_item(self, header: bytes, op: Op) -> None:
        data = header + bytes([op, 1, Op.DICT, 0])

        with pytest.raises(FormatError, match='item'):
            enredo.loads(data)


# ========== ========== ========== ========== unsupported values
class TestUnsupported:

    @pytest.mark.parametrize('factory', [
        threading.Lock,
        lambda: io.BytesIO(b'x'),
        lambda: (i for i in range(3)),
        lambda: memoryview(b'abc'),
    ])
    def test_raises(self, factory) -> None:
        with pytest.raises(UnsupportedTypeError):
            enredo.dumps([factory()])

    def test_is_type_error(self) -> None:
        with pytest.raises(TypeError):
            enredo.dumps(threading.Lock())


# ========== ========== ========== ========== engine surface
class TestPickler:

    def test_deterministic(self) -> None:
        shared = [1.5, 'x']
        graph = {'a': shared, 'b': (shared, np.arange(4)), 'c': {3, 1, 2}}

        assert enredo.dumps(graph) == enredo.dumps(graph)

    def test_stream_api(self, pickler: Pickler) -> None:
        buffer = io.BytesIO()
        pickler.serialize(buffer, [1, 2])
        pickler.serialize(buffer, 'second')

        buffer.seek(0)

        assert pickler.deserialize(buffer) == [1, 2]
        assert pickler.deserialize(buffer) == 'second'

    def test_shared_between_threads(self, pickler: Pickler) -> None:
        value = {'numbers': list(range(50)), 'array': np.arange(10)}
        expected = pickler.dumps(value)
        results = []

        def work():
            for _ in range(20):
                results.append(pickler.dumps(value) == expected)

        threads = [threading.Thread(target=work) for _ in range(4)]

        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join()

        assert len(results) == 80
        assert all(results)
