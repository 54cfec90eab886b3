#  -*- coding: utf-8 -*-
"""
Graph walker reading one pickle stream; the mirror of ``serializer``.

Shapes that register early on the writing side are allocated here as
empty shells. Each shell is registered under its offset and only then
filled, so back-references into a half-built value resolve. Opaque shapes
are registered once their constructor has run.
"""

from __future__ import annotations

import builtins
import dataclasses
import enum
import logging
import math
import types

from functools import partial
from typing import Any, BinaryIO, Callable, TYPE_CHECKING

import numpy

from .arrays import BoundedArray
from .codec import Kind, PickleReader
from .descriptors import (MAGIC, FORMAT_VERSION, ELEMENT_OBJECT, ELEMENT_DTYPE, Op, EnumKind,
                          enum_kind, lookup, slot_names)
from .errors import FormatError, ShapeMismatchError
from .memo import ReadMemo
from .stream import PickleStream
from .trailers import TrailerQueue
from .units import UnitDescriptor

if TYPE_CHECKING:
    from .pickler import Pickler


logger = logging.getLogger(__name__)


Trace = Callable[[int, int, Op, Any], None]


class Deserializer:
    """
    Reads an object graph from a stream.

    Parameters
    ----------
    pickler : Pickler
        Configuration: context, provider.
    stream : BinaryIO
        Readable binary source.
    trace : callable, optional
        Called as ``trace(offset, depth, op, value)`` after every value is
        read. Used by the stream inspector.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, pickler: Pickler, stream: BinaryIO, trace: Trace | None = None) -> None:
        self.pickler: Pickler = pickler
        self.reader: PickleReader = PickleReader(PickleStream(stream))
        self.memo: ReadMemo = ReadMemo()
        self.trailers: TrailerQueue = TrailerQueue()
        self.runtime: tuple[int, int] | None = None

        self._trace: Trace | None = trace
        self._depth: int = 0

    # ========== ========== ========== ========== ========== private methods
    def _read_header(self) -> None:
        magic = self.reader.read_exact(len(MAGIC))

        if magic != MAGIC:
            raise FormatError(f"Not an enredo stream: bad magic {magic!r}")

        version = self.reader.read_compact_int()

        if version != FORMAT_VERSION:
            raise FormatError(f"Unsupported format version {version}, expected {FORMAT_VERSION}")

        self.runtime = (self.reader.read_compact_int(), self.reader.read_compact_int())

    def _read_op(self) -> Op:
        code = self.reader.read_uint8()

        try:
            return Op(code)
        except ValueError:
            raise FormatError(f"Unknown opcode {code:#x} at position {self.reader.position - 1}") from None

    def _read_count(self) -> int:
        count = self.reader.read_compact_int()

        if count < 0:
            raise FormatError(f"Invalid count {count} at position {self.reader.position}")

        return count

    def _read_kind(self) -> Kind:
        code = self.reader.read_uint8()

        try:
            return Kind(code)
        except ValueError:
            raise FormatError(f"Unknown scalar kind {code:#x}") from None

    def _emit(self, offset: int, op: Op, value: Any) -> None:
        if self._trace is not None:
            self._trace(offset, self._depth, op, value)

    def _read_array(self, offset: int, bounded: bool) -> Any:
        reader = self.reader

        code = reader.read_uint8()

        if code == ELEMENT_OBJECT:
            element = None
        elif code == ELEMENT_DTYPE:
            try:
                element = numpy.dtype(reader.read_string())
            except (TypeError, ValueError) as exc:
                raise FormatError(f"Invalid array dtype: {exc}") from exc

            if element.hasobject or element.fields is not None or element.subdtype is not None:
                raise FormatError(f"Array at position {offset} has unsupported dtype {element}")
        else:
            try:
                element = Kind(code)
            except ValueError:
                raise FormatError(f"Unknown array element code {code:#x}") from None

        rank = reader.read_uint8()
        lower_bounds, shape = [], []

        for _ in range(rank):
            lower_bounds.append(reader.read_compact_int())
            shape.append(self._read_count())

        shape = tuple(shape)

        if not bounded and any(lower_bounds):
            raise FormatError(f"Array at position {offset} has non-zero lower bounds")

        if element is None:
            try:
                data = numpy.empty(shape, dtype=object)
            except (ValueError, MemoryError) as exc:
                raise FormatError(f"Array at position {offset} has invalid shape {shape}: {exc}") from exc

            result = BoundedArray(data, lower_bounds) if bounded else data
            self.memo.register(offset, result)

            flat = data.reshape(-1)

            for index in range(flat.size):
                flat[index] = self.deserialize()

            return result

        dtype = element.dtype if isinstance(element, Kind) else element
        size = math.prod(shape)

        payload = reader.read_exact(size * dtype.itemsize)

        try:
            if dtype.itemsize == 0:
                data = numpy.empty(shape, dtype=dtype)
            else:
                data = numpy.frombuffer(payload, dtype=dtype).reshape(shape)
        except (ValueError, MemoryError) as exc:
            raise FormatError(f"Array at position {offset} has invalid shape {shape}: {exc}") from exc

        if isinstance(element, Kind):
            data = data.astype(element.native)
        else:
            data = data.copy()

        result = BoundedArray(data, lower_bounds) if bounded else data
        return self.memo.register(offset, result)

    def _new_shell(self, cls: type) -> Any:
        if cls.__new__ is object.__new__:
            return object.__new__(cls)

        return cls.__new__(cls)

    def _apply_state(self, obj: Any, state: Any) -> None:
        setstate = getattr(obj, '__setstate__', None)

        if setstate is not None:
            setstate(state)
            return

        slotstate = None

        if isinstance(state, tuple) and len(state) == 2:
            state, slotstate = state

        if state:
            vars(obj).update(state)

        if slotstate:
            for name, value in slotstate.items():
                setattr(obj, name, value)

    # ---------- ---------- ---------- ---------- ---------- shapes
    def _load_null(self, offset: int) -> None:
        return None

    def _load_bool(self, offset: int) -> bool:
        return self.reader.read_bool()

    def _load_int(self, offset: int) -> int:
        return self.memo.register(offset, self.reader.read_int64())

    def _load_bigint(self, offset: int) -> int:
        return self.memo.register(offset, self.reader.read_bigint())

    def _load_float(self, offset: int) -> float:
        return self.memo.register(offset, self.reader.read_float64())

    def _load_complex(self, offset: int) -> complex:
        return self.memo.register(offset, self.reader.read_complex128())

    def _load_scalar(self, offset: int) -> Any:
        kind = self._read_kind()
        return self.memo.register(offset, self.reader.read_scalar(kind))

    def _load_str(self, offset: int) -> str:
        return self.memo.register(offset, self.reader.read_string())

    def _load_bytes(self, offset: int) -> bytes:
        return self.memo.register(offset, self.reader.read_blob())

    def _load_bytearray(self, offset: int) -> bytearray:
        return self.memo.register(offset, bytearray(self.reader.read_blob()))

    def _load_memo(self, offset: int) -> Any:
        return self.memo.resolve(self.reader.read_varint())

    def _load_array(self, offset: int) -> numpy.ndarray:
        return self._read_array(offset, bounded=False)

    def _load_bounded_array(self, offset: int) -> BoundedArray:
        return self._read_array(offset, bounded=True)

    def _load_list(self, offset: int) -> list:
        result = self.memo.register(offset, [])

        for _ in range(self._read_count()):
            result.append(self.deserialize())

        return result

    def _load_dict(self, offset: int) -> dict:
        result = self.memo.register(offset, {})

        for _ in range(self._read_count()):
            key = self.deserialize()
            value = self.deserialize()

            try:
                result[key] = value
            except TypeError as exc:
                raise FormatError(f"Dictionary at position {offset} has an invalid key: {exc}") from exc

        return result

    def _load_set(self, offset: int) -> set:
        result = self.memo.register(offset, set())

        for _ in range(self._read_count()):
            item = self.deserialize()

            try:
                result.add(item)
            except TypeError as exc:
                raise FormatError(f"Set at position {offset} has an invalid item: {exc}") from exc

        return result

    def _load_frozenset(self, offset: int) -> frozenset:
        items = [self.deserialize() for _ in range(self._read_count())]

        try:
            result = frozenset(items)
        except TypeError as exc:
            raise FormatError(f"Frozenset at position {offset} has an invalid item: {exc}") from exc

        return self.memo.register(offset, result)

    def _load_tuple(self, offset: int) -> tuple:
        items = [self.deserialize() for _ in range(self._read_count())]
        return self.memo.register(offset, tuple(items))

    def _load_record(self, offset: int) -> Any:
        cls = self.deserialize()

        if not isinstance(cls, type):
            raise FormatError(f"Record at position {offset} names {cls!r}, which is not a class")

        obj = self.memo.register(offset, self._new_shell(cls))

        declared = self._read_count()
        total = self._read_count()

        if declared > total:
            raise FormatError(f"Record at position {offset} declares {declared} of {total} fields")

        slots = None if hasattr(obj, '__dict__') else set(slot_names(cls))
        names = []

        for _ in range(total):
            name = self.reader.read_string()

            if slots is not None and name not in slots:
                raise ShapeMismatchError(f"Cannot deserialize {cls.__qualname__}: it has no field '{name}'")

            names.append(name)
            object.__setattr__(obj, name, self.deserialize())

        if dataclasses.is_dataclass(cls):
            expected = {field.name for field in dataclasses.fields(cls)}
            found = set(names[:declared])

            if expected != found:
                error = f"Cannot deserialize {cls.__qualname__}: the stream has fields " \
                        f"{sorted(found)} but the class declares {sorted(expected)}"
                raise ShapeMismatchError(error)

        return obj

    def _load_enum(self, offset: int) -> enum.Enum:
        reader = self.reader
        cls = self.deserialize()

        code = reader.read_uint8()

        try:
            kind = EnumKind(code)
        except ValueError:
            raise FormatError(f"Unknown enumeration kind {code:#x}") from None

        name = reader.read_nullable_string()

        if kind is EnumKind.INT64:
            value = reader.read_int64()
        elif kind is EnumKind.UINT64:
            value = int(reader.read_scalar(Kind.UINT64))
        elif kind is EnumKind.STR:
            value = reader.read_string()
        else:
            value = self.deserialize()

        if not isinstance(cls, enum.EnumMeta):
            raise ShapeMismatchError(f"Cannot deserialize {cls!r}, expected it to be an enumeration")

        expected = enum_kind(cls)

        if kind is not expected:
            error = f"Cannot deserialize {cls.__qualname__}, expected it to be an enumeration " \
                    f"of {expected.name} but was {kind.name}"
            raise ShapeMismatchError(error)

        if name is not None:
            member = cls.__members__.get(name)

            if member is None:
                raise ShapeMismatchError(f"Enumeration {cls.__qualname__} has no member '{name}'")

        else:
            try:
                member = cls(value)
            except ValueError as exc:
                raise ShapeMismatchError(f"Enumeration {cls.__qualname__} has no value {value!r}") from exc

        return self.memo.register(offset, member)

    def _load_global(self, offset: int) -> Any:
        unit = self.deserialize()
        path = self.reader.read_string()

        if not isinstance(unit, types.ModuleType):
            raise FormatError(f"Reference at position {offset} is relative to {unit!r}, which is not a unit")

        try:
            obj = lookup(unit, path)
        except AttributeError as exc:
            raise ShapeMismatchError(f"Unit {unit.__name__} has no attribute '{path}'") from exc

        return self.memo.register(offset, obj)

    def _load_function(self, offset: int) -> types.FunctionType:
        reader = self.reader

        code = self.pickler.provider.decode_code(reader.read_blob())
        unit = self.deserialize()
        name = reader.read_string()
        qualname = reader.read_string()

        if not isinstance(unit, types.ModuleType):
            raise FormatError(f"Function {qualname} has globals {unit!r}, which is not a unit")

        count = self._read_count()

        if count != len(code.co_freevars):
            raise FormatError(f"Function {qualname} expects {len(code.co_freevars)} cells, stream has {count}")

        cells, fresh = [], []

        for _ in range(count):
            cell_offset = reader.position
            op = self._read_op()

            if op is Op.MEMO:
                cell = self.memo.resolve(reader.read_varint())

                if not isinstance(cell, types.CellType):
                    raise FormatError(f"Closure of {qualname} refers to {type(cell).__qualname__}, not a cell")

            elif op is Op.CELL:
                cell = self.memo.register(cell_offset, types.CellType())
                fresh.append(cell)

            else:
                raise FormatError(f"Expected a cell in the closure of {qualname}, got {op.name}")

            self._emit(cell_offset, op, cell)
            cells.append(cell)

        func = types.FunctionType(code, vars(unit), name, None, tuple(cells) or None)
        func.__qualname__ = qualname
        self.memo.register(offset, func)

        for cell in fresh:
            if reader.read_bool():
                cell.cell_contents = self.deserialize()

        func.__defaults__ = self.deserialize()
        func.__kwdefaults__ = self.deserialize()

        attributes = self.deserialize()

        if attributes is not None:
            func.__dict__ = attributes

        return func

    def _load_cell(self, offset: int) -> Any:
        raise FormatError(f"Cell at position {offset} outside of a closure")

    def _load_reduce(self, offset: int) -> Any:
        constructor = self.deserialize()
        args = self.deserialize()

        if not callable(constructor) or not isinstance(args, tuple):
            raise FormatError(f"Reduced value at position {offset} has no valid constructor call")

        obj = self.memo.register(offset, constructor(*args))

        state = self.deserialize()

        if state is not None:
            self._apply_state(obj, state)

        for _ in range(self._read_count()):
            obj.append(self.deserialize())

        for _ in range(self._read_count()):
            key = self.deserialize()
            obj[key] = self.deserialize()

        return obj

    def _load_unit_builtins(self, offset: int) -> types.ModuleType:
        return builtins

    def _load_unit_ref(self, offset: int) -> types.ModuleType:
        name = self.reader.read_string()
        qualifier = self.reader.read_nullable_string()

        module = self.pickler.provider.resolve_unit(name, qualifier, self.pickler.context)
        return self.memo.register(offset, module)

    def _load_unit_def(self, offset: int) -> types.ModuleType:
        name = self.reader.read_string()
        qualifier = self.reader.read_nullable_string()
        source = self.reader.read_string()

        descriptor = UnitDescriptor(name, qualifier, source)
        module = self.pickler.provider.materialize(descriptor, self.pickler.context)
        self.memo.register(offset, module)

        self.trailers.push_trailer(partial(self._read_unit_data, module),
                                   partial(self._read_unit_class_data, module))
        return module

    # ---------- ---------- ---------- ---------- ---------- trailers
    def _read_unit_data(self, module: types.ModuleType) -> None:
        for _ in range(self._read_count()):
            name = self.reader.read_string()
            setattr(module, name, self.deserialize())

    def _read_unit_class_data(self, module: types.ModuleType) -> None:
        for _ in range(self._read_count()):
            qualname = self.reader.read_string()
            name = self.reader.read_string()
            value = self.deserialize()

            try:
                cls = lookup(module, qualname)
            except AttributeError as exc:
                raise ShapeMismatchError(f"Unit {module.__name__} has no class '{qualname}'") from exc

            setattr(cls, name, value)

    # ========== ========== ========== ========== ========== public methods
    def run(self) -> Any:
        """Read the header, the root value and every queued trailer."""
        self.pickler.context.stand_in()
        self._read_header()
        return self.trailers.run_with_trailers(self.deserialize)

    def deserialize(self) -> Any:
        """Read one value."""
        offset = self.reader.position
        op = self._read_op()

        self._depth += 1

        try:
            value = _LOADERS[op](self, offset)
        finally:
            self._depth -= 1

        self._emit(offset, op, value)
        return value


_LOADERS: dict[Op, Callable[[Deserializer, int], Any]] = {
    op: getattr(Deserializer, f"_load_{op.name.lower()}") for op in Op
}


__all__ = [
    'Deserializer',
]
