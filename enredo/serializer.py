#  -*- coding: utf-8 -*-
"""
Graph walker writing one pickle stream.

A ``Serializer`` lives for exactly one top-level call. It owns that call's
memo table, trailer queue and policy verdicts, so picklers can be shared
between threads.
"""

from __future__ import annotations

import builtins
import logging
import sys
import types

from functools import partial
from typing import Any, BinaryIO, Callable, TYPE_CHECKING

import numpy

from .arrays import BoundedArray
from .codec import Kind, PickleWriter
from .descriptors import (MAGIC, FORMAT_VERSION, ELEMENT_OBJECT, ELEMENT_DTYPE, Op, EnumKind,
                          Primitive, Array, Collection, Tuple, Record, Enum, ExternalRef,
                          Function, Reduced, Unit, Classifier, unit_data, unit_class_data, lookup)
from .errors import ConfigurationError
from .memo import WriteMemo
from .stream import PickleStream
from .trailers import TrailerQueue
from .units import PickleMode, unit_qualifier

if TYPE_CHECKING:
    from .pickler import Pickler


logger = logging.getLogger(__name__)


class Serializer:
    """
    Writes an object graph to a stream.

    Set and frozenset items are written in iteration order, which depends
    on string hash randomization, so their bytes may differ between
    processes.

    Parameters
    ----------
    pickler : Pickler
        Configuration: policy, context, provider, reducers, debug flag.
    stream : BinaryIO
        Writable binary sink.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, pickler: Pickler, stream: BinaryIO) -> None:
        self.pickler: Pickler = pickler
        self.writer: PickleWriter = PickleWriter(PickleStream(stream))
        self.memo: WriteMemo = WriteMemo(check=pickler.debug)
        self.trailers: TrailerQueue = TrailerQueue()
        self.classifier: Classifier = Classifier(pickler.reducers, pickler.provider, pickler.context)

        self._modes: dict[int, PickleMode] = {}
        self._units: list[types.ModuleType] = []

        self._writers: dict[type, Callable[[int, Any, Any], None]] = {
            Primitive: self._write_primitive,
            Array: self._write_array,
            Collection: self._write_collection,
            Tuple: self._write_tuple,
            Record: self._write_record,
            Enum: self._write_enum,
            ExternalRef: self._write_external_ref,
            Function: self._write_function,
            Reduced: self._write_reduced,
            Unit: self._write_unit,
        }

    # ========== ========== ========== ========== ========== private methods
    def _write_header(self) -> None:
        self.writer.write_bytes(MAGIC)
        self.writer.write_compact_int(FORMAT_VERSION)
        self.writer.write_compact_int(sys.version_info.major)
        self.writer.write_compact_int(sys.version_info.minor)

    def _write_count(self, count: int) -> None:
        self.writer.write_compact_int(count)

    def _mode(self, module: types.ModuleType) -> PickleMode:
        """Policy verdict for ``module``, resolved once per call."""
        mode = self._modes.get(id(module))

        if mode is not None:
            return mode

        mode = self.pickler.policy(module)

        if not isinstance(mode, PickleMode):
            error = f"The policy returned {mode!r} for unit {module.__name__}, expected a PickleMode"
            raise ConfigurationError(error)

        if mode is PickleMode.DEFAULT:
            dynamic = self.pickler.provider.is_dynamic(module)
            mode = PickleMode.BY_VALUE if dynamic else PickleMode.BY_REFERENCE

        logger.debug("Unit %s is pickled %s", module.__name__, mode.value)

        self._modes[id(module)] = mode
        self._units.append(module)
        return mode

    # ---------- ---------- ---------- ---------- ---------- shapes
    def _write_primitive(self, offset: int, obj: Any, descriptor: Primitive) -> None:
        writer = self.writer
        op = descriptor.op
        writer.write_uint8(op)

        if op is Op.NULL:
            return

        if op is Op.BOOL:
            # True and False are singletons
            writer.write_bool(obj)
            return

        if op is Op.INT:
            writer.write_int64(obj)

        elif op is Op.BIGINT:
            writer.write_bigint(obj)

        elif op is Op.FLOAT:
            writer.write_float64(obj)

        elif op is Op.COMPLEX:
            writer.write_complex128(obj)

        elif op is Op.SCALAR:
            writer.write_uint8(descriptor.kind)
            writer.write_scalar(descriptor.kind, obj)

        elif op is Op.STR:
            writer.write_string(obj)

        else:
            writer.write_blob(bytes(obj))

        self.memo.add(offset, obj)

    def _write_array(self, offset: int, obj: Any, descriptor: Array) -> None:
        writer = self.writer
        writer.write_uint8(descriptor.op)

        element = descriptor.element

        if element is None:
            writer.write_uint8(ELEMENT_OBJECT)
        elif isinstance(element, Kind):
            writer.write_uint8(element)
        else:
            writer.write_uint8(ELEMENT_DTYPE)
            writer.write_string(element.str)

        writer.write_uint8(descriptor.rank)

        for lower, length in zip(descriptor.lower_bounds, descriptor.lengths):
            writer.write_compact_int(lower)
            writer.write_compact_int(length)

        self.memo.add(offset, obj)

        data = obj.data if isinstance(obj, BoundedArray) else obj

        if element is None:
            if data.size:
                for item in data.flat:
                    self.serialize(item)

        elif isinstance(element, Kind):
            writer.write_bytes(numpy.ascontiguousarray(data, dtype=element.dtype).tobytes())

        else:
            writer.write_bytes(numpy.ascontiguousarray(data).tobytes())

    def _write_collection(self, offset: int, obj: Any, descriptor: Collection) -> None:
        opaque = descriptor.op is Op.FROZENSET

        if opaque:
            self.memo.begin(offset, obj)

        self.writer.write_uint8(descriptor.op)

        if not opaque:
            self.memo.add(offset, obj)

        self._write_count(len(obj))

        if descriptor.op is Op.DICT:
            for key, value in obj.items():
                self.serialize(key)
                self.serialize(value)
        else:
            for item in obj:
                self.serialize(item)

        if opaque:
            self.memo.add(offset, obj)

    def _write_tuple(self, offset: int, obj: tuple, descriptor: Tuple) -> None:
        self.memo.begin(offset, obj)

        self.writer.write_uint8(Op.TUPLE)
        self._write_count(descriptor.length)

        for item in obj:
            self.serialize(item)

        self.memo.add(offset, obj)

    def _write_record(self, offset: int, obj: Any, descriptor: Record) -> None:
        self.writer.write_uint8(Op.RECORD)
        self.serialize(descriptor.cls)

        self.memo.add(offset, obj)

        self._write_count(descriptor.declared)
        self._write_count(len(descriptor.fields))

        for name, value in descriptor.fields:
            self.writer.write_string(name)
            self.serialize(value)

    def _write_enum(self, offset: int, obj: Any, descriptor: Enum) -> None:
        writer = self.writer

        self.memo.begin(offset, obj)

        writer.write_uint8(Op.ENUM)
        self.serialize(descriptor.cls)
        writer.write_uint8(descriptor.kind)
        writer.write_nullable_string(descriptor.name)

        if descriptor.kind is EnumKind.INT64:
            writer.write_int64(descriptor.value)
        elif descriptor.kind is EnumKind.UINT64:
            writer.write_scalar(Kind.UINT64, descriptor.value)
        elif descriptor.kind is EnumKind.STR:
            writer.write_string(descriptor.value)
        else:
            self.serialize(descriptor.value)

        self.memo.add(offset, obj)

    def _write_external_ref(self, offset: int, obj: Any, descriptor: ExternalRef) -> None:
        self.writer.write_uint8(Op.GLOBAL)
        self.serialize(descriptor.unit)
        self.writer.write_string(descriptor.path)

        self.memo.add(offset, obj)

    def _write_function(self, offset: int, func: types.FunctionType, descriptor: Function) -> None:
        writer = self.writer
        code = self.pickler.provider.encode_code(descriptor.code)

        writer.write_uint8(Op.FUNCTION)
        writer.write_blob(code)
        self.serialize(descriptor.unit)
        writer.write_string(func.__name__)
        writer.write_string(func.__qualname__)

        # cells first as empty shells, so the function can be built and
        # registered before anything inside the closure refers back to it
        self._write_count(len(descriptor.closure))
        fresh = []

        for cell in descriptor.closure:

            if self.memo.maybe_write_memo(writer, cell, Op.MEMO):
                continue

            cell_offset = writer.position
            writer.write_uint8(Op.CELL)
            self.memo.add(cell_offset, cell)
            fresh.append(cell)

        self.memo.add(offset, func)

        for cell in fresh:
            try:
                contents = cell.cell_contents
            except ValueError:
                writer.write_bool(False)
            else:
                writer.write_bool(True)
                self.serialize(contents)

        self.serialize(func.__defaults__)
        self.serialize(func.__kwdefaults__)
        self.serialize(func.__dict__ or None)

    def _write_reduced(self, offset: int, obj: Any, descriptor: Reduced) -> None:
        self.memo.begin(offset, obj)

        self.writer.write_uint8(Op.REDUCE)
        self.serialize(descriptor.constructor)
        self.serialize(descriptor.args)

        self.memo.add(offset, obj)

        self.serialize(descriptor.state)

        listitems = descriptor.listitems or []
        self._write_count(len(listitems))

        for item in listitems:
            self.serialize(item)

        dictitems = descriptor.dictitems or []
        self._write_count(len(dictitems))

        for key, value in dictitems:
            self.serialize(key)
            self.serialize(value)

    def _write_unit(self, offset: int, module: types.ModuleType, descriptor: Unit) -> None:
        writer = self.writer

        if module is builtins:
            writer.write_uint8(Op.UNIT_BUILTINS)
            return

        provider = self.pickler.provider

        if self._mode(module) is PickleMode.BY_VALUE:
            unit = provider.describe_unit(module)

            writer.write_uint8(Op.UNIT_DEF)
            writer.write_string(unit.name)
            writer.write_nullable_string(unit.qualifier)
            writer.write_string(unit.source)

            self.memo.add(offset, module)
            self.trailers.push_trailer(partial(self._write_unit_data, module),
                                       partial(self._write_unit_class_data, module))

        else:
            provider.check_unambiguous(module, self.pickler.context)

            writer.write_uint8(Op.UNIT_REF)
            writer.write_string(module.__name__)
            writer.write_nullable_string(unit_qualifier(module))

            self.memo.add(offset, module)

    # ---------- ---------- ---------- ---------- ---------- trailers
    def _write_unit_data(self, module: types.ModuleType) -> None:
        names = unit_data(module)
        namespace = vars(module)

        self._write_count(len(names))

        for name in names:
            self.writer.write_string(name)
            self.serialize(namespace[name])

    def _write_unit_class_data(self, module: types.ModuleType) -> None:
        entries = unit_class_data(module)

        self._write_count(len(entries))

        for qualname, name in entries:
            self.writer.write_string(qualname)
            self.writer.write_string(name)
            self.serialize(vars(lookup(module, qualname))[name])

    # ========== ========== ========== ========== ========== public methods
    def run(self, obj: Any) -> None:
        """Write the header, then ``obj`` and every trailer it queues."""
        self.pickler.context.stand_in()
        self._write_header()
        self.trailers.run_with_trailers(self.serialize, obj)
        self.writer.flush()

    def serialize(self, obj: Any) -> None:
        """Write one value: a back-reference if already seen, else its shape."""
        if obj is None:
            self.writer.write_uint8(Op.NULL)
            return

        if self.memo.maybe_write_memo(self.writer, obj, Op.MEMO):
            return

        descriptor = self.classifier.classify(obj)
        offset = self.writer.position

        try:
            write = self._writers[type(descriptor)]
        except KeyError:
            raise AssertionError(f"No writer for descriptor {descriptor!r}") from None

        write(offset, obj, descriptor)


__all__ = [
    'Serializer',
]
