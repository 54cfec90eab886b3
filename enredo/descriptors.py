#  -*- coding: utf-8 -*-
"""
Wire opcodes, type descriptors and value classification.

Every value is classified into exactly one descriptor variant before a
single byte of it is written. The serializer dispatches on the variant,
the deserializer on the opcode, and both dispatch tables are checked for
completeness when the modules are imported.

Descriptor variants
-------------------
``Primitive``
    Scalars: ``None``, ``bool``, ``int``, ``float``, ``complex``, ``str``,
    ``bytes``, ``bytearray`` and numpy fixed-width scalars. All but
    ``None`` and ``bool`` are memoized.
``Array``
    ``numpy.ndarray`` and ``BoundedArray``.
``Collection``
    ``list``, ``dict``, ``set`` and ``frozenset``.
``Tuple``
    ``tuple``.
``Record``
    Instances of plain classes and dataclasses, written field by field.
``Enum``
    ``enum.Enum`` members.
``ExternalRef``
    Anything reachable as ``getattr(unit, path)``: classes, module level
    functions, builtins.
``Function``
    Functions that cannot be referenced by name: lambdas, closures,
    nested functions.
``Reduced``
    Values rebuilt by calling a constructor, from a registered reducer or
    ``__reduce_ex__``.
``Unit``
    Modules.
"""

from __future__ import annotations

import builtins
import ctypes
import dataclasses
import enum
import io
import mmap
import socket
import threading
import types
import weakref

import numpy

from typing import Any, Callable

from .arrays import BoundedArray
from .codec import Kind, INT64_MIN, INT64_MAX
from .errors import UnsupportedTypeError


MAGIC: bytes = b'ENRD'
FORMAT_VERSION: int = 1


class Op(enum.IntEnum):
    """Tag byte written in front of every value."""

    NULL = 0
    BOOL = 1
    INT = 2
    BIGINT = 3
    FLOAT = 4
    COMPLEX = 5
    SCALAR = 6
    STR = 7
    BYTES = 8
    BYTEARRAY = 9
    MEMO = 10
    ARRAY = 11
    BOUNDED_ARRAY = 12
    LIST = 13
    DICT = 14
    SET = 15
    FROZENSET = 16
    TUPLE = 17
    RECORD = 18
    ENUM = 19
    GLOBAL = 20
    FUNCTION = 21
    CELL = 22
    REDUCE = 23
    UNIT_BUILTINS = 24
    UNIT_REF = 25
    UNIT_DEF = 26


# array element codes besides Kind values
ELEMENT_OBJECT: int = 0
ELEMENT_DTYPE: int = 0xFF


class EnumKind(enum.IntEnum):
    """Underlying representation of an enumeration's values."""

    INT64 = Kind.INT64
    UINT64 = Kind.UINT64
    STR = 0x40
    OBJECT = 0x41


# ========== ========== ========== ========== ========== ==========
@dataclasses.dataclass(frozen=True)
class Primitive:
    op: Op
    kind: Kind | None = None


@dataclasses.dataclass(frozen=True)
class Array:
    element: Kind | numpy.dtype | None
    rank: int
    lower_bounds: tuple[int, ...]
    lengths: tuple[int, ...]
    op: Op = Op.ARRAY


@dataclasses.dataclass(frozen=True)
class Collection:
    op: Op


@dataclasses.dataclass(frozen=True)
class Tuple:
    length: int


@dataclasses.dataclass(frozen=True)
class Record:
    cls: type
    fields: tuple[tuple[str, Any], ...]
    declared: int = 0


@dataclasses.dataclass(frozen=True)
class Enum:
    cls: type
    kind: EnumKind
    name: str | None
    value: Any


@dataclasses.dataclass(frozen=True)
class ExternalRef:
    unit: types.ModuleType
    path: str


@dataclasses.dataclass(frozen=True)
class Function:
    unit: types.ModuleType
    code: types.CodeType
    closure: tuple[types.CellType, ...]


@dataclasses.dataclass(frozen=True)
class Reduced:
    constructor: Callable[..., Any]
    args: tuple
    state: Any = None
    listitems: list | None = None
    dictitems: list | None = None


@dataclasses.dataclass(frozen=True)
class Unit:
    module: types.ModuleType


Descriptor = Primitive | Array | Collection | Tuple | Record | Enum | ExternalRef | Function | Reduced | Unit


# ========== ========== ========== ========== ========== ==========
_SCALARS = {
    type(None): Op.NULL,
    bool: Op.BOOL,
    float: Op.FLOAT,
    complex: Op.COMPLEX,
    str: Op.STR,
    bytes: Op.BYTES,
    bytearray: Op.BYTEARRAY,
}

_COLLECTIONS = {
    list: Op.LIST,
    dict: Op.DICT,
    set: Op.SET,
    frozenset: Op.FROZENSET,
}

_SINGLETONS = {
    id(Ellipsis): 'Ellipsis',
    id(NotImplemented): 'NotImplemented',
}

_SINGLETON_TYPES = {
    type(None): None,
    type(Ellipsis): Ellipsis,
    type(NotImplemented): NotImplemented,
}

_UNSUPPORTED = (
    type(threading.Lock()),
    type(threading.RLock()),
    threading.Condition,
    io.IOBase,
    socket.socket,
    mmap.mmap,
    memoryview,
    weakref.ReferenceType,
    ctypes._Pointer,
    types.GeneratorType,
    types.CoroutineType,
    types.AsyncGeneratorType,
    types.FrameType,
    types.TracebackType,
    types.CellType,
)

_PLAIN_DATA = (
    type(None), bool, int, float, complex, str, bytes, bytearray,
    list, dict, set, frozenset, tuple,
    numpy.ndarray, numpy.generic, BoundedArray,
)


def is_special_name(name: str) -> bool:
    """True for ``__dunder__`` and ``_sunder_`` names."""
    return len(name) > 2 and name[0] == name[-1] == '_'


def lookup(module: types.ModuleType, path: str) -> Any:
    """
    Resolve a dotted ``path`` inside ``module``.

    Raises
    ------
    AttributeError
    """
    obj = module

    for part in path.split('.'):
        obj = getattr(obj, part)

    return obj


def slot_names(cls: type) -> list[str]:
    """Slot attribute names declared along the MRO, base classes first."""
    names = []

    for klass in reversed(cls.__mro__):
        slots = klass.__dict__.get('__slots__', ())

        if isinstance(slots, str):
            slots = (slots,)

        for name in slots:

            if name in ('__dict__', '__weakref__'):
                continue

            if name.startswith('__') and not name.endswith('__'):
                name = f"_{klass.__name__.lstrip('_')}{name}"

            if name not in names:
                names.append(name)

    return names


def enum_kind(cls: type) -> EnumKind:
    """Underlying representation used for the members of ``cls``."""
    if issubclass(cls, enum.Flag):
        return EnumKind.UINT64

    values = [member.value for member in cls.__members__.values()]

    if values and all(isinstance(value, int) and not isinstance(value, bool)
                      and INT64_MIN <= value <= INT64_MAX for value in values):
        return EnumKind.INT64

    if values and all(isinstance(value, str) for value in values):
        return EnumKind.STR

    return EnumKind.OBJECT


def unit_data(module: types.ModuleType) -> list[str]:
    """Sorted names of the plain-data globals of a unit."""
    return sorted(name for name, value in vars(module).items()
                  if not is_special_name(name) and isinstance(value, _PLAIN_DATA))


def unit_class_data(module: types.ModuleType) -> list[tuple[str, str]]:
    """
    Sorted ``(class qualname, attribute)`` pairs of plain-data class
    attributes of the classes defined by a unit.

    Enumerations are skipped; their class namespace belongs to ``enum``.
    """
    entries = []

    for value in vars(module).values():

        if not isinstance(value, type) or value.__module__ != module.__name__:
            continue

        if issubclass(value, enum.Enum):
            continue

        for name, attribute in vars(value).items():
            if not is_special_name(name) and isinstance(attribute, _PLAIN_DATA):
                entries.append((value.__qualname__, name))

    return sorted(set(entries))


def _uses_reduce(cls: type) -> bool:

    if cls.__reduce_ex__ is not object.__reduce_ex__ or cls.__reduce__ is not object.__reduce__:
        return True

    if getattr(cls, '__getstate__', None) is not getattr(object, '__getstate__', None):
        return True

    if any(hasattr(cls, name) for name in ('__setstate__', '__getnewargs_ex__', '__getnewargs__')):
        return True

    # subclasses of builtin containers keep their items outside __dict__
    return any(base.__module__ == 'builtins' for base in cls.__mro__[1:-1])


# ========== ========== ========== ========== ========== ==========
class Classifier:
    """
    Maps values to descriptors.

    Parameters
    ----------
    reducers : ReducerRegistry
        Registered reducers, consulted by exact type.
    provider : TypeProvider
        Finds the unit a class or function belongs to.
    context : UnitContext
        Context holding units rebuilt by value.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, reducers, provider, context) -> None:
        self.reducers = reducers
        self.provider = provider
        self.context = context

    # ========== ========== ========== ========== ========== private methods
    def _address(self, obj: Any) -> tuple[str | None, types.ModuleType | None]:
        unit = self.provider.unit_of(obj, self.context)

        if unit is None:
            return None, None

        path = getattr(obj, '__qualname__', None) or getattr(obj, '__name__', None)

        if path is None or '<' in path:
            return None, unit

        try:
            found = lookup(unit, path)
        except AttributeError:
            return None, unit

        return (path if found is obj else None), unit

    def _classify_array(self, data: numpy.ndarray, op: Op, lower_bounds: tuple[int, ...]) -> Array:
        dtype = data.dtype

        if dtype == object:
            element = None

        elif dtype.hasobject or dtype.fields is not None or dtype.subdtype is not None:
            raise UnsupportedTypeError(f"Arrays with structured dtype {dtype} are not supported", data)

        else:
            element = Kind.from_dtype(dtype) or dtype

        return Array(element, data.ndim, lower_bounds, data.shape, op)

    def _classify_enum(self, member: enum.Enum) -> Enum:
        cls = type(member)
        self._require_addressable(cls)

        name = member._name_

        if name not in cls.__members__:
            name = None

        return Enum(cls, enum_kind(cls), name, member._value_)

    def _classify_record(self, obj: Any) -> Record:
        cls = type(obj)
        self._require_addressable(cls)

        fields = {}

        for name in slot_names(cls):
            try:
                fields[name] = object.__getattribute__(obj, name)
            except AttributeError:
                continue

        fields.update(getattr(obj, '__dict__', {}))

        declared = 0

        if dataclasses.is_dataclass(cls):
            ordered = {}

            for field in dataclasses.fields(cls):
                if field.name in fields:
                    ordered[field.name] = fields.pop(field.name)

            declared = len(ordered)
            ordered.update(fields)
            fields = ordered

        return Record(cls, tuple(fields.items()), declared)

    def _classify_reduce(self, obj: Any) -> Reduced | ExternalRef:

        try:
            reduced = obj.__reduce_ex__(4)
        except TypeError as exc:
            raise UnsupportedTypeError(f"Cannot pickle {type(obj).__qualname__}: {exc}", obj) from exc

        if isinstance(reduced, str):
            unit = self.provider.unit_of(obj, self.context)

            if unit is None:
                raise UnsupportedTypeError(f"{obj!r} reduces to '{reduced}' in an unknown unit", obj)

            return ExternalRef(unit, reduced)

        if len(reduced) > 5 and reduced[5] is not None:
            raise UnsupportedTypeError(f"{type(obj).__qualname__} uses a state setter, which is not supported", obj)

        constructor, args, state, listitems, dictitems = (tuple(reduced) + (None,) * 5)[:5]

        return Reduced(constructor,
                       tuple(args),
                       state,
                       None if listitems is None else list(listitems),
                       None if dictitems is None else list(dictitems))

    def _require_addressable(self, cls: type) -> None:
        path, _ = self._address(cls)

        if path is None:
            error = f"Class {cls.__qualname__} cannot be referenced by name, " \
                    f"define it at module level"
            raise UnsupportedTypeError(error, cls)

    # ========== ========== ========== ========== ========== public methods
    def classify(self, obj: Any) -> Descriptor:
        """
        Return the descriptor of ``obj``.

        Raises
        ------
        UnsupportedTypeError
            If the value cannot be serialized.
        """
        cls = type(obj)

        op = _SCALARS.get(cls)

        if op is not None:
            return Primitive(op)

        if cls is int:
            return Primitive(Op.INT if INT64_MIN <= obj <= INT64_MAX else Op.BIGINT)

        if isinstance(obj, numpy.generic):
            kind = Kind.from_dtype(obj.dtype)

            if kind is not None:
                return Primitive(Op.SCALAR, kind)

        if id(obj) in _SINGLETONS:
            return ExternalRef(builtins, _SINGLETONS[id(obj)])

        if isinstance(obj, _UNSUPPORTED):
            raise UnsupportedTypeError(f"Objects of type {cls.__qualname__} cannot be pickled", obj)

        if isinstance(obj, types.ModuleType):
            return Unit(obj)

        reducer = self.reducers.get(cls)

        if reducer is not None:
            return Reduced(reducer.assemble, tuple(reducer.disassemble(obj)))

        if cls is numpy.ndarray:
            return self._classify_array(obj, Op.ARRAY, (0,) * obj.ndim)

        if cls is BoundedArray:
            return self._classify_array(obj.data, Op.BOUNDED_ARRAY, obj.lower_bounds)

        op = _COLLECTIONS.get(cls)

        if op is not None:
            return Collection(op)

        if cls is tuple:
            return Tuple(len(obj))

        if isinstance(obj, enum.Enum):
            return self._classify_enum(obj)

        if isinstance(obj, types.BuiltinFunctionType) \
                and obj.__self__ is not None and not isinstance(obj.__self__, types.ModuleType):
            return self._classify_reduce(obj)

        if cls is type and obj in _SINGLETON_TYPES:
            return Reduced(type, (_SINGLETON_TYPES[obj],))

        if isinstance(obj, (type, types.FunctionType, types.BuiltinFunctionType)):
            path, unit = self._address(obj)

            if path is not None:
                return ExternalRef(unit, path)

            if isinstance(obj, types.FunctionType):
                return Function(unit, obj.__code__, obj.__closure__ or ())

            raise UnsupportedTypeError(f"{obj!r} cannot be referenced by name", obj)

        if _uses_reduce(cls):
            return self._classify_reduce(obj)

        return self._classify_record(obj)


__all__ = [
    'MAGIC',
    'FORMAT_VERSION',
    'Op',
    'EnumKind',
    'Primitive',
    'Array',
    'Collection',
    'Tuple',
    'Record',
    'Enum',
    'ExternalRef',
    'Function',
    'Reduced',
    'Unit',
    'Descriptor',
    'Classifier',
]
