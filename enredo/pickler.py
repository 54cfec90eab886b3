#  -*- coding: utf-8 -*-
"""
The ``Pickler``: configuration plus the entry points of the engine.
"""

from __future__ import annotations

import io
import logging

from typing import Any, BinaryIO, Callable

from .deserializer import Deserializer
from .provider import TypeProvider, ModuleTypeProvider
from .reducers import ReducerRegistry, default_reducers
from .serializer import Serializer
from .settings import Setting, check_types
from .units import Policy, UnitContext, parse_policy


logger = logging.getLogger(__name__)


class Pickler:
    """
    Serializes arbitrary object graphs into a compact binary stream.

    A pickler holds configuration only; every ``serialize`` and
    ``deserialize`` call builds its own memo table and trailer queue, so a
    single pickler can be shared between threads.

    Parameters
    ----------
    policy : None, PickleMode, str, Mapping or callable, optional
        Decides, per unit, whether its values are written by reference or by
        value. ``None`` picks by value for units created from source and for
        the main script, by reference for everything else.
    context : UnitContext or str, optional
        Registry where units rebuilt by value are kept. Defaults to the
        ``'default'`` context.
    provider : TypeProvider, optional
        Defaults to ``ModuleTypeProvider``.
    debug : bool, default False
        Check the memo table for offset collisions after every registration.

    Examples
    --------
    >>> pickler = Pickler()
    >>> shared = [1, 2]
    >>> first, second = pickler.loads(pickler.dumps([shared, shared]))
    >>> first is second
    True
    """

    # ---------- ---------- ---------- ---------- ---------- settings
    policy: Policy = Setting(writeonce=True, doc="Per-unit pickle mode verdict, as a callable")

    @policy.parser
    def policy(self, value: Any) -> Policy:
        return parse_policy(value)

    context: UnitContext = Setting(writeonce=True, doc="Registry of units rebuilt by value")

    @context.default
    def context(self) -> UnitContext:
        return UnitContext()

    @context.parser
    def context(self, value: UnitContext | str) -> UnitContext:
        if isinstance(value, str):
            return UnitContext(value)

        check_types(value, UnitContext)
        return value

    provider: TypeProvider = Setting(writeonce=True, doc="Type provider used to describe and find units")

    @provider.default
    def provider(self) -> TypeProvider:
        return ModuleTypeProvider()

    @provider.parser
    def provider(self, value: TypeProvider) -> TypeProvider:
        check_types(value, TypeProvider)
        return value

    debug: bool = Setting(default=False, parser=lambda self, value: bool(value))

    # ========== ========== ========== ========== ========== special methods
    def __init__(self,
                 policy: Any = None,
                 context: UnitContext | str | None = None,
                 provider: TypeProvider | None = None,
                 *,
                 debug: bool = False) -> None:

        self.policy = policy
        self.context = context
        self.provider = provider
        self.debug = debug

        self.reducers: ReducerRegistry = ReducerRegistry(parent=default_reducers)

    def __repr__(self) -> str:
        return f"Pickler(context={self.context!r}, provider={type(self.provider).__name__}, debug={self.debug})"

    # ========== ========== ========== ========== ========== public methods
    def serialize(self, stream: BinaryIO, obj: Any) -> None:
        """
        Write ``obj`` and everything reachable from it to ``stream``.

        Parameters
        ----------
        stream : BinaryIO
            Writable binary stream. It is neither seeked nor closed.
        obj : object

        Raises
        ------
        UnsupportedTypeError
            If some reachable value cannot be serialized.
        DanglingReferenceError
            If a cycle closes through a value that is built from its
            contents, such as a tuple.
        AmbiguousReferenceError
            If a unit written by reference is not the only live unit with
            its name.
        """
        Serializer(self, stream).run(obj)

    def deserialize(self, stream: BinaryIO) -> Any:
        """
        Read one object graph from ``stream``.

        Raises
        ------
        FormatError
            If the stream is truncated or malformed.
        DanglingReferenceError
            If a back-reference points to an object not yet created.
        ShapeMismatchError
            If a record, enumeration or reference no longer matches the live
            class or unit.
        """
        return Deserializer(self, stream).run()

    def dumps(self, obj: Any) -> bytes:
        buffer = io.BytesIO()
        self.serialize(buffer, obj)
        return buffer.getvalue()

    def loads(self, data: bytes) -> Any:
        return self.deserialize(io.BytesIO(data))

    def register_reducer(self,
                         type_: type,
                         disassemble: Callable[[Any], tuple],
                         assemble: Callable[..., Any]) -> None:
        """Register a reducer used by this pickler only."""
        self.reducers.register(type_, disassemble, assemble)


# ========== ========== ========== ========== ========== ==========
def dumps(obj: Any, **kwargs) -> bytes:
    """Pickle ``obj`` with a ``Pickler`` built from ``kwargs``."""
    return Pickler(**kwargs).dumps(obj)


def loads(data: bytes, **kwargs) -> Any:
    """Unpickle ``data`` with a ``Pickler`` built from ``kwargs``."""
    return Pickler(**kwargs).loads(data)


__all__ = [
    'Pickler',
    'dumps',
    'loads',
]
