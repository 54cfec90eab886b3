#  -*- coding: utf-8 -*-
"""
Identity memo tables for the serializer and the deserializer.

Both sides key an object by the stream offset of its tag byte. The
serializer maps ``id(obj)`` to that offset; the deserializer maps the offset
back to the materialized object.

Write-order policy
------------------
Shapes that can exist as an empty shell register *before* their children
are written (lists, dicts, sets, arrays, records, function shells, cells).
A child may then refer back to its parent while the parent's body is still
incomplete.

Shapes built by a constructor that needs every child up front (tuples,
frozensets, reduced objects) are *pending* while their children are
written, and register only afterwards. Reaching a pending object again is a
cycle that cannot be represented and raises ``DanglingReferenceError``.
"""

from __future__ import annotations

from typing import Any

from .codec import PickleWriter
from .errors import DanglingReferenceError, FormatError


class WriteMemo:
    """
    Serializer side memo: object identity to stream offset.

    Parameters
    ----------
    check : bool, default False
        If True, verify after every registration that no two objects share
        an offset.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, check: bool = False) -> None:
        self._offsets: dict[int, int] = {}
        self._pending: dict[int, int] = {}
        # ids are only unique while the object is alive
        self._keepalive: list[Any] = []
        self._check: bool = check

    def __len__(self) -> int:
        return len(self._offsets)

    def __contains__(self, obj: Any) -> bool:
        return id(obj) in self._offsets

    # ========== ========== ========== ========== ========== public methods
    def maybe_write_memo(self, writer: PickleWriter, obj: Any, op: int) -> bool:
        """
        Write a back-reference to ``obj`` if it was already written.

        Parameters
        ----------
        writer : PickleWriter
        obj : object
        op : int
            Back-reference opcode.

        Returns
        -------
        bool
            True if the back-reference was written, False if ``obj`` is new.

        Raises
        ------
        DanglingReferenceError
            If ``obj`` is an opaque-constructor value still being written.
        """
        key = id(obj)
        offset = self._offsets.get(key)

        if offset is not None:
            writer.write_uint8(op)
            writer.write_varint(offset)
            return True

        pending = self._pending.get(key)

        if pending is not None:
            detail = f"{type(obj).__qualname__} refers to itself before it can be constructed"
            raise DanglingReferenceError(pending, detail)

        return False

    def begin(self, offset: int, obj: Any) -> None:
        """Mark ``obj`` as being written at ``offset`` without registering it."""
        self._pending[id(obj)] = offset
        self._keepalive.append(obj)

    def add(self, offset: int, obj: Any) -> None:
        """Register ``obj`` at ``offset``."""
        key = id(obj)

        if key in self._offsets:
            raise KeyError(f"{type(obj).__qualname__} at position {offset} was memoised twice")

        self._pending.pop(key, None)
        self._offsets[key] = offset
        self._keepalive.append(obj)

        if self._check:
            self.check()

    def check(self) -> None:
        """
        Verify that registered offsets and identities are in one-to-one
        correspondence.

        Raises
        ------
        AssertionError
        """
        if len(set(self._offsets.values())) != len(self._offsets):
            raise AssertionError("Two distinct objects were memoised at the same stream position")


class ReadMemo:
    """Deserializer side memo: stream offset to materialized object."""

    # ========== ========== ========== ========== ========== special methods
    def __init__(self) -> None:
        self._objects: dict[int, Any] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, offset: int) -> bool:
        return offset in self._objects

    # ========== ========== ========== ========== ========== public methods
    def register(self, offset: int, obj: Any) -> Any:
        """Register ``obj`` under ``offset`` and return it."""
        if offset in self._objects:
            raise FormatError(f"Two objects were read from position {offset}")

        self._objects[offset] = obj
        return obj

    def resolve(self, offset: int) -> Any:
        """
        Return the object registered at ``offset``.

        Raises
        ------
        DanglingReferenceError
            If nothing has been materialized at ``offset`` yet.
        """
        try:
            return self._objects[offset]
        except KeyError:
            raise DanglingReferenceError(offset) from None


__all__ = [
    'WriteMemo',
    'ReadMemo',
]
