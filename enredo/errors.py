#  -*- coding: utf-8 -*-
"""
Error taxonomy raised by the pickling engine.

Every failure is raised synchronously at the point where it is detected and
is never retried. A call that raises leaves its output stream in an
unspecified state that should be discarded.
"""

from __future__ import annotations

import io

from typing import Any


class EnredoError(Exception):
    """Base class of every error raised by enredo."""


class UnsupportedTypeError(EnredoError, TypeError):
    """
    The value's shape cannot be serialized at all.

    Raised while classifying a value, before any byte for it is written.
    """

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


class FormatError(EnredoError, ValueError):
    """Malformed or corrupt wire bytes."""


class DanglingReferenceError(EnredoError):
    """
    A back-reference names an offset with no materialized object.

    This is either a cycle that runs through an opaque-constructor shape
    (tuples, frozensets, reduced objects) or a corrupt stream.

    Attributes
    ----------
    offset : int
        Stream offset the reference points at.
    """

    def __init__(self, offset: int, detail: str | None = None) -> None:

        error = f"Tried to reference object from position {offset} in the stream, " \
                f"but that object is not yet created"

        if detail:
            error = f"{error} ({detail})"

        super().__init__(error)
        self.offset = offset


class AmbiguousReferenceError(EnredoError, LookupError):
    """
    A by-name lookup matched more than one live unit.

    Attributes
    ----------
    name : str
        The name that was looked up.
    candidates : list[str]
        Full identity strings of every matching unit.
    """

    def __init__(self, name: str, candidates: list[str]) -> None:
        listing = '; '.join(candidates)
        super().__init__(f"Ambiguous unit name '{name}', found multiple matching units: {listing}")
        self.name = name
        self.candidates = list(candidates)


class ShapeMismatchError(EnredoError, TypeError):
    """The shape recorded in the stream conflicts with the target type."""


class NotSupportedError(EnredoError, io.UnsupportedOperation):
    """The operation is not available on an append/consume-only stream."""


class ConfigurationError(EnredoError, ValueError):
    """Invalid pickler configuration."""


__all__ = [
    'EnredoError',
    'UnsupportedTypeError',
    'FormatError',
    'DanglingReferenceError',
    'AmbiguousReferenceError',
    'ShapeMismatchError',
    'NotSupportedError',
    'ConfigurationError',
]
