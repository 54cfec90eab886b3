#  -*- coding: utf-8 -*-
"""
Registry of reducers: custom constructor-based encodings for chosen types.

A reducer is a pair of functions:

- ``disassemble(obj) -> tuple`` returns the constructor arguments,
- ``assemble(*args) -> obj`` rebuilds the object.

The object is written as a ``REDUCE`` value: ``assemble`` by reference,
then the arguments. ``assemble`` must therefore be a module level callable.
A reduced object is built only once all its arguments have been read, so a
cycle back into it cannot be represented.

The process-wide ``default_reducers`` registry covers pandas timestamps;
every ``Pickler`` layers its own registry on top of it.
"""

from __future__ import annotations

import logging

import numpy
import pandas

from dataclasses import dataclass
from typing import Any, Callable

from numpy.typing import NDArray

from .errors import ConfigurationError
from .settings import get_full_qualified_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reducer:
    type_: type
    disassemble: Callable[[Any], tuple]
    assemble: Callable[..., Any]


class ReducerRegistry:
    """
    Reducers keyed by exact type, with an optional parent registry.

    Parameters
    ----------
    parent : ReducerRegistry, optional
        Registry consulted when a type is not registered here.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, parent: ReducerRegistry | None = None) -> None:
        self._reducers: dict[type, Reducer] = {}
        self._parent: ReducerRegistry | None = parent

    def __contains__(self, type_: type) -> bool:
        return self.get(type_) is not None

    # ========== ========== ========== ========== ========== public methods
    def register(self,
                 type_: type,
                 disassemble: Callable[[Any], tuple],
                 assemble: Callable[..., Any]) -> None:
        """
        Register a reducer for ``type_``.

        Parameters
        ----------
        type_ : type
            Exact type handled by the reducer. Subclasses are not covered.
        disassemble : callable
            ``disassemble(obj) -> tuple`` of constructor arguments.
        assemble : callable
            ``assemble(*args) -> obj``; must be reachable by its module and
            qualified name.

        Raises
        ------
        ConfigurationError
            If the arguments are not callables or ``assemble`` cannot be
            referenced by name.
        """
        if not isinstance(type_, type):
            raise ConfigurationError(f"Expected a type, got {type_!r}")

        if not callable(disassemble) or not callable(assemble):
            raise ConfigurationError("Both disassemble and assemble must be callable")

        qualname = getattr(assemble, '__qualname__', '<unknown>')

        if getattr(assemble, '__module__', None) is None or '<' in qualname:
            error = f"assemble for {get_full_qualified_name(type_)} must be a module level callable, " \
                    f"got {qualname}"
            raise ConfigurationError(error)

        self._reducers[type_] = Reducer(type_, disassemble, assemble)
        logger.debug("Registered reducer for %s", get_full_qualified_name(type_))

    def remove(self, type_: type) -> None:
        """Remove the reducer of ``type_`` from this registry; idempotent."""
        self._reducers.pop(type_, None)

    def get(self, type_: type) -> Reducer | None:
        reducer = self._reducers.get(type_)

        if reducer is None and self._parent is not None:
            return self._parent.get(type_)

        return reducer

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def types(self) -> list[type]:
        types = list(self._parent.types) if self._parent is not None else []
        return types + [type_ for type_ in self._reducers if type_ not in types]


default_reducers = ReducerRegistry()


def register_reducer(type_: type,
                     disassemble: Callable[[Any], tuple],
                     assemble: Callable[..., Any]) -> None:
    """Register a reducer in the process-wide default registry."""
    default_reducers.register(type_, disassemble, assemble)


def remove_reducer(type_: type) -> None:
    default_reducers.remove(type_)


def is_reduced_type(type_: type) -> bool:
    return type_ in default_reducers


# ========== ========== ========== Register pandas DatetimeIndex and Timestamp
def disassemble_pandas_time(time: pandas.DatetimeIndex | pandas.Timestamp) -> tuple[int | NDArray, str | None]:

    if time.tz is None:
        naive = time
        timezone = None

    else:
        naive = time.tz_convert('UTC').tz_localize(None)
        timezone = str(time.tz)

    values = numpy.asarray(naive.to_numpy(), dtype='datetime64[ns]').astype(numpy.int64)

    if values.ndim == 0:
        return int(values), timezone

    return values, timezone


def assemble_pandas_time(values: int | NDArray, timezone: str | None) -> pandas.DatetimeIndex | pandas.Timestamp:

    if isinstance(values, int):
        time = pandas.Timestamp(values)
    else:
        time = pandas.DatetimeIndex(values.astype('datetime64[ns]'))

    if timezone is not None:
        time = time.tz_localize('UTC').tz_convert(timezone)

    return time


register_reducer(pandas.Timestamp,
                 disassemble=disassemble_pandas_time,
                 assemble=assemble_pandas_time)

register_reducer(pandas.DatetimeIndex,
                 disassemble=disassemble_pandas_time,
                 assemble=assemble_pandas_time)


__all__ = [
    'Reducer',
    'ReducerRegistry',
    'default_reducers',
    'register_reducer',
    'remove_reducer',
    'is_reduced_type',
]
