#  -*- coding: utf-8 -*-
"""
Arrays whose dimensions do not start at zero.
"""

from __future__ import annotations

import numpy

from typing import Any, Iterator

from numpy.typing import ArrayLike, NDArray


class BoundedArray:
    """
    N-dimensional array with a lower bound per dimension.

    Indexing is done with absolute indices: in an array with lower bounds
    ``(1, -2)``, ``arr[1, -2]`` is the first element.

    Parameters
    ----------
    data : array_like
        Element storage, indexed from zero.
    lower_bounds : tuple of int, optional
        One bound per dimension of ``data``. Defaults to zeros.

    Examples
    --------
    >>> arr = BoundedArray([[1, 2], [3, 4]], lower_bounds=(1, 10))
    >>> int(arr[2, 10])
    3
    >>> arr.get_upper_bound(1)
    11
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, data: ArrayLike, lower_bounds: tuple[int, ...] | None = None) -> None:

        self.data: NDArray = numpy.asarray(data)

        if lower_bounds is None:
            lower_bounds = (0,) * self.data.ndim

        lower_bounds = tuple(int(bound) for bound in lower_bounds)

        if len(lower_bounds) != self.data.ndim:
            error = f"Expected {self.data.ndim} lower bounds, got {len(lower_bounds)}"
            raise ValueError(error)

        self.lower_bounds: tuple[int, ...] = lower_bounds

    def __getitem__(self, index: int | tuple[int, ...]) -> Any:
        return self.data[self._translate(index)]

    def __setitem__(self, index: int | tuple[int, ...], value: Any) -> None:
        self.data[self._translate(index)] = value

    def __iter__(self) -> Iterator[Any]:
        return iter(self.data.flat)

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other: Any) -> bool:

        if not isinstance(other, BoundedArray):
            return NotImplemented

        return self.lower_bounds == other.lower_bounds \
            and self.data.dtype == other.data.dtype \
            and numpy.array_equal(self.data, other.data)

    __hash__ = None

    def __repr__(self) -> str:
        return f"BoundedArray({self.data!r}, lower_bounds={self.lower_bounds})"

    # ========== ========== ========== ========== ========== private methods
    def _translate(self, index: int | tuple[int, ...]) -> tuple[int, ...]:

        if not isinstance(index, tuple):
            index = (index,)

        if len(index) != self.ndim:
            raise IndexError(f"Expected {self.ndim} indices, got {len(index)}")

        translated = []

        for dim, (i, lower, length) in enumerate(zip(index, self.lower_bounds, self.shape)):

            if not lower <= i < lower + length:
                raise IndexError(f"Index {i} is out of bounds [{lower}, {lower + length}) for dimension {dim}")

            translated.append(i - lower)

        return tuple(translated)

    # ========== ========== ========== ========== ========== public methods
    def get_lower_bound(self, dim: int) -> int:
        return self.lower_bounds[dim]

    def get_upper_bound(self, dim: int) -> int:
        """Last valid index of dimension ``dim``."""
        return self.lower_bounds[dim] + self.data.shape[dim] - 1

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def shape(self) -> tuple[int, ...]:
        return self.data.shape

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def dtype(self) -> numpy.dtype:
        return self.data.dtype


__all__ = [
    'BoundedArray',
]
