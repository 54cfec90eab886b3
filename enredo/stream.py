#  -*- coding: utf-8 -*-
"""
Append/consume-only byte stream wrapper with a logical position counter.
"""

from __future__ import annotations

import io

from typing import BinaryIO

from .errors import NotSupportedError


class PickleStream(io.RawIOBase):
    """
    Wraps a binary file-like object and counts every transferred byte.

    ``position`` starts at 0 when the wrapper is created and grows by exactly
    the number of bytes read or written through it. Back-references in the
    pickle format are resolved through the memo table, so the stream never
    rewinds: ``seek``, ``truncate`` and length queries raise
    ``NotSupportedError``.

    Closing the wrapper does not close the wrapped object.

    Parameters
    ----------
    stream : BinaryIO
        Underlying byte source or sink.
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, stream: BinaryIO) -> None:
        super().__init__()
        self._stream: BinaryIO = stream
        self._position: int = 0

    def __len__(self) -> int:
        raise NotSupportedError("PickleStream does not support length queries")

    def __bool__(self) -> bool:
        return True

    # ========== ========== ========== ========== ========== public methods
    def readable(self) -> bool:
        return self._stream.readable()

    def writable(self) -> bool:
        return self._stream.writable()

    def seekable(self) -> bool:
        return False

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        raise NotSupportedError("PickleStream does not support seeking")

    def truncate(self, size: int | None = None) -> int:
        raise NotSupportedError("PickleStream does not support setting its length")

    def tell(self) -> int:
        return self._position

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast('B')

        readinto = getattr(self._stream, 'readinto', None)

        if readinto is not None:
            count = readinto(view)
        else:
            data = self._stream.read(len(view))
            count = len(data)
            view[:count] = data

        count = count or 0
        self._position += count
        return count

    def write(self, data) -> int:
        count = self._stream.write(data)

        if count is None:
            count = len(data)

        self._position += count
        return count

    def flush(self) -> None:
        if not self.closed:
            self._stream.flush()

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def position(self) -> int:
        """Number of bytes transferred since the wrapper was created."""
        return self._position

    @property
    def length(self) -> int:
        raise NotSupportedError("PickleStream does not support length queries")


__all__ = [
    'PickleStream',
]
