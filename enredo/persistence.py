#  -*- coding: utf-8 -*-
"""
Storing pickled streams in HDF5 files.

Each file holds one stream as a ``uint8`` dataset named ``root``. The
dataset attributes identify the store and the wire format version, so that
arbitrary HDF5 files are rejected before any byte is decoded.
"""

from __future__ import annotations

import logging

import h5py
import numpy

from pathlib import Path
from typing import Any

from .descriptors import FORMAT_VERSION
from .errors import FormatError
from .pickler import Pickler


logger = logging.getLogger(__name__)


extension: str = '.hdf5'

STORE_NAME: str = 'enredo'


def save(obj: Any,
         path: Path | str,
         pickler: Pickler | None = None,
         overwrite: bool = True,
         use_default_extension: bool = True) -> Path:
    """
    Pickle ``obj`` and save the stream to an HDF5 file.

    Parameters
    ----------
    obj : object
    path : str or Path
        Output path.
    pickler : Pickler, optional
        Defaults to a new ``Pickler()``.
    overwrite : bool, default True
        If False and the file exists, raises FileExistsError.
    use_default_extension : bool, default True
        If True, rewrites the suffix of ``path`` to ``.hdf5``.

    Returns
    -------
    Path
        The path actually written.

    Raises
    ------
    FileExistsError
        If the file exists and overwrite is False.
    """
    # ---------- ---------- resolve path
    path = Path(path)

    if use_default_extension:
        path = path.with_suffix(extension)

    if path.is_file() and not overwrite:
        raise FileExistsError(f"Path {path} already exists")

    # ---------- ---------- save
    pickler = Pickler() if pickler is None else pickler
    data = pickler.dumps(obj)

    with h5py.File(path, 'w') as file:
        dataset = file.create_dataset('root', data=numpy.frombuffer(data, dtype=numpy.uint8))
        dataset.attrs['__store__'] = STORE_NAME
        dataset.attrs['__format_version__'] = FORMAT_VERSION

    logger.debug("Saved %d bytes to %s", len(data), path)
    return path


def load(path: Path | str, pickler: Pickler | None = None) -> Any:
    """
    Load and unpickle the stream saved in an HDF5 file.

    Raises
    ------
    FileNotFoundError
        If the path does not exist or is not a file.
    FormatError
        If the file was not written by ``save``.
    """
    path = Path(path)

    if not path.is_file():
        raise FileNotFoundError(f"Path {path} does not exist")

    with h5py.File(path, 'r') as file:
        dataset = file.get('root')

        if not isinstance(dataset, h5py.Dataset) or dataset.attrs.get('__store__') != STORE_NAME:
            raise FormatError(f"File {path} is not an enredo store")

        version = dataset.attrs.get('__format_version__')

        if version != FORMAT_VERSION:
            raise FormatError(f"File {path} has format version {version}, expected {FORMAT_VERSION}")

        data = dataset[()].tobytes()

    pickler = Pickler() if pickler is None else pickler
    return pickler.loads(data)


__all__ = [
    'save',
    'load',
]
