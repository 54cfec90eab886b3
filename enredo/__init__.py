#  -*- coding: utf-8 -*-
"""
Enredo: a binary pickler for arbitrary Python object graphs.

Enredo writes whole object graphs, shared references and cycles included,
into a compact binary stream, and reads them back with the same identity
structure. Classes and functions are written by reference to their module
or, for code with no importable home, by value with the module's source.

Key Features
------------
- **Identity preserving**: every object is written once; later occurrences
  are back-references to its offset in the stream
- **Cycles**: lists, dicts, sets, arrays, records and closures may refer
  back to themselves
- **Code by value**: lambdas, closures and whole dynamic modules travel
  inside the stream, under a caller-chosen policy
- **Ecosystem types**: numpy arrays and scalars, pandas timestamps, custom
  reducers
- **Persistence and inspection**: HDF5 storage and Rich stream listings

Modules
-------
pickler
    The ``Pickler`` and the module level ``dumps``/``loads``
units
    Pickle modes, policies and unit contexts
provider
    Type providers describing, rebuilding and finding units
reducers
    Reducer registry for constructor-based encodings
persistence
    HDF5 ``save``/``load``
display
    Stream listings with the Rich library

Examples
--------
>>> import enredo
>>> node = {'name': 'root'}
>>> node['self'] = node
>>> clone = enredo.loads(enredo.dumps(node))
>>> clone['self'] is clone
True
"""


from .errors import *
from .arrays import BoundedArray
from .units import PickleMode, MappingPolicy, UnitContext, UnitDescriptor
from .provider import TypeProvider, ModuleTypeProvider, RegistryTypeProvider
from .reducers import register_reducer, remove_reducer, default_reducers
from .pickler import Pickler, dumps, loads
from .persistence import save, load
from .display import DisplaySettings, Displayable, StreamListing, disassemble


__all__ = [
    "EnredoError",
    "UnsupportedTypeError",
    "FormatError",
    "DanglingReferenceError",
    "AmbiguousReferenceError",
    "ShapeMismatchError",
    "NotSupportedError",
    "ConfigurationError",
    "BoundedArray",
    "PickleMode",
    "MappingPolicy",
    "UnitContext",
    "UnitDescriptor",
    "TypeProvider",
    "ModuleTypeProvider",
    "RegistryTypeProvider",
    "register_reducer",
    "remove_reducer",
    "default_reducers",
    "Pickler",
    "dumps",
    "loads",
    "save",
    "load",
    "DisplaySettings",
    "Displayable",
    "StreamListing",
    "disassemble",
]


try:
    # this will run if enredo is installed
    from importlib.metadata import metadata, PackageNotFoundError

    meta = metadata('enredo')

    __author__ = meta['Author-email']
    __license__ = meta['License']
    __version__ = meta['Version']

except PackageNotFoundError:
    # this will run during development
    import toml
    from pathlib import Path

    pyproject_filepath = Path(__file__).parent.parent / "pyproject.toml"

    with pyproject_filepath.open() as file:
        pyproject = toml.load(file)

    __version__ = pyproject["project"]["version"]
    __author__ = pyproject["project"]["authors"][0]["name"]
    __license__ = pyproject["project"]["license"]["text"]
