#  -*- coding: utf-8 -*-
"""
Units of code, pickling policy, and the shared unit context.

A *unit* is a Python module. Values that belong to a unit, such as its
classes and functions, are written either by reference, as the unit's name
to be imported when loading, or by value, with the unit's source inlined in
the stream. The caller picks between the two through a policy.

Units rebuilt from a stream must live somewhere. A ``UnitContext`` is a
handle on a process-wide registry for them. Its state is kept in a stand-in
namespace module in ``sys.modules``, so every pickler (and every handle)
using the same context name sees the same units.
"""

from __future__ import annotations

import enum
import logging
import sys
import threading
import types

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, TypeAlias

from .errors import ConfigurationError
from .settings import check_types


logger = logging.getLogger(__name__)


# ========== ========== ========== ========== ========== ==========
class PickleMode(enum.Enum):
    """How the values of a unit are written."""

    DEFAULT = 'default'
    BY_REFERENCE = 'by_reference'
    BY_VALUE = 'by_value'

    @classmethod
    def parse(cls, value: PickleMode | str) -> PickleMode:
        """
        Coerce a mode or its name into a ``PickleMode``.

        Raises
        ------
        ConfigurationError
            If ``value`` names no mode.
        """
        if isinstance(value, PickleMode):
            return value

        if isinstance(value, str):
            key = value.strip().lower().replace('-', '_')

            for mode in cls:
                if key in (mode.value, mode.name.lower()):
                    return mode

        error = f"Invalid pickle mode {value!r}, expected one of " \
                f"{', '.join(mode.value for mode in cls)}"
        raise ConfigurationError(error)


Policy: TypeAlias = Callable[[types.ModuleType], PickleMode]


class MappingPolicy:
    """
    Policy looking up module names in a fixed mapping.

    Modules missing from the mapping get ``PickleMode.DEFAULT``. Every entry
    is validated when the policy is created.

    Parameters
    ----------
    modes : Mapping[str, PickleMode | str]
    """

    def __init__(self, modes: Mapping[str, PickleMode | str]) -> None:
        self.modes: dict[str, PickleMode] = {}

        for name, mode in modes.items():

            if not isinstance(name, str):
                raise ConfigurationError(f"Policy keys must be module names, got {name!r}")

            self.modes[name] = PickleMode.parse(mode)

    def __call__(self, module: types.ModuleType) -> PickleMode:
        return self.modes.get(module.__name__, PickleMode.DEFAULT)

    def __repr__(self) -> str:
        return f"MappingPolicy({self.modes!r})"


def default_policy(module: types.ModuleType) -> PickleMode:
    return PickleMode.DEFAULT


def parse_policy(policy: Any) -> Policy:
    """
    Normalize the accepted policy forms into a callable.

    Parameters
    ----------
    policy : None, PickleMode, str, Mapping or callable
        ``None`` means ``DEFAULT`` for every unit; a single mode (or mode
        name) applies to every unit; a mapping is keyed by module name.

    Returns
    -------
    callable

    Raises
    ------
    ConfigurationError
        If the policy has none of the accepted forms or a mapping holds an
        invalid mode.
    """
    if policy is None:
        return default_policy

    if isinstance(policy, (PickleMode, str)):
        mode = PickleMode.parse(policy)
        return lambda module: mode

    if isinstance(policy, Mapping):
        return MappingPolicy(policy)

    if callable(policy):
        return policy

    raise ConfigurationError(f"Invalid policy {policy!r}: expected a callable, a mapping or a pickle mode")


# ========== ========== ========== ========== ========== ==========
@dataclass(frozen=True)
class UnitDescriptor:
    """Everything needed to rebuild a unit by value."""

    name: str
    qualifier: str | None
    source: str


def unit_qualifier(module: types.ModuleType) -> str | None:
    """
    Version-like qualifier of a unit.

    Units created from source carry an explicit qualifier; other modules
    use their ``__version__`` when it is a string.
    """
    namespace = vars(module)

    if '__unit_qualifier__' in namespace:
        return namespace['__unit_qualifier__']

    version = namespace.get('__version__')
    return version if isinstance(version, str) else None


def unit_identity(module: types.ModuleType) -> str:
    """Full identity string of a unit, used in error messages."""
    namespace = vars(module)
    origin = namespace.get('__unit_origin__') or namespace.get('__file__') or 'built-in'
    return f"{module.__name__}, qualifier={unit_qualifier(module)}, origin={origin} at {id(module):#x}"


# ========== ========== ========== ========== ========== ==========
_STAND_IN_LOCK = threading.Lock()

STAND_IN_PREFIX = 'enredo.contexts.'


def _create_stand_in(key: str) -> types.ModuleType:
    stand_in = types.ModuleType(key, "Registry of units rebuilt by enredo")
    stand_in.__path__ = []
    stand_in.__units__ = []
    return stand_in


class UnitContext:
    """
    Handle on a named, process-wide registry of rebuilt units.

    The registry is created lazily, on first use, as a stand-in module at
    ``sys.modules["enredo.contexts.<name>"]``. Creation runs under a lock
    with a lookup first. Picklers sharing a context from many threads
    therefore always end up with the same single stand-in.

    Parameters
    ----------
    name : str, default 'default'

    Examples
    --------
    >>> context = UnitContext('docs')
    >>> unit = context.define('shapes', 'class Point:\\n    pass\\n')
    >>> unit in context.units()
    True
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, name: str = 'default') -> None:
        check_types(name, str)

        if not name:
            raise ConfigurationError("A unit context needs a non-empty name")

        self.name: str = name

    def __eq__(self, other: Any) -> bool:

        if not isinstance(other, UnitContext):
            return NotImplemented

        return self.name == other.name

    def __hash__(self) -> int:
        return hash((UnitContext, self.name))

    def __repr__(self) -> str:
        return f"UnitContext({self.name!r})"

    # ========== ========== ========== ========== ========== public methods
    def stand_in(self) -> types.ModuleType:
        """Return the registry module, creating it on first use."""
        stand_in = sys.modules.get(self.key)

        if stand_in is not None:
            return stand_in

        with _STAND_IN_LOCK:
            stand_in = sys.modules.get(self.key)

            if stand_in is None:
                stand_in = _create_stand_in(self.key)
                sys.modules[self.key] = stand_in
                logger.debug("Created unit context %s", self.key)

        return stand_in

    def add(self, module: types.ModuleType) -> None:
        stand_in = self.stand_in()

        with _STAND_IN_LOCK:
            stand_in.__units__.append(module)

    def remove(self, module: types.ModuleType) -> None:
        stand_in = self.stand_in()

        with _STAND_IN_LOCK:
            stand_in.__units__[:] = [unit for unit in stand_in.__units__ if unit is not module]

    def clear(self) -> None:
        stand_in = self.stand_in()

        with _STAND_IN_LOCK:
            stand_in.__units__.clear()

    def units(self) -> list[types.ModuleType]:
        """Snapshot of the units registered in this context."""
        stand_in = self.stand_in()

        with _STAND_IN_LOCK:
            return list(stand_in.__units__)

    def candidates(self, name: str, qualifier: str | None) -> list[types.ModuleType]:
        """Units of this context with the given name and qualifier."""
        return [unit for unit in self.units()
                if unit.__name__ == name and unit_qualifier(unit) == qualifier]

    def contains(self, module: types.ModuleType) -> bool:
        return any(unit is module for unit in self.units())

    def define(self,
               name: str,
               source: str,
               qualifier: str | None = None,
               provider: Any = None) -> types.ModuleType:
        """
        Create a unit from source and register it in this context.

        Parameters
        ----------
        name : str
            Module name of the new unit.
        source : str
            Python source executed as the unit's body.
        qualifier : str, optional
        provider : TypeProvider, optional
            Defaults to ``ModuleTypeProvider``.

        Returns
        -------
        ModuleType
        """
        if provider is None:
            from .provider import ModuleTypeProvider
            provider = ModuleTypeProvider()

        return provider.materialize(UnitDescriptor(name, qualifier, source), self)

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def key(self) -> str:
        return f"{STAND_IN_PREFIX}{self.name}"


__all__ = [
    'PickleMode',
    'MappingPolicy',
    'parse_policy',
    'UnitDescriptor',
    'UnitContext',
    'unit_qualifier',
    'unit_identity',
]
