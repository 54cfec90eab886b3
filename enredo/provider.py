#  -*- coding: utf-8 -*-
"""
Type providers: how units are described, rebuilt and found by name.

The engine never inspects or fabricates code itself. It delegates these
tasks to a ``TypeProvider``:

``describe_unit(module)``
    Produce the ``UnitDescriptor`` written for a by-value unit.
``materialize(descriptor, context)``
    Turn such a descriptor back into a live module.
``resolve_unit(name, qualifier, context)``
    Find the live unit a by-reference name stands for.
``encode_code`` / ``decode_code``
    Serialize the code objects of functions written by value.

``ModuleTypeProvider`` does all of this with ``inspect``, ``exec`` and
``marshal``. ``RegistryTypeProvider`` is for environments without dynamic
code generation. It knows only the units registered with it up front and
refuses everything else with ``UnsupportedTypeError``.
"""

from __future__ import annotations

import builtins
import importlib
import inspect
import linecache
import logging
import marshal
import sys
import types

from abc import ABC, abstractmethod
from typing import Any, Iterable

from .descriptors import lookup
from .errors import AmbiguousReferenceError, FormatError, ShapeMismatchError, UnsupportedTypeError
from .units import UnitContext, UnitDescriptor, unit_identity, unit_qualifier


logger = logging.getLogger(__name__)


class TypeProvider(ABC):
    """
    Capability interface between the engine and the host's code units.

    Subclasses implement the abstract methods. The concrete helpers locate
    the unit of a class or function among ``sys.modules`` and the units of
    a ``UnitContext``.
    """

    # ========== ========== ========== ========== ========== private methods
    def _named_units(self, name: str, context: UnitContext) -> list[types.ModuleType]:
        units = [unit for unit in context.units() if unit.__name__ == name]
        module = sys.modules.get(name)

        if module is not None and not any(unit is module for unit in units):
            units.append(module)

        return units

    # ========== ========== ========== ========== ========== public methods
    @abstractmethod
    def describe_unit(self, module: types.ModuleType) -> UnitDescriptor:
        """
        Describe ``module`` so that it can be rebuilt from the stream.

        Raises
        ------
        UnsupportedTypeError
            If the unit cannot be pickled by value.
        """
        ...

    @abstractmethod
    def materialize(self, descriptor: UnitDescriptor, context: UnitContext) -> types.ModuleType:
        """Rebuild a unit from its descriptor and register it in ``context``."""
        ...

    @abstractmethod
    def resolve_unit(self, name: str, qualifier: str | None, context: UnitContext) -> types.ModuleType:
        """
        Find the live unit named ``name`` with the given qualifier.

        Raises
        ------
        AmbiguousReferenceError
            If more than one live unit matches.
        """
        ...

    @abstractmethod
    def encode_code(self, code: types.CodeType) -> bytes:
        ...

    @abstractmethod
    def decode_code(self, data: bytes) -> types.CodeType:
        ...

    def is_dynamic(self, module: types.ModuleType) -> bool:
        """
        True for units that cannot be imported by name elsewhere: the main
        script and units created from source.
        """
        return '__unit_source__' in vars(module) or module.__name__ == '__main__'

    def live_candidates(self,
                        name: str,
                        qualifier: str | None,
                        context: UnitContext) -> list[types.ModuleType]:
        """Live units with the given name and qualifier."""
        return [unit for unit in self._named_units(name, context) if unit_qualifier(unit) == qualifier]

    def check_unambiguous(self, module: types.ModuleType, context: UnitContext) -> None:
        """
        Verify that ``module`` is the only live unit answering to its name.

        Raises
        ------
        AmbiguousReferenceError
        """
        candidates = self.live_candidates(module.__name__, unit_qualifier(module), context)

        if len(candidates) > 1:
            raise AmbiguousReferenceError(module.__name__, [unit_identity(unit) for unit in candidates])

    def unit_of(self, obj: Any, context: UnitContext) -> types.ModuleType | None:
        """
        Return the unit ``obj`` belongs to, or None if there is none.

        Functions are matched through their globals. Other objects are
        matched through ``__module__``; when several units share that name,
        the unit where ``obj`` is found by its qualified name wins.

        Raises
        ------
        UnsupportedTypeError
            If ``obj`` is a function whose globals belong to no known unit.
        """
        if isinstance(obj, types.ModuleType):
            return obj

        if isinstance(obj, types.FunctionType):
            namespace = obj.__globals__
            name = namespace.get('__name__')

            for unit in self._named_units(name, context):
                if vars(unit) is namespace:
                    return unit

            for unit in context.units():
                if vars(unit) is namespace:
                    return unit

            raise UnsupportedTypeError(f"Function {obj.__qualname__} belongs to no known unit", obj)

        name = getattr(obj, '__module__', None)

        if name is None:
            owner = getattr(obj, '__self__', None)
            return owner if isinstance(owner, types.ModuleType) else None

        units = self._named_units(name, context)
        path = getattr(obj, '__qualname__', None) or getattr(obj, '__name__', None)

        for unit in units:
            try:
                if path is not None and lookup(unit, path) is obj:
                    return unit
            except AttributeError:
                continue

        return units[0] if units else None


# ========== ========== ========== ========== ========== ==========
class ModuleTypeProvider(TypeProvider):
    """
    Provider backed by the running interpreter.

    By-value units are described by their source, which comes from
    ``inspect`` or, for units built from source, from the module itself.
    They are rebuilt by executing that source in a fresh module. Function
    code travels as ``marshal`` data, so it is only portable between
    interpreters of the same minor version.
    """

    # ========== ========== ========== ========== ========== public methods
    def describe_unit(self, module: types.ModuleType) -> UnitDescriptor:

        if module is builtins:
            raise UnsupportedTypeError("The builtins module is never pickled by value", module)

        source = vars(module).get('__unit_source__')

        if source is None:
            try:
                source = inspect.getsource(module)
            except (OSError, TypeError) as exc:
                error = f"Cannot pickle unit {module.__name__} by value: its source is not available"
                raise UnsupportedTypeError(error, module) from exc

        return UnitDescriptor(module.__name__, unit_qualifier(module), source)

    def materialize(self, descriptor: UnitDescriptor, context: UnitContext) -> types.ModuleType:
        """
        Execute the unit's source in a fresh module.

        The module is not added to ``sys.modules``; it lives in ``context``.
        A unit named ``__main__`` is executed as ``__mp_main__`` so that its
        ``if __name__ == '__main__'`` block does not run again.
        """
        name = '__mp_main__' if descriptor.name == '__main__' else descriptor.name
        filename = f"<unit {name} in {context.key}>"

        module = types.ModuleType(name)
        module.__unit_source__ = descriptor.source
        module.__unit_qualifier__ = descriptor.qualifier
        module.__unit_origin__ = context.key
        module.__file__ = filename

        linecache.cache[filename] = (len(descriptor.source), None,
                                     descriptor.source.splitlines(True), filename)

        exec(compile(descriptor.source, filename, 'exec', dont_inherit=True), vars(module))

        context.add(module)
        logger.debug("Materialized unit %s in %s", name, context.key)

        return module

    def resolve_unit(self, name: str, qualifier: str | None, context: UnitContext) -> types.ModuleType:
        candidates = self.live_candidates(name, qualifier, context)

        if len(candidates) > 1:
            raise AmbiguousReferenceError(name, [unit_identity(unit) for unit in candidates])

        if candidates:
            return candidates[0]

        logger.debug("Importing unit %s", name)
        module = importlib.import_module(name)

        if unit_qualifier(module) != qualifier:
            error = f"Unit {name} has qualifier {unit_qualifier(module)!r}, " \
                    f"but the stream refers to {qualifier!r}"
            raise ShapeMismatchError(error)

        return module

    def encode_code(self, code: types.CodeType) -> bytes:
        return marshal.dumps(code)

    def decode_code(self, data: bytes) -> types.CodeType:

        try:
            code = marshal.loads(data)
        except (EOFError, ValueError, TypeError) as exc:
            raise FormatError(f"Invalid code object payload: {exc}") from exc

        if not isinstance(code, types.CodeType):
            raise FormatError(f"Expected a code object, got {type(code).__qualname__}")

        return code


# ========== ========== ========== ========== ========== ==========
class RegistryTypeProvider(TypeProvider):
    """
    Provider restricted to units registered ahead of time.

    Units can only be written and read by reference, and functions can
    only be referenced by name. Anything needing dynamic code generation
    raises ``UnsupportedTypeError``.

    Parameters
    ----------
    units : iterable of ModuleType, optional
        Known units. ``builtins`` is always known.

    Examples
    --------
    >>> import fractions
    >>> provider = RegistryTypeProvider([fractions])
    >>> 'fractions' in provider
    True
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, units: Iterable[types.ModuleType] = ()) -> None:
        self._units: dict[str, list[types.ModuleType]] = {}
        self.register(builtins)

        for unit in units:
            self.register(unit)

    def __contains__(self, unit: str | types.ModuleType) -> bool:
        name = unit if isinstance(unit, str) else unit.__name__
        return name in self._units

    def __getitem__(self, name: str) -> types.ModuleType:
        units = self._units[name]

        if len(units) > 1:
            raise AmbiguousReferenceError(name, [unit_identity(unit) for unit in units])

        return units[0]

    # ========== ========== ========== ========== ========== private methods
    def _named_units(self, name: str, context: UnitContext) -> list[types.ModuleType]:
        return list(self._units.get(name, ()))

    # ========== ========== ========== ========== ========== public methods
    def register(self, unit: types.ModuleType) -> None:
        units = self._units.setdefault(unit.__name__, [])

        if not any(known is unit for known in units):
            units.append(unit)

    def remove(self, unit: types.ModuleType) -> None:
        units = [known for known in self._units.get(unit.__name__, ()) if known is not unit]

        if units:
            self._units[unit.__name__] = units
        else:
            self._units.pop(unit.__name__, None)

    def is_dynamic(self, module: types.ModuleType) -> bool:
        return False

    def describe_unit(self, module: types.ModuleType) -> UnitDescriptor:
        raise UnsupportedTypeError(f"Unit {module.__name__} cannot be pickled by value without code generation", module)

    def materialize(self, descriptor: UnitDescriptor, context: UnitContext) -> types.ModuleType:
        raise UnsupportedTypeError(f"Unit {descriptor.name} cannot be rebuilt without code generation")

    def resolve_unit(self, name: str, qualifier: str | None, context: UnitContext) -> types.ModuleType:
        candidates = self.live_candidates(name, qualifier, context)

        if len(candidates) > 1:
            raise AmbiguousReferenceError(name, [unit_identity(unit) for unit in candidates])

        if not candidates:
            raise UnsupportedTypeError(f"Unknown unit {name} (qualifier {qualifier!r})")

        return candidates[0]

    def encode_code(self, code: types.CodeType) -> bytes:
        raise UnsupportedTypeError(f"Function {code.co_qualname} cannot be pickled without code generation")

    def decode_code(self, data: bytes) -> types.CodeType:
        raise UnsupportedTypeError("Functions cannot be rebuilt without code generation")


__all__ = [
    'TypeProvider',
    'ModuleTypeProvider',
    'RegistryTypeProvider',
]
