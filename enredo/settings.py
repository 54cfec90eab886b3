#  -*- coding: utf-8 -*-
"""
Configuration descriptors and runtime type checks.

``Setting`` is a ``property``-like descriptor for configuration attributes.
It supports defaults, parsing and validation on assignment, and write-once
semantics. The pickler and the display settings use it, so a bad value is
rejected when it is assigned rather than when it is first used.
"""

from __future__ import annotations

from typing import TypeVar, Callable, Any, TypeAlias, Self


T = TypeVar('T')
"""Represent the type of the setting"""

Getter: TypeAlias = Callable[[object], T]
Setter: TypeAlias = Callable[[object, Any], None]
Parser: TypeAlias = Callable[[object, Any], T]


class Setting:
    """
    Descriptor representing a configuration attribute.

    Parameters
    ----------
    fget : callable, optional
        Getter with signature ``fget(instance) -> value``. If omitted, a
        default getter reading ``self.private_name`` is generated.
    fset : callable, optional
        Setter with signature ``fset(instance, value)``. If omitted, a default
        setter is generated.
    default : object or callable, optional
        Value returned when nothing (or None) is stored. If callable, it is
        called as ``default(instance)``.
    parser : callable, optional
        Called as ``parser(instance, raw_value)`` before every assignment;
        its return value is stored. Parsers raise to reject a value.
    writeonce : bool, default False
        If True, only the first non-None assignment is accepted.
    doc : str, optional

    Examples
    --------
    >>> class Config:
    ...     width = Setting(default=80, parser=lambda obj, value: int(value))
    >>> config = Config()
    >>> config.width
    80
    >>> config.width = '120'
    >>> config.width
    120
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self,
                 fget: Getter | None = None,
                 fset: Setter | None = None,
                 *,
                 default: T | Getter | None = None,
                 parser: Parser | None = None,
                 writeonce: bool = False,
                 doc: str | None = None) -> None:

        self.fget: Getter | None = fget
        self.fset: Setter | None = fset

        self._default: T | Getter | None = default
        self._parser: Parser | None = parser

        self._writeonce: bool = writeonce

        self.__doc__: str | None = fget.__doc__ if doc is None and fget is not None else doc

    def __set_name__(self, owner: type, name: str) -> None:
        self.name: str = name
        self.owner: type = owner
        self.private_name: str = f"_setting__{name}"

        if self.fget is None:
            self.fget = lambda obj: obj.__getattribute__(self.private_name)

        if self.fset is None:
            self.fset = lambda obj, value: setattr(obj, self.private_name, value)

    def __get__(self, instance: object | None, owner: type) -> T | Self:

        if instance is None:
            return self

        try:
            value = self.fget(instance)
        except AttributeError:
            value = None

        if value is None:
            value = self._default(instance) if callable(self._default) else self._default

            if value is not None:
                self.fset(instance, value)

        return value

    def __set__(self, instance: object, value: Any) -> None:

        if self._writeonce:

            try:
                current_value = self.fget(instance)
            except AttributeError:
                current_value = None

            if current_value is not None:
                raise AttributeError(f"{self.name} is a write-once setting and has already been set")

        if value is None:
            value = self._default(instance) if callable(self._default) else self._default

        if self._parser is not None:
            value = self._parser(instance, value)

        self.fset(instance, value)

    # ========== ========== ========== ========== ========== public methods
    def default(self, func: Getter) -> Self:
        """Decorator form of the ``default`` argument."""
        self._default = func
        return self

    def parser(self, func: Parser) -> Self:
        """Decorator form of the ``parser`` argument."""
        self._parser = func
        return self


# ========== ========== ========== ========== ========== ==========
def get_full_qualified_name(cls: type) -> str:
    """
    Return ``"<module>.<qualname>"`` for ``cls``, or only the qualname for
    builtins.

    Parameters
    ----------
    cls : type

    Returns
    -------
    str
    """
    module = getattr(cls, '__module__', None)
    qualname = getattr(cls, '__qualname__', None) or getattr(cls, '__name__', repr(cls))

    if module is None or module == 'builtins':
        return qualname

    return f"{module}.{qualname}"


def check_types(obj: Any,
                types: type | tuple[type, ...],
                can_be_none: bool = False,
                raise_error: bool = True) -> bool:
    """
    Check whether an object is an instance of expected types.

    Parameters
    ----------
    obj : object
        Value to test.
    types : type or tuple of type
        Expected type(s).
    can_be_none : bool, default False
        If True, ``None`` is accepted.
    raise_error : bool, default True
        If True, raise TypeError on mismatch instead of returning False.

    Returns
    -------
    bool

    Raises
    ------
    TypeError
        If ``raise_error`` is True and the check fails.

    Examples
    --------
    >>> check_types(1, int)
    True
    >>> check_types(None, int, can_be_none=True)
    True
    >>> check_types("x", int, raise_error=False)
    False
    """

    if can_be_none:
        if isinstance(types, tuple):
            types = (*types, None.__class__)
        else:
            types = (types, None.__class__)

    result = isinstance(obj, types)

    if not result and raise_error:

        if isinstance(types, tuple):
            cls_names = ', '.join(get_full_qualified_name(cls) for cls in types)
        else:
            cls_names = get_full_qualified_name(types)

        error = f"Expected instance of one of the following classes: {cls_names}. " \
                f"Given {get_full_qualified_name(type(obj))} instead"
        raise TypeError(error)

    return result


__all__ = [
    'Setting',
    'get_full_qualified_name',
    'check_types',
]
