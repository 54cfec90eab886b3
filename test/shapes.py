#  -*- coding: utf-8 -*-
"""
Module level classes, enumerations and functions used across the test suite.

Records and enumerations must be reachable by name to be pickled, so they
cannot be defined inside fixtures.
"""

from __future__ import annotations

import enum

from dataclasses import dataclass, field


# ========== ========== ========== ========== records
@dataclass
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class FrozenPoint:
    x: float
    y: float


@dataclass
class Polygon:
    name: str
    vertices: list = field(default_factory=list)


class Node:

    def __init__(self, value, next_node=None):
        self.value = value
        self.next_node = next_node


class Empty:
    pass


class Slotted:
    __slots__ = ('a', 'b')

    def __init__(self, a, b):
        self.a = a
        self.b = b


class Pair:
    """Rebuilt through ``__reduce__``."""

    def __init__(self, left, right):
        self.left = left
        self.right = right

    def __reduce__(self):
        return Pair, (self.left, self.right)

    def __eq__(self, other):
        return isinstance(other, Pair) and (self.left, self.right) == (other.left, other.right)


class Tally(list):
    """List subclass carrying an attribute."""

    def __init__(self, *args, label=''):
        super().__init__(*args)
        self.label = label


class Celsius:

    def __init__(self, degrees):
        self.degrees = degrees


def disassemble_celsius(value: Celsius) -> tuple:
    return (value.degrees,)


def assemble_celsius(degrees) -> Celsius:
    return Celsius(degrees)


# ========== ========== ========== ========== enumerations
class Color(enum.Enum):
    RED = 1
    GREEN = 2
    BLUE = 3


class Unit(enum.Enum):
    METER = 'm'
    SECOND = 's'


class Permission(enum.Flag):
    READ = 1
    WRITE = 2
    EXECUTE = 4


class Shape(enum.Enum):
    SQUARE = (4, 'equal')
    TRIANGLE = (3, 'any')


# ========== ========== ========== ========== functions
def scale(value, factor=2):
    return value * factor


def make_counter(start=0):
    count = start

    def counter():
        nonlocal count
        count += 1
        return count

    return counter


def make_factorial():

    def factorial(n):
        return 1 if n <= 1 else n * factorial(n - 1)

    return factorial


def make_pair_of_closures():
    shared = []

    def push(value):
        shared.append(value)
        return len(shared)

    def peek():
        return shared[-1] if shared else None

    return push, peek
