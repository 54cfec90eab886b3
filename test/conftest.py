#  -*- coding: utf-8 -*-

from __future__ import annotations

import uuid

import pytest

from enredo import Pickler, UnitContext


# ========== ========== ========== ========== Fixtures
@pytest.fixture
def context() -> UnitContext:
    """A fresh unit context, private to the test."""
    context = UnitContext(f"test-{uuid.uuid4().hex}")
    yield context
    context.clear()


@pytest.fixture
def other_context() -> UnitContext:
    """A second fresh context, standing for another process."""
    context = UnitContext(f"test-{uuid.uuid4().hex}")
    yield context
    context.clear()


@pytest.fixture
def pickler(context: UnitContext) -> Pickler:
    return Pickler(context=context, debug=True)


@pytest.fixture
def roundtrip(pickler: Pickler):
    """Dump and load a value with the same pickler."""

    def _roundtrip(obj):
        return pickler.loads(pickler.dumps(obj))

    return _roundtrip
