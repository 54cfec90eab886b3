#  -*- coding: utf-8 -*-
"""
Depth-counted queue of deferred writes.
"""

from __future__ import annotations

import logging

from typing import Any, Callable


logger = logging.getLogger(__name__)


Action = Callable[[], Any]


class TrailerQueue:
    """
    Deferred actions flushed once, when the outermost call returns.

    Serializing a by-value unit pushes a *trailer* that writes the unit's
    module data, and a *static initializer* that writes the class data of
    the unit. Neither may run while the surrounding object graph is still
    being walked. ``run_with_trailers`` counts nesting depth, and only the
    outermost call flushes the queue.

    Flush order:

    1. every queued trailer, last pushed first,
    2. then the next static initializer, first pushed first.

    These steps repeat until both queues are empty. Work pushed by a flushed
    action is therefore flushed in the same pass.

    Examples
    --------
    >>> queue = TrailerQueue()
    >>> log = []
    >>> def body():
    ...     queue.push_trailer(lambda: log.append('a'), lambda: log.append('s'))
    ...     queue.push_trailer(lambda: log.append('b'))
    >>> queue.run_with_trailers(body)
    >>> log
    ['b', 'a', 's']
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self) -> None:
        self._trailers: list[Action] = []
        self._statics: list[Action] = []
        self._depth: int = 0

    def __len__(self) -> int:
        return len(self._trailers) + len(self._statics)

    # ========== ========== ========== ========== ========== private methods
    def _flush(self) -> None:

        while self._trailers or self._statics:

            while self._trailers:
                self._trailers.pop()()

            if self._statics:
                self._statics.pop(0)()

    # ========== ========== ========== ========== ========== public methods
    def run_with_trailers(self, action: Callable[..., Any], *args: Any) -> Any:
        """
        Run ``action(*args)``, then flush the queue if this is the
        outermost call.

        Returns
        -------
        object
            Whatever ``action`` returns.
        """
        depth = self._depth
        self._depth += 1

        try:
            result = action(*args)

            if depth == 0 and len(self):
                logger.debug("Flushing %d trailers and %d static initializers",
                             len(self._trailers), len(self._statics))
                self._flush()

        finally:
            self._depth -= 1

        return result

    def push_trailer(self, trailer: Action, static_init: Action | None = None) -> None:
        """Queue a trailer and, optionally, its static initializer."""
        self._trailers.append(trailer)

        if static_init is not None:
            self._statics.append(static_init)

    # ---------- ---------- ---------- ---------- ---------- properties
    @property
    def depth(self) -> int:
        return self._depth


__all__ = [
    'TrailerQueue',
]
