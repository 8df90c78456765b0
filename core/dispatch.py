# TileCacheExporter/core/dispatch.py
# -*- coding: utf-8 -*-

"""Dispatchers that run orchestrator continuations on one thread.

Worker threads never touch controller state directly; they ``post`` a
callback and the orchestrating thread runs it.
"""

from __future__ import annotations

import logging
import queue
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ImmediateDispatcher:
    """Run callbacks inline (single-threaded use only)."""

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        fn(*args)


class QueuedDispatcher:
    """Collect callbacks from any thread; ``drain`` runs them in FIFO order."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[tuple]" = queue.Queue()

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.put((fn, args))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Run every queued callback, including ones posted while draining.

        Returns:
            Number of callbacks run.
        """
        count = 0
        while True:
            try:
                fn, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            fn(*args)
            count += 1
