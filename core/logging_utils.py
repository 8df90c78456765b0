# TileCacheExporter/core/logging_utils.py
# -*- coding: utf-8 -*-

"""Attach and detach log handlers on the core logger tree."""

from __future__ import annotations

import logging
from typing import Callable


def install_handler(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int = logging.INFO,
) -> Callable[[], None]:
    """Add ``handler`` to ``logger`` and set ``level``.

    Returns:
        A function that removes the handler and restores the previous level.
    """
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(level)

    def restore() -> None:
        logger.removeHandler(handler)
        logger.setLevel(previous)

    return restore
