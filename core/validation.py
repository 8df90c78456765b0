# TileCacheExporter/core/validation.py
# -*- coding: utf-8 -*-

"""Shared validation helpers for UI, resolver and exporter."""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Iterable, Tuple

from .constants import (
    IMAGE_FORMATS,
    MAX_ZOOM,
    MIN_ZOOM,
    TILE_COUNT_STRONG,
    TILE_COUNT_WARN,
)
from .errors import ValidationError


def validate_scale(scale: float) -> None:
    """Ensure a scale denominator is a positive finite number."""
    try:
        value = float(scale)
    except (TypeError, ValueError):
        raise ValidationError("ERR_VALIDATION_SCALE_INVALID", f"Scale is not a number: {scale!r}")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("ERR_VALIDATION_SCALE_INVALID", f"Invalid scale: {scale}")


def validate_levels(levels: Iterable[int]) -> None:
    """Ensure zoom levels are non-empty and inside the supported range."""
    levels = list(levels)
    if not levels:
        raise ValidationError("ERR_VALIDATION_LEVELS_EMPTY", "No zoom levels selected.")
    bad = [z for z in levels if not (MIN_ZOOM <= int(z) <= MAX_ZOOM)]
    if bad:
        raise ValidationError(
            "ERR_VALIDATION_LEVELS_RANGE",
            f"Zoom levels out of range {MIN_ZOOM}..{MAX_ZOOM}: {bad}",
        )


def validate_image_format(image_format: str) -> None:
    if image_format not in IMAGE_FORMATS:
        raise ValidationError(
            "ERR_VALIDATION_FORMAT",
            f"Unsupported tile format: {image_format or '<none>'}",
        )


def validate_tile_count(tile_count: int) -> None:
    """Validate strong tile count limit."""
    if tile_count >= TILE_COUNT_STRONG:
        raise ValidationError(
            "ERR_VALIDATION_TOO_MANY_TILES",
            f"Tile cache too large: {tile_count:,} tiles (limit {TILE_COUNT_STRONG:,})",
        )


def tile_count_status(tile_count: int) -> Tuple[str, str]:
    """Return ("ok"/"warn"/"strong", message) for a tile count."""
    if tile_count >= TILE_COUNT_STRONG:
        return "strong", f"Tile count exceeds hard limit ({tile_count:,} tiles)."
    if tile_count >= TILE_COUNT_WARN:
        return "warn", f"Very large tile cache ({tile_count:,} tiles) – may be slow or fail."
    return "ok", ""


def validate_output_dir(destination: str) -> None:
    """Ensure the tile cache directory can be created or reused."""
    if not destination:
        raise ValidationError("ERR_VALIDATION_OUTPUT_MISSING", "No destination provided.")

    path_obj = Path(destination)
    if path_obj.exists() and not path_obj.is_dir():
        raise ValidationError(
            "ERR_VALIDATION_OUTPUT_DIR",
            f"Destination is a file: {path_obj}",
        )

    # Walk up to the first existing ancestor; that one must be writable.
    parent = path_obj
    while not parent.exists():
        if parent.parent == parent:
            break
        parent = parent.parent
    if not parent.is_dir():
        raise ValidationError(
            "ERR_VALIDATION_OUTPUT_DIR",
            f"Destination parent is not a directory: {parent}",
        )
    if not os.access(parent, os.W_OK):
        raise ValidationError(
            "ERR_VALIDATION_OUTPUT_DIR",
            f"Destination not writable: {parent}",
        )
