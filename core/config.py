# TileCacheExporter/core/config.py
# -*- coding: utf-8 -*-

"""Runtime configuration of the exporter.

Values usually come from ``QSettings`` and may arrive as strings, so
``ExportConfig.from_mapping`` parses and validates them.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    DEFAULT_IMAGE_FORMAT,
    DEFAULT_MAX_SCALE,
    REGION_INSET_BOTTOM_PX,
    REGION_INSET_LEFT_PX,
    REGION_INSET_RIGHT_PX,
    REGION_INSET_TOP_PX,
    TILE_CACHE_FOLDER,
    TILE_SIZE_PX,
)
from .errors import ValidationError
from .validation import validate_image_format, validate_scale


def default_working_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "tile_cache_exporter")


@dataclass(frozen=True)
class ExportConfig:
    """Settings shared by the workflow and the plugin.

    Args:
        working_dir: Directory the exporter writes into and cleanup purges.
        cache_folder: Sub folder of ``working_dir`` holding tile caches.
        inset_left_px: Selection box inset from the left viewport edge.
        inset_top_px: Selection box inset from the top viewport edge.
        inset_right_px: Selection box inset from the right viewport edge.
        inset_bottom_px: Selection box inset from the bottom viewport edge.
        default_max_scale: Finest scale used when the layer sets no limit.
        image_format: Tile image format (``png``/``jpg``).
        tile_size_px: Tile edge length.
        purge_on_suspend: Clear ``working_dir`` when the session is suspended.
    """

    working_dir: str
    cache_folder: str = TILE_CACHE_FOLDER
    inset_left_px: int = REGION_INSET_LEFT_PX
    inset_top_px: int = REGION_INSET_TOP_PX
    inset_right_px: int = REGION_INSET_RIGHT_PX
    inset_bottom_px: int = REGION_INSET_BOTTOM_PX
    default_max_scale: float = DEFAULT_MAX_SCALE
    image_format: str = DEFAULT_IMAGE_FORMAT
    tile_size_px: int = TILE_SIZE_PX
    purge_on_suspend: bool = True

    @property
    def cache_root(self) -> Path:
        return Path(self.working_dir) / self.cache_folder

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]] = None) -> "ExportConfig":
        """Build a config from raw settings values, defaults for missing keys.

        Raises:
            ValidationError: If a value cannot be parsed or is out of range.
        """
        values = dict(values or {})
        defaults = cls(working_dir=default_working_dir())

        def pick(key: str) -> Any:
            value = values.get(key)
            if value is None or value == "":
                return getattr(defaults, key)
            return value

        try:
            insets = {
                key: int(pick(key))
                for key in ("inset_left_px", "inset_top_px", "inset_right_px", "inset_bottom_px")
            }
            tile_size_px = int(pick("tile_size_px"))
            default_max_scale = float(pick("default_max_scale"))
        except (TypeError, ValueError) as ex:
            raise ValidationError("ERR_VALIDATION_CONFIG", str(ex))

        if any(v < 0 for v in insets.values()):
            raise ValidationError("ERR_VALIDATION_CONFIG", f"Negative inset: {insets}")
        if tile_size_px not in (256, 512):
            raise ValidationError("ERR_VALIDATION_CONFIG", f"Unsupported tile size: {tile_size_px}")
        validate_scale(default_max_scale)

        image_format = str(pick("image_format")).lower().lstrip(".")
        if image_format == "jpeg":
            image_format = "jpg"
        validate_image_format(image_format)

        cache_folder = str(pick("cache_folder")).strip()
        if not cache_folder or Path(cache_folder).name != cache_folder:
            raise ValidationError("ERR_VALIDATION_CONFIG", f"Invalid cache folder: {cache_folder!r}")

        return cls(
            working_dir=str(pick("working_dir")),
            cache_folder=cache_folder,
            default_max_scale=default_max_scale,
            image_format=image_format,
            tile_size_px=tile_size_px,
            purge_on_suspend=_to_bool(pick("purge_on_suspend")),
            **insets,
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
