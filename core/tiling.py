# TileCacheExporter/core/tiling.py
# -*- coding: utf-8 -*-

"""Web Mercator tiling helpers (UI-agnostic).

Zoom levels follow the XYZ scheme: level ``z`` has ``2**z`` columns and rows,
row 0 at the north edge.
"""

from __future__ import annotations

import math
from typing import Iterable, Iterator, Tuple

from .constants import (
    DEFAULT_IMAGE_FORMAT,
    EARTH_RADIUS_M,
    MAX_MERCATOR_LAT,
    MAX_ZOOM,
    MIN_ZOOM,
    TILE_SIZE_PX,
    ZOOM0_SCALE,
)
from .errors import ValidationError
from .models import ExportParameters, GeoRegion
from .validation import validate_scale

TileRange = Tuple[int, int, int, int]

_ORIGIN_SHIFT = math.pi * EARTH_RADIUS_M
_EPS = 1e-9


def scale_for_zoom(zoom: int) -> float:
    """Scale denominator of a zoom level."""
    return ZOOM0_SCALE / (2 ** int(zoom))


def zoom_for_scale(scale: float, *, mode: str = "coarser") -> int:
    """Return the zoom level matching ``scale``.

    Args:
        scale: Scale denominator.
        mode: ``coarser`` picks the level whose scale is >= ``scale``,
            ``finer`` the level whose scale is <= ``scale``.
    """
    validate_scale(scale)
    exact = math.log2(ZOOM0_SCALE / float(scale))
    if mode == "coarser":
        zoom = math.floor(exact + _EPS)
    elif mode == "finer":
        zoom = math.ceil(exact - _EPS)
    else:
        raise ValueError(f"Unknown mode: {mode}")
    return max(MIN_ZOOM, min(MAX_ZOOM, int(zoom)))


def mercator_to_lonlat(x: float, y: float) -> Tuple[float, float]:
    lon = x / _ORIGIN_SHIFT * 180.0
    lat = math.degrees(2.0 * math.atan(math.exp(y / EARTH_RADIUS_M)) - math.pi / 2.0)
    return lon, lat


def lonlat_to_mercator(lon: float, lat: float) -> Tuple[float, float]:
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    x = lon * _ORIGIN_SHIFT / 180.0
    y = math.log(math.tan((90.0 + lat) * math.pi / 360.0)) * EARTH_RADIUS_M
    return x, y


def region_to_lonlat(region: GeoRegion) -> Tuple[float, float, float, float]:
    """Return ``(west, south, east, north)`` of ``region`` in degrees."""
    authid = (region.crs_authid or "").upper()
    if authid == "EPSG:4326":
        west, south, east, north = region.west, region.south, region.east, region.north
    elif authid in ("EPSG:3857", "EPSG:900913"):
        west, south = mercator_to_lonlat(region.west, region.south)
        east, north = mercator_to_lonlat(region.east, region.north)
    else:
        raise ValidationError(
            "ERR_VALIDATION_REGION_CRS",
            f"Unsupported region CRS: {region.crs_authid or '<none>'}",
        )

    west = max(-180.0, min(180.0, west))
    east = max(-180.0, min(180.0, east))
    south = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, south))
    north = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, north))
    return west, south, east, north


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> Tuple[int, int]:
    """Convert lon/lat to the XYZ tile containing it."""
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    n = 2 ** zoom
    lat_rad = math.radians(lat)
    x = int((lon + 180.0) / 360.0 * n)
    y = int((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return max(0, min(n - 1, x)), max(0, min(n - 1, y))


def tile_range(region: GeoRegion, zoom: int) -> TileRange:
    """Inclusive ``(x_min, y_min, x_max, y_max)`` of tiles covering ``region``."""
    west, south, east, north = region_to_lonlat(region)
    x_min, y_min = lonlat_to_tile(west, north, zoom)
    x_max, y_max = lonlat_to_tile(east, south, zoom)
    return x_min, y_min, x_max, y_max


def iter_tiles(region: GeoRegion, levels: Iterable[int]) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(z, x, y)`` for every tile covering ``region``."""
    for z in levels:
        x_min, y_min, x_max, y_max = tile_range(region, z)
        for x in range(x_min, x_max + 1):
            for y in range(y_min, y_max + 1):
                yield z, x, y


def count_tiles(region: GeoRegion, levels: Iterable[int]) -> int:
    total = 0
    for z in levels:
        x_min, y_min, x_max, y_max = tile_range(region, z)
        total += (x_max - x_min + 1) * (y_max - y_min + 1)
    return total


def tile_bounds_3857(zoom: int, x: int, y: int) -> Tuple[float, float, float, float]:
    """Return ``(xmin, ymin, xmax, ymax)`` of a tile in EPSG:3857 metres."""
    size = 2.0 * _ORIGIN_SHIFT / (2 ** zoom)
    xmin = -_ORIGIN_SHIFT + x * size
    ymax = _ORIGIN_SHIFT - y * size
    return xmin, ymax - size, xmin + size, ymax


def default_export_parameters(
    region: GeoRegion,
    min_scale: float,
    max_scale: float,
    *,
    tile_size_px: int = TILE_SIZE_PX,
    image_format: str = DEFAULT_IMAGE_FORMAT,
) -> ExportParameters:
    """Default parameters for exporting ``region`` between two scales.

    The scale bounds are snapped outward to whole zoom levels, so the
    returned ``min_scale``/``max_scale`` bracket the requested range.

    Raises:
        ValidationError: If a scale is invalid or the range reaches past
            the zoom levels ``MIN_ZOOM``..``MAX_ZOOM``.
    """
    validate_scale(min_scale)
    validate_scale(max_scale)
    coarse, fine = max(float(min_scale), float(max_scale)), min(float(min_scale), float(max_scale))

    coarsest, finest = scale_for_zoom(MIN_ZOOM), scale_for_zoom(MAX_ZOOM)
    if coarse > coarsest * (1 + _EPS) or fine < finest * (1 - _EPS):
        raise ValidationError(
            "ERR_VALIDATION_SCALE_INVALID",
            f"Scale range 1:{fine:,.0f} - 1:{coarse:,.0f} exceeds tile levels "
            f"{MIN_ZOOM}..{MAX_ZOOM} (1:{finest:,.0f} - 1:{coarsest:,.0f})",
        )

    z_min = zoom_for_scale(coarse, mode="coarser")
    z_max = zoom_for_scale(fine, mode="finer")
    levels = tuple(range(z_min, z_max + 1))

    return ExportParameters(
        region=region,
        min_scale=scale_for_zoom(z_min),
        max_scale=scale_for_zoom(z_max),
        levels=levels,
        tile_size_px=int(tile_size_px),
        image_format=image_format,
        tile_count=count_tiles(region, levels),
    )
