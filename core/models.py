# TileCacheExporter/core/models.py
# -*- coding: utf-8 -*-

"""Data models used across the orchestration core, the exporter and the UI.

This module is intentionally small and UI-agnostic.
"""

from __future__ import annotations

import enum
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .constants import DEFAULT_IMAGE_FORMAT, TILE_SIZE_PX


@dataclass(frozen=True)
class GeoRegion:
    """Axis-aligned bounding box in map-projection units.

    Args:
        west: Minimum X in ``crs_authid``.
        south: Minimum Y in ``crs_authid``.
        east: Maximum X in ``crs_authid``.
        north: Maximum Y in ``crs_authid``.
        crs_authid: Authority id of the coordinate system (e.g. ``EPSG:3857``).
    """

    west: float
    south: float
    east: float
    north: float
    crs_authid: str = "EPSG:3857"

    def __post_init__(self) -> None:
        if self.west > self.east or self.south > self.north:
            raise ValueError(
                f"Invalid region: W/E/S/N={self.west}/{self.east}/{self.south}/{self.north}"
            )

    @classmethod
    def from_corners(
        cls,
        a: Tuple[float, float],
        b: Tuple[float, float],
        crs_authid: str = "EPSG:3857",
    ) -> "GeoRegion":
        """Build the box spanning two corner points given in any order."""
        (ax, ay), (bx, by) = a, b
        return cls(
            west=min(ax, bx),
            south=min(ay, by),
            east=max(ax, bx),
            north=max(ay, by),
            crs_authid=crs_authid,
        )

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    @property
    def center(self) -> Tuple[float, float]:
        return (self.west + self.east) / 2.0, (self.south + self.north) / 2.0


@dataclass(frozen=True)
class ExportParameters:
    """Everything the exporter needs to build a tile cache.

    Args:
        region: Area to export.
        min_scale: Coarsest scale denominator (largest number).
        max_scale: Finest scale denominator (smallest number).
        levels: Zoom levels to render, ascending.
        tile_size_px: Tile edge length in pixels.
        image_format: ``png`` or ``jpg``.
        tile_count: Number of tiles covering ``region`` over ``levels``.
    """

    region: GeoRegion
    min_scale: float
    max_scale: float
    levels: Tuple[int, ...]
    tile_size_px: int = TILE_SIZE_PX
    image_format: str = DEFAULT_IMAGE_FORMAT
    tile_count: int = 0


@dataclass(frozen=True)
class TileCache:
    """Result of a successful export: an XYZ tile directory.

    Args:
        path: Root directory containing ``<z>/<x>/<y>.<ext>`` tiles.
        region: Exported region.
        levels: Zoom levels present in the cache.
        tile_count: Number of tiles written.
        image_format: Tile image format.
    """

    path: str
    region: GeoRegion
    levels: Tuple[int, ...]
    tile_count: int
    image_format: str = DEFAULT_IMAGE_FORMAT

    def xyz_url(self) -> str:
        """Return the ``file://`` URL template of the tiles."""
        return Path(self.path).resolve().as_uri() + "/{z}/{x}/{y}." + self.image_format

    def uri(self) -> str:
        """Return a QGIS XYZ data source string for this cache."""
        zmin = min(self.levels) if self.levels else 0
        zmax = max(self.levels) if self.levels else 0
        return f"type=xyz&url={self.xyz_url()}&zmin={zmin}&zmax={zmax}"


class JobStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class CancelToken:
    """Cancel flag shared between the UI thread and the exporter thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Mark export as cancelled."""
        self._event.set()


@dataclass
class ExportJob:
    """One export run, owned by the job controller."""

    parameters: ExportParameters
    destination: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    artifact: Optional[TileCache] = None
    error: Optional[Exception] = None
    cancel_token: CancelToken = field(default_factory=CancelToken)
