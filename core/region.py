# TileCacheExporter/core/region.py
# -*- coding: utf-8 -*-

"""Download region tracking.

The region is the box framed by two view-space corners inset from the
viewport edges, converted to map coordinates on every viewport change.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from .constants import (
    REGION_INSET_BOTTOM_PX,
    REGION_INSET_LEFT_PX,
    REGION_INSET_RIGHT_PX,
    REGION_INSET_TOP_PX,
)
from .errors import RegionUndefinedError
from .models import GeoRegion

logger = logging.getLogger(__name__)

RegionOverlay = Callable[[GeoRegion], None]


class RegionTracker:
    """Derive the export region from the current viewport.

    ``viewport`` objects passed in must provide ``width``, ``height`` (pixels),
    ``crs_authid`` and ``to_map(x_px, y_px) -> (x, y)``.
    """

    def __init__(
        self,
        *,
        inset_left_px: int = REGION_INSET_LEFT_PX,
        inset_top_px: int = REGION_INSET_TOP_PX,
        inset_right_px: int = REGION_INSET_RIGHT_PX,
        inset_bottom_px: int = REGION_INSET_BOTTOM_PX,
        overlay: Optional[RegionOverlay] = None,
    ) -> None:
        self.inset_left_px = int(inset_left_px)
        self.inset_top_px = int(inset_top_px)
        self.inset_right_px = int(inset_right_px)
        self.inset_bottom_px = int(inset_bottom_px)
        self.overlay = overlay
        self._region: Optional[GeoRegion] = None

    @property
    def region(self) -> Optional[GeoRegion]:
        return self._region

    def require_region(self) -> GeoRegion:
        if self._region is None:
            raise RegionUndefinedError("Map content has not finished loading.")
        return self._region

    def on_viewport_changed(self, viewport, map_ready: bool) -> Optional[GeoRegion]:
        """Recompute the region for a new viewport state.

        Returns:
            The new region, or ``None`` while the map is not ready (the
            previous region and overlay are left unchanged).
        """
        if not map_ready:
            return None

        (min_x, min_y), (max_x, max_y) = self.corner_pixels(int(viewport.width), int(viewport.height))
        region = GeoRegion.from_corners(
            viewport.to_map(min_x, min_y),
            viewport.to_map(max_x, max_y),
            crs_authid=getattr(viewport, "crs_authid", "EPSG:3857"),
        )
        self._region = region

        if self.overlay is not None:
            self.overlay(region)
        return region

    def corner_pixels(self, width: int, height: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        """Return upper-left and lower-right corners of the selection box.

        Insets are scaled down proportionally when the viewport is too small
        to hold them.
        """
        left, right = _fit(self.inset_left_px, self.inset_right_px, width)
        top, bottom = _fit(self.inset_top_px, self.inset_bottom_px, height)
        return (left, top), (width - right, height - bottom)


def _fit(start: int, end: int, size: int) -> Tuple[int, int]:
    total = start + end
    if size <= 0:
        return 0, 0
    if total < size:
        return start, end
    logger.debug("Viewport of %s px too small for insets %s/%s; shrinking", size, start, end)
    # Keep at least one pixel between the corners.
    factor = (size - 1) / float(total) if total else 0.0
    return int(start * factor), int(end * factor)
