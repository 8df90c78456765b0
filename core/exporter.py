# TileCacheExporter/core/exporter.py
# -*- coding: utf-8 -*-

"""Tile cache exporter (UI-agnostic, runs on a worker thread).

Renders a QGIS layer into an XYZ tile directory ``<dest>/<z>/<x>/<y>.<ext>``.

Notes:
- Tiles are rendered with QgsMapRendererCustomPainterJob (synchronous, no
  event loop needed) in EPSG:3857.
- QImage -> numpy via frombuffer with a copy; GDAL writes through a MEM
  dataset and CreateCopy (PNG/JPEG drivers have no Create()).
- Cancel support (CancelToken) is checked between tiles and while backing off.
- Fully transparent tiles inside the layer extent are retried with jittered
  exponential backoff; an export where every tile is blank fails.
"""

from __future__ import annotations

import json
import logging
import os
import random
import time
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
from osgeo import gdal
from qgis.PyQt.QtCore import QSize
from qgis.PyQt.QtGui import QColor, QImage, QPainter
from qgis.core import (
    QgsCoordinateReferenceSystem,
    QgsCoordinateTransform,
    QgsMapLayer,
    QgsMapRendererCustomPainterJob,
    QgsMapSettings,
    QgsProject,
    QgsRectangle,
)

from .cleanup import purge_working_directory
from .constants import (
    METADATA_FILE,
    TILE_BASE_BACKOFF_S,
    TILE_MAX_BACKOFF_S,
    TILE_MAX_RETRIES,
    TILE_SIZE_PX,
    DEFAULT_IMAGE_FORMAT,
)
from .errors import CancelledError, ExportError, ValidationError
from .models import CancelToken, ExportParameters, GeoRegion, TileCache
from .tiling import (
    default_export_parameters,
    iter_tiles,
    region_to_lonlat,
    tile_bounds_3857,
)
from .validation import (
    tile_count_status,
    validate_image_format,
    validate_levels,
    validate_output_dir,
    validate_tile_count,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str, dict[str, Any]], None]


class TileCacheExporter:
    """Render a layer and export it as an XYZ tile cache.

    Args:
        layer: QGIS layer to render.
        tile_size_px: Tile edge length.
        image_format: ``png`` or ``jpg``.
    """

    RATE_LIMIT_S = 0.0

    def __init__(
        self,
        layer: QgsMapLayer,
        *,
        tile_size_px: int = TILE_SIZE_PX,
        image_format: str = DEFAULT_IMAGE_FORMAT,
    ) -> None:
        self.layer = layer
        self.tile_size_px = int(tile_size_px)
        self.image_format = image_format

    def create_default_parameters(
        self,
        region: GeoRegion,
        min_scale: float,
        max_scale: float,
    ) -> ExportParameters:
        """Default export parameters for ``region`` between two scales."""
        return default_export_parameters(
            region,
            min_scale,
            max_scale,
            tile_size_px=self.tile_size_px,
            image_format=self.image_format,
        )

    def export_tile_cache(
        self,
        params: ExportParameters,
        destination: str,
        *,
        progress_cb: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> TileCache:
        """Export the tiles of ``params`` into ``destination``.

        Args:
            params: Export parameters.
            destination: Tile cache root directory (created if missing).
            progress_cb: Callback(percent, message_key, message_args).
            cancel_token: Shared cancel token from the controller.

        Returns:
            The written tile cache.

        Raises:
            ValidationError: On invalid parameters.
            CancelledError: If cancelled by user.
            ExportError: On export failure.
        """
        self._report(progress_cb, 2, "STEP_VALIDATE", {"step": 1, "total": 5})
        self._validate(params, destination)
        self._check_cancel(cancel_token)

        try:
            return self._export(params, destination, progress_cb=progress_cb, cancel_token=cancel_token)
        except (CancelledError, ExportError):
            self._discard_partial(destination)
            raise
        except Exception as ex:
            self._discard_partial(destination)
            raise ExportError("ERR_EXPORT_FAILED", str(ex))

    def _export(
        self,
        params: ExportParameters,
        destination: str,
        *,
        progress_cb: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> TileCache:
        self._report(progress_cb, 5, "STEP_PREPARE", {"step": 2, "total": 5})
        render_crs = QgsCoordinateReferenceSystem("EPSG:3857")
        layer_extent = self._layer_extent_in(render_crs)

        status, _msg = tile_count_status(params.tile_count)
        if status == "warn":
            self._report(progress_cb, 5, "WARN_LARGE_EXPORT", {"tiles": params.tile_count})

        dest = Path(destination)
        dest.mkdir(parents=True, exist_ok=True)

        total = max(1, params.tile_count)
        done = 0
        blank_tiles = 0
        current_level = None
        ext = params.image_format

        for z, x, y in iter_tiles(params.region, params.levels):
            self._check_cancel(cancel_token)

            if z != current_level:
                current_level = z
                self._report(
                    progress_cb,
                    10 + int((done / float(total)) * 85),
                    "STEP_RENDER_LEVEL",
                    {"step": 3, "total": 5, "level": z},
                )

            xmin, ymin, xmax, ymax = tile_bounds_3857(z, x, y)
            tile_extent = QgsRectangle(xmin, ymin, xmax, ymax)
            overlaps = layer_extent is None or tile_extent.intersects(layer_extent)

            arr, was_blank = self._render_with_retry(
                tile_extent,
                render_crs=render_crs,
                size_px=params.tile_size_px,
                retry_blank=overlaps,
                percent=10 + int((done / float(total)) * 85),
                progress_cb=progress_cb,
                cancel_token=cancel_token,
            )
            if was_blank:
                blank_tiles += 1

            tile_path = dest / str(z) / str(x) / f"{y}.{ext}"
            tile_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_tile(str(tile_path), arr, ext)

            done += 1
            self._report(
                progress_cb,
                10 + int((done / float(total)) * 85),
                "STEP_WRITE_TILES",
                {"step": 4, "total": 5, "done": done, "count": params.tile_count},
            )
            if self.RATE_LIMIT_S:
                self._wait(self.RATE_LIMIT_S, cancel_token=cancel_token)

        if done and blank_tiles == done:
            raise ExportError(
                "ERR_RENDER_EMPTY",
                "All tiles rendered fully transparent. Likely service limits/timeouts/throttling.",
            )

        self._check_cancel(cancel_token)
        self._report(progress_cb, 96, "STEP_WRITE_METADATA", {"step": 5, "total": 5})
        self._write_metadata(dest, params, tile_count=done)

        self._report(progress_cb, 100, "STEP_DONE", {"step": 5, "total": 5})
        logger.info("Wrote %d tiles (%d blank) to %s", done, blank_tiles, dest)
        return TileCache(
            path=str(dest),
            region=params.region,
            levels=tuple(params.levels),
            tile_count=done,
            image_format=ext,
        )

    def _validate(self, params: ExportParameters, destination: str) -> None:
        """Validate user input and parameters.

        Raises:
            ValidationError: If any parameter is invalid.
        """
        validate_output_dir(destination)

        if self.layer is None:
            raise ValidationError("ERR_VALIDATION_LAYER_MISSING", "No layer provided.")
        if params.tile_size_px <= 0:
            raise ValidationError(
                "ERR_VALIDATION_SIZE_INVALID",
                f"Invalid tile size: {params.tile_size_px}",
            )
        validate_levels(params.levels)
        validate_image_format(params.image_format)
        validate_tile_count(params.tile_count)

        if params.region.width <= 0 or params.region.height <= 0:
            raise ValidationError(
                "ERR_VALIDATION_EXTENT_INVALID",
                (
                    f"Invalid region: W/E/S/N={params.region.west}/{params.region.east}/"
                    f"{params.region.south}/{params.region.north}"
                ),
            )

    def _layer_extent_in(self, crs: QgsCoordinateReferenceSystem) -> Optional[QgsRectangle]:
        """Layer extent in ``crs`` or ``None`` if it cannot be determined."""
        try:
            extent = self.layer.extent()
            if self.layer.crs().isValid() and self.layer.crs() != crs:
                tr = QgsCoordinateTransform(self.layer.crs(), crs, QgsProject.instance())
                return tr.transformBoundingBox(extent)
            return extent
        except Exception as ex:
            logger.debug("Layer extent unavailable: %s", ex)
            return None

    def _render_with_retry(
        self,
        tile_extent: QgsRectangle,
        *,
        render_crs: QgsCoordinateReferenceSystem,
        size_px: int,
        retry_blank: bool,
        percent: int,
        progress_cb: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> tuple[np.ndarray, bool]:
        arr: Optional[np.ndarray] = None
        was_blank = False

        for attempt in range(TILE_MAX_RETRIES + 1):
            self._check_cancel(cancel_token)

            try:
                arr = self._render_tile_rgba(tile_extent, render_crs=render_crs, size_px=size_px)
            except Exception as ex:
                if attempt < TILE_MAX_RETRIES:
                    self._backoff(attempt, percent, progress_cb, cancel_token)
                    continue
                raise ExportError("ERR_RENDER_TILE_FAILED", str(ex))

            sy = max(1, size_px // 64)
            was_blank = int(arr[::sy, ::sy, 3].max()) == 0
            if not was_blank:
                break

            if attempt < TILE_MAX_RETRIES and retry_blank:
                self._backoff(attempt, percent, progress_cb, cancel_token)
                continue
            break

        if arr is None:
            raise ExportError("ERR_RENDER_TILE_FAILED", "Tile render returned no buffer.")
        return arr, was_blank

    def _backoff(
        self,
        attempt: int,
        percent: int,
        progress_cb: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> None:
        backoff = min(TILE_MAX_BACKOFF_S, TILE_BASE_BACKOFF_S * (2**attempt))
        backoff *= (0.8 + 0.4 * random.random())
        self._report(
            progress_cb,
            percent,
            "WARN_TILE_RETRY",
            {"attempt": attempt + 1, "max": TILE_MAX_RETRIES, "seconds": backoff},
        )
        self._wait(backoff, cancel_token=cancel_token)

    def _render_tile_rgba(
        self,
        tile_extent: QgsRectangle,
        *,
        render_crs: QgsCoordinateReferenceSystem,
        size_px: int,
    ) -> np.ndarray:
        """Render one tile into a detached RGBA array (size_px, size_px, 4)."""
        map_settings = QgsMapSettings()
        map_settings.setBackgroundColor(QColor(0, 0, 0, 0))
        map_settings.setLayers([self.layer])
        map_settings.setExtent(tile_extent)
        map_settings.setOutputSize(QSize(size_px, size_px))
        map_settings.setDestinationCrs(render_crs)

        img = QImage(size_px, size_px, QImage.Format_RGBA8888)
        img.fill(QColor(0, 0, 0, 0))
        painter = QPainter(img)
        try:
            job = QgsMapRendererCustomPainterJob(map_settings, painter)
            job.renderSynchronously()
        finally:
            painter.end()

        ptr = img.bits()
        byte_count = img.sizeInBytes() if hasattr(img, "sizeInBytes") else img.byteCount()
        ptr.setsize(byte_count)

        buf = np.frombuffer(ptr, dtype=np.uint8).copy()
        return buf.reshape(size_px, size_px, 4)

    def _write_tile(self, path: str, arr_rgba: np.ndarray, image_format: str) -> None:
        """Write an RGBA array as PNG, or as RGB-on-white JPEG."""
        if image_format == "jpg":
            arr = self._rgba_to_rgb_on_white(arr_rgba)
            driver_name = "JPEG"
        else:
            arr = arr_rgba
            driver_name = "PNG"

        height, width, bands = arr.shape
        mem = gdal.GetDriverByName("MEM").Create("", width, height, bands, gdal.GDT_Byte)
        if mem is None:
            raise ExportError("ERR_GDAL_CREATE_FAILED", "MEM driver Create returned None.")

        driver = gdal.GetDriverByName(driver_name)
        if driver is None:
            raise ExportError("ERR_GDAL_DRIVER_MISSING", f"GDAL driver not found: {driver_name}")

        try:
            for i in range(bands):
                mem.GetRasterBand(i + 1).WriteArray(arr[:, :, i])
            out = driver.CreateCopy(path, mem, 0, options=self._gdal_create_options(driver_name))
            if out is None:
                raise ExportError("ERR_GDAL_CREATE_FAILED", f"Failed to write tile: {path}")
            out = None
        finally:
            mem = None

    def _write_metadata(self, dest: Path, params: ExportParameters, *, tile_count: int) -> None:
        west, south, east, north = region_to_lonlat(params.region)
        metadata = {
            "format": params.image_format,
            "scheme": "xyz",
            "tile_size": params.tile_size_px,
            "minzoom": min(params.levels),
            "maxzoom": max(params.levels),
            "bounds": [west, south, east, north],
            "min_scale": params.min_scale,
            "max_scale": params.max_scale,
            "tile_count": tile_count,
            "source": self.layer.name() if hasattr(self.layer, "name") else "",
        }
        try:
            (dest / METADATA_FILE).write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        except OSError as ex:
            raise ExportError("ERR_METADATA_WRITE_FAILED", f"Failed to write metadata in '{dest}': {ex}")

    def _discard_partial(self, destination: str) -> None:
        """Remove a partially written cache; failures are only logged."""
        if not os.path.isdir(destination):
            return
        if purge_working_directory(destination):
            try:
                os.rmdir(destination)
            except OSError as ex:
                logger.warning("Could not remove %s: %s", destination, ex)

    def _check_cancel(self, token: Optional[CancelToken]) -> None:
        if token is not None and token.cancelled:
            raise CancelledError("ERR_CANCELLED", "Cancelled by user.")

    def _report(
        self,
        cb: Optional[ProgressCallback],
        percent: int,
        key: str,
        args: Optional[dict[str, Any]] = None,
    ) -> None:
        if cb is not None:
            cb(int(percent), key, args or {})

    def _wait(self, seconds: float, *, cancel_token: Optional[CancelToken]) -> None:
        """Sleep in small steps while honoring cancellation."""
        end_t = time.monotonic() + max(0.0, float(seconds))
        while time.monotonic() < end_t:
            self._check_cancel(cancel_token)
            time.sleep(0.05)

    def _gdal_create_options(self, driver_name: str) -> list[str]:
        """Return GDAL CreateCopy() options per driver."""
        if driver_name == "JPEG":
            return ["QUALITY=90"]
        # PNG: defaults are fine (lossless).
        return []

    def _rgba_to_rgb_on_white(self, arr_rgba: np.ndarray) -> np.ndarray:
        """Composite RGBA onto a white background; return RGB uint8 (for JPEG)."""
        if arr_rgba.ndim != 3 or arr_rgba.shape[2] != 4:
            raise ValueError("Expected RGBA array (H, W, 4)")

        rgb = arr_rgba[:, :, :3].astype(np.float32)
        a = (arr_rgba[:, :, 3:4].astype(np.float32)) / 255.0
        white = np.full_like(rgb, 255.0, dtype=np.float32)
        out = rgb * a + white * (1.0 - a)
        return np.clip(out, 0.0, 255.0).astype(np.uint8)
