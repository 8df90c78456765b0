# TileCacheExporter/TileCacheExporter.py
# -*- coding: utf-8 -*-
"""
Main plugin implementation for the TileCacheExporter QGIS plugin.

Notes:
    - A red box on the map canvas frames the download region; it follows
      every extent change once a source layer is loaded.
    - "Export tile cache" resolves export parameters from the canvas scale
      and the layer's maximum scale, then runs the export on a worker thread.
    - The result is shown in a preview window; closing it returns to
      selection mode.
    - The working directory is purged when the project is cleared and when
      the plugin is unloaded.
"""

import logging
import os
from typing import Any, Callable, Optional

from qgis.PyQt.QtCore import QSettings, QTranslator, QCoreApplication
from qgis.PyQt.QtGui import QIcon
from qgis.PyQt.QtWidgets import QAction, QMessageBox

from qgis.core import QgsMapLayer, QgsProject

from .TileCacheExporter_dialog import (
    CanvasViewport,
    PreviewDialog,
    ProgressDialogSurface,
    QgsMessageLogHandler,
    QtDispatcher,
    RubberBandOverlay,
)
from .core.config import ExportConfig
from .core.constants import DEFAULT_MAX_SCALE
from .core.errors import CancelledError, ExportError, ValidationError, format_error
from .core.exporter import TileCacheExporter as LayerTileExporter
from .core.logging_utils import install_handler
from .core.models import TileCache
from .core.presenter import PresentationMode
from .core.workflow import TileExportWorkflow

SETTINGS_GROUP = "TileCacheExporter/"
CONFIG_KEYS = (
    "working_dir",
    "cache_folder",
    "inset_left_px",
    "inset_top_px",
    "inset_right_px",
    "inset_bottom_px",
    "default_max_scale",
    "image_format",
    "tile_size_px",
    "purge_on_suspend",
)


class TileCacheExporter:
    """QGIS Plugin Implementation."""

    def __init__(self, iface):
        """
        Constructor.

        Args:
            iface: QGIS interface instance.
        """
        self.iface = iface
        self.plugin_dir = os.path.dirname(__file__)

        # i18n / Locale
        locale = (QSettings().value("locale/userLocale") or "en")[0:2]
        locale_path = os.path.join(self.plugin_dir, "i18n", f"TileCacheExporter_{locale}.qm")

        if os.path.exists(locale_path):
            self.translator = QTranslator()
            self.translator.load(locale_path)
            QCoreApplication.installTranslator(self.translator)

        self.actions = []
        self.menu = self.tr("&Tile Cache Exporter")
        self.export_action: Optional[QAction] = None
        self.close_preview_action: Optional[QAction] = None

        self.workflow: Optional[TileExportWorkflow] = None
        self.exporter: Optional[LayerTileExporter] = None
        self.viewport: Optional[CanvasViewport] = None
        self.overlay: Optional[RubberBandOverlay] = None
        self.preview_dialog: Optional[PreviewDialog] = None
        self.dispatcher: Optional[QtDispatcher] = None
        self.log_handler: Optional[QgsMessageLogHandler] = None
        self._restore_logging: Optional[Callable[[], None]] = None

    # noinspection PyMethodMayBeStatic
    def tr(self, message: str) -> str:
        """Translate a message."""
        return QCoreApplication.translate("TileCacheExporter", message)

    def add_action(
        self,
        icon_path,
        text,
        callback,
        enabled_flag=True,
        add_to_menu=True,
        add_to_toolbar=True,
        status_tip=None,
        parent=None,
    ):
        """Add a toolbar icon and/or a menu entry."""
        icon = QIcon(icon_path)
        action = QAction(icon, text, parent)
        action.triggered.connect(callback)
        action.setEnabled(enabled_flag)

        if status_tip:
            action.setStatusTip(status_tip)

        if add_to_toolbar:
            self.iface.addToolBarIcon(action)

        if add_to_menu:
            self.iface.addPluginToMenu(self.menu, action)

        self.actions.append(action)
        return action

    def initGui(self) -> None:
        """Create menu entries, the selection overlay and the workflow."""
        icon_path = os.path.join(self.plugin_dir, "icon.png")
        self.export_action = self.add_action(
            icon_path,
            text=self.tr("Export tile cache"),
            callback=self.run,
            status_tip=self.tr("Export the tiles inside the red box to a local tile cache"),
            parent=self.iface.mainWindow(),
        )
        self.close_preview_action = self.add_action(
            icon_path,
            text=self.tr("Close tile preview"),
            callback=self.close_preview,
            enabled_flag=False,
            add_to_toolbar=False,
            parent=self.iface.mainWindow(),
        )

        self._install_logging()

        canvas = self.iface.mapCanvas()
        config = self._load_config()

        self.dispatcher = QtDispatcher()
        self.viewport = CanvasViewport(canvas)
        self.overlay = RubberBandOverlay(canvas)
        self.preview_dialog = PreviewDialog(canvas, self.iface.mainWindow())
        self.preview_dialog.on_close = self.close_preview
        self.exporter = LayerTileExporter(
            None,
            tile_size_px=config.tile_size_px,
            image_format=config.image_format,
        )

        progress = ProgressDialogSurface(
            self.iface.mainWindow(),
            on_cancel=self._cancel_export,
            format_message=self._format_progress,
        )
        self.workflow = TileExportWorkflow(
            self.exporter,
            config,
            dispatcher=self.dispatcher,
            preview=self,
            progress=progress,
            report_error=self._report_error,
            overlay=self.overlay,
        )

        canvas.extentsChanged.connect(self._on_viewport_changed)
        canvas.layersChanged.connect(self._on_viewport_changed)
        QgsProject.instance().cleared.connect(self._on_project_cleared)
        self._on_viewport_changed()

    def unload(self) -> None:
        """Remove the plugin from the QGIS GUI and clear the working directory."""
        canvas = self.iface.mapCanvas()
        for signal, slot in (
            (canvas.extentsChanged, self._on_viewport_changed),
            (canvas.layersChanged, self._on_viewport_changed),
            (QgsProject.instance().cleared, self._on_project_cleared),
        ):
            try:
                signal.disconnect(slot)
            except TypeError:
                pass

        if self.workflow is not None:
            self.workflow.shutdown()
            self.workflow = None
        if self.overlay is not None:
            self.overlay.remove()
            self.overlay = None
        if self.preview_dialog is not None:
            self.preview_dialog.on_close = None
            self.preview_dialog.close()
            self.preview_dialog = None

        for action in self.actions:
            self.iface.removePluginMenu(self.menu, action)
            self.iface.removeToolBarIcon(action)
        self.actions = []

        if self._restore_logging is not None:
            self._restore_logging()
            self._restore_logging = None
            self.log_handler = None

    def run(self) -> None:
        """Resolve export parameters for the framed region and start the job."""
        if self.workflow is None:
            return

        layer = self._source_layer()
        if layer is None:
            QMessageBox.warning(
                self.iface.mainWindow(),
                self.tr("No layer"),
                self.tr("Please add a raster layer to export tiles from."),
            )
            return

        # The running job keeps rendering the layer it started with.
        if not self.workflow.busy:
            self.exporter.layer = layer
        self._on_viewport_changed()

        try:
            self.workflow.request_export(
                self.iface.mapCanvas().scale(),
                self._max_allowed_scale(layer),
            )
        except ExportError as e:
            QMessageBox.warning(
                self.iface.mainWindow(),
                self.tr("Export not started"),
                self._format_export_error(e),
            )

    def close_preview(self) -> None:
        if self.workflow is not None:
            self.workflow.close_preview()

    # ------------------------------------------------------------------
    # Preview surface (called by ResultPresenter)
    # ------------------------------------------------------------------
    def show_preview(self, artifact: TileCache) -> None:
        self.preview_dialog.show_preview(artifact)
        self._set_mode(PresentationMode.PREVIEW)

    def clear_preview(self) -> None:
        self.preview_dialog.clear_preview()
        self._set_mode(PresentationMode.SELECTION)

    def _set_mode(self, mode: PresentationMode) -> None:
        previewing = mode is PresentationMode.PREVIEW
        if self.export_action is not None:
            self.export_action.setEnabled(not previewing)
        if self.close_preview_action is not None:
            self.close_preview_action.setEnabled(previewing)
        if self.overlay is not None:
            self.overlay.set_visible(not previewing)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def _on_viewport_changed(self, *_args) -> None:
        if self.workflow is None:
            return
        self.workflow.on_viewport_changed(self.viewport, self._map_ready())

    def _on_project_cleared(self) -> None:
        if self.workflow is not None:
            self.workflow.suspend()

    def _cancel_export(self) -> None:
        if self.workflow is not None:
            self.workflow.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _map_ready(self) -> bool:
        canvas = self.iface.mapCanvas()
        if canvas.width() <= 0 or canvas.height() <= 0:
            return False
        layer = self._source_layer()
        return layer is not None and layer.isValid()

    def _source_layer(self) -> Optional[QgsMapLayer]:
        """Active raster layer, else the first visible raster layer on the canvas."""
        active = self.iface.activeLayer()
        if active is not None and active.type() == QgsMapLayer.RasterLayer:
            return active
        for layer in self.iface.mapCanvas().layers():
            if layer.type() == QgsMapLayer.RasterLayer:
                return layer
        return None

    def _max_allowed_scale(self, layer: QgsMapLayer) -> float:
        if layer.hasScaleBasedVisibility() and layer.maximumScale() > 0:
            return float(layer.maximumScale())
        if self.workflow is not None:
            return self.workflow.config.default_max_scale
        return DEFAULT_MAX_SCALE

    def _load_config(self) -> ExportConfig:
        settings = QSettings()
        values = {key: settings.value(SETTINGS_GROUP + key, None) for key in CONFIG_KEYS}
        try:
            return ExportConfig.from_mapping(values)
        except ValidationError as e:
            logging.getLogger(__name__).warning("Ignoring invalid settings: %s", e)
            return ExportConfig.from_mapping({})

    def _core_logger(self) -> logging.Logger:
        return logging.getLogger(f"{__package__}.core" if __package__ else "core")

    def _install_logging(self) -> None:
        self.log_handler = QgsMessageLogHandler()
        self.log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        self._restore_logging = install_handler(self._core_logger(), self.log_handler, logging.INFO)

    def _report_error(self, err: ExportError) -> None:
        if isinstance(err, CancelledError):
            QMessageBox.information(
                self.iface.mainWindow(),
                self.tr("Cancelled"),
                self.tr("Export was cancelled."),
            )
            return

        QMessageBox.critical(
            self.iface.mainWindow(),
            self.tr("Error"),
            self._format_export_error(err),
        )

    def _format_progress(self, key: str, args: dict[str, Any]) -> str:
        """Progress label for an exporter progress key."""
        args = args or {}

        if key == "WARN_TILE_RETRY":
            return self.tr("Retry tile ({a}/{m}) – waiting {s:.1f}s...").format(
                a=args.get("attempt", 0),
                m=args.get("max", 0),
                s=float(args.get("seconds", 0.0) or 0.0),
            )

        if key == "WARN_LARGE_EXPORT":
            return self.tr("Warning: Very large export ({n:,} tiles).").format(
                n=int(args.get("tiles", 0) or 0),
            )

        templates = {k: self.tr(v) for k, v in PROGRESS_TEMPLATES.items()}
        tmpl = templates.get(key, key)
        try:
            return tmpl.format(**args)
        except (KeyError, IndexError, ValueError):
            return tmpl

    def _format_export_error(self, err: ExportError) -> str:
        """Convert exporter errors into user-facing messages."""
        code = getattr(err, "code", "ERR_UNKNOWN")
        details = getattr(err, "details", "")
        if code == "ERR_JOB_FAILED" and getattr(err, "reason_code", ""):
            code = err.reason_code

        messages = {
            "ERR_CANCELLED": self.tr("Export was cancelled."),
            "ERR_REGION_UNDEFINED": self.tr("The map has not finished loading; no download area yet."),
            "ERR_JOB_ACTIVE": self.tr("An export is already running."),
            "ERR_RESOLUTION_FAILED": self.tr("Error generating parameters."),
            "ERR_RESOLUTION_INTERRUPTED": self.tr("Tile cache parameters interrupted."),
            "ERR_JOB_FAILED": self.tr("Job did not succeed."),
            "ERR_CLEANUP_FAILED": self.tr("Failed to clear the working directory."),
            "ERR_PREVIEW_FAILED": self.tr("The tile cache was exported but cannot be previewed."),
            "ERR_VALIDATION_LAYER_MISSING": self.tr("Please select a layer."),
            "ERR_VALIDATION_SIZE_INVALID": self.tr("Invalid tile size."),
            "ERR_VALIDATION_SCALE_INVALID": self.tr("Invalid map scale."),
            "ERR_VALIDATION_LEVELS_EMPTY": self.tr("No zoom levels to export."),
            "ERR_VALIDATION_LEVELS_RANGE": self.tr("Zoom levels out of range."),
            "ERR_VALIDATION_TOO_MANY_TILES": self.tr(
                "Too many tiles requested. Zoom in or raise the layer's maximum scale."
            ),
            "ERR_VALIDATION_FORMAT": self.tr("Unsupported tile format."),
            "ERR_VALIDATION_OUTPUT_MISSING": self.tr("Output directory missing."),
            "ERR_VALIDATION_OUTPUT_DIR": self.tr("Output directory is invalid or not writable."),
            "ERR_VALIDATION_EXTENT_INVALID": self.tr("Invalid download area."),
            "ERR_VALIDATION_REGION_CRS": self.tr("Unsupported coordinate system for the download area."),
            "ERR_GDAL_CREATE_FAILED": self.tr("Failed to write tile."),
            "ERR_GDAL_DRIVER_MISSING": self.tr("Required GDAL driver is missing."),
            "ERR_METADATA_WRITE_FAILED": self.tr("Failed to write tile cache metadata."),
            "ERR_RENDER_EMPTY": self.tr(
                "Rendered tiles are empty/transparent (often a server limit or timeout)."
            ),
            "ERR_RENDER_TILE_FAILED": self.tr("Tile rendering failed."),
            "ERR_EXPORT_FAILED": self.tr("Export failed."),
        }

        base = messages.get(code)
        if base is None:
            # Codes without a translated message use the core labels.
            return format_error(err)
        if details:
            return self.tr("{base}\n\nDetails:\n{details}").format(base=base, details=details)
        return base


PROGRESS_TEMPLATES = {
    "STEP_VALIDATE": "{step}/{total}: Validating parameters",
    "STEP_PREPARE": "{step}/{total}: Preparing tile grid",
    "STEP_RENDER_LEVEL": "{step}/{total}: Rendering zoom level {level}",
    "STEP_WRITE_TILES": "{step}/{total}: Writing tiles ({done}/{count})",
    "STEP_WRITE_METADATA": "{step}/{total}: Writing metadata",
    "STEP_DONE": "{step}/{total}: Finished",
}
