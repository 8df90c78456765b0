# TileCacheExporter/TileCacheExporter_dialog.py
# -*- coding: utf-8 -*-
"""Qt / QGIS surfaces used by the TileCacheExporter workflow.

- QtDispatcher: delivers worker-thread callbacks on the GUI thread.
- CanvasViewport: map canvas pixels -> EPSG:3857 coordinates.
- RubberBandOverlay: red selection box on the canvas.
- ProgressDialogSurface: progress bar with a Cancel button.
- PreviewDialog: map canvas showing the exported tile cache.
- QgsMessageLogHandler: forwards ``logging`` records to the QGIS log panel.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from qgis.PyQt import QtWidgets
from qgis.PyQt.QtCore import QCoreApplication, QObject, Qt, pyqtSignal
from qgis.PyQt.QtGui import QColor
from qgis.core import (
    Qgis,
    QgsCoordinateReferenceSystem,
    QgsCoordinateTransform,
    QgsGeometry,
    QgsMessageLog,
    QgsPointXY,
    QgsProject,
    QgsRasterLayer,
    QgsRectangle,
    QgsWkbTypes,
)
from qgis.gui import QgsMapCanvas, QgsRubberBand

from .core.models import GeoRegion, TileCache

LOG_TAG = "Tile Cache Exporter"
REGION_CRS = "EPSG:3857"


class QtDispatcher(QObject):
    """Post callables from any thread; they run on this object's thread."""

    _posted = pyqtSignal(object)

    def __init__(self, parent=None):
        super().__init__(parent)
        self._posted.connect(self._run, Qt.QueuedConnection)

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        self._posted.emit((fn, args))

    def _run(self, item) -> None:
        fn, args = item
        fn(*args)


class CanvasViewport:
    """Viewport adapter over a ``QgsMapCanvas``.

    Coordinates are returned in EPSG:3857 regardless of the canvas CRS.
    """

    crs_authid = REGION_CRS

    def __init__(self, canvas: QgsMapCanvas):
        self.canvas = canvas
        self._target = QgsCoordinateReferenceSystem(REGION_CRS)

    @property
    def width(self) -> int:
        return self.canvas.width()

    @property
    def height(self) -> int:
        return self.canvas.height()

    def to_map(self, x_px: int, y_px: int) -> Tuple[float, float]:
        point = self.canvas.getCoordinateTransform().toMapCoordinates(int(x_px), int(y_px))
        source = self.canvas.mapSettings().destinationCrs()
        if source.isValid() and source != self._target:
            tr = QgsCoordinateTransform(source, self._target, QgsProject.instance())
            point = tr.transform(QgsPointXY(point))
        return point.x(), point.y()


class RubberBandOverlay:
    """Draw the download region as a red box on the map canvas."""

    def __init__(self, canvas: QgsMapCanvas):
        self.canvas = canvas
        self.band = QgsRubberBand(canvas, QgsWkbTypes.PolygonGeometry)
        self.band.setStrokeColor(QColor(255, 0, 0))
        self.band.setFillColor(QColor(0, 0, 0, 0))
        self.band.setWidth(2)

    def __call__(self, region: GeoRegion) -> None:
        rect = QgsRectangle(region.west, region.south, region.east, region.north)
        self.band.setToGeometry(
            QgsGeometry.fromRect(rect),
            QgsCoordinateReferenceSystem(region.crs_authid),
        )

    def set_visible(self, visible: bool) -> None:
        self.band.setVisible(visible)

    def remove(self) -> None:
        self.band.reset(QgsWkbTypes.PolygonGeometry)
        self.canvas.scene().removeItem(self.band)


class ProgressDialogSurface:
    """Progress dialog with a Cancel button for one export job.

    Args:
        parent: Parent widget.
        on_cancel: Called when the user presses Cancel.
        format_message: Maps ``(key, args)`` to a label text.
    """

    def __init__(
        self,
        parent,
        on_cancel: Callable[[], Any],
        format_message: Callable[[str, dict], str],
    ):
        self.parent = parent
        self.on_cancel = on_cancel
        self.format_message = format_message
        self.dialog: Optional[QtWidgets.QProgressDialog] = None

    def tr(self, message: str) -> str:
        return QCoreApplication.translate("TileCacheExporter", message)

    def show(self, job) -> None:
        dialog = QtWidgets.QProgressDialog(
            self.tr("Exporting tiles..."),
            self.tr("Cancel"),
            0,
            100,
            self.parent,
        )
        dialog.setWindowTitle(self.tr("Tile Cache Exporter"))
        dialog.setWindowModality(Qt.WindowModal)
        dialog.setMinimumDuration(0)
        # Keep the dialog open on Cancel; the job decides when it ends.
        dialog.setAutoClose(False)
        dialog.setAutoReset(False)
        dialog.setValue(0)
        dialog.canceled.connect(self._on_canceled)
        dialog.show()
        self.dialog = dialog

    def set_progress(self, percent: int, key: str, args: dict) -> None:
        if self.dialog is None:
            return
        self.dialog.setLabelText(self.format_message(key, args))
        self.dialog.setValue(int(percent))

    def dismiss(self) -> None:
        if self.dialog is None:
            return
        dialog, self.dialog = self.dialog, None
        dialog.canceled.disconnect(self._on_canceled)
        dialog.close()
        dialog.deleteLater()

    def _on_canceled(self) -> None:
        if self.dialog is not None:
            self.dialog.setLabelText(self.tr("Cancelling..."))
        self.on_cancel()


class PreviewDialog(QtWidgets.QDialog):
    """Non-modal dialog showing an exported tile cache on its own canvas."""

    def __init__(self, main_canvas: QgsMapCanvas, parent=None):
        super().__init__(parent)
        self.main_canvas = main_canvas
        self.layer: Optional[QgsRasterLayer] = None
        self.on_close: Optional[Callable[[], Any]] = None

        self.setWindowTitle(self.tr("Tile cache preview"))
        self.resize(800, 600)

        self.canvas = QgsMapCanvas(self)
        self.canvas.setCanvasColor(QColor(255, 255, 255))
        self.canvas.setDestinationCrs(QgsCoordinateReferenceSystem(REGION_CRS))

        self.info_label = QtWidgets.QLabel(self)
        close_button = QtWidgets.QPushButton(self.tr("Close preview"), self)
        close_button.clicked.connect(self.close)

        layout = QtWidgets.QVBoxLayout(self)
        layout.addWidget(self.canvas)
        layout.addWidget(self.info_label)
        layout.addWidget(close_button)

    def show_preview(self, artifact: TileCache) -> None:
        layer = QgsRasterLayer(artifact.uri(), self.tr("Exported tiles"), "wms")
        if not layer.isValid():
            raise RuntimeError(f"Tile cache could not be loaded: {artifact.path}")

        self.layer = layer
        self.canvas.setLayers([layer])
        # Same view as the main canvas, in the preview CRS.
        extent = self.main_canvas.extent()
        source = self.main_canvas.mapSettings().destinationCrs()
        target = self.canvas.mapSettings().destinationCrs()
        if source.isValid() and source != target:
            tr = QgsCoordinateTransform(source, target, QgsProject.instance())
            extent = tr.transformBoundingBox(extent)
        self.canvas.setExtent(extent)
        self.canvas.refresh()

        self.info_label.setText(
            self.tr("{count} tiles, zoom {zmin}–{zmax}\n{path}").format(
                count=artifact.tile_count,
                zmin=min(artifact.levels),
                zmax=max(artifact.levels),
                path=artifact.path,
            )
        )
        self.show()
        self.raise_()

    def clear_preview(self) -> None:
        self.canvas.setLayers([])
        self.layer = None
        self.hide()

    def closeEvent(self, event) -> None:
        """Closing the window returns the plugin to selection mode."""
        super().closeEvent(event)
        if self.layer is not None and self.on_close is not None:
            self.on_close()


class QgsMessageLogHandler(logging.Handler):
    """Forward log records to the QGIS message log panel."""

    LEVELS = {
        logging.DEBUG: Qgis.Info,
        logging.INFO: Qgis.Info,
        logging.WARNING: Qgis.Warning,
        logging.ERROR: Qgis.Critical,
        logging.CRITICAL: Qgis.Critical,
    }

    def __init__(self, tag: str = LOG_TAG, level: int = logging.INFO):
        super().__init__(level)
        self.tag = tag

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            level = self.LEVELS.get(record.levelno, Qgis.Info)
            QgsMessageLog.logMessage(msg, self.tag, level)
        except Exception:
            self.handleError(record)
