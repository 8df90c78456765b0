# TileCacheExporter/core/presenter.py
# -*- coding: utf-8 -*-

"""Selection / preview mode switching."""

from __future__ import annotations

import enum
import logging
from typing import Optional

from .models import TileCache

logger = logging.getLogger(__name__)


class PresentationMode(enum.Enum):
    SELECTION = "selection"
    PREVIEW = "preview"


class ResultPresenter:
    """Show an exported tile cache in place of the selection controls.

    ``surface`` must provide ``show_preview(artifact)`` and ``clear_preview()``.
    """

    def __init__(self, surface) -> None:
        self.surface = surface
        self.mode = PresentationMode.SELECTION
        self.artifact: Optional[TileCache] = None

    def present(self, artifact: TileCache) -> None:
        if artifact is None:
            raise ValueError("present() requires an artifact")
        # Mode only flips once the surface accepted the artifact.
        self.surface.show_preview(artifact)
        self.artifact = artifact
        self.mode = PresentationMode.PREVIEW
        logger.info("Previewing tile cache %s", artifact.path)

    def clear(self) -> None:
        if self.mode is PresentationMode.SELECTION and self.artifact is None:
            return
        self.surface.clear_preview()
        self.artifact = None
        self.mode = PresentationMode.SELECTION
