# TileCacheExporter/core/__init__.py
# -*- coding: utf-8 -*-
"""UI-agnostic export orchestration and the QGIS tile renderer."""
