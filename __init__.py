# TileCacheExporter/__init__.py
# -*- coding: utf-8 -*-
"""QGIS plugin entry point."""


# noinspection PyPep8Naming
def classFactory(iface):  # pylint: disable=invalid-name
    """Load the TileCacheExporter plugin class.

    Args:
        iface: QGIS interface instance.
    """
    from .TileCacheExporter import TileCacheExporter
    return TileCacheExporter(iface)
