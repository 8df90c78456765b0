# TileCacheExporter/core/constants.py
# -*- coding: utf-8 -*-

"""Constants for TileCacheExporter core package."""

# Selection box insets (pixels from the viewport edges, keeps UI chrome visible):
REGION_INSET_LEFT_PX = 150
REGION_INSET_TOP_PX = 175
REGION_INSET_RIGHT_PX = 150
REGION_INSET_BOTTOM_PX = 250

# Web Mercator tiling:
TILE_SIZE_PX = 256
MIN_ZOOM = 0
MAX_ZOOM = 23
# Scale denominator of zoom 0 for 256 px tiles at 0.28 mm/px (OGC standard pixel).
ZOOM0_SCALE = 559082264.028717
MAX_MERCATOR_LAT = 85.0511287798066
EARTH_RADIUS_M = 6378137.0

# Scale the source is assumed to support when the layer sets no maximum (zoom 19).
DEFAULT_MAX_SCALE = 1066.364792

# Tile count limits:
TILE_COUNT_WARN = 20_000
TILE_COUNT_STRONG = 100_000

# Output:
IMAGE_FORMATS = ("png", "jpg")
DEFAULT_IMAGE_FORMAT = "png"
TILE_CACHE_FOLDER = "tile_cache"
METADATA_FILE = "metadata.json"

# Retry policy for blank / failed tiles:
TILE_MAX_RETRIES = 3
TILE_BASE_BACKOFF_S = 0.7
TILE_MAX_BACKOFF_S = 8.0
