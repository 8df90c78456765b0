import math
import unittest

from core.constants import MAX_ZOOM, ZOOM0_SCALE
from core.errors import ValidationError
from core.models import GeoRegion
from core.tiling import (
    count_tiles,
    default_export_parameters,
    iter_tiles,
    lonlat_to_mercator,
    lonlat_to_tile,
    mercator_to_lonlat,
    region_to_lonlat,
    scale_for_zoom,
    tile_bounds_3857,
    tile_range,
    zoom_for_scale,
)

REGION = GeoRegion(-1.0, 50.0, 1.0, 52.0, crs_authid="EPSG:4326")
HALF_WORLD = 20037508.342789244


class ZoomScaleTests(unittest.TestCase):
    def test_scale_halves_per_level(self):
        self.assertEqual(scale_for_zoom(0), ZOOM0_SCALE)
        self.assertAlmostEqual(scale_for_zoom(5), 17471320.75, places=1)
        self.assertAlmostEqual(scale_for_zoom(21), 266.59, places=1)

    def test_snapping_direction(self):
        self.assertEqual(zoom_for_scale(10_000_000, mode="coarser"), 5)
        self.assertEqual(zoom_for_scale(10_000_000, mode="finer"), 6)
        self.assertEqual(zoom_for_scale(500, mode="coarser"), 20)
        self.assertEqual(zoom_for_scale(500, mode="finer"), 21)

    def test_exact_level_scale_maps_to_itself(self):
        for z in (0, 7, 12, 18):
            self.assertEqual(zoom_for_scale(scale_for_zoom(z), mode="coarser"), z)
            self.assertEqual(zoom_for_scale(scale_for_zoom(z), mode="finer"), z)

    def test_levels_are_clamped(self):
        self.assertEqual(zoom_for_scale(1e12), 0)
        self.assertEqual(zoom_for_scale(0.001, mode="finer"), MAX_ZOOM)

    def test_bad_input(self):
        with self.assertRaises(ValidationError):
            zoom_for_scale(0)
        with self.assertRaises(ValueError):
            zoom_for_scale(1000, mode="nearest")


class CoordinateTests(unittest.TestCase):
    def test_mercator_edges(self):
        x, y = lonlat_to_mercator(180.0, 0.0)
        self.assertAlmostEqual(x, HALF_WORLD, places=3)
        self.assertAlmostEqual(y, 0.0, places=6)

        lon, lat = mercator_to_lonlat(0.0, HALF_WORLD)
        self.assertAlmostEqual(lon, 0.0)
        self.assertAlmostEqual(lat, 85.0511287798, places=6)

    def test_region_in_mercator_is_converted(self):
        x1, y1 = lonlat_to_mercator(-1.0, 50.0)
        x2, y2 = lonlat_to_mercator(1.0, 52.0)
        west, south, east, north = region_to_lonlat(GeoRegion(x1, y1, x2, y2))
        self.assertAlmostEqual(west, -1.0)
        self.assertAlmostEqual(south, 50.0)
        self.assertAlmostEqual(east, 1.0)
        self.assertAlmostEqual(north, 52.0)

    def test_unsupported_crs(self):
        with self.assertRaises(ValidationError) as ctx:
            region_to_lonlat(GeoRegion(0, 0, 1, 1, crs_authid="EPSG:2056"))
        self.assertEqual(ctx.exception.code, "ERR_VALIDATION_REGION_CRS")

    def test_tile_indices(self):
        self.assertEqual(lonlat_to_tile(0.0, 0.0, 0), (0, 0))
        self.assertEqual(lonlat_to_tile(0.0, 0.0, 1), (1, 1))
        self.assertEqual(lonlat_to_tile(-180.0, 89.0, 3), (0, 0))
        self.assertEqual(lonlat_to_tile(180.0, -89.0, 3), (7, 7))

    def test_tile_bounds(self):
        expected = {
            (0, 0, 0): (-HALF_WORLD, -HALF_WORLD, HALF_WORLD, HALF_WORLD),
            (1, 1, 0): (0.0, 0.0, HALF_WORLD, HALF_WORLD),
            (1, 0, 1): (-HALF_WORLD, -HALF_WORLD, 0.0, 0.0),
        }
        for (z, x, y), bounds in expected.items():
            for got, want in zip(tile_bounds_3857(z, x, y), bounds):
                self.assertAlmostEqual(got, want, places=3)


class TileCountTests(unittest.TestCase):
    def test_range_is_inclusive(self):
        self.assertEqual(tile_range(REGION, 0), (0, 0, 0, 0))
        self.assertEqual(tile_range(REGION, 1), (0, 0, 1, 0))

    def test_count_matches_iteration(self):
        levels = range(0, 9)
        tiles = list(iter_tiles(REGION, levels))
        self.assertEqual(len(tiles), count_tiles(REGION, levels))
        self.assertEqual(len(set(tiles)), len(tiles))
        self.assertEqual(tiles[0], (0, 0, 0))


class DefaultParameterTests(unittest.TestCase):
    def test_bounds_are_snapped_outward(self):
        params = default_export_parameters(REGION, 10_000_000, 500)

        self.assertIs(params.region, REGION)
        self.assertEqual(params.levels, tuple(range(5, 22)))
        self.assertGreaterEqual(params.min_scale, 10_000_000)
        self.assertLessEqual(params.max_scale, 500)
        self.assertEqual(params.tile_count, count_tiles(REGION, params.levels))

    def test_argument_order_does_not_matter(self):
        a = default_export_parameters(REGION, 10_000_000, 500)
        b = default_export_parameters(REGION, 500, 10_000_000)
        self.assertEqual(a, b)

    def test_range_outside_tile_levels_rejected(self):
        for coarse, fine in ((1_000_000_000, 500), (10_000_000, 10), (1e12, 1e-3)):
            with self.assertRaises(ValidationError) as ctx:
                default_export_parameters(REGION, coarse, fine)
            self.assertEqual(ctx.exception.code, "ERR_VALIDATION_SCALE_INVALID")

    def test_full_pyramid_is_accepted(self):
        params = default_export_parameters(REGION, scale_for_zoom(0), scale_for_zoom(MAX_ZOOM))
        self.assertEqual(params.levels, tuple(range(0, MAX_ZOOM + 1)))
        self.assertEqual(params.min_scale, ZOOM0_SCALE)

    def test_single_level(self):
        scale = scale_for_zoom(10)
        params = default_export_parameters(REGION, scale, scale, image_format="jpg")
        self.assertEqual(params.levels, (10,))
        self.assertTrue(math.isclose(params.min_scale, params.max_scale))
        self.assertEqual(params.image_format, "jpg")


if __name__ == "__main__":
    unittest.main()
