import unittest

import numpy as np

from photopipe.pipeline.region_score import (
    BRIGHTNESS_WEIGHT,
    EDGE_WEIGHT,
    SATURATION_WEIGHT,
    RegionScorer,
    edge_score,
    score_region,
)
from photopipe.pipeline.regions import CropRegion


class TestEdgeScore(unittest.TestCase):
    def test_moving_away_from_edges_never_lowers_edge_score(self):
        width, height = 640, 480
        previous = -1.0
        # Shrink symmetrically toward the center; each step is farther from every edge.
        for inset in range(0, 200, 7):
            region = CropRegion(x=inset, y=inset, width=width - 2 * inset, height=height - 2 * inset)
            value = edge_score(region, width, height)
            self.assertGreaterEqual(value, previous)
            previous = value

    def test_touching_an_edge_scores_zero_and_far_regions_score_full(self):
        self.assertEqual(edge_score(CropRegion(0, 40, 100, 100), 400, 300), 0.0)
        self.assertEqual(edge_score(CropRegion(60, 60, 100, 100), 400, 300), 100.0)
        self.assertAlmostEqual(edge_score(CropRegion(25, 100, 100, 100), 400, 300), 50.0)


class TestRegionScorer(unittest.TestCase):
    def test_gray_image_has_no_saturation(self):
        pixels = np.full((120, 160, 3), 90, dtype=np.uint8)
        scorer = RegionScorer(pixels)
        self.assertAlmostEqual(scorer.saturation_score(CropRegion(10, 10, 50, 50)), 0.0)

    def test_pure_color_is_fully_saturated(self):
        pixels = np.zeros((120, 160, 3), dtype=np.uint8)
        pixels[:, :, 0] = 200
        scorer = RegionScorer(pixels)
        self.assertAlmostEqual(scorer.saturation_score(CropRegion(0, 0, 160, 120)), 100.0)

    def test_brightness_peaks_at_mid_gray(self):
        mid = RegionScorer(np.full((50, 50, 3), 128, dtype=np.uint8))
        black = RegionScorer(np.zeros((50, 50, 3), dtype=np.uint8))
        region = CropRegion(0, 0, 50, 50)
        self.assertGreater(mid.brightness_score(region), 99.0)
        self.assertEqual(black.brightness_score(region), 0.0)

    def test_integral_lookup_matches_direct_mean(self):
        rng = np.random.default_rng(7)
        pixels = rng.integers(0, 256, size=(90, 130, 3), dtype=np.uint8)
        region = CropRegion(x=13, y=21, width=57, height=44)
        scorer = RegionScorer(pixels)

        patch = pixels[region.y : region.bottom, region.x : region.right].astype(np.float64)
        high = patch.max(axis=2)
        low = patch.min(axis=2)
        saturation = np.where(high > 0, (high - low) / np.where(high > 0, high, 1), 0.0).mean() * 100.0
        luma = ((0.299 * patch[:, :, 0] + 0.587 * patch[:, :, 1] + 0.114 * patch[:, :, 2]) / 255.0).mean()
        brightness = max(0.0, 100.0 - abs(luma - 0.5) * 200.0)

        self.assertAlmostEqual(scorer.saturation_score(region), saturation, places=6)
        self.assertAlmostEqual(scorer.brightness_score(region), brightness, places=6)

    def test_total_is_weighted_sum(self):
        rng = np.random.default_rng(3)
        pixels = rng.integers(0, 256, size=(200, 300, 3), dtype=np.uint8)
        region = CropRegion(x=70, y=60, width=120, height=90)
        scorer = RegionScorer(pixels)
        expected = (
            EDGE_WEIGHT * scorer.edge_score(region)
            + SATURATION_WEIGHT * scorer.saturation_score(region)
            + BRIGHTNESS_WEIGHT * scorer.brightness_score(region)
        )
        self.assertAlmostEqual(score_region(pixels, 300, 200, region), expected)
        self.assertAlmostEqual(scorer.score(region), expected)

    def test_scoring_is_deterministic(self):
        pixels = np.random.default_rng(11).integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        region = CropRegion(8, 8, 32, 32)
        self.assertEqual(score_region(pixels, 64, 64, region), score_region(pixels, 64, 64, region))

    def test_rejects_non_rgb_pixels(self):
        with self.assertRaises(ValueError):
            RegionScorer(np.zeros((10, 10), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
