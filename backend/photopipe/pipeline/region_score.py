from __future__ import annotations

import numpy as np

from photopipe.pipeline.regions import CropRegion


EDGE_WEIGHT = 0.3
SATURATION_WEIGHT = 0.4
BRIGHTNESS_WEIGHT = 0.3
EDGE_FULL_SCORE_DISTANCE = 50.0


class RegionScorer:
    """Scores crop regions of one RGB image.

    Saturation and luminance are summed into integral images once, so each
    region costs four lookups per channel regardless of its size.
    """

    def __init__(self, pixels: np.ndarray, image_width: int | None = None, image_height: int | None = None) -> None:
        if pixels.ndim != 3 or pixels.shape[2] < 3:
            raise ValueError(f"expected HxWx3 RGB pixels, got shape {pixels.shape}")
        self.image_height = int(image_height if image_height is not None else pixels.shape[0])
        self.image_width = int(image_width if image_width is not None else pixels.shape[1])

        rgb = pixels[: self.image_height, : self.image_width, :3].astype(np.float64)
        channel_max = rgb.max(axis=2)
        channel_min = rgb.min(axis=2)
        saturation = np.divide(
            channel_max - channel_min,
            channel_max,
            out=np.zeros_like(channel_max),
            where=channel_max > 0,
        )
        luminance = (0.299 * rgb[:, :, 0] + 0.587 * rgb[:, :, 1] + 0.114 * rgb[:, :, 2]) / 255.0

        self._saturation_sum = _integral(saturation)
        self._luminance_sum = _integral(luminance)

    def edge_score(self, region: CropRegion) -> float:
        return edge_score(region, self.image_width, self.image_height)

    def saturation_score(self, region: CropRegion) -> float:
        total, count = self._region_sum(self._saturation_sum, region)
        if count == 0:
            return 0.0
        return (total / count) * 100.0

    def brightness_score(self, region: CropRegion) -> float:
        total, count = self._region_sum(self._luminance_sum, region)
        if count == 0:
            return 0.0
        mean = total / count
        return max(0.0, 100.0 - abs(mean - 0.5) * 200.0)

    def score(self, region: CropRegion) -> float:
        return (
            EDGE_WEIGHT * self.edge_score(region)
            + SATURATION_WEIGHT * self.saturation_score(region)
            + BRIGHTNESS_WEIGHT * self.brightness_score(region)
        )

    def _region_sum(self, table: np.ndarray, region: CropRegion) -> tuple[float, int]:
        # Parts of the region outside the image contribute nothing.
        x1 = min(max(region.x, 0), self.image_width)
        y1 = min(max(region.y, 0), self.image_height)
        x2 = min(max(region.right, 0), self.image_width)
        y2 = min(max(region.bottom, 0), self.image_height)
        count = (x2 - x1) * (y2 - y1)
        if count <= 0:
            return 0.0, 0
        total = table[y2, x2] - table[y1, x2] - table[y2, x1] + table[y1, x1]
        return float(total), int(count)


def edge_score(region: CropRegion, image_width: int, image_height: int) -> float:
    nearest = min(
        region.x,
        region.y,
        image_width - region.right,
        image_height - region.bottom,
    )
    return max(0.0, min(nearest / EDGE_FULL_SCORE_DISTANCE, 1.0)) * 100.0


def score_region(pixels: np.ndarray, image_width: int, image_height: int, region: CropRegion) -> float:
    return RegionScorer(pixels, image_width, image_height).score(region)


def _integral(values: np.ndarray) -> np.ndarray:
    table = np.zeros((values.shape[0] + 1, values.shape[1] + 1), dtype=np.float64)
    table[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    return table
