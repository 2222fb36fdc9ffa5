from __future__ import annotations

import math
from typing import Iterator, List, Tuple

from photopipe.pipeline.regions import CropRegion, fit_aspect


BASE_SCALES = (0.25, 0.5, 1.0)
DEFAULT_MAX_SCALE = 1.0
DEFAULT_MAX_WIDTH = 1024
DEFAULT_MAX_HEIGHT = 1024
MIN_STEP = 8


def candidate_scales(max_scale: float | None) -> List[float]:
    scales = list(BASE_SCALES)
    if max_scale and max_scale > 0 and max_scale not in scales:
        scales.append(float(max_scale))
    return scales


def step_size(image_width: int, image_height: int) -> int:
    return max(MIN_STEP, min(image_width, image_height) // 100)


def window_size(
    image_width: int,
    image_height: int,
    target_aspect_ratio: float,
    scale: float,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
) -> Tuple[int, int]:
    """Crop window for one scale; (0, 0) when nothing sensible fits."""
    if not math.isfinite(target_aspect_ratio) or target_aspect_ratio <= 0 or scale <= 0:
        return 0, 0
    base_w, base_h = fit_aspect(min(max_width, image_width), min(max_height, image_height), target_aspect_ratio)
    if base_w <= 0 or base_h <= 0:
        return 0, 0
    width = int(math.floor(base_w * scale))
    height = int(round(width / target_aspect_ratio))
    return width, height


def generate_candidates(
    image_width: int,
    image_height: int,
    target_aspect_ratio: float,
    max_scale: float = DEFAULT_MAX_SCALE,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
) -> Iterator[CropRegion]:
    step = step_size(image_width, image_height)
    for scale in candidate_scales(max_scale):
        width, height = window_size(image_width, image_height, target_aspect_ratio, scale, max_width, max_height)
        if width <= 0 or height <= 0:
            continue
        for y in range(0, image_height - height + 1, step):
            for x in range(0, image_width - width + 1, step):
                yield CropRegion(x=x, y=y, width=width, height=height)


class CandidateSet:
    """Restartable view over `generate_candidates` for fixed arguments."""

    def __init__(
        self,
        image_width: int,
        image_height: int,
        target_aspect_ratio: float,
        max_scale: float = DEFAULT_MAX_SCALE,
        max_width: int = DEFAULT_MAX_WIDTH,
        max_height: int = DEFAULT_MAX_HEIGHT,
    ) -> None:
        self.image_width = image_width
        self.image_height = image_height
        self.target_aspect_ratio = target_aspect_ratio
        self.max_scale = max_scale
        self.max_width = max_width
        self.max_height = max_height

    def __iter__(self) -> Iterator[CropRegion]:
        return generate_candidates(
            self.image_width,
            self.image_height,
            self.target_aspect_ratio,
            self.max_scale,
            self.max_width,
            self.max_height,
        )

    def __len__(self) -> int:
        step = step_size(self.image_width, self.image_height)
        total = 0
        for scale in candidate_scales(self.max_scale):
            width, height = window_size(
                self.image_width,
                self.image_height,
                self.target_aspect_ratio,
                scale,
                self.max_width,
                self.max_height,
            )
            if width <= 0 or height <= 0 or width > self.image_width or height > self.image_height:
                continue
            columns = (self.image_width - width) // step + 1
            rows = (self.image_height - height) // step + 1
            total += columns * rows
        return total
