from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import cv2
import numpy as np

from photopipe.errors import SourceNotFoundError
from photopipe.pipeline.candidates import (
    DEFAULT_MAX_HEIGHT,
    DEFAULT_MAX_SCALE,
    DEFAULT_MAX_WIDTH,
    generate_candidates,
)
from photopipe.pipeline.region_score import RegionScorer
from photopipe.pipeline.regions import CropRegion, centered_fit_region


SMARTCROP = "smartcrop"
AUTOCROP = "autocrop"


@dataclass(frozen=True)
class CropResult:
    region: CropRegion
    score: float
    strategy: str
    candidates_scored: int = 0
    fallback: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "region": self.region.to_dict(),
            "score": round(float(self.score), 4),
            "strategy": self.strategy,
            "candidates_scored": self.candidates_scored,
            "fallback": self.fallback,
        }


def load_pixels(path: Path) -> np.ndarray:
    """Decode an image file into HxWx3 RGB uint8 pixels."""
    if not path.is_file():
        raise SourceNotFoundError(f"image file does not exist: {path}")
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        raise SourceNotFoundError(f"image file could not be decoded: {path}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def select_best_crop(
    pixels: np.ndarray,
    image_width: int,
    image_height: int,
    target_width: int,
    target_height: int,
    *,
    max_scale: float = DEFAULT_MAX_SCALE,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
) -> CropResult:
    if target_width <= 0 or target_height <= 0:
        return _fallback(pixels, image_width, image_height, image_width / float(max(1, image_height)), SMARTCROP)

    aspect_ratio = target_width / float(target_height)
    scorer = RegionScorer(pixels, image_width, image_height)
    best: Optional[CropRegion] = None
    best_score = float("-inf")
    scored = 0
    for candidate in generate_candidates(image_width, image_height, aspect_ratio, max_scale, max_width, max_height):
        value = scorer.score(candidate)
        scored += 1
        # Strict comparison keeps the earliest candidate on ties.
        if value > best_score:
            best = candidate
            best_score = value

    if best is None:
        return _fallback(pixels, image_width, image_height, aspect_ratio, SMARTCROP, scorer=scorer)
    return CropResult(region=best, score=best_score, strategy=SMARTCROP, candidates_scored=scored)


def auto_crop(
    pixels: np.ndarray,
    image_width: int,
    image_height: int,
    target_width: int,
    target_height: int,
) -> CropResult:
    """Largest centered crop of the target ratio; landscape trims the sides, portrait the top and bottom."""
    if target_width <= 0 or target_height <= 0:
        aspect_ratio = image_width / float(max(1, image_height))
    else:
        aspect_ratio = target_width / float(target_height)
    region = centered_fit_region(image_width, image_height, aspect_ratio)
    score = RegionScorer(pixels, image_width, image_height).score(region)
    return CropResult(region=region, score=score, strategy=AUTOCROP, candidates_scored=1)


STRATEGIES: Dict[str, Callable[..., CropResult]] = {
    SMARTCROP: select_best_crop,
    AUTOCROP: auto_crop,
}

STRATEGY_ALIASES = {
    "smart": SMARTCROP,
    "auto": AUTOCROP,
    SMARTCROP: SMARTCROP,
    AUTOCROP: AUTOCROP,
}


def crop_with_strategy(
    strategy: str,
    pixels: np.ndarray,
    target_width: int,
    target_height: int,
) -> CropResult:
    name = STRATEGY_ALIASES.get(strategy)
    if name is None:
        raise ValueError(f"unknown crop strategy: {strategy}")
    image_height, image_width = pixels.shape[:2]
    return STRATEGIES[name](pixels, image_width, image_height, target_width, target_height)


def _fallback(
    pixels: np.ndarray,
    image_width: int,
    image_height: int,
    aspect_ratio: float,
    strategy: str,
    *,
    scorer: Optional[RegionScorer] = None,
) -> CropResult:
    region = centered_fit_region(image_width, image_height, aspect_ratio)
    try:
        scorer = scorer or RegionScorer(pixels, image_width, image_height)
        score = scorer.score(region)
    except ValueError:
        score = 0.0
    return CropResult(region=region, score=score, strategy=strategy, fallback=True)
