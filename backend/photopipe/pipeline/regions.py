from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict


@dataclass(frozen=True)
class CropRegion:
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise ValueError(f"crop origin must be non-negative: ({self.x}, {self.y})")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"crop size must be positive: {self.width}x{self.height}")

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / float(self.height)

    def fits_within(self, image_width: int, image_height: int) -> bool:
        return self.right <= image_width and self.bottom <= image_height

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def fit_aspect(bound_width: int, bound_height: int, aspect_ratio: float) -> tuple[int, int]:
    """Largest (w, h) with w/h close to `aspect_ratio` inside the bound box."""
    if bound_width <= 0 or bound_height <= 0 or aspect_ratio <= 0:
        return 0, 0
    if bound_width / float(bound_height) > aspect_ratio:
        height = bound_height
        width = int(round(height * aspect_ratio))
    else:
        width = bound_width
        height = int(round(width / aspect_ratio))
    return max(0, min(width, bound_width)), max(0, min(height, bound_height))


def centered_fit_region(image_width: int, image_height: int, aspect_ratio: float) -> CropRegion:
    """Largest centered region of the given ratio; the whole image for a bad ratio."""
    width, height = fit_aspect(image_width, image_height, aspect_ratio)
    if width <= 0 or height <= 0:
        width, height = image_width, image_height
    x = int(round((image_width - width) / 2.0))
    y = int(round((image_height - height) / 2.0))
    return CropRegion(x=max(0, x), y=max(0, y), width=width, height=height)
