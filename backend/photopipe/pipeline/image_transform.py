from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import cv2
import numpy as np
from PIL import Image

from photopipe.errors import PipelineError, ProcessingError, ValidationError
from photopipe.pipeline.outputs import part_path, remove_quietly, unique_output_path
from photopipe.pipeline.regions import CropRegion
from photopipe.pipeline.smart_crop import CropResult, crop_with_strategy, load_pixels
from photopipe.schemas import CropBox, ImageOperations, ResizeOptions, SmartCropSpec


DEFAULT_FORMAT = "jpeg"
DEFAULT_QUALITY = 90

THUMBNAIL_SIZE = 256
PREVIEW_SIZE = 1024


@dataclass(frozen=True)
class EncodeSpec:
    pil_format: str
    extension: str
    mime_type: str
    lossy: bool


ENCODE_SPECS: Dict[str, EncodeSpec] = {
    "jpeg": EncodeSpec(pil_format="JPEG", extension="jpg", mime_type="image/jpeg", lossy=True),
    "png": EncodeSpec(pil_format="PNG", extension="png", mime_type="image/png", lossy=False),
    "webp": EncodeSpec(pil_format="WEBP", extension="webp", mime_type="image/webp", lossy=True),
}


@dataclass(frozen=True)
class ImageTransformResult:
    output_path: Path
    width: int
    height: int
    byte_size: int
    mime_type: str
    format: str
    crop: Optional[CropResult] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "output_path": str(self.output_path),
            "width": self.width,
            "height": self.height,
            "byte_size": self.byte_size,
            "mime_type": self.mime_type,
            "format": self.format,
        }
        if self.crop is not None:
            payload["crop"] = self.crop.to_dict()
        return payload


def thumbnail_operations(size: int = THUMBNAIL_SIZE) -> ImageOperations:
    """JPEG at quality 80 that fits inside a `size` square."""
    return ImageOperations(resize=ResizeOptions(width=size, height=size), format="jpeg", quality=80)


def preview_operations(max_size: int = PREVIEW_SIZE) -> ImageOperations:
    return ImageOperations(resize=ResizeOptions(width=max_size, height=max_size), format="jpeg", quality=85)


def transform_image(
    *,
    source_path: Path,
    operations: ImageOperations,
    output_dir: Path,
    variant_tag: str = "variant",
    logger: Callable[[str], None] = lambda _: None,
) -> ImageTransformResult:
    """Apply rotate, flips, crop, resize and re-encode, in that order, into a new file."""
    image = load_pixels(source_path)
    source_h, source_w = image.shape[:2]
    logger(f"image loaded: {source_path.name} ({source_w}x{source_h})")

    fmt = operations.format or DEFAULT_FORMAT
    spec = ENCODE_SPECS.get(fmt)
    if spec is None:
        raise ValidationError(f"unsupported output format: {fmt}")
    quality = operations.quality if operations.quality is not None else DEFAULT_QUALITY

    output_path = unique_output_path(output_dir, source_path.stem, variant_tag, spec.extension)
    temp_path = part_path(output_path)
    crop_result: Optional[CropResult] = None
    try:
        if operations.rotate:
            image = rotate_image(image, operations.rotate)
            logger(f"rotated {operations.rotate:g} degrees -> {image.shape[1]}x{image.shape[0]}")
        if operations.flip_horizontal:
            image = cv2.flip(image, 1)
        if operations.flip_vertical:
            image = cv2.flip(image, 0)

        if operations.crop is not None:
            region, crop_result = resolve_crop(image, operations.crop)
            image = image[region.y : region.bottom, region.x : region.right]
            logger(f"cropped to {region.width}x{region.height} at ({region.x}, {region.y})")

        if operations.resize is not None:
            image = resize_inside(image, operations.resize.width, operations.resize.height)
            logger(f"resized to {image.shape[1]}x{image.shape[0]}")

        _encode(image, temp_path, spec, quality)
        os.replace(temp_path, output_path)
        byte_size = output_path.stat().st_size
        with Image.open(output_path) as written:
            width, height = written.size
    except PipelineError:
        remove_quietly(temp_path)
        raise
    except (cv2.error, OSError, ValueError) as exc:
        remove_quietly(temp_path)
        remove_quietly(output_path)
        raise ProcessingError(f"image transform failed: {exc}", operation="image_transform") from exc

    logger(f"image written: {output_path.name} ({width}x{height}, {byte_size} bytes)")
    return ImageTransformResult(
        output_path=output_path,
        width=int(width),
        height=int(height),
        byte_size=int(byte_size),
        mime_type=spec.mime_type,
        format=fmt,
        crop=crop_result,
    )


def rotate_image(image: np.ndarray, degrees: float) -> np.ndarray:
    """Rotate clockwise. Right angles are exact; other angles grow the canvas."""
    angle = float(degrees) % 360.0
    if angle == 0.0:
        return image
    if angle == 90.0:
        return cv2.rotate(image, cv2.ROTATE_90_CLOCKWISE)
    if angle == 180.0:
        return cv2.rotate(image, cv2.ROTATE_180)
    if angle == 270.0:
        return cv2.rotate(image, cv2.ROTATE_90_COUNTERCLOCKWISE)

    h, w = image.shape[:2]
    center = (w / 2.0, h / 2.0)
    matrix = cv2.getRotationMatrix2D(center, -angle, 1.0)
    cos_a = abs(matrix[0, 0])
    sin_a = abs(matrix[0, 1])
    new_w = int(math.ceil(h * sin_a + w * cos_a))
    new_h = int(math.ceil(h * cos_a + w * sin_a))
    matrix[0, 2] += new_w / 2.0 - center[0]
    matrix[1, 2] += new_h / 2.0 - center[1]
    return cv2.warpAffine(image, matrix, (new_w, new_h), flags=cv2.INTER_LINEAR, borderValue=(0, 0, 0))


def resolve_crop(image: np.ndarray, crop) -> tuple[CropRegion, Optional[CropResult]]:
    h, w = image.shape[:2]
    if isinstance(crop, SmartCropSpec):
        result = crop_with_strategy(crop.strategy, image, crop.target_width, crop.target_height)
        return result.region, result
    if isinstance(crop, CropBox):
        region = CropRegion(x=crop.x, y=crop.y, width=crop.width, height=crop.height)
        if not region.fits_within(w, h):
            raise ValidationError(
                f"crop region {region.width}x{region.height}+{region.x}+{region.y} is outside the {w}x{h} image",
                operation="crop",
            )
        return region, None
    raise ValidationError(f"unsupported crop specification: {crop!r}", operation="crop")


def resize_inside(image: np.ndarray, width: Optional[int], height: Optional[int]) -> np.ndarray:
    """Fit inside the box, keep the aspect ratio, never enlarge."""
    h, w = image.shape[:2]
    factors = []
    if width:
        factors.append(width / float(w))
    if height:
        factors.append(height / float(h))
    if not factors:
        return image
    scale = min(factors)
    if scale >= 1.0:
        return image
    target = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    return cv2.resize(image, target, interpolation=cv2.INTER_AREA)


def _encode(image: np.ndarray, path: Path, spec: EncodeSpec, quality: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    pil_image = Image.fromarray(np.ascontiguousarray(image))
    save_kwargs: Dict[str, object] = {"format": spec.pil_format}
    if spec.lossy:
        save_kwargs["quality"] = int(quality)
    if spec.pil_format in {"JPEG", "PNG"}:
        save_kwargs["optimize"] = True
    try:
        pil_image.save(path, **save_kwargs)
    finally:
        pil_image.close()
