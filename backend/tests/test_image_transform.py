import tempfile
import unittest
from pathlib import Path

import numpy as np
from PIL import Image

from photopipe.errors import SourceNotFoundError, ValidationError
from photopipe.pipeline.image_transform import (
    preview_operations,
    resize_inside,
    rotate_image,
    thumbnail_operations,
    transform_image,
)
from photopipe.schemas import ImageOperations


def _write_image(path: Path, width: int, height: int) -> Path:
    gradient = np.tile(np.linspace(0, 255, width, dtype=np.uint8), (height, 1))
    pixels = np.dstack([gradient, np.full_like(gradient, 90), gradient[:, ::-1]])
    Image.fromarray(pixels).save(path)
    return path


class TestTransformImage(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.source = _write_image(self.root / "photo.png", 1920, 1080)

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, operations, **kwargs):
        ops = ImageOperations.model_validate(operations)
        return transform_image(source_path=self.source, operations=ops, output_dir=self.root / "out", **kwargs)

    def test_explicit_crop_to_jpeg(self):
        result = self._run({"crop": {"x": 100, "y": 100, "width": 800, "height": 600}, "format": "jpeg", "quality": 90})
        self.assertTrue(result.output_path.is_file())
        self.assertEqual((result.width, result.height), (800, 600))
        self.assertEqual(result.mime_type, "image/jpeg")
        self.assertEqual(result.output_path.suffix, ".jpg")
        self.assertEqual(result.byte_size, result.output_path.stat().st_size)

    def test_source_is_untouched_and_no_temp_files_remain(self):
        before = self.source.read_bytes()
        self._run({"resize": {"width": 320}})
        self.assertEqual(self.source.read_bytes(), before)
        leftovers = [path for path in (self.root / "out").iterdir() if path.name.endswith(".part")]
        self.assertEqual(leftovers, [])

    def test_identical_calls_write_distinct_files(self):
        first = self._run({"resize": {"width": 100}})
        second = self._run({"resize": {"width": 100}})
        self.assertNotEqual(first.output_path, second.output_path)
        self.assertTrue(first.output_path.is_file())
        self.assertTrue(second.output_path.is_file())

    def test_output_name_carries_stem_and_tag(self):
        result = self._run({"resize": {"height": 100}}, variant_tag="resize")
        self.assertTrue(result.output_path.name.startswith("photo_resize_"))

    def test_crop_outside_image_is_validation_error(self):
        with self.assertRaises(ValidationError):
            self._run({"crop": {"x": 1800, "y": 0, "width": 400, "height": 100}})
        self.assertEqual(list((self.root / "out").glob("*.part")), [])

    def test_crop_is_checked_against_the_rotated_image(self):
        # 1080 wide after a quarter turn, so a 1200 wide crop no longer fits.
        with self.assertRaises(ValidationError):
            self._run({"rotate": 90, "crop": {"x": 0, "y": 0, "width": 1200, "height": 100}})
        result = self._run({"rotate": 90, "crop": {"x": 0, "y": 0, "width": 1000, "height": 1800}})
        self.assertEqual((result.width, result.height), (1000, 1800))

    def test_missing_source(self):
        ops = ImageOperations()
        with self.assertRaises(SourceNotFoundError):
            transform_image(source_path=self.root / "gone.jpg", operations=ops, output_dir=self.root)

    def test_resize_fits_inside_and_never_enlarges(self):
        result = self._run({"resize": {"width": 480, "height": 480}, "format": "png"})
        self.assertEqual((result.width, result.height), (480, 270))
        self.assertEqual(result.mime_type, "image/png")

        bigger = self._run({"resize": {"width": 4000}})
        self.assertEqual((bigger.width, bigger.height), (1920, 1080))

    def test_webp_and_jpg_alias(self):
        webp = self._run({"resize": {"width": 200}, "format": "webp", "quality": 60})
        self.assertEqual(webp.mime_type, "image/webp")
        with Image.open(webp.output_path) as written:
            self.assertEqual(written.format, "WEBP")
        jpg = self._run({"format": "jpg"})
        self.assertEqual(jpg.format, "jpeg")

    def test_flips_mirror_pixels(self):
        result = self._run({"flipHorizontal": True, "format": "png"})
        with Image.open(result.output_path) as written:
            flipped = np.asarray(written.convert("RGB"))
        with Image.open(self.source) as original:
            source = np.asarray(original.convert("RGB"))
        np.testing.assert_array_equal(flipped, source[:, ::-1])

    def test_smart_crop_strategy_delegates_to_engine(self):
        result = self._run(
            {"crop": {"strategy": "smart", "targetWidth": 800, "targetHeight": 600}, "resize": {"width": 800, "height": 600}}
        )
        self.assertIsNotNone(result.crop)
        self.assertEqual(result.crop.strategy, "smartcrop")
        self.assertAlmostEqual(result.width / result.height, 4 / 3, delta=0.02)
        self.assertLessEqual(result.width, 800)

    def test_auto_crop_strategy(self):
        result = self._run({"crop": {"strategy": "auto", "targetWidth": 600, "targetHeight": 600}})
        self.assertEqual(result.crop.strategy, "autocrop")
        self.assertEqual((result.width, result.height), (1080, 1080))

    def test_thumbnail_and_preview_presets(self):
        thumbnail = transform_image(
            source_path=self.source, operations=thumbnail_operations(), output_dir=self.root / "out", variant_tag="thumbnail"
        )
        self.assertEqual((thumbnail.width, thumbnail.height), (256, 144))
        self.assertEqual(thumbnail.mime_type, "image/jpeg")

        preview = transform_image(source_path=self.source, operations=preview_operations(), output_dir=self.root / "out")
        self.assertEqual((preview.width, preview.height), (1024, 576))
        self.assertEqual(preview.format, "jpeg")

        self.assertEqual(thumbnail_operations().quality, 80)
        self.assertEqual(preview_operations().quality, 85)
        self.assertEqual(thumbnail_operations(64).resize.width, 64)


class TestGeometryHelpers(unittest.TestCase):
    def test_right_angle_rotation_swaps_dimensions(self):
        image = np.zeros((30, 50, 3), dtype=np.uint8)
        self.assertEqual(rotate_image(image, 90).shape[:2], (50, 30))
        self.assertEqual(rotate_image(image, 180).shape[:2], (30, 50))
        self.assertEqual(rotate_image(image, -90).shape[:2], (50, 30))
        self.assertIs(rotate_image(image, 360), image)

    def test_free_rotation_expands_canvas(self):
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        rotated = rotate_image(image, 45)
        self.assertGreaterEqual(rotated.shape[0], 141)
        self.assertGreaterEqual(rotated.shape[1], 141)

    def test_rotation_is_clockwise(self):
        image = np.zeros((2, 3, 3), dtype=np.uint8)
        image[0, 0] = 255
        rotated = rotate_image(image, 90)
        # Top-left corner moves to the top-right after a clockwise quarter turn.
        self.assertEqual(int(rotated[0, -1, 0]), 255)

    def test_resize_with_one_dimension_keeps_aspect(self):
        image = np.zeros((200, 400, 3), dtype=np.uint8)
        self.assertEqual(resize_inside(image, None, 100).shape[:2], (100, 200))
        self.assertIs(resize_inside(image, 800, None), image)


if __name__ == "__main__":
    unittest.main()
