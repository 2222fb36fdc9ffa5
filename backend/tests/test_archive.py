import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from photopipe.errors import ArchiveError
from photopipe.pipeline.archive import build_archive


class TestBuildArchive(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.messages = []

    def tearDown(self):
        self._tmp.cleanup()

    def _file(self, name: str, content: bytes = b"jpeg-bytes") -> Path:
        path = self.root / name
        path.write_bytes(content)
        return path

    def test_missing_file_is_skipped(self):
        present = self._file("a.jpg")
        missing = self.root / "b.jpg"
        target = self.root / "archives" / "export.zip"

        result = build_archive(
            sources=[(present, "a.jpg", None), (missing, "b.jpg", None)],
            archive_path=target,
            job_logger=self.messages.append,
        )

        self.assertEqual(result.included_count, 1)
        self.assertTrue(target.is_file())
        self.assertEqual(result.byte_size, target.stat().st_size)
        with zipfile.ZipFile(target) as bundle:
            self.assertEqual(bundle.namelist(), ["a.jpg"])
            self.assertEqual(bundle.read("a.jpg"), b"jpeg-bytes")
            self.assertEqual(bundle.getinfo("a.jpg").compress_type, zipfile.ZIP_DEFLATED)
        self.assertEqual(result.skipped, [str(missing)])
        self.assertTrue(any("b.jpg" in message for message in self.messages))

    def test_included_count_matches_readable_sources(self):
        sources = []
        for index in range(6):
            path = self.root / f"img{index}.jpg"
            if index % 3 != 0:
                path.write_bytes(b"x" * (index + 1))
            sources.append((path, path.name, None))

        result = build_archive(sources=sources, archive_path=self.root / "out.zip")
        self.assertEqual(result.included_count, 4)
        self.assertEqual(len(result.skipped), 2)

    def test_all_missing_fails_without_leaving_files(self):
        target = self.root / "empty.zip"
        with self.assertRaises(ArchiveError) as caught:
            build_archive(sources=[(self.root / "x.jpg", "x.jpg", None)], archive_path=target)
        self.assertTrue(caught.exception.retryable)
        self.assertFalse(target.exists())
        self.assertEqual([path.name for path in self.root.iterdir()], [])

    def test_metadata_sidecars_follow_included_images(self):
        present = self._file("sunset.jpg")
        target = self.root / "meta.zip"
        result = build_archive(
            sources=[(present, "sunset.jpg", "title: Sunset"), (self.root / "gone.jpg", "gone.jpg", "title: Gone")],
            archive_path=target,
        )
        with zipfile.ZipFile(target) as bundle:
            self.assertEqual(sorted(bundle.namelist()), ["sunset.jpg", "sunset.txt"])
            self.assertEqual(bundle.read("sunset.txt").decode("utf-8"), "title: Sunset")
        self.assertEqual(result.included_count, 1)

    def test_sidecars_stay_with_their_image_when_names_collide(self):
        (self.root / "x").mkdir()
        (self.root / "y").mkdir()
        first = self.root / "x" / "photo.png"
        first.write_bytes(b"first")
        second = self.root / "y" / "photo.png"
        second.write_bytes(b"second")
        target = self.root / "same.zip"

        build_archive(
            sources=[(first, "photo.png", "title: First"), (second, "photo.png", "title: Second")],
            archive_path=target,
        )
        with zipfile.ZipFile(target) as bundle:
            self.assertEqual(bundle.read("photo.png"), b"first")
            self.assertEqual(bundle.read("photo.txt").decode("utf-8"), "title: First")
            self.assertEqual(bundle.read("photo (1).png"), b"second")
            self.assertEqual(bundle.read("photo (1).txt").decode("utf-8"), "title: Second")

    def test_read_failure_skips_the_file_and_keeps_going(self):
        locked = self._file("locked.jpg", b"secret")
        fine = self._file("fine.jpg", b"ok")
        target = self.root / "partial.zip"
        real_read_bytes = Path.read_bytes

        def read_bytes(path):
            if path.name == "locked.jpg":
                raise PermissionError(13, "Permission denied", str(path))
            return real_read_bytes(path)

        with mock.patch.object(Path, "read_bytes", read_bytes):
            result = build_archive(
                sources=[(locked, "locked.jpg", "title: Locked"), (fine, "fine.jpg", None)],
                archive_path=target,
                job_logger=self.messages.append,
            )

        self.assertEqual(result.included_count, 1)
        self.assertEqual(result.skipped, [str(locked)])
        with zipfile.ZipFile(target) as bundle:
            self.assertEqual(bundle.namelist(), ["fine.jpg"])
            self.assertEqual(bundle.read("fine.jpg"), b"ok")
        self.assertTrue(any("locked.jpg" in message for message in self.messages))

    def test_duplicate_entry_names_are_kept_apart(self):
        first = self._file("one.jpg", b"1")
        (self.root / "nested").mkdir()
        second = self.root / "nested" / "one.jpg"
        second.write_bytes(b"2")
        target = self.root / "dupes.zip"

        result = build_archive(sources=[(first, "one.jpg", None), (second, "one.jpg", None)], archive_path=target)
        self.assertEqual(result.entries, ["one.jpg", "one (1).jpg"])
        with zipfile.ZipFile(target) as bundle:
            self.assertEqual(bundle.read("one (1).jpg"), b"2")

    def test_entry_names_cannot_escape_the_archive(self):
        present = self._file("safe.jpg")
        target = self.root / "paths.zip"
        result = build_archive(sources=[(present, "../../etc/safe.jpg", None)], archive_path=target)
        self.assertEqual(result.entries, ["etc/safe.jpg"])

    def test_unwritable_destination_is_archive_error(self):
        present = self._file("a.jpg")
        blocker = self._file("not_a_dir")
        with self.assertRaises(ArchiveError):
            build_archive(sources=[(present, "a.jpg", None)], archive_path=blocker / "export.zip")


if __name__ == "__main__":
    unittest.main()
