from __future__ import annotations

import logging
import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from photopipe.errors import ArchiveError
from photopipe.pipeline.outputs import part_path, remove_quietly


logger = logging.getLogger(__name__)

COMPRESSION_LEVEL = 9


@dataclass(frozen=True)
class ArchiveResult:
    archive_path: Path
    byte_size: int
    included_count: int
    entries: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "archive_path": str(self.archive_path),
            "byte_size": self.byte_size,
            "included_count": self.included_count,
            "entries": list(self.entries),
            "skipped": list(self.skipped),
        }


ArchiveSource = Tuple[Path, str, Optional[str]]


def build_archive(
    *,
    sources: Sequence[ArchiveSource],
    archive_path: Path,
    job_logger: Callable[[str], None] = lambda _: None,
) -> ArchiveResult:
    """Zip `(path, entry_name, sidecar_text)` sources into `archive_path`.

    Missing or unreadable files are skipped. A `sidecar_text` that is not
    None is written as `<entry stem>.txt` beside the entry it belongs to.
    """
    temp_path = part_path(archive_path)
    entries: List[str] = []
    skipped: List[str] = []
    used_names: set[str] = set()
    included = 0

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL) as bundle:
            for source, entry_name, sidecar_text in sources:
                source = Path(source)
                data = _read_source(source)
                if data is None:
                    message = f"skipping missing or unreadable file: {source}"
                    logger.warning(message)
                    job_logger(message)
                    skipped.append(str(source))
                    continue

                name = _unique_entry_name(_clean_entry_name(entry_name, source), used_names)
                info = zipfile.ZipInfo.from_file(source, arcname=name, strict_timestamps=False)
                bundle.writestr(info, data, compress_type=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL)
                entries.append(name)
                included += 1

                if sidecar_text is not None:
                    sidecar = _unique_entry_name(str(PurePosixPath(name).with_suffix(".txt")), used_names)
                    bundle.writestr(sidecar, sidecar_text)
                    entries.append(sidecar)
    except (OSError, zipfile.BadZipFile) as exc:
        remove_quietly(temp_path)
        raise ArchiveError(f"archive could not be written: {exc}", operation="zip") from exc

    if included == 0:
        remove_quietly(temp_path)
        raise ArchiveError(f"none of the {len(sources)} source files could be read", operation="zip")

    try:
        os.replace(temp_path, archive_path)
        byte_size = archive_path.stat().st_size
    except OSError as exc:
        remove_quietly(temp_path)
        raise ArchiveError(f"archive could not be finalized: {exc}", operation="zip") from exc

    job_logger(f"archive written: {archive_path.name} ({included} files, {byte_size} bytes)")
    return ArchiveResult(
        archive_path=archive_path,
        byte_size=int(byte_size),
        included_count=included,
        entries=entries,
        skipped=skipped,
    )


def _read_source(path: Path) -> Optional[bytes]:
    if not path.is_file():
        return None
    try:
        return path.read_bytes()
    except OSError:
        return None


def _clean_entry_name(entry_name: str, source: Path) -> str:
    parts = [part for part in PurePosixPath(str(entry_name or "").replace("\\", "/")).parts if part not in {"", ".", "..", "/"}]
    return "/".join(parts) or source.name


def _unique_entry_name(name: str, used: set[str]) -> str:
    candidate = name
    counter = 1
    while candidate in used:
        path = PurePosixPath(name)
        candidate = str(path.with_name(f"{path.stem} ({counter}){path.suffix}"))
        counter += 1
    used.add(candidate)
    return candidate
