from __future__ import annotations

import re
import time
import uuid
from pathlib import Path


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_stem(name: str, fallback: str = "file") -> str:
    stem = _UNSAFE_CHARS.sub("_", Path(name).stem).strip("._")
    return stem[:80] or fallback


def unique_output_path(directory: Path, stem: str, tag: str, extension: str) -> Path:
    """`<stem>_<tag>_<ms>_<8 hex>.<ext>`; concurrent workers never pick the same name."""
    directory.mkdir(parents=True, exist_ok=True)
    token = uuid.uuid4().hex[:8]
    millis = int(time.time() * 1000)
    ext = extension.lstrip(".").lower()
    return directory / f"{safe_stem(stem)}_{tag}_{millis}_{token}.{ext}"


def part_path(final_path: Path) -> Path:
    return final_path.with_name(f".{final_path.name}.part")


def remove_quietly(path: Path) -> None:
    # Leftover temp files are never linked from a variant record.
    try:
        path.unlink()
    except OSError:
        pass
