#!/usr/bin/env python3
from __future__ import annotations

import importlib.util
import platform
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
BACKEND_ROOT = PROJECT_ROOT / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


REQUIRED_MODULES = ("fastapi", "uvicorn", "pydantic", "numpy", "cv2", "PIL")


def has_module(name: str) -> bool:
    return importlib.util.find_spec(name) is not None


def resolve_command_path(command: str) -> str | None:
    value = str(command or "").strip()
    if not value:
        return None
    candidate = Path(value).expanduser()
    if candidate.is_file():
        return str(candidate.resolve())
    if candidate.is_absolute():
        return None
    located = shutil.which(value)
    return str(Path(located).resolve()) if located else None


def command_version(command: str) -> tuple[str, str] | tuple[None, None]:
    path = resolve_command_path(command)
    if not path:
        return None, None
    try:
        output = subprocess.check_output([path, "-version"], stderr=subprocess.STDOUT, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as exc:
        return path, f"version check failed: {exc}"
    first_line = output.strip().splitlines()[0] if output.strip() else "version output not found"
    return path, first_line


def print_section(title: str) -> None:
    print(f"\n== {title} ==")


def print_item(name: str, value: str) -> None:
    print(f"- {name}: {value}")


def check_settings() -> None:
    from photopipe.config import load_settings

    try:
        settings = load_settings()
    except RuntimeError as exc:
        print_item("settings", f"invalid: {exc}")
        return
    print_item("data_dir", str(settings.data_dir))
    print_item("uploads_dir", str(settings.uploads_dir))
    print_item("archives_dir", str(settings.archives_dir))
    print_item("db_path", settings.db_path)
    print_item("image_concurrency", str(settings.image_concurrency))
    print_item("max_pending", str(settings.max_pending))
    print_item("video_timeout_sec", f"{settings.video_timeout_sec:g}")


def check_image_smoke() -> None:
    missing = [name for name in ("numpy", "cv2", "PIL") if not has_module(name)]
    if missing:
        print_item("image transform", f"skipped, missing {', '.join(missing)}")
        return

    import numpy as np
    from PIL import Image

    from photopipe.errors import PipelineError
    from photopipe.pipeline.image_transform import thumbnail_operations, transform_image
    from photopipe.schemas import ImageOperations

    with tempfile.TemporaryDirectory(prefix="photopipe-doctor-") as tmp:
        source = Path(tmp) / "probe.png"
        gradient = np.tile(np.linspace(0, 255, 320, dtype=np.uint8), (240, 1))
        Image.fromarray(np.dstack([gradient, gradient[::-1], gradient])).save(source)
        operations = ImageOperations.model_validate(
            {"crop": {"strategy": "smart", "targetWidth": 160, "targetHeight": 120}, "format": "webp"}
        )
        try:
            result = transform_image(source_path=source, operations=operations, output_dir=Path(tmp))
            thumbnail = transform_image(
                source_path=source, operations=thumbnail_operations(), output_dir=Path(tmp), variant_tag="thumbnail"
            )
        except PipelineError as exc:
            print_item("image transform", f"failed: {exc}")
            return
        print_item("image transform", f"ok ({result.width}x{result.height} {result.mime_type})")
        print_item("thumbnail", f"ok ({thumbnail.width}x{thumbnail.height} {thumbnail.mime_type})")


def main() -> int:
    print("Photopipe - environment check")
    print_item("python", sys.version.split()[0])
    print_item("platform", platform.platform())
    print_item("backend_root", str(BACKEND_ROOT))

    print_section("Commands")
    from photopipe.pipeline.ffmpeg_runtime import resolve_ffmpeg_bin, resolve_ffprobe_bin

    for label, command in (("ffmpeg", resolve_ffmpeg_bin()), ("ffprobe", resolve_ffprobe_bin())):
        path, version = command_version(command)
        print_item(f"{label}_resolved", command)
        print_item(label, f"{path} | {version}" if path else "missing")

    print_section("Python modules")
    for module in REQUIRED_MODULES:
        print_item(module, "ok" if has_module(module) else "missing")

    print_section("Settings")
    check_settings()

    print_section("Smoke test")
    check_image_smoke()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
