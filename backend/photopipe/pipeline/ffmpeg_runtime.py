from __future__ import annotations

import os
import platform
import shutil
from functools import lru_cache
from pathlib import Path


BACKEND_ROOT = Path(__file__).resolve().parents[2]

FFMPEG_ENV_KEY = "PHOTOPIPE_FFMPEG_BIN"
FFPROBE_ENV_KEY = "PHOTOPIPE_FFPROBE_BIN"


def resolve_ffmpeg_bin() -> str:
    return _resolve_tool_bin("ffmpeg", FFMPEG_ENV_KEY)


def resolve_ffprobe_bin() -> str:
    override = _resolve_env_override("ffprobe", FFPROBE_ENV_KEY)
    if override:
        return override

    # Prefer the ffprobe shipped next to whichever ffmpeg we run.
    sibling = _resolve_sibling_binary(resolve_ffmpeg_bin(), "ffprobe")
    if sibling:
        return sibling
    return _resolve_tool_bin("ffprobe", "")


def tool_available(command: str) -> bool:
    if _looks_like_path(command):
        return Path(command).expanduser().is_file()
    return shutil.which(command) is not None


@lru_cache(maxsize=None)
def _resolve_tool_bin(tool_name: str, env_key: str) -> str:
    if env_key:
        override = _resolve_env_override(tool_name, env_key)
        if override:
            return override

    for candidate in _bundled_candidates(tool_name):
        if candidate.is_file():
            return str(candidate.resolve())

    located = shutil.which(_binary_filename(tool_name)) or shutil.which(tool_name)
    if located:
        return str(Path(located).resolve())
    return tool_name


def _resolve_env_override(tool_name: str, env_key: str) -> str:
    raw = os.getenv(env_key, "").strip()
    if not raw:
        return ""

    if _looks_like_path(raw):
        env_path = Path(raw).expanduser()
        if not env_path.is_absolute():
            env_path = BACKEND_ROOT / env_path
        if env_path.is_dir():
            env_path = env_path / _binary_filename(tool_name)
        return str(env_path.resolve())

    located = shutil.which(raw)
    if located:
        return str(Path(located).resolve())
    return raw


def _resolve_sibling_binary(command: str, tool_name: str) -> str:
    if not command or not _looks_like_path(command):
        return ""
    parent = Path(command).expanduser().resolve().parent
    candidate = parent / _binary_filename(tool_name)
    if candidate.is_file():
        return str(candidate)
    return ""


def _bundled_candidates(tool_name: str) -> list[Path]:
    filename = _binary_filename(tool_name)
    return [
        BACKEND_ROOT / "bin" / filename,
        BACKEND_ROOT / "bin" / "ffmpeg" / filename,
        BACKEND_ROOT / "ffmpeg" / "bin" / filename,
    ]


def _binary_filename(tool_name: str) -> str:
    if platform.system().lower() == "windows":
        return f"{tool_name}.exe"
    return tool_name


def _looks_like_path(value: str) -> bool:
    if not value:
        return False
    return any(sep in value for sep in ("/", "\\")) or value.startswith(".")
