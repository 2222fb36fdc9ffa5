from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


BACKEND_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    uploads_dir: Path
    archives_dir: Path
    db_path: str
    image_concurrency: int = 2
    max_pending: int = 500
    video_timeout_sec: float = 3600.0
    log_level: str = "INFO"

    @property
    def processed_video_dir(self) -> Path:
        return self.uploads_dir / "processed"

    def ensure_dirs(self) -> None:
        for directory in (self.data_dir, self.uploads_dir, self.archives_dir, self.processed_video_dir):
            directory.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    data_dir = Path(os.getenv("PHOTOPIPE_DATA_DIR", BACKEND_ROOT / "data")).expanduser()
    uploads_dir = Path(os.getenv("PHOTOPIPE_UPLOADS_DIR", data_dir / "uploads")).expanduser()
    archives_dir = Path(os.getenv("PHOTOPIPE_ARCHIVES_DIR", data_dir / "archives")).expanduser()
    db_path = os.getenv("PHOTOPIPE_DB_PATH", str(data_dir / "photopipe.db"))
    return Settings(
        data_dir=data_dir,
        uploads_dir=uploads_dir,
        archives_dir=archives_dir,
        db_path=db_path,
        image_concurrency=max(1, _env_int("PHOTOPIPE_IMAGE_CONCURRENCY", 2)),
        max_pending=max(1, _env_int("PHOTOPIPE_MAX_PENDING", 500)),
        video_timeout_sec=_env_float("PHOTOPIPE_VIDEO_TIMEOUT_SEC", 3600.0),
        log_level=os.getenv("PHOTOPIPE_LOG_LEVEL", "INFO").upper(),
    )


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer, got {raw!r}")


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number, got {raw!r}")
