from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from photopipe.db import Database, utc_now
from photopipe.errors import SourceNotFoundError


@dataclass(frozen=True)
class SourceMedia:
    id: str
    kind: str
    user_id: str
    filename: str
    relative_path: str
    path: Path
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DerivedVariant:
    id: str
    source_id: Optional[str]
    source_kind: str
    user_id: str
    filename: str
    path: str
    byte_size: int
    mime_type: str
    variant_type: str
    parameters: Dict[str, Any]
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    job_id: Optional[str] = None
    created_at: str = ""


IMAGE_METADATA_FIELDS = (
    "original_name",
    "title",
    "description",
    "alt",
    "caption",
    "tags",
    "width",
    "height",
    "mime_type",
    "uploaded_at",
)


class MediaCatalog:
    """Read access to uploaded media and write access to derived variants.

    Stored paths are relative to the uploads root, the way the web tier keeps
    them; `resolve_*` turns them into absolute paths and checks ownership.
    """

    def __init__(self, db: Database, uploads_root: Path) -> None:
        self._db = db
        self._uploads_root = uploads_root

    @property
    def uploads_root(self) -> Path:
        return self._uploads_root

    def register_image(
        self,
        *,
        user_id: str,
        path: str,
        filename: Optional[str] = None,
        image_id: Optional[str] = None,
        **metadata: Any,
    ) -> str:
        image_id = image_id or uuid.uuid4().hex
        unknown = set(metadata) - set(IMAGE_METADATA_FIELDS)
        if unknown:
            raise ValueError(f"unknown image metadata fields: {', '.join(sorted(unknown))}")
        tags = metadata.get("tags")
        if isinstance(tags, (list, tuple)):
            metadata["tags"] = ", ".join(str(tag) for tag in tags)
        self._db.execute(
            """
            insert into images (
              image_id, user_id, filename, path, original_name, title, description,
              alt, caption, tags, width, height, mime_type, uploaded_at
            )
            values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                image_id,
                user_id,
                filename or Path(path).name,
                path,
                metadata.get("original_name"),
                metadata.get("title"),
                metadata.get("description"),
                metadata.get("alt"),
                metadata.get("caption"),
                metadata.get("tags"),
                metadata.get("width"),
                metadata.get("height"),
                metadata.get("mime_type"),
                metadata.get("uploaded_at") or utc_now(),
            ),
        )
        return image_id

    def register_video(
        self,
        *,
        user_id: str,
        path: str,
        filename: Optional[str] = None,
        video_id: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        video_id = video_id or uuid.uuid4().hex
        self._db.execute(
            """
            insert into videos (video_id, user_id, filename, path, mime_type, uploaded_at)
            values (?, ?, ?, ?, ?, ?)
            """,
            (video_id, user_id, filename or Path(path).name, path, mime_type, utc_now()),
        )
        return video_id

    def resolve_image(self, image_id: str, user_id: str, *, require_file: bool = True) -> SourceMedia:
        row = self._db.fetchone("select * from images where image_id = ?", (image_id,))
        if row is None or row["user_id"] != user_id:
            raise SourceNotFoundError(f"image not found: {image_id}")
        media = SourceMedia(
            id=row["image_id"],
            kind="image",
            user_id=row["user_id"],
            filename=row["filename"],
            relative_path=row["path"],
            path=self._absolute(row["path"]),
            metadata={key: row[key] for key in IMAGE_METADATA_FIELDS},
        )
        if require_file and not media.path.is_file():
            raise SourceNotFoundError(f"image file is missing: {media.relative_path}")
        return media

    def resolve_video(self, video_id: str, user_id: str) -> SourceMedia:
        row = self._db.fetchone("select * from videos where video_id = ?", (video_id,))
        if row is None or row["user_id"] != user_id:
            raise SourceNotFoundError(f"video not found: {video_id}")
        media = SourceMedia(
            id=row["video_id"],
            kind="video",
            user_id=row["user_id"],
            filename=row["filename"],
            relative_path=row["path"],
            path=self._absolute(row["path"]),
            metadata={"mime_type": row["mime_type"]},
        )
        if not media.path.is_file():
            raise SourceNotFoundError(f"video file is missing: {media.relative_path}")
        return media

    def images_for_export(self, image_ids: Sequence[str], user_id: str) -> List[SourceMedia]:
        """Return the caller's images in request order; unknown ids are dropped.

        Files are not checked here: the archive builder skips missing ones.
        """
        found: List[SourceMedia] = []
        seen: set[str] = set()
        for image_id in image_ids:
            if image_id in seen:
                continue
            seen.add(image_id)
            try:
                found.append(self.resolve_image(image_id, user_id, require_file=False))
            except SourceNotFoundError:
                continue
        return found

    def create_variant(
        self,
        *,
        source_id: Optional[str],
        source_kind: str,
        user_id: str,
        output_path: Path,
        byte_size: int,
        mime_type: str,
        variant_type: str,
        parameters: Dict[str, Any],
        width: Optional[int] = None,
        height: Optional[int] = None,
        duration_seconds: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> DerivedVariant:
        variant = DerivedVariant(
            id=uuid.uuid4().hex,
            source_id=source_id,
            source_kind=source_kind,
            user_id=user_id,
            filename=output_path.name,
            path=self._relative(output_path),
            byte_size=int(byte_size),
            mime_type=mime_type,
            variant_type=variant_type,
            parameters=parameters,
            width=width,
            height=height,
            duration_seconds=duration_seconds,
            job_id=job_id,
            created_at=utc_now(),
        )
        self._db.execute(
            """
            insert into variants (
              variant_id, source_id, source_kind, user_id, job_id, filename, path, width, height,
              duration_seconds, byte_size, mime_type, variant_type, parameters_json, created_at
            )
            values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                variant.id,
                variant.source_id,
                variant.source_kind,
                variant.user_id,
                variant.job_id,
                variant.filename,
                variant.path,
                variant.width,
                variant.height,
                variant.duration_seconds,
                variant.byte_size,
                variant.mime_type,
                variant.variant_type,
                json.dumps(variant.parameters),
                variant.created_at,
            ),
        )
        return variant

    def variants_for_job(self, job_id: str) -> List[DerivedVariant]:
        rows = self._db.fetchall("select * from variants where job_id = ? order by created_at", (job_id,))
        return [_row_to_variant(row) for row in rows]

    def _absolute(self, stored_path: str) -> Path:
        candidate = Path(stored_path)
        if candidate.is_absolute():
            return candidate
        return self._uploads_root / candidate

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self._uploads_root.resolve()).as_posix()
        except ValueError:
            return str(path)


def _row_to_variant(row: Any) -> DerivedVariant:
    return DerivedVariant(
        id=row["variant_id"],
        source_id=row["source_id"],
        source_kind=row["source_kind"],
        user_id=row["user_id"],
        filename=row["filename"],
        path=row["path"],
        byte_size=row["byte_size"],
        mime_type=row["mime_type"],
        variant_type=row["variant_type"],
        parameters=json.loads(row["parameters_json"]) if row["parameters_json"] else {},
        width=row["width"],
        height=row["height"],
        duration_seconds=row["duration_seconds"],
        job_id=row["job_id"],
        created_at=row["created_at"],
    )
