from __future__ import annotations

import sqlite3
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from photopipe.catalog import MediaCatalog, SourceMedia
from photopipe.errors import ProcessingError, SourceNotFoundError, ValidationError
from photopipe.job_store import Job, JobType
from photopipe.pipeline.archive import build_archive
from photopipe.pipeline.image_transform import transform_image
from photopipe.pipeline.outputs import remove_quietly, safe_stem, unique_output_path
from photopipe.pipeline.smart_crop import AUTOCROP, SMARTCROP
from photopipe.pipeline.video_transform import transform_video
from photopipe.schemas import (
    PAYLOAD_MODELS,
    CropBox,
    ImageJobPayload,
    ImageOperations,
    SmartCropPayload,
    SmartCropSpec,
    VideoJobPayload,
    WireModel,
    ZipJobPayload,
)


Logger = Callable[[str], None]
Progress = Callable[[float], None]


class JobFamily(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    ARCHIVE = "archive"


JOB_FAMILIES: Dict[JobType, JobFamily] = {
    JobType.IMAGE_CROP: JobFamily.IMAGE,
    JobType.IMAGE_RESIZE: JobFamily.IMAGE,
    JobType.IMAGE_SMART_CROP: JobFamily.IMAGE,
    JobType.IMAGE_AUTO_CROP: JobFamily.IMAGE,
    JobType.VIDEO_PROCESS: JobFamily.VIDEO,
    JobType.ZIP_CREATE: JobFamily.ARCHIVE,
}

SMART_CROP_STRATEGIES = {
    JobType.IMAGE_SMART_CROP: "smart",
    JobType.IMAGE_AUTO_CROP: "auto",
}


def parse_payload(job_type: JobType, payload: Dict[str, Any]) -> WireModel:
    model = PAYLOAD_MODELS[job_type]
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        issues = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
        )
        raise ValidationError(f"invalid {job_type.value} payload: {issues}", operation="payload") from exc


def _check_owner(job: Job, payload_user_id: str) -> None:
    if payload_user_id != job.owner_id:
        raise SourceNotFoundError(f"payload user {payload_user_id} does not own job {job.id}")


class ImageJobExecutor:
    family = JobFamily.IMAGE

    def __init__(self, catalog: MediaCatalog) -> None:
        self._catalog = catalog

    def execute(self, job: Job, *, logger: Logger, progress: Progress) -> Dict[str, Any]:
        payload = parse_payload(job.type, job.payload)
        if isinstance(payload, SmartCropPayload):
            operations = ImageOperations(
                crop=SmartCropSpec(
                    strategy=SMART_CROP_STRATEGIES[job.type],
                    target_width=payload.target_width,
                    target_height=payload.target_height,
                ),
                format=payload.format,
                quality=payload.quality,
            )
        elif isinstance(payload, ImageJobPayload):
            operations = payload.operations
        else:
            raise ValidationError(f"{job.type.value} is not an image job", operation="payload")

        _check_owner(job, payload.user_id)
        media = self._catalog.resolve_image(payload.image_id, payload.user_id)
        variant_type = image_variant_type(job.type, operations)
        progress(10.0)

        result = transform_image(
            source_path=media.path,
            operations=operations,
            output_dir=media.path.parent,
            variant_tag=variant_type,
            logger=logger,
        )
        progress(90.0)

        parameters = operations.model_dump(by_alias=True, exclude_none=True)
        if result.crop is not None:
            parameters["cropArea"] = result.crop.region.to_dict()
            parameters["score"] = round(float(result.crop.score), 4)
            parameters["method"] = result.crop.strategy
        variant = _record_variant(
            self._catalog,
            output_path=result.output_path,
            source=media,
            job=job,
            source_kind="image",
            byte_size=result.byte_size,
            mime_type=result.mime_type,
            variant_type=variant_type,
            parameters=parameters,
            width=result.width,
            height=result.height,
        )
        output = result.to_dict()
        output["output_path"] = variant.path
        output.update({"variant_id": variant.id, "variant_type": variant_type, "image_id": media.id})
        return output


def image_variant_type(job_type: JobType, operations: ImageOperations) -> str:
    if job_type == JobType.IMAGE_SMART_CROP:
        return SMARTCROP
    if job_type == JobType.IMAGE_AUTO_CROP:
        return AUTOCROP
    if isinstance(operations.crop, SmartCropSpec):
        return SMARTCROP if operations.crop.strategy == "smart" else AUTOCROP
    if isinstance(operations.crop, CropBox) or job_type == JobType.IMAGE_CROP:
        return "crop"
    return "resize"


class VideoJobExecutor:
    family = JobFamily.VIDEO

    def __init__(self, catalog: MediaCatalog, output_dir: Path, *, timeout_sec: Optional[float] = None) -> None:
        self._catalog = catalog
        self._output_dir = output_dir
        self._timeout_sec = timeout_sec

    def execute(self, job: Job, *, logger: Logger, progress: Progress) -> Dict[str, Any]:
        payload = parse_payload(job.type, job.payload)
        if not isinstance(payload, VideoJobPayload):
            raise ValidationError(f"{job.type.value} is not a video job", operation="payload")
        _check_owner(job, payload.user_id)
        media = self._catalog.resolve_video(payload.video_id, payload.user_id)

        result = transform_video(
            source_path=media.path,
            operations=payload.operations,
            output_dir=self._output_dir,
            progress=progress,
            timeout_sec=self._timeout_sec,
            logger=logger,
        )
        variant = _record_variant(
            self._catalog,
            output_path=result.output_path,
            source=media,
            job=job,
            source_kind="video",
            byte_size=result.byte_size,
            mime_type=result.mime_type,
            variant_type="video_process",
            parameters=payload.operations.model_dump(by_alias=True, exclude_none=True),
            width=result.width,
            height=result.height,
            duration_seconds=result.duration_seconds,
        )
        output = result.to_dict()
        output["output_path"] = variant.path
        output.update({"variant_id": variant.id, "variant_type": "video_process", "video_id": media.id})
        return output


class ArchiveJobExecutor:
    family = JobFamily.ARCHIVE

    def __init__(self, catalog: MediaCatalog, archives_dir: Path) -> None:
        self._catalog = catalog
        self._archives_dir = archives_dir

    def execute(self, job: Job, *, logger: Logger, progress: Progress) -> Dict[str, Any]:
        payload = parse_payload(job.type, job.payload)
        if not isinstance(payload, ZipJobPayload):
            raise ValidationError(f"{job.type.value} is not an archive job", operation="payload")
        _check_owner(job, payload.user_id)

        images = self._catalog.images_for_export(payload.image_ids, payload.user_id)
        if not images:
            raise SourceNotFoundError("no images found for export")
        missing_ids = len(set(payload.image_ids)) - len(images)
        if missing_ids:
            logger(f"{missing_ids} requested image(s) are unknown and were left out")

        sources = [
            (image.path, image.filename, metadata_text(image) if payload.include_metadata else None) for image in images
        ]
        archive_path = unique_output_path(self._archives_dir, safe_stem(payload.archive_name, "export"), "zip", "zip")
        logger(f"building archive {payload.archive_name} from {len(sources)} image(s)")
        progress(10.0)

        result = build_archive(sources=sources, archive_path=archive_path, job_logger=logger)
        progress(90.0)

        variant = _record_variant(
            self._catalog,
            output_path=result.archive_path,
            source=None,
            job=job,
            source_kind="archive",
            byte_size=result.byte_size,
            mime_type="application/zip",
            variant_type="zip",
            parameters={
                "imageIds": list(payload.image_ids),
                "archiveName": payload.archive_name,
                "includeMetadata": payload.include_metadata,
            },
        )
        output = result.to_dict()
        output.update(
            {
                "archive_name": payload.archive_name,
                "requested_count": len(payload.image_ids),
                "variant_id": variant.id,
            }
        )
        return output


def metadata_text(image: SourceMedia) -> str:
    fields = {"id": image.id, "filename": image.filename}
    fields.update(image.metadata)
    return "\n".join(f"{key}: {value}" for key, value in fields.items() if value not in (None, ""))


def _record_variant(
    catalog: MediaCatalog,
    *,
    output_path: Path,
    source: Optional[SourceMedia],
    job: Job,
    **fields: Any,
):
    try:
        return catalog.create_variant(
            source_id=source.id if source is not None else None,
            user_id=job.owner_id,
            output_path=output_path,
            job_id=job.id,
            **fields,
        )
    except sqlite3.Error as exc:
        remove_quietly(output_path)
        raise ProcessingError(f"variant record could not be saved: {exc}", operation="record_variant") from exc
