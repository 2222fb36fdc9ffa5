from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from photopipe.job_store import JobType


ImageFormat = Literal["jpeg", "png", "webp"]
VideoFormat = Literal["mp4", "webm", "avi", "mov"]
VideoQuality = Literal["low", "medium", "high"]
VideoResolution = Literal["480p", "720p", "1080p", "4k"]
CropStrategy = Literal["smart", "auto"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CropBox(WireModel):
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @field_validator("x", "y", "width", "height", mode="before")
    @classmethod
    def round_pixels(cls, value):
        if isinstance(value, float):
            return int(round(value))
        return value


class SmartCropSpec(WireModel):
    strategy: CropStrategy
    target_width: int = Field(gt=0, le=10000)
    target_height: int = Field(gt=0, le=10000)


class ResizeOptions(WireModel):
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_box(self):
        if self.width is None and self.height is None:
            raise ValueError("resize needs width, height, or both")
        return self


class ImageOperations(WireModel):
    crop: Optional[Union[SmartCropSpec, CropBox]] = None
    resize: Optional[ResizeOptions] = None
    rotate: Optional[float] = None
    flip_horizontal: bool = False
    flip_vertical: bool = False
    format: Optional[ImageFormat] = None
    quality: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, value):
        if isinstance(value, str):
            token = value.strip().lower()
            return "jpeg" if token == "jpg" else token
        return value


class ImageJobPayload(WireModel):
    image_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    operations: ImageOperations = Field(default_factory=ImageOperations)


class SmartCropPayload(WireModel):
    image_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    target_width: int = Field(default=800, gt=0, le=4000)
    target_height: int = Field(default=600, gt=0, le=4000)
    format: ImageFormat = "jpeg"
    quality: int = Field(default=90, ge=1, le=100)


class TrimOptions(WireModel):
    start: float = Field(ge=0)
    duration: float = Field(gt=0)


class VideoCrop(WireModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)


class VideoOperations(WireModel):
    format: Optional[VideoFormat] = None
    quality: Optional[VideoQuality] = None
    resolution: Optional[VideoResolution] = None
    trim: Optional[TrimOptions] = None
    crop: Optional[VideoCrop] = None


class VideoJobPayload(WireModel):
    video_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    operations: VideoOperations = Field(default_factory=VideoOperations)


class ZipJobPayload(WireModel):
    image_ids: List[str] = Field(min_length=1)
    user_id: str = Field(min_length=1)
    archive_name: str = "export.zip"
    include_metadata: bool = False

    @field_validator("archive_name")
    @classmethod
    def validate_archive_name(cls, value: str) -> str:
        name = str(value or "").strip()
        if not name:
            return "export.zip"
        if "/" in name or "\\" in name or name in {".", ".."}:
            raise ValueError("archive_name must be a plain file name")
        if not name.lower().endswith(".zip"):
            name = f"{name}.zip"
        return name


PAYLOAD_MODELS: Dict[JobType, type[WireModel]] = {
    JobType.IMAGE_CROP: ImageJobPayload,
    JobType.IMAGE_RESIZE: ImageJobPayload,
    JobType.IMAGE_SMART_CROP: SmartCropPayload,
    JobType.IMAGE_AUTO_CROP: SmartCropPayload,
    JobType.VIDEO_PROCESS: VideoJobPayload,
    JobType.ZIP_CREATE: ZipJobPayload,
}


class JobCreate(WireModel):
    type: JobType
    payload: Dict[str, Any]


class JobCreateResponse(WireModel):
    job_id: str
    status: str


class JobError(WireModel):
    kind: str
    message: str


class JobStatusResponse(WireModel):
    id: str
    type: str
    status: str
    progress: Optional[float] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    log_tail: List[str] = Field(default_factory=list)


class QueueSnapshot(WireModel):
    family: str
    concurrency: int
    max_attempts: int
    pending: int
    active: int
    accepting: bool


class RuntimeStatusResponse(WireModel):
    ffmpeg_bin: str
    ffprobe_bin: str
    ffmpeg_available: bool
    queues: List[QueueSnapshot]
