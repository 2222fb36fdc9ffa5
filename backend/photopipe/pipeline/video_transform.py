from __future__ import annotations

import json
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from photopipe.errors import SourceNotFoundError, TranscodeError, ValidationError
from photopipe.pipeline.ffmpeg_runtime import resolve_ffmpeg_bin, resolve_ffprobe_bin
from photopipe.pipeline.outputs import remove_quietly, unique_output_path
from photopipe.schemas import VideoOperations


FORMAT_CODECS: Dict[str, Tuple[str, str]] = {
    "mp4": ("libx264", "aac"),
    "webm": ("libvpx", "libvorbis"),
    "avi": ("libxvid", "libmp3lame"),
    "mov": ("libx264", "aac"),
}

QUALITY_BITRATES: Dict[str, Tuple[str, str]] = {
    "low": ("800k", "128k"),
    "medium": ("1200k", "192k"),
    "high": ("2500k", "320k"),
}

RESOLUTION_PRESETS: Dict[str, Tuple[int, int]] = {
    "480p": (854, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "4k": (3840, 2160),
}

MIME_TYPES: Dict[str, str] = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
}

STDERR_TAIL_CHARS = 2000


@dataclass(frozen=True)
class VideoTransformResult:
    output_path: Path
    duration_seconds: float
    resolution: str
    byte_size: int
    format_name: str
    mime_type: str

    @property
    def width(self) -> Optional[int]:
        return _split_resolution(self.resolution)[0]

    @property
    def height(self) -> Optional[int]:
        return _split_resolution(self.resolution)[1]

    def to_dict(self) -> Dict[str, object]:
        return {
            "output_path": str(self.output_path),
            "duration_seconds": self.duration_seconds,
            "resolution": self.resolution,
            "byte_size": self.byte_size,
            "format_name": self.format_name,
            "mime_type": self.mime_type,
        }


def output_extension(source_path: Path, operations: VideoOperations) -> str:
    if operations.format:
        return operations.format
    suffix = source_path.suffix.lower().lstrip(".")
    return suffix or "mp4"


def build_ffmpeg_command(
    *,
    ffmpeg_bin: str,
    source_path: Path,
    output_path: Path,
    operations: VideoOperations,
    report_progress: bool = False,
) -> List[str]:
    cmd = [ffmpeg_bin, "-y", "-hide_banner", "-loglevel", "error"]
    if report_progress:
        cmd += ["-nostats", "-progress", "pipe:1"]
    cmd += ["-i", str(source_path)]

    if operations.trim is not None:
        cmd += ["-ss", _format_seconds(operations.trim.start), "-t", _format_seconds(operations.trim.duration)]

    if operations.format:
        video_codec, audio_codec = FORMAT_CODECS[operations.format]
        cmd += ["-c:v", video_codec, "-c:a", audio_codec]

    if operations.quality:
        video_bitrate, audio_bitrate = QUALITY_BITRATES[operations.quality]
        cmd += ["-b:v", video_bitrate, "-b:a", audio_bitrate]

    filters: List[str] = []
    if operations.crop is not None:
        crop = operations.crop
        filters.append(f"crop={crop.width}:{crop.height}:{crop.x}:{crop.y}")
    if operations.resolution:
        width, height = RESOLUTION_PRESETS[operations.resolution]
        filters.append(f"scale={width}:{height}")
    if filters:
        cmd += ["-vf", ",".join(filters)]

    cmd.append(str(output_path))
    return cmd


def transform_video(
    *,
    source_path: Path,
    operations: VideoOperations,
    output_dir: Path,
    progress: Optional[Callable[[float], None]] = None,
    timeout_sec: Optional[float] = None,
    logger: Callable[[str], None] = lambda _: None,
) -> VideoTransformResult:
    if not source_path.is_file():
        raise SourceNotFoundError(f"input video does not exist: {source_path}")

    ffmpeg = resolve_ffmpeg_bin()
    ffprobe = resolve_ffprobe_bin()
    extension = output_extension(source_path, operations)
    output_path = unique_output_path(output_dir, f"processed_{source_path.stem}", "video", extension)

    if operations.crop is not None:
        check_crop_bounds(source_path, operations, ffprobe_bin=ffprobe)

    expected_duration: Optional[float] = None
    if progress is not None:
        expected_duration = _expected_duration(source_path, operations, ffprobe_bin=ffprobe)

    cmd = build_ffmpeg_command(
        ffmpeg_bin=ffmpeg,
        source_path=source_path,
        output_path=output_path,
        operations=operations,
        report_progress=progress is not None,
    )
    logger(f"running ffmpeg transcode -> {output_path.name}")
    try:
        _run_ffmpeg(cmd, expected_duration=expected_duration, progress=progress, timeout_sec=timeout_sec)
        if not output_path.is_file() or output_path.stat().st_size <= 0:
            raise TranscodeError("ffmpeg finished without writing an output file", operation="transcode")
        info = probe_video(output_path, ffprobe_bin=ffprobe)
        byte_size = output_path.stat().st_size
    except TranscodeError:
        remove_quietly(output_path)
        raise
    except OSError as exc:
        remove_quietly(output_path)
        raise TranscodeError(f"ffmpeg could not be run: {exc}", operation="transcode") from exc

    if progress is not None:
        progress(100.0)
    logger(f"video written: {output_path.name} ({info['resolution']}, {info['duration']:.1f}s, {byte_size} bytes)")
    return VideoTransformResult(
        output_path=output_path,
        duration_seconds=float(info["duration"]),
        resolution=str(info["resolution"]),
        byte_size=int(byte_size),
        format_name=str(info["format_name"]),
        mime_type=MIME_TYPES.get(extension, f"video/{extension}"),
    )


def probe_video(path: Path, *, ffprobe_bin: Optional[str] = None) -> Dict[str, object]:
    cmd = [
        ffprobe_bin or resolve_ffprobe_bin(),
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise TranscodeError(f"ffprobe could not be run: {exc}", operation="probe") from exc
    if result.returncode != 0:
        stderr = result.stderr.strip() if result.stderr else "unknown ffprobe error"
        raise TranscodeError(f"ffprobe failed: {stderr[-STDERR_TAIL_CHARS:]}", operation="probe")
    try:
        metadata = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise TranscodeError(f"ffprobe returned invalid json: {exc}", operation="probe") from exc

    streams = metadata.get("streams") or []
    video_stream = next((stream for stream in streams if stream.get("codec_type") == "video"), None)
    if video_stream is None:
        raise TranscodeError("no video stream found in output", operation="probe")
    fmt = metadata.get("format") or {}
    return {
        "duration": _to_float(fmt.get("duration")) or _to_float(video_stream.get("duration")) or 0.0,
        "resolution": f"{video_stream.get('width', 0)}x{video_stream.get('height', 0)}",
        "format_name": fmt.get("format_name") or "unknown",
    }


def check_crop_bounds(source_path: Path, operations: VideoOperations, *, ffprobe_bin: Optional[str] = None) -> None:
    crop = operations.crop
    if crop is None:
        return
    info = probe_video(source_path, ffprobe_bin=ffprobe_bin)
    frame_width, frame_height = _split_resolution(str(info["resolution"]))
    if not frame_width or not frame_height:
        raise TranscodeError(f"could not read the frame size of {source_path.name}", operation="probe")
    if crop.x + crop.width > frame_width or crop.y + crop.height > frame_height:
        raise ValidationError(
            f"crop {crop.width}x{crop.height}+{crop.x}+{crop.y} is outside the {frame_width}x{frame_height} frame",
            operation="crop",
        )


def _run_ffmpeg(
    cmd: List[str],
    *,
    expected_duration: Optional[float],
    progress: Optional[Callable[[float], None]],
    timeout_sec: Optional[float],
) -> None:
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        proc.kill()

    watchdog = threading.Timer(timeout_sec, _kill) if timeout_sec and timeout_sec > 0 else None
    if watchdog is not None:
        watchdog.daemon = True
        watchdog.start()

    # stderr is drained on its own thread so a chatty ffmpeg cannot block on a full pipe.
    stderr_chunks: List[str] = []
    stderr_reader = threading.Thread(target=lambda: stderr_chunks.append(proc.stderr.read()), daemon=True)
    stderr_reader.start()
    try:
        if proc.stdout is not None:
            for line in proc.stdout:
                percent = _parse_progress_line(line, expected_duration)
                if percent is not None and progress is not None:
                    progress(percent)
        returncode = proc.wait()
    finally:
        if watchdog is not None:
            watchdog.cancel()
        stderr_reader.join(timeout=5)

    if timed_out.is_set():
        raise TranscodeError(f"ffmpeg exceeded the {timeout_sec:g}s timeout and was stopped", operation="transcode")
    if returncode != 0:
        stderr = "".join(stderr_chunks).strip() or "unknown ffmpeg error"
        raise TranscodeError(f"ffmpeg exited with code {returncode}: {stderr[-STDERR_TAIL_CHARS:]}", operation="transcode")


def _parse_progress_line(line: str, expected_duration: Optional[float]) -> Optional[float]:
    key, _, value = line.strip().partition("=")
    if key not in {"out_time_us", "out_time_ms"} or not expected_duration:
        return None
    micros = _to_float(value)
    if micros is None or micros < 0:
        return None
    # ffmpeg reports out_time_ms in microseconds as well.
    seconds = micros / 1_000_000.0
    return max(0.0, min(99.0, seconds / expected_duration * 100.0))


def _expected_duration(source_path: Path, operations: VideoOperations, *, ffprobe_bin: str) -> Optional[float]:
    if operations.trim is not None:
        return operations.trim.duration
    try:
        info = probe_video(source_path, ffprobe_bin=ffprobe_bin)
    except TranscodeError:
        return None
    duration = float(info["duration"])
    return duration if duration > 0 else None


def _split_resolution(value: str) -> Tuple[Optional[int], Optional[int]]:
    width, _, height = str(value or "").partition("x")
    try:
        return int(width), int(height)
    except ValueError:
        return None, None


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_seconds(value: float) -> str:
    return f"{float(value):.3f}".rstrip("0").rstrip(".") or "0"
