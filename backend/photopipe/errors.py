from __future__ import annotations

from typing import Dict, Optional


class PipelineError(RuntimeError):
    """Base class for failures that end up on a job record.

    `kind` is the stable machine-readable tag stored in the job's error field;
    `detail` is free text for humans.
    """

    kind = "pipeline"
    retryable = False

    def __init__(
        self,
        detail: str,
        *,
        job_id: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.job_id = job_id
        self.operation = operation

    def with_context(self, *, job_id: Optional[str] = None, operation: Optional[str] = None) -> "PipelineError":
        if job_id and not self.job_id:
            self.job_id = job_id
        if operation and not self.operation:
            self.operation = operation
        return self

    def to_dict(self) -> Dict[str, str]:
        message = self.detail
        if self.operation:
            message = f"{self.operation}: {message}"
        return {"kind": self.kind, "message": message}

    def __str__(self) -> str:
        prefix = f"[{self.kind}]"
        if self.job_id:
            prefix += f" job={self.job_id}"
        if self.operation:
            prefix += f" op={self.operation}"
        return f"{prefix} {self.detail}"


class SourceNotFoundError(PipelineError):
    kind = "source_not_found"


class ValidationError(PipelineError):
    kind = "validation"


class ProcessingError(PipelineError):
    kind = "processing"
    retryable = True


class TranscodeError(ProcessingError):
    kind = "transcode"


class ArchiveError(PipelineError):
    kind = "archive"
    retryable = True


class QueueUnavailableError(PipelineError):
    kind = "queue_unavailable"
