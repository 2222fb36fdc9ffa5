from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from photopipe.db import Database, utc_now


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobType(str, Enum):
    IMAGE_CROP = "IMAGE_CROP"
    IMAGE_RESIZE = "IMAGE_RESIZE"
    IMAGE_SMART_CROP = "IMAGE_SMART_CROP"
    IMAGE_AUTO_CROP = "IMAGE_AUTO_CROP"
    VIDEO_PROCESS = "VIDEO_PROCESS"
    ZIP_CREATE = "ZIP_CREATE"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass
class Job:
    id: str
    type: JobType
    owner_id: str
    payload: Dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    progress: Optional[float] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, str]] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    log: List[str] = field(default_factory=list)

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "log_tail": self.log[-20:],
        }


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class JobStore:
    """Persisted job records.

    Every status write is a conditional update on the previous status, so a
    job is claimed by one worker at most and reaches one terminal state only.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, job: Job) -> None:
        self._db.execute(
            """
            insert into jobs (
              job_id, type, status, owner_id, created_at, updated_at, progress,
              payload_json, result_json, error_json
            )
            values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.type.value,
                JobStatus.PENDING.value,
                job.owner_id,
                job.created_at,
                job.updated_at,
                None,
                json.dumps(job.payload),
                None,
                None,
            ),
        )

    def discard(self, job_id: str) -> None:
        """Roll back a submission the queue refused; only PENDING rows go."""
        self._db.execute("delete from jobs where job_id = ? and status = ?", (job_id, JobStatus.PENDING.value))
        self._db.execute("delete from job_events where job_id = ?", (job_id,))

    def get(self, job_id: str, *, log_limit: int = 20) -> Optional[Job]:
        row = self._db.fetchone("select * from jobs where job_id = ?", (job_id,))
        if row is None:
            return None
        events = self._db.fetchall(
            "select message from job_events where job_id = ? order by event_id desc limit ?",
            (job_id, log_limit),
        )
        job = _row_to_job(row)
        job.log = [event["message"] for event in reversed(events)]
        return job

    def ids_with_status(self, status: JobStatus) -> List[str]:
        rows = self._db.fetchall(
            "select job_id from jobs where status = ? order by created_at, rowid",
            (status.value,),
        )
        return [row["job_id"] for row in rows]

    def claim(self, job_id: str) -> bool:
        changed = self._db.execute(
            "update jobs set status = ?, progress = ?, updated_at = ? where job_id = ? and status = ?",
            (JobStatus.PROCESSING.value, 0.0, utc_now(), job_id, JobStatus.PENDING.value),
        )
        return changed == 1

    def set_progress(self, job_id: str, progress: float) -> None:
        value = max(0.0, min(100.0, float(progress)))
        self._db.execute(
            "update jobs set progress = ?, updated_at = ? where job_id = ? and status = ?",
            (round(value, 1), utc_now(), job_id, JobStatus.PROCESSING.value),
        )

    def complete(self, job_id: str, result: Dict[str, Any]) -> bool:
        changed = self._db.execute(
            """
            update jobs set status = ?, progress = ?, result_json = ?, updated_at = ?
            where job_id = ? and status = ?
            """,
            (
                JobStatus.COMPLETED.value,
                100.0,
                json.dumps(result),
                utc_now(),
                job_id,
                JobStatus.PROCESSING.value,
            ),
        )
        return changed == 1

    def fail(self, job_id: str, error: Dict[str, str]) -> bool:
        changed = self._db.execute(
            "update jobs set status = ?, error_json = ?, updated_at = ? where job_id = ? and status = ?",
            (JobStatus.FAILED.value, json.dumps(error), utc_now(), job_id, JobStatus.PROCESSING.value),
        )
        return changed == 1

    def log(self, job_id: str, message: str) -> None:
        text = str(message or "").strip()
        if not text:
            return
        self._db.execute(
            "insert into job_events (job_id, created_at, message) values (?, ?, ?)",
            (job_id, utc_now(), text),
        )


def _row_to_job(row: Any) -> Job:
    return Job(
        id=row["job_id"],
        type=JobType(row["type"]),
        owner_id=row["owner_id"],
        payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
        status=JobStatus(row["status"]),
        progress=row["progress"],
        result=json.loads(row["result_json"]) if row["result_json"] else None,
        error=json.loads(row["error_json"]) if row["error_json"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
