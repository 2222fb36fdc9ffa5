from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from photopipe.catalog import MediaCatalog
from photopipe.config import Settings
from photopipe.db import Database
from photopipe.errors import QueueUnavailableError, ValidationError
from photopipe.executors import (
    JOB_FAMILIES,
    ArchiveJobExecutor,
    ImageJobExecutor,
    JobFamily,
    VideoJobExecutor,
    parse_payload,
)
from photopipe.job_store import Job, JobStatus, JobStore, JobType, new_job_id
from photopipe.worker_pool import FamilyProfile, JobQueue, profiles_for


logger = logging.getLogger(__name__)


class PipelineContext:
    """Everything a running pipeline needs, built once and passed around.

    The HTTP app and the tests each construct their own instance.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        db: Database,
        store: JobStore,
        catalog: MediaCatalog,
        queues: Mapping[JobFamily, JobQueue],
    ) -> None:
        self.settings = settings
        self.db = db
        self.store = store
        self.catalog = catalog
        self.queues: Dict[JobFamily, JobQueue] = dict(queues)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        profiles: Optional[Mapping[JobFamily, FamilyProfile]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "PipelineContext":
        settings.ensure_dirs()
        db = Database(settings.db_path)
        store = JobStore(db)
        catalog = MediaCatalog(db, settings.uploads_dir)
        profiles = dict(profiles or profiles_for(settings))

        executors = {
            JobFamily.IMAGE: ImageJobExecutor(catalog),
            JobFamily.VIDEO: VideoJobExecutor(
                catalog,
                settings.processed_video_dir,
                timeout_sec=profiles[JobFamily.VIDEO].timeout_sec,
            ),
            JobFamily.ARCHIVE: ArchiveJobExecutor(catalog, settings.archives_dir),
        }
        queues = {
            family: JobQueue(profiles[family], store, executor, max_pending=settings.max_pending, sleep=sleep)
            for family, executor in executors.items()
        }
        return cls(settings=settings, db=db, store=store, catalog=catalog, queues=queues)

    def submit(
        self,
        job_type: Union[JobType, str],
        payload: Dict[str, Any],
        owner_id: Optional[str] = None,
    ) -> Job:
        """Validate, persist and enqueue a job; returns it in PENDING state.

        Raises `ValidationError` for a bad type or payload and
        `QueueUnavailableError` when the family queue refuses it, in which
        case no job row remains.
        """
        try:
            job_type = JobType(job_type)
        except ValueError as exc:
            raise ValidationError(f"unknown job type: {job_type}", operation="submit") from exc

        parsed = parse_payload(job_type, payload)
        payload_owner = parsed.user_id
        if owner_id is not None and owner_id != payload_owner:
            raise ValidationError("payload userId does not match the requesting user", operation="submit")

        queue = self._queue_for(job_type)
        queue.ensure_accepting()

        job = Job(
            id=new_job_id(),
            type=job_type,
            owner_id=payload_owner,
            payload=parsed.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        self.store.create(job)
        self.store.log(job.id, f"job queued ({job_type.value})")
        try:
            queue.submit(job.id)
        except QueueUnavailableError:
            self.store.discard(job.id)
            raise
        return job

    def get_status(self, job_id: str, owner_id: Optional[str] = None) -> Optional[Job]:
        job = self.store.get(job_id)
        if job is None:
            return None
        if owner_id is not None and job.owner_id != owner_id:
            return None
        return job

    def recover(self) -> Dict[str, int]:
        """Re-dispatch PENDING rows and fail rows a dead process left PROCESSING."""
        interrupted = 0
        for job_id in self.store.ids_with_status(JobStatus.PROCESSING):
            self.store.log(job_id, "job interrupted by a restart")
            if self.store.fail(job_id, {"kind": "interrupted", "message": "worker stopped before the job finished"}):
                interrupted += 1

        requeued = 0
        for job_id in self.store.ids_with_status(JobStatus.PENDING):
            job = self.store.get(job_id, log_limit=0)
            if job is None:
                continue
            try:
                self._queue_for(job.type).submit(job_id)
            except QueueUnavailableError as exc:
                logger.warning("could not requeue %s: %s", job_id, exc)
                continue
            requeued += 1

        if interrupted or requeued:
            logger.info("recovered jobs: %d requeued, %d interrupted", requeued, interrupted)
        return {"requeued": requeued, "interrupted": interrupted}

    def snapshot(self) -> List[Dict[str, Any]]:
        return [self.queues[family].snapshot() for family in JobFamily if family in self.queues]

    def shutdown(self, *, wait: bool = True) -> None:
        for queue in self.queues.values():
            queue.shutdown(wait=wait)
        self.db.close()

    def _queue_for(self, job_type: JobType) -> JobQueue:
        return self.queues[JOB_FAMILIES[job_type]]
