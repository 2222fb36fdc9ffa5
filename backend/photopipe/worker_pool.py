from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from threading import Lock
from typing import Any, Callable, Dict, Optional, Protocol

from photopipe.config import Settings
from photopipe.errors import PipelineError, ProcessingError, QueueUnavailableError
from photopipe.executors import JobFamily
from photopipe.job_store import Job, JobStore


logger = logging.getLogger(__name__)


class JobExecutor(Protocol):
    def execute(
        self,
        job: Job,
        *,
        logger: Callable[[str], None],
        progress: Callable[[float], None],
    ) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay_sec: float
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number `attempt` (1-based)."""
        return self.base_delay_sec * (self.multiplier ** max(0, attempt - 1))


@dataclass(frozen=True)
class FamilyProfile:
    family: JobFamily
    concurrency: int
    retry: RetryPolicy
    timeout_sec: Optional[float] = None


FAMILY_PROFILES: Dict[JobFamily, FamilyProfile] = {
    JobFamily.IMAGE: FamilyProfile(JobFamily.IMAGE, concurrency=2, retry=RetryPolicy(max_attempts=3, base_delay_sec=2.0)),
    JobFamily.VIDEO: FamilyProfile(
        JobFamily.VIDEO,
        concurrency=1,
        retry=RetryPolicy(max_attempts=2, base_delay_sec=5.0),
        timeout_sec=3600.0,
    ),
    JobFamily.ARCHIVE: FamilyProfile(JobFamily.ARCHIVE, concurrency=1, retry=RetryPolicy(max_attempts=2, base_delay_sec=5.0)),
}


def profiles_for(settings: Settings) -> Dict[JobFamily, FamilyProfile]:
    profiles = dict(FAMILY_PROFILES)
    profiles[JobFamily.IMAGE] = replace(profiles[JobFamily.IMAGE], concurrency=settings.image_concurrency)
    timeout = settings.video_timeout_sec if settings.video_timeout_sec > 0 else None
    profiles[JobFamily.VIDEO] = replace(profiles[JobFamily.VIDEO], timeout_sec=timeout)
    return profiles


class JobQueue:
    """Bounded worker pool for one job family.

    `submit` never blocks. Workers claim the row, run the family executor,
    retry retryable failures with exponential backoff and persist only the
    final state.
    """

    def __init__(
        self,
        profile: FamilyProfile,
        store: JobStore,
        executor: JobExecutor,
        *,
        max_pending: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._profile = profile
        self._store = store
        self._executor = executor
        self._max_pending = max(1, int(max_pending))
        self._sleep = sleep
        self._lock = Lock()
        self._pending = 0
        self._active = 0
        self._closed = False
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, profile.concurrency),
            thread_name_prefix=f"photopipe-{profile.family.value}",
        )

    @property
    def profile(self) -> FamilyProfile:
        return self._profile

    def ensure_accepting(self) -> None:
        with self._lock:
            self._check_accepting()

    def submit(self, job_id: str) -> None:
        with self._lock:
            self._check_accepting()
            self._pending += 1
        try:
            self._pool.submit(self._run, job_id)
        except RuntimeError as exc:
            with self._lock:
                self._pending -= 1
            raise QueueUnavailableError(f"{self._profile.family.value} queue is shut down", job_id=job_id) from exc

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "family": self._profile.family.value,
                "concurrency": self._profile.concurrency,
                "max_attempts": self._profile.retry.max_attempts,
                "pending": self._pending,
                "active": self._active,
                "accepting": not self._closed and self._pending < self._max_pending,
            }

    def shutdown(self, *, wait: bool = True) -> None:
        # Jobs that never started stay PENDING and are picked up by the next recovery.
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=wait, cancel_futures=True)

    def _check_accepting(self) -> None:
        family = self._profile.family.value
        if self._closed:
            raise QueueUnavailableError(f"{family} queue is shut down")
        if self._pending >= self._max_pending:
            raise QueueUnavailableError(f"{family} queue is full ({self._max_pending} jobs waiting)")

    def _run(self, job_id: str) -> None:
        with self._lock:
            self._pending -= 1
            self._active += 1
        try:
            self._process(job_id)
        except Exception:
            logger.exception("worker crashed while handling job %s", job_id)
        finally:
            with self._lock:
                self._active -= 1

    def _process(self, job_id: str) -> None:
        if not self._store.claim(job_id):
            logger.info("job %s was not pending; skipping", job_id)
            return
        job = self._store.get(job_id)
        if job is None:
            return

        def _job_log(message: str) -> None:
            self._store.log(job_id, message)

        def _progress(value: float) -> None:
            self._store.set_progress(job_id, value)

        retry = self._profile.retry
        _job_log(f"job started on {self._profile.family.value} worker")
        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._executor.execute(job, logger=_job_log, progress=_progress)
            except PipelineError as exc:
                error = exc
            except Exception as exc:
                logger.exception("unexpected failure in job %s", job_id)
                error = ProcessingError(f"unexpected {type(exc).__name__}: {exc}")
            else:
                if self._store.complete(job_id, result):
                    _job_log("job finished")
                else:
                    logger.warning("job %s left PROCESSING before it could complete", job_id)
                return

            error.with_context(job_id=job_id, operation=job.type.value)
            if error.retryable and attempt < retry.max_attempts:
                delay = retry.delay_for(attempt)
                _job_log(f"attempt {attempt}/{retry.max_attempts} failed: {error.detail}; retrying in {delay:g}s")
                logger.info("retrying %s in %.1fs: %s", job_id, delay, error)
                self._sleep(delay)
                continue

            _job_log(f"job failed: {error.detail}")
            logger.warning("job failed: %s", error)
            self._store.fail(job_id, error.to_dict())
            return
