"""
Job store for bulk generation jobs.

In-memory with TTL eviction by creation time, whatever the job status.
Jobs do not survive a restart.
"""

import logging
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Dict, Optional

from imagedeck.core.config import settings
from imagedeck.core.exceptions import NotFoundError
from imagedeck.models.job import Job

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Abstract job store interface."""

    @abstractmethod
    def create(self, job: Job) -> Job:
        pass

    @abstractmethod
    def update(self, job: Job) -> Job:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Job:
        """Return a snapshot of the job. Raises NotFoundError if absent or expired."""
        pass

    @abstractmethod
    def sweep(self) -> int:
        """Evict expired jobs. Returns the number removed."""
        pass


class InMemoryJobStore(JobStore):
    """
    Dict-backed job store.

    Attributes:
        ttl_seconds: Lifetime of a job measured from creation
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = settings.JOB_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._jobs: Dict[str, Job] = {}
        self._created: Dict[str, float] = {}
        self._lock = Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            self._sweep_expired()
            self._jobs[job.id] = job.model_copy(deep=True)
            self._created[job.id] = self.clock()
        logger.info(f"Job {job.id} created ({job.type}, deck {job.deck_id})")
        return job

    def update(self, job: Job) -> Job:
        with self._lock:
            if job.id not in self._jobs:
                # Expired while running; the result is dropped
                logger.info(f"Job {job.id} no longer tracked, update ignored")
                return job
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            self._sweep_expired()
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job not found: {job_id}")
            return job.model_copy(deep=True)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_expired()

    def _sweep_expired(self) -> int:
        """Remove expired jobs. Caller holds the lock."""
        cutoff = self.clock() - self.ttl_seconds
        expired = [job_id for job_id, created in self._created.items() if created <= cutoff]
        for job_id in expired:
            del self._jobs[job_id]
            del self._created[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired job(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
