"""
Job Store
=========
In-memory registry of Job records keyed by job identifier.

Concurrency model:
    - Single writer per job (the owning Orchestrator task), many readers
      (status pollers).
    - Every mutation builds a new Job and swaps it in under a lock, so a
      reader sees either the previous or the next record, never a half-update.
    - ``get`` hands out a deep copy; callers cannot mutate stored state.

Jobs are never removed; they live for the lifetime of the process.
"""
import logging
import threading
from typing import Dict

from app.core.errors import NotFoundError
from app.models.job import Job, JobPhase, JobStatus, TimelineEvent
from app.models.results import Results

logger = logging.getLogger(__name__)


class JobStore:

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job_id: str, repo_url: str, team_name: str, leader_name: str) -> Job:
        job = Job(
            id=job_id,
            repo_url=repo_url,
            team_name=team_name,
            leader_name=leader_name,
        )
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job {job_id} already exists")
            self._jobs[job_id] = job
        logger.info("Created job %s for %s", job_id, repo_url)
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job.model_copy(deep=True)

    def append_event(
        self,
        job_id: str,
        iteration: int,
        status: JobStatus,
        message: str = "",
    ) -> TimelineEvent:
        """
        Append a timeline event.

        ``current_iteration`` only ever moves forward and the job-level
        ``status`` takes the event's label.
        """
        event = TimelineEvent(iteration=iteration, status=status, message=message)
        with self._lock:
            job = self._require(job_id)
            if job.status == JobStatus.COMPLETED:
                # Late events after completion stay on the timeline but do
                # not reopen the job.
                new_status = JobStatus.COMPLETED
            else:
                new_status = event.status
            self._jobs[job_id] = job.model_copy(update={
                "timeline": [*job.timeline, event],
                "current_iteration": max(job.current_iteration, iteration),
                "status": new_status,
            })
        logger.info("[Job %s] iter=%d %s: %s", job_id, iteration, event.status.value, message)
        return event

    def set_phase(self, job_id: str, phase: JobPhase) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.phase == JobPhase.COMPLETED:
                return
            self._jobs[job_id] = job.model_copy(update={"phase": phase})
        logger.debug("[Job %s] phase -> %s", job_id, phase.value)

    def complete(self, job_id: str, results: Results) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.results is not None:
                logger.warning("[Job %s] already completed, ignoring second result", job_id)
                return
            self._jobs[job_id] = job.model_copy(update={
                "status": JobStatus.COMPLETED,
                "phase": JobPhase.COMPLETED,
                "results": results,
            })
        logger.info("[Job %s] completed with CI/CD status %s", job_id, results.ci_cd_status)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job
