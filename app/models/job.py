"""
Job Model
=========
Pydantic models for a healing job and its append-only timeline.

Two status fields are tracked:
    status  — label of the latest timeline event (IN_PROGRESS / PASSED / FAILED),
              then COMPLETED once results are attached
    phase   — the orchestrator lifecycle state (FORKING, ITERATING, ...)

A mid-retry FAILED event therefore shows up in ``status`` while ``phase``
still reads ITERATING; only ``phase == COMPLETED`` means the job is over.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict, Field

from app.models.base import CamelModel
from app.models.results import Results, TimelineEntry


class JobStatus(str, Enum):
    INITIALIZING = "INITIALIZING"
    IN_PROGRESS = "IN_PROGRESS"
    PASSED = "PASSED"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"


class JobPhase(str, Enum):
    INITIALIZING = "INITIALIZING"
    FORKING = "FORKING"
    PROVISIONING = "PROVISIONING"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    ITERATING = "ITERATING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TimelineEvent(CamelModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    status: JobStatus
    timestamp: str = Field(default_factory=utc_now_iso)
    message: str = ""

    def to_entry(self) -> TimelineEntry:
        """Poll/results view: the message stands in for the label when present."""
        return TimelineEntry(
            iteration=self.iteration,
            status=self.message or self.status.value,
            timestamp=self.timestamp,
        )


class Job(CamelModel):
    id: str
    repo_url: str
    team_name: str
    leader_name: str
    status: JobStatus = JobStatus.INITIALIZING
    phase: JobPhase = JobPhase.INITIALIZING
    current_iteration: int = 0
    timeline: List[TimelineEvent] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    results: Optional[Results] = None

    @property
    def is_complete(self) -> bool:
        return self.status == JobStatus.COMPLETED and self.results is not None

    def running_snapshot(self) -> dict:
        """Poll payload for a job that has not finished yet."""
        return {
            "currentIteration": self.current_iteration,
            "status": self.status.value,
            "phase": self.phase.value,
            "timeline": [e.to_entry().to_wire() for e in self.timeline],
        }
