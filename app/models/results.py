"""
Results Model
=============
Terminal snapshot of a healing job. Built exactly once at finalization,
frozen afterwards, returned by the status endpoint and written to results.json.

Fields:
    repo_url, team_name, leader_name — echo of the submission
    branch_created      — TEAM_LEADER_AI_Fix branch name
    total_failures      — failures diagnosed across all iterations
    total_fixes         — patches applied and committed
    ci_cd_status        — "PASSED" | "FAILED"
    total_time_taken    — "{m}m {s}s"
    total_time_seconds  — elapsed wall clock
    iterations_used     — iterations entered (0 if the job never reached the loop)
    max_retries         — iteration budget in force for the job
    fixes               — FixRecords without patch content
    timeline            — every timeline event, in order
"""
from typing import List, Literal

from pydantic import ConfigDict, Field

from app.models.base import CamelModel
from app.models.fix_record import FixRecord

CiCdStatus = Literal["PASSED", "FAILED"]


class TimelineEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    status: str
    timestamp: str


class Results(CamelModel):
    model_config = ConfigDict(frozen=True)

    repo_url: str
    team_name: str
    leader_name: str
    branch_created: str
    total_failures: int = 0
    total_fixes: int = 0
    ci_cd_status: CiCdStatus = "FAILED"
    total_time_taken: str = "0m 0s"
    total_time_seconds: float = 0.0
    iterations_used: int = 0
    max_retries: int
    fixes: List[FixRecord] = Field(default_factory=list)
    timeline: List[TimelineEntry] = Field(default_factory=list)


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds as "{m}m {s}s"."""
    total = max(0, int(seconds))
    return f"{total // 60}m {total % 60}s"
