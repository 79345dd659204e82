"""
POST /api/analyze
=================
Accepts a healing job and starts the Orchestrator in the background.

Body:     {"repoUrl": "...", "teamName": "...", "leaderName": "..."}
Response: {"jobId": "<uuid4>"}

The handler returns immediately; progress is polled via GET /api/status/{jobId}.
Invalid bodies are answered with 400 {"error": ...} by the app-level handler.
"""
import asyncio
import logging
import re
import uuid
from typing import Set

from fastapi import APIRouter, Depends
from pydantic import field_validator

from app.agents.orchestrator import Orchestrator
from app.api.deps import get_job_store, get_orchestrator, get_task_registry
from app.models.base import CamelModel
from app.state.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Agent"])

_GITHUB_URL_RE = re.compile(r"^https://github\.com/[\w.\-]+/[\w.\-]+(/.*)?$")


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class AnalyzeRequest(CamelModel):
    repo_url: str
    team_name: str
    leader_name: str

    @field_validator("repo_url")
    @classmethod
    def validate_github_url(cls, v: str) -> str:
        v = v.strip()
        if not _GITHUB_URL_RE.match(v):
            raise ValueError("repoUrl must be a https://github.com/<owner>/<repo> URL")
        return v

    @field_validator("team_name", "leader_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        # Stored as submitted; surrounding spaces become branch underscores
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class AnalyzeResponse(CamelModel):
    job_id: str


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    job_store: JobStore = Depends(get_job_store),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    running: Set[asyncio.Task] = Depends(get_task_registry),
):
    job_id = str(uuid.uuid4())
    job_store.create(job_id, request.repo_url, request.team_name, request.leader_name)

    logger.info(
        "[API] New analysis request %s for repo: %s (Team: %s, Leader: %s)",
        job_id, request.repo_url, request.team_name, request.leader_name,
    )

    task = asyncio.create_task(orchestrator.run(job_id), name=f"job-{job_id}")
    running.add(task)
    task.add_done_callback(running.discard)

    return AnalyzeResponse(job_id=job_id).to_wire()
