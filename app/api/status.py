"""
GET /api/status/{job_id}
Progress polling for the frontend.

Running jobs answer {currentIteration, status, phase, timeline};
completed jobs answer the full Results record.
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_job_store
from app.state.job_store import JobStore

router = APIRouter(prefix="/api", tags=["Agent"])


@router.get("/status/{job_id}")
async def get_status(job_id: str, job_store: JobStore = Depends(get_job_store)):
    job = job_store.get(job_id)
    if job.is_complete:
        return job.results.to_wire()
    return job.running_snapshot()
