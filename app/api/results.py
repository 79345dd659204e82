"""
GET /api/results
Returns the latest results.json snapshot written by a finished job.
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_results_writer
from app.core.errors import NotFoundError
from app.services.results_writer import ResultsWriter

router = APIRouter(prefix="/api", tags=["Agent"])


@router.get("/results")
async def get_results(writer: ResultsWriter = Depends(get_results_writer)):
    latest = writer.read_latest()
    if latest is None:
        raise NotFoundError("No results available yet")
    return latest
