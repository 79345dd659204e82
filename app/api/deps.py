"""
API Dependencies
================
Process-wide services handed to route handlers through FastAPI's Depends().

Each provider builds its service once and reuses it. Tests swap them with
``app.dependency_overrides[get_job_store] = ...``.
"""
import asyncio
from functools import lru_cache
from typing import Set

from fastapi import Depends

from app.agents.discovery_agent import DiscoveryAgent
from app.agents.fix_agent import FixAgent
from app.agents.git_agent import GitAgent
from app.agents.orchestrator import Orchestrator
from app.agents.workflow_agent import WorkflowAgent
from app.core.config import RUN_RETRY_LIMIT
from app.executor.sandbox_manager import SandboxManager
from app.llm.client import LLMClient
from app.services.github_service import GitHubService
from app.services.results_writer import ResultsWriter
from app.state.job_store import JobStore


@lru_cache(maxsize=None)
def get_job_store() -> JobStore:
    return JobStore()


@lru_cache(maxsize=None)
def get_results_writer() -> ResultsWriter:
    return ResultsWriter()


@lru_cache(maxsize=None)
def _get_sandbox() -> SandboxManager:
    return SandboxManager()


@lru_cache(maxsize=None)
def _get_llm_client() -> LLMClient:
    return LLMClient()


def get_orchestrator(
    job_store: JobStore = Depends(get_job_store),
    results_writer: ResultsWriter = Depends(get_results_writer),
) -> Orchestrator:
    sandbox = _get_sandbox()
    llm = _get_llm_client()
    return Orchestrator(
        job_store=job_store,
        sandbox=sandbox,
        git_agent=GitAgent(sandbox),
        github=GitHubService(),
        discovery_agent=DiscoveryAgent(client=llm),
        fix_agent=FixAgent(client=llm),
        workflow_agent=WorkflowAgent(client=llm),
        results_writer=results_writer,
        iteration_budget=RUN_RETRY_LIMIT,
    )


# Strong references to running job tasks; the event loop only keeps weak ones
_running_jobs: Set[asyncio.Task] = set()


def get_task_registry() -> Set[asyncio.Task]:
    return _running_jobs
