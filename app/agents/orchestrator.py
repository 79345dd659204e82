"""
Orchestrator Agent
==================
The central brain of the autonomous CI healing agent.
Drives one job from submission to completion:

    Fork → Provision sandbox → Bootstrap workflow →
    Iterate { Test → Diagnose → Patch → Commit } → Push → Finalize

Lifecycle (JobPhase):
    INITIALIZING → FORKING → PROVISIONING → BOOTSTRAPPING →
    ITERATING (1..budget) → FINALIZING → COMPLETED

Rules:
    - Only the Test → Diagnose → Patch cycle is retried; every other step
      is attempted once.
    - Failures inside one batch are handled sequentially and never abort
      the batch.
    - Finalization runs on EVERY path: results are built, the job is
      completed, results.json is written and the sandbox is destroyed.
    - An unexpected exception is recorded as a "System error: ..." event
      and the job finishes FAILED; it never escapes the job task.

The Orchestrator does NOT:
    - Interpret test output (that's discovery_agent's job)
    - Produce patches (that's fix_agent's job)
    - Run git (that's git_agent's job)
"""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from app.agents.discovery_agent import DiscoveryAgent
from app.agents.fix_agent import FixAgent
from app.agents.git_agent import GitAgent
from app.agents.workflow_agent import WorkflowAgent
from app.core.config import RUN_RETRY_LIMIT
from app.core.constants import WORKFLOW_COMMIT_MESSAGE, WORKFLOW_FILE
from app.core.errors import (
    CloneError,
    DiagnosisEmptyError,
    NotFoundError,
    ProvisioningError,
    WorkflowGenerationError,
)
from app.executor.sandbox_manager import SandboxHandle, SandboxManager, is_test_success
from app.models.failure import Failure
from app.models.fix_record import FixRecord
from app.models.job import Job, JobPhase, JobStatus
from app.models.results import CiCdStatus, Results, format_elapsed
from app.services.github_service import GitHubService
from app.services.results_writer import ResultsWriter
from app.state.job_store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Mutable counters for one orchestrator run."""
    started: float = field(default_factory=time.monotonic)
    handle: Optional[SandboxHandle] = None
    iterations_used: int = 0
    total_failures: int = 0
    fixes: List[FixRecord] = field(default_factory=list)
    ci_cd_status: CiCdStatus = "FAILED"


class Orchestrator:
    """
    Orchestrates the autonomous healing process for one job at a time.

    Parameters
    ----------
    job_store : JobStore
        Registry the job's progress is reported to.
    sandbox : SandboxManager
        Per-job container provisioning and execution.
    git_agent : GitAgent
        Branch naming, commits and pushes inside the sandbox.
    github : GitHubService
        Forks the target repository.
    discovery_agent, fix_agent, workflow_agent
        LLM-backed capabilities.
    results_writer : ResultsWriter
        Persists the final snapshot.
    iteration_budget : int
        Maximum number of Test → Diagnose → Patch cycles (default: RUN_RETRY_LIMIT).
    """

    def __init__(
        self,
        job_store: JobStore,
        sandbox: SandboxManager,
        git_agent: GitAgent,
        github: GitHubService,
        discovery_agent: DiscoveryAgent,
        fix_agent: FixAgent,
        workflow_agent: WorkflowAgent,
        results_writer: ResultsWriter,
        iteration_budget: int = RUN_RETRY_LIMIT,
    ) -> None:
        if iteration_budget < 1:
            raise ValueError("iteration_budget must be at least 1")
        self.job_store = job_store
        self.sandbox = sandbox
        self.git_agent = git_agent
        self.github = github
        self.discovery_agent = discovery_agent
        self.fix_agent = fix_agent
        self.workflow_agent = workflow_agent
        self.results_writer = results_writer
        self.iteration_budget = iteration_budget

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def run(self, job_id: str) -> Optional[Results]:
        """Execute the full healing loop for ``job_id``. Never raises."""
        try:
            job = self.job_store.get(job_id)
        except NotFoundError:
            logger.error("[Job %s] Cannot start: job not found", job_id)
            return None

        state = _RunState()
        logger.info("[Job %s] Starting healing run for %s", job_id, job.repo_url)

        try:
            await self._heal(job, state)
        except Exception as e:
            logger.error("[Job %s] Fatal orchestrator error: %s", job_id, e, exc_info=True)
            state.ci_cd_status = "FAILED"
            self._event(job_id, state.iterations_used, JobStatus.FAILED, f"System error: {e}")
        finally:
            results = await self._finalize(job, state)

        return results

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    async def _heal(self, job: Job, state: _RunState) -> None:
        # ===========================================================
        # 1. Fork
        # ===========================================================
        self.job_store.set_phase(job.id, JobPhase.FORKING)
        self._event(job.id, 0, JobStatus.IN_PROGRESS, "Forking target repository to authenticated user account...")
        fork_url = await self.github.fork_repository(job.repo_url)
        if not fork_url:
            self._event(
                job.id, 0, JobStatus.FAILED,
                "Failed to fork repository. Ensure GITHUB_TOKEN is set and valid.",
            )
            return
        self._event(job.id, 0, JobStatus.IN_PROGRESS, f"Successfully forked to {fork_url}")

        # ===========================================================
        # 2. Provision sandbox and clone the fork
        # ===========================================================
        self.job_store.set_phase(job.id, JobPhase.PROVISIONING)
        self._event(job.id, 0, JobStatus.IN_PROGRESS, "Creating isolated Docker container")
        try:
            await self.sandbox.provision_image()
            state.handle = await self.sandbox.create_instance(job.id)
            await self.sandbox.clone_repository(
                state.handle, self.github.get_authenticated_clone_url(fork_url)
            )
        except ProvisioningError as e:
            self._event(job.id, 0, JobStatus.FAILED, f"Sandbox provisioning failed: {e}")
            return
        except CloneError as e:
            self._event(job.id, 0, JobStatus.FAILED, f"Repository clone failed: {e}")
            return
        self._event(job.id, 0, JobStatus.IN_PROGRESS, "Repository cloned successfully in sandbox")

        # ===========================================================
        # 3. Bootstrap a CI workflow if the repo has none
        # ===========================================================
        self.job_store.set_phase(job.id, JobPhase.BOOTSTRAPPING)
        await self._bootstrap_workflow(job, state.handle)

        # ===========================================================
        # 4. Autonomous healing loop
        # ===========================================================
        self.job_store.set_phase(job.id, JobPhase.ITERATING)
        try:
            await self._iterate(job, state)
        except DiagnosisEmptyError as e:
            self._event(job.id, state.iterations_used, JobStatus.FAILED, str(e))

    async def _bootstrap_workflow(self, job: Job, handle: SandboxHandle) -> None:
        self._event(job.id, 0, JobStatus.IN_PROGRESS, "Scanning for existing GitHub Actions workflows...")
        if await self.sandbox.list_workflows(handle):
            self._event(job.id, 0, JobStatus.IN_PROGRESS, "Existing workflows detected. Proceeding to tests.")
            return

        self._event(job.id, 0, JobStatus.IN_PROGRESS, "No workflows found. AI generating default CI pipeline...")
        listing = await self.sandbox.list_repository_files(handle)
        try:
            workflow = await self.workflow_agent.generate(listing, job.repo_url, job.leader_name)
        except WorkflowGenerationError as e:
            logger.error("[Job %s] Failed to generate workflow: %s", job.id, e)
            self._event(job.id, 0, JobStatus.FAILED, f"Workflow generation failed: {e}")
            return

        committed = await self.git_agent.apply_and_commit(
            handle, job.id, job.team_name, job.leader_name,
            WORKFLOW_FILE, workflow, WORKFLOW_COMMIT_MESSAGE,
        )
        if committed:
            self._event(job.id, 0, JobStatus.IN_PROGRESS, "Successfully generated and committed base CI workflow")
        else:
            self._event(
                job.id, 0, JobStatus.FAILED,
                f"Workflow generation failed: could not commit {WORKFLOW_FILE}",
            )

    async def _iterate(self, job: Job, state: _RunState) -> None:
        while state.iterations_used < self.iteration_budget:
            state.iterations_used += 1
            i = state.iterations_used
            logger.info("[Job %s] --- Starting Iteration %d/%d ---", job.id, i, self.iteration_budget)
            self._event(job.id, i, JobStatus.IN_PROGRESS, f"Iteration {i}: Discovering & running tests")

            # --- (a) Run tests ---
            result = await self.sandbox.run_test_discovery(state.handle)

            # --- (b) Success → push and stop ---
            if is_test_success(result):
                state.ci_cd_status = "PASSED"
                self._event(job.id, i, JobStatus.PASSED, f"Tests passed on iteration {i}")
                self._event(job.id, i, JobStatus.IN_PROGRESS, "Pushing new AI branch to repository...")
                await self._push(job, state, "Successfully pushed new branch to GitHub!")
                return

            # --- (c) Diagnose ---
            self._event(job.id, i, JobStatus.FAILED, "Tests failed. Analyzing failures...")
            failures = await self.discovery_agent.extract(result.combined_output)
            if not failures:
                raise DiagnosisEmptyError("No parsable failures found by AI.")

            state.total_failures += len(failures)
            logger.info("[Job %s] Iteration %d: Fixing %d detected failures...", job.id, i, len(failures))

            # --- (d) Patch each failure, one at a time ---
            for failure in failures:
                await self._heal_failure(job, state, failure)

        self._event(
            job.id, state.iterations_used, JobStatus.FAILED,
            "Retry limit reached or unresolvable failures",
        )

    async def _heal_failure(self, job: Job, state: _RunState, failure: Failure) -> None:
        """Read → propose → apply one fix. Problems are logged and skipped."""
        try:
            read = await self.sandbox.read_file(state.handle, failure.file)
            if not read.ok:
                logger.error("[Job %s] Could not read file %s in container", job.id, failure.file)
                return

            proposal = await self.fix_agent.generate(read.stdout, failure)
            if proposal is None:
                return

            applied = await self.git_agent.apply_and_commit(
                state.handle, job.id, job.team_name, job.leader_name,
                failure.file, proposal.patched_content, proposal.commit_message,
            )
        except Exception as e:
            logger.error("[Job %s] Fix for %s aborted: %s", job.id, failure.file, e, exc_info=True)
            return

        if applied:
            state.fixes.append(FixRecord(
                file=failure.file,
                bug_type=failure.bug_type,
                line_number=failure.line_number,
                commit_message=proposal.commit_message,
                patch=proposal.patched_content,
            ))

    async def _push(self, job: Job, state: _RunState, success_message: str) -> None:
        pushed = await self.git_agent.push_branch(state.handle, job.id, job.team_name, job.leader_name)
        if pushed:
            self._event(job.id, state.iterations_used, JobStatus.IN_PROGRESS, success_message)
        else:
            self._event(job.id, state.iterations_used, JobStatus.IN_PROGRESS, "Branch push failed, see server logs")

    async def _finalize(self, job: Job, state: _RunState) -> Optional[Results]:
        """Build and publish Results, then tear the sandbox down. Never raises."""
        results: Optional[Results] = None
        try:
            self.job_store.set_phase(job.id, JobPhase.FINALIZING)

            if state.ci_cd_status == "PASSED" and state.fixes and state.handle is not None:
                self._event(
                    job.id, state.iterations_used, JobStatus.IN_PROGRESS,
                    f"Applying {len(state.fixes)} valid fixes to branch...",
                )
                await self._push(job, state, "Successfully pushed branch to original repository")

            elapsed = time.monotonic() - state.started
            timeline = [e.to_entry() for e in self.job_store.get(job.id).timeline]
            results = Results(
                repo_url=job.repo_url,
                team_name=job.team_name,
                leader_name=job.leader_name,
                branch_created=self.git_agent.branch_name(job.id, job.team_name, job.leader_name),
                total_failures=state.total_failures,
                total_fixes=len(state.fixes),
                ci_cd_status=state.ci_cd_status,
                total_time_taken=format_elapsed(elapsed),
                total_time_seconds=round(elapsed, 2),
                iterations_used=state.iterations_used,
                max_retries=self.iteration_budget,
                fixes=[f.without_patch() for f in state.fixes],
                timeline=timeline,
            )
            self.job_store.complete(job.id, results)
            self.results_writer.write_results(results)
            logger.info(
                "[Job %s] Finished: %s | %d fix(es) | %d iteration(s) | %s",
                job.id, results.ci_cd_status, results.total_fixes,
                results.iterations_used, results.total_time_taken,
            )
        except Exception as e:
            logger.error("[Job %s] Finalization failed: %s", job.id, e, exc_info=True)
        finally:
            await self.sandbox.destroy_instance(state.handle)
        return results

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _event(self, job_id: str, iteration: int, status: JobStatus, message: str) -> None:
        self.job_store.append_event(job_id, iteration, status, message)
