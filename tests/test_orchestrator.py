"""
Orchestrator Tests
==================
Tests the full healing loop with all external dependencies mocked.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from app.agents.discovery_agent import DiscoveryAgent
from app.agents.fix_agent import FixAgent, PatchProposal
from app.agents.git_agent import GitAgent
from app.agents.orchestrator import Orchestrator
from app.agents.workflow_agent import WorkflowAgent
from app.core.constants import WORKFLOW_COMMIT_MESSAGE, WORKFLOW_FILE
from app.core.errors import CloneError, ProvisioningError, WorkflowGenerationError
from app.executor.sandbox_manager import CommandResult, SandboxHandle, SandboxManager
from app.models.failure import Failure
from app.models.job import JobPhase, JobStatus
from app.services.github_service import GitHubService
from app.services.results_writer import ResultsWriter
from app.state.job_store import JobStore

JOB_ID = "job-1"
PASS = CommandResult(stdout="All syntax checks passed.", stderr="", exit_code=0)
FAIL = CommandResult(stdout="FAIL src/app.test.js", stderr="Expected 2, got 3", exit_code=0)


def _failure(file="src/app.js", line=3, bug_type="LOGIC"):
    return Failure(file=file, line_number=line, error_message="wrong result", bug_type=bug_type)


@pytest.fixture
def store():
    s = JobStore()
    s.create(JOB_ID, "https://github.com/org/repo", "Alpha", "Bob")
    return s


@pytest.fixture
def handle():
    return SandboxHandle(job_id=JOB_ID, name=f"sandbox-{JOB_ID}", container=MagicMock())


@pytest.fixture
def sandbox(handle):
    sb = MagicMock(spec=SandboxManager)
    sb.provision_image = AsyncMock()
    sb.create_instance = AsyncMock(return_value=handle)
    sb.clone_repository = AsyncMock()
    sb.list_workflows = AsyncMock(return_value=[".github/workflows/ci.yml"])
    sb.list_repository_files = AsyncMock(return_value="./package.json\n./src/app.js\n")
    sb.run_test_discovery = AsyncMock(return_value=PASS)
    sb.read_file = AsyncMock(return_value=CommandResult(stdout="const x = 1;\n", exit_code=0))
    sb.destroy_instance = AsyncMock()
    return sb


@pytest.fixture
def git_agent():
    agent = MagicMock(spec=GitAgent)
    agent.branch_name = MagicMock(return_value="ALPHA_BOB_AI_Fix")
    agent.apply_and_commit = AsyncMock(return_value=True)
    agent.push_branch = AsyncMock(return_value=True)
    return agent


@pytest.fixture
def github():
    gh = MagicMock(spec=GitHubService)
    gh.fork_repository = AsyncMock(return_value="https://github.com/me/repo.git")
    gh.get_authenticated_clone_url = MagicMock(
        return_value="https://x-access-token:t@github.com/me/repo.git"
    )
    return gh


@pytest.fixture
def discovery():
    agent = MagicMock(spec=DiscoveryAgent)
    agent.extract = AsyncMock(return_value=[_failure()])
    return agent


@pytest.fixture
def fix_agent():
    agent = MagicMock(spec=FixAgent)
    agent.generate = AsyncMock(return_value=PatchProposal(
        patched_content="const x = 2;\n",
        commit_message="[AI-AGENT] Fix LOGIC in src/app.js",
        short_fix_description="use the right constant",
    ))
    return agent


@pytest.fixture
def workflow_agent():
    agent = MagicMock(spec=WorkflowAgent)
    agent.generate = AsyncMock(return_value="name: CI\non: [push]\njobs:\n  test:\n    runs-on: ubuntu-latest\n")
    return agent


@pytest.fixture
def writer():
    return MagicMock(spec=ResultsWriter)


@pytest.fixture
def make_orchestrator(store, sandbox, git_agent, github, discovery, fix_agent, workflow_agent, writer):
    def _make(budget=5):
        return Orchestrator(
            job_store=store,
            sandbox=sandbox,
            git_agent=git_agent,
            github=github,
            discovery_agent=discovery,
            fix_agent=fix_agent,
            workflow_agent=workflow_agent,
            results_writer=writer,
            iteration_budget=budget,
        )
    return _make


def _messages(store):
    return [e.message for e in store.get(JOB_ID).timeline]


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------
def test_successful_first_attempt(make_orchestrator, store, sandbox, git_agent, discovery, writer, handle):
    """Tests pass on the first run: no fixes, one push, PASSED."""
    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "PASSED"
        assert results.iterations_used == 1
        assert results.total_fixes == 0
        assert results.total_failures == 0
        assert results.branch_created == "ALPHA_BOB_AI_Fix"
        assert results.max_retries == 5

        discovery.extract.assert_not_awaited()
        git_agent.push_branch.assert_awaited_once()
        sandbox.destroy_instance.assert_awaited_once_with(handle)
        writer.write_results.assert_called_once_with(results)

        job = store.get(JOB_ID)
        assert job.status == JobStatus.COMPLETED
        assert job.phase == JobPhase.COMPLETED
        assert job.results == results
        assert "Tests passed on iteration 1" in _messages(store)

    asyncio.run(run_test())


def test_fix_then_pass(make_orchestrator, store, sandbox, git_agent, fix_agent):
    """Fail → one fix committed → pass; the branch is pushed again on finalize."""
    sandbox.run_test_discovery = AsyncMock(side_effect=[FAIL, PASS])

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "PASSED"
        assert results.iterations_used == 2
        assert results.total_failures == 1
        assert results.total_fixes == 1
        assert git_agent.push_branch.await_count == 2

        fix = results.fixes[0]
        assert fix.file == "src/app.js"
        assert fix.bug_type == "LOGIC"
        assert fix.line_number == 3
        assert fix.status == "Fixed"
        assert fix.commit_message.startswith("[AI-AGENT]")
        assert fix.patch is None
        assert "patch" not in results.to_wire()["fixes"][0]

        fix_agent.generate.assert_awaited_once()
        file_content, failure = fix_agent.generate.call_args.args
        assert file_content == "const x = 1;\n"
        assert failure.file == "src/app.js"

        args = git_agent.apply_and_commit.call_args.args
        assert args[4:] == ("src/app.js", "const x = 2;\n", "[AI-AGENT] Fix LOGIC in src/app.js")

    asyncio.run(run_test())


def test_diagnosis_receives_stdout_and_stderr(make_orchestrator, sandbox, discovery):
    sandbox.run_test_discovery = AsyncMock(side_effect=[FAIL, PASS])

    async def run_test():
        await make_orchestrator().run(JOB_ID)
        discovery.extract.assert_awaited_once_with("FAIL src/app.test.js\nExpected 2, got 3")

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------
def test_budget_exhausted(make_orchestrator, store, sandbox, git_agent, discovery):
    sandbox.run_test_discovery = AsyncMock(return_value=FAIL)
    discovery.extract = AsyncMock(return_value=[_failure("a.js"), _failure("b.js")])

    async def run_test():
        results = await make_orchestrator(budget=3).run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 3
        assert results.total_failures == 6
        assert results.total_fixes == 6
        assert results.max_retries == 3
        assert sandbox.run_test_discovery.await_count == 3
        git_agent.push_branch.assert_not_awaited()

        job = store.get(JOB_ID)
        assert job.current_iteration == 3
        assert "Retry limit reached or unresolvable failures" in _messages(store)

    asyncio.run(run_test())


def test_failing_exit_code_on_every_budgeted_iteration(make_orchestrator, store, sandbox, git_agent, discovery):
    sandbox.run_test_discovery = AsyncMock(
        return_value=CommandResult(stdout="", stderr="1 test failed", exit_code=1)
    )
    per_iteration = [1, 2, 1, 3, 1]
    discovery.extract = AsyncMock(side_effect=[
        [_failure(f"src/mod_{i}_{n}.js") for n in range(count)]
        for i, count in enumerate(per_iteration)
    ])

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 5
        assert results.max_retries == 5
        assert results.total_failures == sum(per_iteration)
        assert results.total_fixes == sum(per_iteration)
        assert git_agent.apply_and_commit.await_count == sum(per_iteration)
        assert sandbox.run_test_discovery.await_count == 5
        git_agent.push_branch.assert_not_awaited()
        assert store.get(JOB_ID).current_iteration == 5

    asyncio.run(run_test())


def test_empty_diagnosis_stops_immediately(make_orchestrator, store, sandbox, discovery, fix_agent):
    sandbox.run_test_discovery = AsyncMock(return_value=FAIL)
    discovery.extract = AsyncMock(return_value=[])

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 1
        assert results.total_failures == 0
        sandbox.run_test_discovery.assert_awaited_once()
        fix_agent.generate.assert_not_awaited()
        assert "No parsable failures found by AI." in _messages(store)

    asyncio.run(run_test())


def test_fork_failure(make_orchestrator, store, sandbox, github, writer):
    github.fork_repository = AsyncMock(return_value=None)

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 0
        sandbox.create_instance.assert_not_awaited()
        sandbox.destroy_instance.assert_awaited_once_with(None)
        writer.write_results.assert_called_once()
        assert any("Failed to fork repository" in m for m in _messages(store))

    asyncio.run(run_test())


def test_clone_failure_destroys_sandbox(make_orchestrator, store, sandbox, handle):
    sandbox.clone_repository = AsyncMock(side_effect=CloneError("Clone failed: repository not found"))

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 0
        sandbox.run_test_discovery.assert_not_awaited()
        sandbox.destroy_instance.assert_awaited_once_with(handle)
        assert any(m.startswith("Repository clone failed") for m in _messages(store))
        assert store.get(JOB_ID).status == JobStatus.COMPLETED

    asyncio.run(run_test())


def test_clone_uses_authenticated_fork_url(make_orchestrator, sandbox, handle):
    async def run_test():
        await make_orchestrator().run(JOB_ID)
        sandbox.clone_repository.assert_awaited_once_with(
            handle, "https://x-access-token:t@github.com/me/repo.git"
        )

    asyncio.run(run_test())


def test_provisioning_failure(make_orchestrator, store, sandbox):
    sandbox.create_instance = AsyncMock(side_effect=ProvisioningError("daemon unavailable"))

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        sandbox.clone_repository.assert_not_awaited()
        sandbox.destroy_instance.assert_awaited_once_with(None)
        assert any(m.startswith("Sandbox provisioning failed") for m in _messages(store))

    asyncio.run(run_test())


def test_unexpected_exception_finalizes_as_failed(make_orchestrator, store, sandbox, handle):
    sandbox.run_test_discovery = AsyncMock(side_effect=RuntimeError("kaboom"))

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "FAILED"
        assert results.iterations_used == 1
        assert "System error: kaboom" in _messages(store)
        assert results.timeline[-1].status == "System error: kaboom"
        sandbox.destroy_instance.assert_awaited_once_with(handle)
        assert store.get(JOB_ID).phase == JobPhase.COMPLETED

    asyncio.run(run_test())


def test_individual_fix_problems_never_abort_batch(make_orchestrator, sandbox, discovery, fix_agent, git_agent):
    sandbox.run_test_discovery = AsyncMock(side_effect=[FAIL, PASS])
    discovery.extract = AsyncMock(return_value=[
        _failure("missing.js"),
        _failure("nofix.js"),
        _failure("conflict.js"),
        _failure("good.js"),
    ])

    async def fake_read(h, path):
        if path == "missing.js":
            return CommandResult(stderr="No such file", exit_code=1)
        return CommandResult(stdout="x\n", exit_code=0)

    async def fake_generate(content, failure):
        if failure.file == "nofix.js":
            return None
        return PatchProposal(patched_content="y\n", commit_message=f"[AI-AGENT] fix {failure.file}")

    async def fake_apply(h, job_id, team, leader, file, content, message):
        return file != "conflict.js"

    sandbox.read_file = AsyncMock(side_effect=fake_read)
    fix_agent.generate = AsyncMock(side_effect=fake_generate)
    git_agent.apply_and_commit = AsyncMock(side_effect=fake_apply)

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.total_failures == 4
        assert results.total_fixes == 1
        assert [f.file for f in results.fixes] == ["good.js"]
        assert fix_agent.generate.await_count == 3
        assert git_agent.apply_and_commit.await_count == 2

    asyncio.run(run_test())


def test_failures_are_patched_sequentially(make_orchestrator, sandbox, discovery, fix_agent):
    sandbox.run_test_discovery = AsyncMock(side_effect=[FAIL, PASS])
    discovery.extract = AsyncMock(return_value=[_failure("a.js"), _failure("b.js"), _failure("c.js")])

    async def run_test():
        await make_orchestrator().run(JOB_ID)
        order = [c.args[1].file for c in fix_agent.generate.call_args_list]
        assert order == ["a.js", "b.js", "c.js"]

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Workflow bootstrap
# ---------------------------------------------------------------------------
def test_workflow_generated_and_committed_when_missing(make_orchestrator, store, sandbox, workflow_agent, git_agent):
    sandbox.list_workflows = AsyncMock(return_value=[])

    async def run_test():
        await make_orchestrator().run(JOB_ID)

        workflow_agent.generate.assert_awaited_once_with(
            "./package.json\n./src/app.js\n", "https://github.com/org/repo", "Bob"
        )
        first_commit = git_agent.apply_and_commit.call_args_list[0].args
        assert first_commit[4] == WORKFLOW_FILE
        assert first_commit[6] == WORKFLOW_COMMIT_MESSAGE
        assert "Successfully generated and committed base CI workflow" in _messages(store)

    asyncio.run(run_test())


def test_workflow_generation_failure_does_not_stop_job(make_orchestrator, store, sandbox, workflow_agent):
    sandbox.list_workflows = AsyncMock(return_value=[])
    workflow_agent.generate = AsyncMock(side_effect=WorkflowGenerationError("not YAML"))

    async def run_test():
        results = await make_orchestrator().run(JOB_ID)

        assert results.ci_cd_status == "PASSED"
        sandbox.run_test_discovery.assert_awaited_once()
        assert "Workflow generation failed: not YAML" in _messages(store)

    asyncio.run(run_test())


def test_existing_workflow_skips_generation(make_orchestrator, store, workflow_agent):
    async def run_test():
        await make_orchestrator().run(JOB_ID)
        workflow_agent.generate.assert_not_awaited()
        assert "Existing workflows detected. Proceeding to tests." in _messages(store)

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------
def test_phases_and_iteration_progress(make_orchestrator, store, sandbox):
    seen = []
    sandbox.run_test_discovery = AsyncMock(side_effect=[FAIL, FAIL, PASS])

    original = store.set_phase

    def spy(job_id, phase):
        seen.append(phase)
        original(job_id, phase)

    store.set_phase = spy

    async def run_test():
        results = await make_orchestrator(budget=3).run(JOB_ID)

        assert seen == [
            JobPhase.FORKING,
            JobPhase.PROVISIONING,
            JobPhase.BOOTSTRAPPING,
            JobPhase.ITERATING,
            JobPhase.FINALIZING,
        ]
        iterations = [e.iteration for e in results.timeline]
        assert max(iterations) == 3
        assert store.get(JOB_ID).current_iteration == 3

    asyncio.run(run_test())


def test_unknown_job_is_ignored(make_orchestrator, sandbox):
    async def run_test():
        assert await make_orchestrator().run("ghost") is None
        sandbox.create_instance.assert_not_awaited()

    asyncio.run(run_test())


def test_budget_must_be_positive(make_orchestrator):
    with pytest.raises(ValueError):
        make_orchestrator(budget=0)
