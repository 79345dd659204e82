import pytest

from app.core.errors import NotFoundError
from app.models.job import JobPhase, JobStatus
from app.models.results import Results
from app.state.job_store import JobStore


@pytest.fixture
def store():
    s = JobStore()
    s.create("job-1", "https://github.com/org/repo", "Alpha", "Bob")
    return s


def _results(**overrides):
    data = dict(
        repo_url="https://github.com/org/repo",
        team_name="Alpha",
        leader_name="Bob",
        branch_created="ALPHA_BOB_AI_Fix",
        ci_cd_status="PASSED",
        max_retries=5,
    )
    data.update(overrides)
    return Results(**data)


def test_create_initial_state(store):
    job = store.get("job-1")
    assert job.status == JobStatus.INITIALIZING
    assert job.phase == JobPhase.INITIALIZING
    assert job.current_iteration == 0
    assert job.timeline == []
    assert job.results is None


def test_create_duplicate_id_rejected(store):
    with pytest.raises(ValueError):
        store.create("job-1", "https://github.com/org/other", "A", "B")


def test_get_unknown_job(store):
    with pytest.raises(NotFoundError):
        store.get("nope")


def test_append_event_updates_status_and_iteration(store):
    store.append_event("job-1", 1, JobStatus.IN_PROGRESS, "Iteration 1: Discovering & running tests")
    store.append_event("job-1", 1, JobStatus.FAILED, "Tests failed. Analyzing failures...")
    job = store.get("job-1")
    assert job.status == JobStatus.FAILED
    assert job.current_iteration == 1
    assert [e.status for e in job.timeline] == [JobStatus.IN_PROGRESS, JobStatus.FAILED]


def test_current_iteration_never_decreases(store):
    store.append_event("job-1", 3, JobStatus.IN_PROGRESS)
    store.append_event("job-1", 1, JobStatus.IN_PROGRESS)
    assert store.get("job-1").current_iteration == 3


def test_timeline_is_append_only(store):
    store.append_event("job-1", 0, JobStatus.IN_PROGRESS, "first")
    before = store.get("job-1").timeline
    store.append_event("job-1", 1, JobStatus.IN_PROGRESS, "second")
    after = store.get("job-1").timeline
    assert after[: len(before)] == before
    assert after[-1].message == "second"


def test_get_returns_independent_copy(store):
    job = store.get("job-1")
    job.timeline.append(None)
    job.current_iteration = 99
    fresh = store.get("job-1")
    assert fresh.timeline == []
    assert fresh.current_iteration == 0


def test_set_phase(store):
    store.set_phase("job-1", JobPhase.ITERATING)
    assert store.get("job-1").phase == JobPhase.ITERATING


def test_complete_is_terminal(store):
    store.complete("job-1", _results())
    job = store.get("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.phase == JobPhase.COMPLETED
    assert job.is_complete

    # Second completion ignored, phase frozen, late events do not reopen the job
    store.complete("job-1", _results(ci_cd_status="FAILED"))
    store.set_phase("job-1", JobPhase.ITERATING)
    store.append_event("job-1", 1, JobStatus.FAILED, "late")
    job = store.get("job-1")
    assert job.results.ci_cd_status == "PASSED"
    assert job.phase == JobPhase.COMPLETED
    assert job.status == JobStatus.COMPLETED


def test_running_snapshot_uses_message_as_status(store):
    store.set_phase("job-1", JobPhase.FORKING)
    store.append_event("job-1", 0, JobStatus.IN_PROGRESS, "Forking target repository...")
    store.append_event("job-1", 0, JobStatus.IN_PROGRESS)
    snap = store.get("job-1").running_snapshot()
    assert snap["currentIteration"] == 0
    assert snap["status"] == "IN_PROGRESS"
    assert snap["phase"] == "FORKING"
    assert [e["status"] for e in snap["timeline"]] == ["Forking target repository...", "IN_PROGRESS"]
    assert set(snap["timeline"][0]) == {"iteration", "status", "timestamp"}
