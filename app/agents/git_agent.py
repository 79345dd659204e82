"""
Git Agent
=========
Handles version-control operations inside a job's sandbox: branch naming,
writing fixes, committing, and pushing.
Enforces strict naming conventions and the protected-branch guard.

Every git call is an argument vector executed in /sandbox/repo; commit
messages, branch names and file paths are never spliced into shell text.
"""
import logging
import re
from typing import Dict, List

from app.core.config import GIT_AUTHOR_EMAIL, GIT_AUTHOR_NAME
from app.core.constants import BRANCH_SUFFIX, COMMIT_PREFIX, PROTECTED_BRANCHES, REPO_DIR
from app.core.errors import PatchApplicationFailure, PushFailure
from app.executor.sandbox_manager import CommandResult, SandboxHandle, SandboxManager, resolve_repo_path
from app.utils.logging_config import redact

logger = logging.getLogger(__name__)


def normalise_name_part(value: str) -> str:
    """Uppercase, each whitespace character → underscore, drop anything but A-Z and underscore."""
    s = str(value).upper()
    s = re.sub(r"\s", "_", s)
    return re.sub(r"[^A-Z_]", "", s)


def ensure_commit_prefix(message: str, prefix: str = COMMIT_PREFIX) -> str:
    """Return ``message`` guaranteed to start with the [AI-AGENT] marker."""
    message = (message or "").strip()
    if message.startswith(prefix):
        return message
    return f"{prefix} {message}".rstrip()


def is_protected_branch(branch: str) -> bool:
    """True for names the agent must never push to (MAIN, MASTER)."""
    return branch.strip().upper() in PROTECTED_BRANCHES


class GitAgent:
    """
    Agent responsible for committing fixes in the sandbox workspace
    and pushing them to the forked remote.
    """

    def __init__(
        self,
        sandbox: SandboxManager,
        commit_prefix: str = COMMIT_PREFIX,
        author_name: str = GIT_AUTHOR_NAME,
        author_email: str = GIT_AUTHOR_EMAIL,
    ) -> None:
        self.sandbox = sandbox
        self.commit_prefix = commit_prefix
        self._identity = {
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_COMMITTER_NAME": author_name,
            "GIT_COMMITTER_EMAIL": author_email,
        }
        self._branch_cache: Dict[str, str] = {}

    def branch_name(self, job_id: str, team_name: str, leader_name: str) -> str:
        """
        Deterministic branch name: TEAM_NAME_LEADER_NAME_AI_Fix

        Computed once per job and cached; later calls for the same job return
        the cached value even if the inputs would normalise differently.
        """
        cached = self._branch_cache.get(job_id)
        if cached is not None:
            return cached
        team = normalise_name_part(team_name)
        leader = normalise_name_part(leader_name)
        branch = f"{team}_{leader}_{BRANCH_SUFFIX}"
        self._branch_cache[job_id] = branch
        logger.info("[Job %s] Branch name: %s", job_id, branch)
        return branch

    async def apply_and_commit(
        self,
        handle: SandboxHandle,
        job_id: str,
        team_name: str,
        leader_name: str,
        file: str,
        content: str,
        message: str,
    ) -> bool:
        """
        Write the full patched content to ``file`` and commit it on the job branch.

        Returns True on success. Failures are logged and reported as False.
        """
        branch = self.branch_name(job_id, team_name, leader_name)
        commit_msg = ensure_commit_prefix(message, self.commit_prefix)

        if resolve_repo_path(file) is None:
            logger.error("Security violation: attempt to write outside workspace: %s", file)
            return False

        try:
            await self._commit(handle, branch, file, content, commit_msg)
        except PatchApplicationFailure as e:
            logger.error("[Job %s] Failed to apply/commit fix for %s: %s", job_id, file, e)
            return False

        logger.info("[Job %s] Committed: %s", job_id, commit_msg)
        return True

    async def push_branch(
        self,
        handle: SandboxHandle,
        job_id: str,
        team_name: str,
        leader_name: str,
    ) -> bool:
        """
        Force-push the job branch to origin.

        Refuses outright when the branch is a protected name (MAIN/MASTER).
        """
        branch = self.branch_name(job_id, team_name, leader_name)

        # VALIDATION GATE
        if is_protected_branch(branch):
            logger.error("SAFETY VIOLATION: Refusing to push to %s", branch)
            return False

        try:
            await self._push(handle, branch)
        except PushFailure as e:
            logger.error("[Job %s] Push of %s failed: %s", job_id, branch, e)
            return False

        logger.info("[Job %s] Successfully pushed branch %s", job_id, branch)
        return True

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    async def _git(self, handle: SandboxHandle, args: List[str]) -> CommandResult:
        return await self.sandbox.run(
            handle,
            ["git", *args],
            workdir=REPO_DIR,
            environment=self._identity,
        )

    async def _commit(
        self,
        handle: SandboxHandle,
        branch: str,
        file: str,
        content: str,
        commit_msg: str,
    ) -> None:
        checkout = await self._git(handle, ["checkout", "-B", branch])
        if not checkout.ok:
            raise PatchApplicationFailure(f"checkout of {branch} failed: {checkout.stderr.strip()}")

        if not await self.sandbox.write_file(handle, file, content):
            raise PatchApplicationFailure(f"could not write {file}")

        add = await self._git(handle, ["add", "--", file])
        if not add.ok:
            raise PatchApplicationFailure(f"git add failed: {add.stderr.strip()}")

        # exit 0 = NO staged differences → nothing to commit
        diff = await self._git(handle, ["diff", "--cached", "--quiet"])
        if diff.exit_code == 0:
            raise PatchApplicationFailure(f"patch for {file} produced no diff (identical content)")

        commit = await self._git(handle, ["commit", "-m", commit_msg])
        if not commit.ok:
            raise PatchApplicationFailure(f"git commit failed: {commit.stderr.strip() or commit.stdout.strip()}")

    async def _push(self, handle: SandboxHandle, branch: str) -> None:
        # HEAD refspec: the branch has no local ref when nothing was committed
        result = await self._git(handle, ["push", "-f", "origin", f"HEAD:refs/heads/{branch}"])
        if not result.ok:
            raise PushFailure(redact(result.stderr.strip() or result.stdout.strip()))
