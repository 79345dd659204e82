"""
GitHub Service
==============
Forks the target repository under the authenticated account and hands out
an authenticated clone URL for the fork.

Flow:
    1. POST /repos/{owner}/{repo}/forks (202 Accepted = fork in progress)
    2. Poll GET /repos/{fork_full_name} until it answers 200
       (fork owner from the response, falling back to GET /user)
    3. Return the fork's clone_url

A failed fork is reported as None; the orchestrator treats that as terminal.
Readiness polling that never succeeds is logged and the flow proceeds anyway.
"""
import asyncio
import logging
import re
from typing import Optional, Tuple

import httpx

from app.core.config import FORK_READY_MAX_POLLS, FORK_READY_POLL_INTERVAL, GITHUB_TOKEN

logger = logging.getLogger(__name__)

_GITHUB_REPO_RE = re.compile(r"github\.com[:/]([^/\s]+)/([^/\s]+?)(?:\.git)?(?:/|$)")


def extract_owner_repo(repo_url: str) -> Optional[Tuple[str, str]]:
    """'https://github.com/facebook/react(.git)' → ('facebook', 'react')."""
    match = _GITHUB_REPO_RE.search(repo_url or "")
    if not match:
        return None
    return match.group(1), match.group(2)


class GitHubService:

    def __init__(
        self,
        token: Optional[str] = GITHUB_TOKEN,
        api_base: str = "https://api.github.com",
        max_polls: int = FORK_READY_MAX_POLLS,
        poll_interval: float = FORK_READY_POLL_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self.api_base = api_base
        self.max_polls = max_polls
        self.poll_interval = poll_interval
        self.transport = transport
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "CI-Healing-Agent",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def fork_repository(self, repo_url: str) -> Optional[str]:
        """Fork ``repo_url`` and return the fork's clone URL, or None on failure."""
        details = extract_owner_repo(repo_url)
        if not details:
            logger.error("Could not extract GitHub owner/repo from %s", repo_url)
            return None
        if not self.token:
            logger.error("GITHUB_TOKEN is not set; cannot fork %s", repo_url)
            return None

        owner, repo = details
        logger.info("[GitHub API] Forking %s/%s...", owner, repo)

        try:
            async with httpx.AsyncClient(
                base_url=self.api_base,
                headers=self.headers,
                timeout=httpx.Timeout(30.0),
                transport=self.transport,
            ) as http:
                resp = await http.post(f"/repos/{owner}/{repo}/forks")
                if resp.status_code not in (200, 201, 202):
                    logger.error(
                        "[GitHub API] Fork failed. Status: %d %s",
                        resp.status_code, resp.text[:300],
                    )
                    return None

                data = resp.json()
                clone_url = data.get("clone_url")
                if not clone_url:
                    logger.error("[GitHub API] Fork response had no clone_url")
                    return None

                full_name = data.get("full_name") or await self._fork_full_name(http, repo)
                if full_name:
                    await self._wait_for_fork(http, full_name)
                else:
                    logger.warning("Could not determine fork owner, waiting a fixed interval")
                    await asyncio.sleep(self.poll_interval)

        except httpx.HTTPError as e:
            logger.error("[GitHub API] Exception during fork flow: %s", e)
            return None

        logger.info("[GitHub API] Fork ready: %s", clone_url)
        return clone_url

    async def _fork_full_name(self, http: httpx.AsyncClient, repo: str) -> Optional[str]:
        try:
            resp = await http.get("/user")
            resp.raise_for_status()
            login = resp.json().get("login")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch authenticated user: %s", e)
            return None
        return f"{login}/{repo}" if login else None

    async def _wait_for_fork(self, http: httpx.AsyncClient, full_name: str) -> bool:
        """Poll until the fork answers 200. Returns False if polling timed out."""
        for attempt in range(1, self.max_polls + 1):
            try:
                resp = await http.get(f"/repos/{full_name}")
                if resp.status_code == 200:
                    logger.info("[GitHub API] Fork %s reachable (attempt %d)", full_name, attempt)
                    return True
            except httpx.HTTPError:
                logger.info("[GitHub API] Waiting for fork... (attempt %d/%d)", attempt, self.max_polls)
            await asyncio.sleep(self.poll_interval)

        logger.warning("Fork propagation polling timed out for %s, proceeding anyway", full_name)
        return False

    def get_authenticated_clone_url(self, https_url: str) -> str:
        """https://github.com/me/repo.git → https://x-access-token:<token>@github.com/me/repo.git"""
        if not self.token or not https_url or not https_url.startswith("https://"):
            return https_url
        return https_url.replace("https://", f"https://x-access-token:{self.token}@", 1)
