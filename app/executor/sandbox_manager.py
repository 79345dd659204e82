"""
Sandbox Manager
===============
Provisions one disposable Docker container per job and runs commands in it.

BOUNDARY RULES:
    - Sandbox ONLY executes and transports files.
    - Sandbox NEVER decides what a failure means (Orchestrator/DiscoveryAgent).
    - Sandbox NEVER composes commit messages or branch names (GitAgent).

DOCKER STRATEGY:
    - One long-lived container per job, named ``sandbox-<job_id>``.
    - The repository is cloned INSIDE the container at /sandbox/repo.
    - Container is force-removed when the job finalizes (best effort).

COMMAND EXECUTION:
    - ``execute`` runs a fixed multi-line script with ``bash -c``.
    - ``run`` passes an argument vector straight to the container; nothing is
      interpolated into a shell, so file names, URLs and commit messages
      cannot inject commands.
    - File content travels as a tar archive (``put_archive``), which is
      byte-exact for any content.
    - stdout and stderr are captured as two separate buffers.
    - No timeout is applied: a hung command blocks its job until it exits.

The Docker SDK is synchronous; the async wrappers push each call onto a worker
thread so one job's long test run does not stall other jobs.
"""
import asyncio
import io
import logging
import posixpath
import tarfile
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import docker
from docker.errors import APIError, BuildError, DockerException, ImageNotFound, NotFound

from app.core.config import DOCKER_IMAGE, SANDBOX_BUILD_CONTEXT, SANDBOX_DOCKERFILE
from app.core.constants import REPO_DIR, SANDBOX_ROOT, WORKFLOW_DIR
from app.core.errors import CloneError, ProvisioningError
from app.executor.command_resolver import build_discovery_script
from app.utils.logging_config import redact

logger = logging.getLogger(__name__)

# Container resource limits
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


# ---------------------------------------------------------------------------
# Results and handles
# ---------------------------------------------------------------------------
@dataclass
class CommandResult:
    """
    Output of one command inside the sandbox.

    Fields
    ------
    stdout : str
        Everything the command wrote to stdout.
    stderr : str
        Everything the command wrote to stderr (not interleaved with stdout).
    exit_code : int
        Process exit code; -1 if the Docker call itself failed.
    """
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        return self.stdout + "\n" + self.stderr


@dataclass
class SandboxHandle:
    """Reference to a running per-job container."""
    job_id: str
    name: str
    container: Any


def is_test_success(result: CommandResult) -> bool:
    """
    Textual pass/fail judgement of a discovery run.

    Passes only when the exit code is 0, stdout has no "FAIL" and stderr has
    no "failed". Case-sensitive. Frameworks that print these words in passing
    output are reported as failing (known false negative).
    """
    return (
        result.exit_code == 0
        and "FAIL" not in result.stdout
        and "failed" not in result.stderr
    )


def resolve_repo_path(path: str, repo_dir: str = REPO_DIR) -> Optional[str]:
    """
    Resolve a repo-relative path to an absolute container path.

    Returns None when the path is empty or escapes the repository.
    """
    if not path or not path.strip():
        return None
    joined = posixpath.normpath(posixpath.join(repo_dir, path.strip()))
    if not joined.startswith(repo_dir.rstrip("/") + "/"):
        return None
    return joined


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Sandbox Manager
# ---------------------------------------------------------------------------
class SandboxManager:
    """
    Docker-backed per-job execution environment.

    Parameters
    ----------
    image : str
        Image tag used for every sandbox container.
    dockerfile : str
        Dockerfile (relative to ``build_context``) used when the image is missing.
    build_context : str
        Directory sent to the Docker daemon as build context.
    client : docker.DockerClient or None
        Injected client (tests); created from the environment on first use.
    """

    def __init__(
        self,
        image: str = DOCKER_IMAGE,
        dockerfile: str = SANDBOX_DOCKERFILE,
        build_context: str = SANDBOX_BUILD_CONTEXT,
        client: Optional[docker.DockerClient] = None,
    ) -> None:
        self.image = image
        self.dockerfile = dockerfile
        self.build_context = build_context
        self._client = client
        self._image_ready = False
        self._image_lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ProvisioningError(f"Docker daemon unavailable: {e}") from e
        return self._client

    # -------------------------------------------------------------------
    # Image / container lifecycle
    # -------------------------------------------------------------------
    async def provision_image(self) -> None:
        """Build the sandbox image unless it already exists. Idempotent."""
        await asyncio.to_thread(self._provision_image_sync)

    def _provision_image_sync(self) -> None:
        with self._image_lock:
            if self._image_ready:
                return
            try:
                self.client.images.get(self.image)
                logger.info("Sandbox image %s already present", self.image)
            except ImageNotFound:
                logger.info(
                    "Building sandbox image %s from %s",
                    self.image, self.dockerfile,
                )
                try:
                    self.client.images.build(
                        path=self.build_context,
                        dockerfile=self.dockerfile,
                        tag=self.image,
                        rm=True,
                    )
                except (BuildError, APIError) as e:
                    raise ProvisioningError(f"Sandbox image build failed: {e}") from e
                logger.info("Sandbox image %s built successfully", self.image)
            except APIError as e:
                raise ProvisioningError(f"Docker API error while checking image: {e}") from e
            self._image_ready = True

    async def create_instance(self, job_id: str) -> SandboxHandle:
        """Start a detached container dedicated to ``job_id``."""
        return await asyncio.to_thread(self._create_instance_sync, job_id)

    def _create_instance_sync(self, job_id: str) -> SandboxHandle:
        name = f"sandbox-{job_id}"
        try:
            # A leftover container with the same name would make run() fail
            try:
                self.client.containers.get(name).remove(force=True)
                logger.warning("Removed stale container %s", name)
            except NotFound:
                pass

            container = self.client.containers.run(
                image=self.image,
                command=["sleep", "infinity"],
                name=name,
                working_dir=SANDBOX_ROOT,
                environment={"CI": "true"},
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                labels={"project": "ci-healer", "role": "sandbox", "job_id": job_id},
                detach=True,
            )
        except (ImageNotFound, APIError, DockerException) as e:
            raise ProvisioningError(f"Failed to create sandbox container {name}: {e}") from e

        logger.info("Sandbox container %s started (%s)", name, container.short_id)
        return SandboxHandle(job_id=job_id, name=name, container=container)

    async def destroy_instance(self, handle: Optional[SandboxHandle]) -> None:
        """Force-remove the container. Never raises."""
        if handle is None:
            return
        await asyncio.to_thread(self._destroy_instance_sync, handle)

    def _destroy_instance_sync(self, handle: SandboxHandle) -> None:
        try:
            handle.container.remove(force=True)
            logger.info("Sandbox container %s destroyed", handle.name)
        except Exception:
            logger.warning("Failed to remove sandbox container %s", handle.name, exc_info=True)

    # -------------------------------------------------------------------
    # Command execution
    # -------------------------------------------------------------------
    async def execute(self, handle: SandboxHandle, script: str) -> CommandResult:
        """Run a multi-line script with bash inside the container."""
        return await self.run(handle, ["bash", "-c", script])

    async def run(
        self,
        handle: SandboxHandle,
        argv: Sequence[str],
        workdir: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run an argument vector inside the container (no shell involved)."""
        return await asyncio.to_thread(self._run_sync, handle, list(argv), workdir, environment)

    def _run_sync(
        self,
        handle: SandboxHandle,
        argv: List[str],
        workdir: Optional[str],
        environment: Optional[Dict[str, str]],
    ) -> CommandResult:
        start = time.monotonic()
        try:
            exit_code, output = handle.container.exec_run(
                argv,
                demux=True,
                workdir=workdir,
                environment=environment,
            )
        except (APIError, DockerException) as e:
            logger.error("exec in %s failed: %s", handle.name, e)
            return CommandResult(stdout="", stderr=str(e), exit_code=-1)

        stdout, stderr = output if output else (None, None)
        result = CommandResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=exit_code if exit_code is not None else -1,
        )
        logger.debug(
            "exec in %s | %s | exit=%d | %.2fs",
            handle.name, redact(argv[0]), result.exit_code, time.monotonic() - start,
        )
        return result

    # -------------------------------------------------------------------
    # Repository operations
    # -------------------------------------------------------------------
    async def clone_repository(self, handle: SandboxHandle, url: str) -> None:
        """Wipe any previous workspace and clone ``url`` into /sandbox/repo."""
        await self.run(handle, ["rm", "-rf", REPO_DIR])
        result = await self.run(handle, ["git", "clone", "--", url, REPO_DIR])
        if not result.ok:
            message = redact(result.stderr.strip() or result.stdout.strip())
            logger.error("Clone failed in %s: %s", handle.name, message)
            raise CloneError(f"Clone failed: {message}")
        logger.info("Repository cloned into %s:%s", handle.name, REPO_DIR)

    async def read_file(self, handle: SandboxHandle, path: str) -> CommandResult:
        """Read a repo-relative file. Non-zero exit if missing or outside the repo."""
        abs_path = resolve_repo_path(path)
        if abs_path is None:
            return CommandResult(stderr=f"Refusing to read path outside repository: {path}", exit_code=1)
        return await self.run(handle, ["cat", "--", abs_path], workdir=REPO_DIR)

    async def write_file(self, handle: SandboxHandle, path: str, content: str) -> bool:
        """Write the full ``content`` to a repo-relative path, creating parent dirs."""
        abs_path = resolve_repo_path(path)
        if abs_path is None:
            logger.error("Security violation: attempt to write outside workspace: %s", path)
            return False

        parent = posixpath.dirname(abs_path)
        mkdir = await self.run(handle, ["mkdir", "-p", "--", parent])
        if not mkdir.ok:
            logger.error("Could not create %s: %s", parent, mkdir.stderr)
            return False

        # Preserve the mode of an existing file (e.g. executable scripts)
        mode = 0o644
        stat = await self.run(handle, ["stat", "-c", "%a", "--", abs_path])
        if stat.ok:
            try:
                mode = int(stat.stdout.strip(), 8)
            except ValueError:
                pass

        archive = _tar_single_file(posixpath.basename(abs_path), content.encode("utf-8"), mode)
        try:
            written = await asyncio.to_thread(handle.container.put_archive, parent, archive)
        except (APIError, DockerException) as e:
            logger.error("put_archive into %s failed: %s", handle.name, e)
            return False
        if not written:
            logger.error("put_archive into %s rejected for %s", handle.name, path)
        return bool(written)

    async def list_workflows(self, handle: SandboxHandle) -> List[str]:
        """Existing GitHub Actions workflow files (*.yml / *.yaml)."""
        result = await self.run(
            handle,
            [
                "find", WORKFLOW_DIR, "-maxdepth", "1", "-type", "f",
                "(", "-name", "*.yml", "-o", "-name", "*.yaml", ")",
            ],
            workdir=REPO_DIR,
        )
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def list_repository_files(self, handle: SandboxHandle) -> str:
        """Shallow file listing (depth 2) used to infer the toolchain."""
        result = await self.run(
            handle,
            [
                "find", ".", "-maxdepth", "2", "-type", "f",
                "-not", "-path", "*/.git/*",
                "-not", "-path", "*/node_modules/*",
            ],
            workdir=REPO_DIR,
        )
        return result.stdout

    async def run_test_discovery(self, handle: SandboxHandle) -> CommandResult:
        """Run the framework cascade (or syntax fallback) inside the repo."""
        result = await self.execute(handle, build_discovery_script())
        detected = next(
            (line.split(":", 1)[1].strip() for line in result.stdout.splitlines()
             if line.startswith("FRAMEWORK_DETECTED:")),
            "unknown",
        )
        logger.info(
            "Test discovery in %s | framework=%s | exit=%d",
            handle.name, detected, result.exit_code,
        )
        return result


def _tar_single_file(name: str, data: bytes, mode: int) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = mode
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()
