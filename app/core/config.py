"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_TOKEN         — Required for forking, cloning and pushing
    GEMINI_API_KEY       — Google Gemini API key
    GROQ_API_KEY         — Groq API key (OpenAI-compatible endpoint)
    OPENROUTER_API_KEY   — OpenRouter API key (free models)
    RUN_RETRY_LIMIT      — Iteration budget per job (default: 5)
    DOCKER_IMAGE         — Sandbox image tag (default: ci-healer-sandbox:latest)
    SANDBOX_DOCKERFILE   — Dockerfile used to build the sandbox image
    SANDBOX_BUILD_CONTEXT — Build context directory for the sandbox image
    RESULTS_PATH         — Where the latest results snapshot is written

Iteration Budget:
    RUN_RETRY_LIMIT is the maximum number of Test → Diagnose → Patch cycles.
    It is threaded into the Orchestrator as an explicit constructor argument;
    callers submitting a job cannot override it.

Timeouts:
    Sandbox commands run without a timeout. LLM calls are bounded by
    LLM_TIMEOUT_SECONDS at the HTTP layer.
"""
import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

RUN_RETRY_LIMIT = int(os.getenv("RUN_RETRY_LIMIT", 5))

# Sandbox image
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "ci-healer-sandbox:latest")
SANDBOX_DOCKERFILE = os.getenv("SANDBOX_DOCKERFILE", "Dockerfile.sandbox")
SANDBOX_BUILD_CONTEXT = os.getenv(
    "SANDBOX_BUILD_CONTEXT",
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
)

# Latest results snapshot (overwritten on every job completion)
RESULTS_PATH = os.getenv("RESULTS_PATH", "results.json")

# Diagnostics keep only the tail of long logs
DIAGNOSTICS_LOG_TAIL_CHARS = int(os.getenv("DIAGNOSTICS_LOG_TAIL_CHARS", 20000))

# LLM HTTP timeout in seconds
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", 60))

# Commit identity inside the sandbox
GIT_AUTHOR_NAME = os.getenv("GIT_AUTHOR_NAME", "AI Agent")
GIT_AUTHOR_EMAIL = os.getenv("GIT_AUTHOR_EMAIL", "ai-agent@users.noreply.github.com")

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 4))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))

# GitHub fork readiness polling
FORK_READY_MAX_POLLS = int(os.getenv("FORK_READY_MAX_POLLS", 10))
FORK_READY_POLL_INTERVAL = float(os.getenv("FORK_READY_POLL_INTERVAL", 3.0))
