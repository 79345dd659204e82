"""
LLM Prompts
===========
Centralised store for the three capability prompts:

    - Diagnostics: test output → JSON list of failures
    - Fix:         one failure + full file → JSON with the complete patched file
    - Workflow:    repository listing → raw GitHub Actions YAML

Prompt Design Rules:
    - Bug types are restricted to the six allowed values
    - Patches are ALWAYS the complete file, never a diff
    - Commit messages must start with the [AI-AGENT] marker
    - Structured replies are plain JSON, no markdown fences
"""
from app.core.constants import BUG_TYPES, COMMIT_PREFIX
from app.models.failure import Failure

_BUG_TYPE_LIST = ", ".join(BUG_TYPES)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------
DIAGNOSTICS_SYSTEM_PROMPT = (
    "You analyse CI test and lint output and extract failure metadata.\n"
    f"Classify each failure into ONLY one of these exact types: {_BUG_TYPE_LIST}.\n"
    "Report file paths relative to the repository root.\n"
    "Respond with a single JSON object and nothing else."
)

_DIAGNOSTICS_FORMAT = (
    '{"failures": [{"file": "<path>", "lineNumber": <int>, '
    '"errorMessage": "<brief description>", "bugType": "<TYPE>"}]}'
)


def build_diagnostics_prompt(test_output: str) -> str:
    return (
        "Analyze the following test execution output and extract failure metadata.\n"
        f"Return JSON exactly in this shape:\n{_DIAGNOSTICS_FORMAT}\n"
        "Return an empty list if nothing can be attributed to a file.\n\n"
        f"TEST OUTPUT:\n{test_output}"
    )


# ---------------------------------------------------------------------------
# Fix
# ---------------------------------------------------------------------------
FIX_SYSTEM_PROMPT = (
    "You are an expert developer fixing a single reported bug.\n"
    "\n"
    "HARD RULES:\n"
    "1. Fix ONLY the reported failure. Minimum diff.\n"
    "2. Preserve ALL comments and formatting of untouched lines.\n"
    "3. patchedContent MUST be the COMPLETE file, ready to be written to disk.\n"
    "4. Never use markdown code fences inside patchedContent.\n"
    f"5. commitMessage MUST start exactly with \"{COMMIT_PREFIX} \".\n"
    "Respond with a single JSON object and nothing else."
)

_FIX_FORMAT = (
    '{"patchedContent": "<complete file>", '
    '"shortFixDescription": "<short lowercase phrase>", '
    f'"commitMessage": "{COMMIT_PREFIX} <summary>"}}'
)


def build_fix_prompt(file_content: str, failure: Failure) -> str:
    return (
        "Failure Details:\n"
        f"- File: {failure.file}\n"
        f"- Line: {failure.line_number}\n"
        f"- Error: {failure.error_message}\n"
        f"- Bug Type: {failure.bug_type}\n\n"
        f"Return JSON exactly in this shape:\n{_FIX_FORMAT}\n\n"
        f"FILE CONTENT:\n{file_content}"
    )


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------
WORKFLOW_SYSTEM_PROMPT = (
    "You are an expert DevOps engineer who writes ultra-reliable GitHub Actions workflows.\n"
    "Output ONLY the raw YAML content. No markdown fences, no explanations."
)


def build_workflow_prompt(file_listing: str, repo_name: str, leader_name: str) -> str:
    return (
        "Based on the following repository structure, generate a strictly valid "
        "GitHub Actions workflow that builds and tests this project. It MUST match "
        "the technology stack deduced from the files (Node.js if package.json exists, "
        "Python if pytest.ini or requirements.txt exists).\n\n"
        f"REPOSITORY: {repo_name}\n"
        f"REPOSITORY FILES:\n{file_listing}\n\n"
        "REQUIREMENTS:\n"
        "1. Trigger on 'push' and 'pull_request' to any branch.\n"
        "2. Use modern, stable actions (actions/checkout@v4, actions/setup-node@v4, "
        "actions/setup-python@v5).\n"
        "3. Install dependencies.\n"
        "4. Run the test suite or linter.\n"
        f"5. Name the job exactly: \"Continuous Integration ({leader_name})\""
    )
