"""
Constants
Centralised storage for system-wide constants, bug types, sandbox paths and Git rules.
"""
BUG_TYPES = ["LINTING", "SYNTAX", "LOGIC", "TYPE_ERROR", "IMPORT", "INDENTATION"]
ARROW = "→"
COMMIT_PREFIX = "[AI-AGENT]"
PROTECTED_BRANCHES = ("MAIN", "MASTER")
BRANCH_SUFFIX = "AI_Fix"

# Layout inside the sandbox container
SANDBOX_ROOT = "/sandbox"
REPO_DIR = "/sandbox/repo"
WORKFLOW_DIR = ".github/workflows"
WORKFLOW_FILE = ".github/workflows/ci.yml"
WORKFLOW_COMMIT_MESSAGE = "[AI-AGENT] Add AI-generated CI workflow"
