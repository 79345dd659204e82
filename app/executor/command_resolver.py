"""
Command Resolver
================
Ordered test/lint framework cascade for the two supported project families
(Node.js and Python), rendered into the discovery script the sandbox runs.

Cascade rules:
    - Rules are checked in FRAMEWORK_CASCADE order; first match wins.
    - A matched rule installs dependencies, runs its command and exits 0;
      pass/fail is then judged from the output, not the exit code.
    - If no rule matches, a generic syntax check over every .js and .py file
      runs instead, exiting 1 when any file fails to compile.

Resolver never executes commands — it only builds the script text.
The script contains no user-supplied data; it runs in /sandbox/repo.

Deterministic: same repository contents → same framework, always.
"""
from dataclasses import dataclass

from app.core.constants import REPO_DIR


@dataclass(frozen=True)
class FrameworkRule:
    """
    One entry of the discovery cascade.

    Fields
    ------
    name : str
        Label echoed as ``FRAMEWORK_DETECTED: <name>``.
    detect : str
        Shell condition (used inside ``if ...; then``) that selects this rule.
    install : str
        Dependency installation step.
    run : str
        Test/lint command.
    """
    name: str
    detect: str
    install: str
    run: str


FRAMEWORK_CASCADE: list[FrameworkRule] = [
    FrameworkRule(
        name="jest",
        detect="[ -f package.json ] && grep -q '\"jest\"' package.json",
        install="npm install --silent",
        run="npx jest --json 2>&1 || true",
    ),
    FrameworkRule(
        name="mocha",
        detect="[ -f package.json ] && grep -q '\"mocha\"' package.json",
        install="npm install --silent",
        run="npx mocha --reporter json 2>&1 || true",
    ),
    FrameworkRule(
        name="npm test",
        detect="[ -f package.json ] && grep -q '\"test\"' package.json",
        install="npm install --silent",
        run="npm test 2>&1 || true",
    ),
    FrameworkRule(
        name="pytest",
        detect=(
            "[ -f pytest.ini ] || [ -f setup.py ] || [ -f requirements.txt ] "
            "|| [ -d tests ] || ls test_*.py >/dev/null 2>&1"
        ),
        install="if [ -f requirements.txt ]; then pip3 install -r requirements.txt; fi",
        run="pytest --json-report || pytest",
    ),
]

FALLBACK_NAME = "linter_fallback"

_FALLBACK_BLOCK = """\
echo "FRAMEWORK_DETECTED: {name}"
echo "No formal test framework found. Running generic syntax checks..."
JS_ERRORS=$(find . -name "*.js" -not -path "./node_modules/*" -exec node -c {{}} \\; 2>&1 | grep -v "Syntax OK" || true)
PY_ERRORS=$(find . -name "*.py" -not -path "./venv/*" -exec python3 -m py_compile {{}} \\; 2>&1 || true)
if [ -z "$JS_ERRORS" ] && [ -z "$PY_ERRORS" ]; then
  echo "All syntax checks passed."
  exit 0
else
  echo "SYNTAX ERRORS FOUND:"
  echo "$JS_ERRORS"
  echo "$PY_ERRORS"
  exit 1
fi
"""


def _render_rule(rule: FrameworkRule) -> str:
    return (
        f"if {rule.detect}; then\n"
        f"  echo \"FRAMEWORK_DETECTED: {rule.name}\"\n"
        f"  {rule.install}\n"
        f"  {rule.run}\n"
        f"  exit 0\n"
        f"fi\n"
    )


def build_discovery_script(repo_dir: str = REPO_DIR) -> str:
    """
    Render the full discovery cascade as a bash script.

    Returns
    -------
    str
        Multi-line script: ``cd`` into the repo, one ``if`` block per rule,
        then the syntax-check fallback.
    """
    parts = [f"cd {repo_dir} || exit 1\n"]
    parts.extend(_render_rule(rule) for rule in FRAMEWORK_CASCADE)
    parts.append(_FALLBACK_BLOCK.format(name=FALLBACK_NAME))
    return "\n".join(parts)
