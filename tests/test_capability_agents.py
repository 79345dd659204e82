"""
Capability Agent Tests
======================
DiscoveryAgent, FixAgent and WorkflowAgent with the LLM client mocked.
"""
import asyncio
import json
import logging

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.agents.discovery_agent import DiscoveryAgent
from app.agents.fix_agent import FixAgent, format_fix_line
from app.agents.workflow_agent import WorkflowAgent, validate_workflow
from app.core.errors import WorkflowGenerationError
from app.llm.client import LLMClient, LLMResponse
from app.models.failure import Failure


def _client(text="", success=True, error=""):
    client = MagicMock(spec=LLMClient)
    client.complete = AsyncMock(return_value=LLMResponse(
        text=text, provider_name="gemini", success=success, error=error,
    ))
    return client


@pytest.fixture
def failure():
    return Failure(file="src/utils.py", line_number=15, error_message="unused import os", bug_type="LINTING")


# ---------------------------------------------------------------------------
# DiscoveryAgent
# ---------------------------------------------------------------------------
def test_discovery_parses_failures():
    reply = json.dumps({"failures": [
        {"file": "./src/a.py", "lineNumber": 4, "errorMessage": "NameError", "bugType": "LOGIC"},
        {"file": "/sandbox/repo/lib/b.js", "lineNumber": 9, "errorMessage": "Unexpected token", "bugType": "SYNTAX"},
    ]})
    agent = DiscoveryAgent(client=_client(f"```json\n{reply}\n```"))

    async def run_test():
        failures = await agent.extract("FAIL something")
        assert [f.file for f in failures] == ["src/a.py", "lib/b.js"]
        assert failures[1].bug_type == "SYNTAX"
        assert failures[0].line_number == 4

    asyncio.run(run_test())


def test_discovery_drops_invalid_entries():
    reply = json.dumps({"failures": [
        {"file": "a.py", "lineNumber": 1, "errorMessage": "x", "bugType": "NOT_A_TYPE"},
        {"file": "", "lineNumber": 1, "errorMessage": "x", "bugType": "LOGIC"},
        {"file": "b.py", "lineNumber": -3, "errorMessage": "x", "bugType": "LOGIC"},
        "garbage",
        {"file": "c.py", "errorMessage": "missing line", "bugType": "IMPORT"},
    ]})
    agent = DiscoveryAgent(client=_client(reply))

    async def run_test():
        failures = await agent.extract("log")
        assert [f.file for f in failures] == ["c.py"]
        assert failures[0].line_number == 0

    asyncio.run(run_test())


@pytest.mark.parametrize("reply", ["not json at all", "[1, 2]", '{"other": []}', '{"failures": "nope"}'])
def test_discovery_malformed_reply_returns_empty(reply):
    agent = DiscoveryAgent(client=_client(reply))
    assert asyncio.run(agent.extract("log")) == []


def test_discovery_provider_failure_returns_empty():
    agent = DiscoveryAgent(client=_client(success=False, error="All providers failed"))
    assert asyncio.run(agent.extract("log")) == []


def test_discovery_client_exception_returns_empty():
    client = MagicMock(spec=LLMClient)
    client.complete = AsyncMock(side_effect=RuntimeError("socket closed"))
    agent = DiscoveryAgent(client=client)
    assert asyncio.run(agent.extract("log")) == []


def test_discovery_keeps_only_log_tail():
    client = _client('{"failures": []}')
    agent = DiscoveryAgent(client=client, tail_chars=10)

    async def run_test():
        await agent.extract("HEAD-" + "x" * 50 + "0123456789")
        prompt = client.complete.call_args.args[0]
        assert "0123456789" in prompt
        assert "HEAD-" not in prompt

    asyncio.run(run_test())


def test_discovery_empty_log_skips_llm():
    client = _client('{"failures": []}')
    agent = DiscoveryAgent(client=client)
    assert asyncio.run(agent.extract("   ")) == []
    client.complete.assert_not_awaited()


# ---------------------------------------------------------------------------
# FixAgent
# ---------------------------------------------------------------------------
def test_fix_agent_returns_proposal(failure, caplog):
    reply = json.dumps({
        "patchedContent": "import sys\n",
        "shortFixDescription": "remove the import statement",
        "commitMessage": "[AI-AGENT] Remove unused import in src/utils.py",
    })
    agent = FixAgent(client=_client(reply))

    async def run_test():
        with caplog.at_level(logging.INFO, logger="app.agents.fix_agent"):
            proposal = await agent.generate("import os\nimport sys\n", failure)
        assert proposal.patched_content == "import sys\n"
        assert proposal.commit_message == "[AI-AGENT] Remove unused import in src/utils.py"
        assert "LINTING error in src/utils.py line 15 → Fix: remove the import statement" in caplog.text

    asyncio.run(run_test())


def test_fix_agent_prefixes_commit_message(failure):
    reply = json.dumps({"patchedContent": "x\n", "commitMessage": "Remove unused import"})
    proposal = asyncio.run(FixAgent(client=_client(reply)).generate("y\n", failure))
    assert proposal.commit_message == "[AI-AGENT] Remove unused import"


def test_fix_agent_default_commit_message(failure):
    reply = json.dumps({"patchedContent": "x\n"})
    proposal = asyncio.run(FixAgent(client=_client(reply)).generate("y\n", failure))
    assert proposal.commit_message == "[AI-AGENT] Fixed LINTING in src/utils.py"


def test_fix_agent_strips_fenced_patch(failure):
    reply = json.dumps({"patchedContent": "```python\nimport sys\n```", "commitMessage": "[AI-AGENT] fix"})
    proposal = asyncio.run(FixAgent(client=_client(reply)).generate("y\n", failure))
    assert proposal.patched_content == "import sys\n"


@pytest.mark.parametrize("reply", [
    "no json here",
    json.dumps({"commitMessage": "[AI-AGENT] nothing"}),
    json.dumps({"patchedContent": ""}),
    json.dumps({"patchedContent": "   \n"}),
])
def test_fix_agent_unusable_reply_returns_none(failure, reply):
    assert asyncio.run(FixAgent(client=_client(reply)).generate("y\n", failure)) is None


def test_fix_agent_provider_failure_returns_none(failure):
    agent = FixAgent(client=_client(success=False, error="All providers failed"))
    assert asyncio.run(agent.generate("y\n", failure)) is None


def test_format_fix_line(failure):
    assert format_fix_line(failure, "remove the import statement") == (
        "LINTING error in src/utils.py line 15 → Fix: remove the import statement"
    )


# ---------------------------------------------------------------------------
# WorkflowAgent
# ---------------------------------------------------------------------------
_WORKFLOW = """\
name: CI
on:
  push:
  pull_request:
jobs:
  test:
    name: Continuous Integration (Bob)
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4
      - run: npm test
"""


def test_workflow_agent_strips_fences_and_validates():
    agent = WorkflowAgent(client=_client(f"```yaml\n{_WORKFLOW}```"))

    async def run_test():
        text = await agent.generate("./package.json", "https://github.com/org/repo", "Bob")
        assert text.startswith("name: CI")
        assert "```" not in text
        assert "Continuous Integration (Bob)" in text

    asyncio.run(run_test())


def test_workflow_prompt_names_the_job_after_leader():
    client = _client(_WORKFLOW)
    asyncio.run(WorkflowAgent(client=client).generate("./package.json", "repo", "Bob"))
    prompt = client.complete.call_args.args[0]
    assert 'Continuous Integration (Bob)' in prompt
    assert "./package.json" in prompt


@pytest.mark.parametrize("reply", ["just some prose", "key: [unclosed", "name: CI\non: push\n"])
def test_workflow_agent_rejects_invalid_yaml(reply):
    agent = WorkflowAgent(client=_client(reply))
    with pytest.raises(WorkflowGenerationError):
        asyncio.run(agent.generate("./a.py", "repo", "Bob"))


def test_workflow_agent_provider_failure_raises():
    agent = WorkflowAgent(client=_client(success=False, error="No LLM provider configured"))
    with pytest.raises(WorkflowGenerationError):
        asyncio.run(agent.generate("./a.py", "repo", "Bob"))


def test_validate_workflow_returns_mapping():
    document = validate_workflow(_WORKFLOW)
    assert "test" in document["jobs"]
