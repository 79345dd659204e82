"""
Workflow Agent
==============
Synthesises a GitHub Actions workflow for repositories that ship none.

The reply must be raw YAML. Markdown fences are stripped, then the document
is parsed with yaml.safe_load and must be a mapping with a ``jobs`` section.
Anything else raises WorkflowGenerationError; the orchestrator records the
failure on the timeline and carries on without a workflow.
"""
import logging
from typing import Optional

import yaml

from app.core.errors import WorkflowGenerationError
from app.llm.client import LLMClient, strip_code_fences
from app.llm.prompts import WORKFLOW_SYSTEM_PROMPT, build_workflow_prompt

logger = logging.getLogger(__name__)


def validate_workflow(text: str) -> dict:
    """Parse ``text`` as a workflow document or raise WorkflowGenerationError."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowGenerationError(f"Generated workflow is not valid YAML: {e}") from e
    if not isinstance(document, dict):
        raise WorkflowGenerationError("Generated workflow is not a YAML mapping")
    if not isinstance(document.get("jobs"), dict):
        raise WorkflowGenerationError("Generated workflow has no jobs section")
    return document


class WorkflowAgent:

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self.client = client or LLMClient()

    async def generate(self, file_listing: str, repo_name: str, leader_name: str) -> str:
        """Return workflow YAML for the repository described by ``file_listing``."""
        try:
            response = await self.client.complete(
                build_workflow_prompt(file_listing, repo_name, leader_name),
                WORKFLOW_SYSTEM_PROMPT,
            )
        except Exception as e:
            raise WorkflowGenerationError(f"Workflow LLM call failed: {e}") from e

        if not response.success:
            raise WorkflowGenerationError(f"Workflow generation failed: {response.error}")

        text = strip_code_fences(response.text)
        validate_workflow(text)

        logger.info("Generated CI workflow for %s via %s", repo_name, response.provider_name)
        return text + "\n"
