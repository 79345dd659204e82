"""
Fix Agent
=========
Generates a complete replacement file for one diagnosed Failure using the LLM.

Core Philosophy:
    - Fix only the reported failure
    - Minimum diff only
    - Preserve comments
    - The proposal is the WHOLE file, never a diff

The FixAgent does NOT:
    - Read files from the sandbox (that's the orchestrator's job)
    - Write or commit anything (that's git_agent's job)

Every failure mode (provider outage, malformed JSON, schema violation,
empty patch) is reported as None so the orchestrator can skip the Failure.
"""
import logging
from typing import Optional

from pydantic import Field, ValidationError

from app.agents.git_agent import ensure_commit_prefix
from app.core.constants import ARROW, COMMIT_PREFIX
from app.llm.client import LLMClient, parse_json_object, strip_code_fences
from app.llm.prompts import FIX_SYSTEM_PROMPT, build_fix_prompt
from app.models.base import CamelModel
from app.models.failure import Failure

logger = logging.getLogger(__name__)


class PatchProposal(CamelModel):
    """LLM reply for one Failure."""
    patched_content: str = Field(min_length=1)
    commit_message: str = ""
    short_fix_description: str = ""


def format_fix_line(failure: Failure, description: str) -> str:
    """'LINTING error in src/a.py line 15 → Fix: remove the unused import'"""
    return (
        f"{failure.bug_type} error in {failure.file} line {failure.line_number} "
        f"{ARROW} Fix: {description}"
    )


class FixAgent:
    """
    Proposes full-file patches from Failures.

    Parameters
    ----------
    client : LLMClient or None
        HTTP client (auto-created if not provided).
    commit_prefix : str
        Marker every commit message must start with.
    """

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        commit_prefix: str = COMMIT_PREFIX,
    ) -> None:
        self.client = client or LLMClient()
        self.commit_prefix = commit_prefix

    async def generate(self, file_content: str, failure: Failure) -> Optional[PatchProposal]:
        """
        Ask the LLM for a patched version of ``file_content``.

        Returns
        -------
        PatchProposal or None
            None when no usable patch could be obtained.
        """
        try:
            response = await self.client.complete(
                build_fix_prompt(file_content, failure),
                FIX_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.error("Fix LLM call failed for %s: %s", failure.file, e, exc_info=True)
            return None

        if not response.success:
            logger.error("No fix for %s: %s", failure.file, response.error)
            return None

        data = parse_json_object(response.text)
        if data is None:
            logger.error("Fix reply for %s was not a JSON object", failure.file)
            return None

        try:
            proposal = PatchProposal.model_validate(data)
        except ValidationError as e:
            logger.error("Fix reply for %s failed validation: %s", failure.file, e.errors()[:1])
            return None

        patched = proposal.patched_content
        # Some models fence the file content even inside JSON
        if patched.lstrip().startswith("```"):
            patched = strip_code_fences(patched) + "\n"
        if not patched.strip():
            logger.error("Fix reply for %s had an empty patch", failure.file)
            return None

        message = proposal.commit_message.strip() or f"Fixed {failure.bug_type} in {failure.file}"
        description = proposal.short_fix_description.strip() or "applied automated fix"

        logger.info("%s", format_fix_line(failure, description))

        return proposal.model_copy(update={
            "patched_content": patched,
            "commit_message": ensure_commit_prefix(message, self.commit_prefix),
            "short_fix_description": description,
        })
