"""
Discovery Agent
===============
Turns raw test/lint output into a list of structured Failures.

Flow:
    1. Keep only the tail of the log (DIAGNOSTICS_LOG_TAIL_CHARS)
    2. Ask the LLM for {"failures": [...]}
    3. Validate every entry against the Failure schema; drop invalid ones

The agent NEVER raises: provider outages, malformed JSON and schema
violations all collapse to an empty list, which the orchestrator reads as
"tests failed but nothing could be diagnosed".
"""
import logging
from typing import List, Optional

from pydantic import ValidationError

from app.core.config import DIAGNOSTICS_LOG_TAIL_CHARS
from app.llm.client import LLMClient, parse_json_object
from app.llm.prompts import DIAGNOSTICS_SYSTEM_PROMPT, build_diagnostics_prompt
from app.models.failure import Failure

logger = logging.getLogger(__name__)


class DiscoveryAgent:

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        tail_chars: int = DIAGNOSTICS_LOG_TAIL_CHARS,
    ) -> None:
        self.client = client or LLMClient()
        self.tail_chars = tail_chars

    async def extract(self, raw_log: str) -> List[Failure]:
        """Diagnose ``raw_log``. Returns [] when nothing usable comes back."""
        log_tail = (raw_log or "")[-self.tail_chars:]
        if not log_tail.strip():
            return []

        try:
            response = await self.client.complete(
                build_diagnostics_prompt(log_tail),
                DIAGNOSTICS_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.error("Diagnostics LLM call failed: %s", e, exc_info=True)
            return []

        if not response.success:
            logger.error("Diagnostics failed: %s", response.error)
            return []

        data = parse_json_object(response.text)
        if data is None:
            logger.error("Diagnostics reply from %s was not a JSON object", response.provider_name)
            return []

        entries = data.get("failures")
        if not isinstance(entries, list):
            logger.error("Diagnostics reply has no 'failures' list")
            return []

        failures: List[Failure] = []
        for entry in entries:
            try:
                failures.append(Failure.model_validate(entry))
            except ValidationError as e:
                logger.warning("Dropping invalid failure entry %r: %s", entry, e.errors()[:1])

        logger.info(
            "Diagnosed %d failure(s) via %s (%d dropped)",
            len(failures), response.provider_name, len(entries) - len(failures),
        )
        return failures
