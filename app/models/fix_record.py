"""
Fix Record Model
================
The applied remediation for one Failure, created only after the patch was
written and committed successfully.

Fields:
    file            — file that was patched
    bug_type        — bug type of the Failure that triggered the fix
    line_number     — reported line of the Failure
    commit_message  — final commit message (always carries the [AI-AGENT] marker)
    status          — "Fixed"
    patch           — full patched content; transient, never serialised
"""
from typing import Optional

from pydantic import Field

from app.models.base import CamelModel
from app.models.failure import BugType


class FixRecord(CamelModel):
    file: str
    bug_type: BugType
    line_number: int = 0
    commit_message: str
    status: str = "Fixed"
    patch: Optional[str] = Field(default=None, exclude=True)

    def without_patch(self) -> "FixRecord":
        return self.model_copy(update={"patch": None})
