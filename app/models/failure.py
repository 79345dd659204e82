"""
Failure Model
=============
Pydantic model for one diagnosed defect in the target repository.
This is the contract between the DiscoveryAgent and the FixAgent.

Fields:
    file            — path relative to repo root
    line_number     — integer >= 0 (0 when the log gives no line)
    error_message   — brief description extracted from the test output
    bug_type        — one of the six allowed types (LINTING, SYNTAX, ...)

Failures live for a single iteration only; they are never persisted.
"""
from typing import Literal

from pydantic import Field, field_validator

from app.models.base import CamelModel

BugType = Literal["LINTING", "SYNTAX", "LOGIC", "TYPE_ERROR", "IMPORT", "INDENTATION"]


class Failure(CamelModel):
    file: str = Field(min_length=1)
    line_number: int = Field(default=0, ge=0)
    error_message: str = ""
    bug_type: BugType

    @field_validator("file")
    @classmethod
    def normalise_path(cls, v: str) -> str:
        # Logs report paths as ./src/a.py or /sandbox/repo/src/a.py
        v = v.strip().replace("\\", "/")
        for prefix in ("/sandbox/repo/", "./"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        return v
