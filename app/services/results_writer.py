"""
Results Writer
==============
Serializes the final Results record into results.json.

The file is a single snapshot of the most recently finished job and is
overwritten on every completion. Patch content is never written.
"""
import json
import logging
import os
from typing import Any, Dict, Optional

from app.core.config import RESULTS_PATH
from app.models.results import Results

logger = logging.getLogger(__name__)


class ResultsWriter:
    """
    Service responsible for persisting the terminal snapshot of a healing
    run for the dashboard.
    """

    def __init__(self, output_path: str = RESULTS_PATH) -> None:
        self.output_path = output_path

    def write_results(self, results: Results, output_path: Optional[str] = None) -> bool:
        """
        Write ``results`` as camelCase JSON. Returns False (and logs) on I/O errors.
        """
        abs_output = os.path.abspath(output_path or self.output_path)
        try:
            parent = os.path.dirname(abs_output)
            if parent:
                os.makedirs(parent, exist_ok=True)
            logger.info("Writing final results to %s", abs_output)
            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(results.to_wire(), f, indent=2, ensure_ascii=False)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write results.json: %s", e, exc_info=True)
            return False

    def read_latest(self, output_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return the last written snapshot, or None if there is none yet."""
        path = os.path.abspath(output_path or self.output_path)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to read %s: %s", path, e)
            return None
