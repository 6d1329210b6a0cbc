"""JSON reporter for structured upload results.

Writes the final UploadResult, plus a UTC timestamp, to a file so that
scripts can pick up the uploaded object's id and location.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from upload_coordinator.models import UploadResult
from upload_coordinator.reporters.base import Reporter


class JsonReporter(Reporter):
    """JSON reporter for structured output.

    Args:
        output_path: Optional file path to write JSON output
    """

    def __init__(self, output_path: Optional[str] = None):
        self.output_path = output_path
        self._parts: list[dict] = []

    def on_upload_start(self, file_name: str, file_size: int, strategy: str) -> None:
        """No-op for JSON reporter."""
        pass

    def on_session_created(self, upload_id: str, chunk_size: int, total_chunks: int) -> None:
        """No-op for JSON reporter."""
        pass

    def on_part_complete(self, index: int, size: int, skipped: bool) -> None:
        """Remember the part for the final output."""
        self._parts.append({"index": index, "size": size, "skipped": skipped})

    def on_upload_complete(self, result: UploadResult) -> dict:
        """Generate the JSON data and write it if a path was given.

        Returns:
            The generated JSON data as a dictionary
        """
        output = result.to_dict()
        output["timestamp"] = datetime.now(timezone.utc).isoformat()
        output["parts"] = sorted(self._parts, key=lambda part: part["index"])

        if self.output_path:
            self._write_to_file(output)

        return output

    def _write_to_file(self, output: dict) -> None:
        path = Path(self.output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.output_path, "w") as f:
            json.dump(output, f, indent=2)
