"""JSON file sink for run summaries."""

import json
import logging
from pathlib import Path
from typing import Any

from loan_import.engine.outcomes import RunSummary
from loan_import.sinks.serialization import to_dict

logger = logging.getLogger(__name__)


class JsonFileSink:
    """Write one summary file and one outcome file per route."""

    def __init__(self, output_dir: str | Path, pretty: bool = False) -> None:
        """Initialize JSON file sink.

        Parameters
        ----------
        output_dir : str | Path
            Directory to write JSON files.
        pretty : bool
            Pretty-print JSON output.
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.pretty = pretty
        self._counts: dict[str, int] = {}

    def write_summary(self, summary: RunSummary) -> Path:
        """Write ``<route>.summary.json`` and ``<route>.outcomes.json``."""
        path = self._dump(f"{summary.route_name}.summary", to_dict(summary))
        self.write_batch(f"{summary.route_name}.outcomes", summary.outcomes)
        self._counts[f"{summary.route_name}.summary"] = 1
        return path

    def write_batch(self, entity_type: str, records: list[Any]) -> None:
        """Write a batch of records to a JSON file."""
        self._dump(entity_type, [to_dict(record) for record in records])
        self._counts[entity_type] = len(records)

    def _dump(self, name: str, data: Any) -> Path:
        file_path = self.output_dir / f"{name}.json"
        with open(file_path, "w", encoding="utf-8") as f:
            if self.pretty:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            else:
                json.dump(data, f, ensure_ascii=False, default=str)
        return file_path

    def close(self) -> None:
        """Log what was written."""
        logger.info("JSON files written to: %s", self.output_dir)
        for entity_type, count in self._counts.items():
            logger.info("  %s: %d records", entity_type, count)
