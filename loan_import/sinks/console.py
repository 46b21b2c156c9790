"""Console sink for run summaries."""

import json
from typing import Any

from loan_import.engine.outcomes import RunSummary
from loan_import.sinks.serialization import to_dict


class ConsoleSink:
    """Print run summaries and outcome records to stdout."""

    def __init__(self, pretty: bool = True, max_records: int | None = 20) -> None:
        """Initialize console sink.

        Parameters
        ----------
        pretty : bool
            Pretty-print JSON output.
        max_records : int | None
            Maximum records to print per batch (None for all).
        """
        self.pretty = pretty
        self.max_records = max_records
        self._counts: dict[str, int] = {}

    def write_summary(self, summary: RunSummary) -> None:
        """Print the counters of one route and the rows that were not persisted."""
        print(f"\n{'='*60}")
        print(f"Route: {summary.route_name}")
        print("=" * 60)
        self._print(to_dict(summary))
        skipped = [o for o in summary.outcomes if o.detail is not None]
        if skipped:
            self.write_batch(f"{summary.route_name}.outcomes", skipped)

    def write_batch(self, entity_type: str, records: list[Any]) -> None:
        """Write a batch of records to console."""
        print(f"\n{entity_type} ({len(records)} records)")

        display_records = records[: self.max_records] if self.max_records else records
        for record in display_records:
            self._print(to_dict(record))

        if self.max_records and len(records) > self.max_records:
            print(f"... and {len(records) - self.max_records} more records")

        self._counts[entity_type] = self._counts.get(entity_type, 0) + len(records)

    def _print(self, data: dict) -> None:
        if self.pretty:
            print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
        else:
            print(json.dumps(data, ensure_ascii=False, default=str))

    def close(self) -> None:
        """Print summary and close."""
        print(f"\n{'='*60}")
        print("Console Sink Summary")
        print("=" * 60)
        for entity_type, count in self._counts.items():
            print(f"  {entity_type}: {count} records")
