"""Per-row outcomes and the run summary tallied from them."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from loan_import.models import OutcomeKind

logger = logging.getLogger(__name__)

LOANS = "loans"
PAYMENTS = "payments"
EXPENSES = "expenses"
PAYROLL = "payroll"


@dataclass(frozen=True)
class RowOutcome:
    """What happened to one source row."""

    kind: OutcomeKind
    sheet: str
    row_id: str
    detail: str | None = None
    entity_id: str | None = None
    renewal: bool = False


@dataclass
class BatchResult:
    """Outcomes of one committed (or rolled back) batch."""

    index: int
    outcomes: list[RowOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """Counters for one route, built by tallying row outcomes.

    ``source_rows`` holds how many rows each sheet yielded; a sheet is
    reconciled when every one of those rows has exactly one outcome.
    """

    route_name: str
    source_rows: dict[str, int] = field(default_factory=dict)
    outcomes: list[RowOutcome] = field(default_factory=list)
    batches_failed: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    def add(self, outcomes: list[RowOutcome]) -> None:
        self.outcomes.extend(outcomes)

    def count(self, kind: OutcomeKind, sheet: str = LOANS) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind and o.sheet == sheet)

    def accounted(self, sheet: str) -> int:
        return sum(1 for o in self.outcomes if o.sheet == sheet)

    @property
    def loans_persisted(self) -> int:
        return self.count(OutcomeKind.PERSISTED)

    @property
    def skipped_duplicate(self) -> int:
        return self.count(OutcomeKind.SKIPPED_DUPLICATE)

    @property
    def skipped_no_lead(self) -> int:
        return self.count(OutcomeKind.SKIPPED_NO_LEAD)

    @property
    def write_offs(self) -> int:
        return self.count(OutcomeKind.WRITE_OFF)

    @property
    def renewals_processed(self) -> int:
        return sum(
            1
            for o in self.outcomes
            if o.sheet == LOANS and o.renewal and o.kind == OutcomeKind.PERSISTED
        )

    @property
    def errors(self) -> int:
        return sum(1 for o in self.outcomes if o.kind == OutcomeKind.ERROR)

    def gaps(self) -> dict[str, int]:
        """Sheets whose outcome count differs from their source row count."""
        return {
            sheet: rows - self.accounted(sheet)
            for sheet, rows in self.source_rows.items()
            if rows != self.accounted(sheet)
        }

    @property
    def is_reconciled(self) -> bool:
        return not self.gaps()

    def finish(self) -> None:
        self.finished_at = datetime.now()
        gaps = self.gaps()
        if gaps:
            logger.error("Route %s: rows without outcome per sheet: %s", self.route_name, gaps)

    def to_dict(self) -> dict:
        by_sheet: dict[str, dict[str, int]] = {}
        for (sheet, kind), n in Counter((o.sheet, o.kind.value) for o in self.outcomes).items():
            by_sheet.setdefault(sheet, {})[kind] = n
        return {
            "route_name": self.route_name,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "source_rows": dict(self.source_rows),
            "outcomes": by_sheet,
            "loans_persisted": self.loans_persisted,
            "skipped_duplicate": self.skipped_duplicate,
            "skipped_no_lead": self.skipped_no_lead,
            "write_offs": self.write_offs,
            "renewals_processed": self.renewals_processed,
            "errors": self.errors,
            "batches_failed": self.batches_failed,
            "is_reconciled": self.is_reconciled,
        }
