"""Route import pipeline: read the workbook, import every sheet, close the route."""

import logging
from dataclasses import dataclass, field

from loan_import.config import ImporterConfig
from loan_import.engine import (
    ExpenseImporter,
    ImportContext,
    LifecyclePass,
    LifecycleStats,
    LoanImportEngine,
    PayrollImporter,
    RunSummary,
    ensure_route_accounts,
)
from loan_import.engine.outcomes import EXPENSES, LOANS, PAYMENTS, PAYROLL, BatchResult
from loan_import.engine.rules import is_write_off_name
from loan_import.extract import (
    WorkbookSource,
    expense_rows,
    lead_rows,
    loan_rows,
    payment_rows,
    payroll_rows,
)
from loan_import.identity import IdentityResolver, LoanTypeResolver, normalize_name, resolve_lead_mapping
from loan_import.logging import route_context
from loan_import.models import ExpenseRow, LeadRow, LoanRow, PaymentRow, PayrollRow, RouteSnapshot
from loan_import.store.base import Repository

logger = logging.getLogger(__name__)


@dataclass
class RouteRows:
    """Every sheet of a route workbook, extracted before any write."""

    loans: list[LoanRow] = field(default_factory=list)
    payments: list[PaymentRow] = field(default_factory=list)
    expenses: list[ExpenseRow] = field(default_factory=list)
    payroll: list[PayrollRow] = field(default_factory=list)
    leads: list[LeadRow] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        counts = {LOANS: len(self.loans), PAYMENTS: len(self.payments)}
        if self.expenses:
            counts[EXPENSES] = len(self.expenses)
        if self.payroll:
            counts[PAYROLL] = len(self.payroll)
        return counts


@dataclass
class RouteResult:
    """Outcome of importing one route."""

    summary: RunSummary
    lifecycle: LifecycleStats
    batches: list[BatchResult]


class RouteImporter:
    """Import route workbooks into a repository, one route at a time.

    The identity resolver and loan type cache live here and are cleared at
    the start and end of each route, so nothing cached for one route leaks
    into the next.
    """

    def __init__(self, repository: Repository, config: ImporterConfig | None = None) -> None:
        self.repository = repository
        self.config = config or ImporterConfig()
        self.resolver = IdentityResolver(repository)
        self.loan_types = LoanTypeResolver(repository, self.config.run.fallback_loan_type)

    def read(self, source: WorkbookSource) -> RouteRows:
        """Extract every sheet.

        The loans and payments sheets are required; expenses, payroll and
        leads are read only when present.

        Raises
        ------
        SourceReadError
            If a required sheet is missing or the workbook cannot be read.
        """
        sheets = self.config.workbook
        rows = RouteRows(
            loans=list(loan_rows(source, sheets.loans)),
            payments=list(payment_rows(source, sheets.payments)),
        )
        if source.has_sheet(sheets.expenses.name):
            rows.expenses = list(expense_rows(source, sheets.expenses))
        if source.has_sheet(sheets.payroll.name):
            rows.payroll = list(payroll_rows(source, sheets.payroll))
        if source.has_sheet(sheets.leads.name):
            rows.leads = list(lead_rows(source, sheets.leads))
        logger.info("Extracted rows: %s, leads %d", rows.counts(), len(rows.leads))
        return rows

    async def import_route(self, source: WorkbookSource, snapshot: RouteSnapshot) -> RouteResult:
        """Import one route workbook.

        Parameters
        ----------
        source : WorkbookSource
            Workbook holding the route's sheets.
        snapshot : RouteSnapshot
            Route and lead stamped on every loan and transaction.

        Returns
        -------
        RouteResult
            Reconciled summary, lifecycle statistics and batch results.
        """
        with route_context(snapshot.route_name):
            return await self._import_route(source, snapshot)

    async def _import_route(self, source: WorkbookSource, snapshot: RouteSnapshot) -> RouteResult:
        rows = self.read(source)
        summary = RunSummary(route_name=snapshot.route_name, source_rows=rows.counts())
        logger.info("Importing route %s (%s)", snapshot.route_name, snapshot.route_id)

        self.resolver.clear()
        self.loan_types.clear()
        try:
            context = await self._build_context(snapshot, rows)
            batches = await LoanImportEngine(context).run(rows.loans, rows.payments)
            if rows.expenses:
                batches += await ExpenseImporter(context).run(rows.expenses)
            if rows.payroll:
                batches += await PayrollImporter(context).run(rows.payroll)
            lifecycle = await LifecyclePass(context).run()
        finally:
            self.resolver.clear()

        for batch in batches:
            summary.add(batch.outcomes)
            if not batch.committed:
                summary.batches_failed += 1
        summary.finish()
        logger.info(
            "Route %s done: %d loans, %d renewals, %d write-offs, %d duplicates, %d without lead, %d errors",
            snapshot.route_name,
            summary.loans_persisted,
            summary.renewals_processed,
            summary.write_offs,
            summary.skipped_duplicate,
            summary.skipped_no_lead,
            summary.errors,
        )
        return RouteResult(summary=summary, lifecycle=lifecycle, batches=batches)

    async def _build_context(self, snapshot: RouteSnapshot, rows: RouteRows) -> ImportContext:
        run = self.config.run
        accounts = await ensure_route_accounts(self.repository, snapshot)
        route_leads = [row for row in rows.leads if _on_route(row, snapshot)]
        lead_mapping = await resolve_lead_mapping(
            self.repository, snapshot.route_id, route_leads, seed_missing=run.seed_leads
        )
        await self.loan_types.ensure_catalog(run.loan_types)
        await self.resolver.prewarm_guarantors(
            (row.aval_name, row.aval_phone) for row in rows.loans if not is_write_off_name(row.full_name)
        )
        return ImportContext(
            repository=self.repository,
            config=run,
            snapshot=snapshot,
            accounts=accounts,
            resolver=self.resolver,
            loan_types=self.loan_types,
            lead_mapping=lead_mapping,
        )


def _on_route(row: LeadRow, snapshot: RouteSnapshot) -> bool:
    return row.route_name is None or normalize_name(row.route_name) == normalize_name(snapshot.route_name)
