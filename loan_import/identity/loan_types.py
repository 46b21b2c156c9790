"""Loan type resolution by (weeks, rate)."""

import asyncio
import logging
from decimal import Decimal
from typing import Iterable

from loan_import.config import FALLBACK_LOAN_TYPE, LoanTypeSpec
from loan_import.models import LoanType, new_id
from loan_import.store.base import Repository

logger = logging.getLogger(__name__)


class LoanTypeResolver:
    """Map a (weeks, rate) pair to a persisted loan type.

    Resolution is total: exact match, else the closest rate among types
    with the same number of weeks, else the fallback type (created on first
    use).
    """

    def __init__(self, repository: Repository, fallback: LoanTypeSpec = FALLBACK_LOAN_TYPE) -> None:
        self.repository = repository
        self.fallback = fallback
        self._types: list[LoanType] | None = None
        self._lock = asyncio.Lock()

    def clear(self) -> None:
        self._types = None

    async def _load(self) -> list[LoanType]:
        if self._types is None:
            self._types = await self.repository.list_loan_types()
        return self._types

    async def ensure_catalog(self, specs: Iterable[LoanTypeSpec]) -> list[LoanType]:
        """Create the loan types in ``specs`` that do not exist yet."""
        created = []
        async with self._lock:
            types = await self._load()
            for spec in specs:
                if self._exact(types, spec.weeks, spec.rate) is None:
                    loan_type = await self._create(spec)
                    created.append(loan_type)
        if created:
            logger.info("Created loan types: %s", ", ".join(t.name for t in created))
        return created

    async def resolve(self, weeks: int, rate: Decimal) -> LoanType:
        types = await self._load()
        exact = self._exact(types, weeks, rate)
        if exact is not None:
            return exact

        same_weeks = [t for t in types if t.week_duration == weeks]
        if same_weeks:
            closest = min(same_weeks, key=lambda t: (abs(t.rate - rate), t.rate))
            logger.debug("No %dw/%s loan type, using %s", weeks, rate, closest.name)
            return closest

        logger.debug("No %d-week loan type, using fallback %s", weeks, self.fallback.name)
        return await self._fallback()

    async def _fallback(self) -> LoanType:
        async with self._lock:
            types = await self._load()
            existing = self._exact(types, self.fallback.weeks, self.fallback.rate)
            if existing is not None:
                return existing
            return await self._create(self.fallback)

    async def _create(self, spec: LoanTypeSpec) -> LoanType:
        loan_type = LoanType(
            id=new_id(),
            name=spec.name,
            week_duration=spec.weeks,
            rate=spec.rate,
            fees=spec.fees,
        )
        await self.repository.add_loan_type(loan_type)
        types = await self._load()
        types.append(loan_type)
        return loan_type

    @staticmethod
    def _exact(types: list[LoanType], weeks: int, rate: Decimal) -> LoanType | None:
        for loan_type in types:
            if loan_type.week_duration == weeks and loan_type.rate == rate:
                return loan_type
        return None
