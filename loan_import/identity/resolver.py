"""Idempotent borrower and guarantor resolution."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TypeVar

from loan_import.exceptions import InvalidEntityStateError
from loan_import.identity.names import is_null_like, is_valid_phone, normalize_name, should_update_phone
from loan_import.models import Borrower, PersonalData, PersonKind, new_id
from loan_import.store.base import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BorrowerIdentity:
    """Resolved borrower handle."""

    borrower_id: str
    personal_data_id: str


@dataclass
class ResolverStats:
    borrowers_created: int = 0
    guarantors_created: int = 0
    phones_updated: int = 0


class IdentityResolver:
    """Resolve people to stable identities, creating them at most once.

    Owned by the import context. Caches are keyed by normalized name and
    must be cleared between routes with :meth:`clear`. Concurrent calls for
    the same name and identity space run one after another: a caller that
    finds a resolution in flight waits for it before starting its own, so
    the second caller always sees the first caller's writes.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.stats = ResolverStats()
        self._borrowers: dict[str, BorrowerIdentity] = {}
        self._guarantors: dict[str, str] = {}
        self._phones: dict[str, str | None] = {}
        self._in_flight: dict[tuple[PersonKind, str], asyncio.Future] = {}

    def clear(self) -> None:
        """Drop cached identities and statistics."""
        if self._in_flight:
            raise InvalidEntityStateError(
                f"Cannot clear resolver with {len(self._in_flight)} resolutions in flight"
            )
        self._borrowers.clear()
        self._guarantors.clear()
        self._phones.clear()
        self.stats = ResolverStats()

    async def _serialized(
        self, key: tuple[PersonKind, str], resolve: Callable[[], Awaitable[T]]
    ) -> T:
        while (pending := self._in_flight.get(key)) is not None:
            # Wait without inheriting the other caller's failure
            await asyncio.wait([pending])
        task = asyncio.ensure_future(resolve())
        self._in_flight[key] = task
        try:
            return await task
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def resolve_borrower(self, full_name: str, phone: str | None = None) -> BorrowerIdentity:
        """Return the borrower for ``full_name``, creating it if needed.

        Parameters
        ----------
        full_name : str
            Borrower name as written in the sheet.
        phone : str | None
            Phone from the same row; replaces the stored one under the
            phone-update rule.

        Returns
        -------
        BorrowerIdentity
            Borrower and personal data ids.

        Raises
        ------
        InvalidEntityStateError
            If the name is empty after normalization.
        """
        name = normalize_name(full_name)
        if not name:
            raise InvalidEntityStateError("Borrower name is empty")
        return await self._serialized(
            (PersonKind.BORROWER, name), lambda: self._resolve_borrower(name, phone)
        )

    async def _resolve_borrower(self, name: str, phone: str | None) -> BorrowerIdentity:
        identity = self._borrowers.get(name)
        if identity is None:
            person = await self._find_or_create_person(PersonKind.BORROWER, name, phone)
            borrower = await self.repository.find_borrower(person.id)
            if borrower is None:
                borrower = Borrower(id=new_id(), personal_data_id=person.id)
                await self.repository.add_borrower(borrower)
                self.stats.borrowers_created += 1
            identity = BorrowerIdentity(borrower_id=borrower.id, personal_data_id=person.id)
            self._borrowers[name] = identity
        await self._maybe_update_phone(identity.personal_data_id, phone)
        return identity

    async def resolve_guarantor(self, name: str | None, phone: str | None = None) -> str | None:
        """Return the guarantor personal data id, or ``None`` for an empty name."""
        if is_null_like(name):
            return None
        normalized = normalize_name(name)
        return await self._serialized(
            (PersonKind.GUARANTOR, normalized),
            lambda: self._resolve_guarantor(normalized, phone),
        )

    async def _resolve_guarantor(self, name: str, phone: str | None) -> str:
        personal_data_id = self._guarantors.get(name)
        if personal_data_id is None:
            person = await self._find_or_create_person(PersonKind.GUARANTOR, name, phone)
            personal_data_id = person.id
            self._guarantors[name] = personal_data_id
        await self._maybe_update_phone(personal_data_id, phone)
        return personal_data_id

    async def prewarm_guarantors(self, people: Iterable[tuple[str | None, str | None]]) -> int:
        """Create every missing guarantor in one bulk write.

        Parameters
        ----------
        people : Iterable[tuple[str | None, str | None]]
            ``(name, phone)`` pairs; empty and placeholder names are ignored.

        Returns
        -------
        int
            Number of guarantors created.
        """
        phones: dict[str, str | None] = {}
        for name, phone in people:
            if is_null_like(name):
                continue
            normalized = normalize_name(name)
            if not is_valid_phone(phones.get(normalized)):
                phones[normalized] = phone if is_valid_phone(phone) else None

        missing = [name for name in phones if name not in self._guarantors]
        if not missing:
            return 0

        existing = await self.repository.find_personal_data_many(PersonKind.GUARANTOR, missing)
        for name, person in existing.items():
            self._guarantors[name] = person.id
            self._phones[person.id] = person.phone

        new_people = [
            PersonalData(
                id=new_id(),
                full_name=name,
                kind=PersonKind.GUARANTOR,
                phones=[phones[name].strip()] if phones[name] else [],
            )
            for name in missing
            if name not in existing
        ]
        if new_people:
            await self.repository.add_personal_data_many(new_people)
        for person in new_people:
            self._guarantors[person.full_name] = person.id
            self._phones[person.id] = person.phone
        self.stats.guarantors_created += len(new_people)
        logger.info(
            "Pre-warmed %d guarantors (%d existing, %d created)",
            len(missing),
            len(existing),
            len(new_people),
        )
        return len(new_people)

    async def _find_or_create_person(
        self, kind: PersonKind, name: str, phone: str | None
    ) -> PersonalData:
        person = await self.repository.find_personal_data(kind, name)
        if person is None:
            person = PersonalData(
                id=new_id(),
                full_name=name,
                kind=kind,
                phones=[phone.strip()] if is_valid_phone(phone) else [],
            )
            await self.repository.add_personal_data(person)
            if kind == PersonKind.GUARANTOR:
                self.stats.guarantors_created += 1
            logger.debug("Created %s %s", kind.value.lower(), name)
        self._phones[person.id] = person.phone
        return person

    async def _maybe_update_phone(self, personal_data_id: str, phone: str | None) -> None:
        stored = self._phones.get(personal_data_id)
        if should_update_phone(stored, phone):
            new_phone = str(phone).strip()
            await self.repository.update_phone(personal_data_id, new_phone)
            self._phones[personal_data_id] = new_phone
            self.stats.phones_updated += 1
