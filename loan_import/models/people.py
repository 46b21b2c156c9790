"""Borrower, guarantor and employee identity models."""

from dataclasses import dataclass, field
from datetime import datetime

from loan_import.models.enums import EmployeeType, PersonKind


@dataclass
class PersonalData:
    """A named person inside one identity space.

    ``full_name`` is always stored normalized. The first phone is the
    primary one and is the only one the resolver ever replaces.
    """

    id: str
    full_name: str
    kind: PersonKind
    phones: list[str] = field(default_factory=list)
    client_code: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime | None = None

    @property
    def phone(self) -> str | None:
        return self.phones[0] if self.phones else None


@dataclass
class Borrower:
    """A person who receives loans."""

    id: str
    personal_data_id: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Employee:
    """Field staff member; route leads originate and collect loans."""

    id: str
    personal_data_id: str
    old_id: str | None
    type: EmployeeType = EmployeeType.ROUTE_LEAD
    route_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
