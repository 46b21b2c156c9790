"""Per-route lead mapping: spreadsheet lead id to employee id."""

import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from loan_import.identity.names import normalize_name
from loan_import.models import Employee, EmployeeType, LeadRow, PersonalData, PersonKind, new_id
from loan_import.store.base import Repository

logger = logging.getLogger(__name__)


async def resolve_lead_mapping(
    repository: Repository,
    route_id: str,
    lead_rows: Iterable[LeadRow],
    seed_missing: bool = False,
) -> Mapping[str, str]:
    """Build the read-only lead mapping for a route.

    Each sheet lead is matched against persisted route leads by old id
    first and by normalized full name second. With ``seed_missing`` active
    leads that match nothing are created as route leads; otherwise they are
    logged and left out, and loans that reference them are skipped later.

    Parameters
    ----------
    repository : Repository
        Store holding employees.
    route_id : str
        Route being imported.
    lead_rows : Iterable[LeadRow]
        Lead sheet rows belonging to the route.
    seed_missing : bool
        Create employees for unmatched active leads.

    Returns
    -------
    Mapping[str, str]
        Spreadsheet lead id to employee id.
    """
    persisted = await repository.list_leads(route_id)
    by_old_id = {employee.old_id: employee.id for employee, _ in persisted if employee.old_id}
    by_name = {normalize_name(person.full_name): employee.id for employee, person in persisted}

    mapping: dict[str, str] = {}
    unmatched: list[str] = []
    for row in lead_rows:
        name = normalize_name(row.full_name)
        if row.id in by_old_id:
            mapping[row.id] = by_old_id[row.id]
        elif name and name in by_name:
            mapping[row.id] = by_name[name]
        elif seed_missing and row.active and name:
            employee = await _create_lead(repository, route_id, row, name)
            by_old_id[row.id] = employee.id
            by_name[name] = employee.id
            mapping[row.id] = employee.id
        else:
            unmatched.append(row.id)

    if unmatched:
        logger.warning(
            "Route %s: %d lead ids have no employee and will be skipped: %s",
            route_id,
            len(unmatched),
            ", ".join(unmatched),
        )
    logger.info("Route %s: lead mapping has %d entries", route_id, len(mapping))
    return MappingProxyType(mapping)


async def _create_lead(repository: Repository, route_id: str, row: LeadRow, name: str) -> Employee:
    person = await repository.find_personal_data(PersonKind.EMPLOYEE, name)
    if person is None:
        person = PersonalData(
            id=new_id(),
            full_name=name,
            kind=PersonKind.EMPLOYEE,
            phones=[row.phone] if row.phone else [],
            client_code=f"LID-{new_id()[:8].upper()}",
        )
        await repository.add_personal_data(person)
    employee = Employee(
        id=new_id(),
        personal_data_id=person.id,
        old_id=row.id,
        type=EmployeeType.ROUTE_LEAD,
        route_id=route_id,
    )
    await repository.add_employee(employee)
    logger.info("Route %s: created lead %s (%s)", route_id, name, row.id)
    return employee
