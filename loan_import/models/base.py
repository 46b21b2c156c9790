"""Base models shared across the import pipeline."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def new_id() -> str:
    """Return a fresh internal identifier."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RouteSnapshot:
    """Route and lead bundle stamped on every loan and transaction of a route.

    Supplied once per route and never mutated while the route imports.
    """

    route_id: str
    route_name: str
    lead_id: str | None = None
    lead_name: str | None = None
    assigned_at: datetime | None = None

    def external_id(self, old_id: str) -> str:
        """Route-prefixed external id for a spreadsheet id."""
        return f"{self.route_name}-{old_id}"

    def stamp(self) -> dict[str, Any]:
        """Snapshot columns written on loans and transactions."""
        return {
            "snapshot_route_id": self.route_id,
            "snapshot_route_name": self.route_name,
            "snapshot_lead_id": self.lead_id,
            "snapshot_lead_name": self.lead_name,
            "snapshot_lead_assigned_at": self.assigned_at,
        }


@dataclass
class Event:
    """Standard event envelope for streaming."""

    event_id: str
    event_type: str  # entity.action (e.g., import.completed)
    event_time: datetime
    source: str
    subject: str  # Route name
    data: dict
    metadata: dict = field(default_factory=dict)
