# Overview: Typed event records decoded from allocation_events rows.

"""
Event records are the immutable input of every derivation in equiptrack.

Each event type is its own frozen dataclass carrying only the fields that
mean something for it. Rows are decoded exactly once, at the store
boundary (decode_event); reducers never look at ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import ClassVar, Optional, Union

from ..validation import StoreError


REQUEST_ALLOCATION = "request_allocation"
CONFIRM_ALLOCATION = "confirm_allocation"
START_ALLOCATION = "start_allocation"
END_ALLOCATION = "end_allocation"
DOWNTIME_START = "downtime_start"
DOWNTIME_END = "downtime_end"
EXTENSION_ATTACH = "extension_attach"
EXTENSION_DETACH = "extension_detach"
TRANSPORT_START = "transport_start"
TRANSPORT_ARRIVAL = "transport_arrival"
REFUELING = "refueling"
MATERIAL_ENTRY = "material_entry"
MATERIAL_EXIT = "material_exit"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
VALID_STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}

# Carries no state transition, so its approval status never matters.
INERT_EVENT_TYPES = frozenset({REFUELING})

SITE_DEPENDENT_EVENT_TYPES = frozenset({REFUELING, MATERIAL_ENTRY, MATERIAL_EXIT})
TRANSPORT_EVENT_TYPES = frozenset({TRANSPORT_START, TRANSPORT_ARRIVAL})
EXTENSION_EVENT_TYPES = frozenset({EXTENSION_ATTACH, EXTENSION_DETACH})


@dataclass(frozen=True, kw_only=True)
class EventRecord:
    event_type: ClassVar[str] = ""

    id: Optional[int] = None
    unit_id: Optional[str] = None
    extension_id: Optional[str] = None
    event_date: datetime
    created_at: Optional[datetime] = None
    status: str = STATUS_APPROVED
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    corrects_event_id: Optional[int] = None

    @property
    def subject_id(self) -> Optional[str]:
        return self.unit_id or self.extension_id

    @property
    def day(self) -> date:
        return self.event_date.date()

    @property
    def participates(self) -> bool:
        """Whether this event is allowed to influence derived state."""
        return self.status == STATUS_APPROVED or self.event_type in INERT_EVENT_TYPES

    @property
    def sort_key(self) -> tuple:
        return (self.event_date, self.created_at or datetime.min, self.id or 0)

    def site_ids(self) -> set[str]:
        """Every site this event refers to (origin and/or destination)."""
        found = set()
        for attr in ("site_id", "destination_site_id"):
            value = getattr(self, attr, None)
            if value:
                found.add(value)
        return found


@dataclass(frozen=True, kw_only=True)
class _Located(EventRecord):
    site_id: Optional[str] = None
    construction_type: Optional[str] = None
    lot_building_number: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class AllocationRequest(_Located):
    event_type: ClassVar[str] = REQUEST_ALLOCATION
    end_date: Optional[datetime] = None


@dataclass(frozen=True, kw_only=True)
class AllocationConfirm(_Located):
    event_type: ClassVar[str] = CONFIRM_ALLOCATION


@dataclass(frozen=True, kw_only=True)
class AllocationStart(_Located):
    event_type: ClassVar[str] = START_ALLOCATION
    end_date: Optional[datetime] = None


@dataclass(frozen=True, kw_only=True)
class AllocationEnd(EventRecord):
    event_type: ClassVar[str] = END_ALLOCATION
    site_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class DowntimeStart(EventRecord):
    event_type: ClassVar[str] = DOWNTIME_START
    site_id: Optional[str] = None
    downtime_reason: Optional[str] = None
    downtime_description: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class DowntimeEnd(EventRecord):
    event_type: ClassVar[str] = DOWNTIME_END
    site_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ExtensionAttach(_Located):
    """
    Two shapes:
    - unit_id + extension_id: accessory attached to a parent machine.
    - extension_id only: the accessory is allocated to site_id on its own,
      with its own planned end_date.
    """
    event_type: ClassVar[str] = EXTENSION_ATTACH
    end_date: Optional[datetime] = None

    @property
    def is_self_allocation(self) -> bool:
        return self.unit_id is None


@dataclass(frozen=True, kw_only=True)
class ExtensionDetach(EventRecord):
    event_type: ClassVar[str] = EXTENSION_DETACH
    site_id: Optional[str] = None

    @property
    def is_self_allocation(self) -> bool:
        return self.unit_id is None


@dataclass(frozen=True, kw_only=True)
class TransportStart(EventRecord):
    """site_id is the origin the unit departs from."""
    event_type: ClassVar[str] = TRANSPORT_START
    site_id: Optional[str] = None
    destination_site_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class TransportArrival(_Located):
    event_type: ClassVar[str] = TRANSPORT_ARRIVAL


@dataclass(frozen=True, kw_only=True)
class Refueling(EventRecord):
    event_type: ClassVar[str] = REFUELING
    site_id: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class MaterialEntry(EventRecord):
    event_type: ClassVar[str] = MATERIAL_ENTRY
    site_id: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class MaterialExit(EventRecord):
    event_type: ClassVar[str] = MATERIAL_EXIT
    site_id: Optional[str] = None
    supplier_id: Optional[str] = None


DomainEvent = Union[
    AllocationRequest,
    AllocationConfirm,
    AllocationStart,
    AllocationEnd,
    DowntimeStart,
    DowntimeEnd,
    ExtensionAttach,
    ExtensionDetach,
    TransportStart,
    TransportArrival,
    Refueling,
    MaterialEntry,
    MaterialExit,
]

EVENT_CLASSES = {
    cls.event_type: cls
    for cls in (
        AllocationRequest,
        AllocationConfirm,
        AllocationStart,
        AllocationEnd,
        DowntimeStart,
        DowntimeEnd,
        ExtensionAttach,
        ExtensionDetach,
        TransportStart,
        TransportArrival,
        Refueling,
        MaterialEntry,
        MaterialExit,
    )
}
EVENT_TYPES = frozenset(EVENT_CLASSES)


def build_event(event_type: str, **values) -> DomainEvent:
    """
    Build a record from loose values, dropping keys the variant does not carry.

    Raises ValueError for an unknown event_type.
    """
    cls = EVENT_CLASSES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event_type: {event_type}")
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in values.items() if k in names})


def decode_event(row) -> DomainEvent:
    """Decode one AllocationEvent row (or any attribute-bearing object)."""
    cls = EVENT_CLASSES.get(row.event_type)
    if cls is None:
        raise StoreError(f"allocation event {row.id} has unknown type {row.event_type!r}")
    if row.event_date is None:
        raise StoreError(f"allocation event {row.id} has no event_date")
    return cls(**{f.name: getattr(row, f.name, None) for f in fields(cls)})
