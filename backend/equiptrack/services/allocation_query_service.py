# Overview: Fleet-wide active allocation, downtime and transport projections.

"""
Bulk materializer.

QUERY BUDGET: one query for active units, one for active extensions, one for
every participating event. Everything else (grouping, reducing, site titles,
downtime details) happens in memory, so the number of round trips does not
grow with the fleet.

A subject is listed when it has an open allocation, is in transit, is in
downtime, or is parked at a site.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from equiptrack.time_utils import parse_as_of, to_utc_z
from . import event_store
from .state_service import (
    STATUS_ALLOCATED,
    STATUS_EXCEEDED,
    DerivedState,
    calculate_extension_state,
    calculate_state_from_events,
)


@dataclass
class ActiveAllocation:
    machine_id: str
    machine_unit_number: str
    machine_type: str
    machine_type_icon: Optional[str]
    machine_ownership: str
    machine_supplier_id: Optional[str]
    machine_supplier_name: Optional[str]
    is_extension: bool

    status: str
    allocation_event_id: Optional[int]
    site_id: Optional[str]
    site_title: str
    construction_type: Optional[str]
    lot_building_number: Optional[str]
    allocation_start: Optional[datetime]
    end_date: Optional[datetime]

    is_in_downtime: bool
    current_downtime_event_id: Optional[int]
    current_downtime_reason: Optional[str]
    current_downtime_start: Optional[datetime]

    is_currently_at_site: bool
    previous_site_id: Optional[str]
    origin_site_id: Optional[str]
    destination_site_id: Optional[str]
    transport_event_id: Optional[int] = None
    transport_start: Optional[datetime] = None

    attached_extensions: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allocation_event_id": self.allocation_event_id,
            "machine_id": self.machine_id,
            "machine_unit_number": self.machine_unit_number,
            "machine_type": self.machine_type,
            "machine_type_icon": self.machine_type_icon,
            "machine_ownership": self.machine_ownership,
            "machine_supplier_id": self.machine_supplier_id,
            "machine_supplier_name": self.machine_supplier_name,
            "is_extension": self.is_extension,
            "status": self.status,
            "site_id": self.site_id,
            "site_title": self.site_title,
            "construction_type": self.construction_type,
            "lot_building_number": self.lot_building_number,
            "allocation_start": to_utc_z(self.allocation_start),
            "end_date": to_utc_z(self.end_date),
            "is_in_downtime": self.is_in_downtime,
            "current_downtime_event_id": self.current_downtime_event_id,
            "current_downtime_reason": self.current_downtime_reason,
            "current_downtime_start": to_utc_z(self.current_downtime_start),
            "is_currently_at_site": self.is_currently_at_site,
            "previous_site_id": self.previous_site_id,
            "origin_site_id": self.origin_site_id,
            "destination_site_id": self.destination_site_id,
            "attached_extensions": list(self.attached_extensions),
        }


@dataclass
class ActiveDowntime:
    downtime_event_id: int
    machine_id: str
    machine_unit_number: str
    site_id: Optional[str]
    site_title: Optional[str]
    downtime_reason: Optional[str]
    downtime_description: Optional[str]
    downtime_start: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "downtime_event_id": self.downtime_event_id,
            "machine_id": self.machine_id,
            "machine_unit_number": self.machine_unit_number,
            "site_id": self.site_id,
            "site_title": self.site_title,
            "downtime_reason": self.downtime_reason,
            "downtime_description": self.downtime_description,
            "downtime_start": to_utc_z(self.downtime_start),
        }


@dataclass
class ActiveTransport:
    transport_start_event_id: Optional[int]
    machine_id: str
    machine_unit_number: str
    origin_site_id: Optional[str]
    origin_site_title: Optional[str]
    destination_site_id: Optional[str]
    destination_site_title: Optional[str]
    transport_start: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "transport_start_event_id": self.transport_start_event_id,
            "machine_id": self.machine_id,
            "machine_unit_number": self.machine_unit_number,
            "origin_site_id": self.origin_site_id,
            "origin_site_title": self.origin_site_title,
            "destination_site_id": self.destination_site_id,
            "destination_site_title": self.destination_site_title,
            "transport_start": to_utc_z(self.transport_start),
        }


def _is_live(state: DerivedState) -> bool:
    return (
        state.has_open_allocation
        or state.in_transit
        or state.is_in_downtime
        or state.current_site_id is not None
    )


def _project(subject, state: DerivedState, titles: dict, *, is_extension: bool, attached: list) -> ActiveAllocation:
    machine_type = subject.machine_type
    supplier = subject.supplier
    return ActiveAllocation(
        machine_id=subject.id,
        machine_unit_number=subject.unit_number,
        machine_type=machine_type.name if machine_type else "",
        machine_type_icon=machine_type.icon if machine_type else None,
        machine_ownership=getattr(subject, "ownership_type", None) or "owned",
        machine_supplier_id=supplier.id if supplier else None,
        machine_supplier_name=supplier.name if supplier else None,
        is_extension=is_extension,
        status=state.status,
        allocation_event_id=state.current_allocation_event_id,
        site_id=state.current_site_id,
        site_title=titles.get(state.current_site_id, ""),
        construction_type=state.construction_type,
        lot_building_number=state.lot_building_number,
        allocation_start=state.allocation_start,
        end_date=state.end_date,
        is_in_downtime=state.is_in_downtime,
        current_downtime_event_id=state.current_downtime_event_id,
        current_downtime_reason=state.current_downtime_reason,
        current_downtime_start=state.downtime_start,
        is_currently_at_site=state.current_site_id is not None and not state.in_transit,
        previous_site_id=state.previous_site_id,
        origin_site_id=state.origin_site_id,
        destination_site_id=state.destination_site_id,
        transport_event_id=state.transport_event_id,
        transport_start=state.transport_start,
        attached_extensions=attached,
    )


def _materialize(as_of=None):
    """Return (allocations, events_by_id, site titles) from three queries."""
    ref = parse_as_of(as_of)

    units = event_store.fetch_active_units()
    extensions = event_store.fetch_active_extensions()
    events, titles = event_store.fetch_participating_events()

    by_subject = defaultdict(list)
    by_extension = defaultdict(list)
    events_by_id = {}
    for event in events:
        by_subject[event.subject_id].append(event)
        if event.extension_id:
            by_extension[event.extension_id].append(event)
        if event.id is not None:
            events_by_id[event.id] = event

    extensions_by_id = {x.id: x for x in extensions}
    holders = {
        x.id: calculate_extension_state(x.id, by_extension.get(x.id, []), ref).current_unit_id
        for x in extensions
    }

    def _attached_display(state: DerivedState) -> list:
        out = []
        for link in state.attached_extensions:
            if holders.get(link.extension_id) != state.unit_id:
                continue
            extension = extensions_by_id.get(link.extension_id)
            ext_type = extension.machine_type if extension else None
            out.append({
                **link.to_dict(),
                "extension_unit_number": extension.unit_number if extension else None,
                "extension_type": ext_type.name if ext_type else None,
                "extension_type_icon": ext_type.icon if ext_type else None,
            })
        return out

    allocations: list[ActiveAllocation] = []
    for unit in units:
        state = calculate_state_from_events(unit.id, by_subject.get(unit.id, []), ref)
        if _is_live(state):
            allocations.append(
                _project(unit, state, titles, is_extension=False, attached=_attached_display(state))
            )

    for extension in extensions:
        state = calculate_state_from_events(extension.id, by_subject.get(extension.id, []), ref)
        if _is_live(state):
            allocations.append(_project(extension, state, titles, is_extension=True, attached=[]))

    return allocations, events_by_id, titles


def list_active_allocations(as_of=None, *, include_downtimes: bool = True) -> list[ActiveAllocation]:
    allocations, _, _ = _materialize(as_of)
    if not include_downtimes:
        allocations = [a for a in allocations if not a.is_in_downtime]
    return allocations


def list_active_downtimes(unit_id: Optional[str] = None, as_of=None) -> list[ActiveDowntime]:
    allocations, events_by_id, _ = _materialize(as_of)
    out = []
    for a in allocations:
        if not a.is_in_downtime or a.current_downtime_event_id is None:
            continue
        if unit_id and a.machine_id != unit_id:
            continue
        source = events_by_id.get(a.current_downtime_event_id)
        out.append(
            ActiveDowntime(
                downtime_event_id=a.current_downtime_event_id,
                machine_id=a.machine_id,
                machine_unit_number=a.machine_unit_number,
                site_id=a.site_id,
                site_title=a.site_title or None,
                downtime_reason=a.current_downtime_reason,
                downtime_description=getattr(source, "downtime_description", None),
                downtime_start=a.current_downtime_start,
            )
        )
    return out


def list_active_transports(as_of=None) -> list[ActiveTransport]:
    allocations, _, titles = _materialize(as_of)
    return [
        ActiveTransport(
            transport_start_event_id=a.transport_event_id,
            machine_id=a.machine_id,
            machine_unit_number=a.machine_unit_number,
            origin_site_id=a.origin_site_id,
            origin_site_title=titles.get(a.origin_site_id),
            destination_site_id=a.destination_site_id,
            destination_site_title=titles.get(a.destination_site_id),
            transport_start=a.transport_start,
        )
        for a in allocations
        if a.origin_site_id is not None or a.destination_site_id is not None
    ]


def get_site_allocation_summary(site_id: str, as_of=None) -> dict:
    """
    Counts and projections of everything currently at one site.

    Raises:
        NotFoundError: unknown site
    """
    site = event_store.get_site(site_id)
    allocations = [
        a for a in list_active_allocations(as_of)
        if a.site_id == site_id and a.is_currently_at_site
    ]
    working = [
        a for a in allocations
        if not a.is_in_downtime and a.status in (STATUS_ALLOCATED, STATUS_EXCEEDED)
    ]
    return {
        "site_id": site.id,
        "site_title": site.title,
        "total_machines": len(allocations),
        "machines_in_downtime": sum(1 for a in allocations if a.is_in_downtime),
        "machines_working": len(working),
        "allocations": [a.to_dict() for a in allocations],
    }
