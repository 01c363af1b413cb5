# Overview: Past and present allocation cycles seen from one site.

"""
Historical cycle segmenter.

For a target site, every subject (unit or independently tracked extension)
that ever referenced the site is loaded with its ENTIRE cross-site history.
Each history is cut into cycles:

- a cycle closes on end_allocation or a self-allocation extension_detach
- the trailing cycle stays open (ongoing)
- transport_start never closes a cycle; a cycle can span sites

A cycle participates in the target site if any of its events names the site
(as site_id or destination_site_id). Only cycles opened by start_allocation
or a self-allocation extension_attach are allocations; runs of transport or
auxiliary events between allocations are skipped.

Two snapshots per cycle:
- cycle-scoped: history folded through the cycle's last event, as of its
  close (open cycles: as of the reference time). Drives displayed status;
  a finished cycle reads available, or exceeded when released late.
- full-history: everything up to the reference time. Drives presence.

Presence applies to the live cycle, the one the full-history snapshot still
holds open (including a cycle whose end_allocation falls on the reference
day). While in transit the unit is present only at its destination;
otherwise current_site_id must equal the target and the status must not be
available.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from equiptrack.time_utils import day_of, parse_as_of, to_utc_z
from . import event_store
from .event_records import (
    AllocationEnd,
    AllocationStart,
    EventRecord,
    ExtensionAttach,
    ExtensionDetach,
    _Located,
)
from .state_service import (
    STATUS_AVAILABLE,
    STATUS_EXCEEDED,
    DerivedState,
    calculate_state_from_events,
)


@dataclass
class HistoricalAllocation:
    allocation_event_id: Optional[int]
    machine_id: str
    machine_unit_number: Optional[str]
    machine_type: Optional[str]
    machine_type_icon: Optional[str]
    machine_ownership: Optional[str]
    machine_supplier_name: Optional[str]
    is_extension: bool

    site_id: str
    site_title: str
    construction_type: Optional[str]
    lot_building_number: Optional[str]

    allocation_start: Optional[datetime]
    planned_end_date: Optional[datetime]
    actual_end_date: Optional[datetime]
    status: str

    is_currently_at_site: bool
    is_in_downtime: bool
    previous_site_id: Optional[str]
    origin_site_id: Optional[str]
    destination_site_id: Optional[str]
    attached_extensions: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allocation_event_id": self.allocation_event_id,
            "machine_id": self.machine_id,
            "machine_unit_number": self.machine_unit_number,
            "machine_type": self.machine_type,
            "machine_type_icon": self.machine_type_icon,
            "machine_ownership": self.machine_ownership,
            "machine_supplier_name": self.machine_supplier_name,
            "is_extension": self.is_extension,
            "site_id": self.site_id,
            "site_title": self.site_title,
            "construction_type": self.construction_type,
            "lot_building_number": self.lot_building_number,
            "allocation_start": to_utc_z(self.allocation_start),
            "planned_end_date": to_utc_z(self.planned_end_date),
            "actual_end_date": to_utc_z(self.actual_end_date),
            "status": self.status,
            "is_currently_at_site": self.is_currently_at_site,
            "is_in_downtime": self.is_in_downtime,
            "previous_site_id": self.previous_site_id,
            "origin_site_id": self.origin_site_id,
            "destination_site_id": self.destination_site_id,
            "attached_extensions": list(self.attached_extensions),
        }


@dataclass
class Cycle:
    events: list[EventRecord]
    end_index: int  # index of the cycle's last event in the full history
    closed: bool

    @property
    def opening(self) -> Optional[EventRecord]:
        for event in self.events:
            if _opens(event):
                return event
        return None

    @property
    def opening_event_id(self) -> Optional[int]:
        opening = self.opening
        return opening.id if opening is not None else None

    @property
    def closing(self) -> Optional[EventRecord]:
        return self.events[-1] if self.closed else None


def _opens(event: EventRecord) -> bool:
    return isinstance(event, AllocationStart) or (
        isinstance(event, ExtensionAttach) and event.is_self_allocation
    )


def _closes(event: EventRecord) -> bool:
    return isinstance(event, AllocationEnd) or (
        isinstance(event, ExtensionDetach) and event.is_self_allocation
    )


def segment_cycles(history: list[EventRecord]) -> list[Cycle]:
    """Cut one subject's ordered history into allocation cycles."""
    cycles: list[Cycle] = []
    current: list[EventRecord] = []
    for index, event in enumerate(history):
        current.append(event)
        if _closes(event):
            cycles.append(Cycle(events=current, end_index=index, closed=True))
            current = []
    if current:
        cycles.append(Cycle(events=current, end_index=len(history) - 1, closed=False))
    return cycles


def _is_allocation_cycle(cycle: Cycle) -> bool:
    return cycle.opening is not None


def _participates(cycle: Cycle, site_id: str) -> bool:
    return any(site_id in e.site_ids() for e in cycle.events)


def is_present_at(state: DerivedState, site_id: str) -> bool:
    if state.in_transit:
        return state.destination_site_id == site_id
    return state.current_site_id == site_id and state.status != STATUS_AVAILABLE


def is_live(cycle: Cycle, full_state: DerivedState) -> bool:
    """True while the full-history snapshot still holds this cycle's allocation."""
    return (
        full_state.current_allocation_event_id is not None
        and full_state.current_allocation_event_id == cycle.opening_event_id
    )


def display_status(cycle: Cycle, cycle_state: DerivedState, live: bool) -> str:
    if live or not cycle.closed:
        return cycle_state.status
    planned_end = cycle_state.end_date
    if planned_end is not None and cycle.closing.day > day_of(planned_end):
        return STATUS_EXCEEDED
    return STATUS_AVAILABLE


def _location_at(cycle: Cycle, site_id: str):
    """Last lot/building detail the cycle recorded at the target site."""
    for event in reversed(cycle.events):
        if isinstance(event, _Located) and event.site_id == site_id and event.construction_type:
            return event.construction_type, event.lot_building_number
    return None, None


def build_site_history(
    site_id: str,
    histories: dict[str, list[EventRecord]],
    as_of: datetime,
) -> list[tuple[str, Cycle, DerivedState, DerivedState]]:
    """
    Pure core: (subject_id, cycle, cycle_state, full_state) per participating
    cycle, deduplicated by opening event id.
    """
    ref_day = day_of(as_of)
    seen: set = set()
    out = []

    for subject_id in sorted(histories):
        history = [e for e in histories[subject_id] if e.day <= ref_day]
        if not history:
            continue
        full_state = calculate_state_from_events(subject_id, history, as_of)

        for cycle in segment_cycles(history):
            if not _is_allocation_cycle(cycle) or not _participates(cycle, site_id):
                continue
            if cycle.opening_event_id in seen:
                continue
            seen.add(cycle.opening_event_id)

            cycle_as_of = cycle.closing.event_date if cycle.closed else as_of
            cycle_state = calculate_state_from_events(
                subject_id, history[: cycle.end_index + 1], cycle_as_of
            )
            out.append((subject_id, cycle, cycle_state, full_state))

    return out


def list_historical_allocations(site_id: str, as_of=None) -> list[HistoricalAllocation]:
    """
    Every allocation cycle (past and ongoing) that touched a site.

    Raises:
        NotFoundError: unknown site
        StoreError: event store failure
    """
    ref = parse_as_of(as_of)
    site = event_store.get_site(site_id)

    subject_ids = event_store.fetch_subject_ids_for_site(site_id)
    histories = event_store.fetch_histories(subject_ids)
    units = event_store.fetch_units_by_ids(subject_ids)
    extensions = event_store.fetch_extensions_by_ids(set(subject_ids) - set(units))

    rows = []
    for subject_id, cycle, cycle_state, full_state in build_site_history(site_id, histories, ref):
        subject = units.get(subject_id) or extensions.get(subject_id)
        machine_type = getattr(subject, "machine_type", None)
        supplier = getattr(subject, "supplier", None)
        opening = cycle.opening
        construction_type, lot_building_number = _location_at(cycle, site_id)

        current = is_live(cycle, full_state)
        rows.append(
            HistoricalAllocation(
                allocation_event_id=cycle.opening_event_id,
                machine_id=subject_id,
                machine_unit_number=getattr(subject, "unit_number", None),
                machine_type=machine_type.name if machine_type else None,
                machine_type_icon=machine_type.icon if machine_type else None,
                machine_ownership=getattr(subject, "ownership_type", None),
                machine_supplier_name=supplier.name if supplier else None,
                is_extension=subject_id not in units,
                site_id=site.id,
                site_title=site.title,
                construction_type=construction_type,
                lot_building_number=lot_building_number,
                allocation_start=opening.event_date,
                planned_end_date=getattr(opening, "end_date", None),
                actual_end_date=cycle.closing.event_date if cycle.closed else None,
                status=display_status(cycle, cycle_state, current),
                is_currently_at_site=current and is_present_at(full_state, site_id),
                is_in_downtime=current and full_state.is_in_downtime,
                previous_site_id=cycle_state.previous_site_id,
                origin_site_id=full_state.origin_site_id if current else None,
                destination_site_id=full_state.destination_site_id if current else None,
                attached_extensions=(
                    [a.to_dict() for a in full_state.attached_extensions] if current else []
                ),
            )
        )

    rows.sort(
        key=lambda r: (not r.is_currently_at_site, -(r.allocation_start.timestamp() if r.allocation_start else 0))
    )
    return rows
