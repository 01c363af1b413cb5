# Overview: Ledger-derived machine and extension state; the canonical reducer.

"""
equiptrack State Derivation Invariants (authoritative)

Source of truth:
- State is derived by folding approved allocation events; never read from
  Machine.status / Extension.current_unit_id (those are a sync cache).
- Pending/rejected events never affect state. Refueling is inert and is
  accepted regardless of status.

Ordering and reference time:
- Input is ordered by (event_date, created_at, id).
- as_of is explicit. Events whose calendar day is after as_of's day stop
  the fold; events on the same day are folded.

Day-boundary semantics:
- start_allocation, downtime_start, transport_start, transport_arrival
  take effect on their own day.
- end_allocation and downtime_end take effect on the FOLLOWING day: on the
  event's own day the unit still reads allocated / in maintenance and the
  state is flagged as closing.

Physical vs commercial:
- Ending an allocation keeps current_site_id (the unit is still parked
  there until a transport is recorded).
- Arrivals move current_site_id but never touch allocation_start/end_date.
- exceeded is reported, never stored: allocated and as_of's day is after
  the planned end day.

Robustness:
- Implausible events (ending an allocation at another site, ending a
  downtime that is not open, ...) are ignored; the reducer never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from equiptrack.time_utils import day_of, parse_as_of, to_utc_z
from .event_records import (
    AllocationEnd,
    AllocationStart,
    DowntimeEnd,
    DowntimeStart,
    EventRecord,
    ExtensionAttach,
    ExtensionDetach,
    TransportArrival,
    TransportStart,
)


STATUS_AVAILABLE = "available"
STATUS_ALLOCATED = "allocated"
STATUS_MAINTENANCE = "maintenance"
STATUS_IN_TRANSIT = "in_transit"
STATUS_EXCEEDED = "exceeded"

EXTENSION_STATUS_AVAILABLE = "available"
EXTENSION_STATUS_ATTACHED = "attached"


@dataclass
class AttachedExtension:
    extension_id: str
    attach_event_id: Optional[int]
    attached_at: datetime

    def to_dict(self) -> dict:
        return {
            "extension_id": self.extension_id,
            "attach_event_id": self.attach_event_id,
            "attached_at": to_utc_z(self.attached_at),
        }


@dataclass
class DerivedState:
    unit_id: str
    current_site_id: Optional[str] = None
    status: str = STATUS_AVAILABLE

    current_allocation_event_id: Optional[int] = None
    allocation_start: Optional[datetime] = None
    end_date: Optional[datetime] = None
    construction_type: Optional[str] = None
    lot_building_number: Optional[str] = None
    allocation_closing: bool = False

    is_in_downtime: bool = False
    current_downtime_event_id: Optional[int] = None
    downtime_start: Optional[datetime] = None
    current_downtime_reason: Optional[str] = None
    downtime_closing: bool = False

    in_transit: bool = False
    transport_event_id: Optional[int] = None
    transport_start: Optional[datetime] = None
    origin_site_id: Optional[str] = None
    destination_site_id: Optional[str] = None
    previous_site_id: Optional[str] = None

    attached_extensions: list[AttachedExtension] = field(default_factory=list)
    last_event_id: Optional[int] = None

    @property
    def has_open_allocation(self) -> bool:
        return self.current_allocation_event_id is not None

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "current_site_id": self.current_site_id,
            "status": self.status,
            "current_allocation_event_id": self.current_allocation_event_id,
            "allocation_start": to_utc_z(self.allocation_start),
            "end_date": to_utc_z(self.end_date),
            "construction_type": self.construction_type,
            "lot_building_number": self.lot_building_number,
            "allocation_closing": self.allocation_closing,
            "is_in_downtime": self.is_in_downtime,
            "current_downtime_event_id": self.current_downtime_event_id,
            "downtime_start": to_utc_z(self.downtime_start),
            "current_downtime_reason": self.current_downtime_reason,
            "downtime_closing": self.downtime_closing,
            "in_transit": self.in_transit,
            "transport_event_id": self.transport_event_id,
            "transport_start": to_utc_z(self.transport_start),
            "origin_site_id": self.origin_site_id,
            "destination_site_id": self.destination_site_id,
            "previous_site_id": self.previous_site_id,
            "attached_extensions": [e.to_dict() for e in self.attached_extensions],
        }


@dataclass
class ExtensionState:
    extension_id: str
    current_unit_id: Optional[str] = None
    attach_event_id: Optional[int] = None
    attached_at: Optional[datetime] = None
    status: str = EXTENSION_STATUS_AVAILABLE

    def to_dict(self) -> dict:
        return {
            "extension_id": self.extension_id,
            "current_unit_id": self.current_unit_id,
            "attach_event_id": self.attach_event_id,
            "attached_at": to_utc_z(self.attached_at),
            "status": self.status,
        }


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _clear_downtime(state: DerivedState) -> None:
    state.is_in_downtime = False
    state.current_downtime_event_id = None
    state.downtime_start = None
    state.current_downtime_reason = None
    state.downtime_closing = False


def _open_allocation(state: DerivedState, event) -> None:
    if state.current_site_id and state.current_site_id != event.site_id:
        state.previous_site_id = state.current_site_id
    state.current_site_id = event.site_id
    state.current_allocation_event_id = event.id
    state.allocation_start = event.event_date
    state.end_date = event.end_date
    state.construction_type = event.construction_type
    state.lot_building_number = event.lot_building_number
    state.allocation_closing = False
    _clear_transit(state)
    _clear_downtime(state)


def _clear_transit(state: DerivedState) -> None:
    state.in_transit = False
    state.transport_event_id = None
    state.transport_start = None
    state.origin_site_id = None
    state.destination_site_id = None


def _close_allocation(state: DerivedState, event, ref_day: date) -> None:
    if not state.has_open_allocation:
        return
    if event.site_id and event.site_id != state.current_site_id:
        return
    if event.day >= ref_day:
        # Last day still occupied; released from tomorrow on.
        state.allocation_closing = True
        return
    state.current_allocation_event_id = None
    state.allocation_start = None
    state.end_date = None
    state.allocation_closing = False
    _clear_downtime(state)


def _apply(state: DerivedState, event: EventRecord, ref_day: date) -> None:
    if isinstance(event, AllocationStart):
        if event.site_id:
            _open_allocation(state, event)

    elif isinstance(event, AllocationEnd):
        _close_allocation(state, event, ref_day)

    elif isinstance(event, DowntimeStart):
        if state.has_open_allocation and (not state.is_in_downtime or state.downtime_closing):
            state.is_in_downtime = True
            state.current_downtime_event_id = event.id
            state.downtime_start = event.event_date
            state.current_downtime_reason = event.downtime_reason
            state.downtime_closing = False

    elif isinstance(event, DowntimeEnd):
        # Closes whichever downtime is currently tracked.
        if state.is_in_downtime:
            if event.day >= ref_day:
                state.downtime_closing = True
            else:
                _clear_downtime(state)

    elif isinstance(event, ExtensionAttach):
        if event.is_self_allocation:
            if event.site_id:
                _open_allocation(state, event)
        elif not any(e.extension_id == event.extension_id for e in state.attached_extensions):
            state.attached_extensions.append(
                AttachedExtension(
                    extension_id=event.extension_id,
                    attach_event_id=event.id,
                    attached_at=event.event_date,
                )
            )

    elif isinstance(event, ExtensionDetach):
        if event.is_self_allocation:
            _close_allocation(state, event, ref_day)
        else:
            state.attached_extensions = [
                e for e in state.attached_extensions if e.extension_id != event.extension_id
            ]

    elif isinstance(event, TransportStart):
        state.in_transit = True
        state.transport_event_id = event.id
        state.transport_start = event.event_date
        state.origin_site_id = state.current_site_id or event.site_id
        state.destination_site_id = event.destination_site_id
        if state.current_site_id is None:
            state.current_site_id = event.site_id

    elif isinstance(event, TransportArrival):
        if event.site_id:
            if state.current_site_id and state.current_site_id != event.site_id:
                state.previous_site_id = state.current_site_id
            state.current_site_id = event.site_id
            state.construction_type = event.construction_type
            state.lot_building_number = event.lot_building_number
            _clear_transit(state)

    # request/confirm/refueling/material events: no transition


def _settle_status(state: DerivedState) -> None:
    if state.in_transit:
        state.status = STATUS_IN_TRANSIT
    elif state.is_in_downtime:
        state.status = STATUS_MAINTENANCE
    elif state.has_open_allocation:
        state.status = STATUS_ALLOCATED
    else:
        state.status = STATUS_AVAILABLE


def calculate_state_from_events(
    unit_id: str,
    events: Iterable[EventRecord],
    as_of: datetime,
) -> DerivedState:
    """
    Fold an ordered event list into the state of one unit as of `as_of`.

    Pure: no database access, no clock reads, never raises on odd histories.
    """
    state = DerivedState(unit_id=unit_id)
    ref_day = day_of(as_of)

    for event in events:
        if event.day > ref_day:
            break
        if not event.participates:
            continue
        _apply(state, event, ref_day)
        _settle_status(state)
        state.last_event_id = event.id

    if (
        state.status == STATUS_ALLOCATED
        and state.end_date is not None
        and ref_day > day_of(state.end_date)
    ):
        state.status = STATUS_EXCEEDED

    return state


def calculate_extension_state(
    extension_id: str,
    events: Iterable[EventRecord],
    as_of: datetime,
) -> ExtensionState:
    """Fold attach/detach events into which unit currently holds an extension."""
    state = ExtensionState(extension_id=extension_id)
    ref_day = day_of(as_of)

    for event in events:
        if event.day > ref_day:
            break
        if not event.participates or event.extension_id != extension_id:
            continue
        if isinstance(event, ExtensionAttach) and not event.is_self_allocation:
            state.current_unit_id = event.unit_id
            state.attach_event_id = event.id
            state.attached_at = event.event_date
            state.status = EXTENSION_STATUS_ATTACHED
        elif isinstance(event, ExtensionDetach) and not event.is_self_allocation:
            if state.current_unit_id in (None, event.unit_id):
                state.current_unit_id = None
                state.attach_event_id = None
                state.attached_at = None
                state.status = EXTENSION_STATUS_AVAILABLE

    return state


# ---------------------------------------------------------------------------
# Store-backed entry points
# ---------------------------------------------------------------------------

def compute_state(unit_id: str, as_of=None) -> DerivedState:
    """
    Derived state of a machine (or a self-allocated extension) as of `as_of`.

    Raises:
        NotFoundError: unknown unit/extension id
        StoreError: event store failure
    """
    from . import event_store

    as_of_dt = parse_as_of(as_of)
    event_store.ensure_subject_exists(unit_id)
    events = event_store.fetch_subject_events(unit_id)
    return calculate_state_from_events(unit_id, events, as_of_dt)


def compute_extension_state(extension_id: str, as_of=None) -> ExtensionState:
    from . import event_store

    as_of_dt = parse_as_of(as_of)
    event_store.get_extension(extension_id)
    events = event_store.fetch_extension_link_events(extension_id)
    return calculate_extension_state(extension_id, events, as_of_dt)
