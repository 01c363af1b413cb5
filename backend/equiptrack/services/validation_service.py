# Overview: State-dependent validation of candidate allocation events.

"""
Validation gate.

A candidate event is checked against the state derived from the approved
log, never against the Machine/Extension cache columns.

REFERENCE TIME:
- transport events: far-future horizon (TRANSPORT_VALIDATION_HORIZON), so an
  arrival can be linked to a transport that departs later than today
- everything else: the candidate's own event_date (or an explicit as_of)
- start_allocation, extension_attach: additionally the end of the timeline;
  the candidate must pass both

Rejections are values (ValidationResult), not exceptions. Callers that need
an exception (event_service) raise ValidationError with the result's code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from equiptrack.time_utils import normalize_datetime
from .event_records import (
    CONFIRM_ALLOCATION,
    DOWNTIME_END,
    DOWNTIME_START,
    END_ALLOCATION,
    EXTENSION_ATTACH,
    EXTENSION_DETACH,
    REQUEST_ALLOCATION,
    SITE_DEPENDENT_EVENT_TYPES,
    START_ALLOCATION,
    TRANSPORT_ARRIVAL,
    TRANSPORT_EVENT_TYPES,
    TRANSPORT_START,
    EventRecord,
)
from .state_service import (
    DerivedState,
    ExtensionState,
    calculate_extension_state,
    calculate_state_from_events,
)


ALREADY_ALLOCATED = "ALREADY_ALLOCATED"
NOT_ALLOCATED = "NOT_ALLOCATED"
ALLOCATED_ELSEWHERE = "ALLOCATED_ELSEWHERE"
ALREADY_IN_DOWNTIME = "ALREADY_IN_DOWNTIME"
NOT_IN_DOWNTIME = "NOT_IN_DOWNTIME"
EXTENSION_HELD_ELSEWHERE = "EXTENSION_HELD_ELSEWHERE"
EXTENSION_NOT_HELD = "EXTENSION_NOT_HELD"
NO_CURRENT_SITE = "NO_CURRENT_SITE"
NOT_IN_TRANSIT = "NOT_IN_TRANSIT"
MISSING_FIELD = "MISSING_FIELD"

DEFAULT_TRANSPORT_HORIZON = "9999-12-31T00:00:00"

# Also checked against the end of the timeline.
OPENING_EVENT_TYPES = frozenset({START_ALLOCATION, EXTENSION_ATTACH})


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> dict:
        return {"valid": self.valid, "reason": self.reason, "code": self.code}


VALID = ValidationResult(valid=True)


def _reject(code: str, reason: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason, code=code)


def _require(candidate: EventRecord, *names: str) -> Optional[ValidationResult]:
    for name in names:
        if not getattr(candidate, name, None):
            return _reject(MISSING_FIELD, f"{name} is required for {candidate.event_type}")
    return None


def _check_open(candidate: EventRecord, state: DerivedState) -> ValidationResult:
    if state.has_open_allocation and not state.allocation_closing:
        return _reject(ALREADY_ALLOCATED, f"Unit {candidate.subject_id} is already allocated")
    return VALID


def _check_close(candidate: EventRecord, state: DerivedState) -> ValidationResult:
    if not state.has_open_allocation or state.allocation_closing:
        return _reject(NOT_ALLOCATED, f"Unit {candidate.subject_id} is not allocated")
    site_id = getattr(candidate, "site_id", None)
    if site_id and site_id != state.current_site_id:
        return _reject(
            ALLOCATED_ELSEWHERE,
            f"Unit {candidate.subject_id} is allocated to site {state.current_site_id}",
        )
    return VALID


def validate_against_state(
    candidate: EventRecord,
    state: DerivedState,
    extension_state: Optional[ExtensionState] = None,
) -> ValidationResult:
    """Pure rule check of one candidate against already-derived state."""
    if not candidate.subject_id:
        return _reject(MISSING_FIELD, "unit_id or extension_id is required")

    event_type = candidate.event_type

    if event_type in (REQUEST_ALLOCATION, CONFIRM_ALLOCATION):
        return _require(candidate, "site_id") or VALID

    if event_type == START_ALLOCATION:
        return _require(candidate, "site_id", "end_date") or _check_open(candidate, state)

    if event_type == END_ALLOCATION:
        return _check_close(candidate, state)

    if event_type == DOWNTIME_START:
        missing = _require(candidate, "downtime_reason")
        if missing:
            return missing
        if not state.has_open_allocation:
            return _reject(NOT_ALLOCATED, "Downtime can only start on an allocated unit")
        if state.is_in_downtime and not state.downtime_closing:
            return _reject(ALREADY_IN_DOWNTIME, f"Unit {candidate.subject_id} is already in downtime")
        return VALID

    if event_type == DOWNTIME_END:
        if not state.is_in_downtime or state.downtime_closing:
            return _reject(NOT_IN_DOWNTIME, f"Unit {candidate.subject_id} is not in downtime")
        return VALID

    if event_type == EXTENSION_ATTACH:
        missing = _require(candidate, "extension_id")
        if missing:
            return missing
        if candidate.is_self_allocation:
            return _require(candidate, "site_id", "end_date") or _check_open(candidate, state)
        holder = extension_state.current_unit_id if extension_state else None
        if holder and holder != candidate.unit_id:
            return _reject(
                EXTENSION_HELD_ELSEWHERE,
                f"Extension {candidate.extension_id} is attached to unit {holder}",
            )
        return VALID

    if event_type == EXTENSION_DETACH:
        missing = _require(candidate, "extension_id")
        if missing:
            return missing
        if candidate.is_self_allocation:
            return _check_close(candidate, state)
        holder = extension_state.current_unit_id if extension_state else None
        if holder != candidate.unit_id:
            return _reject(
                EXTENSION_NOT_HELD,
                f"Extension {candidate.extension_id} is not attached to unit {candidate.unit_id}",
            )
        return VALID

    if event_type == TRANSPORT_START:
        if not (state.current_site_id or candidate.site_id):
            return _reject(NO_CURRENT_SITE, f"Unit {candidate.subject_id} has no site to depart from")
        return VALID

    if event_type == TRANSPORT_ARRIVAL:
        missing = _require(candidate, "site_id")
        if missing:
            return missing
        if not state.in_transit:
            return _reject(NOT_IN_TRANSIT, f"Unit {candidate.subject_id} is not in transit")
        return VALID

    if event_type in SITE_DEPENDENT_EVENT_TYPES:
        if not state.current_site_id:
            return _reject(NO_CURRENT_SITE, f"Unit {candidate.subject_id} is not at any site")
        return VALID

    return VALID


def timeline_end():
    """Reference time past every logged event (the whole approved timeline)."""
    horizon = current_app.config.get("TRANSPORT_VALIDATION_HORIZON") or DEFAULT_TRANSPORT_HORIZON
    return normalize_datetime(horizon)


def _reference_time(candidate: EventRecord, as_of):
    if candidate.event_type in TRANSPORT_EVENT_TYPES:
        return timeline_end()
    if as_of is not None:
        return normalize_datetime(as_of)
    return candidate.event_date


def validate(candidate: EventRecord, as_of=None) -> ValidationResult:
    """
    Validate a candidate event against the approved log.

    Starts and attaches must also fit the end of the timeline, so a back-dated
    one cannot overlap an allocation or attach approved with a later date.

    Raises:
        NotFoundError: unknown unit/extension
        StoreError: event store failure
    """
    from . import event_store

    if not candidate.subject_id:
        return _reject(MISSING_FIELD, "unit_id or extension_id is required")

    subject_id = candidate.subject_id
    event_store.ensure_subject_exists(subject_id)
    history = event_store.fetch_subject_events(subject_id)

    link_history = None
    if candidate.unit_id and candidate.extension_id:
        event_store.get_extension(candidate.extension_id)
        link_history = event_store.fetch_extension_link_events(candidate.extension_id)

    references = [_reference_time(candidate, as_of)]
    if candidate.event_type in OPENING_EVENT_TYPES:
        references.append(timeline_end())

    for reference in references:
        state = calculate_state_from_events(subject_id, history, reference)
        extension_state = None
        if link_history is not None:
            extension_state = calculate_extension_state(candidate.extension_id, link_history, reference)
        result = validate_against_state(candidate, state, extension_state)
        if not result.valid:
            return result

    return VALID
