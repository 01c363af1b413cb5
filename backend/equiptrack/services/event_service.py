# Overview: Allocation event lifecycle (create pending, approve, reject).

"""
Event lifecycle.

LIFECYCLE:
1. PENDING: created by a field user; does not affect derived state
2. APPROVED: re-validated against the approved log, then participates
3. REJECTED: never participates

Events are never edited or deleted after approval. A mistake is fixed by a
new event whose corrects_event_id points at the original.

CONCURRENCY:
Approving an event that names an extension locks the extension row and bumps
its version_id in the same transaction, so two approvals racing for the same
accessory cannot both commit. The loser gets StaleDataError, is retried by
run_with_retry, and then fails validation against the winner's state.
"""

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.orm.attributes import flag_modified

from equiptrack.extensions import db
from equiptrack.models import AllocationEvent, Extension
from equiptrack.time_utils import utcnow
from equiptrack.validation import (
    ALLOCATION_EVENT_POLICY,
    ConflictError,
    NotFoundError,
    ValidationError,
    enforce_rules_allocation_event,
    validate_payload,
)
from . import event_store
from .concurrency import commit_with_retry, lock_for_update, run_with_retry
from .event_records import (
    EVENT_TYPES,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    build_event,
    decode_event,
)
from .state_service import calculate_extension_state
from .sync_service import sync_derived_state
from .validation_service import ValidationResult, timeline_end, validate


def _check_references(patch: dict) -> None:
    if patch.get("unit_id"):
        event_store.get_machine(patch["unit_id"])
    if patch.get("extension_id"):
        event_store.get_extension(patch["extension_id"])
    for key in ("site_id", "destination_site_id"):
        if patch.get(key):
            event_store.get_site(patch[key])
    if patch.get("corrects_event_id"):
        event_store.get_event(patch["corrects_event_id"])


def _raise_if_invalid(result: ValidationResult) -> None:
    if not result.valid:
        raise ValidationError(result.reason, code=result.code)


def validate_candidate(payload: dict) -> ValidationResult:
    """
    Dry-run validation for a client-side form. Nothing is written.

    Raises ValidationError only for malformed payloads; business-rule
    rejections come back as an invalid ValidationResult.
    """
    patch = validate_payload(
        model=AllocationEvent,
        payload=payload,
        policy=ALLOCATION_EVENT_POLICY,
        partial=True,
    )
    enforce_rules_allocation_event(patch, known_event_types=EVENT_TYPES)
    _check_references(patch)

    values = dict(patch)
    values.setdefault("event_date", utcnow())
    values["status"] = STATUS_PENDING
    candidate = build_event(values.pop("event_type"), **values)
    return validate(candidate)


def create_event(payload: dict) -> AllocationEvent:
    """
    Record a new PENDING event after shape and state validation.

    Raises:
        ValidationError: malformed payload or business-rule violation
        NotFoundError: referenced unit/extension/site/event missing
    """
    patch = validate_payload(
        model=AllocationEvent,
        payload=payload,
        policy=ALLOCATION_EVENT_POLICY,
        partial=False,
    )
    enforce_rules_allocation_event(patch, known_event_types=EVENT_TYPES)
    _check_references(patch)

    values = dict(patch)
    candidate = build_event(values.pop("event_type"), status=STATUS_PENDING, **values)
    _raise_if_invalid(validate(candidate))

    event = AllocationEvent(**patch)
    event.status = STATUS_PENDING
    db.session.add(event)
    commit_with_retry()

    current_app.logger.info("Allocation event %s created (%s)", event.id, event.event_type)
    return event


def _guard_extension(event: AllocationEvent, expected_holder_unit_id: Optional[str]) -> None:
    extension = lock_for_update(
        db.session.query(Extension).filter_by(id=event.extension_id)
    ).first()
    if extension is None:
        raise NotFoundError(f"Extension {event.extension_id} not found")

    if expected_holder_unit_id is not None:
        link_events = event_store.fetch_extension_link_events(extension.id)
        # Holder on the event's own date and at the end of the timeline.
        for reference in (event.event_date, timeline_end()):
            link_state = calculate_extension_state(extension.id, link_events, reference)
            if link_state.current_unit_id != expected_holder_unit_id:
                raise ConflictError(
                    f"Extension {extension.id} is held by {link_state.current_unit_id}, "
                    f"expected {expected_holder_unit_id}"
                )

    # Forces an UPDATE so the version check runs against concurrent approvals.
    flag_modified(extension, "status")


def approve_event(
    event_id: int,
    *,
    approved_by: str,
    expected_holder_unit_id: Optional[str] = None,
) -> AllocationEvent:
    """
    Approve a PENDING event and refresh the derived cache.

    The approval is committed before the cache refresh; a failed refresh is
    logged and does not undo the approval.

    Raises:
        NotFoundError: unknown event
        ValidationError: event not pending, or no longer valid
        ConflictError: expected_holder_unit_id does not match
    """
    if not approved_by:
        raise ValidationError("approved_by is required")

    def _op():
        event = lock_for_update(
            db.session.query(AllocationEvent).filter_by(id=event_id)
        ).first()
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        if event.status != STATUS_PENDING:
            raise ValidationError(f"Event {event_id} is already {event.status}")

        if event.extension_id:
            _guard_extension(event, expected_holder_unit_id)

        _raise_if_invalid(validate(decode_event(event)))

        event.status = STATUS_APPROVED
        event.approved_by = approved_by
        event.approved_at = utcnow()
        db.session.commit()
        return event

    try:
        event = run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise
    current_app.logger.info("Allocation event %s approved by %s", event.id, approved_by)

    if current_app.config.get("SYNC_ON_APPROVAL", True):
        result = sync_derived_state(unit_id=event.unit_id, extension_id=event.extension_id)
        if not result.success:
            current_app.logger.warning(
                "Allocation event %s approved but cache sync failed: %s", event.id, result.errors
            )

    return event


def reject_event(event_id: int, *, rejected_by: str, reason: Optional[str] = None) -> AllocationEvent:
    if not rejected_by:
        raise ValidationError("rejected_by is required")

    def _op():
        event = lock_for_update(
            db.session.query(AllocationEvent).filter_by(id=event_id)
        ).first()
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        if event.status != STATUS_PENDING:
            raise ValidationError(f"Event {event_id} is already {event.status}")

        event.status = STATUS_REJECTED
        event.approved_by = rejected_by
        event.approved_at = utcnow()
        event.rejection_reason = reason
        db.session.commit()
        return event

    try:
        event = run_with_retry(_op)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise
    current_app.logger.info("Allocation event %s rejected by %s", event.id, rejected_by)
    return event


def list_events(*, unit_id: Optional[str] = None, status: Optional[str] = None) -> list[AllocationEvent]:
    if status is not None and status not in (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED):
        raise ValidationError(f"Unknown status: {status}")
    return event_store.list_events(unit_id=unit_id, status=status)
