# Overview: Writes derived state into the Machine/Extension cache columns.

"""
Synchronization writer.

Cache refresh only: the allocation_events log stays authoritative. A run with
no new events rewrites the same values (no timestamps are written), and a
failure here is logged and reported, never raised, so it cannot undo the
approval that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from equiptrack.extensions import db
from equiptrack.time_utils import parse_as_of
from . import event_store
from .state_service import calculate_extension_state, calculate_state_from_events


@dataclass
class SyncResult:
    success: bool
    synced: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"success": self.success, "synced": self.synced, "errors": list(self.errors)}


def _write_machine(machine, state) -> None:
    machine.current_site_id = state.current_site_id
    machine.status = state.status
    machine.is_in_downtime = state.is_in_downtime
    machine.current_allocation_event_id = state.current_allocation_event_id
    machine.planned_end_date = state.end_date


def _write_extension(extension, link_state, own_state) -> None:
    extension.current_unit_id = link_state.current_unit_id
    if link_state.current_unit_id:
        extension.status = link_state.status
        extension.current_site_id = None
    else:
        extension.status = own_state.status
        extension.current_site_id = own_state.current_site_id


def _sync_machine(unit_id: str, as_of) -> None:
    machine = event_store.get_machine(unit_id)
    state = calculate_state_from_events(unit_id, event_store.fetch_subject_events(unit_id), as_of)
    _write_machine(machine, state)


def _sync_extension(extension_id: str, as_of) -> None:
    extension = event_store.get_extension(extension_id)
    link_state = calculate_extension_state(
        extension_id, event_store.fetch_extension_link_events(extension_id), as_of
    )
    own_state = calculate_state_from_events(
        extension_id, event_store.fetch_subject_events(extension_id), as_of
    )
    _write_extension(extension, link_state, own_state)


def sync_derived_state(
    unit_id: Optional[str] = None,
    extension_id: Optional[str] = None,
    as_of=None,
) -> SyncResult:
    """Recompute and store the cached state of a unit and/or an extension."""
    errors = []
    synced = 0
    try:
        ref = parse_as_of(as_of)
    except ValueError as exc:
        return SyncResult(success=False, errors=[{"id": None, "error": str(exc)}])

    for kind, subject_id, op in (
        ("unit", unit_id, _sync_machine),
        ("extension", extension_id, _sync_extension),
    ):
        if not subject_id:
            continue
        try:
            op(subject_id, ref)
            db.session.commit()
            synced += 1
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Derived state sync failed for %s %s", kind, subject_id)
            errors.append({"id": subject_id, "error": str(exc)})

    return SyncResult(success=not errors, synced=synced, errors=errors)


def sync_all_states(as_of=None) -> SyncResult:
    """Refresh the cache of every active unit and extension."""
    try:
        ref = parse_as_of(as_of)
        units = event_store.fetch_active_units()
        extensions = event_store.fetch_active_extensions()
        events, _ = event_store.fetch_participating_events()
    except Exception as exc:
        current_app.logger.exception("Derived state sync aborted: could not load fleet")
        return SyncResult(success=False, errors=[{"id": "all", "error": str(exc)}])

    by_subject: dict[str, list] = {}
    by_extension: dict[str, list] = {}
    for event in events:
        by_subject.setdefault(event.subject_id, []).append(event)
        if event.extension_id:
            by_extension.setdefault(event.extension_id, []).append(event)

    synced = 0
    errors = []
    for machine in units:
        try:
            _write_machine(
                machine, calculate_state_from_events(machine.id, by_subject.get(machine.id, []), ref)
            )
            synced += 1
        except Exception as exc:
            current_app.logger.exception("Derived state sync failed for unit %s", machine.id)
            errors.append({"id": machine.id, "error": str(exc)})

    for extension in extensions:
        try:
            _write_extension(
                extension,
                calculate_extension_state(extension.id, by_extension.get(extension.id, []), ref),
                calculate_state_from_events(extension.id, by_subject.get(extension.id, []), ref),
            )
            synced += 1
        except Exception as exc:
            current_app.logger.exception("Derived state sync failed for extension %s", extension.id)
            errors.append({"id": extension.id, "error": str(exc)})

    try:
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Derived state sync commit failed")
        return SyncResult(success=False, synced=0, errors=errors + [{"id": "all", "error": str(exc)}])

    current_app.logger.info("Derived state synced for %s subjects (%s errors)", synced, len(errors))
    return SyncResult(success=not errors, synced=synced, errors=errors)
