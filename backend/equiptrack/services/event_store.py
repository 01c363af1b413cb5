# Overview: Read access to the allocation event log and the fleet it describes.

"""
Event store.

Every query the derivation engine needs goes through this module, so the
reducers, materializer and segmenter stay pure. Rows are decoded to event
records here and nowhere else.

ORDERING: events always come back ordered by (event_date, created_at, id).
FAILURES: driver errors surface as StoreError; unknown ids as NotFoundError.
"""

from __future__ import annotations

from collections import defaultdict
from functools import wraps
from typing import Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import AllocationEvent, Extension, Machine, Site
from ..validation import NotFoundError, StoreError
from .event_records import (
    EXTENSION_EVENT_TYPES,
    INERT_EVENT_TYPES,
    STATUS_APPROVED,
    DomainEvent,
    decode_event,
)


def _store_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StoreError(f"event store unavailable: {exc.__class__.__name__}") from exc
    return wrapper


def _ordered(query):
    return query.order_by(
        AllocationEvent.event_date.asc(),
        AllocationEvent.created_at.asc(),
        AllocationEvent.id.asc(),
    )


def _participating():
    return or_(
        AllocationEvent.status == STATUS_APPROVED,
        AllocationEvent.event_type.in_(sorted(INERT_EVENT_TYPES)),
    )


def _subject_filter(subject_id: str):
    """A subject's own timeline: its unit rows, or its independent extension rows."""
    return or_(
        AllocationEvent.unit_id == subject_id,
        and_(AllocationEvent.extension_id == subject_id, AllocationEvent.unit_id.is_(None)),
    )


def _decode_all(rows: Iterable[AllocationEvent]) -> list[DomainEvent]:
    return [decode_event(row) for row in rows]


# ---------------------------------------------------------------------------
# Fleet lookups
# ---------------------------------------------------------------------------

@_store_errors
def get_machine(unit_id: str) -> Machine:
    machine = db.session.query(Machine).filter_by(id=unit_id).first()
    if machine is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    return machine


@_store_errors
def get_extension(extension_id: str) -> Extension:
    extension = db.session.query(Extension).filter_by(id=extension_id).first()
    if extension is None:
        raise NotFoundError(f"Extension {extension_id} not found")
    return extension


@_store_errors
def get_site(site_id: str) -> Site:
    site = db.session.query(Site).filter_by(id=site_id).first()
    if site is None:
        raise NotFoundError(f"Site {site_id} not found")
    return site


@_store_errors
def ensure_subject_exists(subject_id: str) -> str:
    """Return "unit" or "extension" for a subject id, or raise NotFoundError."""
    if db.session.query(Machine.id).filter_by(id=subject_id).first() is not None:
        return "unit"
    if db.session.query(Extension.id).filter_by(id=subject_id).first() is not None:
        return "extension"
    raise NotFoundError(f"Unit {subject_id} not found")


@_store_errors
def fetch_active_units() -> list[Machine]:
    return (
        db.session.query(Machine)
        .options(joinedload(Machine.machine_type), joinedload(Machine.supplier))
        .filter(Machine.is_active.is_(True))
        .order_by(Machine.unit_number.asc())
        .all()
    )


@_store_errors
def fetch_active_extensions() -> list[Extension]:
    return (
        db.session.query(Extension)
        .options(joinedload(Extension.machine_type), joinedload(Extension.supplier))
        .filter(Extension.is_active.is_(True))
        .order_by(Extension.unit_number.asc())
        .all()
    )


@_store_errors
def fetch_units_by_ids(unit_ids: Iterable[str]) -> dict[str, Machine]:
    ids = sorted(set(unit_ids))
    if not ids:
        return {}
    rows = (
        db.session.query(Machine)
        .options(joinedload(Machine.machine_type), joinedload(Machine.supplier))
        .filter(Machine.id.in_(ids))
        .all()
    )
    return {m.id: m for m in rows}


@_store_errors
def fetch_extensions_by_ids(extension_ids: Iterable[str]) -> dict[str, Extension]:
    ids = sorted(set(extension_ids))
    if not ids:
        return {}
    rows = (
        db.session.query(Extension)
        .options(joinedload(Extension.machine_type), joinedload(Extension.supplier))
        .filter(Extension.id.in_(ids))
        .all()
    )
    return {e.id: e for e in rows}


@_store_errors
def fetch_site_titles(site_ids: Iterable[str]) -> dict[str, str]:
    ids = sorted({s for s in site_ids if s})
    if not ids:
        return {}
    rows = db.session.query(Site.id, Site.title).filter(Site.id.in_(ids)).all()
    return {site_id: title for site_id, title in rows}


# ---------------------------------------------------------------------------
# Event timelines
# ---------------------------------------------------------------------------

@_store_errors
def fetch_subject_events(subject_id: str) -> list[DomainEvent]:
    """Participating events of one unit (or independently tracked extension)."""
    rows = _ordered(
        db.session.query(AllocationEvent)
        .filter(_subject_filter(subject_id))
        .filter(_participating())
    ).all()
    return _decode_all(rows)


@_store_errors
def fetch_extension_link_events(extension_id: str) -> list[DomainEvent]:
    """Approved attach/detach events naming an extension, across all parents."""
    rows = _ordered(
        db.session.query(AllocationEvent)
        .filter(AllocationEvent.extension_id == extension_id)
        .filter(AllocationEvent.event_type.in_(sorted(EXTENSION_EVENT_TYPES)))
        .filter(_participating())
    ).all()
    return _decode_all(rows)


@_store_errors
def fetch_participating_events() -> tuple[list[DomainEvent], dict[str, str]]:
    """
    Every participating event in one round trip.

    Returns the decoded records plus a site_id -> title index built from the
    eagerly loaded site relationships.
    """
    rows = _ordered(
        db.session.query(AllocationEvent)
        .options(
            joinedload(AllocationEvent.site),
            joinedload(AllocationEvent.destination_site),
        )
        .filter(_participating())
    ).all()

    titles: dict[str, str] = {}
    for row in rows:
        if row.site is not None:
            titles[row.site.id] = row.site.title
        if row.destination_site is not None:
            titles[row.destination_site.id] = row.destination_site.title
    return _decode_all(rows), titles


@_store_errors
def fetch_subject_ids_for_site(site_id: str) -> list[str]:
    """Every subject whose participating events ever referenced the site."""
    rows = (
        db.session.query(AllocationEvent.unit_id, AllocationEvent.extension_id)
        .filter(
            or_(
                AllocationEvent.site_id == site_id,
                AllocationEvent.destination_site_id == site_id,
            )
        )
        .filter(_participating())
        .distinct()
        .all()
    )
    found = {unit_id or extension_id for unit_id, extension_id in rows}
    found.discard(None)
    return sorted(found)


@_store_errors
def fetch_histories(subject_ids: Iterable[str]) -> dict[str, list[DomainEvent]]:
    """Full cross-site history of several subjects, grouped by subject id."""
    ids = sorted(set(subject_ids))
    if not ids:
        return {}
    rows = _ordered(
        db.session.query(AllocationEvent)
        .filter(
            or_(
                AllocationEvent.unit_id.in_(ids),
                and_(AllocationEvent.extension_id.in_(ids), AllocationEvent.unit_id.is_(None)),
            )
        )
        .filter(_participating())
    ).all()

    grouped: dict[str, list[DomainEvent]] = defaultdict(list)
    for event in _decode_all(rows):
        grouped[event.subject_id].append(event)
    return dict(grouped)


# ---------------------------------------------------------------------------
# Raw rows (lifecycle / HTTP listing)
# ---------------------------------------------------------------------------

@_store_errors
def get_event(event_id: int) -> AllocationEvent:
    event = db.session.query(AllocationEvent).filter_by(id=event_id).first()
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    return event


@_store_errors
def list_events(
    *,
    unit_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 200,
) -> list[AllocationEvent]:
    query = db.session.query(AllocationEvent)
    if unit_id:
        query = query.filter(_subject_filter(unit_id))
    if status:
        query = query.filter(AllocationEvent.status == status)
    return _ordered(query).limit(limit).all()
