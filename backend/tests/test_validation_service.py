# Overview: Pytest coverage for the validation gate.

"""
Validation Gate Tests

Rule checks run against reducer output built in memory; the store-backed
entry point is covered for reference-time selection (transport horizon).
"""

import itertools
from datetime import datetime, timedelta

import pytest

from equiptrack.services.event_records import (
    CONFIRM_ALLOCATION,
    DOWNTIME_END,
    DOWNTIME_START,
    END_ALLOCATION,
    EXTENSION_ATTACH,
    EXTENSION_DETACH,
    MATERIAL_ENTRY,
    REFUELING,
    REQUEST_ALLOCATION,
    START_ALLOCATION,
    TRANSPORT_ARRIVAL,
    TRANSPORT_START,
    build_event,
)
from equiptrack.services.state_service import (
    DerivedState,
    ExtensionState,
    calculate_state_from_events,
)
from equiptrack.services import validation_service
from equiptrack.services.validation_service import validate, validate_against_state
from equiptrack.time_utils import utcnow
from equiptrack.validation import NotFoundError


UNIT = "unit-1"
SITE_A = "site-a"
SITE_B = "site-b"

_ids = itertools.count(1000)


def at(day: int, hour: int = 8) -> datetime:
    return datetime(2026, 3, day, hour, 0)


def candidate(event_type, day=10, **fields):
    fields.setdefault("unit_id", UNIT)
    return build_event(event_type, event_date=at(day), status="pending", **fields)


def history(*events):
    out = []
    for event_type, day, fields in events:
        fields = dict(fields)
        fields.setdefault("unit_id", UNIT)
        out.append(build_event(event_type, id=next(_ids), event_date=at(day), created_at=at(day), **fields))
    return out


def allocated_state(day=10) -> DerivedState:
    events = history((START_ALLOCATION, 1, {"site_id": SITE_A, "end_date": at(28)}))
    return calculate_state_from_events(UNIT, events, at(day, 18))


class TestAllocationRules:
    def test_start_requires_site_and_end_date(self):
        result = validate_against_state(candidate(START_ALLOCATION, site_id=SITE_A), DerivedState(unit_id=UNIT))
        assert result.valid is False
        assert result.code == validation_service.MISSING_FIELD

    def test_start_while_allocated_is_rejected(self):
        result = validate_against_state(
            candidate(START_ALLOCATION, site_id=SITE_B, end_date=at(20)),
            allocated_state(),
        )
        assert result.valid is False
        assert result.code == validation_service.ALREADY_ALLOCATED

    def test_start_on_release_day_is_allowed(self):
        events = history(
            (START_ALLOCATION, 1, {"site_id": SITE_A, "end_date": at(28)}),
            (END_ALLOCATION, 10, {"site_id": SITE_A}),
        )
        state = calculate_state_from_events(UNIT, events, at(10, 18))
        result = validate_against_state(
            candidate(START_ALLOCATION, site_id=SITE_B, end_date=at(20)), state
        )
        assert result.valid is True

    def test_end_while_not_allocated(self):
        result = validate_against_state(candidate(END_ALLOCATION, site_id=SITE_A), DerivedState(unit_id=UNIT))
        assert result.code == validation_service.NOT_ALLOCATED

    def test_end_at_other_site(self):
        result = validate_against_state(candidate(END_ALLOCATION, site_id=SITE_B), allocated_state())
        assert result.valid is False
        assert result.code == validation_service.ALLOCATED_ELSEWHERE

    def test_request_and_confirm_need_only_a_site(self):
        for event_type in (REQUEST_ALLOCATION, CONFIRM_ALLOCATION):
            ok = validate_against_state(candidate(event_type, site_id=SITE_A), allocated_state())
            missing = validate_against_state(candidate(event_type), DerivedState(unit_id=UNIT))
            assert ok.valid is True
            assert missing.code == validation_service.MISSING_FIELD


class TestDowntimeRules:
    def test_downtime_on_unallocated_unit(self):
        result = validate_against_state(
            candidate(DOWNTIME_START, downtime_reason="engine"), DerivedState(unit_id=UNIT)
        )
        assert result.code == validation_service.NOT_ALLOCATED

    def test_downtime_twice(self):
        events = history(
            (START_ALLOCATION, 1, {"site_id": SITE_A, "end_date": at(28)}),
            (DOWNTIME_START, 2, {"downtime_reason": "engine"}),
        )
        state = calculate_state_from_events(UNIT, events, at(5))
        result = validate_against_state(candidate(DOWNTIME_START, downtime_reason="tires"), state)
        assert result.code == validation_service.ALREADY_IN_DOWNTIME

    def test_downtime_requires_reason(self):
        result = validate_against_state(candidate(DOWNTIME_START), allocated_state())
        assert result.code == validation_service.MISSING_FIELD

    def test_downtime_end_when_not_in_downtime(self):
        result = validate_against_state(candidate(DOWNTIME_END), allocated_state())
        assert result.code == validation_service.NOT_IN_DOWNTIME


class TestExtensionRules:
    def test_attach_held_by_other_unit(self):
        result = validate_against_state(
            candidate(EXTENSION_ATTACH, extension_id="ext-1"),
            allocated_state(),
            ExtensionState(extension_id="ext-1", current_unit_id="unit-2", status="attached"),
        )
        assert result.valid is False
        assert result.code == validation_service.EXTENSION_HELD_ELSEWHERE
        assert "unit-2" in result.reason

    def test_attach_free_extension(self):
        result = validate_against_state(
            candidate(EXTENSION_ATTACH, extension_id="ext-1"),
            allocated_state(),
            ExtensionState(extension_id="ext-1"),
        )
        assert result.valid is True

    def test_detach_not_held(self):
        result = validate_against_state(
            candidate(EXTENSION_DETACH, extension_id="ext-1"),
            allocated_state(),
            ExtensionState(extension_id="ext-1", current_unit_id="unit-2", status="attached"),
        )
        assert result.code == validation_service.EXTENSION_NOT_HELD

    def test_self_allocation_attach_checks_own_allocation(self):
        ext_candidate = build_event(
            EXTENSION_ATTACH, unit_id=None, extension_id="ext-1", site_id=SITE_A, event_date=at(10),
        )
        result = validate_against_state(ext_candidate, DerivedState(unit_id="ext-1"))
        assert result.code == validation_service.MISSING_FIELD


class TestSiteAndTransportRules:
    def test_refueling_and_material_need_a_current_site(self):
        for event_type in (REFUELING, MATERIAL_ENTRY):
            result = validate_against_state(candidate(event_type, site_id=SITE_A), DerivedState(unit_id=UNIT))
            assert result.code == validation_service.NO_CURRENT_SITE
            assert validate_against_state(candidate(event_type), allocated_state()).valid is True

    def test_transport_start_needs_origin(self):
        result = validate_against_state(
            candidate(TRANSPORT_START, destination_site_id=SITE_B), DerivedState(unit_id=UNIT)
        )
        assert result.code == validation_service.NO_CURRENT_SITE

    def test_arrival_requires_transit(self):
        result = validate_against_state(candidate(TRANSPORT_ARRIVAL, site_id=SITE_B), allocated_state())
        assert result.code == validation_service.NOT_IN_TRANSIT


class TestStoreBackedValidation:
    def test_unknown_unit_raises(self, db_session):
        with pytest.raises(NotFoundError):
            validate(candidate(START_ALLOCATION, unit_id="missing", site_id=SITE_A, end_date=at(20)))

    def test_arrival_links_to_transport_scheduled_ahead(self, db_session, rented_unit, site_a, site_b, make_event):
        departure = utcnow() + timedelta(days=10)
        make_event("start_allocation", utcnow() - timedelta(days=5), unit_id=rented_unit.id,
                   site_id=site_a.id, end_date=utcnow() + timedelta(days=60))
        make_event("transport_start", departure, unit_id=rented_unit.id,
                   site_id=site_a.id, destination_site_id=site_b.id)

        arrival = build_event(
            TRANSPORT_ARRIVAL,
            unit_id=rented_unit.id,
            site_id=site_b.id,
            event_date=utcnow(),
        )
        assert validate(arrival).valid is True

    def test_close_is_checked_on_its_own_date(self, db_session, rented_unit, site_a, make_event):
        make_event("start_allocation", at(10), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(28))

        early_end = candidate(END_ALLOCATION, day=5, unit_id=rented_unit.id, site_id=site_a.id)
        late_end = candidate(END_ALLOCATION, day=12, unit_id=rented_unit.id, site_id=site_a.id)

        assert validate(early_end).code == validation_service.NOT_ALLOCATED
        assert validate(late_end).valid is True

    def test_back_dated_start_cannot_overlap_later_allocation(self, db_session, rented_unit, site_a, make_event):
        make_event("start_allocation", at(10), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(28))

        back_dated = candidate(START_ALLOCATION, day=5, unit_id=rented_unit.id, site_id=site_a.id, end_date=at(8))
        result = validate(back_dated)

        assert result.valid is False
        assert result.code == validation_service.ALREADY_ALLOCATED

    def test_start_after_released_allocation(self, db_session, rented_unit, site_a, site_b, make_event):
        make_event("start_allocation", at(10), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(28))
        make_event("end_allocation", at(11), unit_id=rented_unit.id, site_id=site_a.id)

        later = candidate(START_ALLOCATION, day=12, unit_id=rented_unit.id, site_id=site_b.id, end_date=at(20))
        assert validate(later).valid is True

    def test_back_dated_attach_sees_later_holder(self, db_session, rented_unit, owned_unit, extension, make_event):
        make_event("extension_attach", at(5), unit_id=rented_unit.id, extension_id=extension.id)

        back_dated = candidate(EXTENSION_ATTACH, day=2, unit_id=owned_unit.id, extension_id=extension.id)
        result = validate(back_dated)

        assert result.valid is False
        assert result.code == validation_service.EXTENSION_HELD_ELSEWHERE
        assert rented_unit.id in result.reason
