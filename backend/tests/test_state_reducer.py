# Overview: Pytest coverage for the pure state reducers (no database).

"""
State Reducer Tests

Covers the day-boundary rules (ends take effect tomorrow, starts today),
transit vs commercial allocation, exceeded reporting, extension timelines,
and determinism of the fold.
"""

import itertools
from datetime import datetime

from equiptrack.services.event_records import (
    DOWNTIME_END,
    DOWNTIME_START,
    END_ALLOCATION,
    EXTENSION_ATTACH,
    EXTENSION_DETACH,
    REFUELING,
    START_ALLOCATION,
    STATUS_PENDING,
    STATUS_REJECTED,
    TRANSPORT_ARRIVAL,
    TRANSPORT_START,
    build_event,
)
from equiptrack.services.state_service import (
    STATUS_ALLOCATED,
    STATUS_AVAILABLE,
    STATUS_EXCEEDED,
    STATUS_IN_TRANSIT,
    STATUS_MAINTENANCE,
    calculate_extension_state,
    calculate_state_from_events,
)


UNIT = "unit-1"
SITE_A = "site-a"
SITE_B = "site-b"

_ids = itertools.count(1)


def at(day: int, hour: int = 8) -> datetime:
    return datetime(2026, 3, day, hour, 0)


def ev(event_type, day, hour=8, **fields):
    fields.setdefault("unit_id", UNIT)
    return build_event(
        event_type,
        id=next(_ids),
        event_date=at(day, hour),
        created_at=at(day, hour),
        **fields,
    )


def state_at(events, day, hour=18, unit_id=UNIT):
    return calculate_state_from_events(unit_id, events, at(day, hour))


class TestAllocationLifecycle:
    def test_no_events_is_available(self):
        state = state_at([], 1)
        assert state.status == STATUS_AVAILABLE
        assert state.current_site_id is None
        assert state.has_open_allocation is False

    def test_start_sets_site_and_commercial_fields(self):
        start = ev(START_ALLOCATION, 2, site_id=SITE_A, end_date=at(20),
                   construction_type="lot", lot_building_number="7")
        state = state_at([start], 3)

        assert state.status == STATUS_ALLOCATED
        assert state.current_site_id == SITE_A
        assert state.current_allocation_event_id == start.id
        assert state.allocation_start == at(2)
        assert state.end_date == at(20)
        assert state.construction_type == "lot"
        assert state.lot_building_number == "7"

    def test_same_day_end_reads_allocated_until_next_day(self):
        events = [
            ev(START_ALLOCATION, 5, hour=7, site_id=SITE_A, end_date=at(20)),
            ev(END_ALLOCATION, 5, hour=16, site_id=SITE_A),
        ]

        same_day = state_at(events, 5)
        assert same_day.status == STATUS_ALLOCATED
        assert same_day.allocation_closing is True

        next_day = state_at(events, 6)
        assert next_day.status == STATUS_AVAILABLE
        assert next_day.has_open_allocation is False
        # Still parked where it was released
        assert next_day.current_site_id == SITE_A

    def test_end_at_other_site_is_ignored(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20)),
            ev(END_ALLOCATION, 2, site_id=SITE_B),
        ]
        state = state_at(events, 4)
        assert state.status == STATUS_ALLOCATED
        assert state.current_site_id == SITE_A

    def test_end_without_allocation_is_ignored(self):
        state = state_at([ev(END_ALLOCATION, 2, site_id=SITE_A)], 4)
        assert state.status == STATUS_AVAILABLE
        assert state.current_site_id is None

    def test_exceeded_after_planned_end(self):
        events = [ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(10))]
        assert state_at(events, 10).status == STATUS_ALLOCATED
        assert state_at(events, 11).status == STATUS_EXCEEDED

    def test_future_events_are_not_folded(self):
        events = [ev(START_ALLOCATION, 10, site_id=SITE_A, end_date=at(20))]
        assert state_at(events, 9).status == STATUS_AVAILABLE
        assert state_at(events, 10).status == STATUS_ALLOCATED

    def test_pending_and_rejected_events_do_not_participate(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20), status=STATUS_PENDING),
            ev(START_ALLOCATION, 2, site_id=SITE_B, end_date=at(20), status=STATUS_REJECTED),
        ]
        state = state_at(events, 5)
        assert state.status == STATUS_AVAILABLE
        assert state.current_site_id is None

    def test_refueling_is_inert_even_when_pending(self):
        start = ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20))
        with_refuel = [start, ev(REFUELING, 2, site_id=SITE_A, status=STATUS_PENDING)]
        assert state_at(with_refuel, 3).to_dict() == state_at([start], 3).to_dict()


class TestDowntime:
    def test_downtime_start_and_next_day_release(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20)),
            ev(DOWNTIME_START, 3, downtime_reason="hydraulic_leak"),
            ev(DOWNTIME_END, 5),
        ]

        during = state_at(events, 4)
        assert during.status == STATUS_MAINTENANCE
        assert during.is_in_downtime is True
        assert during.current_downtime_reason == "hydraulic_leak"
        assert during.downtime_start == at(3)

        end_day = state_at(events, 5)
        assert end_day.status == STATUS_MAINTENANCE
        assert end_day.downtime_closing is True

        after = state_at(events, 6)
        assert after.status == STATUS_ALLOCATED
        assert after.is_in_downtime is False
        assert after.current_downtime_event_id is None

    def test_downtime_requires_open_allocation(self):
        state = state_at([ev(DOWNTIME_START, 3, downtime_reason="flat_tire")], 4)
        assert state.is_in_downtime is False
        assert state.status == STATUS_AVAILABLE

    def test_ending_allocation_clears_downtime(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20)),
            ev(DOWNTIME_START, 2, downtime_reason="engine"),
            ev(END_ALLOCATION, 3, site_id=SITE_A),
        ]
        state = state_at(events, 4)
        assert state.status == STATUS_AVAILABLE
        assert state.is_in_downtime is False


class TestTransport:
    def test_transport_keeps_commercial_allocation(self):
        start = ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(30))
        events = [
            start,
            ev(TRANSPORT_START, 5, site_id=SITE_A, destination_site_id=SITE_B),
        ]

        moving = state_at(events, 5)
        assert moving.status == STATUS_IN_TRANSIT
        assert moving.origin_site_id == SITE_A
        assert moving.destination_site_id == SITE_B
        assert moving.current_allocation_event_id == start.id
        assert moving.end_date == at(30)

        events.append(ev(TRANSPORT_ARRIVAL, 6, site_id=SITE_B, construction_type="building",
                         lot_building_number="B2"))
        arrived = state_at(events, 6)
        assert arrived.status == STATUS_ALLOCATED
        assert arrived.current_site_id == SITE_B
        assert arrived.previous_site_id == SITE_A
        assert arrived.origin_site_id is None
        assert arrived.end_date == at(30)
        assert arrived.allocation_start == at(1)
        assert arrived.construction_type == "building"

    def test_arrival_in_downtime_returns_to_maintenance(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(30)),
            ev(DOWNTIME_START, 2, downtime_reason="repair"),
            ev(TRANSPORT_START, 3, site_id=SITE_A, destination_site_id=SITE_B),
            ev(TRANSPORT_ARRIVAL, 4, site_id=SITE_B),
        ]
        assert state_at(events, 3).status == STATUS_IN_TRANSIT
        assert state_at(events, 4).status == STATUS_MAINTENANCE

    def test_arrival_without_allocation_is_available_at_new_site(self):
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(3)),
            ev(END_ALLOCATION, 3, site_id=SITE_A),
            ev(TRANSPORT_START, 4, site_id=SITE_A, destination_site_id=SITE_B),
            ev(TRANSPORT_ARRIVAL, 5, site_id=SITE_B),
        ]
        state = state_at(events, 6)
        assert state.status == STATUS_AVAILABLE
        assert state.current_site_id == SITE_B
        assert state.previous_site_id == SITE_A


class TestExtensions:
    def test_attach_and_detach_on_parent(self):
        attach = ev(EXTENSION_ATTACH, 2, extension_id="ext-1")
        events = [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(20)),
            attach,
        ]
        attached = state_at(events, 3).attached_extensions
        assert [a.extension_id for a in attached] == ["ext-1"]
        assert attached[0].attach_event_id == attach.id
        assert attached[0].attached_at == at(2)

        events.append(ev(EXTENSION_DETACH, 4, extension_id="ext-1"))
        assert state_at(events, 5).attached_extensions == []

    def test_duplicate_attach_is_listed_once(self):
        events = [
            ev(EXTENSION_ATTACH, 2, extension_id="ext-1"),
            ev(EXTENSION_ATTACH, 3, extension_id="ext-1"),
        ]
        assert len(state_at(events, 4).attached_extensions) == 1

    def test_self_allocated_extension_behaves_like_unit(self):
        events = [
            ev(EXTENSION_ATTACH, 2, unit_id=None, extension_id="ext-9", site_id=SITE_A, end_date=at(10)),
            ev(EXTENSION_DETACH, 6, unit_id=None, extension_id="ext-9", site_id=SITE_A),
        ]
        assert state_at(events, 4, unit_id="ext-9").status == STATUS_ALLOCATED
        assert state_at(events, 6, unit_id="ext-9").status == STATUS_ALLOCATED
        released = state_at(events, 7, unit_id="ext-9")
        assert released.status == STATUS_AVAILABLE
        assert released.current_site_id == SITE_A

    def test_extension_holder_follows_latest_attach(self):
        events = [
            ev(EXTENSION_ATTACH, 1, unit_id="unit-1", extension_id="ext-1"),
            ev(EXTENSION_ATTACH, 2, unit_id="unit-2", extension_id="ext-1"),
            ev(EXTENSION_DETACH, 3, unit_id="unit-1", extension_id="ext-1"),
        ]
        state = calculate_extension_state("ext-1", events, at(4))
        assert state.current_unit_id == "unit-2"
        assert state.status == "attached"

    def test_extension_detach_releases_holder(self):
        events = [
            ev(EXTENSION_ATTACH, 1, unit_id="unit-1", extension_id="ext-1"),
            ev(EXTENSION_DETACH, 2, unit_id="unit-1", extension_id="ext-1"),
        ]
        state = calculate_extension_state("ext-1", events, at(3))
        assert state.current_unit_id is None
        assert state.status == "available"


class TestDeterminism:
    def _history(self):
        return [
            ev(START_ALLOCATION, 1, site_id=SITE_A, end_date=at(28)),
            ev(DOWNTIME_START, 3, downtime_reason="engine"),
            ev(DOWNTIME_END, 4),
            ev(EXTENSION_ATTACH, 5, extension_id="ext-1"),
            ev(TRANSPORT_START, 8, site_id=SITE_A, destination_site_id=SITE_B),
            ev(TRANSPORT_ARRIVAL, 9, site_id=SITE_B),
        ]

    def test_same_result_between_events(self):
        events = self._history()
        assert state_at(events, 10).to_dict() == state_at(events, 20).to_dict()

    def test_replay_is_deterministic(self):
        events = self._history()
        first = state_at(events, 15)
        second = state_at(list(events), 15)
        assert first == second
