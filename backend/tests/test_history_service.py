# Overview: Pytest coverage for the historical cycle segmenter.

"""
Historical Cycle Segmenter Tests

A cycle that spans two sites via transport must show up at both, present
only at the site the unit is really at, and never twice at the same site.
"""

from datetime import datetime

import pytest

from equiptrack.services import history_service
from equiptrack.services.event_records import (
    END_ALLOCATION,
    REFUELING,
    START_ALLOCATION,
    TRANSPORT_START,
    build_event,
)
from equiptrack.validation import NotFoundError


def at(day: int, hour: int = 8) -> datetime:
    return datetime(2026, 3, day, hour, 0)


AS_OF = datetime(2026, 3, 20, 12, 0)


class TestSegmentCycles:
    def _history(self):
        return [
            build_event(START_ALLOCATION, id=1, unit_id="u", site_id="a", event_date=at(1), end_date=at(5)),
            build_event(END_ALLOCATION, id=2, unit_id="u", site_id="a", event_date=at(5)),
            build_event(START_ALLOCATION, id=3, unit_id="u", site_id="b", event_date=at(6), end_date=at(30)),
            build_event(TRANSPORT_START, id=4, unit_id="u", site_id="b", destination_site_id="a", event_date=at(9)),
            build_event(REFUELING, id=5, unit_id="u", site_id="a", event_date=at(10)),
        ]

    def test_end_closes_and_transport_does_not(self):
        cycles = history_service.segment_cycles(self._history())
        assert [c.closed for c in cycles] == [True, False]
        assert [e.id for e in cycles[0].events] == [1, 2]
        assert [e.id for e in cycles[1].events] == [3, 4, 5]
        assert cycles[1].opening_event_id == 3

    def test_open_cycle_spanning_sites_participates_at_both(self):
        rows = history_service.build_site_history("a", {"u": self._history()}, at(12))
        assert [cycle.opening_event_id for _, cycle, _, _ in rows] == [1, 3]

        rows_b = history_service.build_site_history("b", {"u": self._history()}, at(12))
        assert [cycle.opening_event_id for _, cycle, _, _ in rows_b] == [3]

    def test_trailing_auxiliary_events_are_not_a_cycle(self):
        history = self._history()[:2] + [
            build_event(REFUELING, id=9, unit_id="u", site_id="a", event_date=at(7)),
        ]
        rows = history_service.build_site_history("a", {"u": history}, at(12))
        assert [cycle.opening_event_id for _, cycle, _, _ in rows] == [1]


class TestListHistoricalAllocations:
    def test_transport_presence_origin_vs_destination(self, db_session, rented_unit, site_a, site_b, make_event):
        start = make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(30))
        make_event("transport_start", at(10), unit_id=rented_unit.id,
                   site_id=site_a.id, destination_site_id=site_b.id)

        at_a = history_service.list_historical_allocations(site_a.id, AS_OF)
        at_b = history_service.list_historical_allocations(site_b.id, AS_OF)

        assert [r.allocation_event_id for r in at_a] == [start.id]
        assert [r.allocation_event_id for r in at_b] == [start.id]
        assert at_a[0].is_currently_at_site is False
        assert at_b[0].is_currently_at_site is True
        assert at_a[0].planned_end_date == at(30)
        assert at_b[0].destination_site_id == site_b.id

    def test_after_arrival_present_only_at_new_site(self, db_session, rented_unit, site_a, site_b, make_event):
        make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(30))
        make_event("transport_start", at(10), unit_id=rented_unit.id,
                   site_id=site_a.id, destination_site_id=site_b.id)
        make_event("transport_arrival", at(11), unit_id=rented_unit.id, site_id=site_b.id,
                   construction_type="building", lot_building_number="C")

        at_a = history_service.list_historical_allocations(site_a.id, AS_OF)
        at_b = history_service.list_historical_allocations(site_b.id, AS_OF)

        assert at_a[0].is_currently_at_site is False
        assert at_b[0].is_currently_at_site is True
        assert at_b[0].status == "allocated"
        assert at_b[0].construction_type == "building"
        assert at_b[0].planned_end_date == at(30)

    def test_closed_cycle_is_history_only(self, db_session, rented_unit, site_a, make_event):
        make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(4))
        end = make_event("end_allocation", at(6), unit_id=rented_unit.id, site_id=site_a.id)

        rows = history_service.list_historical_allocations(site_a.id, AS_OF)
        assert len(rows) == 1
        assert rows[0].actual_end_date == end.event_date
        assert rows[0].is_currently_at_site is False
        # Closed two days past the planned end
        assert rows[0].status == "exceeded"

    def test_unit_is_present_on_its_release_day(self, db_session, rented_unit, site_a, make_event):
        start = make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(30))
        make_event("end_allocation", at(5), unit_id=rented_unit.id, site_id=site_a.id)

        rows = history_service.list_historical_allocations(site_a.id, at(5, 18))

        assert [r.allocation_event_id for r in rows] == [start.id]
        assert rows[0].is_currently_at_site is True
        assert rows[0].status == "allocated"

        next_day = history_service.list_historical_allocations(site_a.id, at(6, 9))
        assert next_day[0].is_currently_at_site is False
        assert next_day[0].status == "available"

    def test_early_release_reads_available(self, db_session, rented_unit, site_a, make_event):
        make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(10))
        make_event("end_allocation", at(5), unit_id=rented_unit.id, site_id=site_a.id)

        rows = history_service.list_historical_allocations(site_a.id, AS_OF)
        assert rows[0].status == "available"
        assert rows[0].planned_end_date == at(10)

    def test_move_after_release_is_not_an_allocation(self, db_session, rented_unit, site_a, site_b, make_event):
        start = make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id, end_date=at(30))
        make_event("end_allocation", at(3), unit_id=rented_unit.id, site_id=site_a.id)
        make_event("transport_start", at(4), unit_id=rented_unit.id,
                   site_id=site_a.id, destination_site_id=site_b.id)
        make_event("transport_arrival", at(5), unit_id=rented_unit.id, site_id=site_b.id)

        assert history_service.list_historical_allocations(site_b.id, AS_OF) == []
        at_a = history_service.list_historical_allocations(site_a.id, AS_OF)
        assert [r.allocation_event_id for r in at_a] == [start.id]

    def test_no_duplicate_opening_ids(self, db_session, rented_unit, owned_unit, site_a, site_b, make_event):
        for unit in (rented_unit, owned_unit):
            make_event("start_allocation", at(1), unit_id=unit.id, site_id=site_a.id, end_date=at(30))
            make_event("transport_start", at(5), unit_id=unit.id, site_id=site_a.id, destination_site_id=site_b.id)
            make_event("transport_arrival", at(6), unit_id=unit.id, site_id=site_b.id)
            make_event("transport_start", at(8), unit_id=unit.id, site_id=site_b.id, destination_site_id=site_a.id)
            make_event("transport_arrival", at(9), unit_id=unit.id, site_id=site_a.id)

        for site in (site_a, site_b):
            ids = [r.allocation_event_id for r in history_service.list_historical_allocations(site.id, AS_OF)]
            assert len(ids) == 2
            assert len(ids) == len(set(ids))

    def test_pending_events_do_not_create_cycles(self, db_session, rented_unit, site_a, make_event):
        make_event("start_allocation", at(1), unit_id=rented_unit.id, site_id=site_a.id,
                   end_date=at(30), status="pending")
        assert history_service.list_historical_allocations(site_a.id, AS_OF) == []

    def test_unknown_site(self, db_session):
        with pytest.raises(NotFoundError):
            history_service.list_historical_allocations("missing-site")
