# Overview: Billable day counting and cost estimates for rented equipment.

"""
Financial day calculator.

PERIOD: inclusive calendar days. [period_start 00:00, day after period_end 00:00).

DAY COUNTING:
- allocation spans run from start_allocation (or a self-allocation attach)
  to end_allocation (or a self-allocation detach)
- downtime spans run from downtime_start to downtime_end
- every span is clipped to the period on both sides, then counted as
  ceil(duration / 1 day)
- billable_days = max(0, total_days - downtime_days)

RATE: daily as-is, weekly / 7, monthly / 30; owned units cost nothing.
Money is Decimal, rounded half-up to cents.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from flask import current_app

from equiptrack.extensions import db
from equiptrack.models import FinancialSnapshot
from equiptrack.time_utils import ceil_days_between, coerce_period_bounds, day_of, utcnow
from equiptrack.validation import ValidationError
from . import event_store
from .concurrency import commit_with_retry
from .event_records import (
    AllocationEnd,
    AllocationStart,
    DowntimeEnd,
    DowntimeStart,
    EventRecord,
    ExtensionAttach,
    ExtensionDetach,
)


CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass
class AllocationDaysCalculation:
    machine_id: str
    site_id: Optional[str]
    supplier_id: Optional[str]
    period_start: date
    period_end: date
    total_days: int
    downtime_days: int
    billable_days: int
    daily_rate: Decimal
    estimated_cost: Decimal

    def to_dict(self) -> dict:
        return {
            "machine_id": self.machine_id,
            "site_id": self.site_id,
            "supplier_id": self.supplier_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "total_days": self.total_days,
            "downtime_days": self.downtime_days,
            "billable_days": self.billable_days,
            "daily_rate": str(self.daily_rate),
            "estimated_cost": str(self.estimated_cost),
        }


def resolve_daily_rate(
    ownership_type: Optional[str],
    billing_type: Optional[str],
    daily_rate=None,
    weekly_rate=None,
    monthly_rate=None,
) -> Decimal:
    """Unrounded per-day rate for a unit's billing cadence."""
    if ownership_type != "rented":
        return ZERO
    if billing_type == "daily" and daily_rate is not None:
        return Decimal(daily_rate)
    if billing_type == "weekly" and weekly_rate is not None:
        return Decimal(weekly_rate) / 7
    if billing_type == "monthly" and monthly_rate is not None:
        return Decimal(monthly_rate) / 30
    return ZERO


def count_days(events: Iterable[EventRecord], lower: datetime, upper: datetime):
    """
    Pure day counter over a half-open interval.

    Returns (total_days, downtime_days, site_id of the last allocation seen).
    """
    def _span(start: datetime, end: datetime) -> int:
        start, end = max(start, lower), min(end, upper)
        return ceil_days_between(start, end) if end > start else 0

    total = 0
    downtime = 0
    site_id = None
    allocation_start: Optional[datetime] = None
    downtime_start: Optional[datetime] = None

    for event in events:
        if event.event_date >= upper:
            break
        if not event.participates:
            continue

        opens = isinstance(event, AllocationStart) or (
            isinstance(event, ExtensionAttach) and event.is_self_allocation
        )
        closes = isinstance(event, AllocationEnd) or (
            isinstance(event, ExtensionDetach) and event.is_self_allocation
        )

        if opens:
            if allocation_start is not None:
                total += _span(allocation_start, event.event_date)
            allocation_start = event.event_date
            site_id = event.site_id
        elif closes:
            if allocation_start is not None:
                total += _span(allocation_start, event.event_date)
                allocation_start = None
            if downtime_start is not None:
                downtime += _span(downtime_start, event.event_date)
                downtime_start = None
        elif isinstance(event, DowntimeStart):
            if allocation_start is not None and downtime_start is None:
                downtime_start = event.event_date
        elif isinstance(event, DowntimeEnd):
            if downtime_start is not None:
                downtime += _span(downtime_start, event.event_date)
                downtime_start = None

    if allocation_start is not None:
        total += _span(allocation_start, upper)
    if downtime_start is not None:
        downtime += _span(downtime_start, upper)

    return total, downtime, site_id


def calculate_allocation_days(machine, events: Iterable[EventRecord], period_start, period_end) -> AllocationDaysCalculation:
    lower, upper = coerce_period_bounds(period_start, period_end)
    total, downtime, site_id = count_days(events, lower, upper)
    billable = max(0, total - downtime)
    rate = resolve_daily_rate(
        machine.ownership_type,
        machine.billing_type,
        machine.daily_rate,
        machine.weekly_rate,
        machine.monthly_rate,
    )
    return AllocationDaysCalculation(
        machine_id=machine.id,
        site_id=site_id,
        supplier_id=machine.supplier_id,
        period_start=day_of(lower),
        period_end=day_of(upper) - timedelta(days=1),
        total_days=total,
        downtime_days=downtime,
        billable_days=billable,
        daily_rate=rate.quantize(CENT, rounding=ROUND_HALF_UP),
        estimated_cost=(rate * billable).quantize(CENT, rounding=ROUND_HALF_UP),
    )


def estimate_allocation_cost(unit_id: str, period_start, period_end) -> AllocationDaysCalculation:
    """
    Raises:
        ValidationError: malformed or inverted period
        NotFoundError: unknown unit
    """
    try:
        coerce_period_bounds(period_start, period_end)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    machine = event_store.get_machine(unit_id)
    events = event_store.fetch_subject_events(unit_id)
    return calculate_allocation_days(machine, events, period_start, period_end)


def _calculate_fleet(period_start, period_end, *, site_id=None, supplier_id=None):
    try:
        coerce_period_bounds(period_start, period_end)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    units = [
        u for u in event_store.fetch_active_units()
        if u.ownership_type == "rented" and (supplier_id is None or u.supplier_id == supplier_id)
    ]
    events, _ = event_store.fetch_participating_events()
    by_subject = defaultdict(list)
    for event in events:
        by_subject[event.subject_id].append(event)

    out = []
    for unit in units:
        calc = calculate_allocation_days(unit, by_subject.get(unit.id, []), period_start, period_end)
        if calc.billable_days <= 0:
            continue
        if site_id is not None and calc.site_id != site_id:
            continue
        out.append(calc)
    return out


def preview_financial_snapshots(period_start, period_end, *, site_id=None, supplier_id=None) -> list[AllocationDaysCalculation]:
    """Same numbers generate_financial_snapshots would persist, without writing."""
    return _calculate_fleet(period_start, period_end, site_id=site_id, supplier_id=supplier_id)


def generate_financial_snapshots(
    period_start,
    period_end,
    *,
    site_id: Optional[str] = None,
    supplier_id: Optional[str] = None,
    regenerate: bool = False,
) -> dict:
    """
    Persist one FinancialSnapshot per rented unit with billable days.

    Existing snapshots for the same unit and period are left alone unless
    regenerate is set, in which case they are overwritten.
    """
    calculations = _calculate_fleet(period_start, period_end, site_id=site_id, supplier_id=supplier_id)

    created = updated = skipped = 0
    snapshots = []
    for calc in calculations:
        existing = (
            db.session.query(FinancialSnapshot)
            .filter_by(machine_id=calc.machine_id, period_start=calc.period_start, period_end=calc.period_end)
            .first()
        )
        if existing is not None and not regenerate:
            skipped += 1
            snapshots.append(existing)
            continue

        snapshot = existing or FinancialSnapshot(
            machine_id=calc.machine_id,
            period_start=calc.period_start,
            period_end=calc.period_end,
        )
        snapshot.site_id = calc.site_id
        snapshot.supplier_id = calc.supplier_id
        snapshot.total_days = calc.total_days
        snapshot.downtime_days = calc.downtime_days
        snapshot.billable_days = calc.billable_days
        snapshot.daily_rate = calc.daily_rate
        snapshot.estimated_cost = calc.estimated_cost
        snapshot.calculated_at = utcnow()

        if existing is None:
            db.session.add(snapshot)
            created += 1
        else:
            updated += 1
        snapshots.append(snapshot)

    commit_with_retry()
    current_app.logger.info(
        "Financial snapshots %s..%s: created=%s updated=%s skipped=%s",
        period_start, period_end, created, updated, skipped,
    )
    return {
        "created": created,
        "updated": updated,
        "skipped": skipped,
        "snapshots": [s.to_dict() for s in snapshots],
    }
