from __future__ import annotations

import uuid

from ..extensions import db
from equiptrack.time_utils import to_utc_z


def _uuid() -> str:
    return str(uuid.uuid4())


def _money(value) -> str | None:
    return None if value is None else str(value)


class Site(db.Model):
    """Construction site (or yard) where equipment can be allocated."""
    __tablename__ = "sites"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Site id={self.id} title={self.title!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    supplier_type = db.Column(db.String(32), nullable=True)  # rental, fuel, material
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "supplier_type": self.supplier_type,
            "is_active": self.is_active,
        }


class MachineType(db.Model):
    __tablename__ = "machine_types"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(128), nullable=False, unique=True)
    icon = db.Column(db.String(64), nullable=True)
    is_attachment = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "is_attachment": self.is_attachment,
        }


class Machine(db.Model):
    """
    Equipment unit.

    LEDGER-DERIVED STATE:
    current_site_id, status, is_in_downtime, current_allocation_event_id and
    planned_end_date are a cache written by sync_service from approved
    allocation_events. They are never read back as ground truth by the
    derivation engine and can be rebuilt at any time.
    """
    __tablename__ = "machines"
    __table_args__ = (
        db.Index("ix_machines_active_status", "is_active", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    unit_number = db.Column(db.String(64), nullable=False, unique=True)

    machine_type_id = db.Column(db.String(36), db.ForeignKey("machine_types.id"), nullable=True, index=True)
    supplier_id = db.Column(db.String(36), db.ForeignKey("suppliers.id"), nullable=True, index=True)

    # owned | rented
    ownership_type = db.Column(db.String(16), nullable=False, default="owned")
    # daily | weekly | monthly (only meaningful for rented units)
    billing_type = db.Column(db.String(16), nullable=True)
    daily_rate = db.Column(db.Numeric(12, 2), nullable=True)
    weekly_rate = db.Column(db.Numeric(12, 2), nullable=True)
    monthly_rate = db.Column(db.Numeric(12, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Denormalized cache (see class docstring)
    current_site_id = db.Column(db.String(36), db.ForeignKey("sites.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="available")
    is_in_downtime = db.Column(db.Boolean, nullable=False, default=False)
    current_allocation_event_id = db.Column(db.Integer, nullable=True)
    planned_end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    machine_type = db.relationship("MachineType")
    supplier = db.relationship("Supplier")
    current_site = db.relationship("Site", foreign_keys=[current_site_id])

    def __repr__(self) -> str:
        return f"<Machine id={self.id} unit_number={self.unit_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_number": self.unit_number,
            "machine_type_id": self.machine_type_id,
            "supplier_id": self.supplier_id,
            "ownership_type": self.ownership_type,
            "billing_type": self.billing_type,
            "daily_rate": _money(self.daily_rate),
            "weekly_rate": _money(self.weekly_rate),
            "monthly_rate": _money(self.monthly_rate),
            "is_active": self.is_active,
            "current_site_id": self.current_site_id,
            "status": self.status,
            "is_in_downtime": self.is_in_downtime,
            "current_allocation_event_id": self.current_allocation_event_id,
            "planned_end_date": to_utc_z(self.planned_end_date),
            "created_at": to_utc_z(self.created_at),
        }


class Extension(db.Model):
    """
    Attachable accessory (bucket, hammer, forks...) with its own timeline.

    CONCURRENCY: version_id is bumped whenever an attach/detach touching this
    extension is approved. Two concurrent approvals for the same accessory
    collide on the version check instead of both succeeding.
    """
    __tablename__ = "extensions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    unit_number = db.Column(db.String(64), nullable=False, unique=True)
    machine_type_id = db.Column(db.String(36), db.ForeignKey("machine_types.id"), nullable=True, index=True)
    supplier_id = db.Column(db.String(36), db.ForeignKey("suppliers.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Denormalized cache
    current_unit_id = db.Column(db.String(36), db.ForeignKey("machines.id"), nullable=True, index=True)
    current_site_id = db.Column(db.String(36), db.ForeignKey("sites.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="available")

    version_id = db.Column(db.Integer, nullable=False, default=1)

    machine_type = db.relationship("MachineType")
    supplier = db.relationship("Supplier")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Extension id={self.id} unit_number={self.unit_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_number": self.unit_number,
            "machine_type_id": self.machine_type_id,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "current_unit_id": self.current_unit_id,
            "current_site_id": self.current_site_id,
            "status": self.status,
            "version_id": self.version_id,
        }


class FinancialSnapshot(db.Model):
    """Persisted day-count / cost estimate for one unit over one period."""
    __tablename__ = "financial_snapshots"
    __table_args__ = (
        db.UniqueConstraint("machine_id", "period_start", "period_end", name="uq_fin_snapshot_machine_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.String(36), db.ForeignKey("machines.id"), nullable=False, index=True)
    site_id = db.Column(db.String(36), db.ForeignKey("sites.id"), nullable=True, index=True)
    supplier_id = db.Column(db.String(36), db.ForeignKey("suppliers.id"), nullable=True, index=True)

    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    total_days = db.Column(db.Integer, nullable=False, default=0)
    downtime_days = db.Column(db.Integer, nullable=False, default=0)
    billable_days = db.Column(db.Integer, nullable=False, default=0)
    daily_rate = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    estimated_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    calculated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "site_id": self.site_id,
            "supplier_id": self.supplier_id,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "total_days": self.total_days,
            "downtime_days": self.downtime_days,
            "billable_days": self.billable_days,
            "daily_rate": _money(self.daily_rate),
            "estimated_cost": _money(self.estimated_cost),
            "calculated_at": to_utc_z(self.calculated_at),
        }
