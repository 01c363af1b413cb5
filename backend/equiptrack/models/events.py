from __future__ import annotations

from ..extensions import db
from equiptrack.time_utils import to_utc_z


class AllocationEvent(db.Model):
    """
    Append-only domain event about a piece of equipment.

    The allocation_events table is the ONLY persisted authority for machine
    and extension state. Everything else (Machine.status, Extension.current_unit_id,
    dashboards) is derived by folding approved rows in
    (event_date, created_at, id) order.

    SUBJECT:
    - unit_id set: the event belongs to that machine's timeline. If
      extension_id is also set (attach/detach), it additionally lands in
      the extension's attach timeline.
    - unit_id NULL: the extension itself is the subject (an accessory that
      is allocated to a site on its own).

    LIFECYCLE: pending -> approved | rejected. Rows are never deleted; a
    mistaken event is superseded by a new one pointing at it through
    corrects_event_id.
    """
    __tablename__ = "allocation_events"
    __table_args__ = (
        db.Index("ix_alloc_events_unit_status_date", "unit_id", "status", "event_date"),
        db.Index("ix_alloc_events_extension_status_date", "extension_id", "status", "event_date"),
        db.Index("ix_alloc_events_site_status", "site_id", "status"),
        db.CheckConstraint(
            "unit_id IS NOT NULL OR extension_id IS NOT NULL",
            name="ck_alloc_events_subject",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(32), nullable=False, index=True)

    unit_id = db.Column(db.String(36), db.ForeignKey("machines.id"), nullable=True)
    extension_id = db.Column(db.String(36), db.ForeignKey("extensions.id"), nullable=True)
    site_id = db.Column(db.String(36), db.ForeignKey("sites.id"), nullable=True)
    destination_site_id = db.Column(db.String(36), db.ForeignKey("sites.id"), nullable=True)
    supplier_id = db.Column(db.String(36), db.ForeignKey("suppliers.id"), nullable=True)

    # Location detail inside a site: lot | building + its number
    construction_type = db.Column(db.String(16), nullable=True)
    lot_building_number = db.Column(db.String(64), nullable=True)

    # Business time; end_date is the planned commercial end of an allocation
    event_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    downtime_reason = db.Column(db.String(64), nullable=True)
    downtime_description = db.Column(db.Text, nullable=True)

    # pending | approved | rejected
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    created_by = db.Column(db.String(64), nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    corrects_event_id = db.Column(db.Integer, db.ForeignKey("allocation_events.id"), nullable=True)
    correction_description = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # System time; breaks ties between events on the same event_date
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    unit = db.relationship("Machine", foreign_keys=[unit_id])
    extension = db.relationship("Extension", foreign_keys=[extension_id])
    site = db.relationship("Site", foreign_keys=[site_id])
    destination_site = db.relationship("Site", foreign_keys=[destination_site_id])

    @property
    def subject_id(self) -> str:
        return self.unit_id or self.extension_id

    def __repr__(self) -> str:
        return (
            f"<AllocationEvent id={self.id} type={self.event_type} "
            f"subject={self.subject_id} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "unit_id": self.unit_id,
            "extension_id": self.extension_id,
            "site_id": self.site_id,
            "destination_site_id": self.destination_site_id,
            "supplier_id": self.supplier_id,
            "construction_type": self.construction_type,
            "lot_building_number": self.lot_building_number,
            "event_date": to_utc_z(self.event_date),
            "end_date": to_utc_z(self.end_date),
            "downtime_reason": self.downtime_reason,
            "downtime_description": self.downtime_description,
            "status": self.status,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "corrects_event_id": self.corrects_event_id,
            "correction_description": self.correction_description,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
