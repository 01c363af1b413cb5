"""
Pytest fixtures for equiptrack backend tests.

Provides test database setup, a small fleet (sites, units, an extension),
an event factory, and a test client.
"""

from decimal import Decimal

import pytest

from equiptrack import create_app
from equiptrack.config import Config
from equiptrack.extensions import db
from equiptrack.models import AllocationEvent, Extension, Machine, MachineType, Site, Supplier


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SYNC_ON_APPROVAL = True


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def site_a(db_session):
    site = Site(title="North Tower", address="1 Harbour Rd")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def site_b(db_session):
    site = Site(title="South Yard", address="9 Quarry Ln")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Rent-a-Lift", supplier_type="rental")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def excavator_type(db_session):
    machine_type = MachineType(name="Excavator", icon="excavator")
    db_session.add(machine_type)
    db_session.commit()
    return machine_type


@pytest.fixture(scope='function')
def bucket_type(db_session):
    machine_type = MachineType(name="Bucket", icon="bucket", is_attachment=True)
    db_session.add(machine_type)
    db_session.commit()
    return machine_type


@pytest.fixture(scope='function')
def rented_unit(db_session, supplier, excavator_type):
    """Rented excavator billed daily at 100.00."""
    unit = Machine(
        unit_number="EX-100",
        machine_type_id=excavator_type.id,
        supplier_id=supplier.id,
        ownership_type="rented",
        billing_type="daily",
        daily_rate=Decimal("100.00"),
    )
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def owned_unit(db_session, excavator_type):
    unit = Machine(unit_number="EX-200", machine_type_id=excavator_type.id, ownership_type="owned")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def extension(db_session, bucket_type):
    ext = Extension(unit_number="BK-1", machine_type_id=bucket_type.id)
    db_session.add(ext)
    db_session.commit()
    return ext


@pytest.fixture(scope='function')
def make_event(db_session):
    """
    Insert an allocation event row directly (no validation).

    Defaults to APPROVED so the row participates immediately.
    """
    def _make(event_type, event_date, *, status="approved", created_by="field.user", **fields):
        event = AllocationEvent(
            event_type=event_type,
            event_date=event_date,
            status=status,
            created_by=created_by,
            **fields,
        )
        db_session.add(event)
        db_session.commit()
        return event

    return _make
