"""
Pytest fixtures for flight operations backend tests.

Provides test database setup, organization/user/fleet/billing fixtures,
and authenticated test client helpers.
"""

from datetime import datetime

import pytest
from flightops import create_app
from flightops.config import TestingConfig
from flightops.extensions import db
from flightops.models import Organization, Aircraft, Chargeable, FlightType, Lesson
from flightops.services.auth_service import create_user, add_membership
from flightops.services import session_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

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
        db.session.remove()

        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@pytest.fixture(scope='function')
def org(db_session):
    """Flight school under test."""
    org = Organization(name="Skyline Aero Club", code="SKY", is_active=True, default_tax_rate_bps=1500)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    """A second, unrelated flight school."""
    org = Organization(name="Harbour Flight Training", code="HFT", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


# =============================================================================
# USERS
# =============================================================================

def _make_user(email, first_name, last_name, org=None, role=None):
    user = create_user(email, PASSWORD, first_name, last_name, rounds=4)
    if org is not None and role is not None:
        add_membership(user.id, org.id, role)
    return user


@pytest.fixture(scope='function')
def owner(db_session, org):
    return _make_user("owner@skyline.test", "Olivia", "Owner", org, "owner")


@pytest.fixture(scope='function')
def instructor(db_session, org):
    return _make_user("instructor@skyline.test", "Ian", "Structor", org, "instructor")


@pytest.fixture(scope='function')
def second_instructor(db_session, org):
    return _make_user("instructor2@skyline.test", "Ingrid", "Tutor", org, "instructor")


@pytest.fixture(scope='function')
def member(db_session, org):
    return _make_user("member@skyline.test", "Mia", "Member", org, "member")


@pytest.fixture(scope='function')
def second_member(db_session, org):
    return _make_user("member2@skyline.test", "Max", "Flyer", org, "member")


@pytest.fixture(scope='function')
def student(db_session, org):
    return _make_user("student@skyline.test", "Sam", "Student", org, "student")


@pytest.fixture(scope='function')
def outsider(db_session, other_org):
    """Admin of a different organization."""
    return _make_user("admin@harbour.test", "Oscar", "Outsider", other_org, "admin")


def headers_for(user) -> dict:
    """Authorization headers with a fresh session token for user."""
    _, token = session_service.create_session(user_id=user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(owner):
    return headers_for(owner)


@pytest.fixture(scope='function')
def instructor_headers(instructor):
    return headers_for(instructor)


@pytest.fixture(scope='function')
def member_headers(member):
    return headers_for(member)


@pytest.fixture(scope='function')
def student_headers(student):
    return headers_for(student)


@pytest.fixture(scope='function')
def outsider_headers(outsider):
    return headers_for(outsider)


# =============================================================================
# FLEET
# =============================================================================

@pytest.fixture(scope='function')
def aircraft(db_session, org):
    plane = Aircraft(organization_id=org.id, registration="ZK-ABC", type="C172", model="172S", manufacturer="Cessna")
    db_session.add(plane)
    db_session.commit()
    return plane


@pytest.fixture(scope='function')
def second_aircraft(db_session, org):
    plane = Aircraft(organization_id=org.id, registration="ZK-XYZ", type="PA28", model="Warrior", manufacturer="Piper")
    db_session.add(plane)
    db_session.commit()
    return plane


@pytest.fixture(scope='function')
def foreign_aircraft(db_session, other_org):
    plane = Aircraft(organization_id=other_org.id, registration="ZK-HFT", type="C152")
    db_session.add(plane)
    db_session.commit()
    return plane


@pytest.fixture(scope='function')
def flight_type(db_session, org):
    ft = FlightType(organization_id=org.id, name="Dual", description="Dual instruction")
    db_session.add(ft)
    db_session.commit()
    return ft


@pytest.fixture(scope='function')
def lesson(db_session, org):
    item = Lesson(organization_id=org.id, name="Circuits 1", duration_minutes=60)
    db_session.add(item)
    db_session.commit()
    return item


# =============================================================================
# BILLING
# =============================================================================

@pytest.fixture(scope='function')
def rental_chargeable(db_session, org):
    item = Chargeable(organization_id=org.id, name="C172 rental", type="aircraft_rental", rate_cents=10000)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def instructor_chargeable(db_session, org):
    item = Chargeable(organization_id=org.id, name="Instructor fee", type="instructor_fee", rate_cents=10000)
    db_session.add(item)
    db_session.commit()
    return item


# =============================================================================
# TIME HELPERS
# =============================================================================

def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    """Naive UTC datetime on a fixed test day."""
    return datetime(2030, 3, day, hour, minute)


def iso(hour: int, minute: int = 0, day: int = 1) -> str:
    return at(hour, minute, day).isoformat() + "Z"
