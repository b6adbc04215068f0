import pytest
from fastapi.testclient import TestClient

from app import database, events, fees
from app.client.api import PaymentApiClient
from app.client.enrollments import Enrollment
from app.gateway import LocalGateway, get_gateway
from app.main import app


@pytest.fixture(autouse=True)
def no_broker(monkeypatch):
    published = []
    monkeypatch.setattr(events, "publish_event", lambda url, key, event: published.append((key, event)))
    return published


@pytest.fixture
def db(tmp_path):
    database.init_db(f"sqlite:///{tmp_path / 'payments.db'}")
    session = database.SessionLocal()
    yield session
    session.close()
    database.dispose_db()


@pytest.fixture
def gateway():
    return LocalGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api(client):
    return PaymentApiClient(http=client)


@pytest.fixture
def seed_fee(db):
    def _seed(registration_number="REG-1", enrollment_id="E1", course_name="ON-GR-B1",
              total_fees=19000, discount_percentage=7, duration=6):
        return fees.upsert_course_fee(db, {
            "registration_number": registration_number,
            "enrollment_id": enrollment_id,
            "course_name": course_name,
            "total_fees": total_fees,
            "discount_percentage": discount_percentage,
            "duration": duration,
        })
    return _seed


class FakeEnrollments:
    def __init__(self, *enrollments):
        self.enrollments = list(enrollments)
        self.calls = 0

    def list_enrollments(self, registration_number):
        self.calls += 1
        return list(self.enrollments)


@pytest.fixture
def make_enrollment():
    def _make(enrollment_id="E1", course_name="ON-GR-B1", duration=6):
        return Enrollment(enrollment_id=enrollment_id, course_name=course_name, duration=duration, batch_name=f"batch-{enrollment_id}")
    return _make
