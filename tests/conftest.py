import os

# Must be set before fieldops.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_MIGRATE", "false")
os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.auth.security import create_access_token, ADMIN_ROLE, TECHNICIAN_ROLE
from fieldops.db import get_db
from fieldops.main import app
from fieldops.migrations import run_migrations
from fieldops.models.models import (
    Client,
    Equipment,
    EquipmentBrand,
    EquipmentHousing,
    EquipmentModel,
    Role,
    Service,
    User,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class Seed:
    """Reference data shared by most tests."""


@pytest.fixture
def seed(db):
    admin_role = Role(name=ADMIN_ROLE)
    tech_role = Role(name=TECHNICIAN_ROLE)
    db.add_all([admin_role, tech_role])
    db.flush()

    s = Seed()
    s.admin = User(username="admin", full_name="Ada Admin", roles=[admin_role])
    s.tech = User(username="tech.one", full_name="Tech One", roles=[tech_role])
    s.other_tech = User(username="tech.two", full_name="Tech Two", roles=[tech_role])
    s.inactive_tech = User(username="tech.gone", full_name="Gone Tech", is_active=False, roles=[tech_role])
    s.plain_user = User(username="viewer", roles=[])
    db.add_all([s.admin, s.tech, s.other_tech, s.inactive_tech, s.plain_user])

    s.client = Client(name="Acme Mining")
    s.other_client = Client(name="Other Corp")
    db.add_all([s.client, s.other_client])

    s.brand = EquipmentBrand(name="Hydra")
    db.add(s.brand)
    db.flush()
    s.model = EquipmentModel(brand_id=s.brand.id, model_name="HX-200")
    db.add(s.model)
    db.flush()
    s.equipment_housing = EquipmentHousing(model_id=s.model.id, housing_name="Front")
    db.add(s.equipment_housing)
    db.flush()

    s.equipment = Equipment(
        model_id=s.model.id,
        housing_id=s.equipment_housing.id,
        client_id=s.client.id,
        serial_number="SN-1",
    )
    s.second_equipment = Equipment(model_id=s.model.id, client_id=s.client.id, serial_number="SN-2")
    s.foreign_equipment = Equipment(model_id=s.model.id, client_id=s.other_client.id, serial_number="SN-9")
    db.add_all([s.equipment, s.second_equipment, s.foreign_equipment])

    s.calibration = Service(code="CAL", name="Calibration")
    s.alignment = Service(code="ALN", name="Alignment")
    db.add_all([s.calibration, s.alignment])
    db.commit()
    return s


def auth_headers(user: User) -> dict:
    roles = [r.name for r in user.roles]
    return {"Authorization": f"Bearer {create_access_token(str(user.id), roles)}"}


@pytest.fixture
def admin_headers(seed):
    return auth_headers(seed.admin)


@pytest.fixture
def tech_headers(seed):
    return auth_headers(seed.tech)


@pytest.fixture
def other_tech_headers(seed):
    return auth_headers(seed.other_tech)


@pytest.fixture
def make_order(client, seed, admin_headers):
    """Create an order through the API; returns the response body of GET."""

    def _make(**overrides):
        body = {
            "clientId": str(seed.client.id),
            "equipmentId": str(seed.equipment.id),
            "title": "Pump overhaul",
            "services": [{"serviceId": str(seed.calibration.id), "housingCount": 3}],
        }
        body.update(overrides)
        resp = client.post("/work-orders", json=body, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        order_id = resp.json()["id"]
        return client.get(f"/work-orders/{order_id}", headers=admin_headers).json()

    return _make
