"""
Seed the local database with roles, an admin, a technician and a small
client/equipment/service catalog, then print bearer tokens for both users.

Usage:
  python scripts/seed_reference_data.py

This script is idempotent: records are matched on their unique fields
(role name, username, client name, brand name, service code).
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldops.auth.security import create_access_token, ADMIN_ROLE, TECHNICIAN_ROLE
from fieldops.db import SessionLocal, engine
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


def ensure_role(session, name: str, description: str = "") -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if role:
        return role
    role = Role(name=name, description=description or name.title())
    session.add(role)
    session.flush()
    return role


def ensure_user(session, username: str, full_name: str, roles: list) -> User:
    user = session.query(User).filter(User.username == username).first()
    if not user:
        user = User(username=username, full_name=full_name, email=f"{username}@example.com", is_active=True)
        session.add(user)
        session.flush()
    user.roles = session.query(Role).filter(Role.name.in_(roles)).all()
    session.flush()
    return user


def ensure_service(session, code: str, name: str) -> Service:
    service = session.query(Service).filter(Service.code == code).first()
    if service:
        return service
    service = Service(code=code, name=name)
    session.add(service)
    session.flush()
    return service


def seed():
    run_migrations(engine)
    session = SessionLocal()
    try:
        ensure_role(session, ADMIN_ROLE, "Administrator")
        ensure_role(session, TECHNICIAN_ROLE, "Field technician")
        admin = ensure_user(session, "admin", "Administrator", [ADMIN_ROLE])
        tech = ensure_user(session, "tech.one", "Tech One", [TECHNICIAN_ROLE])

        client = session.query(Client).filter(Client.name == "Demo Client").first()
        if not client:
            client = Client(name="Demo Client", company_name="Demo Client S.A.")
            session.add(client)
            session.flush()

        brand = session.query(EquipmentBrand).filter(EquipmentBrand.name == "Demo Brand").first()
        if not brand:
            brand = EquipmentBrand(name="Demo Brand")
            session.add(brand)
            session.flush()
        model = session.query(EquipmentModel).filter(EquipmentModel.brand_id == brand.id).first()
        if not model:
            model = EquipmentModel(brand_id=brand.id, model_name="DM-100")
            session.add(model)
            session.flush()
        housing = session.query(EquipmentHousing).filter(EquipmentHousing.model_id == model.id).first()
        if not housing:
            housing = EquipmentHousing(model_id=model.id, housing_name="Main housing")
            session.add(housing)
            session.flush()
        equipment = session.query(Equipment).filter(Equipment.serial_number == "SN-0001").first()
        if not equipment:
            equipment = Equipment(model_id=model.id, housing_id=housing.id, client_id=client.id, serial_number="SN-0001")
            session.add(equipment)
            session.flush()

        ensure_service(session, "CAL", "Calibration")
        ensure_service(session, "ALN", "Alignment")
        session.commit()

        print(f"Client:    {client.id}")
        print(f"Equipment: {equipment.id}")
        print(f"Admin token:      {create_access_token(str(admin.id), [ADMIN_ROLE])}")
        print(f"Technician token: {create_access_token(str(tech.id), [TECHNICIAN_ROLE])}")
    finally:
        session.close()


if __name__ == "__main__":
    seed()
