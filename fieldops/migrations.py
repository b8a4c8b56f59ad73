"""
Versioned schema migrations.

Each migration runs once, in order, inside its own transaction, and is recorded
in ``schema_migrations``. Domain code targets the schema produced by the last
migration only.
"""
import uuid
from typing import Callable, List, Tuple

import structlog
from sqlalchemy import func, inspect, select, insert, update
from sqlalchemy.engine import Connection, Engine

from .db import Base
from .models.models import (
    SchemaMigration,
    OrderSequence,
    WorkOrder,
    WorkOrderService,
    WorkOrderHousing,
    WorkOrderPhoto,
)
from .services.sequencer import ORDER_SEQUENCE_NAME

logger = structlog.get_logger(__name__)


def _create_tables(conn: Connection) -> None:
    Base.metadata.create_all(bind=conn)


def _attach_legacy_services(conn: Connection) -> None:
    """Move legacy single-service orders onto work_order_services.

    Orders that carry ``service_id`` but no assignment get one, with the legacy
    housing count; their unowned housings are attached to it.
    """
    assigned = select(WorkOrderService.work_order_id)
    rows = conn.execute(
        select(WorkOrder.id, WorkOrder.service_id, WorkOrder.service_housing_count)
        .where(WorkOrder.service_id.is_not(None))
        .where(WorkOrder.id.not_in(assigned))
    ).all()
    for order_id, service_id, housing_count in rows:
        wos_id = uuid.uuid4()
        conn.execute(
            insert(WorkOrderService)
            .values(
                id=wos_id,
                work_order_id=order_id,
                service_id=service_id,
                housing_count=housing_count or 0,
                position=0,
            )
        )
        conn.execute(
            update(WorkOrderHousing)
            .where(WorkOrderHousing.work_order_id == order_id)
            .where(WorkOrderHousing.work_order_service_id.is_(None))
            .values(work_order_service_id=wos_id)
        )
    if rows:
        logger.info("legacy_services_migrated", count=len(rows))


def _seed_order_sequence(conn: Connection) -> None:
    existing = conn.execute(
        select(OrderSequence.value).where(OrderSequence.name == ORDER_SEQUENCE_NAME)
    ).scalar_one_or_none()
    if existing is not None:
        return
    count = conn.execute(select(func.count()).select_from(WorkOrder)).scalar_one()
    conn.execute(insert(OrderSequence).values(name=ORDER_SEQUENCE_NAME, value=count))


def _create_photos_table(conn: Connection) -> None:
    # Databases created after this model was added already have the table
    WorkOrderPhoto.__table__.create(bind=conn, checkfirst=True)


MIGRATIONS: List[Tuple[int, str, Callable[[Connection], None]]] = [
    (1, "create tables", _create_tables),
    (2, "attach legacy single-service orders to work_order_services", _attach_legacy_services),
    (3, "seed work order number sequence", _seed_order_sequence),
    (4, "create work_order_photos", _create_photos_table),
]


def applied_versions(engine: Engine) -> set:
    if not inspect(engine).has_table(SchemaMigration.__tablename__):
        return set()
    with engine.connect() as conn:
        return set(conn.execute(select(SchemaMigration.version)).scalars())


def run_migrations(engine: Engine) -> List[int]:
    """Apply pending migrations; returns the versions applied by this call."""
    with engine.begin() as conn:
        SchemaMigration.__table__.create(bind=conn, checkfirst=True)

    done = applied_versions(engine)
    applied = []
    for version, description, migrate in MIGRATIONS:
        if version in done:
            continue
        logger.info("migration_start", version=version, description=description)
        with engine.begin() as conn:
            migrate(conn)
            conn.execute(insert(SchemaMigration).values(version=version, description=description))
        applied.append(version)
        logger.info("migration_applied", version=version)
    return applied
