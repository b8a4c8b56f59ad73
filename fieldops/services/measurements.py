"""
Measurement recorder.

A measurement event and its per-housing readings are written together or not
at all. Every reading must point at a housing of the same work order.
"""
import uuid
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import atomic
from ..errors import ReferentialError, ValidationError
from ..models.models import HousingMeasurement, Measurement, User, WorkOrder, WorkOrderHousing
from ..schemas.work_orders import MeasurementCreate, MeasurementType
from .activity import log_activity
from .permissions import ensure_can_access

logger = structlog.get_logger(__name__)

_MEASUREMENT_TYPES = {t.value for t in MeasurementType}


def _parse_housing_ids(payload: MeasurementCreate) -> List[Optional[uuid.UUID]]:
    """UUIDs of the referenced housings, None for ids that are not UUIDs."""
    parsed = []
    seen = set()
    for reading in payload.housing_measurements or []:
        if not reading.housing_id:
            raise ValidationError("Housing ID is required for every housing measurement")
        if reading.housing_id in seen:
            raise ValidationError(f"Housing {reading.housing_id} is measured more than once")
        seen.add(reading.housing_id)
        try:
            parsed.append(uuid.UUID(reading.housing_id))
        except ValueError:
            parsed.append(None)
    return parsed


def _check_housings_belong(db: Session, order: WorkOrder, payload: MeasurementCreate, housing_ids) -> None:
    wanted = [h for h in housing_ids if h is not None]
    owned = set()
    if wanted:
        rows = (
            db.query(WorkOrderHousing.id)
            .filter(WorkOrderHousing.work_order_id == order.id, WorkOrderHousing.id.in_(wanted))
            .all()
        )
        owned = {row[0] for row in rows}
    invalid = [
        reading.housing_id
        for reading, housing_id in zip(payload.housing_measurements or [], housing_ids)
        if housing_id is None or housing_id not in owned
    ]
    if invalid:
        raise ReferentialError(f"Housings do not belong to this work order: {', '.join(invalid)}")


def record_measurement(
    db: Session,
    order: WorkOrder,
    payload: MeasurementCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> Measurement:
    ensure_can_access(actor, order)
    if payload.measurement_type not in _MEASUREMENT_TYPES:
        raise ValidationError("Measurement type must be 'initial' or 'final'")

    housing_ids = _parse_housing_ids(payload)
    _check_housings_belong(db, order, payload, housing_ids)

    with atomic(db, "record_measurement"):
        measurement = Measurement(
            work_order_id=order.id,
            measurement_type=payload.measurement_type,
            temperature=payload.temperature,
            pressure=payload.pressure,
            voltage=payload.voltage,
            current=payload.current,
            resistance=payload.resistance,
            other_measurements=payload.other_measurements,
            notes=payload.notes,
            taken_by=actor.id,
        )
        for reading, housing_id in zip(payload.housing_measurements or [], housing_ids):
            measurement.readings.append(
                HousingMeasurement(
                    housing_id=housing_id,
                    x1=reading.x1,
                    y1=reading.y1,
                    unit=reading.unit,
                )
            )
        db.add(measurement)
        db.flush()
        measurement_id = measurement.id

    reading_count = len(housing_ids)
    logger.info(
        "measurement_recorded",
        work_order_id=str(order.id),
        measurement_id=str(measurement_id),
        readings=reading_count,
    )
    log_activity(
        db,
        actor=actor,
        action="CREATE",
        entity_type="measurement",
        entity_id=measurement_id,
        work_order_id=order.id,
        description=f"{payload.measurement_type.capitalize()} measurement recorded",
        ip_address=ip_address,
        context={"measurement_type": payload.measurement_type, "housing_count": reading_count},
    )
    return measurement
