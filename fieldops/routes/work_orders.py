import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles, ADMIN_ROLE
from ..db import get_db
from ..models.models import Service, User, WorkOrder
from ..schemas.work_orders import (
    ConformitySignatureCreate,
    DocumentPermissionsUpdate,
    MeasurementCreate,
    ObservationCreate,
    WorkOrderCreate,
    WorkOrderDocumentCreate,
    WorkOrderPhotoCreate,
    WorkOrderStatus,
    WorkOrderUpdate,
)
from ..services import documents as documents_service
from ..services import work_orders as work_order_service
from ..services.activity import get_work_order_activity
from ..services.measurements import record_measurement

router = APIRouter(prefix="/work-orders", tags=["work-orders"])


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _iso(value):
    return value.isoformat() if value else None


def _user_name(user: Optional[User]) -> Optional[str]:
    if user is None:
        return None
    return user.full_name or user.username


def _serialize_summary(order: WorkOrder) -> dict:
    return {
        "id": str(order.id),
        "order_number": order.order_number,
        "client_id": str(order.client_id),
        "client_name": order.client.name if order.client else None,
        "equipment_id": str(order.equipment_id),
        "serial_number": order.equipment.serial_number if order.equipment else None,
        "title": order.title,
        "description": order.description,
        "priority": order.priority,
        "status": order.status,
        "scheduled_date": _iso(order.scheduled_date),
        "start_date": _iso(order.start_date),
        "completion_date": _iso(order.completion_date),
        "assigned_technician_id": str(order.assigned_technician_id) if order.assigned_technician_id else None,
        "technician_name": _user_name(order.technician),
        "service_location": order.service_location,
        "client_service_order_number": order.client_service_order_number,
        "created_by": str(order.created_by) if order.created_by else None,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def _serialize_housing(housing) -> dict:
    return {
        "id": str(housing.id),
        "work_order_service_id": str(housing.work_order_service_id) if housing.work_order_service_id else None,
        "measure_code": housing.measure_code,
        "description": housing.description,
        "nominal_value": housing.nominal_value,
        "nominal_unit": housing.nominal_unit,
        "tolerance": housing.tolerance,
    }


def _serialize_services(db: Session, order: WorkOrder) -> list:
    """Service entries with their housings.

    Orders from before per-service housings show their legacy service as the
    only entry, and housings without an assignment are listed under the first one.
    """
    services = []
    for assignment in order.services:
        services.append({
            "id": str(assignment.id),
            "service_id": str(assignment.service_id),
            "service_code": assignment.service.code if assignment.service else None,
            "service_name": assignment.service.name if assignment.service else None,
            "housing_count": assignment.housing_count,
            "housings": [_serialize_housing(h) for h in assignment.housings],
        })

    if not services and order.service_id:
        service = db.query(Service).filter(Service.id == order.service_id).first()
        services.append({
            "id": None,
            "service_id": str(order.service_id),
            "service_code": service.code if service else None,
            "service_name": service.name if service else None,
            "housing_count": order.service_housing_count or 0,
            "housings": [],
        })

    legacy_housings = [h for h in order.housings if h.work_order_service_id is None]
    if legacy_housings and services:
        services[0]["housings"].extend(_serialize_housing(h) for h in legacy_housings)
    return services


def _serialize_measurement(measurement) -> dict:
    return {
        "id": str(measurement.id),
        "measurement_type": measurement.measurement_type,
        "measurement_date": _iso(measurement.measurement_date),
        "temperature": measurement.temperature,
        "pressure": measurement.pressure,
        "voltage": measurement.voltage,
        "current": measurement.current,
        "resistance": measurement.resistance,
        "other_measurements": measurement.other_measurements,
        "notes": measurement.notes,
        "taken_by": str(measurement.taken_by) if measurement.taken_by else None,
        "housing_measurements": [
            {
                "id": str(r.id),
                "housing_id": str(r.housing_id),
                "measure_code": r.housing.measure_code if r.housing else None,
                "x1": r.x1,
                "y1": r.y1,
                "unit": r.unit,
            }
            for r in measurement.readings
        ],
    }


def _serialize_photo(photo) -> dict:
    return {
        "id": str(photo.id),
        "photo_path": photo.photo_path,
        "photo_type": photo.photo_type,
        "description": photo.description,
        "uploaded_by": str(photo.uploaded_by) if photo.uploaded_by else None,
        "uploaded_by_name": _user_name(photo.uploader),
        "created_at": _iso(photo.created_at),
    }


def _serialize_signature(signature, include_data: bool = False) -> Optional[dict]:
    if signature is None:
        return None
    data = {
        "id": str(signature.id),
        "signed_by_name": signature.signed_by_name,
        "signed_at": _iso(signature.signed_at),
    }
    if include_data:
        data["signature_data"] = signature.signature_data
    return data


def _serialize_work_order(db: Session, order: WorkOrder, user: User) -> dict:
    data = _serialize_summary(order)
    data["services"] = _serialize_services(db, order)
    data["measurements"] = [_serialize_measurement(m) for m in order.measurements]
    data["observations"] = [
        {
            "id": str(o.id),
            "observation": o.observation,
            "observation_type": o.observation_type,
            "created_by": str(o.created_by) if o.created_by else None,
            "created_by_name": _user_name(o.author),
            "created_at": _iso(o.created_at),
        }
        for o in order.observations
    ]
    data["photos"] = [_serialize_photo(p) for p in order.photos]
    data["documents"] = documents_service.resolve_documents(db, order, user)
    data["conformity_signature"] = _serialize_signature(work_order_service.latest_signature(db, order))
    return data


@router.get("")
def list_work_orders(
    status: Optional[WorkOrderStatus] = Query(None),
    technician_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List work orders; technicians only get their own"""
    orders = work_order_service.list_work_orders(db, user, status=status, technician_id=technician_id)
    return [_serialize_summary(o) for o in orders]


@router.get("/{work_order_id}")
def get_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Full work order: services with housings, measurements, documents, latest signature"""
    order = work_order_service.get_accessible_work_order(db, work_order_id, user)
    return _serialize_work_order(db, order, user)


@router.post("", status_code=201)
def create_work_order(
    body: WorkOrderCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ADMIN_ROLE)),
):
    order = work_order_service.create_work_order(db, body, user, ip_address=_client_ip(request))
    return {"id": str(order.id), "orderNumber": order.order_number, "message": "Work order created successfully"}


@router.put("/{work_order_id}")
def update_work_order(
    work_order_id: uuid.UUID,
    body: WorkOrderUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Partial update; only fields present in the body change"""
    order = work_order_service.get_work_order(db, work_order_id)
    work_order_service.update_work_order(db, order, body, user, ip_address=_client_ip(request))
    return {"message": "Work order updated successfully"}


@router.delete("/{work_order_id}")
def delete_work_order(
    work_order_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ADMIN_ROLE)),
):
    order = work_order_service.get_work_order(db, work_order_id)
    work_order_service.delete_work_order(db, order, user, ip_address=_client_ip(request))
    return {"message": "Work order deleted successfully"}


@router.post("/{work_order_id}/measurements", status_code=201)
def add_measurement(
    work_order_id: uuid.UUID,
    body: MeasurementCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_work_order(db, work_order_id)
    measurement = record_measurement(db, order, body, user, ip_address=_client_ip(request))
    return {"id": str(measurement.id), "message": "Measurement recorded successfully"}


@router.post("/{work_order_id}/observations", status_code=201)
def add_observation(
    work_order_id: uuid.UUID,
    body: ObservationCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_work_order(db, work_order_id)
    observation = work_order_service.add_observation(db, order, body, user, ip_address=_client_ip(request))
    return {"id": str(observation.id), "message": "Observation added successfully"}


@router.post("/{work_order_id}/photos", status_code=201)
def add_photo(
    work_order_id: uuid.UUID,
    body: WorkOrderPhotoCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Register a photo already placed in storage"""
    order = work_order_service.get_work_order(db, work_order_id)
    photo = work_order_service.add_photo(db, order, body, user, ip_address=_client_ip(request))
    return {"id": str(photo.id), "photoPath": photo.photo_path, "message": "Photo uploaded successfully"}


@router.delete("/{work_order_id}/photos/{photo_id}")
def delete_photo(
    work_order_id: uuid.UUID,
    photo_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_work_order(db, work_order_id)
    photo_path = work_order_service.delete_photo(db, order, photo_id, user, ip_address=_client_ip(request))
    return {"photoPath": photo_path, "message": "Photo deleted successfully"}


@router.get("/{work_order_id}/documents")
def list_documents(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_work_order(db, work_order_id)
    return documents_service.list_documents(db, order, user)


@router.post("/{work_order_id}/documents", status_code=201)
def register_document(
    work_order_id: uuid.UUID,
    body: WorkOrderDocumentCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ADMIN_ROLE)),
):
    """Register a file already placed in storage"""
    order = work_order_service.get_work_order(db, work_order_id)
    document = documents_service.register_document(db, order, body, user, ip_address=_client_ip(request))
    return {"id": str(document.id), "message": "Document added successfully"}


@router.put("/{work_order_id}/documents/permissions")
def update_document_permissions(
    work_order_id: uuid.UUID,
    body: DocumentPermissionsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ADMIN_ROLE)),
):
    """Replace all technician visibility flags of the order"""
    order = work_order_service.get_work_order(db, work_order_id)
    count = documents_service.replace_document_permissions(db, order, body, user, ip_address=_client_ip(request))
    return {"message": "Document permissions updated successfully", "count": count}


@router.post("/{work_order_id}/conformity-signature", status_code=201)
def add_conformity_signature(
    work_order_id: uuid.UUID,
    body: ConformitySignatureCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_work_order(db, work_order_id)
    signature = work_order_service.add_conformity_signature(db, order, body, user, ip_address=_client_ip(request))
    return {"id": str(signature.id), "message": "Conformity signature saved successfully"}


@router.get("/{work_order_id}/conformity-signature")
def get_conformity_signature(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_accessible_work_order(db, work_order_id, user)
    return _serialize_signature(work_order_service.latest_signature(db, order), include_data=True)


@router.get("/{work_order_id}/activity")
def get_activity(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = work_order_service.get_accessible_work_order(db, work_order_id, user)
    return [
        {
            "id": str(entry.id),
            "action": entry.action,
            "entity_type": entry.entity_type,
            "entity_id": str(entry.entity_id) if entry.entity_id else None,
            "description": entry.description,
            "actor_id": str(entry.actor_id) if entry.actor_id else None,
            "actor_name": _user_name(entry.actor),
            "actor_role": entry.actor_role,
            "context": entry.context,
            "timestamp": _iso(entry.timestamp_utc),
        }
        for entry in get_work_order_activity(db, order.id)
    ]
