"""
Work order aggregate: creation, partial update, status transitions, deletion,
observations, photos and conformity signatures.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import TECHNICIAN_ROLE, is_admin, is_technician, role_names
from ..db import atomic
from ..errors import AccessDenied, NotFoundError, ValidationError
from ..models.models import (
    Client,
    ConformitySignature,
    DocumentPermission,
    Equipment,
    User,
    WorkOrder,
    WorkOrderDocument,
    WorkOrderObservation,
    WorkOrderPhoto,
)
from ..schemas.work_orders import (
    ConformitySignatureCreate,
    ObservationCreate,
    WorkOrderCreate,
    WorkOrderPhotoCreate,
    WorkOrderStatus,
    WorkOrderUpdate,
)
from .activity import log_activity
from .housing_config import build_services, replace_services
from .permissions import ensure_admin, ensure_can_access
from .sequencer import next_order_number

logger = structlog.get_logger(__name__)


STATUS_MESSAGES = {
    WorkOrderStatus.created.value: "Order reverted to created",
    WorkOrderStatus.assigned.value: "Order assigned",
    WorkOrderStatus.in_progress.value: "Order started",
    WorkOrderStatus.completed.value: "Order completed",
    WorkOrderStatus.accepted.value: "Order accepted",
    WorkOrderStatus.on_hold.value: "Order put on hold",
    WorkOrderStatus.cancelled.value: "Order cancelled",
}

# Plain columns an administrator may set directly
_SIMPLE_FIELDS = (
    "title",
    "description",
    "priority",
    "scheduled_date",
    "service_location",
    "client_service_order_number",
)
_NOT_NULL_FIELDS = {"title", "priority", "status"}


def display_name(user: User) -> str:
    return user.full_name or user.username


def get_work_order(db: Session, work_order_id: uuid.UUID) -> WorkOrder:
    order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not order:
        raise NotFoundError("Work order not found")
    return order


def get_accessible_work_order(db: Session, work_order_id: uuid.UUID, user: User) -> WorkOrder:
    order = get_work_order(db, work_order_id)
    ensure_can_access(user, order)
    return order


def list_work_orders(
    db: Session,
    user: User,
    status: Optional[WorkOrderStatus] = None,
    technician_id: Optional[uuid.UUID] = None,
    limit: int = 500,
) -> List[WorkOrder]:
    query = db.query(WorkOrder)
    if not is_admin(user):
        # Technicians only ever see their own orders, whatever filter they pass
        technician_id = user.id
    if status:
        query = query.filter(WorkOrder.status == status.value)
    if technician_id:
        query = query.filter(WorkOrder.assigned_technician_id == technician_id)
    return query.order_by(WorkOrder.created_at.desc()).limit(limit).all()


def _get_client(db: Session, client_id: uuid.UUID) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise NotFoundError("Client not found")
    return client


def _get_equipment(db: Session, equipment_id: uuid.UUID, client_id: uuid.UUID) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise NotFoundError("Equipment not found")
    if equipment.client_id is not None and equipment.client_id != client_id:
        raise ValidationError("Equipment does not belong to the order's client")
    return equipment


def _get_technician(db: Session, technician_id: uuid.UUID) -> User:
    user = db.query(User).filter(User.id == technician_id).first()
    if not user or not user.is_active or TECHNICIAN_ROLE not in role_names(user):
        raise NotFoundError("Technician not found")
    return user


def apply_status(order: WorkOrder, status: str, now: Optional[datetime] = None) -> None:
    """Set status; start and completion dates are only ever set once."""
    now = now or datetime.now(timezone.utc)
    order.status = status
    if status == WorkOrderStatus.in_progress.value and order.start_date is None:
        order.start_date = now
    if status == WorkOrderStatus.completed.value and order.completion_date is None:
        order.completion_date = now


def create_work_order(
    db: Session,
    payload: WorkOrderCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> WorkOrder:
    ensure_admin(actor, "Only administrators can create work orders")
    if not payload.client_id or not payload.equipment_id or not (payload.title or "").strip():
        raise ValidationError("Client, equipment and title are required")

    _get_client(db, payload.client_id)
    _get_equipment(db, payload.equipment_id, payload.client_id)
    technician = _get_technician(db, payload.assigned_technician_id) if payload.assigned_technician_id else None

    with atomic(db, "create_work_order"):
        order = WorkOrder(
            order_number=next_order_number(db),
            client_id=payload.client_id,
            equipment_id=payload.equipment_id,
            title=payload.title.strip(),
            description=payload.description,
            priority=payload.priority.value,
            status=WorkOrderStatus.assigned.value if technician else WorkOrderStatus.created.value,
            scheduled_date=payload.scheduled_date,
            assigned_technician_id=technician.id if technician else None,
            service_location=payload.service_location,
            client_service_order_number=payload.client_service_order_number,
            created_by=actor.id,
        )
        db.add(order)
        build_services(db, order, payload.services)
        db.flush()
        order_id = order.id
        order_number = order.order_number

    logger.info("work_order_created", work_order_id=str(order_id), order_number=order_number)
    log_activity(
        db,
        actor=actor,
        action="CREATE",
        entity_type="work_order",
        entity_id=order_id,
        work_order_id=order_id,
        description=f"Order created: {order_number}",
        ip_address=ip_address,
        context={"services": len(payload.services)},
    )
    return get_work_order(db, order_id)


def _check_update_allowed(order: WorkOrder, changes: WorkOrderUpdate, actor: User) -> List[str]:
    fields = changes.set_fields()
    if is_technician(actor):
        if order.assigned_technician_id != actor.id:
            raise AccessDenied("You can only update work orders assigned to you")
        if any(f != "status" for f in fields):
            raise AccessDenied("Technicians can only update the order status")
    elif not is_admin(actor):
        raise AccessDenied("You do not have permission to update work orders")
    if not fields:
        raise ValidationError("No fields to update")
    for field in _NOT_NULL_FIELDS:
        if changes.is_set(field) and getattr(changes, field) is None:
            raise ValidationError(f"{field} cannot be empty")
    if changes.is_set("title") and not changes.title.strip():
        raise ValidationError("title cannot be empty")
    if changes.is_set("services") and changes.services is None:
        raise ValidationError("services must be a list")
    return fields


def update_work_order(
    db: Session,
    order: WorkOrder,
    changes: WorkOrderUpdate,
    actor: User,
    ip_address: Optional[str] = None,
) -> WorkOrder:
    """Apply the fields present in ``changes`` and nothing else."""
    fields = _check_update_allowed(order, changes, actor)

    previous_status = order.status
    previous_technician_id = order.assigned_technician_id
    technician: Optional[User] = None
    now = datetime.now(timezone.utc)

    with atomic(db, "update_work_order"):
        if changes.is_set("assigned_technician_id"):
            if changes.assigned_technician_id is None:
                order.assigned_technician_id = None
                if previous_technician_id is not None:
                    apply_status(order, WorkOrderStatus.created.value, now)
            else:
                technician = _get_technician(db, changes.assigned_technician_id)
                order.assigned_technician_id = technician.id
                if technician.id != previous_technician_id:
                    apply_status(order, WorkOrderStatus.assigned.value, now)

        # An explicit status wins over the one implied by the assignment
        if changes.is_set("status"):
            apply_status(order, changes.status.value, now)

        for field in _SIMPLE_FIELDS:
            if changes.is_set(field):
                value = getattr(changes, field)
                if field == "priority":
                    value = value.value
                elif field == "title":
                    value = value.strip()
                setattr(order, field, value)

        if changes.is_set("equipment_id"):
            if changes.equipment_id is None:
                raise ValidationError("equipment cannot be empty")
            equipment = _get_equipment(db, changes.equipment_id, order.client_id)
            order.equipment_id = equipment.id

        if changes.is_set("services"):
            replace_services(db, order, changes.services)

        order.updated_at = now

    if technician is not None and technician.id != previous_technician_id:
        description = f"Order assigned to {display_name(technician)}"
    elif changes.is_set("assigned_technician_id") and changes.assigned_technician_id is None and previous_technician_id:
        description = "Order unassigned"
    elif changes.is_set("status") and order.status != previous_status:
        description = STATUS_MESSAGES[order.status]
    else:
        description = "Order updated"

    logger.info("work_order_updated", work_order_id=str(order.id), fields=fields, status=order.status)
    log_activity(
        db,
        actor=actor,
        action="UPDATE",
        entity_type="work_order",
        entity_id=order.id,
        work_order_id=order.id,
        description=description,
        ip_address=ip_address,
        context={"fields": fields, "previous_status": previous_status, "status": order.status},
    )
    return order


def delete_work_order(db: Session, order: WorkOrder, actor: User, ip_address: Optional[str] = None) -> None:
    """Delete an order with everything it owns. Its documents are detached, not deleted."""
    ensure_admin(actor, "Only administrators can delete work orders")
    order_id = order.id
    order_number = order.order_number

    with atomic(db, "delete_work_order"):
        db.query(DocumentPermission).filter(DocumentPermission.work_order_id == order_id).delete(synchronize_session=False)
        # Per-order links to catalog documents only exist for this order
        db.query(WorkOrderDocument).filter(
            WorkOrderDocument.work_order_id == order_id,
            WorkOrderDocument.equipment_document_id.isnot(None),
        ).delete(synchronize_session=False)
        db.query(WorkOrderDocument).filter(WorkOrderDocument.work_order_id == order_id).update(
            {WorkOrderDocument.work_order_id: None}, synchronize_session=False
        )
        # Reload collections so the cascade does not revisit rows removed above
        db.expire(order)
        db.delete(order)

    logger.info("work_order_deleted", work_order_id=str(order_id), order_number=order_number)
    log_activity(
        db,
        actor=actor,
        action="DELETE",
        entity_type="work_order",
        entity_id=order_id,
        work_order_id=order_id,
        description=f"Order deleted: {order_number}",
        ip_address=ip_address,
    )


def add_observation(
    db: Session,
    order: WorkOrder,
    payload: ObservationCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> WorkOrderObservation:
    ensure_can_access(actor, order)
    text = (payload.observation or "").strip()
    if not text:
        raise ValidationError("Observation text is required")

    with atomic(db, "add_observation"):
        observation = WorkOrderObservation(
            work_order_id=order.id,
            observation=text,
            observation_type=payload.observation_type or "general",
            created_by=actor.id,
        )
        db.add(observation)
        db.flush()
        observation_id = observation.id

    log_activity(
        db,
        actor=actor,
        action="CREATE",
        entity_type="observation",
        entity_id=observation_id,
        work_order_id=order.id,
        description="Observation added",
        ip_address=ip_address,
        context={"observation_type": payload.observation_type or "general"},
    )
    return observation


def add_photo(
    db: Session,
    order: WorkOrder,
    payload: WorkOrderPhotoCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> WorkOrderPhoto:
    """Record a photo already placed in storage."""
    ensure_can_access(actor, order)
    if not payload.photo_path.strip():
        raise ValidationError("Photo path is required")

    with atomic(db, "add_photo"):
        photo = WorkOrderPhoto(
            work_order_id=order.id,
            photo_path=payload.photo_path,
            photo_type=payload.photo_type.value,
            description=payload.description,
            uploaded_by=actor.id,
        )
        db.add(photo)
        db.flush()
        photo_id = photo.id

    log_activity(
        db,
        actor=actor,
        action="CREATE",
        entity_type="photo",
        entity_id=photo_id,
        work_order_id=order.id,
        description="Photo uploaded",
        ip_address=ip_address,
        context={"photo_type": payload.photo_type.value},
    )
    return photo


def delete_photo(
    db: Session,
    order: WorkOrder,
    photo_id: uuid.UUID,
    actor: User,
    ip_address: Optional[str] = None,
) -> str:
    """Remove a photo record of the order; returns its storage path for cleanup."""
    ensure_can_access(actor, order)
    photo = (
        db.query(WorkOrderPhoto)
        .filter(WorkOrderPhoto.id == photo_id, WorkOrderPhoto.work_order_id == order.id)
        .first()
    )
    if not photo:
        raise NotFoundError("Photo not found")
    photo_path = photo.photo_path

    with atomic(db, "delete_photo"):
        db.delete(photo)

    log_activity(
        db,
        actor=actor,
        action="DELETE",
        entity_type="photo",
        entity_id=photo_id,
        work_order_id=order.id,
        description="Photo deleted",
        ip_address=ip_address,
    )
    return photo_path


def add_conformity_signature(
    db: Session,
    order: WorkOrder,
    payload: ConformitySignatureCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> ConformitySignature:
    ensure_can_access(actor, order)
    signed_by = (payload.signed_by or "").strip()
    if not payload.signature_data or not signed_by:
        raise ValidationError("Signature and signer name are required")

    with atomic(db, "add_conformity_signature"):
        signature = ConformitySignature(
            work_order_id=order.id,
            signature_data=payload.signature_data,
            signed_by_name=signed_by,
        )
        db.add(signature)
        db.flush()
        signature_id = signature.id

    log_activity(
        db,
        actor=actor,
        action="CONFORMITY_SIGNATURE",
        entity_type="work_order",
        entity_id=signature_id,
        work_order_id=order.id,
        description=f"Conformity signed by {signed_by}",
        ip_address=ip_address,
    )
    return signature


def latest_signature(db: Session, order: WorkOrder) -> Optional[ConformitySignature]:
    """The most recent signature is the authoritative one."""
    return (
        db.query(ConformitySignature)
        .filter(ConformitySignature.work_order_id == order.id)
        .order_by(ConformitySignature.signed_at.desc())
        .first()
    )
