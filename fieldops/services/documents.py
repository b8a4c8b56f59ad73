"""
Document visibility resolver.

An order's documents are the ones linked to the order or to its equipment unit,
plus the equipment catalog documents matching the unit's brand, model or housing.
Catalog documents are addressed as ``equip_<uuid>`` until an administrator sets
a permission on one, which creates a per-order link row for it.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import is_admin
from ..db import atomic
from ..errors import ValidationError
from ..models.models import (
    DocumentPermission,
    EquipmentDocument,
    EquipmentModel,
    User,
    WorkOrder,
    WorkOrderDocument,
)
from ..schemas.work_orders import (
    EQUIPMENT_DOCUMENT_PREFIX,
    DocumentPermissionsUpdate,
    WorkOrderDocumentCreate,
)
from .activity import log_activity
from .permissions import ensure_admin, ensure_can_access
from .visibility import effective_visibility

logger = structlog.get_logger(__name__)


def _document_dict(doc, document_id: str, visible: bool, equipment_document_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    return {
        "id": document_id,
        "document_type": doc.document_type,
        "file_path": doc.file_path,
        "file_name": doc.file_name,
        "file_size": doc.file_size,
        "mime_type": doc.mime_type,
        "description": doc.description,
        "equipment_document_id": str(equipment_document_id) if equipment_document_id else None,
        "is_equipment_document": document_id.startswith(EQUIPMENT_DOCUMENT_PREFIX),
        "is_visible_to_technician": visible,
        "created_at": doc.created_at.isoformat() if doc.created_at else None,
    }


def _catalog_documents(db: Session, order: WorkOrder) -> List[EquipmentDocument]:
    equipment = order.equipment
    if equipment is None:
        return []
    conditions = [EquipmentDocument.model_id == equipment.model_id]
    model = db.query(EquipmentModel).filter(EquipmentModel.id == equipment.model_id).first()
    if model is not None:
        conditions.append(EquipmentDocument.brand_id == model.brand_id)
    if equipment.housing_id is not None:
        conditions.append(EquipmentDocument.housing_id == equipment.housing_id)
    return (
        db.query(EquipmentDocument)
        .filter(or_(*conditions))
        .order_by(EquipmentDocument.created_at)
        .all()
    )


def _permissions(db: Session, order: WorkOrder) -> Dict[uuid.UUID, bool]:
    rows = db.query(DocumentPermission).filter(DocumentPermission.work_order_id == order.id).all()
    return {row.document_id: row.is_visible_to_technician for row in rows}


def resolve_documents(db: Session, order: WorkOrder, user: User) -> List[Dict[str, Any]]:
    """Effective document list of an order as seen by ``user``.

    Administrators get every document with its visibility flag; technicians
    only the visible ones.
    """
    linked = (
        db.query(WorkOrderDocument)
        .filter(
            or_(
                WorkOrderDocument.work_order_id == order.id,
                WorkOrderDocument.equipment_id == order.equipment_id,
            )
        )
        .order_by(WorkOrderDocument.created_at)
        .all()
    )
    permissions = _permissions(db, order)

    # One row per catalog document; the per-order link carries the permission
    chosen: Dict[uuid.UUID, WorkOrderDocument] = {}
    for doc in linked:
        catalog_id = doc.equipment_document_id
        if catalog_id is None:
            continue
        if catalog_id not in chosen or (
            doc.work_order_id == order.id and chosen[catalog_id].work_order_id != order.id
        ):
            chosen[catalog_id] = doc
    linked_catalog_ids = set(chosen)

    documents = []
    for doc in linked:
        if doc.equipment_document_id is not None and chosen[doc.equipment_document_id] is not doc:
            continue
        documents.append(
            _document_dict(
                doc,
                str(doc.id),
                visible=effective_visibility(permissions.get(doc.id)),
                equipment_document_id=doc.equipment_document_id,
            )
        )

    for catalog_doc in _catalog_documents(db, order):
        if catalog_doc.id in linked_catalog_ids:
            continue
        # No link row yet, so no permission row can exist either
        documents.append(
            _document_dict(
                catalog_doc,
                f"{EQUIPMENT_DOCUMENT_PREFIX}{catalog_doc.id}",
                visible=effective_visibility(None),
                equipment_document_id=catalog_doc.id,
            )
        )

    if is_admin(user):
        return documents
    return [d for d in documents if d["is_visible_to_technician"]]


def _link_catalog_document(db: Session, order: WorkOrder, raw_id: str) -> Optional[uuid.UUID]:
    """Find or create the per-order link row of a catalog document."""
    try:
        catalog_id = uuid.UUID(raw_id[len(EQUIPMENT_DOCUMENT_PREFIX):])
    except ValueError:
        return None
    existing = (
        db.query(WorkOrderDocument)
        .filter(
            WorkOrderDocument.work_order_id == order.id,
            WorkOrderDocument.equipment_document_id == catalog_id,
        )
        .first()
    )
    if existing:
        return existing.id
    catalog_doc = db.query(EquipmentDocument).filter(EquipmentDocument.id == catalog_id).first()
    if not catalog_doc:
        return None
    link = WorkOrderDocument(
        work_order_id=order.id,
        equipment_document_id=catalog_doc.id,
        document_type=catalog_doc.document_type or "other",
        file_path=catalog_doc.file_path,
        file_name=catalog_doc.file_name,
        file_size=catalog_doc.file_size,
        mime_type=catalog_doc.mime_type,
        description=catalog_doc.description,
        uploaded_by=catalog_doc.uploaded_by,
    )
    db.add(link)
    db.flush()
    return link.id


def _resolve_document_id(db: Session, order: WorkOrder, raw_id: str) -> Optional[uuid.UUID]:
    if raw_id.startswith(EQUIPMENT_DOCUMENT_PREFIX):
        return _link_catalog_document(db, order, raw_id)
    try:
        document_id = uuid.UUID(raw_id)
    except ValueError:
        return None
    exists = db.query(WorkOrderDocument.id).filter(WorkOrderDocument.id == document_id).first()
    return document_id if exists else None


def replace_document_permissions(
    db: Session,
    order: WorkOrder,
    payload: DocumentPermissionsUpdate,
    actor: User,
    ip_address: Optional[str] = None,
) -> int:
    """Replace every permission row of the order; returns how many were written."""
    ensure_admin(actor, "Only administrators can change document permissions")

    skipped = []
    with atomic(db, "replace_document_permissions"):
        db.query(DocumentPermission).filter(DocumentPermission.work_order_id == order.id).delete(
            synchronize_session=False
        )
        # Last entry wins when a document is listed twice
        resolved: Dict[uuid.UUID, bool] = {}
        for entry in payload.document_permissions:
            document_id = _resolve_document_id(db, order, entry.document_id)
            if document_id is None:
                skipped.append(entry.document_id)
                continue
            resolved[document_id] = entry.is_visible_to_technician
        for document_id, visible in resolved.items():
            db.add(
                DocumentPermission(
                    work_order_id=order.id,
                    document_id=document_id,
                    is_visible_to_technician=visible,
                )
            )

    if skipped:
        logger.warning("document_permissions_skipped", work_order_id=str(order.id), document_ids=skipped)
    hidden = sum(1 for visible in resolved.values() if not visible)
    log_activity(
        db,
        actor=actor,
        action="UPDATE",
        entity_type="document",
        entity_id=order.id,
        work_order_id=order.id,
        description="Document permissions updated",
        ip_address=ip_address,
        context={"documents": len(resolved), "hidden": hidden},
    )
    return len(resolved)


def register_document(
    db: Session,
    order: WorkOrder,
    payload: WorkOrderDocumentCreate,
    actor: User,
    ip_address: Optional[str] = None,
) -> WorkOrderDocument:
    """Record metadata of a file already placed in storage."""
    ensure_admin(actor, "Only administrators can add documents")
    if not payload.file_path.strip() or not payload.file_name.strip():
        raise ValidationError("File path and file name are required")

    with atomic(db, "register_document"):
        document = WorkOrderDocument(
            work_order_id=order.id,
            document_type=payload.document_type or "other",
            file_path=payload.file_path,
            file_name=payload.file_name,
            file_size=payload.file_size,
            mime_type=payload.mime_type,
            description=payload.description,
            uploaded_by=actor.id,
        )
        db.add(document)
        db.flush()
        document_id = document.id

    log_activity(
        db,
        actor=actor,
        action="CREATE",
        entity_type="document",
        entity_id=document_id,
        work_order_id=order.id,
        description=f"Document added: {payload.file_name}",
        ip_address=ip_address,
        context={"document_type": payload.document_type or "other"},
    )
    return document


def list_documents(db: Session, order: WorkOrder, user: User) -> List[Dict[str, Any]]:
    ensure_can_access(user, order)
    return resolve_documents(db, order, user)
