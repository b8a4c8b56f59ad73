"""
Activity log service.
Append-only activity log (bitácora) with integrity hashing.

Entries are written after the domain change they describe has committed, in
their own commit. A failed write is rolled back and logged; it never fails the
operation that triggered it.
"""
import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, List

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import ActivityLog, User
from ..auth.security import primary_role

logger = structlog.get_logger(__name__)


def _naive_utc(value: datetime) -> datetime:
    # Stores differ on whether they hand back tz-aware values
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def compute_integrity_hash(
    *,
    entity_type: str,
    entity_id: Optional[uuid.UUID],
    action: str,
    actor_id: Optional[uuid.UUID],
    description: str,
    timestamp_utc: datetime,
    work_order_id: Optional[uuid.UUID] = None,
    context: Optional[Dict] = None,
    secret: Optional[str] = None,
) -> str:
    if secret is None:
        secret = settings.activity_integrity_secret or settings.jwt_secret
    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id) if entity_id else None,
        "work_order_id": str(work_order_id) if work_order_id else None,
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "description": description,
        "timestamp_utc": _naive_utc(timestamp_utc).isoformat(),
        "context": context,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def log_activity(
    db: Session,
    *,
    actor: Optional[User],
    action: str,
    entity_type: str,
    entity_id: Optional[uuid.UUID],
    description: str,
    work_order_id: Optional[uuid.UUID] = None,
    ip_address: Optional[str] = None,
    context: Optional[Dict] = None,
) -> Optional[ActivityLog]:
    """Append one entry. Returns None if the write failed."""
    actor_id = actor.id if actor is not None else None
    timestamp_utc = datetime.now(timezone.utc)
    try:
        entry = ActivityLog(
            actor_id=actor_id,
            actor_role=primary_role(actor) if actor is not None else "system",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            work_order_id=work_order_id,
            description=description,
            ip_address=ip_address,
            context=context,
            timestamp_utc=timestamp_utc,
            integrity_hash=compute_integrity_hash(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                description=description,
                timestamp_utc=timestamp_utc,
                work_order_id=work_order_id,
                context=context,
            ),
        )
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "activity_log_write_failed",
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else None,
            error=str(e),
        )
        return None


def verify_entry(entry: ActivityLog, secret: Optional[str] = None) -> bool:
    """True if the stored hash still matches the entry's fields."""
    if not entry.integrity_hash:
        return False
    expected = compute_integrity_hash(
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        actor_id=entry.actor_id,
        description=entry.description,
        timestamp_utc=entry.timestamp_utc,
        work_order_id=entry.work_order_id,
        context=entry.context,
        secret=secret,
    )
    return expected == entry.integrity_hash


def get_work_order_activity(db: Session, work_order_id: uuid.UUID, limit: int = 500) -> List[ActivityLog]:
    """Entries about an order and everything recorded on it, oldest first."""
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.work_order_id == work_order_id)
        .order_by(ActivityLog.timestamp_utc.asc())
        .limit(limit)
        .all()
    )
