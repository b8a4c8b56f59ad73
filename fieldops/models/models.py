import uuid
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


# =====================
# Identity (owned by the auth service, read here)
# =====================

class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # admin|technician
    description: Mapped[Optional[str]] = mapped_column(String(255))

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    roles = relationship("Role", secondary=user_roles, back_populates="users", lazy="selectin")


# =====================
# Reference data (clients, equipment catalog, service catalog)
# =====================

class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class EquipmentBrand(Base):
    __tablename__ = "equipment_brands"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class EquipmentModel(Base):
    __tablename__ = "equipment_models"

    id: Mapped[uuid.UUID] = uuid_pk()
    brand_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_brands.id", ondelete="CASCADE"), nullable=False, index=True)
    model_name: Mapped[str] = mapped_column(String(255), nullable=False)
    components: Mapped[Optional[dict]] = mapped_column(JSON)

    brand = relationship("EquipmentBrand")


class EquipmentHousing(Base):
    """Catalog housing of an equipment model (not to be confused with WorkOrderHousing)"""
    __tablename__ = "equipment_housings"

    id: Mapped[uuid.UUID] = uuid_pk()
    model_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_models.id", ondelete="CASCADE"), nullable=False, index=True)
    housing_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("model_id", "housing_name", name="uq_model_housing"),
    )


class Equipment(Base):
    """A client-owned equipment unit"""
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    model_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_models.id"), nullable=False, index=True)
    housing_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_housings.id", ondelete="SET NULL"))
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), index=True)
    serial_number: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    model = relationship("EquipmentModel")


class Service(Base):
    """Service catalog entry"""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# =====================
# Work order aggregate
# =====================

class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)  # OT-000001
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id"), nullable=False, index=True)
    # Legacy single-service fields; only read when the order has no service assignments
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("services.id", ondelete="SET NULL"))
    service_housing_count: Mapped[int] = mapped_column(Integer, default=0)
    service_location: Mapped[Optional[str]] = mapped_column(String(100))
    client_service_order_number: Mapped[Optional[str]] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(20), default="medium", index=True)  # low|medium|high|urgent
    status: Mapped[str] = mapped_column(String(20), default="created", index=True)  # created|assigned|in_progress|completed|accepted|on_hold|cancelled
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # set once, on first in_progress
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # set once, on first completed
    assigned_technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    client = relationship("Client")
    equipment = relationship("Equipment")
    legacy_service = relationship("Service", foreign_keys=[service_id])
    technician = relationship("User", foreign_keys=[assigned_technician_id])
    creator = relationship("User", foreign_keys=[created_by])
    services = relationship("WorkOrderService", back_populates="work_order", cascade="all, delete-orphan", order_by="WorkOrderService.position")
    housings = relationship("WorkOrderHousing", back_populates="work_order", cascade="all, delete-orphan", order_by="WorkOrderHousing.position")
    measurements = relationship("Measurement", back_populates="work_order", cascade="all, delete-orphan", order_by="Measurement.measurement_date")
    observations = relationship("WorkOrderObservation", back_populates="work_order", cascade="all, delete-orphan", order_by="WorkOrderObservation.created_at")
    signatures = relationship("ConformitySignature", back_populates="work_order", cascade="all, delete-orphan", order_by="ConformitySignature.signed_at.desc()")
    document_permissions = relationship("DocumentPermission", back_populates="work_order", cascade="all, delete-orphan")
    photos = relationship("WorkOrderPhoto", back_populates="work_order", cascade="all, delete-orphan", order_by="WorkOrderPhoto.created_at")

    __table_args__ = (
        Index('idx_work_orders_status_technician', 'status', 'assigned_technician_id'),
    )


class WorkOrderService(Base):
    """A catalog service attached to a work order, with its declared housing count"""
    __tablename__ = "work_order_services"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    housing_count: Mapped[int] = mapped_column(Integer, default=0)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_order = relationship("WorkOrder", back_populates="services")
    service = relationship("Service")
    housings = relationship("WorkOrderHousing", back_populates="work_order_service", cascade="all, delete-orphan", order_by="WorkOrderHousing.position")

    __table_args__ = (
        UniqueConstraint("work_order_id", "service_id", name="uq_work_order_service"),
    )


class WorkOrderHousing(Base):
    """Inspection/measurement point of a service assignment, labelled A, B, ... AA"""
    __tablename__ = "work_order_housings"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL only for legacy rows that predate per-service housings
    work_order_service_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_order_services.id", ondelete="CASCADE"), index=True)
    measure_code: Mapped[str] = mapped_column(String(10), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[Optional[str]] = mapped_column(Text)
    nominal_value: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    nominal_unit: Mapped[Optional[str]] = mapped_column(String(20))
    tolerance: Mapped[Optional[str]] = mapped_column(String(50))  # e.g. +0.5, -0.3, ±0.2
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_order = relationship("WorkOrder", back_populates="housings")
    work_order_service = relationship("WorkOrderService", back_populates="housings")

    __table_args__ = (
        UniqueConstraint("work_order_service_id", "measure_code", name="uq_work_order_service_measure"),
    )


class Measurement(Base):
    """A dated measurement event (initial or final)"""
    __tablename__ = "measurements"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    measurement_type: Mapped[str] = mapped_column(String(20), nullable=False)  # initial|final
    measurement_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    temperature: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    pressure: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    voltage: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    current: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    resistance: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    other_measurements: Mapped[Optional[dict]] = mapped_column(JSON)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    taken_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))

    work_order = relationship("WorkOrder", back_populates="measurements")
    readings = relationship("HousingMeasurement", back_populates="measurement", cascade="all, delete-orphan")


class HousingMeasurement(Base):
    """x1/y1 reading of one work order housing within a measurement event"""
    __tablename__ = "work_order_housing_measurements"

    id: Mapped[uuid.UUID] = uuid_pk()
    measurement_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("measurements.id", ondelete="CASCADE"), nullable=False, index=True)
    housing_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_order_housings.id", ondelete="CASCADE"), nullable=False, index=True)
    x1: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    y1: Mapped[Optional[float]] = mapped_column(Numeric(10, 3, asdecimal=False))
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    measurement = relationship("Measurement", back_populates="readings")
    housing = relationship("WorkOrderHousing")

    __table_args__ = (
        UniqueConstraint("measurement_id", "housing_id", name="uq_measurement_housing"),
    )


class WorkOrderObservation(Base):
    __tablename__ = "work_order_observations"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    observation: Mapped[str] = mapped_column(Text, nullable=False)
    observation_type: Mapped[str] = mapped_column(String(50), default="general")
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_order = relationship("WorkOrder", back_populates="observations")
    author = relationship("User")


class ConformitySignature(Base):
    """Client sign-off; the most recent one is authoritative"""
    __tablename__ = "work_order_conformity_signatures"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)  # data URL of the signature image
    signed_by_name: Mapped[str] = mapped_column(String(200), nullable=False)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    work_order = relationship("WorkOrder", back_populates="signatures")


class WorkOrderPhoto(Base):
    """Photo taken on site; the file itself lives in storage"""
    __tablename__ = "work_order_photos"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    photo_path: Mapped[str] = mapped_column(String(255), nullable=False)
    photo_type: Mapped[str] = mapped_column(String(50), default="during_service")  # inspection|during_service|completion
    description: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_order = relationship("WorkOrder", back_populates="photos")
    uploader = relationship("User")


# =====================
# Documents (shared between equipment and work orders)
# =====================

class EquipmentDocument(Base):
    """Catalog document scoped to an equipment brand, model and/or housing"""
    __tablename__ = "equipment_documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    brand_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_brands.id", ondelete="CASCADE"), index=True)
    model_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_models.id", ondelete="CASCADE"), index=True)
    housing_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_housings.id", ondelete="CASCADE"), index=True)
    document_type: Mapped[str] = mapped_column(String(50), default="other")  # blueprint|manual|specification|other
    file_path: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class WorkOrderDocument(Base):
    """Document linked to a work order and/or an equipment unit.

    Rows with equipment_document_id set are per-order links to a catalog document,
    created when an admin sets a visibility permission on it.
    """
    __tablename__ = "work_order_documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    # SET NULL: removing an order must not delete the document
    work_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="SET NULL"), index=True)
    equipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="SET NULL"), index=True)
    equipment_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_documents.id", ondelete="SET NULL"), index=True)
    document_type: Mapped[str] = mapped_column(String(50), default="other")
    file_path: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    equipment_document = relationship("EquipmentDocument")


class DocumentPermission(Base):
    """Technician visibility of a document within one work order; no row means visible"""
    __tablename__ = "work_order_document_permissions"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_order_documents.id", ondelete="CASCADE"), nullable=False)
    is_visible_to_technician: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_order = relationship("WorkOrder", back_populates="document_permissions")

    __table_args__ = (
        UniqueConstraint("work_order_id", "document_id", name="uq_work_order_document"),
    )


# =====================
# Activity log, sequences, schema versioning
# =====================

class ActivityLog(Base):
    """Append-only activity log (bitácora). Rows are never updated or deleted."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = uuid_pk()
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # admin|technician|system
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|CONFORMITY_SIGNATURE
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # work_order|measurement|document|observation
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    work_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)  # owning order, kept after the order is deleted
    description: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # {measurement_type, housing_count, ...}
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    actor = relationship("User")

    __table_args__ = (
        Index('idx_activity_entity', 'entity_type', 'entity_id'),
    )


class OrderSequence(Base):
    """Named counter advanced by compare-and-swap"""
    __tablename__ = "order_sequences"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
