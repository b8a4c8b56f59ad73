import uuid
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from ..services.visibility import to_visibility_flag


# Enums
class WorkOrderStatus(str, Enum):
    created = "created"
    assigned = "assigned"
    in_progress = "in_progress"
    completed = "completed"
    accepted = "accepted"
    on_hold = "on_hold"
    cancelled = "cancelled"


class WorkOrderPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class MeasurementType(str, Enum):
    initial = "initial"
    final = "final"


class PhotoType(str, Enum):
    inspection = "inspection"
    during_service = "during_service"
    completion = "completion"


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and v.strip() == "":
        return None
    return v


class ApiModel(BaseModel):
    """Accepts camelCase (clientId) as well as snake_case (client_id) keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# Services and housings
class HousingIn(ApiModel):
    measure_code: Optional[str] = None
    description: Optional[str] = None
    nominal_value: Optional[float] = None
    nominal_unit: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("nominalUnit", "nominal_unit", "unit"),
    )
    tolerance: Optional[str] = None

    @field_validator("measure_code", "nominal_value", "nominal_unit", "tolerance", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class ServiceAssignmentIn(ApiModel):
    service_id: Optional[uuid.UUID] = None
    housing_count: Optional[int] = None
    housings: Optional[List[HousingIn]] = None  # omitted: housings are generated from housing_count

    @field_validator("service_id", "housing_count", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


# Work orders
class WorkOrderCreate(ApiModel):
    client_id: Optional[uuid.UUID] = None
    equipment_id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    description: Optional[str] = None
    priority: WorkOrderPriority = WorkOrderPriority.medium
    scheduled_date: Optional[date] = None
    assigned_technician_id: Optional[uuid.UUID] = None
    service_location: Optional[str] = None
    client_service_order_number: Optional[str] = None
    services: List[ServiceAssignmentIn] = []

    @field_validator("client_id", "equipment_id", "assigned_technician_id", "scheduled_date", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class WorkOrderUpdate(ApiModel):
    """Partial update. A field is applied only if the caller sent it
    (see ``is_set``); sending null is different from leaving it out."""
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[WorkOrderPriority] = None
    scheduled_date: Optional[date] = None
    assigned_technician_id: Optional[uuid.UUID] = None
    status: Optional[WorkOrderStatus] = None
    service_location: Optional[str] = None
    client_service_order_number: Optional[str] = None
    equipment_id: Optional[uuid.UUID] = None
    services: Optional[List[ServiceAssignmentIn]] = None

    @field_validator("assigned_technician_id", "equipment_id", "scheduled_date", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)

    def is_set(self, field: str) -> bool:
        return field in self.model_fields_set

    def set_fields(self) -> List[str]:
        return sorted(self.model_fields_set)


# Measurements
class HousingReadingIn(ApiModel):
    # Kept as text: an id that is not a UUID simply does not resolve
    housing_id: Optional[str] = None
    x1: Optional[float] = None
    y1: Optional[float] = None
    unit: Optional[str] = None

    @field_validator("housing_id", mode="before")
    @classmethod
    def _id_as_text(cls, v):
        v = _blank_to_none(v)
        return str(v) if v is not None else None

    @field_validator("x1", "y1", "unit", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class MeasurementCreate(ApiModel):
    measurement_type: Optional[str] = None
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    resistance: Optional[float] = None
    other_measurements: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    housing_measurements: Optional[List[HousingReadingIn]] = None

    @field_validator("temperature", "pressure", "voltage", "current", "resistance", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


# Documents
EQUIPMENT_DOCUMENT_PREFIX = "equip_"


class DocumentPermissionIn(ApiModel):
    document_id: str  # work order document UUID, or "equip_<uuid>" for an equipment catalog document
    is_visible_to_technician: bool = False

    @field_validator("document_id", mode="before")
    @classmethod
    def _id_as_text(cls, v):
        return str(v) if v is not None else v

    @field_validator("is_visible_to_technician", mode="before")
    @classmethod
    def _canonical_flag(cls, v):
        return to_visibility_flag(v)


class DocumentPermissionsUpdate(ApiModel):
    document_permissions: List[DocumentPermissionIn] = []


class WorkOrderDocumentCreate(ApiModel):
    document_type: str = "other"
    file_path: str
    file_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    description: Optional[str] = None


class WorkOrderPhotoCreate(ApiModel):
    photo_path: str
    photo_type: PhotoType = PhotoType.during_service
    description: Optional[str] = None

    @field_validator("photo_type", mode="before")
    @classmethod
    def _default_type(cls, v):
        return _blank_to_none(v) or PhotoType.during_service


# Observations and sign-off
class ObservationCreate(ApiModel):
    observation: Optional[str] = None
    observation_type: Optional[str] = None


class ConformitySignatureCreate(ApiModel):
    signature_data: Optional[str] = None
    signed_by: Optional[str] = None
