"""
Service/housing configuration of a work order.

Each service assignment carries its own lettered housings (A, B, ... Z, AA, ...),
restarting at A per service. Replacing the configuration drops every service
assignment and its housings and inserts the new set.
"""
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..errors import ValidationError, NotFoundError
from ..models.models import WorkOrder, WorkOrderService, WorkOrderHousing, Service
from ..schemas.work_orders import ServiceAssignmentIn, HousingIn

logger = structlog.get_logger(__name__)


def measure_code(index: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA, 702 -> ZZ, 703 -> AAA."""
    if index < 1:
        raise ValueError("measure code index starts at 1")
    letters = []
    n = index
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def measure_codes(count: int) -> List[str]:
    return [measure_code(i) for i in range(1, count + 1)]


def _check_nominal(housing: HousingIn, code: str) -> None:
    has_value = housing.nominal_value is not None
    has_unit = bool(housing.nominal_unit)
    if has_value and not has_unit:
        raise ValidationError(f"Housing {code}: nominal unit is required when a nominal value is given")
    if has_unit and not has_value:
        raise ValidationError(f"Housing {code}: nominal value is required when a nominal unit is given")


def _resolve_housings(assignment: ServiceAssignmentIn, service_label: str) -> List[HousingIn]:
    """Validated housing list for one service; generated when none are supplied."""
    declared = assignment.housing_count or 0
    if declared < 0:
        raise ValidationError(f"Service {service_label}: housing count cannot be negative")

    if assignment.housings is None:
        return [HousingIn(measure_code=code) for code in measure_codes(declared)]

    supplied = assignment.housings
    if declared and declared != len(supplied):
        raise ValidationError(
            f"Service {service_label}: housing count {declared} does not match {len(supplied)} housings"
        )
    # All-or-nothing: check every entry before anything is built
    for position, housing in enumerate(supplied, start=1):
        code = (housing.measure_code or "").strip()
        if not code:
            raise ValidationError(f"Service {service_label}: every housing needs a measure code")
        expected = measure_code(position)
        if code.upper() != expected:
            raise ValidationError(
                f"Service {service_label}: housing {position} must have measure code {expected}, got {code}"
            )
        _check_nominal(housing, expected)
    return supplied


def _plan(db: Session, services: List[ServiceAssignmentIn]) -> List[Tuple[Service, List[HousingIn]]]:
    planned = []
    seen = set()
    for assignment in services:
        if assignment.service_id is None:
            raise ValidationError("Service ID is required for every service")
        if assignment.service_id in seen:
            raise ValidationError(f"Service {assignment.service_id} is listed more than once")
        seen.add(assignment.service_id)
        service: Optional[Service] = db.query(Service).filter(Service.id == assignment.service_id).first()
        if not service:
            raise NotFoundError(f"Service {assignment.service_id} not found")
        planned.append((service, _resolve_housings(assignment, service.code or service.name)))
    return planned


def _attach(order: WorkOrder, planned: List[Tuple[Service, List[HousingIn]]]) -> List[WorkOrderService]:
    created = []
    for position, (service, housings) in enumerate(planned):
        assignment = WorkOrderService(
            service_id=service.id,
            housing_count=len(housings),
            position=position,
        )
        for index, housing in enumerate(housings):
            assignment.housings.append(
                WorkOrderHousing(
                    work_order=order,
                    measure_code=measure_code(index + 1),
                    position=index,
                    description=housing.description,
                    nominal_value=housing.nominal_value,
                    nominal_unit=housing.nominal_unit,
                    tolerance=housing.tolerance,
                )
            )
        order.services.append(assignment)
        created.append(assignment)
    return created


def build_services(db: Session, order: WorkOrder, services: List[ServiceAssignmentIn]) -> List[WorkOrderService]:
    """Validate the submission and attach new assignments to ``order``.

    Nothing is attached unless every service in the submission is valid.
    """
    return _attach(order, _plan(db, services))


def replace_services(db: Session, order: WorkOrder, services: List[ServiceAssignmentIn]) -> List[WorkOrderService]:
    """Delete-then-reinsert the order's whole service/housing configuration."""
    planned = _plan(db, services)

    removed = len(order.services)
    # Legacy housings (no assignment) stay with the order
    order.housings[:] = [h for h in order.housings if h.work_order_service is None]
    order.services.clear()
    db.flush()

    created = _attach(order, planned)
    logger.info(
        "work_order_services_replaced",
        work_order_id=str(order.id),
        removed=removed,
        added=len(created),
    )
    return created
