"""
Access checks for work orders.
"""
from ..auth.security import is_admin, is_technician
from ..errors import AccessDenied
from ..models.models import User, WorkOrder


def is_assigned_technician(user: User, order: WorkOrder) -> bool:
    return is_technician(user) and order.assigned_technician_id == user.id


def can_access(user: User, order: WorkOrder) -> bool:
    """
    Check if user can read or act on an order.
    - Admin can access any order
    - Technician only orders assigned to them
    """
    if is_admin(user):
        return True
    return is_assigned_technician(user, order)


def ensure_can_access(user: User, order: WorkOrder) -> None:
    if not can_access(user, order):
        raise AccessDenied("You do not have access to this work order")


def ensure_admin(user: User, message: str = "Administrator access required") -> None:
    if not is_admin(user):
        raise AccessDenied(message)
