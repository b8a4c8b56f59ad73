"""
Work order number sequencer.

Numbers come from a counter row advanced by compare-and-swap: read the value,
then ``UPDATE ... WHERE value = <read value>``. If another transaction moved the
counter in between, the update matches no row and we read again.
"""
import structlog
from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import PersistenceError
from ..models.models import OrderSequence, WorkOrder

logger = structlog.get_logger(__name__)

ORDER_SEQUENCE_NAME = "work_order_number"


def format_order_number(value: int) -> str:
    return f"{settings.order_number_prefix}-{value:0{settings.order_number_width}d}"


def _ensure_sequence(db: Session, name: str) -> int:
    current = db.execute(select(OrderSequence.value).where(OrderSequence.name == name)).scalar_one_or_none()
    if current is not None:
        return current
    # Normally seeded by migrations; start after the existing orders otherwise
    start = db.execute(select(func.count()).select_from(WorkOrder)).scalar_one()
    db.add(OrderSequence(name=name, value=start))
    db.flush()
    return start


def next_value(db: Session, name: str = ORDER_SEQUENCE_NAME) -> int:
    """Advance the named counter by one inside the caller's transaction."""
    seen = _ensure_sequence(db, name)
    for attempt in range(settings.sequence_max_retries):
        result = db.execute(
            update(OrderSequence)
            .where(OrderSequence.name == name, OrderSequence.value == seen)
            .values(value=seen + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return seen + 1
        logger.info("order_sequence_contention", name=name, attempt=attempt + 1, seen=seen)
        seen = db.execute(select(OrderSequence.value).where(OrderSequence.name == name)).scalar_one()
    logger.error("order_sequence_exhausted", name=name, retries=settings.sequence_max_retries)
    raise PersistenceError("Could not allocate an order number, please retry")


def next_order_number(db: Session) -> str:
    return format_order_number(next_value(db))
