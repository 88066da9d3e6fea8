from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from datetime import datetime
import uuid
import logging

from .. import models
from ..errors import InvalidStatusTransitionError

logger = logging.getLogger(__name__)

S = models.OrderStatus

# Statuses an order can be parked from and resumed to
_HOLDABLE = [S.PENDING, S.MEASUREMENT_CONFIRMED, S.READY_FOR_OPTIMIZATION, S.OPTIMIZATION_COMPLETE,
             S.OPTIMIZATION_FAILED, S.CUTTING, S.ASSEMBLY, S.QC, S.PACKED, S.READY_FOR_DISPATCH]

_TRANSITIONS = {
    S.PENDING: [S.MEASUREMENT_CONFIRMED, S.ON_HOLD, S.CANCELLED],
    S.MEASUREMENT_CONFIRMED: [S.READY_FOR_OPTIMIZATION, S.PENDING, S.ON_HOLD, S.CANCELLED],
    S.READY_FOR_OPTIMIZATION: [S.OPTIMIZATION_COMPLETE, S.OPTIMIZATION_FAILED, S.MEASUREMENT_CONFIRMED,
                               S.ON_HOLD, S.CANCELLED],
    S.OPTIMIZATION_COMPLETE: [S.OPTIMIZATION_COMPLETE, S.OPTIMIZATION_FAILED, S.CUTTING,
                              S.READY_FOR_OPTIMIZATION, S.ON_HOLD, S.CANCELLED],
    S.OPTIMIZATION_FAILED: [S.OPTIMIZATION_COMPLETE, S.OPTIMIZATION_FAILED, S.READY_FOR_OPTIMIZATION,
                            S.MEASUREMENT_CONFIRMED, S.ON_HOLD, S.CANCELLED],
    S.CUTTING: [S.ASSEMBLY, S.ON_HOLD],
    S.ASSEMBLY: [S.QC, S.ON_HOLD],
    S.QC: [S.PACKED, S.ASSEMBLY, S.ON_HOLD],
    S.PACKED: [S.READY_FOR_DISPATCH, S.ON_HOLD],
    S.READY_FOR_DISPATCH: [S.DELIVERED, S.ON_HOLD],
    S.DELIVERED: [S.COMPLETED],
    S.COMPLETED: [],  # Terminal state
    S.ON_HOLD: _HOLDABLE + [S.CANCELLED],
    S.CANCELLED: [],  # Terminal state
}

VALID_TRANSITIONS: Dict[str, List[str]] = {
    current.value: [target.value for target in targets] for current, targets in _TRANSITIONS.items()
}

# Set only by plan generation and plan commit, never directly by a user
SYSTEM_STATUSES = {s.value for s in (S.OPTIMIZATION_COMPLETE, S.OPTIMIZATION_FAILED, S.CUTTING)}

# Plan generation may (re)run from these statuses
OPTIMIZABLE_STATUSES = {s.value for s in (S.READY_FOR_OPTIMIZATION, S.OPTIMIZATION_COMPLETE, S.OPTIMIZATION_FAILED)}


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """True if an order may move from ``current_status`` to ``new_status``."""
    if current_status not in VALID_TRANSITIONS:
        return False
    return new_status in VALID_TRANSITIONS[current_status]


class OrderWorkflowService:
    """
    Status changes of fabrication orders.
    Every change is validated against the order state machine and appended to
    the order's status history.
    """

    def __init__(self, db: Session, user_id: Optional[uuid.UUID] = None):
        self.db = db
        self.user_id = user_id

    def advance(
        self,
        order: models.Order,
        new_status: str,
        notes: Optional[str] = None,
        system: bool = False,
        commit: bool = True
    ) -> models.Order:
        """
        Move an order to a new status.

        Args:
            order: Order to update
            new_status: Target status
            notes: Optional notes stored with the history entry
            system: True when called by plan generation/commit, which may set
                the optimization and cutting statuses
            commit: Whether to commit the transaction
        """
        new_status = models.OrderStatus(new_status).value
        old_status = order.status

        if not system and new_status in SYSTEM_STATUSES:
            raise InvalidStatusTransitionError(
                f"Order status '{new_status}' is set by cutting plan generation/commit",
                current_status=old_status, new_status=new_status,
            )
        if not validate_status_transition(old_status, new_status):
            raise InvalidStatusTransitionError(
                f"Invalid status transition from '{old_status}' to '{new_status}'",
                current_status=old_status, new_status=new_status,
            )
        if new_status == S.CUTTING and order.cutting_plan_status != models.OrderCuttingPlanStatus.COMMITTED.value:
            raise InvalidStatusTransitionError(
                "Order cannot move to Cutting before its cutting plan is committed",
                current_status=old_status, new_status=new_status,
            )

        order.status = new_status
        order.updated_at = datetime.utcnow()
        self.record_history(order, new_status, notes)

        logger.info(f"Status updated for Order {order.frontend_id or order.id}: {old_status} -> {new_status}")
        if notes:
            logger.info(f"Status change notes: {notes}")

        if commit:
            try:
                self.db.commit()
                self.db.refresh(order)
                logger.info(f"Status change committed for Order {order.id}")
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to commit status change for Order {order.id}: {e}")
                raise

        return order

    def record_history(self, order: models.Order, status: str, notes: Optional[str] = None) -> None:
        order.status_history.append(
            models.OrderStatusHistory(
                sequence=len(order.status_history),
                status=status,
                notes=notes,
                updated_by=self.user_id,
            )
        )

    def mark_optimization_failed(self, order: models.Order, reason: str) -> None:
        """Record a failed plan generation on the order (not committed)."""
        order.cutting_plan_status = models.OrderCuttingPlanStatus.FAILED.value
        if order.status == S.OPTIMIZATION_FAILED:
            self.record_history(order, order.status, f"Cutting plan generation failed: {reason}")
            return
        self.advance(order, S.OPTIMIZATION_FAILED, notes=f"Cutting plan generation failed: {reason}",
                     system=True, commit=False)
