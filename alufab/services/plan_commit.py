"""
Commit of a Generated cutting plan against live stock.

The commit is one database transaction: batches are re-read under lock, the
FIFO selection is recomputed across all of the plan's materials against one
shared reservation map, every batch is decremented with a conditional
update and one Outward-OrderCut transaction is appended per batch drawn. Any
failure rolls the whole unit back.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import threading
import uuid
import weakref
import logging

from .. import models
from ..config import settings
from ..errors import (
    AlreadyCommittedError, InsufficientStockError, InvalidStatusTransitionError,
    MaterialNotFoundError, StockContentionError,
)
from .batch_planner import BatchConsumptionPlanner
from .material_ledger import apply_consumption, recompute_totals
from .order_workflow import OrderWorkflowService
from .plan_generator import CuttingPlanGenerator, demand_from_material_plan

logger = logging.getLogger(__name__)


class MaterialLockRegistry:
    """
    In-process exclusive locks, one per material id.

    Entries are weak: a lock is dropped once nobody holds or waits on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def _lock_for(self, material_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(material_id)
            if lock is None:
                lock = self._locks[material_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, material_ids: Iterable[Any], timeout: float) -> Iterator[None]:
        """
        Hold the locks of every material for the duration of the block.
        Locks are taken in sorted id order; StockContentionError if any lock
        is not free within ``timeout`` seconds.
        """
        acquired = []
        try:
            for material_id in sorted({str(m) for m in material_ids}):
                lock = self._lock_for(material_id)
                if not lock.acquire(timeout=timeout):
                    raise StockContentionError(
                        f"Stock of material {material_id} is being committed by another request",
                        material_id=material_id,
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


material_locks = MaterialLockRegistry()


@dataclass
class CommitResult:
    order: models.Order
    plan: models.CuttingPlan
    transactions: List[models.StockTransaction] = field(default_factory=list)

    @property
    def total_value_consumed(self) -> Decimal:
        return -sum((t.total_value_change for t in self.transactions), Decimal("0"))


class CuttingPlanCommitService:
    def __init__(self, db: Session, user_id: Optional[uuid.UUID] = None,
                 lock_timeout: Optional[float] = None, locks: Optional[MaterialLockRegistry] = None):
        self.db = db
        self.user_id = user_id
        self.lock_timeout = settings.STOCK_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.locks = locks or material_locks
        self.planner = BatchConsumptionPlanner()
        self.workflow = OrderWorkflowService(db, user_id)

    def commit(self, order_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> CommitResult:
        """
        Consume stock for an order's Generated cutting plan.

        Raises:
            PlanNotFoundError: the order has no cutting plan
            AlreadyCommittedError: the plan was committed before; the ledger is untouched
            InsufficientStockError: live stock no longer covers the plan
            StockContentionError: another commit holds or changed the same stock
        """
        generator = CuttingPlanGenerator(self.db, self.user_id)
        order = generator.get_order(order_id, company_id)
        plan = generator.get_plan_for_order(order.id, company_id)

        if plan.is_committed:
            raise AlreadyCommittedError(
                f"Cutting plan {plan.frontend_id} of order {order.frontend_id} is already committed"
            )
        if order.status != models.OrderStatus.OPTIMIZATION_COMPLETE:
            raise InvalidStatusTransitionError(
                f"Order {order.frontend_id} is '{order.status}'; only orders in "
                f"'{models.OrderStatus.OPTIMIZATION_COMPLETE.value}' can commit their cutting plan",
                current_status=order.status,
            )

        material_plans = plan.material_plans
        material_ids = [mp["material_id"] for mp in material_plans]

        with self.locks.hold(material_ids, self.lock_timeout):
            try:
                self._apply_lock_timeout()

                # Another request may have committed while we waited for the locks
                self.db.refresh(plan)
                if plan.is_committed:
                    raise AlreadyCommittedError(
                        f"Cutting plan {plan.frontend_id} of order {order.frontend_id} is already committed"
                    )

                planned = []
                shortfalls = []
                reserved: Dict[Any, Decimal] = {}
                locked: Dict[str, tuple] = {}
                for material_plan in material_plans:
                    # A material can appear in several plans (one per gauge)
                    if material_plan["material_id"] not in locked:
                        material = self._material(material_plan["material_id"])
                        locked[material_plan["material_id"]] = (material, self._locked_batches(material))
                    material, batches = locked[material_plan["material_id"]]
                    consumption = self.planner.plan(
                        material,
                        demand_from_material_plan(material_plan),
                        gauge=material_plan.get("gauge_snapshot"),
                        batches=batches,
                        reserved=reserved,
                    )
                    shortfalls.extend(consumption.shortfalls)
                    planned.append((material, consumption))

                if shortfalls:
                    raise InsufficientStockError(shortfalls)

                transactions = self._apply(order, plan, planned)

                plan.status = models.CuttingPlanStatus.COMMITTED.value
                plan.committed_at = datetime.utcnow()
                plan.committed_by = self.user_id
                order.cutting_plan_status = models.OrderCuttingPlanStatus.COMMITTED.value
                self.workflow.advance(
                    order, models.OrderStatus.CUTTING,
                    notes=f"Cutting plan {plan.frontend_id} committed ({len(transactions)} stock transactions)",
                    system=True, commit=False,
                )

                self.db.commit()

            except OperationalError as e:
                self.db.rollback()
                logger.error(f"❌ Commit of cutting plan for order {order_id} hit a database lock: {e}")
                raise StockContentionError(f"Stock is locked by another transaction: {e.orig}") from e
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Commit of cutting plan for order {order_id} rolled back: {e}")
                raise

        self.db.refresh(plan)
        self.db.refresh(order)
        for transaction in transactions:
            self.db.refresh(transaction)

        result = CommitResult(order=order, plan=plan, transactions=transactions)
        logger.info(
            f"✅ Committed cutting plan {plan.frontend_id} for order {order.frontend_id}: "
            f"{len(transactions)} transactions, value {result.total_value_consumed}"
        )
        return result

    def _apply(self, order, plan, planned: List[tuple]) -> List[models.StockTransaction]:
        transactions: List[models.StockTransaction] = []
        for material, consumption in planned:
            transactions.extend(apply_consumption(
                self.db,
                material,
                consumption.instructions,
                transaction_type=models.TransactionType.OUTWARD_ORDER_CUT.value,
                company_id=order.company_id,
                user_id=self.user_id,
                related_document_type="CuttingPlan",
                related_document_id=plan.id,
                notes=f"Order {order.frontend_id}",
                start_sequence=len(transactions),
            ))
            recompute_totals(material)
        return transactions

    def _material(self, material_id) -> models.Material:
        material = self.db.get(models.Material, uuid.UUID(str(material_id)), populate_existing=True)
        if material is None:
            raise MaterialNotFoundError(f"Material {material_id} not found")
        self.db.expire(material, ["profile_batches", "simple_batches"])
        return material

    def _locked_batches(self, material: models.Material) -> List[Any]:
        batch_model = models.ProfileBatch if material.is_profile else models.SimpleBatch
        return (
            self.db.query(batch_model)
            .filter(
                batch_model.material_id == material.id,
                batch_model.is_active == True,  # noqa: E712
                batch_model.is_completed == False,  # noqa: E712
            )
            .with_for_update()
            .populate_existing()
            .all()
        )

    def _apply_lock_timeout(self) -> None:
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms'"))
