from typing import List, Optional
from sqlalchemy.orm import Session, joinedload
from decimal import Decimal
from uuid import UUID
import logging

from .. import models, schemas
from ..errors import InvalidCutError, MaterialNotFoundError, OrderNotFoundError
from ..services import units

logger = logging.getLogger(__name__)

# ============================================================================
# ORDER CRUD
# ============================================================================

def get_orders(
    db: Session,
    company_id: UUID,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100
) -> List[models.Order]:
    """Get a company's orders, newest first"""
    query = db.query(models.Order).filter(models.Order.company_id == company_id)
    if status:
        query = query.filter(models.Order.status == status)
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()

def get_order(db: Session, order_id: UUID, company_id: Optional[UUID] = None) -> models.Order:
    """Get order by ID with its cuts and demands"""
    query = db.query(models.Order).options(
        joinedload(models.Order.required_cuts),
        joinedload(models.Order.material_demands),
        joinedload(models.Order.status_history)
    ).filter(models.Order.id == order_id)
    if company_id is not None:
        query = query.filter(models.Order.company_id == company_id)
    order = query.first()
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order

def create_order(
    db: Session,
    order: schemas.OrderCreate,
    company_id: UUID,
    user_id: Optional[UUID] = None
) -> models.Order:
    """
    Create an order with its required cuts and unit demands.
    A cut with quantity N is stored as N individual cuts.
    """
    material_ids = {c.material_id for c in order.required_cuts} | {d.material_id for d in order.material_demands}
    materials = {
        m.id: m for m in db.query(models.Material).filter(
            models.Material.id.in_(material_ids),
            models.Material.company_id == company_id
        ).all()
    }
    missing = material_ids - set(materials)
    if missing:
        raise MaterialNotFoundError(f"Materials not found: {', '.join(str(m) for m in missing)}")
    _validate_lines(order, materials)

    try:
        db_order = models.Order(
            company_id=company_id,
            client_name=order.client_name,
            status=order.status.value,
            notes=order.notes,
            created_by=user_id
        )

        sequence = 0
        for cut in order.required_cuts:
            if cut.length <= 0:
                raise InvalidCutError(
                    f"Cut length must be positive (got {cut.length} {cut.length_unit})",
                    identifier=cut.identifier
                )
            for _ in range(cut.quantity):
                db_order.required_cuts.append(models.OrderRequiredCut(
                    material_id=cut.material_id,
                    gauge=cut.gauge,
                    length=cut.length,
                    length_unit=cut.length_unit,
                    identifier=cut.identifier,
                    source_item=cut.source_item,
                    sequence=sequence
                ))
                sequence += 1

        for demand in order.material_demands:
            db_order.material_demands.append(models.OrderMaterialDemand(
                material_id=demand.material_id,
                quantity=Decimal(demand.quantity),
                unit=demand.unit,
                width=demand.width,
                length=demand.length,
                dimension_unit=demand.dimension_unit,
                notes=demand.notes
            ))

        db_order.status_history.append(models.OrderStatusHistory(
            sequence=0,
            status=db_order.status,
            notes="Order created",
            updated_by=user_id
        ))

        db.add(db_order)
        db.commit()
        db.refresh(db_order)

        logger.info(f"Created order {db_order.frontend_id} with {sequence} cuts and {len(order.material_demands)} demands")
        return db_order

    except Exception as e:
        db.rollback()
        logger.error(f"Error creating order for {order.client_name}: {e}")
        raise

def _validate_lines(order: schemas.OrderCreate, materials) -> None:
    """Profile cuts need a gauge; wire mesh demands need the piece size."""
    for cut in order.required_cuts:
        material = materials[cut.material_id]
        if material.is_profile and not cut.gauge:
            raise InvalidCutError(
                f"Cut of {cut.length} {cut.length_unit} on profile {material.name} has no gauge",
                identifier=cut.identifier
            )

    for demand in order.material_demands:
        material = materials[demand.material_id]
        if not material.is_wire_mesh:
            continue
        if demand.width is None or demand.length is None or not demand.dimension_unit:
            raise InvalidCutError(f"Wire mesh demand for {material.name} needs width, length and dimension unit")
        if not units.is_linear(demand.dimension_unit):
            raise InvalidCutError(f"Wire mesh dimension unit '{demand.dimension_unit}' is not a length unit")
