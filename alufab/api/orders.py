from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from .base import get_db, get_company_id, get_user_id
from .. import schemas
from ..crud import orders as crud_orders
from ..errors import CuttingError
from ..services.order_workflow import OrderWorkflowService

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# ORDER ENDPOINTS
# ============================================================================

@router.post("/orders", response_model=schemas.Order)
def create_order(
    order: schemas.OrderCreate,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Create an order with its required cuts and unit demands"""
    try:
        return crud_orders.create_order(db=db, order=order, company_id=company_id, user_id=user_id)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error creating order: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/orders", response_model=List[schemas.Order])
def get_orders(
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    company_id: UUID = Depends(get_company_id),
    db: Session = Depends(get_db)
):
    """Get orders, newest first"""
    try:
        return crud_orders.get_orders(db=db, company_id=company_id, status=status, skip=skip, limit=limit)
    except Exception as e:
        logger.error(f"Error getting orders: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(order_id: UUID, company_id: UUID = Depends(get_company_id), db: Session = Depends(get_db)):
    """Get order by ID"""
    return crud_orders.get_order(db=db, order_id=order_id, company_id=company_id)

@router.put("/orders/{order_id}/status", response_model=schemas.Order)
def update_order_status(
    order_id: UUID,
    update: schemas.OrderStatusUpdate,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Move an order along its workflow"""
    try:
        order = crud_orders.get_order(db=db, order_id=order_id, company_id=company_id)
        return OrderWorkflowService(db, user_id).advance(order, update.status, notes=update.notes)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error updating status of order {order_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
