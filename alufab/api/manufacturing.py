from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from .base import get_db, get_company_id, get_user_id
from .. import schemas
from ..crud import stock_transactions as crud_transactions
from ..errors import CuttingError
from ..services.plan_commit import CuttingPlanCommitService
from ..services.plan_generator import CuttingPlanGenerator

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# CUTTING PLAN ENDPOINTS
# ============================================================================

@router.post("/manufacturing/orders/{order_id}/cutting-plan", response_model=schemas.CuttingPlan)
def generate_cutting_plan(
    order_id: UUID,
    options: Optional[schemas.CuttingPlanGenerate] = Body(None),
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Generate (or regenerate) the order's cutting plan; stock is not consumed"""
    try:
        return CuttingPlanGenerator(db, user_id).generate(order_id, company_id, overrides=options)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error generating cutting plan for order {order_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/manufacturing/orders/{order_id}/cutting-plan", response_model=schemas.CuttingPlan)
def get_cutting_plan(order_id: UUID, company_id: UUID = Depends(get_company_id), db: Session = Depends(get_db)):
    """Get the order's cutting plan (Generated or Committed)"""
    return CuttingPlanGenerator(db).get_plan_for_order(order_id, company_id)

@router.delete("/manufacturing/orders/{order_id}/cutting-plan")
def discard_cutting_plan(
    order_id: UUID,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Discard a Generated cutting plan"""
    try:
        CuttingPlanGenerator(db, user_id).discard(order_id, company_id)
        return {"message": "Cutting plan discarded successfully"}
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error discarding cutting plan for order {order_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/manufacturing/orders/{order_id}/cutting-plan/commit", response_model=schemas.CommitResponse)
def commit_cutting_plan(
    order_id: UUID,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Consume stock FIFO for the order's cutting plan and move the order to Cutting"""
    try:
        result = CuttingPlanCommitService(db, user_id).commit(order_id, company_id)
        return {
            "plan": result.plan,
            "order_status": result.order.status,
            "cutting_plan_status": result.order.cutting_plan_status,
            "transactions": result.transactions,
            "total_value_consumed": result.total_value_consumed,
        }
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error committing cutting plan for order {order_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/manufacturing/orders/{order_id}/cutting-plan/transactions", response_model=List[schemas.StockTransaction])
def get_cutting_plan_transactions(order_id: UUID, company_id: UUID = Depends(get_company_id), db: Session = Depends(get_db)):
    """Stock transactions written when the order's cutting plan was committed"""
    plan = CuttingPlanGenerator(db).get_plan_for_order(order_id, company_id)
    return crud_transactions.get_document_transactions(db, "CuttingPlan", plan.id)
