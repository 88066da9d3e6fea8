from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional, Union
from datetime import datetime
from uuid import UUID
import logging

from .base import get_db, get_company_id, get_user_id
from .. import schemas
from ..crud import materials as crud_materials
from ..crud import stock_transactions as crud_transactions
from ..errors import CuttingError
from ..services.material_ledger import MaterialLedgerService

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# MATERIAL MASTER ENDPOINTS
# ============================================================================

@router.post("/materials", response_model=schemas.Material)
def create_material(
    material: schemas.MaterialCreate,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Create a material with its standard lengths and gauge weights"""
    try:
        return crud_materials.create_material(db=db, material=material, company_id=company_id, user_id=user_id)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error creating material: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/materials", response_model=List[schemas.Material])
def get_materials(
    category: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    company_id: UUID = Depends(get_company_id),
    db: Session = Depends(get_db)
):
    """Get all materials with pagination"""
    try:
        return crud_materials.get_materials(db=db, company_id=company_id, category=category, skip=skip, limit=limit)
    except Exception as e:
        logger.error(f"Error getting materials: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/materials/{material_id}", response_model=schemas.Material)
def get_material(material_id: UUID, company_id: UUID = Depends(get_company_id), db: Session = Depends(get_db)):
    """Get material by ID"""
    return crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)

# ============================================================================
# STOCK ENDPOINTS - Inward, consumption, corrections, reports
# ============================================================================

@router.post("/materials/{material_id}/batches", response_model=Union[schemas.ProfileBatch, schemas.SimpleBatch])
def record_inward(
    material_id: UUID,
    inward: schemas.InwardCreate,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Record a purchased batch of stock"""
    try:
        material = crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)
        return MaterialLedgerService(db, user_id).record_inward(material, inward)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error recording inward for material {material_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/materials/{material_id}/batches", response_model=List[Union[schemas.ProfileBatch, schemas.SimpleBatch]])
def get_batch_history(
    material_id: UUID,
    supplier: Optional[str] = None,
    gauge: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    include_completed: bool = True,
    company_id: UUID = Depends(get_company_id),
    db: Session = Depends(get_db)
):
    """Batches of a material, including completed ones unless excluded"""
    material = crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)
    return MaterialLedgerService(db).batch_history(
        material,
        supplier=supplier,
        gauge=gauge,
        date_from=date_from,
        date_to=date_to,
        include_completed=include_completed
    )

@router.get("/materials/{material_id}/stock-report", response_model=schemas.StockReport)
def get_stock_report(material_id: UUID, company_id: UUID = Depends(get_company_id), db: Session = Depends(get_db)):
    """Live stock per length and gauge"""
    material = crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)
    return MaterialLedgerService.stock_summary(material)

@router.post("/materials/{material_id}/consume", response_model=List[schemas.StockTransaction])
def consume_stock(
    material_id: UUID,
    request: schemas.ManualConsumeRequest,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Consume stock FIFO outside of an order"""
    try:
        material = crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)
        return MaterialLedgerService(db, user_id).consume_manual(material, request)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error consuming stock of material {material_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/materials/batches/{batch_id}/correction", response_model=schemas.StockTransaction)
def correct_batch(
    batch_id: UUID,
    request: schemas.CorrectionRequest,
    company_id: UUID = Depends(get_company_id),
    user_id: Optional[UUID] = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Set a batch to a physically counted quantity"""
    try:
        batch = crud_materials.get_batch(db=db, batch_id=batch_id, company_id=company_id)
        return MaterialLedgerService(db, user_id).record_correction(batch, request.new_quantity, request.notes)
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error correcting batch {batch_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/materials/{material_id}/transactions", response_model=List[schemas.StockTransaction])
def get_material_transactions(
    material_id: UUID,
    transaction_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
    company_id: UUID = Depends(get_company_id),
    db: Session = Depends(get_db)
):
    """Stock ledger of a material, oldest first"""
    material = crud_materials.get_material(db=db, material_id=material_id, company_id=company_id)
    return crud_transactions.get_material_transactions(
        db=db,
        material_id=material.id,
        transaction_type=transaction_type,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit
    )
