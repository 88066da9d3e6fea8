from typing import List, Optional
from sqlalchemy.orm import Session
from datetime import datetime
from uuid import UUID

from .. import models

# ============================================================================
# STOCK TRANSACTION QUERIES - The ledger is append-only; no update/delete here
# ============================================================================

def get_material_transactions(
    db: Session,
    material_id: UUID,
    transaction_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100
) -> List[models.StockTransaction]:
    """Transactions of a material, oldest first"""
    query = db.query(models.StockTransaction).filter(models.StockTransaction.material_id == material_id)
    if transaction_type:
        query = query.filter(models.StockTransaction.type == transaction_type)
    if date_from:
        query = query.filter(models.StockTransaction.transaction_date >= date_from)
    if date_to:
        query = query.filter(models.StockTransaction.transaction_date <= date_to)
    return query.order_by(
        models.StockTransaction.transaction_date,
        models.StockTransaction.sequence
    ).offset(skip).limit(limit).all()

def get_document_transactions(
    db: Session,
    related_document_type: str,
    related_document_id: UUID
) -> List[models.StockTransaction]:
    """Transactions written for one document (e.g. a committed cutting plan), in write order"""
    return db.query(models.StockTransaction).filter(
        models.StockTransaction.related_document_type == related_document_type,
        models.StockTransaction.related_document_id == related_document_id
    ).order_by(
        models.StockTransaction.sequence,
        models.StockTransaction.transaction_date
    ).all()
