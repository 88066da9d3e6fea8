from typing import List, Optional, Union
from sqlalchemy.orm import Session
from uuid import UUID
import logging

from .. import models, schemas
from ..errors import BatchNotFoundError, LedgerError, MaterialNotFoundError
from ..services import units

logger = logging.getLogger(__name__)

# ============================================================================
# MATERIAL MASTER CRUD
# ============================================================================

def create_material(
    db: Session,
    material: schemas.MaterialCreate,
    company_id: UUID,
    user_id: Optional[UUID] = None
) -> models.Material:
    """Create a new material with its standard lengths and gauge weights"""
    existing = db.query(models.Material).filter(
        models.Material.company_id == company_id,
        models.Material.name == material.name
    ).first()
    if existing:
        raise LedgerError(f"Material '{material.name}' already exists")

    is_profile = material.category == models.MaterialCategory.PROFILE
    if is_profile and not units.is_linear(material.usage_unit):
        raise LedgerError(f"Profile usage unit must be a length unit (got '{material.usage_unit}')")
    if material.category == models.MaterialCategory.WIRE_MESH and units.unit_kind(material.stock_unit) != "area":
        raise LedgerError(f"Wire mesh is stocked by area (got '{material.stock_unit}')")
    if units.unit_kind(material.stock_unit) is None and material.stock_unit != "kg":
        raise LedgerError(f"Unknown stock unit '{material.stock_unit}'")

    data = material.model_dump(exclude={"standard_lengths", "gauge_weights"})
    data["category"] = material.category.value
    db_material = models.Material(**data, company_id=company_id, created_by=user_id)

    for standard in material.standard_lengths:
        if not units.is_linear(standard.unit):
            raise LedgerError(f"Standard length unit '{standard.unit}' is not a length unit")
        db_material.standard_lengths.append(
            models.MaterialStandardLength(length=standard.length, unit=standard.unit)
        )
    for gauge in material.gauge_weights:
        db_material.gauge_weights.append(models.GaugeWeight(**gauge.model_dump()))

    try:
        db.add(db_material)
        db.commit()
        db.refresh(db_material)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating material {material.name}: {e}")
        raise

    logger.info(f"Created material: {db_material.name} ({db_material.frontend_id})")
    return db_material

def get_materials(
    db: Session,
    company_id: UUID,
    category: Optional[str] = None,
    skip: int = 0,
    limit: int = 100
) -> List[models.Material]:
    """Get a company's active materials with pagination"""
    query = db.query(models.Material).filter(
        models.Material.company_id == company_id,
        models.Material.is_active == True  # noqa: E712
    )
    if category:
        query = query.filter(models.Material.category == category)
    return query.order_by(models.Material.name).offset(skip).limit(limit).all()

def get_material(db: Session, material_id: UUID, company_id: Optional[UUID] = None) -> models.Material:
    """Get material by ID"""
    query = db.query(models.Material).filter(models.Material.id == material_id)
    if company_id is not None:
        query = query.filter(models.Material.company_id == company_id)
    material = query.first()
    if material is None:
        raise MaterialNotFoundError(f"Material {material_id} not found")
    return material

# ============================================================================
# BATCH CRUD
# ============================================================================

def get_batch(
    db: Session,
    batch_id: UUID,
    company_id: Optional[UUID] = None
) -> Union[models.ProfileBatch, models.SimpleBatch]:
    """Get a profile or simple batch by ID"""
    for batch_model in (models.ProfileBatch, models.SimpleBatch):
        query = db.query(batch_model).filter(batch_model.id == batch_id)
        if company_id is not None:
            query = query.filter(batch_model.company_id == company_id)
        batch = query.first()
        if batch is not None:
            return batch
    raise BatchNotFoundError(f"Batch {batch_id} not found")
