from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from .models import (
    MaterialCategory, OrderStatus, OrderCuttingPlanStatus, CuttingPlanStatus, TransactionType,
)

# ============================================================================
# MATERIAL SCHEMAS - Materials, standard lengths and gauge weights
# ============================================================================

class StandardLengthBase(BaseModel):
    length: Decimal = Field(..., gt=0)
    unit: str = Field(..., max_length=20)

class StandardLength(StandardLengthBase):
    id: UUID

    class Config:
        from_attributes = True

class GaugeWeightBase(BaseModel):
    gauge: str = Field(..., max_length=20)
    weight_per_unit_length: Decimal = Field(..., gt=0, description="Weight (kg) per unit_length")
    unit_length: str = Field(default="ft", max_length=20)

class GaugeWeight(GaugeWeightBase):
    id: UUID

    class Config:
        from_attributes = True

class MaterialBase(BaseModel):
    name: str = Field(..., max_length=255)
    category: MaterialCategory
    description: Optional[str] = None
    brand: Optional[str] = Field(None, max_length=100)
    hsn_code: Optional[str] = Field(None, max_length=20)
    stock_unit: str = Field(..., max_length=20)
    usage_unit: str = Field(..., max_length=20)
    cutting_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)
    kerf_length: Decimal = Field(default=Decimal("0"), ge=0)
    weight_unit: str = Field(default="kg", max_length=10)

class MaterialCreate(MaterialBase):
    standard_lengths: List[StandardLengthBase] = Field(default_factory=list)
    gauge_weights: List[GaugeWeightBase] = Field(default_factory=list)

class Material(MaterialBase):
    id: UUID
    frontend_id: Optional[str] = Field(None, description="Human-readable material ID (e.g., MAT-00001)")
    company_id: UUID
    is_active: bool
    standard_lengths: List[StandardLength] = Field(default_factory=list)
    gauge_weights: List[GaugeWeight] = Field(default_factory=list)
    total_current_stock: Decimal
    total_current_weight: Decimal
    total_current_value: Decimal
    average_rate_per_piece: Decimal
    average_rate_per_kg: Decimal
    totals_updated_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

# ============================================================================
# BATCH SCHEMAS - Inward stock, batches, manual consumption and corrections
# ============================================================================

class InwardCreate(BaseModel):
    quantity: Decimal = Field(..., gt=0, description="Pieces for profiles, stock units otherwise")
    total_cost_paid: Decimal = Field(..., ge=0)
    length: Optional[Decimal] = Field(None, gt=0, description="Standard length (profiles only)")
    length_unit: Optional[str] = Field(None, max_length=20)
    gauge: Optional[str] = Field(None, max_length=20, description="Required for profiles")
    width: Optional[Decimal] = Field(None, gt=0, description="Roll width (wire mesh only)")
    width_unit: Optional[str] = Field(None, max_length=20)
    actual_total_weight: Optional[Decimal] = Field(None, gt=0)
    actual_weight_unit: str = Field(default="kg", max_length=10)
    batch_code: Optional[str] = Field(None, max_length=50)
    supplier: Optional[str] = Field(None, max_length=255)
    purchase_date: Optional[datetime] = None
    invoice_number: Optional[str] = Field(None, max_length=100)
    lot_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    low_stock_threshold: Decimal = Field(default=Decimal("0"), ge=0)
    is_initial_stock: bool = False

class BatchBase(BaseModel):
    id: UUID
    frontend_id: Optional[str] = None
    material_id: UUID
    batch_code: Optional[str] = None
    original_quantity: Decimal
    current_quantity: Decimal
    total_cost_paid: Decimal
    supplier: Optional[str] = None
    purchase_date: datetime
    invoice_number: Optional[str] = None
    lot_number: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    is_completed: bool
    created_at: datetime

    class Config:
        from_attributes = True

class ProfileBatch(BatchBase):
    length: Decimal
    length_unit: str
    gauge: str
    actual_total_weight: Optional[Decimal] = None
    actual_weight_unit: str
    rate_per_piece: Decimal
    rate_per_kg: Optional[Decimal] = None

class SimpleBatch(BatchBase):
    unit: str
    rate_per_unit: Decimal
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None

class ManualConsumeRequest(BaseModel):
    quantity: Decimal = Field(..., gt=0)
    length: Optional[Decimal] = Field(None, gt=0)
    length_unit: Optional[str] = Field(None, max_length=20)
    gauge: Optional[str] = Field(None, max_length=20)
    width: Optional[Decimal] = Field(None, gt=0)
    width_unit: Optional[str] = Field(None, max_length=20)
    transaction_type: TransactionType = Field(default=TransactionType.OUTWARD_MANUAL)
    notes: Optional[str] = None

    @field_validator('transaction_type')
    @classmethod
    def only_outward_types(cls, v):
        """Manual consumption is recorded as Outward-Manual or Scrap"""
        if v not in (TransactionType.OUTWARD_MANUAL, TransactionType.SCRAP):
            raise ValueError("transaction_type must be Outward-Manual or Scrap")
        return v

class CorrectionRequest(BaseModel):
    new_quantity: Decimal = Field(..., ge=0)
    notes: Optional[str] = None

class StockBreakdown(BaseModel):
    length: Optional[Decimal] = None
    length_unit: Optional[str] = None
    gauge: Optional[str] = None
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None
    unit: str
    quantity: Decimal
    weight: Decimal
    value: Decimal
    average_rate: Decimal
    batch_count: int

class StockReport(BaseModel):
    material_id: UUID
    material_name: str
    category: str
    total_current_stock: Decimal
    total_current_weight: Decimal
    total_current_value: Decimal
    breakdown: List[StockBreakdown]

# ============================================================================
# STOCK TRANSACTION SCHEMAS
# ============================================================================

class StockTransaction(BaseModel):
    id: UUID
    frontend_id: Optional[str] = None
    material_id: UUID
    batch_kind: Optional[str] = None
    batch_id: Optional[UUID] = None
    batch_code: Optional[str] = None
    type: TransactionType
    length: Optional[Decimal] = None
    length_unit: Optional[str] = None
    gauge: Optional[str] = None
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None
    quantity_change: Decimal
    quantity_unit: str
    unit_rate_at_transaction: Optional[Decimal] = None
    total_value_change: Decimal
    related_document_type: Optional[str] = None
    related_document_id: Optional[UUID] = None
    sequence: int
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    transaction_date: datetime

    class Config:
        from_attributes = True

# ============================================================================
# ORDER SCHEMAS
# ============================================================================

class RequiredCutCreate(BaseModel):
    material_id: UUID
    length: Decimal = Field(..., description="Cut length; must be positive")
    length_unit: str = Field(..., max_length=20)
    gauge: Optional[str] = Field(None, max_length=20)
    identifier: Optional[str] = Field(None, max_length=100, description="e.g. 'W1-Top'")
    source_item: Optional[str] = Field(None, max_length=100)
    quantity: int = Field(default=1, ge=1, description="Number of identical pieces")

class RequiredCut(BaseModel):
    id: UUID
    material_id: UUID
    length: Decimal
    length_unit: str
    gauge: Optional[str] = None
    identifier: Optional[str] = None
    source_item: Optional[str] = None
    sequence: int

    class Config:
        from_attributes = True

class MaterialDemandCreate(BaseModel):
    material_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(..., max_length=20)
    # Wire mesh: size of one piece, quantity is the number of pieces
    width: Optional[Decimal] = Field(None, gt=0)
    length: Optional[Decimal] = Field(None, gt=0)
    dimension_unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None

class MaterialDemand(MaterialDemandCreate):
    id: UUID

    class Config:
        from_attributes = True

class OrderCreate(BaseModel):
    client_name: str = Field(..., max_length=255)
    notes: Optional[str] = None
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    required_cuts: List[RequiredCutCreate] = Field(default_factory=list)
    material_demands: List[MaterialDemandCreate] = Field(default_factory=list)

    @field_validator('status')
    @classmethod
    def initial_status(cls, v):
        """New orders start before optimization"""
        if v not in (OrderStatus.PENDING, OrderStatus.MEASUREMENT_CONFIRMED, OrderStatus.READY_FOR_OPTIMIZATION):
            raise ValueError("New orders start as Pending, Measurement Confirmed or Ready for Optimization")
        return v

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None

class OrderStatusHistory(BaseModel):
    status: str
    notes: Optional[str] = None
    updated_by: Optional[UUID] = None
    changed_at: datetime

    class Config:
        from_attributes = True

class Order(BaseModel):
    id: UUID
    frontend_id: Optional[str] = Field(None, description="Human-readable order ID (e.g., ORD-00001-26)")
    company_id: UUID
    client_name: str
    status: OrderStatus
    cutting_plan_status: OrderCuttingPlanStatus
    notes: Optional[str] = None
    required_cuts: List[RequiredCut] = Field(default_factory=list)
    material_demands: List[MaterialDemand] = Field(default_factory=list)
    status_history: List[OrderStatusHistory] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

# ============================================================================
# CUTTING PLAN SCHEMAS - Stored as a JSON snapshot on the plan
# ============================================================================

class CutMade(BaseModel):
    required_length: Decimal
    identifier: Optional[str] = None
    source_item: Optional[str] = None

class PipeUsed(BaseModel):
    standard_length: Decimal
    standard_length_unit: str
    cuts_made: List[CutMade]
    total_cut_length_on_pipe: Decimal
    kerf_loss: Decimal = Decimal("0")
    scrap_length: Decimal
    calculated_weight: Optional[Decimal] = None

class PipesPerLength(BaseModel):
    length: Decimal
    unit: str
    quantity: int
    total_scrap: Decimal
    scrap_unit: str

class MeshPiece(BaseModel):
    width: Decimal
    length: Decimal
    unit: str
    pieces: Decimal
    orientation: str
    required_area: Decimal
    consumed_area: Decimal

class RollWidthUsed(BaseModel):
    width: Decimal
    unit: str
    area: Decimal
    area_unit: str
    pieces: List[MeshPiece] = Field(default_factory=list)

class MaterialPlan(BaseModel):
    material_id: UUID
    material_name_snapshot: str
    category: str
    gauge_snapshot: Optional[str] = None
    usage_unit: str
    pipes_used: List[PipeUsed] = Field(default_factory=list)
    total_pipes_per_length: List[PipesPerLength] = Field(default_factory=list)
    total_weight: Optional[Decimal] = None
    weight_unit: Optional[str] = None
    required_quantity: Optional[Decimal] = Field(None, description="Unit-based materials only")
    quantity_unit: Optional[str] = None
    widths_used: List[RollWidthUsed] = Field(default_factory=list)

class ShortfallWarning(BaseModel):
    material_id: UUID
    material_name: str
    length: Optional[Decimal] = None
    length_unit: Optional[str] = None
    gauge: Optional[str] = None
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None
    unit: str
    required: Decimal
    available: Decimal
    short: Decimal
    message: str

class CuttingPlanGenerate(BaseModel):
    kerf: Optional[Decimal] = Field(None, ge=0, description="Override the material's saw kerf")
    tolerance: Optional[Decimal] = Field(None, gt=0, description="Override the material's cutting tolerance")
    strategy: Optional[str] = Field(None, description="best_fit or cp_sat")

    @field_validator('strategy')
    @classmethod
    def known_strategy(cls, v):
        if v is not None and v not in ("best_fit", "cp_sat"):
            raise ValueError("strategy must be best_fit or cp_sat")
        return v

class CuttingPlan(BaseModel):
    id: UUID
    frontend_id: Optional[str] = Field(None, description="Human-readable plan ID (e.g., CP-00001-26)")
    order_id: UUID
    status: CuttingPlanStatus
    optimizer_strategy: str
    material_plans: List[MaterialPlan]
    shortfall_warnings: List[ShortfallWarning] = Field(default_factory=list)
    generated_at: datetime
    generated_by: Optional[UUID] = None
    committed_at: Optional[datetime] = None
    committed_by: Optional[UUID] = None

    class Config:
        from_attributes = True

class CommitResponse(BaseModel):
    plan: CuttingPlan
    order_status: OrderStatus
    cutting_plan_status: OrderCuttingPlanStatus
    transactions: List[StockTransaction]
    total_value_consumed: Decimal

# ============================================================================
# CUTTING PREVIEW - Stateless optimizer run on an ad-hoc cut list
# ============================================================================

class PreviewCut(BaseModel):
    length: Decimal
    length_unit: str
    identifier: Optional[str] = None
    quantity: int = Field(default=1, ge=1)

class PreviewStockLength(BaseModel):
    length: Decimal = Field(..., gt=0)
    unit: str
    rate: Optional[Decimal] = None
    available: Optional[Decimal] = None

class CuttingPreviewRequest(BaseModel):
    usage_unit: str
    tolerance: Decimal = Field(default=Decimal("0.01"), gt=0)
    kerf: Decimal = Field(default=Decimal("0"), ge=0)
    strategy: str = Field(default="best_fit")
    weight_per_length: Optional[Decimal] = Field(None, gt=0)
    weight_length_unit: str = Field(default="ft")
    standard_lengths: List[PreviewStockLength] = Field(..., min_length=1)
    cuts: List[PreviewCut] = Field(..., min_length=1)

    @field_validator('strategy')
    @classmethod
    def known_strategy(cls, v):
        if v not in ("best_fit", "cp_sat"):
            raise ValueError("strategy must be best_fit or cp_sat")
        return v

class CuttingPreviewResponse(BaseModel):
    usage_unit: str
    pipes_used: List[PipeUsed]
    total_pipes_per_length: List[PipesPerLength]
    total_pipes: int
    total_scrap: Decimal
    total_weight: Optional[Decimal] = None
    summary: Dict[str, Any] = Field(default_factory=dict)
