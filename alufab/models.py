from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Numeric, Uuid,
    CheckConstraint, UniqueConstraint, event,
)
from sqlalchemy.orm import relationship
import json
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional, List, Dict, Any

from .database import Base
from .errors import ImmutableLedgerError


# Status Enums
class MaterialCategory(str, PyEnum):
    PROFILE = "Profile"
    GLASS = "Glass"
    HARDWARE = "Hardware"
    ACCESSORIES = "Accessories"
    CONSUMABLES = "Consumables"
    WIRE_MESH = "Wire Mesh"

class UsageUnit(str, PyEnum):
    FT = "ft"
    INCHES = "inches"
    MM = "mm"
    SQFT = "sqft"
    SQM = "sqm"
    PCS = "pcs"
    KG = "kg"

class OrderStatus(str, PyEnum):
    PENDING = "Pending"
    MEASUREMENT_CONFIRMED = "Measurement Confirmed"
    READY_FOR_OPTIMIZATION = "Ready for Optimization"
    OPTIMIZATION_COMPLETE = "Optimization Complete"
    OPTIMIZATION_FAILED = "Optimization Failed"
    CUTTING = "Cutting"
    ASSEMBLY = "Assembly"
    QC = "QC"
    PACKED = "Packed"
    READY_FOR_DISPATCH = "Ready for Dispatch"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    CANCELLED = "Cancelled"

class OrderCuttingPlanStatus(str, PyEnum):
    PENDING = "Pending"
    GENERATED = "Generated"
    COMMITTED = "Committed"
    FAILED = "Failed"

class CuttingPlanStatus(str, PyEnum):
    GENERATED = "Generated"
    COMMITTED = "Committed"

class TransactionType(str, PyEnum):
    INWARD = "Inward"
    OUTWARD_ORDER_CUT = "Outward-OrderCut"
    OUTWARD_MANUAL = "Outward-Manual"
    SCRAP = "Scrap"
    CORRECTION = "Correction"
    INITIAL_STOCK = "InitialStock"

class BatchKind(str, PyEnum):
    PROFILE = "profile"
    SIMPLE = "simple"


# ============================================================================
# MATERIAL MASTER - Reference data for every stocked material
# ============================================================================

# Material Master - One row per material a company stocks
class Material(Base):
    __tablename__ = "material_master"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_material_company_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # MAT-00001, MAT-00002, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    category = Column(String(30), nullable=False, index=True)
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)
    hsn_code = Column(String(20), nullable=True)
    stock_unit = Column(String(20), nullable=False)
    usage_unit = Column(String(20), nullable=False)
    cutting_tolerance = Column(Numeric(10, 4), nullable=False, default=Decimal("0.01"))
    kerf_length = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))
    weight_unit = Column(String(10), nullable=False, default="kg")
    is_active = Column(Boolean, nullable=False, default=True)

    # Derived display totals, refreshed by the ledger after each mutation
    total_current_stock = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    total_current_weight = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    total_current_value = Column(Numeric(16, 4), nullable=False, default=Decimal("0"))
    average_rate_per_piece = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    average_rate_per_kg = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    totals_updated_at = Column(DateTime, nullable=True)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    standard_lengths = relationship(
        "MaterialStandardLength", back_populates="material",
        cascade="all, delete-orphan", order_by="MaterialStandardLength.length"
    )
    gauge_weights = relationship(
        "GaugeWeight", back_populates="material",
        cascade="all, delete-orphan", order_by="GaugeWeight.gauge"
    )
    profile_batches = relationship("ProfileBatch", back_populates="material", cascade="all, delete-orphan")
    simple_batches = relationship("SimpleBatch", back_populates="material", cascade="all, delete-orphan")

    @property
    def is_profile(self) -> bool:
        return self.category == MaterialCategory.PROFILE.value

    @property
    def is_wire_mesh(self) -> bool:
        return self.category == MaterialCategory.WIRE_MESH.value

    @property
    def batches(self) -> List[Any]:
        return self.profile_batches if self.is_profile else self.simple_batches

    def gauge_weight_for(self, gauge: Optional[str]) -> Optional["GaugeWeight"]:
        if not gauge:
            return None
        for entry in self.gauge_weights:
            if entry.gauge == gauge:
                return entry
        return None


# Standard lengths a profile is stocked in (e.g. 12 ft, 15 ft); roll widths for wire mesh
class MaterialStandardLength(Base):
    __tablename__ = "material_standard_length"
    __table_args__ = (
        UniqueConstraint("material_id", "length", "unit", name="uq_standard_length"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    length = Column(Numeric(10, 4), nullable=False)
    unit = Column(String(20), nullable=False)

    material = relationship("Material", back_populates="standard_lengths")


# Reference weight per unit length for a gauge; reference data only
class GaugeWeight(Base):
    __tablename__ = "material_gauge_weight"
    __table_args__ = (
        UniqueConstraint("material_id", "gauge", name="uq_gauge_weight"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    gauge = Column(String(20), nullable=False)
    weight_per_unit_length = Column(Numeric(12, 6), nullable=False)  # kg per unit_length
    unit_length = Column(String(20), nullable=False, default="ft")

    material = relationship("Material", back_populates="gauge_weights")


# ============================================================================
# STOCK BATCHES - One row per purchased lot, consumed FIFO
# ============================================================================

class ProfileBatch(Base):
    __tablename__ = "profile_batch"
    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_profile_batch_non_negative"),
        CheckConstraint("current_quantity <= original_quantity", name="ck_profile_batch_not_above_original"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # PB-00001-26, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    batch_code = Column(String(50), nullable=True, index=True)
    length = Column(Numeric(10, 4), nullable=False)
    length_unit = Column(String(20), nullable=False)
    gauge = Column(String(20), nullable=False, index=True)
    original_quantity = Column(Numeric(12, 4), nullable=False)
    current_quantity = Column(Numeric(12, 4), nullable=False)
    actual_total_weight = Column(Numeric(14, 4), nullable=True)
    actual_weight_unit = Column(String(10), nullable=False, default="kg")
    total_cost_paid = Column(Numeric(16, 4), nullable=False)
    rate_per_piece = Column(Numeric(14, 4), nullable=False)
    rate_per_kg = Column(Numeric(14, 4), nullable=True)
    supplier = Column(String(255), nullable=True, index=True)
    purchase_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    invoice_number = Column(String(100), nullable=True)
    lot_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    low_stock_threshold = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_completed = Column(Boolean, nullable=False, default=False, index=True)
    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    material = relationship("Material", back_populates="profile_batches")

    kind = BatchKind.PROFILE.value
    width = None
    width_unit = None

    @property
    def unit_rate(self) -> Decimal:
        return self.rate_per_piece

    @property
    def quantity_unit(self) -> str:
        return "pcs"

    @property
    def available_quantity(self) -> Decimal:
        if not self.is_active or self.is_completed:
            return Decimal("0")
        return self.current_quantity

    @property
    def current_weight(self) -> Decimal:
        """Weight of the remaining pieces, prorated from the weighed lot."""
        if not self.actual_total_weight or not self.original_quantity:
            return Decimal("0")
        return self.actual_total_weight * self.current_quantity / self.original_quantity

    @property
    def is_low_stock(self) -> bool:
        return self.available_quantity <= (self.low_stock_threshold or 0)


class SimpleBatch(Base):
    __tablename__ = "simple_batch"
    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_simple_batch_non_negative"),
        CheckConstraint("current_quantity <= original_quantity", name="ck_simple_batch_not_above_original"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # SB-00001-26, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    batch_code = Column(String(50), nullable=True, index=True)
    unit = Column(String(20), nullable=False)
    width = Column(Numeric(10, 4), nullable=True)  # roll width, wire mesh only
    width_unit = Column(String(20), nullable=True)
    original_quantity = Column(Numeric(12, 4), nullable=False)
    current_quantity = Column(Numeric(12, 4), nullable=False)
    total_cost_paid = Column(Numeric(16, 4), nullable=False)
    rate_per_unit = Column(Numeric(14, 4), nullable=False)
    supplier = Column(String(255), nullable=True, index=True)
    purchase_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    invoice_number = Column(String(100), nullable=True)
    lot_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    low_stock_threshold = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_completed = Column(Boolean, nullable=False, default=False, index=True)
    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    material = relationship("Material", back_populates="simple_batches")

    kind = BatchKind.SIMPLE.value
    length = None
    length_unit = None
    gauge = None

    @property
    def unit_rate(self) -> Decimal:
        return self.rate_per_unit

    @property
    def quantity_unit(self) -> str:
        return self.unit

    @property
    def available_quantity(self) -> Decimal:
        if not self.is_active or self.is_completed:
            return Decimal("0")
        return self.current_quantity

    @property
    def is_low_stock(self) -> bool:
        return self.available_quantity <= (self.low_stock_threshold or 0)


# ============================================================================
# ORDERS - The fabrication orders whose cuts are planned
# ============================================================================

class Order(Base):
    __tablename__ = "order_master"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # ORD-00001-26, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    client_name = Column(String(255), nullable=False)
    status = Column(String(50), default=OrderStatus.PENDING.value, nullable=False, index=True)
    cutting_plan_status = Column(String(20), default=OrderCuttingPlanStatus.PENDING.value, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    required_cuts = relationship(
        "OrderRequiredCut", back_populates="order",
        cascade="all, delete-orphan", order_by="OrderRequiredCut.sequence"
    )
    material_demands = relationship("OrderMaterialDemand", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship(
        "OrderStatusHistory", back_populates="order",
        cascade="all, delete-orphan", order_by="OrderStatusHistory.sequence"
    )

    @property
    def is_editable(self) -> bool:
        return self.cutting_plan_status != OrderCuttingPlanStatus.COMMITTED.value


# A single piece to be cut from a profile; quantities are expanded on creation
class OrderRequiredCut(Base):
    __tablename__ = "order_required_cut"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    order_id = Column(Uuid, ForeignKey("order_master.id"), nullable=False, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    gauge = Column(String(20), nullable=True)
    length = Column(Numeric(10, 4), nullable=False)
    length_unit = Column(String(20), nullable=False)
    identifier = Column(String(100), nullable=True)
    source_item = Column(String(100), nullable=True)
    sequence = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="required_cuts")
    material = relationship("Material")


# Unit-based demand (glass, hardware, consumables, wire mesh) of an order
class OrderMaterialDemand(Base):
    __tablename__ = "order_material_demand"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    order_id = Column(Uuid, ForeignKey("order_master.id"), nullable=False, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    quantity = Column(Numeric(12, 4), nullable=False)
    unit = Column(String(20), nullable=False)
    # Piece size for wire mesh; quantity is then the number of pieces
    width = Column(Numeric(10, 4), nullable=True)
    length = Column(Numeric(10, 4), nullable=True)
    dimension_unit = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="material_demands")
    material = relationship("Material")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    order_id = Column(Uuid, ForeignKey("order_master.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    status = Column(String(50), nullable=False)
    notes = Column(Text, nullable=True)
    updated_by = Column(Uuid, nullable=True)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="status_history")


# ============================================================================
# CUTTING PLANS - One per order, Generated until committed against stock
# ============================================================================

class CuttingPlan(Base):
    __tablename__ = "cutting_plan"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # CP-00001-26, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("order_master.id"), nullable=False, unique=True, index=True)
    status = Column(String(20), default=CuttingPlanStatus.GENERATED.value, nullable=False, index=True)
    optimizer_strategy = Column(String(20), nullable=False, default="best_fit")
    material_plans_json = Column("material_plans", Text, nullable=False)  # JSON array of material plans
    shortfall_warnings_json = Column("shortfall_warnings", Text, nullable=True)  # JSON array of shortfalls
    generated_by = Column(Uuid, nullable=True)
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    committed_by = Column(Uuid, nullable=True)
    committed_at = Column(DateTime, nullable=True)

    order = relationship("Order")

    @property
    def material_plans(self) -> List[Dict[str, Any]]:
        return json.loads(self.material_plans_json) if self.material_plans_json else []

    @material_plans.setter
    def material_plans(self, value: List[Dict[str, Any]]) -> None:
        self.material_plans_json = json.dumps(value)

    @property
    def shortfall_warnings(self) -> List[Dict[str, Any]]:
        return json.loads(self.shortfall_warnings_json) if self.shortfall_warnings_json else []

    @shortfall_warnings.setter
    def shortfall_warnings(self, value: List[Dict[str, Any]]) -> None:
        self.shortfall_warnings_json = json.dumps(value) if value else None

    @property
    def is_committed(self) -> bool:
        return self.status == CuttingPlanStatus.COMMITTED.value


# ============================================================================
# STOCK TRANSACTIONS - Append-only ledger of every stock movement
# ============================================================================

class StockTransaction(Base):
    __tablename__ = "stock_transaction"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # STX-00001-26, etc.
    company_id = Column(Uuid, nullable=False, index=True)
    material_id = Column(Uuid, ForeignKey("material_master.id"), nullable=False, index=True)
    batch_kind = Column(String(10), nullable=True)
    batch_id = Column(Uuid, nullable=True, index=True)
    batch_code = Column(String(50), nullable=True)
    type = Column(String(30), nullable=False, index=True)
    length = Column(Numeric(10, 4), nullable=True)
    length_unit = Column(String(20), nullable=True)
    gauge = Column(String(20), nullable=True)
    width = Column(Numeric(10, 4), nullable=True)
    width_unit = Column(String(20), nullable=True)
    quantity_change = Column(Numeric(12, 4), nullable=False)
    quantity_unit = Column(String(20), nullable=False)
    unit_rate_at_transaction = Column(Numeric(14, 4), nullable=True)
    total_value_change = Column(Numeric(16, 4), nullable=False, default=Decimal("0"))
    related_document_type = Column(String(30), nullable=True)
    related_document_id = Column(Uuid, nullable=True, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=True)
    transaction_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    material = relationship("Material")


@event.listens_for(StockTransaction, "before_insert")
def compute_total_value_change(mapper, connection, target):
    if target.quantity_change is None or target.unit_rate_at_transaction is None:
        target.total_value_change = Decimal("0")
    else:
        value = Decimal(target.quantity_change) * Decimal(target.unit_rate_at_transaction)
        target.total_value_change = value.quantize(Decimal("0.0001"))


@event.listens_for(StockTransaction, "before_update")
def reject_transaction_update(mapper, connection, target):
    raise ImmutableLedgerError(f"Stock transaction {target.frontend_id or target.id} cannot be modified")


@event.listens_for(StockTransaction, "before_delete")
def reject_transaction_delete(mapper, connection, target):
    raise ImmutableLedgerError(f"Stock transaction {target.frontend_id or target.id} cannot be deleted")


# ============================================================================
# FRONTEND ID GENERATION - Auto-generate human-readable IDs on record creation
# ============================================================================

def generate_frontend_id_on_insert(mapper, connection, target):
    """
    SQLAlchemy event handler to generate frontend_id before insert.
    Batches without a supplier batch code reuse the generated ID as their code.
    """
    from .services.id_generator import FrontendIDGenerator

    if target.frontend_id is None:  # Only generate if not already provided
        target.frontend_id = FrontendIDGenerator.generate_frontend_id(target.__tablename__, connection)

    if isinstance(target, (ProfileBatch, SimpleBatch)) and not target.batch_code:
        target.batch_code = target.frontend_id


# Register event listeners for all models that have frontend_id
models_with_frontend_id = [
    Material,
    ProfileBatch,
    SimpleBatch,
    Order,
    CuttingPlan,
    StockTransaction,
]

for model in models_with_frontend_id:
    event.listen(model, 'before_insert', generate_frontend_id_on_insert)
