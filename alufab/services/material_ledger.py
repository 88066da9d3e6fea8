from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import update
from sqlalchemy.orm import Session
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import uuid
import logging

from .. import models, schemas
from ..errors import LedgerError, StockContentionError
from . import units
from .batch_planner import BatchConsumptionPlanner, ConsumptionInstruction, fifo_key

logger = logging.getLogger(__name__)

RATE_PRECISION = Decimal("0.0001")
ZERO = Decimal("0")


def _q(value: Decimal) -> Decimal:
    return Decimal(value).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def recompute_totals(material: models.Material) -> None:
    """
    Refresh the material's derived display totals from its live batches.

    Totals are for display only; costing always uses the per-batch rate.
    """
    live = [b for b in material.batches if b.is_active and not b.is_completed]

    stock = sum((b.current_quantity for b in live), ZERO)
    value = sum((b.current_quantity * b.unit_rate for b in live), ZERO)
    weight = ZERO
    if material.is_profile:
        weight = sum((b.current_weight for b in live), ZERO)

    material.total_current_stock = _q(stock)
    material.total_current_weight = _q(weight)
    material.total_current_value = _q(value)
    material.average_rate_per_piece = _q(value / stock) if stock > 0 else ZERO
    material.average_rate_per_kg = _q(value / weight) if weight > 0 else ZERO
    material.totals_updated_at = datetime.utcnow()


def apply_consumption(
    db: Session,
    material: models.Material,
    instructions: Sequence[ConsumptionInstruction],
    transaction_type: str,
    company_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
    related_document_type: Optional[str] = None,
    related_document_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
    start_sequence: int = 0,
) -> List[models.StockTransaction]:
    """
    Decrement batches per the instructions and append one outward transaction
    per batch, in instruction (FIFO) order. Does not commit.

    Each decrement is a conditional update on the quantity the plan was
    computed against; if another writer changed the batch in between, nothing
    matches and StockContentionError is raised so the caller rolls back.
    """
    transactions = []
    for sequence, instruction in enumerate(instructions, start=start_sequence):
        batch_model = models.ProfileBatch if instruction.batch_kind == models.BatchKind.PROFILE.value else models.SimpleBatch
        remaining = instruction.expected_quantity - instruction.quantity
        if remaining < 0:
            raise LedgerError(
                f"Batch {instruction.batch_code} cannot supply {instruction.quantity} "
                f"(holds {instruction.expected_quantity})"
            )

        result = db.execute(
            update(batch_model)
            .where(
                batch_model.id == instruction.batch_id,
                batch_model.current_quantity == instruction.expected_quantity,
                batch_model.is_completed == False,  # noqa: E712
            )
            .values(
                current_quantity=remaining,
                is_completed=remaining <= 0,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise StockContentionError(
                f"Batch {instruction.batch_code} of {material.name} changed while consuming stock",
                batch_id=instruction.batch_id,
            )

        transaction = models.StockTransaction(
            company_id=company_id,
            material_id=material.id,
            batch_kind=instruction.batch_kind,
            batch_id=instruction.batch_id,
            batch_code=instruction.batch_code,
            type=transaction_type,
            length=instruction.length,
            length_unit=instruction.length_unit,
            gauge=instruction.gauge,
            width=instruction.width,
            width_unit=instruction.width_unit,
            quantity_change=-instruction.quantity,
            quantity_unit=instruction.quantity_unit,
            unit_rate_at_transaction=instruction.unit_rate,
            related_document_type=related_document_type,
            related_document_id=related_document_id,
            sequence=sequence,
            notes=notes,
            created_by=user_id,
        )
        db.add(transaction)
        transactions.append(transaction)

    return transactions


class MaterialLedgerService:
    """
    Inward stock, manual consumption and corrections for a material's batches.
    Every stock movement is recorded as an append-only StockTransaction.
    """

    def __init__(self, db: Session, user_id: Optional[uuid.UUID] = None):
        self.db = db
        self.user_id = user_id
        self.planner = BatchConsumptionPlanner()

    # ============================================================================
    # INWARD
    # ============================================================================

    def record_inward(self, material: models.Material, data: schemas.InwardCreate):
        """
        Add a purchased lot to a material and record the Inward transaction.

        Profiles need the standard length and an explicit gauge; wire mesh
        needs the roll width and is stocked by area. A new length or width is
        registered as a standard length of the material.
        """
        try:
            quantity = Decimal(data.quantity)
            total_cost = Decimal(data.total_cost_paid)
            rate = _q(total_cost / quantity)

            if material.is_profile:
                batch = self._build_profile_batch(material, data, quantity, total_cost, rate)
            else:
                width, width_unit = self._roll_width(material, data)
                batch = models.SimpleBatch(
                    company_id=material.company_id,
                    material_id=material.id,
                    batch_code=data.batch_code,
                    unit=material.stock_unit,
                    width=width,
                    width_unit=width_unit,
                    original_quantity=quantity,
                    current_quantity=quantity,
                    total_cost_paid=total_cost,
                    rate_per_unit=rate,
                    supplier=data.supplier,
                    purchase_date=data.purchase_date or datetime.utcnow(),
                    invoice_number=data.invoice_number,
                    lot_number=data.lot_number,
                    notes=data.notes,
                    low_stock_threshold=data.low_stock_threshold,
                    created_by=self.user_id,
                )
                material.simple_batches.append(batch)

            self.db.flush()

            transaction_type = (
                models.TransactionType.INITIAL_STOCK.value if data.is_initial_stock
                else models.TransactionType.INWARD.value
            )
            self.db.add(models.StockTransaction(
                company_id=material.company_id,
                material_id=material.id,
                batch_kind=batch.kind,
                batch_id=batch.id,
                batch_code=batch.batch_code,
                type=transaction_type,
                length=batch.length,
                length_unit=batch.length_unit,
                gauge=batch.gauge,
                width=batch.width,
                width_unit=batch.width_unit,
                quantity_change=quantity,
                quantity_unit=batch.quantity_unit,
                unit_rate_at_transaction=rate,
                related_document_type="Batch",
                related_document_id=batch.id,
                notes=data.notes,
                created_by=self.user_id,
            ))

            recompute_totals(material)
            self.db.commit()
            self.db.refresh(batch)

            logger.info(f"📦 Inward {quantity} {batch.quantity_unit} of {material.name} as batch {batch.batch_code} @ {rate}")
            return batch

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Inward for material {material.id} failed: {e}")
            raise

    @staticmethod
    def _register_standard_length(material, length: Decimal, unit: str) -> None:
        known = any(units.same_length(s.length, s.unit, length, unit) for s in material.standard_lengths)
        if not known:
            material.standard_lengths.append(models.MaterialStandardLength(length=length, unit=unit))
            logger.info(f"🔧 Registered standard length {units.format_length(length, unit)} for {material.name}")

    def _roll_width(self, material, data):
        if not material.is_wire_mesh:
            return None, None
        if data.width is None or not data.width_unit:
            raise LedgerError(f"Roll width and width unit are required for wire mesh {material.name}")
        if not units.is_linear(data.width_unit):
            raise LedgerError(f"'{data.width_unit}' is not a length unit")
        if units.unit_kind(material.stock_unit) != "area":
            raise LedgerError(f"Wire mesh {material.name} must be stocked in an area unit (got '{material.stock_unit}')")
        self._register_standard_length(material, data.width, data.width_unit)
        return data.width, data.width_unit

    def _build_profile_batch(self, material, data, quantity, total_cost, rate):
        if data.length is None or not data.length_unit:
            raise LedgerError(f"Length and length unit are required for profile {material.name}")
        if not units.is_linear(data.length_unit):
            raise LedgerError(f"'{data.length_unit}' is not a length unit")
        if not data.gauge:
            raise LedgerError(f"Gauge is required for profile {material.name}")
        if quantity != quantity.to_integral_value():
            raise LedgerError("Profile batches are counted in whole pipes")

        self._register_standard_length(material, data.length, data.length_unit)

        rate_per_kg = None
        if data.actual_total_weight:
            rate_per_kg = _q(total_cost / Decimal(data.actual_total_weight))

        batch = models.ProfileBatch(
            company_id=material.company_id,
            material_id=material.id,
            batch_code=data.batch_code,
            length=data.length,
            length_unit=data.length_unit,
            gauge=data.gauge,
            original_quantity=quantity,
            current_quantity=quantity,
            actual_total_weight=data.actual_total_weight,
            actual_weight_unit=data.actual_weight_unit,
            total_cost_paid=total_cost,
            rate_per_piece=rate,
            rate_per_kg=rate_per_kg,
            supplier=data.supplier,
            purchase_date=data.purchase_date or datetime.utcnow(),
            invoice_number=data.invoice_number,
            lot_number=data.lot_number,
            notes=data.notes,
            low_stock_threshold=data.low_stock_threshold,
            created_by=self.user_id,
        )
        material.profile_batches.append(batch)
        return batch

    # ============================================================================
    # MANUAL CONSUMPTION
    # ============================================================================

    def consume_manual(self, material: models.Material, request: schemas.ManualConsumeRequest) -> List[models.StockTransaction]:
        """Draw stock FIFO outside of an order (site use, damage, scrap)."""
        try:
            if material.is_profile:
                if request.length is None or not request.length_unit:
                    raise LedgerError(f"Length and length unit are required to consume profile {material.name}")
                if not request.gauge:
                    raise LedgerError(f"Gauge is required to consume profile {material.name}")
                demand: Any = {(request.length, request.length_unit): request.quantity}
            elif material.is_wire_mesh:
                if request.width is None or not request.width_unit:
                    raise LedgerError(f"Roll width and width unit are required to consume wire mesh {material.name}")
                demand = {(request.width, request.width_unit): request.quantity}
            else:
                demand = request.quantity

            consumption = self.planner.plan(material, demand, gauge=request.gauge)
            consumption.raise_for_shortfall()

            transactions = apply_consumption(
                self.db,
                material,
                consumption.instructions,
                transaction_type=request.transaction_type.value,
                company_id=material.company_id,
                user_id=self.user_id,
                related_document_type="Manual",
                notes=request.notes,
            )
            recompute_totals(material)
            self.db.commit()
            for transaction in transactions:
                self.db.refresh(transaction)

            logger.info(f"✅ {request.transaction_type.value}: {request.quantity} of {material.name} from {len(transactions)} batches")
            return transactions

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Manual consumption of {material.id} failed: {e}")
            raise

    # ============================================================================
    # CORRECTIONS
    # ============================================================================

    def record_correction(self, batch, new_quantity: Decimal, notes: Optional[str] = None) -> models.StockTransaction:
        """Set a batch to a counted quantity and record the signed difference."""
        try:
            new_quantity = Decimal(new_quantity)
            if new_quantity < 0:
                raise LedgerError("Corrected quantity cannot be negative")
            if new_quantity > batch.original_quantity:
                raise LedgerError(
                    f"Corrected quantity {new_quantity} exceeds the batch's original quantity {batch.original_quantity}"
                )
            difference = new_quantity - batch.current_quantity
            if difference == 0:
                raise LedgerError(f"Batch {batch.batch_code} already holds {new_quantity}")

            batch.current_quantity = new_quantity
            batch.is_completed = new_quantity <= 0
            batch.updated_at = datetime.utcnow()

            transaction = models.StockTransaction(
                company_id=batch.company_id,
                material_id=batch.material_id,
                batch_kind=batch.kind,
                batch_id=batch.id,
                batch_code=batch.batch_code,
                type=models.TransactionType.CORRECTION.value,
                length=batch.length,
                length_unit=batch.length_unit,
                gauge=batch.gauge,
                width=batch.width,
                width_unit=batch.width_unit,
                quantity_change=difference,
                quantity_unit=batch.quantity_unit,
                unit_rate_at_transaction=batch.unit_rate,
                related_document_type="Batch",
                related_document_id=batch.id,
                notes=notes,
                created_by=self.user_id,
            )
            self.db.add(transaction)
            recompute_totals(batch.material)
            self.db.commit()
            self.db.refresh(transaction)

            logger.info(f"🔧 Corrected batch {batch.batch_code} by {difference}")
            return transaction

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Correction of batch {batch.id} failed: {e}")
            raise

    # ============================================================================
    # REPORTS
    # ============================================================================

    @staticmethod
    def stock_summary(material: models.Material) -> Dict[str, Any]:
        """Live stock per (length, gauge) for profiles, per roll width for wire mesh, a single line otherwise."""
        live = sorted((b for b in material.batches if b.is_active and not b.is_completed), key=fifo_key)

        groups: Dict[Any, Dict[str, Any]] = {}
        for batch in live:
            if material.is_profile:
                key = (units.convert(batch.length, batch.length_unit, "mm"), batch.gauge)
            elif batch.width is not None:
                key = (units.convert(batch.width, batch.width_unit, "mm"), None)
            else:
                key = (None, None)
            entry = groups.setdefault(key, {
                "length": batch.length,
                "length_unit": batch.length_unit,
                "gauge": batch.gauge,
                "width": batch.width,
                "width_unit": batch.width_unit,
                "unit": batch.quantity_unit,
                "quantity": ZERO,
                "weight": ZERO,
                "value": ZERO,
                "batch_count": 0,
            })
            entry["quantity"] += batch.current_quantity
            entry["value"] += batch.current_quantity * batch.unit_rate
            if material.is_profile:
                entry["weight"] += batch.current_weight
            entry["batch_count"] += 1

        breakdown = []
        for entry in groups.values():
            entry["value"] = _q(entry["value"])
            entry["weight"] = _q(entry["weight"])
            entry["average_rate"] = _q(entry["value"] / entry["quantity"]) if entry["quantity"] else ZERO
            breakdown.append(entry)

        return {
            "material_id": material.id,
            "material_name": material.name,
            "category": material.category,
            "total_current_stock": material.total_current_stock,
            "total_current_weight": material.total_current_weight,
            "total_current_value": material.total_current_value,
            "breakdown": breakdown,
        }

    def batch_history(
        self,
        material: models.Material,
        supplier: Optional[str] = None,
        gauge: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        include_completed: bool = True,
    ) -> List[Any]:
        batch_model = models.ProfileBatch if material.is_profile else models.SimpleBatch
        query = self.db.query(batch_model).filter(batch_model.material_id == material.id)

        if supplier:
            query = query.filter(batch_model.supplier == supplier)
        if gauge and material.is_profile:
            query = query.filter(batch_model.gauge == gauge)
        if date_from:
            query = query.filter(batch_model.purchase_date >= date_from)
        if date_to:
            query = query.filter(batch_model.purchase_date <= date_to)
        if not include_completed:
            query = query.filter(batch_model.is_completed == False)  # noqa: E712

        return query.order_by(batch_model.purchase_date, batch_model.created_at).all()
