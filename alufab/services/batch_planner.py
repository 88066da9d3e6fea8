"""
Batch consumption planner.

Given the pipes (or units) an order needs, decide which purchased batches the
stock is drawn from. Batches are consumed oldest purchase first (FIFO). For
profiles only batches of the exact standard length and gauge qualify; for
wire mesh only rolls of the exact width. Each instruction carries the rate of
the batch it draws from, so the cost of a commit is the cost actually paid for
those lots.

Planning never mutates a batch; the commit service applies the instructions.
Plans made for one commit share a ``reserved`` map, so each plan only sees
what the plans before it left in a batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging

from ..errors import InsufficientStockError, InvalidCutError
from . import units
from .cutting_optimizer import StockLength

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

LengthKey = Tuple[Decimal, str]


@dataclass
class ConsumptionInstruction:
    material_id: Any
    batch_id: Any
    batch_code: Optional[str]
    batch_kind: str
    quantity: Decimal
    unit_rate: Decimal
    quantity_unit: str
    expected_quantity: Decimal  # batch quantity the plan was computed against
    length: Optional[Decimal] = None
    length_unit: Optional[str] = None
    gauge: Optional[str] = None
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None
    purchase_date: Optional[datetime] = None

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.unit_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_id": str(self.material_id),
            "batch_id": str(self.batch_id),
            "batch_code": self.batch_code,
            "batch_kind": self.batch_kind,
            "quantity": str(self.quantity),
            "unit_rate": str(self.unit_rate),
            "quantity_unit": self.quantity_unit,
            "length": str(self.length) if self.length is not None else None,
            "length_unit": self.length_unit,
            "gauge": self.gauge,
            "width": str(self.width) if self.width is not None else None,
            "width_unit": self.width_unit,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "total_value": str(self.total_value),
        }


@dataclass
class Shortfall:
    material_id: Any
    material_name: str
    required: Decimal
    available: Decimal
    unit: str = "pcs"
    length: Optional[Decimal] = None
    length_unit: Optional[str] = None
    gauge: Optional[str] = None
    width: Optional[Decimal] = None
    width_unit: Optional[str] = None

    @property
    def short(self) -> Decimal:
        return self.required - self.available

    def message(self) -> str:
        if self.length is not None:
            text = f"need {self.short.normalize():f} more {units.format_length(self.length, self.length_unit)} pipes"
            if self.gauge:
                text += f" of gauge {self.gauge}"
            return f"{self.material_name}: {text}"
        if self.width is not None:
            return (
                f"{self.material_name}: need {self.short.normalize():f} more {self.unit} "
                f"of {units.format_length(self.width, self.width_unit)} width"
            )
        return f"{self.material_name}: need {self.short.normalize():f} more {self.unit}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_id": str(self.material_id),
            "material_name": self.material_name,
            "length": str(self.length) if self.length is not None else None,
            "length_unit": self.length_unit,
            "gauge": self.gauge,
            "width": str(self.width) if self.width is not None else None,
            "width_unit": self.width_unit,
            "unit": self.unit,
            "required": str(self.required),
            "available": str(self.available),
            "short": str(self.short),
            "message": self.message(),
        }


@dataclass
class ConsumptionPlan:
    material_id: Any
    instructions: List[ConsumptionInstruction] = field(default_factory=list)
    shortfalls: List[Shortfall] = field(default_factory=list)

    @property
    def is_satisfiable(self) -> bool:
        return not self.shortfalls

    @property
    def total_quantity(self) -> Decimal:
        return sum((i.quantity for i in self.instructions), ZERO)

    @property
    def total_value(self) -> Decimal:
        return sum((i.total_value for i in self.instructions), ZERO)

    def raise_for_shortfall(self) -> None:
        """Raise InsufficientStockError if any demand could not be met."""
        if self.shortfalls:
            raise InsufficientStockError(self.shortfalls)


def fifo_key(batch) -> tuple:
    """Oldest purchase first, then oldest record, then id."""
    return (
        batch.purchase_date or datetime.min,
        batch.created_at or datetime.min,
        str(batch.id),
    )


def is_consumable(batch) -> bool:
    return bool(batch.is_active) and not batch.is_completed and batch.current_quantity > 0


def remaining(batch, reserved: Mapping[Any, Decimal]) -> Decimal:
    """What is left in a batch after earlier plans of the same run."""
    return batch.current_quantity - reserved.get(batch.id, ZERO)


def matches_length(batch, length: Decimal, unit: str) -> bool:
    if batch.length is None or batch.length_unit is None:
        return False
    return units.same_length(batch.length, batch.length_unit, length, unit)


def matches_width(batch, width: Decimal, unit: str) -> bool:
    if batch.width is None or batch.width_unit is None:
        return False
    return units.same_length(batch.width, batch.width_unit, width, unit)


class BatchConsumptionPlanner:
    """FIFO selection of batches for a material's demand."""

    def plan(
        self,
        material,
        demand: Union[Mapping[LengthKey, Any], Decimal, int],
        gauge: Optional[str] = None,
        batches: Optional[Iterable[Any]] = None,
        reserved: Optional[Dict[Any, Decimal]] = None,
    ) -> ConsumptionPlan:
        """
        Build the consumption plan for one material.

        Args:
            material: Material whose batches are drawn from
            demand: ``{(standard_length, unit): pipe_count}`` for profiles,
                ``{(roll_width, unit): area}`` for wire mesh, a quantity in
                the material's stock unit otherwise
            gauge: gauge every drawn profile batch must have; required for profiles
            batches: batches to consider; defaults to the material's batches
            reserved: quantities already drawn per batch id by earlier plans of
                the same run; updated with what this plan draws
        """
        candidates = list(material.batches if batches is None else batches)
        reserved = {} if reserved is None else reserved

        if material.is_profile:
            if not isinstance(demand, Mapping):
                raise InvalidCutError(f"Demand for profile {material.name} must be given per standard length")
            if not gauge:
                raise InvalidCutError(f"A gauge is required to draw stock of profile {material.name}")
            return self._plan_lengths(material, candidates, demand, gauge, reserved)

        if material.is_wire_mesh:
            if not isinstance(demand, Mapping):
                raise InvalidCutError(f"Demand for wire mesh {material.name} must be given per roll width")
            return self._plan_widths(material, candidates, demand, reserved)

        if isinstance(demand, Mapping):
            raise InvalidCutError(f"Demand for {material.name} must be a single quantity")
        return self._plan_units(material, candidates, Decimal(demand), reserved)

    def _plan_lengths(self, material, batches, demand: Mapping[LengthKey, Any], gauge: str, reserved) -> ConsumptionPlan:
        plan = ConsumptionPlan(material_id=material.id)
        for (length, unit), count in demand.items():
            eligible = self._eligible(
                batches, reserved,
                lambda b: matches_length(b, length, unit) and b.gauge == gauge,
            )
            self._fill(
                plan, material, eligible, Decimal(count), reserved,
                length=Decimal(length), length_unit=unit, gauge=gauge,
            )
        return plan

    def _plan_widths(self, material, batches, demand: Mapping[LengthKey, Any], reserved) -> ConsumptionPlan:
        plan = ConsumptionPlan(material_id=material.id)
        for (width, unit), area in demand.items():
            eligible = self._eligible(batches, reserved, lambda b: matches_width(b, width, unit))
            self._fill(
                plan, material, eligible, Decimal(area), reserved,
                unit=material.stock_unit, width=Decimal(width), width_unit=unit,
            )
        return plan

    def _plan_units(self, material, batches, needed: Decimal, reserved) -> ConsumptionPlan:
        plan = ConsumptionPlan(material_id=material.id)
        eligible = self._eligible(batches, reserved, lambda b: True)
        self._fill(plan, material, eligible, needed, reserved, unit=material.stock_unit)
        return plan

    @staticmethod
    def _eligible(batches, reserved, qualifies: Callable[[Any], bool]) -> List[Any]:
        return sorted(
            (b for b in batches if is_consumable(b) and remaining(b, reserved) > 0 and qualifies(b)),
            key=fifo_key,
        )

    def _fill(self, plan: ConsumptionPlan, material, eligible, needed: Decimal, reserved, **shortfall_fields) -> None:
        """Draw ``needed`` from the eligible batches, or record a shortfall and draw nothing."""
        if needed <= 0:
            return
        available = sum((remaining(b, reserved) for b in eligible), ZERO)
        if available < needed:
            shortfall = Shortfall(
                material_id=material.id,
                material_name=material.name,
                required=needed,
                available=available,
                **shortfall_fields,
            )
            plan.shortfalls.append(shortfall)
            logger.warning(f"⚠️ Shortfall for {material.name}: {shortfall.message()}")
            return
        plan.instructions.extend(self._draw(material, eligible, needed, reserved))

    def _draw(self, material, eligible, needed: Decimal, reserved) -> List[ConsumptionInstruction]:
        instructions = []
        for batch in eligible:
            if needed <= 0:
                break
            left = remaining(batch, reserved)
            take = min(needed, left)
            instructions.append(
                ConsumptionInstruction(
                    material_id=material.id,
                    batch_id=batch.id,
                    batch_code=batch.batch_code,
                    batch_kind=batch.kind,
                    quantity=take,
                    unit_rate=batch.unit_rate,
                    quantity_unit=batch.quantity_unit,
                    expected_quantity=left,
                    length=batch.length,
                    length_unit=batch.length_unit,
                    gauge=batch.gauge,
                    width=batch.width,
                    width_unit=batch.width_unit,
                    purchase_date=batch.purchase_date,
                )
            )
            reserved[batch.id] = reserved.get(batch.id, ZERO) + take
            needed -= take
        return instructions

    def available_by_length(self, material, gauge: str) -> List[StockLength]:
        """
        Stock hints per standard length for the optimizer's tie-break: total
        pieces of the gauge available and the rate of the batch that would be
        drawn first.
        """
        hints = []
        for standard in material.standard_lengths:
            eligible = self._eligible(
                material.profile_batches, {},
                lambda b: matches_length(b, standard.length, standard.unit) and b.gauge == gauge,
            )
            hints.append(
                StockLength(
                    length=standard.length,
                    unit=standard.unit,
                    rate=eligible[0].unit_rate if eligible else None,
                    available=sum((b.current_quantity for b in eligible), ZERO),
                )
            )
        return hints


def plan(material, demand, gauge: Optional[str] = None, batches=None, reserved=None) -> ConsumptionPlan:
    return BatchConsumptionPlanner().plan(material, demand, gauge=gauge, batches=batches, reserved=reserved)
