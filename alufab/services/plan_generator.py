"""
Cutting plan generation for an order.

Runs the optimizer per (material, gauge) group of the order's required cuts,
sizes wire mesh pieces against the stocked roll widths, previews stock
consumption to warn about shortfalls, and stores the result as
the order's Generated plan. Nothing is consumed until the plan is committed.
"""

from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
import uuid
import logging

from .. import models, schemas
from ..config import settings
from ..errors import (
    AlreadyCommittedError, CuttingError, InfeasibleCutError, InvalidCutError,
    InvalidStatusTransitionError, MaterialNotFoundError, OrderNotFoundError, PlanNotFoundError,
)
from . import units
from .batch_planner import BatchConsumptionPlanner
from .cutting_optimizer import (
    CuttingOptimizer, OptimizerConfig, PipeUsage, RequiredCut, StockLength, select_roll_width, summarize,
)
from .order_workflow import OPTIMIZABLE_STATUSES, OrderWorkflowService

logger = logging.getLogger(__name__)


def build_optimizer_config(
    material: models.Material,
    gauge: Optional[str] = None,
    overrides: Optional[schemas.CuttingPlanGenerate] = None,
) -> OptimizerConfig:
    """Optimizer settings for a material: settings, then material, then request overrides."""
    config = OptimizerConfig(
        usage_unit=material.usage_unit,
        tolerance=material.cutting_tolerance or settings.DEFAULT_CUT_TOLERANCE,
        kerf=material.kerf_length if material.kerf_length is not None else settings.DEFAULT_KERF,
        strategy=settings.OPTIMIZER_STRATEGY,
        weight_unit=material.weight_unit or "kg",
        cp_sat_time_limit=settings.CP_SAT_TIME_LIMIT_SECONDS,
        cp_sat_max_cuts=settings.CP_SAT_MAX_CUTS,
    )

    gauge_weight = material.gauge_weight_for(gauge)
    if gauge_weight is not None:
        config = replace(
            config,
            weight_per_length=gauge_weight.weight_per_unit_length,
            weight_length_unit=gauge_weight.unit_length,
        )

    if overrides is not None:
        if overrides.kerf is not None:
            config = replace(config, kerf=overrides.kerf)
        if overrides.tolerance is not None:
            config = replace(config, tolerance=overrides.tolerance)
        if overrides.strategy is not None:
            config = replace(config, strategy=overrides.strategy)

    return config


def pipe_to_schema(pipe: PipeUsage) -> schemas.PipeUsed:
    return schemas.PipeUsed(
        standard_length=pipe.standard_length,
        standard_length_unit=pipe.standard_length_unit,
        cuts_made=[
            schemas.CutMade(required_length=c.required_length, identifier=c.identifier, source_item=c.source_item)
            for c in pipe.cuts
        ],
        total_cut_length_on_pipe=pipe.total_cut_length,
        kerf_loss=pipe.kerf_loss,
        scrap_length=pipe.scrap_length,
        calculated_weight=pipe.calculated_weight,
    )


def demand_from_material_plan(material_plan: Dict[str, Any]) -> Any:
    """Stock demand stored on a plan: pipes per standard length, area per roll width, or a unit quantity."""
    if material_plan.get("widths_used"):
        return OrderedDict(
            ((Decimal(entry["width"]), entry["unit"]), Decimal(entry["area"]))
            for entry in material_plan["widths_used"]
        )
    if material_plan.get("required_quantity") is not None:
        return Decimal(material_plan["required_quantity"])
    return OrderedDict(
        ((Decimal(entry["length"]), entry["unit"]), entry["quantity"])
        for entry in material_plan.get("total_pipes_per_length", [])
    )


class CuttingPlanGenerator:
    def __init__(self, db: Session, user_id: Optional[uuid.UUID] = None):
        self.db = db
        self.user_id = user_id
        self.planner = BatchConsumptionPlanner()
        self.workflow = OrderWorkflowService(db, user_id)

    def get_order(self, order_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> models.Order:
        query = self.db.query(models.Order).filter(models.Order.id == order_id)
        if company_id is not None:
            query = query.filter(models.Order.company_id == company_id)
        order = query.first()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def get_plan_for_order(self, order_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> models.CuttingPlan:
        order = self.get_order(order_id, company_id)
        plan = self.db.query(models.CuttingPlan).filter(models.CuttingPlan.order_id == order.id).first()
        if plan is None:
            raise PlanNotFoundError(f"No cutting plan for order {order.frontend_id or order.id}")
        return plan

    # ============================================================================
    # GENERATE
    # ============================================================================

    def generate(
        self,
        order_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
        overrides: Optional[schemas.CuttingPlanGenerate] = None,
    ) -> models.CuttingPlan:
        """
        Generate (or regenerate) the cutting plan of an order.

        Raises:
            AlreadyCommittedError: the order's plan has been committed
            InvalidStatusTransitionError: the order is not ready for optimization
            InfeasibleCutError / InvalidCutError: no plan could be made; the
                order is marked Optimization Failed before re-raising
        """
        order = self.get_order(order_id, company_id)

        existing = self.db.query(models.CuttingPlan).filter(models.CuttingPlan.order_id == order.id).first()
        if existing is not None and existing.is_committed:
            raise AlreadyCommittedError(
                f"Cutting plan {existing.frontend_id} of order {order.frontend_id} is already committed"
            )
        if order.status not in OPTIMIZABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Order {order.frontend_id} is '{order.status}'; cutting plans are generated from "
                f"{', '.join(sorted(OPTIMIZABLE_STATUSES))}",
                current_status=order.status,
            )

        try:
            material_plans, strategy = self._build_material_plans(order, overrides)
        except (InfeasibleCutError, InvalidCutError) as e:
            logger.error(f"❌ Cutting plan generation failed for order {order.frontend_id}: {e}")
            try:
                if existing is not None:
                    self.db.delete(existing)
                self.workflow.mark_optimization_failed(order, str(e))
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            raise

        try:
            warnings = self._preview_shortfalls(material_plans)

            if existing is not None:
                self.db.delete(existing)
                self.db.flush()
                logger.info(f"🔧 Replaced generated plan {existing.frontend_id} of order {order.frontend_id}")

            plan = models.CuttingPlan(
                company_id=order.company_id,
                order_id=order.id,
                status=models.CuttingPlanStatus.GENERATED.value,
                optimizer_strategy=strategy,
                generated_by=self.user_id,
                generated_at=datetime.utcnow(),
            )
            plan.material_plans = material_plans
            plan.shortfall_warnings = warnings
            self.db.add(plan)

            order.cutting_plan_status = models.OrderCuttingPlanStatus.GENERATED.value
            notes = "Cutting plan generated"
            if warnings:
                notes += f" with {len(warnings)} stock shortfall warning(s)"
            self.workflow.advance(order, models.OrderStatus.OPTIMIZATION_COMPLETE, notes=notes, system=True, commit=False)

            self.db.commit()
            self.db.refresh(plan)

            logger.info(f"✅ Generated cutting plan {plan.frontend_id} for order {order.frontend_id} ({len(material_plans)} materials)")
            return plan

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to store cutting plan for order {order_id}: {e}")
            raise

    def _build_material_plans(self, order: models.Order, overrides) -> Tuple[List[Dict[str, Any]], str]:
        groups: "OrderedDict[Tuple[Any, Optional[str]], List[models.OrderRequiredCut]]" = OrderedDict()
        for cut in order.required_cuts:
            groups.setdefault((cut.material_id, cut.gauge), []).append(cut)

        material_plans = []
        strategies = set()

        for (material_id, gauge), cuts in groups.items():
            material = self._material(material_id, order.company_id)
            if not material.is_profile:
                raise InvalidCutError(f"{material.name} is a {material.category} material and cannot be cut to length")
            if not gauge:
                raise InvalidCutError(
                    f"Cuts of profile {material.name} need a gauge", identifier=cuts[0].identifier
                )
            if not material.standard_lengths:
                raise InfeasibleCutError(cuts[0].length, cuts[0].length_unit, None, cuts[0].identifier)

            config = build_optimizer_config(material, gauge, overrides)
            strategies.add(config.strategy)
            hints = self.planner.available_by_length(material, gauge)

            required = [
                RequiredCut(
                    material_id=material.id,
                    length=cut.length,
                    length_unit=cut.length_unit,
                    identifier=cut.identifier or "",
                    source_item=cut.source_item,
                )
                for cut in cuts
            ]
            pipes = CuttingOptimizer(config).optimize(required, hints)
            summary = summarize(pipes)

            material_plans.append(schemas.MaterialPlan(
                material_id=material.id,
                material_name_snapshot=material.name,
                category=material.category,
                gauge_snapshot=gauge,
                usage_unit=material.usage_unit,
                pipes_used=[pipe_to_schema(p) for p in pipes],
                total_pipes_per_length=[
                    schemas.PipesPerLength(
                        length=s.length, unit=s.unit, quantity=s.quantity,
                        total_scrap=s.total_scrap, scrap_unit=s.scrap_unit,
                    )
                    for s in summary.lengths
                ],
                total_weight=summary.total_weight,
                weight_unit=config.weight_unit if summary.total_weight is not None else None,
            ).model_dump(mode="json"))

        unit_demand: "OrderedDict[Any, Decimal]" = OrderedDict()
        unit_materials = {}
        mesh_pieces: "OrderedDict[Any, List[Any]]" = OrderedDict()
        for demand in order.material_demands:
            material = self._material(demand.material_id, order.company_id)
            if material.is_profile:
                raise InvalidCutError(f"Profile {material.name} must be ordered as cuts, not as a quantity")
            if material.is_wire_mesh:
                mesh_pieces.setdefault(material.id, []).append((demand, self._size_mesh_piece(material, demand)))
                unit_materials[material.id] = material
                continue
            quantity = Decimal(demand.quantity)
            if units.unit_kind(demand.unit) != units.unit_kind(material.stock_unit):
                raise InvalidCutError(
                    f"Demand unit '{demand.unit}' does not match stock unit '{material.stock_unit}' of {material.name}"
                )
            quantity = units.convert(quantity, demand.unit, material.stock_unit)
            unit_demand[material.id] = unit_demand.get(material.id, Decimal("0")) + quantity
            unit_materials[material.id] = material

        for material_id, quantity in unit_demand.items():
            material = unit_materials[material_id]
            material_plans.append(schemas.MaterialPlan(
                material_id=material.id,
                material_name_snapshot=material.name,
                category=material.category,
                usage_unit=material.usage_unit,
                required_quantity=quantity,
                quantity_unit=material.stock_unit,
            ).model_dump(mode="json"))

        for material_id, sized in mesh_pieces.items():
            material_plans.append(self._mesh_plan(unit_materials[material_id], sized))

        strategy = strategies.pop() if len(strategies) == 1 else settings.OPTIMIZER_STRATEGY
        return material_plans, strategy

    @staticmethod
    def _size_mesh_piece(material: models.Material, demand: models.OrderMaterialDemand):
        if demand.width is None or demand.length is None or not demand.dimension_unit:
            raise InvalidCutError(f"Wire mesh demand for {material.name} needs width, length and dimension unit")
        rolls = [StockLength(length=s.length, unit=s.unit) for s in material.standard_lengths]
        return select_roll_width(
            rolls, demand.width, demand.length, demand.dimension_unit,
            area_unit=material.stock_unit, pieces=Decimal(demand.quantity),
        )

    @staticmethod
    def _mesh_plan(material: models.Material, sized) -> Dict[str, Any]:
        """Consumed area per roll width, in the order the widths were first picked."""
        widths: "OrderedDict[Tuple[Decimal, str], schemas.RollWidthUsed]" = OrderedDict()
        for demand, selection in sized:
            key = (units.convert(selection.width, selection.width_unit, "mm"), selection.width_unit)
            entry = widths.get(key)
            if entry is None:
                entry = widths[key] = schemas.RollWidthUsed(
                    width=selection.width, unit=selection.width_unit,
                    area=Decimal("0"), area_unit=selection.area_unit,
                )
            entry.area += selection.consumed_area
            entry.pieces.append(schemas.MeshPiece(
                width=demand.width,
                length=demand.length,
                unit=demand.dimension_unit,
                pieces=selection.pieces,
                orientation=selection.orientation,
                required_area=selection.required_area,
                consumed_area=selection.consumed_area,
            ))

        return schemas.MaterialPlan(
            material_id=material.id,
            material_name_snapshot=material.name,
            category=material.category,
            usage_unit=material.usage_unit,
            required_quantity=sum((w.area for w in widths.values()), Decimal("0")),
            quantity_unit=material.stock_unit,
            widths_used=list(widths.values()),
        ).model_dump(mode="json")

    def _preview_shortfalls(self, material_plans: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        warnings = []
        reserved: Dict[Any, Decimal] = {}
        for material_plan in material_plans:
            material = self.db.get(models.Material, uuid.UUID(material_plan["material_id"]))
            consumption = self.planner.plan(
                material,
                demand_from_material_plan(material_plan),
                gauge=material_plan.get("gauge_snapshot"),
                reserved=reserved,
            )
            warnings.extend(s.to_dict() for s in consumption.shortfalls)
        return warnings

    def _material(self, material_id, company_id) -> models.Material:
        material = self.db.query(models.Material).filter(
            models.Material.id == material_id,
            models.Material.company_id == company_id,
        ).first()
        if material is None:
            raise MaterialNotFoundError(f"Material {material_id} not found")
        return material

    # ============================================================================
    # DISCARD
    # ============================================================================

    def discard(self, order_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> None:
        """Delete a Generated plan; the ledger is not touched."""
        plan = self.get_plan_for_order(order_id, company_id)
        if plan.is_committed:
            raise AlreadyCommittedError(f"Cutting plan {plan.frontend_id} is committed and cannot be discarded")

        try:
            order = plan.order
            self.db.delete(plan)
            order.cutting_plan_status = models.OrderCuttingPlanStatus.PENDING.value
            if order.status == models.OrderStatus.OPTIMIZATION_COMPLETE:
                self.workflow.advance(
                    order, models.OrderStatus.READY_FOR_OPTIMIZATION,
                    notes=f"Cutting plan {plan.frontend_id} discarded", commit=False,
                )
            self.db.commit()
            logger.info(f"🔧 Discarded cutting plan {plan.frontend_id} of order {order.frontend_id}")
        except CuttingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to discard cutting plan of order {order_id}: {e}")
            raise
