from fastapi import APIRouter, HTTPException
from decimal import Decimal
import logging

from .. import schemas
from ..errors import CuttingError
from ..services.cutting_optimizer import CuttingOptimizer, OptimizerConfig, RequiredCut, StockLength, summarize
from ..services.plan_generator import pipe_to_schema

router = APIRouter()
logger = logging.getLogger(__name__)

# ============================================================================
# CUTTING PREVIEW ENDPOINT - Stateless, nothing is stored
# ============================================================================

@router.post("/cutting/preview", response_model=schemas.CuttingPreviewResponse)
def preview_cutting_plan(request: schemas.CuttingPreviewRequest):
    """
    Run the cut-assignment optimizer on an ad-hoc cut list.

    Useful to check scrap before an order is saved; stock is neither read nor
    consumed.
    """
    try:
        config = OptimizerConfig(
            usage_unit=request.usage_unit,
            tolerance=request.tolerance,
            kerf=request.kerf,
            strategy=request.strategy,
            weight_per_length=request.weight_per_length,
            weight_length_unit=request.weight_length_unit,
        )
        cuts = [
            RequiredCut(
                material_id=None,
                length=cut.length,
                length_unit=cut.length_unit,
                identifier=cut.identifier or "",
            )
            for cut in request.cuts
            for _ in range(cut.quantity)
        ]
        stock = [
            StockLength(length=s.length, unit=s.unit, rate=s.rate, available=s.available)
            for s in request.standard_lengths
        ]

        pipes = CuttingOptimizer(config).optimize(cuts, stock)
        summary = summarize(pipes)

        total_cut = sum((p.total_cut_length for p in pipes), Decimal("0"))
        total_stock = sum((p.capacity for p in pipes), Decimal("0"))
        utilization = (total_cut / total_stock * 100).quantize(Decimal("0.01")) if total_stock else Decimal("0")

        return schemas.CuttingPreviewResponse(
            usage_unit=request.usage_unit,
            pipes_used=[pipe_to_schema(p) for p in pipes],
            total_pipes_per_length=[
                schemas.PipesPerLength(
                    length=s.length, unit=s.unit, quantity=s.quantity,
                    total_scrap=s.total_scrap, scrap_unit=s.scrap_unit,
                )
                for s in summary.lengths
            ],
            total_pipes=summary.total_pipes,
            total_scrap=summary.total_scrap,
            total_weight=summary.total_weight,
            summary={
                "total_cuts": len(cuts),
                "total_cut_length": str(total_cut),
                "total_stock_length": str(total_stock),
                "utilization_percentage": str(utilization),
            },
        )
    except (HTTPException, CuttingError):
        raise
    except Exception as e:
        logger.error(f"Error previewing cutting plan: {e}")
        raise HTTPException(status_code=500, detail=str(e))
