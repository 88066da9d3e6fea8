"""
Cut-assignment optimizer for profile stock.

Assigns every required cut of one material to a standard-length pipe:
cuts are placed longest first (first-fit-decreasing ordering) into the open
pipe that leaves the least remaining length (best fit); when no open pipe can
take a cut, a new pipe of the smallest standard length that fits is opened.
Wire mesh is sized the same way across its width: ``select_roll_width``
picks the narrowest stocked roll that covers a piece.

The optimizer is pure: it never reads the database or global settings, and
for a given input ordering it always produces the same plan.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from ortools.sat.python import cp_model

from ..errors import InfeasibleCutError, InvalidCutError
from . import units

logger = logging.getLogger(__name__)

WEIGHT_PRECISION = Decimal("0.001")

STRATEGY_BEST_FIT = "best_fit"
STRATEGY_CP_SAT = "cp_sat"


@dataclass(frozen=True)
class RequiredCut:
    """A single piece to cut, in any linear unit."""
    material_id: Any
    length: Decimal
    length_unit: str
    identifier: str = ""
    source_item: Optional[str] = None


@dataclass(frozen=True)
class StockLength:
    """
    A standard length the material is stocked in.

    ``rate`` and ``available`` are optional hints from the inventory used only
    to break ties between standard lengths of equal size.
    """
    length: Decimal
    unit: str
    rate: Optional[Decimal] = None
    available: Optional[Decimal] = None


@dataclass
class OptimizerConfig:
    usage_unit: str
    tolerance: Decimal = Decimal("0.01")
    kerf: Decimal = Decimal("0")
    strategy: str = STRATEGY_BEST_FIT
    weight_per_length: Optional[Decimal] = None
    weight_length_unit: str = "ft"
    weight_unit: str = "kg"
    cp_sat_time_limit: float = 10.0
    cp_sat_max_cuts: int = 60


@dataclass
class CutEntry:
    required_length: Decimal
    identifier: str = ""
    source_item: Optional[str] = None


@dataclass
class PipeUsage:
    """One physical pipe drawn from stock and the cuts assigned to it."""
    standard_length: Decimal
    standard_length_unit: str
    capacity: Decimal  # standard length expressed in the usage unit
    usage_unit: str
    kerf: Decimal = Decimal("0")
    cuts: List[CutEntry] = field(default_factory=list)
    total_cut_length: Decimal = Decimal("0")
    kerf_loss: Decimal = Decimal("0")
    scrap_length: Optional[Decimal] = None
    calculated_weight: Optional[Decimal] = None

    @property
    def remaining(self) -> Decimal:
        return self.capacity - self.total_cut_length - self.kerf_loss

    def cost_of(self, length: Decimal) -> Decimal:
        """Length consumed by placing one more cut of ``length`` on this pipe."""
        return length + (self.kerf if self.cuts else Decimal("0"))

    def fits(self, length: Decimal) -> bool:
        return self.cost_of(length) <= self.remaining

    def place(self, cut: CutEntry) -> None:
        if self.cuts:
            self.kerf_loss += self.kerf
        self.cuts.append(cut)
        self.total_cut_length += cut.required_length

    def close(self, config: OptimizerConfig) -> None:
        self.scrap_length = self.remaining
        if self.scrap_length < 0:
            raise InvalidCutError(
                f"Pipe of {self.standard_length} {self.standard_length_unit} over-allocated by {-self.scrap_length}"
            )
        if config.weight_per_length is not None:
            length_in_factor_unit = units.convert(
                self.standard_length, self.standard_length_unit, config.weight_length_unit
            )
            self.calculated_weight = (length_in_factor_unit * Decimal(config.weight_per_length)).quantize(
                WEIGHT_PRECISION, rounding=ROUND_HALF_UP
            )


@dataclass
class LengthSummary:
    length: Decimal
    unit: str
    quantity: int
    total_scrap: Decimal
    scrap_unit: str


@dataclass
class PlanSummary:
    lengths: List[LengthSummary]
    total_weight: Optional[Decimal]
    total_pipes: int
    total_scrap: Decimal


@dataclass
class _StockOption:
    index: int
    length: Decimal
    unit: str
    capacity: Decimal
    rate: Optional[Decimal]
    available: Optional[Decimal]

    def sort_key(self):
        # Smallest length, then cheapest, then most abundant, then input order
        no_rate = self.rate is None
        return (
            self.capacity,
            no_rate,
            self.rate if not no_rate else Decimal("0"),
            -(self.available or Decimal("0")),
            self.index,
        )


@dataclass
class _PreparedCut:
    index: int
    length: Decimal
    entry: CutEntry


class CuttingOptimizer:
    def __init__(self, config: OptimizerConfig):
        """
        Initialize the optimizer for one material.

        Args:
            config: usage unit, rounding tolerance, kerf, strategy and the
                optional gauge weight factor of the material being cut
        """
        self.config = config
        self.usage_unit = units.normalize_unit(config.usage_unit)
        if not units.is_linear(self.usage_unit):
            raise InvalidCutError(f"Usage unit '{config.usage_unit}' is not a length unit")
        self.kerf = Decimal(config.kerf or 0)
        if self.kerf < 0:
            raise InvalidCutError(f"Kerf cannot be negative (got {self.kerf})")

    def optimize(self, required_cuts: Sequence[RequiredCut], standard_lengths: Sequence[StockLength]) -> List[PipeUsage]:
        """
        Assign every cut to a pipe.

        Raises:
            InvalidCutError: a cut is zero, negative, or in a unit that does not
                convert to the usage unit
            InfeasibleCutError: a cut is longer than every standard length
        """
        if not required_cuts:
            return []

        cuts = self._prepare_cuts(required_cuts)
        options = self._prepare_stock(standard_lengths)

        longest = max((o.capacity for o in options), default=None)
        for cut in cuts:
            if longest is None or cut.length > longest:
                raise InfeasibleCutError(cut.length, self.usage_unit, longest, cut.entry.identifier)

        pipes = self._best_fit(cuts, options)

        if self.config.strategy == STRATEGY_CP_SAT:
            pipes = self._improve_with_cp_sat(cuts, options, pipes)

        for pipe in pipes:
            pipe.close(self.config)

        logger.info(
            f"✅ Optimized {len(cuts)} cuts into {len(pipes)} pipes "
            f"(scrap {sum((p.scrap_length for p in pipes), Decimal('0'))} {self.usage_unit})"
        )
        return pipes

    # ------------------------------------------------------------------
    # Input normalisation
    # ------------------------------------------------------------------

    def _prepare_cuts(self, required_cuts: Sequence[RequiredCut]) -> List[_PreparedCut]:
        material_ids = {cut.material_id for cut in required_cuts}
        if len(material_ids) > 1:
            raise InvalidCutError("Cuts of different materials cannot be optimized together")

        prepared = []
        for index, cut in enumerate(required_cuts):
            length = Decimal(cut.length)
            if length <= 0:
                raise InvalidCutError(
                    f"Cut length must be positive (got {length} {cut.length_unit})",
                    identifier=cut.identifier,
                )
            if not units.is_linear(cut.length_unit):
                raise InvalidCutError(
                    f"Cut unit '{cut.length_unit}' is not a length unit", identifier=cut.identifier
                )
            converted = units.round_to(
                units.convert(length, cut.length_unit, self.usage_unit), self.config.tolerance
            )
            if converted <= 0:
                raise InvalidCutError(
                    f"Cut of {length} {cut.length_unit} rounds to zero at tolerance {self.config.tolerance}",
                    identifier=cut.identifier,
                )
            prepared.append(
                _PreparedCut(
                    index=index,
                    length=converted,
                    entry=CutEntry(required_length=converted, identifier=cut.identifier, source_item=cut.source_item),
                )
            )

        # Longest first; equal lengths keep input order
        prepared.sort(key=lambda c: (-c.length, c.index))
        return prepared

    def _prepare_stock(self, standard_lengths: Sequence[StockLength]) -> List[_StockOption]:
        options = []
        for index, stock in enumerate(standard_lengths):
            length = Decimal(stock.length)
            if length <= 0:
                raise InvalidCutError(f"Standard length must be positive (got {length} {stock.unit})")
            if not units.is_linear(stock.unit):
                raise InvalidCutError(f"Standard length unit '{stock.unit}' is not a length unit")
            options.append(
                _StockOption(
                    index=index,
                    length=length,
                    unit=stock.unit,
                    # Rounded like the cuts, so a cut as long as the pipe always fits
                    capacity=units.round_to(
                        units.convert(length, stock.unit, self.usage_unit), self.config.tolerance
                    ),
                    rate=Decimal(stock.rate) if stock.rate is not None else None,
                    available=Decimal(stock.available) if stock.available is not None else None,
                )
            )
        options.sort(key=_StockOption.sort_key)
        return options

    def _new_pipe(self, option: _StockOption) -> PipeUsage:
        return PipeUsage(
            standard_length=option.length,
            standard_length_unit=option.unit,
            capacity=option.capacity,
            usage_unit=self.usage_unit,
            kerf=self.kerf,
        )

    # ------------------------------------------------------------------
    # Best-fit decreasing
    # ------------------------------------------------------------------

    def _best_fit(self, cuts: List[_PreparedCut], options: List[_StockOption]) -> List[PipeUsage]:
        pipes: List[PipeUsage] = []
        for cut in cuts:
            best_pipe = None
            best_left = None
            for pipe in pipes:
                if not pipe.fits(cut.length):
                    continue
                left = pipe.remaining - pipe.cost_of(cut.length)
                # Strict comparison keeps the earliest-opened pipe on ties
                if best_left is None or left < best_left:
                    best_pipe, best_left = pipe, left

            if best_pipe is None:
                # options are sorted: first one that fits is the smallest/cheapest
                option = next(o for o in options if o.capacity >= cut.length)
                best_pipe = self._new_pipe(option)
                pipes.append(best_pipe)

            best_pipe.place(cut.entry)
        return pipes

    # ------------------------------------------------------------------
    # Exact packing with OR-Tools CP-SAT
    # ------------------------------------------------------------------

    def _improve_with_cp_sat(
        self, cuts: List[_PreparedCut], options: List[_StockOption], baseline: List[PipeUsage]
    ) -> List[PipeUsage]:
        if len(cuts) > self.config.cp_sat_max_cuts:
            logger.info(f"⚠️ {len(cuts)} cuts exceed CP-SAT limit {self.config.cp_sat_max_cuts}, keeping best-fit plan")
            return baseline

        solved = self._solve_cp_sat(cuts, options, len(baseline))
        if solved is None:
            return baseline

        baseline_length = sum((p.capacity for p in baseline), Decimal("0"))
        solved_length = sum((p.capacity for p in solved), Decimal("0"))
        if solved_length > baseline_length:
            return baseline

        logger.info(
            f"🔧 CP-SAT plan uses {solved_length} {self.usage_unit} of stock "
            f"(best-fit {baseline_length} {self.usage_unit})"
        )
        return solved

    def _solve_cp_sat(
        self, cuts: List[_PreparedCut], options: List[_StockOption], max_pipes: int
    ) -> Optional[List[PipeUsage]]:
        # Integer model in tolerance steps
        step = Decimal(self.config.tolerance) if self.config.tolerance and Decimal(self.config.tolerance) > 0 else Decimal("0.001")

        def scaled(value: Decimal, rounding) -> int:
            return int((value / step).to_integral_value(rounding=rounding))

        kerf = scaled(self.kerf, ROUND_CEILING)
        cut_sizes = [scaled(c.length, ROUND_CEILING) + kerf for c in cuts]
        capacities = [scaled(o.capacity, ROUND_FLOOR) + kerf for o in options]
        lengths = [scaled(o.capacity, ROUND_CEILING) for o in options]

        model = cp_model.CpModel()
        slots = range(max_pipes)

        assign = {
            (c, p): model.NewBoolVar(f"cut_{c}_pipe_{p}")
            for c in range(len(cuts)) for p in slots
        }
        pick = {
            (p, s): model.NewBoolVar(f"pipe_{p}_stock_{s}")
            for p in slots for s in range(len(options))
        }

        for c in range(len(cuts)):
            model.AddExactlyOne([assign[c, p] for p in slots])

        for p in slots:
            model.Add(sum(pick[p, s] for s in range(len(options))) <= 1)
            model.Add(
                sum(cut_sizes[c] * assign[c, p] for c in range(len(cuts)))
                <= sum(capacities[s] * pick[p, s] for s in range(len(options)))
            )

        # Used slots come first
        for p in range(1, max_pipes):
            model.Add(
                sum(pick[p, s] for s in range(len(options)))
                <= sum(pick[p - 1, s] for s in range(len(options)))
            )

        # Minimise stock length, then pipe count
        weight = max_pipes + 1
        model.Minimize(
            sum(lengths[s] * weight * pick[p, s] for p in slots for s in range(len(options)))
            + sum(pick[p, s] for p in slots for s in range(len(options)))
        )

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = float(self.config.cp_sat_time_limit)
        solver.parameters.num_workers = 1
        solver.parameters.random_seed = 0

        status = solver.Solve(model)
        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            logger.warning(f"⚠️ CP-SAT returned {solver.StatusName(status)}, keeping best-fit plan")
            return None

        pipes: List[Tuple[int, PipeUsage]] = []
        for p in slots:
            chosen = [s for s in range(len(options)) if solver.Value(pick[p, s])]
            if not chosen:
                continue
            pipe = self._new_pipe(options[chosen[0]])
            # cuts are already sorted longest first
            placed = [c for c in range(len(cuts)) if solver.Value(assign[c, p])]
            if not placed:
                continue
            for c in placed:
                pipe.place(cuts[c].entry)
            if pipe.remaining < 0:
                return None
            pipes.append((placed[0], pipe))

        # Order pipes by the rank of their longest cut
        pipes.sort(key=lambda item: item[0])
        return [pipe for _, pipe in pipes]


def optimize(
    required_cuts: Sequence[RequiredCut],
    standard_lengths: Sequence[StockLength],
    config: OptimizerConfig,
) -> List[PipeUsage]:
    return CuttingOptimizer(config).optimize(required_cuts, standard_lengths)


def summarize(pipes: Sequence[PipeUsage]) -> PlanSummary:
    """Aggregate pipes per standard length, in order of first use."""
    groups: "OrderedDict[Tuple[Decimal, str], LengthSummary]" = OrderedDict()
    total_weight: Optional[Decimal] = None
    total_scrap = Decimal("0")

    for pipe in pipes:
        key = (units.convert(pipe.standard_length, pipe.standard_length_unit, "mm"), pipe.standard_length_unit)
        summary = groups.get(key)
        if summary is None:
            summary = LengthSummary(
                length=pipe.standard_length,
                unit=pipe.standard_length_unit,
                quantity=0,
                total_scrap=Decimal("0"),
                scrap_unit=pipe.usage_unit,
            )
            groups[key] = summary
        summary.quantity += 1
        summary.total_scrap += pipe.scrap_length or Decimal("0")
        total_scrap += pipe.scrap_length or Decimal("0")
        if pipe.calculated_weight is not None:
            total_weight = (total_weight or Decimal("0")) + pipe.calculated_weight

    return PlanSummary(
        lengths=list(groups.values()),
        total_weight=total_weight,
        total_pipes=len(pipes),
        total_scrap=total_scrap,
    )


def pipe_demand(pipes: Sequence[PipeUsage]) -> Dict[Tuple[Decimal, str], int]:
    """Number of pipes needed per (standard length, unit)."""
    return {(s.length, s.unit): s.quantity for s in summarize(pipes).lengths}


# ----------------------------------------------------------------------
# Roll width selection (wire mesh)
# ----------------------------------------------------------------------

AREA_PRECISION = Decimal("0.0001")


@dataclass
class WidthSelection:
    """The roll width chosen for a width x length piece and the area it uses."""
    width: Decimal
    width_unit: str
    cut_length: Decimal  # length unrolled for one piece, in the requested unit
    length_unit: str
    orientation: str  # "original" or "swapped"
    pieces: Decimal
    required_area: Decimal
    consumed_area: Decimal
    area_unit: str

    @property
    def wastage_area(self) -> Decimal:
        return self.consumed_area - self.required_area


def _area(across, along, unit: str, area_unit: str) -> Decimal:
    square_mm = units.convert(across, unit, "mm") * units.convert(along, unit, "mm")
    return units.convert(square_mm, "sqmm", area_unit)


def select_roll_width(
    standard_widths: Sequence[StockLength],
    width: Decimal,
    length: Decimal,
    unit: str,
    area_unit: str = "sqft",
    pieces: Decimal = Decimal("1"),
) -> WidthSelection:
    """
    Pick the narrowest stocked roll that covers a piece.

    The piece is tried as given first; if no roll is wide enough it is turned
    so its length runs across the roll. The consumed area is the full roll
    width times the unrolled length.

    Raises:
        InvalidCutError: a dimension is not positive or not a length
        InfeasibleCutError: no roll covers the piece in either orientation
    """
    width, length, pieces = Decimal(width), Decimal(length), Decimal(pieces)
    if width <= 0 or length <= 0 or pieces <= 0:
        raise InvalidCutError(f"Piece {width} x {length} {unit} (x{pieces}) must have positive dimensions")
    if not units.is_linear(unit):
        raise InvalidCutError(f"Piece unit '{unit}' is not a length unit")
    if not standard_widths:
        raise InfeasibleCutError(min(width, length), unit, None)

    for across, along, orientation in ((width, length, "original"), (length, width, "swapped")):
        fitting = [
            (units.convert(s.length, s.unit, unit), index, s)
            for index, s in enumerate(standard_widths)
            if units.convert(s.length, s.unit, unit) >= across
        ]
        if not fitting:
            continue
        _, _, roll = min(fitting, key=lambda item: (item[0], item[1]))
        return WidthSelection(
            width=Decimal(roll.length),
            width_unit=roll.unit,
            cut_length=along,
            length_unit=unit,
            orientation=orientation,
            pieces=pieces,
            required_area=(_area(width, length, unit, area_unit) * pieces).quantize(AREA_PRECISION, rounding=ROUND_HALF_UP),
            consumed_area=(
                _area(units.convert(roll.length, roll.unit, unit), along, unit, area_unit) * pieces
            ).quantize(AREA_PRECISION, rounding=ROUND_HALF_UP),
            area_unit=area_unit,
        )

    widest = max(units.convert(s.length, s.unit, unit) for s in standard_widths)
    raise InfeasibleCutError(min(width, length), unit, widest.normalize())
