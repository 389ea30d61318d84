"""Immutable solve results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from hydrodispatch.optimization.constraints.base import ConstraintKind
    from hydrodispatch.optimization.diagnostics import InfeasibilityReport
    from hydrodispatch.optimization.variables import QuantityKind

PrimalKey = tuple["QuantityKind", str, int]
DualKey = tuple["ConstraintKind", str, int]


class SolveStatus(str, Enum):
    """Outcome of a solve, carried as data."""

    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    TIME_LIMIT = "time_limit"
    ITERATION_LIMIT = "iteration_limit"
    NUMERICAL_ERROR = "numerical_error"
    NOT_SOLVED = "not_solved"

    @property
    def is_optimal(self) -> bool:
        return self is SolveStatus.OPTIMAL

    @property
    def is_infeasible(self) -> bool:
        return self in (SolveStatus.INFEASIBLE, SolveStatus.UNBOUNDED)


@dataclass(frozen=True)
class CostBreakdown:
    """Operating cost by component, in native currency.

    ``water_value`` is the credit for water left in reservoirs at the end
    of the horizon and is therefore zero or negative.
    """

    fuel: float = 0.0
    startup: float = 0.0
    shutdown: float = 0.0
    deficit: float = 0.0
    curtailment: float = 0.0
    spill: float = 0.0
    water_value: float = 0.0
    missing_values: int = 0

    @property
    def total(self) -> float:
        return (
            self.fuel
            + self.startup
            + self.shutdown
            + self.deficit
            + self.curtailment
            + self.spill
            + self.water_value
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "fuel": self.fuel,
            "startup": self.startup,
            "shutdown": self.shutdown,
            "deficit": self.deficit,
            "curtailment": self.curtailment,
            "spill": self.spill,
            "water_value": self.water_value,
            "total": self.total,
        }

    def reconciles_with(
        self, objective_value: float, rel_tol: float = 1e-3, abs_tol: float = 1e-6
    ) -> bool:
        """Check the components sum to ``objective_value`` within tolerance."""
        gap = abs(self.total - objective_value)
        return gap <= max(abs_tol, rel_tol * abs(objective_value))


@dataclass(frozen=True)
class PriceTable:
    """Zonal marginal prices (currency/MWh) by period."""

    zones: tuple[str, ...]
    periods: tuple[int, ...]
    prices: dict[tuple[str, int], float | None] = field(default_factory=dict)

    def price(self, zone: str, period: int) -> float | None:
        return self.prices.get((zone, period))

    def as_array(self) -> np.ndarray:
        """Zones × periods matrix, NaN where a price is absent."""
        matrix = np.full((len(self.zones), len(self.periods)), np.nan)
        for i, zone in enumerate(self.zones):
            for j, period in enumerate(self.periods):
                value = self.prices.get((zone, period))
                if value is not None:
                    matrix[i, j] = value
        return matrix

    def average_price(self, zone: str) -> float | None:
        """Mean price of a zone over periods with a price."""
        row = self.as_array()[self.zones.index(zone)]
        if np.all(np.isnan(row)):
            return None
        return float(np.nanmean(row))


@dataclass(frozen=True)
class SolverResult:
    """Snapshot of one solve (or of a two-stage solve).

    Attributes:
        status: Solve outcome.
        objective_value: Objective in native currency, None without a solution.
        solve_time_seconds: Wall time spent in the solver(s).
        termination_condition: Solver termination text.
        mip_gap: Relative gap reported by the solver, if any.
        primal: Values keyed by (QuantityKind, entity_id, period); None
            marks a value that could not be read.
        duals: Prices keyed by (ConstraintKind, zone_id, period), already
            divided by the cost scale.
        prices: Zone × period price table, when duals are available.
        cost_breakdown: Cost recomputed from primal values.
        stage1: Commitment-stage result of a two-stage solve.
        stage2: Pricing-stage result of a two-stage solve, None if it failed.
        warnings: Non-fatal issues met while building or solving.
        infeasibility: Diagnostics attached after an infeasible solve.
    """

    status: SolveStatus
    objective_value: float | None = None
    solve_time_seconds: float = 0.0
    termination_condition: str = ""
    mip_gap: float | None = None
    primal: dict[PrimalKey, float | None] = field(default_factory=dict)
    duals: dict[DualKey, float | None] = field(default_factory=dict)
    prices: PriceTable | None = None
    cost_breakdown: CostBreakdown | None = None
    stage1: SolverResult | None = None
    stage2: SolverResult | None = None
    warnings: tuple[str, ...] = ()
    infeasibility: InfeasibilityReport | None = None

    @property
    def success(self) -> bool:
        """A usable solution is available."""
        return self.status in (SolveStatus.OPTIMAL, SolveStatus.TIME_LIMIT) and (
            self.objective_value is not None
        )

    def value(self, kind: QuantityKind, entity_id: str, period: int) -> float | None:
        return self.primal.get((kind, entity_id, period))

    def series(self, kind: QuantityKind, entity_id: str) -> list[float | None]:
        """Values of one quantity for one entity, ordered by period."""
        keyed = sorted(
            (period, value)
            for (k, eid, period), value in self.primal.items()
            if k == kind and eid == entity_id
        )
        return [value for _, value in keyed]
