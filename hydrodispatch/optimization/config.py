"""Configuration for model assembly and solver invocation."""

from dataclasses import dataclass, field
from typing import Any

from hydrodispatch.exceptions import ConfigurationError


@dataclass
class SolverOptions:
    """Settings passed to the solver backend.

    Attributes:
        solver_name: Pyomo ``SolverFactory`` name.
        time_limit_seconds: Wall-clock limit applied to each solve separately.
        mip_gap: Relative optimality gap for the commitment stage.
        threads: Solver threads (0 lets the solver decide).
        tee: Stream solver output to stdout.
        solver_specific: Extra options copied verbatim into ``solver.options``.
        conflict_refinement: Allow the backend to compute conflict sets.
        max_conflict_constraints: Largest model the conflict filter will scan.
        conflict_time_limit_seconds: Limit on each feasibility solve inside
            the conflict filter.
        warm_start: Ask warm-start capable solvers to use the current
            variable values as a starting point.
    """

    solver_name: str = "appsi_highs"
    time_limit_seconds: float | None = 300.0
    mip_gap: float = 0.01  # 1% optimality gap
    threads: int = 1
    tee: bool = False
    solver_specific: dict[str, Any] = field(default_factory=dict)
    conflict_refinement: bool = True
    max_conflict_constraints: int = 2000
    conflict_time_limit_seconds: float | None = 10.0
    warm_start: bool = False

    def problems(self) -> list[str]:
        """List every invalid setting."""
        issues = []
        if self.time_limit_seconds is not None and self.time_limit_seconds <= 0:
            issues.append("time_limit_seconds must be positive")
        if not 0 <= self.mip_gap < 1:
            issues.append("mip_gap must be in [0, 1)")
        if self.threads < 0:
            issues.append("threads must be non-negative")
        if self.max_conflict_constraints <= 0:
            issues.append("max_conflict_constraints must be positive")
        if (
            self.conflict_time_limit_seconds is not None
            and self.conflict_time_limit_seconds <= 0
        ):
            issues.append("conflict_time_limit_seconds must be positive")
        return issues


@dataclass
class ModelOptions:
    """Settings that shape the optimization model.

    Attributes:
        cost_scale: Factor C applied to every monetary objective term.
            Extracted duals are divided by it.
        allow_deficit: Create deficit slack variables in each zone balance.
        default_deficit_cost: Deficit penalty (currency/MWh) for zones that
            do not set their own.
        curtailment_penalty: Penalty (currency/MWh) on curtailed renewables.
        spill_penalty: Penalty (currency per m³/s per hour) on spilled water.
        enabled_constraints: Constraint kinds to build. None builds all.
        fuel_cost_profiles: Per-plant fuel cost by period, overriding the
            plant's flat ``fuel_cost_per_mwh``.
    """

    cost_scale: float = 1e-3
    allow_deficit: bool = True
    default_deficit_cost: float = 5000.0
    curtailment_penalty: float = 0.0
    spill_penalty: float = 0.0
    enabled_constraints: set[str] | None = None
    fuel_cost_profiles: dict[str, list[float]] = field(default_factory=dict)

    def problems(self) -> list[str]:
        """List every invalid setting."""
        issues = []
        if self.cost_scale <= 0:
            issues.append("cost_scale must be positive")
        if self.default_deficit_cost <= 0:
            issues.append("default_deficit_cost must be positive")
        if self.curtailment_penalty < 0:
            issues.append("curtailment_penalty must be non-negative")
        if self.spill_penalty < 0:
            issues.append("spill_penalty must be non-negative")
        return issues

    def fuel_cost(self, plant_id: str, period: int, flat_cost: float) -> float:
        """Fuel cost of a plant in a period, honouring time-varying profiles."""
        profile = self.fuel_cost_profiles.get(plant_id)
        if profile and period <= len(profile):
            return profile[period - 1]
        return flat_cost


@dataclass
class OptimizationConfig:
    """Configuration for a dispatch solve."""

    model: ModelOptions = field(default_factory=ModelOptions)
    solver: SolverOptions = field(default_factory=SolverOptions)

    def validate(self) -> bool:
        """Validate configuration.

        Raises:
            ConfigurationError: Listing every invalid setting.
        """
        issues = self.model.problems() + self.solver.problems()
        if issues:
            raise ConfigurationError("Invalid configuration: " + "; ".join(issues))
        return True
