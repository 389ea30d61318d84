"""Tests for the two-stage commitment and pricing solve."""

from collections.abc import Callable
from dataclasses import replace

import pytest

from hydrodispatch.domain.models import DispatchCase, ThermalPlant
from hydrodispatch.optimization.backend import PyomoBackend, SolveOutcome
from hydrodispatch.optimization.config import (
    ModelOptions,
    OptimizationConfig,
    SolverOptions,
)
from hydrodispatch.optimization.diagnostics import check_constraint_violations
from hydrodispatch.optimization.model import BuiltModel, DispatchModelBuilder
from hydrodispatch.optimization.results import SolveStatus, SolverResult
from hydrodispatch.optimization.two_stage import (
    HydrothermalOptimizer,
    apply_warm_start,
    commitment_map,
    round_commitment,
    solve_lp_relaxation,
    solve_pricing_stage,
    solve_two_stage,
    solve_unit_commitment,
)
from hydrodispatch.optimization.variables import QuantityKind


class FailingPricingBackend(PyomoBackend):
    """Solves normally, except models carrying a dual suffix fail."""

    def solve(
        self,
        time_limit: float | None = None,
        gap: float | None = None,
        threads: int | None = None,
    ) -> SolveOutcome:
        if self.model.component("dual") is not None:
            return SolveOutcome(
                status=SolveStatus.NUMERICAL_ERROR,
                termination_condition="error",
                objective_value=None,
                solve_time_seconds=0.0,
                has_solution=False,
            )
        return super().solve(time_limit, gap, threads)


def failing_pricing(built: BuiltModel, config: OptimizationConfig) -> PyomoBackend:
    """Backend factory whose pricing stage always fails."""
    return FailingPricingBackend(built.model, config.solver)


class TimeLimitBackend(PyomoBackend):
    """Loads a real solution but reports the commitment stage as timed out."""

    def solve(
        self,
        time_limit: float | None = None,
        gap: float | None = None,
        threads: int | None = None,
    ) -> SolveOutcome:
        outcome = super().solve(time_limit, gap, threads)
        if self.model.component("dual") is None and outcome.has_solution:
            return replace(
                outcome, status=SolveStatus.TIME_LIMIT, termination_condition="maxTimeLimit"
            )
        return outcome


def timed_out(built: BuiltModel, config: OptimizationConfig) -> PyomoBackend:
    """Backend factory whose commitment stage stops at its time limit."""
    return TimeLimitBackend(built.model, config.solver)


class TestCommitmentRounding:
    """Tests for the Stage-1 to Stage-2 rounding rule."""

    def test_threshold(self) -> None:
        """Test values below one half are off, one half and above are on."""
        assert round_commitment(0.4999999) == 0
        assert round_commitment(0.5) == 1
        assert round_commitment(0.9999) == 1
        assert round_commitment(1e-7) == 0

    def test_absent_is_off(self) -> None:
        """Test a missing Stage-1 value counts as off."""
        assert round_commitment(None) == 0


@pytest.mark.solver
class TestTwoStageSolve:
    """Tests for solve_two_stage on the merit-order fleet."""

    def test_marginal_price(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test the partially loaded plant sets the price."""
        result = solve_two_stage(merit_order_case(demand_mw=200.0), config)

        assert result.success, f"Solver failed: {result.termination_condition}"
        assert result.objective_value == pytest.approx(4 * (100 * 50 + 100 * 80), rel=1e-4)
        assert result.value(QuantityKind.THERMAL_GENERATION, "T1", 1) == pytest.approx(100.0)
        assert result.value(QuantityKind.THERMAL_GENERATION, "T2", 1) == pytest.approx(100.0)
        assert result.value(QuantityKind.THERMAL_GENERATION, "T3", 1) == pytest.approx(0.0, abs=1e-6)

        assert result.prices is not None
        for t in range(1, 5):
            assert result.prices.price("SE", t) == pytest.approx(80.0, rel=1e-4)

    def test_full_fleet_price(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test 300 MW needs the third plant and prices at its cost."""
        result = solve_two_stage(merit_order_case(demand_mw=300.0), config)

        assert result.success, f"Solver failed: {result.termination_condition}"
        assert result.value(QuantityKind.THERMAL_GENERATION, "T3", 2) == pytest.approx(50.0)
        assert result.prices.average_price("SE") == pytest.approx(120.0, rel=1e-4)

    def test_commitment_state_machine(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test u[t] - u[t-1] == v[t] - w[t] holds in the solution."""
        case = merit_order_case(demand_mw=200.0)
        result = solve_two_stage(case, config)
        assert result.success

        for plant in case.system.thermal_plants:
            previous = int(case.initial_conditions.commitment[plant.id])
            for t in case.periods:
                u = round(result.value(QuantityKind.COMMITMENT, plant.id, t))
                v = round(result.value(QuantityKind.STARTUP, plant.id, t))
                w = round(result.value(QuantityKind.SHUTDOWN, plant.id, t))
                assert u - previous == v - w
                assert v + w <= 1
                previous = u

    def test_pricing_stage_not_more_expensive(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test fixing the commitment cannot raise cost."""
        result = solve_two_stage(merit_order_case(demand_mw=200.0), config)

        assert result.stage1 is not None and result.stage2 is not None
        assert result.stage2.objective_value <= result.stage1.objective_value + 1e-6
        assert not any("exceeds" in w for w in result.warnings)

    def test_dual_matches_finite_difference(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test the price equals the cost of one more MW in one period."""
        base = solve_two_stage(merit_order_case(demand_mw=200.0, num_periods=1), config)
        bumped = solve_two_stage(merit_order_case(demand_mw=201.0, num_periods=1), config)

        assert base.success and bumped.success
        derivative = bumped.objective_value - base.objective_value
        assert base.prices.price("SE", 1) == pytest.approx(derivative, rel=1e-3)

    def test_cost_breakdown_reconciles(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test cost components add up to the objective."""
        result = solve_two_stage(merit_order_case(demand_mw=200.0), config)

        assert result.cost_breakdown is not None
        assert result.cost_breakdown.reconciles_with(result.objective_value)
        assert result.cost_breakdown.deficit == pytest.approx(0.0, abs=1e-6)

    def test_start_costs_in_objective(
        self,
        merit_order_plants: list[ThermalPlant],
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test startup costs are paid once per start."""
        plants = [p.model_copy(update={"startup_cost": 500.0}) for p in merit_order_plants]
        result = solve_two_stage(merit_order_case(demand_mw=200.0, plants=plants), config)

        assert result.success
        assert result.cost_breakdown.startup == pytest.approx(1000.0)
        assert result.cost_breakdown.reconciles_with(result.objective_value)

    def test_solution_satisfies_constraints(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test the loaded Stage-1 solution violates no constraint."""
        stage1 = solve_unit_commitment(merit_order_case(demand_mw=200.0), config)

        assert stage1.result.success
        report = check_constraint_violations(stage1.built, tolerance=1e-5)
        assert report.is_feasible, [v.name for v in report.violations]

    def test_stage_one_untouched_by_pricing(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test Stage 2 builds its own model and leaves Stage 1 binaries alone."""
        case = merit_order_case(demand_mw=200.0)
        stage1 = solve_unit_commitment(case, config)
        stage2 = solve_pricing_stage(case, commitment_map(stage1.result), config)

        assert stage2.built.model is not stage1.built.model
        u1 = stage1.built.allocator.var(QuantityKind.COMMITMENT, "T1", 1)
        u2 = stage2.built.allocator.var(QuantityKind.COMMITMENT, "T1", 1)
        assert u1.is_binary() and not u1.fixed
        assert u2.fixed and u2.is_continuous()
        assert not stage1.result.duals
        assert stage2.result.duals


@pytest.mark.solver
class TestFailureModes:
    """Tests for infeasible and degraded solves."""

    def test_infeasible_without_deficit(
        self,
        merit_order_plants: list[ThermalPlant],
        merit_order_case: Callable[..., DispatchCase],
    ) -> None:
        """Test 250 MW of capacity against 300 MW demand is reported infeasible."""
        config = OptimizationConfig(
            model=ModelOptions(allow_deficit=False),
            solver=SolverOptions(time_limit_seconds=60.0),
        )
        case = merit_order_case(demand_mw=300.0, plants=merit_order_plants[:2])
        result = solve_two_stage(case, config)

        assert result.status is SolveStatus.INFEASIBLE
        assert not result.success
        assert result.objective_value is None
        assert result.prices is None
        assert result.stage2 is None
        assert result.infeasibility is None

    def test_deficit_covers_shortfall(
        self,
        merit_order_plants: list[ThermalPlant],
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test the same shortfall clears at the deficit cost when allowed."""
        case = merit_order_case(demand_mw=300.0, plants=merit_order_plants[:2])
        result = solve_two_stage(case, config)

        assert result.success
        assert result.value(QuantityKind.DEFICIT, "SE", 1) == pytest.approx(50.0)
        assert result.prices.price("SE", 1) == pytest.approx(5000.0, rel=1e-4)

    def test_pricing_failure_degrades(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test a failed pricing stage keeps the Stage-1 result with a warning."""
        result = solve_two_stage(
            merit_order_case(demand_mw=200.0), config, backend_factory=failing_pricing
        )

        assert result.success
        assert result.status is SolveStatus.OPTIMAL
        assert result.stage2 is None
        assert result.prices is None
        assert result.duals == {}
        assert any("Pricing stage ended" in w for w in result.warnings)

    def test_time_limit_keeps_incumbent(
        self,
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test a timed-out commitment stage returns its incumbent unpriced."""
        result = solve_two_stage(
            merit_order_case(demand_mw=200.0), config, backend_factory=timed_out
        )

        assert result.status is SolveStatus.TIME_LIMIT
        assert result.success
        assert result.primal
        assert result.value(QuantityKind.THERMAL_GENERATION, "T1", 1) == pytest.approx(100.0)
        assert result.objective_value == pytest.approx(4 * (100 * 50 + 100 * 80), rel=1e-4)
        assert result.stage1 is not None
        assert result.stage2 is None
        assert result.prices is None
        assert result.infeasibility is None


class TestWarmStart:
    """Tests for seeding the commitment stage from an earlier result."""

    def test_seeds_rounded_commitment_and_generation(
        self, merit_order_case: Callable[..., DispatchCase]
    ) -> None:
        """Test commitment is rounded and generation copied onto the variables."""
        built = DispatchModelBuilder().build(merit_order_case(num_periods=2))
        previous = SolverResult(
            status=SolveStatus.OPTIMAL,
            primal={
                (QuantityKind.COMMITMENT, "T1", 1): 0.97,
                (QuantityKind.COMMITMENT, "T2", 1): 0.2,
                (QuantityKind.STARTUP, "T1", 1): 1.0,
                (QuantityKind.THERMAL_GENERATION, "T1", 1): 95.5,
                (QuantityKind.THERMAL_GENERATION, "T2", 1): None,
                (QuantityKind.DEFICIT, "SE", 1): 10.0,
            },
        )

        seeded = apply_warm_start(built, previous)

        var = built.allocator.var
        assert seeded == 4
        assert var(QuantityKind.COMMITMENT, "T1", 1).value == 1
        assert var(QuantityKind.COMMITMENT, "T2", 1).value == 0
        assert var(QuantityKind.STARTUP, "T1", 1).value == 1
        assert var(QuantityKind.THERMAL_GENERATION, "T1", 1).value == pytest.approx(95.5)
        assert var(QuantityKind.THERMAL_GENERATION, "T2", 1).value is None
        assert var(QuantityKind.DEFICIT, "SE", 1).value is None

    @pytest.mark.solver
    def test_warm_started_solve_matches_cold(
        self,
        merit_order_case: Callable[..., DispatchCase],
    ) -> None:
        """Test a warm-started commitment stage reaches the same optimum."""
        config = OptimizationConfig(
            model=ModelOptions(),
            solver=SolverOptions(mip_gap=0.0, time_limit_seconds=60.0, warm_start=True),
        )
        case = merit_order_case(demand_mw=200.0)
        cold = solve_unit_commitment(case, config)
        warm = solve_unit_commitment(case, config, warm_start=cold.result)

        assert cold.result.success and warm.result.success
        assert warm.result.objective_value == pytest.approx(
            cold.result.objective_value, rel=1e-6
        )


@pytest.mark.solver
class TestHydrothermalOptimizer:
    """Tests for the optimizer wrapper."""

    def test_two_zone_prices(self, two_zone_case: DispatchCase, config: OptimizationConfig) -> None:
        """Test the importing zone prices above the exporting one."""
        result = HydrothermalOptimizer(config).optimize(two_zone_case)

        assert result.success, f"Solver failed: {result.termination_condition}"
        north = result.prices.average_price("N")
        south = result.prices.average_price("S")
        assert north == pytest.approx(40.0, rel=1e-4)
        assert south > north

    def test_cascade_dispatch(self, cascade_case: DispatchCase, config: OptimizationConfig) -> None:
        """Test a hydro-only case meets demand from the reservoirs."""
        result = HydrothermalOptimizer(config).optimize(cascade_case)

        assert result.success, f"Solver failed: {result.termination_condition}"
        for t in cascade_case.periods:
            hydro = result.value(QuantityKind.HYDRO_GENERATION, "UP", t) + result.value(
                QuantityKind.HYDRO_GENERATION, "DOWN", t
            )
            assert hydro == pytest.approx(40.0, abs=1e-4)

    def test_relaxation_is_lower_bound(
        self,
        merit_order_plants: list[ThermalPlant],
        merit_order_case: Callable[..., DispatchCase],
        config: OptimizationConfig,
    ) -> None:
        """Test the LP relaxation never costs more than the commitment."""
        plants = [
            p.model_copy(update={"startup_cost": 2000.0, "min_generation_mw": 40.0})
            for p in merit_order_plants
        ]
        case = merit_order_case(demand_mw=200.0, plants=plants)
        exact = solve_two_stage(case, config)
        relaxed = solve_lp_relaxation(case, config)

        assert exact.success and relaxed.success
        assert relaxed.objective_value <= exact.objective_value + 1e-6
        assert relaxed.prices is not None
