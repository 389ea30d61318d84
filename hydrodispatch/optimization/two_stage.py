"""Two-stage solve: unit commitment, then economic dispatch for pricing.

Stage 1 solves the full mixed-integer model. A MILP has no meaningful
shadow prices, so Stage 2 rebuilds the model from the same builders, fixes
every commitment binary to its rounded Stage-1 value, drops integrality,
and re-solves the resulting LP. The Stage-2 balance duals are the zonal
marginal prices.

Stage 1 is never modified by Stage 2. A Stage-2 failure downgrades to a
warning and the Stage-1 result is returned without prices.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from hydrodispatch.domain.models import DispatchCase
from hydrodispatch.optimization.backend import PyomoBackend, SolverBackend
from hydrodispatch.optimization.config import OptimizationConfig
from hydrodispatch.optimization.diagnostics import diagnose_infeasibility
from hydrodispatch.optimization.extraction import (
    build_price_table,
    compute_cost_breakdown,
    extract_duals,
    extract_primal,
)
from hydrodispatch.optimization.model import BuiltModel, DispatchModelBuilder
from hydrodispatch.optimization.results import PrimalKey, SolverResult
from hydrodispatch.optimization.variables import COMMITMENT_KINDS, QuantityKind

logger = logging.getLogger(__name__)

BackendFactory = Callable[[BuiltModel, OptimizationConfig], SolverBackend]


def pyomo_backend(built: BuiltModel, config: OptimizationConfig) -> SolverBackend:
    """Default backend factory."""
    return PyomoBackend(built.model, config.solver)


@dataclass(frozen=True)
class StageOutcome:
    """A solved stage: the model it used, its backend, and the result."""

    built: BuiltModel
    backend: SolverBackend
    result: SolverResult


def round_commitment(value: float | None) -> int:
    """Round a relaxed commitment value: below 0.5 is off, otherwise on.

    An absent value counts as off.
    """
    if value is None or value < 0.5:
        return 0
    return 1


def commitment_map(result: SolverResult) -> dict[PrimalKey, int]:
    """Rounded commitment, startup and shutdown decisions of a result."""
    return {
        key: round_commitment(value)
        for key, value in result.primal.items()
        if key[0] in COMMITMENT_KINDS
    }


def apply_warm_start(built: BuiltModel, previous: SolverResult) -> int:
    """Seed commitment and thermal generation values from an earlier result.

    Commitment decisions are rounded first. Keys missing from the earlier
    result, or without a value there, leave their variables untouched.

    Returns:
        Number of variables given a starting value.
    """
    seeded = 0
    for kind in (*COMMITMENT_KINDS, QuantityKind.THERMAL_GENERATION):
        for handle in built.allocator.handles(kind):
            value = previous.primal.get(handle.key)
            if value is None:
                continue
            if kind in COMMITMENT_KINDS:
                value = round_commitment(value)
            built.allocator.resolve(handle).set_value(value, skip_validation=True)
            seeded += 1
    logger.debug("Warm start seeded %d variables", seeded)
    return seeded


def _solve_built(
    built: BuiltModel,
    backend: SolverBackend,
    config: OptimizationConfig,
    with_duals: bool,
    warnings: list[str],
) -> SolverResult:
    outcome = backend.solve(
        config.solver.time_limit_seconds, config.solver.mip_gap, config.solver.threads
    )
    if not outcome.has_solution:
        return SolverResult(
            status=outcome.status,
            solve_time_seconds=outcome.solve_time_seconds,
            termination_condition=outcome.termination_condition,
            warnings=tuple(warnings),
        )

    primal, missing = extract_primal(built, backend)
    if missing:
        warnings.append(f"{missing} variable values could not be read")

    duals: dict = {}
    prices = None
    if with_duals:
        duals = extract_duals(built, backend)
        prices = build_price_table(duals, built.case)

    objective_value = None
    if outcome.objective_value is not None:
        objective_value = outcome.objective_value / built.options.cost_scale

    return SolverResult(
        status=outcome.status,
        objective_value=objective_value,
        solve_time_seconds=outcome.solve_time_seconds,
        termination_condition=outcome.termination_condition,
        mip_gap=outcome.mip_gap,
        primal=primal,
        duals=duals,
        prices=prices,
        cost_breakdown=compute_cost_breakdown(built.case, primal, built.options),
        warnings=tuple(warnings),
    )


def solve_unit_commitment(
    case: DispatchCase,
    config: OptimizationConfig | None = None,
    backend_factory: BackendFactory = pyomo_backend,
    warm_start: SolverResult | None = None,
) -> StageOutcome:
    """Stage 1: solve the full mixed-integer commitment model.

    Args:
        case: Case to dispatch.
        config: Solve configuration. Uses defaults if None.
        backend_factory: Creates the solver backend for the built model.
        warm_start: Earlier result whose commitment and generation seed the
            variables. The solver is told to use them only when
            ``config.solver.warm_start`` is set.

    Returns:
        StageOutcome whose result carries primal values but no duals.
    """
    config = config or OptimizationConfig()
    config.validate()
    built = DispatchModelBuilder(config.model).build(case)
    if warm_start is not None:
        apply_warm_start(built, warm_start)
    backend = backend_factory(built, config)
    result = _solve_built(built, backend, config, False, list(built.warnings))
    return StageOutcome(built=built, backend=backend, result=result)


def solve_pricing_stage(
    case: DispatchCase,
    commitment: Mapping[PrimalKey, float | None],
    config: OptimizationConfig | None = None,
    backend_factory: BackendFactory = pyomo_backend,
) -> StageOutcome:
    """Stage 2: re-solve with commitments fixed and read the prices.

    Args:
        case: Same case as Stage 1.
        commitment: Stage-1 values of commitment, startup and shutdown
            variables, rounded here with ``round_commitment``.
        config: Solve configuration. Uses defaults if None.
        backend_factory: Creates the solver backend for the built model.

    Returns:
        StageOutcome whose result carries duals and a price table.
    """
    config = config or OptimizationConfig()
    built = DispatchModelBuilder(config.model).build(case, enable_duals=True)
    backend = backend_factory(built, config)

    fixed = 0
    for kind in COMMITMENT_KINDS:
        for handle in built.allocator.handles(kind):
            var = built.allocator.resolve(handle)
            backend.set_integrality(var, False)
            backend.fix(var, round_commitment(commitment.get(handle.key)))
            fixed += 1
    logger.debug("Fixed %d commitment variables for pricing", fixed)

    result = _solve_built(built, backend, config, True, [])
    return StageOutcome(built=built, backend=backend, result=result)


def solve_two_stage(
    case: DispatchCase,
    config: OptimizationConfig | None = None,
    backend_factory: BackendFactory = pyomo_backend,
    diagnose: bool = False,
    warm_start: SolverResult | None = None,
) -> SolverResult:
    """Solve commitment, then prices, and combine both results.

    Args:
        case: Case to dispatch.
        config: Solve configuration. Uses defaults if None.
        backend_factory: Creates the solver backend for each built model.
        diagnose: Run infeasibility diagnostics when Stage 1 is infeasible.
        warm_start: Earlier result used to seed the commitment stage.

    Returns:
        Stage-1 status, objective and dispatch, with Stage-2 duals and
        prices when pricing succeeded. Both stage results are nested.
    """
    config = config or OptimizationConfig()
    stage1 = solve_unit_commitment(case, config, backend_factory, warm_start)
    first = stage1.result

    if not first.status.is_optimal:
        logger.warning(
            "Unit commitment ended with status %s; skipping pricing stage",
            first.status.value,
        )
        infeasibility = None
        if diagnose and first.status.is_infeasible:
            infeasibility = diagnose_infeasibility(
                stage1.built, stage1.backend, first.status
            )
        return replace(first, stage1=first, infeasibility=infeasibility)

    warnings = list(first.warnings)
    stage2 = solve_pricing_stage(case, commitment_map(first), config, backend_factory)
    second: SolverResult | None = stage2.result
    if not second.status.is_optimal:
        message = (
            f"Pricing stage ended with status {second.status.value}; "
            "prices unavailable"
        )
        logger.warning(message)
        warnings.append(message)
        second = None
    elif second.objective_value is not None and first.objective_value is not None:
        if second.objective_value > first.objective_value + _tolerance(first):
            message = (
                f"Pricing stage cost {second.objective_value:.4f} exceeds "
                f"commitment stage cost {first.objective_value:.4f}"
            )
            logger.warning(message)
            warnings.append(message)

    return SolverResult(
        status=first.status,
        objective_value=first.objective_value,
        solve_time_seconds=first.solve_time_seconds
        + stage2.result.solve_time_seconds,
        termination_condition=first.termination_condition,
        mip_gap=first.mip_gap,
        primal=first.primal,
        duals=second.duals if second else {},
        prices=second.prices if second else None,
        cost_breakdown=first.cost_breakdown,
        stage1=first,
        stage2=second,
        warnings=tuple(warnings),
    )


def _tolerance(result: SolverResult) -> float:
    return max(1e-6, 1e-6 * abs(result.objective_value or 0.0))


def solve_lp_relaxation(
    case: DispatchCase,
    config: OptimizationConfig | None = None,
    backend_factory: BackendFactory = pyomo_backend,
) -> SolverResult:
    """Solve once with every commitment binary relaxed to [0, 1].

    Gives a lower bound on cost and approximate prices in a single LP.
    """
    config = config or OptimizationConfig()
    config.validate()
    built = DispatchModelBuilder(config.model).build(case, enable_duals=True)
    backend = backend_factory(built, config)
    for kind in COMMITMENT_KINDS:
        for handle in built.allocator.handles(kind):
            backend.set_integrality(built.allocator.resolve(handle), False)
    return _solve_built(built, backend, config, True, list(built.warnings))


class HydrothermalOptimizer:
    """Two-stage hydrothermal dispatch with zonal pricing.

    Thin wrapper holding a configuration; every call returns a new
    immutable result.
    """

    def __init__(
        self,
        config: OptimizationConfig | None = None,
        backend_factory: BackendFactory = pyomo_backend,
    ) -> None:
        """Initialize the optimizer.

        Args:
            config: Optimization configuration. Uses defaults if None.
            backend_factory: Creates the solver backend for each model.
        """
        self.config = config or OptimizationConfig()
        self.backend_factory = backend_factory

    def optimize(
        self,
        case: DispatchCase,
        diagnose: bool = True,
        warm_start: SolverResult | None = None,
    ) -> SolverResult:
        """Commitment, dispatch and prices for a case."""
        return solve_two_stage(
            case, self.config, self.backend_factory, diagnose, warm_start
        )

    def relaxed(self, case: DispatchCase) -> SolverResult:
        """Single LP solve with relaxed commitment."""
        return solve_lp_relaxation(case, self.config, self.backend_factory)

    def build(self, case: DispatchCase, enable_duals: bool = False) -> BuiltModel:
        """Assembled model without solving, for inspection."""
        return DispatchModelBuilder(self.config.model).build(case, enable_duals)
