"""Solver backend abstraction and its Pyomo implementation.

The orchestrator talks to solvers only through the ``SolverBackend``
protocol. ``PyomoBackend`` implements it on a ``ConcreteModel`` with
``pyomo.opt.SolverFactory`` so any solver with a Pyomo plugin (HiGHS,
GLPK, CBC, Gurobi, CPLEX) can be used.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import pyomo.environ as pyo
from pyomo.opt import SolverFactory, TerminationCondition

from hydrodispatch.exceptions import SolverUnavailableError
from hydrodispatch.optimization.config import SolverOptions
from hydrodispatch.optimization.results import SolveStatus

logger = logging.getLogger(__name__)

FALLBACK_SOLVER = "glpk"

# Option names per solver plugin: (time limit, relative gap, threads)
SOLVER_OPTION_NAMES: dict[str, tuple[str, str, str | None]] = {
    "appsi_highs": ("time_limit", "mip_rel_gap", "threads"),
    "highs": ("time_limit", "mip_rel_gap", "threads"),
    "glpk": ("tmlim", "mipgap", None),
    "cbc": ("seconds", "ratioGap", "threads"),
    "gurobi": ("TimeLimit", "MIPGap", "Threads"),
    "gurobi_direct": ("TimeLimit", "MIPGap", "Threads"),
    "cplex": ("timelimit", "mip_tolerances_mipgap", "threads"),
}

_TERMINATION_MAP: dict[Any, SolveStatus] = {
    TerminationCondition.optimal: SolveStatus.OPTIMAL,
    TerminationCondition.globallyOptimal: SolveStatus.OPTIMAL,
    TerminationCondition.locallyOptimal: SolveStatus.OPTIMAL,
    TerminationCondition.infeasible: SolveStatus.INFEASIBLE,
    TerminationCondition.infeasibleOrUnbounded: SolveStatus.INFEASIBLE,
    TerminationCondition.invalidProblem: SolveStatus.INFEASIBLE,
    TerminationCondition.unbounded: SolveStatus.UNBOUNDED,
    TerminationCondition.maxTimeLimit: SolveStatus.TIME_LIMIT,
    # Incumbent without an optimality proof
    TerminationCondition.feasible: SolveStatus.TIME_LIMIT,
    TerminationCondition.maxIterations: SolveStatus.ITERATION_LIMIT,
    TerminationCondition.maxEvaluations: SolveStatus.ITERATION_LIMIT,
    TerminationCondition.solverFailure: SolveStatus.NUMERICAL_ERROR,
    TerminationCondition.internalSolverError: SolveStatus.NUMERICAL_ERROR,
    TerminationCondition.intermediateNonInteger: SolveStatus.NUMERICAL_ERROR,
    TerminationCondition.error: SolveStatus.NUMERICAL_ERROR,
}

# Statuses that may come with a loadable incumbent
_SOLUTION_STATUSES = (
    SolveStatus.OPTIMAL,
    SolveStatus.TIME_LIMIT,
    SolveStatus.ITERATION_LIMIT,
)


def map_termination(termination: Any) -> SolveStatus:
    """Translate a Pyomo termination condition into a ``SolveStatus``.

    Raises:
        SolverUnavailableError: On licensing failures.
    """
    if termination == TerminationCondition.licensingProblems:
        raise SolverUnavailableError("Solver reported a licensing problem")
    return _TERMINATION_MAP.get(termination, SolveStatus.NOT_SOLVED)


@dataclass(frozen=True)
class SolveOutcome:
    """What a backend reports after ``solve``.

    ``objective_value`` is the raw (scaled) solver objective.
    """

    status: SolveStatus
    termination_condition: str
    objective_value: float | None
    solve_time_seconds: float
    has_solution: bool
    mip_gap: float | None = None


class ConflictStatus(str, Enum):
    """Outcome of a conflict (IIS) computation."""

    SUCCESS = "success"
    NOT_SUPPORTED = "not_supported"
    NO_CONFLICT_FOUND = "no_conflict_found"


@dataclass(frozen=True)
class ConflictResult:
    """Constraints forming an irreducible infeasible subset."""

    status: ConflictStatus
    constraints: tuple[Any, ...] = ()
    message: str = ""
    solve_count: int = 0
    time_seconds: float = 0.0


class SolverBackend(Protocol):
    """Operations the orchestrator needs from a MILP/LP solver.

    Model assembly is Pyomo-native: builders write variables, constraints
    and the objective straight onto the ``ConcreteModel``. ``set_objective``
    and ``add_constraint`` are for callers editing an already built model,
    such as adding a cut or swapping the objective before a re-solve.
    """

    def set_objective(self, expr: Any) -> None:
        """Replace the minimization objective."""
        ...

    def add_constraint(self, name: str, expr: Any) -> Any:
        """Add a named constraint and return its handle."""
        ...

    def fix(self, var: Any, value: float) -> None:
        """Fix a variable to a value."""
        ...

    def set_integrality(self, var: Any, integral: bool) -> None:
        """Make a variable integral or continuous."""
        ...

    def solve(
        self, time_limit: float | None, gap: float, threads: int
    ) -> SolveOutcome:
        """Solve the current model."""
        ...

    def get_value(self, var: Any) -> float | None:
        """Primal value of a variable, None when unavailable."""
        ...

    def get_dual(self, constraint: Any) -> float | None:
        """Dual value of a constraint, None when unavailable."""
        ...

    def compute_conflict(self) -> ConflictResult:
        """Compute an irreducible infeasible subset of constraints."""
        ...


class PyomoBackend:
    """``SolverBackend`` over a Pyomo ``ConcreteModel``."""

    def __init__(
        self, model: pyo.ConcreteModel, options: SolverOptions | None = None
    ) -> None:
        """Initialize the backend.

        Args:
            model: Model to solve. Duals are loaded only if it carries an
                import ``dual`` suffix.
            options: Solver settings. Uses defaults if None.
        """
        self.model = model
        self.options = options or SolverOptions()
        self._relaxed: dict[int, Any] = {}

    # =================================================================
    # Model editing
    # =================================================================

    def set_objective(self, expr: Any) -> None:
        for objective in self.model.component_objects(pyo.Objective, active=True):
            objective.deactivate()
        if self.model.component("objective") is not None:
            self.model.del_component("objective")
        self.model.objective = pyo.Objective(expr=expr, sense=pyo.minimize)

    def add_constraint(self, name: str, expr: Any) -> Any:
        constraint = pyo.Constraint(expr=expr)
        self.model.add_component(name, constraint)
        return constraint

    def fix(self, var: Any, value: float) -> None:
        var.fix(value)

    def set_integrality(self, var: Any, integral: bool) -> None:
        """Switch a variable between its integer domain and a continuous one.

        Binary variables relax to [0, 1]; restoring integrality puts back
        the original domain.
        """
        key = id(var)
        if integral:
            if key in self._relaxed:
                var.domain = self._relaxed.pop(key)
            return
        if var.is_continuous():
            return
        self._relaxed[key] = var.domain
        var.domain = pyo.UnitInterval if var.is_binary() else pyo.Reals

    # =================================================================
    # Solving
    # =================================================================

    def _solver(self) -> tuple[str, Any]:
        name = self.options.solver_name
        solver = SolverFactory(name)
        if solver is not None and solver.available(exception_flag=False):
            return name, solver

        logger.warning("Solver '%s' unavailable, falling back to %s", name, FALLBACK_SOLVER)
        solver = SolverFactory(FALLBACK_SOLVER)
        if solver is None or not solver.available(exception_flag=False):
            raise SolverUnavailableError(
                f"Solver '{name}' not available and {FALLBACK_SOLVER} fallback failed."
            )
        return FALLBACK_SOLVER, solver

    def _apply_options(
        self,
        name: str,
        solver: Any,
        time_limit: float | None,
        gap: float,
        threads: int,
    ) -> None:
        names = SOLVER_OPTION_NAMES.get(name)
        if names is None:
            logger.debug("No option mapping for solver '%s'", name)
        else:
            time_option, gap_option, threads_option = names
            if time_limit is not None:
                solver.options[time_option] = (
                    int(time_limit) if name == "glpk" else time_limit
                )
            solver.options[gap_option] = gap
            if threads_option is not None and threads > 0:
                solver.options[threads_option] = threads
        for key, value in self.options.solver_specific.items():
            solver.options[key] = value

    def _solve_kwargs(self, solver: Any) -> dict[str, Any]:
        """Extra keyword arguments for ``solver.solve``."""
        if not self.options.warm_start:
            return {}
        capable = getattr(solver, "warm_start_capable", None)
        if capable is None or not capable():
            logger.debug("Solver %s cannot warm start; ignoring", type(solver).__name__)
            return {}
        return {"warmstart": True}

    def _run(
        self, model: pyo.ConcreteModel, time_limit: float | None, gap: float, threads: int
    ) -> tuple[SolveStatus, Any, float]:
        name, solver = self._solver()
        self._apply_options(name, solver, time_limit, gap, threads)

        start_time = time.time()
        results = solver.solve(
            model,
            tee=self.options.tee,
            load_solutions=False,
            **self._solve_kwargs(solver),
        )
        solve_time = time.time() - start_time

        status = map_termination(results.solver.termination_condition)
        return status, results, solve_time

    def solve(
        self,
        time_limit: float | None = None,
        gap: float | None = None,
        threads: int | None = None,
    ) -> SolveOutcome:
        """Solve the model and load the solution if one exists.

        Args:
            time_limit: Wall-clock limit in seconds. Defaults to the options.
            gap: Relative MIP gap. Defaults to the options.
            threads: Solver threads. Defaults to the options.

        Returns:
            SolveOutcome with status and raw objective.

        Raises:
            SolverUnavailableError: If no solver can be obtained.
        """
        time_limit = self.options.time_limit_seconds if time_limit is None else time_limit
        gap = self.options.mip_gap if gap is None else gap
        threads = self.options.threads if threads is None else threads

        status, results, solve_time = self._run(self.model, time_limit, gap, threads)
        termination = str(results.solver.termination_condition)

        has_solution = status in _SOLUTION_STATUSES and len(results.solution) > 0
        if has_solution:
            try:
                self.model.solutions.load_from(results)
            except ValueError as exc:
                logger.warning("Could not load solver solution: %s", exc)
                has_solution = False

        objective_value = None
        if has_solution:
            objective_value = pyo.value(self._active_objective(), exception=False)

        logger.info(
            "Solved %s: %s (%s) in %.2fs, objective=%s",
            self.model.name,
            status.value,
            termination,
            solve_time,
            objective_value,
        )
        return SolveOutcome(
            status=status,
            termination_condition=termination,
            objective_value=objective_value,
            solve_time_seconds=solve_time,
            has_solution=has_solution,
            mip_gap=self._gap(results),
        )

    def _active_objective(self) -> Any:
        return next(self.model.component_data_objects(pyo.Objective, active=True))

    @staticmethod
    def _gap(results: Any) -> float | None:
        lower = getattr(results.problem, "lower_bound", None)
        upper = getattr(results.problem, "upper_bound", None)
        try:
            lower, upper = float(lower), float(upper)
        except (TypeError, ValueError):
            return None
        if not (abs(lower) < float("inf") and abs(upper) < float("inf")):
            return None
        return abs(upper - lower) / max(abs(upper), 1e-10)

    # =================================================================
    # Reading values
    # =================================================================

    def get_value(self, var: Any) -> float | None:
        return var.value

    def get_dual(self, constraint: Any) -> float | None:
        suffix = self.model.component("dual")
        if suffix is None:
            return None
        return suffix.get(constraint)

    # =================================================================
    # Conflict refinement
    # =================================================================

    def compute_conflict(self) -> ConflictResult:
        """Deletion filter over the model's active constraints.

        Works on an independent clone: each constraint is dropped in turn
        and restored only if the rest becomes feasible without it. The
        survivors form an irreducible infeasible subset.
        """
        if not self.options.conflict_refinement:
            return ConflictResult(
                status=ConflictStatus.NOT_SUPPORTED,
                message="Conflict refinement disabled in solver options",
            )

        candidates = list(
            self.model.component_data_objects(pyo.Constraint, active=True)
        )
        if len(candidates) > self.options.max_conflict_constraints:
            return ConflictResult(
                status=ConflictStatus.NOT_SUPPORTED,
                message=(
                    f"Model has {len(candidates)} constraints, above the conflict "
                    f"refinement limit of {self.options.max_conflict_constraints}"
                ),
            )

        start = time.time()
        work = self.model.clone()
        for objective in work.component_objects(pyo.Objective, active=True):
            objective.deactivate()
        work.conflict_objective = pyo.Objective(expr=0.0, sense=pyo.minimize)
        work_candidates = list(
            work.component_data_objects(pyo.Constraint, active=True)
        )

        solves = 1
        if self._feasible(work):
            return ConflictResult(
                status=ConflictStatus.NO_CONFLICT_FOUND,
                message="Model is feasible; no conflict to report",
                solve_count=solves,
                time_seconds=time.time() - start,
            )

        for constraint in work_candidates:
            constraint.deactivate()
            solves += 1
            if self._feasible(work):
                constraint.activate()

        members = tuple(
            original
            for original, copy in zip(candidates, work_candidates)
            if copy.active
        )
        elapsed = time.time() - start
        if not members:
            return ConflictResult(
                status=ConflictStatus.NO_CONFLICT_FOUND,
                message="Infeasible without any constraint; check variable bounds",
                solve_count=solves,
                time_seconds=elapsed,
            )

        logger.info(
            "Conflict refinement found %d of %d constraints in %d solves (%.2fs)",
            len(members),
            len(candidates),
            solves,
            elapsed,
        )
        return ConflictResult(
            status=ConflictStatus.SUCCESS,
            constraints=members,
            solve_count=solves,
            time_seconds=elapsed,
        )

    def _feasible(self, model: pyo.ConcreteModel) -> bool:
        status, _, _ = self._run(
            model,
            self.options.conflict_time_limit_seconds,
            self.options.mip_gap,
            self.options.threads,
        )
        # Only a proven infeasibility removes a constraint from the conflict;
        # a solve stopped by its time limit keeps the constraint
        return status is not SolveStatus.INFEASIBLE
