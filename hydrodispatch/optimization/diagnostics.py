"""Infeasibility diagnostics.

After an infeasible or unbounded commitment solve, ask the backend for a
minimal conflicting subset of constraints and render each one in algebraic
form. Heuristic checks on the input data run alongside and are the only
source of findings when the backend cannot compute conflicts. Findings are
grouped into common root causes so the report points at what to fix.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pyomo.environ as pyo
from pyomo.repn import generate_standard_repn
from pyomo.util.infeasible import find_infeasible_constraints

from hydrodispatch.domain.models import DispatchCase
from hydrodispatch.optimization.backend import ConflictStatus, SolverBackend
from hydrodispatch.optimization.config import ModelOptions
from hydrodispatch.optimization.constraints import ConstraintKind, ConstraintRecord
from hydrodispatch.optimization.constraints.hydro import M3S_TO_HM3_PER_HOUR
from hydrodispatch.optimization.model import BuiltModel
from hydrodispatch.optimization.results import SolveStatus

logger = logging.getLogger(__name__)

TOLERANCE = 1e-6


class RootCause(str, Enum):
    """Common reasons a dispatch model has no feasible solution."""

    CAPACITY_MISMATCH = "capacity_mismatch"
    DEMAND_IMBALANCE = "demand_imbalance"
    NETWORK_LIMITS = "network_limits"
    CASCADE_INFEASIBILITY = "cascade_infeasibility"
    COMMITMENT_TIMING = "commitment_timing"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a heuristic finding."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


RECOMMENDATIONS: dict[RootCause, str] = {
    RootCause.CAPACITY_MISMATCH: (
        "Check generation limits against demand; enable deficit or add capacity."
    ),
    RootCause.DEMAND_IMBALANCE: (
        "Must-run and must-take output exceeds what the zone can absorb; allow "
        "curtailment or relax must-run units."
    ),
    RootCause.NETWORK_LIMITS: (
        "Capacity exists elsewhere but cannot reach the zone; review "
        "interconnection limits and losses."
    ),
    RootCause.CASCADE_INFEASIBILITY: (
        "Reservoir volumes, inflows and outflow limits cannot be reconciled; "
        "check volume bounds, minimum outflow and travel times."
    ),
    RootCause.COMMITMENT_TIMING: (
        "Initial state, ramp limits or minimum up/down times conflict; review "
        "initial conditions and time constraints."
    ),
    RootCause.UNKNOWN: "Inspect the listed constraints directly.",
}

_CAUSE_BY_KIND: dict[ConstraintKind, RootCause] = {
    ConstraintKind.THERMAL_COMMITMENT: RootCause.COMMITMENT_TIMING,
    ConstraintKind.HYDRO_WATER_BALANCE: RootCause.CASCADE_INFEASIBILITY,
    ConstraintKind.HYDRO_GENERATION: RootCause.CASCADE_INFEASIBILITY,
    ConstraintKind.RENEWABLE_AVAILABILITY: RootCause.DEMAND_IMBALANCE,
    ConstraintKind.SUBMARKET_BALANCE: RootCause.DEMAND_IMBALANCE,
    ConstraintKind.INTERCONNECTION_LIMIT: RootCause.NETWORK_LIMITS,
}

_CAPACITY_COMPONENTS = {"capacity_min", "capacity_max", "minimum"}


def classify(record: ConstraintRecord | None) -> RootCause:
    """Root-cause category of a constraint row."""
    if record is None:
        return RootCause.UNKNOWN
    if record.component in _CAPACITY_COMPONENTS and record.kind in (
        ConstraintKind.THERMAL_COMMITMENT,
        ConstraintKind.HYDRO_GENERATION,
    ):
        return RootCause.CAPACITY_MISMATCH
    return _CAUSE_BY_KIND.get(record.kind, RootCause.UNKNOWN)


def _bound(expr: Any) -> float | None:
    return None if expr is None else pyo.value(expr)


def render_constraint(constraint: Any) -> str:
    """Algebraic form of a linear constraint, e.g. ``x + 2*y <= 10``."""
    repn = generate_standard_repn(constraint.body, compute_values=True)
    terms = []
    for coef, var in zip(repn.linear_coefs, repn.linear_vars):
        sign = "-" if coef < 0 else "+"
        magnitude = abs(coef)
        term = var.name if magnitude == 1 else f"{magnitude:g}*{var.name}"
        terms.append(f"{sign} {term}")
    expression = " ".join(terms).lstrip("+ ") or "0"
    if repn.constant:
        expression += f" {'-' if repn.constant < 0 else '+'} {abs(repn.constant):g}"

    lower = _bound(constraint.lower)
    upper = _bound(constraint.upper)
    if lower is not None and upper is not None and lower == upper:
        return f"{expression} == {lower:g}"
    if lower is not None and upper is not None:
        return f"{lower:g} <= {expression} <= {upper:g}"
    if lower is not None:
        return f"{expression} >= {lower:g}"
    return f"{expression} <= {upper:g}"


# =============================================================================
# Report Types
# =============================================================================


@dataclass(frozen=True)
class ConflictEntry:
    """One constraint in the conflicting subset."""

    name: str
    expression: str
    cause: RootCause
    kind: ConstraintKind | None = None
    entity_id: str | None = None
    period: int | None = None


@dataclass(frozen=True)
class HeuristicFinding:
    """A data problem found without solving."""

    cause: RootCause
    severity: Severity
    message: str
    entity_id: str | None = None


@dataclass
class InfeasibilityReport:
    """Diagnosis of an infeasible or unbounded model.

    Attributes:
        status: Solve status that triggered the diagnosis.
        conflict_status: Outcome of conflict refinement, None if not run.
        conflicts: Constraints in the irreducible infeasible subset.
        findings: Heuristic findings on the input data.
        message: Backend message about conflict refinement.
        solve_count: Solves spent on refinement.
        time_seconds: Time spent on refinement.
    """

    status: SolveStatus
    conflict_status: ConflictStatus | None = None
    conflicts: list[ConflictEntry] = field(default_factory=list)
    findings: list[HeuristicFinding] = field(default_factory=list)
    message: str = ""
    solve_count: int = 0
    time_seconds: float = 0.0

    @property
    def causes(self) -> list[RootCause]:
        """Distinct root causes, most frequent first."""
        counts = Counter(c.cause for c in self.conflicts)
        counts.update(
            f.cause for f in self.findings if f.severity != Severity.INFO
        )
        return [cause for cause, _ in counts.most_common()]

    @property
    def is_supported(self) -> bool:
        return self.conflict_status is not ConflictStatus.NOT_SUPPORTED

    def format(self) -> str:
        """Human-readable report."""
        lines = [
            "=" * 70,
            "INFEASIBILITY REPORT",
            "=" * 70,
            f"Solve status: {self.status.value}",
        ]
        if self.conflict_status is not None:
            lines.append(
                f"Conflict refinement: {self.conflict_status.value} "
                f"({len(self.conflicts)} constraints, {self.solve_count} solves, "
                f"{self.time_seconds:.2f}s)"
            )
        if self.message:
            lines.append(f"Note: {self.message}")

        if self.conflicts:
            lines += ["", "Conflicting constraints:"]
            for entry in self.conflicts:
                lines.append(f"  [{entry.cause.value}] {entry.name}")
                lines.append(f"      {entry.expression}")

        if self.findings:
            lines += ["", "Heuristic findings:"]
            for finding in self.findings:
                lines.append(
                    f"  [{finding.severity.value.upper()}] "
                    f"[{finding.cause.value}] {finding.message}"
                )

        if self.causes:
            lines += ["", "Likely causes:"]
            for cause in self.causes:
                lines.append(f"  - {cause.value}: {RECOMMENDATIONS[cause]}")

        lines.append("=" * 70)
        return "\n".join(lines)


# =============================================================================
# Heuristic Checks
# =============================================================================


def check_bound_ordering(case: DispatchCase) -> list[HeuristicFinding]:
    """Lower limits above upper limits, initial states outside bounds."""
    findings = []
    error = Severity.ERROR

    for plant in case.system.thermal_plants:
        if plant.min_generation_mw > plant.max_generation_mw:
            findings.append(
                HeuristicFinding(
                    RootCause.CAPACITY_MISMATCH,
                    error,
                    f"Thermal plant '{plant.id}' minimum generation "
                    f"{plant.min_generation_mw} MW exceeds maximum "
                    f"{plant.max_generation_mw} MW",
                    plant.id,
                )
            )
        if plant.max_generation_mw > plant.capacity_mw:
            findings.append(
                HeuristicFinding(
                    RootCause.CAPACITY_MISMATCH,
                    Severity.WARNING,
                    f"Thermal plant '{plant.id}' maximum generation exceeds "
                    f"installed capacity {plant.capacity_mw} MW",
                    plant.id,
                )
            )

    for plant in case.system.hydro_plants:
        if plant.min_generation_mw > plant.max_generation_mw:
            findings.append(
                HeuristicFinding(
                    RootCause.CAPACITY_MISMATCH,
                    error,
                    f"Hydro plant '{plant.id}' minimum generation exceeds maximum",
                    plant.id,
                )
            )
        if plant.min_generation_mw > plant.productivity * plant.max_outflow_m3s:
            findings.append(
                HeuristicFinding(
                    RootCause.CAPACITY_MISMATCH,
                    error,
                    f"Hydro plant '{plant.id}' minimum generation unreachable at "
                    f"maximum outflow",
                    plant.id,
                )
            )
        if plant.min_outflow_m3s > plant.max_outflow_m3s:
            findings.append(
                HeuristicFinding(
                    RootCause.CASCADE_INFEASIBILITY,
                    error,
                    f"Hydro plant '{plant.id}' minimum outflow exceeds maximum",
                    plant.id,
                )
            )
        if not plant.has_reservoir:
            continue
        if plant.min_volume_hm3 > plant.max_volume_hm3:
            findings.append(
                HeuristicFinding(
                    RootCause.CASCADE_INFEASIBILITY,
                    error,
                    f"Hydro plant '{plant.id}' minimum volume exceeds maximum",
                    plant.id,
                )
            )
        elif not (
            plant.min_volume_hm3 <= plant.initial_volume_hm3 <= plant.max_volume_hm3
        ):
            findings.append(
                HeuristicFinding(
                    RootCause.CASCADE_INFEASIBILITY,
                    error,
                    f"Hydro plant '{plant.id}' initial volume "
                    f"{plant.initial_volume_hm3} hm³ is outside "
                    f"[{plant.min_volume_hm3}, {plant.max_volume_hm3}]",
                    plant.id,
                )
            )
    return findings


def check_supply_adequacy(
    case: DispatchCase, options: ModelOptions
) -> list[HeuristicFinding]:
    """Demand against available supply and must-take output, per zone."""
    system = case.system
    findings = []

    def local_capacity(zone: str, t: int) -> float:
        return (
            sum(p.max_generation_mw for p in system.thermal_in(zone))
            + sum(p.max_generation_mw for p in system.hydro_in(zone))
            + sum(p.available_at(t) or 0.0 for p in system.renewables_in(zone))
        )

    def must_take(zone: str, t: int) -> float:
        return (
            sum(p.min_generation_mw for p in system.thermal_in(zone) if p.must_run)
            + sum(p.min_generation_mw for p in system.hydro_in(zone))
            + sum(
                p.available_at(t) or 0.0
                for p in system.renewables_in(zone)
                if not p.curtailable
            )
        )

    for zone in system.submarket_ids:
        short_periods: list[int] = []
        stranded_periods: list[int] = []
        surplus_periods: list[int] = []
        for t in case.periods:
            demand = system.demand_mw(zone, t)
            local = local_capacity(zone, t)
            imports = sum(
                line.max_flow_mw * (1 - line.loss_fraction)
                for line in system.imports_to(zone)
            )
            exports = sum(line.max_flow_mw for line in system.exports_from(zone))

            if not options.allow_deficit and demand > local + imports + TOLERANCE:
                total_supply = sum(local_capacity(z, t) for z in system.submarket_ids)
                total_demand = sum(system.demand_mw(z, t) for z in system.submarket_ids)
                if total_supply + TOLERANCE >= total_demand:
                    stranded_periods.append(t)
                else:
                    short_periods.append(t)

            if must_take(zone, t) > demand + exports + TOLERANCE:
                surplus_periods.append(t)

        if short_periods:
            findings.append(
                HeuristicFinding(
                    RootCause.CAPACITY_MISMATCH,
                    Severity.ERROR,
                    f"Submarket '{zone}' demand exceeds available supply in "
                    f"periods {_period_list(short_periods)} and deficit is disabled",
                    zone,
                )
            )
        if stranded_periods:
            findings.append(
                HeuristicFinding(
                    RootCause.NETWORK_LIMITS,
                    Severity.ERROR,
                    f"Submarket '{zone}' cannot import enough to meet demand in "
                    f"periods {_period_list(stranded_periods)}",
                    zone,
                )
            )
        if surplus_periods:
            findings.append(
                HeuristicFinding(
                    RootCause.DEMAND_IMBALANCE,
                    Severity.ERROR,
                    f"Submarket '{zone}' must-take output exceeds demand plus "
                    f"export capacity in periods {_period_list(surplus_periods)}",
                    zone,
                )
            )
    return findings


def check_water_availability(case: DispatchCase) -> list[HeuristicFinding]:
    """Minimum releases that headwater plants cannot sustain."""
    findings = []
    k = M3S_TO_HM3_PER_HOUR * case.period_hours
    fed = {p.downstream_plant_id for p in case.system.hydro_plants}

    for plant in case.system.hydro_plants:
        if plant.id in fed:
            continue
        inflows = [plant.inflow_at(t) or 0.0 for t in case.periods]
        if plant.has_reservoir:
            required = k * plant.min_outflow_m3s * case.num_periods
            available = (
                plant.initial_volume_hm3 - plant.min_volume_hm3 + k * sum(inflows)
            )
            if required > available + TOLERANCE:
                findings.append(
                    HeuristicFinding(
                        RootCause.CASCADE_INFEASIBILITY,
                        Severity.ERROR,
                        f"Reservoir '{plant.id}' needs {required:.3f} hm³ for minimum "
                        f"outflow but only {available:.3f} hm³ is available",
                        plant.id,
                    )
                )
        else:
            dry = [
                t
                for t, inflow in zip(case.periods, inflows)
                if inflow + TOLERANCE < plant.min_outflow_m3s
            ]
            if dry:
                findings.append(
                    HeuristicFinding(
                        RootCause.CASCADE_INFEASIBILITY,
                        Severity.ERROR,
                        f"Run-of-river plant '{plant.id}' inflow is below minimum "
                        f"outflow in periods {_period_list(dry)}",
                        plant.id,
                    )
                )
    return findings


def check_commitment_boundaries(case: DispatchCase) -> list[HeuristicFinding]:
    """Initial conditions that contradict unit limits."""
    plants = case.system.thermal_plants
    if not plants:
        return []
    conditions = case.initial_conditions
    if conditions is None:
        return [
            HeuristicFinding(
                RootCause.COMMITMENT_TIMING,
                Severity.ERROR,
                "No initial commitment state given for thermal plants",
            )
        ]

    findings = []
    for plant in plants:
        online = conditions.commitment.get(plant.id)
        if online is None:
            findings.append(
                HeuristicFinding(
                    RootCause.COMMITMENT_TIMING,
                    Severity.ERROR,
                    f"Thermal plant '{plant.id}' has no initial commitment state",
                    plant.id,
                )
            )
            continue
        generation = conditions.generation_mw.get(plant.id)
        if generation is None:
            continue
        if not online and generation > TOLERANCE:
            findings.append(
                HeuristicFinding(
                    RootCause.COMMITMENT_TIMING,
                    Severity.WARNING,
                    f"Thermal plant '{plant.id}' is initially off but has "
                    f"{generation} MW initial generation",
                    plant.id,
                )
            )
        if generation > plant.max_generation_mw + TOLERANCE:
            findings.append(
                HeuristicFinding(
                    RootCause.COMMITMENT_TIMING,
                    Severity.ERROR,
                    f"Thermal plant '{plant.id}' initial generation exceeds maximum",
                    plant.id,
                )
            )
        reachable = generation + plant.ramp_up_mw_per_hour * case.period_hours
        if online and plant.must_run and reachable + TOLERANCE < plant.min_generation_mw:
            findings.append(
                HeuristicFinding(
                    RootCause.COMMITMENT_TIMING,
                    Severity.ERROR,
                    f"Must-run plant '{plant.id}' cannot ramp from {generation} MW "
                    f"to its minimum {plant.min_generation_mw} MW in period 1",
                    plant.id,
                )
            )
    return findings


def run_heuristics(case: DispatchCase, options: ModelOptions) -> list[HeuristicFinding]:
    """All data checks that need no solver."""
    return (
        check_bound_ordering(case)
        + check_supply_adequacy(case, options)
        + check_water_availability(case)
        + check_commitment_boundaries(case)
    )


def _period_list(periods: list[int]) -> str:
    if len(periods) > 6:
        return f"{periods[0]}..{periods[-1]} ({len(periods)} periods)"
    return ", ".join(str(t) for t in periods)


# =============================================================================
# Entry Points
# =============================================================================


def diagnose_infeasibility(
    built: BuiltModel,
    backend: SolverBackend,
    status: SolveStatus = SolveStatus.INFEASIBLE,
) -> InfeasibilityReport:
    """Explain why a commitment model has no solution.

    Args:
        built: The model that failed.
        backend: Backend that solved it.
        status: Status reported by that solve.

    Returns:
        Report with the conflicting constraints (when the backend can
        compute them) and the findings of the data checks.
    """
    if not status.is_infeasible:
        return InfeasibilityReport(
            status=status,
            message="Diagnostics apply only to infeasible or unbounded solves",
        )

    conflict = backend.compute_conflict()
    report = InfeasibilityReport(
        status=status,
        conflict_status=conflict.status,
        message=conflict.message,
        solve_count=conflict.solve_count,
        time_seconds=conflict.time_seconds,
    )

    for constraint in conflict.constraints:
        record = built.constraints.by_name(constraint.name)
        report.conflicts.append(
            ConflictEntry(
                name=constraint.name,
                expression=render_constraint(constraint),
                cause=classify(record),
                kind=record.kind if record else None,
                entity_id=record.entity_id if record else None,
                period=record.period if record else None,
            )
        )

    if conflict.status is not ConflictStatus.SUCCESS:
        logger.info("Conflict refinement %s", conflict.status.value)
    report.findings.extend(run_heuristics(built.case, built.options))

    logger.info(
        "Infeasibility diagnosis: %d conflicts, %d findings, causes=%s",
        len(report.conflicts),
        len(report.findings),
        [c.value for c in report.causes],
    )
    return report


@dataclass(frozen=True)
class ConstraintViolation:
    """A constraint not satisfied by the current variable values."""

    name: str
    cause: RootCause
    body_value: float | None
    lower: float | None
    upper: float | None
    magnitude: float


@dataclass
class ViolationReport:
    """Constraint violations of a loaded solution, largest first."""

    tolerance: float
    violations: list[ConstraintViolation] = field(default_factory=list)

    @property
    def is_feasible(self) -> bool:
        return not self.violations

    @property
    def max_violation(self) -> float:
        return self.violations[0].magnitude if self.violations else 0.0

    def by_cause(self) -> dict[RootCause, int]:
        return dict(Counter(v.cause for v in self.violations))


def check_constraint_violations(
    built: BuiltModel, tolerance: float = TOLERANCE
) -> ViolationReport:
    """Check the values currently loaded in a model against its constraints."""
    violations = []
    for constraint, body_value, _ in find_infeasible_constraints(
        built.model, tol=tolerance
    ):
        lower = _bound(constraint.lower)
        upper = _bound(constraint.upper)
        if body_value is None:
            magnitude = float("inf")
        else:
            magnitude = max(
                0.0,
                (lower - body_value) if lower is not None else 0.0,
                (body_value - upper) if upper is not None else 0.0,
            )
        violations.append(
            ConstraintViolation(
                name=constraint.name,
                cause=classify(built.constraints.by_name(constraint.name)),
                body_value=body_value,
                lower=lower,
                upper=upper,
                magnitude=magnitude,
            )
        )
    violations.sort(key=lambda v: v.magnitude, reverse=True)
    return ViolationReport(tolerance=tolerance, violations=violations)
