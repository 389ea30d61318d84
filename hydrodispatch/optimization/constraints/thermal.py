"""Thermal unit commitment constraints.

Per plant p and period t, with commitment u, startup v, shutdown w and
generation g:

1. Capacity: min_gen·u[t] <= g[t] <= max_gen·u[t]
2. Ramp up: g[t] - g[t-1] <= ramp_up·Δt + max_gen·v[t]
3. Ramp down: g[t-1] - g[t] <= ramp_down·Δt + max_gen·w[t]
4. Transition: u[t] - u[t-1] = v[t] - w[t], u[0] from the initial state
5. Exclusivity: v[t] + w[t] <= 1
6. Minimum up: Σ_{τ=t-UT+1..t} v[τ] <= u[t]
7. Minimum down: Σ_{τ=t-DT+1..t} w[τ] <= 1 - u[t]
8. Must run: u[t] = 1

Ramp limits do not bind in a period where the unit starts or stops.
"""

import math
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import ThermalPlant
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.constraints.base import (
    BuildContext,
    ConstraintBuilder,
    ConstraintKind,
    ConstraintMetadata,
)
from hydrodispatch.optimization.variables import QuantityKind


def periods_for(hours: float, period_hours: float) -> int:
    """Whole periods needed to cover a duration."""
    return max(0, math.ceil(hours / period_hours - 1e-9))


class ThermalCommitmentBuilder(ConstraintBuilder):
    """Commitment state machine, capacity and ramp limits for thermal units."""

    kind = ConstraintKind.THERMAL_COMMITMENT
    metadata = ConstraintMetadata(
        name="Thermal commitment",
        description="On/off state machine, capacity, ramping, min up/down time",
        priority=10,
        tags=("thermal", "commitment"),
    )

    def _initial_commitment(self, context: BuildContext) -> dict[str, bool]:
        plants = context.case.system.thermal_plants
        conditions = context.case.initial_conditions
        if conditions is None:
            raise ConfigurationError(
                "Thermal commitment requires initial conditions with the "
                "commitment state of every thermal plant"
            )
        missing = [p.id for p in plants if p.id not in conditions.commitment]
        if missing:
            raise ConfigurationError(
                "Initial commitment missing for thermal plants: " + ", ".join(missing)
            )
        return conditions.commitment

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        plants: dict[str, ThermalPlant] = {
            p.id: p for p in context.case.system.thermal_plants
        }
        if not plants:
            return 0

        initial = self._initial_commitment(context)
        initial_generation = context.case.initial_conditions.generation_mw
        alloc = context.allocator
        dt = context.case.period_hours
        periods = context.case.periods
        keys = [(pid, t) for pid in plants for t in periods]

        def g(pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.THERMAL_GENERATION, pid, t)

        def u(pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.COMMITMENT, pid, t)

        def v(pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.STARTUP, pid, t)

        def w(pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.SHUTDOWN, pid, t)

        added = 0

        # 1. Capacity limits
        def capacity_min_rule(_m: Any, pid: str, t: int) -> Any:
            plant = plants[pid]
            if plant.min_generation_mw <= 0:
                return pyo.Constraint.Skip
            return g(pid, t) >= plant.min_generation_mw * u(pid, t)

        def capacity_max_rule(_m: Any, pid: str, t: int) -> Any:
            return g(pid, t) <= plants[pid].max_generation_mw * u(pid, t)

        added += self._add_family(
            context, "capacity_min", keys, capacity_min_rule, "Minimum stable generation"
        )
        added += self._add_family(
            context, "capacity_max", keys, capacity_max_rule, "Maximum generation"
        )

        # 2-3. Ramp limits
        def previous_generation(pid: str, t: int) -> Any:
            if t > 1:
                return g(pid, t - 1)
            return initial_generation.get(pid)

        def ramp_up_rule(_m: Any, pid: str, t: int) -> Any:
            plant = plants[pid]
            previous = previous_generation(pid, t)
            limit = plant.ramp_up_mw_per_hour * dt
            if previous is None or limit >= plant.max_generation_mw:
                return pyo.Constraint.Skip
            return g(pid, t) - previous <= limit + plant.max_generation_mw * v(pid, t)

        def ramp_down_rule(_m: Any, pid: str, t: int) -> Any:
            plant = plants[pid]
            previous = previous_generation(pid, t)
            limit = plant.ramp_down_mw_per_hour * dt
            if previous is None or limit >= plant.max_generation_mw:
                return pyo.Constraint.Skip
            return previous - g(pid, t) <= limit + plant.max_generation_mw * w(pid, t)

        added += self._add_family(context, "ramp_up", keys, ramp_up_rule, "Ramp-up limit")
        added += self._add_family(
            context, "ramp_down", keys, ramp_down_rule, "Ramp-down limit"
        )

        # 4. Commitment transition
        def transition_rule(_m: Any, pid: str, t: int) -> Any:
            previous = u(pid, t - 1) if t > 1 else int(initial[pid])
            return u(pid, t) - previous == v(pid, t) - w(pid, t)

        added += self._add_family(
            context, "state_transition", keys, transition_rule, "u[t]-u[t-1]=v[t]-w[t]"
        )

        # 5. No simultaneous start and stop
        def exclusive_rule(_m: Any, pid: str, t: int) -> Any:
            return v(pid, t) + w(pid, t) <= 1

        added += self._add_family(
            context,
            "startup_shutdown_exclusive",
            keys,
            exclusive_rule,
            "Startup and shutdown are exclusive",
        )

        # 6-7. Minimum up and down times
        def min_up_rule(_m: Any, pid: str, t: int) -> Any:
            window = periods_for(plants[pid].min_up_time_hours, dt)
            if window <= 1:
                return pyo.Constraint.Skip
            first = max(1, t - window + 1)
            return sum(v(pid, tau) for tau in range(first, t + 1)) <= u(pid, t)

        def min_down_rule(_m: Any, pid: str, t: int) -> Any:
            window = periods_for(plants[pid].min_down_time_hours, dt)
            if window <= 1:
                return pyo.Constraint.Skip
            first = max(1, t - window + 1)
            return sum(w(pid, tau) for tau in range(first, t + 1)) <= 1 - u(pid, t)

        added += self._add_family(
            context, "min_up", keys, min_up_rule, "Minimum up time"
        )
        added += self._add_family(
            context, "min_down", keys, min_down_rule, "Minimum down time"
        )

        # 8. Must-run units
        def must_run_rule(_m: Any, pid: str, t: int) -> Any:
            if not plants[pid].must_run:
                return pyo.Constraint.Skip
            return u(pid, t) == 1

        added += self._add_family(context, "must_run", keys, must_run_rule, "Must run")

        return added
