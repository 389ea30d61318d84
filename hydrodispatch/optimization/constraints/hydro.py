"""Hydro cascade water balance and generation linkage.

Water balance, reservoir plant p at period t (k = 0.0036·Δt hm³ per m³/s):

    volume[t] = volume[t-1] + k·(inflow[t] - outflow[t] - spill[t]
                                 + Σ_upstream (outflow + spill)[t - d])

with volume[0] the initial volume and d the upstream travel time in whole
periods. Run-of-river plants have no storage:

    outflow[t] + spill[t] = inflow[t] + Σ_upstream (outflow + spill)[t - d]

Generation linkage: hydro_generation[t] = productivity·outflow[t].
"""

import logging
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import HydroPlant
from hydrodispatch.optimization.cascade import upstream_contributions
from hydrodispatch.optimization.constraints.base import (
    BuildContext,
    ConstraintBuilder,
    ConstraintKind,
    ConstraintMetadata,
)
from hydrodispatch.optimization.variables import QuantityKind

logger = logging.getLogger(__name__)

M3S_TO_HM3_PER_HOUR = 0.0036


def missing_inflow_periods(plant: HydroPlant, periods: list[int]) -> list[int]:
    """Periods for which a plant has no inflow value."""
    return [t for t in periods if plant.inflow_at(t) is None]


class HydroWaterBalanceBuilder(ConstraintBuilder):
    """Reservoir mass balance with delayed upstream releases."""

    kind = ConstraintKind.HYDRO_WATER_BALANCE
    metadata = ConstraintMetadata(
        name="Hydro water balance",
        description="Storage continuity and cascade coupling",
        priority=20,
        tags=("hydro", "cascade"),
    )

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        plants: dict[str, HydroPlant] = {
            p.id: p for p in context.case.system.hydro_plants
        }
        if not plants:
            return 0

        alloc = context.allocator
        dt = context.case.period_hours
        periods = context.case.periods
        k = M3S_TO_HM3_PER_HOUR * dt

        for warning in context.topology.warnings:
            warnings.append(warning)

        for plant in plants.values():
            missing = missing_inflow_periods(plant, periods)
            if missing:
                message = (
                    f"No inflow data for hydro plant '{plant.id}' in "
                    f"{len(missing)} of {len(periods)} periods; using zero inflow"
                )
                logger.warning(message)
                warnings.append(message)

        def release(pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.OUTFLOW, pid, t) + alloc.var(
                QuantityKind.SPILL, pid, t
            )

        def arrivals(pid: str, t: int) -> Any:
            return sum(
                release(upstream_id, source)
                for upstream_id, source in upstream_contributions(
                    context.topology, pid, t, dt
                )
            )

        def balance_rule(_m: Any, pid: str, t: int) -> Any:
            plant = plants[pid]
            inflow = plant.inflow_at(t) or 0.0
            if not plant.has_reservoir:
                return release(pid, t) == inflow + arrivals(pid, t)

            previous = (
                plant.initial_volume_hm3
                if t == 1
                else alloc.var(QuantityKind.VOLUME, pid, t - 1)
            )
            return alloc.var(QuantityKind.VOLUME, pid, t) == previous + k * (
                inflow - release(pid, t) + arrivals(pid, t)
            )

        keys = [(pid, t) for pid in context.topology.topological_order for t in periods]
        return self._add_family(
            context, "storage", keys, balance_rule, "Water balance (hm³)"
        )


class HydroGenerationBuilder(ConstraintBuilder):
    """Turbined flow to electrical output conversion."""

    kind = ConstraintKind.HYDRO_GENERATION
    metadata = ConstraintMetadata(
        name="Hydro generation",
        description="Generation equals productivity times turbined outflow",
        priority=30,
        tags=("hydro",),
    )

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        plants: dict[str, HydroPlant] = {
            p.id: p for p in context.case.system.hydro_plants
        }
        if not plants:
            return 0

        alloc = context.allocator
        keys = [(pid, t) for pid in plants for t in context.case.periods]

        def linkage_rule(_m: Any, pid: str, t: int) -> Any:
            return alloc.var(QuantityKind.HYDRO_GENERATION, pid, t) == plants[
                pid
            ].productivity * alloc.var(QuantityKind.OUTFLOW, pid, t)

        def minimum_rule(_m: Any, pid: str, t: int) -> Any:
            if plants[pid].min_generation_mw <= 0:
                return pyo.Constraint.Skip
            return (
                alloc.var(QuantityKind.HYDRO_GENERATION, pid, t)
                >= plants[pid].min_generation_mw
            )

        added = self._add_family(
            context, "linkage", keys, linkage_rule, "Generation = productivity x outflow"
        )
        added += self._add_family(
            context, "minimum", keys, minimum_rule, "Minimum hydro generation"
        )
        return added
