"""Scaled cost objective.

Minimize C · [ Σ fuel·g·Δt + Σ startup·v + Σ shutdown·w
               + Σ deficit_cost·deficit·Δt + Σ curtailment_penalty·curtail·Δt
               + Σ spill_penalty·spill·Δt - Σ water_value·volume[T] ]

C is ``ModelOptions.cost_scale``. Every monetary term is multiplied by it
so solver coefficients stay near unit magnitude; duals read from the model
must be divided by C to recover currency units.
"""

import logging
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.optimization.constraints.base import BuildContext
from hydrodispatch.optimization.variables import QuantityKind

logger = logging.getLogger(__name__)

COST_COMPONENTS = (
    "fuel",
    "startup",
    "shutdown",
    "deficit",
    "curtailment",
    "spill",
    "water_value",
)


class ObjectiveBuilder:
    """Assembles the cost expression and attaches the objective."""

    def build(self, context: BuildContext) -> pyo.Objective:
        """Attach ``cost_<component>`` expressions and the scaled objective.

        Args:
            context: Model being assembled.

        Returns:
            The objective component.
        """
        model = context.model
        model.cost_scale = pyo.Param(
            initialize=context.options.cost_scale, doc="Objective cost scale C"
        )

        terms = self.cost_terms(context)
        for component in COST_COMPONENTS:
            model.add_component(
                f"cost_{component}",
                pyo.Expression(expr=sum(terms[component]), doc=f"{component} cost"),
            )

        def objective_rule(m: Any) -> Any:
            return m.cost_scale * sum(
                m.component(f"cost_{component}") for component in COST_COMPONENTS
            )

        model.objective = pyo.Objective(rule=objective_rule, sense=pyo.minimize)
        logger.debug(
            "Objective built with %d terms (scale %g)",
            sum(len(v) for v in terms.values()),
            context.options.cost_scale,
        )
        return model.objective

    def cost_terms(self, context: BuildContext) -> dict[str, list[Any]]:
        """Unscaled linear cost terms grouped by component."""
        system = context.case.system
        options = context.options
        alloc = context.allocator
        dt = context.case.period_hours
        periods = context.case.periods
        terms: dict[str, list[Any]] = {c: [] for c in COST_COMPONENTS}

        for plant in system.thermal_plants:
            for t in periods:
                fuel = options.fuel_cost(plant.id, t, plant.fuel_cost_per_mwh)
                terms["fuel"].append(
                    fuel * dt * alloc.var(QuantityKind.THERMAL_GENERATION, plant.id, t)
                )
                if plant.startup_cost:
                    terms["startup"].append(
                        plant.startup_cost * alloc.var(QuantityKind.STARTUP, plant.id, t)
                    )
                if plant.shutdown_cost:
                    terms["shutdown"].append(
                        plant.shutdown_cost
                        * alloc.var(QuantityKind.SHUTDOWN, plant.id, t)
                    )

        if options.allow_deficit:
            for zone in system.submarket_ids:
                cost = system.deficit_cost(zone, options.default_deficit_cost)
                for t in periods:
                    terms["deficit"].append(
                        cost * dt * alloc.var(QuantityKind.DEFICIT, zone, t)
                    )

        if options.curtailment_penalty:
            for plant in system.renewable_plants:
                if not alloc.declares(QuantityKind.CURTAILMENT, plant.id):
                    continue
                for t in periods:
                    terms["curtailment"].append(
                        options.curtailment_penalty
                        * dt
                        * alloc.var(QuantityKind.CURTAILMENT, plant.id, t)
                    )

        for plant in system.hydro_plants:
            if options.spill_penalty:
                for t in periods:
                    terms["spill"].append(
                        options.spill_penalty
                        * dt
                        * alloc.var(QuantityKind.SPILL, plant.id, t)
                    )
            if plant.has_reservoir and plant.water_value_per_hm3:
                terms["water_value"].append(
                    -plant.water_value_per_hm3
                    * alloc.var(QuantityKind.VOLUME, plant.id, periods[-1])
                )

        return terms
