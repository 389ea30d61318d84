"""Submarket energy balance and interconnection limits.

Balance for zone z at period t:

    Σ generation + Σ import·(1 - loss) - Σ export + deficit = demand

The dual of this row, divided by the cost scale, is the zonal marginal
price.
"""

import logging
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import Interconnection
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.constraints.base import (
    BuildContext,
    ConstraintBuilder,
    ConstraintKind,
    ConstraintMetadata,
)
from hydrodispatch.optimization.variables import QuantityKind

logger = logging.getLogger(__name__)

BALANCE_COMPONENT = "energy"


class SubmarketBalanceBuilder(ConstraintBuilder):
    """Energy balance per submarket and period."""

    kind = ConstraintKind.SUBMARKET_BALANCE
    metadata = ConstraintMetadata(
        name="Submarket balance",
        description="Supply plus net imports plus deficit meets demand",
        priority=50,
        tags=("market", "pricing"),
    )

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        system = context.case.system
        alloc = context.allocator
        zones = system.submarket_ids
        if not zones:
            return 0

        demand = {
            (zone, t): system.demand_mw(zone, t)
            for zone in zones
            for t in context.case.periods
        }

        def supply_terms(zone: str, t: int) -> list[Any]:
            terms = [
                alloc.var(QuantityKind.THERMAL_GENERATION, p.id, t)
                for p in system.thermal_in(zone)
            ]
            terms += [
                alloc.var(QuantityKind.HYDRO_GENERATION, p.id, t)
                for p in system.hydro_in(zone)
            ]
            terms += [
                alloc.var(QuantityKind.RENEWABLE_GENERATION, p.id, t)
                for p in system.renewables_in(zone)
            ]
            terms += [
                (1 - line.loss_fraction) * alloc.var(QuantityKind.FLOW, line.id, t)
                for line in system.imports_to(zone)
            ]
            terms += [
                -alloc.var(QuantityKind.FLOW, line.id, t)
                for line in system.exports_from(zone)
            ]
            if context.options.allow_deficit:
                terms.append(alloc.var(QuantityKind.DEFICIT, zone, t))
            return terms

        def has_terms(zone: str) -> bool:
            return context.options.allow_deficit or bool(
                system.thermal_in(zone)
                or system.hydro_in(zone)
                or system.renewables_in(zone)
                or system.imports_to(zone)
                or system.exports_from(zone)
            )

        for zone in zones:
            if has_terms(zone):
                continue
            peak = max(demand[zone, t] for t in context.case.periods)
            if peak > 0:
                raise ConfigurationError(
                    f"Submarket '{zone}' has up to {peak} MW demand but no supply, "
                    "interconnection or deficit variables"
                )

        def balance_rule(_m: Any, zone: str, t: int) -> Any:
            if not has_terms(zone):
                return pyo.Constraint.Skip
            return sum(supply_terms(zone, t)) == demand[zone, t]

        keys = [(zone, t) for zone in zones for t in context.case.periods]
        return self._add_family(
            context, BALANCE_COMPONENT, keys, balance_rule, "Zonal energy balance"
        )


class InterconnectionLimitBuilder(ConstraintBuilder):
    """Transfer capacity of each directional interconnection."""

    kind = ConstraintKind.INTERCONNECTION_LIMIT
    metadata = ConstraintMetadata(
        name="Interconnection limits",
        description="Flow on each interconnection within its capacity",
        priority=60,
        tags=("market", "network"),
    )

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        lines: dict[str, Interconnection] = {
            line.id: line for line in context.case.system.interconnections
        }
        if not lines:
            return 0

        known = set(context.case.system.submarket_ids)
        for line in lines.values():
            for zone in (line.from_submarket_id, line.to_submarket_id):
                if zone not in known:
                    message = (
                        f"Interconnection '{line.id}' references unknown submarket "
                        f"'{zone}'"
                    )
                    logger.warning(message)
                    warnings.append(message)

        def limit_rule(_m: Any, line_id: str, t: int) -> Any:
            return (
                context.allocator.var(QuantityKind.FLOW, line_id, t)
                <= lines[line_id].max_flow_mw
            )

        keys = [(line_id, t) for line_id in lines for t in context.case.periods]
        return self._add_family(
            context, "capacity", keys, limit_rule, "Interconnection capacity (MW)"
        )
