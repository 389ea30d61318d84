"""Renewable availability limits.

Curtailable plants: generation[t] + curtailment[t] = available[t]
Other plants take all available energy: generation[t] = available[t]
"""

import logging
from typing import Any

from hydrodispatch.domain.models import RenewablePlant
from hydrodispatch.optimization.constraints.base import (
    BuildContext,
    ConstraintBuilder,
    ConstraintKind,
    ConstraintMetadata,
)
from hydrodispatch.optimization.variables import QuantityKind

logger = logging.getLogger(__name__)


class RenewableAvailabilityBuilder(ConstraintBuilder):
    """Caps wind and solar output at the forecast availability."""

    kind = ConstraintKind.RENEWABLE_AVAILABILITY
    metadata = ConstraintMetadata(
        name="Renewable availability",
        description="Generation plus curtailment equals forecast availability",
        priority=40,
        tags=("renewable",),
    )

    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        plants: dict[str, RenewablePlant] = {
            p.id: p for p in context.case.system.renewable_plants
        }
        if not plants:
            return 0

        alloc = context.allocator
        periods = context.case.periods

        for plant in plants.values():
            missing = [t for t in periods if plant.available_at(t) is None]
            if missing:
                message = (
                    f"No availability forecast for renewable plant '{plant.id}' in "
                    f"{len(missing)} of {len(periods)} periods; using zero"
                )
                logger.warning(message)
                warnings.append(message)

        def availability_rule(_m: Any, pid: str, t: int) -> Any:
            available = plants[pid].available_at(t) or 0.0
            generation = alloc.var(QuantityKind.RENEWABLE_GENERATION, pid, t)
            if alloc.declares(QuantityKind.CURTAILMENT, pid):
                return (
                    generation + alloc.var(QuantityKind.CURTAILMENT, pid, t) == available
                )
            return generation == available

        keys = [(pid, t) for pid in plants for t in periods]
        return self._add_family(
            context, "limit", keys, availability_rule, "Renewable availability"
        )
