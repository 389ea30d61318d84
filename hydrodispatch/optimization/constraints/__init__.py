"""Constraint builders, one per constraint kind, selected via a registry."""

from hydrodispatch.optimization.constraints.base import (
    BuildContext,
    ConstraintBuilder,
    ConstraintBuildResult,
    ConstraintIndex,
    ConstraintKind,
    ConstraintMetadata,
    ConstraintRecord,
)
from hydrodispatch.optimization.constraints.hydro import (
    HydroGenerationBuilder,
    HydroWaterBalanceBuilder,
)
from hydrodispatch.optimization.constraints.market import (
    BALANCE_COMPONENT,
    InterconnectionLimitBuilder,
    SubmarketBalanceBuilder,
)
from hydrodispatch.optimization.constraints.renewable import (
    RenewableAvailabilityBuilder,
)
from hydrodispatch.optimization.constraints.thermal import ThermalCommitmentBuilder

BUILDER_REGISTRY: dict[ConstraintKind, type[ConstraintBuilder]] = {
    ConstraintKind.THERMAL_COMMITMENT: ThermalCommitmentBuilder,
    ConstraintKind.HYDRO_WATER_BALANCE: HydroWaterBalanceBuilder,
    ConstraintKind.HYDRO_GENERATION: HydroGenerationBuilder,
    ConstraintKind.RENEWABLE_AVAILABILITY: RenewableAvailabilityBuilder,
    ConstraintKind.SUBMARKET_BALANCE: SubmarketBalanceBuilder,
    ConstraintKind.INTERCONNECTION_LIMIT: InterconnectionLimitBuilder,
}


def default_builders(enabled: set[str] | None = None) -> list[ConstraintBuilder]:
    """Instantiate registered builders in priority order.

    Args:
        enabled: Constraint kind values to include. None includes every
            builder whose metadata is enabled.

    Returns:
        Builder instances sorted by priority.
    """
    wanted = None if enabled is None else {ConstraintKind(k) for k in enabled}
    builders = [
        builder_cls()
        for kind, builder_cls in BUILDER_REGISTRY.items()
        if (builder_cls.metadata.enabled if wanted is None else kind in wanted)
    ]
    return sorted(builders, key=lambda b: b.metadata.priority)


__all__ = [
    "BALANCE_COMPONENT",
    "BUILDER_REGISTRY",
    "BuildContext",
    "ConstraintBuilder",
    "ConstraintBuildResult",
    "ConstraintIndex",
    "ConstraintKind",
    "ConstraintMetadata",
    "ConstraintRecord",
    "HydroGenerationBuilder",
    "HydroWaterBalanceBuilder",
    "InterconnectionLimitBuilder",
    "RenewableAvailabilityBuilder",
    "SubmarketBalanceBuilder",
    "ThermalCommitmentBuilder",
    "default_builders",
]
