"""Decision-variable allocation.

Every decision variable is keyed by ``(quantity kind, entity id, period)``.
The allocator owns one Pyomo ``Var`` per quantity kind, indexed by
``(entity_id, period)`` tuples taken from entity identity, so reordering
entity lists between builds never changes which variable a constraint
refers to.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import (
    DispatchCase,
    HydroPlant,
    Interconnection,
    RenewablePlant,
    Submarket,
    ThermalPlant,
)
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.config import ModelOptions

logger = logging.getLogger(__name__)


class QuantityKind(str, Enum):
    """Kinds of decision quantity the model can allocate."""

    THERMAL_GENERATION = "thermal_generation"
    COMMITMENT = "commitment"
    STARTUP = "startup"
    SHUTDOWN = "shutdown"
    VOLUME = "volume"
    OUTFLOW = "outflow"
    SPILL = "spill"
    HYDRO_GENERATION = "hydro_generation"
    RENEWABLE_GENERATION = "renewable_generation"
    CURTAILMENT = "curtailment"
    FLOW = "flow"
    DEFICIT = "deficit"


class VariableRole(str, Enum):
    """Integrality role of a decision variable."""

    CONTINUOUS = "continuous"
    BINARY = "binary"


COMMITMENT_KINDS = (
    QuantityKind.COMMITMENT,
    QuantityKind.STARTUP,
    QuantityKind.SHUTDOWN,
)

UNITS: dict[QuantityKind, str] = {
    QuantityKind.THERMAL_GENERATION: "MW",
    QuantityKind.COMMITMENT: "on/off",
    QuantityKind.STARTUP: "on/off",
    QuantityKind.SHUTDOWN: "on/off",
    QuantityKind.VOLUME: "hm3",
    QuantityKind.OUTFLOW: "m3/s",
    QuantityKind.SPILL: "m3/s",
    QuantityKind.HYDRO_GENERATION: "MW",
    QuantityKind.RENEWABLE_GENERATION: "MW",
    QuantityKind.CURTAILMENT: "MW",
    QuantityKind.FLOW: "MW",
    QuantityKind.DEFICIT: "MW",
}


@dataclass(frozen=True)
class VariableHandle:
    """Identity of one decision variable."""

    kind: QuantityKind
    entity_id: str
    period: int
    role: VariableRole
    unit: str

    @property
    def key(self) -> tuple[QuantityKind, str, int]:
        return (self.kind, self.entity_id, self.period)


def declared_kinds(entity: Any) -> frozenset[QuantityKind]:
    """Quantity kinds an entity supports."""
    if isinstance(entity, ThermalPlant):
        return frozenset(
            {
                QuantityKind.THERMAL_GENERATION,
                QuantityKind.COMMITMENT,
                QuantityKind.STARTUP,
                QuantityKind.SHUTDOWN,
            }
        )
    if isinstance(entity, HydroPlant):
        kinds = {
            QuantityKind.OUTFLOW,
            QuantityKind.SPILL,
            QuantityKind.HYDRO_GENERATION,
        }
        if entity.has_reservoir:
            kinds.add(QuantityKind.VOLUME)
        return frozenset(kinds)
    if isinstance(entity, RenewablePlant):
        kinds = {QuantityKind.RENEWABLE_GENERATION}
        if entity.curtailable:
            kinds.add(QuantityKind.CURTAILMENT)
        return frozenset(kinds)
    if isinstance(entity, Interconnection):
        return frozenset({QuantityKind.FLOW})
    if isinstance(entity, Submarket):
        return frozenset({QuantityKind.DEFICIT})
    return frozenset()


class VariableAllocator:
    """Creates and hands out decision variables for one model build.

    Variables for a kind are created the first time any builder asks for
    them, covering every entity that declares that kind.
    """

    def __init__(
        self,
        model: pyo.ConcreteModel,
        case: DispatchCase,
        options: ModelOptions,
    ) -> None:
        """Initialize the allocator.

        Args:
            model: Model the variables are attached to.
            case: Case supplying entities and periods.
            options: Model options (deficit availability).
        """
        self.model = model
        self.case = case
        self.options = options
        self._vars: dict[QuantityKind, pyo.Var] = {}
        self._owners: dict[QuantityKind, dict[str, Any]] = {}

    def _family(self, kind: QuantityKind) -> list[Any]:
        system = self.case.system
        if kind in (QuantityKind.THERMAL_GENERATION, *COMMITMENT_KINDS):
            return list(system.thermal_plants)
        if kind in (
            QuantityKind.VOLUME,
            QuantityKind.OUTFLOW,
            QuantityKind.SPILL,
            QuantityKind.HYDRO_GENERATION,
        ):
            return list(system.hydro_plants)
        if kind in (QuantityKind.RENEWABLE_GENERATION, QuantityKind.CURTAILMENT):
            return list(system.renewable_plants)
        if kind == QuantityKind.FLOW:
            return list(system.interconnections)
        if kind == QuantityKind.DEFICIT:
            return list(system.submarkets) if self.options.allow_deficit else []
        return []

    def owners(self, kind: QuantityKind) -> dict[str, Any]:
        """Entities (by id) that declare a quantity kind."""
        if kind not in self._owners:
            self._owners[kind] = {
                entity.id: entity
                for entity in self._family(kind)
                if kind in declared_kinds(entity)
            }
        return self._owners[kind]

    def declares(self, kind: QuantityKind, entity_id: str) -> bool:
        return entity_id in self.owners(kind)

    def _bounds(
        self, kind: QuantityKind, entity: Any, period: int
    ) -> tuple[float | None, float | None]:
        if kind == QuantityKind.THERMAL_GENERATION:
            return (0.0, entity.max_generation_mw)
        if kind == QuantityKind.VOLUME:
            return (entity.min_volume_hm3, entity.max_volume_hm3)
        if kind == QuantityKind.OUTFLOW:
            return (entity.min_outflow_m3s, entity.max_outflow_m3s)
        if kind == QuantityKind.HYDRO_GENERATION:
            return (0.0, entity.max_generation_mw)
        if kind == QuantityKind.DEFICIT:
            return (0.0, self.case.system.demand_mw(entity.id, period))
        return (0.0, None)

    def allocate(self, kind: QuantityKind) -> pyo.Var:
        """Create the variables of a kind if they do not exist yet.

        Returns:
            The indexed Pyomo variable for the kind.
        """
        if kind in self._vars:
            return self._vars[kind]

        owners = self.owners(kind)
        index = pyo.Set(
            initialize=[(eid, t) for eid in owners for t in self.case.periods],
            dimen=2,
            ordered=True,
            doc=f"{kind.value} index (entity_id, period)",
        )
        self.model.add_component(f"{kind.value}_index", index)

        def bounds_rule(_m: Any, entity_id: str, t: int) -> tuple:
            return self._bounds(kind, owners[entity_id], t)

        domain = pyo.Binary if kind in COMMITMENT_KINDS else pyo.NonNegativeReals
        var = pyo.Var(
            index,
            domain=domain,
            bounds=bounds_rule,
            doc=f"{kind.value} ({UNITS[kind]})",
        )
        self.model.add_component(kind.value, var)
        self._vars[kind] = var
        logger.debug("Allocated %d %s variables", len(index), kind.value)
        return var

    def var(self, kind: QuantityKind, entity_id: str, period: int) -> Any:
        """Variable for ``(kind, entity_id, period)``.

        Raises:
            ConfigurationError: If the entity does not declare the kind or
                the period lies outside the horizon.
        """
        if not self.declares(kind, entity_id):
            raise ConfigurationError(
                f"Quantity '{kind.value}' is not declared for entity '{entity_id}'"
            )
        if not 1 <= period <= self.case.num_periods:
            raise ConfigurationError(
                f"Period {period} is outside the horizon 1..{self.case.num_periods}"
            )
        return self.allocate(kind)[entity_id, period]

    def allocated_kinds(self) -> list[QuantityKind]:
        return list(self._vars)

    @property
    def num_variables(self) -> int:
        return sum(len(v) for v in self._vars.values())

    def handles(self, kind: QuantityKind | None = None) -> list[VariableHandle]:
        """Handles of allocated variables, optionally for a single kind."""
        kinds = [kind] if kind is not None else list(self._vars)
        result = []
        for k in kinds:
            if k not in self._vars:
                continue
            role = (
                VariableRole.BINARY if k in COMMITMENT_KINDS else VariableRole.CONTINUOUS
            )
            for entity_id, period in self._vars[k].index_set():
                result.append(VariableHandle(k, entity_id, period, role, UNITS[k]))
        return result

    def resolve(self, handle: VariableHandle) -> Any:
        """Pyomo variable behind a handle."""
        return self.var(handle.kind, handle.entity_id, handle.period)
