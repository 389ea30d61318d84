"""Shared machinery for constraint builders."""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import DispatchCase
from hydrodispatch.optimization.cascade import CascadeTopology
from hydrodispatch.optimization.config import ModelOptions
from hydrodispatch.optimization.variables import VariableAllocator

logger = logging.getLogger(__name__)


class ConstraintKind(str, Enum):
    """Physical or economic rule families, one builder each."""

    THERMAL_COMMITMENT = "thermal_commitment"
    HYDRO_WATER_BALANCE = "hydro_water_balance"
    HYDRO_GENERATION = "hydro_generation"
    RENEWABLE_AVAILABILITY = "renewable_availability"
    SUBMARKET_BALANCE = "submarket_balance"
    INTERCONNECTION_LIMIT = "interconnection_limit"


@dataclass(frozen=True)
class ConstraintMetadata:
    """Descriptive metadata for a builder.

    Attributes:
        name: Human-readable name.
        description: What the constraints enforce.
        priority: Build order, lower first.
        enabled: Default on/off state.
        tags: Free-form labels.
    """

    name: str
    description: str = ""
    priority: int = 10
    enabled: bool = True
    tags: tuple[str, ...] = ()


@dataclass
class ConstraintBuildResult:
    """Outcome of running one builder."""

    kind: ConstraintKind
    num_constraints: int = 0
    num_variables: int = 0
    build_time_seconds: float = 0.0
    success: bool = True
    message: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConstraintRecord:
    """One constructed constraint row and what it is about.

    ``constraint`` is the Pyomo constraint data holding coefficients,
    bound and direction.
    """

    kind: ConstraintKind
    component: str
    entity_id: str
    period: int
    constraint: Any

    @property
    def name(self) -> str:
        return self.constraint.name


class ConstraintIndex:
    """Registry of every constraint row added during a build."""

    def __init__(self) -> None:
        self._records: list[ConstraintRecord] = []
        self._by_key: dict[tuple[ConstraintKind, str, str, int], ConstraintRecord] = {}
        self._by_name: dict[str, ConstraintRecord] = {}

    def add(self, record: ConstraintRecord) -> None:
        self._records.append(record)
        key = (record.kind, record.component, record.entity_id, record.period)
        self._by_key[key] = record
        self._by_name[record.name] = record

    def records(self, kind: ConstraintKind | None = None) -> list[ConstraintRecord]:
        if kind is None:
            return list(self._records)
        return [r for r in self._records if r.kind == kind]

    def find(
        self, kind: ConstraintKind, component: str, entity_id: str, period: int
    ) -> ConstraintRecord | None:
        return self._by_key.get((kind, component, entity_id, period))

    def by_name(self, name: str) -> ConstraintRecord | None:
        return self._by_name.get(name)

    def __len__(self) -> int:
        return len(self._records)


@dataclass
class BuildContext:
    """Model-in-progress handed to each builder."""

    model: pyo.ConcreteModel
    allocator: VariableAllocator
    case: DispatchCase
    options: ModelOptions
    constraints: ConstraintIndex
    topology: CascadeTopology


class ConstraintBuilder(ABC):
    """Base class for one constraint kind.

    Subclasses implement ``_build`` and add rows through ``_add_family`` so
    every row is registered in the context's ``ConstraintIndex``.
    """

    kind: ConstraintKind
    metadata: ConstraintMetadata

    def build(self, context: BuildContext) -> ConstraintBuildResult:
        """Add this builder's constraints to the model.

        Args:
            context: Model, allocator, case and options being assembled.

        Returns:
            Counts, timing and warnings for the build.
        """
        start = time.perf_counter()
        variables_before = context.allocator.num_variables
        warnings: list[str] = []

        added = self._build(context, warnings)

        result = ConstraintBuildResult(
            kind=self.kind,
            num_constraints=added,
            num_variables=context.allocator.num_variables - variables_before,
            build_time_seconds=time.perf_counter() - start,
            message=f"{self.metadata.name}: {added} constraints",
            warnings=warnings,
        )
        logger.debug(
            "%s built %d constraints, %d new variables in %.3fs",
            self.metadata.name,
            result.num_constraints,
            result.num_variables,
            result.build_time_seconds,
        )
        return result

    @abstractmethod
    def _build(self, context: BuildContext, warnings: list[str]) -> int:
        """Add constraints and return how many rows were created."""

    def _add_family(
        self,
        context: BuildContext,
        component: str,
        keys: list[tuple[str, int]],
        rule: Callable[..., Any],
        doc: str,
    ) -> int:
        """Add an indexed constraint over ``(entity_id, period)`` keys.

        Rules may return ``pyo.Constraint.Skip`` for keys that do not apply.

        Returns:
            Number of rows actually constructed.
        """
        name = f"{self.kind.value}_{component}"
        index = pyo.Set(initialize=keys, dimen=2, ordered=True)
        context.model.add_component(f"{name}_index", index)
        constraint = pyo.Constraint(index, rule=rule, doc=doc)
        context.model.add_component(name, constraint)

        for entity_id, period in keys:
            if (entity_id, period) not in constraint:
                continue
            context.constraints.add(
                ConstraintRecord(
                    kind=self.kind,
                    component=component,
                    entity_id=entity_id,
                    period=period,
                    constraint=constraint[entity_id, period],
                )
            )
        return len(constraint)
