"""Model assembly.

entities -> allocator -> constraint builders -> objective -> ``BuiltModel``.

Every build produces a fresh, independent ``ConcreteModel``; the pricing
stage calls the same builder again instead of copying a solved model.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import pyomo.environ as pyo

from hydrodispatch.domain.models import DispatchCase
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.cascade import CascadeTopology, build_cascade_topology
from hydrodispatch.optimization.config import ModelOptions
from hydrodispatch.optimization.constraints import (
    BALANCE_COMPONENT,
    BuildContext,
    ConstraintBuilder,
    ConstraintBuildResult,
    ConstraintIndex,
    ConstraintKind,
    default_builders,
)
from hydrodispatch.optimization.objective import ObjectiveBuilder
from hydrodispatch.optimization.variables import VariableAllocator

logger = logging.getLogger(__name__)


@dataclass
class BuiltModel:
    """An assembled model and the indices needed to read it back."""

    model: pyo.ConcreteModel
    case: DispatchCase
    options: ModelOptions
    allocator: VariableAllocator
    constraints: ConstraintIndex
    topology: CascadeTopology
    build_results: list[ConstraintBuildResult] = field(default_factory=list)
    build_time_seconds: float = 0.0

    @property
    def warnings(self) -> list[str]:
        return [w for result in self.build_results for w in result.warnings]

    @property
    def has_duals(self) -> bool:
        return self.model.component("dual") is not None

    def balance_constraint(self, zone: str, period: int) -> Any:
        """Energy-balance row of a zone, or None if it was not built."""
        record = self.constraints.find(
            ConstraintKind.SUBMARKET_BALANCE, BALANCE_COMPONENT, zone, period
        )
        return None if record is None else record.constraint


class DispatchModelBuilder:
    """Builds Pyomo models for a dispatch case."""

    def __init__(
        self,
        options: ModelOptions | None = None,
        builders: list[ConstraintBuilder] | None = None,
    ) -> None:
        """Initialize the model builder.

        Args:
            options: Model options. Uses defaults if None.
            builders: Constraint builders to run. Defaults to the registry,
                filtered by ``options.enabled_constraints``.
        """
        self.options = options or ModelOptions()
        self.builders = builders or default_builders(self.options.enabled_constraints)

    def build(self, case: DispatchCase, enable_duals: bool = False) -> BuiltModel:
        """Assemble a model for a case.

        Args:
            case: Entities, horizon and initial conditions.
            enable_duals: Attach an import ``dual`` suffix (LP solves only).

        Returns:
            BuiltModel ready for a backend.

        Raises:
            ConfigurationError: On invalid options, short fuel cost profiles,
                missing initial conditions, cascade cycles or undeclared quantities.
        """
        issues = self.options.problems()
        if issues:
            raise ConfigurationError("Invalid model options: " + "; ".join(issues))
        for plant_id, profile in self.options.fuel_cost_profiles.items():
            if len(profile) < case.num_periods:
                raise ConfigurationError(
                    f"Fuel cost profile of '{plant_id}' has {len(profile)} values "
                    f"for {case.num_periods} periods"
                )

        start = time.perf_counter()
        topology = build_cascade_topology(case.system)

        model = pyo.ConcreteModel(name=f"HydrothermalDispatch[{case.name}]")
        model.T = pyo.Set(initialize=case.periods, ordered=True, doc="Periods")

        context = BuildContext(
            model=model,
            allocator=VariableAllocator(model, case, self.options),
            case=case,
            options=self.options,
            constraints=ConstraintIndex(),
            topology=topology,
        )

        results = [builder.build(context) for builder in self.builders]
        ObjectiveBuilder().build(context)

        if enable_duals:
            model.dual = pyo.Suffix(direction=pyo.Suffix.IMPORT)

        built = BuiltModel(
            model=model,
            case=case,
            options=self.options,
            allocator=context.allocator,
            constraints=context.constraints,
            topology=topology,
            build_results=results,
            build_time_seconds=time.perf_counter() - start,
        )
        logger.info(
            "Built %s: %d variables, %d constraints in %.3fs",
            model.name,
            context.allocator.num_variables,
            len(context.constraints),
            built.build_time_seconds,
        )
        return built
