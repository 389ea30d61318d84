"""Tests for decision-variable allocation."""

from collections.abc import Callable

import pyomo.environ as pyo
import pytest

from hydrodispatch.domain.models import (
    DispatchCase,
    ElectricitySystem,
    RenewablePlant,
    Submarket,
    ThermalPlant,
)
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.config import ModelOptions
from hydrodispatch.optimization.variables import (
    QuantityKind,
    VariableAllocator,
    VariableRole,
    declared_kinds,
)


def allocator_for(case: DispatchCase, options: ModelOptions | None = None) -> VariableAllocator:
    """Allocator over a fresh model."""
    return VariableAllocator(pyo.ConcreteModel(), case, options or ModelOptions())


class TestDeclaredKinds:
    """Tests for per-entity quantity declarations."""

    def test_must_take_renewable_has_no_curtailment(self) -> None:
        """Test non-curtailable renewables do not declare curtailment."""
        plant = RenewablePlant(
            id="S1", submarket_id="SE", installed_capacity_mw=10.0, curtailable=False
        )
        assert declared_kinds(plant) == frozenset({QuantityKind.RENEWABLE_GENERATION})

    def test_thermal_declares_commitment(self, merit_order_plants: list[ThermalPlant]) -> None:
        """Test thermal plants carry generation and all commitment binaries."""
        kinds = declared_kinds(merit_order_plants[0])
        assert QuantityKind.COMMITMENT in kinds
        assert QuantityKind.STARTUP in kinds
        assert QuantityKind.SHUTDOWN in kinds
        assert QuantityKind.VOLUME not in kinds


class TestVariableAllocator:
    """Tests for VariableAllocator."""

    def test_variables_keyed_by_identity(
        self,
        merit_order_case: Callable[..., DispatchCase],
        merit_order_plants: list[ThermalPlant],
    ) -> None:
        """Test reordering entities does not change variable identity."""
        forward = allocator_for(merit_order_case())
        backward = allocator_for(merit_order_case(plants=merit_order_plants[::-1]))

        for plant in merit_order_plants:
            a = forward.var(QuantityKind.THERMAL_GENERATION, plant.id, 2)
            b = backward.var(QuantityKind.THERMAL_GENERATION, plant.id, 2)
            assert a.name == b.name == f"thermal_generation[{plant.id},2]"
            assert a.ub == b.ub == plant.max_generation_mw

        forward_keys = {h.key for h in forward.handles()}
        backward_keys = {h.key for h in backward.handles()}
        assert forward_keys == backward_keys

    def test_commitment_is_binary(self, merit_order_case: Callable[..., DispatchCase]) -> None:
        """Test commitment kinds are allocated as binaries."""
        alloc = allocator_for(merit_order_case())
        u = alloc.var(QuantityKind.COMMITMENT, "T1", 1)

        assert u.is_binary()
        handles = alloc.handles(QuantityKind.COMMITMENT)
        assert len(handles) == 3 * 4
        assert all(h.role == VariableRole.BINARY for h in handles)

    def test_undeclared_kind_raises(self) -> None:
        """Test requesting curtailment of a must-take plant is an error."""
        case = DispatchCase(
            system=ElectricitySystem(
                submarkets=[Submarket(id="SE")],
                renewable_plants=[
                    RenewablePlant(
                        id="S1",
                        submarket_id="SE",
                        installed_capacity_mw=10.0,
                        available_mw=[5.0],
                        curtailable=False,
                    )
                ],
            ),
            num_periods=1,
        )
        alloc = allocator_for(case)

        with pytest.raises(ConfigurationError, match="not declared"):
            alloc.var(QuantityKind.CURTAILMENT, "S1", 1)

    def test_period_outside_horizon_raises(
        self, merit_order_case: Callable[..., DispatchCase]
    ) -> None:
        """Test periods are checked against the horizon."""
        alloc = allocator_for(merit_order_case(num_periods=4))

        with pytest.raises(ConfigurationError, match="outside the horizon"):
            alloc.var(QuantityKind.THERMAL_GENERATION, "T1", 0)
        with pytest.raises(ConfigurationError, match="outside the horizon"):
            alloc.var(QuantityKind.THERMAL_GENERATION, "T1", 5)

    def test_lazy_allocation(self, merit_order_case: Callable[..., DispatchCase]) -> None:
        """Test kinds are created on first use only."""
        alloc = allocator_for(merit_order_case())
        assert alloc.num_variables == 0

        alloc.var(QuantityKind.STARTUP, "T2", 3)
        assert alloc.allocated_kinds() == [QuantityKind.STARTUP]
        assert alloc.num_variables == 12

    def test_deficit_bounded_by_demand(
        self, merit_order_case: Callable[..., DispatchCase]
    ) -> None:
        """Test deficit cannot exceed zone demand."""
        alloc = allocator_for(merit_order_case(demand_mw=250.0))
        deficit = alloc.var(QuantityKind.DEFICIT, "SE", 1)
        assert deficit.lb == 0.0
        assert deficit.ub == 250.0

    def test_no_deficit_when_disabled(
        self, merit_order_case: Callable[..., DispatchCase]
    ) -> None:
        """Test zones declare no deficit when it is disabled."""
        alloc = allocator_for(merit_order_case(), ModelOptions(allow_deficit=False))
        assert not alloc.declares(QuantityKind.DEFICIT, "SE")

    def test_resolve_handle(self, merit_order_case: Callable[..., DispatchCase]) -> None:
        """Test handles resolve back to their variable."""
        alloc = allocator_for(merit_order_case())
        var = alloc.var(QuantityKind.SHUTDOWN, "T3", 2)
        handle = next(
            h for h in alloc.handles(QuantityKind.SHUTDOWN) if h.key[1:] == ("T3", 2)
        )
        assert alloc.resolve(handle) is var
        assert handle.unit == "on/off"
