"""Test fixtures for reproducible dispatch cases.

Provides small systems with known optimal dispatch:
- Merit-order thermal fleet (100/150/200 MW at 50/80/120 per MWh)
- Two-plant hydro cascade with a two-hour travel time
- Two-zone system linked by one interconnection
"""

from collections.abc import Callable

import pytest
from pyomo.opt import SolverFactory

from hydrodispatch.domain.models import (
    DispatchCase,
    ElectricitySystem,
    HydroKind,
    HydroPlant,
    InitialConditions,
    Interconnection,
    Load,
    RenewablePlant,
    Submarket,
    ThermalPlant,
)
from hydrodispatch.optimization.config import (
    ModelOptions,
    OptimizationConfig,
    SolverOptions,
)

# =============================================================================
# Solver Availability
# =============================================================================


def solver_available() -> bool:
    """Whether HiGHS (via appsi) or GLPK can be used."""
    for name in ("appsi_highs", "glpk"):
        solver = SolverFactory(name)
        if solver is not None and solver.available(exception_flag=False):
            return True
    return False


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip tests marked ``solver`` when no solver is installed."""
    if solver_available():
        return
    skip = pytest.mark.skip(reason="No MILP solver (appsi_highs or glpk) available")
    for item in items:
        if "solver" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def config() -> OptimizationConfig:
    """Exact-gap configuration so expected costs are reproducible."""
    return OptimizationConfig(
        model=ModelOptions(),
        solver=SolverOptions(time_limit_seconds=60.0, mip_gap=0.0),
    )


# =============================================================================
# Thermal Fixtures
# =============================================================================


@pytest.fixture
def merit_order_plants() -> list[ThermalPlant]:
    """Three gas plants in merit order, no minimum output or start costs."""
    return [
        ThermalPlant(
            id="T1",
            submarket_id="SE",
            capacity_mw=100.0,
            max_generation_mw=100.0,
            fuel_cost_per_mwh=50.0,
        ),
        ThermalPlant(
            id="T2",
            submarket_id="SE",
            capacity_mw=150.0,
            max_generation_mw=150.0,
            fuel_cost_per_mwh=80.0,
        ),
        ThermalPlant(
            id="T3",
            submarket_id="SE",
            capacity_mw=200.0,
            max_generation_mw=200.0,
            fuel_cost_per_mwh=120.0,
        ),
    ]


@pytest.fixture
def merit_order_case(
    merit_order_plants: list[ThermalPlant],
) -> Callable[..., DispatchCase]:
    """Factory for a single-zone thermal case with flat demand."""

    def build(
        demand_mw: float = 200.0,
        num_periods: int = 4,
        plants: list[ThermalPlant] | None = None,
    ) -> DispatchCase:
        plants = merit_order_plants if plants is None else plants
        system = ElectricitySystem(
            name="merit-order",
            submarkets=[Submarket(id="SE", name="Southeast")],
            thermal_plants=plants,
            loads=[Load(id="L1", submarket_id="SE", base_mw=demand_mw)],
        )
        return DispatchCase(
            name=f"merit-order-{demand_mw:g}",
            system=system,
            num_periods=num_periods,
            initial_conditions=InitialConditions(
                commitment={p.id: False for p in plants}
            ),
        )

    return build


# =============================================================================
# Hydro Fixtures
# =============================================================================


@pytest.fixture
def cascade_plants() -> list[HydroPlant]:
    """Upstream reservoir feeding a downstream reservoir two hours later."""
    return [
        HydroPlant(
            id="UP",
            submarket_id="SE",
            max_generation_mw=100.0,
            max_outflow_m3s=200.0,
            initial_volume_hm3=50.0,
            min_volume_hm3=10.0,
            max_volume_hm3=100.0,
            inflow_m3s=[20.0] * 4,
            downstream_plant_id="DOWN",
            water_travel_time_hours=2.0,
        ),
        HydroPlant(
            id="DOWN",
            submarket_id="SE",
            max_generation_mw=80.0,
            max_outflow_m3s=250.0,
            initial_volume_hm3=30.0,
            min_volume_hm3=5.0,
            max_volume_hm3=60.0,
            inflow_m3s=[5.0] * 4,
        ),
    ]


@pytest.fixture
def cascade_case(cascade_plants: list[HydroPlant]) -> DispatchCase:
    """Hydro-only zone over four hourly periods."""
    system = ElectricitySystem(
        name="cascade",
        submarkets=[Submarket(id="SE")],
        hydro_plants=cascade_plants,
        loads=[Load(id="L1", submarket_id="SE", base_mw=40.0)],
    )
    return DispatchCase(name="cascade", system=system, num_periods=4)


# =============================================================================
# Multi-Zone Fixtures
# =============================================================================


@pytest.fixture
def two_zone_case() -> DispatchCase:
    """Cheap north exporting to an expensive south over a lossy line."""
    system = ElectricitySystem(
        name="two-zone",
        submarkets=[
            Submarket(id="N", name="North"),
            Submarket(id="S", name="South", deficit_cost_per_mwh=3000.0),
        ],
        thermal_plants=[
            ThermalPlant(
                id="N1",
                submarket_id="N",
                capacity_mw=300.0,
                max_generation_mw=300.0,
                fuel_cost_per_mwh=40.0,
            ),
            ThermalPlant(
                id="S1",
                submarket_id="S",
                capacity_mw=200.0,
                max_generation_mw=200.0,
                fuel_cost_per_mwh=100.0,
            ),
        ],
        renewable_plants=[
            RenewablePlant(
                id="W1",
                submarket_id="N",
                installed_capacity_mw=50.0,
                available_mw=[30.0, 40.0, 50.0],
            ),
        ],
        hydro_plants=[
            HydroPlant(
                id="R1",
                submarket_id="S",
                kind=HydroKind.RUN_OF_RIVER,
                max_generation_mw=20.0,
                max_outflow_m3s=40.0,
                inflow_m3s=[10.0, 10.0, 10.0],
            ),
        ],
        loads=[
            Load(id="LN", submarket_id="N", base_mw=100.0),
            Load(id="LS", submarket_id="S", base_mw=150.0, profile=[1.0, 1.2, 0.8]),
        ],
        interconnections=[
            Interconnection(
                id="N-S",
                from_submarket_id="N",
                to_submarket_id="S",
                max_flow_mw=80.0,
                loss_fraction=0.05,
            ),
        ],
    )
    return DispatchCase(
        name="two-zone",
        system=system,
        num_periods=3,
        initial_conditions=InitialConditions(commitment={"N1": True, "S1": False}),
    )
