"""Core domain models for hydrothermal dispatch.

All models use Pydantic and are immutable once created. Units:
- Power: MW (megawatts)
- Water flow: m³/s
- Reservoir volume: hm³ (cubic hectometres)
- Costs: currency/MWh, currency per start/stop, currency/hm³
- Time: periods of ``DispatchCase.period_hours`` hours, numbered from 1
"""

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from hydrodispatch.exceptions import ConfigurationError

# =============================================================================
# Type Aliases with Validation
# =============================================================================

PowerMW = Annotated[float, Field(ge=0, description="Power in megawatts (MW)")]
FlowM3s = Annotated[float, Field(ge=0, description="Water flow in m³/s")]
VolumeHm3 = Annotated[float, Field(ge=0, description="Reservoir volume in hm³")]
CostPerMWh = Annotated[float, Field(description="Cost in currency/MWh")]
Hours = Annotated[float, Field(ge=0, description="Duration in hours")]
Fraction = Annotated[float, Field(ge=0, lt=1, description="Fraction (0-1)")]


# =============================================================================
# Enums
# =============================================================================


class FuelType(str, Enum):
    """Thermal fuel families."""

    NATURAL_GAS = "natural_gas"
    COAL = "coal"
    FUEL_OIL = "fuel_oil"
    DIESEL = "diesel"
    NUCLEAR = "nuclear"
    BIOMASS = "biomass"
    OTHER = "other"


class HydroKind(str, Enum):
    """Hydro plant storage type."""

    RESERVOIR = "reservoir"
    RUN_OF_RIVER = "run_of_river"


class RenewableSource(str, Enum):
    """Variable renewable source."""

    WIND = "wind"
    SOLAR = "solar"


# =============================================================================
# Generation Entities
# =============================================================================


class ThermalPlant(BaseModel):
    """Dispatchable thermal unit with commitment decisions."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    submarket_id: str
    fuel_type: FuelType = FuelType.NATURAL_GAS
    capacity_mw: PowerMW
    min_generation_mw: PowerMW = 0.0
    max_generation_mw: PowerMW
    ramp_up_mw_per_hour: PowerMW = float("inf")
    ramp_down_mw_per_hour: PowerMW = float("inf")
    min_up_time_hours: Hours = 0.0
    min_down_time_hours: Hours = 0.0
    fuel_cost_per_mwh: CostPerMWh
    startup_cost: Annotated[float, Field(ge=0)] = 0.0
    shutdown_cost: Annotated[float, Field(ge=0)] = 0.0
    must_run: bool = False

    @property
    def has_ramp_limits(self) -> bool:
        """Whether either ramp direction is finitely limited."""
        return self.ramp_up_mw_per_hour != float("inf") or (
            self.ramp_down_mw_per_hour != float("inf")
        )


class HydroPlant(BaseModel):
    """Hydro plant, either with a reservoir or run-of-river.

    ``downstream_plant_id`` links the plant into a cascade: water released
    here (turbined plus spilled) reaches the downstream plant after
    ``water_travel_time_hours``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    submarket_id: str
    kind: HydroKind = HydroKind.RESERVOIR
    max_generation_mw: PowerMW
    min_generation_mw: PowerMW = 0.0
    max_outflow_m3s: Annotated[float, Field(gt=0, description="Turbine limit (m³/s)")]
    min_outflow_m3s: FlowM3s = 0.0
    initial_volume_hm3: VolumeHm3 = 0.0
    min_volume_hm3: VolumeHm3 = 0.0
    max_volume_hm3: VolumeHm3 = 0.0
    productivity_mw_per_m3s: Annotated[float, Field(gt=0)] | None = None
    water_value_per_hm3: Annotated[float, Field(ge=0)] = 0.0
    inflow_m3s: list[FlowM3s] | None = None
    downstream_plant_id: str | None = None
    water_travel_time_hours: Hours = 0.0

    @property
    def productivity(self) -> float:
        """MW produced per m³/s of turbined flow."""
        if self.productivity_mw_per_m3s is not None:
            return self.productivity_mw_per_m3s
        return self.max_generation_mw / self.max_outflow_m3s

    @property
    def has_reservoir(self) -> bool:
        return self.kind == HydroKind.RESERVOIR

    def inflow_at(self, period: int) -> float | None:
        """Natural inflow for a 1-based period, or None when not provided."""
        if self.inflow_m3s is None or period > len(self.inflow_m3s):
            return None
        return self.inflow_m3s[period - 1]


class RenewablePlant(BaseModel):
    """Wind or solar plant dispatched against an availability forecast."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    submarket_id: str
    source: RenewableSource = RenewableSource.WIND
    installed_capacity_mw: PowerMW
    available_mw: list[PowerMW] = Field(default_factory=list)
    curtailable: bool = True

    def available_at(self, period: int) -> float | None:
        """Forecast availability for a 1-based period, or None if missing."""
        if period > len(self.available_mw):
            return None
        return min(self.available_mw[period - 1], self.installed_capacity_mw)


# =============================================================================
# Market Entities
# =============================================================================


class Submarket(BaseModel):
    """Market zone with its own energy balance and marginal price."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    deficit_cost_per_mwh: Annotated[float, Field(gt=0)] | None = None


class Load(BaseModel):
    """Demand in a submarket: ``base_mw`` scaled by a per-period profile.

    An empty profile means flat demand at ``base_mw``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    submarket_id: str
    base_mw: PowerMW
    profile: list[Annotated[float, Field(ge=0)]] = Field(default_factory=list)

    def demand_at(self, period: int) -> float:
        """Demand (MW) in a 1-based period.

        Raises:
            ConfigurationError: If the profile does not cover the period.
        """
        if not self.profile:
            return self.base_mw
        if period > len(self.profile):
            raise ConfigurationError(
                f"Load '{self.id}' profile has {len(self.profile)} values, "
                f"period {period} requested"
            )
        return self.base_mw * self.profile[period - 1]


class Interconnection(BaseModel):
    """Directional transfer path between two submarkets.

    Model both directions of a physical line with two records.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    from_submarket_id: str
    to_submarket_id: str
    max_flow_mw: PowerMW
    loss_fraction: Fraction = 0.0


class CascadeLink(BaseModel):
    """Directed water path from an upstream to a downstream hydro plant."""

    model_config = ConfigDict(frozen=True)

    upstream_id: str
    downstream_id: str
    travel_time_hours: Hours = 0.0


# =============================================================================
# System Container
# =============================================================================


class ElectricitySystem(BaseModel):
    """Collection of all entities participating in one dispatch problem.

    Entities are referenced by their ``id`` everywhere; list order carries
    no meaning.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "system"
    submarkets: list[Submarket] = Field(default_factory=list)
    thermal_plants: list[ThermalPlant] = Field(default_factory=list)
    hydro_plants: list[HydroPlant] = Field(default_factory=list)
    renewable_plants: list[RenewablePlant] = Field(default_factory=list)
    loads: list[Load] = Field(default_factory=list)
    interconnections: list[Interconnection] = Field(default_factory=list)

    @property
    def submarket_ids(self) -> list[str]:
        return [s.id for s in self.submarkets]

    def thermal_in(self, submarket_id: str) -> list[ThermalPlant]:
        return [p for p in self.thermal_plants if p.submarket_id == submarket_id]

    def hydro_in(self, submarket_id: str) -> list[HydroPlant]:
        return [p for p in self.hydro_plants if p.submarket_id == submarket_id]

    def renewables_in(self, submarket_id: str) -> list[RenewablePlant]:
        return [p for p in self.renewable_plants if p.submarket_id == submarket_id]

    def imports_to(self, submarket_id: str) -> list[Interconnection]:
        return [i for i in self.interconnections if i.to_submarket_id == submarket_id]

    def exports_from(self, submarket_id: str) -> list[Interconnection]:
        return [
            i for i in self.interconnections if i.from_submarket_id == submarket_id
        ]

    def hydro_plant(self, plant_id: str) -> HydroPlant | None:
        """Look up a hydro plant by id."""
        for plant in self.hydro_plants:
            if plant.id == plant_id:
                return plant
        return None

    def demand_mw(self, submarket_id: str, period: int) -> float:
        """Total demand of a submarket in a 1-based period."""
        return sum(
            load.demand_at(period)
            for load in self.loads
            if load.submarket_id == submarket_id
        )

    def deficit_cost(self, submarket_id: str, default: float) -> float:
        """Deficit penalty for a zone, falling back to ``default``."""
        for submarket in self.submarkets:
            if submarket.id == submarket_id and submarket.deficit_cost_per_mwh:
                return submarket.deficit_cost_per_mwh
        return default

    def cascade_links(self) -> list[CascadeLink]:
        """Cascade edges derived from each hydro plant's downstream reference."""
        return [
            CascadeLink(
                upstream_id=plant.id,
                downstream_id=plant.downstream_plant_id,
                travel_time_hours=plant.water_travel_time_hours,
            )
            for plant in self.hydro_plants
            if plant.downstream_plant_id is not None
        ]


# =============================================================================
# Case Definition
# =============================================================================


class InitialConditions(BaseModel):
    """Boundary state of thermal units just before period 1.

    ``commitment`` must name every thermal plant. ``generation_mw`` is
    optional and, when present for a plant, enables its period-1 ramp limit.
    """

    model_config = ConfigDict(frozen=True)

    commitment: dict[str, bool] = Field(default_factory=dict)
    generation_mw: dict[str, PowerMW] = Field(default_factory=dict)


class DispatchCase(BaseModel):
    """A system plus the horizon and boundary conditions to dispatch it over."""

    model_config = ConfigDict(frozen=True)

    name: str = "case"
    system: ElectricitySystem
    num_periods: Annotated[int, Field(gt=0, le=8760)] = 24
    period_hours: Annotated[float, Field(gt=0)] = 1.0
    initial_conditions: InitialConditions | None = None

    @property
    def periods(self) -> list[int]:
        """Ordered 1-based period numbers."""
        return list(range(1, self.num_periods + 1))
