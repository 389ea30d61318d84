"""Tests for hydro cascade topology."""

import pytest

from hydrodispatch.domain.models import ElectricitySystem, HydroPlant
from hydrodispatch.exceptions import ConfigurationError
from hydrodispatch.optimization.cascade import (
    build_cascade_topology,
    delay_periods,
    upstream_contributions,
)


def hydro(plant_id: str, downstream: str | None = None, travel: float = 0.0) -> HydroPlant:
    """Minimal hydro plant for topology tests."""
    return HydroPlant(
        id=plant_id,
        submarket_id="SE",
        max_generation_mw=10.0,
        max_outflow_m3s=20.0,
        downstream_plant_id=downstream,
        water_travel_time_hours=travel,
    )


class TestDelayPeriods:
    """Tests for travel time rounding."""

    def test_whole_periods(self) -> None:
        """Test exact multiples of the period length."""
        assert delay_periods(2.0, 1.0) == 2
        assert delay_periods(0.0, 1.0) == 0

    def test_rounds_half_up(self) -> None:
        """Test fractional travel times round to the nearest period, half up."""
        assert delay_periods(1.5, 1.0) == 2
        assert delay_periods(1.4, 1.0) == 1
        assert delay_periods(3.0, 2.0) == 2
        assert delay_periods(0.4, 1.0) == 0


class TestBuildTopology:
    """Tests for cascade graph construction."""

    def test_topological_order(self) -> None:
        """Test upstream plants come before downstream ones."""
        system = ElectricitySystem(
            hydro_plants=[hydro("C"), hydro("B", "C"), hydro("A", "B")]
        )
        topology = build_cascade_topology(system)

        order = topology.topological_order
        assert order.index("A") < order.index("B") < order.index("C")
        assert topology.headwaters == ["A"]
        assert topology.terminals == ["C"]
        assert topology.depths == {"A": 0, "B": 1, "C": 2}

    def test_confluence(self) -> None:
        """Test two tributaries feeding one plant."""
        system = ElectricitySystem(
            hydro_plants=[hydro("A", "C"), hydro("B", "C", 1.0), hydro("C")]
        )
        topology = build_cascade_topology(system)

        assert {link.upstream_id for link in topology.upstream["C"]} == {"A", "B"}
        assert sorted(topology.headwaters) == ["A", "B"]

    def test_cycle_rejected(self) -> None:
        """Test a directed cycle is a configuration error naming the loop."""
        system = ElectricitySystem(
            hydro_plants=[hydro("A", "B"), hydro("B", "C"), hydro("C", "A")]
        )
        with pytest.raises(ConfigurationError, match="cycle"):
            build_cascade_topology(system)

    def test_self_loop_rejected(self) -> None:
        """Test a plant cannot release into itself."""
        system = ElectricitySystem(hydro_plants=[hydro("A", "A")])
        with pytest.raises(ConfigurationError, match="releases into itself"):
            build_cascade_topology(system)

    def test_unknown_downstream_is_terminal(self) -> None:
        """Test a dangling downstream reference warns and is ignored."""
        system = ElectricitySystem(hydro_plants=[hydro("A", "GHOST")])
        topology = build_cascade_topology(system)

        assert topology.terminals == ["A"]
        assert topology.links == ()
        assert len(topology.warnings) == 1
        assert "GHOST" in topology.warnings[0]


class TestUpstreamContributions:
    """Tests for delayed upstream arrivals."""

    def test_two_period_delay(self) -> None:
        """Test a release at period 1 arrives at period 3 and not before."""
        system = ElectricitySystem(
            hydro_plants=[hydro("UP", "DOWN", 2.0), hydro("DOWN")]
        )
        topology = build_cascade_topology(system)

        assert upstream_contributions(topology, "DOWN", 1, 1.0) == []
        assert upstream_contributions(topology, "DOWN", 2, 1.0) == []
        assert upstream_contributions(topology, "DOWN", 3, 1.0) == [("UP", 1)]
        assert upstream_contributions(topology, "DOWN", 4, 1.0) == [("UP", 2)]

    def test_zero_delay(self) -> None:
        """Test zero travel time couples the same period."""
        system = ElectricitySystem(hydro_plants=[hydro("UP", "DOWN"), hydro("DOWN")])
        topology = build_cascade_topology(system)

        assert upstream_contributions(topology, "DOWN", 1, 1.0) == [("UP", 1)]
        assert upstream_contributions(topology, "UP", 1, 1.0) == []
