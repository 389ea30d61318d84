"""Domain models for hydrothermal dispatch."""

from hydrodispatch.domain.models import (
    CascadeLink,
    DispatchCase,
    ElectricitySystem,
    FuelType,
    HydroKind,
    HydroPlant,
    InitialConditions,
    Interconnection,
    Load,
    RenewablePlant,
    RenewableSource,
    Submarket,
    ThermalPlant,
)

__all__ = [
    "FuelType",
    "HydroKind",
    "RenewableSource",
    "ThermalPlant",
    "HydroPlant",
    "RenewablePlant",
    "Submarket",
    "Load",
    "Interconnection",
    "CascadeLink",
    "ElectricitySystem",
    "InitialConditions",
    "DispatchCase",
]
