"""Reading primal values, prices and costs back out of a solved model."""

import logging

from hydrodispatch.domain.models import DispatchCase
from hydrodispatch.optimization.backend import SolverBackend
from hydrodispatch.optimization.config import ModelOptions
from hydrodispatch.optimization.constraints import BALANCE_COMPONENT, ConstraintKind
from hydrodispatch.optimization.model import BuiltModel
from hydrodispatch.optimization.results import (
    CostBreakdown,
    DualKey,
    PriceTable,
    PrimalKey,
)
from hydrodispatch.optimization.variables import QuantityKind

logger = logging.getLogger(__name__)


def extract_primal(
    built: BuiltModel, backend: SolverBackend
) -> tuple[dict[PrimalKey, float | None], int]:
    """Read every allocated variable.

    A variable whose value cannot be read is logged and stored as None so
    it is never mistaken for a computed zero.

    Returns:
        The primal table and the number of absent values.
    """
    primal: dict[PrimalKey, float | None] = {}
    missing = 0
    for handle in built.allocator.handles():
        try:
            value = backend.get_value(built.allocator.resolve(handle))
        except (ValueError, KeyError) as exc:
            logger.debug("Value read failed for %s: %s", handle.key, exc)
            value = None
        if value is None:
            missing += 1
            logger.debug("No value for %s %s[%d]", handle.kind.value, handle.entity_id, handle.period)
        primal[handle.key] = value

    if missing:
        logger.warning("%d of %d variable values absent after solve", missing, len(primal))
    return primal, missing


def extract_duals(
    built: BuiltModel, backend: SolverBackend
) -> dict[DualKey, float | None]:
    """Zonal energy-balance duals in currency/MWh.

    Raw duals are in scaled objective units per MW of the period; dividing
    by the cost scale and the period length gives currency/MWh.
    """
    scale = built.options.cost_scale * built.case.period_hours
    duals: dict[DualKey, float | None] = {}
    for record in built.constraints.records(ConstraintKind.SUBMARKET_BALANCE):
        if record.component != BALANCE_COMPONENT:
            continue
        key = (ConstraintKind.SUBMARKET_BALANCE, record.entity_id, record.period)
        raw = backend.get_dual(record.constraint)
        if raw is None:
            logger.warning(
                "No dual for %s balance in period %d", record.entity_id, record.period
            )
            duals[key] = None
        else:
            duals[key] = raw / scale
    return duals


def build_price_table(
    duals: dict[DualKey, float | None], case: DispatchCase
) -> PriceTable:
    """Arrange balance duals into a zone × period table."""
    zones = tuple(case.system.submarket_ids)
    periods = tuple(case.periods)
    prices = {
        (zone, t): duals.get((ConstraintKind.SUBMARKET_BALANCE, zone, t))
        for zone in zones
        for t in periods
    }
    return PriceTable(zones=zones, periods=periods, prices=prices)


def compute_cost_breakdown(
    case: DispatchCase,
    primal: dict[PrimalKey, float | None],
    options: ModelOptions,
) -> CostBreakdown:
    """Recompute operating cost from primal values and entity cost data.

    Absent values count as zero and are tallied in ``missing_values``.
    """
    system = case.system
    dt = case.period_hours
    periods = case.periods
    missing = 0

    def value(kind: QuantityKind, entity_id: str, t: int) -> float:
        nonlocal missing
        key = (kind, entity_id, t)
        if key not in primal:
            return 0.0
        if primal[key] is None:
            missing += 1
            return 0.0
        return primal[key]

    fuel = startup = shutdown = 0.0
    for plant in system.thermal_plants:
        for t in periods:
            cost = options.fuel_cost(plant.id, t, plant.fuel_cost_per_mwh)
            fuel += cost * dt * value(QuantityKind.THERMAL_GENERATION, plant.id, t)
            startup += plant.startup_cost * value(QuantityKind.STARTUP, plant.id, t)
            shutdown += plant.shutdown_cost * value(QuantityKind.SHUTDOWN, plant.id, t)

    deficit = 0.0
    if options.allow_deficit:
        for zone in system.submarket_ids:
            cost = system.deficit_cost(zone, options.default_deficit_cost)
            deficit += sum(
                cost * dt * value(QuantityKind.DEFICIT, zone, t) for t in periods
            )

    curtailment = sum(
        options.curtailment_penalty * dt * value(QuantityKind.CURTAILMENT, plant.id, t)
        for plant in system.renewable_plants
        if plant.curtailable
        for t in periods
    )

    spill = 0.0
    water_value = 0.0
    for plant in system.hydro_plants:
        spill += sum(
            options.spill_penalty * dt * value(QuantityKind.SPILL, plant.id, t)
            for t in periods
        )
        if plant.has_reservoir:
            water_value -= plant.water_value_per_hm3 * value(
                QuantityKind.VOLUME, plant.id, periods[-1]
            )

    return CostBreakdown(
        fuel=fuel,
        startup=startup,
        shutdown=shutdown,
        deficit=deficit,
        curtailment=curtailment,
        spill=spill,
        water_value=water_value,
        missing_values=missing,
    )
