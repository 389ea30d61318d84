"""Hydro cascade topology.

Builds the directed graph of water paths between hydro plants, rejects
cycles, and answers which upstream releases reach a plant in a given
period once travel time is applied.
"""

import logging
import math
from dataclasses import dataclass, field

from hydrodispatch.domain.models import CascadeLink, ElectricitySystem
from hydrodispatch.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeTopology:
    """Validated acyclic cascade graph.

    Attributes:
        plant_ids: Every hydro plant in the system.
        links: Edges whose endpoints both exist.
        upstream: Incoming edges per plant.
        downstream: Outgoing edge per plant, if any.
        topological_order: Plants ordered upstream before downstream.
        depths: Longest distance (in edges) from a headwater plant.
        warnings: Issues tolerated while building the graph.
    """

    plant_ids: tuple[str, ...]
    links: tuple[CascadeLink, ...]
    upstream: dict[str, list[CascadeLink]] = field(default_factory=dict)
    downstream: dict[str, CascadeLink] = field(default_factory=dict)
    topological_order: tuple[str, ...] = ()
    depths: dict[str, int] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @property
    def headwaters(self) -> list[str]:
        """Plants with no upstream neighbour."""
        return [p for p in self.topological_order if not self.upstream.get(p)]

    @property
    def terminals(self) -> list[str]:
        """Plants that release into no modelled plant."""
        return [p for p in self.topological_order if p not in self.downstream]


def delay_periods(travel_time_hours: float, period_hours: float) -> int:
    """Travel time in whole periods, rounding half up."""
    return int(math.floor(travel_time_hours / period_hours + 0.5))


def _find_cycle(plant_ids: list[str], successors: dict[str, list[str]]) -> list[str]:
    """Return one directed cycle as a list of plant ids, or [] if none."""
    white, grey, black = 0, 1, 2
    colour = dict.fromkeys(plant_ids, white)
    parent: dict[str, str] = {}

    for root in plant_ids:
        if colour[root] != white:
            continue
        stack = [(root, iter(successors.get(root, [])))]
        colour[root] = grey
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node] = black
                stack.pop()
                continue
            if colour[child] == grey:
                cycle = [child]
                walk = node
                while walk != child:
                    cycle.append(walk)
                    walk = parent[walk]
                cycle.append(child)
                cycle.reverse()
                return cycle
            if colour[child] == white:
                parent[child] = node
                colour[child] = grey
                stack.append((child, iter(successors.get(child, []))))
    return []


def build_cascade_topology(system: ElectricitySystem) -> CascadeTopology:
    """Build and validate the cascade graph of a system.

    A downstream reference to an unknown plant is logged and the plant is
    treated as terminal.

    Args:
        system: System whose hydro plants define the cascade.

    Returns:
        Validated topology.

    Raises:
        ConfigurationError: If the cascade contains a directed cycle or a
            plant releases into itself.
    """
    plant_ids = [p.id for p in system.hydro_plants]
    known = set(plant_ids)
    warnings: list[str] = []
    links: list[CascadeLink] = []

    for link in system.cascade_links():
        if link.downstream_id == link.upstream_id:
            raise ConfigurationError(
                f"Hydro plant '{link.upstream_id}' releases into itself"
            )
        if link.downstream_id not in known:
            message = (
                f"Hydro plant '{link.upstream_id}' references unknown downstream "
                f"plant '{link.downstream_id}'; treating it as terminal"
            )
            logger.warning(message)
            warnings.append(message)
            continue
        links.append(link)

    successors: dict[str, list[str]] = {p: [] for p in plant_ids}
    upstream: dict[str, list[CascadeLink]] = {p: [] for p in plant_ids}
    downstream: dict[str, CascadeLink] = {}
    for link in links:
        successors[link.upstream_id].append(link.downstream_id)
        upstream[link.downstream_id].append(link)
        downstream[link.upstream_id] = link

    cycle = _find_cycle(plant_ids, successors)
    if cycle:
        raise ConfigurationError(
            "Hydro cascade contains a cycle: " + " -> ".join(cycle)
        )

    # Kahn ordering; ties keep system order for reproducible builds
    in_degree = {p: len(upstream[p]) for p in plant_ids}
    ready = [p for p in plant_ids if in_degree[p] == 0]
    order: list[str] = []
    depths = dict.fromkeys(ready, 0)
    while ready:
        node = ready.pop(0)
        order.append(node)
        for child in successors[node]:
            depths[child] = max(depths.get(child, 0), depths[node] + 1)
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)

    logger.debug(
        "Cascade topology: %d plants, %d links, max depth %d",
        len(plant_ids),
        len(links),
        max(depths.values(), default=0),
    )

    return CascadeTopology(
        plant_ids=tuple(plant_ids),
        links=tuple(links),
        upstream=upstream,
        downstream=downstream,
        topological_order=tuple(order),
        depths=depths,
        warnings=tuple(warnings),
    )


def upstream_contributions(
    topology: CascadeTopology,
    plant_id: str,
    period: int,
    period_hours: float,
) -> list[tuple[str, int]]:
    """Upstream releases that arrive at a plant in a given period.

    Args:
        topology: Validated cascade.
        plant_id: Receiving plant.
        period: 1-based period of arrival.
        period_hours: Length of one period.

    Returns:
        ``(upstream_id, release_period)`` pairs. Releases that would have
        happened before period 1 are absent.
    """
    arrivals = []
    for link in topology.upstream.get(plant_id, []):
        release_period = period - delay_periods(link.travel_time_hours, period_hours)
        if release_period >= 1:
            arrivals.append((link.upstream_id, release_period))
    return arrivals
