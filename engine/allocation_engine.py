"""Region allocation: split a national pharmacy budget across counties."""

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping

from engine.errors import InsufficientBudget
from engine.explainer import explain_region_allocation
from logging_config import get_logger
from models.allocation import RegionAllocation
from models.demand import DemandPoint

logger = get_logger(__name__)


def aggregate_population(demand: Iterable[DemandPoint]) -> Dict[str, int]:
    """Sum demand weight per county."""
    totals: Dict[str, int] = defaultdict(int)
    for point in demand:
        totals[point.county] += point.population
    return dict(totals)


def _leftover_order(region_populations: Mapping[str, int]) -> List[str]:
    # Largest population first; equal populations fall back to region name
    return sorted(region_populations, key=lambda r: (-region_populations[r], r))


def build_region_allocations(
    region_populations: Mapping[str, int],
    total: int,
) -> List[RegionAllocation]:
    """Compute per-region quotas with explanations, sorted by region name.

    Each region gets 1 base facility; the remainder is split by population
    share (floored), and units lost to flooring go one at a time to the most
    populous regions.
    """
    n_regions = len(region_populations)
    if n_regions == 0:
        raise ValueError("No regions to allocate facilities to")
    if any(pop < 0 for pop in region_populations.values()):
        raise ValueError("Region populations must be non-negative")

    remaining = total - n_regions
    if remaining < 0:
        raise InsufficientBudget(total, n_regions)

    total_population = sum(region_populations.values())

    # Step 1: Proportional extra share (integer arithmetic avoids float flooring drift)
    extra = {}
    for region, pop in region_populations.items():
        extra[region] = (remaining * pop) // total_population if total_population > 0 else 0

    # Step 2: Leftover from flooring, largest regions first
    leftover_units = remaining - sum(extra.values())
    order = _leftover_order(region_populations)
    bonus = {region: 0 for region in region_populations}
    idx = 0
    while leftover_units > 0:
        bonus[order[idx % n_regions]] += 1
        leftover_units -= 1
        idx += 1

    allocations = []
    for region in sorted(region_populations):
        pop = region_populations[region]
        quota = 1 + extra[region] + bonus[region]
        allocations.append(RegionAllocation(
            region=region,
            population=pop,
            quota=quota,
            base=1,
            extra=extra[region],
            leftover=bonus[region],
            explanation_steps=explain_region_allocation(
                region=region,
                population=pop,
                total_population=total_population,
                n_regions=n_regions,
                total=total,
                remaining=remaining,
                extra=extra[region],
                leftover=bonus[region],
                quota=quota,
            ),
        ))

    logger.debug(
        f"Allocated {total} facilities across {n_regions} regions "
        f"({remaining - sum(extra.values())} leftover units)"
    )
    return allocations


def allocate(region_populations: Mapping[str, int], total: int) -> Dict[str, int]:
    """Integer facility quota per region; quotas sum exactly to `total`."""
    return {a.region: a.quota for a in build_region_allocations(region_populations, total)}
