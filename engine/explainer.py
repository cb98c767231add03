"""Generates human-readable explanations for region facility quotas."""

from typing import List


def explain_region_allocation(
    region: str,
    population: int,
    total_population: int,
    n_regions: int,
    total: int,
    remaining: int,
    extra: int,
    leftover: int,
    quota: int,
) -> List[str]:
    """Produce step-by-step explanation for one region's quota."""
    steps = []
    share = population / total_population if total_population > 0 else 0.0

    steps.append(
        f"Step 1 - Base: every region receives 1 pharmacy "
        f"({n_regions} regions => {n_regions} of {total} placed)"
    )

    steps.append(
        f"Step 2 - Population share: {region} has {population:,} of "
        f"{total_population:,} people => share {share:.2%}"
    )

    steps.append(
        f"Step 3 - Proportional extra: floor({remaining} remaining x {share:.4f}) "
        f"= {extra}"
    )

    if leftover:
        steps.append(
            "Step 4 - Leftover: received 1 of the units left over after flooring "
            "(largest regions first)"
        )
    else:
        steps.append("Step 4 - Leftover: none received")

    steps.append(f"Step 5 - Quota: 1 + {extra} + {leftover} = {quota} pharmacies")

    return steps
