from dataclasses import dataclass, field
from typing import List


@dataclass
class RegionAllocation:
    region: str
    population: int
    quota: int                  # base + extra + leftover
    base: int = 1
    extra: int = 0              # floor of the proportional share of the remainder
    leftover: int = 0           # 1 if the region received a largest-remainder unit
    explanation_steps: List[str] = field(default_factory=list)
