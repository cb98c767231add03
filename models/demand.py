from dataclasses import dataclass
from typing import Optional, Union

SiteId = Union[int, str]


@dataclass(frozen=True)
class DemandPoint:
    """A populated grid square whose accessibility is measured."""
    point_id: str
    lat: float
    lon: float
    population: int
    county: str          # Region used for budget allocation
    municipality: str

    def __post_init__(self):
        if self.population <= 0:
            raise ValueError(
                f"Demand point {self.point_id} has population {self.population}; "
                "unpopulated squares must be dropped before analysis"
            )


@dataclass(frozen=True)
class CandidateSite:
    """A pharmacy location that may be selected."""
    site_id: SiteId
    lat: float
    lon: float
    county: str
    municipality: Optional[str] = None
    name: Optional[str] = None
