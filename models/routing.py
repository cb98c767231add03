"""Request/response contract with the routing (isochrone) collaborator."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from models.demand import SiteId


@dataclass(frozen=True)
class IsochroneRequest:
    facility_ids: Tuple[SiteId, ...]
    locations: Tuple[Tuple[float, float], ...]   # (lon, lat) per facility
    ranges_m: Tuple[int, ...]
    profile: str = "driving-car"
    range_type: str = "distance"


@dataclass
class IsochroneResponse:
    # (location index within the request, range in metres) -> shapely geometry
    polygons: Dict[Tuple[int, int], object] = field(default_factory=dict)
    error: Optional[str] = None
