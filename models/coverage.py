from dataclasses import dataclass
from typing import Optional, Tuple

from models.demand import SiteId


def band_column(threshold_km: float) -> str:
    """Persisted column name for a driving distance band, e.g. within_10km_driving."""
    return f"within_{threshold_km:g}km_driving"


@dataclass(frozen=True)
class BandWarning:
    """Partial result: isochrones missing for some facilities/thresholds."""
    facility_ids: Tuple[SiteId, ...]
    thresholds_km: Tuple[float, ...]
    message: str
    batch_index: Optional[int] = None


@dataclass(frozen=True)
class CoverageResult:
    point_id: str
    population: int
    county: str
    municipality: str
    nearest_facility_id: SiteId
    distance_km: float                # Ellipsoidal distance to nearest facility
    reachable: Tuple[bool, ...]       # One flag per threshold, ascending

    def reachable_within(self, thresholds_km: Tuple[float, ...], threshold_km: float) -> bool:
        return self.reachable[thresholds_km.index(threshold_km)]
