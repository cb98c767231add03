from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Tuple

import pandas as pd

from models.allocation import RegionAllocation
from models.coverage import BandWarning, CoverageResult, band_column
from models.facility import SelectedFacility


@dataclass(frozen=True)
class ScenarioResult:
    facility_count_requested: int
    facility_count_selected: int
    radius_km: float
    thresholds_km: Tuple[float, ...]
    allocations: Tuple[RegionAllocation, ...]
    facilities: Tuple[SelectedFacility, ...]
    coverage: Tuple[CoverageResult, ...]
    warnings: Tuple[BandWarning, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_partial(self) -> bool:
        return bool(self.warnings)

    @property
    def facility_ids(self) -> List:
        return [f.site_id for f in self.facilities]

    def to_frame(self) -> pd.DataFrame:
        """Persisted row layout: one row per demand point, one flag per band."""
        rows = []
        for c in self.coverage:
            row = {
                "point_id": c.point_id,
                "population": c.population,
                "county": c.county,
                "municipality": c.municipality,
                "nearest_facility_id": c.nearest_facility_id,
                "distance_km": c.distance_km,
            }
            for t, flag in zip(self.thresholds_km, c.reachable):
                row[band_column(t)] = flag
            rows.append(row)
        columns = [
            "point_id", "population", "county", "municipality",
            "nearest_facility_id", "distance_km",
        ] + [band_column(t) for t in self.thresholds_km]
        return pd.DataFrame(rows, columns=columns)

    def covered_population(self, threshold_km: float) -> int:
        idx = self.thresholds_km.index(threshold_km)
        return sum(c.population for c in self.coverage if c.reachable[idx])
