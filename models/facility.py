from dataclasses import dataclass

from models.demand import CandidateSite, SiteId


@dataclass(frozen=True)
class SelectedFacility:
    """A candidate site chosen by the optimizer for one scenario."""
    site: CandidateSite
    facility_count: int          # Scenario (total pharmacies) that produced it
    region: str
    covered_population: int = 0  # Marginal population covered when selected

    @property
    def site_id(self) -> SiteId:
        return self.site.site_id

    @property
    def lat(self) -> float:
        return self.site.lat

    @property
    def lon(self) -> float:
        return self.site.lon
