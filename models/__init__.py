from models.demand import DemandPoint, CandidateSite
from models.facility import SelectedFacility
from models.allocation import RegionAllocation
from models.coverage import BandWarning, CoverageResult, band_column
from models.routing import IsochroneRequest, IsochroneResponse
from models.scenario import ScenarioResult
