"""Explicit run configuration, optionally populated from a .env file."""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from config.defaults import (
    MCLP_RADIUS_KM, DISTANCE_BANDS_KM, SOLVER_METHOD, EXACT_MAX_PAIRS,
    SOLVER_TIME_LIMIT_S, NEAREST_CHUNK_SIZE, ORS_BASE_URL, ROUTING_PROFILE,
    ISOCHRONE_BATCH_SIZE, ROUTING_WORKERS, ROUTING_MIN_INTERVAL_S,
    ROUTING_TIMEOUT_S, REGION_WORKERS, MAX_PARALLEL_SCENARIOS,
    REGION_FALLBACK_KM, DATA_DIR, RESULTS_DIR, API_KEY_PLACEHOLDER,
)
from engine.errors import ConfigurationError

SOLVER_METHODS = ("auto", "exact", "greedy")


@dataclass(frozen=True)
class AnalysisConfig:
    """Everything a scenario run needs besides the prepared data."""
    api_key: Optional[str] = None
    data_dir: Path = Path(DATA_DIR)
    results_dir: Path = Path(RESULTS_DIR)
    radius_km: float = MCLP_RADIUS_KM
    thresholds_km: Tuple[float, ...] = DISTANCE_BANDS_KM
    solver_method: str = SOLVER_METHOD
    exact_max_pairs: int = EXACT_MAX_PAIRS
    solver_time_limit_s: int = SOLVER_TIME_LIMIT_S
    nearest_chunk_size: int = NEAREST_CHUNK_SIZE
    ors_base_url: str = ORS_BASE_URL
    routing_profile: str = ROUTING_PROFILE
    batch_size: int = ISOCHRONE_BATCH_SIZE
    routing_workers: int = ROUTING_WORKERS
    routing_min_interval_s: float = ROUTING_MIN_INTERVAL_S
    routing_timeout_s: float = ROUTING_TIMEOUT_S
    region_workers: int = REGION_WORKERS
    max_parallel_scenarios: int = MAX_PARALLEL_SCENARIOS
    region_fallback_km: Optional[float] = REGION_FALLBACK_KM

    def __post_init__(self):
        if self.radius_km <= 0:
            raise ConfigurationError("radius_km must be > 0")
        if not self.thresholds_km or any(t <= 0 for t in self.thresholds_km):
            raise ConfigurationError("thresholds_km must be a non-empty sequence of positive distances")
        if self.solver_method not in SOLVER_METHODS:
            raise ConfigurationError(
                f"solver_method must be one of {SOLVER_METHODS}, got '{self.solver_method}'"
            )
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1")
        if self.routing_workers < 1 or self.region_workers < 1 or self.max_parallel_scenarios < 1:
            raise ConfigurationError("worker counts must be >= 1")
        if self.region_fallback_km is not None and self.region_fallback_km < 0:
            raise ConfigurationError("region_fallback_km must be >= 0 or None")
        # Normalise paths given as strings
        object.__setattr__(self, "data_dir", Path(self.data_dir))
        object.__setattr__(self, "results_dir", Path(self.results_dir))
        object.__setattr__(self, "thresholds_km", tuple(self.thresholds_km))

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "AnalysisConfig":
        """Build a config from environment variables (and a .env file if present)."""
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv(find_dotenv(usecwd=True))

        values = {}
        api_key = os.getenv("OPENROUTESERVICE_API_KEY")
        if api_key:
            values["api_key"] = api_key.strip()
        if os.getenv("PHARMACY_DATA_DIR"):
            values["data_dir"] = Path(os.environ["PHARMACY_DATA_DIR"])
        if os.getenv("PHARMACY_RESULTS_DIR"):
            values["results_dir"] = Path(os.environ["PHARMACY_RESULTS_DIR"])
        if os.getenv("ORS_BASE_URL"):
            values["ors_base_url"] = os.environ["ORS_BASE_URL"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides) -> "AnalysisConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def require_api_key(self) -> str:
        """Return the routing API key or fail if it is missing or a placeholder."""
        if not self.api_key or self.api_key == API_KEY_PLACEHOLDER:
            raise ConfigurationError(
                "OpenRouteService API key not configured. "
                "Set OPENROUTESERVICE_API_KEY in the environment or a .env file."
            )
        return self.api_key
