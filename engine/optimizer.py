"""Maximum Coverage Location Problem: PuLP integer program with a greedy fallback."""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pulp

from config.defaults import (
    EXACT_MAX_PAIRS, SOLVER_TIME_LIMIT_S, NEAREST_CHUNK_SIZE, REGION_WORKERS,
)
from engine.distance import haversine_matrix
from engine.errors import InfeasibleRequest, ScenarioCancelled
from logging_config import get_logger
from models.allocation import RegionAllocation
from models.demand import CandidateSite, DemandPoint
from models.facility import SelectedFacility

logger = get_logger(__name__)


@dataclass
class CoverageSelection:
    method: str                     # "exact" or "greedy"
    status: str                     # solver status, "Heuristic" for greedy
    selected: List[int]             # indices into the id-sorted candidate list
    marginal_gains: List[int]       # covered weight added by each selected index
    covered_weight: int
    total_weight: int
    message: str = ""

    @property
    def coverage_pct(self) -> float:
        return self.covered_weight / self.total_weight * 100 if self.total_weight > 0 else 0.0


def build_coverage_matrix(
    candidates: Sequence[CandidateSite],
    demand: Sequence[DemandPoint],
    radius_km: float,
    chunk_size: int = NEAREST_CHUNK_SIZE,
) -> np.ndarray:
    """Boolean matrix (n_candidates, n_demand): True where the point is within radius."""
    coverage = np.zeros((len(candidates), len(demand)), dtype=bool)
    if len(candidates) == 0 or len(demand) == 0:
        return coverage

    cand_lat = np.array([c.lat for c in candidates], dtype=np.float64)
    cand_lon = np.array([c.lon for c in candidates], dtype=np.float64)
    dem_lat = np.array([d.lat for d in demand], dtype=np.float64)
    dem_lon = np.array([d.lon for d in demand], dtype=np.float64)

    for start in range(0, len(demand), chunk_size):
        stop = start + chunk_size
        dist = haversine_matrix(cand_lat, cand_lon, dem_lat[start:stop], dem_lon[start:stop])
        coverage[:, start:stop] = dist <= radius_km
    return coverage


def _marginal_gains(coverage: np.ndarray, weights: np.ndarray, order: Sequence[int]) -> List[int]:
    covered = np.zeros(coverage.shape[1], dtype=bool)
    gains = []
    for idx in order:
        new = coverage[idx] & ~covered
        gains.append(int(weights[new].sum()))
        covered |= coverage[idx]
    return gains


def greedy_max_coverage(coverage: np.ndarray, weights: np.ndarray, k: int) -> CoverageSelection:
    """Pick k candidates by largest marginal covered weight.

    Candidates are assumed sorted by id, so argmax's first-maximum rule breaks
    ties toward the lowest id. Once nothing adds coverage, the remaining picks
    are the unselected candidates in id order.
    """
    n_candidates = coverage.shape[0]
    weights = np.asarray(weights, dtype=np.int64)
    covered = np.zeros(coverage.shape[1], dtype=bool)
    available = np.ones(n_candidates, dtype=bool)
    selected: List[int] = []
    gains: List[int] = []

    while len(selected) < k:
        uncovered = ~covered
        marginal = coverage[:, uncovered].astype(np.int64) @ weights[uncovered]
        marginal[~available] = -1
        best = int(np.argmax(marginal))
        if marginal[best] <= 0:
            break
        selected.append(best)
        gains.append(int(marginal[best]))
        available[best] = False
        covered |= coverage[best]

    # Zero-gain fill to satisfy the exact count
    for idx in range(n_candidates):
        if len(selected) >= k:
            break
        if available[idx]:
            selected.append(idx)
            gains.append(0)
            available[idx] = False

    return CoverageSelection(
        method="greedy",
        status="Heuristic",
        selected=selected,
        marginal_gains=gains,
        covered_weight=int(weights[covered].sum()),
        total_weight=int(weights.sum()),
    )


def exact_max_coverage(
    coverage: np.ndarray,
    weights: np.ndarray,
    k: int,
    time_limit_s: int = SOLVER_TIME_LIMIT_S,
) -> CoverageSelection:
    """
    Solve the 0/1 maximum coverage integer program with CBC.

    Decision variables:
    - x[i] binary: candidate i is opened
    - y[j] in [0, 1]: demand point j is covered (only for coverable points)

    A rank penalty below one person in total makes the optimum unique, so
    equal-coverage alternatives always resolve toward lower candidate ids.
    Falls back to the greedy heuristic if CBC does not prove optimality.
    """
    n_candidates, n_demand = coverage.shape
    weights = np.asarray(weights, dtype=np.int64)

    prob = pulp.LpProblem("MaxCoverage", pulp.LpMaximize)
    x = {i: pulp.LpVariable(f"x_{i}", cat="Binary") for i in range(n_candidates)}

    coverers = {}
    for j in range(n_demand):
        rows = np.nonzero(coverage[:, j])[0]
        if rows.size:
            coverers[j] = rows
    y = {j: pulp.LpVariable(f"y_{j}", lowBound=0, upBound=1) for j in coverers}

    rank_penalty = 1.0 / (n_candidates * (n_candidates + 1))
    prob += (
        pulp.lpSum(int(weights[j]) * y[j] for j in coverers)
        - pulp.lpSum(i * rank_penalty * x[i] for i in range(n_candidates))
    ), "covered_population"

    # C1: Open exactly k facilities
    prob += pulp.lpSum(x.values()) == k, "facility_count"

    # C2: A point counts as covered only if an opened candidate reaches it
    for j, rows in coverers.items():
        prob += y[j] <= pulp.lpSum(x[int(i)] for i in rows), f"cover_{j}"

    prob.solve(pulp.PULP_CBC_CMD(msg=0, timeLimit=time_limit_s, gapRel=0))
    status = pulp.LpStatus[prob.status]
    proven = status == "Optimal" and getattr(prob, "sol_status", pulp.LpSolutionOptimal) == pulp.LpSolutionOptimal

    selected = sorted(i for i in range(n_candidates) if (x[i].varValue or 0) > 0.5)
    if not proven or len(selected) != k:
        logger.warning(
            f"CBC did not return a proven optimum (status: {status}, "
            f"{len(selected)}/{k} selected); using greedy heuristic"
        )
        fallback = greedy_max_coverage(coverage, weights, k)
        fallback.message = f"Exact solver status '{status}'; greedy fallback used."
        return fallback

    covered = coverage[selected].any(axis=0) if selected else np.zeros(n_demand, dtype=bool)
    return CoverageSelection(
        method="exact",
        status=status,
        selected=selected,
        marginal_gains=_marginal_gains(coverage, weights, selected),
        covered_weight=int(weights[covered].sum()),
        total_weight=int(weights.sum()),
    )


def optimize_coverage(
    demand: Sequence[DemandPoint],
    candidates: Sequence[CandidateSite],
    radius_km: float,
    facility_count: int,
    method: str = "auto",
    exact_max_pairs: int = EXACT_MAX_PAIRS,
    time_limit_s: int = SOLVER_TIME_LIMIT_S,
) -> Tuple[List[CandidateSite], CoverageSelection]:
    """Run the MCLP and return (id-sorted candidates, selection over them)."""
    if facility_count < 0:
        raise ValueError("facility_count must be >= 0")
    if facility_count > len(candidates):
        raise InfeasibleRequest(facility_count, len(candidates))

    ordered = sorted(candidates, key=lambda c: c.site_id)
    weights = np.array([d.population for d in demand], dtype=np.int64)
    total_weight = int(weights.sum())

    if facility_count == 0:
        return ordered, CoverageSelection(
            method="none", status="Trivial", selected=[], marginal_gains=[],
            covered_weight=0, total_weight=total_weight,
        )

    coverage = build_coverage_matrix(ordered, demand, radius_km)

    if method == "auto":
        method = "exact" if int(coverage.sum()) <= exact_max_pairs else "greedy"
    if method == "exact":
        selection = exact_max_coverage(coverage, weights, facility_count, time_limit_s)
    elif method == "greedy":
        selection = greedy_max_coverage(coverage, weights, facility_count)
    else:
        raise ValueError(f"Unknown solver method: {method}")

    return ordered, selection


def _to_facilities(ordered, selection, scenario, region=None) -> List[SelectedFacility]:
    return [
        SelectedFacility(
            site=ordered[idx],
            facility_count=scenario,
            region=region if region is not None else ordered[idx].county,
            covered_population=gain,
        )
        for idx, gain in zip(selection.selected, selection.marginal_gains)
    ]


def solve(
    demand: Sequence[DemandPoint],
    candidates: Sequence[CandidateSite],
    radius_km: float,
    facility_count: int,
    method: str = "auto",
    scenario: Optional[int] = None,
    region: Optional[str] = None,
    exact_max_pairs: int = EXACT_MAX_PAIRS,
    time_limit_s: int = SOLVER_TIME_LIMIT_S,
) -> List[SelectedFacility]:
    """Choose `facility_count` candidates maximising population within `radius_km`.

    `scenario` tags the selected facilities with the national facility count
    that produced them (defaults to `facility_count`).
    """
    ordered, selection = optimize_coverage(
        demand, candidates, radius_km, facility_count,
        method=method, exact_max_pairs=exact_max_pairs, time_limit_s=time_limit_s,
    )
    tag = scenario if scenario is not None else facility_count
    return _to_facilities(ordered, selection, tag, region)


class RegionSolver(ABC):
    """Chooses the national facility set from per-region quotas."""

    @abstractmethod
    def select(
        self,
        demand: Sequence[DemandPoint],
        candidates: Sequence[CandidateSite],
        allocations: Sequence[RegionAllocation],
        radius_km: float,
        scenario: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SelectedFacility]:
        ...


@dataclass
class RegionalMCLPSolver(RegionSolver):
    """Solves one independent MCLP per region and unions the selections."""
    method: str = "auto"
    exact_max_pairs: int = EXACT_MAX_PAIRS
    time_limit_s: int = SOLVER_TIME_LIMIT_S
    max_workers: int = REGION_WORKERS

    def _solve_region(self, allocation, region_demand, region_candidates,
                      radius_km, scenario, cancel_event) -> List[SelectedFacility]:
        if cancel_event is not None and cancel_event.is_set():
            raise ScenarioCancelled(f"Scenario {scenario} cancelled before region {allocation.region}")
        if allocation.quota > len(region_candidates):
            raise InfeasibleRequest(allocation.quota, len(region_candidates), allocation.region)

        ordered, selection = optimize_coverage(
            region_demand, region_candidates, radius_km, allocation.quota,
            method=self.method, exact_max_pairs=self.exact_max_pairs,
            time_limit_s=self.time_limit_s,
        )
        logger.info(
            f"Region {allocation.region}: {allocation.quota} pharmacies cover "
            f"{selection.coverage_pct:.1f}% within {radius_km:g} km ({selection.method})",
            extra={"facility_count": scenario, "region": allocation.region},
        )
        return _to_facilities(ordered, selection, scenario, allocation.region)

    def select(self, demand, candidates, allocations, radius_km, scenario, cancel_event=None):
        demand_by_region = defaultdict(list)
        for point in demand:
            demand_by_region[point.county].append(point)
        candidates_by_region = defaultdict(list)
        for site in candidates:
            candidates_by_region[site.county].append(site)

        ordered_allocs = sorted(allocations, key=lambda a: a.region)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(
                    self._solve_region, alloc,
                    demand_by_region.get(alloc.region, []),
                    candidates_by_region.get(alloc.region, []),
                    radius_km, scenario, cancel_event,
                )
                for alloc in ordered_allocs
            ]
            selected: List[SelectedFacility] = []
            try:
                # Collect in region order so the union is deterministic
                for future in futures:
                    selected.extend(future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        return selected
