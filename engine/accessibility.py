"""Accessibility orchestrator: allocate, optimise per region, measure, persist."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from config.settings import AnalysisConfig
from engine.allocation_engine import aggregate_population, build_region_allocations
from engine.distance import assign_nearest
from engine.errors import (
    AccessibilityError, InfeasibleRequest, InputDataError, InsufficientBudget,
    ScenarioCancelled,
)
from engine.optimizer import RegionalMCLPSolver, RegionSolver
from engine.reachability import IsochroneProvider, compute_bands
from logging_config import get_logger, log_error, log_performance
from models.coverage import CoverageResult
from models.demand import CandidateSite, DemandPoint
from models.scenario import ScenarioResult

logger = get_logger(__name__)

# Errors that abandon one scenario of a sweep without stopping the others
SCENARIO_ERRORS = (InsufficientBudget, InfeasibleRequest)


@dataclass
class SweepReport:
    results: Dict[int, ScenarioResult] = field(default_factory=dict)
    failures: Dict[int, AccessibilityError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial_counts(self) -> List[int]:
        return sorted(n for n, r in self.results.items() if r.is_partial)


class AccessibilityAnalysis:
    """Runs pharmacy accessibility scenarios over shared, read-only inputs."""

    def __init__(
        self,
        config: AnalysisConfig,
        demand: Sequence[DemandPoint],
        candidates: Sequence[CandidateSite],
        provider: IsochroneProvider,
        region_solver: Optional[RegionSolver] = None,
        store=None,
    ):
        if len(demand) == 0:
            raise InputDataError("No demand points to analyse")
        if len(candidates) == 0:
            raise InputDataError("No candidate pharmacies to choose from")

        self.config = config
        self.demand = tuple(demand)
        self.candidates = tuple(candidates)
        self.provider = provider
        self.region_solver = region_solver or RegionalMCLPSolver(
            method=config.solver_method,
            exact_max_pairs=config.exact_max_pairs,
            time_limit_s=config.solver_time_limit_s,
            max_workers=config.region_workers,
        )
        self.store = store
        self.region_populations = aggregate_population(self.demand)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], facility_count: int, stage: str):
        if cancel_event is not None and cancel_event.is_set():
            raise ScenarioCancelled(f"Scenario {facility_count} cancelled {stage}")

    def run_scenario(
        self,
        facility_count: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScenarioResult:
        """Full workflow for one national pharmacy count."""
        started = time.perf_counter()
        log_extra = {"facility_count": facility_count}
        logger.info(f"Analysing accessibility with {facility_count} pharmacies...", extra=log_extra)

        # Step 1: Allocate pharmacies across counties
        allocations = build_region_allocations(self.region_populations, facility_count)
        logger.info(f"  Pharmacies allocated across {len(allocations)} counties", extra=log_extra)
        for alloc in allocations:
            for step in alloc.explanation_steps:
                logger.debug(f"  [{alloc.region}] {step}", extra=log_extra)

        # Step 2-3: Per-region MCLP, union of selections
        self._check_cancelled(cancel_event, facility_count, "before optimisation")
        facilities = tuple(self.region_solver.select(
            self.demand, self.candidates, allocations,
            self.config.radius_km, facility_count, cancel_event,
        ))
        logger.info(f"  Selected {len(facilities)} optimal pharmacy locations", extra=log_extra)

        # Step 4: Straight-line distance to the nearest national facility
        self._check_cancelled(cancel_event, facility_count, "before distance calculation")
        nearest = assign_nearest(self.demand, facilities, self.config.nearest_chunk_size)
        logger.info("  Calculated straight-line distances", extra=log_extra)

        # Step 5: Driving distance bands
        bands = compute_bands(
            facilities, self.demand, self.config.thresholds_km, self.provider,
            batch_size=self.config.batch_size,
            max_workers=self.config.routing_workers,
            profile=self.config.routing_profile,
            cancel_event=cancel_event,
        )
        logger.info("  Calculated driving distance accessibility", extra=log_extra)

        # Step 6: Assemble and persist
        coverage = tuple(
            CoverageResult(
                point_id=point.point_id,
                population=point.population,
                county=point.county,
                municipality=point.municipality,
                nearest_facility_id=facility_id,
                distance_km=distance_km,
                reachable=tuple(bool(flag) for flag in row),
            )
            for point, (facility_id, distance_km), row in zip(self.demand, nearest, bands.flags)
        )
        result = ScenarioResult(
            facility_count_requested=facility_count,
            facility_count_selected=len(facilities),
            radius_km=self.config.radius_km,
            thresholds_km=bands.thresholds_km,
            allocations=tuple(allocations),
            facilities=facilities,
            coverage=coverage,
            warnings=bands.warnings,
        )

        if result.is_partial:
            logger.warning(
                f"  Scenario {facility_count} completed with {len(result.warnings)} "
                "partial-result warnings from the routing service",
                extra=log_extra,
            )
        if self.store is not None:
            path = self.store.save(result)
            logger.info(f"  Results saved to {path}", extra=log_extra)

        log_performance(logger, f"scenario {facility_count}", time.perf_counter() - started, **log_extra)
        return result

    def _run_one(self, facility_count: int, cancel_event) -> tuple:
        try:
            return facility_count, self.run_scenario(facility_count, cancel_event), None
        except SCENARIO_ERRORS as exc:
            log_error(
                logger, exc.kind,
                f"Scenario {facility_count} failed ({exc.kind}): {exc}",
                facility_count=facility_count,
            )
            return facility_count, None, exc

    def run_sweep(
        self,
        counts: Iterable[int],
        cancel_event: Optional[threading.Event] = None,
    ) -> SweepReport:
        """Run independent scenarios; infeasible ones are reported, not fatal."""
        counts = list(counts)
        report = SweepReport()
        workers = min(self.config.max_parallel_scenarios, max(1, len(counts)))

        if workers == 1:
            outcomes = [self._run_one(n, cancel_event) for n in counts]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                outcomes = list(executor.map(lambda n: self._run_one(n, cancel_event), counts))

        for n, result, error in outcomes:
            if error is not None:
                report.failures[n] = error
            else:
                report.results[n] = result

        logger.info(
            f"Sweep finished: {len(report.results)} scenarios persisted, "
            f"{len(report.failures)} failed, {len(report.partial_counts)} partial"
        )
        return report
