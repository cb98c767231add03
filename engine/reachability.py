"""Road-network reachability bands from isochrones, with monotonic repair."""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.ops import unary_union
from shapely.validation import make_valid

from config.defaults import ISOCHRONE_BATCH_SIZE, ROUTING_WORKERS, ROUTING_PROFILE, ROUTING_RANGE_TYPE
from engine.errors import RoutingServiceError, ScenarioCancelled
from logging_config import get_logger
from models.coverage import BandWarning
from models.demand import DemandPoint
from models.facility import SelectedFacility
from models.routing import IsochroneRequest, IsochroneResponse

logger = get_logger(__name__)


class IsochroneProvider(ABC):
    """Black-box routing service returning reachable-area polygons."""

    @abstractmethod
    def fetch_isochrones(self, request: IsochroneRequest) -> IsochroneResponse:
        """One batch request. Raise RoutingServiceError on failure."""


@dataclass(frozen=True, eq=False)
class BandResult:
    thresholds_km: Tuple[float, ...]
    point_ids: Tuple[str, ...]
    flags: np.ndarray                  # (n_points, n_thresholds), monotone along axis 1
    warnings: Tuple[BandWarning, ...] = ()

    def reachable_thresholds(self, point_id: str) -> FrozenSet[float]:
        row = self.flags[self.point_ids.index(point_id)]
        return frozenset(t for t, ok in zip(self.thresholds_km, row) if ok)

    def as_mapping(self) -> Dict[str, FrozenSet[float]]:
        return {
            pid: frozenset(t for t, ok in zip(self.thresholds_km, row) if ok)
            for pid, row in zip(self.point_ids, self.flags)
        }


def normalize_thresholds(thresholds_km: Iterable[float]) -> Tuple[float, ...]:
    """Ascending, de-duplicated, strictly positive thresholds."""
    values = sorted(set(float(t) for t in thresholds_km))
    if not values or values[0] <= 0:
        raise ValueError("Thresholds must be a non-empty set of positive distances")
    return tuple(values)


def repair_monotonic(flags: np.ndarray) -> np.ndarray:
    """Propagate TRUE to every larger threshold (columns sorted ascending)."""
    if flags.size == 0:
        return flags.astype(bool)
    return np.logical_or.accumulate(flags.astype(bool), axis=1)


def _batches(facilities: Sequence[SelectedFacility], batch_size: int) -> List[List[SelectedFacility]]:
    ordered = sorted(facilities, key=lambda f: f.site_id)
    return [ordered[i:i + batch_size] for i in range(0, len(ordered), batch_size)]


def _fetch_batch(provider: IsochroneProvider, batch, ranges_m, profile,
                 cancel_event: Optional[threading.Event] = None) -> IsochroneResponse:
    if cancel_event is not None and cancel_event.is_set():
        raise ScenarioCancelled("Isochrone batch skipped after cancellation")
    request = IsochroneRequest(
        facility_ids=tuple(f.site_id for f in batch),
        locations=tuple((f.lon, f.lat) for f in batch),
        ranges_m=ranges_m,
        profile=profile,
        range_type=ROUTING_RANGE_TYPE,
    )
    return provider.fetch_isochrones(request)


def compute_bands(
    facilities: Sequence[SelectedFacility],
    demand: Sequence[DemandPoint],
    thresholds_km: Iterable[float],
    provider: IsochroneProvider,
    batch_size: int = ISOCHRONE_BATCH_SIZE,
    max_workers: int = ROUTING_WORKERS,
    profile: str = ROUTING_PROFILE,
    cancel_event: Optional[threading.Event] = None,
) -> BandResult:
    """Mark which demand points fall inside the isochrone union of each threshold.

    Failed or incomplete batches become BandWarnings (no retry); the remaining
    batches still count. Flags are repaired so reachability at a threshold
    implies reachability at every larger one.
    """
    thresholds = normalize_thresholds(thresholds_km)
    ranges_m = tuple(int(round(t * 1000)) for t in thresholds)
    batches = _batches(facilities, batch_size)

    # range_m -> [(batch_index, location_index, geometry)]
    polygons: Dict[int, List[Tuple[int, int, object]]] = {r: [] for r in ranges_m}
    warnings: List[BandWarning] = []
    cancelled = False

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_batch = {
            executor.submit(_fetch_batch, provider, batch, ranges_m, profile, cancel_event): (idx, batch)
            for idx, batch in enumerate(batches)
        }
        try:
            for future in as_completed(future_to_batch):
                batch_idx, batch = future_to_batch[future]
                if cancel_event is not None and cancel_event.is_set():
                    # Let in-flight requests finish; drop queued ones and all results
                    if not cancelled:
                        for pending in future_to_batch:
                            pending.cancel()
                        cancelled = True
                    continue

                facility_ids = tuple(f.site_id for f in batch)
                try:
                    response = future.result()
                except RoutingServiceError as exc:
                    logger.warning(
                        f"Isochrone batch {batch_idx} failed for facilities {list(facility_ids)}: {exc}",
                        extra={"batch_index": batch_idx, "error_type": exc.kind},
                    )
                    warnings.append(BandWarning(facility_ids, thresholds, str(exc), batch_idx))
                    continue
                except ScenarioCancelled:
                    cancelled = True
                    continue
                except Exception as exc:
                    logger.warning(
                        f"Isochrone batch {batch_idx} returned an unusable response for "
                        f"facilities {list(facility_ids)}: {exc!r}",
                        extra={"batch_index": batch_idx, "error_type": type(exc).__name__},
                    )
                    warnings.append(BandWarning(
                        facility_ids, thresholds, f"malformed response: {exc!r}", batch_idx,
                    ))
                    continue

                if response.error:
                    logger.warning(
                        f"Isochrone batch {batch_idx} reported an error: {response.error}",
                        extra={"batch_index": batch_idx},
                    )

                for loc_idx, facility in enumerate(batch):
                    missing = []
                    for t, r in zip(thresholds, ranges_m):
                        geom = response.polygons.get((loc_idx, r))
                        if geom is None or geom.is_empty:
                            missing.append(t)
                        else:
                            polygons[r].append((batch_idx, loc_idx, geom))
                    if missing:
                        message = response.error or "no isochrone returned"
                        warnings.append(BandWarning((facility.site_id,), tuple(missing), message, batch_idx))
        except BaseException:
            # Interrupted: only batches already in flight may finish
            for pending in future_to_batch:
                pending.cancel()
            raise

    if cancelled or (cancel_event is not None and cancel_event.is_set()):
        raise ScenarioCancelled("Reachability computation cancelled; isochrone results discarded")

    lats = np.array([p.lat for p in demand], dtype=np.float64)
    lons = np.array([p.lon for p in demand], dtype=np.float64)
    flags = np.zeros((len(demand), len(thresholds)), dtype=bool)

    for col, r in enumerate(ranges_m):
        # Sorted so the union does not depend on response arrival order
        geoms = [make_valid(g) for _, _, g in sorted(polygons[r], key=lambda item: item[:2])]
        if not geoms or len(demand) == 0:
            continue
        area = unary_union(geoms)
        shapely.prepare(area)
        flags[:, col] = shapely.contains_xy(area, lons, lats)

    flags = repair_monotonic(flags)
    warnings.sort(key=lambda w: (w.batch_index if w.batch_index is not None else -1, str(w.facility_ids)))

    logger.info(
        f"Reachability: {len(batches)} isochrone batches, {len(warnings)} warnings, "
        + ", ".join(f"{t:g} km: {int(flags[:, i].sum())} squares" for i, t in enumerate(thresholds))
    )

    return BandResult(
        thresholds_km=thresholds,
        point_ids=tuple(p.point_id for p in demand),
        flags=flags,
        warnings=tuple(warnings),
    )
