"""Great-circle and ellipsoidal distances, nearest-facility assignment."""

from typing import List, Sequence, Tuple

import numpy as np
from geopy.distance import geodesic

from config.defaults import EARTH_RADIUS_KM, NEAREST_CHUNK_SIZE
from engine.errors import EmptyFacilitySet


def haversine_km(p1, p2) -> float:
    """Great-circle distance between two objects with .lat/.lon (degrees)."""
    lat1, lon1, lat2, lon2 = np.deg2rad([p1.lat, p1.lon, p2.lat, p2.lon])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return float(2 * np.arcsin(np.sqrt(min(a, 1.0))) * EARTH_RADIUS_KM)


def ellipsoidal_km(p1, p2) -> float:
    """WGS-84 geodesic distance, used once per point for the reported distance."""
    return geodesic((p1.lat, p1.lon), (p2.lat, p2.lon)).km


def haversine_matrix(
    lats1: np.ndarray, lons1: np.ndarray,
    lats2: np.ndarray, lons2: np.ndarray,
) -> np.ndarray:
    """Pairwise haversine distances (km), shape (len(lats1), len(lats2))."""
    lat1 = np.deg2rad(np.asarray(lats1, dtype=np.float64))[:, None]
    lon1 = np.deg2rad(np.asarray(lons1, dtype=np.float64))[:, None]
    lat2 = np.deg2rad(np.asarray(lats2, dtype=np.float64))[None, :]
    lon2 = np.deg2rad(np.asarray(lons2, dtype=np.float64))[None, :]

    a = (np.sin((lat2 - lat1) / 2) ** 2
         + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2)
    return 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0))) * EARTH_RADIUS_KM


def _facility_id(facility):
    return getattr(facility, "site_id", getattr(facility, "point_id", None))


def nearest_facility(point, facilities: Sequence, metric: str = "haversine") -> Tuple[object, float]:
    """Return (facility_id, distance_km) of the closest facility.

    Ties go to the first facility in input order.
    """
    if len(facilities) == 0:
        raise EmptyFacilitySet("Cannot find nearest facility: facility set is empty")
    if metric == "haversine":
        dist_fn = haversine_km
    elif metric == "ellipsoidal":
        dist_fn = ellipsoidal_km
    else:
        raise ValueError(f"Unknown distance metric: {metric}")

    best_idx = 0
    best_dist = dist_fn(point, facilities[0])
    for idx in range(1, len(facilities)):
        d = dist_fn(point, facilities[idx])
        if d < best_dist:
            best_idx, best_dist = idx, d
    return _facility_id(facilities[best_idx]), best_dist


def assign_nearest(
    points: Sequence,
    facilities: Sequence,
    chunk_size: int = NEAREST_CHUNK_SIZE,
) -> List[Tuple[object, float]]:
    """Assign each point its nearest facility.

    Pass 1 screens all pairs with vectorised haversine (in row chunks to bound
    memory); pass 2 reports the ellipsoidal distance to the chosen facility.
    Returns (facility_id, distance_km) per point, in input order.
    """
    if len(facilities) == 0:
        raise EmptyFacilitySet("Cannot assign nearest facility: facility set is empty")
    if len(points) == 0:
        return []

    fac_lat = np.array([f.lat for f in facilities], dtype=np.float64)
    fac_lon = np.array([f.lon for f in facilities], dtype=np.float64)
    pt_lat = np.array([p.lat for p in points], dtype=np.float64)
    pt_lon = np.array([p.lon for p in points], dtype=np.float64)

    nearest_idx = np.empty(len(points), dtype=np.int64)
    for start in range(0, len(points), chunk_size):
        stop = start + chunk_size
        dist = haversine_matrix(pt_lat[start:stop], pt_lon[start:stop], fac_lat, fac_lon)
        # argmin returns the first minimum: ties resolved by facility order
        nearest_idx[start:stop] = dist.argmin(axis=1)

    results = []
    for point, idx in zip(points, nearest_idx):
        facility = facilities[int(idx)]
        results.append((_facility_id(facility), ellipsoidal_km(point, facility)))
    return results
