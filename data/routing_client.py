"""Isochrone providers: OpenRouteService over HTTP, and an offline straight-line stand-in."""

import threading
import time
from typing import Optional

import requests
from geopy.distance import geodesic
from shapely.errors import ShapelyError
from shapely.geometry import Polygon, shape

from config.defaults import OFFLINE_CIRCUITY
from config.settings import AnalysisConfig
from engine.errors import RoutingServiceError
from engine.reachability import IsochroneProvider
from logging_config import get_logger
from models.routing import IsochroneRequest, IsochroneResponse

logger = get_logger(__name__)

USER_AGENT = "PharmacyAccess/1.0"


class OpenRouteServiceProvider(IsochroneProvider):
    """POSTs isochrone batches to OpenRouteService.

    Requests are spaced at least `min_interval_s` apart across all worker
    threads to respect the service rate limit. Failures are not retried.
    """

    def __init__(self, config: AnalysisConfig, session: Optional[requests.Session] = None):
        self.api_key = config.require_api_key()
        self.base_url = config.ors_base_url.rstrip("/")
        self.timeout = config.routing_timeout_s
        self.min_interval_s = config.routing_min_interval_s
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._last_request = 0.0

    def _throttle(self):
        with self._lock:
            wait = self.min_interval_s - (time.monotonic() - self._last_request)
            if wait > 0:
                logger.debug(f"Throttling isochrone request: waiting {wait:.2f}s")
                time.sleep(wait)
            self._last_request = time.monotonic()

    def fetch_isochrones(self, request: IsochroneRequest) -> IsochroneResponse:
        url = f"{self.base_url}/v2/isochrones/{request.profile}"
        payload = {
            "locations": [list(loc) for loc in request.locations],
            "range": list(request.ranges_m),
            "range_type": request.range_type,
        }
        headers = {
            "Authorization": self.api_key,
            "Content-Type": "application/json; charset=utf-8",
            "Accept": "application/geo+json, application/json",
            "User-Agent": USER_AGENT,
        }

        self._throttle()
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RoutingServiceError(f"Isochrone request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise RoutingServiceError(f"Isochrone request failed: {e}") from e

        if resp.status_code != 200:
            raise RoutingServiceError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise RoutingServiceError("Isochrone response is not valid JSON") from e

        return parse_isochrone_geojson(data, request)


def parse_isochrone_geojson(data, request: IsochroneRequest) -> IsochroneResponse:
    """Map an ORS FeatureCollection onto (location index, range) polygons."""
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise RoutingServiceError("Isochrone response has no feature collection")

    polygons = {}
    skipped = 0
    for feature in data["features"]:
        if not isinstance(feature, dict):
            skipped += 1
            continue
        props = feature.get("properties") or {}
        try:
            loc_idx = int(props["group_index"])
            range_m = int(round(float(props["value"])))
            geom = shape(feature["geometry"])
        except (KeyError, TypeError, ValueError, AttributeError, ShapelyError) as e:
            logger.debug(f"Skipping malformed isochrone feature: {e}")
            skipped += 1
            continue
        if not 0 <= loc_idx < len(request.locations) or range_m not in request.ranges_m:
            skipped += 1
            continue
        polygons[(loc_idx, range_m)] = geom

    error = f"{skipped} malformed or unexpected features ignored" if skipped else None
    return IsochroneResponse(polygons=polygons, error=error)


class StraightLineIsochroneProvider(IsochroneProvider):
    """Offline approximation: a geodesic circle of radius range / circuity.

    Road distance is longer than crow-flies distance, so a driving range of R
    is treated as reaching R / circuity in a straight line.
    """

    def __init__(self, circuity: float = OFFLINE_CIRCUITY, segments: int = 36):
        if circuity < 1:
            raise ValueError("circuity must be >= 1")
        self.circuity = circuity
        self.segments = segments

    def _circle(self, lon: float, lat: float, range_m: int) -> Polygon:
        radius_km = range_m / 1000.0 / self.circuity
        ring = []
        for step in range(self.segments):
            bearing = 360.0 * step / self.segments
            dest = geodesic(kilometers=radius_km).destination((lat, lon), bearing)
            ring.append((dest.longitude, dest.latitude))
        return Polygon(ring)

    def fetch_isochrones(self, request: IsochroneRequest) -> IsochroneResponse:
        polygons = {
            (loc_idx, range_m): self._circle(lon, lat, range_m)
            for loc_idx, (lon, lat) in enumerate(request.locations)
            for range_m in request.ranges_m
        }
        return IsochroneResponse(polygons=polygons)


def build_provider(config: AnalysisConfig, offline: bool = False) -> IsochroneProvider:
    if offline:
        logger.info("Using offline straight-line isochrones")
        return StraightLineIsochroneProvider()
    return OpenRouteServiceProvider(config)
