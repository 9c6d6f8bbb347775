# aggregator.py
from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Tuple

from directions import DirectionsError, DirectionsLeg, LatLng
from emissions import DEFAULT_CATALOG, ModeDescriptor, carbon_kg

log = logging.getLogger("greenroute.aggregator")

# fetch(origin, destination, provider_mode, *, transit_mode=..., departure_time=...)
Fetcher = Callable[..., DirectionsLeg]


class InvalidQueryError(ValueError):
    """The query cannot be served (missing or malformed endpoints)."""


@dataclass(frozen=True)
class Query:
    origin: Optional[LatLng]
    destination: Optional[LatLng]
    departure_time: Optional[int] = None


@dataclass(frozen=True)
class RouteResult:
    """Normalized outcome of one mode for one query."""
    mode: str
    distance_km: float
    duration_min: float
    carbon_kg: float
    duration_with_traffic_min: Optional[float] = None
    polyline: str = ""
    bounds: Optional[dict] = None

    @property
    def has_traffic_data(self) -> bool:
        return self.duration_with_traffic_min is not None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "distance_km": self.distance_km,
            "duration_min": self.duration_min,
            "duration_with_traffic_min": self.duration_with_traffic_min,
            "has_traffic_data": self.has_traffic_data,
            "carbon_kg": self.carbon_kg,
            "polyline": self.polyline,
            "bounds": self.bounds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RouteResult":
        """Rebuild a result posted back by a client; raises ValueError on bad input."""
        try:
            mode = str(data["mode"])
            distance_km = float(data["distance_km"])
            duration_min = float(data["duration_min"])
            carbon = float(data["carbon_kg"])
            traffic = data.get("duration_with_traffic_min")
            traffic = float(traffic) if traffic is not None else None
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid route entry: {e!r}") from e
        values = [distance_km, duration_min, carbon] + ([traffic] if traffic is not None else [])
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"invalid route entry for {mode}: non-finite value")
        if any(v < 0 for v in values):
            raise ValueError(f"invalid route entry for {mode}: negative value")
        return cls(
            mode=mode,
            distance_km=distance_km,
            duration_min=duration_min,
            carbon_kg=carbon,
            duration_with_traffic_min=traffic,
            polyline=data.get("polyline") or "",
            bounds=data.get("bounds"),
        )


@dataclass(frozen=True)
class ModeOutcome:
    """Success or failure of one catalog entry's lookup."""
    mode: str
    route: Optional[RouteResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.route is not None


@dataclass(frozen=True)
class AggregateResult:
    routes: List[RouteResult] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)


def build_route(descriptor: ModeDescriptor, leg: DirectionsLeg) -> RouteResult:
    """Apply a descriptor's multiplier and emissions factor to a provider leg."""
    distance_km = leg.distance_m / 1000
    m = descriptor.duration_multiplier
    traffic_min = None
    if descriptor.is_driving_like and leg.duration_in_traffic_s is not None:
        traffic_min = (leg.duration_in_traffic_s / 60) * m

    return RouteResult(
        mode=descriptor.id,
        distance_km=distance_km,
        duration_min=(leg.duration_s / 60) * m,
        carbon_kg=carbon_kg(distance_km, descriptor.factor_kg_per_km),
        duration_with_traffic_min=traffic_min,
        polyline=leg.polyline or "",
        bounds=leg.bounds,
    )


def validate_query(query: Query) -> None:
    if not query.origin or not query.destination:
        raise InvalidQueryError("origin and destination required")
    for name, point in (("origin", query.origin), ("destination", query.destination)):
        lat, lng = point
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise InvalidQueryError(f"{name} is out of range: {lat},{lng}")


def lookup_mode(descriptor: ModeDescriptor, query: Query, fetch: Fetcher) -> ModeOutcome:
    """Run one adapter call and capture its outcome instead of raising."""
    departure = query.departure_time if descriptor.is_driving_like else None
    try:
        leg = fetch(
            query.origin,
            query.destination,
            descriptor.provider_mode,
            transit_mode=descriptor.transit_mode,
            departure_time=departure,
        )
    except DirectionsError as e:
        return ModeOutcome(descriptor.id, error=e)
    return ModeOutcome(descriptor.id, route=build_route(descriptor, leg))


def aggregate_routes(
    query: Query,
    fetch: Fetcher,
    catalog: Sequence[ModeDescriptor] = DEFAULT_CATALOG,
    *,
    max_workers: Optional[int] = None,
) -> AggregateResult:
    """
    Fan a query out to one lookup per catalog entry and merge the results.

    Lookups are independent and run on a thread pool; a failed mode is
    logged and left out. Routes come back in catalog order. An empty
    result (every mode failed) is returned as-is, not raised.
    """
    validate_query(query)
    if not catalog:
        return AggregateResult()
    # One request instant shared by every driving-like lookup
    if query.departure_time is None:
        query = replace(query, departure_time=int(time.time()))

    workers = min(max_workers or len(catalog), len(catalog))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(lookup_mode, d, query, fetch) for d in catalog]
        outcomes: List[ModeOutcome] = [f.result() for f in futures]

    routes = [o.route for o in outcomes if o.ok]
    unavailable = [o.mode for o in outcomes if not o.ok]
    for o in outcomes:
        if not o.ok:
            log.warning("Mode %s unavailable: %s", o.mode, o.error)

    if not routes:
        log.warning("No routes available for any of %d modes", len(catalog))
    else:
        log.info("Aggregated %d/%d modes", len(routes), len(catalog))

    return AggregateResult(routes=routes, unavailable=unavailable)


def routes_from_dicts(items: Sequence[dict]) -> Tuple[RouteResult, ...]:
    """Parse client-supplied route dicts, rejecting duplicate modes."""
    routes = tuple(RouteResult.from_dict(item) for item in items)
    modes = [r.mode for r in routes]
    if len(set(modes)) != len(modes):
        raise ValueError("duplicate mode in routes")
    return routes
