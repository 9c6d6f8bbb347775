# directions.py
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import requests

from emissions import ProviderMode

log = logging.getLogger("greenroute.directions")

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

LatLng = Tuple[float, float]


class DirectionsError(Exception):
    """A single provider lookup failed (transport, status or payload)."""

    def __init__(self, mode: str, message: str, *, status: Optional[str] = None):
        super().__init__(f"{mode}: {message}")
        self.mode = mode
        self.status = status


@dataclass(frozen=True)
class DirectionsLeg:
    """Normalized provider response for one mode request."""
    distance_m: float
    duration_s: float
    duration_in_traffic_s: Optional[float] = None
    polyline: str = ""
    bounds: Optional[dict] = None


def _latlng_param(point: LatLng) -> str:
    lat, lng = point
    return f"{lat},{lng}"


def _bounds(route: dict) -> Optional[dict]:
    b = route.get("bounds")
    if not b:
        return None
    if not isinstance(b, dict):
        raise TypeError(f"bounds is {type(b).__name__}, expected object")
    sw, ne = b.get("southwest"), b.get("northeast")
    if not sw or not ne:
        return None
    return {
        "southwest": {"lat": sw["lat"], "lng": sw["lng"]},
        "northeast": {"lat": ne["lat"], "lng": ne["lng"]},
    }


def build_params(
    origin: LatLng,
    destination: LatLng,
    mode: ProviderMode | str,
    *,
    api_key: str,
    transit_mode: Optional[str] = None,
    departure_time: Optional[int] = None,
) -> dict:
    params = {
        "origin": _latlng_param(origin),
        "destination": _latlng_param(destination),
        "mode": mode,  # driving | transit | bicycling | walking
        "alternatives": "false",
        "key": api_key,
    }
    # Traffic-aware durations are only returned for driving with a departure time
    if mode == "driving":
        params["departure_time"] = int(departure_time if departure_time is not None else time.time())
        params["traffic_model"] = "best_guess"
    if mode == "transit" and transit_mode:
        params["transit_mode"] = transit_mode  # bus | tram | subway
    return params


def _polyline(route: dict) -> str:
    overview = route.get("overview_polyline")
    if not overview:
        return ""
    if not isinstance(overview, dict):
        raise TypeError(f"overview_polyline is {type(overview).__name__}, expected object")
    points = overview.get("points") or ""
    if not isinstance(points, str):
        raise TypeError("overview_polyline.points is not a string")
    return points


def parse_response(mode: str, data: dict) -> DirectionsLeg:
    """Turn a Directions JSON payload into a DirectionsLeg or raise DirectionsError."""
    if not isinstance(data, dict):
        raise DirectionsError(mode, "malformed response (not an object)")
    status = data.get("status")
    if status != "OK":
        raise DirectionsError(mode, f"provider status {status}", status=status)

    try:
        route = data["routes"][0]
        leg = route["legs"][0]
        dist_m = float(leg["distance"]["value"])
        sec = float(leg["duration"]["value"])
        traffic = leg.get("duration_in_traffic")
        traffic_sec = float(traffic["value"]) if traffic else None
        poly = _polyline(route)
        bounds = _bounds(route)
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        raise DirectionsError(mode, f"malformed response ({e!r})", status=status) from e

    values = (dist_m, sec) if traffic_sec is None else (dist_m, sec, traffic_sec)
    if not all(math.isfinite(v) for v in values):
        raise DirectionsError(mode, "non-finite distance or duration", status=status)
    if dist_m < 0 or sec < 0:
        raise DirectionsError(mode, "negative distance or duration", status=status)

    return DirectionsLeg(
        distance_m=dist_m,
        duration_s=sec,
        duration_in_traffic_s=traffic_sec if mode == "driving" else None,
        polyline=poly,
        bounds=bounds,
    )


def fetch_directions(
    origin: LatLng,
    destination: LatLng,
    mode: ProviderMode | str,
    *,
    api_key: Optional[str],
    transit_mode: Optional[str] = None,
    departure_time: Optional[int] = None,
    timeout: float = 10,
) -> DirectionsLeg:
    """
    Call Google Directions for one provider mode.

    Driving requests ask for a best-guess traffic estimate at
    ``departure_time`` (defaults to now). Transit requests may be narrowed
    to a single vehicle type with ``transit_mode``. Any failure raises
    DirectionsError so the caller can drop just this mode.
    """
    label = f"{mode}/{transit_mode}" if transit_mode else str(mode)
    if not api_key:
        raise DirectionsError(label, "GOOGLE_API_KEY not configured")

    params = build_params(
        origin, destination, mode,
        api_key=api_key,
        transit_mode=transit_mode,
        departure_time=departure_time,
    )

    try:
        r = requests.get(DIRECTIONS_URL, params=params, timeout=timeout)
        r.raise_for_status()
        data = r.json()
    except requests.exceptions.RequestException as e:
        raise DirectionsError(label, f"request failed ({e})") from e
    except ValueError as e:
        raise DirectionsError(label, "response is not JSON") from e

    leg = parse_response(str(mode), data)
    log.debug("Directions %s: %.0f m, %.0f s", label, leg.distance_m, leg.duration_s)
    return leg
