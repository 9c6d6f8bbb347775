# suggestions.py
from __future__ import annotations

from typing import List, Optional, Sequence

from aggregator import RouteResult

NEAR_TIME_THRESHOLD = 0.15
NEAR_FASTEST_FACTOR = 1.10


def rank_routes(routes: Sequence[RouteResult]) -> List[RouteResult]:
    """Lowest emissions first; equal emissions ordered by duration."""
    return sorted(routes, key=lambda r: (r.carbon_kg, r.duration_min))


def time_diff_ratio(duration_min: float, reference_min: float) -> float:
    """Relative travel-time difference against a reference duration."""
    if reference_min == 0:
        return 0.0 if duration_min == 0 else float("inf")
    return abs(duration_min - reference_min) / reference_min


def fastest_route(routes: Sequence[RouteResult]) -> Optional[RouteResult]:
    # min() keeps the first of equal durations
    return min(routes, key=lambda r: r.duration_min, default=None)


def green_suggestion(routes: Sequence[RouteResult]) -> Optional[str]:
    """
    Suggest one lower-emission mode that is about as fast as the fastest one.

    The near-time rule looks for the closest-in-time greener mode within
    15% of the fastest duration. If nothing qualifies, the near-fastest
    rule takes the first greener mode arriving within 110% of the fastest
    duration. Returns None when fewer than two routes are available or no
    mode qualifies.
    """
    if len(routes) < 2:
        return None

    fastest = fastest_route(routes)

    best = None
    best_ratio = None
    for r in routes:
        if r is fastest or r.carbon_kg >= fastest.carbon_kg:
            continue
        ratio = time_diff_ratio(r.duration_min, fastest.duration_min)
        if ratio <= NEAR_TIME_THRESHOLD and (best_ratio is None or ratio < best_ratio):
            best, best_ratio = r, ratio

    if best is not None:
        saved = fastest.carbon_kg - best.carbon_kg
        return (
            f"You could save {saved:.2f} kg of CO₂ by taking {best.mode} — "
            f"it'll get you there in about the same time as {fastest.mode}."
        )

    limit = fastest.duration_min * NEAR_FASTEST_FACTOR
    for r in routes:
        if r is not fastest and r.duration_min <= limit and r.carbon_kg < fastest.carbon_kg:
            saved = fastest.carbon_kg - r.carbon_kg
            return f"You could arrive in nearly the same time using {r.mode}, saving {saved:.2f} kg of CO₂."

    return None


def compare(routes: Sequence[RouteResult]) -> dict:
    """Response payload: ranked routes plus the optional suggestion."""
    return {
        "routes": [r.to_dict() for r in rank_routes(routes)],
        "suggestion": green_suggestion(routes),
    }
