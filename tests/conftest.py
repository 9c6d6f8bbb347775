"""Shared fixtures for the GreenRoute test suite.

Environment is fixed before ``app`` is imported because it reads its
configuration at import time.
"""

import os

import pytest

os.environ["GOOGLE_API_KEY"] = "fake-key-for-tests"
os.environ["SENTRY_DSN"] = ""
os.environ.pop("EMISSIONS_FACTORS", None)
os.environ.pop("EMISSIONS_FACTORS_FILE", None)

from aggregator import RouteResult  # noqa: E402
from app import app  # noqa: E402


def make_route(mode, distance_km, duration_min, carbon_kg, **kwargs):
    return RouteResult(
        mode=mode,
        distance_km=distance_km,
        duration_min=duration_min,
        carbon_kg=carbon_kg,
        **kwargs,
    )


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture()
def city_routes():
    """A typical cross-town result set: driving fastest, transit close behind."""
    return [
        make_route("driving", 10.0, 20.0, 1.8),
        make_route("bus", 10.5, 22.0, 0.861),
        make_route("subway", 9.0, 25.0, 0.405),
        make_route("bicycling", 9.5, 40.0, 0.0),
        make_route("walking", 8.8, 110.0, 0.0),
        make_route("e-bike", 10.0, 30.0, 0.08),
    ]
