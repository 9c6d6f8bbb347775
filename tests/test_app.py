"""Tests for the Flask routes. The directions fetcher is patched out."""

from unittest.mock import patch

import pytest

from directions import DirectionsError, DirectionsLeg


def _fake_fetch(failing=()):
    def fetch(origin, destination, mode, *, transit_mode=None, departure_time=None, **kwargs):
        if (mode, transit_mode) in failing or mode in failing:
            raise DirectionsError(mode, "provider status ZERO_RESULTS", status="ZERO_RESULTS")
        seconds = {"driving": 1200, "transit": 1500, "bicycling": 1320, "walking": 6000}[mode]
        return DirectionsLeg(distance_m=10000, duration_s=seconds, polyline=f"{mode}-line")
    return fetch


@pytest.fixture()
def fake_fetch():
    with patch("app.fetch_directions", side_effect=_fake_fetch()) as m:
        yield m


class TestHealth:
    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_json()["name"] == "GreenRoute API"

    def test_health(self, client):
        for path in ("/health", "/api/v1/health"):
            resp = client.get(path)
            assert resp.status_code == 200
            assert resp.get_json()["status"] == "ok"

    def test_modes(self, client):
        modes = client.get("/api/v1/modes").get_json()
        assert [m["id"] for m in modes][:2] == ["driving", "bus"]

    def test_routes_listing(self, client):
        rules = [r["rule"] for r in client.get("/_routes").get_json()]
        assert "/api/routes" in rules


class TestCompareRoutes:
    def test_get_compare(self, client, fake_fetch):
        resp = client.get("/api/routes?origin=42.3601,-71.0589&destination=42.3736,-71.1097")
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data["routes"]) == 8
        assert data["unavailable_modes"] == []
        carbons = [r["carbon_kg"] for r in data["routes"]]
        assert carbons == sorted(carbons)
        assert data["suggestion"] is not None

    def test_bicycling_suggested_over_driving(self, client, fake_fetch):
        data = client.get("/api/v1/routes?origin=1,1&destination=2,2").get_json()
        assert data["suggestion"] == (
            "You could save 1.80 kg of CO₂ by taking bicycling — "
            "it'll get you there in about the same time as driving."
        )

    def test_post_compare(self, client, fake_fetch):
        resp = client.post("/api/v1/routes", json={
            "origin": {"lat": 42.3601, "lng": -71.0589},
            "destination": "42.3736,-71.1097",
            "departure_time": 1700000000,
        })
        assert resp.status_code == 200
        driving_calls = [c for c in fake_fetch.call_args_list if c.args[2] == "driving"]
        assert driving_calls
        assert all(c.kwargs["departure_time"] == 1700000000 for c in driving_calls)

    def test_partial_failure(self, client):
        with patch("app.fetch_directions", side_effect=_fake_fetch(failing={"transit"})):
            data = client.get("/api/routes?origin=1,1&destination=2,2").get_json()
        assert sorted(data["unavailable_modes"]) == ["bus", "subway", "tram"]
        assert len(data["routes"]) == 5

    def test_all_failed_is_empty(self, client):
        failing = {"driving", "transit", "bicycling", "walking"}
        with patch("app.fetch_directions", side_effect=_fake_fetch(failing=failing)):
            resp = client.get("/api/routes?origin=1,1&destination=2,2")
        assert resp.status_code == 200
        assert resp.get_json()["routes"] == []
        assert resp.get_json()["suggestion"] is None

    def test_missing_destination(self, client, fake_fetch):
        resp = client.get("/api/routes?origin=1,1")
        assert resp.status_code == 400
        assert "origin and destination" in resp.get_json()["error"]
        fake_fetch.assert_not_called()

    def test_bad_coordinate(self, client, fake_fetch):
        resp = client.get("/api/routes?origin=north&destination=2,2")
        assert resp.status_code == 400
        fake_fetch.assert_not_called()

    def test_bad_departure_time(self, client, fake_fetch):
        resp = client.get("/api/routes?origin=1,1&destination=2,2&departure_time=soon")
        assert resp.status_code == 400


class TestSelection:
    def _routes(self, client):
        with patch("app.fetch_directions", side_effect=_fake_fetch()):
            return client.get("/api/routes?origin=1,1&destination=2,2").get_json()["routes"]

    def test_high_emitter_prompts(self, client):
        routes = self._routes(client)
        resp = client.post("/api/v1/selection", json={"routes": routes, "mode": "driving"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["state"] == "pending_confirmation"
        assert data["prompt"]["alternative"] in {r["mode"] for r in routes}

    def test_low_emitter_selected(self, client):
        routes = self._routes(client)
        data = client.post("/api/v1/selection", json={"routes": routes, "mode": "walking"}).get_json()
        assert data["state"] == "mode_selected"
        assert data["prompt"] is None

    def test_driving_passengers_without_prompt(self, client):
        routes = [
            {"mode": "driving", "distance_km": 10, "duration_min": 20, "carbon_kg": 1.8},
            {"mode": "walking", "distance_km": 9, "duration_min": 100, "carbon_kg": 0.0},
        ]
        data = client.post(
            "/api/v1/selection", json={"routes": routes, "mode": "driving", "passengers": 4}
        ).get_json()
        assert data["state"] == "mode_selected"
        assert data["passenger_count"] == 4
        assert data["passengers_applied"] is True
        assert data["per_person_carbon_kg"] == pytest.approx(0.45)

    def test_unknown_mode(self, client):
        routes = [{"mode": "walking", "distance_km": 1, "duration_min": 10, "carbon_kg": 0.0}]
        resp = client.post("/api/v1/selection", json={"routes": routes, "mode": "driving"})
        assert resp.status_code == 400

    def test_bad_passenger_count(self, client):
        routes = [{"mode": "driving", "distance_km": 10, "duration_min": 20, "carbon_kg": 1.8}]
        resp = client.post(
            "/api/v1/selection", json={"routes": routes, "mode": "driving", "passengers": 12}
        )
        assert resp.status_code == 400

    def test_missing_body(self, client):
        resp = client.post("/api/v1/selection", json={})
        assert resp.status_code == 400

    def test_passengers_rejected_for_other_modes(self, client):
        routes = [{"mode": "walking", "distance_km": 9, "duration_min": 100, "carbon_kg": 0.0}]
        resp = client.post(
            "/api/v1/selection", json={"routes": routes, "mode": "walking", "passengers": 3}
        )
        assert resp.status_code == 400
        assert "driving" in resp.get_json()["error"]

    def test_passengers_not_applied_while_prompt_pending(self, client):
        routes = [
            {"mode": "driving", "distance_km": 10, "duration_min": 20, "carbon_kg": 1.8},
            {"mode": "bicycling", "distance_km": 10, "duration_min": 22, "carbon_kg": 0.0},
        ]
        data = client.post(
            "/api/v1/selection", json={"routes": routes, "mode": "driving", "passengers": 3}
        ).get_json()
        assert data["state"] == "pending_confirmation"
        assert data["passengers_applied"] is False
        assert data["passenger_count"] == 1

    def test_non_finite_route_values_rejected(self, client):
        resp = client.post(
            "/api/v1/selection",
            data='{"routes": [{"mode": "driving", "distance_km": 10, "duration_min": 20, "carbon_kg": NaN}], "mode": "driving"}',
            content_type="application/json",
        )
        assert resp.status_code == 400
