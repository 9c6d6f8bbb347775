# app.py
from __future__ import annotations

import os
import logging
from functools import partial
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, jsonify, request, abort
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from aggregator import InvalidQueryError, Query, aggregate_routes, routes_from_dicts
from directions import fetch_directions
from emissions import load_catalog
from selection import InvalidTransitionError, SelectionSession, UnknownModeError
from suggestions import compare

# ──────────────────────────────────────────────────────────────────────────────
# Load .env for local development (no effect in production)
# ──────────────────────────────────────────────────────────────────────────────
load_dotenv()

# ──────────────────────────────────────────────────────────────────────────────
# Sentry setup
# ──────────────────────────────────────────────────────────────────────────────
SENTRY_DSN = os.getenv("SENTRY_DSN", "")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        send_default_pii=False,
    )

# ──────────────────────────────────────────────────────────────────────────────
# Config & logging
# ──────────────────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger("greenroute")

FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "")
DEFAULT_LIMITS = os.getenv("DEFAULT_LIMITS", "200 per minute")
LIMITER_STORAGE_URI = os.getenv("LIMITER_STORAGE_URI", "memory://")

DIRECTIONS_TIMEOUT = float(os.getenv("DIRECTIONS_TIMEOUT", "10"))
DIRECTIONS_MAX_WORKERS = int(os.getenv("DIRECTIONS_MAX_WORKERS", "8"))

# Google Maps Platform server-side key (Directions)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
if not GOOGLE_API_KEY:
    log.error("GOOGLE_API_KEY not set in environment. Every mode lookup will fail.")

# Emission factors may be overridden with EMISSIONS_FACTORS / EMISSIONS_FACTORS_FILE
CATALOG = load_catalog()

# ──────────────────────────────────────────────────────────────────────────────
# Flask app setup
# ──────────────────────────────────────────────────────────────────────────────
app = Flask(__name__)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_port=1, x_prefix=1)

cors_origins: List[str] = [FRONTEND_ORIGIN] if FRONTEND_ORIGIN else ["*"]
CORS(app, resources={r"/api/*": {"origins": cors_origins}}, supports_credentials=False)

limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=[DEFAULT_LIMITS] if DEFAULT_LIMITS else [],
    storage_uri=LIMITER_STORAGE_URI,
)
log.info("Rate limiting enabled with %s via %s", DEFAULT_LIMITS, LIMITER_STORAGE_URI)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _parse_latlng(value) -> Optional[Tuple[float, float]]:
    """Accept "lat,lng" strings or {"lat": .., "lng": ..} objects."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, dict):
            return float(value["lat"]), float(value["lng"])
        lat, lng = str(value).split(",")
        return float(lat), float(lng)
    except (KeyError, TypeError, ValueError):
        abort(400, description=f"invalid coordinate: {value!r}")


def _parse_departure(value) -> Optional[int]:
    if value is None or value == "" or value == "now":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, description=f"invalid departure_time: {value!r}")


def _fetcher():
    return partial(fetch_directions, api_key=GOOGLE_API_KEY, timeout=DIRECTIONS_TIMEOUT)


def _run_query(origin, destination, departure_time):
    query = Query(
        origin=_parse_latlng(origin),
        destination=_parse_latlng(destination),
        departure_time=_parse_departure(departure_time),
    )
    try:
        result = aggregate_routes(query, _fetcher(), CATALOG, max_workers=DIRECTIONS_MAX_WORKERS)
    except InvalidQueryError as e:
        abort(400, description=str(e))

    payload = compare(result.routes)
    payload["unavailable_modes"] = result.unavailable
    return jsonify(payload), 200


@app.errorhandler(HTTPException)
def http_error(e: HTTPException):
    if request.path.startswith("/api/"):
        return jsonify({"error": e.description}), e.code
    return e

# ──────────────────────────────────────────────────────────────────────────────
# Health / diagnostics
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/")
def root():
    return jsonify({
        "name": "GreenRoute API",
        "version": "v1",
        "health": "/health",
        "routes": "/_routes",
    }), 200

@app.get("/health")
def health_root():
    return jsonify({"status": "ok", "directions_configured": bool(GOOGLE_API_KEY)}), 200

@app.get("/api/v1/health")
def health_v1():
    return health_root()

@app.get("/api/v1/modes")
def list_modes():
    return jsonify([d.to_dict() for d in CATALOG]), 200

# ──────────────────────────────────────────────────────────────────────────────
# Route comparison
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/api/routes")
@app.get("/api/v1/routes")
def compare_routes():
    """
    Compare every catalog mode between two points.

    Query string: origin=lat,lng&destination=lat,lng[&departure_time=epoch]
    Modes whose lookup failed are listed in ``unavailable_modes``.
    """
    return _run_query(
        request.args.get("origin"),
        request.args.get("destination"),
        request.args.get("departure_time"),
    )

@app.post("/api/v1/routes")
def compare_routes_json():
    data = request.get_json(silent=True) or {}
    return _run_query(data.get("origin"), data.get("destination"), data.get("departure_time"))

@app.post("/api/v1/selection")
def evaluate_selection():
    """
    Evaluate one mode pick against a route set the client already holds.

    Body: {"routes": [...], "mode": "driving", "passengers": 1}
    Returns the resulting selection state and, for high emitters with a
    comparable greener option, the confirmation prompt. ``passengers`` is
    rejected for modes other than driving; while a prompt is pending it is
    not applied and ``passengers_applied`` is false.
    """
    data = request.get_json(silent=True) or {}
    mode = data.get("mode")
    items = data.get("routes")
    if not mode or not isinstance(items, list):
        abort(400, description="routes and mode required")
    try:
        routes = routes_from_dicts(items)
    except ValueError as e:
        abort(400, description=str(e))

    passengers = data.get("passengers")
    if passengers is not None and mode != "driving":
        abort(400, description="passengers only apply to driving")

    session = SelectionSession(routes)
    applied = False
    try:
        session.select(mode)
        if passengers is not None and session.prompt is None:
            session.set_passenger_count(int(passengers))
            applied = True
    except UnknownModeError:
        abort(400, description=f"mode not in routes: {mode}")
    except (ValueError, TypeError, InvalidTransitionError) as e:
        abort(400, description=str(e))

    payload = session.to_dict()
    payload["passengers_applied"] = applied
    return jsonify(payload), 200

# ──────────────────────────────────────────────────────────────────────────────
# Routes list
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/_routes")
def list_routes():
    rules = []
    for r in app.url_map.iter_rules():
        methods = ",".join(sorted(r.methods - {"HEAD", "OPTIONS"}))
        rules.append({"rule": str(r), "endpoint": r.endpoint, "methods": methods})
    rules.sort(key=lambda x: x["rule"])
    return jsonify(rules), 200

# ──────────────────────────────────────────────────────────────────────────────
# Entrypoint
# ──────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
