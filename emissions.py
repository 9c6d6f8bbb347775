# emissions.py
from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, replace
from typing import Dict, Literal, Mapping, Optional, Tuple, TypeAlias

# Modes the Directions provider can fetch directly
ProviderMode: TypeAlias = Literal["driving", "transit", "walking", "bicycling"]

PROVIDER_MODES: Tuple[str, ...] = ("driving", "transit", "walking", "bicycling")

# Transit vehicle filters accepted by the provider
TRANSIT_MODES: Tuple[str, ...] = ("bus", "tram", "subway", "train", "rail")


@dataclass(frozen=True)
class ModeDescriptor:
    """One catalog entry: how a travel mode is requested and scored."""
    id: str
    provider_mode: str
    factor_kg_per_km: float
    duration_multiplier: float = 1.0
    transit_mode: Optional[str] = None

    @property
    def is_driving_like(self) -> bool:
        return self.provider_mode == "driving"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_mode": self.provider_mode,
            "transit_mode": self.transit_mode,
            "factor_kg_per_km": self.factor_kg_per_km,
            "duration_multiplier": self.duration_multiplier,
        }


# Rough per-passenger emission factors (kg CO2e per km)
_FACTORS: Dict[str, float] = {
    "driving": 0.18,     # average gasoline car, driver only
    "bus": 0.082,
    "tram": 0.035,
    "subway": 0.045,
    "bicycling": 0.0,
    "walking": 0.0,
    "e-bike": 0.008,     # grid electricity for charging
    "e-scooter": 0.01,
}

# E-bike rides ~1.5x slower than a car; e-scooter a further 1.6x
E_BIKE_MULTIPLIER = 1.5
E_SCOOTER_MULTIPLIER = E_BIKE_MULTIPLIER * 1.6

DEFAULT_CATALOG: Tuple[ModeDescriptor, ...] = (
    ModeDescriptor("driving", "driving", _FACTORS["driving"]),
    ModeDescriptor("bus", "transit", _FACTORS["bus"], transit_mode="bus"),
    ModeDescriptor("tram", "transit", _FACTORS["tram"], transit_mode="tram"),
    ModeDescriptor("subway", "transit", _FACTORS["subway"], transit_mode="subway"),
    ModeDescriptor("bicycling", "bicycling", _FACTORS["bicycling"]),
    ModeDescriptor("walking", "walking", _FACTORS["walking"]),
    ModeDescriptor("e-bike", "driving", _FACTORS["e-bike"], E_BIKE_MULTIPLIER),
    ModeDescriptor("e-scooter", "driving", _FACTORS["e-scooter"], E_SCOOTER_MULTIPLIER),
)


def validate_catalog(catalog: Tuple[ModeDescriptor, ...]) -> Tuple[ModeDescriptor, ...]:
    """Raise ValueError unless every descriptor is well formed and ids are unique."""
    seen = set()
    for d in catalog:
        if d.id in seen:
            raise ValueError(f"duplicate mode id in catalog: {d.id}")
        seen.add(d.id)
        if d.provider_mode not in PROVIDER_MODES:
            raise ValueError(f"{d.id}: unsupported provider mode {d.provider_mode!r}")
        if d.transit_mode is not None:
            if d.provider_mode != "transit":
                raise ValueError(f"{d.id}: transit_mode requires the transit provider mode")
            if d.transit_mode not in TRANSIT_MODES:
                raise ValueError(f"{d.id}: unsupported transit mode {d.transit_mode!r}")
        if not math.isfinite(d.factor_kg_per_km) or not math.isfinite(d.duration_multiplier):
            raise ValueError(f"{d.id}: emissions factor and duration multiplier must be finite")
        if d.factor_kg_per_km < 0:
            raise ValueError(f"{d.id}: emissions factor must be >= 0")
        if d.duration_multiplier < 1:
            raise ValueError(f"{d.id}: duration multiplier must be >= 1")
    return catalog


def apply_factor_overrides(
    catalog: Tuple[ModeDescriptor, ...],
    overrides: Mapping[str, float],
) -> Tuple[ModeDescriptor, ...]:
    """Return a copy of ``catalog`` with emission factors replaced by ``overrides``."""
    known = {d.id for d in catalog}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"emission factor override for unknown mode(s): {', '.join(unknown)}")

    updated = []
    for d in catalog:
        if d.id in overrides:
            try:
                factor = float(overrides[d.id])
            except (TypeError, ValueError):
                raise ValueError(f"{d.id}: emissions factor must be a number") from None
            d = replace(d, factor_kg_per_km=factor)
        updated.append(d)
    return validate_catalog(tuple(updated))


def load_catalog(
    factors_json: Optional[str] = None,
    factors_file: Optional[str] = None,
) -> Tuple[ModeDescriptor, ...]:
    """
    Build the active catalog from the defaults plus configured factor overrides.

    Overrides come from a JSON object (mode id -> kg CO2e per km), given
    inline via ``EMISSIONS_FACTORS`` or as a file via ``EMISSIONS_FACTORS_FILE``.
    Inline values win over file values.
    """
    if factors_json is None:
        factors_json = os.getenv("EMISSIONS_FACTORS", "")
    if factors_file is None:
        factors_file = os.getenv("EMISSIONS_FACTORS_FILE", "")

    overrides: Dict[str, float] = {}
    if factors_file:
        with open(factors_file, encoding="utf-8") as fh:
            overrides.update(_parse_overrides(fh.read(), source=factors_file))
    if factors_json:
        overrides.update(_parse_overrides(factors_json, source="EMISSIONS_FACTORS"))

    return apply_factor_overrides(validate_catalog(DEFAULT_CATALOG), overrides)


def _parse_overrides(raw: str, *, source: str) -> Dict[str, float]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"{source}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ValueError(f"{source}: expected a JSON object of mode -> factor")
    return data


def carbon_kg(distance_km: float, factor_kg_per_km: float) -> float:
    """Trip emissions for a distance at a per-km factor (not rounded)."""
    return distance_km * factor_kg_per_km


def per_person_kg(total_kg: float, passengers: int = 1) -> float:
    """Split a per-vehicle total across occupants (min=1)."""
    pax = int(passengers) if isinstance(passengers, int) else 1
    if pax < 1:
        pax = 1
    return total_kg / pax
