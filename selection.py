# selection.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from aggregator import RouteResult
from emissions import per_person_kg
from suggestions import time_diff_ratio

# Only the heaviest emitters trigger a confirmation prompt
TOP_EMITTERS = 3
MIN_PROMPT_CARBON_KG = 0.05
ALTERNATIVE_TIME_THRESHOLD = 0.30

MIN_PASSENGERS = 1
MAX_PASSENGERS = 8


class SelectionState(str, Enum):
    ALL_VISIBLE = "all_visible"
    PENDING_CONFIRMATION = "pending_confirmation"
    MODE_SELECTED = "mode_selected"


class UnknownModeError(KeyError):
    pass


class InvalidTransitionError(RuntimeError):
    pass


@dataclass(frozen=True)
class GreenPrompt:
    """Confirmation shown before committing to a high-emission mode."""
    selected_mode: str
    alternative: RouteResult
    saved_kg: float

    @property
    def message(self) -> str:
        return (
            f"You could save {self.saved_kg:.2f} kg of CO₂ by taking {self.alternative.mode} — "
            "it'll get you there in about the same time!"
        )

    def to_dict(self) -> dict:
        return {
            "selected_mode": self.selected_mode,
            "alternative": self.alternative.mode,
            "saved_kg": round(self.saved_kg, 2),
            "message": self.message,
        }


def top_emitters(routes: Sequence[RouteResult], n: int = TOP_EMITTERS) -> List[str]:
    ranked = sorted(routes, key=lambda r: r.carbon_kg, reverse=True)
    return [r.mode for r in ranked[:n]]


def greener_alternatives(routes: Sequence[RouteResult], selected: RouteResult) -> List[RouteResult]:
    """Lower-emission modes within 30% of the selected travel time, greenest first."""
    alts = [
        r for r in routes
        if r.mode != selected.mode
        and r.carbon_kg < selected.carbon_kg
        and time_diff_ratio(r.duration_min, selected.duration_min) <= ALTERNATIVE_TIME_THRESHOLD
    ]
    return sorted(alts, key=lambda r: r.carbon_kg)


def confirmation_prompt(routes: Sequence[RouteResult], mode: str) -> Optional[GreenPrompt]:
    """Return the prompt to show for selecting ``mode``, or None to select directly."""
    selected = _find(routes, mode)
    if mode not in top_emitters(routes) or selected.carbon_kg <= MIN_PROMPT_CARBON_KG:
        return None
    alts = greener_alternatives(routes, selected)
    if not alts:
        return None
    best = alts[0]
    return GreenPrompt(mode, best, selected.carbon_kg - best.carbon_kg)


def _find(routes: Sequence[RouteResult], mode: str) -> RouteResult:
    for r in routes:
        if r.mode == mode:
            return r
    raise UnknownModeError(mode)


class SelectionSession:
    """
    Per-viewer selection state for one result set.

    ALL_VISIBLE -> PENDING_CONFIRMATION -> MODE_SELECTED, or straight to
    MODE_SELECTED when no greener alternative needs confirming. The
    carpool counters live here and only apply while driving is selected.
    """

    def __init__(self, routes: Sequence[RouteResult] = ()):
        self.routes: List[RouteResult] = list(routes)
        self.state = SelectionState.ALL_VISIBLE
        self.mode: Optional[str] = None
        self.prompt: Optional[GreenPrompt] = None
        self.is_carpooling = False
        self.passenger_count = MIN_PASSENGERS

    @property
    def selected_route(self) -> Optional[RouteResult]:
        if self.state is not SelectionState.MODE_SELECTED:
            return None
        return _find(self.routes, self.mode)

    @property
    def per_person_carbon_kg(self) -> Optional[float]:
        route = self.selected_route
        if route is None:
            return None
        if route.mode != "driving":
            return route.carbon_kg
        return per_person_kg(route.carbon_kg, self.passenger_count)

    def load_routes(self, routes: Sequence[RouteResult]) -> None:
        """Replace the result set after a new query."""
        self.routes = list(routes)
        if self.state is SelectionState.PENDING_CONFIRMATION:
            self._show_all()
        elif self.state is SelectionState.MODE_SELECTED and not any(r.mode == self.mode for r in self.routes):
            self._show_all()

    def select(self, mode: str) -> Optional[GreenPrompt]:
        if self.state is not SelectionState.ALL_VISIBLE:
            raise InvalidTransitionError(f"cannot select from {self.state.value}")
        prompt = confirmation_prompt(self.routes, mode)
        if prompt is not None:
            self.state = SelectionState.PENDING_CONFIRMATION
            self.mode = mode
            self.prompt = prompt
            return prompt
        self._commit(mode)
        return None

    def continue_anyway(self) -> None:
        self._require(SelectionState.PENDING_CONFIRMATION)
        self._commit(self.mode)

    def choose_different(self) -> None:
        self._require(SelectionState.PENDING_CONFIRMATION)
        self._show_all()

    def reset(self) -> None:
        self._require(SelectionState.MODE_SELECTED)
        self._show_all()

    def set_carpooling(self, carpooling: bool) -> None:
        self._require_driving()
        self.is_carpooling = bool(carpooling)
        if not self.is_carpooling:
            self.passenger_count = MIN_PASSENGERS

    def set_passenger_count(self, count: int) -> None:
        self._require_driving()
        if not MIN_PASSENGERS <= count <= MAX_PASSENGERS:
            raise ValueError(f"passenger count must be between {MIN_PASSENGERS} and {MAX_PASSENGERS}")
        self.passenger_count = count
        self.is_carpooling = count > 1

    def _commit(self, mode: str) -> None:
        _find(self.routes, mode)
        self.state = SelectionState.MODE_SELECTED
        self.mode = mode
        self.prompt = None
        if mode != "driving":
            self.is_carpooling = False
            self.passenger_count = MIN_PASSENGERS

    def _show_all(self) -> None:
        self.state = SelectionState.ALL_VISIBLE
        self.mode = None
        self.prompt = None

    def _require(self, state: SelectionState) -> None:
        if self.state is not state:
            raise InvalidTransitionError(f"expected {state.value}, in {self.state.value}")

    def _require_driving(self) -> None:
        if self.state is not SelectionState.MODE_SELECTED or self.mode != "driving":
            raise InvalidTransitionError("carpooling applies only while driving is selected")

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "mode": self.mode,
            "prompt": self.prompt.to_dict() if self.prompt else None,
            "is_carpooling": self.is_carpooling,
            "passenger_count": self.passenger_count,
            "per_person_carbon_kg": self.per_person_carbon_kg,
        }
