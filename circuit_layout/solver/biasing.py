"""Two-state switch used to encode one-sided (minimum) constraints."""

from __future__ import annotations

from enum import Enum


class BiasState(Enum):
    """Whether a minimum constraint is currently being enforced."""

    SATISFIED = "satisfied"
    VIOLATED = "violated"


def next_bias_state(previous: BiasState, distance: float, minimum: float, threshold: float) -> BiasState:
    """Return the state after measuring ``distance`` against ``minimum``.

    Inside the dead band ``minimum ± threshold`` the previous state is kept.
    """

    margin = distance - minimum
    if margin < -threshold:
        return BiasState.VIOLATED
    if margin > threshold:
        return BiasState.SATISFIED
    return previous


def hysteresis_threshold(base: float, gmin: float, gmin_factor: float) -> float:
    """Dead band half-width; widens with Gmin so flips settle near convergence."""

    return base + gmin * gmin_factor
