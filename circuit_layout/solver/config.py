"""Configuration helpers for solver components."""

from __future__ import annotations

import copy
from dataclasses import dataclass


@dataclass
class LayoutSolverConfig:
    """Numerical knobs consumed by the constraint elements and the Newton driver."""

    default_spacing: float = 10.0
    hysteresis_threshold: float = 1e-4
    hysteresis_gmin_factor: float = 1e6
    on_conductance_factor: float = 1e6
    offset_conductance: float = 1e3
    leak_conductance: float = 1e-6
    gmin: float = 1e-12
    max_iterations: int = 200
    abs_tol: float = 1e-6
    rel_tol: float = 1e-6
    gmin_steps: int = 6
    gmin_step_factor: float = 10.0
    residual_tolerance: float = 1e-3

    def validate(self) -> None:
        for name in ("on_conductance_factor", "offset_conductance", "leak_conductance", "gmin_step_factor"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive")
        if self.gmin < 0.0:
            raise ValueError("gmin must be non-negative")
        if self.residual_tolerance < 0.0:
            raise ValueError("residual_tolerance must be non-negative")
        if self.hysteresis_threshold < 0.0:
            raise ValueError("hysteresis_threshold must be non-negative")
        if self.max_iterations < 2:
            raise ValueError("max_iterations must allow at least two iterations")


_SOLVER_CONFIG = LayoutSolverConfig()


def get_solver_config() -> LayoutSolverConfig:
    return copy.deepcopy(_SOLVER_CONFIG)


def set_solver_config(config: LayoutSolverConfig) -> None:
    global _SOLVER_CONFIG
    config.validate()
    _SOLVER_CONFIG = copy.deepcopy(config)
