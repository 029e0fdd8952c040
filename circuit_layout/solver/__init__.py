"""Layout solver façade: translation, network construction and Newton solving."""

from __future__ import annotations

import logging

from ..ast import Program
from .config import LayoutSolverConfig, get_solver_config, set_solver_config
from .constraints import (
    MinimumConstraint,
    OffsetConstraint,
    PinOrientationConstraint,
    SlopedMinimumConstraint,
)
from .contributions import ContributionError
from .layout import Pin, PinExtent, Point, Symbol, Wire
from .model import (
    ConstraintResidual,
    LayoutModel,
    LayoutSolveError,
    Solution,
    SolveOptions,
    SymbolPlacement,
)
from .network import SingularNetworkError
from .solver_core import build_network, solve
from .translator import TranslationError, translate
from .unknowns import PhaseError, UnknownKind, UnknownRegistry

logger = logging.getLogger(__name__)


def solve_program(program: Program, options: SolveOptions = SolveOptions()) -> Solution:
    """Translate and solve ``program`` in one go."""

    logger.info("Solving program with %d statements", len(program.stmts))
    return solve(translate(program), options)


__all__ = [
    "ConstraintResidual",
    "ContributionError",
    "LayoutModel",
    "LayoutSolveError",
    "LayoutSolverConfig",
    "MinimumConstraint",
    "OffsetConstraint",
    "PhaseError",
    "Pin",
    "PinExtent",
    "PinOrientationConstraint",
    "Point",
    "SingularNetworkError",
    "SlopedMinimumConstraint",
    "Solution",
    "SolveOptions",
    "Symbol",
    "SymbolPlacement",
    "TranslationError",
    "UnknownKind",
    "UnknownRegistry",
    "Wire",
    "build_network",
    "get_solver_config",
    "set_solver_config",
    "solve",
    "solve_program",
    "translate",
]
