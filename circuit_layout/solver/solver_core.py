"""Top-level solve: build the network for a layout model, run Newton, read the result back.

The phases run in a fixed order: orientation, unknown discovery, registration
of elements (plus one leak per unknown group), then the nonlinear solve. The
solution reports point coordinates, symbol placements and a per-constraint
residual breakdown together with the diagnostics collected along the way.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ..diagnostics import DiagnosticBag, ErrorCode
from ..logging_utils import apply_debug_logging
from .config import LayoutSolverConfig, get_solver_config
from .elements import Element, LeakElement
from .model import (
    ConstraintResidual,
    LayoutModel,
    LayoutSolveError,
    Solution,
    SolveOptions,
    SymbolPlacement,
)
from .network import Network
from .newton import solve_network
from .presence import OrientationContext, RegistrationContext, order_presences

logger = logging.getLogger(__name__)


def _add_leaks(ctx: RegistrationContext) -> int:
    """Give every group a row and a tiny pull toward its default value."""

    registry = ctx.registry
    for unknown in registry.representatives():
        ctx.row(unknown.name)
    count = 0
    for row, unknown in sorted(registry.rows().items()):
        ctx.add(LeakElement(f"{unknown.name}.leak", row, unknown.default, ctx.config.leak_conductance))
        count += 1
    return count


def build_network(
    model: LayoutModel,
    config: LayoutSolverConfig,
    diagnostics: Optional[DiagnosticBag] = None,
) -> Tuple[Network, List[Element]]:
    """Run the orientation, discovery and registration passes over ``model``."""

    diagnostics = diagnostics if diagnostics is not None else DiagnosticBag()
    presences = order_presences(model.presences)
    logger.info("Building network for %d presence(s)", len(presences))

    orientation = OrientationContext(model.symbols, model.node_names(), diagnostics, config)
    for presence in presences:
        presence.orient(orientation)
    discovery = orientation.finish()

    for presence in presences:
        if not presence.skipped:
            presence.discover(discovery)
    registration = discovery.finalize()

    for presence in presences:
        if not presence.skipped:
            presence.register(registration)
    leaks = _add_leaks(registration)
    logger.info("Grounded %d unknown group(s) through leak conductances", leaks)
    return registration.finish()


def _residual_report(model: LayoutModel, network: Network) -> List[ConstraintResidual]:
    report: List[ConstraintResidual] = []
    for presence in model.presences:
        if presence.skipped:
            continue
        for label, value in presence.residuals(network):
            report.append(ConstraintResidual(presence.name, presence.kind, label, float(value), presence.span))
    return report


def _read_back(model: LayoutModel, network: Network):
    values: Dict[str, float] = {unknown.name: network.value(unknown.name) for unknown in network.registry}
    coords: Dict[str, Tuple[float, float]] = {}
    for name, point in model.points.items():
        coords[name] = point.location(network)
    placements: Dict[str, SymbolPlacement] = {}
    for name, symbol in model.symbols.items():
        x, y = symbol.location(network)
        sx, sy = symbol.scale_values(network)
        placements[name] = SymbolPlacement(x, y, symbol.angle_value(network), sx, sy)
        for pin in symbol.pins:
            node = symbol.pin_node(pin)
            coords[node] = (network.value(f"{node}.x"), network.value(f"{node}.y"))
    return values, coords, placements


def solve(model: LayoutModel, options: SolveOptions = SolveOptions()) -> Solution:
    """Lay out ``model``: build the network, run Newton and read the unknowns back."""

    config = options.config if options.config is not None else get_solver_config()
    config.validate()
    diagnostics = DiagnosticBag()

    network, elements = build_network(model, config, diagnostics)
    for diagnostic in diagnostics:
        logger.warning("Layout diagnostic: %s", diagnostic)
    logger.info("Solving network with %d row(s) and %d element(s)", network.size - 1, len(elements))

    result = solve_network(network, elements, config)
    network.solution = result.solution

    values, coords, placements = _read_back(model, network)
    breakdown = _residual_report(model, network)
    max_residual = max((entry.residual for entry in breakdown), default=0.0)

    warnings: List[str] = []
    if not result.converged:
        warnings.append(f"Layout solve did not converge: {result.message}")
        logger.warning("Layout solve did not converge: %s", result.message)
    else:
        for entry in breakdown:
            if entry.residual > config.residual_tolerance:
                diagnostics.warning(
                    ErrorCode.CONTRADICTION,
                    f"'{entry.name}' ({entry.label}) is off by {entry.residual:.6g}; "
                    "it contradicts other constraints",
                    entry.span,
                    entry.name,
                )
    warnings.extend(str(diagnostic) for diagnostic in diagnostics)

    solution = Solution(
        values=values,
        point_coords=coords,
        placements=placements,
        success=result.converged,
        max_residual=max_residual,
        residual_breakdown=breakdown,
        warnings=warnings,
        diagnostics=list(diagnostics),
        iterations=result.iterations,
    )
    logger.info(
        "Layout solve finished success=%s iterations=%d max_residual=%.3e",
        solution.success,
        solution.iterations,
        solution.max_residual,
    )
    if options.raise_on_failure and not solution.success:
        raise LayoutSolveError(warnings[0], solution)
    return solution


apply_debug_logging(globals(), logger=logger)
