"""Stamping elements of the equivalent network.

Every element is bound to matrix rows when it is created and re-stamps the
network on each Newton iteration through :meth:`Element.load`.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

from .biasing import BiasState, hysteresis_threshold, next_bias_state
from .config import LayoutSolverConfig
from .contributions import Contribution, hessian, partials, stamp, update
from .network import Network

logger = logging.getLogger(__name__)

Vector = Tuple[float, float]


class Element:
    """Base class for anything that stamps the network."""

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("element name must be non-empty")
        self.name = name

    def load(self, network: Network) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}({self.name!r})"


class LeakElement(Element):
    """Tiny conductance from a row toward a default value.

    Keeps groups that nothing else references from floating.
    """

    def __init__(self, name: str, row: int, target: float, conductance: float) -> None:
        super().__init__(name)
        self.row = row
        self.target = float(target)
        self.conductance = float(conductance)

    def load(self, network: Network) -> None:
        network.add_matrix(self.row, self.row, self.conductance)
        network.add_rhs(self.row, self.conductance * self.target)


class OffsetElement(Element):
    """Norton equivalent of ``highest = lowest + offset``: always-on stiff spring."""

    def __init__(
        self,
        name: str,
        lowest: int,
        highest: int,
        offset: float,
        weight: float,
        config: LayoutSolverConfig,
    ) -> None:
        super().__init__(name)
        if weight <= 0.0:
            raise ValueError(f"weight of '{name}' must be positive")
        self.lowest = lowest
        self.highest = highest
        self.offset = float(offset)
        self.conductance = config.offset_conductance / weight

    def load(self, network: Network) -> None:
        network.add_conductance(self.highest, self.lowest, self.conductance)
        network.add_current(self.highest, self.lowest, self.conductance * self.offset)


class _SwitchedElement(Element):
    """Shared hysteresis bookkeeping for one-sided constraints."""

    def __init__(self, name: str, config: LayoutSolverConfig) -> None:
        super().__init__(name)
        self.config = config
        self.state = BiasState.VIOLATED
        self.flips = 0
        self._evaluated_iteration: Optional[int] = None

    def measure(self, network: Network) -> float:
        raise NotImplementedError

    @property
    def minimum(self) -> float:
        raise NotImplementedError

    def _update_state(self, network: Network) -> None:
        if network.mode.is_initializing:
            new_state = BiasState.VIOLATED
        elif self._evaluated_iteration == network.iteration:
            # Already decided this iteration
            return
        else:
            threshold = hysteresis_threshold(
                self.config.hysteresis_threshold, network.gmin, self.config.hysteresis_gmin_factor
            )
            new_state = next_bias_state(self.state, self.measure(network), self.minimum, threshold)
        self._evaluated_iteration = network.iteration
        if new_state is not self.state:
            logger.debug(
                "%s switched %s -> %s at iteration %d",
                self.name,
                self.state.value,
                new_state.value,
                network.iteration,
            )
            self.state = new_state
            self.flips += 1
            network.is_convergent = False


class MinimumElement(_SwitchedElement):
    """One-sided ``highest - lowest - offset >= minimum`` along a single axis."""

    def __init__(
        self,
        name: str,
        lowest: int,
        highest: int,
        minimum: float,
        weight: float,
        config: LayoutSolverConfig,
        offset: float = 0.0,
    ) -> None:
        super().__init__(name, config)
        if weight <= 0.0:
            raise ValueError(f"weight of '{name}' must be positive")
        self.lowest = lowest
        self.highest = highest
        self._minimum = float(minimum)
        self.offset = float(offset)
        self.g_on = config.on_conductance_factor / weight
        self.g_off = 1.0 / weight

    @property
    def minimum(self) -> float:
        return self._minimum

    def measure(self, network: Network) -> float:
        return network.value_at(self.highest) - (network.value_at(self.lowest) + self.offset)

    def load(self, network: Network) -> None:
        self._update_state(network)
        g = self.g_on if self.state is BiasState.VIOLATED else self.g_off
        network.add_conductance(self.highest, self.lowest, g)
        network.add_current(self.highest, self.lowest, g * (self.offset + self._minimum))


class SlopedMinimumElement(_SwitchedElement):
    """One-sided ``normal · ((x2, y2) - (x1, y1) - offset) >= minimum``.

    When ``aligned`` is set, a branch row additionally keeps the displacement
    parallel to the normal (its perpendicular component equals the offset's).
    Matrix entries whose coefficient is structurally zero (axis-aligned normals)
    are never stamped.
    """

    def __init__(
        self,
        name: str,
        nodes: Sequence[int],
        normal: Vector,
        minimum: float,
        weight: float,
        config: LayoutSolverConfig,
        offset: Vector = (0.0, 0.0),
        branch: Optional[int] = None,
    ) -> None:
        super().__init__(name, config)
        if weight <= 0.0:
            raise ValueError(f"weight of '{name}' must be positive")
        nx, ny = float(normal[0]), float(normal[1])
        length = math.hypot(nx, ny)
        if length == 0.0:
            raise ValueError(f"The normal ({nx}, {ny}) is zero for {name}")
        self.normal = (nx / length, ny / length)
        self.nodes = tuple(nodes)
        if len(self.nodes) != 4:
            raise ValueError("a sloped minimum needs the rows of x1, y1, x2 and y2")
        self._minimum = float(minimum)
        self.offset = (float(offset[0]), float(offset[1]))
        self.branch = branch
        self.g_on = config.on_conductance_factor / weight
        self.g_off = 1.0 / weight

        nx, ny = self.normal
        coefficients = (-nx, -ny, nx, ny)
        self._target = self._minimum + nx * self.offset[0] + ny * self.offset[1]
        self._pattern: List[Tuple[int, int, float]] = [
            (self.nodes[i], self.nodes[j], coefficients[i] * coefficients[j])
            for i in range(4)
            for j in range(4)
            if coefficients[i] != 0.0 and coefficients[j] != 0.0
        ]
        self._currents: List[Tuple[int, float]] = [
            (self.nodes[i], coefficients[i]) for i in range(4) if coefficients[i] != 0.0
        ]
        # Perpendicular t = (-ny, nx) for the alignment branch
        perpendicular = (ny, -nx, -ny, nx)
        self._branch_pattern: List[Tuple[int, float]] = [
            (self.nodes[i], perpendicular[i]) for i in range(4) if perpendicular[i] != 0.0
        ]
        self._branch_rhs = -ny * self.offset[0] + nx * self.offset[1]

    @property
    def minimum(self) -> float:
        return self._minimum

    def measure(self, network: Network) -> float:
        x1, y1, x2, y2 = (network.value_at(row) for row in self.nodes)
        nx, ny = self.normal
        return nx * (x2 - x1 - self.offset[0]) + ny * (y2 - y1 - self.offset[1])

    def load(self, network: Network) -> None:
        self._update_state(network)
        g = self.g_on if self.state is BiasState.VIOLATED else self.g_off
        for row, col, value in self._pattern:
            network.add_matrix(row, col, g * value)
        for row, coefficient in self._currents:
            network.add_rhs(row, g * coefficient * self._target)
        if self.branch is not None:
            for row, coefficient in self._branch_pattern:
                network.add_matrix(self.branch, row, coefficient)
                network.add_matrix(row, self.branch, coefficient)
            network.add_rhs(self.branch, self._branch_rhs)


class BranchEquationElement(Element):
    """Enforces ``expression == 0`` through a branch unknown on ``expression.row``.

    The branch value acts as a multiplier: the expression's gradient is stamped
    into the column of the branch for every unknown it depends on.
    The multiplier times the expression's curvature is linearized into the
    unknowns' own rows, which is what holds free angles and stretch scales
    that nothing but a leak pulls on.
    """

    def __init__(self, name: str, expression: Contribution) -> None:
        super().__init__(name)
        self.expression = expression

    @property
    def branch(self) -> int:
        return self.expression.row

    def residual(self, network: Network) -> float:
        return update(self.expression, network.solution)

    def load(self, network: Network) -> None:
        update(self.expression, network.solution)
        stamp(self.expression, network, 1.0)
        for column, derivative in partials(self.expression).items():
            network.add_matrix(column, self.branch, derivative)
        multiplier = network.value_at(self.branch)
        if multiplier == 0.0:
            return
        for (row, column), curvature in hessian(self.expression).items():
            network.add_matrix(row, column, multiplier * curvature)
            network.add_rhs(row, multiplier * curvature * network.value_at(column))
