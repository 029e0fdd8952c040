"""Contribution graph: closed-form values and Jacobian stamps of layout expressions.

A contribution is a node of a small expression tree bound to one equation row.
``update`` recomputes every node's value and its local derivatives from the
latest solution (children first); ``stamp`` then adds
``derivative * d(value)/d(unknown)`` into the Jacobian of that row.

The outermost node of a ``stamp`` call owns the residual correction: it adds
``-derivative * value`` to the right-hand side and passes the row down as the
residual slot, so that direct leaves add ``derivative * x`` (the ``J·x`` part).
The linearized row then reads ``J·x_new = J·x - f(x)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np
from scipy.special import expit

from .network import Network
from .unknowns import UnknownKind

_LOG2 = math.log(2.0)


class ContributionKind(Enum):
    CONSTANT = "constant"
    DIRECT = "direct"
    ADDED = "added"
    MULTIPLIED = "multiplied"
    SKEWED = "skewed"
    PROJECTION = "projection"
    OFFSET_X = "offset_x"
    OFFSET_Y = "offset_y"


class ContributionError(ValueError):
    """Raised when contributions cannot be combined."""


@dataclass(eq=False)
class Contribution:
    """One node of the expression graph.

    ``children`` and ``coefficients`` are interpreted per ``kind``:

    - ``ADDED``: ``sum(coefficients[i] * children[i])``
    - ``MULTIPLIED``: ``children[0] * children[1]``
    - ``SKEWED``: ``log(1 + exp(children[0])) / log(2)``
    - ``PROJECTION``: children ``(sx, sy, a)``, ``vector`` is the unit normal and
      ``angle`` the local direction being transformed
    - ``OFFSET_X`` / ``OFFSET_Y``: children ``(base, sx, sy, a)``, ``vector`` is the
      relative offset
    """

    kind: ContributionKind
    row: int
    children: Tuple["Contribution", ...] = ()
    coefficients: Tuple[float, ...] = ()
    column: int = 0
    unknown_kind: Optional[UnknownKind] = None
    vector: Tuple[float, float] = (0.0, 0.0)
    angle: float = 0.0
    value: float = 0.0
    local: Tuple[float, ...] = field(default=(), repr=False)
    curvature: Tuple[Tuple[int, int, float], ...] = field(default=(), repr=False)

    def __repr__(self) -> str:
        return f"Contribution({self.kind.value}, row={self.row}, value={self.value:.6g})"


# ----------------------------------------------------------------------
# Construction


def wrap_angle(value: float) -> float:
    """Wrap ``value`` into ``[-pi, pi)``."""

    return (value + math.pi) % (2.0 * math.pi) - math.pi


def constant(row: int, value: float, kind: Optional[UnknownKind] = None) -> Contribution:
    value = float(value)
    if kind is UnknownKind.ANGLE:
        value = wrap_angle(value)
    elif kind is not None and kind.is_scale:
        value = max(value, 0.0)
    return Contribution(ContributionKind.CONSTANT, row, unknown_kind=kind, value=value)


def direct(row: int, column: int, kind: Optional[UnknownKind] = None) -> Contribution:
    return Contribution(ContributionKind.DIRECT, row, column=column, unknown_kind=kind, local=(1.0,))


def _check_rows(nodes: Sequence[Contribution]) -> int:
    row = nodes[0].row
    for node in nodes[1:]:
        if node.row != row:
            raise ContributionError(
                f"Cannot combine contributions from different rows ({row} and {node.row})"
            )
    return row


def added(*terms: Tuple[float, Contribution]) -> Contribution:
    """Return ``sum(k * c for k, c in terms)``; nested sums are flattened."""

    if not terms:
        raise ContributionError("Cannot add an empty list of contributions")
    coefficients = []
    children = []
    for k, node in terms:
        if node.kind is ContributionKind.ADDED:
            coefficients.extend(k * c for c in node.coefficients)
            children.extend(node.children)
        else:
            coefficients.append(float(k))
            children.append(node)
    row = _check_rows(children)
    return Contribution(
        ContributionKind.ADDED,
        row,
        children=tuple(children),
        coefficients=tuple(coefficients),
        local=tuple(coefficients),
    )


def multiplied(a: Contribution, b: Contribution) -> Contribution:
    row = _check_rows((a, b))
    return Contribution(ContributionKind.MULTIPLIED, row, children=(a, b), local=(0.0, 0.0))


def skewed(a: Contribution) -> Contribution:
    return Contribution(ContributionKind.SKEWED, a.row, children=(a,), local=(0.0,))


def _unit(normal: Tuple[float, float]) -> Tuple[float, float]:
    nx, ny = float(normal[0]), float(normal[1])
    length = math.hypot(nx, ny)
    if length == 0.0:
        raise ContributionError("Normal is (0, 0)")
    return nx / length, ny / length


def projection(
    sx: Contribution,
    sy: Contribution,
    a: Contribution,
    angle: float,
    normal: Tuple[float, float],
) -> Contribution:
    """Dot product of the local direction ``angle``, scaled and rotated, with ``normal``."""

    row = _check_rows((sx, sy, a))
    return Contribution(
        ContributionKind.PROJECTION,
        row,
        children=(sx, sy, a),
        vector=_unit(normal),
        angle=float(angle),
        local=(0.0, 0.0, 0.0),
    )


def offset_x(
    x: Contribution,
    sx: Contribution,
    sy: Contribution,
    a: Contribution,
    relative: Tuple[float, float],
) -> Contribution:
    """X-coordinate of ``relative`` after scaling, rotation and translation by ``x``."""

    row = _check_rows((x, sx, sy, a))
    return Contribution(
        ContributionKind.OFFSET_X,
        row,
        children=(x, sx, sy, a),
        vector=(float(relative[0]), float(relative[1])),
        local=(1.0, 0.0, 0.0, 0.0),
    )


def offset_y(
    y: Contribution,
    sx: Contribution,
    sy: Contribution,
    a: Contribution,
    relative: Tuple[float, float],
) -> Contribution:
    """Y-coordinate of ``relative`` after scaling, rotation and translation by ``y``."""

    row = _check_rows((y, sx, sy, a))
    return Contribution(
        ContributionKind.OFFSET_Y,
        row,
        children=(y, sx, sy, a),
        vector=(float(relative[0]), float(relative[1])),
        local=(1.0, 0.0, 0.0, 0.0),
    )


# ----------------------------------------------------------------------
# Evaluation


def update(node: Contribution, solution: np.ndarray) -> float:
    """Recompute ``node`` (and its subtree) from ``solution``; returns the value."""

    kind = node.kind
    if kind is ContributionKind.CONSTANT:
        return node.value
    if kind is ContributionKind.DIRECT:
        node.value = float(solution[node.column]) if node.column else 0.0
        return node.value

    for child in node.children:
        update(child, solution)

    if kind is ContributionKind.ADDED:
        node.value = sum(k * c.value for k, c in zip(node.coefficients, node.children))
    elif kind is ContributionKind.MULTIPLIED:
        a, b = node.children
        node.value = a.value * b.value
        node.local = (b.value, a.value)
        node.curvature = ((0, 1, 1.0),)
    elif kind is ContributionKind.SKEWED:
        x = node.children[0].value
        node.value = float(np.logaddexp(0.0, x)) / _LOG2
        sigma = float(expit(x))
        node.local = (sigma / _LOG2,)
        node.curvature = ((0, 0, sigma * (1.0 - sigma) / _LOG2),)
    elif kind is ContributionKind.PROJECTION:
        sx, sy, a = (c.value for c in node.children)
        px, py = math.cos(node.angle), math.sin(node.angle)
        nx, ny = node.vector
        ca, sa = math.cos(a), math.sin(a)
        rx = sx * px * ca - sy * py * sa
        ry = sx * px * sa + sy * py * ca
        node.value = rx * nx + ry * ny
        node.local = (
            px * ca * nx + px * sa * ny,
            -py * sa * nx + py * ca * ny,
            -ry * nx + rx * ny,
        )
        node.curvature = (
            (0, 2, px * (-sa * nx + ca * ny)),
            (1, 2, -py * (ca * nx + sa * ny)),
            (2, 2, -node.value),
        )
    elif kind is ContributionKind.OFFSET_X:
        base, sx, sy, a = (c.value for c in node.children)
        rx, ry = node.vector
        c, s = math.cos(a), math.sin(a)
        node.value = base + sx * rx * c - sy * ry * s
        node.local = (1.0, rx * c, -ry * s, -(sx * rx * s + sy * ry * c))
        node.curvature = ((1, 3, -rx * s), (2, 3, -ry * c), (3, 3, -(node.value - base)))
    elif kind is ContributionKind.OFFSET_Y:
        base, sx, sy, a = (c.value for c in node.children)
        rx, ry = node.vector
        c, s = math.cos(a), math.sin(a)
        node.value = base + sx * rx * s + sy * ry * c
        node.local = (1.0, rx * s, ry * c, sx * rx * c - sy * ry * s)
        node.curvature = ((1, 3, rx * c), (2, 3, -ry * s), (3, 3, -(node.value - base)))
    else:  # pragma: no cover - exhaustive over ContributionKind
        raise ContributionError(f"unsupported contribution kind {kind}")
    return node.value


def stamp(node: Contribution, network: Network, derivative: float, rhs: Optional[int] = None) -> None:
    """Add ``derivative * d(node)/d(unknown)`` to ``node.row`` for every unknown.

    ``rhs`` is the residual slot handed down by an enclosing node; ``None`` means
    this call is the outermost one and owns the residual correction.
    """

    kind = node.kind
    if kind is ContributionKind.CONSTANT:
        if rhs is None:
            network.add_rhs(node.row, -derivative * node.value)
        return
    if kind is ContributionKind.DIRECT:
        network.add_matrix(node.row, node.column, derivative)
        if rhs is not None:
            network.add_rhs(rhs, derivative * node.value)
        return
    if kind is ContributionKind.ADDED:
        for k, child in zip(node.coefficients, node.children):
            stamp(child, network, derivative * k, rhs)
        return

    if rhs is None:
        rhs = node.row
        network.add_rhs(rhs, -derivative * node.value)
    for d, child in zip(node.local, node.children):
        stamp(child, network, derivative * d, rhs)


def depends_on(node: Contribution) -> FrozenSet[int]:
    """Return the rows of every unknown ``node`` depends on."""

    if node.kind is ContributionKind.DIRECT:
        return frozenset((node.column,)) if node.column else frozenset()
    result: FrozenSet[int] = frozenset()
    for child in node.children:
        result = result | depends_on(child)
    return result


def partials(node: Contribution) -> Dict[int, float]:
    """Return ``{column: d(node)/d(unknown)}`` from the last :func:`update`."""

    result: Dict[int, float] = {}

    def _walk(current: Contribution, factor: float) -> None:
        if current.kind is ContributionKind.CONSTANT:
            return
        if current.kind is ContributionKind.DIRECT:
            if current.column:
                result[current.column] = result.get(current.column, 0.0) + factor
            return
        for d, child in zip(current.local, current.children):
            _walk(child, factor * d)

    _walk(node, 1.0)
    return result


def hessian(node: Contribution) -> Dict[Tuple[int, int], float]:
    """Return ``{(column, column): d2(node)/d(unknown)2}`` from the last :func:`update`.

    Both orderings of an off-diagonal pair are present. Linear nodes only pass
    their children's curvature through; nonlinear nodes add the outer products
    of their children's gradients weighted by ``curvature``.
    """

    result: Dict[Tuple[int, int], float] = {}

    def _add(i: int, j: int, value: float) -> None:
        if value != 0.0:
            result[(i, j)] = result.get((i, j), 0.0) + value

    def _walk(current: Contribution, factor: float) -> None:
        if current.kind in (ContributionKind.CONSTANT, ContributionKind.DIRECT):
            return
        for d, child in zip(current.local, current.children):
            if d != 0.0:
                _walk(child, factor * d)
        if not current.curvature:
            return
        gradients = [partials(child) for child in current.children]
        for k, l, h in current.curvature:
            weight = factor * h
            for i, gi in gradients[k].items():
                for j, gj in gradients[l].items():
                    _add(i, j, weight * gi * gj)
                    if k != l:
                        _add(j, i, weight * gi * gj)

    _walk(node, 1.0)
    return result
