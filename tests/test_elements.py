import math

import numpy as np
import pytest

from circuit_layout.solver.config import LayoutSolverConfig
from circuit_layout.solver.contributions import added, constant, direct, offset_x
from circuit_layout.solver.elements import (
    BranchEquationElement,
    LeakElement,
    OffsetElement,
    SlopedMinimumElement,
)
from circuit_layout.solver.network import IterationMode, Network
from circuit_layout.solver.newton import iterate, solve_network
from circuit_layout.solver.unknowns import UnknownKind, UnknownRegistry


def _network(*names):
    registry = UnknownRegistry()
    for name in names:
        registry.declare(name, UnknownKind.X if name.endswith("x") else UnknownKind.Y)
    registry.freeze()
    network = Network(registry)
    return network, [network.row_of(name) for name in names]


def _touched_rows(network):
    touched = set()
    for row, col, _ in network.stamps():
        touched.add(row)
        touched.add(col)
    return touched


def test_offset_element_reaches_exact_offset_alone():
    network, (a, b) = _network("A.x", "B.x")
    config = LayoutSolverConfig()
    elements = [
        OffsetElement("o", a, b, 5.0, 1.0, config),
        LeakElement("a.leak", a, 0.0, 1.0),
    ]

    result = iterate(network, elements, max_iterations=10, abs_tol=1e-9, rel_tol=0.0)

    assert result.converged
    assert math.isclose(result.solution[b] - result.solution[a], 5.0, rel_tol=1e-9)


def test_sloped_minimum_skips_structurally_zero_entries():
    network, rows = _network("A.x", "A.y", "B.x", "B.y")
    config = LayoutSolverConfig()
    element = SlopedMinimumElement("s", rows, (0.0, 2.0), 10.0, 1.0, config)

    network.begin_iteration(IterationMode.JUNCTION)
    element.load(network)

    assert _touched_rows(network) == {rows[1], rows[3]}
    assert element.normal == (0.0, 1.0)


def test_sloped_minimum_alignment_couples_only_perpendicular_rows():
    network, rows = _network("A.x", "A.y", "B.x", "B.y")
    branch = network.private_row("s.align")
    element = SlopedMinimumElement("s", rows, (1.0, 0.0), 10.0, 1.0, LayoutSolverConfig(), branch=branch)

    network.begin_iteration(IterationMode.JUNCTION)
    element.load(network)

    branch_cells = {(r, c) for r, c, _ in network.stamps() if branch in (r, c)}
    assert branch_cells == {(branch, rows[1]), (rows[1], branch), (branch, rows[3]), (rows[3], branch)}


def test_sloped_minimum_places_point_along_normal():
    network, rows = _network("A.x", "A.y", "B.x", "B.y")
    branch = network.private_row("s.align")
    config = LayoutSolverConfig()
    elements = [
        SlopedMinimumElement("s", rows, (3.0, 4.0), 10.0, 1.0, config, branch=branch),
        LeakElement("ax", rows[0], 0.0, 1.0),
        LeakElement("ay", rows[1], 0.0, 1.0),
        LeakElement("bx", rows[2], 0.0, 1e-6),
        LeakElement("by", rows[3], 0.0, 1e-6),
    ]

    result = solve_network(network, elements, config)

    assert result.converged
    dx = result.solution[rows[2]] - result.solution[rows[0]]
    dy = result.solution[rows[3]] - result.solution[rows[1]]
    assert dx == pytest.approx(6.0, abs=1e-3)
    assert dy == pytest.approx(8.0, abs=1e-3)


def test_sloped_minimum_rejects_zero_normal():
    with pytest.raises(ValueError):
        SlopedMinimumElement("s", [1, 2, 3, 4], (0.0, 0.0), 1.0, 1.0, LayoutSolverConfig())


def test_branch_equation_enforces_nonlinear_placement():
    network, (x, pin) = _network("S.x", "S.p.x")
    branch = network.private_row("S.p.place.x")
    # pin = x + 2 * cos(a) with a fixed at 60 degrees
    expression = added(
        (
            1.0,
            offset_x(
                direct(branch, x),
                constant(branch, 1.0),
                constant(branch, 1.0),
                constant(branch, math.radians(60.0)),
                (2.0, 0.0),
            ),
        ),
        (-1.0, direct(branch, pin)),
    )
    elements = [
        BranchEquationElement("place", expression),
        LeakElement("x", x, 3.0, 1.0),
    ]

    result = iterate(network, elements, max_iterations=10, abs_tol=1e-12, rel_tol=0.0)

    assert result.converged
    assert result.solution[x] == pytest.approx(3.0)
    assert result.solution[pin] == pytest.approx(4.0)
    assert np.isfinite(result.solution).all()
