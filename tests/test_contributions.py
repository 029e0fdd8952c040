import math

import numpy as np
import pytest

from circuit_layout.solver.contributions import (
    ContributionError,
    added,
    constant,
    depends_on,
    direct,
    hessian,
    multiplied,
    offset_x,
    offset_y,
    partials,
    projection,
    skewed,
    stamp,
    update,
    wrap_angle,
)
from circuit_layout.solver.network import Network
from circuit_layout.solver.unknowns import UnknownKind, UnknownRegistry

ROW = 9


def _central_difference(node, solution, column, h=1e-6):
    plus = solution.copy()
    minus = solution.copy()
    plus[column] += h
    minus[column] -= h
    return (update(node, plus) - update(node, minus)) / (2.0 * h)


def _check_against_differences(node, solution):
    update(node, solution)
    exact = partials(node)
    for column in depends_on(node):
        numeric = _central_difference(node, solution, column)
        update(node, solution)
        assert math.isclose(exact.get(column, 0.0), numeric, rel_tol=1e-6, abs_tol=1e-8)


def test_constant_clamps_angles_and_lengths():
    assert math.isclose(constant(ROW, 2.5 * math.pi, UnknownKind.ANGLE).value, 0.5 * math.pi)
    assert constant(ROW, -2.0, UnknownKind.SCALE_X).value == 0.0
    assert constant(ROW, -2.0).value == -2.0
    assert -math.pi <= wrap_angle(math.pi) < math.pi


def test_multiplied_value_and_product_rule():
    solution = np.array([0.0, 3.0, -2.0, 0.7])
    a = added((2.0, direct(ROW, 1)), (1.0, direct(ROW, 3)))
    b = skewed(direct(ROW, 2))
    node = multiplied(a, b)

    value = update(node, solution)

    assert math.isclose(value, a.value * b.value)
    _check_against_differences(node, solution)
    exact = partials(node)
    # d(ab)/dx1 = b * da/dx1
    assert math.isclose(exact[1], 2.0 * b.value)


def test_multiplied_shared_unknown_sums_both_branches():
    solution = np.array([0.0, 1.5])
    node = multiplied(direct(ROW, 1), direct(ROW, 1))

    update(node, solution)

    assert math.isclose(partials(node)[1], 3.0)


def test_projection_at_zero_angle_is_plain_dot_product():
    solution = np.zeros(2)
    node = projection(
        constant(ROW, 1.0), constant(ROW, 1.0), constant(ROW, 0.0), math.atan2(4.0, 3.0), (0.6, 0.8)
    )

    # unit direction (0.6, 0.8) dotted with itself
    assert math.isclose(update(node, solution), 1.0)

    node = projection(constant(ROW, 1.0), constant(ROW, 1.0), constant(ROW, 0.0), 0.0, (3.0, 4.0))
    assert math.isclose(update(node, solution), 0.6)


def test_projection_at_quarter_turn_rotates_direction():
    solution = np.zeros(2)
    # (1, 0) turned by 90 degrees is (0, 1)
    node = projection(constant(ROW, 1.0), constant(ROW, 1.0), constant(ROW, math.pi / 2), 0.0, (0.0, 1.0))
    assert math.isclose(update(node, solution), 1.0)

    node = projection(constant(ROW, 1.0), constant(ROW, 1.0), constant(ROW, math.pi / 2), 0.0, (1.0, 0.0))
    assert math.isclose(update(node, solution), 0.0, abs_tol=1e-12)


def test_projection_derivatives_through_scale_and_angle():
    solution = np.array([0.0, 1.3, 0.4, 0.35])
    node = projection(direct(ROW, 1), skewed(direct(ROW, 2)), direct(ROW, 3), 0.8, (1.0, -2.0))

    _check_against_differences(node, solution)


def test_offset_nodes_transform_relative_offset():
    solution = np.array([0.0, 10.0, 20.0])
    one = constant(ROW, 1.0)
    quarter = constant(ROW, math.pi / 2)

    x = offset_x(direct(ROW, 1), one, one, quarter, (2.0, 0.0))
    y = offset_y(direct(ROW, 2), one, one, quarter, (2.0, 0.0))

    assert math.isclose(update(x, solution), 10.0, abs_tol=1e-12)
    assert math.isclose(update(y, solution), 22.0)


def test_offset_derivatives():
    solution = np.array([0.0, 1.0, 2.0, 0.5, -0.3])
    args = (direct(ROW, 2), direct(ROW, 3), direct(ROW, 4), (1.5, -0.5))

    _check_against_differences(offset_x(direct(ROW, 1), *args), solution)
    _check_against_differences(offset_y(direct(ROW, 1), *args), solution)


def test_skewed_is_one_at_zero():
    node = skewed(direct(ROW, 1))

    assert math.isclose(update(node, np.zeros(2)), 1.0)
    _check_against_differences(node, np.array([0.0, -1.2]))


def _check_curvature_against_differences(node, solution, h=1e-6):
    update(node, solution)
    exact = hessian(node)
    columns = sorted(depends_on(node))
    for j in columns:
        plus = solution.copy()
        minus = solution.copy()
        plus[j] += h
        minus[j] -= h
        update(node, plus)
        upper = partials(node)
        update(node, minus)
        lower = partials(node)
        for i in columns:
            numeric = (upper.get(i, 0.0) - lower.get(i, 0.0)) / (2.0 * h)
            assert math.isclose(exact.get((i, j), 0.0), numeric, rel_tol=1e-5, abs_tol=1e-7)
    update(node, solution)


def test_curvature_of_rotated_offsets():
    solution = np.array([0.0, 1.0, 2.0, 0.5, -0.3])
    args = (direct(ROW, 2), direct(ROW, 3), direct(ROW, 4), (1.5, -0.5))

    _check_curvature_against_differences(offset_x(direct(ROW, 1), *args), solution)
    _check_curvature_against_differences(offset_y(direct(ROW, 1), *args), solution)


def test_curvature_through_skewed_scale_and_projection():
    solution = np.array([0.0, 1.3, 0.4, 0.35])
    node = projection(direct(ROW, 1), skewed(direct(ROW, 2)), direct(ROW, 3), 0.8, (1.0, -2.0))

    _check_curvature_against_differences(node, solution)


def test_curvature_of_sums_and_products():
    solution = np.array([0.0, 2.0, -3.0])
    node = added((2.0, multiplied(direct(ROW, 1), direct(ROW, 2))), (1.0, direct(ROW, 1)))

    update(node, solution)

    assert hessian(node) == {(1, 2): 2.0, (2, 1): 2.0}
    assert hessian(direct(ROW, 1)) == {}


def test_combining_different_rows_is_an_error():
    with pytest.raises(ContributionError):
        added((1.0, direct(1, 1)), (1.0, direct(2, 1)))
    with pytest.raises(ContributionError):
        multiplied(direct(1, 1), constant(2, 1.0))
    with pytest.raises(ContributionError):
        projection(constant(1, 1.0), constant(1, 1.0), constant(1, 1.0), 0.0, (0.0, 0.0))


def _network(names):
    registry = UnknownRegistry()
    for name in names:
        registry.declare(name, UnknownKind.X)
    registry.freeze()
    network = Network(registry)
    rows = [network.row_of(name) for name in names]
    return network, rows


def test_stamp_linearizes_nonlinear_expression():
    network, (row_a, row_b) = _network(["A.x", "B.x"])
    network.solution[row_a] = 2.0
    network.solution[row_b] = 3.0
    branch = network.private_row("f")
    network.begin_iteration(network.mode)

    # f = a * b - 4 on the branch row
    node = added((1.0, multiplied(direct(branch, row_a), direct(branch, row_b))), (-1.0, constant(branch, 4.0)))
    update(node, network.solution)
    stamp(node, network, 1.0)

    matrix = {}
    for r, c, v in network.stamps():
        matrix[(r, c)] = matrix.get((r, c), 0.0) + v
    assert matrix == {(branch, row_a): 3.0, (branch, row_b): 2.0}
    # J·x - f(x) = (3*2 + 2*3) - (6 - 4) = 10
    assert math.isclose(network.rhs()[branch], 10.0)
