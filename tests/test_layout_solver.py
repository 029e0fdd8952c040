import math

import pytest

from circuit_layout import parse_program, validate
from circuit_layout.diagnostics import ErrorCode
from circuit_layout.solver import (
    LayoutModel,
    LayoutSolveError,
    LayoutSolverConfig,
    MinimumConstraint,
    OffsetConstraint,
    Pin,
    PinOrientationConstraint,
    Point,
    SolveOptions,
    Symbol,
    build_network,
    solve,
    solve_program,
    translate,
)
from circuit_layout.solver.unknowns import PhaseError


def _two_points():
    model = LayoutModel()
    model.add(Point("P1", x=0.0, y=0.0))
    model.add(Point("P2"))
    return model


def test_minimum_alone_is_tight():
    model = _two_points()
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))

    solution = solve(model)

    assert solution.success
    gap = solution.value("P2.x") - solution.value("P1.x")
    assert gap >= 10.0 - 1e-6
    assert gap == pytest.approx(10.0, abs=1e-6)


def test_minimum_dominates_shorter_offset():
    model = _two_points()
    model.add(OffsetConstraint("o", "P1.x", "P2.x", 5.0))
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))

    solution = solve(model)

    assert solution.success
    assert solution.value("P2.x") - solution.value("P1.x") == pytest.approx(10.0, abs=1e-2)
    offsets = [entry for entry in solution.residual_breakdown if entry.name == "o"]
    assert offsets and offsets[0].residual > 1.0
    assert any(d.code is ErrorCode.CONTRADICTION and d.source == "o" for d in solution.diagnostics)


def test_longer_offset_releases_minimum():
    model = _two_points()
    model.add(OffsetConstraint("o", "P1.x", "P2.x", 15.0))
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))

    solution = solve(model)

    assert solution.success
    assert solution.value("P2.x") - solution.value("P1.x") == pytest.approx(15.0, abs=1e-2)


def test_offset_alone_is_exact():
    model = _two_points()
    model.add(OffsetConstraint("o", "P1.y", "P2.y", 7.5))

    solution = solve(model)

    assert solution.success
    assert solution.value("P2.y") - solution.value("P1.y") == pytest.approx(7.5, abs=1e-6)
    assert solution.max_residual < 1e-6


def test_negative_offset_swaps_endpoints():
    constraint = OffsetConstraint("o", "A.x", "B.x", -4.0)

    assert (constraint.lowest, constraint.highest, constraint.offset) == ("B.x", "A.x", 4.0)


def test_zero_offset_shorts_rows_without_stamps():
    model = LayoutModel()
    model.add(Point("A"))
    model.add(Point("B"))
    zero = model.add(OffsetConstraint("o", "A.x", "B.x", 0.0))

    network, elements = build_network(model, LayoutSolverConfig())

    assert network.row_of("A.x") == network.row_of("B.x")
    assert zero.element is None
    assert all(not element.name.startswith("o") for element in elements)


def test_missing_pin_is_reported_and_solve_continues():
    model = _two_points()
    symbol = Symbol("R1")
    symbol.add_pin(Pin("a", (-1.0, 0.0), (-1.0, 0.0)))
    model.add(symbol)
    model.add(PinOrientationConstraint("o", "R1.zz", (1.0, 0.0)))
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))

    solution = solve(model)

    assert solution.success
    missing = [d for d in solution.diagnostics if d.code is ErrorCode.COULD_NOT_FIND_PIN]
    assert len(missing) == 1
    assert "'zz'" in missing[0].message and "'R1'" in missing[0].message
    assert solution.value("P2.x") == pytest.approx(10.0, abs=1e-6)


def test_pin_orientation_turns_symbol():
    model = LayoutModel()
    symbol = Symbol("R1")
    symbol.add_pin(Pin("a", (-1.0, 0.0), (-1.0, 0.0)))
    symbol.add_pin(Pin("b", (1.0, 0.0), (1.0, 0.0)))
    model.add(symbol)
    orientation = model.add(PinOrientationConstraint("o", "R1.b", (0.0, 1.0)))

    solution = solve(model)

    assert orientation.resolved == (0.0, 1.0)
    assert solution.placements["R1"].angle == pytest.approx(math.pi / 2)
    ax, ay = solution.point_coords["R1.a"]
    bx, by = solution.point_coords["R1.b"]
    assert bx - ax == pytest.approx(0.0, abs=1e-9)
    assert by - ay == pytest.approx(2.0, abs=1e-9)


def test_conflicting_orientation_is_a_warning():
    model = LayoutModel()
    symbol = Symbol("R1", angle=0.0)
    symbol.add_pin(Pin("b", (1.0, 0.0), (1.0, 0.0)))
    model.add(symbol)
    model.add(PinOrientationConstraint("o", "R1.b", (0.0, 1.0)))

    solution = solve(model)

    assert solution.success
    assert any(d.code is ErrorCode.CONFLICTING_ORIENTATION for d in solution.diagnostics)
    assert solution.placements["R1"].angle == 0.0


def test_shorting_is_refused_after_freeze():
    model = _two_points()
    config = LayoutSolverConfig()
    network, _ = build_network(model, config)

    with pytest.raises(PhaseError):
        network.registry.group("P1.x", "P2.x")


def test_raise_on_failure():
    options = SolveOptions(config=LayoutSolverConfig(max_iterations=2, gmin_steps=0), raise_on_failure=True)
    model = _two_points()
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))
    # Two iterations are enough when nothing switches
    assert solve(model, options).success

    model = _two_points()
    model.add(OffsetConstraint("o", "P1.x", "P2.x", 15.0))
    model.add(MinimumConstraint("m", "P1.x", "P2.x", 10.0))
    with pytest.raises(LayoutSolveError) as exc:
        solve(model, options)
    assert not exc.value.solution.success
    assert "did not converge" in str(exc.value)


CIRCUIT = """
scene "Divider"
point IN [x=0, y=0]
point N
symbol R1
pin R1.a [at=(-1, 0), dir=left]
pin R1.b [at=(1, 0), dir=right]
symbol R2
pin R2.a [at=(-1, 0), dir=left]
pin R2.b [at=(1, 0), dir=right]
wire IN R1.a [dir=right, minimum=5]
wire R1.b N [dir=right, minimum=3]
wire N R2.a [dir=down, minimum=8]
"""


def test_script_end_to_end():
    program = parse_program(CIRCUIT)
    validate(program)

    solution = solve_program(program)

    assert solution.success
    assert solution.diagnostics == []
    assert solution.placements["R1"].angle == pytest.approx(0.0)
    # R2.a takes the wire coming down, so R2 is turned by a quarter turn
    assert solution.placements["R2"].angle == pytest.approx(math.pi / 2)
    in_x, in_y = solution.point_coords["IN"]
    n_x, n_y = solution.point_coords["N"]
    a1x, a1y = solution.point_coords["R1.a"]
    b1x, b1y = solution.point_coords["R1.b"]
    a2x, a2y = solution.point_coords["R2.a"]
    b2x, b2y = solution.point_coords["R2.b"]
    assert a1x - in_x == pytest.approx(5.0, abs=1e-4)
    assert a1y == in_y
    assert b1x - a1x == pytest.approx(2.0, abs=1e-6)
    assert n_x - b1x == pytest.approx(3.0, abs=1e-4)
    assert n_y == b1y
    assert a2x == n_x
    assert a2y - n_y == pytest.approx(8.0, abs=1e-4)
    assert b2x == pytest.approx(a2x, abs=1e-9)
    assert b2y - a2y == pytest.approx(2.0, abs=1e-6)


def test_stretchable_symbol_is_sized_by_extent():
    program = parse_program(
        """
        symbol S [stretch=true]
        pin S.a [at=(-1, 0)]
        pin S.b [at=(1, 0)]
        extent S.b [normal=(1, 0), distance=20]
        """
    )
    validate(program)

    solution = solve(translate(program))

    assert solution.success
    placement = solution.placements["S"]
    assert placement.scale_x == pytest.approx(20.0, abs=1e-4)
    assert placement.scale_y == pytest.approx(1.0, abs=1e-6)
    bx, _ = solution.point_coords["S.b"]
    ax, _ = solution.point_coords["S.a"]
    assert bx - ax == pytest.approx(40.0, abs=1e-3)


def test_diagonal_wire_uses_aligned_sloped_minimum():
    program = parse_program(
        """
        point A [x=0, y=0]
        point B
        wire A B [dir=(1, 1), minimum=10]
        """
    )

    solution = solve(translate(program))

    assert solution.success
    bx, by = solution.point_coords["B"]
    assert bx == pytest.approx(10.0 / math.sqrt(2.0), abs=1e-4)
    assert by == pytest.approx(10.0 / math.sqrt(2.0), abs=1e-4)


def test_wire_to_missing_node_is_skipped():
    program = parse_program(
        """
        point A [x=0, y=0]
        wire A Q [dir=right]
        """
    )

    solution = solve(translate(program))

    assert solution.success
    assert [d.code for d in solution.diagnostics] == [ErrorCode.COULD_NOT_FIND_NODE]
    assert solution.diagnostics[0].span.line == 3


def _pin_distance(solution, symbol, pin):
    placement = solution.placements[symbol]
    px, py = solution.point_coords[f"{symbol}.{pin}"]
    return math.hypot(px - placement.x, py - placement.y)


def test_free_angle_turns_toward_pinned_point():
    program = parse_program(
        """
        symbol R1 [angle=free]
        pin R1.b [at=(5, 0)]
        point P [x=0, y=20]
        offset P.x R1.b.x
        offset P.y R1.b.y
        """
    )
    validate(program)

    solution = solve(translate(program))

    assert solution.success
    bx, by = solution.point_coords["R1.b"]
    assert bx == pytest.approx(0.0, abs=1e-3)
    assert by == pytest.approx(20.0, abs=1e-3)
    assert _pin_distance(solution, "R1", "b") == pytest.approx(5.0, abs=1e-6)
    # Leaks pull the symbol toward the origin, so the pin ends up almost straight above it
    assert solution.placements["R1"].angle == pytest.approx(math.pi / 2, abs=0.05)


def test_free_angle_symbol_wired_to_fixed_point():
    program = parse_program(
        """
        symbol R1 [angle=free]
        pin R1.b [at=(5, 0)]
        point P [x=0, y=20]
        wire R1.b P [dir=down, minimum=10]
        """
    )
    validate(program)

    solution = solve(translate(program))

    assert solution.success
    bx, by = solution.point_coords["R1.b"]
    assert bx == pytest.approx(0.0, abs=1e-3)
    assert 20.0 - by >= 10.0 - 1e-3
    assert _pin_distance(solution, "R1", "b") == pytest.approx(5.0, abs=1e-6)
