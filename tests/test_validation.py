import pytest

from circuit_layout.ast import Program, Span, Stmt
from circuit_layout.parser import parse_program
from circuit_layout.validate import ValidationError, validate


def stmt(kind, data, opts=None, line=1, col=1):
    return Stmt(kind, Span(line, col), data, opts or {})


def test_validate_accepts_valid_program():
    prog = Program(
        [
            stmt('scene', {'title': 'Amplifier'}),
            stmt('point', {'name': 'VDD'}, {'x': 0, 'y': 0}),
            stmt('symbol', {'name': 'M1'}, {'angle': 90, 'scale': 2}),
            stmt('pin', {'ref': 'M1.d'}, {'at': (0, -1), 'dir': 'up'}),
            stmt('symbol', {'name': 'RL'}, {'stretch': True}),
            stmt('pin', {'ref': 'RL.a'}, {'at': (0, -1)}),
            stmt('extent', {'ref': 'RL.a'}, {'normal': 'up', 'distance': 3}),
            stmt('orient', {'ref': 'RL.a'}, {'dir': 'up', 'invert': False}),
            stmt('minimum', {'a': 'M1.d.y', 'b': 'VDD.y'}, {'minimum': 4}),
            stmt('sloped', {'a': 'VDD', 'b': 'RL'}, {'normal': (1, 1), 'offset': (0.5, 0), 'aligned': False}),
            stmt('wire', {'a': 'VDD', 'b': 'M1.d'}, {'dir': 'down'}),
        ]
    )

    validate(prog)


def test_option_not_supported():
    prog = Program([stmt('wire', {'a': 'A', 'b': 'B'}, {'dir': 'up', 'weight': 2})])

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert 'wire does not support option "weight"' in str(exc.value)


@pytest.mark.parametrize('kind, data', [('wire', {'a': 'A', 'b': 'B'}), ('orient', {'ref': 'R.a'})])
def test_direction_is_required(kind, data):
    prog = Program([stmt(kind, data)])

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert f'{kind} requires option "dir"' in str(exc.value)


@pytest.mark.parametrize(
    'opts, message_part',
    [
        ({'scale': 0}, 'option "scale" must be positive'),
        ({'stretch': 'yes'}, 'option "stretch" must be true|false'),
        ({'angle': 'sideways'}, 'symbol angle must be a number of degrees or "free"'),
    ],
)
def test_symbol_option_values(opts, message_part):
    prog = Program([stmt('symbol', {'name': 'R1'}, opts)])

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert message_part in str(exc.value)


@pytest.mark.parametrize(
    'direction, should_error',
    [('left', False), ((0, 2), False), ('north', True), ((0, 0), True), ((1, 2, 3), True)],
)
def test_wire_direction_values(direction, should_error):
    prog = Program(
        [
            stmt('point', {'name': 'A'}),
            stmt('point', {'name': 'B'}),
            stmt('wire', {'a': 'A', 'b': 'B'}, {'dir': direction}),
        ]
    )

    if should_error:
        with pytest.raises(ValidationError):
            validate(prog)
    else:
        validate(prog)


def test_names_must_be_unique():
    prog = Program(
        [
            stmt('point', {'name': 'N1'}, line=1),
            stmt('symbol', {'name': 'N1'}, line=4),
        ]
    )

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert str(exc.value) == '[line 4, col 1] "N1" is already defined at line 1'


def test_ground_name_is_reserved():
    prog = Program([stmt('point', {'name': 'GND'})])

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert 'reserved for the ground node' in str(exc.value)


def test_wire_needs_two_nodes():
    prog = Program([stmt('point', {'name': 'A'}), stmt('wire', {'a': 'A', 'b': 'A'}, {'dir': 'up'})])

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert 'wire needs two different nodes' in str(exc.value)


def test_pin_on_unknown_symbol_reports_location():
    prog = parse_program('symbol R1\npin R2.a [at=(1, 0)]')

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert str(exc.value).startswith('[line 2, col 5]')
    assert "unknown symbol 'R2'" in str(exc.value)


def test_duplicate_pin_is_rejected():
    prog = parse_program('symbol R1\npin R1.a\npin R1.a [at=(1, 0)]')

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert "pin 'a' already defined on 'R1'" in str(exc.value)


def test_validation_leaves_program_untouched():
    prog = parse_program('point A\npoint B\nwire A B [dir=right]')
    before = [(s.kind, dict(s.data), dict(s.opts)) for s in prog.stmts]

    validate(prog)

    assert [(s.kind, dict(s.data), dict(s.opts)) for s in prog.stmts] == before


@pytest.mark.parametrize(
    'source, col',
    [
        ('offset A.x B.y [offset=5]', 8),
        ('minimum A.x B.y', 9),
    ],
)
def test_pair_mixing_axes_is_rejected(source, col):
    prog = parse_program(f'point A\npoint B\n{source}')

    with pytest.raises(ValidationError) as exc:
        validate(prog)

    assert str(exc.value).startswith(f'[line 3, col {col}]')
    assert 'mixes x and y' in str(exc.value)


def test_pair_with_ground_takes_the_other_axis():
    prog = parse_program('point A\nminimum 0 A.y [minimum=2]')

    validate(prog)
