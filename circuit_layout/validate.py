from copy import deepcopy
from numbers import Real
from typing import Any, Dict, Set

from .ast import Program, Stmt
from .solver import TranslationError, translate
from .solver.translator import DIRECTIONS

_ALLOWED_OPTS: Dict[str, Set[str]] = {
    'scene': set(),
    'point': {'x', 'y'},
    'symbol': {'angle', 'scale', 'sx', 'sy', 'stretch'},
    'pin': {'at', 'dir'},
    'offset': {'offset', 'weight'},
    'minimum': {'minimum', 'weight'},
    'sloped': {'normal', 'minimum', 'offset', 'weight', 'aligned'},
    'orient': {'dir', 'invert'},
    'wire': {'dir', 'minimum'},
    'extent': {'normal', 'distance'},
}

_REQUIRED_OPTS: Dict[str, Set[str]] = {
    'orient': {'dir'},
    'wire': {'dir'},
    'extent': {'distance'},
}


class ValidationError(Exception):
    pass


def _fail(s: Stmt, message: str) -> None:
    raise ValidationError(f'[line {s.span.line}, col {s.span.col}] {message}')


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _check_vector(s: Stmt, key: str, value: Any, *, allow_names: bool) -> None:
    if allow_names and isinstance(value, str):
        if value not in DIRECTIONS:
            _fail(s, f'{key} must be one of {"|".join(DIRECTIONS)} or a pair (x, y)')
        return
    if not (isinstance(value, tuple) and len(value) == 2 and all(_is_number(v) for v in value)):
        _fail(s, f'{key} must be a pair of numbers (x, y)')
    if allow_names and value[0] == 0 and value[1] == 0:
        _fail(s, f'{key} must not be (0, 0)')


def validate(prog: Program) -> None:
    names: Dict[str, Stmt] = {}
    for s in prog.stmts:
        k = s.kind
        for key in s.opts:
            if key not in _ALLOWED_OPTS[k]:
                _fail(s, f'{k} does not support option "{key}"')
        for key in _REQUIRED_OPTS.get(k, ()):
            if key not in s.opts:
                _fail(s, f'{k} requires option "{key}"')

        if k in ('point', 'symbol'):
            name = s.data['name']
            if name.lower() in ('gnd', 'gnd!'):
                _fail(s, f'"{name}" is reserved for the ground node')
            if name in names:
                other = names[name].span
                _fail(s, f'"{name}" is already defined at line {other.line}')
            names[name] = s

        for key in ('x', 'y', 'scale', 'sx', 'sy', 'offset', 'minimum', 'distance', 'weight'):
            if key in s.opts and not (key == 'offset' and k == 'sloped'):
                if not _is_number(s.opts[key]):
                    _fail(s, f'{k} option "{key}" must be a number')
        for key in ('scale', 'sx', 'sy', 'weight'):
            if key in s.opts and s.opts[key] <= 0:
                _fail(s, f'{k} option "{key}" must be positive')
        for key in ('stretch', 'invert', 'aligned'):
            if key in s.opts and not isinstance(s.opts[key], bool):
                _fail(s, f'{k} option "{key}" must be true|false')

        if k == 'symbol' and 'angle' in s.opts:
            angle = s.opts['angle']
            if angle != 'free' and not _is_number(angle):
                _fail(s, 'symbol angle must be a number of degrees or "free"')
        elif k == 'pin' and 'at' in s.opts:
            _check_vector(s, 'at', s.opts['at'], allow_names=False)
        elif k == 'sloped' and 'offset' in s.opts:
            _check_vector(s, 'offset', s.opts['offset'], allow_names=False)
        for key in ('dir', 'normal'):
            if key in s.opts:
                _check_vector(s, key, s.opts[key], allow_names=True)
        if k in ('wire', 'sloped') and s.data['a'] == s.data['b']:
            _fail(s, f'{k} needs two different nodes')

    try:
        translate(deepcopy(prog))
    except TranslationError as exc:
        span = exc.stmt.span
        raise ValidationError(f'[line {span.line}, col {span.col}] {exc}') from exc
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
