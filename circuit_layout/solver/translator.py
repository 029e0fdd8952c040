"""Translate a parsed layout program into presences."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Tuple

from ..ast import Program, Stmt
from .constraints import (
    MinimumConstraint,
    OffsetConstraint,
    PinOrientationConstraint,
    SlopedMinimumConstraint,
)
from .layout import Pin, PinExtent, Point, Symbol, Wire
from .model import LayoutModel
from .presence import coordinate, is_ground

logger = logging.getLogger(__name__)

Vector = Tuple[float, float]

# Screen coordinates: y grows downwards
DIRECTIONS = {
    "right": (1.0, 0.0),
    "left": (-1.0, 0.0),
    "up": (0.0, -1.0),
    "down": (0.0, 1.0),
}


class TranslationError(ValueError):
    """Error raised when a statement cannot be turned into presences."""

    def __init__(self, stmt: Stmt, message: str):
        super().__init__(message)
        self.stmt = stmt


def parse_direction(value: Any) -> Vector:
    if isinstance(value, str):
        try:
            return DIRECTIONS[value.lower()]
        except KeyError as exc:
            raise ValueError(f"unknown direction '{value}'") from exc
    if isinstance(value, tuple) and len(value) == 2 and all(isinstance(v, (int, float)) for v in value):
        return float(value[0]), float(value[1])
    raise ValueError(f"invalid direction {value!r}")


def parse_vector(value: Any, what: str) -> Vector:
    if isinstance(value, tuple) and len(value) == 2 and all(isinstance(v, (int, float)) for v in value):
        return float(value[0]), float(value[1])
    raise ValueError(f"{what} must be a pair of numbers, got {value!r}")


def _presence_name(stmt: Stmt) -> str:
    return f"{stmt.kind}@{stmt.span.line}"


def _symbol_opts(stmt: Stmt) -> Tuple[Optional[float], bool, Vector, bool]:
    opts = stmt.opts
    angle: Optional[float] = None
    free = False
    raw_angle = opts.get("angle")
    if raw_angle == "free":
        free = True
    elif raw_angle is not None:
        angle = math.radians(float(raw_angle))
    scale = float(opts.get("scale", 1.0))
    sx = float(opts.get("sx", scale))
    sy = float(opts.get("sy", scale))
    return angle, free, (sx, sy), bool(opts.get("stretch", False))


def _is_pin(model: LayoutModel, node: str) -> bool:
    owner, sep, pin = node.partition(".")
    symbol = model.symbols.get(owner)
    return bool(sep) and symbol is not None and pin in symbol.pins


def _translate_stmt(model: LayoutModel, stmt: Stmt) -> None:
    kind = stmt.kind
    opts = stmt.opts
    name = _presence_name(stmt)
    if kind == "offset":
        model.add(
            OffsetConstraint(
                name,
                stmt.data["a"],
                stmt.data["b"],
                float(opts.get("offset", 0.0)),
                float(opts.get("weight", 1.0)),
                span=stmt.span,
            )
        )
    elif kind == "minimum":
        minimum = opts.get("minimum")
        model.add(
            MinimumConstraint(
                name,
                stmt.data["a"],
                stmt.data["b"],
                None if minimum is None else float(minimum),
                float(opts.get("weight", 1.0)),
                span=stmt.span,
            )
        )
    elif kind == "sloped":
        a, b = stmt.data["a"], stmt.data["b"]
        minimum = opts.get("minimum")
        model.add(
            SlopedMinimumConstraint(
                name,
                coordinate(a, "x"),
                coordinate(a, "y"),
                coordinate(b, "x"),
                coordinate(b, "y"),
                parse_direction(opts.get("normal", "right")),
                None if minimum is None else float(minimum),
                parse_vector(opts.get("offset", (0.0, 0.0)), "offset"),
                float(opts.get("weight", 1.0)),
                bool(opts.get("aligned", True)),
                span=stmt.span,
            )
        )
    elif kind == "orient":
        model.add(
            PinOrientationConstraint(
                name,
                stmt.data["ref"],
                parse_direction(opts["dir"]),
                bool(opts.get("invert", False)),
                span=stmt.span,
            )
        )
    elif kind == "wire":
        a, b = stmt.data["a"], stmt.data["b"]
        direction = parse_direction(opts["dir"])
        minimum = opts.get("minimum")
        model.add(Wire(name, a, b, direction, None if minimum is None else float(minimum), span=stmt.span))
        # The wire leaves its start pin and enters its end pin
        if not is_ground(a) and _is_pin(model, a):
            model.add(PinOrientationConstraint(f"{name}.start", a, direction, False, span=stmt.span))
        if not is_ground(b) and _is_pin(model, b):
            model.add(PinOrientationConstraint(f"{name}.end", b, direction, True, span=stmt.span))
    elif kind == "extent":
        model.add(
            PinExtent(
                name,
                stmt.data["ref"],
                parse_direction(opts.get("normal", "right")),
                float(opts["distance"]),
                span=stmt.span,
            )
        )
    else:
        raise TranslationError(stmt, f"unsupported statement '{kind}'")


def translate(program: Program) -> LayoutModel:
    """Build a :class:`LayoutModel` from ``program``.

    Points and symbols are created first and pins attached next, so that the
    remaining statements may reference them regardless of their position in
    the source.
    """

    model = LayoutModel(program=program)
    model.metadata["title"] = program.title

    for stmt in program.stmts:
        try:
            if stmt.kind == "point":
                x = stmt.opts.get("x")
                y = stmt.opts.get("y")
                model.add(
                    Point(
                        stmt.data["name"],
                        None if x is None else float(x),
                        None if y is None else float(y),
                        span=stmt.span,
                    )
                )
            elif stmt.kind == "symbol":
                angle, free, scale, stretch = _symbol_opts(stmt)
                model.add(Symbol(stmt.data["name"], angle, free, scale, stretch, span=stmt.span))
        except ValueError as exc:
            raise TranslationError(stmt, str(exc)) from exc

    for stmt in program.stmts:
        if stmt.kind != "pin":
            continue
        owner, _, pin_name = stmt.data["ref"].partition(".")
        symbol = model.symbols.get(owner)
        if symbol is None:
            raise TranslationError(stmt, f"pin '{stmt.data['ref']}' belongs to unknown symbol '{owner}'")
        try:
            offset = parse_vector(stmt.opts.get("at", (0.0, 0.0)), "pin location")
            orientation = parse_direction(stmt.opts["dir"]) if "dir" in stmt.opts else None
            symbol.add_pin(Pin(pin_name, offset, orientation, span=stmt.span))
        except ValueError as exc:
            raise TranslationError(stmt, str(exc)) from exc

    for stmt in program.stmts:
        if stmt.kind in ("scene", "point", "symbol", "pin"):
            continue
        try:
            _translate_stmt(model, stmt)
        except KeyError as exc:
            raise TranslationError(stmt, f"missing option {exc}") from exc
        except TranslationError:
            raise
        except ValueError as exc:
            raise TranslationError(stmt, str(exc)) from exc

    logger.info(
        "Translated program into %d presence(s): %d symbol(s), %d point(s)",
        len(model.presences),
        len(model.symbols),
        len(model.points),
    )
    return model
