"""Drawable presences: free points, located symbols with pins, wires and extents."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..ast import Span
from ..diagnostics import DiagnosticBag, ErrorCode
from .constraints import MinimumConstraint, OffsetConstraint, SlopedMinimumConstraint
from .contributions import Contribution, added, multiplied, offset_x, offset_y, projection, skewed, wrap_angle
from .elements import BranchEquationElement
from .network import Network
from .presence import (
    DiscoveryContext,
    Presence,
    RegistrationContext,
    coordinate,
    is_ground,
)
from .unknowns import GROUND, UnknownKind

logger = logging.getLogger(__name__)

Vector = Tuple[float, float]

_ANGLE_TOL = 1e-9
_LOG2 = math.log(2.0)


def soft_scale(raw: float) -> float:
    """Effective scale of a stretchable symbol for the raw unknown value."""

    return float(np.logaddexp(0.0, raw)) / _LOG2


@dataclass
class Pin:
    """A connection point of a symbol, in the symbol's local frame."""

    name: str
    offset: Vector = (0.0, 0.0)
    orientation: Optional[Vector] = None
    span: Optional[Span] = None


class Point(Presence):
    """A free wire joint; given coordinates are pinned to the origin by offsets."""

    kind = "point"

    def __init__(
        self,
        name: str,
        x: Optional[float] = None,
        y: Optional[float] = None,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        self.x = x
        self.y = y
        self.fixes: List[OffsetConstraint] = []
        if x is not None:
            self.fixes.append(OffsetConstraint(f"{name}.fix.x", GROUND, f"{name}.x", x, span=span))
        if y is not None:
            self.fixes.append(OffsetConstraint(f"{name}.fix.y", GROUND, f"{name}.y", y, span=span))

    def discover(self, ctx: DiscoveryContext) -> None:
        ctx.declare_node(self.name)
        for fix in self.fixes:
            fix.discover(ctx)

    def register(self, ctx: RegistrationContext) -> None:
        for fix in self.fixes:
            fix.register(ctx)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        result = []
        for fix in self.fixes:
            result.extend(fix.residuals(network))
        return result

    def location(self, network: Network) -> Vector:
        return network.value(f"{self.name}.x"), network.value(f"{self.name}.y")


class Symbol(Presence):
    """A located drawable with a transform ``translate(x, y) · rotate(a) · scale(sx, sy)``.

    The angle is a constant unless ``free_angle`` is set; it comes from
    ``angle`` when given, otherwise from the orientation pass, otherwise 0.
    Stretchable symbols solve for raw scale unknowns that are mapped through
    a soft-plus so the effective scale stays positive.
    """

    kind = "symbol"

    def __init__(
        self,
        name: str,
        angle: Optional[float] = None,
        free_angle: bool = False,
        scale: Vector = (1.0, 1.0),
        stretch: bool = False,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        if "." in name:
            raise ValueError(f"symbol name '{name}' must not contain '.'")
        self.angle = None if angle is None else wrap_angle(angle)
        self.free_angle = free_angle
        self.scale = (float(scale[0]), float(scale[1]))
        self.stretch = stretch
        self.pins: Dict[str, Pin] = {}
        self.resolved_angle: Optional[float] = None
        self.angle_hint: Optional[float] = None
        self.oriented_by: Optional[str] = None
        self._shorted: Dict[str, Tuple[bool, bool]] = {}
        self._placements: List[BranchEquationElement] = []

    def add_pin(self, pin: Pin) -> Pin:
        if pin.name in self.pins:
            raise ValueError(f"pin '{pin.name}' already defined on '{self.name}'")
        self.pins[pin.name] = pin
        return pin

    def pin_node(self, pin: str) -> str:
        return f"{self.name}.{pin}"

    @property
    def fixed_angle(self) -> float:
        if self.angle is not None:
            return self.angle
        if self.resolved_angle is not None:
            return self.resolved_angle
        return 0.0

    @property
    def has_fixed_transform(self) -> bool:
        return not self.free_angle and not self.stretch

    # ------------------------------------------------------------------
    # Orientation pass

    def apply_orientation(
        self,
        pin: Pin,
        direction: Vector,
        source: Presence,
        diagnostics: DiagnosticBag,
    ) -> bool:
        """Turn the symbol so that ``pin`` faces ``direction`` (world frame).

        Returns ``False`` when nothing changed: the pin has no orientation, the
        symbol was already turned the same way, or it was turned differently
        (reported as a conflict).
        """

        local = pin.orientation
        if local is None or (local[0] == 0.0 and local[1] == 0.0):
            return False
        required = wrap_angle(math.atan2(direction[1], direction[0]) - math.atan2(local[1], local[0]))
        if self.free_angle:
            if self.angle_hint is None:
                self.angle_hint = required
                return True
            return False

        current = self.angle if self.angle is not None else self.resolved_angle
        if current is None:
            self.resolved_angle = required
            self.oriented_by = source.name
            logger.debug("'%s' oriented to %.6g rad by '%s'", self.name, required, source.name)
            return True
        if abs(wrap_angle(current - required)) > _ANGLE_TOL:
            diagnostics.warning(
                ErrorCode.CONFLICTING_ORIENTATION,
                f"'{source.name}' wants '{self.name}' at {math.degrees(required):.6g} degrees, "
                f"but it is already at {math.degrees(current):.6g} degrees"
                + (f" (set by '{self.oriented_by}')" if self.oriented_by else ""),
                source.span,
                source.name,
            )
        return False

    # ------------------------------------------------------------------
    # Discovery / registration

    def _world_offset(self, pin: Pin) -> Vector:
        rx, ry = pin.offset
        sx, sy = self.scale
        a = self.fixed_angle
        c, s = math.cos(a), math.sin(a)
        return sx * rx * c - sy * ry * s, sx * rx * s + sy * ry * c

    def discover(self, ctx: DiscoveryContext) -> None:
        ctx.declare_node(self.name)
        if self.free_angle:
            default = self.angle_hint if self.angle_hint is not None else self.fixed_angle
            ctx.declare(f"{self.name}.a", UnknownKind.ANGLE, default)
        if self.stretch:
            ctx.declare(f"{self.name}.sx", UnknownKind.SCALE_X, 0.0)
            ctx.declare(f"{self.name}.sy", UnknownKind.SCALE_Y, 0.0)
        for pin in self.pins.values():
            node = self.pin_node(pin.name)
            ctx.declare_node(node)
            if pin.offset == (0.0, 0.0):
                short = (True, True)
            elif self.has_fixed_transform:
                dx, dy = self._world_offset(pin)
                short = (abs(dx) < 1e-12, abs(dy) < 1e-12)
            else:
                short = (False, False)
            if short[0]:
                ctx.group(f"{self.name}.x", f"{node}.x")
            if short[1]:
                ctx.group(f"{self.name}.y", f"{node}.y")
            self._shorted[pin.name] = short

    def transform(self, ctx: RegistrationContext, row: int) -> Tuple[Contribution, Contribution, Contribution]:
        """Return ``(sx, sy, a)`` contributions bound to ``row``."""

        if self.stretch:
            sx = skewed(ctx.direct(row, f"{self.name}.sx"))
            sy = skewed(ctx.direct(row, f"{self.name}.sy"))
        else:
            sx = ctx.constant(row, self.scale[0], UnknownKind.SCALE_X)
            sy = ctx.constant(row, self.scale[1], UnknownKind.SCALE_Y)
        if self.free_angle:
            a = ctx.direct(row, f"{self.name}.a")
        else:
            a = ctx.constant(row, self.fixed_angle, UnknownKind.ANGLE)
        return sx, sy, a

    def register(self, ctx: RegistrationContext) -> None:
        for pin in self.pins.values():
            node = self.pin_node(pin.name)
            short_x, short_y = self._shorted.get(pin.name, (False, False))
            if not short_x:
                row = ctx.private_row(f"{node}.place.x")
                sx, sy, a = self.transform(ctx, row)
                base = offset_x(ctx.direct(row, f"{self.name}.x"), sx, sy, a, pin.offset)
                expression = added((1.0, base), (-1.0, ctx.direct(row, f"{node}.x")))
                self._placements.append(ctx.add(BranchEquationElement(f"{node}.place.x", expression)))
            if not short_y:
                row = ctx.private_row(f"{node}.place.y")
                sx, sy, a = self.transform(ctx, row)
                base = offset_y(ctx.direct(row, f"{self.name}.y"), sx, sy, a, pin.offset)
                expression = added((1.0, base), (-1.0, ctx.direct(row, f"{node}.y")))
                self._placements.append(ctx.add(BranchEquationElement(f"{node}.place.y", expression)))

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        return [(element.name, abs(element.residual(network))) for element in self._placements]

    # ------------------------------------------------------------------
    # Read-back

    def angle_value(self, network: Network) -> float:
        if self.free_angle:
            return wrap_angle(network.value(f"{self.name}.a"))
        return self.fixed_angle

    def scale_values(self, network: Network) -> Vector:
        if self.stretch:
            return soft_scale(network.value(f"{self.name}.sx")), soft_scale(network.value(f"{self.name}.sy"))
        return self.scale

    def location(self, network: Network) -> Vector:
        return network.value(f"{self.name}.x"), network.value(f"{self.name}.y")


class PinExtent(Presence):
    """Sizes a stretchable (or turnable) symbol: ``normal · (R(a) S pin) == distance``."""

    kind = "extent"

    def __init__(
        self,
        name: str,
        pin: str,
        normal: Vector,
        distance: float,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        owner, sep, pin_name = pin.partition(".")
        if not sep:
            raise ValueError(f"'{pin}' is not a SYMBOL.PIN reference")
        if normal[0] == 0.0 and normal[1] == 0.0:
            raise ValueError(f"'{name}' has a zero normal")
        self.owner = owner
        self.pin = pin_name
        self.normal = (float(normal[0]), float(normal[1]))
        self.distance = float(distance)
        self.element: Optional[BranchEquationElement] = None

    def discover(self, ctx: DiscoveryContext) -> None:
        symbol = ctx.symbols.get(self.owner)
        if symbol is None:
            ctx.diagnostics.error(
                ErrorCode.COULD_NOT_FIND_SYMBOL,
                f"Could not find symbol '{self.owner}' for '{self.name}'",
                self.span,
                self.name,
            )
            self.skipped = True
            return
        pin = symbol.pins.get(self.pin)
        if pin is None:
            ctx.diagnostics.error(
                ErrorCode.COULD_NOT_FIND_PIN,
                f"Could not find pin '{self.pin}' on '{self.owner}'",
                self.span,
                self.name,
            )
            self.skipped = True
            return
        if symbol.has_fixed_transform or pin.offset == (0.0, 0.0):
            ctx.diagnostics.error(
                ErrorCode.NOT_STRETCHABLE,
                f"'{self.name}' cannot size '{self.owner}': the symbol is neither stretchable nor free "
                "to turn, or the pin sits on its origin",
                self.span,
                self.name,
            )
            self.skipped = True

    def register(self, ctx: RegistrationContext) -> None:
        if self.skipped:
            return
        symbol = ctx.symbols[self.owner]
        rx, ry = symbol.pins[self.pin].offset
        row = ctx.private_row(f"{self.name}.extent")
        sx, sy, a = symbol.transform(ctx, row)
        reach = multiplied(
            ctx.constant(row, math.hypot(rx, ry)),
            projection(sx, sy, a, math.atan2(ry, rx), self.normal),
        )
        expression = added((1.0, reach), (-1.0, ctx.constant(row, self.distance)))
        self.element = ctx.add(BranchEquationElement(self.name, expression))

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.element is None:
            return []
        return [("extent", abs(self.element.residual(network)))]


class Wire(Presence):
    """A wire segment between two nodes heading along ``direction``.

    Axis-aligned wires short the coordinate across the wire and keep the
    ends at least ``minimum`` apart along it; any other direction becomes an
    aligned sloped minimum.
    """

    kind = "wire"

    def __init__(
        self,
        name: str,
        start: str,
        end: str,
        direction: Vector,
        minimum: Optional[float] = None,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        dx, dy = float(direction[0]), float(direction[1])
        length = math.hypot(dx, dy)
        if length == 0.0:
            raise ValueError(f"wire '{name}' has no direction")
        if is_ground(start) and is_ground(end):
            raise ValueError(f"wire '{name}' connects the ground node to itself")
        self.start = start
        self.end = end
        self.direction = (dx / length, dy / length)
        self.minimum = minimum

        sx, sy = coordinate(start, "x"), coordinate(start, "y")
        ex, ey = coordinate(end, "x"), coordinate(end, "y")
        if dy == 0.0:
            self.axis: Optional[str] = "x"
            lowest, highest = (sx, ex) if dx > 0.0 else (ex, sx)
            self.spacing: Presence = MinimumConstraint(f"{name}.min", lowest, highest, minimum, span=span)
            self.across = (sy, ey)
        elif dx == 0.0:
            self.axis = "y"
            lowest, highest = (sy, ey) if dy > 0.0 else (ey, sy)
            self.spacing = MinimumConstraint(f"{name}.min", lowest, highest, minimum, span=span)
            self.across = (sx, ex)
        else:
            self.axis = None
            self.spacing = SlopedMinimumConstraint(
                f"{name}.min", sx, sy, ex, ey, self.direction, minimum, span=span
            )
            self.across = None

    def discover(self, ctx: DiscoveryContext) -> None:
        if not ctx.require_nodes(self, (self.start, self.end)):
            return
        ctx.declare_node(self.start)
        ctx.declare_node(self.end)
        if self.across is not None:
            ctx.group(*self.across)
        self.spacing.discover(ctx)

    def register(self, ctx: RegistrationContext) -> None:
        if self.skipped:
            return
        self.spacing.register(ctx)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.skipped:
            return []
        return self.spacing.residuals(network)
