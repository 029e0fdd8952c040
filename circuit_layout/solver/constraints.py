"""The layout constraints: offset, minimum, sloped minimum and pin orientation."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

from ..ast import Span
from ..diagnostics import ErrorCode
from .contributions import wrap_angle
from .elements import MinimumElement, OffsetElement, SlopedMinimumElement
from .network import Network
from .presence import (
    DiscoveryContext,
    OrientationContext,
    Presence,
    RegistrationContext,
    coordinate_kind,
    is_ground,
    node_of,
)
from .unknowns import UnknownKind

logger = logging.getLogger(__name__)

Vector = Tuple[float, float]


def _pair_kind(name: str, a: str, b: str) -> UnknownKind:
    if is_ground(a) and is_ground(b):
        raise ValueError(f"'{name}' cannot relate the ground node to itself")
    if is_ground(a):
        return coordinate_kind(b)
    kind = coordinate_kind(a)
    if not is_ground(b) and coordinate_kind(b) is not kind:
        raise ValueError(f"'{name}' mixes x and y coordinates ('{a}' and '{b}')")
    return kind


def _normalize_pair(lowest: str, highest: str, amount: float) -> Tuple[str, str, float]:
    """Return the pair ordered so that ``lowest <= highest`` holds for ``amount >= 0``."""

    if amount < 0.0:
        return highest, lowest, -amount
    return lowest, highest, amount


class OffsetConstraint(Presence):
    """``highest = lowest + offset``.

    A zero offset is resolved by shorting the two unknowns; anything else is an
    always-on Norton spring.
    """

    kind = "offset"

    def __init__(
        self,
        name: str,
        lowest: str,
        highest: str,
        offset: float = 0.0,
        weight: float = 1.0,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        self.lowest, self.highest, self.offset = _normalize_pair(lowest, highest, float(offset))
        self.weight = float(weight)
        self.unknown_kind = _pair_kind(name, self.lowest, self.highest)
        self.shorted = False
        self.element: Optional[OffsetElement] = None

    def discover(self, ctx: DiscoveryContext) -> None:
        if not ctx.require_nodes(self, (node_of(self.lowest), node_of(self.highest))):
            return
        ctx.declare(self.lowest, self.unknown_kind)
        ctx.declare(self.highest, self.unknown_kind)
        if self.offset == 0.0:
            ctx.group(self.lowest, self.highest)
            self.shorted = True

    def register(self, ctx: RegistrationContext) -> None:
        if self.skipped or self.shorted:
            return
        self.element = OffsetElement(
            self.name,
            ctx.row(self.lowest),
            ctx.row(self.highest),
            self.offset,
            self.weight,
            ctx.config,
        )
        ctx.add(self.element)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.skipped:
            return []
        distance = network.value(self.highest) - network.value(self.lowest)
        return [("offset", abs(distance - self.offset))]


class MinimumConstraint(Presence):
    """One-sided ``highest - lowest >= minimum``.

    A negative minimum swaps the two unknowns, so ``minimum=-5`` reads as
    "``lowest`` at least 5 past ``highest``". ``minimum=None`` takes the
    configured default spacing.
    """

    kind = "minimum"

    def __init__(
        self,
        name: str,
        lowest: str,
        highest: str,
        minimum: Optional[float] = None,
        weight: float = 1.0,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        if minimum is not None and minimum < 0.0:
            lowest, highest, minimum = highest, lowest, -minimum
        self.lowest = lowest
        self.highest = highest
        self.minimum = minimum
        self.weight = float(weight)
        self.unknown_kind = _pair_kind(name, lowest, highest)
        self.element: Optional[MinimumElement] = None

    def discover(self, ctx: DiscoveryContext) -> None:
        if not ctx.require_nodes(self, (node_of(self.lowest), node_of(self.highest))):
            return
        ctx.declare(self.lowest, self.unknown_kind)
        ctx.declare(self.highest, self.unknown_kind)

    def register(self, ctx: RegistrationContext) -> None:
        if self.skipped:
            return
        if self.minimum is None:
            self.minimum = ctx.config.default_spacing
        self.element = MinimumElement(
            self.name,
            ctx.row(self.lowest),
            ctx.row(self.highest),
            self.minimum,
            self.weight,
            ctx.config,
        )
        ctx.add(self.element)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.skipped or self.element is None:
            return []
        return [("minimum", max(0.0, self.element.minimum - self.element.measure(network)))]


class SlopedMinimumConstraint(Presence):
    """``normal · ((x2, y2) - (x1, y1) - offset) >= minimum``.

    With ``aligned`` (the default) the displacement is also kept parallel to
    the normal.
    """

    kind = "sloped"

    def __init__(
        self,
        name: str,
        x1: str,
        y1: str,
        x2: str,
        y2: str,
        normal: Vector,
        minimum: Optional[float] = None,
        offset: Vector = (0.0, 0.0),
        weight: float = 1.0,
        aligned: bool = True,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        nx, ny = float(normal[0]), float(normal[1])
        if nx == 0.0 and ny == 0.0:
            raise ValueError(f"'{name}' has a zero normal")
        self.x1, self.y1, self.x2, self.y2 = x1, y1, x2, y2
        self.normal = (nx, ny)
        self.minimum = minimum
        self.offset = (float(offset[0]), float(offset[1]))
        self.weight = float(weight)
        self.aligned = aligned
        self.element: Optional[SlopedMinimumElement] = None

    @property
    def names(self) -> Tuple[str, str, str, str]:
        return self.x1, self.y1, self.x2, self.y2

    def discover(self, ctx: DiscoveryContext) -> None:
        if not ctx.require_nodes(self, [node_of(name) for name in self.names]):
            return
        for name, kind in zip(self.names, (UnknownKind.X, UnknownKind.Y, UnknownKind.X, UnknownKind.Y)):
            ctx.declare(name, kind)

    def register(self, ctx: RegistrationContext) -> None:
        if self.skipped:
            return
        if self.minimum is None:
            self.minimum = ctx.config.default_spacing
        branch = ctx.private_row(f"{self.name}.align") if self.aligned else None
        self.element = SlopedMinimumElement(
            self.name,
            [ctx.row(name) for name in self.names],
            self.normal,
            self.minimum,
            self.weight,
            ctx.config,
            offset=self.offset,
            branch=branch,
        )
        ctx.add(self.element)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.skipped or self.element is None:
            return []
        result = [("minimum", max(0.0, self.element.minimum - self.element.measure(network)))]
        if self.aligned:
            x1, y1, x2, y2 = (network.value(name) for name in self.names)
            nx, ny = self.element.normal
            dx = x2 - x1 - self.offset[0]
            dy = y2 - y1 - self.offset[1]
            result.append(("alignment", abs(nx * dy - ny * dx)))
        return result


class PinOrientationConstraint(Presence):
    """Turns the owner of ``pin`` so that the pin faces ``orientation``.

    Runs in the orientation pass, before any coordinate is declared, because
    fixed symbol angles feed into the pin placement stamps.
    """

    order = -2
    kind = "orientation"

    def __init__(
        self,
        name: str,
        pin: str,
        orientation: Vector,
        invert: bool = False,
        span: Optional[Span] = None,
    ) -> None:
        super().__init__(name, span)
        owner, sep, pin_name = pin.partition(".")
        if not sep or not owner or not pin_name:
            raise ValueError(f"'{pin}' is not a SYMBOL.PIN reference")
        self.owner = owner
        self.pin = pin_name
        self.orientation = (float(orientation[0]), float(orientation[1]))
        self.invert = invert
        self.resolved: Optional[Vector] = None
        self._symbol = None

    def orient(self, ctx: OrientationContext) -> None:
        symbol = ctx.symbol(self.owner)
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

        ox, oy = self.orientation
        length = math.hypot(ox, oy)
        if length == 0.0:
            return
        if self.invert:
            ox, oy = -ox, -oy
        self.resolved = (ox / length, oy / length)
        self._symbol = symbol
        if not symbol.apply_orientation(pin, self.resolved, self, ctx.diagnostics):
            logger.debug("'%s' did not change the orientation of '%s'", self.name, self.owner)

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        if self.skipped or self.resolved is None or self._symbol is None:
            return []
        local = self._symbol.pins[self.pin].orientation
        if local is None or (local[0] == 0.0 and local[1] == 0.0):
            return []
        angle = self._symbol.angle_value(network) + math.atan2(local[1], local[0])
        target = math.atan2(self.resolved[1], self.resolved[0])
        return [("orientation", abs(wrap_angle(angle - target)))]
