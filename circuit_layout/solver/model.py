"""Core data structures for the layout pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..ast import Program, Span
from ..diagnostics import Diagnostic
from .config import LayoutSolverConfig
from .layout import Point, Symbol
from .presence import Presence

NodeName = str


class LayoutSolveError(RuntimeError):
    """Raised by :func:`solve` when ``raise_on_failure`` is set and the solve failed."""

    def __init__(self, message: str, solution: "Solution"):
        super().__init__(message)
        self.solution = solution


@dataclass
class LayoutModel:
    """Presences of one diagram, in the order they were created."""

    program: Optional[Program] = None
    presences: List[Presence] = field(default_factory=list)
    symbols: Dict[str, Symbol] = field(default_factory=dict)
    points: Dict[str, Point] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add(self, presence: Presence) -> Presence:
        if any(existing.name == presence.name for existing in self.presences):
            raise ValueError(f"duplicate presence name '{presence.name}'")
        if isinstance(presence, Symbol):
            if presence.name in self.points:
                raise ValueError(f"'{presence.name}' is already a point")
            self.symbols[presence.name] = presence
        elif isinstance(presence, Point):
            if presence.name in self.symbols:
                raise ValueError(f"'{presence.name}' is already a symbol")
            self.points[presence.name] = presence
        self.presences.append(presence)
        return presence

    def node_names(self) -> Set[NodeName]:
        """Every node a wire or constraint may reference: points, symbols and pins."""

        nodes: Set[NodeName] = set(self.points)
        for symbol in self.symbols.values():
            nodes.add(symbol.name)
            nodes.update(symbol.pin_node(pin) for pin in symbol.pins)
        return nodes


@dataclass
class SolveOptions:
    """Per-call solver options; ``config`` overrides the process-wide configuration."""

    config: Optional[LayoutSolverConfig] = None
    raise_on_failure: bool = False


@dataclass
class SymbolPlacement:
    x: float
    y: float
    angle: float
    scale_x: float
    scale_y: float


@dataclass
class ConstraintResidual:
    name: str
    kind: str
    label: str
    residual: float
    span: Optional[Span] = None

    def as_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = {
            "name": self.name,
            "kind": self.kind,
            "label": self.label,
            "residual": self.residual,
        }
        if self.span is not None:
            result["line"] = self.span.line
            result["col"] = self.span.col
        return result


@dataclass
class Solution:
    values: Dict[str, float]
    point_coords: Dict[NodeName, Tuple[float, float]]
    placements: Dict[str, SymbolPlacement]
    success: bool
    max_residual: float
    residual_breakdown: List[ConstraintResidual]
    warnings: List[str]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    iterations: int = 0

    def value(self, name: str) -> float:
        try:
            return self.values[name]
        except KeyError as exc:
            raise KeyError(f"Unknown '{name}' is not part of the solution") from exc
