"""Presence protocol and the contexts of the staged build pipeline.

Building the network is split into three passes over the presences, each with
its own context object:

1. ``orient``: resolve symbol orientations (:class:`OrientationContext`).
2. ``discover``: declare unknowns and short the ones known to be equal
   (:class:`DiscoveryContext`).
3. ``register``: allocate rows, build contributions and elements
   (:class:`RegistrationContext`).

A context is only handed out by finishing the previous one, and every context
refuses to be used once it has been finished.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..ast import Span
from ..diagnostics import DiagnosticBag, ErrorCode
from .config import LayoutSolverConfig
from .contributions import Contribution, constant, direct
from .elements import Element
from .network import Network
from .unknowns import GROUND, GROUND_ALIASES, PhaseError, UnknownKind, UnknownRegistry

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .layout import Symbol

logger = logging.getLogger(__name__)


def is_ground(node: str) -> bool:
    return node in GROUND_ALIASES


def coordinate(node: str, axis: str) -> str:
    """Return the unknown name of ``node``'s ``axis`` coordinate."""

    if is_ground(node):
        return GROUND
    return f"{node}.{axis}"


def coordinate_kind(name: str) -> UnknownKind:
    """Infer the kind of a coordinate unknown from its ``.x`` / ``.y`` suffix."""

    if name.endswith(".x"):
        return UnknownKind.X
    if name.endswith(".y"):
        return UnknownKind.Y
    raise ValueError(f"'{name}' is not a coordinate (expected a .x or .y suffix)")


def node_of(name: str) -> str:
    """Return the node part of a coordinate name (``R1.a.x`` -> ``R1.a``)."""

    if is_ground(name):
        return name
    node, _, _ = name.rpartition(".")
    return node


class Presence:
    """Anything that takes part in the layout: drawables and constraints.

    Presences are visited in ascending ``order``; ties keep insertion order.
    A presence that hits a structural problem sets ``skipped`` and posts a
    diagnostic instead of raising.
    """

    order = 0
    kind = "presence"

    def __init__(self, name: str, span: Optional[Span] = None) -> None:
        if not name:
            raise ValueError("presence name must be non-empty")
        self.name = name
        self.span = span
        self.skipped = False

    def orient(self, ctx: "OrientationContext") -> None:
        pass

    def discover(self, ctx: "DiscoveryContext") -> None:
        pass

    def register(self, ctx: "RegistrationContext") -> None:
        pass

    def residuals(self, network: Network) -> List[Tuple[str, float]]:
        """Return ``(label, residual)`` pairs measured on the solved network."""

        return []

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}({self.name!r})"


class _Stage:
    stage = "stage"

    def __init__(self) -> None:
        self._finished = False

    def _check_open(self) -> None:
        if self._finished:
            raise PhaseError(f"the {self.stage} pass is already finished")


class OrientationContext(_Stage):
    stage = "orientation"

    def __init__(
        self,
        symbols: Dict[str, "Symbol"],
        nodes: Set[str],
        diagnostics: DiagnosticBag,
        config: LayoutSolverConfig,
        registry: Optional[UnknownRegistry] = None,
    ) -> None:
        super().__init__()
        self.symbols = symbols
        self.nodes = nodes
        self.diagnostics = diagnostics
        self.config = config
        self._registry = registry if registry is not None else UnknownRegistry()

    def symbol(self, name: str) -> Optional["Symbol"]:
        self._check_open()
        return self.symbols.get(name)

    def finish(self) -> "DiscoveryContext":
        self._check_open()
        self._finished = True
        return DiscoveryContext(self._registry, self.symbols, self.nodes, self.diagnostics, self.config)


class DiscoveryContext(_Stage):
    stage = "discovery"

    def __init__(
        self,
        registry: UnknownRegistry,
        symbols: Dict[str, "Symbol"],
        nodes: Set[str],
        diagnostics: DiagnosticBag,
        config: LayoutSolverConfig,
    ) -> None:
        super().__init__()
        self.registry = registry
        self.symbols = symbols
        self.nodes = nodes
        self.diagnostics = diagnostics
        self.config = config

    def has_node(self, node: str) -> bool:
        return is_ground(node) or node in self.nodes

    def require_nodes(self, presence: Presence, nodes: Iterable[str]) -> bool:
        """Post a diagnostic and mark ``presence`` skipped if a node is missing."""

        for node in nodes:
            if not self.has_node(node):
                self.diagnostics.error(
                    ErrorCode.COULD_NOT_FIND_NODE,
                    f"Could not find node '{node}' referenced by '{presence.name}'",
                    presence.span,
                    presence.name,
                )
                presence.skipped = True
                return False
        return True

    def declare(self, name: str, kind: UnknownKind, default: float = 0.0) -> None:
        self._check_open()
        if is_ground(name):
            return
        self.registry.declare(name, kind, default)

    def declare_node(self, node: str) -> None:
        self.declare(coordinate(node, "x"), UnknownKind.X)
        self.declare(coordinate(node, "y"), UnknownKind.Y)

    def group(self, a: str, b: str) -> bool:
        self._check_open()
        return self.registry.group(a, b)

    def finalize(self, network: Optional[Network] = None) -> "RegistrationContext":
        """Freeze shorting and hand out the context that may allocate rows."""

        self._check_open()
        self._finished = True
        self.registry.freeze()
        if network is None:
            network = Network(self.registry, gmin=self.config.gmin)
        return RegistrationContext(self.registry, network, self.symbols, self.diagnostics, self.config)


class RegistrationContext(_Stage):
    stage = "registration"

    def __init__(
        self,
        registry: UnknownRegistry,
        network: Network,
        symbols: Dict[str, "Symbol"],
        diagnostics: DiagnosticBag,
        config: LayoutSolverConfig,
    ) -> None:
        super().__init__()
        if not registry.frozen:
            raise PhaseError("registration requires a frozen unknown registry")
        self.registry = registry
        self.network = network
        self.symbols = symbols
        self.diagnostics = diagnostics
        self.config = config
        self.elements: List[Element] = []

    def row(self, name: str) -> int:
        self._check_open()
        return self.network.row_of(name)

    def private_row(self, name: str) -> int:
        self._check_open()
        return self.network.private_row(name)

    def direct(self, row: int, name: str) -> Contribution:
        kind = None if is_ground(name) else self.registry.get(name).kind
        return direct(row, self.row(name), kind)

    def constant(self, row: int, value: float, kind: Optional[UnknownKind] = None) -> Contribution:
        return constant(row, value, kind)

    def add(self, element: Element) -> Element:
        self._check_open()
        self.elements.append(element)
        return element

    def finish(self) -> Tuple[Network, List[Element]]:
        self._check_open()
        self._finished = True
        logger.info(
            "Registered %d element(s) over %d row(s)", len(self.elements), self.network.size - 1
        )
        return self.network, list(self.elements)


def order_presences(presences: Sequence[Presence]) -> List[Presence]:
    """Stable sort by ``order``."""

    return sorted(presences, key=lambda presence: presence.order)
