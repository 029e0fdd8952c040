"""Unknown registry: name interning, shorting groups and row allocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

GROUND = "0"
GROUND_ALIASES: Tuple[str, ...] = ("0", "gnd", "gnd!")


class UnknownKind(Enum):
    X = "x"
    Y = "y"
    SCALE_X = "sx"
    SCALE_Y = "sy"
    ANGLE = "a"

    @property
    def is_scale(self) -> bool:
        return self in (UnknownKind.SCALE_X, UnknownKind.SCALE_Y)


class PhaseError(RuntimeError):
    """Raised when the discover-then-register protocol is violated."""


@dataclass
class Unknown:
    """A named scalar layout variable."""

    name: str
    kind: Optional[UnknownKind]
    index: int
    default: float = 0.0

    def __str__(self) -> str:  # pragma: no cover - trivial string formatting
        return self.name


class UnknownRegistry:
    """Arena of unknowns with union-find shorting over integer indices.

    Names are interned once by :meth:`declare`. Shorting (:meth:`group`) is only
    allowed before :meth:`freeze`; rows are only handed out afterwards. The
    ground node (index 0) is always the representative of its group and never
    receives a row.
    """

    def __init__(self) -> None:
        self._unknowns: List[Unknown] = []
        self._by_name: Dict[str, int] = {}
        self._parent: List[int] = []
        self._rank: List[int] = []
        self._rows: Dict[int, int] = {}
        self._private: Dict[str, int] = {}
        self._row_names: List[str] = ["0"]
        self._frozen = False
        ground = self._intern(GROUND, None, 0.0)
        for alias in GROUND_ALIASES[1:]:
            self._by_name[alias] = ground.index

    # ------------------------------------------------------------------
    # Interning

    def _intern(self, name: str, kind: Optional[UnknownKind], default: float) -> Unknown:
        unknown = Unknown(name=name, kind=kind, index=len(self._unknowns), default=default)
        self._unknowns.append(unknown)
        self._parent.append(unknown.index)
        self._rank.append(0)
        self._by_name[name] = unknown.index
        return unknown

    def declare(self, name: str, kind: UnknownKind, default: float = 0.0) -> Unknown:
        """Return the unknown called ``name``, creating it on first use."""

        if not name:
            raise ValueError("unknown name must be non-empty")
        index = self._by_name.get(name)
        if index is not None:
            unknown = self._unknowns[index]
            if unknown.kind is not None and unknown.kind is not kind:
                raise ValueError(
                    f"unknown '{name}' already declared as {unknown.kind.value}, not {kind.value}"
                )
            return unknown
        if self._frozen:
            raise PhaseError(f"cannot declare '{name}' after the registry was frozen")
        return self._intern(name, kind, float(default))

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._unknowns)

    def __iter__(self) -> Iterator[Unknown]:
        return iter(self._unknowns[1:])

    def get(self, name: str) -> Unknown:
        try:
            return self._unknowns[self._by_name[name]]
        except KeyError as exc:
            raise KeyError(f"Unknown '{name}' was never declared") from exc

    # ------------------------------------------------------------------
    # Union-find

    def _find(self, index: int) -> int:
        root = index
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[index] != root:
            self._parent[index], index = root, self._parent[index]
        return root

    def group(self, a: str, b: str) -> bool:
        """Short ``a`` and ``b``; returns ``False`` if they already were."""

        if self._frozen:
            raise PhaseError(f"cannot group '{a}' and '{b}' after the registry was frozen")
        ua, ub = self.get(a), self.get(b)
        if ua.kind is not None and ub.kind is not None and ua.kind is not ub.kind:
            raise ValueError(
                f"cannot short '{a}' ({ua.kind.value}) with '{b}' ({ub.kind.value})"
            )
        ra, rb = self._find(ua.index), self._find(ub.index)
        if ra == rb:
            return False
        # The ground node always stays the representative
        if rb == 0 or (ra != 0 and self._rank[ra] < self._rank[rb]):
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1
        logger.debug("Shorted '%s' and '%s' (representative '%s')", a, b, self._unknowns[ra].name)
        return True

    def resolve(self, name: str) -> str:
        """Return the canonical name of the group ``name`` belongs to."""

        return self._unknowns[self._find(self.get(name).index)].name

    def are_grouped(self, a: str, b: str) -> bool:
        return self._find(self.get(a).index) == self._find(self.get(b).index)

    def is_grounded(self, name: str) -> bool:
        return self._find(self.get(name).index) == 0

    def representatives(self) -> List[Unknown]:
        """Return the canonical unknown of every group except ground."""

        return [u for u in self._unknowns[1:] if self._find(u.index) == u.index]

    # ------------------------------------------------------------------
    # Registration

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        if not self._frozen:
            self._frozen = True
            logger.info(
                "Froze unknown registry: %d names in %d groups",
                len(self._unknowns) - 1,
                len(self.representatives()),
            )

    def row_of(self, name: str) -> int:
        """Return the matrix row of ``name``'s group, allocating it lazily.

        Row 0 is the ground row and is never stamped.
        """

        if not self._frozen:
            raise PhaseError(f"row for '{name}' requested before shorting was finalized")
        root = self._find(self.get(name).index)
        if root == 0:
            return 0
        row = self._rows.get(root)
        if row is None:
            row = len(self._row_names)
            self._rows[root] = row
            self._row_names.append(self._unknowns[root].name)
        return row

    def private_row(self, name: str) -> int:
        """Return a row for an element-owned branch unknown called ``name``."""

        if not self._frozen:
            raise PhaseError(f"private row '{name}' requested before shorting was finalized")
        row = self._private.get(name)
        if row is None:
            row = len(self._row_names)
            self._private[name] = row
            self._row_names.append(name)
        return row

    @property
    def row_count(self) -> int:
        """Number of rows including the ground row."""

        return len(self._row_names)

    def row_name(self, row: int) -> str:
        return self._row_names[row]

    def rows(self) -> Dict[int, Unknown]:
        """Map every allocated (non-private) row to its canonical unknown."""

        return {row: self._unknowns[root] for root, row in self._rows.items()}
