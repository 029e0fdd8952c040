"""The equivalent network: additive stamps into a sparse Newton system."""

from __future__ import annotations

import logging
import warnings
from enum import Enum
from typing import List, Optional

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.linalg import MatrixRankWarning, spsolve

from .unknowns import UnknownRegistry

logger = logging.getLogger(__name__)


class IterationMode(Enum):
    """Iteration phase as seen by the elements."""

    JUNCTION = "junction"  # network initialization
    FIX = "fix"  # fixed-point seeding iterations
    NORMAL = "normal"

    @property
    def is_initializing(self) -> bool:
        return self is not IterationMode.NORMAL


class SingularNetworkError(RuntimeError):
    """Raised when the linearized system cannot be solved."""


class Network:
    """Sparse linearized system that elements stamp into.

    Elements only ever *add* to matrix cells and right-hand side entries; they
    never read them back. Row 0 is the ground row: stamps touching it are
    dropped. ``solution`` holds the unknown values of the last completed
    iteration, indexed by row.
    """

    def __init__(self, registry: UnknownRegistry, gmin: float = 1e-12) -> None:
        if not registry.frozen:
            raise ValueError("the unknown registry must be frozen before building a network")
        self.registry = registry
        self.gmin = float(gmin)
        self.mode = IterationMode.JUNCTION
        self.iteration = 0
        self.is_convergent = True
        self.solution = np.zeros(registry.row_count, dtype=float)
        self._rows: List[int] = []
        self._cols: List[int] = []
        self._vals: List[float] = []
        self._rhs = np.zeros(registry.row_count, dtype=float)

    # ------------------------------------------------------------------
    # Row access

    @property
    def size(self) -> int:
        """Number of rows including ground."""

        return self.registry.row_count

    def row_of(self, name: str) -> int:
        row = self.registry.row_of(name)
        self._ensure_capacity()
        return row

    def private_row(self, name: str) -> int:
        row = self.registry.private_row(name)
        self._ensure_capacity()
        return row

    def _ensure_capacity(self) -> None:
        size = self.registry.row_count
        if self.solution.size < size:
            self.solution = np.concatenate([self.solution, np.zeros(size - self.solution.size)])
            self._rhs = np.concatenate([self._rhs, np.zeros(size - self._rhs.size)])

    def value(self, name: str) -> float:
        """Return the current value of unknown ``name`` (0 for ground)."""

        row = self.registry.row_of(name)
        if row == 0:
            return 0.0
        return float(self.solution[row])

    def value_at(self, row: int) -> float:
        if row == 0:
            return 0.0
        return float(self.solution[row])

    # ------------------------------------------------------------------
    # Stamping

    def begin_iteration(self, mode: IterationMode) -> None:
        self._ensure_capacity()
        self.mode = mode
        self.iteration += 1
        self.is_convergent = True
        self._rows.clear()
        self._cols.clear()
        self._vals.clear()
        self._rhs[:] = 0.0

    def add_matrix(self, row: int, col: int, value: float) -> None:
        if row == 0 or col == 0 or value == 0.0:
            return
        self._rows.append(row)
        self._cols.append(col)
        self._vals.append(float(value))

    def add_rhs(self, row: int, value: float) -> None:
        if row == 0:
            return
        self._rhs[row] += value

    def add_conductance(self, positive: int, negative: int, g: float) -> None:
        """Stamp a two-terminal conductance between ``positive`` and ``negative``."""

        self.add_matrix(positive, positive, g)
        self.add_matrix(positive, negative, -g)
        self.add_matrix(negative, positive, -g)
        self.add_matrix(negative, negative, g)

    def add_current(self, positive: int, negative: int, current: float) -> None:
        """Stamp a current source driving ``current`` into ``positive``."""

        self.add_rhs(positive, current)
        self.add_rhs(negative, -current)

    # ------------------------------------------------------------------
    # Solving

    def assemble(self, gmin: Optional[float] = None):
        """Return the reduced (ground row removed) CSC matrix and right-hand side."""

        n = self.size - 1
        gmin = self.gmin if gmin is None else gmin
        rows = np.asarray(self._rows, dtype=int) - 1
        cols = np.asarray(self._cols, dtype=int) - 1
        vals = np.asarray(self._vals, dtype=float)
        if gmin > 0.0 and n > 0:
            diag = np.arange(n, dtype=int)
            rows = np.concatenate([rows, diag])
            cols = np.concatenate([cols, diag])
            vals = np.concatenate([vals, np.full(n, gmin)])
        matrix = coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsc()
        return matrix, self._rhs[1:].copy()

    def solve(self) -> np.ndarray:
        """Solve the stamped system and return the new solution vector (with ground)."""

        n = self.size - 1
        result = np.zeros(self.size, dtype=float)
        if n == 0:
            return result
        matrix, rhs = self.assemble()
        with warnings.catch_warnings():
            warnings.simplefilter("error", MatrixRankWarning)
            try:
                x = spsolve(matrix, rhs)
            except (MatrixRankWarning, RuntimeError) as exc:
                raise SingularNetworkError(f"network matrix is singular: {exc}") from exc
        x = np.atleast_1d(np.asarray(x, dtype=float))
        if not np.all(np.isfinite(x)):
            raise SingularNetworkError("network solve produced non-finite values")
        result[1:] = x
        return result

    def stamps(self):
        """Return a copy of the current matrix stamps as ``(row, col, value)`` tuples."""

        return list(zip(self._rows, self._cols, self._vals))

    def rhs(self) -> np.ndarray:
        return self._rhs.copy()
