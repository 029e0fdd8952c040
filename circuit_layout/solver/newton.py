"""Newton-Raphson driver for the equivalent network, with Gmin stepping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .config import LayoutSolverConfig
from .elements import Element
from .network import IterationMode, Network, SingularNetworkError

logger = logging.getLogger(__name__)


@dataclass
class NewtonResult:
    """Outcome of a (possibly stepped) Newton run."""

    solution: np.ndarray
    converged: bool
    iterations: int
    gmin: float
    message: str = ""
    gmin_stepped: bool = False


def iterate(
    network: Network,
    elements: Sequence[Element],
    *,
    max_iterations: int,
    abs_tol: float,
    rel_tol: float,
    initial: Optional[np.ndarray] = None,
) -> NewtonResult:
    """Run plain Newton iterations until the step is small and no element objects.

    The first iteration runs in :attr:`IterationMode.JUNCTION` so that switched
    elements start from their most constraining state. Convergence requires a
    ``NORMAL`` iteration in which no element cleared ``network.is_convergent``.
    """

    if initial is not None:
        network.solution = np.array(initial, dtype=float, copy=True)
    previous = network.solution.copy()
    for k in range(max_iterations):
        mode = IterationMode.JUNCTION if k == 0 else IterationMode.NORMAL
        network.begin_iteration(mode)
        if previous.size < network.size:
            previous = np.concatenate([previous, np.zeros(network.size - previous.size)])
        for element in elements:
            element.load(network)
        new = network.solve()
        step = float(np.max(np.abs(new - previous))) if new.size else 0.0
        scale = float(np.max(np.abs(new))) if new.size else 0.0
        network.solution = new
        logger.debug("Newton iteration %d (%s): step=%.3e", k + 1, mode.value, step)
        if mode is IterationMode.NORMAL and network.is_convergent and step <= abs_tol + rel_tol * scale:
            return NewtonResult(new, True, k + 1, network.gmin, "converged")
        previous = new
    return NewtonResult(
        network.solution.copy(),
        False,
        max_iterations,
        network.gmin,
        f"no convergence after {max_iterations} iterations",
    )


def solve_network(
    network: Network,
    elements: Sequence[Element],
    config: LayoutSolverConfig,
) -> NewtonResult:
    """Solve ``network``; falls back to Gmin stepping when plain Newton fails."""

    kwargs = dict(max_iterations=config.max_iterations, abs_tol=config.abs_tol, rel_tol=config.rel_tol)
    start = np.zeros(network.size, dtype=float)
    network.gmin = config.gmin
    try:
        result = iterate(network, elements, initial=start, **kwargs)
    except SingularNetworkError as exc:
        result = NewtonResult(start, False, 0, network.gmin, str(exc))
    if result.converged:
        logger.info("Newton converged in %d iteration(s)", result.iterations)
        return result

    if config.gmin_steps <= 0:
        logger.warning("Newton failed (%s) and Gmin stepping is disabled", result.message)
        return result

    logger.info("Newton failed (%s); starting Gmin stepping", result.message)
    target = config.gmin if config.gmin > 0.0 else 1e-12
    gmin = target * config.gmin_step_factor ** config.gmin_steps
    seed = start
    total = result.iterations
    for step in range(config.gmin_steps + 1):
        network.gmin = gmin
        try:
            attempt = iterate(network, elements, initial=seed, **kwargs)
        except SingularNetworkError as exc:
            attempt = NewtonResult(seed, False, 0, gmin, str(exc))
        total += attempt.iterations
        logger.info("Gmin step %d: gmin=%.3e converged=%s", step, gmin, attempt.converged)
        if not attempt.converged:
            network.gmin = config.gmin
            return NewtonResult(
                attempt.solution,
                False,
                total,
                gmin,
                f"Gmin stepping failed at gmin={gmin:.3e}: {attempt.message}",
                gmin_stepped=True,
            )
        seed = attempt.solution
        if gmin <= target:
            break
        gmin = max(gmin / config.gmin_step_factor, target)
    network.gmin = config.gmin
    return NewtonResult(seed, True, total, gmin, "converged with Gmin stepping", gmin_stepped=True)
