"""
Damped nonlinear least squares (Levenberg-Marquardt).

Minimizes ``||r(x)||**2`` by solving the damped normal equations

    (J^T J + lambda * diag(J^T J)) delta = -J^T r

at each iteration. A step that lowers the objective is accepted and the
damping is reduced; otherwise the damping is raised and the step retried
without counting an iteration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from xafsforge.core.errors import NonFiniteResidualError, SingularSystemError

logger = logging.getLogger(__name__)

ResidualFn = Callable[[NDArray], NDArray]
JacobianFn = Callable[[NDArray, NDArray], NDArray]

DAMPING_DECREASE = 0.1
DAMPING_INCREASE = 10.0


class TerminationReason(Enum):
    """Why the optimizer stopped."""

    CONVERGED = "converged"  # relative decrease below tolerance
    STALLED = "stalled"  # retry budget exhausted
    MAX_ITERATIONS = "max_iterations"
    ZERO_RESIDUAL = "zero_residual"


@dataclass
class OptimizationState:
    """Mutable state of one optimizer run."""

    iteration: int = 0
    objective: float = np.inf
    damping: float = 1.0e-3
    rejections: int = 0
    total_rejections: int = 0
    converged: bool = False


@dataclass
class LeastSquaresSolution:
    """Container for damped least-squares results."""

    x: NDArray
    residual: NDArray
    objective: float
    initial_objective: float
    iterations: int
    converged: bool
    termination: TerminationReason
    damping: float
    n_rejections: int = 0
    history: List[float] = field(default_factory=list)

    @property
    def residual_norm(self) -> float:
        return float(np.sqrt(self.objective))

    @property
    def initial_residual_norm(self) -> float:
        return float(np.sqrt(self.initial_objective))


def _check_finite(values: NDArray, iteration: int, where: str) -> None:
    if not np.all(np.isfinite(values)):
        raise NonFiniteResidualError(iteration, where)


def _damped_step(jac: NDArray, resid: NDArray, damping: float, iteration: int) -> NDArray:
    jtj = jac.T @ jac
    grad = jac.T @ resid
    scale = np.diag(jtj).copy()
    scale[scale <= 0] = 1.0
    try:
        return linalg.solve(jtj + damping * np.diag(scale), -grad)
    except linalg.LinAlgError as exc:
        raise SingularSystemError(iteration, damping) from exc
    except ValueError as exc:
        # overflow in J^T J with finite inputs
        raise NonFiniteResidualError(iteration, "normal equations") from exc


def damped_least_squares(
    residual_fn: ResidualFn,
    jacobian_fn: JacobianFn,
    x0: NDArray,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
    max_rejections: int = 10,
    initial_damping: float = 1e-3,
    min_damping: float = 1e-12,
    max_damping: float = 1e12,
) -> LeastSquaresSolution:
    """
    Levenberg-Marquardt minimization of ``||residual_fn(x)||**2``.

    Parameters
    ----------
    residual_fn : callable
        ``x -> r``
    jacobian_fn : callable
        ``(x, r) -> J`` with ``J[i, j] = dr_i/dx_j``; may return a reused buffer
    x0 : ndarray
        Starting parameters
    max_iterations : int
        Accepted-step budget
    tolerance : float
        Relative objective decrease that counts as convergence
    max_rejections : int
        Consecutive rejected steps tolerated before stopping
    initial_damping : float
        Starting damping factor
    min_damping, max_damping : float
        Damping bounds

    Returns
    -------
    LeastSquaresSolution
        Best parameters found. ``converged`` is False only when the
        iteration budget ran out.

    Raises
    ------
    SingularSystemError
        If the damped normal equations cannot be solved
    NonFiniteResidualError
        If the starting residual or a Jacobian holds NaN or Inf
    """
    x = np.array(x0, dtype=float)
    resid = residual_fn(x)
    _check_finite(resid, 0, "residual")
    state = OptimizationState(objective=float(resid @ resid), damping=initial_damping)
    initial_objective = state.objective
    history = [state.objective]
    termination = TerminationReason.MAX_ITERATIONS

    if state.objective == 0.0:
        state.converged = True
        termination = TerminationReason.ZERO_RESIDUAL

    while not state.converged and state.iteration < max_iterations:
        jac = jacobian_fn(x, resid)
        _check_finite(jac, state.iteration, "Jacobian")
        delta = _damped_step(jac, resid, state.damping, state.iteration)
        x_new = x + delta
        resid_new = residual_fn(x_new)
        objective_new = float(resid_new @ resid_new)

        if not (np.isfinite(objective_new) and objective_new < state.objective):
            state.rejections += 1
            state.total_rejections += 1
            state.damping = min(state.damping * DAMPING_INCREASE, max_damping)
            logger.debug(
                "LM step rejected (%d/%d), damping -> %.3g",
                state.rejections, max_rejections, state.damping,
            )
            if state.rejections > max_rejections:
                state.converged = True
                termination = TerminationReason.STALLED
            continue

        relative_decrease = (state.objective - objective_new) / state.objective
        x, resid = x_new, resid_new
        state.objective = objective_new
        state.iteration += 1
        state.rejections = 0
        state.damping = max(state.damping * DAMPING_DECREASE, min_damping)
        history.append(objective_new)
        logger.debug(
            "LM iteration %d: objective=%.6g rel_decrease=%.3g damping=%.3g",
            state.iteration, objective_new, relative_decrease, state.damping,
        )

        if objective_new == 0.0:
            state.converged = True
            termination = TerminationReason.ZERO_RESIDUAL
        elif relative_decrease < tolerance:
            state.converged = True
            termination = TerminationReason.CONVERGED

    return LeastSquaresSolution(
        x=x,
        residual=resid,
        objective=state.objective,
        initial_objective=initial_objective,
        iterations=state.iteration,
        converged=state.converged,
        termination=termination,
        damping=state.damping,
        n_rejections=state.total_rejections,
        history=history,
    )
