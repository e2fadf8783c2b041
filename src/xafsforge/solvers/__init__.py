"""Solver package."""

from xafsforge.solvers.autobk import AutobkOptimizer, AutobkResult, BackgroundMethod
from xafsforge.solvers.damped_lsq import (
    LeastSquaresSolution,
    OptimizationState,
    TerminationReason,
    damped_least_squares,
)
from xafsforge.solvers.spline import BackgroundSpline, build_knots, knot_count
from xafsforge.solvers.workspace import Workspace

__all__ = [
    "AutobkOptimizer",
    "AutobkResult",
    "BackgroundMethod",
    "BackgroundSpline",
    "build_knots",
    "knot_count",
    "LeastSquaresSolution",
    "OptimizationState",
    "TerminationReason",
    "damped_least_squares",
    "Workspace",
]
