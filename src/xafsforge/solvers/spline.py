"""
Cubic B-spline background for AUTOBK.

Knot positions are fixed when the spline is built; the B-spline
coefficients (``amplitudes``) are the free parameters of the fit. The
spline is linear in its amplitudes, so its derivative with respect to
amplitude ``j`` is the ``j``-th basis function.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.interpolate import BSpline, make_interp_spline

from xafsforge.core.errors import SplineKnotsError
from xafsforge.core.xafsutils import index_nearest

MIN_KNOTS = 5
MAX_KNOTS = 128
MAX_ORDER = 3


def knot_count(rbkg: float, kmin: float, kmax: float, nknots: Optional[int] = None) -> int:
    """
    Number of spline knots for a given R cutoff and k range.

    ``1 + round(2*rbkg*(kmax - kmin)/pi)`` clamped to [5, 128];
    an explicit ``nknots`` is used as given.
    """
    if nknots is not None:
        return int(nknots)
    nspl = 1 + int(round(2.0 * rbkg * (kmax - kmin) / math.pi))
    return max(MIN_KNOTS, min(MAX_KNOTS, nspl))


def build_knots(
    kpool: NDArray,
    mupool: NDArray,
    kmin: float,
    kmax: float,
    nknots: int,
) -> Tuple[NDArray, NDArray]:
    """
    Place knots and estimate starting amplitudes.

    Each knot sits at the sample of ``kpool`` nearest an evenly spaced
    target in [kmin, kmax]. Its value is a local weighted average
    ``(2*mu[i] + mu[i+5] + mu[i-5]) / 4``.

    Parameters
    ----------
    kpool : ndarray
        Increasing k of the candidate samples
    mupool : ndarray
        mu at ``kpool``
    kmin, kmax : float
        Knot range
    nknots : int
        Number of knots

    Returns
    -------
    knot_k, knot_y : ndarray
        Knot positions and values

    Raises
    ------
    SplineKnotsError
        Degenerate range, too few knots or samples, coincident knots
    """
    if kmax <= kmin:
        raise SplineKnotsError(kmin, kmax, nknots, "kmax must exceed kmin")
    if nknots < 2:
        raise SplineKnotsError(kmin, kmax, nknots, "at least 2 knots are required")
    if len(kpool) < nknots:
        raise SplineKnotsError(
            kmin, kmax, nknots, f"only {len(kpool)} data points for {nknots} knots"
        )

    last = len(kpool) - 1
    knot_k = np.empty(nknots)
    knot_y = np.empty(nknots)
    for i in range(nknots):
        q = kmin + i * (kmax - kmin) / (nknots - 1)
        ik = index_nearest(kpool, q)
        i1 = min(last, ik + 5)
        i2 = max(0, ik - 5)
        knot_k[i] = kpool[ik]
        knot_y[i] = (2.0 * mupool[ik] + mupool[i1] + mupool[i2]) / 4.0

    if np.any(np.diff(knot_k) <= 0):
        raise SplineKnotsError(kmin, kmax, nknots, "data too sparse; knot positions coincide")
    return knot_k, knot_y


class BackgroundSpline:
    """
    B-spline with fixed knots and adjustable amplitudes.

    Parameters
    ----------
    knot_k : ndarray
        Knot positions (the interpolation sites)
    knots : ndarray
        Full B-spline knot vector
    amplitudes : ndarray
        B-spline coefficients, one per knot
    order : int
        Polynomial degree
    """

    def __init__(self, knot_k: NDArray, knots: NDArray, amplitudes: NDArray, order: int):
        self.knot_k = np.asarray(knot_k, dtype=float)
        self.knots = np.asarray(knots, dtype=float)
        self.amplitudes = np.array(amplitudes, dtype=float)
        self.order = int(order)

    @classmethod
    def interpolate(cls, knot_k: NDArray, values: NDArray) -> "BackgroundSpline":
        """Spline through ``(knot_k, values)`` of degree ``min(3, nknots - 1)``."""
        order = min(MAX_ORDER, len(knot_k) - 1)
        bspl = make_interp_spline(knot_k, values, k=order)
        return cls(knot_k, bspl.t, bspl.c, bspl.k)

    @property
    def nknots(self) -> int:
        return len(self.amplitudes)

    def __call__(self, k: NDArray) -> NDArray:
        return BSpline(self.knots, self.amplitudes, self.order, extrapolate=True)(k)

    def basis(self, k: NDArray) -> NDArray:
        """Basis matrix, shape ``(len(k), nknots)``; ``spline(k) == basis(k) @ amplitudes``."""
        identity = np.eye(self.nknots)
        return BSpline(self.knots, identity, self.order, extrapolate=True)(np.asarray(k, dtype=float))

    def support(self, index: int) -> Tuple[float, float]:
        """k interval where basis function ``index`` is non-zero (extrapolation included)."""
        lo = -math.inf if index <= self.order else float(self.knots[index])
        hi = math.inf if index >= self.nknots - 1 - self.order else float(self.knots[index + self.order + 1])
        return lo, hi

    def support_slice(self, k: NDArray, index: int) -> slice:
        """Slice of the sorted grid ``k`` covering ``support(index)``."""
        lo, hi = self.support(index)
        start = 0 if lo == -math.inf else int(np.searchsorted(k, lo, side="left"))
        stop = len(k) if hi == math.inf else int(np.searchsorted(k, hi, side="right"))
        return slice(start, stop)

    def with_amplitudes(self, amplitudes: NDArray) -> "BackgroundSpline":
        return BackgroundSpline(self.knot_k, self.knots, amplitudes, self.order)

    def copy(self) -> "BackgroundSpline":
        return self.with_amplitudes(self.amplitudes)

    def __repr__(self) -> str:
        return (
            f"BackgroundSpline(nknots={self.nknots}, order={self.order}, "
            f"k=[{self.knot_k[0]:.3f}, {self.knot_k[-1]:.3f}])"
        )
