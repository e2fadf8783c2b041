"""
Conversion of normalized mu(E) to photoelectron wavenumber space.

    k = sqrt(ETOK * (E - e0)),   k = 0 below the edge

mu is interpolated onto a uniform grid ``k = kstep * i``. When the
requested kmax lies beyond the last measured point, the high-k end is
extended with the slope of a straight line fitted to the last few samples
so the background fit sees no abrupt step.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray

from xafsforge.core.config import AutobkConfig
from xafsforge.core.errors import KGridError
from xafsforge.core.spectrum import NormalizedSpectrum
from xafsforge.core.xafsutils import ETOK, FTWindow, ftwindow, index_of

logger = logging.getLogger(__name__)


@dataclass
class KSpaceData:
    """
    Normalized spectrum mapped to k space.

    Attributes
    ----------
    e0, edge_step : float
        Edge energy and step used for the conversion
    iek0 : int
        Index of the last energy sample at or below e0
    iemax : int
        Index of the last energy sample used for interpolation
    kraw : NDArray
        k of every energy sample from ``iek0`` on
    k : NDArray
        Uniform grid ``kstep * arange(n)``
    mu : NDArray
        mu(E) interpolated onto ``k``
    window : NDArray
        FT window on ``k``
    ftwin : NDArray
        ``k**kweight * window``
    kmin, kmax, kstep : float
        Grid and window limits
    kweight : int
        Weighting exponent in ``ftwin``
    n_extrapolated : int
        Grid points beyond the last measured k
    """

    e0: float
    edge_step: float
    iek0: int
    iemax: int
    kraw: NDArray
    k: NDArray
    mu: NDArray
    window: NDArray
    ftwin: NDArray
    kmin: float
    kmax: float
    kstep: float
    kweight: int
    n_extrapolated: int = 0

    @property
    def npts(self) -> int:
        return len(self.k)

    @property
    def nraw(self) -> int:
        """Raw samples used, ``iek0`` through ``iemax``."""
        return self.iemax - self.iek0 + 1


class KSpaceConverter:
    """
    Map a ``NormalizedSpectrum`` onto a uniform k grid with its FT window.

    Parameters
    ----------
    kstep : float
        Grid spacing (1/Angstrom)
    kweight : int
        k-weighting exponent applied to the window
    kmin, kmax : float
        Window limits; ``kmax=None`` uses the data limit
    dk : float
        Window taper width
    window : str or FTWindow
        Window shape
    extrapolation_points : int
        Samples used for the high-k slope
    """

    def __init__(
        self,
        kstep: float = 0.05,
        kweight: int = 1,
        kmin: float = 0.0,
        kmax: Optional[float] = None,
        dk: float = 0.1,
        window: Union[str, FTWindow] = FTWindow.HANNING,
        extrapolation_points: int = 10,
    ):
        self.kstep = kstep
        self.kweight = kweight
        self.kmin = kmin
        self.kmax = kmax
        self.dk = dk
        self.window = FTWindow.from_name(window)
        self.extrapolation_points = max(2, int(extrapolation_points))

    @classmethod
    def from_config(cls, config: AutobkConfig) -> "KSpaceConverter":
        return cls(
            kstep=config.kstep,
            kweight=config.kweight,
            kmin=config.kmin,
            kmax=config.kmax,
            dk=config.dk,
            window=config.window,
            extrapolation_points=config.extrapolation_points,
        )

    def convert(self, normalized: NormalizedSpectrum) -> KSpaceData:
        """
        Build the k-space representation of ``normalized``.

        Raises
        ------
        KGridError
            e0 at or above the last energy, or fewer than two grid points
        """
        energy, mu = normalized.energy, normalized.mu
        e0 = float(normalized.e0)
        emax = float(energy[-1])
        if e0 >= emax:
            raise KGridError(e0, emax)

        iek0 = index_of(energy, e0)
        kraw = np.sqrt(ETOK * np.maximum(energy[iek0:] - e0, 0.0))
        if len(kraw) < 2:
            raise KGridError(e0, emax, reason="fewer than two samples above the edge")

        kdata_max = float(kraw[-1])
        kmax = kdata_max if self.kmax is None else max(float(self.kmax), 0.0)
        k = self.kstep * np.arange(math.floor(1.01 + kmax / self.kstep))
        if len(k) < 2:
            raise KGridError(e0, emax, reason=f"k grid has {len(k)} points for kmax={kmax}")

        iemax = min(len(energy), 2 + index_of(energy, e0 + kmax ** 2 / ETOK)) - 1
        nraw = iemax - iek0 + 1
        kused, muused = kraw[:nraw], mu[iek0:iemax + 1]
        mu_k = np.interp(k, kused, muused)

        beyond = k > kused[-1]
        n_extrapolated = int(beyond.sum())
        if n_extrapolated:
            npts = min(self.extrapolation_points, nraw)
            slope = np.polyfit(kused[-npts:], muused[-npts:], 1)[0]
            mu_k[beyond] = muused[-1] + slope * (k[beyond] - kused[-1])
            log = logger.warning if kmax > kdata_max else logger.debug
            log(
                "kmax=%.3f exceeds data limit %.3f; extrapolating %d points (slope %.4g)",
                kmax, kdata_max, n_extrapolated, slope,
            )

        window = ftwindow(k, xmin=self.kmin, xmax=kmax, dx=self.dk, dx2=self.dk, window=self.window)
        ftwin = k ** self.kweight * window

        return KSpaceData(
            e0=e0,
            edge_step=float(normalized.edge_step),
            iek0=iek0,
            iemax=iemax,
            kraw=kraw,
            k=k,
            mu=mu_k,
            window=window,
            ftwin=ftwin,
            kmin=float(self.kmin),
            kmax=kmax,
            kstep=float(self.kstep),
            kweight=int(self.kweight),
            n_extrapolated=n_extrapolated,
        )
