"""
XAFS utilities: physical constants, array index helpers, edge finding and
Fourier-transform windows.

Conventions follow the AUTOBK literature: energies in eV, wavenumbers in
inverse Angstroms, ``k = sqrt(ETOK * (E - e0))``.

References:
    M. Newville, P. Livins, Y. Yacoby, J. J. Rehr, E. A. Stern,
    Phys. Rev. B 47, 14126 (1993).
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.ndimage import gaussian_filter1d
from scipy.special import i0

from xafsforge.core.errors import InvalidWindowError


# ============================================================================
# Constants
# ============================================================================

PLANCK_H = 6.62607015e-34  # J s
HBAR = PLANCK_H / (2.0 * math.pi)
ELECTRON_MASS = 9.1093837015e-31  # kg
ELEMENTARY_CHARGE = 1.602176634e-19  # C

#: k**2 (1/Angstrom**2) -> energy (eV)
KTOE = 1.0e20 * HBAR * HBAR / (2.0 * ELECTRON_MASS * ELEMENTARY_CHARGE)
#: energy (eV) -> k**2 (1/Angstrom**2)
ETOK = 1.0 / KTOE

ArrayLike = Union[float, NDArray]


def etok(energy: ArrayLike) -> ArrayLike:
    """Energy above the edge (eV) to wavenumber (1/Angstrom)."""
    return np.sqrt(np.asarray(energy) * ETOK)


def ktoe(k: ArrayLike) -> ArrayLike:
    """Wavenumber (1/Angstrom) to energy above the edge (eV)."""
    return np.asarray(k) ** 2 * KTOE


# ============================================================================
# Index helpers
# ============================================================================

def index_of(array: NDArray, value: float) -> int:
    """Index of the last element of a sorted array that is <= value (0 if none)."""
    array = np.asarray(array)
    if value < array.min():
        return 0
    return int(np.max(np.where(array <= value)[0]))


def index_nearest(array: NDArray, value: float) -> int:
    """Index of the element closest to value."""
    return int(np.abs(np.asarray(array) - value).argmin())


def find_energy_step(energy: NDArray, frac_ignore: float = 0.01, nave: int = 10) -> float:
    """Robust energy step: skip the smallest ``frac_ignore`` steps, average the next ``nave``."""
    ediff = np.sort(np.diff(np.asarray(energy, dtype=float)))
    nskip = int(frac_ignore * len(energy))
    end = min(nskip + nave, len(ediff) - 1)
    if end <= nskip:
        return float(ediff.mean())
    return float(ediff[nskip:end].mean())


def _find_e0(
    energy: NDArray,
    mu: NDArray,
    estep: Optional[float] = None,
    use_smooth: bool = False,
) -> Tuple[float, int, float]:
    if estep is None:
        estep = find_energy_step(energy) / 2.0
    nmin = max(2, len(energy) // 100)

    dmu = np.gradient(mu) / np.gradient(energy)
    if use_smooth:
        sigma = max(1.0, 3.0 * estep / max(np.median(np.diff(energy)), 1e-12))
        dmu = gaussian_filter1d(dmu, sigma, mode="nearest")
    dmu = np.where(np.isfinite(dmu), dmu, -1.0)

    inner = dmu[nmin:len(dmu) - nmin] if len(dmu) > 2 * nmin else dmu
    dmu = (dmu - inner.min()) / max(1e-10, float(np.ptp(inner)))

    dhigh = 0.60 if len(energy) > 20 else 0.30
    high = np.where(dmu > dhigh)[0]
    for _ in range(2):
        if len(high) > 3:
            break
        dhigh *= 0.5
        high = np.where(dmu > dhigh)[0]
    if len(high) < 3:
        high = np.where(np.isfinite(dmu))[0]

    high_set = set(int(i) for i in high)
    imax, dmax = 0, 0.0
    for i in high_set:
        if i < nmin or i > len(energy) - nmin:
            continue
        if dmu[i] > dmax and (i + 1) in high_set and (i - 1) in high_set:
            imax, dmax = i, float(dmu[i])
    return float(energy[imax]), imax, estep


def find_e0(energy: NDArray, mu: NDArray) -> float:
    """Locate the absorption edge as the maximum of d(mu)/dE.

    A coarse pass over the full spectrum is refined on a smoothed derivative
    within 75 points of the first estimate. Isolated derivative spikes are
    ignored: the maximum must have high-derivative neighbours on both sides.
    """
    energy = np.asarray(energy, dtype=float)
    mu = np.asarray(mu, dtype=float)

    _, ie0, estep = _find_e0(energy, mu)
    istart = max(2, ie0 - 75)
    istop = min(ie0 + 75, len(energy) - 2)
    if istop - istart < 5:
        return float(energy[ie0])

    e0, ix, _ = _find_e0(energy[istart:istop], mu[istart:istop], estep=estep, use_smooth=True)
    if ix < 1:
        e0 = float(energy[istart + 2])
    return e0


# ============================================================================
# Fourier-transform windows
# ============================================================================

class FTWindow(Enum):
    """Window functions for the XAFS Fourier transform."""

    HANNING = "hanning"  # cosine-squared taper
    PARZEN = "parzen"  # linear taper
    WELCH = "welch"  # quadratic taper
    GAUSSIAN = "gaussian"
    SINE = "sine"
    KAISER_BESSEL = "kaiser"
    FHANNING = "fhanning"  # Hanning with fractional taper widths

    @classmethod
    def from_name(cls, name: Union[str, "FTWindow"]) -> "FTWindow":
        if isinstance(name, FTWindow):
            return name
        key = str(name).strip().lower()
        for member in cls:
            if key == member.value:
                return member
        if key in _WINDOW_ALIASES:
            return cls(_WINDOW_ALIASES[key])
        raise InvalidWindowError(str(name))


_WINDOW_ALIASES = {
    "han": "hanning",
    "hann": "hanning",
    "par": "parzen",
    "wel": "welch",
    "gau": "gaussian",
    "gauss": "gaussian",
    "sin": "sine",
    "kai": "kaiser",
    "kaiser-bessel": "kaiser",
    "kaiser_bessel": "kaiser",
    "kaiserbessel": "kaiser",
    "fha": "fhanning",
    "fhan": "fhanning",
}


def ftwindow(
    x: NDArray,
    xmin: Optional[float] = None,
    xmax: Optional[float] = None,
    dx: float = 1.0,
    dx2: Optional[float] = None,
    window: Union[str, FTWindow] = FTWindow.HANNING,
) -> NDArray:
    """
    Build an FT window on a uniform grid.

    The window is 1 between ``xmin + dx/2`` and ``xmax - dx2/2`` and tapers to
    0 over ``dx`` (``dx2``) around each end.

    Parameters
    ----------
    x : ndarray
        Uniformly spaced grid
    xmin, xmax : float, optional
        Window limits, default to the grid limits
    dx, dx2 : float
        Taper widths at the low and high ends (``dx2`` defaults to ``dx``)
    window : str or FTWindow
        Window shape

    Returns
    -------
    ndarray
        Window values on ``x``
    """
    x = np.asarray(x, dtype=float)
    window = FTWindow.from_name(window)

    dx1 = dx
    if dx2 is None:
        dx2 = dx1
    if xmin is None:
        xmin = float(x.min())
    if xmax is None:
        xmax = float(x.max())

    xstep = (x[-1] - x[0]) / (len(x) - 1)
    xeps = 1e-4 * xstep
    x1 = max(float(x.min()), xmin - dx1 / 2.0)
    x2 = xmin + dx1 / 2.0 + xeps
    x3 = xmax - dx2 / 2.0 - xeps
    x4 = min(float(x.max()), xmax + dx2 / 2.0)

    if window is FTWindow.GAUSSIAN:
        dx1 = max(dx1, xeps)
    elif window is FTWindow.FHANNING:
        dx1 = max(dx1, 0.0)
        dx2 = min(dx2, 1.0)
        x2 = x1 + xeps + dx1 * (xmax - xmin) / 2.0
        x3 = x4 - xeps - dx2 * (xmax - xmin) / 2.0

    def asint(val: float) -> int:
        return int((val + xeps) / xstep)

    i1, i2, i3, i4 = asint(x1), asint(x2), asint(x3), asint(x4)
    i1, i2 = max(0, i1), max(0, i2)
    i3, i4 = min(len(x) - 1, i3), min(len(x) - 1, i4)
    if i1 == i2:
        i1 = max(0, i2 - 1)
    if i3 == i4:
        i3 = max(i2, i4 - 1)
    x1, x2, x3, x4 = x[i1], x[i2], x[i3], x[i4]
    if x1 == x2:
        x2 = x2 + xeps
    if x3 == x4:
        x4 = x4 + xeps

    fwin = np.zeros(len(x))
    if i3 > i2:
        fwin[i2:i3] = 1.0

    lo = slice(i1, i2 + 1)
    hi = slice(i3, i4 + 1)
    if window in (FTWindow.HANNING, FTWindow.FHANNING):
        fwin[lo] = np.sin((np.pi / 2) * (x[lo] - x1) / (x2 - x1)) ** 2
        fwin[hi] = np.cos((np.pi / 2) * (x[hi] - x3) / (x4 - x3)) ** 2
    elif window is FTWindow.PARZEN:
        fwin[lo] = (x[lo] - x1) / (x2 - x1)
        fwin[hi] = 1.0 - (x[hi] - x3) / (x4 - x3)
    elif window is FTWindow.WELCH:
        fwin[lo] = 1.0 - ((x[lo] - x2) / (x2 - x1)) ** 2
        fwin[hi] = 1.0 - ((x[hi] - x3) / (x4 - x3)) ** 2
    elif window is FTWindow.KAISER_BESSEL:
        cen = (x4 + x1) / 2.0
        wid = (x4 - x1) / 2.0
        arg = np.maximum(1.0 - (x - cen) ** 2 / wid ** 2, 0.0)
        scale = max(1.0e-10, i0(dx1) - 1.0)
        fwin = (i0(dx1 * np.sqrt(arg)) - 1.0) / scale
    elif window is FTWindow.SINE:
        span = slice(i1, i4 + 1)
        fwin[span] = np.sin(np.pi * (x4 - x[span]) / (x4 - x1))
    elif window is FTWindow.GAUSSIAN:
        cen = (x4 + x1) / 2.0
        fwin = np.exp(-((x - cen) ** 2) / (2.0 * dx1 * dx1))
    return fwin
