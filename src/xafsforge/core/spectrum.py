"""
Spectrum data containers.

``Spectrum`` holds raw mu(E); ``NormalizedSpectrum`` adds the edge
normalization produced by ``SpectrumNormalizer``; ``KSpaceSignal`` is the
background-subtracted chi(k) on a uniform k grid.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from xafsforge.core.errors import (
    InsufficientDataError,
    LengthMismatchError,
    NonFiniteValuesError,
    NonMonotonicEnergyError,
)

#: Default minimum number of samples for a usable spectrum
DEFAULT_MIN_POINTS = 30


@dataclass
class Spectrum:
    """
    Raw X-ray absorption spectrum.

    Attributes
    ----------
    energy : NDArray
        Incident energies in eV, strictly increasing
    mu : NDArray
        Absorption coefficient mu(E)
    e0 : float, optional
        Edge energy estimate in eV
    label : str
        Free-form identifier used in batch reports
    """

    energy: NDArray
    mu: NDArray
    e0: Optional[float] = None
    label: str = ""

    def __post_init__(self):
        self.energy = np.asarray(self.energy, dtype=float)
        self.mu = np.asarray(self.mu, dtype=float)

    @property
    def n_points(self) -> int:
        return len(self.energy)

    @property
    def min_energy(self) -> float:
        return float(np.min(self.energy))

    @property
    def max_energy(self) -> float:
        return float(np.max(self.energy))

    def validate(self, min_points: int = DEFAULT_MIN_POINTS) -> None:
        """Check the data invariants, raising a ``DataError`` on violation."""
        if self.energy.ndim != 1 or self.mu.ndim != 1 or len(self.energy) != len(self.mu):
            raise LengthMismatchError(int(self.energy.size), int(self.mu.size))
        if self.n_points < min_points:
            raise InsufficientDataError(min_points, self.n_points)

        bad = np.where(~(np.isfinite(self.energy) & np.isfinite(self.mu)))[0]
        if len(bad):
            raise NonFiniteValuesError(bad)

        steps = np.diff(self.energy)
        if np.any(steps <= 0):
            i = int(np.argmax(steps <= 0)) + 1
            raise NonMonotonicEnergyError(i, float(self.energy[i - 1]), float(self.energy[i]))

    def copy(self) -> "Spectrum":
        return Spectrum(
            energy=self.energy.copy(),
            mu=self.mu.copy(),
            e0=self.e0,
            label=self.label,
        )


@dataclass
class NormalizedSpectrum:
    """
    Spectrum with pre-/post-edge normalization.

    Attributes
    ----------
    spectrum : Spectrum
        Source data
    e0 : float
        Edge energy used for normalization (eV)
    edge_step : float
        Edge-step magnitude
    pre_edge_coefficients, post_edge_coefficients : NDArray
        Polynomial coefficients, lowest order first
    pre_edge, post_edge : NDArray
        Fitted baselines evaluated on ``spectrum.energy``
    norm : NDArray
        (mu - pre_edge) / edge_step
    flat : NDArray
        ``norm`` with the post-edge curvature removed above e0
    pre_edge_range, norm_range : tuple of float
        Fit windows relative to e0 (eV)
    norm_polyorder : int
        Post-edge polynomial order
    n_victoreen : int
        Exponent applied to the pre-edge line
    """

    spectrum: Spectrum
    e0: float
    edge_step: float
    pre_edge_coefficients: NDArray
    post_edge_coefficients: NDArray
    pre_edge: NDArray
    post_edge: NDArray
    norm: NDArray
    flat: NDArray
    pre_edge_range: tuple = (0.0, 0.0)
    norm_range: tuple = (0.0, 0.0)
    norm_polyorder: int = 2
    n_victoreen: int = 0

    @property
    def energy(self) -> NDArray:
        return self.spectrum.energy

    @property
    def mu(self) -> NDArray:
        return self.spectrum.mu

    @property
    def ie0(self) -> int:
        """Index of the sample nearest to e0."""
        return int(np.abs(self.energy - self.e0).argmin())


@dataclass(frozen=True, eq=False)
class KSpaceSignal:
    """
    chi(k) on a uniform k grid.

    Attributes
    ----------
    k : NDArray
        Wavenumbers (1/Angstrom), ``k[i] = i * kstep``
    chi : NDArray
        Unweighted chi(k)
    kweight : int
        k-weighting exponent used for transforms
    window : NDArray
        FT window on ``k``
    kstep : float
        Grid spacing
    """

    k: NDArray
    chi: NDArray
    kweight: int = 1
    window: Optional[NDArray] = None
    kstep: float = 0.05

    def __post_init__(self):
        for name in ("k", "chi", "window"):
            value = getattr(self, name)
            if value is None:
                continue
            arr = np.array(value, dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self) -> int:
        return len(self.k)

    @property
    def chi_weighted(self) -> NDArray:
        """k**kweight * chi(k)."""
        if self.kweight == 0:
            return self.chi
        return self.chi * self.k ** self.kweight

    @property
    def windowed(self) -> NDArray:
        """k-weighted chi(k) multiplied by the FT window."""
        if self.window is None:
            return self.chi_weighted
        return self.chi_weighted * self.window
