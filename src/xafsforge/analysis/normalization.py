"""
Pre-/post-edge normalization of X-ray absorption spectra.

The pre-edge is a line fitted to ``mu * E**nvict`` below the edge; the
post-edge is a low-order polynomial fitted to ``mu - pre_edge`` above it.
The edge step is their difference at e0.

Default fit ranges (relative to e0, eV) are derived from the data:

    pre1  = 5*round((E[1] - e0)/5)    (2 eV rounding for short pre-edges)
    pre2  = 5*round(pre1/15)
    norm2 = 5*round((Emax - e0)/5)
    norm1 = min(25, 5*round(norm2/15))

and the post-edge order is 0, 1 or 2 for windows narrower than 50 eV,
350 eV, or wider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.polynomial import polynomial as P
from numpy.typing import NDArray

from xafsforge.core.config import NormalizationConfig
from xafsforge.core.errors import (
    E0OutOfRangeError,
    EdgeStepTooSmallError,
    PostEdgeFitError,
    PreEdgeFitError,
)
from xafsforge.core.spectrum import DEFAULT_MIN_POINTS, NormalizedSpectrum, Spectrum
from xafsforge.core.xafsutils import find_e0, index_nearest, index_of

logger = logging.getLogger(__name__)

MAX_NORM_POLYORDER = 5


@dataclass
class EdgeRanges:
    """Fit windows relative to e0 (eV)."""

    pre_edge_start: float
    pre_edge_end: float
    norm_start: float
    norm_end: float
    norm_polyorder: int


def default_ranges(
    energy: NDArray,
    e0: float,
    config: Optional[NormalizationConfig] = None,
) -> EdgeRanges:
    """
    Fill unset normalization ranges from the data.

    Parameters
    ----------
    energy : ndarray
        Energy grid (eV)
    e0 : float
        Edge energy (eV)
    config : NormalizationConfig, optional
        Explicit ranges; ``None`` fields are filled

    Returns
    -------
    EdgeRanges
        Completed ranges, ordered so start <= end
    """
    config = config or NormalizationConfig()
    ie0 = index_nearest(energy, e0)
    e0 = float(energy[ie0])
    emin, emax = float(energy.min()), float(energy.max())

    pre1 = config.pre_edge_start
    if pre1 is None:
        if ie0 > 20:
            pre1 = 5.0 * round((energy[1] - e0) / 5.0)
        else:
            pre1 = 2.0 * round((energy[1] - e0) / 2.0)
        pre1 = max(pre1, emin - e0)
    pre2 = config.pre_edge_end
    if pre2 is None:
        pre2 = 5.0 * round(pre1 / 15.0)
    if pre1 > pre2:
        pre1, pre2 = pre2, pre1

    norm2 = config.norm_end
    if norm2 is None:
        norm2 = 5.0 * round((emax - e0) / 5.0)
        if norm2 < 0:
            norm2 = emax - e0 - norm2
        norm2 = min(norm2, emax - e0)
    norm1 = config.norm_start
    if norm1 is None:
        norm1 = min(25.0, 5.0 * round(norm2 / 15.0))
    if norm1 > norm2 + 5.0:
        norm1, norm2 = norm2, norm1
    norm1 = min(norm1, norm2 - 10.0)

    order = config.norm_polyorder
    if order is None:
        width = norm2 - norm1
        if width < 50.0:
            order = 0
        elif width < 350.0:
            order = 1
        else:
            order = 2
    order = int(min(max(order, 0), MAX_NORM_POLYORDER))

    return EdgeRanges(float(pre1), float(pre2), float(norm1), float(norm2), order)


class SpectrumNormalizer:
    """
    Validate a spectrum, locate e0 and normalize by the edge step.

    Parameters
    ----------
    config : NormalizationConfig, optional
        Fit windows and options
    min_points : int
        Minimum sample count accepted

    Examples
    --------
    >>> normalizer = SpectrumNormalizer()
    >>> normed = normalizer.normalize(spectrum)
    >>> normed.edge_step
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        min_points: int = DEFAULT_MIN_POINTS,
    ):
        self.config = config or NormalizationConfig()
        self.min_points = min_points

    def resolve_e0(self, spectrum: Spectrum, e0: Optional[float] = None) -> float:
        """Requested e0 (argument, then ``spectrum.e0``) checked against the data, or found."""
        requested = e0 if e0 is not None else spectrum.e0
        if requested is None:
            found = find_e0(spectrum.energy, spectrum.mu)
            logger.debug("Located e0 = %.2f eV", found)
            return found
        if not (spectrum.min_energy <= requested <= spectrum.max_energy):
            raise E0OutOfRangeError(float(requested), spectrum.min_energy, spectrum.max_energy)
        return float(requested)

    def normalize(
        self,
        spectrum: Spectrum,
        e0: Optional[float] = None,
        edge_step: Optional[float] = None,
    ) -> NormalizedSpectrum:
        """
        Normalize ``spectrum``.

        Parameters
        ----------
        spectrum : Spectrum
            Raw data
        e0 : float, optional
            Edge energy override
        edge_step : float, optional
            Edge-step override

        Returns
        -------
        NormalizedSpectrum

        Raises
        ------
        DataError
            Invalid input data
        NormalizationError
            e0 outside the data, degenerate fits, or vanishing edge step
        """
        spectrum.validate(self.min_points)
        energy, mu = spectrum.energy, spectrum.mu
        e0 = self.resolve_e0(spectrum, e0)
        ranges = default_ranges(energy, e0, self.config)
        nvict = int(self.config.n_victoreen)

        pre_coefs, pre_edge = self._fit_pre_edge(energy, mu, e0, ranges, nvict)
        post_coefs, post_edge = self._fit_post_edge(energy, mu, e0, ranges, pre_edge)

        ie0 = index_nearest(energy, e0)
        if edge_step is None:
            edge_step = float(post_edge[ie0] - pre_edge[ie0])
        if not edge_step >= self.config.min_edge_step:
            raise EdgeStepTooSmallError(float(edge_step), self.config.min_edge_step)

        norm = (mu - pre_edge) / edge_step
        flat_residue = (post_edge - pre_edge) / edge_step
        flat = norm - flat_residue + flat_residue[ie0]
        flat[:ie0] = norm[:ie0]

        logger.debug(
            "Normalized %s: e0=%.2f edge_step=%.4g pre=[%.1f, %.1f] norm=[%.1f, %.1f] order=%d",
            spectrum.label or "spectrum", e0, edge_step,
            ranges.pre_edge_start, ranges.pre_edge_end,
            ranges.norm_start, ranges.norm_end, ranges.norm_polyorder,
        )
        return NormalizedSpectrum(
            spectrum=spectrum,
            e0=e0,
            edge_step=float(edge_step),
            pre_edge_coefficients=pre_coefs,
            post_edge_coefficients=post_coefs,
            pre_edge=pre_edge,
            post_edge=post_edge,
            norm=norm,
            flat=flat,
            pre_edge_range=(ranges.pre_edge_start, ranges.pre_edge_end),
            norm_range=(ranges.norm_start, ranges.norm_end),
            norm_polyorder=ranges.norm_polyorder,
            n_victoreen=nvict,
        )

    # ------------------------------------------------------------------
    # Fits
    # ------------------------------------------------------------------

    @staticmethod
    def _fit_pre_edge(
        energy: NDArray, mu: NDArray, e0: float, ranges: EdgeRanges, nvict: int,
    ) -> Tuple[NDArray, NDArray]:
        p1 = index_of(energy, ranges.pre_edge_start + e0)
        p2 = index_nearest(energy, ranges.pre_edge_end + e0)
        if p2 - p1 < 2:
            p2 = min(len(energy), p1 + 2)
        if p2 - p1 < 2:
            raise PreEdgeFitError(ranges.pre_edge_start, ranges.pre_edge_end, p2 - p1)

        x = energy[p1:p2]
        coefs = P.polyfit(x, mu[p1:p2] * x ** nvict, 1)
        pre_edge = P.polyval(energy, coefs) * energy ** (-nvict)
        return coefs, pre_edge

    @staticmethod
    def _fit_post_edge(
        energy: NDArray, mu: NDArray, e0: float, ranges: EdgeRanges, pre_edge: NDArray,
    ) -> Tuple[NDArray, NDArray]:
        """Polynomial in (E - e0) fitted to mu - pre_edge; returns coefficients and the full curve."""
        p1 = index_of(energy, ranges.norm_start + e0)
        p2 = index_nearest(energy, ranges.norm_end + e0)
        if p2 - p1 < 2:
            p2 = min(len(energy), p1 + 2)
            p1 = min(len(energy), p1 + 1)

        order = ranges.norm_polyorder
        if p2 - p1 <= order:
            raise PostEdgeFitError(order, p2 - p1)

        x = energy[p1:p2] - e0
        coefs = P.polyfit(x, (mu - pre_edge)[p1:p2], order)
        post_edge = pre_edge + P.polyval(energy - e0, coefs)
        return coefs, post_edge
