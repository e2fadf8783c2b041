"""
AUTOBK background removal.

Fits a cubic spline mu0(k) to mu(k) so that chi(k) = mu(k) - mu0(k) has
as little Fourier amplitude as possible below ``rbkg``. The residual
minimized is the real and imaginary parts of chi(R) for R < rbkg, plus
optional clamp terms that hold chi(k) near zero at the ends of the k range.

References:
    M. Newville, P. Livins, Y. Yacoby, J. J. Rehr, E. A. Stern,
    "Near-edge x-ray-absorption fine structure of Pb: A comparison of
    theory and experiment", Phys. Rev. B 47, 14126 (1993).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
from numpy.typing import NDArray

from xafsforge.analysis.kspace import KSpaceData
from xafsforge.core.config import AutobkConfig
from xafsforge.core.errors import (
    BackgroundNotImplementedError,
    InvalidConfigError,
    InvalidRbkgError,
    SplineKnotsError,
)
from xafsforge.core.fourier import FourierTransform, next_power_of_two, realimg
from xafsforge.core.spectrum import KSpaceSignal, NormalizedSpectrum
from xafsforge.solvers.damped_lsq import (
    LeastSquaresSolution,
    TerminationReason,
    damped_least_squares,
)
from xafsforge.solvers.spline import BackgroundSpline, build_knots, knot_count
from xafsforge.solvers.workspace import Workspace

logger = logging.getLogger(__name__)


class BackgroundMethod(Enum):
    """Background-removal algorithms."""

    AUTOBK = "autobk"
    ILPBKG = "ilpbkg"  # iterative low-pass background; not implemented

    @classmethod
    def from_name(cls, name: str) -> "BackgroundMethod":
        try:
            return cls(str(name).lower())
        except ValueError:
            raise InvalidConfigError("method", f"unknown background method {name!r}") from None


@dataclass
class AutobkResult:
    """
    Output of an AUTOBK fit.

    Attributes
    ----------
    normalized : NormalizedSpectrum
        Input spectrum with its normalization
    spline : BackgroundSpline
        Fitted background in k
    bkg : NDArray
        Background on the energy grid; equal to mu below the edge
    chie : NDArray
        (mu - bkg) / edge_step on the energy grid
    kspace : KSpaceSignal
        Background-subtracted chi(k) on the uniform grid
    bkg_k : NDArray
        Background on the uniform k grid
    converged : bool
        False when the iteration budget ran out
    termination : TerminationReason
        Why the optimizer stopped
    iterations : int
        Accepted optimizer steps
    initial_residual_norm, residual_norm : float
        Norm of the residual vector before and after the fit
    history : list of float
        Objective after each accepted step
    nknots : int
        Number of spline knots
    irbkg : int
        Number of R points below rbkg in the residual
    rbkg : float
        R cutoff used
    n_extrapolated : int
        Grid points beyond the measured k range
    """

    normalized: NormalizedSpectrum
    spline: BackgroundSpline
    bkg: NDArray
    chie: NDArray
    kspace: KSpaceSignal
    bkg_k: NDArray
    converged: bool
    termination: TerminationReason
    iterations: int
    initial_residual_norm: float
    residual_norm: float
    history: List[float] = field(default_factory=list)
    nknots: int = 0
    irbkg: int = 0
    rbkg: float = 1.0
    n_extrapolated: int = 0

    @property
    def e0(self) -> float:
        return self.normalized.e0

    @property
    def edge_step(self) -> float:
        return self.normalized.edge_step

    @property
    def k(self) -> NDArray:
        return self.kspace.k

    @property
    def chi(self) -> NDArray:
        return self.kspace.chi

    def summary(self) -> Dict[str, Any]:
        """Scalar diagnostics, one row per spectrum in batch tables."""
        return {
            "e0": self.e0,
            "edge_step": self.edge_step,
            "converged": self.converged,
            "termination": self.termination.value,
            "iterations": self.iterations,
            "initial_residual_norm": self.initial_residual_norm,
            "residual_norm": self.residual_norm,
            "nknots": self.nknots,
            "irbkg": self.irbkg,
            "kmax": float(self.kspace.k[-1]),
            "n_extrapolated": self.n_extrapolated,
        }


class AutobkOptimizer:
    """
    Spline background fit through a low-R Fourier objective.

    Parameters
    ----------
    config : AutobkConfig
        Fit settings
    workspace : Workspace, optional
        Reusable buffers; a private one is created when omitted
    standard : KSpaceSignal, optional
        Expected chi(k), subtracted from chi before transforming so the
        low-R structure it carries is not removed with the background

    Raises
    ------
    BackgroundNotImplementedError
        If ``config.method`` names an unimplemented algorithm
    InvalidRbkgError
        If ``rbkg`` is not positive
    """

    def __init__(
        self,
        config: Optional[AutobkConfig] = None,
        workspace: Optional[Workspace] = None,
        standard: Optional[KSpaceSignal] = None,
    ):
        self.config = config or AutobkConfig()
        method = BackgroundMethod.from_name(self.config.method)
        if method is not BackgroundMethod.AUTOBK:
            raise BackgroundNotImplementedError(method.value)
        if not (self.config.rbkg > 0 and math.isfinite(self.config.rbkg)):
            raise InvalidRbkgError(self.config.rbkg)
        self.workspace = workspace if workspace is not None else Workspace()
        self.standard = standard

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _grid_limits(self, kdata: KSpaceData):
        cfg = self.config
        kmin, kmax = kdata.kmin, kdata.kmax
        if kmax <= kmin:
            raise SplineKnotsError(kmin, kmax, cfg.nknots or 0, "kmax must exceed kmin")

        nfft = next_power_of_two(cfg.nfft)
        rgrid = math.pi / (kdata.kstep * nfft)
        if cfg.rbkg < 2.0 * rgrid:
            rgrid = 2.0 * rgrid

        nspl = 1 + int(round(2.0 * cfg.rbkg * (kmax - kmin) / math.pi))
        irbkg = int(round(1 + (nspl - 1) * math.pi / (2.0 * rgrid * (kmax - kmin))))
        irbkg = max(1, min(irbkg, nfft // 2 + 1))
        return nfft, irbkg, knot_count(cfg.rbkg, kmin, kmax, cfg.nknots)

    @staticmethod
    def _knot_pool(kdata: KSpaceData, mu: NDArray):
        """Measured samples up to iemax, then extrapolated grid points beyond them."""
        kraw = kdata.kraw[:kdata.nraw]
        muraw = mu[kdata.iek0:kdata.iemax + 1]
        beyond = kdata.k > kraw[-1]
        if np.any(beyond):
            return np.concatenate((kraw, kdata.k[beyond])), np.concatenate((muraw, kdata.mu[beyond]))
        return kraw, muraw

    def _standard_mu(self, kdata: KSpaceData) -> Optional[NDArray]:
        if self.standard is None:
            return None
        chi_std = np.interp(kdata.k, self.standard.k, self.standard.chi)
        return kdata.edge_step * chi_std

    # ------------------------------------------------------------------
    # Fit
    # ------------------------------------------------------------------

    def fit(self, normalized: NormalizedSpectrum, kdata: KSpaceData) -> AutobkResult:
        """
        Fit the background of one spectrum.

        Parameters
        ----------
        normalized : NormalizedSpectrum
            Normalized input
        kdata : KSpaceData
            Its k-space representation

        Returns
        -------
        AutobkResult
            Best fit found; ``converged`` is False when the iteration
            budget ran out first
        """
        cfg = self.config
        nfft, irbkg, nknots = self._grid_limits(kdata)
        kpool, mupool = self._knot_pool(kdata, normalized.mu)
        knot_k, knot_y = build_knots(kpool, mupool, kdata.kmin, kdata.kmax, nknots)
        spline = BackgroundSpline.interpolate(knot_k, knot_y)

        k = kdata.k
        target = kdata.mu.copy()
        std_mu = self._standard_mu(kdata)
        if std_mu is not None:
            target -= std_mu

        transform = self.workspace.transform(len(k), nfft, kdata.kstep)
        basis = spline.basis(k)
        nclamp = min(cfg.nclamp, len(k))
        n_fourier = 2 * irbkg
        jac = self.workspace.jacobian(n_fourier + 2 * nclamp, nknots)

        objective = _LowRObjective(
            transform=transform,
            ftwin=kdata.ftwin,
            irbkg=irbkg,
            nclamp=nclamp,
            clamp_lo=cfg.clamp_lo,
            clamp_hi=cfg.clamp_hi,
        )

        def chi_of(amplitudes: NDArray) -> NDArray:
            return target - basis @ amplitudes

        def residual(amplitudes: NDArray) -> NDArray:
            return objective.residual(chi_of(amplitudes))

        if cfg.jacobian == "analytic":
            jac[:n_fourier] = objective.fourier_block(basis)

            def jacobian(amplitudes: NDArray, resid: NDArray) -> NDArray:
                objective.fill_clamp_rows(jac, basis, resid)
                return jac
        else:
            def jacobian(amplitudes: NDArray, resid: NDArray) -> NDArray:
                chi = chi_of(amplitudes)
                perturbed = chi.copy()
                for j in range(nknots):
                    step = 1.0e-6 * max(1.0, abs(amplitudes[j]))
                    sl = spline.support_slice(k, j)
                    perturbed[sl] = chi[sl] - step * basis[sl, j]
                    jac[:, j] = (objective.residual(perturbed) - resid) / step
                    perturbed[sl] = chi[sl]
                return jac

        solution = damped_least_squares(
            residual,
            jacobian,
            spline.amplitudes,
            max_iterations=cfg.max_iterations,
            tolerance=cfg.convergence_tolerance,
            max_rejections=cfg.max_rejections,
            initial_damping=cfg.initial_damping,
        )
        self.workspace.n_fits += 1
        spline = spline.with_amplitudes(solution.x)

        log = logger.debug if solution.converged else logger.warning
        log(
            "AUTOBK %s after %d iterations: residual %.4g -> %.4g (%d knots, irbkg=%d)",
            solution.termination.value, solution.iterations,
            solution.initial_residual_norm, solution.residual_norm, nknots, irbkg,
        )
        return self._build_result(normalized, kdata, spline, solution, irbkg)

    def _build_result(
        self,
        normalized: NormalizedSpectrum,
        kdata: KSpaceData,
        spline: BackgroundSpline,
        solution: LeastSquaresSolution,
        irbkg: int,
    ) -> AutobkResult:
        edge_step = normalized.edge_step
        mu = normalized.mu

        bkg = mu.copy()
        bkg[kdata.iek0:] = spline(kdata.kraw)
        chie = (mu - bkg) / edge_step

        bkg_k = spline(kdata.k)
        chi = (kdata.mu - bkg_k) / edge_step
        kspace = KSpaceSignal(
            k=kdata.k,
            chi=chi,
            kweight=kdata.kweight,
            window=kdata.window,
            kstep=kdata.kstep,
        )
        return AutobkResult(
            normalized=normalized,
            spline=spline,
            bkg=bkg,
            chie=chie,
            kspace=kspace,
            bkg_k=bkg_k,
            converged=solution.converged,
            termination=solution.termination,
            iterations=solution.iterations,
            initial_residual_norm=solution.initial_residual_norm,
            residual_norm=solution.residual_norm,
            history=list(solution.history),
            nknots=spline.nknots,
            irbkg=irbkg,
            rbkg=self.config.rbkg,
            n_extrapolated=kdata.n_extrapolated,
        )


class _LowRObjective:
    """Residual vector [Re chi(R), Im chi(R)] for R < rbkg, with end clamps."""

    def __init__(
        self,
        transform: FourierTransform,
        ftwin: NDArray,
        irbkg: int,
        nclamp: int,
        clamp_lo: float,
        clamp_hi: float,
    ):
        self.transform = transform
        self.ftwin = ftwin
        self.irbkg = irbkg
        self.nclamp = nclamp
        self.clamp_lo = clamp_lo
        self.clamp_hi = clamp_hi

    def fourier_part(self, chi: NDArray) -> NDArray:
        return realimg(self.transform.forward(chi, window=self.ftwin)[..., : self.irbkg])

    def clamp_scale(self, fourier: NDArray) -> float:
        return 1.0 + 100.0 * float(np.mean(fourier ** 2))

    def residual(self, chi: NDArray) -> NDArray:
        out = self.fourier_part(chi)
        if self.nclamp == 0:
            return out
        scale = self.clamp_scale(out)
        n = self.nclamp
        return np.concatenate((
            out,
            self.clamp_lo * scale * chi[:n],
            self.clamp_hi * scale * chi[-n:],
        ))

    def fourier_block(self, basis: NDArray) -> NDArray:
        """Derivative of the Fourier rows: transform of each negated basis column."""
        return -self.fourier_part(basis.T).T

    def fill_clamp_rows(self, jac: NDArray, basis: NDArray, resid: NDArray) -> None:
        """Clamp rows at the current clamp scale (held fixed within a step)."""
        if self.nclamp == 0:
            return
        n = self.nclamp
        n_fourier = 2 * self.irbkg
        scale = self.clamp_scale(resid[:n_fourier])
        jac[n_fourier:n_fourier + n] = -self.clamp_lo * scale * basis[:n]
        jac[n_fourier + n:] = -self.clamp_hi * scale * basis[-n:]
