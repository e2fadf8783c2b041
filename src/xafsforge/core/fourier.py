"""
Fourier transform between k space and R space.

``FourierTransform`` wraps ``scipy.fft.rfft``/``irfft`` around a zero-padded
buffer of length ``nfft`` that is allocated once and reused for every call,
so the AUTOBK loop does not allocate a padded array per iteration.

Normalization follows the XAFS convention::

    chi(R) = kstep / sqrt(pi) * sum_k chi(k) exp(2 i k R)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray
from scipy import fft

from xafsforge.core.errors import TransformGridError, TransformSizeMismatchError
from xafsforge.core.xafsutils import FTWindow, ftwindow

logger = logging.getLogger(__name__)


def next_power_of_two(n: int) -> int:
    return 1 << max(0, int(n) - 1).bit_length()


def realimg(values: NDArray) -> NDArray:
    """Concatenate real and imaginary parts along the last axis."""
    return np.concatenate((values.real, values.imag), axis=-1)


class FourierTransform:
    """
    Forward/inverse XAFS Fourier transform on a fixed grid.

    Parameters
    ----------
    npts : int
        Number of k points the transform accepts; change it with
        ``rebind`` to reuse the buffers for a grid of another length
    nfft : int
        FFT length; rounded up to a power of two
    kstep : float
        k-grid spacing

    Raises
    ------
    TransformGridError
        If the k grid does not fit in the FFT
    """

    def __init__(self, npts: int, nfft: int = 2048, kstep: float = 0.05):
        nfft_pow2 = next_power_of_two(nfft)
        if nfft_pow2 != nfft:
            logger.debug("Rounding nfft %d up to %d", nfft, nfft_pow2)
        if npts < 1 or npts > nfft_pow2:
            raise TransformGridError(npts, nfft_pow2)

        self.npts = int(npts)
        self.nfft = nfft_pow2
        self.kstep = float(kstep)
        self.rgrid = math.pi / (self.kstep * self.nfft)
        self.forward_scale = self.kstep / math.sqrt(math.pi)

        self._buffer = np.zeros(self.nfft)
        self._stack: Optional[NDArray] = None
        self.n_allocations = 1

    @property
    def n_r(self) -> int:
        """Length of the R-space spectrum."""
        return self.nfft // 2 + 1

    @property
    def r(self) -> NDArray:
        return self.rgrid * np.arange(self.n_r)

    def rebind(self, npts: int) -> "FourierTransform":
        """Accept signals of ``npts`` points from now on, keeping the buffers."""
        npts = int(npts)
        if npts < 1 or npts > self.nfft:
            raise TransformGridError(npts, self.nfft)
        if npts < self.npts:
            # padding past the new grid must be zero again
            self._buffer[npts:] = 0.0
            if self._stack is not None:
                self._stack[:, npts:] = 0.0
        self.npts = npts
        return self

    def _stack_buffer(self, rows: int) -> NDArray:
        if self._stack is None or self._stack.shape[0] < rows:
            self._stack = np.zeros((rows, self.nfft))
            self.n_allocations += 1
        return self._stack[:rows]

    def forward(self, signal: NDArray, window: Optional[NDArray] = None) -> NDArray:
        """
        Transform real k-space signal(s) to complex chi(R).

        Parameters
        ----------
        signal : ndarray
            Shape ``(npts,)`` or ``(m, npts)`` for a stack of signals
        window : ndarray, optional
            Multiplied into each signal before transforming

        Returns
        -------
        ndarray
            Complex chi(R), shape ``(n_r,)`` or ``(m, n_r)``
        """
        signal = np.asarray(signal, dtype=float)
        if signal.shape[-1] != self.npts:
            raise TransformSizeMismatchError(self.npts, signal.shape[-1], "forward")

        if signal.ndim == 1:
            buf = self._buffer
        else:
            buf = self._stack_buffer(signal.shape[0])

        if window is None:
            buf[..., : self.npts] = signal
        else:
            np.multiply(signal, window, out=buf[..., : self.npts])
        return self.forward_scale * fft.rfft(buf, axis=-1)

    def inverse(self, chir: NDArray) -> NDArray:
        """Back-transform complex chi(R) of length ``n_r`` to real chi(k) on the grid."""
        chir = np.asarray(chir)
        if chir.shape[-1] != self.n_r:
            raise TransformSizeMismatchError(self.n_r, chir.shape[-1], "inverse")
        out = fft.irfft(chir, n=self.nfft, axis=-1)
        return out[..., : self.npts] / self.forward_scale


@dataclass
class FTResult:
    """Forward transform output."""

    r: NDArray
    chir: NDArray

    @property
    def chir_mag(self) -> NDArray:
        return np.abs(self.chir)

    @property
    def chir_re(self) -> NDArray:
        return self.chir.real

    @property
    def chir_im(self) -> NDArray:
        return self.chir.imag


def xftf(
    k: NDArray,
    chi: NDArray,
    kmin: float = 0.0,
    kmax: Optional[float] = None,
    kweight: int = 2,
    dk: float = 1.0,
    window: Union[str, FTWindow] = FTWindow.HANNING,
    nfft: int = 2048,
    rmax_out: Optional[float] = 10.0,
) -> FTResult:
    """
    Windowed forward transform of chi(k) sampled on a uniform grid.

    ``k`` must start at 0 with a constant step, as produced by the k-space
    converter.
    """
    k = np.asarray(k, dtype=float)
    chi = np.asarray(chi, dtype=float)
    if len(k) != len(chi):
        raise TransformSizeMismatchError(len(k), len(chi), "forward")
    kstep = float(k[1] - k[0])
    win = ftwindow(k, xmin=kmin, xmax=kmax, dx=dk, window=window)
    transform = FourierTransform(len(k), nfft=nfft, kstep=kstep)
    chir = transform.forward(chi * k ** kweight, window=win)
    r = transform.r
    if rmax_out is not None:
        keep = r <= rmax_out + transform.rgrid / 2
        r, chir = r[keep], chir[keep]
    return FTResult(r=r, chir=chir)


@dataclass
class FTRResult:
    """Reverse transform output: filtered chi(q) on a uniform q grid."""

    q: NDArray
    chiq: NDArray


def xftr(
    r: NDArray,
    chir: NDArray,
    rmin: float = 0.0,
    rmax: Optional[float] = None,
    dr: float = 1.0,
    window: Union[str, FTWindow] = FTWindow.HANNING,
    kstep: float = 0.05,
    nfft: int = 2048,
    qmax_out: Optional[float] = None,
) -> FTRResult:
    """
    Windowed reverse transform of chi(R) back to k space (chi(q)).

    Parameters
    ----------
    r : ndarray
        R grid of ``chir``, as returned by ``xftf`` with the same ``kstep``
        and ``nfft``; it starts at 0 and may stop short of the Nyquist point
    chir : ndarray
        Complex chi(R); points beyond ``r[-1]`` are taken as zero
    rmin, rmax : float
        R range kept by the window; ``rmax`` defaults to ``r[-1]``
    dr : float
        Window taper width
    window : str or FTWindow
        Window shape
    kstep, nfft : float, int
        Grid of the forward transform that produced ``chir``
    qmax_out : float, optional
        Upper q of the output; default is the full half-length grid

    Returns
    -------
    FTRResult
        ``q = kstep * arange(n)`` and the real filtered signal, still
        carrying the k weight and k window of the forward transform

    Raises
    ------
    TransformSizeMismatchError
        If ``r`` and ``chir`` differ in length or exceed the R grid
    """
    r = np.asarray(r, dtype=float)
    chir = np.asarray(chir, dtype=complex)
    if len(r) != len(chir):
        raise TransformSizeMismatchError(len(r), len(chir), "inverse")

    nfft = next_power_of_two(nfft)
    npts = nfft // 2
    if qmax_out is not None:
        npts = min(npts, int(math.floor(1.01 + qmax_out / kstep)))
    transform = FourierTransform(npts, nfft=nfft, kstep=kstep)
    if len(chir) > transform.n_r:
        raise TransformSizeMismatchError(transform.n_r, len(chir), "inverse")

    win = ftwindow(r, xmin=rmin, xmax=rmax, dx=dr, window=window)
    padded = np.zeros(transform.n_r, dtype=complex)
    padded[: len(chir)] = chir * win
    chiq = transform.inverse(padded)
    return FTRResult(q=kstep * np.arange(npts), chiq=chiq)
