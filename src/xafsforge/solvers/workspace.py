"""Per-worker scratch buffers reused across iterations and spectra."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from xafsforge.core.fourier import FourierTransform, next_power_of_two

logger = logging.getLogger(__name__)


class Workspace:
    """
    Scratch space owned by a single worker.

    Holds one Jacobian buffer and one ``FourierTransform`` per FFT size and
    k step. The Jacobian buffer grows to the largest shape requested and
    smaller requests get a view into it; transforms are re-bound to each
    spectrum's grid length. A worker therefore stops allocating once it has
    seen its largest spectrum. A workspace must never be shared between
    concurrent fits.
    """

    def __init__(self):
        self._jacobian: Optional[NDArray] = None
        self._transforms: Dict[Tuple[int, float], FourierTransform] = {}
        self._jacobian_allocations = 0
        self.n_fits = 0

    def jacobian(self, n_residuals: int, n_params: int) -> NDArray:
        """``(n_residuals, n_params)`` view of the shared Jacobian buffer.

        Only the view's entries are meaningful; callers fill every entry
        they read.
        """
        if self._jacobian is None:
            rows, cols = 0, 0
        else:
            rows, cols = self._jacobian.shape
        if n_residuals > rows or n_params > cols:
            shape = (max(rows, n_residuals), max(cols, n_params))
            logger.debug("Allocating Jacobian buffer %s", shape)
            self._jacobian = np.zeros(shape)
            self._jacobian_allocations += 1
        return self._jacobian[:n_residuals, :n_params]

    def transform(self, npts: int, nfft: int, kstep: float) -> FourierTransform:
        """Cached transform for ``(nfft, kstep)``, bound to ``npts`` points."""
        key = (next_power_of_two(nfft), float(kstep))
        transform = self._transforms.get(key)
        if transform is None:
            transform = FourierTransform(npts, nfft=nfft, kstep=kstep)
            self._transforms[key] = transform
        return transform.rebind(npts)

    @property
    def n_allocations(self) -> int:
        """Buffers allocated so far (Jacobian plus transform scratch)."""
        return self._jacobian_allocations + sum(t.n_allocations for t in self._transforms.values())

    def clear(self) -> None:
        self._jacobian = None
        self._jacobian_allocations = 0
        self._transforms.clear()
