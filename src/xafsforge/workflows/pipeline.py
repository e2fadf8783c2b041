"""
Single-spectrum background removal: normalize, convert to k, fit AUTOBK.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from xafsforge.analysis.kspace import KSpaceConverter
from xafsforge.analysis.normalization import SpectrumNormalizer
from xafsforge.core.config import AutobkConfig
from xafsforge.core.errors import ConvergenceFailure, XAFSError, as_xafs_error
from xafsforge.core.spectrum import KSpaceSignal, Spectrum
from xafsforge.solvers.autobk import AutobkOptimizer, AutobkResult
from xafsforge.solvers.workspace import Workspace

logger = logging.getLogger(__name__)


def remove_background(
    spectrum: Spectrum,
    config: Optional[AutobkConfig] = None,
    workspace: Optional[Workspace] = None,
    standard: Optional[KSpaceSignal] = None,
) -> AutobkResult:
    """
    Run the full background-removal pipeline on one spectrum.

    Parameters
    ----------
    spectrum : Spectrum
        Raw mu(E)
    config : AutobkConfig, optional
        Settings; defaults are used when omitted
    workspace : Workspace, optional
        Reusable buffers of the calling worker
    standard : KSpaceSignal, optional
        Expected chi(k) kept out of the background

    Returns
    -------
    AutobkResult

    Raises
    ------
    ConvergenceFailure
        If the optimizer ran out of iterations and
        ``config.accept_unconverged`` is False; ``best_fit`` holds the result
    XAFSError
        Any other classified failure
    """
    config = (config or AutobkConfig()).validate()
    optimizer = AutobkOptimizer(config, workspace=workspace, standard=standard)
    normalizer = SpectrumNormalizer(config.normalization, min_points=config.min_points)
    converter = KSpaceConverter.from_config(config)

    try:
        normalized = normalizer.normalize(spectrum, e0=config.e0, edge_step=config.edge_step)
        kdata = converter.convert(normalized)
        result = optimizer.fit(normalized, kdata)
    except XAFSError:
        raise
    except (np.linalg.LinAlgError, ArithmeticError, ValueError, IndexError, TypeError, OSError) as exc:
        raise as_xafs_error(exc) from exc

    if not result.converged and not config.accept_unconverged:
        raise ConvergenceFailure(result.iterations, result.residual_norm, best_fit=result)

    logger.info(
        "Background removed%s: e0=%.2f eV, edge step %.4g, %d iterations (%s)",
        f" for {spectrum.label}" if spectrum.label else "",
        result.e0, result.edge_step, result.iterations, result.termination.value,
    )
    return result
