"""Core data structures, errors, configuration and transforms."""

from xafsforge.core.config import AutobkConfig, NormalizationConfig
from xafsforge.core.errors import (
	BackgroundError,
	ConvergenceFailure,
	DataError,
	ErrorKind,
	MathError,
	NormalizationError,
	TransformError,
	XAFSError,
	XAFSIOError,
	as_xafs_error,
)
from xafsforge.core.fourier import FourierTransform, xftf, xftr
from xafsforge.core.spectrum import KSpaceSignal, NormalizedSpectrum, Spectrum
from xafsforge.core.xafsutils import ETOK, KTOE, FTWindow, find_e0, ftwindow

__all__ = [
	"AutobkConfig",
	"NormalizationConfig",
	# Errors
	"XAFSError",
	"ErrorKind",
	"DataError",
	"NormalizationError",
	"BackgroundError",
	"TransformError",
	"XAFSIOError",
	"MathError",
	"ConvergenceFailure",
	"as_xafs_error",
	# Data
	"Spectrum",
	"NormalizedSpectrum",
	"KSpaceSignal",
	# Transforms
	"FourierTransform",
	"xftf",
	"xftr",
	"FTWindow",
	"ftwindow",
	"find_e0",
	"ETOK",
	"KTOE",
]
