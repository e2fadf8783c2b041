"""XAFSForge analysis module: normalization and k-space conversion."""

from xafsforge.analysis.normalization import (
    EdgeRanges,
    SpectrumNormalizer,
    default_ranges,
)

from xafsforge.analysis.kspace import (
    KSpaceConverter,
    KSpaceData,
)

__all__ = [
    # Normalization
    'EdgeRanges',
    'SpectrumNormalizer',
    'default_ranges',
    # k space
    'KSpaceConverter',
    'KSpaceData',
]
