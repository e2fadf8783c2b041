"""XAFSForge workflows module for complete background-removal pipelines."""

from xafsforge.workflows.pipeline import remove_background

from xafsforge.workflows.batch_processing import (
    BatchConfig,
    BatchCoordinator,
    BatchResult,
    OutcomeStatus,
    SpectrumOutcome,
    process_single_spectrum,
    process_batch,
    results_to_dataframe,
)

__all__ = [
    # Single spectrum
    'remove_background',
    # Batch processing
    'BatchConfig',
    'BatchCoordinator',
    'BatchResult',
    'OutcomeStatus',
    'SpectrumOutcome',
    'process_single_spectrum',
    'process_batch',
    'results_to_dataframe',
]
