"""
Batch XAFS Background Removal

Runs the single-spectrum pipeline over many independent spectra on a
worker pool. Each worker owns one ``Workspace`` for its lifetime and
reuses it for every spectrum it is handed. Outcomes land in an indexed
slot list so the output order matches the input order, and a failing
spectrum is recorded as an error outcome without stopping the batch.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import (
    CancelledError,
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import pandas as pd

from xafsforge.core.config import AutobkConfig, read_json_config
from xafsforge.core.errors import (
    ConvergenceFailure,
    InvalidConfigError,
    XAFSError,
    as_xafs_error,
)
from xafsforge.core.spectrum import KSpaceSignal, Spectrum
from xafsforge.solvers.autobk import AutobkResult
from xafsforge.solvers.workspace import Workspace
from xafsforge.workflows.pipeline import remove_background

logger = logging.getLogger(__name__)

EXECUTORS = ("process", "thread", "serial")


# ============================================================================
# Batch Processing Configuration
# ============================================================================

@dataclass
class BatchConfig:
    """Configuration for batch background removal."""

    autobk: AutobkConfig = field(default_factory=AutobkConfig)

    # Worker pool
    executor: str = "process"  # or "thread", "serial"
    max_workers: Optional[int] = None  # os.cpu_count() when None

    def validate(self) -> "BatchConfig":
        if self.executor not in EXECUTORS:
            raise InvalidConfigError("executor", f"expected one of {EXECUTORS}, got {self.executor!r}")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigError("max_workers", f"must be >= 1, got {self.max_workers}")
        self.autobk.validate()
        return self

    @property
    def workers(self) -> int:
        return self.max_workers or os.cpu_count() or 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "autobk": self.autobk.to_dict(),
            "executor": self.executor,
            "max_workers": self.max_workers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchConfig":
        data = dict(data)
        unknown = set(data) - {"autobk", "executor", "max_workers"}
        if unknown:
            raise InvalidConfigError(sorted(unknown)[0], "unknown option for BatchConfig")
        autobk = data.pop("autobk", None)
        config = cls(**data)
        if isinstance(autobk, dict):
            config.autobk = AutobkConfig.from_dict(autobk)
        elif autobk is not None:
            config.autobk = autobk
        return config

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "BatchConfig":
        return cls.from_dict(read_json_config(path))


# ============================================================================
# Processing Results
# ============================================================================

class OutcomeStatus(Enum):
    """Per-spectrum outcome."""

    OK = "ok"
    UNCONVERGED = "unconverged"  # best-effort fit attached
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SpectrumOutcome:
    """Result of processing a single spectrum."""

    index: int
    label: str
    status: OutcomeStatus
    result: Optional[AutobkResult] = None
    error: Optional[XAFSError] = None
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    @classmethod
    def cancelled(cls, index: int, label: str = "") -> "SpectrumOutcome":
        return cls(index=index, label=label, status=OutcomeStatus.CANCELLED)

    @classmethod
    def failed(cls, index: int, label: str, error: BaseException, elapsed_s: float = 0.0) -> "SpectrumOutcome":
        return cls(
            index=index,
            label=label,
            status=OutcomeStatus.FAILED,
            error=as_xafs_error(error),
            elapsed_s=elapsed_s,
        )


@dataclass
class BatchResult:
    """Result of batch processing, one outcome per input spectrum in input order."""

    outcomes: List[SpectrumOutcome]
    config: BatchConfig

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self) -> Iterator[SpectrumOutcome]:
        return iter(self.outcomes)

    def __getitem__(self, index: int) -> SpectrumOutcome:
        return self.outcomes[index]

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def n_ok(self) -> int:
        return self.count(OutcomeStatus.OK)

    @property
    def n_failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    @property
    def failures(self) -> List[SpectrumOutcome]:
        """Outcomes that carry an error (failed or unconverged)."""
        return [o for o in self.outcomes if o.error is not None]

    @property
    def results(self) -> List[Optional[AutobkResult]]:
        return [o.result for o in self.outcomes]

    def to_dataframe(self):
        """
        Convert batch outcomes to a pandas DataFrame.

        One row per spectrum with columns index, label, status,
        elapsed_s, error_kind, error, and the fit diagnostics from
        ``AutobkResult.summary()`` where a fit is available.
        """
        rows = []
        for outcome in self.outcomes:
            row: Dict[str, Any] = {
                "index": outcome.index,
                "label": outcome.label,
                "status": outcome.status.value,
                "elapsed_s": outcome.elapsed_s,
                "error_kind": None,
                "error": None,
            }
            if outcome.error is not None:
                kind = outcome.error.kind
                row["error_kind"] = kind.value if kind is not None else None
                row["error"] = str(outcome.error)
            if outcome.result is not None:
                row.update(outcome.result.summary())
            rows.append(row)
        return pd.DataFrame(rows)


# ============================================================================
# Processing Functions
# ============================================================================

def process_single_spectrum(
    index: int,
    spectrum: Spectrum,
    config: Optional[AutobkConfig] = None,
    workspace: Optional[Workspace] = None,
    standard: Optional[KSpaceSignal] = None,
) -> SpectrumOutcome:
    """
    Process one spectrum and capture its outcome.

    Parameters
    ----------
    index : int
        Position of the spectrum in the batch
    spectrum : Spectrum
        Raw data
    config : AutobkConfig, optional
        Background-removal settings
    workspace : Workspace, optional
        Buffers of the calling worker
    standard : KSpaceSignal, optional
        Expected chi(k)

    Returns
    -------
    SpectrumOutcome
        Never raises for spectrum-level failures
    """
    label = spectrum.label
    start = time.perf_counter()
    try:
        result = remove_background(spectrum, config, workspace=workspace, standard=standard)
    except ConvergenceFailure as exc:
        logger.warning("Spectrum %s (%s) did not converge: %s", index, label, exc)
        return SpectrumOutcome(
            index=index,
            label=label,
            status=OutcomeStatus.UNCONVERGED,
            result=exc.best_fit,
            error=exc,
            elapsed_s=time.perf_counter() - start,
        )
    except XAFSError as exc:
        logger.error("Spectrum %s (%s) failed: %s", index, label, exc)
        return SpectrumOutcome.failed(index, label, exc, time.perf_counter() - start)
    except Exception as exc:
        logger.exception("Unexpected error processing spectrum %s (%s)", index, label)
        return SpectrumOutcome.failed(index, label, exc, time.perf_counter() - start)

    status = OutcomeStatus.OK if result.converged else OutcomeStatus.UNCONVERGED
    return SpectrumOutcome(
        index=index,
        label=label,
        status=status,
        result=result,
        elapsed_s=time.perf_counter() - start,
    )


# Per-worker state, created by the pool initializer
_process_workspace: Optional[Workspace] = None
_thread_state = threading.local()


def _init_process_worker() -> None:
    global _process_workspace
    _process_workspace = Workspace()


def _run_in_process(index, spectrum, config, standard) -> SpectrumOutcome:
    global _process_workspace
    if _process_workspace is None:
        _process_workspace = Workspace()
    return process_single_spectrum(index, spectrum, config, _process_workspace, standard)


def _init_thread_worker() -> None:
    _thread_state.workspace = Workspace()


def _run_in_thread(index, spectrum, config, standard) -> SpectrumOutcome:
    workspace = getattr(_thread_state, "workspace", None)
    if workspace is None:
        workspace = _thread_state.workspace = Workspace()
    return process_single_spectrum(index, spectrum, config, workspace, standard)


class BatchCoordinator:
    """
    Run background removal over many spectra.

    Parameters
    ----------
    config : BatchConfig, optional
        Pool and fit settings
    cancel_event : threading.Event, optional
        Once set, spectra not yet started are reported as cancelled;
        running ones finish

    Examples
    --------
    >>> coordinator = BatchCoordinator(BatchConfig(executor="thread"))
    >>> batch = coordinator.run(spectra)
    >>> batch.to_dataframe()
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = (config or BatchConfig()).validate()
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(
        self,
        spectra: Sequence[Spectrum],
        standard: Optional[KSpaceSignal] = None,
    ) -> BatchResult:
        """
        Process ``spectra``; one outcome per input, in input order.
        """
        slots: List[Optional[SpectrumOutcome]] = [None for _ in spectra]
        logger.info(
            "Processing %d spectra (%s, %d workers)",
            len(spectra), self.config.executor,
            1 if self.config.executor == "serial" else self.config.workers,
        )

        if self.config.executor == "serial" or len(spectra) <= 1:
            self._run_serial(spectra, standard, slots)
        else:
            self._run_pool(spectra, standard, slots)

        outcomes = [
            slot if slot is not None else SpectrumOutcome.cancelled(i, spectra[i].label)
            for i, slot in enumerate(slots)
        ]
        batch = BatchResult(outcomes=outcomes, config=self.config)
        logger.info(
            "Batch finished: %d ok, %d unconverged, %d failed, %d cancelled",
            batch.n_ok, batch.count(OutcomeStatus.UNCONVERGED),
            batch.n_failed, batch.count(OutcomeStatus.CANCELLED),
        )
        return batch

    def _run_serial(self, spectra, standard, slots) -> None:
        workspace = Workspace()
        for idx, spectrum in enumerate(spectra):
            if self.cancelled:
                break
            slots[idx] = process_single_spectrum(
                idx, spectrum, self.config.autobk, workspace, standard
            )

    def _make_executor(self) -> Executor:
        if self.config.executor == "thread":
            return ThreadPoolExecutor(
                max_workers=self.config.workers, initializer=_init_thread_worker
            )
        return ProcessPoolExecutor(
            max_workers=self.config.workers, initializer=_init_process_worker
        )

    def _run_pool(self, spectra, standard, slots) -> None:
        task = _run_in_thread if self.config.executor == "thread" else _run_in_process
        autobk = self.config.autobk

        with self._make_executor() as executor:
            future_map = {}
            for idx, spectrum in enumerate(spectra):
                if self.cancelled:
                    break
                future = executor.submit(task, idx, spectrum, autobk, standard)
                future_map[future] = idx

            for future in as_completed(future_map):
                idx = future_map[future]
                try:
                    slots[idx] = future.result()
                except CancelledError:
                    slots[idx] = SpectrumOutcome.cancelled(idx, spectra[idx].label)
                except Exception as exc:
                    logger.exception("Worker failed for spectrum %s", idx)
                    slots[idx] = SpectrumOutcome.failed(idx, spectra[idx].label, exc)

                if self.cancelled:
                    for pending in future_map:
                        pending.cancel()


def process_batch(
    spectra: Sequence[Spectrum],
    config: Optional[BatchConfig] = None,
    standard: Optional[KSpaceSignal] = None,
    cancel_event: Optional[threading.Event] = None,
) -> BatchResult:
    """
    Process a batch of spectra.

    Parameters
    ----------
    spectra : sequence of Spectrum
        Input spectra
    config : BatchConfig, optional
        Processing configuration
    standard : KSpaceSignal, optional
        Expected chi(k) applied to every spectrum
    cancel_event : threading.Event, optional
        Coarse cancellation flag

    Returns
    -------
    BatchResult
        Complete batch results
    """
    return BatchCoordinator(config, cancel_event).run(spectra, standard)


# ============================================================================
# Output Functions
# ============================================================================

def results_to_dataframe(batch_result: BatchResult):
    """Convert batch results to pandas DataFrame."""
    return batch_result.to_dataframe()
