"""
Error taxonomy for XAFS background removal.

Every failure raised by the package is an ``XAFSError``. Errors are grouped
by domain (data, normalization, background, transform, I/O, math); each
concrete error carries structured fields so callers can branch on kind and
inspect the numbers that caused it.

Errors are plain values: they hold only numbers and short strings, they
pickle across process boundaries and ``clone()`` keeps the ``__cause__``
chain, so a batch can collect failures from many workers.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np


class ErrorKind(Enum):
    """Domain of an error."""

    DATA = "data"
    NORMALIZATION = "normalization"
    BACKGROUND = "background"
    TRANSFORM = "transform"
    IO = "io"
    MATH = "math"


def _restore_error(cls, message: str, state: Dict[str, Any], cause: Optional[BaseException]):
    err = cls.__new__(cls)
    Exception.__init__(err, message)
    err.__dict__.update(state)
    err.__cause__ = cause
    return err


class XAFSError(Exception):
    """Top-level error for all XAFS processing failures."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self._detail_names: Tuple[str, ...] = tuple(details)
        for name, value in details.items():
            setattr(self, name, value)

    @property
    def details(self) -> Dict[str, Any]:
        """Structured fields of the error."""
        return {name: getattr(self, name) for name in self._detail_names}

    def clone(self) -> "XAFSError":
        """Independent copy with the same kind, message, fields and cause."""
        return copy.copy(self)

    def chain(self) -> Tuple[BaseException, ...]:
        """This error followed by its causes, outermost first."""
        out = []
        current: Optional[BaseException] = self
        while current is not None and not any(current is seen for seen in out):
            out.append(current)
            current = current.__cause__
        return tuple(out)

    def __reduce__(self):
        return (_restore_error, (type(self), self.message, self.__dict__.copy(), self.__cause__))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, XAFSError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.details == other.details
        )

    def __hash__(self) -> int:
        return hash((type(self), self.message))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{type(self).__name__}({fields})"


# ============================================================================
# Data validity
# ============================================================================

class DataError(XAFSError):
    """Input data is unusable."""

    kind = ErrorKind.DATA


class InsufficientDataError(DataError):
    def __init__(self, min_points: int, actual: int):
        super().__init__(
            f"insufficient data: need at least {min_points} points, got {actual}",
            min_points=min_points,
            actual=actual,
        )


class LengthMismatchError(DataError):
    def __init__(self, energy_len: int, mu_len: int):
        super().__init__(
            f"data array length mismatch: energy has {energy_len} points, mu has {mu_len} points",
            energy_len=energy_len,
            mu_len=mu_len,
        )


class NonMonotonicEnergyError(DataError):
    """Energy values are not strictly increasing."""

    def __init__(self, index: int, previous: float, value: float):
        super().__init__(
            f"energy is not strictly increasing at index {index}: {previous} -> {value}",
            index=index,
            previous=previous,
            value=value,
        )


class NonFiniteValuesError(DataError):
    def __init__(self, indices: Sequence[int]):
        indices = tuple(int(i) for i in indices)
        shown = ", ".join(str(i) for i in indices[:10])
        if len(indices) > 10:
            shown += ", ..."
        super().__init__(
            f"data contains non-finite values at indices: [{shown}]",
            indices=indices,
        )


class InvalidConfigError(DataError):
    def __init__(self, option: str, reason: str):
        super().__init__(
            f"invalid configuration option '{option}': {reason}",
            option=option,
            reason=reason,
        )


# ============================================================================
# Normalization
# ============================================================================

class NormalizationError(XAFSError):
    """Pre-/post-edge normalization failed."""

    kind = ErrorKind.NORMALIZATION


class E0OutOfRangeError(NormalizationError):
    def __init__(self, e0: float, data_min: float, data_max: float):
        super().__init__(
            f"edge energy (e0={e0}) is outside data range [{data_min}, {data_max}]",
            e0=e0,
            data_min=data_min,
            data_max=data_max,
        )


class PreEdgeFitError(NormalizationError):
    def __init__(self, start: float, end: float, n_points: int):
        super().__init__(
            f"pre-edge fitting failed: {n_points} points in range [{start}, {end}]",
            start=start,
            end=end,
            n_points=n_points,
        )


class PostEdgeFitError(NormalizationError):
    def __init__(self, order: int, n_points: int):
        super().__init__(
            f"post-edge fitting failed: polynomial order {order} too high for {n_points} points",
            order=order,
            n_points=n_points,
        )


class EdgeStepTooSmallError(NormalizationError):
    def __init__(self, edge_step: float, minimum: float):
        super().__init__(
            f"edge step is too small: {edge_step} (minimum: {minimum})",
            edge_step=edge_step,
            minimum=minimum,
        )


# ============================================================================
# Background removal
# ============================================================================

class BackgroundError(XAFSError):
    """AUTOBK background removal failed."""

    kind = ErrorKind.BACKGROUND


class InvalidRbkgError(BackgroundError):
    def __init__(self, rbkg: float):
        super().__init__(f"invalid rbkg parameter: {rbkg} (must be > 0)", rbkg=rbkg)


class SplineKnotsError(BackgroundError):
    def __init__(self, kmin: float, kmax: float, nknots: int, reason: str):
        super().__init__(
            f"spline knot calculation failed for k-range [{kmin}, {kmax}] with {nknots} knots: {reason}",
            kmin=kmin,
            kmax=kmax,
            nknots=nknots,
            reason=reason,
        )


class ConvergenceFailure(BackgroundError):
    """The optimizer ran out of iterations.

    Recoverable: ``best_fit`` holds the best-so-far result so the caller can
    accept it, retry with a relaxed tolerance, or reject it.
    """

    def __init__(self, iterations: int, residual_norm: float, best_fit: Any = None):
        super().__init__(
            f"Levenberg-Marquardt did not converge after {iterations} iterations "
            f"(residual norm {residual_norm:.6g})",
            iterations=iterations,
            residual_norm=residual_norm,
        )
        self.best_fit = best_fit


class BackgroundNotImplementedError(BackgroundError):
    def __init__(self, feature: str):
        super().__init__(f"background removal feature not implemented: {feature}", feature=feature)


# ============================================================================
# Fourier transform
# ============================================================================

class TransformError(XAFSError):
    """Forward or inverse Fourier transform failed."""

    kind = ErrorKind.TRANSFORM


class TransformSizeMismatchError(TransformError):
    def __init__(self, expected: int, actual: int, direction: str = "forward"):
        super().__init__(
            f"{direction} transform expected {expected} points, got {actual}",
            expected=expected,
            actual=actual,
            direction=direction,
        )


class TransformGridError(TransformError):
    def __init__(self, npts: int, nfft: int):
        super().__init__(
            f"k grid of {npts} points does not fit in an FFT of size {nfft}",
            npts=npts,
            nfft=nfft,
        )


class InvalidWindowError(TransformError):
    def __init__(self, window: str):
        super().__init__(f"invalid FFT window: {window}", window=window)


# ============================================================================
# I/O
# ============================================================================

class XAFSIOError(XAFSError):
    """Reading or parsing input at the package boundary failed."""

    kind = ErrorKind.IO


class ConfigReadError(XAFSIOError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"failed to read configuration {path}: {reason}", path=path, reason=reason)


class IOFailure(XAFSIOError):
    def __init__(self, reason: str):
        super().__init__(f"I/O failure: {reason}", reason=reason)


# ============================================================================
# Math
# ============================================================================

class MathError(XAFSError):
    """A numerical operation failed."""

    kind = ErrorKind.MATH


class KGridError(MathError):
    def __init__(self, e0: float, max_energy: float, reason: str = "edge energy at or above maximum data energy"):
        super().__init__(
            f"cannot construct k grid (e0={e0}, max energy={max_energy}): {reason}",
            e0=e0,
            max_energy=max_energy,
            reason=reason,
        )


class SingularSystemError(MathError):
    def __init__(self, iteration: int, damping: float):
        super().__init__(
            f"damped normal equations are singular at iteration {iteration} (damping={damping:.3g})",
            iteration=iteration,
            damping=damping,
        )


class NonFiniteResidualError(MathError):
    """The residual or Jacobian handed to the solver holds NaN or Inf."""

    def __init__(self, iteration: int, where: str):
        super().__init__(
            f"non-finite values in the {where} at iteration {iteration}",
            iteration=iteration,
            where=where,
        )


class MathFailure(MathError):
    def __init__(self, reason: str):
        super().__init__(f"mathematical operation failed: {reason}", reason=reason)


# ============================================================================
# Conversion boundary
# ============================================================================

def as_xafs_error(exc: BaseException) -> XAFSError:
    """Convert any exception into an ``XAFSError``.

    ``XAFSError`` instances are returned unchanged. Foreign exceptions are
    classified by type and chained as ``__cause__`` of the new error.
    """
    if isinstance(exc, XAFSError):
        return exc

    reason = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, OSError):
        err: XAFSError = IOFailure(reason)
    elif isinstance(exc, (np.linalg.LinAlgError, FloatingPointError, ZeroDivisionError, OverflowError)):
        err = MathFailure(reason)
    elif isinstance(exc, (ValueError, TypeError, IndexError)):
        err = DataError(f"invalid data: {reason}", reason=reason)
    else:
        err = XAFSError(f"unexpected error: {reason}", reason=reason)
    err.__cause__ = exc
    return err
