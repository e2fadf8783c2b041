"""Configuration for normalization and AUTOBK background removal."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from xafsforge.core.errors import (
    ConfigReadError,
    InvalidConfigError,
    InvalidRbkgError,
)
from xafsforge.core.spectrum import DEFAULT_MIN_POINTS
from xafsforge.core.xafsutils import FTWindow

BACKGROUND_METHODS = ("autobk", "ilpbkg")
JACOBIAN_METHODS = ("analytic", "perturbation")


def read_json_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a JSON object from ``path``; any failure raises ``ConfigReadError``."""
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except OSError as exc:
        raise ConfigReadError(str(path), exc.strerror or str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise ConfigReadError(str(path), f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ConfigReadError(str(path), "top-level JSON value must be an object")
    return data


def _check_keys(cls, data: Dict[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    for key in data:
        if key not in known:
            raise InvalidConfigError(key, f"unknown option for {cls.__name__}")


@dataclass
class NormalizationConfig:
    """
    Pre-/post-edge normalization settings.

    Ranges are relative to e0 in eV; ``None`` selects the data-driven
    default.
    """

    pre_edge_start: Optional[float] = None
    pre_edge_end: Optional[float] = None
    norm_start: Optional[float] = None
    norm_end: Optional[float] = None
    norm_polyorder: Optional[int] = None
    n_victoreen: int = 0
    min_edge_step: float = 1.0e-12

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizationConfig":
        _check_keys(cls, data)
        return cls(**data)


@dataclass
class AutobkConfig:
    """
    AUTOBK background-removal configuration.

    Attributes
    ----------
    e0 : float, optional
        Edge energy override (eV); found from the data when None
    edge_step : float, optional
        Edge-step override
    rbkg : float
        R cutoff (Angstrom) below which Fourier amplitude is minimized
    kweight : int
        k-weighting exponent for the transform
    kmin, kmax : float
        Usable k range; ``kmax`` defaults to the data limit
    kstep : float
        k-grid spacing
    nknots : int, optional
        Number of spline knots; derived from rbkg and the k range when None
    nfft : int
        FFT length (power of two)
    dk : float
        Window taper width
    window : str
        Window name (hanning, parzen, welch, gaussian, sine, kaiser, fhanning)
    nclamp : int
        Number of end points clamped at each end of the k range
    clamp_lo, clamp_hi : float
        Clamp weights at low and high k
    max_iterations : int
        Optimizer iteration budget
    convergence_tolerance : float
        Relative objective decrease that ends the optimization
    max_rejections : int
        Consecutive rejected steps before the optimizer stops
    initial_damping : float
        Starting Levenberg-Marquardt damping factor
    jacobian : str
        "analytic" (spline basis transform) or "perturbation"
    method : str
        Background method; only "autobk" is implemented
    min_points : int
        Minimum number of samples per spectrum
    extrapolation_points : int
        Points used for the high-k slope when kmax exceeds the data
    accept_unconverged : bool
        Return best-effort fits instead of raising ``ConvergenceFailure``
    normalization : NormalizationConfig
        Pre-/post-edge settings
    """

    e0: Optional[float] = None
    edge_step: Optional[float] = None
    rbkg: float = 1.0
    kweight: int = 1
    kmin: float = 0.0
    kmax: Optional[float] = None
    kstep: float = 0.05
    nknots: Optional[int] = None
    nfft: int = 2048
    dk: float = 0.1
    window: str = "hanning"
    nclamp: int = 3
    clamp_lo: float = 0.0
    clamp_hi: float = 1.0
    max_iterations: int = 100
    convergence_tolerance: float = 1.0e-6
    max_rejections: int = 10
    initial_damping: float = 1.0e-3
    jacobian: str = "analytic"
    method: str = "autobk"
    min_points: int = DEFAULT_MIN_POINTS
    extrapolation_points: int = 10
    accept_unconverged: bool = False
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)

    def validate(self) -> "AutobkConfig":
        """Raise an ``XAFSError`` for inconsistent settings; returns self."""
        if not (self.rbkg > 0 and math.isfinite(self.rbkg)):
            raise InvalidRbkgError(self.rbkg)
        if self.kstep <= 0:
            raise InvalidConfigError("kstep", f"must be > 0, got {self.kstep}")
        if not (self.kweight >= 0 and math.isfinite(self.kweight)):
            raise InvalidConfigError("kweight", f"must be >= 0, got {self.kweight}")
        if self.kmin < 0:
            raise InvalidConfigError("kmin", f"must be >= 0, got {self.kmin}")
        if self.kmax is not None and self.kmax <= self.kmin:
            raise InvalidConfigError("kmax", f"must exceed kmin={self.kmin}, got {self.kmax}")
        if self.nfft < 2:
            raise InvalidConfigError("nfft", f"must be >= 2, got {self.nfft}")
        if self.max_iterations < 1:
            raise InvalidConfigError("max_iterations", f"must be >= 1, got {self.max_iterations}")
        if self.convergence_tolerance < 0:
            raise InvalidConfigError(
                "convergence_tolerance", f"must be >= 0, got {self.convergence_tolerance}"
            )
        if self.nclamp < 0:
            raise InvalidConfigError("nclamp", f"must be >= 0, got {self.nclamp}")
        if self.jacobian not in JACOBIAN_METHODS:
            raise InvalidConfigError("jacobian", f"expected one of {JACOBIAN_METHODS}")
        if self.method.lower() not in BACKGROUND_METHODS:
            raise InvalidConfigError("method", f"expected one of {BACKGROUND_METHODS}")
        if self.min_points < 2:
            raise InvalidConfigError("min_points", f"must be >= 2, got {self.min_points}")
        FTWindow.from_name(self.window)
        return self

    @property
    def ft_window(self) -> FTWindow:
        return FTWindow.from_name(self.window)

    def replace(self, **changes: Any) -> "AutobkConfig":
        """Copy with some options changed."""
        data = self.to_dict()
        data.update(changes)
        return AutobkConfig.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutobkConfig":
        data = dict(data)
        _check_keys(cls, data)
        norm = data.pop("normalization", None)
        if isinstance(norm, dict):
            norm = NormalizationConfig.from_dict(norm)
        config = cls(**data)
        if norm is not None:
            config.normalization = norm
        return config

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "AutobkConfig":
        """Load a configuration from a JSON file."""
        return cls.from_dict(read_json_config(path))
