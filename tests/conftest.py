"""Shared fixtures: synthetic K-edge absorption spectra with known EXAFS."""

import numpy as np
import pytest

from xafsforge.core.spectrum import Spectrum
from xafsforge.core.xafsutils import ETOK, ktoe

E0 = 9000.0


def exafs_chi(k, amplitude=0.2, distance=2.5, phase=0.3):
    """Single-shell chi(k) that vanishes at k = 0."""
    k = np.asarray(k, dtype=float)
    return amplitude * np.sin(2.0 * distance * k + phase) * np.exp(-0.01 * k ** 2) * k / (1.0 + k)


def make_spectrum(e0=E0, kmax=14.0, amplitude=0.2, scale=1.0, label="", with_e0=False):
    """Linear pre-edge, arctan edge and a damped single-shell EXAFS."""
    energy = np.concatenate((
        np.arange(e0 - 200.0, e0 - 20.0, 5.0),
        np.arange(e0 - 20.0, e0 + 40.0, 0.5),
        e0 + ktoe(np.arange(3.3, kmax, 0.05)),
    ))
    rel = energy - e0
    k = np.sqrt(ETOK * np.maximum(rel, 0.0))
    pre_edge = 0.5 - 2.0e-4 * rel
    edge = 0.5 + np.arctan(rel / 1.5) / np.pi
    mu = scale * (pre_edge + edge * (1.0 + exafs_chi(k, amplitude=amplitude)))
    return Spectrum(energy=energy, mu=mu, e0=e0 if with_e0 else None, label=label)


@pytest.fixture
def e0():
    return E0


@pytest.fixture
def synthetic_spectrum():
    return make_spectrum()


@pytest.fixture
def spectrum_factory():
    return make_spectrum


@pytest.fixture
def true_chi():
    return exafs_chi
