"""Tests for the E -> k conversion and FT window setup."""

import logging

import numpy as np
import pytest

from xafsforge.analysis.kspace import KSpaceConverter
from xafsforge.analysis.normalization import SpectrumNormalizer
from xafsforge.core.config import AutobkConfig
from xafsforge.core.errors import KGridError
from xafsforge.core.spectrum import NormalizedSpectrum, Spectrum
from xafsforge.core.xafsutils import ftwindow


@pytest.fixture
def normalized(synthetic_spectrum, e0):
    return SpectrumNormalizer().normalize(synthetic_spectrum, e0=e0)


def _normalized_stub(energy, mu, e0):
    zeros = np.zeros_like(energy)
    return NormalizedSpectrum(
        spectrum=Spectrum(energy, mu),
        e0=e0,
        edge_step=1.0,
        pre_edge_coefficients=np.zeros(2),
        post_edge_coefficients=np.zeros(3),
        pre_edge=zeros,
        post_edge=zeros,
        norm=mu,
        flat=mu,
    )


class TestGrid:

    def test_grid_length(self, normalized):
        kdata = KSpaceConverter(kmax=10.0).convert(normalized)
        assert kdata.npts == 201
        assert kdata.k[0] == 0.0
        assert kdata.k[-1] == pytest.approx(10.0)
        assert kdata.n_extrapolated == 0

    def test_kraw_starts_at_edge(self, normalized, e0):
        kdata = KSpaceConverter().convert(normalized)
        assert normalized.energy[kdata.iek0] <= e0
        assert normalized.energy[kdata.iek0 + 1] > e0
        assert kdata.kraw[0] == pytest.approx(0.0)
        assert np.all(np.diff(kdata.kraw) > 0)

    def test_default_kmax_is_data_limit(self, normalized):
        kdata = KSpaceConverter().convert(normalized)
        assert kdata.kmax == kdata.kraw[-1]
        assert kdata.iemax == len(normalized.energy) - 1

    def test_iemax_limits_raw_range(self, normalized):
        kdata = KSpaceConverter(kmax=8.0).convert(normalized)
        assert kdata.iemax < len(normalized.energy) - 1
        assert kdata.kraw[kdata.nraw - 1] >= 8.0

    def test_mu_interpolated(self, normalized):
        kdata = KSpaceConverter(kmax=12.0).convert(normalized)
        expected = np.interp(kdata.k, kdata.kraw, normalized.mu[kdata.iek0:])
        np.testing.assert_allclose(kdata.mu, expected)

    def test_from_config(self, normalized):
        config = AutobkConfig(kstep=0.1, kweight=2, kmax=11.0)
        kdata = KSpaceConverter.from_config(config).convert(normalized)
        assert kdata.kstep == 0.1
        assert kdata.kweight == 2
        assert kdata.npts == 111


class TestWindow:

    def test_ftwin_is_weighted_window(self, normalized):
        kdata = KSpaceConverter(kweight=2, kmin=1.0, kmax=12.0, dk=0.5).convert(normalized)
        np.testing.assert_allclose(kdata.ftwin, kdata.k ** 2 * kdata.window)
        expected = ftwindow(kdata.k, xmin=1.0, xmax=12.0, dx=0.5, dx2=0.5)
        np.testing.assert_allclose(kdata.window, expected)

    def test_window_vanishes_at_origin(self, normalized):
        kdata = KSpaceConverter(kmin=1.0).convert(normalized)
        assert kdata.window[0] == pytest.approx(0.0, abs=1e-12)


class TestExtrapolation:

    def test_linear_tail(self, normalized, caplog):
        with caplog.at_level(logging.WARNING, logger="xafsforge.analysis.kspace"):
            kdata = KSpaceConverter(kmax=16.0).convert(normalized)
        assert kdata.n_extrapolated > 30
        tail = kdata.mu[-kdata.n_extrapolated:]
        np.testing.assert_allclose(np.diff(tail, 2), 0.0, atol=1e-10)
        assert "extrapolating" in caplog.text

    def test_tail_continuous(self, normalized):
        kdata = KSpaceConverter(kmax=16.0).convert(normalized)
        first = len(kdata.k) - kdata.n_extrapolated
        step = abs(kdata.mu[first] - kdata.mu[first - 1])
        assert step < 0.05


class TestGridErrors:

    def test_e0_at_last_energy(self):
        energy = np.linspace(8900.0, 9100.0, 50)
        mu = np.linspace(0.0, 1.0, 50)
        with pytest.raises(KGridError) as excinfo:
            KSpaceConverter().convert(_normalized_stub(energy, mu, e0=9100.0))
        assert excinfo.value.e0 == 9100.0

    def test_grid_too_short(self):
        energy = np.linspace(8900.0, 9100.0, 50)
        mu = np.linspace(0.0, 1.0, 50)
        with pytest.raises(KGridError):
            KSpaceConverter().convert(_normalized_stub(energy, mu, e0=9099.9999))
