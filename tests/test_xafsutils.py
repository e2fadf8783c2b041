"""Tests for XAFS constants, index helpers, edge finding and FT windows."""

import numpy as np
import pytest

from xafsforge.core.errors import InvalidWindowError
from xafsforge.core.xafsutils import (
    ETOK,
    KTOE,
    FTWindow,
    etok,
    find_e0,
    find_energy_step,
    ftwindow,
    index_nearest,
    index_of,
    ktoe,
)


class TestConversions:

    def test_etok_constant(self):
        assert ETOK == pytest.approx(0.2624682917, rel=1e-6)
        assert KTOE * ETOK == pytest.approx(1.0)

    def test_round_trip(self):
        k = np.linspace(0.0, 20.0, 41)
        np.testing.assert_allclose(etok(ktoe(k)), k, atol=1e-12)

    def test_known_value(self):
        # 100 eV above the edge is about 5.12 1/Angstrom
        assert float(etok(100.0)) == pytest.approx(5.1232, abs=1e-3)


class TestIndexHelpers:

    def test_index_of(self):
        arr = np.array([1.0, 2.0, 3.0, 4.0])
        assert index_of(arr, 2.5) == 1
        assert index_of(arr, 3.0) == 2
        assert index_of(arr, 10.0) == 3
        assert index_of(arr, 0.0) == 0

    def test_index_nearest(self):
        arr = np.array([1.0, 2.0, 3.0, 4.0])
        assert index_nearest(arr, 2.4) == 1
        assert index_nearest(arr, 2.6) == 2
        assert index_nearest(arr, -5.0) == 0

    def test_energy_step(self):
        energy = np.arange(0.0, 100.0, 0.5)
        assert find_energy_step(energy) == pytest.approx(0.5)


class TestFindE0:

    def test_synthetic_edge(self, synthetic_spectrum, e0):
        found = find_e0(synthetic_spectrum.energy, synthetic_spectrum.mu)
        assert abs(found - e0) < 2.0

    def test_ignores_isolated_spike(self, synthetic_spectrum, e0):
        mu = synthetic_spectrum.mu.copy()
        mu[10] += 5.0  # single-point glitch in the pre-edge
        found = find_e0(synthetic_spectrum.energy, mu)
        assert abs(found - e0) < 2.0


class TestWindows:

    @pytest.fixture
    def grid(self):
        return np.arange(0.0, 20.0, 0.05)

    def test_from_name(self):
        assert FTWindow.from_name("hanning") is FTWindow.HANNING
        assert FTWindow.from_name("Han") is FTWindow.HANNING
        assert FTWindow.from_name("kaiser-bessel") is FTWindow.KAISER_BESSEL
        assert FTWindow.from_name(FTWindow.WELCH) is FTWindow.WELCH

    def test_unknown_name(self):
        with pytest.raises(InvalidWindowError) as excinfo:
            FTWindow.from_name("boxcar")
        assert "boxcar" in str(excinfo.value)

    @pytest.mark.parametrize("name", ["welcome", "sinc", "hamming", "parabola", "gaussians", ""])
    def test_shared_prefix_rejected(self, name):
        with pytest.raises(InvalidWindowError):
            FTWindow.from_name(name)

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Hann", FTWindow.HANNING),
            (" kaiser_bessel ", FTWindow.KAISER_BESSEL),
            ("gauss", FTWindow.GAUSSIAN),
            ("FHANNING", FTWindow.FHANNING),
            ("sine", FTWindow.SINE),
        ],
    )
    def test_aliases(self, name, expected):
        assert FTWindow.from_name(name) is expected

    @pytest.mark.parametrize("window", list(FTWindow))
    def test_window_range(self, grid, window):
        win = ftwindow(grid, xmin=3.0, xmax=15.0, dx=1.0, window=window)
        assert win.shape == grid.shape
        assert win.min() >= -1e-12
        assert win.max() <= 1.0 + 1e-9
        assert win[180] > 0.99  # k = 9, centre of the window

    @pytest.mark.parametrize("window", ["hanning", "parzen", "welch", "sine", "kaiser"])
    def test_window_zero_outside(self, grid, window):
        win = ftwindow(grid, xmin=3.0, xmax=15.0, dx=1.0, window=window)
        assert win[20] == pytest.approx(0.0, abs=1e-12)  # k = 1
        assert win[360] == pytest.approx(0.0, abs=1e-12)  # k = 18

    def test_hanning_plateau(self, grid):
        win = ftwindow(grid, xmin=3.0, xmax=15.0, dx=1.0)
        inner = (grid > 3.6) & (grid < 14.4)
        np.testing.assert_allclose(win[inner], 1.0)

    def test_hanning_taper_monotonic(self, grid):
        win = ftwindow(grid, xmin=3.0, xmax=15.0, dx=1.0)
        lo = win[(grid >= 2.5) & (grid <= 3.5)]
        assert np.all(np.diff(lo) >= -1e-12)

    def test_default_limits(self, grid):
        win = ftwindow(grid, dx=1.0)
        assert win[len(grid) // 2] == pytest.approx(1.0)
