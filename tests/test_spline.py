"""Tests for knot placement and the background B-spline."""

import math

import numpy as np
import pytest

from xafsforge.core.errors import SplineKnotsError
from xafsforge.solvers.spline import MAX_KNOTS, MIN_KNOTS, BackgroundSpline, build_knots, knot_count


@pytest.fixture
def pool():
    kpool = np.linspace(0.0, 15.0, 301)
    return kpool, 1.0 + 0.02 * kpool + 0.1 * np.sin(0.4 * kpool)


@pytest.fixture
def spline(pool):
    kpool, mupool = pool
    knot_k, knot_y = build_knots(kpool, mupool, 0.0, 15.0, 11)
    return BackgroundSpline.interpolate(knot_k, knot_y)


class TestKnotCount:

    @pytest.mark.parametrize(
        "rbkg, kmin, kmax, expected",
        [
            (1.0, 0.0, 15.0, 11),
            (1.0, 2.0, 12.0, 7),
            (0.1, 0.0, 10.0, MIN_KNOTS),
            (20.0, 0.0, 20.0, MAX_KNOTS),
        ],
    )
    def test_derived(self, rbkg, kmin, kmax, expected):
        assert knot_count(rbkg, kmin, kmax) == expected

    def test_explicit_wins(self):
        assert knot_count(1.0, 0.0, 15.0, nknots=3) == 3


class TestBuildKnots:

    def test_evenly_placed(self, pool):
        kpool, mupool = pool
        knot_k, knot_y = build_knots(kpool, mupool, 0.0, 15.0, 11)
        np.testing.assert_allclose(knot_k, np.linspace(0.0, 15.0, 11), atol=0.05)
        assert len(knot_y) == 11

    def test_local_average(self, pool):
        kpool, mupool = pool
        knot_k, knot_y = build_knots(kpool, mupool, 0.0, 15.0, 11)
        i = int(np.argmin(np.abs(kpool - knot_k[5])))
        expected = (2.0 * mupool[i] + mupool[i + 5] + mupool[i - 5]) / 4.0
        assert knot_y[5] == pytest.approx(expected)
        # end knots clip the averaging window to the pool
        assert knot_y[0] == pytest.approx((3.0 * mupool[0] + mupool[5]) / 4.0)

    def test_empty_range(self, pool):
        kpool, mupool = pool
        with pytest.raises(SplineKnotsError):
            build_knots(kpool, mupool, 5.0, 5.0, 7)

    def test_too_few_knots(self, pool):
        kpool, mupool = pool
        with pytest.raises(SplineKnotsError):
            build_knots(kpool, mupool, 0.0, 15.0, 1)

    def test_too_few_samples(self):
        kpool = np.arange(4.0)
        with pytest.raises(SplineKnotsError) as excinfo:
            build_knots(kpool, kpool, 0.0, 3.0, 5)
        assert "4 data points" in str(excinfo.value)

    def test_coincident_knots(self):
        kpool = np.arange(10.0)
        with pytest.raises(SplineKnotsError) as excinfo:
            build_knots(kpool, kpool, 0.0, 1.0, 5)
        assert "coincide" in str(excinfo.value)


class TestBackgroundSpline:

    def test_passes_through_knots(self, pool):
        kpool, mupool = pool
        knot_k, knot_y = build_knots(kpool, mupool, 0.0, 15.0, 11)
        bspl = BackgroundSpline.interpolate(knot_k, knot_y)
        np.testing.assert_allclose(bspl(knot_k), knot_y, atol=1e-10)
        assert bspl.order == 3
        assert bspl.nknots == 11

    def test_low_order_for_few_knots(self):
        bspl = BackgroundSpline.interpolate(np.array([0.0, 1.0, 2.0]), np.array([1.0, 0.0, 1.0]))
        assert bspl.order == 2

    def test_basis_reproduces_spline(self, spline):
        k = np.linspace(-1.0, 16.0, 200)
        np.testing.assert_allclose(spline.basis(k) @ spline.amplitudes, spline(k), atol=1e-10)

    def test_basis_zero_outside_support(self, spline):
        k = np.linspace(0.0, 15.0, 301)
        basis = spline.basis(k)
        for j in range(spline.nknots):
            window = spline.support_slice(k, j)
            outside = np.ones(len(k), dtype=bool)
            outside[window] = False
            assert np.all(basis[outside, j] == 0.0)

    def test_boundary_support_unbounded(self, spline):
        assert spline.support(0)[0] == -math.inf
        assert spline.support(spline.nknots - 1)[1] == math.inf
        lo, hi = spline.support(5)
        assert math.isfinite(lo) and math.isfinite(hi)

    def test_with_amplitudes_is_independent(self, spline):
        other = spline.with_amplitudes(spline.amplitudes + 1.0)
        assert np.all(other.amplitudes == spline.amplitudes + 1.0)
        clone = spline.copy()
        clone.amplitudes[0] = -99.0
        assert spline.amplitudes[0] != -99.0
        assert "nknots=11" in repr(spline)
