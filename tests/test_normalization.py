"""
Tests for spectrum validation and pre-/post-edge normalization.
"""

import numpy as np
import pytest

from xafsforge.analysis.normalization import SpectrumNormalizer, default_ranges
from xafsforge.core.config import NormalizationConfig
from xafsforge.core.errors import (
    DataError,
    E0OutOfRangeError,
    EdgeStepTooSmallError,
    InsufficientDataError,
    LengthMismatchError,
    NonFiniteValuesError,
    NonMonotonicEnergyError,
    NormalizationError,
    PostEdgeFitError,
    PreEdgeFitError,
)
from xafsforge.core.spectrum import Spectrum


class TestSpectrumValidation:
    """Data invariants checked before normalization."""

    def test_insufficient_points_message(self, synthetic_spectrum):
        short = Spectrum(synthetic_spectrum.energy[:50], synthetic_spectrum.mu[:50])
        normalizer = SpectrumNormalizer(min_points=100)
        with pytest.raises(InsufficientDataError) as excinfo:
            normalizer.normalize(short)
        err = excinfo.value
        assert isinstance(err, DataError)
        assert "100" in str(err)
        assert "50" in str(err)
        assert (err.min_points, err.actual) == (100, 50)

    def test_length_mismatch(self, synthetic_spectrum):
        bad = Spectrum(synthetic_spectrum.energy, synthetic_spectrum.mu[:-1])
        with pytest.raises(LengthMismatchError):
            bad.validate()

    def test_non_monotonic(self, synthetic_spectrum):
        energy = synthetic_spectrum.energy.copy()
        energy[40] = energy[39]
        with pytest.raises(NonMonotonicEnergyError) as excinfo:
            Spectrum(energy, synthetic_spectrum.mu).validate()
        assert excinfo.value.index == 40

    def test_non_finite(self, synthetic_spectrum):
        mu = synthetic_spectrum.mu.copy()
        mu[[5, 7]] = np.nan
        with pytest.raises(NonFiniteValuesError) as excinfo:
            Spectrum(synthetic_spectrum.energy, mu).validate()
        assert excinfo.value.indices == (5, 7)

    def test_properties(self, synthetic_spectrum):
        assert synthetic_spectrum.n_points == len(synthetic_spectrum.energy)
        assert synthetic_spectrum.min_energy == synthetic_spectrum.energy[0]
        assert synthetic_spectrum.max_energy == synthetic_spectrum.energy[-1]


class TestEdgeEnergy:

    def test_out_of_range_override(self, synthetic_spectrum):
        with pytest.raises(E0OutOfRangeError) as excinfo:
            SpectrumNormalizer().normalize(synthetic_spectrum, e0=20000.0)
        msg = str(excinfo.value)
        assert "20000" in msg
        assert str(synthetic_spectrum.min_energy) in msg
        assert str(synthetic_spectrum.max_energy) in msg
        assert isinstance(excinfo.value, NormalizationError)

    def test_out_of_range_from_spectrum(self, spectrum_factory):
        spectrum = spectrum_factory()
        spectrum.e0 = spectrum.min_energy - 1.0
        with pytest.raises(E0OutOfRangeError):
            SpectrumNormalizer().normalize(spectrum)

    def test_override_used(self, synthetic_spectrum, e0):
        normed = SpectrumNormalizer().normalize(synthetic_spectrum, e0=e0 + 1.0)
        assert normed.e0 == e0 + 1.0

    def test_found_when_missing(self, synthetic_spectrum, e0):
        normed = SpectrumNormalizer().normalize(synthetic_spectrum)
        assert abs(normed.e0 - e0) < 2.0


class TestDefaultRanges:

    def test_ranges_from_data(self, synthetic_spectrum, e0):
        ranges = default_ranges(synthetic_spectrum.energy, e0)
        assert ranges.pre_edge_start == pytest.approx(-195.0)
        assert ranges.pre_edge_end == pytest.approx(-65.0)
        assert ranges.norm_start == pytest.approx(25.0)
        assert ranges.norm_end <= synthetic_spectrum.max_energy - e0
        assert ranges.norm_polyorder == 2

    def test_explicit_ranges_kept(self, synthetic_spectrum, e0):
        config = NormalizationConfig(
            pre_edge_start=-150.0, pre_edge_end=-50.0,
            norm_start=50.0, norm_end=300.0, norm_polyorder=1,
        )
        ranges = default_ranges(synthetic_spectrum.energy, e0, config)
        assert (ranges.pre_edge_start, ranges.pre_edge_end) == (-150.0, -50.0)
        assert (ranges.norm_start, ranges.norm_end) == (50.0, 300.0)
        assert ranges.norm_polyorder == 1

    def test_swapped_pre_edge(self, synthetic_spectrum, e0):
        config = NormalizationConfig(pre_edge_start=-50.0, pre_edge_end=-150.0)
        ranges = default_ranges(synthetic_spectrum.energy, e0, config)
        assert ranges.pre_edge_start < ranges.pre_edge_end

    def test_polyorder_by_width(self, synthetic_spectrum, e0):
        narrow = NormalizationConfig(norm_start=25.0, norm_end=60.0)
        medium = NormalizationConfig(norm_start=25.0, norm_end=300.0)
        assert default_ranges(synthetic_spectrum.energy, e0, narrow).norm_polyorder == 0
        assert default_ranges(synthetic_spectrum.energy, e0, medium).norm_polyorder == 1

    def test_polyorder_clamped(self, synthetic_spectrum, e0):
        config = NormalizationConfig(norm_polyorder=9)
        assert default_ranges(synthetic_spectrum.energy, e0, config).norm_polyorder == 5


class TestNormalization:

    @pytest.fixture
    def normed(self, synthetic_spectrum, e0):
        return SpectrumNormalizer().normalize(synthetic_spectrum, e0=e0)

    def test_edge_step(self, normed):
        assert normed.edge_step == pytest.approx(1.0, rel=0.2)

    def test_pre_edge_matches_line(self, normed, e0):
        energy = normed.energy
        below = energy < e0 - 70.0
        expected = 0.5 - 2.0e-4 * (energy[below] - e0)
        np.testing.assert_allclose(normed.pre_edge[below], expected, atol=0.01)

    def test_norm_definition(self, normed):
        np.testing.assert_allclose(normed.norm, (normed.mu - normed.pre_edge) / normed.edge_step)

    def test_norm_near_zero_before_edge(self, normed, e0):
        below = normed.energy < e0 - 50.0
        assert np.all(np.abs(normed.norm[below]) < 0.02)

    def test_flat_equals_norm_below_edge(self, normed):
        ie0 = normed.ie0
        np.testing.assert_array_equal(normed.flat[:ie0], normed.norm[:ie0])

    def test_flat_continuous_at_edge(self, normed):
        ie0 = normed.ie0
        assert normed.flat[ie0] == pytest.approx(normed.norm[ie0])

    def test_coefficients(self, normed):
        assert len(normed.pre_edge_coefficients) == 2
        assert len(normed.post_edge_coefficients) == normed.norm_polyorder + 1

    def test_edge_step_override(self, synthetic_spectrum, e0):
        normed = SpectrumNormalizer().normalize(synthetic_spectrum, e0=e0, edge_step=2.0)
        assert normed.edge_step == 2.0

    def test_victoreen(self, synthetic_spectrum, e0):
        normed = SpectrumNormalizer(NormalizationConfig(n_victoreen=1)).normalize(
            synthetic_spectrum, e0=e0
        )
        assert normed.n_victoreen == 1
        assert normed.edge_step == pytest.approx(1.0, rel=0.2)


class TestNormalizationFailures:

    def test_edge_step_too_small(self, synthetic_spectrum, e0):
        with pytest.raises(EdgeStepTooSmallError):
            SpectrumNormalizer().normalize(synthetic_spectrum, e0=e0, edge_step=0.0)

    def test_negative_step_rejected(self, synthetic_spectrum, e0):
        inverted = Spectrum(synthetic_spectrum.energy, 2.0 - synthetic_spectrum.mu)
        with pytest.raises(EdgeStepTooSmallError) as excinfo:
            SpectrumNormalizer().normalize(inverted, e0=e0)
        assert excinfo.value.edge_step < 0

    def test_pre_edge_window_outside_data(self, synthetic_spectrum, e0):
        config = NormalizationConfig(pre_edge_start=2000.0, pre_edge_end=2010.0)
        with pytest.raises(PreEdgeFitError):
            SpectrumNormalizer(config).normalize(synthetic_spectrum, e0=e0)

    def test_post_edge_window_outside_data(self, synthetic_spectrum, e0):
        config = NormalizationConfig(norm_start=2000.0, norm_end=2010.0, norm_polyorder=2)
        with pytest.raises(PostEdgeFitError) as excinfo:
            SpectrumNormalizer(config).normalize(synthetic_spectrum, e0=e0)
        assert excinfo.value.order == 2
