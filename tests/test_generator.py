"""Tests for heightfield generators and smoothing."""

import numpy as np
import pytest

from heightforge.config import BlendMode, DisplacementSpec, NoiseSpec, PeakSpec
from heightforge.exceptions import ConfigurationError, MissingResourceError
from heightforge.generator import (
    from_image,
    midpoint_displacement,
    multi_noise,
    radial_peaks,
    random_fill,
    reset,
    ridge_transform,
    single_noise,
    smooth,
)
from heightforge.heightfield import Heightfield
from heightforge.noise import NoiseField


def _in_unit_range(field: Heightfield) -> bool:
    return bool(field.heights.min() >= 0.0 and field.heights.max() <= 1.0)


class TestReset:
    """Tests for reset."""

    def test_zeroes_field(self, rough_field: Heightfield) -> None:
        """Reset flattens every cell."""
        reset(rough_field)
        assert not rough_field.heights.any()


class TestRandomFill:
    """Tests for random fill."""

    def test_within_range(self, flat_field: Heightfield, rng: np.random.Generator) -> None:
        """Values fall inside the requested range."""
        random_fill(flat_field, (0.2, 0.4), rng)
        assert flat_field.heights.min() >= 0.2 - 1e-6
        assert flat_field.heights.max() <= 0.4 + 1e-6

    def test_deterministic(self) -> None:
        """Same seed gives identical fields."""
        a = Heightfield.empty(9)
        b = Heightfield.empty(9)
        random_fill(a, (0.0, 1.0), np.random.default_rng(5))
        random_fill(b, (0.0, 1.0), np.random.default_rng(5))
        np.testing.assert_array_equal(a.heights, b.heights)

    def test_accumulates_without_reset(self, rng: np.random.Generator) -> None:
        """reset=False adds to the current heights."""
        field = Heightfield.from_array(np.full((5, 5), 0.5))
        random_fill(field, (0.1, 0.2), rng, reset=False)
        assert field.heights.min() >= 0.6 - 1e-6
        assert field.heights.max() <= 0.7 + 1e-6

    def test_clamped(self, rng: np.random.Generator) -> None:
        """Accumulated values are clamped to 1."""
        field = Heightfield.from_array(np.full((5, 5), 0.9))
        random_fill(field, (0.5, 0.6), rng, reset=False)
        np.testing.assert_array_equal(field.heights, 1.0)


class TestFromImage:
    """Tests for image sampling."""

    def test_missing_image(self, rough_field: Heightfield) -> None:
        """No image is a missing resource and leaves the field untouched."""
        before = rough_field.heights.copy()
        with pytest.raises(MissingResourceError):
            from_image(rough_field, None)
        np.testing.assert_array_equal(rough_field.heights, before)

    def test_nearest_sampling(self) -> None:
        """Cell (x, z) reads pixel [z, x] at unit scale."""
        pixels = np.arange(9, dtype=np.float64).reshape(3, 3) / 8.0
        field = Heightfield.empty(3)
        from_image(field, pixels)
        np.testing.assert_allclose(field.heights, pixels, atol=1e-7)

    def test_height_multiplier(self) -> None:
        """The y scale multiplies pixel values."""
        field = Heightfield.empty(4)
        from_image(field, np.ones((4, 4)), scale=(1.0, 0.25, 1.0))
        np.testing.assert_allclose(field.heights, 0.25)

    def test_step_and_clamp_to_image(self) -> None:
        """Cells beyond the image reuse its last row and column."""
        pixels = np.array([[0.0, 0.5], [0.25, 1.0]])
        field = Heightfield.empty(4)
        from_image(field, pixels, scale=(1.0, 1.0, 1.0))
        assert field.heights[3, 3] == pytest.approx(1.0)
        assert field.heights[0, 3] == pytest.approx(0.5)
        assert field.heights[3, 0] == pytest.approx(0.25)


class TestNoiseGenerators:
    """Tests for single and multi noise."""

    def test_single_noise_bounds(self, flat_field: Heightfield, noise: NoiseField) -> None:
        """Single noise stays within [0, height_scale]."""
        single_noise(flat_field, NoiseSpec(x_scale=0.2, z_scale=0.2, height_scale=0.5), noise)
        assert flat_field.heights.min() >= 0.0
        assert flat_field.heights.max() <= 0.5

    def test_single_noise_deterministic(self, noise: NoiseField) -> None:
        """Same noise seed gives identical output."""
        a = Heightfield.empty(9)
        b = Heightfield.empty(9)
        single_noise(a, NoiseSpec(x_scale=0.3, z_scale=0.3), noise)
        single_noise(b, NoiseSpec(x_scale=0.3, z_scale=0.3), NoiseField(seed=7))
        np.testing.assert_array_equal(a.heights, b.heights)

    def test_single_noise_adds(self, rough_field: Heightfield, noise: NoiseField) -> None:
        """reset=False never lowers terrain since noise is non-negative."""
        before = rough_field.heights.copy()
        single_noise(rough_field, NoiseSpec(height_scale=0.2), noise, reset=False)
        assert (rough_field.heights >= before).all()

    def test_multi_noise_sums_layers(self, noise: NoiseField) -> None:
        """Layers add up."""
        specs = [
            NoiseSpec(x_scale=0.05, z_scale=0.05, height_scale=0.4),
            NoiseSpec(x_scale=0.3, z_scale=0.3, height_scale=0.1, ridged=True),
        ]
        combined = Heightfield.empty(9)
        multi_noise(combined, specs, noise)

        stepwise = Heightfield.empty(9)
        single_noise(stepwise, specs[0], noise)
        single_noise(stepwise, specs[1], noise, reset=False)

        np.testing.assert_allclose(combined.heights, stepwise.heights, atol=1e-6)

    def test_multi_noise_requires_layers(self, flat_field: Heightfield, noise: NoiseField) -> None:
        """An empty layer list is a configuration error."""
        with pytest.raises(ConfigurationError):
            multi_noise(flat_field, [], noise)


class TestRidgeTransform:
    """Tests for the ridge fold."""

    @pytest.mark.parametrize("value,expected", [(0.0, 0.0), (0.25, 0.5), (0.5, 1.0), (0.75, 0.5)])
    def test_constant_field(self, value: float, expected: float) -> None:
        """A constant field folds to 1 - |2v - 1| exactly."""
        field = Heightfield.from_array(np.full((5, 5), value))
        ridge_transform(field)
        np.testing.assert_array_equal(field.heights, expected)

    def test_twice_is_not_identity(self) -> None:
        """Folding twice does not restore the input."""
        field = Heightfield.from_array(np.full((3, 3), 0.25))
        ridge_transform(field)
        ridge_transform(field)
        assert field.heights[0, 0] != pytest.approx(0.25)


class TestRadialPeaks:
    """Tests for radial multi-peak generation."""

    def test_single_center_peak_linear(self, rng: np.random.Generator) -> None:
        """Edge midpoints are lower than the peak, corners no higher than edges."""
        field = Heightfield.empty(3)
        spec = PeakSpec(min_height=1.0, max_height=1.0, falloff=1.0, blend_mode=BlendMode.LINEAR)
        radial_peaks(field, spec, rng, peak_cells=[(1, 1)])

        heights = field.heights
        center = heights[1, 1]
        edges = [heights[0, 1], heights[1, 0], heights[1, 2], heights[2, 1]]
        corners = [heights[0, 0], heights[0, 2], heights[2, 0], heights[2, 2]]

        assert center == pytest.approx(1.0)
        assert all(edge < center for edge in edges)
        assert max(corners) <= min(edges)

    def test_never_lowers_terrain(self, rng: np.random.Generator) -> None:
        """Peaks take the maximum with existing heights."""
        field = Heightfield.from_array(np.full((9, 9), 0.9))
        radial_peaks(field, PeakSpec(count=3, min_height=0.3, max_height=0.5), rng, reset=False)
        assert (field.heights >= np.float32(0.9)).all()

    @pytest.mark.parametrize("mode", list(BlendMode))
    def test_blend_modes_in_bounds(self, mode: BlendMode, noise: NoiseField) -> None:
        """Every blend mode produces values in [0, 1]."""
        field = Heightfield.empty(17)
        spec = PeakSpec(count=4, min_height=0.5, max_height=1.0, blend_mode=mode)
        radial_peaks(field, spec, np.random.default_rng(3), noise=noise)
        assert _in_unit_range(field)

    def test_deterministic(self) -> None:
        """Same seed gives identical peaks."""
        a = Heightfield.empty(17)
        b = Heightfield.empty(17)
        radial_peaks(a, PeakSpec(count=4), np.random.default_rng(11))
        radial_peaks(b, PeakSpec(count=4), np.random.default_rng(11))
        np.testing.assert_array_equal(a.heights, b.heights)

    def test_peak_outside_grid(self, flat_field: Heightfield, rng: np.random.Generator) -> None:
        """Explicit peaks must lie on the grid."""
        with pytest.raises(ConfigurationError):
            radial_peaks(flat_field, PeakSpec(), rng, peak_cells=[(17, 0)])

    def test_zero_peaks_is_flat(self, flat_field: Heightfield, rng: np.random.Generator) -> None:
        """No peaks leaves a reset field flat."""
        radial_peaks(flat_field, PeakSpec(count=0), rng)
        assert not flat_field.heights.any()


class TestMidpointDisplacement:
    """Tests for diamond-square generation."""

    def test_center_is_corner_average(self, rng: np.random.Generator) -> None:
        """With zero offsets the center is the mean of the four corners."""
        field = Heightfield.empty(5)
        field.heights[0, 0] = 0.0
        field.heights[0, 4] = 1.0
        field.heights[4, 0] = 0.0
        field.heights[4, 4] = 1.0

        spec = DisplacementSpec(height_min=0.0, height_max=0.0)
        midpoint_displacement(field, spec, rng, reset=False)

        assert field.heights[2, 2] == 0.5

    def test_zero_offsets_interpolate_flat(self, rng: np.random.Generator) -> None:
        """Equal corners and no offsets give a flat field."""
        field = Heightfield.from_array(np.full((9, 9), 0.4))
        midpoint_displacement(field, DisplacementSpec(height_min=0.0, height_max=0.0), rng, reset=False)
        np.testing.assert_allclose(field.heights, 0.4, atol=1e-6)

    def test_rejects_bad_resolution(self, rng: np.random.Generator) -> None:
        """Resolution must be 2^n + 1; the field is left untouched."""
        field = Heightfield.from_array(np.full((6, 6), 0.3))
        with pytest.raises(ConfigurationError):
            midpoint_displacement(field, DisplacementSpec(), rng)
        np.testing.assert_array_equal(field.heights, np.float32(0.3))

    def test_bounds(self) -> None:
        """Output is clamped to [0, 1]."""
        field = Heightfield.empty(33)
        spec = DisplacementSpec(height_min=-0.8, height_max=0.9, roughness=0.5)
        midpoint_displacement(field, spec, np.random.default_rng(2))
        assert _in_unit_range(field)

    def test_deterministic(self) -> None:
        """Same seed gives identical terrain."""
        a = Heightfield.empty(17)
        b = Heightfield.empty(17)
        midpoint_displacement(a, DisplacementSpec(), np.random.default_rng(8))
        midpoint_displacement(b, DisplacementSpec(), np.random.default_rng(8))
        np.testing.assert_array_equal(a.heights, b.heights)

    def test_fills_every_cell(self) -> None:
        """Positive offsets reach every interior cell."""
        field = Heightfield.empty(17)
        spec = DisplacementSpec(height_min=0.1, height_max=0.2)
        midpoint_displacement(field, spec, np.random.default_rng(4))
        assert (field.heights[1:-1, 1:-1] > 0.0).all()

    def test_border_never_displaced(self) -> None:
        """The outer border keeps its previous values."""
        field = Heightfield.from_array(np.full((9, 9), 0.3))
        spec = DisplacementSpec(height_min=0.1, height_max=0.2)
        midpoint_displacement(field, spec, np.random.default_rng(4), reset=False)
        for side in ("left", "right", "bottom", "top"):
            np.testing.assert_array_equal(field.edge(side), np.float32(0.3))
        assert (field.heights[1:-1, 1:-1] > np.float32(0.3)).all()


class TestSmooth:
    """Tests for box blur smoothing."""

    @pytest.mark.parametrize("passes", [1, 3, 10])
    def test_constant_field_unchanged(self, passes: int) -> None:
        """A constant field stays exactly constant."""
        field = Heightfield.from_array(np.full((9, 9), 0.3))
        expected = field.heights.copy()
        smooth(field, passes)
        np.testing.assert_array_equal(field.heights, expected)

    def test_spike_spreads(self) -> None:
        """A spike is averaged with its neighbours."""
        field = Heightfield.empty(5)
        field.heights[2, 2] = 0.9
        smooth(field)
        assert field.heights[2, 2] == pytest.approx(0.1)
        assert field.heights[1, 1] == pytest.approx(0.1)
        assert field.heights[0, 0] == 0.0

    def test_corner_uses_in_bounds_neighbours(self) -> None:
        """Corner cells average over four cells."""
        field = Heightfield.empty(3)
        field.heights[0, 0] = 0.8
        smooth(field)
        assert field.heights[0, 0] == pytest.approx(0.2)

    def test_zero_passes_noop(self, rough_field: Heightfield) -> None:
        """Zero passes changes nothing."""
        before = rough_field.heights.copy()
        smooth(rough_field, 0)
        np.testing.assert_array_equal(rough_field.heights, before)

    def test_negative_passes(self, rough_field: Heightfield) -> None:
        """Negative passes is a configuration error."""
        with pytest.raises(ConfigurationError):
            smooth(rough_field, -1)
