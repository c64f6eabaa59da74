"""Tests for vegetation and detail scattering."""

import numpy as np
import pytest

from heightforge.config import (
    DetailLayerSet,
    DetailSpec,
    ScatterLayerSet,
    ScatterMode,
    ScatterSpec,
)
from heightforge.exceptions import ConfigurationError
from heightforge.heightfield import Heightfield, compute_slope
from heightforge.noise import NoiseField
from heightforge.scatter import place_details, place_vegetation


@pytest.fixture
def meadow() -> Heightfield:
    """33x33 flat field at height 0.5."""
    return Heightfield.from_array(np.full((33, 33), 0.5), size=(100.0, 100.0, 100.0))


class TestPlaceVegetation:
    """Tests for vegetation instance placement."""

    def test_respects_global_budget(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Never more than max_count instances."""
        layers = ScatterLayerSet(layers=[ScatterSpec(density=1.0)], spacing=1, max_count=10)
        instances = place_vegetation(meadow, layers, rng)
        assert len(instances) == 10

    def test_per_prototype_budget(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """A prototype's own cap limits only that prototype."""
        layers = ScatterLayerSet(
            layers=[
                ScatterSpec(name="a", density=1.0, max_count=3),
                ScatterSpec(name="b", density=1.0, max_count=4),
            ],
            spacing=4,
        )
        instances = place_vegetation(meadow, layers, rng)
        assert sum(i.layer == 0 for i in instances) == 3
        assert sum(i.layer == 1 for i in instances) == 4

    def test_earlier_prototypes_win_budget(
        self, meadow: Heightfield, rng: np.random.Generator
    ) -> None:
        """The global budget is consumed in prototype order."""
        layers = ScatterLayerSet(
            layers=[ScatterSpec(name="a", density=1.0), ScatterSpec(name="b", density=1.0)],
            spacing=2,
            max_count=5,
        )
        instances = place_vegetation(meadow, layers, rng)
        assert [i.layer for i in instances] == [0] * 5

    def test_constraints_hold_at_source_cell(
        self, rough_field: Heightfield, rng: np.random.Generator
    ) -> None:
        """Every instance's cell satisfies its prototype's ranges."""
        specs = [
            ScatterSpec(name="low", height_range=(0.0, 0.4), slope_range=(0.0, 60.0), density=0.9),
            ScatterSpec(name="high", height_range=(0.6, 1.0), density=0.9, spacing=2),
        ]
        layers = ScatterLayerSet(layers=specs, spacing=1)
        slope = compute_slope(rough_field)
        instances = place_vegetation(rough_field, layers, rng, slope=slope)

        assert instances
        for instance in instances:
            spec = specs[instance.layer]
            x, z = instance.cell
            assert spec.height_range[0] <= rough_field.heights[z, x] <= spec.height_range[1]
            assert spec.slope_range[0] <= slope[z, x] <= spec.slope_range[1]

    def test_instance_attributes_in_ranges(
        self, meadow: Heightfield, rng: np.random.Generator
    ) -> None:
        """Positions are normalized and appearance comes from the prototype ranges."""
        spec = ScatterSpec(
            density=1.0,
            rotation_range=(10.0, 20.0),
            scale_range=(0.5, 0.6),
            color_range=((0.0, 0.0, 0.0, 1.0), (1.0, 1.0, 1.0, 1.0)),
        )
        instances = place_vegetation(meadow, ScatterLayerSet(layers=[spec], spacing=3), rng)
        for instance in instances:
            x, y, z = instance.position
            assert 0.0 <= x <= 1.0 and 0.0 <= z <= 1.0
            assert y == pytest.approx(0.5)
            assert 10.0 <= instance.rotation <= 20.0
            assert 0.5 <= instance.scale <= 0.6
            assert instance.color[3] == 1.0

    def test_zero_density_places_nothing(
        self, meadow: Heightfield, rng: np.random.Generator
    ) -> None:
        """Zero density completes with no instances."""
        layers = ScatterLayerSet(layers=[ScatterSpec(density=0.0)])
        assert place_vegetation(meadow, layers, rng) == []

    def test_probe_corrects_height(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """A probe hit replaces the sampled height."""
        layers = ScatterLayerSet(layers=[ScatterSpec(density=1.0)], spacing=8)
        instances = place_vegetation(meadow, layers, rng, probe=lambda x, z: 25.0)
        assert instances
        assert all(i.position[1] == pytest.approx(0.25) for i in instances)

    def test_probe_miss_keeps_height(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """A probe miss falls back to the heightfield."""
        layers = ScatterLayerSet(layers=[ScatterSpec(density=1.0)], spacing=8)
        instances = place_vegetation(meadow, layers, rng, probe=lambda x, z: None)
        assert all(i.position[1] == pytest.approx(0.5) for i in instances)

    def test_deterministic(self, rough_field: Heightfield) -> None:
        """Same seed gives the same instances."""
        layers = ScatterLayerSet(layers=[ScatterSpec(density=0.5)], spacing=2)
        a = place_vegetation(rough_field, layers, np.random.default_rng(3))
        b = place_vegetation(rough_field, layers, np.random.default_rng(3))
        assert a == b

    def test_empty_layer_set(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """No prototypes is a configuration error."""
        with pytest.raises(ConfigurationError):
            place_vegetation(meadow, ScatterLayerSet(layers=[]), rng)

    @pytest.mark.parametrize("spacing", [0, -2])
    def test_bad_spacing(self, spacing: int, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Non-positive spacing is a configuration error."""
        with pytest.raises(ConfigurationError):
            place_vegetation(meadow, ScatterLayerSet(spacing=spacing), rng)


class TestPlaceDetails:
    """Tests for detail density grids."""

    def test_shape_and_dtype(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """One grid per prototype at the heightfield resolution."""
        layers = DetailLayerSet(layers=[DetailSpec(), DetailSpec(name="flowers")])
        grids = place_details(meadow, layers, rng, noise=NoiseField())
        assert grids.shape == (2, 33, 33)
        assert grids.dtype == np.int32

    def test_full_density_in_range(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Accepted in-range cells get the mode's maximum density."""
        layers = DetailLayerSet(layers=[DetailSpec(height_range=(0.2, 0.8), density=1.0)])
        grids = place_details(meadow, layers, rng)
        np.testing.assert_array_equal(grids[0], 255)

    def test_count_mode_limit(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Count mode caps density at 16."""
        layers = DetailLayerSet(layers=[DetailSpec(density=1.0)], mode=ScatterMode.COUNT)
        grids = place_details(meadow, layers, rng)
        np.testing.assert_array_equal(grids[0], 16)

    def test_out_of_range_is_empty(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Cells well outside the height range get no detail."""
        layers = DetailLayerSet(layers=[DetailSpec(height_range=(0.8, 1.0), density=1.0)])
        grids = place_details(meadow, layers, rng)
        assert not grids.any()

    def test_soft_edge_partial_density(self, rng: np.random.Generator) -> None:
        """Cells inside the soft edge get reduced density."""
        field = Heightfield.from_array(np.full((9, 9), 0.5))
        spec = DetailSpec(height_range=(0.6, 1.0), overlap=0.4, density=1.0)
        grids = place_details(field, DetailLayerSet(layers=[spec]), rng)
        assert (grids[0] > 0).all()
        assert (grids[0] < 255).all()

    def test_spacing_skips_cells(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Only cells on the spacing lattice are filled."""
        layers = DetailLayerSet(layers=[DetailSpec(density=1.0)], spacing=2)
        grid = place_details(meadow, layers, rng)[0]
        assert (grid[::2, ::2] == 255).all()
        assert not grid[1::2, :].any()
        assert not grid[:, 1::2].any()

    def test_zero_density(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """Zero density gives empty grids."""
        layers = DetailLayerSet(layers=[DetailSpec(density=0.0)])
        assert not place_details(meadow, layers, rng).any()

    def test_custom_resolution(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """The detail grid can be coarser than the heightfield."""
        layers = DetailLayerSet(layers=[DetailSpec(density=1.0)], resolution=8)
        assert place_details(meadow, layers, rng).shape == (1, 8, 8)

    def test_empty_layer_set(self, meadow: Heightfield, rng: np.random.Generator) -> None:
        """No prototypes is a configuration error."""
        with pytest.raises(ConfigurationError):
            place_details(meadow, DetailLayerSet(layers=[]), rng)
