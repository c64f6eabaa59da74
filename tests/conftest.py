"""Shared test fixtures for heightforge tests."""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from heightforge.heightfield import Heightfield
from heightforge.noise import NoiseField


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(1234)


@pytest.fixture
def noise() -> NoiseField:
    """Noise field with a fixed seed."""
    return NoiseField(seed=7)


@pytest.fixture
def flat_field() -> Heightfield:
    """17x17 all-zero heightfield on a 100 x 50 x 100 box."""
    return Heightfield.empty(17, size=(100.0, 50.0, 100.0))


@pytest.fixture
def rough_field() -> Heightfield:
    """17x17 heightfield of uniform random heights in [0, 1]."""
    heights = np.random.default_rng(99).uniform(0.0, 1.0, size=(17, 17))
    return Heightfield.from_array(heights, size=(100.0, 50.0, 100.0))


@pytest.fixture
def ramp_field() -> Heightfield:
    """33x33 field rising linearly from 0 at x=0 to 1 at x=max."""
    n = 33
    heights = np.tile(np.linspace(0.0, 1.0, n), (n, 1))
    return Heightfield.from_array(heights, size=(100.0, 100.0, 100.0))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_toml() -> str:
    """Small pipeline config as TOML string."""
    return """
seed = 11
resolution = 17
size = [64.0, 16.0, 64.0]

[[steps]]
op = "midpoint_displacement"

[steps.displacement]
height_min = -0.2
height_max = 0.4
roughness = 1.0

[[steps]]
op = "erode"

[steps.erosion]
kind = "thermal"
strength = 0.02
smooth_passes = 1

[[surface.layers]]
name = "low"
height_range = [0.0, 0.5]

[[surface.layers]]
name = "high"
height_range = [0.5, 1.0]

[vegetation]
spacing = 2
max_count = 25

[[vegetation.layers]]
name = "shrub"
density = 0.7

[tiles]
grid = [2, 3]
"""


@pytest.fixture
def config_file(temp_dir: Path, sample_config_toml: str) -> Path:
    """Write the sample config to a temp file."""
    path = temp_dir / "terrain.toml"
    path.write_text(sample_config_toml)
    return path
