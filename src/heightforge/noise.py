"""Noise generation functions for terrain generation.

Provides a deterministic gradient noise primitive plus fBm (fractal
Brownian motion) and ridged fBm combinators. Every combinator works on a
single point or on a separable grid of coordinates.
"""

from typing import Callable, TypeVar

import numpy as np
from numpy.typing import NDArray
from opensimplex import OpenSimplex

from .config import NoiseSpec

T = TypeVar("T", float, NDArray[np.float64])


def _to_unit(value: T) -> T:
    """Map raw simplex output from [-1, 1] to [0, 1]."""
    return np.clip((value + 1.0) * 0.5, 0.0, 1.0)


class NoiseField:
    """Seeded 2D gradient noise with values in [0, 1].

    The noise is a pure function of ``(x, z)``: there is no state besides the
    permutation table built from the seed.
    """

    def __init__(self, seed: int = 0) -> None:
        self.seed = seed
        self._simplex = OpenSimplex(seed=seed)

    def sample(self, x: float, z: float) -> float:
        """Sample single-octave noise at one point."""
        return float(_to_unit(self._simplex.noise2(x, z)))

    def sample_grid(
        self,
        xs: NDArray[np.float64],
        zs: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Sample single-octave noise over the grid ``zs × xs``.

        Returns:
            Array of shape ``(len(zs), len(xs))``.
        """
        xs = np.asarray(xs, dtype=np.float64)
        zs = np.asarray(zs, dtype=np.float64)
        return _to_unit(self._simplex.noise2array(xs, zs))

    def fbm(self, x: float, z: float, octaves: int, persistence: float) -> float:
        """Normalized fBm at one point, in [0, 1]."""
        return float(_fbm(self.sample, x, z, octaves, persistence))

    def fbm_grid(
        self,
        xs: NDArray[np.float64],
        zs: NDArray[np.float64],
        octaves: int,
        persistence: float,
    ) -> NDArray[np.float64]:
        """Normalized fBm over the grid ``zs × xs``, in [0, 1]."""
        xs = np.asarray(xs, dtype=np.float64)
        zs = np.asarray(zs, dtype=np.float64)
        return _fbm(self.sample_grid, xs, zs, octaves, persistence)

    def ridged_fbm(
        self,
        x: float,
        z: float,
        octaves: int,
        persistence: float,
        offset: float = 1.0,
    ) -> float:
        """Ridged fBm at one point. Not normalized; callers scale and clamp."""
        return float(_ridged_fbm(self.sample, x, z, octaves, persistence, offset))

    def ridged_fbm_grid(
        self,
        xs: NDArray[np.float64],
        zs: NDArray[np.float64],
        octaves: int,
        persistence: float,
        offset: float = 1.0,
    ) -> NDArray[np.float64]:
        xs = np.asarray(xs, dtype=np.float64)
        zs = np.asarray(zs, dtype=np.float64)
        return _ridged_fbm(self.sample_grid, xs, zs, octaves, persistence, offset)

    def sample_spec(
        self,
        spec: NoiseSpec,
        xs: NDArray[np.float64],
        zs: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Evaluate a NoiseSpec over grid coordinates, scaled by its height.

        Offsets are added before scaling so that changing an offset slides
        along the noise instead of stretching it.
        """
        sample_xs = (np.asarray(xs, dtype=np.float64) + spec.x_offset) * spec.x_scale
        sample_zs = (np.asarray(zs, dtype=np.float64) + spec.z_offset) * spec.z_scale
        if spec.ridged:
            values = self.ridged_fbm_grid(
                sample_xs, sample_zs, spec.octaves, spec.persistence
            )
        else:
            values = self.fbm_grid(sample_xs, sample_zs, spec.octaves, spec.persistence)
        return values * spec.height_scale


def _fbm(
    sample: Callable[[T, T], T],
    x: T,
    z: T,
    octaves: int,
    persistence: float,
) -> T:
    total = 0.0
    frequency = 1.0
    amplitude = 1.0
    max_value = 0.0

    for _ in range(octaves):
        total = total + sample(x * frequency, z * frequency) * amplitude
        max_value += amplitude
        amplitude *= persistence
        frequency *= 2.0

    return total / max_value


def _ridged_fbm(
    sample: Callable[[T, T], T],
    x: T,
    z: T,
    octaves: int,
    persistence: float,
    offset: float,
) -> T:
    total = 0.0
    frequency = 1.0
    amplitude = 1.0
    weight = 1.0

    for _ in range(octaves):
        # Fold the noise around its midpoint, then square to sharpen ridges
        signal = offset - np.abs(2.0 * sample(x * frequency, z * frequency) - 1.0)
        signal = signal * signal
        signal = signal * weight

        total = total + signal * amplitude

        # Valleys suppress detail in the next octave
        weight = np.clip(signal, 0.0, 1.0)

        amplitude *= persistence
        frequency *= 2.0

    return total


def inverse_lerp(a: T, b: T, value: T) -> T:
    """Position of ``value`` between ``a`` and ``b``, clamped to [0, 1]."""
    return np.clip((value - a) / (b - a), 0.0, 1.0)


def remap(
    value: T,
    from_min: float,
    from_max: float,
    to_min: float,
    to_max: float,
) -> T:
    """Linearly remap a value from one range to another (unclamped)."""
    return (value - from_min) * (to_max - to_min) / (from_max - from_min) + to_min
