"""Heightfield generators and post-processes.

Each generator either overwrites the buffer (``reset=True``, the default) or
adds its contribution to the current contents. Results are clamped to
[0, 1] on write. Per-field generators sample noise by cell index; world-space
sampling across tiles lives in ``tiles``.
"""

import math
from typing import Sequence

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy import ndimage

from .config import BlendMode, DisplacementSpec, NoiseSpec, PeakSpec, Range
from .exceptions import ConfigurationError, MissingResourceError
from .heightfield import Heightfield, require_field
from .noise import NoiseField

logger = structlog.get_logger()

_BOX_KERNEL = np.ones((3, 3), dtype=np.float64)


def _commit(field: Heightfield, values: NDArray, reset: bool) -> None:
    """Write or accumulate values into the field, then clamp."""
    if reset:
        field.heights[:] = values
    else:
        field.heights += values.astype(np.float32)
    field.clamp()


def _cell_coords(field: Heightfield) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    n = field.resolution
    coords = np.arange(n, dtype=np.float64)
    return coords, coords


def reset(field: Heightfield) -> None:
    """Flatten the heightfield to zero.

    Any surface weights or scatter output derived from the previous heights
    are stale afterwards; callers should discard them.
    """
    require_field(field)
    field.reset()
    logger.debug("heightfield_reset", resolution=field.resolution)


def random_fill(
    field: Heightfield,
    height_range: Range,
    rng: np.random.Generator,
    reset: bool = True,
) -> None:
    """Fill every cell with an independent uniform random height."""
    require_field(field)
    low, high = height_range
    if low > high:
        raise ConfigurationError(f"Invalid height range {height_range}")

    values = rng.uniform(low, high, size=field.heights.shape)
    _commit(field, values, reset)
    logger.debug("random_fill", low=low, high=high, reset=reset)


def from_image(
    field: Heightfield,
    pixels: NDArray | None,
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0),
    reset: bool = True,
) -> None:
    """Sample heights from a grayscale image.

    Uses nearest sampling: cell ``(x, z)`` reads pixel
    ``(int(x * scale_x), int(z * scale_z))`` clamped to the image bounds and
    multiplies it by ``scale_y``.

    Args:
        field: Heightfield to write.
        pixels: 2D grayscale array in [0, 1], indexed ``[row, column]``.
        scale: ``(x step, height multiplier, z step)``.
        reset: Replace existing heights instead of adding to them.

    Raises:
        MissingResourceError: If no image is supplied.
    """
    require_field(field)
    if pixels is None:
        raise MissingResourceError("No height image supplied")
    pixels = np.asarray(pixels, dtype=np.float64)
    if pixels.ndim != 2 or pixels.size == 0:
        raise ConfigurationError(f"Height image must be a non-empty 2D array, got {pixels.shape}")

    image_height, image_width = pixels.shape
    scale_x, scale_y, scale_z = scale
    cells = np.arange(field.resolution)
    columns = np.clip((cells * scale_x).astype(np.int64), 0, image_width - 1)
    rows = np.clip((cells * scale_z).astype(np.int64), 0, image_height - 1)

    values = pixels[np.ix_(rows, columns)] * scale_y
    _commit(field, values, reset)
    logger.debug("heights_loaded_from_image", image=f"{image_width}x{image_height}", reset=reset)


def single_noise(
    field: Heightfield,
    spec: NoiseSpec,
    noise: NoiseField,
    reset: bool = True,
) -> None:
    """Write one fBm (or ridged fBm) layer scaled by its height scale."""
    require_field(field)
    xs, zs = _cell_coords(field)
    _commit(field, noise.sample_spec(spec, xs, zs), reset)
    logger.debug("single_noise", octaves=spec.octaves, ridged=spec.ridged, reset=reset)


def multi_noise(
    field: Heightfield,
    specs: Sequence[NoiseSpec],
    noise: NoiseField,
    reset: bool = True,
) -> None:
    """Sum several independent noise layers, e.g. coarse shape plus fine detail."""
    require_field(field)
    if not specs:
        raise ConfigurationError("multi_noise needs at least one noise layer")

    xs, zs = _cell_coords(field)
    total = np.zeros(field.heights.shape, dtype=np.float64)
    for spec in specs:
        total += noise.sample_spec(spec, xs, zs)

    _commit(field, total, reset)
    logger.debug("multi_noise", layers=len(specs), reset=reset)


def ridge_transform(field: Heightfield) -> None:
    """Fold the current heights into ridges: ``h' = 1 - |2h - 1|``.

    Always operates on the existing contents.
    """
    require_field(field)
    heights = field.heights
    heights[:] = 1.0 - np.abs(2.0 * heights - 1.0)
    field.clamp()


def _peak_profile(
    distance: NDArray[np.float64],
    peak_height: float,
    spec: PeakSpec,
    modulation: NDArray[np.float64] | None,
) -> NDArray[np.float64]:
    """Height contributed by one peak at normalized distances."""
    mode = spec.blend_mode
    if mode == BlendMode.LINEAR:
        return peak_height - distance * spec.falloff
    if mode == BlendMode.POWER:
        return peak_height - np.power(distance, spec.dropoff) * spec.falloff
    if mode == BlendMode.COMBINED:
        return peak_height - distance * spec.falloff - np.power(distance, spec.dropoff)
    if mode == BlendMode.SIN_POWER:
        profile = peak_height - np.power(distance * 3.0, spec.falloff)
        if not math.isclose(spec.dropoff, 0.0, abs_tol=1e-9):
            profile -= np.sin(distance * 2.0 * np.pi) / spec.dropoff
        return profile
    # Noise modulated
    return (peak_height - distance * spec.falloff) + modulation


def radial_peaks(
    field: Heightfield,
    spec: PeakSpec,
    rng: np.random.Generator,
    noise: NoiseField | None = None,
    reset: bool = True,
    peak_cells: Sequence[tuple[int, int]] | None = None,
) -> None:
    """Raise the field around randomly placed peaks.

    Each cell takes the maximum of its current height and every peak's
    falloff profile, so no peak ever lowers terrain. Distances are measured
    in cells and normalized by the grid diagonal.

    Args:
        field: Heightfield to write.
        spec: Peak count, heights and falloff shape.
        rng: Random generator for peak positions and heights.
        noise: Noise source for the ``noise_modulated`` blend.
        reset: Start from a flat field instead of the current heights.
        peak_cells: Explicit ``(x, z)`` peak positions; overrides ``spec.count``.
    """
    require_field(field)
    n = field.resolution
    if peak_cells is not None:
        for x, z in peak_cells:
            if not (0 <= x < n and 0 <= z < n):
                raise ConfigurationError(f"Peak cell ({x}, {z}) outside {n}x{n} grid")

    heights = np.zeros((n, n), dtype=np.float64) if reset else field.heights.astype(np.float64)

    modulation = None
    if spec.blend_mode == BlendMode.NOISE_MODULATED:
        noise = noise or NoiseField()
        xs, zs = _cell_coords(field)
        modulation = noise.sample_spec(spec.noise, xs, zs)

    if peak_cells is None:
        positions = [
            (int(rng.integers(0, n)), int(rng.integers(0, n))) for _ in range(spec.count)
        ]
    else:
        positions = list(peak_cells)

    if not positions:
        logger.warning("radial_peaks_without_peaks")

    cells = np.arange(n, dtype=np.float64)
    grid_x, grid_z = np.meshgrid(cells, cells)
    diagonal = math.hypot(n - 1, n - 1)

    for peak_x, peak_z in positions:
        peak_height = float(rng.uniform(spec.min_height, spec.max_height))
        heights[peak_z, peak_x] = max(heights[peak_z, peak_x], peak_height)

        distance = np.hypot(grid_x - peak_x, grid_z - peak_z) / diagonal
        profile = _peak_profile(distance, peak_height, spec, modulation)
        profile[peak_z, peak_x] = peak_height
        np.maximum(heights, profile, out=heights)

    field.heights[:] = heights
    field.clamp()
    logger.debug("radial_peaks", peaks=len(positions), blend=spec.blend_mode.value)


def _is_power_of_two_plus_one(resolution: int) -> bool:
    size = resolution - 1
    return size >= 2 and (size & (size - 1)) == 0


def midpoint_displacement(
    field: Heightfield,
    spec: DisplacementSpec,
    rng: np.random.Generator,
    reset: bool = True,
) -> None:
    """Diamond-square terrain on a ``(2^n + 1)`` grid.

    The diamond step sets every square's center to the mean of its corners
    plus a random offset. The square step sets every edge midpoint to the
    mean of its two corners and the centers of the two squares sharing the
    edge; midpoints whose outer center lies off the grid are skipped. Every
    midpoint on the outer border has such a center, so the whole border
    keeps its previous values (zero after a reset) and only the interior is
    displaced. The offset range shrinks by ``dampening_power ** -roughness``
    after each pass.

    Raises:
        ConfigurationError: If the resolution is not ``2^n + 1``.
    """
    require_field(field)
    n = field.resolution
    if not _is_power_of_two_plus_one(n):
        raise ConfigurationError(
            f"Midpoint displacement needs a 2^n+1 resolution, got {n}"
        )

    work = np.zeros((n, n), dtype=np.float64) if reset else field.heights.astype(np.float64)
    width = n - 1
    square_size = width
    height_min, height_max = spec.height_min, spec.height_max
    dampener = spec.dampening_power ** -spec.roughness

    # Squares of size 1 have no midpoints left to fill
    while square_size > 1:
        half = square_size // 2

        # Diamond step
        for z in range(0, width, square_size):
            for x in range(0, width, square_size):
                corners = (
                    work[z, x]
                    + work[z, x + square_size]
                    + work[z + square_size, x]
                    + work[z + square_size, x + square_size]
                )
                work[z + half, x + half] = corners / 4.0 + rng.uniform(height_min, height_max)

        # Square step: each interior midpoint is the bottom or left edge of
        # exactly one square, so visiting those two covers every midpoint once.
        for z in range(0, width, square_size):
            for x in range(0, width, square_size):
                mid_x, mid_z = x + half, z + half

                if z - half >= 0:
                    total = (
                        work[z, x]
                        + work[z, x + square_size]
                        + work[mid_z, mid_x]
                        + work[z - half, mid_x]
                    )
                    work[z, mid_x] = total / 4.0 + rng.uniform(height_min, height_max)

                if x - half >= 0:
                    total = (
                        work[z, x]
                        + work[z + square_size, x]
                        + work[mid_z, mid_x]
                        + work[mid_z, x - half]
                    )
                    work[mid_z, x] = total / 4.0 + rng.uniform(height_min, height_max)

        square_size = half
        height_min *= dampener
        height_max *= dampener

    field.heights[:] = work
    field.clamp()
    logger.debug("midpoint_displacement", resolution=n, reset=reset)


def smooth(field: Heightfield, passes: int = 1) -> None:
    """Box blur: each cell becomes the mean of itself and its in-bounds neighbours.

    Every pass reads the previous pass's output and writes a fresh buffer.
    Sums are taken in float64 so a constant field is reproduced exactly.
    """
    require_field(field)
    if passes < 0:
        raise ConfigurationError(f"Smoothing passes must be >= 0, got {passes}")
    if passes == 0:
        return

    current = field.heights.astype(np.float64)
    neighbour_counts = ndimage.convolve(
        np.ones_like(current), _BOX_KERNEL, mode="constant", cval=0.0
    )

    for _ in range(passes):
        current = (
            ndimage.convolve(current, _BOX_KERNEL, mode="constant", cval=0.0)
            / neighbour_counts
        )

    field.heights[:] = current
    logger.debug("smoothed", passes=passes)
