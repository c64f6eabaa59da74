"""Erosion: rain, thermal, tidal, river, wind and canyon processes.

Every process mutates the heightfield in place, is bounds-safe at the grid
edges, and is followed by ``spec.smooth_passes`` box blur passes.
"""

import math
from typing import Callable

import numpy as np
import structlog
from numpy.typing import NDArray

from .config import (
    CanyonErosion,
    ErosionSpec,
    RainErosion,
    RiverErosion,
    ThermalErosion,
    TidalErosion,
    WindErosion,
)
from .generator import smooth
from .heightfield import Heightfield, require_field
from .noise import NoiseField

logger = structlog.get_logger()

# 8-neighbourhood offsets as (dx, dz)
NEIGHBOUR_OFFSETS: tuple[tuple[int, int], ...] = (
    (0, 1),
    (1, 1),
    (1, 0),
    (1, -1),
    (0, -1),
    (-1, -1),
    (-1, 0),
    (-1, 1),
)


def _pair_slices(
    offset: int,
    size: int,
) -> tuple[slice, slice]:
    """Slices pairing cells with their neighbour ``offset`` away along one axis.

    Returns (source slice, neighbour slice); both cover only cells whose
    neighbour is inside the grid.
    """
    if offset > 0:
        return slice(0, size - offset), slice(offset, size)
    if offset < 0:
        return slice(-offset, size), slice(0, size + offset)
    return slice(0, size), slice(0, size)


def _neighbour_views(
    size: int,
) -> list[tuple[tuple[slice, slice], tuple[slice, slice]]]:
    """(source, neighbour) index pairs for every in-bounds 8-neighbour relation."""
    views = []
    for dx, dz in NEIGHBOUR_OFFSETS:
        src_cols, dst_cols = _pair_slices(dx, size)
        src_rows, dst_rows = _pair_slices(dz, size)
        views.append(((src_rows, src_cols), (dst_rows, dst_cols)))
    return views


def _in_bounds(x: int, z: int, size: int) -> bool:
    return 0 <= x < size and 0 <= z < size


def rain(
    heights: NDArray[np.float64],
    spec: RainErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Random droplets each remove ``strength``, floored at zero."""
    n = heights.shape[0]
    if spec.droplets == 0:
        logger.warning("rain_erosion_without_droplets")
        return heights

    xs = rng.integers(0, n, size=spec.droplets)
    zs = rng.integers(0, n, size=spec.droplets)
    np.subtract.at(heights, (zs, xs), spec.strength)
    return np.maximum(heights, 0.0)


def thermal(
    heights: NDArray[np.float64],
    spec: ThermalErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Slide material toward neighbours more than ``strength`` lower.

    Decisions and transfer amounts read a snapshot of the heights, so the
    result does not depend on visiting order.
    """
    snapshot = heights
    out = heights.copy()

    for source, target in _neighbour_views(heights.shape[0]):
        source_heights = snapshot[source]
        moving = source_heights > snapshot[target] + spec.strength
        transfer = np.where(moving, source_heights * spec.amount, 0.0)
        out[source] -= transfer
        out[target] += transfer

    return np.clip(out, 0.0, 1.0)


def tidal(
    heights: NDArray[np.float64],
    spec: TidalErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Pull both sides of the shoreline toward the water height."""
    water = spec.water_height
    below = heights < water
    above = heights > water
    shoreline = np.zeros(heights.shape, dtype=bool)

    for source, target in _neighbour_views(heights.shape[0]):
        crossing = below[source] & above[target]
        shoreline[source] |= crossing
        shoreline[target] |= crossing

    out = heights.copy()
    out[shoreline] += (water - heights[shoreline]) * spec.strength
    return out


def river(
    heights: NDArray[np.float64],
    spec: RiverErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Carve channels along downhill walks from random springs.

    Each walk deposits ``solubility`` into an erosion map at every visited
    cell and steps to the lowest neighbour (ties broken by a shuffle). Walks
    stop at a local minimum or after ``n * n`` steps. The accumulated
    erosion is subtracted once all walks finish.
    """
    n = heights.shape[0]
    if spec.droplets == 0 or spec.springs_per_river == 0:
        logger.warning("river_erosion_without_springs")
        return heights

    erosion = np.zeros_like(heights)
    max_steps = n * n
    offsets = list(NEIGHBOUR_OFFSETS)

    for _ in range(spec.droplets):
        spring_x = int(rng.integers(0, n))
        spring_z = int(rng.integers(0, n))

        for _ in range(spec.springs_per_river):
            x, z = spring_x, spring_z
            for _ in range(max_steps):
                erosion[z, x] += spec.solubility

                rng.shuffle(offsets)
                lowest = None
                lowest_height = heights[z, x]
                for dx, dz in offsets:
                    nx, nz = x + dx, z + dz
                    if _in_bounds(nx, nz, n) and heights[nz, nx] < lowest_height:
                        lowest = (nx, nz)
                        lowest_height = heights[nz, nx]

                if lowest is None:
                    break
                x, z = lowest

    return np.maximum(heights - erosion, 0.0)


def wind(
    heights: NDArray[np.float64],
    spec: WindErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Dig ripples and pile the material downwind.

    Scans a rotated raster larger than the grid so the whole field is
    covered at any wind direction. Dig and pile points are bounds-checked
    separately: material dug next to the border whose pile point falls off
    the grid is lost.
    """
    n = heights.shape[0]
    angle = math.radians(spec.wind_direction)
    sin_angle = -math.sin(angle)
    cos_angle = math.cos(angle)

    rows = np.arange(-(n - 1) * 2, n * 2 + 1, spec.step)
    cols = np.arange(-(n - 1) * 2, n * 2 + 1)
    ripples = noise.sample_grid(cols * spec.noise_scale, rows * spec.noise_scale)

    for i, row in enumerate(rows):
        for j, col in enumerate(cols):
            ripple = ripples[i, j]
            dig_row = row + int(ripple * spec.ripple * spec.strength)
            pile_row = dig_row + spec.deposit_distance

            dig_x = math.floor(col * cos_angle - dig_row * sin_angle)
            dig_z = math.floor(dig_row * cos_angle + col * sin_angle)
            if not _in_bounds(dig_x, dig_z, n):
                continue

            fraction = min(spec.base_dig_amount + ripple * spec.strength, spec.amount)
            dug = fraction * heights[dig_z, dig_x]
            heights[dig_z, dig_x] -= dug

            pile_x = math.floor(col * cos_angle - pile_row * sin_angle)
            pile_z = math.floor(pile_row * cos_angle + col * sin_angle)
            if _in_bounds(pile_x, pile_z, n):
                heights[pile_z, pile_x] += dug

    return np.clip(heights, 0.0, 1.0)


def canyon(
    heights: NDArray[np.float64],
    spec: CanyonErosion,
    rng: np.random.Generator,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Carve a branching canyon starting from a random edge cell.

    Uses an explicit stack of ``(x, z, depth, steps)`` branches. A branch
    ends when its depth is used up, it walks off the grid, or it has taken
    more than ``2 * n`` steps.
    """
    n = heights.shape[0]
    if spec.depth <= 0:
        return heights

    along = int(rng.integers(0, n))
    starts = [(0, along), (n - 1, along), (along, 0), (along, n - 1)]
    start_x, start_z = starts[int(rng.integers(0, 4))]

    max_steps = n + n
    stack = [(start_x, start_z, spec.depth, 0)]
    carved = 0

    while stack:
        x, z, depth, steps = stack.pop()
        if depth <= 0 or steps > max_steps or not _in_bounds(x, z, n):
            continue

        heights[z, x] = max(heights[z, x] - depth, 0.0)
        carved += 1

        order = rng.permutation(len(NEIGHBOUR_OFFSETS))
        dx, dz = NEIGHBOUR_OFFSETS[order[0]]
        stack.append((x + dx, z + dz, depth - spec.amount, steps + 1))

        if rng.random() < spec.branch_chance:
            dx, dz = NEIGHBOUR_OFFSETS[order[1]]
            stack.append((x + dx, z + dz, depth / 2.0, steps + 1))

    logger.debug("canyon_carved", cells=carved, start=(start_x, start_z))
    return heights


ErosionHandler = Callable[
    [NDArray[np.float64], ErosionSpec, np.random.Generator, NoiseField],
    NDArray[np.float64],
]

_HANDLERS: dict[str, ErosionHandler] = {
    "rain": rain,
    "thermal": thermal,
    "tidal": tidal,
    "river": river,
    "wind": wind,
    "canyon": canyon,
}


def erode(
    field: Heightfield,
    spec: ErosionSpec,
    rng: np.random.Generator,
    noise: NoiseField | None = None,
) -> None:
    """Apply one erosion process to the field, then smooth it.

    Args:
        field: Heightfield to erode in place.
        spec: Erosion variant and its parameters.
        rng: Random generator for droplets, springs and walks.
        noise: Noise source for wind ripples.
    """
    require_field(field)
    handler = _HANDLERS[spec.kind]

    heights = field.heights.astype(np.float64)
    heights = handler(heights, spec, rng, noise or NoiseField())

    field.heights[:] = heights
    field.clamp()
    smooth(field, spec.smooth_passes)

    logger.debug("erosion_applied", kind=spec.kind, smooth_passes=spec.smooth_passes)
