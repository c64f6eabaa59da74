"""Scatter placement: vegetation instances and detail density grids."""

from dataclasses import dataclass
from typing import Callable, Iterator

import numpy as np
import structlog
from numpy.typing import NDArray

from .config import Color, DetailLayerSet, ScatterLayerSet, ScatterSpec
from .exceptions import ConfigurationError
from .heightfield import Heightfield, compute_slope, require_field
from .noise import NoiseField, remap
from .surface import band_weight

logger = structlog.get_logger()

# World (x, z) -> world y of the rendered surface, or None on a miss
SurfaceProbe = Callable[[float, float], float | None]


@dataclass(frozen=True)
class PlacedInstance:
    """A placed vegetation instance.

    ``position`` is normalized to the heightfield: x and z in [0, 1] across
    the field, y in [0, 1] of its height scale. ``cell`` is the ``(x, z)``
    heightfield cell the placement decision was made at.
    """

    position: tuple[float, float, float]
    rotation: float
    scale: float
    color: Color
    layer: int
    cell: tuple[int, int]


def _check_spacing(spacing: int, what: str) -> None:
    if spacing <= 0:
        raise ConfigurationError(f"{what} spacing must be positive, got {spacing}")


def _lattice(size: int, spacing: int) -> Iterator[tuple[int, int]]:
    """Yield (x, z) cells row by row at the given spacing."""
    for z in range(0, size, spacing):
        for x in range(0, size, spacing):
            yield x, z


def _accepts(spec: ScatterSpec, height: float, slope: float) -> bool:
    min_height, max_height = spec.height_range
    min_slope, max_slope = spec.slope_range
    return min_height <= height <= max_height and min_slope <= slope <= max_slope


def _lerp_color(start: Color, end: Color, t: float) -> Color:
    return tuple(a + (b - a) * t for a, b in zip(start, end))  # type: ignore[return-value]


def place_vegetation(
    field: Heightfield,
    layers: ScatterLayerSet,
    rng: np.random.Generator,
    slope: NDArray[np.float32] | None = None,
    probe: SurfaceProbe | None = None,
) -> list[PlacedInstance]:
    """Place vegetation instances over the heightfield.

    Prototypes are processed in order, each scanning the grid row by row
    (z, then x) at its own spacing. A cell is kept when a uniform draw falls
    below the prototype's density and the cell's height and slope lie in the
    prototype's ranges. Placement stops as soon as ``layers.max_count``
    instances exist, so earlier prototypes win the budget.

    Args:
        field: Heightfield to populate.
        layers: Prototypes plus default spacing and global budget.
        rng: Random generator for acceptance, jitter and appearance.
        slope: Per-cell slope in degrees (computed from the field if omitted).
        probe: Optional world-space height query used to correct y.

    Returns:
        Instances in placement order.

    Raises:
        ConfigurationError: If there are no prototypes or a spacing is not positive.
    """
    require_field(field)
    if not layers.layers:
        raise ConfigurationError("Vegetation layer set is empty")
    spacings = [
        spec.spacing if spec.spacing is not None else layers.spacing
        for spec in layers.layers
    ]
    for spec, spacing in zip(layers.layers, spacings):
        _check_spacing(spacing, f"Vegetation '{spec.name}'")

    if slope is None:
        slope = compute_slope(field)

    n = field.resolution
    heights = field.heights
    instances: list[PlacedInstance] = []

    for index, (spec, spacing) in enumerate(zip(layers.layers, spacings)):
        layer_count = 0
        layer_budget = spec.max_count if spec.max_count is not None else layers.max_count

        for x, z in _lattice(n, spacing):
            if len(instances) >= layers.max_count:
                logger.debug("vegetation_budget_reached", max_count=layers.max_count)
                return instances
            if layer_count >= layer_budget:
                break
            if rng.random() >= spec.density:
                continue

            height = float(heights[z, x])
            if not _accepts(spec, height, float(slope[z, x])):
                continue

            instances.append(
                _make_instance(field, spec, index, x, z, spacing, height, rng, probe)
            )
            layer_count += 1

    if not instances:
        logger.warning("no_vegetation_placed", layers=len(layers.layers))
    return instances


def _make_instance(
    field: Heightfield,
    spec: ScatterSpec,
    index: int,
    x: int,
    z: int,
    spacing: int,
    height: float,
    rng: np.random.Generator,
    probe: SurfaceProbe | None,
) -> PlacedInstance:
    """Build one instance jittered within its cell."""
    last = field.resolution - 1
    jitter_x, jitter_z = rng.uniform(-0.5, 0.5, size=2) * spacing
    norm_x = float(np.clip(x + jitter_x, 0, last)) / last
    norm_z = float(np.clip(z + jitter_z, 0, last)) / last

    norm_y = height
    if probe is not None:
        world_x = field.origin[0] + norm_x * field.width
        world_z = field.origin[1] + norm_z * field.depth
        hit = probe(world_x, world_z)
        if hit is not None and field.height_scale > 0:
            norm_y = float(np.clip(hit / field.height_scale, 0.0, 1.0))

    rotation = float(rng.uniform(*spec.rotation_range))
    scale = float(rng.uniform(*spec.scale_range))
    color = _lerp_color(spec.color_range[0], spec.color_range[1], float(rng.random()))

    return PlacedInstance(
        position=(norm_x, norm_y, norm_z),
        rotation=rotation,
        scale=scale,
        color=color,
        layer=index,
        cell=(x, z),
    )


def place_details(
    field: Heightfield,
    layers: DetailLayerSet,
    rng: np.random.Generator,
    slope: NDArray[np.float32] | None = None,
    noise: NoiseField | None = None,
) -> NDArray[np.int32]:
    """Build one detail density grid per prototype.

    Accepted cells get ``round(fade * density_limit)`` where ``fade`` drops
    from 1 to 0 across noise-feathered soft edges around the height and slope
    ranges, giving gradual density falloff instead of a hard border.

    Returns:
        Array of shape ``(len(layers), resolution, resolution)``.

    Raises:
        ConfigurationError: If there are no prototypes or spacing is not positive.
    """
    require_field(field)
    if not layers.layers:
        raise ConfigurationError("Detail layer set is empty")
    _check_spacing(layers.spacing, "Detail")

    noise = noise or NoiseField()
    if slope is None:
        slope = compute_slope(field)

    n = field.resolution
    resolution = layers.resolution or n
    limit = layers.density_limit
    grids = np.zeros((len(layers.layers), resolution, resolution), dtype=np.int32)

    cells = np.arange(0, resolution, layers.spacing)
    # Detail cell -> nearest heightfield cell
    source = np.rint(cells / max(resolution - 1, 1) * (n - 1)).astype(np.int64)
    rows, cols = np.ix_(source, source)
    cell_heights = field.heights[rows, cols]
    cell_slopes = slope[rows, cols]

    for index, spec in enumerate(layers.layers):
        accepted = rng.random((len(cells), len(cells))) < spec.density

        feather = remap(
            noise.sample_grid(cells * spec.feather, cells * spec.feather), 0.0, 1.0, 0.5, 1.0
        )
        height_fade = band_weight(cell_heights, *spec.height_range, spec.overlap * feather)
        slope_fade = band_weight(cell_slopes, *spec.slope_range, spec.slope_overlap * feather)

        values = np.rint(height_fade * slope_fade * limit).astype(np.int32)
        grids[index][np.ix_(cells, cells)] = np.where(accepted, values, 0)

    logger.debug(
        "details_placed",
        layers=len(layers.layers),
        resolution=resolution,
        mode=layers.mode.value,
    )
    return grids
