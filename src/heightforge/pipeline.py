"""Main terrain generation orchestration."""

from pathlib import Path
from typing import Callable

import numpy as np
import structlog
from numpy.typing import NDArray

from .config import (
    DisplacementStep,
    ErodeStep,
    ImageStep,
    MultiNoiseStep,
    PeaksStep,
    PipelineStep,
    RandomFillStep,
    SingleNoiseStep,
    SmoothStep,
    TerrainConfig,
    TileConfig,
)
from .erosion import erode
from .generator import (
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
from .heightfield import Heightfield, check_bounds, compute_slope
from .noise import NoiseField
from .persistence import load_height_image
from .scatter import PlacedInstance, SurfaceProbe, place_details, place_vegetation
from .surface import surface_weights
from .tiles import TileGrid

logger = structlog.get_logger()


class GenerationResult:
    """Result of terrain generation with all derived data."""

    def __init__(
        self,
        heightfield: Heightfield,
        config: TerrainConfig,
        slope: NDArray[np.float32],
        weights: NDArray[np.float32] | None = None,
        instances: list[PlacedInstance] | None = None,
        details: NDArray[np.int32] | None = None,
    ):
        self.heightfield = heightfield
        self.config = config
        self.slope = slope
        self.weights = weights
        self.instances = instances or []
        self.details = details


class _StepContext:
    """Shared state threaded through pipeline steps."""

    def __init__(
        self,
        rng: np.random.Generator,
        noise: NoiseField,
        images: dict[int, NDArray[np.float32]],
    ):
        self.rng = rng
        self.noise = noise
        self.images = images


StepHandler = Callable[[Heightfield, PipelineStep, _StepContext, int], None]


def _reset(field: Heightfield, step, ctx: _StepContext, index: int) -> None:
    reset(field)


def _random_fill(field: Heightfield, step: RandomFillStep, ctx: _StepContext, index: int) -> None:
    random_fill(field, step.height_range, ctx.rng, reset=step.reset)


def _from_image(field: Heightfield, step: ImageStep, ctx: _StepContext, index: int) -> None:
    from_image(field, ctx.images[index], scale=step.scale, reset=step.reset)


def _single_noise(
    field: Heightfield, step: SingleNoiseStep, ctx: _StepContext, index: int
) -> None:
    single_noise(field, step.noise, ctx.noise, reset=step.reset)


def _multi_noise(field: Heightfield, step: MultiNoiseStep, ctx: _StepContext, index: int) -> None:
    multi_noise(field, step.layers, ctx.noise, reset=step.reset)


def _ridge(field: Heightfield, step, ctx: _StepContext, index: int) -> None:
    ridge_transform(field)


def _radial_peaks(field: Heightfield, step: PeaksStep, ctx: _StepContext, index: int) -> None:
    radial_peaks(field, step.peaks, ctx.rng, noise=ctx.noise, reset=step.reset)


def _midpoint(field: Heightfield, step: DisplacementStep, ctx: _StepContext, index: int) -> None:
    midpoint_displacement(field, step.displacement, ctx.rng, reset=step.reset)


def _smooth(field: Heightfield, step: SmoothStep, ctx: _StepContext, index: int) -> None:
    smooth(field, step.passes)


def _erode(field: Heightfield, step: ErodeStep, ctx: _StepContext, index: int) -> None:
    erode(field, step.erosion, ctx.rng, noise=ctx.noise)


_STEP_HANDLERS: dict[str, StepHandler] = {
    "reset": _reset,
    "random_fill": _random_fill,
    "from_image": _from_image,
    "single_noise": _single_noise,
    "multi_noise": _multi_noise,
    "ridge": _ridge,
    "radial_peaks": _radial_peaks,
    "midpoint_displacement": _midpoint,
    "smooth": _smooth,
    "erode": _erode,
}


def _load_images(steps: list[PipelineStep]) -> dict[int, NDArray[np.float32]]:
    """Read every referenced height image up front, before any step runs."""
    return {
        index: load_height_image(Path(step.path))
        for index, step in enumerate(steps)
        if isinstance(step, ImageStep)
    }


def generate_terrain(
    config: TerrainConfig,
    probe: SurfaceProbe | None = None,
) -> GenerationResult:
    """Generate a complete terrain from configuration.

    Runs the configured steps on one heightfield, then classifies the
    surface and places vegetation and details when those sections are set.

    Args:
        config: Terrain generation configuration.
        probe: Optional world-space height query for vegetation placement.

    Returns:
        GenerationResult with the heightfield and all derived data.

    Raises:
        MissingResourceError: If a referenced height image is missing.
        ConfigurationError: If a step cannot run against this heightfield.
    """
    rng = np.random.default_rng(config.seed)
    noise = NoiseField(config.noise_seed)
    field = Heightfield.empty(config.resolution, size=config.size, origin=config.origin)
    ctx = _StepContext(rng=rng, noise=noise, images=_load_images(config.steps))

    logger.info(
        "terrain_generation_started",
        resolution=config.resolution,
        seed=config.seed,
        steps=len(config.steps),
    )

    for index, step in enumerate(config.steps):
        logger.info("pipeline_step", index=index, op=step.op)
        _STEP_HANDLERS[step.op](field, step, ctx, index)

    check_bounds(field)
    slope = compute_slope(field)

    weights = None
    if config.surface is not None:
        logger.info("classifying_surface", layers=len(config.surface.layers))
        weights = surface_weights(field, config.surface, slope=slope, noise=noise)

    instances: list[PlacedInstance] = []
    if config.vegetation is not None:
        logger.info("placing_vegetation", prototypes=len(config.vegetation.layers))
        instances = place_vegetation(field, config.vegetation, rng, slope=slope, probe=probe)

    details = None
    if config.details is not None:
        logger.info("placing_details", prototypes=len(config.details.layers))
        details = place_details(field, config.details, rng, slope=slope, noise=noise)

    _log_terrain_stats(field, slope, len(instances))

    return GenerationResult(
        heightfield=field,
        config=config,
        slope=slope,
        weights=weights,
        instances=instances,
        details=details,
    )


def generate_tiles(config: TerrainConfig) -> TileGrid:
    """Generate a seamless grid of tiles sharing one world-space noise.

    Uses ``config.tiles`` (or its defaults) for the grid layout and noise;
    every tile has ``config.resolution`` samples and ``config.size``.
    """
    tiles = config.tiles or TileConfig()
    tiles_x, tiles_z = tiles.grid

    logger.info("tile_generation_started", tiles_x=tiles_x, tiles_z=tiles_z)

    grid = TileGrid.create(
        tiles_x, tiles_z, config.resolution, config.size, origin=config.origin
    )
    grid.generate_all(
        tiles.noise,
        NoiseField(config.noise_seed),
        use_zero_offset=tiles.use_zero_offset,
        zero_offset=tiles.zero_offset,
    )
    if tiles.stitch:
        grid.stitch_all()

    for tile in grid.tiles:
        check_bounds(tile.heightfield)

    mismatches = grid.seam_mismatches()
    if mismatches:
        logger.warning("tile_seams_differ", seams=len(mismatches))
    return grid


def _log_terrain_stats(field: Heightfield, slope: NDArray[np.float32], instances: int) -> None:
    """Log terrain generation statistics."""
    heights = field.heights
    logger.info(
        "terrain_stats",
        min_height=round(float(heights.min()), 4),
        max_height=round(float(heights.max()), 4),
        mean_height=round(float(heights.mean()), 4),
        mean_slope=round(float(slope.mean()), 2),
        max_slope=round(float(slope.max()), 2),
        instances=instances,
    )
