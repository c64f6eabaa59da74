"""Surface classification: per-cell texture blend weights from height and slope."""

import numpy as np
import structlog
from numpy.typing import NDArray

from .config import SurfaceLayer, SurfaceLayerSet
from .exceptions import ConfigurationError
from .heightfield import Heightfield, compute_slope, require_field
from .noise import NoiseField, inverse_lerp

logger = structlog.get_logger()

_SOFTNESS_EPSILON = 1e-6


def band_weight(
    values: NDArray,
    low: float,
    high: float,
    softness: NDArray | float,
) -> NDArray[np.float64]:
    """Membership of values in ``[low, high]`` with soft edges.

    1 inside the core range, fading linearly to 0 at ``softness`` beyond
    either end, 0 further out. Where ``softness`` is ~0 the band is hard.
    """
    values = np.asarray(values, dtype=np.float64)
    softness = np.broadcast_to(np.asarray(softness, dtype=np.float64), values.shape)
    hard = softness <= _SOFTNESS_EPSILON
    safe = np.where(hard, 1.0, softness)

    below = inverse_lerp(low - safe, low, values)
    above = inverse_lerp(high + safe, high, values)
    weight = np.minimum(below, above)

    core = (values >= low) & (values <= high)
    weight = np.where(core, 1.0, weight)
    return np.where(hard & ~core, 0.0, weight)


def layer_weight(
    heights: NDArray,
    slope: NDArray,
    layer: SurfaceLayer,
    noise: NoiseField,
) -> NDArray[np.float64]:
    """Raw (unnormalized) weight of one layer at every cell."""
    n = heights.shape[0]
    cells = np.arange(n, dtype=np.float64)
    scale_x, scale_z = layer.noise_scale
    perturbation = noise.sample_grid(cells * scale_x, cells * scale_z) * layer.noise_perturbation
    offset = layer.edge_softness + perturbation

    low, high = layer.height_range
    min_slope, max_slope = layer.slope_range
    slope_ok = (slope >= min_slope) & (slope <= max_slope)

    return np.where(slope_ok, band_weight(heights, low, high, offset), 0.0)


def surface_weights(
    field: Heightfield,
    layers: SurfaceLayerSet,
    slope: NDArray[np.float32] | None = None,
    noise: NoiseField | None = None,
) -> NDArray[np.float32]:
    """Compute normalized texture blend weights.

    Cells that no layer claims are given entirely to layer 0, so every
    cell's weights sum to 1.

    Args:
        field: Heightfield to classify.
        layers: Ordered texture layers.
        slope: Per-cell slope in degrees (computed from the field if omitted).
        noise: Noise source for edge perturbation.

    Returns:
        Array of shape ``(n, n, len(layers))``.

    Raises:
        ConfigurationError: If the layer set is empty.
    """
    require_field(field)
    if not layers.layers:
        raise ConfigurationError("Surface layer set is empty")

    noise = noise or NoiseField()
    if slope is None:
        slope = compute_slope(field)

    heights = field.heights
    weights = np.stack(
        [layer_weight(heights, slope, layer, noise) for layer in layers.layers],
        axis=-1,
    )

    totals = weights.sum(axis=-1)
    uncovered = totals <= 0.0
    weights[uncovered, 0] = 1.0
    totals[uncovered] = 1.0
    weights /= totals[..., np.newaxis]

    if np.any(uncovered):
        logger.debug("surface_fallback_cells", count=int(uncovered.sum()))
    logger.debug("surface_weights", layers=len(layers.layers))
    return weights.astype(np.float32)
