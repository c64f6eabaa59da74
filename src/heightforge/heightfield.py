"""Heightfield grid container and derived fields."""

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError, OutOfRangeError

Side = Literal["left", "right", "bottom", "top"]

# Side -> (row slice, column slice) of the edge samples.
# Rows run along z (row 0 is the bottom edge), columns along x.
_EDGES: dict[str, tuple[slice | int, slice | int]] = {
    "left": (slice(None), 0),
    "right": (slice(None), -1),
    "bottom": (0, slice(None)),
    "top": (-1, slice(None)),
}


@dataclass
class Heightfield:
    """Square grid of normalized heights mapped onto a world-space box.

    ``heights[z, x]`` holds the sample at column ``x`` and row ``z``.
    """

    heights: NDArray[np.float32]
    size: tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin: tuple[float, float] = (0.0, 0.0)

    @classmethod
    def empty(
        cls,
        resolution: int,
        size: tuple[float, float, float] = (1.0, 1.0, 1.0),
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> "Heightfield":
        """Create a flat (all zero) heightfield."""
        if resolution < 2:
            raise ConfigurationError(f"Heightfield resolution must be >= 2, got {resolution}")
        heights = np.zeros((resolution, resolution), dtype=np.float32)
        return cls(heights=heights, size=size, origin=origin)

    @classmethod
    def from_array(
        cls,
        heights: NDArray,
        size: tuple[float, float, float] = (1.0, 1.0, 1.0),
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> "Heightfield":
        """Wrap a copy of an existing square buffer."""
        heights = np.array(heights, dtype=np.float32)
        if heights.ndim != 2 or heights.shape[0] != heights.shape[1]:
            raise ConfigurationError(f"Heightfield must be square, got shape {heights.shape}")
        return cls(heights=heights, size=size, origin=origin)

    @property
    def resolution(self) -> int:
        return int(self.heights.shape[0])

    @property
    def width(self) -> float:
        return self.size[0]

    @property
    def height_scale(self) -> float:
        return self.size[1]

    @property
    def depth(self) -> float:
        return self.size[2]

    def copy(self) -> "Heightfield":
        return Heightfield(heights=self.heights.copy(), size=self.size, origin=self.origin)

    def clamp(self) -> None:
        """Clamp every sample into [0, 1] in place."""
        np.clip(self.heights, 0.0, 1.0, out=self.heights)

    def reset(self) -> None:
        """Flatten the field to zero."""
        self.heights.fill(0.0)

    def world_x(self) -> NDArray[np.float64]:
        """World x coordinate of every column."""
        n = self.resolution
        return self.origin[0] + np.arange(n, dtype=np.float64) / (n - 1) * self.width

    def world_z(self) -> NDArray[np.float64]:
        """World z coordinate of every row."""
        n = self.resolution
        return self.origin[1] + np.arange(n, dtype=np.float64) / (n - 1) * self.depth

    def edge(self, side: Side) -> NDArray[np.float32]:
        """Copy of the samples along one border."""
        rows, cols = _EDGES[side]
        return self.heights[rows, cols].copy()

    def set_edge(self, side: Side, values: NDArray[np.float32]) -> None:
        rows, cols = _EDGES[side]
        self.heights[rows, cols] = values


def require_field(field: Heightfield) -> None:
    """Reject empty or malformed heightfields before an operation starts."""
    heights = field.heights
    if heights is None or heights.size == 0:
        raise ConfigurationError("Heightfield has not been generated")
    if heights.ndim != 2 or heights.shape[0] != heights.shape[1]:
        raise ConfigurationError(f"Heightfield must be square, got shape {heights.shape}")
    if heights.shape[0] < 2:
        raise ConfigurationError("Heightfield resolution must be >= 2")


def check_bounds(field: Heightfield) -> None:
    """Assert every sample lies in [0, 1].

    Out-of-range values after a clamp are a logic error, not user input, so
    this check is skipped when Python runs with ``-O``.
    """
    if not __debug__:
        return
    heights = field.heights
    if not np.all(np.isfinite(heights)):
        raise OutOfRangeError("Heightfield contains non-finite samples")
    low, high = float(heights.min()), float(heights.max())
    if low < 0.0 or high > 1.0:
        raise OutOfRangeError(f"Heightfield samples span [{low}, {high}], expected [0, 1]")


def compute_slope(field: Heightfield) -> NDArray[np.float32]:
    """Compute per-cell steepness in degrees.

    Gradients are taken in world units, so the slope depends on the field's
    width, depth and height scale and not just on its resolution.

    Args:
        field: Heightfield to measure.

    Returns:
        2D array of slope angles in [0, 90).
    """
    n = field.resolution
    spacing_x = field.width / (n - 1)
    spacing_z = field.depth / (n - 1)
    world_heights = field.heights.astype(np.float64) * field.height_scale

    grad_z, grad_x = np.gradient(world_heights, spacing_z, spacing_x)
    magnitude = np.sqrt(grad_x**2 + grad_z**2)

    return np.degrees(np.arctan(magnitude)).astype(np.float32)
