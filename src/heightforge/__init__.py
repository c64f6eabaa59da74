"""Procedural heightfield terrain generation.

This package implements noise, fractal and erosion based heightfield
generation, surface texture classification, vegetation and detail
scattering, and seamless multi-tile terrain grids.
"""

from .config import TerrainConfig, find_config, load_config
from .exceptions import (
    ConfigurationError,
    MissingResourceError,
    OutOfRangeError,
    TerrainError,
)
from .heightfield import Heightfield
from .noise import NoiseField
from .persistence import (
    load_heightfield,
    load_terrain,
    save_heightfield,
    save_terrain,
)
from .pipeline import GenerationResult, generate_terrain, generate_tiles
from .tiles import Tile, TileGrid

__all__ = [
    "ConfigurationError",
    "GenerationResult",
    "Heightfield",
    "MissingResourceError",
    "NoiseField",
    "OutOfRangeError",
    "TerrainConfig",
    "TerrainError",
    "Tile",
    "TileGrid",
    "find_config",
    "generate_terrain",
    "generate_tiles",
    "load_config",
    "load_heightfield",
    "load_terrain",
    "save_heightfield",
    "save_terrain",
]
