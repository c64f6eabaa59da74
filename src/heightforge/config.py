"""Terrain generation configuration models.

Every operation takes one of these immutable value specs explicitly; a
complete generation pipeline is described by ``TerrainConfig`` and can be
loaded from TOML.
"""

import tomllib
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

Range = tuple[float, float]
Color = tuple[float, float, float, float]

CONFIGS_DIR = Path(__file__).parent.parent.parent / "configs"


def _ordered(value: Range) -> Range:
    """Reject ranges whose minimum exceeds their maximum."""
    low, high = value
    if low > high:
        raise ValueError(f"range minimum {low} exceeds maximum {high}")
    return value


def _without_marked(layers: list) -> list:
    kept = [layer for layer in layers if not layer.remove]
    if not kept and layers:
        kept = [layers[0].model_copy(update={"remove": False})]
    return kept


class NoiseSpec(BaseModel, frozen=True):
    """Fractal noise sampling parameters for a single field."""

    x_scale: float = Field(default=0.01, description="Frequency along x")
    z_scale: float = Field(default=0.01, description="Frequency along z")
    x_offset: float = Field(default=0.0, description="Offset added to x before scaling")
    z_offset: float = Field(default=0.0, description="Offset added to z before scaling")
    octaves: int = Field(default=3, ge=1, description="Number of octaves for fBm")
    persistence: float = Field(
        default=0.5, gt=0.0, le=1.0, description="Amplitude multiplier per octave"
    )
    height_scale: float = Field(default=1.0, ge=0.0, description="Output multiplier")
    ridged: bool = Field(default=False, description="Use ridged fBm instead of fBm")


class BlendMode(str, Enum):
    """Height falloff shapes around a radial peak."""

    LINEAR = "linear"
    POWER = "power"
    COMBINED = "combined"
    SIN_POWER = "sin_power"
    NOISE_MODULATED = "noise_modulated"


class PeakSpec(BaseModel, frozen=True):
    """Radial multi-peak generation parameters."""

    count: int = Field(default=5, ge=0, description="Number of peaks")
    falloff: float = Field(default=0.2, description="Height lost per unit distance")
    dropoff: float = Field(default=0.6, description="Distance exponent / sine damping")
    min_height: float = Field(default=0.25, description="Lowest peak height")
    max_height: float = Field(default=0.5, description="Highest peak height")
    blend_mode: BlendMode = Field(default=BlendMode.LINEAR)
    noise: NoiseSpec = Field(
        default_factory=lambda: NoiseSpec(x_scale=0.05, z_scale=0.05, height_scale=0.1),
        description="Noise added by the noise_modulated blend",
    )

    @model_validator(mode="after")
    def check_heights(self) -> "PeakSpec":
        _ordered((self.min_height, self.max_height))
        return self


class DisplacementSpec(BaseModel, frozen=True):
    """Midpoint displacement (diamond-square) parameters."""

    height_min: float = Field(default=-0.3, description="Lowest random offset")
    height_max: float = Field(default=0.3, description="Highest random offset")
    dampening_power: float = Field(default=2.0, gt=0.0, description="Offset decay base")
    roughness: float = Field(default=2.0, description="Offset decay exponent")

    @model_validator(mode="after")
    def check_heights(self) -> "DisplacementSpec":
        _ordered((self.height_min, self.height_max))
        return self


class _ErosionBase(BaseModel, frozen=True):
    smooth_passes: int = Field(default=0, ge=0, description="Box blur passes afterwards")


class RainErosion(_ErosionBase, frozen=True):
    """Random droplets each remove a fixed amount of height."""

    kind: Literal["rain"] = "rain"
    strength: float = Field(default=0.1, ge=0.0)
    droplets: int = Field(default=10, ge=0)


class ThermalErosion(_ErosionBase, frozen=True):
    """Material slides from a cell to much lower neighbours."""

    kind: Literal["thermal"] = "thermal"
    strength: float = Field(default=0.01, ge=0.0, description="Height difference threshold")
    amount: float = Field(default=0.01, ge=0.0, le=1.0, description="Fraction moved")


class TidalErosion(_ErosionBase, frozen=True):
    """Shoreline cells are pulled toward the water level."""

    kind: Literal["tidal"] = "tidal"
    water_height: float = Field(default=0.1, ge=0.0, le=1.0)
    strength: float = Field(default=0.5, ge=0.0, le=1.0)


class RiverErosion(_ErosionBase, frozen=True):
    """Downhill walks from random springs carve channels."""

    kind: Literal["river"] = "river"
    droplets: int = Field(default=10, ge=0, description="Number of springs")
    springs_per_river: int = Field(default=5, ge=0, description="Walks per spring")
    solubility: float = Field(default=0.01, ge=0.0, description="Erosion per step")


class WindErosion(_ErosionBase, frozen=True):
    """Ripples dug and piled along a wind direction."""

    kind: Literal["wind"] = "wind"
    strength: float = Field(default=0.1, ge=0.0)
    amount: float = Field(default=0.01, ge=0.0, le=1.0, description="Max dug fraction")
    wind_direction: float = Field(default=30.0, description="Degrees")
    base_dig_amount: float = Field(default=0.001, ge=0.0)
    step: int = Field(default=10, ge=1, description="Row step of the raster scan")
    deposit_distance: int = Field(default=5, ge=1, description="Pile offset downwind")
    noise_scale: float = Field(default=0.06, gt=0.0)
    ripple: float = Field(default=20.0, ge=0.0, description="Ripple displacement in cells")


class CanyonErosion(_ErosionBase, frozen=True):
    """Branching random walk carving from an edge."""

    kind: Literal["canyon"] = "canyon"
    depth: float = Field(default=0.1, ge=0.0, description="Initial carve depth")
    amount: float = Field(default=0.005, gt=0.0, description="Depth lost per step")
    branch_chance: float = Field(default=0.1, ge=0.0, le=1.0)


ErosionSpec = Annotated[
    Union[
        RainErosion,
        ThermalErosion,
        TidalErosion,
        RiverErosion,
        WindErosion,
        CanyonErosion,
    ],
    Field(discriminator="kind"),
]


class SurfaceLayer(BaseModel, frozen=True):
    """One texture layer band over height and slope."""

    name: str = "layer"
    height_range: Range = (0.0, 1.0)
    slope_range: Range = Field(default=(0.0, 90.0), description="Degrees")
    edge_softness: float = Field(default=0.01, ge=0.0)
    noise_perturbation: float = Field(default=0.1, ge=0.0)
    noise_scale: tuple[float, float] = (0.01, 0.01)
    remove: bool = False

    @field_validator("height_range", "slope_range")
    @classmethod
    def check_ranges(cls, value: Range) -> Range:
        return _ordered(value)


class SurfaceLayerSet(BaseModel):
    """Ordered texture layers; layer 0 covers cells no layer matches."""

    layers: list[SurfaceLayer] = Field(default_factory=lambda: [SurfaceLayer()])

    def add(self, layer: SurfaceLayer | None = None) -> None:
        self.layers.append(layer or SurfaceLayer())

    def remove_marked(self) -> None:
        """Drop layers flagged ``remove``, keeping the first if all are."""
        self.layers = _without_marked(self.layers)


class ScatterSpec(BaseModel, frozen=True):
    """Vegetation prototype placement rules."""

    name: str = "tree"
    height_range: Range = (0.0, 1.0)
    slope_range: Range = Field(default=(0.0, 90.0), description="Degrees")
    density: float = Field(default=0.5, ge=0.0, le=1.0)
    spacing: int | None = Field(default=None, description="Grid step; set default if None")
    rotation_range: Range = (0.0, 360.0)
    scale_range: Range = (0.8, 1.2)
    color_range: tuple[Color, Color] = ((1.0, 1.0, 1.0, 1.0), (1.0, 1.0, 1.0, 1.0))
    max_count: int | None = Field(default=None, ge=0, description="Per-prototype cap")
    remove: bool = False

    @field_validator("height_range", "slope_range", "rotation_range", "scale_range")
    @classmethod
    def check_ranges(cls, value: Range) -> Range:
        return _ordered(value)


class ScatterLayerSet(BaseModel):
    """Vegetation prototypes sharing a spacing and a global instance budget."""

    layers: list[ScatterSpec] = Field(default_factory=lambda: [ScatterSpec()])
    spacing: int = Field(default=5, description="Default grid step in cells")
    max_count: int = Field(default=5000, ge=0, description="Global instance cap")

    def add(self, layer: ScatterSpec | None = None) -> None:
        self.layers.append(layer or ScatterSpec())

    def remove_marked(self) -> None:
        self.layers = _without_marked(self.layers)


class ScatterMode(str, Enum):
    """How detail grid values are interpreted by the renderer."""

    COVERAGE = "coverage"
    COUNT = "count"


MAX_DENSITY = {ScatterMode.COVERAGE: 255, ScatterMode.COUNT: 16}


class DetailSpec(BaseModel, frozen=True):
    """Detail (grass, pebbles) prototype placement rules."""

    name: str = "grass"
    height_range: Range = (0.0, 1.0)
    slope_range: Range = Field(default=(0.0, 90.0), description="Degrees")
    density: float = Field(default=0.5, ge=0.0, le=1.0)
    overlap: float = Field(default=0.01, ge=0.0, description="Soft height edge width")
    slope_overlap: float = Field(default=5.0, ge=0.0, description="Soft slope edge, degrees")
    feather: float = Field(default=0.05, gt=0.0, description="Edge noise frequency")
    remove: bool = False

    @field_validator("height_range", "slope_range")
    @classmethod
    def check_ranges(cls, value: Range) -> Range:
        return _ordered(value)


class DetailLayerSet(BaseModel):
    """Detail prototypes rendered into per-prototype density grids."""

    layers: list[DetailSpec] = Field(default_factory=lambda: [DetailSpec()])
    spacing: int = Field(default=1, description="Grid step in detail cells")
    resolution: int | None = Field(
        default=None, ge=1, description="Detail grid size (None = heightfield size)"
    )
    mode: ScatterMode = ScatterMode.COVERAGE
    max_density: int | None = Field(
        default=None, ge=0, description="Per-cell maximum (None = mode default)"
    )

    def add(self, layer: DetailSpec | None = None) -> None:
        self.layers.append(layer or DetailSpec())

    def remove_marked(self) -> None:
        self.layers = _without_marked(self.layers)

    @property
    def density_limit(self) -> int:
        if self.max_density is not None:
            return self.max_density
        return MAX_DENSITY[self.mode]


# Pipeline steps


class ResetStep(BaseModel, frozen=True):
    op: Literal["reset"] = "reset"


class RandomFillStep(BaseModel, frozen=True):
    op: Literal["random_fill"] = "random_fill"
    height_range: Range = (0.0, 0.1)
    reset: bool = True

    @field_validator("height_range")
    @classmethod
    def check_range(cls, value: Range) -> Range:
        return _ordered(value)


class ImageStep(BaseModel, frozen=True):
    op: Literal["from_image"] = "from_image"
    path: str
    scale: tuple[float, float, float] = Field(
        default=(1.0, 1.0, 1.0), description="(x step, height, z step)"
    )
    reset: bool = True


class SingleNoiseStep(BaseModel, frozen=True):
    op: Literal["single_noise"] = "single_noise"
    noise: NoiseSpec = Field(default_factory=NoiseSpec)
    reset: bool = True


class MultiNoiseStep(BaseModel, frozen=True):
    op: Literal["multi_noise"] = "multi_noise"
    layers: list[NoiseSpec] = Field(default_factory=lambda: [NoiseSpec()])
    reset: bool = True


class RidgeStep(BaseModel, frozen=True):
    op: Literal["ridge"] = "ridge"


class PeaksStep(BaseModel, frozen=True):
    op: Literal["radial_peaks"] = "radial_peaks"
    peaks: PeakSpec = Field(default_factory=PeakSpec)
    reset: bool = True


class DisplacementStep(BaseModel, frozen=True):
    op: Literal["midpoint_displacement"] = "midpoint_displacement"
    displacement: DisplacementSpec = Field(default_factory=DisplacementSpec)
    reset: bool = True


class SmoothStep(BaseModel, frozen=True):
    op: Literal["smooth"] = "smooth"
    passes: int = Field(default=1, ge=0)


class ErodeStep(BaseModel, frozen=True):
    op: Literal["erode"] = "erode"
    erosion: ErosionSpec


PipelineStep = Annotated[
    Union[
        ResetStep,
        RandomFillStep,
        ImageStep,
        SingleNoiseStep,
        MultiNoiseStep,
        RidgeStep,
        PeaksStep,
        DisplacementStep,
        SmoothStep,
        ErodeStep,
    ],
    Field(discriminator="op"),
]


class TileConfig(BaseModel):
    """Multi-tile grid generation parameters."""

    grid: tuple[int, int] = Field(default=(2, 2), description="Tiles along (x, z)")
    noise: NoiseSpec = Field(default_factory=lambda: NoiseSpec(height_scale=0.5))
    use_zero_offset: bool = Field(
        default=True, description="Shift sampling away from the noise origin"
    )
    zero_offset: tuple[float, float] = Field(
        default=(0.0, 0.0), description="Manual offset when use_zero_offset is off"
    )
    stitch: bool = Field(default=True, description="Copy shared edges after generation")


class TerrainConfig(BaseModel):
    """Complete terrain generation configuration."""

    seed: int = Field(default=42, description="Random seed for reproducibility")
    noise_seed: int = Field(default=0, description="Seed of the gradient noise")
    resolution: int = Field(default=129, ge=2, description="Heightfield samples per side")
    size: tuple[float, float, float] = Field(
        default=(500.0, 100.0, 500.0), description="World (width, height, depth)"
    )
    origin: tuple[float, float] = Field(default=(0.0, 0.0), description="World (x, z)")

    steps: list[PipelineStep] = Field(default_factory=list)
    surface: SurfaceLayerSet | None = None
    vegetation: ScatterLayerSet | None = None
    details: DetailLayerSet | None = None
    tiles: TileConfig | None = None

    @field_validator("size")
    @classmethod
    def check_size(cls, value: tuple[float, float, float]) -> tuple[float, float, float]:
        width, height, depth = value
        if width <= 0 or depth <= 0:
            raise ValueError(f"world width and depth must be positive, got {value}")
        if height < 0:
            raise ValueError(f"height scale must be non-negative, got {height}")
        return value


def load_config(config_path: Path) -> TerrainConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML config file.

    Returns:
        Parsed TerrainConfig.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        tomllib.TOMLDecodeError: If TOML is malformed.
        pydantic.ValidationError: If values fail validation.
    """
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return TerrainConfig.model_validate(data)


def find_config(name: str) -> Path:
    """Find a config file by name.

    Paths (anything containing a separator or ending in ``.toml``) are used
    as-is; bare names are looked up in the repository ``configs`` directory.

    Raises:
        FileNotFoundError: If config file is not found.
    """
    if "/" in name or name.endswith(".toml"):
        path = Path(name)
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {name}")

    config_path = CONFIGS_DIR / f"{name}.toml"
    if config_path.exists():
        return config_path

    raise FileNotFoundError(
        f"Config '{name}' not found in {CONFIGS_DIR}. "
        f"Available configs: {list_configs()}"
    )


def list_configs() -> list[str]:
    """List available config names."""
    if not CONFIGS_DIR.exists():
        return []
    return sorted(p.stem for p in CONFIGS_DIR.glob("*.toml"))
