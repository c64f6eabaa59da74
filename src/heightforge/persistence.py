"""Terrain persistence: golden heightfield files, terrain bundles and height images."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import structlog
from numpy.typing import NDArray
from PIL import Image

from .config import TerrainConfig
from .exceptions import MissingResourceError
from .heightfield import Heightfield, compute_slope
from .scatter import PlacedInstance

if TYPE_CHECKING:
    from .pipeline import GenerationResult

logger = structlog.get_logger()

BUNDLE_VERSION = 1

# Little-endian: uint32 resolution, float32 (width, height_scale, depth)
HEADER_DTYPE = np.dtype([("resolution", "<u4"), ("size", "<f4", (3,))])
SAMPLE_DTYPE = np.dtype("<f4")


def save_heightfield(path: Path, field: Heightfield) -> None:
    """Write a heightfield in the dense golden-file format.

    The header is followed by ``resolution²`` float32 samples, row-major with
    row 0 at the bottom (z = 0) edge.
    """
    header = np.zeros(1, dtype=HEADER_DTYPE)
    header["resolution"] = field.resolution
    header["size"] = field.size

    with open(path, "wb") as f:
        f.write(header.tobytes())
        f.write(field.heights.astype(SAMPLE_DTYPE).tobytes())

    logger.debug("heightfield_saved", path=str(path), resolution=field.resolution)


def load_heightfield(path: Path) -> Heightfield:
    """Read a golden-file heightfield.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file is truncated or has trailing data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Heightfield file not found: {path}")

    raw = path.read_bytes()
    if len(raw) < HEADER_DTYPE.itemsize:
        raise ValueError(f"Invalid heightfield file {path}: header truncated")

    header = np.frombuffer(raw, dtype=HEADER_DTYPE, count=1)[0]
    resolution = int(header["resolution"])
    expected = HEADER_DTYPE.itemsize + resolution * resolution * SAMPLE_DTYPE.itemsize
    if len(raw) != expected:
        raise ValueError(
            f"Invalid heightfield file {path}: expected {expected} bytes "
            f"for resolution {resolution}, got {len(raw)}"
        )

    samples = np.frombuffer(raw, dtype=SAMPLE_DTYPE, offset=HEADER_DTYPE.itemsize)
    size = tuple(float(v) for v in header["size"])
    return Heightfield(
        heights=samples.reshape(resolution, resolution).astype(np.float32),
        size=size,  # type: ignore[arg-type]
    )


def _instance_to_dict(instance: PlacedInstance) -> dict:
    return {
        "position": list(instance.position),
        "rotation": instance.rotation,
        "scale": instance.scale,
        "color": list(instance.color),
        "layer": instance.layer,
        "cell": list(instance.cell),
    }


def _instance_from_dict(data: dict) -> PlacedInstance:
    return PlacedInstance(
        position=tuple(data["position"]),
        rotation=data["rotation"],
        scale=data["scale"],
        color=tuple(data["color"]),
        layer=data["layer"],
        cell=tuple(data["cell"]),
    )


def save_terrain(path: Path, result: "GenerationResult") -> None:
    """Save a generation result as a compressed ``.npz`` bundle.

    Args:
        path: Output path (should end with .npz).
        result: Generated terrain to store.
    """
    field = result.heightfield
    metadata = {
        "version": BUNDLE_VERSION,
        "seed": result.config.seed,
        "resolution": field.resolution,
        "size": list(field.size),
        "origin": list(field.origin),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

    arrays: dict[str, NDArray] = {"heights": field.heights}
    if result.weights is not None:
        arrays["weights"] = result.weights
    if result.details is not None:
        arrays["details"] = result.details

    instances = [_instance_to_dict(instance) for instance in result.instances]
    np.savez_compressed(
        path,
        instances=json.dumps(instances).encode("utf-8"),
        config=result.config.model_dump_json().encode("utf-8"),
        metadata=json.dumps(metadata).encode("utf-8"),
        **arrays,
    )

    file_size = Path(path).stat().st_size / 1024
    logger.info("terrain_saved", path=str(path), size_kb=round(file_size, 1))


def _decode_json(data, key: str) -> str | None:
    if key not in data:
        return None
    return data[key].tobytes().decode("utf-8")


def load_terrain(path: Path) -> tuple["GenerationResult", dict]:
    """Load a terrain bundle written by ``save_terrain``.

    Returns:
        Tuple of (GenerationResult, metadata dict).

    Raises:
        FileNotFoundError: If file doesn't exist.
        ValueError: If file format is invalid.
    """
    from .pipeline import GenerationResult

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Terrain file not found: {path}")

    with np.load(path) as data:
        if "heights" not in data:
            raise ValueError(f"Invalid terrain file {path}: missing 'heights' array")

        metadata_json = _decode_json(data, "metadata")
        metadata = json.loads(metadata_json) if metadata_json else {}
        config_json = _decode_json(data, "config")
        config = (
            TerrainConfig.model_validate_json(config_json) if config_json else TerrainConfig()
        )
        instances_json = _decode_json(data, "instances")
        instances = [_instance_from_dict(item) for item in json.loads(instances_json or "[]")]

        field = Heightfield.from_array(
            data["heights"],
            size=tuple(metadata.get("size", config.size)),
            origin=tuple(metadata.get("origin", config.origin)),
        )
        weights = data["weights"] if "weights" in data else None
        details = data["details"] if "details" in data else None

    result = GenerationResult(
        heightfield=field,
        config=config,
        slope=compute_slope(field),
        weights=weights,
        instances=instances,
        details=details,
    )
    logger.info("terrain_loaded", path=str(path), resolution=field.resolution)
    return result, metadata


def load_height_image(path: Path) -> NDArray[np.float32]:
    """Read an image as grayscale heights in [0, 1].

    Rows are flipped so that row 0 is the bottom of the image, matching
    heightfield row order.

    Raises:
        MissingResourceError: If the image file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise MissingResourceError(f"Height image not found: {path}")

    with Image.open(path) as image:
        pixels = np.asarray(image.convert("L"), dtype=np.float32) / 255.0

    logger.debug("height_image_loaded", path=str(path), shape=pixels.shape)
    return np.flipud(pixels).copy()
