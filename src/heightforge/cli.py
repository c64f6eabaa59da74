"""Command-line interface for terrain generation."""

import argparse
import logging
import time
import tomllib
from pathlib import Path

import structlog


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate procedural heightfield terrain"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="default",
        help="Name or path of a TOML pipeline config (default: default)",
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Random seed (overrides config)"
    )
    parser.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Samples per side (overrides config)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Output .hf or .npz file, or a directory with --tiles "
        "(default: terrain.npz, or tiles/)",
    )
    parser.add_argument(
        "--tiles",
        action="store_true",
        help="Generate the configured tile grid and write one .hf file per tile",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Verbose logging"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for terrain generation."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    logger = structlog.get_logger()

    # Import here to avoid slow startup for --help
    from pydantic import ValidationError

    from .config import find_config, load_config
    from .exceptions import TerrainError
    from .persistence import save_heightfield, save_terrain
    from .pipeline import generate_terrain, generate_tiles

    try:
        config_path = find_config(args.config)
        config = load_config(config_path)
    except FileNotFoundError as e:
        logger.error("config_not_found", config=args.config, error=str(e))
        raise SystemExit(1)
    except (tomllib.TOMLDecodeError, ValidationError) as e:
        logger.error("config_invalid", path=str(config_path), error=str(e))
        raise SystemExit(1)
    logger.info("config_loaded", path=str(config_path))

    overrides = {}
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.resolution is not None:
        overrides["resolution"] = args.resolution
    if overrides:
        try:
            config = config.model_validate(config.model_dump() | overrides)
        except ValidationError as e:
            logger.error("override_invalid", error=str(e))
            raise SystemExit(1)

    start_time = time.time()
    try:
        if args.tiles:
            output_dir = Path(args.output or "tiles")
            grid = generate_tiles(config)
            output_dir.mkdir(parents=True, exist_ok=True)
            for tile in grid.tiles:
                save_heightfield(output_dir / f"{tile.name}.hf", tile.heightfield)
            logger.info("tiles_written", count=len(grid.tiles), output=str(output_dir))
        else:
            output_path = Path(args.output or "terrain.npz")
            if output_path.suffix not in (".hf", ".npz"):
                logger.error("unsupported_output", path=str(output_path))
                raise SystemExit(2)

            result = generate_terrain(config)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            if output_path.suffix == ".hf":
                save_heightfield(output_path, result.heightfield)
            else:
                save_terrain(output_path, result)
            logger.info("terrain_written", output=str(output_path))
    except TerrainError as e:
        logger.error("generation_failed", error=str(e), error_type=type(e).__name__)
        raise SystemExit(1)

    logger.info("generation_complete", seconds=round(time.time() - start_time, 2))


if __name__ == "__main__":
    main()
