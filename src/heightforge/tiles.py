"""Multi-tile coordination: shared world-space noise and seam stitching."""

from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
import structlog

from .config import NoiseSpec
from .exceptions import ConfigurationError
from .heightfield import Heightfield, Side, require_field
from .noise import NoiseField

logger = structlog.get_logger()

# Added to the union extent when shifting noise sampling off the origin,
# where gradient noise shows a visible mirror artifact.
WORLD_ORIGIN_MARGIN = 1000.0

OPPOSITE: dict[str, Side] = {
    "left": "right",
    "right": "left",
    "bottom": "top",
    "top": "bottom",
}

# Corner -> (row, column) index in the heightfield
_CORNERS = {
    "bottom_left": (0, 0),
    "bottom_right": (0, -1),
    "top_left": (-1, 0),
    "top_right": (-1, -1),
}


@dataclass(eq=False)
class Tile:
    """One heightfield in a tile grid, with links to its neighbours."""

    heightfield: Heightfield
    name: str = "tile"
    grid_position: tuple[int, int] | None = None
    left: "Tile | None" = field(default=None, repr=False)
    right: "Tile | None" = field(default=None, repr=False)
    bottom: "Tile | None" = field(default=None, repr=False)
    top: "Tile | None" = field(default=None, repr=False)

    def neighbour(self, side: Side) -> "Tile | None":
        return getattr(self, side)


class TileGrid:
    """A set of tiles sharing one world-space frame.

    Links may describe any layout (including gaps and L shapes) as long as
    they are symmetric: ``a.right is b`` if and only if ``b.left is a``.
    """

    def __init__(self, tiles: Iterable[Tile] = ()) -> None:
        self.tiles: list[Tile] = list(tiles)

    @classmethod
    def create(
        cls,
        tiles_x: int,
        tiles_z: int,
        resolution: int,
        size: tuple[float, float, float],
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> "TileGrid":
        """Lay out a ``tiles_x × tiles_z`` grid of flat tiles with linked neighbours."""
        if tiles_x < 1 or tiles_z < 1:
            raise ConfigurationError(f"Tile grid must be at least 1x1, got {tiles_x}x{tiles_z}")

        width, _, depth = size
        if width <= 0 or depth <= 0:
            raise ConfigurationError(f"Tile width and depth must be positive, got {size}")
        grid = cls()
        for iz in range(tiles_z):
            for ix in range(tiles_x):
                tile_origin = (origin[0] + ix * width, origin[1] + iz * depth)
                heightfield = Heightfield.empty(resolution, size=size, origin=tile_origin)
                grid.tiles.append(
                    Tile(heightfield=heightfield, name=f"tile_{ix}_{iz}", grid_position=(ix, iz))
                )

        grid.link_by_position()
        logger.info("tile_grid_created", tiles_x=tiles_x, tiles_z=tiles_z, resolution=resolution)
        return grid

    def get(self, ix: int, iz: int) -> Tile:
        for tile in self.tiles:
            if tile.grid_position == (ix, iz):
                return tile
        raise KeyError(f"No tile at grid position ({ix}, {iz})")

    def link(self, tile: Tile, side: Side, neighbour: Tile | None) -> None:
        """Set ``tile``'s neighbour on ``side`` and the reverse link."""
        previous = tile.neighbour(side)
        if previous is not None:
            setattr(previous, OPPOSITE[side], None)
        setattr(tile, side, neighbour)
        if neighbour is not None:
            setattr(neighbour, OPPOSITE[side], tile)

    def link_by_position(self) -> None:
        """Rebuild every link from tile origins.

        Grid coordinates are ``round((origin - lowest origin) / size)`` using
        the first tile's size, so all tiles are expected to share one size.
        """
        if not self.tiles:
            return

        width, _, depth = self.tiles[0].heightfield.size
        if width <= 0 or depth <= 0:
            raise ConfigurationError(
                f"Tile width and depth must be positive, got {self.tiles[0].heightfield.size}"
            )
        min_x, min_z, _, _ = self.world_bounds()
        positions: dict[tuple[int, int], Tile] = {}
        for tile in self.tiles:
            origin_x, origin_z = tile.heightfield.origin
            key = (round((origin_x - min_x) / width), round((origin_z - min_z) / depth))
            if key in positions:
                raise ConfigurationError(
                    f"{tile.name} and {positions[key].name} occupy the same grid cell {key}"
                )
            tile.grid_position = key
            positions[key] = tile

        for (ix, iz), tile in positions.items():
            tile.left = positions.get((ix - 1, iz))
            tile.right = positions.get((ix + 1, iz))
            tile.bottom = positions.get((ix, iz - 1))
            tile.top = positions.get((ix, iz + 1))

        logger.debug("tile_links_rebuilt", tiles=len(self.tiles))

    def validate_links(self) -> None:
        """Raise ConfigurationError unless links are symmetric and edges compatible."""
        members = set(map(id, self.tiles))
        for tile in self.tiles:
            for side, opposite in OPPOSITE.items():
                neighbour = tile.neighbour(side)
                if neighbour is None:
                    continue
                if id(neighbour) not in members:
                    raise ConfigurationError(
                        f"{tile.name}.{side} links to {neighbour.name}, which is not in the grid"
                    )
                if neighbour.neighbour(opposite) is not tile:
                    raise ConfigurationError(
                        f"{tile.name}.{side} is {neighbour.name} but "
                        f"{neighbour.name}.{opposite} is not {tile.name}"
                    )
                if neighbour.heightfield.resolution != tile.heightfield.resolution:
                    raise ConfigurationError(
                        f"{tile.name} and {neighbour.name} have different resolutions"
                    )

    def world_bounds(self) -> tuple[float, float, float, float]:
        """Union bounding box ``(min_x, min_z, max_x, max_z)`` of all tiles."""
        if not self.tiles:
            raise ConfigurationError("Tile grid is empty")
        min_x = min(t.heightfield.origin[0] for t in self.tiles)
        min_z = min(t.heightfield.origin[1] for t in self.tiles)
        max_x = max(t.heightfield.origin[0] + t.heightfield.width for t in self.tiles)
        max_z = max(t.heightfield.origin[1] + t.heightfield.depth for t in self.tiles)
        return min_x, min_z, max_x, max_z

    def world_offset(
        self,
        use_zero_offset: bool = True,
        manual: tuple[float, float] = (0.0, 0.0),
    ) -> tuple[float, float]:
        """Offset added to every tile's world coordinates before noise sampling."""
        if not use_zero_offset:
            return manual
        min_x, min_z, max_x, max_z = self.world_bounds()
        offset = max(max_x - min_x, max_z - min_z) + WORLD_ORIGIN_MARGIN
        return offset, offset

    def generate_all(
        self,
        spec: NoiseSpec,
        noise: NoiseField | None = None,
        use_zero_offset: bool = True,
        zero_offset: tuple[float, float] = (0.0, 0.0),
    ) -> None:
        """Fill every tile from one global fBm sampled at world positions.

        Tiles do not read each other here, so the order is irrelevant.
        """
        if not self.tiles:
            raise ConfigurationError("Tile grid is empty")
        for tile in self.tiles:
            require_field(tile.heightfield)
        self.validate_links()

        noise = noise or NoiseField()
        offset_x, offset_z = self.world_offset(use_zero_offset, zero_offset)

        for tile in self.tiles:
            heightfield = tile.heightfield
            xs = heightfield.world_x() + offset_x
            zs = heightfield.world_z() + offset_z
            heightfield.heights[:] = np.clip(noise.sample_spec(spec, xs, zs), 0.0, 1.0)

        logger.info(
            "tiles_generated",
            tiles=len(self.tiles),
            offset=(offset_x, offset_z),
        )

    def stitching_order(self) -> list[Tile]:
        """Tiles ordered so each comes after its left and bottom neighbours.

        Raises:
            ConfigurationError: If links form a cycle.
        """
        pending = {id(t): sum(n is not None for n in (t.left, t.bottom)) for t in self.tiles}
        ready = [t for t in self.tiles if pending[id(t)] == 0]
        order: list[Tile] = []

        while ready:
            tile = ready.pop(0)
            order.append(tile)
            for successor in (tile.right, tile.top):
                if successor is None:
                    continue
                pending[id(successor)] -= 1
                if pending[id(successor)] == 0:
                    ready.append(successor)

        if len(order) != len(self.tiles):
            raise ConfigurationError("Tile links form a cycle; cannot order stitching")
        return order

    def stitch_all(self) -> None:
        """Make every shared edge bit-identical.

        Each tile's top row and right column are copied verbatim onto its top
        and right neighbours. Tiles meeting at one corner point are then
        forced to the value of the first of them in stitching order.
        """
        self.validate_links()
        order = self.stitching_order()

        for tile in order:
            if tile.top is not None:
                tile.top.heightfield.set_edge("bottom", tile.heightfield.edge("top"))
            if tile.right is not None:
                tile.right.heightfield.set_edge("left", tile.heightfield.edge("right"))

        self._unify_corners(order)
        logger.info("tiles_stitched", tiles=len(order))

    def _unify_corners(self, order: list[Tile]) -> None:
        parent: dict[tuple[int, str], tuple[int, str]] = {}

        def find(key: tuple[int, str]) -> tuple[int, str]:
            parent.setdefault(key, key)
            while parent[key] != key:
                parent[key] = parent[parent[key]]
                key = parent[key]
            return key

        def union(a: tuple[int, str], b: tuple[int, str]) -> None:
            root_a, root_b = find(a), find(b)
            if root_a != root_b:
                parent[root_b] = root_a

        rank = {id(tile): i for i, tile in enumerate(order)}
        by_id = {id(tile): tile for tile in order}

        for tile in order:
            key = id(tile)
            if tile.right is not None:
                other = id(tile.right)
                union((key, "bottom_right"), (other, "bottom_left"))
                union((key, "top_right"), (other, "top_left"))
            if tile.top is not None:
                other = id(tile.top)
                union((key, "top_left"), (other, "bottom_left"))
                union((key, "top_right"), (other, "bottom_right"))

        groups: dict[tuple[int, str], list[tuple[int, str]]] = {}
        for key in list(parent):
            groups.setdefault(find(key), []).append(key)

        for members in groups.values():
            source_id, source_corner = min(members, key=lambda m: rank[m[0]])
            value = by_id[source_id].heightfield.heights[_CORNERS[source_corner]]
            for tile_id, corner in members:
                by_id[tile_id].heightfield.heights[_CORNERS[corner]] = value

    def seam_mismatches(self) -> list[tuple[str, Side]]:
        """(tile name, side) of every right/top edge that differs from its neighbour."""
        mismatches: list[tuple[str, Side]] = []
        for tile in self.tiles:
            for side in ("right", "top"):
                neighbour = tile.neighbour(side)
                if neighbour is None:
                    continue
                if not np.array_equal(
                    tile.heightfield.edge(side), neighbour.heightfield.edge(OPPOSITE[side])
                ):
                    mismatches.append((tile.name, side))
        return mismatches

    def reset_all(self) -> None:
        """Flatten every tile."""
        for tile in self.tiles:
            tile.heightfield.reset()
        logger.info("tiles_reset", tiles=len(self.tiles))
