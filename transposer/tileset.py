import enum
import logging
import os
from typing import TYPE_CHECKING, Optional

from pygame import Rect
from pygame.math import Vector2

from transposer.diagnostics import DiagnosticKind
from transposer.errors import DocumentError, TilesetImportFailure
from transposer.sources import SpriteSlice
from transposer.tmx import Properties, TiledTile, TiledTileAnimation, TiledTileset, TileOffset, TilesetReference, parse_tileset
from transposer.utils import resolve_path

if TYPE_CHECKING:
    from transposer.importer import ImportSession


logger = logging.getLogger(__name__)

DEFAULT_PALETTE_COLUMNS = 5


class ColliderImport(enum.Enum):
    TILED = "tiled"
    SPRITE = "sprite"
    GRID = "grid"


class ColliderType(enum.Enum):
    NONE = "none"
    SPRITE = "sprite"
    GRID = "grid"


class TileAnimation:
    def __init__(self, frames: list[TiledTileAnimation], sprite_indices: list[int]) -> None:
        self.frames = frames
        self.sprite_indices = sprite_indices

    @property
    def speed(self) -> float:
        """Frames per second, assuming every frame lasts as long as the first one."""
        if not self.frames or self.frames[0].duration <= 0:
            return 0.0
        return 1.0 / (self.frames[0].duration * 0.001)

    def __repr__(self) -> str:
        return f"TileAnimation(frames={self.frames!r})"


class ImportedTile:
    def __init__(
            self,
            index: int,
            tile_id: int,
            rect: Rect,
            pivot: Vector2,
            image_path: str,
            sprite: Optional[SpriteSlice] = None,
            collider_type: ColliderType = ColliderType.NONE,
            animation: Optional[TileAnimation] = None,
            properties: Optional[Properties] = None,
            tile_type: str = "") -> None:
        self.index = index
        self.tile_id = tile_id
        self.rect = rect
        self.pivot = pivot
        self.image_path = image_path
        self.sprite = sprite
        self.collider_type = collider_type
        self.animation = animation
        self.properties = properties
        self.tile_type = tile_type

    @property
    def sprite_index(self) -> int:
        return self.index

    @property
    def has_collider(self) -> bool:
        return self.collider_type != ColliderType.NONE

    def __repr__(self) -> str:
        return f"ImportedTile(index={self.index}, tile_id={self.tile_id}, rect={self.rect})"


class ImportedTileset:
    """A tileset after slicing.

    For image-only tilesets tiles[i] is the i-th slice in raster order. For collection tilesets
    tiles[i] belongs to the i-th <tile> entry, which may carry any id. A tile that failed to import is None.
    """

    def __init__(
            self,
            firstgid: int,
            tileset: Optional[TiledTileset],
            tiles: list[Optional[ImportedTile]],
            source_path: Optional[str] = None,
            name: Optional[str] = None) -> None:
        self.firstgid = firstgid
        self.tileset = tileset
        self.tiles = tiles
        self.source_path = source_path
        self.name = name if name is not None else (tileset.name if tileset is not None else "")

    @classmethod
    def failed(cls, reference: TilesetReference) -> 'ImportedTileset':
        """Placeholder keeping the GID range of a tileset that could not be imported."""
        return cls(reference.firstgid, None, [], name=reference.name)

    def __repr__(self) -> str:
        return f"ImportedTileset(name={self.name!r}, firstgid={self.firstgid}, tiles={len(self.tiles)})"

    @property
    def is_failed(self) -> bool:
        return self.tileset is None

    @property
    def is_image_only(self) -> bool:
        return self.tileset is not None and self.tileset.is_image_only()

    @property
    def tile_count(self) -> int:
        if self.tileset is None:
            return 0
        if self.is_image_only:
            return len(self.tiles)
        return max((t.id for t in self.tileset.tiles), default=-1) + 1

    def tile_for_local_id(self, local_id: int) -> Optional[ImportedTile]:
        if self.tileset is None:
            return None
        if self.is_image_only:
            if 0 <= local_id < len(self.tiles):
                return self.tiles[local_id]
            return None

        for i, tile in enumerate(self.tileset.tiles):
            if tile.id == local_id:
                return self.tiles[i] if i < len(self.tiles) else None
        return None

    def palette_positions(self) -> dict[int, tuple[int, int]]:
        """Where each tile goes on a palette grid, keyed by tile index."""
        positions = {}
        if self.tileset is None:
            return positions

        if self.is_image_only:
            for tile in self.tiles:
                if tile is not None:
                    positions[tile.index] = (tile.rect.x // self.tileset.tilewidth, tile.rect.y // self.tileset.tileheight)
            return positions

        columns = self.tileset.columns if self.tileset.columns > 0 else DEFAULT_PALETTE_COLUMNS
        x = 0
        y = 0
        for tile in self.tiles:
            if tile is None:
                continue
            positions[tile.index] = (x, y)
            x += 1
            if x >= columns:
                x = 0
                y -= 1
        return positions


def tile_count_from_dimensions(width: int, height: int, tilewidth: int, tileheight: int, margin: int = 0, spacing: int = 0) -> int:
    # solves image_width = 2 * margin + tilewidth * n + spacing * (n - 1) for n
    tiles_across = (width + spacing - margin * 2) // (spacing + tilewidth)
    tiles_down = (height + spacing - margin * 2) // (spacing + tileheight)
    return max(tiles_across, 0) * max(tiles_down, 0)


def declared_tile_count(tileset: TiledTileset) -> int:
    if tileset.tilecount > 0:
        return tileset.tilecount
    if tileset.image is None:
        return 0
    return tile_count_from_dimensions(
        tileset.image.width, tileset.image.height, tileset.tilewidth, tileset.tileheight, tileset.margin, tileset.spacing)


def slice_rects(width: int, height: int, tilewidth: int, tileheight: int, margin: int = 0, spacing: int = 0) -> list[Rect]:
    """Tile rectangles in raster order, top row first, in image pixel coordinates."""
    rects = []
    y = margin
    while y + tileheight <= height - margin:
        x = margin
        while x + tilewidth <= width - margin:
            rects.append(Rect(x, y, tilewidth, tileheight))
            x += tilewidth + spacing
        y += tileheight + spacing
    return rects


def get_pivot(image_width: int, image_height: int, cell_width: int, cell_height: int, tile_offset: Optional[TileOffset] = None) -> Vector2:
    pivot = Vector2(cell_width / (2.0 * image_width), cell_height / (2.0 * image_height))
    if tile_offset is not None:
        pivot += Vector2(tile_offset.x / image_width, tile_offset.y / image_height)
    return pivot


def collider_type_for(tile: Optional[TiledTile], collider_import: ColliderImport) -> ColliderType:
    if tile is None or not tile.has_collision_data():
        return ColliderType.NONE
    if collider_import == ColliderImport.GRID:
        return ColliderType.GRID
    if collider_import == ColliderImport.SPRITE:
        return ColliderType.SPRITE
    return ColliderType.NONE


def _animation_for(tile: Optional[TiledTile], tileset: TiledTileset) -> Optional[TileAnimation]:
    if tile is None or not tile.animation:
        return None

    if tileset.is_image_only():
        sprite_indices = [frame.tileid for frame in tile.animation]
    else:
        index_by_id = {t.id: i for i, t in enumerate(tileset.tiles)}
        sprite_indices = [index_by_id.get(frame.tileid, frame.tileid) for frame in tile.animation]
    return TileAnimation(list(tile.animation), sprite_indices)


def _import_image_tileset(tileset: TiledTileset, image_dir: Optional[str], path: Optional[str], session: 'ImportSession') -> list[Optional[ImportedTile]]:
    if tileset.image is None:
        raise TilesetImportFailure(f"The tileset {tileset.name} is empty", path)

    diagnostics = session.diagnostics
    image_path = resolve_path(image_dir, tileset.image.source)
    size = session.image_source.image_size(image_path)
    if size is None:
        raise TilesetImportFailure(f"Tileset image {image_path} not found", path)

    if tileset.image.width and tileset.image.width != size.width:
        diagnostics.warning(
            DiagnosticKind.TILESET_MISMATCH,
            f"The width of the image in tileset {tileset.name} ({tileset.image.width}) does not match the actual width ({size.width})",
            path=path)
    if tileset.image.height and tileset.image.height != size.height:
        diagnostics.warning(
            DiagnosticKind.TILESET_MISMATCH,
            f"The height of the image in tileset {tileset.name} ({tileset.image.height}) does not match the actual height ({size.height})",
            path=path)

    if tileset.tilewidth <= 0 or tileset.tileheight <= 0:
        raise TilesetImportFailure(f"Tileset {tileset.name} has no tile size", path)

    rects = slice_rects(size.width, size.height, tileset.tilewidth, tileset.tileheight, tileset.margin, tileset.spacing)
    declared = declared_tile_count(tileset)
    if declared != len(rects):
        diagnostics.warning(
            DiagnosticKind.TILESET_MISMATCH,
            f"The tileset {tileset.name} specifies a tile count of {declared}, but there are {len(rects)} tiles in the image",
            path=path)

    pivot = get_pivot(tileset.tilewidth, tileset.tileheight, session.cell_width, session.cell_height, tileset.tileoffset)
    tiles: list[Optional[ImportedTile]] = []
    for i, rect in enumerate(rects):
        tiled_tile = tileset.tile_by_id(i)
        tiles.append(ImportedTile(
            i, i, rect, pivot, image_path,
            sprite=session.image_source.slice(image_path, rect, pivot),
            collider_type=collider_type_for(tiled_tile, session.collider_import),
            animation=_animation_for(tiled_tile, tileset),
            properties=tiled_tile.properties if tiled_tile is not None else None,
            tile_type=tiled_tile.type if tiled_tile is not None else ""))
    return tiles


def _import_collection_tileset(tileset: TiledTileset, image_dir: Optional[str], path: Optional[str], session: 'ImportSession') -> list[Optional[ImportedTile]]:
    diagnostics = session.diagnostics
    tiles: list[Optional[ImportedTile]] = []
    for i, tiled_tile in enumerate(tileset.tiles):
        if tiled_tile.image is None:
            diagnostics.warning(DiagnosticKind.TILESET_IMPORT_FAILURE, f"Tile {tiled_tile.id} of tileset {tileset.name} has no image", path=path)
            tiles.append(None)
            continue

        image_path = resolve_path(image_dir, tiled_tile.image.source)
        size = session.image_source.image_size(image_path)
        if size is None:
            diagnostics.warning(DiagnosticKind.TILESET_IMPORT_FAILURE, f"Image {image_path} for tile {tiled_tile.id} of tileset {tileset.name} not found", path=path)
            tiles.append(None)
            continue

        width = tiled_tile.image.width or size.width
        height = tiled_tile.image.height or size.height
        if (width, height) != (size.width, size.height):
            diagnostics.warning(
                DiagnosticKind.TILESET_MISMATCH,
                f"Image of tile {tiled_tile.id} in tileset {tileset.name} is declared {width}x{height} but is {size.width}x{size.height}",
                path=path)

        rect = Rect(0, 0, size.width, size.height)
        pivot = get_pivot(width, height, session.cell_width, session.cell_height, tileset.tileoffset)
        tiles.append(ImportedTile(
            i, tiled_tile.id, rect, pivot, image_path,
            sprite=session.image_source.slice(image_path, rect, pivot),
            collider_type=collider_type_for(tiled_tile, session.collider_import),
            animation=_animation_for(tiled_tile, tileset),
            properties=tiled_tile.properties,
            tile_type=tiled_tile.type))
    return tiles


def import_tileset(reference: TilesetReference, base_dir: Optional[str], session: 'ImportSession') -> ImportedTileset:
    """Loads (when external) and slices the tileset behind a map or template <tileset> reference.

    Raises:
        TilesetImportFailure: when the tileset file or its image can't be read or yields no tiles.

    """
    if reference.source is not None:
        path = resolve_path(base_dir, reference.source)
        logger.info(f"Loading the tileset file from {path}")
        try:
            text = session.text_source.read_text(path)
            if text is None:
                raise TilesetImportFailure("Tileset file not found", path)
            tileset = parse_tileset(text, path)
        except DocumentError as e:
            raise TilesetImportFailure(e.message, path) from e
        image_dir = os.path.dirname(path)
    else:
        path = None
        tileset = reference.embedded
        image_dir = base_dir
        logger.info(f"Loading embedded tileset {tileset.name}")

    if tileset.is_image_only():
        tiles = _import_image_tileset(tileset, image_dir, path, session)
    else:
        tiles = _import_collection_tileset(tileset, image_dir, path, session)

    if not any(tile is not None for tile in tiles):
        raise TilesetImportFailure(f"No tiles found for the {tileset.name} tileset", path)

    return ImportedTileset(reference.firstgid, tileset, tiles, path)
