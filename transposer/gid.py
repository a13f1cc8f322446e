import enum
import logging
import math
from bisect import bisect_right
from typing import NamedTuple, Optional, Sequence

import numpy as np
from pygame.math import Vector2

from transposer.tileset import ImportedTile, ImportedTileset


logger = logging.getLogger(__name__)

GID_TRANS_FLIP_HORIZONTALLY = 1 << 31
GID_TRANS_FLIP_VERTICALLY = 1 << 30
GID_TRANS_ROTATE = 1 << 29
GID_MASK = GID_TRANS_FLIP_HORIZONTALLY | GID_TRANS_FLIP_VERTICALLY | GID_TRANS_ROTATE

IDENTITY = np.identity(3)


class TileFlags(NamedTuple):
    flipped_horizontally: bool
    flipped_vertically: bool
    flipped_diagonally: bool

    def any(self) -> bool:
        return self.flipped_horizontally or self.flipped_vertically or self.flipped_diagonally

    def to_gid(self, gid: int) -> int:
        return (gid
                | (GID_TRANS_FLIP_HORIZONTALLY if self.flipped_horizontally else 0)
                | (GID_TRANS_FLIP_VERTICALLY if self.flipped_vertically else 0)
                | (GID_TRANS_ROTATE if self.flipped_diagonally else 0))


def split_gid(raw_gid: int) -> tuple[int, TileFlags]:
    """Splits a raw 32 bit GID into the clean 29 bit GID and its flip flags."""
    raw_gid &= 0xFFFFFFFF
    return raw_gid & ~GID_MASK, TileFlags(
        flipped_horizontally=raw_gid & GID_TRANS_FLIP_HORIZONTALLY == GID_TRANS_FLIP_HORIZONTALLY,
        flipped_vertically=raw_gid & GID_TRANS_FLIP_VERTICALLY == GID_TRANS_FLIP_VERTICALLY,
        flipped_diagonally=raw_gid & GID_TRANS_ROTATE == GID_TRANS_ROTATE
    )


def rotation(degrees: float) -> np.ndarray:
    radians = math.radians(degrees)
    c = round(math.cos(radians), 12)
    s = round(math.sin(radians), 12)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def scale(x: float, y: float) -> np.ndarray:
    return np.array([[x, 0.0, 0.0], [0.0, y, 0.0], [0.0, 0.0, 1.0]])


def translation(x: float, y: float) -> np.ndarray:
    return np.array([[1.0, 0.0, x], [0.0, 1.0, y], [0.0, 0.0, 1.0]])


def flag_matrix(flags: TileFlags) -> np.ndarray:
    """Composes the flip/rotate matrix in the fixed order diagonal, horizontal, vertical.

    Diagonal is a 90 degree rotation followed by a vertical flip. Each step premultiplies.
    """
    matrix = IDENTITY
    if flags.flipped_diagonally:
        matrix = rotation(90.0)
        matrix = scale(1.0, -1.0) @ matrix
    if flags.flipped_horizontally:
        matrix = scale(-1.0, 1.0) @ matrix
    if flags.flipped_vertically:
        matrix = scale(1.0, -1.0) @ matrix
    return matrix


def anchor_matrix(matrix: np.ndarray, rect_width: float, rect_height: float, cell_width: int, cell_height: int) -> np.ndarray:
    """Adds the translation that keeps a flipped/rotated tile inside its own cell.

    The tile rectangle is placed with its origin on the cell centre, transformed, and the result is
    shifted so that its bottom left corner lands back on the bottom left corner of the cell.
    Translation is expressed in cell units.
    """
    x = -cell_width * 0.5
    y = -cell_height * 0.5
    corners = np.array([
        [x, y, 1.0],
        [x + rect_width, y, 1.0],
        [x, y + rect_height, 1.0],
        [x + rect_width, y + rect_height, 1.0],
    ]).T
    transformed = matrix @ corners
    bottom_left_x = transformed[0].min()
    bottom_left_y = transformed[1].min()

    offset_x = -0.5 - bottom_left_x / cell_width
    offset_y = -0.5 - bottom_left_y / cell_height
    return translation(offset_x, offset_y) @ matrix


class Decomposition(NamedTuple):
    translation: Vector2
    rotation: float
    scale: Vector2


def decompose(matrix: np.ndarray) -> Decomposition:
    """Splits an affine 2D matrix into translation, rotation (degrees) and signed scale.

    A negative determinant is reported as a negative x scale.
    """
    column0 = matrix[0:2, 0]
    column1 = matrix[0:2, 1]
    scale_x = float(np.hypot(*column0))
    scale_y = float(np.hypot(*column1))
    if np.linalg.det(matrix[0:2, 0:2]) < 0:
        scale_x = -scale_x
    angle = math.degrees(math.atan2(-column1[0], column1[1])) if scale_y else 0.0
    return Decomposition(Vector2(float(matrix[0, 2]), float(matrix[1, 2])), angle, Vector2(scale_x, scale_y))


class GidStatus(enum.Enum):
    EMPTY = enum.auto()
    RESOLVED = enum.auto()
    UNRESOLVED = enum.auto()


class GidResolution(NamedTuple):
    status: GidStatus
    raw_gid: int
    gid: int
    flags: TileFlags
    tileset: Optional[ImportedTileset] = None
    local_id: Optional[int] = None
    tile: Optional[ImportedTile] = None
    matrix: np.ndarray = IDENTITY

    @property
    def resolved(self) -> bool:
        return self.status == GidStatus.RESOLVED


class GidResolver:
    """Maps raw GIDs onto imported tilesets.

    The tileset table is sorted by firstgid once and never changes afterwards; lookups find the
    last tileset whose firstgid is not greater than the clean GID.
    """

    def __init__(self, tilesets: Sequence[ImportedTileset], cell_width: int, cell_height: int) -> None:
        self.tilesets = sorted(tilesets, key=lambda t: t.firstgid)
        self.firstgids = [t.firstgid for t in self.tilesets]
        self.cell_width = cell_width
        self.cell_height = cell_height

        for previous, current in zip(self.tilesets, self.tilesets[1:]):
            if previous.firstgid == current.firstgid or previous.firstgid + previous.tile_count > current.firstgid:
                logger.warning(f"Tileset {previous.name} (firstgid {previous.firstgid}) overlaps tileset {current.name} (firstgid {current.firstgid})")

    def find_tileset(self, gid: int) -> Optional[ImportedTileset]:
        index = bisect_right(self.firstgids, gid) - 1
        if index < 0:
            return None
        return self.tilesets[index]

    def resolve(self, raw_gid: int) -> GidResolution:
        gid, flags = split_gid(raw_gid)
        if gid == 0:
            return GidResolution(GidStatus.EMPTY, raw_gid, gid, flags)

        tileset = self.find_tileset(gid)
        if tileset is None:
            return GidResolution(GidStatus.UNRESOLVED, raw_gid, gid, flags)

        local_id = gid - tileset.firstgid
        tile = tileset.tile_for_local_id(local_id)
        if tile is None:
            return GidResolution(GidStatus.UNRESOLVED, raw_gid, gid, flags, tileset, local_id)

        matrix = IDENTITY
        if flags.any():
            matrix = anchor_matrix(flag_matrix(flags), tile.rect.width, tile.rect.height, self.cell_width, self.cell_height)

        return GidResolution(GidStatus.RESOLVED, raw_gid, gid, flags, tileset, local_id, tile, matrix)
