import enum
import logging
from typing import Optional

from pygame.math import Vector2

from transposer.errors import UnsupportedOrientation
from transposer.tmx import TiledMap


logger = logging.getLogger(__name__)


class Orientation(enum.Enum):
    ORTHOGONAL = "orthogonal"
    ISOMETRIC = "isometric"
    STAGGERED = "staggered"
    HEXAGONAL = "hexagonal"


class StaggerAxis(enum.Enum):
    X = "x"
    Y = "y"
    NONE = "none"


class CellLayout(enum.Enum):
    RECTANGLE = "rectangle"
    ISOMETRIC = "isometric"
    HEXAGON = "hexagon"


class CellSwizzle(enum.Enum):
    XYZ = "xyz"
    YXZ = "yxz"


class SortOrder(enum.Enum):
    TOP_LEFT = "top-left"
    BOTTOM_LEFT = "bottom-left"
    TOP_RIGHT = "top-right"
    BOTTOM_RIGHT = "bottom-right"


RENDER_ORDER_SORT_ORDERS = {
    "right-down": SortOrder.TOP_LEFT,
    "right-up": SortOrder.BOTTOM_LEFT,
    "left-down": SortOrder.TOP_RIGHT,
    "left-up": SortOrder.BOTTOM_RIGHT,
}

# lifts isometric objects by half a cell, a quarter of a two cell high tile
ISOMETRIC_OBJECT_OFFSET_Y = 0.25


def orthogonal_cell(x: int, y: int) -> tuple[int, int]:
    """Source grid (x right, y down) to destination cell (y up)."""
    return x, -(y + 1)


def isometric_cell(x: int, y: int) -> tuple[int, int]:
    col, row = orthogonal_cell(x, y)
    # rotate 90 degrees clockwise in grid space
    return row, -(col + 1)


def staggered_cell(x: int, y: int, stagger_axis: StaggerAxis, stagger_index: int) -> tuple[int, int]:
    if stagger_axis != StaggerAxis.Y:
        return x, y

    half = y // 2
    col = x - half
    row = -half - x
    if y % 2 == stagger_index:
        col += 1
    return col, row


def hexagonal_cell(x: int, y: int, stagger_axis: StaggerAxis) -> tuple[int, int]:
    col, row = orthogonal_cell(x, y)
    if stagger_axis == StaggerAxis.X:
        # destination axes are swizzled to YXZ
        return row, col
    return col, row


class GridConfig:
    """Destination grid derived from a map's orientation and stagger settings.

    Cell size is in destination units where one tile is one unit wide.
    """

    def __init__(
            self,
            orientation: Orientation,
            tile_width: int,
            tile_height: int,
            stagger_axis: StaggerAxis = StaggerAxis.NONE,
            stagger_odd_to_even: bool = False,
            render_order: Optional[str] = None) -> None:
        self.orientation = orientation
        self.tile_width = tile_width
        self.tile_height = tile_height
        self.stagger_axis = stagger_axis
        self.stagger_odd_to_even = stagger_odd_to_even

        self.pixels_per_unit = max(tile_width, tile_height)
        self.cell_size = Vector2(1.0, 1.0)
        self.cell_swizzle = CellSwizzle.XYZ
        if orientation == Orientation.ORTHOGONAL:
            self.cell_layout = CellLayout.RECTANGLE
        else:
            self.cell_size.y = tile_height / tile_width
            if orientation == Orientation.HEXAGONAL:
                self.cell_layout = CellLayout.HEXAGON
                if stagger_axis == StaggerAxis.X:
                    self.cell_swizzle = CellSwizzle.YXZ
            else:
                self.cell_layout = CellLayout.ISOMETRIC

        self.sort_order = RENDER_ORDER_SORT_ORDERS.get(render_order, SortOrder.TOP_LEFT)
        if orientation in (Orientation.ISOMETRIC, Orientation.STAGGERED):
            self.sort_order = SortOrder.TOP_RIGHT

    def __repr__(self) -> str:
        return f"GridConfig({self.orientation.value}, {self.tile_width}x{self.tile_height}, stagger={self.stagger_axis.value})"

    @classmethod
    def from_map(cls, tiled_map: TiledMap) -> 'GridConfig':
        try:
            orientation = Orientation(tiled_map.orientation)
        except ValueError:
            raise UnsupportedOrientation(tiled_map.orientation, tiled_map.filename)

        stagger_axis = StaggerAxis.NONE
        stagger_odd_to_even = False
        if orientation in (Orientation.HEXAGONAL, Orientation.STAGGERED):
            stagger_axis = StaggerAxis.X if (tiled_map.staggeraxis or "").lower() == "x" else StaggerAxis.Y
            stagger_odd_to_even = tiled_map.staggerindex == "odd"

        return cls(orientation, tiled_map.tilewidth, tiled_map.tileheight, stagger_axis, stagger_odd_to_even, tiled_map.renderorder)

    @property
    def stagger_index(self) -> int:
        return 0 if self.stagger_odd_to_even else 1

    def cell(self, index: int, width: int, origin_x: int = 0, origin_y: int = 0) -> tuple[int, int]:
        """Destination cell of the index-th tile of a chunk whose origin is origin_x, origin_y."""
        x = origin_x + index % width
        y = origin_y + index // width

        if self.orientation == Orientation.ISOMETRIC:
            return isometric_cell(x, y)
        if self.orientation == Orientation.STAGGERED:
            return staggered_cell(x, y, self.stagger_axis, self.stagger_index)
        if self.orientation == Orientation.HEXAGONAL:
            return hexagonal_cell(x, y, self.stagger_axis)
        return orthogonal_cell(x, y)

    def layer_grid_offset(self) -> tuple[int, int]:
        """Shift applied to every chunk origin of a tile layer."""
        if self.stagger_axis == StaggerAxis.X:
            return 1, 0
        if self.stagger_axis == StaggerAxis.Y:
            return 0, 1 if self.stagger_odd_to_even else 0
        return 0, 0

    def layer_anchor_offset(self) -> Vector2:
        cell_x, cell_y = self.cell_size
        if self.stagger_axis == StaggerAxis.X:
            return Vector2(cell_x * -0.25, 0.0) if self.stagger_odd_to_even else Vector2(cell_x * -0.25, cell_y * -0.5)
        if self.stagger_axis == StaggerAxis.Y:
            return Vector2(cell_x * 0.5, cell_y * 1.0) if self.stagger_odd_to_even else Vector2(cell_x * 0.5, cell_y * 0.25)
        return Vector2(0.0, 0.0)

    @property
    def tile_anchor(self) -> Vector2:
        if self.cell_layout == CellLayout.HEXAGON:
            return Vector2(0.0, 0.0)
        return Vector2(0.5, 0.5)

    def layer_offset(self, offset_x: float, offset_y: float) -> Vector2:
        # y is down in the source and up in the destination
        return Vector2(offset_x * self.cell_size.x / self.tile_width, -offset_y * self.cell_size.y / self.tile_height)

    @property
    def pixels_to_units(self) -> Vector2:
        return Vector2(1.0 / self.tile_width, -1.0 / self.tile_height)

    @property
    def pivot_scaler(self) -> Vector2:
        """Scale for pivot offsets of objects. Objects on isometric grids need none."""
        if self.orientation == Orientation.ISOMETRIC:
            return Vector2(0.0, 0.0)
        return self.pixels_to_units

    def object_corner(self, x: float, y: float) -> Vector2:
        """Destination position of an object's pixel-space corner."""
        pixels_to_units = self.pixels_to_units
        corner = Vector2(x * pixels_to_units.x, y * pixels_to_units.y)
        if self.orientation != Orientation.ISOMETRIC:
            return corner

        tile_space = Vector2(corner.x / self.tile_height, -corner.y / (self.tile_height * 2.0))
        u = tile_space.x - tile_space.y
        v = -(tile_space.x + tile_space.y)
        return Vector2(u * self.tile_width * 0.5, v * self.tile_width * 0.5 + ISOMETRIC_OBJECT_OFFSET_Y)
