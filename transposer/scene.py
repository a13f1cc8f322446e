from typing import Iterator, NamedTuple, Optional, Union

import numpy as np
from pygame import Color
from pygame.math import Vector2

from transposer.gid import TileFlags
from transposer.grid import GridConfig, SortOrder
from transposer.sources import SpriteSlice
from transposer.tileset import ColliderType, ImportedTile, ImportedTileset
from transposer.tmx import Properties, TiledObject


class SpawnRequest(NamedTuple):
    prefab: str
    position: Vector2
    cell: Optional[tuple[int, int]] = None
    replace: bool = False


class TilePlacement(NamedTuple):
    cell: tuple[int, int]
    tile: ImportedTile
    tileset: ImportedTileset
    gid: int
    flags: TileFlags
    matrix: np.ndarray


class EllipseShape(NamedTuple):
    radius_x: float
    radius_y: float


class PolygonShape(NamedTuple):
    points: list[Vector2]
    closed: bool = True


class BoxShape(NamedTuple):
    size: Vector2


class TextShape(NamedTuple):
    text: str
    pixel_size: int
    color: Color
    height: float
    halign: str = "left"
    valign: str = "top"
    wrap: bool = False


ObjectShape = Union[EllipseShape, PolygonShape, BoxShape, TextShape]


class SceneNode:
    """Node of the imported scene. Position is local to the parent, in destination units."""

    def __init__(self, name: str, properties: Optional[Properties] = None) -> None:
        self.name = name
        self.properties = properties
        self.position = Vector2(0.0, 0.0)
        self.children: list['SceneNode'] = []

        self.active = True
        self.visible = True
        self.tag: Optional[str] = None
        self.layer: Optional[str] = None
        self.spawns: list[SpawnRequest] = []
        self.replaced = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def add(self, node: 'SceneNode') -> 'SceneNode':
        self.children.append(node)
        return node

    def iter_nodes(self) -> Iterator['SceneNode']:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def find(self, name: str) -> Optional['SceneNode']:
        for node in self.iter_nodes():
            if node.name == name:
                return node
        return None

    def hide(self) -> None:
        for node in self.iter_nodes():
            node.visible = False


class TileLayerNode(SceneNode):
    def __init__(self, name: str, properties: Optional[Properties] = None) -> None:
        super().__init__(name, properties)
        self.tiles: list[TilePlacement] = []
        self.tile_anchor = Vector2(0.5, 0.5)
        self.tint: Optional[Color] = None
        self.sort_order = SortOrder.TOP_LEFT
        self.order = 0

    def __len__(self) -> int:
        return len(self.tiles)

    @property
    def has_colliders(self) -> bool:
        return any(placement.tile.collider_type != ColliderType.NONE for placement in self.tiles)

    def tile_at(self, cell: tuple[int, int]) -> Optional[TilePlacement]:
        for placement in self.tiles:
            if placement.cell == cell:
                return placement
        return None


class ObjectNode(SceneNode):
    def __init__(self, tiled_object: TiledObject) -> None:
        super().__init__(tiled_object.name or "", tiled_object.properties)
        self.object = tiled_object
        self.tile: Optional[ImportedTile] = None
        self.rotation = 0.0
        self.scale = Vector2(1.0, 1.0)
        self.shape: Optional[ObjectShape] = None
        self.collider_type = ColliderType.NONE
        self.tint: Optional[Color] = None
        self.order = 0


class ObjectLayerNode(SceneNode):
    def __init__(self, name: str, properties: Optional[Properties] = None) -> None:
        super().__init__(name, properties)
        self.tint: Optional[Color] = None

    @property
    def objects(self) -> list[ObjectNode]:
        return [child for child in self.children if isinstance(child, ObjectNode)]


class ImageLayerNode(SceneNode):
    def __init__(self, name: str, properties: Optional[Properties] = None) -> None:
        super().__init__(name, properties)
        self.image_path: Optional[str] = None
        self.sprite: Optional[SpriteSlice] = None
        self.order = 0


class GroupLayerNode(SceneNode):
    pass


class MapScene(SceneNode):
    def __init__(self, name: str, grid: GridConfig, properties: Optional[Properties] = None) -> None:
        super().__init__(name, properties)
        self.grid = grid
        self.background_color: Optional[Color] = None
        self.tilesets: list[ImportedTileset] = []

    def tile_layers(self) -> list[TileLayerNode]:
        return [node for node in self.iter_nodes() if isinstance(node, TileLayerNode)]

    def object_nodes(self) -> list[ObjectNode]:
        return [node for node in self.iter_nodes() if isinstance(node, ObjectNode)]
