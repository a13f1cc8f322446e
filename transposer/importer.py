import logging
import os
from typing import NamedTuple, Optional, Sequence

from pygame import Color, Rect
from pygame.math import Vector2

from transposer.diagnostics import DiagnosticKind, Diagnostics
from transposer.errors import DocumentError, PayloadError, PayloadLengthMismatch, TemplateLoadFailure, TilesetImportFailure, UnsupportedOrientation
from transposer.gid import GidResolver, GidStatus, decompose
from transposer.grid import GridConfig
from transposer.operations import ImportOperation
from transposer.payload import DecodedChunk, decode_layer
from transposer.scene import (
    BoxShape, EllipseShape, GroupLayerNode, ImageLayerNode, MapScene, ObjectLayerNode, ObjectNode, ObjectShape,
    PolygonShape, SceneNode, TextShape, TileLayerNode, TilePlacement
)
from transposer.sources import FileTextSource, ImageSource, PygameImageSource, TextSource
from transposer.template import TemplateCache, merge_objects
from transposer.tileset import ColliderImport, ImportedTileset, import_tileset
from transposer.tmx import (
    BaseTiledLayer, Properties, TiledChunk, TiledEllipse, TiledGroupLayer, TiledImageLayer, TiledMap, TiledObject,
    TiledObjectGroup, TiledPolygon, TiledPolyline, TiledText, TiledTileLayer, parse_map
)
from transposer.utils import parse_color, points_from_string, resolve_path


logger = logging.getLogger(__name__)

WHITE = Color(255, 255, 255, 255)


class ImportSettings:
    def __init__(
            self,
            collider_import: ColliderImport = ColliderImport.SPRITE,
            hidden_layers_inactive: bool = False,
            operations: Optional[Sequence[ImportOperation]] = None,
            image_source: Optional[ImageSource] = None,
            text_source: Optional[TextSource] = None) -> None:
        self.collider_import = collider_import
        self.hidden_layers_inactive = hidden_layers_inactive
        self.operations: list[ImportOperation] = list(operations) if operations is not None else []
        self.image_source = image_source if image_source is not None else PygameImageSource()
        self.text_source = text_source if text_source is not None else FileTextSource()


class ImportSession:
    """State of a single import run: tileset table, template cache and diagnostics."""

    def __init__(self, path: str, settings: ImportSettings) -> None:
        self.path = os.path.abspath(path)
        self.base_dir = os.path.dirname(self.path)
        self.settings = settings
        self.diagnostics = Diagnostics()
        self.templates = TemplateCache()
        self.tilesets: list[ImportedTileset] = []
        self.grid: Optional[GridConfig] = None
        self.resolver: Optional[GidResolver] = None
        self.tiled_map: Optional[TiledMap] = None

    @property
    def text_source(self) -> TextSource:
        return self.settings.text_source

    @property
    def image_source(self) -> ImageSource:
        return self.settings.image_source

    @property
    def collider_import(self) -> ColliderImport:
        return self.settings.collider_import

    @property
    def cell_width(self) -> int:
        return self.tiled_map.tilewidth

    @property
    def cell_height(self) -> int:
        return self.tiled_map.tileheight


class ImportResult(NamedTuple):
    success: bool
    scene: Optional[MapScene]
    diagnostics: Diagnostics


class MapImporter:
    def __init__(self, session: ImportSession) -> None:
        self.session = session
        self.diagnostics = session.diagnostics
        self.order_in_layer = 0

    @property
    def grid(self) -> GridConfig:
        return self.session.grid

    @property
    def tiled_map(self) -> TiledMap:
        return self.session.tiled_map

    def load_map(self) -> bool:
        session = self.session
        try:
            text = session.text_source.read_text(session.path)
            if text is None:
                self.diagnostics.error(DiagnosticKind.DOCUMENT_ERROR, "Map file not found", path=session.path)
                return False

            session.tiled_map = parse_map(text, session.path)
            session.grid = GridConfig.from_map(session.tiled_map)
        except UnsupportedOrientation as e:
            self.diagnostics.error(DiagnosticKind.UNSUPPORTED_ORIENTATION, e.message, path=e.path)
            return False
        except DocumentError as e:
            self.diagnostics.error(DiagnosticKind.DOCUMENT_ERROR, e.message, path=e.path)
            return False
        return True

    def load_tilesets(self) -> None:
        session = self.session
        for reference in self.tiled_map.tilesets:
            try:
                imported = import_tileset(reference, session.base_dir, session)
            except TilesetImportFailure as e:
                self.diagnostics.error(DiagnosticKind.TILESET_IMPORT_FAILURE, f"Failed to import the {reference.name} tileset: {e.message}", path=e.path)
                imported = ImportedTileset.failed(reference)
            session.tilesets.append(imported)

        # every tileset is in the table before any layer is decoded
        session.resolver = GidResolver(session.tilesets, session.cell_width, session.cell_height)

    def build_scene(self) -> MapScene:
        tiled_map = self.tiled_map
        name = os.path.splitext(os.path.basename(self.session.path))[0]
        scene = MapScene(name, self.grid, tiled_map.properties)
        scene.tilesets = list(self.session.tilesets)
        if tiled_map.backgroundcolor is not None:
            try:
                scene.background_color = parse_color(tiled_map.backgroundcolor)
            except ValueError as e:
                self.diagnostics.warning(DiagnosticKind.DOCUMENT_ERROR, f"Cannot parse background colour: {e}", path=self.session.path)

        self.process_layers(scene, tiled_map.layers)
        self.handle_custom_properties(scene, tiled_map.properties)
        return scene

    def handle_custom_properties(self, node: SceneNode, properties: Optional[Properties]) -> None:
        values = properties.to_dict() if properties is not None else {}
        for operation in self.session.settings.operations:
            operation.handle_custom_properties(node, values)

    def apply_visibility(self, node: SceneNode, visible: bool) -> None:
        if visible:
            return
        if self.session.settings.hidden_layers_inactive:
            node.active = False
        else:
            node.hide()

    def process_layers(self, parent: SceneNode, layers: list[BaseTiledLayer]) -> None:
        for layer in layers:
            node: Optional[SceneNode] = None
            if isinstance(layer, TiledTileLayer):
                node = self.process_tile_layer(layer)
            elif isinstance(layer, TiledObjectGroup):
                node = self.process_object_group(layer)
            elif isinstance(layer, TiledImageLayer):
                node = self.process_image_layer(layer)
            elif isinstance(layer, TiledGroupLayer):
                node = GroupLayerNode(layer.name, layer.properties)
                node.position = self.grid.layer_offset(layer.offsetx, layer.offsety)
                self.process_layers(node, layer.layers)

            if node is None:
                continue

            parent.add(node)
            self.apply_visibility(node, layer.visible)
            self.handle_custom_properties(node, layer.properties)

    def _decode(self, layer: TiledTileLayer) -> list[DecodedChunk]:
        def chunk_failed(chunk: TiledChunk, e: PayloadError) -> None:
            kind = DiagnosticKind.PAYLOAD_LENGTH_MISMATCH if isinstance(e, PayloadLengthMismatch) else DiagnosticKind.PAYLOAD_ERROR
            self.diagnostics.error(kind, e.message, layer=layer.name, chunk=(chunk.x, chunk.y), path=self.session.path)

        return decode_layer(layer, chunk_failed)

    def process_tile_layer(self, layer: TiledTileLayer) -> Optional[TileLayerNode]:
        grid = self.grid
        node = TileLayerNode(layer.name, layer.properties)
        node.position = grid.layer_offset(layer.offsetx, layer.offsety) + grid.layer_anchor_offset()
        node.tile_anchor = grid.tile_anchor
        node.sort_order = grid.sort_order
        if layer.opacity < 1.0:
            node.tint = Color(255, 255, 255, round(layer.opacity * 255))

        if self.tiled_map.infinite and (layer.data is None or not layer.data.chunks):
            self.diagnostics.warning(
                DiagnosticKind.EMPTY_INFINITE_LAYER,
                f"The map is infinite, but no chunks are found in layer {layer.name}. Importing it as an empty layer",
                layer=layer.name, path=self.session.path)
            return node

        if layer.data is None:
            self.diagnostics.error(DiagnosticKind.PAYLOAD_ERROR, f"Layer {layer.name} has no data", layer=layer.name, path=self.session.path)
            return None

        try:
            chunks = self._decode(layer)
        except PayloadLengthMismatch as e:
            self.diagnostics.error(DiagnosticKind.PAYLOAD_LENGTH_MISMATCH, e.message, layer=layer.name, path=self.session.path)
            return None
        except PayloadError as e:
            self.diagnostics.error(DiagnosticKind.PAYLOAD_ERROR, e.message, layer=layer.name, path=self.session.path)
            return None

        resolver = self.session.resolver
        offset_x, offset_y = grid.layer_grid_offset()
        for chunk in chunks:
            origin_x = chunk.x + offset_x
            origin_y = chunk.y + offset_y
            for i, raw_gid in enumerate(chunk.gids):
                resolution = resolver.resolve(raw_gid)
                if resolution.status == GidStatus.EMPTY:
                    continue
                if resolution.status == GidStatus.UNRESOLVED:
                    self.diagnostics.warning(
                        DiagnosticKind.UNRESOLVED_GID, f"Could not find tile {resolution.gid} in layer {layer.name}",
                        layer=layer.name, chunk=(chunk.x, chunk.y), gid=raw_gid, path=self.session.path)
                    continue

                cell = grid.cell(i, chunk.width, origin_x, origin_y)
                node.tiles.append(TilePlacement(cell, resolution.tile, resolution.tileset, resolution.gid, resolution.flags, resolution.matrix))

        node.order = self.order_in_layer
        self.order_in_layer += 1
        return node

    def process_object_group(self, layer: TiledObjectGroup) -> ObjectLayerNode:
        node = ObjectLayerNode(layer.name, layer.properties)
        node.position = self.grid.layer_offset(layer.offsetx, layer.offsety)

        tint = Color(WHITE)
        if layer.color is not None:
            try:
                tint = parse_color(layer.color)
            except ValueError as e:
                self.diagnostics.warning(DiagnosticKind.DOCUMENT_ERROR, f"Cannot parse colour of object group {layer.name}: {e}", layer=layer.name, path=self.session.path)
        if layer.opacity != 1.0:
            tint.a = round(layer.opacity * 255)
        node.tint = tint

        for tiled_object in layer.objects:
            try:
                object_node = self.process_object(tiled_object, layer)
            except ValueError as e:
                self.diagnostics.error(DiagnosticKind.DOCUMENT_ERROR, f"Cannot import object {tiled_object.id}: {e}", layer=layer.name, path=self.session.path)
                continue

            if object_node.tile is not None:
                object_node.tint = Color(tint)
            node.add(object_node)
            self.apply_visibility(object_node, object_node.object.visible)
            self.handle_custom_properties(object_node, object_node.object.properties)

        self.order_in_layer += 1
        return node

    def apply_template(self, tiled_object: TiledObject, layer: TiledObjectGroup) -> tuple[TiledObject, Optional[ImportedTileset]]:
        session = self.session
        template_path = resolve_path(session.base_dir, tiled_object.template)
        try:
            imported = session.templates.get(template_path, session)
        except TemplateLoadFailure as e:
            self.diagnostics.error(
                DiagnosticKind.TEMPLATE_LOAD_FAILURE, f"Could not load template for map object {tiled_object.id}: {e.message}",
                layer=layer.name, path=e.path)
            return tiled_object.copy(), None

        replacement = imported.tileset if tiled_object.gid is None else None
        return merge_objects(imported.object, tiled_object), replacement

    def process_object(self, tiled_object: TiledObject, layer: TiledObjectGroup) -> ObjectNode:
        grid = self.grid
        replacement = None
        if tiled_object.template is not None:
            tiled_object, replacement = self.apply_template(tiled_object, layer)
        else:
            tiled_object = tiled_object.copy()
        tiled_object.initialise_unset_values()

        resolver = self.session.resolver
        if replacement is not None:
            resolver = GidResolver([replacement], self.session.cell_width, self.session.cell_height)
        resolution = resolver.resolve(tiled_object.gid)
        if resolution.status == GidStatus.UNRESOLVED:
            self.diagnostics.warning(
                DiagnosticKind.UNRESOLVED_GID, f"Could not find tile {resolution.gid} for object {tiled_object.id}",
                layer=layer.name, gid=tiled_object.gid, path=self.session.path)

        node = ObjectNode(tiled_object)
        node.order = self.order_in_layer
        decomposition = decompose(resolution.matrix)
        node.position = Vector2(decomposition.translation)
        node.rotation = decomposition.rotation
        node.scale = Vector2(decomposition.scale)

        corner = grid.object_corner(tiled_object.x, tiled_object.y)
        pivot_scaler = grid.pivot_scaler
        if resolution.tile is not None:
            tile = resolution.tile
            node.tile = tile
            node.collider_type = tile.collider_type
            offset = Vector2(tiled_object.width * tile.pivot.x, tiled_object.height * -tile.pivot.y)
            node.position += corner + Vector2(offset.x * pivot_scaler.x, offset.y * pivot_scaler.y)
            node.scale = Vector2(node.scale.x * tiled_object.width / tile.rect.width, node.scale.y * tiled_object.height / tile.rect.height)
        else:
            offset = Vector2(tiled_object.width * 0.5, tiled_object.height * 0.5)
            node.position += corner + Vector2(offset.x * pivot_scaler.x, offset.y * pivot_scaler.y)
            node.shape = self.object_shape(tiled_object)

        if tiled_object.rotation != 0.0:
            # rotate about the object's corner, clockwise in the source is counter clockwise here
            angle = -tiled_object.rotation
            node.position = corner + (node.position - corner).rotate(angle)
            node.rotation += angle
        return node

    def object_shape(self, tiled_object: TiledObject) -> ObjectShape:
        tiled_map = self.tiled_map
        shape = tiled_object.shape
        pixels_to_units = self.grid.pixels_to_units
        if isinstance(shape, TiledEllipse):
            return EllipseShape(tiled_object.width * 0.5 / tiled_map.tilewidth, tiled_object.height * 0.5 / tiled_map.tileheight)
        if isinstance(shape, TiledPolyline):
            return PolygonShape(points_from_string(shape.points, tuple(pixels_to_units)), closed=False)
        if isinstance(shape, TiledPolygon):
            return PolygonShape(points_from_string(shape.points, tuple(pixels_to_units)))
        if isinstance(shape, TiledText):
            color = parse_color(shape.color) if shape.color is not None else Color(WHITE)
            return TextShape(
                shape.text, shape.pixelsize, color, shape.pixelsize / tiled_map.tileheight,
                shape.halign, shape.valign, shape.wrap)
        return BoxShape(Vector2(tiled_object.width / tiled_map.tilewidth, tiled_object.height / tiled_map.tileheight))

    def process_image_layer(self, layer: TiledImageLayer) -> ImageLayerNode:
        node = ImageLayerNode(layer.name, layer.properties)
        node.position = self.grid.layer_offset(layer.offsetx, layer.offsety)
        node.order = self.order_in_layer
        self.order_in_layer += 1
        if layer.image is None:
            return node

        image_path = resolve_path(self.session.base_dir, layer.image.source)
        node.image_path = image_path
        try:
            size = self.session.image_source.image_size(image_path)
            if size is None:
                raise TilesetImportFailure("Image not found", image_path)
            # anchored at its top left corner
            node.sprite = self.session.image_source.slice(image_path, Rect(0, 0, size.width, size.height), Vector2(0.0, 1.0))
        except TilesetImportFailure as e:
            self.diagnostics.warning(DiagnosticKind.TILESET_IMPORT_FAILURE, f"Cannot import image of layer {layer.name}: {e.message}", layer=layer.name, path=e.path)
        return node


def import_map(path: str, settings: Optional[ImportSettings] = None) -> ImportResult:
    """Imports the map at path with its tilesets and templates into a MapScene.

    Only an unreadable or malformed map, or one with an unsupported orientation, fails the import.
    Anything else is recorded in the returned diagnostics and imported as well as possible.
    """
    session = ImportSession(path, settings if settings is not None else ImportSettings())
    importer = MapImporter(session)

    logger.info(f"Importing map {session.path}")
    if not importer.load_map():
        return ImportResult(False, None, session.diagnostics)

    importer.load_tilesets()
    scene = importer.build_scene()
    logger.info(f"Imported map {session.path} with {len(session.diagnostics.errors)} errors and {len(session.diagnostics.warnings)} warnings")
    return ImportResult(True, scene, session.diagnostics)
