import logging
from abc import ABC
from collections import defaultdict, namedtuple
from copy import copy
from typing import Any, Callable, Iterable, Iterator, NamedTuple, Optional, Union, cast
from xml.etree import ElementTree
from xml.etree.ElementTree import Element

from transposer.errors import DocumentError, UnsupportedOrientation
from transposer.utils import convert_to_bool


logger = logging.getLogger(__name__)

ORIENTATIONS = ("orthogonal", "isometric", "staggered", "hexagonal")

TiledTileAnimation = namedtuple("TiledTileAnimation", ["tileid", "duration"])


TYPES = defaultdict(lambda: str)
TYPES.update(
    {
        "backgroundcolor": str,
        "bold": convert_to_bool,
        "color": str,
        "columns": int,
        "compression": str,
        "draworder": str,
        "duration": int,
        "encoding": str,
        "firstgid": int,
        "fontfamily": str,
        "gid": int,
        "halign": str,
        "height": float,
        "hexsidelength": int,
        "id": int,
        "infinite": convert_to_bool,
        "italic": convert_to_bool,
        "margin": int,
        "name": str,
        "nextlayerid": int,
        "nextobjectid": int,
        "offsetx": float,
        "offsety": float,
        "opacity": float,
        "orientation": str,
        "pixelsize": int,
        "points": str,
        "probability": float,
        "renderorder": str,
        "rotation": float,
        "source": str,
        "spacing": int,
        "staggeraxis": str,
        "staggerindex": str,
        "template": str,
        "tilecount": int,
        "tiledversion": str,
        "tileheight": int,
        "tileid": int,
        "tilewidth": int,
        "trans": str,
        "type": str,
        "valign": str,
        "version": str,
        "visible": convert_to_bool,
        "width": float,
        "wrap": convert_to_bool,
        "x": float,
        "y": float,
    }
)

PROPERTY_TYPES: dict[str, Callable[[str], Any]] = {
    "bool": convert_to_bool,
    "color": str,
    "file": str,
    "float": float,
    "int": int,
    "object": int,
    "string": str,
    "class": str,
    "enum": str,
}


class NodeType:
    def __init__(
            self,
            factory_method: Optional[Callable[['TiledElement', Element], None]] = None,
            type_constructor: Optional[Callable[[], 'TiledElement']] = None,
            destination: Optional[str] = None
    ) -> None:
        self.factory_method = factory_method
        self.type_constructor = type_constructor
        self.destination = destination


class Property(NamedTuple):
    name: str
    type: str
    value: str

    @property
    def typed_value(self) -> Any:
        return PROPERTY_TYPES.get(self.type, str)(self.value)


class Properties:
    """Ordered list of (name, type, value) triples attached to a map, layer, tile or object."""

    def __init__(self, properties: Optional[Iterable[Property]] = None) -> None:
        self.properties: list[Property] = list(properties) if properties is not None else []

    def __iter__(self) -> Iterator[Property]:
        return iter(self.properties)

    def __len__(self) -> int:
        return len(self.properties)

    def __contains__(self, name: str) -> bool:
        return any(p.name == name for p in self.properties)

    def __getitem__(self, name: str) -> Any:
        for p in self.properties:
            if p.name == name:
                return p.typed_value
        raise KeyError(name)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Properties) and self.properties == other.properties

    def __repr__(self) -> str:
        return f"Properties({self.properties!r})"

    def append(self, prop: Property) -> None:
        self.properties.append(prop)

    def to_dict(self) -> dict[str, str]:
        return {p.name: p.value for p in self.properties}

    @staticmethod
    def merge(template: Optional['Properties'], instance: Optional['Properties']) -> Optional['Properties']:
        """Combines template and instance properties.

        Entries are identified by name and type. Instance values override template values,
        template-only entries are passed through and instance-only entries are appended.
        """
        if template is None and instance is None:
            return None
        if template is None:
            return instance
        if instance is None:
            return template

        combined = list(template.properties)
        for instance_property in instance:
            for i, existing in enumerate(combined):
                if existing.name == instance_property.name and existing.type == instance_property.type:
                    combined[i] = existing._replace(value=instance_property.value)
                    break
            else:
                combined.append(instance_property)
        return Properties(combined)

    @classmethod
    def from_xml(cls, node: Element) -> 'Properties':
        properties = cls()
        for subnode in node.findall("property"):
            name = subnode.get("name")
            if name is None:
                raise DocumentError("Property without a name")
            value = subnode.get("value")
            if value is None:
                value = subnode.text if subnode.text is not None else ""
            properties.append(Property(name, subnode.get("type", "string"), value))
        return properties


class TiledElement(ABC):
    """Base of all document nodes.

    Attributes present on the XML element are cast through TYPES (or the class' ATTRIBUTE_TYPES)
    and set on the instance when it declares an attribute of the same name. Child elements are
    dispatched through NODE_TYPES, anything else is ignored.
    """
    REQUIRED: tuple[str, ...] = ()
    ATTRIBUTE_TYPES: dict[str, Callable[[str], Any]] = {}
    ATTRIBUTE_ALIASES: dict[str, str] = {}

    def __init__(self) -> None:
        self.properties: Optional[Properties] = None

    def _parse_xml_to_properties(self, node: Element) -> None:
        self.properties = Properties.from_xml(node)

    def _parse_xml(self, node: Element) -> None:
        for required in self.REQUIRED:
            if node.get(required) is None:
                raise DocumentError(f"Element <{node.tag}> is missing required attribute '{required}'")

        for key, value in node.items():
            key = self.ATTRIBUTE_ALIASES.get(key, key)
            if hasattr(self, key):
                cast_to = self.ATTRIBUTE_TYPES.get(key, TYPES[key])
                try:
                    setattr(self, key, cast_to(value))
                except ValueError as e:
                    raise DocumentError(f"Cannot parse attribute {key}=\"{value}\" of <{node.tag}>: {e}")
            else:
                logger.debug(f"Element <{node.tag}> does not have attr {key}")

        types = self.NODE_TYPES

        for child_node in list(node):
            if child_node.tag in types:
                node_type = types[child_node.tag]

                if node_type.factory_method:
                    node_type.factory_method(self, child_node)
                elif node_type.type_constructor:
                    obj = cast(TiledElement, node_type.type_constructor())
                    obj._parse_xml(child_node)
                    if node_type.destination is not None:
                        destination = getattr(self, node_type.destination)
                        if isinstance(destination, list):
                            destination.append(obj)
                        else:
                            setattr(self, node_type.destination, obj)
            else:
                logger.debug(f"Ignoring unknown element <{child_node.tag}> in <{node.tag}>")

    NODE_TYPES: dict[str, NodeType] = {"properties": NodeType(_parse_xml_to_properties)}


class TiledImage(TiledElement):
    REQUIRED = ("source",)
    ATTRIBUTE_TYPES = {"width": int, "height": int}

    def __init__(self) -> None:
        super().__init__()
        self.source: str = ""
        self.width: int = 0
        self.height: int = 0
        self.trans: Optional[str] = None


class TileOffset(TiledElement):
    ATTRIBUTE_TYPES = {"x": int, "y": int}

    def __init__(self) -> None:
        super().__init__()
        self.x: int = 0
        self.y: int = 0


class TiledEllipse(TiledElement):
    pass


class TiledPolygon(TiledElement):
    REQUIRED = ("points",)

    def __init__(self) -> None:
        super().__init__()
        self.points: str = ""


class TiledPolyline(TiledPolygon):
    pass


class TiledRectangle(TiledElement):
    def __init__(self) -> None:
        super().__init__()
        self.x: float = 0.0
        self.y: float = 0.0
        self.width: float = 0.0
        self.height: float = 0.0


class TiledText(TiledElement):
    def __init__(self) -> None:
        super().__init__()
        self.text: str = ""
        self.pixelsize: int = 16
        self.color: Optional[str] = None
        self.fontfamily: str = "sans-serif"
        self.wrap: bool = False
        self.bold: bool = False
        self.italic: bool = False
        self.halign: str = "left"
        self.valign: str = "top"

    def _parse_xml(self, node: Element) -> None:
        super()._parse_xml(node)
        self.text = node.text if node.text is not None else ""


TiledShape = Union[TiledEllipse, TiledPolygon, TiledPolyline, TiledRectangle, TiledText]


class TiledObject(TiledElement):
    """Map, tile collision or template object.

    Numeric fields stay None until set by the document, merged from a template
    or defaulted by initialise_unset_values.
    """
    ATTRIBUTE_ALIASES = {"class": "type"}

    def __init__(self) -> None:
        super().__init__()
        self.id: Optional[int] = None
        self.name: Optional[str] = None
        self.type: Optional[str] = None
        self.x: Optional[float] = None
        self.y: Optional[float] = None
        self.width: Optional[float] = None
        self.height: Optional[float] = None
        self.rotation: Optional[float] = None
        self.gid: Optional[int] = None
        self.visible: Optional[bool] = None
        self.template: Optional[str] = None
        self.shape: Optional[TiledShape] = None

    def __repr__(self) -> str:
        return f"TiledObject(id={self.id}, name={self.name!r}, template={self.template!r})"

    def _set_shape(self, shape: TiledShape) -> None:
        if self.shape is not None:
            logger.warning(f"Object {self.id} has more than one shape, keeping <{type(self.shape).__name__}>")
            return
        self.shape = shape

    def _parse_shape(self, node: Element) -> None:
        shape = self.SHAPES[node.tag]()
        shape._parse_xml(node)
        self._set_shape(shape)

    def initialise_unset_values(self) -> None:
        if self.id is None:
            self.id = 0
        if self.x is None:
            self.x = 0.0
        if self.y is None:
            self.y = 0.0
        if self.width is None:
            self.width = 0.0
        if self.height is None:
            self.height = 0.0
        if self.rotation is None:
            self.rotation = 0.0
        if self.gid is None:
            self.gid = 0
        if self.visible is None:
            self.visible = True

    def copy(self) -> 'TiledObject':
        return copy(self)

    SHAPES: dict[str, Callable[[], TiledShape]] = {
        "ellipse": TiledEllipse,
        "polygon": TiledPolygon,
        "polyline": TiledPolyline,
        "rectangle": TiledRectangle,
        "text": TiledText,
    }

    NODE_TYPES = TiledElement.NODE_TYPES | {
        "ellipse": NodeType(_parse_shape),
        "polygon": NodeType(_parse_shape),
        "polyline": NodeType(_parse_shape),
        "rectangle": NodeType(_parse_shape),
        "text": NodeType(_parse_shape),
    }


class BaseTiledLayer(TiledElement, ABC):
    ATTRIBUTE_TYPES = {"width": int, "height": int}

    def __init__(self) -> None:
        super().__init__()
        self.id: Optional[int] = None
        self.name: str = ""
        self.offsetx: float = 0.0
        self.offsety: float = 0.0
        self.visible: bool = True
        self.opacity: float = 1.0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class TiledChunk(TiledElement):
    REQUIRED = ("x", "y", "width", "height")
    ATTRIBUTE_TYPES = {"x": int, "y": int, "width": int, "height": int}

    def __init__(self) -> None:
        super().__init__()
        self.x: int = 0
        self.y: int = 0
        self.width: int = 0
        self.height: int = 0
        self.text: Optional[str] = None
        self.tiles: list[int] = []

    def _parse_xml(self, node: Element) -> None:
        super()._parse_xml(node)
        self.text = node.text

    def _tile(self, node: Element) -> None:
        try:
            self.tiles.append(int(node.get("gid", "0")))
        except ValueError as e:
            raise DocumentError(f"Cannot parse attribute gid of <{node.tag}>: {e}")

    NODE_TYPES = TiledElement.NODE_TYPES | {"tile": NodeType(_tile)}


class TiledLayerData(TiledChunk):
    REQUIRED = ()

    def __init__(self) -> None:
        super().__init__()
        self.encoding: Optional[str] = None
        self.compression: Optional[str] = None
        self.chunks: list[TiledChunk] = []

    NODE_TYPES = TiledChunk.NODE_TYPES | {"chunk": NodeType(None, TiledChunk, "chunks")}


class TiledTileLayer(BaseTiledLayer):
    def __init__(self) -> None:
        super().__init__()
        self.width: int = 0
        self.height: int = 0
        self.data: Optional[TiledLayerData] = None

    NODE_TYPES = TiledElement.NODE_TYPES | {"data": NodeType(None, TiledLayerData, "data")}


class TiledObjectGroup(BaseTiledLayer):
    def __init__(self) -> None:
        super().__init__()
        self.color: Optional[str] = None
        self.draworder: str = "topdown"
        self.objects: list[TiledObject] = []

    NODE_TYPES = TiledElement.NODE_TYPES | {"object": NodeType(None, TiledObject, "objects")}


class TiledImageLayer(BaseTiledLayer):
    def __init__(self) -> None:
        super().__init__()
        self.image: Optional[TiledImage] = None

    NODE_TYPES = TiledElement.NODE_TYPES | {"image": NodeType(None, TiledImage, "image")}


class TiledGroupLayer(BaseTiledLayer):
    def __init__(self) -> None:
        super().__init__()
        self.layers: list[BaseTiledLayer] = []

    def iter_layers(self) -> Iterator[BaseTiledLayer]:
        for layer in self.layers:
            yield layer
            if isinstance(layer, TiledGroupLayer):
                yield from layer.iter_layers()


LAYER_NODE_TYPES = {
    "layer": NodeType(None, TiledTileLayer, "layers"),
    "objectgroup": NodeType(None, TiledObjectGroup, "layers"),
    "imagelayer": NodeType(None, TiledImageLayer, "layers"),
    "group": NodeType(None, TiledGroupLayer, "layers"),
}

TiledGroupLayer.NODE_TYPES = TiledElement.NODE_TYPES | LAYER_NODE_TYPES


class TiledTile(TiledElement):
    REQUIRED = ("id",)

    def __init__(self) -> None:
        super().__init__()
        self.id: int = 0
        self.type: str = ""
        self.probability: float = 1.0
        self.image: Optional[TiledImage] = None
        self.objectgroup: Optional[TiledObjectGroup] = None
        self.animation: Optional[list[TiledTileAnimation]] = None

    ATTRIBUTE_ALIASES = {"class": "type"}

    def has_collision_data(self) -> bool:
        return self.objectgroup is not None and len(self.objectgroup.objects) > 0

    def _parse_animation(self, node: Element) -> None:
        self.animation = []
        for frame_node in node.findall("frame"):
            if frame_node.get("tileid") is None or frame_node.get("duration") is None:
                raise DocumentError(f"Animation frame of tile {self.id} needs both tileid and duration")
            try:
                frame = TiledTileAnimation(int(frame_node.get("tileid")), int(frame_node.get("duration")))
            except ValueError as e:
                raise DocumentError(f"Cannot parse animation frame of tile {self.id}: {e}")
            self.animation.append(frame)

    NODE_TYPES = TiledElement.NODE_TYPES | {
        "image": NodeType(None, TiledImage, "image"),
        "objectgroup": NodeType(None, TiledObjectGroup, "objectgroup"),
        "animation": NodeType(_parse_animation),
    }


class TiledTileset(TiledElement):
    def __init__(self) -> None:
        super().__init__()
        self.name: str = ""
        self.tilewidth: int = 0
        self.tileheight: int = 0
        self.spacing: int = 0
        self.margin: int = 0
        self.tilecount: int = 0
        self.columns: int = 0
        self.image: Optional[TiledImage] = None
        self.tileoffset: Optional[TileOffset] = None
        self.tiles: list[TiledTile] = []

    def __repr__(self) -> str:
        return f"TiledTileset(name={self.name!r})"

    def is_image_only(self) -> bool:
        """True for a single shared image sliced into a grid, False for one image per tile."""
        return len(self.tiles) == 0 or self.image is not None

    def tile_by_id(self, tile_id: int) -> Optional[TiledTile]:
        for tile in self.tiles:
            if tile.id == tile_id:
                return tile
        return None

    NODE_TYPES = TiledElement.NODE_TYPES | {
        "image": NodeType(None, TiledImage, "image"),
        "tileoffset": NodeType(None, TileOffset, "tileoffset"),
        "tile": NodeType(None, TiledTile, "tiles"),
    }


class TilesetReference(TiledElement):
    """<tileset> element inside a map or template: firstgid plus an external source or embedded data."""
    REQUIRED = ("firstgid",)

    def __init__(self) -> None:
        super().__init__()
        self.firstgid: int = 0
        self.source: Optional[str] = None
        self.embedded: Optional[TiledTileset] = None

    def __repr__(self) -> str:
        return f"TilesetReference(firstgid={self.firstgid}, source={self.source!r})"

    def _parse_xml(self, node: Element) -> None:
        for key in self.REQUIRED:
            if node.get(key) is None:
                raise DocumentError(f"Element <{node.tag}> is missing required attribute '{key}'")
        for key in ("firstgid", "source"):
            if key in node.keys():
                try:
                    setattr(self, key, TYPES[key](node.get(key)))
                except ValueError as e:
                    raise DocumentError(f"Cannot parse attribute {key} of <tileset>: {e}")
        if self.source is None:
            self.embedded = TiledTileset()
            self.embedded._parse_xml(node)

    @property
    def name(self) -> str:
        if self.embedded is not None:
            return self.embedded.name
        return self.source


class TiledTemplate(TiledElement):
    def __init__(self) -> None:
        super().__init__()
        self.tileset: Optional[TilesetReference] = None
        self.object: Optional[TiledObject] = None

    NODE_TYPES = TiledElement.NODE_TYPES | {
        "tileset": NodeType(None, TilesetReference, "tileset"),
        "object": NodeType(None, TiledObject, "object"),
    }


class TiledMap(TiledElement):
    REQUIRED = ("orientation", "tilewidth", "tileheight")
    ATTRIBUTE_TYPES = {"width": int, "height": int}

    def __init__(self) -> None:
        super().__init__()
        self.filename: Optional[str] = None

        self.version: str = "0.0"
        self.tiledversion: str = ""
        self.orientation: str = "orthogonal"
        self.renderorder: Optional[str] = None
        self.width: int = 0  # width of map in tiles
        self.height: int = 0  # height of map in tiles
        self.tilewidth: int = 0  # width of a tile in pixels
        self.tileheight: int = 0  # height of a tile in pixels
        self.hexsidelength: int = 0
        self.staggeraxis: Optional[str] = None
        self.staggerindex: Optional[str] = None
        self.backgroundcolor: Optional[str] = None
        self.infinite: bool = False
        self.nextlayerid: int = 0
        self.nextobjectid: int = 0

        self.tilesets: list[TilesetReference] = []
        self.layers: list[BaseTiledLayer] = []

    def _parse_xml(self, node: Element) -> None:
        orientation = node.get("orientation")
        if orientation is not None and orientation not in ORIENTATIONS:
            raise UnsupportedOrientation(orientation, self.filename)

        super()._parse_xml(node)
        if self.tilewidth <= 0 or self.tileheight <= 0:
            raise DocumentError(f"Tile size must be positive, got {self.tilewidth}x{self.tileheight}", self.filename)
        self.tilesets.sort(key=lambda t: t.firstgid)

    def iter_layers(self) -> Iterator[BaseTiledLayer]:
        for layer in self.layers:
            yield layer
            if isinstance(layer, TiledGroupLayer):
                yield from layer.iter_layers()

    NODE_TYPES = TiledElement.NODE_TYPES | LAYER_NODE_TYPES | {
        "tileset": NodeType(None, TilesetReference, "tilesets"),
    }


def _parse_document(text: str, root_tag: str, element: TiledElement, filename: Optional[str]) -> None:
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise DocumentError(f"Malformed document: {e}", filename)

    if root.tag != root_tag:
        raise DocumentError(f"Unknown root element <{root.tag}>, expected <{root_tag}>", filename)

    try:
        element._parse_xml(root)
    except DocumentError as e:
        if e.path is None:
            e.path = filename
        raise


def parse_map(text: str, filename: Optional[str] = None) -> TiledMap:
    tiled_map = TiledMap()
    tiled_map.filename = filename
    _parse_document(text, "map", tiled_map, filename)
    return tiled_map


def parse_tileset(text: str, filename: Optional[str] = None) -> TiledTileset:
    tileset = TiledTileset()
    _parse_document(text, "tileset", tileset, filename)
    return tileset


def parse_template(text: str, filename: Optional[str] = None) -> TiledTemplate:
    template = TiledTemplate()
    _parse_document(text, "template", template, filename)
    if template.object is None:
        raise DocumentError("Template has no <object>", filename)
    return template
