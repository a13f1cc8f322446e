from unittest import TestCase

from transposer.errors import DocumentError, UnsupportedOrientation
from transposer.tmx import (
    Properties, Property, TiledEllipse, TiledGroupLayer, TiledImageLayer, TiledObjectGroup, TiledPolygon,
    TiledPolyline, TiledText, TiledTileLayer, parse_map, parse_template, parse_tileset
)

from fakes import map_text


class TestParseMap(TestCase):
    def test_parses_map_attributes_tilesets_and_layers(self) -> None:
        tiled_map = parse_map(map_text("""
            <properties>
              <property name="music" value="theme.ogg"/>
              <property name="lives" type="int" value="3"/>
            </properties>
            <tileset firstgid="50" source="second.tsx"/>
            <tileset firstgid="1" name="first" tilewidth="32" tileheight="32" tilecount="4" columns="2">
              <image source="first.png" width="64" height="64"/>
            </tileset>
            <layer id="1" name="ground" width="4" height="4" offsetx="8" opacity="0.5">
              <data encoding="csv">1,2,3,4,1,2,3,4,1,2,3,4,1,2,3,4</data>
            </layer>
            <objectgroup id="2" name="things" color="#ff0000" draworder="index"/>
            <imagelayer id="3" name="sky"><image source="sky.png" width="100" height="50"/></imagelayer>
            <group id="4" name="nested" visible="0">
              <layer id="5" name="inner" width="4" height="4"><data encoding="csv">0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0</data></layer>
            </group>
        """, extra='backgroundcolor="#80112233" nextlayerid="6" nextobjectid="1"'), "level.tmx")

        self.assertEqual("orthogonal", tiled_map.orientation)
        self.assertEqual((4, 4), (tiled_map.width, tiled_map.height))
        self.assertEqual((32, 32), (tiled_map.tilewidth, tiled_map.tileheight))
        self.assertEqual("right-down", tiled_map.renderorder)
        self.assertEqual("#80112233", tiled_map.backgroundcolor)
        self.assertEqual(6, tiled_map.nextlayerid)
        self.assertEqual("level.tmx", tiled_map.filename)

        self.assertEqual([1, 50], [t.firstgid for t in tiled_map.tilesets])
        self.assertEqual("first", tiled_map.tilesets[0].name)
        self.assertIsNotNone(tiled_map.tilesets[0].embedded)
        self.assertEqual("second.tsx", tiled_map.tilesets[1].source)
        self.assertIsNone(tiled_map.tilesets[1].embedded)

        ground, things, sky, nested = tiled_map.layers
        self.assertIsInstance(ground, TiledTileLayer)
        self.assertEqual(8.0, ground.offsetx)
        self.assertEqual(0.5, ground.opacity)
        self.assertEqual("csv", ground.data.encoding)
        self.assertIsInstance(things, TiledObjectGroup)
        self.assertEqual("#ff0000", things.color)
        self.assertEqual("index", things.draworder)
        self.assertIsInstance(sky, TiledImageLayer)
        self.assertEqual("sky.png", sky.image.source)
        self.assertIsInstance(nested, TiledGroupLayer)
        self.assertFalse(nested.visible)
        self.assertEqual(["ground", "things", "sky", "nested", "inner"], [layer.name for layer in tiled_map.iter_layers()])

        self.assertEqual("theme.ogg", tiled_map.properties["music"])
        self.assertEqual(3, tiled_map.properties["lives"])

    def test_ignores_unknown_elements_and_attributes(self) -> None:
        tiled_map = parse_map(map_text('<editorsettings><export target="x"/></editorsettings>', extra='compressionlevel="-1" parallaxoriginx="3"'))

        self.assertEqual([], tiled_map.layers)
        self.assertFalse(hasattr(tiled_map, "compressionlevel"))

    def test_malformed_markup(self) -> None:
        with self.assertRaises(DocumentError) as context:
            parse_map("<map orientation='orthogonal'", "broken.tmx")
        self.assertEqual("broken.tmx", context.exception.path)

    def test_unknown_root_element(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map('<tileset name="x"/>')

    def test_missing_required_attribute(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map('<map orientation="orthogonal" tilewidth="32"/>')

    def test_non_positive_tile_size(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map(map_text(tilewidth=0))

    def test_unsupported_orientation(self) -> None:
        with self.assertRaises(UnsupportedOrientation) as context:
            parse_map(map_text('<layer name="broken" width="1" height="1"><data encoding="base64">!!!</data></layer>', orientation="diamond"))
        self.assertEqual("diamond", context.exception.orientation)

    def test_bad_attribute_value(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map(map_text('<layer name="l" width="four" height="4"/>'))

    def test_bad_tile_gid(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map(map_text('<layer name="l" width="1" height="1"><data><tile gid="abc"/></data></layer>'))

    def test_embedded_tileset_needs_firstgid(self) -> None:
        with self.assertRaises(DocumentError):
            parse_map(map_text('<tileset name="e" tilewidth="32" tileheight="32"><image source="e.png" width="32" height="32"/></tileset>'))


class TestObjects(TestCase):
    def parse_objects(self, objects: str) -> list:
        tiled_map = parse_map(map_text(f'<objectgroup name="objects">{objects}</objectgroup>'))
        return tiled_map.layers[0].objects

    def test_unset_fields_stay_unset_until_initialised(self) -> None:
        obj, = self.parse_objects('<object id="7" template="chest.tx" x="10"/>')

        self.assertEqual(7, obj.id)
        self.assertEqual(10.0, obj.x)
        self.assertIsNone(obj.y)
        self.assertIsNone(obj.width)
        self.assertIsNone(obj.rotation)
        self.assertIsNone(obj.gid)
        self.assertIsNone(obj.visible)
        self.assertEqual("chest.tx", obj.template)

        obj.initialise_unset_values()

        self.assertEqual(10.0, obj.x)
        self.assertEqual(0.0, obj.y)
        self.assertEqual(0.0, obj.width)
        self.assertEqual(0.0, obj.height)
        self.assertEqual(0.0, obj.rotation)
        self.assertEqual(0, obj.gid)
        self.assertTrue(obj.visible)

    def test_shapes(self) -> None:
        ellipse, polygon, polyline, text, plain = self.parse_objects("""
            <object id="1" x="0" y="0" width="10" height="20"><ellipse/></object>
            <object id="2" x="0" y="0"><polygon points="0,0 32,0 32,32"/></object>
            <object id="3" x="0" y="0"><polyline points="0,0 16,16"/></object>
            <object id="4" x="0" y="0" width="64" height="16"><text pixelsize="12" color="#00ff00" wrap="1" halign="center">Hello</text></object>
            <object id="5" x="0" y="0" width="5" height="5" class="trigger"/>
        """)

        self.assertIsInstance(ellipse.shape, TiledEllipse)
        self.assertIsInstance(polygon.shape, TiledPolygon)
        self.assertEqual("0,0 32,0 32,32", polygon.shape.points)
        self.assertIsInstance(polyline.shape, TiledPolyline)
        self.assertIsInstance(text.shape, TiledText)
        self.assertEqual("Hello", text.shape.text)
        self.assertEqual(12, text.shape.pixelsize)
        self.assertEqual("#00ff00", text.shape.color)
        self.assertTrue(text.shape.wrap)
        self.assertEqual("center", text.shape.halign)
        self.assertIsNone(plain.shape)
        self.assertEqual("trigger", plain.type)

    def test_only_first_shape_is_kept(self) -> None:
        obj, = self.parse_objects('<object id="1"><ellipse/><polygon points="0,0 1,1"/></object>')

        self.assertIsInstance(obj.shape, TiledEllipse)

    def test_polygon_needs_points(self) -> None:
        with self.assertRaises(DocumentError):
            self.parse_objects('<object id="1"><polygon/></object>')


class TestTileset(TestCase):
    def test_image_tileset_with_tile_metadata(self) -> None:
        tileset = parse_tileset("""<?xml version="1.0" encoding="UTF-8"?>
            <tileset version="1.10" name="terrain" tilewidth="16" tileheight="16" spacing="1" margin="2" tilecount="6" columns="3">
              <tileoffset x="0" y="4"/>
              <image source="terrain.png" trans="ff00ff" width="56" height="40"/>
              <tile id="1" type="wall" probability="0.5">
                <objectgroup draworder="index">
                  <object id="1" x="0" y="0" width="16" height="16"/>
                </objectgroup>
              </tile>
              <tile id="4">
                <animation>
                  <frame tileid="4" duration="100"/>
                  <frame tileid="5" duration="150"/>
                </animation>
              </tile>
            </tileset>
        """)

        self.assertEqual("terrain", tileset.name)
        self.assertEqual((16, 16, 1, 2, 6, 3), (tileset.tilewidth, tileset.tileheight, tileset.spacing, tileset.margin, tileset.tilecount, tileset.columns))
        self.assertEqual(4, tileset.tileoffset.y)
        self.assertEqual("ff00ff", tileset.image.trans)
        self.assertEqual(56, tileset.image.width)
        self.assertTrue(tileset.is_image_only())

        wall = tileset.tile_by_id(1)
        self.assertEqual("wall", wall.type)
        self.assertEqual(0.5, wall.probability)
        self.assertTrue(wall.has_collision_data())

        animated = tileset.tile_by_id(4)
        self.assertFalse(animated.has_collision_data())
        self.assertEqual([(4, 100), (5, 150)], [(f.tileid, f.duration) for f in animated.animation])
        self.assertIsNone(tileset.tile_by_id(2))

    def test_collection_tileset(self) -> None:
        tileset = parse_tileset("""
            <tileset name="props" tilewidth="64" tileheight="64" tilecount="2" columns="0">
              <tile id="0"><image source="barrel.png" width="32" height="48"/></tile>
              <tile id="3"><image source="tree.png" width="64" height="96"/></tile>
            </tileset>
        """)

        self.assertFalse(tileset.is_image_only())
        self.assertEqual([0, 3], [tile.id for tile in tileset.tiles])
        self.assertEqual("tree.png", tileset.tile_by_id(3).image.source)

    def test_animation_frame_needs_duration(self) -> None:
        with self.assertRaises(DocumentError):
            parse_tileset('<tileset name="x" tilewidth="8" tileheight="8"><tile id="0"><animation><frame tileid="1"/></animation></tile></tileset>')

    def test_animation_frame_with_bad_tile_id(self) -> None:
        with self.assertRaises(DocumentError):
            parse_tileset('<tileset name="x" tilewidth="8" tileheight="8"><tile id="0"><animation><frame tileid="x" duration="100"/></animation></tile></tileset>')


class TestTemplate(TestCase):
    def test_template_with_tileset(self) -> None:
        template = parse_template("""
            <template>
              <tileset firstgid="1" source="chest.tsx"/>
              <object name="chest" gid="2" width="32" height="32"/>
            </template>
        """)

        self.assertEqual(1, template.tileset.firstgid)
        self.assertEqual("chest.tsx", template.tileset.source)
        self.assertEqual("chest", template.object.name)
        self.assertEqual(2, template.object.gid)

    def test_template_without_object(self) -> None:
        with self.assertRaises(DocumentError):
            parse_template("<template/>")


class TestProperties(TestCase):
    def test_merge_overrides_by_name_and_type(self) -> None:
        template = Properties([Property("hp", "int", "10"), Property("label", "string", "chest"), Property("locked", "bool", "true")])
        instance = Properties([Property("hp", "int", "25"), Property("locked", "string", "no"), Property("loot", "string", "gold")])

        merged = Properties.merge(template, instance)

        self.assertEqual(
            [
                Property("hp", "int", "25"),
                Property("label", "string", "chest"),
                Property("locked", "bool", "true"),
                Property("locked", "string", "no"),
                Property("loot", "string", "gold"),
            ],
            list(merged))
        self.assertEqual(25, merged["hp"])

    def test_merge_with_missing_side(self) -> None:
        properties = Properties([Property("a", "string", "b")])

        self.assertIs(properties, Properties.merge(None, properties))
        self.assertIs(properties, Properties.merge(properties, None))
        self.assertIsNone(Properties.merge(None, None))

    def test_value_in_element_text(self) -> None:
        tiled_map = parse_map(map_text('<properties><property name="notes">line one\nline two</property></properties>'))

        self.assertEqual("line one\nline two", tiled_map.properties["notes"])
